"""
Storage Backend Tests
"""

import json
import os

import pytest

from chronicle.storage import (
    FileStorageBackend, InMemoryStorageBackend, StorageConfig,
)
from chronicle.storage.codec import SNAPSHOT

from tests.fixtures import populated_store


@pytest.fixture(params=["memory", "file"])
def backend(request, tmp_path):
    if request.param == "memory":
        return InMemoryStorageBackend()
    return FileStorageBackend(str(tmp_path / "sessions"))


class TestBackendContract:

    def test_save_and_load(self, backend):
        store = populated_store()
        backend.save("chat-1", store)
        loaded = backend.load("chat-1")
        assert loaded.state_events == store.state_events

    def test_snapshot_layout_loads_too(self, backend):
        store = populated_store()
        backend.save("chat-1", store, layout=SNAPSHOT)
        assert backend.load("chat-1").state_events == store.state_events

    def test_missing_session(self, backend):
        assert backend.load("nobody") is None
        assert backend.delete("nobody") is False

    def test_list_and_delete(self, backend):
        backend.save("b", populated_store())
        backend.save("a", populated_store())
        assert backend.list_sessions() == ["a", "b"]
        assert backend.delete("a") is True
        assert backend.list_sessions() == ["b"]

    def test_malformed_document_loads_as_none(self, backend):
        backend.save_document("chat-1", {"version": 4, "stateEvents": "oops"})
        assert backend.load("chat-1") is None


class TestInMemory:

    def test_documents_are_copied(self):
        backend = InMemoryStorageBackend()
        document = {"version": 4, "narrativeEvents": [], "stateEvents": []}
        backend.save_document("s", document)
        document["stateEvents"].append("mutated")
        loaded = backend.load_document("s")
        loaded["narrativeEvents"].append("mutated")
        assert backend.load_document("s") == {"version": 4, "narrativeEvents": [], "stateEvents": []}


class TestFile:

    def test_corrupt_file(self, tmp_path):
        backend = FileStorageBackend(str(tmp_path))
        (tmp_path / "chat.json").write_text("{not json", encoding="utf-8")
        assert backend.load_document("chat") is None
        assert backend.load("chat") is None

    def test_unsafe_session_id_stays_in_directory(self, tmp_path):
        backend = FileStorageBackend(str(tmp_path))
        backend.save_document("../escape/me", {"version": 4})
        assert os.listdir(tmp_path) == [".._escape_me.json"]
        assert backend.load_document("../escape/me") == {"version": 4}

    def test_written_as_json(self, tmp_path):
        backend = FileStorageBackend(str(tmp_path))
        backend.save("chat", populated_store())
        with open(tmp_path / "chat.json", encoding="utf-8") as f:
            assert json.load(f)["version"] == 4
        assert not (tmp_path / "chat.json.tmp").exists()


class TestConfig:

    def test_create_backend(self, tmp_path):
        assert isinstance(StorageConfig().create_backend(), InMemoryStorageBackend)
        file_backend = StorageConfig(backend_type="file", storage_dir=str(tmp_path)).create_backend()
        assert isinstance(file_backend, FileStorageBackend)
        assert isinstance(StorageConfig(backend_type="file").create_backend(), InMemoryStorageBackend)
