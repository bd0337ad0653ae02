"""
Storage Layer

RESPONSIBILITY: Persist one event store document per chat session
ALLOWED INPUTS: UnifiedEventStore, session ids
OUTPUTS: UnifiedEventStore (or None when missing / malformed)

WHAT THIS LAYER MUST NOT DO:
============================
- Interpret events or project state
- Migrate documents (temporal.migrations does that before decoding)
- Raise on malformed stored data

BOUNDARY ENFORCEMENT:
=====================
- Stores go through the codec; backends only move documents
- load() returns None for missing or malformed documents
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import copy
import json
import os
import re

from ..observability import get_logger
from ..temporal.event_log import UnifiedEventStore
from .codec import UNIFIED, deserialize_store, serialize_store

logger = get_logger(__name__)

_SAFE_ID = re.compile(r"[^A-Za-z0-9_.-]")


class StorageBackend:
    """
    Abstract storage backend interface.

    Implementations hold one serialized document per session id.
    """

    def save_document(self, session_id: str, document: Dict[str, Any]) -> None:
        raise NotImplementedError

    def load_document(self, session_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def delete(self, session_id: str) -> bool:
        raise NotImplementedError

    def list_sessions(self) -> List[str]:
        raise NotImplementedError

    def save(self, session_id: str, store: UnifiedEventStore, layout: str = UNIFIED) -> None:
        self.save_document(session_id, serialize_store(store, layout))

    def load(self, session_id: str) -> Optional[UnifiedEventStore]:
        document = self.load_document(session_id)
        if document is None:
            return None
        return deserialize_store(document)


class InMemoryStorageBackend(StorageBackend):
    """Documents kept in a dict; copies in and out so callers cannot alias."""

    def __init__(self):
        self._documents: Dict[str, Dict[str, Any]] = {}

    def save_document(self, session_id: str, document: Dict[str, Any]) -> None:
        self._documents[session_id] = copy.deepcopy(document)

    def load_document(self, session_id: str) -> Optional[Dict[str, Any]]:
        document = self._documents.get(session_id)
        return copy.deepcopy(document) if document is not None else None

    def delete(self, session_id: str) -> bool:
        return self._documents.pop(session_id, None) is not None

    def list_sessions(self) -> List[str]:
        return sorted(self._documents)


class FileStorageBackend(StorageBackend):
    """
    One JSON file per session under storage_dir.

    Writes go to a temporary file first and are moved into place, so a
    crash never leaves a half-written document behind.
    """

    SUFFIX = ".json"

    def __init__(self, storage_dir: str):
        self._storage_dir = storage_dir
        os.makedirs(storage_dir, exist_ok=True)

    @property
    def storage_dir(self) -> str:
        return self._storage_dir

    def _path(self, session_id: str) -> str:
        return os.path.join(self._storage_dir, _SAFE_ID.sub("_", session_id) + self.SUFFIX)

    def save_document(self, session_id: str, document: Dict[str, Any]) -> None:
        path = self._path(session_id)
        tmp_path = path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(document, f, ensure_ascii=False)
        os.replace(tmp_path, path)

    def load_document(self, session_id: str) -> Optional[Dict[str, Any]]:
        path = self._path(session_id)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("could not read session document %s: %s", path, exc,
                           extra={"session_id": session_id})
            return None

    def delete(self, session_id: str) -> bool:
        path = self._path(session_id)
        if not os.path.exists(path):
            return False
        os.remove(path)
        return True

    def list_sessions(self) -> List[str]:
        return sorted(
            name[:-len(self.SUFFIX)]
            for name in os.listdir(self._storage_dir)
            if name.endswith(self.SUFFIX)
        )


@dataclass
class StorageConfig:
    """Configuration for session storage."""
    backend_type: str = "memory"  # "memory" or "file"
    storage_dir: Optional[str] = None

    def create_backend(self) -> StorageBackend:
        if self.backend_type == "file" and self.storage_dir:
            return FileStorageBackend(self.storage_dir)
        return InMemoryStorageBackend()
