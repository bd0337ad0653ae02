"""
Migration Tests
===============

INVARIANTS TESTED:
1. No narrative event is dropped on the way from v2 to v4
2. A v4 document comes back unchanged
3. Unknown versions never raise; they warn and get defaults
4. The input document is never mutated
5. Tracked state on legacy messages becomes initial projection + state events
"""

import copy

from chronicle.contracts.base import MilestoneType
from chronicle.temporal.clock import LogicalClock
from chronicle.temporal.event_log import canonical_from_chat
from chronicle.temporal.migrations import (
    LegacyMessage, convert_legacy_event, migrate, migrate_v1_to_v2,
    migrate_v2_to_v3, store_from_document,
)
from chronicle.temporal.replay import ProjectionEngine

from tests.fixtures import T0, legacy_v2_document


def _clock() -> LogicalClock:
    return LogicalClock.stepping(T0, 200)


def _tracked(hour: int, minute: int, names):
    return {
        "time": {"year": 2024, "month": 6, "day": 15, "hour": hour, "minute": minute, "second": 0},
        "location": {"area": "Riverside", "place": "Tavern", "position": "bar", "props": []},
        "characters": [{"name": name, "position": "at the bar", "mood": []} for name in names],
    }


class TestV1ToV2:

    def test_legacy_relationship_gets_single_version(self):
        doc = {"relationships": [
            {"pair": ["Alice", "Bob"], "status": "friendly", "aToB": {"feelings": ["fond"]}},
        ]}
        migrated = migrate_v1_to_v2(doc)
        versions = migrated["relationships"][0]["versions"]
        assert migrated["version"] == 2
        assert versions == [{
            "messageId": 0,
            "status": "friendly",
            "aToB": {"feelings": ["fond"], "secrets": [], "wants": []},
            "bToA": {"feelings": [], "secrets": [], "wants": []},
            "milestones": [],
        }]
        assert "versions" not in doc["relationships"][0]

    def test_existing_versions_kept(self):
        doc = {"relationships": [{"pair": ["A", "B"], "versions": [{"messageId": 4}]}]}
        assert migrate_v1_to_v2(doc)["relationships"][0]["versions"] == [{"messageId": 4}]


class TestV2ToV3:

    def test_chapter_events_flattened(self):
        doc = migrate_v2_to_v3(legacy_v2_document(), clock=_clock())
        events = doc["eventStore"]["events"]
        assert doc["version"] == 3
        assert len(events) == 9
        assert [e["messageId"] for e in events] == list(range(1, 10))

        first, second = doc["chapters"]
        assert len(first["eventIds"]) == 4
        assert first["boundaryMessageId"] == 4
        assert len(second["eventIds"]) == 5
        assert second["boundaryMessageId"] == 9
        assert doc["chapterSnapshots"][0]["chapterIndex"] == 1
        assert doc["chapterSnapshots"][0]["boundaryMessageId"] == 9

    def test_current_events_deduplicated(self):
        messages = [LegacyMessage() for _ in range(6)]
        messages[3] = LegacyMessage(state={"currentEvents": [{"messageId": 3, "summary": "Event at message 3"}]})
        messages[5] = LegacyMessage(swipe_id=1, state={"currentEvents": [{"messageId": 0, "summary": "late"}]})

        doc = migrate_v2_to_v3(legacy_v2_document(), messages, _clock())
        events = doc["eventStore"]["events"]
        assert len(events) == 10
        late = [e for e in events if e["summary"] == "late"][0]
        assert late["messageId"] == 5
        assert late["swipeId"] == 1
        assert late["eventTypes"] == ["conversation"]

    def test_milestone_descriptions_copied(self):
        doc = {
            "version": 2,
            "chapters": [{"index": 0, "title": "One", "events": [
                {"messageId": 2, "summary": "a joke", "eventTypes": ["laugh"],
                 "relationshipSignal": {"pair": ["Bob", "Alice"]}},
            ]}],
            "relationships": [{
                "pair": ["Alice", "Bob"],
                "status": "friendly",
                "milestones": [{"type": "first_laugh", "description": "giggles"}],
            }],
        }
        migrated = migrate_v2_to_v3(doc, clock=_clock())
        event = migrated["eventStore"]["events"][0]
        assert event["affectedPairs"][0]["firstFor"] == ["first_laugh"]
        assert event["affectedPairs"][0]["milestoneDescriptions"] == {"first_laugh": "giggles"}
        assert migrated["relationships"][0]["milestoneEventIds"] == [event["id"]]

    def test_convert_legacy_event_defaults(self):
        warnings = []
        event = convert_legacy_event({"summary": "x", "timestamp": "not a date"}, None, 0, T0, warnings)
        assert event.message_id == 0
        assert event.event_types == ("conversation",)
        assert event.narrative_timestamp is None
        assert len(warnings) == 1


class TestPipeline:

    def test_v2_to_v4_keeps_every_event(self):
        report = migrate(legacy_v2_document(), clock=_clock())
        assert report.steps == ["v2_to_v3", "v3_to_v4"]
        assert report.to_version == 4
        assert report.warnings == []

        store = store_from_document(report.document)
        assert len(store.narrative_events) == 9
        assert {e.chapter_index for e in store.narrative_events} == {0, 1}

    def test_v4_document_unchanged(self):
        doc = {
            "version": 4,
            "eventStore": {"version": 4, "narrativeEvents": [], "stateEvents": []},
            "chapters": [],
            "relationships": [],
        }
        report = migrate(doc)
        assert report.document == doc
        assert report.migrated is False
        assert report.warnings == []

    def test_input_not_mutated(self):
        doc = legacy_v2_document()
        before = copy.deepcopy(doc)
        migrate(doc, clock=_clock())
        assert doc == before

    def test_missing_version_runs_every_step(self):
        report = migrate(None, clock=_clock())
        assert report.steps == ["v1_to_v2", "v2_to_v3", "v3_to_v4"]
        assert report.document["version"] == 4

    def test_unknown_version_never_raises(self):
        for version in (99, "three", 2.5):
            report = migrate({"version": version, "chapters": "junk"})
            assert report.warnings
            assert report.document["chapters"] == []
            assert report.document["eventStore"]["narrativeEvents"] == []

    def test_tracked_state_becomes_events(self):
        messages = [
            LegacyMessage(),
            LegacyMessage(state=_tracked(10, 0, ["Alice"])),
            LegacyMessage(state=_tracked(10, 30, ["Alice", "Bob"])),
        ]
        report = migrate(legacy_v2_document(), messages, _clock())
        store = store_from_document(report.document)

        initial = store.initial_projection
        assert set(initial.characters) == {"Alice"}
        assert initial.relationship("Alice", "Bob") is not None
        assert all(e.message_id == 2 for e in store.state_events)

        state = ProjectionEngine(store).project_at(2, 0, canonical_from_chat([0, 0, 0]))
        assert set(state.characters) == {"Alice", "Bob"}
        assert (state.time.hour, state.time.minute) == (10, 30)

    def test_store_from_document_without_store(self):
        assert store_from_document({"version": 4}) is None

    def test_described_milestone_survives_to_store(self):
        doc = {
            "version": 2,
            "chapters": [{"index": 0, "title": "One", "events": [
                {"messageId": 2, "summary": "a joke", "eventTypes": ["laugh"],
                 "relationshipSignal": {"pair": ["Alice", "Bob"]}},
            ]}],
            "relationships": [{"pair": ["Alice", "Bob"], "milestones": [
                {"type": "first_laugh", "description": "giggles"},
            ]}],
        }
        store = store_from_document(migrate(doc, clock=_clock()).document)
        affected = store.narrative_events[0].affected_pairs[0]
        assert affected.first_for == (MilestoneType.FIRST_LAUGH,)
        assert affected.milestone_descriptions == {MilestoneType.FIRST_LAUGH: "giggles"}
