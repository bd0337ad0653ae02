"""
Event Store Tests
=================

INVARIANTS TESTED:
1. Events stay sorted by (message_id, timestamp) after every mutation
2. Deletion is soft; unknown ids return False
3. Swipe reindexing closes the gap left by a deleted swipe
4. Invalid events are rejected before anything is inserted
"""

import pytest

from chronicle.contracts.base import InvalidEventError, OutfitSlot
from chronicle.contracts.events import CharacterEvent, CharacterSubkind
from chronicle.contracts.temporal import TimeDelta
from chronicle.temporal.event_log import UnifiedEventStore, canonical_from_chat

from tests.fixtures import (
    T0, T1, T2, always, appeared, feeling, forecast, mood, narrative,
    populated_store, status, tavern_projection, time_delta,
)


def _keys(events):
    return [(e.message_id, e.timestamp) for e in events]


class TestAppend:

    def test_append_sorts(self):
        store = UnifiedEventStore()
        store.append([mood("Alice", "b", message_id=2, timestamp=T2)])
        store.append([mood("Alice", "a", message_id=1, timestamp=T1)])
        store.append([mood("Alice", "c", message_id=1, timestamp=T0)])
        assert _keys(store.get_active_events()) == [(1, T0), (1, T1), (2, T2)]

    def test_ties_keep_insertion_order(self):
        store = UnifiedEventStore()
        first = mood("Alice", "first", timestamp=T0)
        second = mood("Alice", "second", timestamp=T0)
        store.append([first, second])
        assert [e.id for e in store.get_active_events()] == [first.id, second.id]

    def test_invalid_event_rejected_atomically(self):
        store = UnifiedEventStore()
        good = mood("Alice", "calm")
        bad = CharacterEvent.create(0, 0, T0, subkind=CharacterSubkind.OUTFIT_CHANGED, character="Alice")
        with pytest.raises(InvalidEventError):
            store.append([good, bad])
        assert store.get_active_events() == []

    def test_non_integer_timestamp_rejected(self):
        store = UnifiedEventStore()
        with pytest.raises(InvalidEventError):
            store.append([mood("Alice", "calm", timestamp="now")])

    def test_duplicate_id_rejected(self):
        store = UnifiedEventStore()
        event = mood("Alice", "calm")
        store.append([event])
        with pytest.raises(InvalidEventError):
            store.append([event])


class TestSoftDelete:

    def test_soft_delete_keeps_history(self):
        store = populated_store()
        target = store.get_active_events()[0]
        assert store.soft_delete(target.id) is True
        assert target.id not in [e.id for e in store.get_active_events()]
        assert store.get_event(target.id).deleted is True

    def test_unknown_id(self):
        assert populated_store().soft_delete("missing") is False

    def test_soft_delete_at_one_swipe(self):
        store = populated_store()
        assert store.soft_delete_at(1, 1) == 1
        assert [e.character for e in store.events_for_message(1, 0) if hasattr(e, "character")] == ["Bob"]

    def test_soft_delete_at_all_swipes_includes_narrative(self):
        store = populated_store()
        store.append_narrative([narrative("hello", ("conversation",), message_id=1)])
        assert store.soft_delete_at(1) == 4
        assert not store.has_events_at_message(1)

    def test_delete_after_message_drops_snapshots(self):
        store = populated_store()
        store.save_chapter_snapshot(0, 2, 0, tavern_projection())
        store.delete_events_after_message(1)
        assert store.last_message_with_events() == 1
        assert store.chapter_snapshots == []


class TestSwipeReindex:

    def test_reindex_after_deleting_swipe_zero(self):
        """Deleting swipe 0 at message 1 makes old swipe 1 the new swipe 0."""
        store = populated_store()
        store.mark_extracted(1, 1)
        store.reindex_swipes_after_deletion(1, 0)

        at_zero = store.events_for_message(1, 0)
        assert [e.character for e in at_zero] == ["Carol"]
        assert store.events_for_message(1, 1) == []
        assert store.is_extracted(1, 0)
        assert not store.is_extracted(1, 1)

    def test_reindex_shifts_snapshots(self):
        store = populated_store()
        store.save_chapter_snapshot(0, 1, 0, tavern_projection())
        store.save_chapter_snapshot(1, 1, 2, tavern_projection())
        store.reindex_swipes_after_deletion(1, 0)
        assert [(s.chapter_index, s.swipe_id) for s in store.chapter_snapshots] == [(1, 1)]

    def test_reindex_after_deleting_middle_swipe(self):
        """Deleting swipe 1 of 3 leaves swipe 0 alone and turns swipe 2 into swipe 1."""
        store = populated_store()
        store.append([appeared("Dave", message_id=1, swipe_id=2, timestamp=T1 + 7)])
        for swipe_id in (0, 1, 2):
            store.mark_extracted(1, swipe_id)
            store.save_chapter_snapshot(swipe_id, 1, swipe_id, tavern_projection())
        swipe_zero = store.events_for_message(1, 0)

        assert store.reindex_swipes_after_deletion(1, 1) == 1

        assert store.events_for_message(1, 0) == swipe_zero
        assert [e.character for e in store.events_for_message(1, 1)] == ["Dave"]
        assert store.events_for_message(1, 2) == []
        assert [(s.chapter_index, s.swipe_id) for s in store.chapter_snapshots] == [(0, 0), (2, 1)]
        assert store.is_extracted(1, 0) and store.is_extracted(1, 1)
        assert not store.is_extracted(1, 2)


class TestEditing:

    def test_update_event_resorts(self):
        store = populated_store()
        target = store.events_for_message(2, 0)[0]
        assert store.update_event(target.id, message_id=0, timestamp=T0 - 1) is True
        assert store.get_active_events()[0].id == target.id

    def test_update_unknown(self):
        assert populated_store().update_event("nope", message_id=3) is False

    def test_update_with_unknown_field(self):
        store = populated_store()
        target = store.get_active_events()[0]
        assert store.update_event(target.id, colour="red") is False

    def test_replace_at_message(self):
        store = populated_store()
        new_ids = store.replace_at_message(2, 0, [mood("Alice", "relieved", message_id=2, timestamp=T2)])
        active = store.events_for_message(2, 0)
        assert [e.id for e in active] == new_ids
        assert active[0].mood == "relieved"


class TestQueries:

    def test_events_up_to_message_follows_canonical_path(self):
        store = populated_store()
        names = lambda events: [e.character for e in events if hasattr(e, "character")]
        assert names(store.events_up_to_message(2, 0, canonical_from_chat([0, 1, 0]))) == ["Alice", "Carol", "Alice"]
        assert names(store.events_up_to_message(1, 1, always(0))) == ["Alice", "Carol"]

    def test_last_message_with_events(self):
        store = populated_store()
        assert store.last_message_with_events() == 2
        assert store.last_message_with_events(before=2) == 1
        assert UnifiedEventStore().last_message_with_events() == -1

    def test_relationship_events_for_pair(self):
        store = UnifiedEventStore()
        store.append([feeling("Bob", "Alice", "trust"), feeling("Alice", "Carol", "envy"),
                      status("alice", "BOB", "friendly")])
        assert len(store.relationship_events_for_pair(("Alice", "Bob"))) == 2

    def test_has_earlier_events_or_projections(self):
        store = UnifiedEventStore()
        assert not store.has_earlier_events_or_projections(3)
        store.set_initial_projection(tavern_projection())
        assert store.has_earlier_events_or_projections(0)

    def test_chapter_assignment(self):
        store = UnifiedEventStore()
        first = narrative("one", ("conversation",), message_id=1)
        second = narrative("two", ("conversation",), message_id=2)
        store.append_narrative([first, second])
        store.assign_events_to_chapter([first.id], 0)
        assert [e.id for e in store.narrative_events_for_chapter(0)] == [first.id]
        assert [e.id for e in store.current_chapter_events()] == [second.id]


class TestSnapshotsAndWatermark:

    def test_save_replaces_same_chapter(self):
        store = UnifiedEventStore()
        store.save_chapter_snapshot(1, 5, 0, tavern_projection())
        store.save_chapter_snapshot(0, 2, 0, tavern_projection())
        store.save_chapter_snapshot(1, 6, 0, tavern_projection())
        assert [(s.chapter_index, s.message_id) for s in store.chapter_snapshots] == [(0, 2), (1, 6)]

    def test_invalidate_from(self):
        store = UnifiedEventStore()
        store.save_chapter_snapshot(0, 2, 0, tavern_projection())
        store.save_chapter_snapshot(1, 6, 0, tavern_projection())
        assert store.invalidate_snapshots_from(6) == 1
        assert [s.message_id for s in store.chapter_snapshots] == [2]

    def test_watermark_only_moves_down(self):
        store = UnifiedEventStore()
        store.invalidate_projections_from(5)
        store.invalidate_projections_from(8)
        assert store.projection_invalid_from == 5
        assert store.is_projection_invalidated(5)
        assert not store.is_projection_invalidated(4)
        store.clear_projection_invalidation()
        assert not store.is_projection_invalidated(100)


class TestForecasts:

    def test_write_once_per_message_and_swipe(self):
        store = UnifiedEventStore()
        assert store.add_forecast("Riverside", {"today": "rain"}, 1, 0, T0) is not None
        assert store.add_forecast("riverside", {"today": "sun"}, 1, 0, T1) is None
        assert store.latest_forecast_for_area("RIVERSIDE") == {"today": "rain"}

    def test_latest_per_area(self):
        store = UnifiedEventStore()
        store.append([forecast("Riverside", {"v": 1}, message_id=1), forecast("Riverside", {"v": 2}, message_id=3)])
        assert store.all_forecasts() == {"Riverside": {"v": 2}}
