"""
Milestone Tests
===============

INVARIANTS TESTED:
1. For each pair and milestone type, the earliest event wins
2. Recomputing from a message keeps earlier tags and seeds from them
3. Deleting a milestone event lets the next qualifying event take it over
4. Status is read off the milestone ladder
"""

from dataclasses import replace

import pytest

from chronicle.contracts.base import MilestoneType, RelationshipStatus
from chronicle.contracts.events import AffectedPair, RelationshipChange
from chronicle.core.milestones import (
    all_pairs, compute_status_from_milestones, event_type_for_milestone,
    milestone_for_event_type, milestones_for_event, milestones_for_pair,
    project_relationship, promote_next_event_for_milestone, recompute_first_for,
    reproject_relationships, tag_first_for,
)
from chronicle.temporal.event_log import UnifiedEventStore

from tests.fixtures import T0, narrative


def _laughs_and_kiss():
    return [
        narrative("joke at the bar", ("laugh",), message_id=1, timestamp=T0 + 1),
        narrative("another joke", ("laugh", "conversation"), message_id=2, timestamp=T0 + 2),
        narrative("a kiss by the door", ("intimate_kiss",), message_id=3, timestamp=T0 + 3),
    ]


def _store_with(events) -> UnifiedEventStore:
    store = UnifiedEventStore()
    store.append_narrative(events)
    return store


def _first_for(store, message_id):
    event = store.narrative_events_for_message(message_id)[0]
    return tuple(getattr(m, "value", m) for m in event.affected_pairs[0].first_for)


class TestTable:

    def test_mapping_lookups(self):
        assert milestone_for_event_type("laugh") == MilestoneType.FIRST_LAUGH
        assert milestone_for_event_type("conversation") is None
        assert event_type_for_milestone(MilestoneType.FIRST_KISS) == "intimate_kiss"
        assert event_type_for_milestone("first_meeting") is None

    @pytest.mark.parametrize("event_type, milestone", [
        ("forgiveness", MilestoneType.RECONCILIATION),
        ("argument", MilestoneType.FIRST_CONFLICT),
        ("combat", MilestoneType.FIRST_CONFLICT),
        ("flirt", MilestoneType.FIRST_FLIRT),
        ("supportive", MilestoneType.FIRST_SUPPORT),
        ("emotionally_intimate", MilestoneType.EMOTIONAL_INTIMACY),
    ])
    def test_conflict_and_emotional_types(self, event_type, milestone):
        assert milestone_for_event_type(event_type) == milestone

    def test_shared_milestone_reverses_to_first_type(self):
        assert event_type_for_milestone(MilestoneType.FIRST_CONFLICT) == "argument"


class TestFirstFor:

    def test_first_occurrence_wins(self):
        store = _store_with(_laughs_and_kiss())
        assert recompute_first_for(store) == 2
        assert _first_for(store, 1) == ("first_laugh",)
        assert _first_for(store, 2) == ()
        assert _first_for(store, 3) == ("first_kiss",)

    def test_recompute_is_idempotent(self):
        store = _store_with(_laughs_and_kiss())
        recompute_first_for(store)
        assert recompute_first_for(store) == 0

    def test_pairs_are_tracked_separately(self):
        store = _store_with([
            narrative("laugh with Bob", ("laugh",), message_id=1),
            narrative("laugh with Carol", ("laugh",), pair=("Carol", "Alice"), message_id=2),
        ])
        recompute_first_for(store)
        assert _first_for(store, 1) == ("first_laugh",)
        assert _first_for(store, 2) == ("first_laugh",)

    def test_partial_recompute_seeds_from_earlier_tags(self):
        store = _store_with(_laughs_and_kiss())
        recompute_first_for(store)
        recompute_first_for(store, from_message_id=2)
        assert _first_for(store, 1) == ("first_laugh",)
        assert _first_for(store, 2) == ()

    def test_partial_recompute_never_touches_earlier_events(self):
        """Untagged earlier events stay untagged; the restart point claims the milestone."""
        store = _store_with(_laughs_and_kiss())
        recompute_first_for(store, from_message_id=2)
        assert _first_for(store, 1) == ()
        assert _first_for(store, 2) == ("first_laugh",)

    def test_affected_pairs_filter(self):
        store = _store_with([
            narrative("laugh with Bob", ("laugh",), message_id=1),
            narrative("laugh with Carol", ("laugh",), pair=("Alice", "Carol"), message_id=2),
        ])
        recompute_first_for(store, affected_pairs=["alice|carol"])
        assert _first_for(store, 1) == ()
        assert _first_for(store, 2) == ("first_laugh",)

    def test_descriptions_kept_only_for_retained_milestones(self):
        event = narrative("joke", ("laugh",), message_id=1)
        described = AffectedPair(
            pair=("Alice", "Bob"),
            milestone_descriptions={"first_laugh": "she snorted", "first_kiss": "stale"},
        )
        tagged = tag_first_for([replace(event, affected_pairs=(described,))])[0]
        assert tagged.affected_pairs[0].milestone_descriptions == {MilestoneType.FIRST_LAUGH: "she snorted"}


class TestPromotion:

    def test_next_event_takes_over(self):
        events = _laughs_and_kiss()
        store = _store_with(events)
        recompute_first_for(store)
        store.soft_delete(events[0].id)

        assert promote_next_event_for_milestone(store, ("Bob", "Alice"), MilestoneType.FIRST_LAUGH) is True
        assert _first_for(store, 2) == ("first_laugh",)

    def test_nothing_to_promote(self):
        events = _laughs_and_kiss()
        store = _store_with(events)
        recompute_first_for(store)
        store.soft_delete(events[2].id)
        assert promote_next_event_for_milestone(store, ("Alice", "Bob"), MilestoneType.FIRST_KISS) is False

    def test_untriggerable_milestone(self):
        store = _store_with(_laughs_and_kiss())
        assert promote_next_event_for_milestone(store, ("Alice", "Bob"), "first_meeting") is False


class TestStatusLadder:

    @pytest.mark.parametrize("milestones, expected", [
        ((), RelationshipStatus.STRANGERS),
        (("first_meeting",), RelationshipStatus.ACQUAINTANCES),
        (("first_laugh",), RelationshipStatus.FRIENDLY),
        (("first_kiss", "first_laugh"), RelationshipStatus.CLOSE),
        (("marriage", "betrayal"), RelationshipStatus.INTIMATE),
        (("betrayal",), RelationshipStatus.HOSTILE),
        (("promise_broken", "reconciliation"), RelationshipStatus.STRAINED),
        (("major_argument",), RelationshipStatus.STRAINED),
        (("first_conflict", "reconciliation"), RelationshipStatus.STRAINED),
        (("first_meeting", "betrayal"), RelationshipStatus.HOSTILE),
    ])
    def test_ladder(self, milestones, expected):
        assert compute_status_from_milestones(milestones) == expected

    def test_accepts_enum_members(self):
        assert compute_status_from_milestones([MilestoneType.FIRST_KISS]) == RelationshipStatus.CLOSE


class TestDerivedRelationship:

    def test_project_relationship(self):
        events = _laughs_and_kiss()
        events[0] = narrative(
            "joke at the bar", ("laugh",), message_id=1, timestamp=T0 + 1,
            changes=(RelationshipChange("Bob", "Alice", "amused"), RelationshipChange("Alice", "Bob", "warm")),
        )
        store = _store_with(events)
        recompute_first_for(store)

        derived = project_relationship(store, ("bob", "alice"))
        assert derived.pair == ("alice", "bob")
        assert derived.status == RelationshipStatus.CLOSE
        assert derived.a_to_b.feelings == ("warm",)
        assert derived.b_to_a.feelings == ("amused",)
        assert derived.milestone_event_ids == (events[0].id, events[2].id)
        assert derived.milestones == ("first_laugh", "first_kiss")

    def test_forgiveness_after_betrayal_is_strained(self):
        store = _store_with([
            narrative("he sold her out", ("betrayal",), message_id=1, timestamp=T0 + 1),
            narrative("she forgives him", ("forgiveness",), message_id=2, timestamp=T0 + 2),
        ])
        recompute_first_for(store)
        derived = project_relationship(store, ("Alice", "Bob"))
        assert derived.milestones == ("betrayal", "reconciliation")
        assert derived.status == RelationshipStatus.STRAINED

    def test_argument_and_combat_share_first_conflict(self):
        store = _store_with([
            narrative("shouting match", ("argument",), message_id=1, timestamp=T0 + 1),
            narrative("a brawl", ("combat",), message_id=2, timestamp=T0 + 2),
        ])
        recompute_first_for(store)
        assert _first_for(store, 1) == ("first_conflict",)
        assert _first_for(store, 2) == ()
        assert project_relationship(store, ("Alice", "Bob")).status == RelationshipStatus.STRAINED

    def test_unknown_pair_is_strangers(self):
        derived = project_relationship(UnifiedEventStore(), ("Alice", "Zed"))
        assert derived.status == RelationshipStatus.STRANGERS
        assert derived.milestone_event_ids == ()

    def test_milestone_records(self):
        store = _store_with(_laughs_and_kiss())
        recompute_first_for(store)
        records = milestones_for_pair(store, ("Alice", "Bob"))
        assert [(r.milestone_type, r.message_id) for r in records] == [("first_laugh", 1), ("first_kiss", 3)]

        at_three = milestones_for_event(store, 3)
        assert [r.milestone_type for r in at_three] == ["first_kiss"]
        assert milestones_for_event(store, 2) == []
        assert milestones_for_event(store, 9) == []

    def test_all_pairs_and_reprojection(self):
        store = _store_with([
            narrative("hello", ("conversation",), message_id=1),
            narrative("hi", ("laugh",), pair=("Carol", "Alice"), message_id=2),
        ])
        recompute_first_for(store)
        assert all_pairs(store) == [("Alice", "Bob"), ("Alice", "Carol")]
        statuses = [r.status for r in reproject_relationships(store)]
        assert statuses == [RelationshipStatus.STRANGERS, RelationshipStatus.FRIENDLY]
