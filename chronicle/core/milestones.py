"""
Milestone Derivation
====================

Relationship milestones are DERIVED from narrative events, never extracted.

A milestone is the first event, per character pair, carrying an event type
that maps to that milestone. The tag lives on the event's AffectedPair
(first_for). Relationship status is then read off the set of milestones a
pair has reached.

INVARIANTS:
- For each pair and milestone type, at most one active event carries it
- The earliest qualifying event (message_id, timestamp) wins
- Events before a recompute's start point are never modified
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from ..contracts.base import (
    EVENT_TYPE_TO_MILESTONE, MilestoneType, Pair, RelationshipStatus,
    coerce_enum, pair_key, sort_pair,
)
from ..contracts.events import AffectedPair, NarrativeEvent
from ..contracts.projection import Attitude
from ..temporal.event_log import UnifiedEventStore


def _value(item) -> str:
    return getattr(item, "value", item)


_MILESTONE_BY_EVENT_TYPE: Dict[str, MilestoneType] = {
    event_type.value: milestone for event_type, milestone in EVENT_TYPE_TO_MILESTONE.items()
}


def milestone_for_event_type(event_type) -> Optional[MilestoneType]:
    return _MILESTONE_BY_EVENT_TYPE.get(_value(event_type))


def event_type_for_milestone(milestone) -> Optional[str]:
    """First event type (table order) that triggers `milestone`."""
    wanted = _value(milestone)
    for event_type, mapped in _MILESTONE_BY_EVENT_TYPE.items():
        if mapped.value == wanted:
            return event_type
    return None


# =============================================================================
# FIRST-FOR TAGGING
# =============================================================================

def _retag(affected: AffectedPair, event_types: Tuple[str, ...], seen: Set[str]) -> AffectedPair:
    first_for = []
    descriptions = {}
    for event_type in event_types:
        milestone = milestone_for_event_type(event_type)
        if milestone is None or milestone.value in seen:
            continue
        first_for.append(milestone)
        seen.add(milestone.value)
        for key, text in affected.milestone_descriptions.items():
            if _value(key) == milestone.value and text:
                descriptions[milestone] = text
    return replace(affected, first_for=tuple(first_for), milestone_descriptions=descriptions)


def recompute_first_for(store: UnifiedEventStore, from_message_id: int = 0,
                        affected_pairs: Optional[Iterable[str]] = None) -> int:
    """
    Re-derive first_for tags from `from_message_id` onward.

    Tags on earlier events are kept and seed the per-pair seen set.
    `affected_pairs` (pair keys) limits the pass to those pairs.
    Returns the number of narrative events rewritten.
    """
    only: Optional[FrozenSet[str]] = frozenset(affected_pairs) if affected_pairs is not None else None
    seen: Dict[str, Set[str]] = {}
    rewritten = 0

    for event in store.get_active_narrative_events():
        if event.message_id < from_message_id:
            for affected in event.affected_pairs:
                if only is not None and affected.key not in only:
                    continue
                seen.setdefault(affected.key, set()).update(_value(m) for m in affected.first_for)
            continue

        new_pairs = []
        for affected in event.affected_pairs:
            if only is not None and affected.key not in only:
                new_pairs.append(affected)
                continue
            new_pairs.append(_retag(affected, event.event_types, seen.setdefault(affected.key, set())))

        new_pairs = tuple(new_pairs)
        if new_pairs != event.affected_pairs:
            store.replace_narrative_event(replace(event, affected_pairs=new_pairs))
            rewritten += 1
    return rewritten


def tag_first_for(events: List[NarrativeEvent]) -> List[NarrativeEvent]:
    """First-for pass over a detached, already sorted event list (migrations)."""
    seen: Dict[str, Set[str]] = {}
    tagged = []
    for event in events:
        pairs = tuple(
            _retag(affected, event.event_types, seen.setdefault(affected.key, set()))
            for affected in event.affected_pairs
        )
        tagged.append(replace(event, affected_pairs=pairs))
    return tagged


def promote_next_event_for_milestone(store: UnifiedEventStore, pair: Pair, milestone) -> bool:
    """
    Hand a lost milestone to the next qualifying event for the pair.

    Used after the event that carried it was deleted. Returns False when the
    milestone has no triggering event type or no event qualifies.
    """
    trigger = event_type_for_milestone(milestone)
    if trigger is None:
        return False
    key = pair_key(*pair)
    wanted = _value(milestone)

    for event in store.get_active_narrative_events():
        if trigger not in {_value(t) for t in event.event_types}:
            continue
        affected = event.find_pair(key)
        if affected is None:
            continue
        if wanted in {_value(m) for m in affected.first_for}:
            continue
        promoted = replace(affected, first_for=affected.first_for + (coerce_enum(MilestoneType, wanted),))
        pairs = tuple(promoted if p is affected else p for p in event.affected_pairs)
        return store.replace_narrative_event(replace(event, affected_pairs=pairs))
    return False


# =============================================================================
# STATUS LADDER
# =============================================================================

_INTIMATE = ("first_penetrative", "first_oral", "first_climax", "marriage", "promised_exclusivity")
_CLOSE = (
    "first_heated", "first_kiss", "emotional_intimacy",
    "first_vulnerability", "confession", "first_i_love_you",
)
_FRIENDLY = (
    "first_laugh", "first_gift", "first_shared_meal", "first_shared_activity",
    "first_helped", "first_outing", "first_embrace", "first_touch",
)


def compute_status_from_milestones(milestones: Iterable) -> RelationshipStatus:
    reached = {_value(m) for m in milestones}

    if reached.intersection(_INTIMATE):
        return RelationshipStatus.INTIMATE
    if reached.intersection(_CLOSE):
        return RelationshipStatus.CLOSE
    if reached.intersection(_FRIENDLY):
        return RelationshipStatus.FRIENDLY
    if "betrayal" in reached or "promise_broken" in reached:
        if "reconciliation" in reached:
            return RelationshipStatus.STRAINED
        return RelationshipStatus.HOSTILE
    if "first_conflict" in reached or "major_argument" in reached:
        # reconciliation does not lift a plain conflict above strained
        return RelationshipStatus.STRAINED
    if "first_meeting" in reached:
        return RelationshipStatus.ACQUAINTANCES
    return RelationshipStatus.STRANGERS


# =============================================================================
# RELATIONSHIP PROJECTION (from narrative events)
# =============================================================================

@dataclass(frozen=True)
class MilestoneRecord:
    milestone_type: str
    pair: Pair
    event_id: str
    message_id: int
    description: Optional[str] = None


@dataclass(frozen=True)
class DerivedRelationship:
    pair: Pair
    status: RelationshipStatus = RelationshipStatus.STRANGERS
    a_to_b: Attitude = Attitude()
    b_to_a: Attitude = Attitude()
    milestone_event_ids: Tuple[str, ...] = ()
    milestones: Tuple[str, ...] = field(default_factory=tuple)


def _description(affected: AffectedPair, milestone) -> Optional[str]:
    for key, text in affected.milestone_descriptions.items():
        if _value(key) == _value(milestone):
            return text
    return None


def milestones_for_pair(store: UnifiedEventStore, pair: Pair) -> List[MilestoneRecord]:
    key = pair_key(*pair)
    records = []
    for event in store.narrative_events_for_pair(pair):
        affected = event.find_pair(key)
        for milestone in affected.first_for:
            records.append(MilestoneRecord(
                milestone_type=_value(milestone),
                pair=affected.pair,
                event_id=event.id,
                message_id=event.message_id,
                description=_description(affected, milestone),
            ))
    return records


def milestones_for_event(store: UnifiedEventStore, message_id: int) -> List[MilestoneRecord]:
    """Milestones carried by the first active narrative event at a message."""
    events = store.narrative_events_for_message(message_id)
    if not events:
        return []
    event = events[0]
    return [
        MilestoneRecord(
            milestone_type=_value(milestone),
            pair=affected.pair,
            event_id=event.id,
            message_id=event.message_id,
            description=_description(affected, milestone),
        )
        for affected in event.affected_pairs
        for milestone in affected.first_for
    ]


def project_relationship(store: UnifiedEventStore, pair: Pair) -> DerivedRelationship:
    """
    Relationship as implied by narrative events alone.

    Milestones decide the status; a pair with shared events but no
    milestone stays strangers. Feelings are the union of recorded changes.
    """
    first, second = sort_pair(*pair)
    key = pair_key(first, second)
    events = store.narrative_events_for_pair((first, second))
    if not events:
        return DerivedRelationship(pair=(first, second))

    a_to_b: List[str] = []
    b_to_a: List[str] = []
    milestone_event_ids: List[str] = []
    reached: List[str] = []

    for event in events:
        affected = event.find_pair(key)
        if affected.first_for:
            milestone_event_ids.append(event.id)
            reached.extend(_value(m) for m in affected.first_for)
        for change in affected.changes:
            target = a_to_b if change.from_character.lower() == first.lower() else b_to_a
            if change.feeling not in target:
                target.append(change.feeling)

    return DerivedRelationship(
        pair=(first, second),
        status=compute_status_from_milestones(reached),
        a_to_b=Attitude(feelings=tuple(a_to_b)),
        b_to_a=Attitude(feelings=tuple(b_to_a)),
        milestone_event_ids=tuple(milestone_event_ids),
        milestones=tuple(dict.fromkeys(reached)),
    )


def all_pairs(store: UnifiedEventStore) -> List[Pair]:
    """Distinct pairs touched by active narrative events, in first-seen order."""
    pairs: Dict[str, Pair] = {}
    for event in store.get_active_narrative_events():
        for affected in event.affected_pairs:
            pairs.setdefault(affected.key, affected.pair)
    return list(pairs.values())


def reproject_relationships(store: UnifiedEventStore) -> List[DerivedRelationship]:
    return [project_relationship(store, pair) for pair in all_pairs(store)]
