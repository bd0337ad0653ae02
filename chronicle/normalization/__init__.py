"""
Normalization Layer

RESPONSIBILITY: Turn extraction candidates into the minimal set of state
events that actually change the projected state
ALLOWED INPUTS: Candidate state events, the event store (read), projections
OUTPUTS: Filtered / corrected state events, synthesized diff events

WHAT THIS LAYER MUST NOT DO:
============================
- Decide which swipe is canonical (the caller supplies the resolver)
- Derive milestones or relationship status
- Mutate the store, except through replace_state_events_for_message

BOUNDARY ENFORCEMENT:
=====================
Deduplication is always checked against the state BEFORE the message being
written, never against the message's own previous events. A re-extraction
therefore produces the same result as the first extraction.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional

from ..contracts.base import OUTFIT_SLOTS, derive_pair, pair_key, sort_pair
from ..contracts.events import (
    CharacterEvent, CharacterSubkind, DirectionalRelationshipEvent,
    InitialTimeEvent, LocationMovedEvent, LocationPropEvent, LocationSubkind,
    RelationshipSubkind, StatusChangedEvent, TimeEvent,
)
from ..contracts.projection import CharacterProjection, ProjectedState
from ..contracts.temporal import TimeDelta
from ..observability import AuditEventType, LogCollector, get_logger
from ..temporal.clock import LogicalClock
from ..temporal.event_log import CanonicalSwipeResolver, UnifiedEventStore
from ..temporal.replay import ProjectionEngine

logger = get_logger(__name__)

_ABSENT = object()


# =============================================================================
# PER-EVENT RULES
# =============================================================================

def _set_rule(present: bool, add: bool) -> bool:
    """Keep an add only when absent, a remove only when present."""
    return not present if add else present


def _dedupe_prop(event: LocationPropEvent, projection: ProjectedState):
    props = projection.location.props if projection.location else ()
    add = event.subkind == LocationSubkind.PROP_ADDED
    return event if _set_rule(event.prop in props, add) else None


def _dedupe_character(event: CharacterEvent, projection: ProjectedState):
    character = projection.characters.get(event.character)
    subkind = event.subkind

    if subkind in (CharacterSubkind.MOOD_ADDED, CharacterSubkind.MOOD_REMOVED):
        moods = character.mood if character else ()
        present = (event.mood or "") in moods
        return event if _set_rule(present, subkind == CharacterSubkind.MOOD_ADDED) else None

    if subkind in (CharacterSubkind.PHYSICAL_STATE_ADDED, CharacterSubkind.PHYSICAL_STATE_REMOVED):
        states = character.physical_state if character else ()
        present = (event.physical_state or "") in states
        return event if _set_rule(present, subkind == CharacterSubkind.PHYSICAL_STATE_ADDED) else None

    if subkind == CharacterSubkind.OUTFIT_CHANGED and event.slot is not None:
        current = character.outfit.get(event.slot) if character else None
        if event.new_value == current:
            return None
        return replace(event, previous_value=current)

    if subkind == CharacterSubkind.POSITION_CHANGED:
        current = character.position if character else _ABSENT
        return None if event.new_value == current else event

    if subkind == CharacterSubkind.ACTIVITY_CHANGED:
        current = character.activity if character else _ABSENT
        return None if event.new_value == current else event

    # appeared / departed are explicit narrative beats
    return event


_ATTITUDE_RULES = {
    RelationshipSubkind.FEELING_ADDED: ("feelings", True),
    RelationshipSubkind.FEELING_REMOVED: ("feelings", False),
    RelationshipSubkind.SECRET_ADDED: ("secrets", True),
    RelationshipSubkind.SECRET_REMOVED: ("secrets", False),
    RelationshipSubkind.WANT_ADDED: ("wants", True),
    RelationshipSubkind.WANT_REMOVED: ("wants", False),
}


def _dedupe_directional(event: DirectionalRelationshipEvent, projection: ProjectedState):
    pair = derive_pair(event.from_character, event.toward_character)
    if pair is None:
        return None
    relationship = projection.relationships.get(pair_key(*pair))
    field_name, add = _ATTITUDE_RULES[event.subkind]
    if relationship is None:
        values = ()
    else:
        attitude = relationship.a_to_b if relationship.holds_a_to_b(event.from_character) else relationship.b_to_a
        values = getattr(attitude, field_name)
    return event if _set_rule(event.value in values, add) else None


def _dedupe_status(event: StatusChangedEvent, projection: ProjectedState):
    if not event.pair or not event.pair[0] or not event.pair[1]:
        return None
    relationship = projection.relationships.get(pair_key(*sort_pair(*event.pair)))
    if relationship is not None and event.new_status == relationship.status:
        return None
    return event


def deduplicate_event(event, projection: ProjectedState):
    """
    Return the event (possibly corrected) if it would change `projection`,
    or None if it is redundant.
    """
    if isinstance(event, LocationPropEvent):
        return _dedupe_prop(event, projection)
    if isinstance(event, CharacterEvent):
        return _dedupe_character(event, projection)
    if isinstance(event, DirectionalRelationshipEvent):
        return _dedupe_directional(event, projection)
    if isinstance(event, StatusChangedEvent):
        return _dedupe_status(event, projection)
    # time, moved and forecast events always pass
    return event


# =============================================================================
# DEDUPLICATOR
# =============================================================================

@dataclass(frozen=True)
class DeduplicationResult:
    kept: tuple
    dropped: tuple
    corrected: int = 0


class Deduplicator:
    """
    Projection-aware filter for extraction candidates.

    GUARANTEES:
    ===========
    1. Idempotent - deduplicating an already deduplicated batch is a no-op
    2. Outfit events carry the projected previous value
    3. Never raises for well-formed candidates
    """

    def __init__(self, collector: Optional[LogCollector] = None):
        self._collector = collector

    def check(self, store: UnifiedEventStore, message_id: int, swipe_id: int,
              candidates: Iterable, canonical_swipe_of: CanonicalSwipeResolver) -> DeduplicationResult:
        projection = ProjectionEngine(store).project_before(message_id, canonical_swipe_of)
        kept, dropped, corrected = [], [], 0
        for candidate in candidates:
            result = deduplicate_event(candidate, projection)
            if result is None:
                dropped.append(candidate)
                continue
            if result is not candidate:
                corrected += 1
            kept.append(result)

        if dropped:
            logger.debug(
                "dropped %d redundant candidates", len(dropped),
                extra={"message_id": message_id, "swipe_id": swipe_id, "count": len(dropped)},
            )
        return DeduplicationResult(kept=tuple(kept), dropped=tuple(dropped), corrected=corrected)

    def deduplicate(self, store: UnifiedEventStore, message_id: int, swipe_id: int,
                    candidates: Iterable, canonical_swipe_of: CanonicalSwipeResolver) -> List:
        return list(self.check(store, message_id, swipe_id, candidates, canonical_swipe_of).kept)

    def replace_state_events_for_message(self, store: UnifiedEventStore, message_id: int, swipe_id: int,
                                         candidates: Iterable,
                                         canonical_swipe_of: CanonicalSwipeResolver) -> List[str]:
        """Re-extraction: retire the message's events, then append the deduplicated candidates."""
        candidates = list(candidates)
        kept = self.deduplicate(store, message_id, swipe_id, candidates, canonical_swipe_of)
        new_ids = store.replace_at_message(message_id, swipe_id, kept)
        if self._collector is not None:
            self._collector.record(
                AuditEventType.EVENTS_APPENDED,
                message_id=message_id,
                swipe_id=swipe_id,
                offered=len(candidates),
                appended=len(new_ids),
            )
        return new_ids


def deduplicate(store: UnifiedEventStore, message_id: int, swipe_id: int,
                candidates: Iterable, canonical_swipe_of: CanonicalSwipeResolver) -> List:
    return Deduplicator().deduplicate(store, message_id, swipe_id, candidates, canonical_swipe_of)


def replace_state_events_for_message(store: UnifiedEventStore, message_id: int, swipe_id: int,
                                     candidates: Iterable,
                                     canonical_swipe_of: CanonicalSwipeResolver) -> List[str]:
    return Deduplicator().replace_state_events_for_message(
        store, message_id, swipe_id, candidates, canonical_swipe_of
    )


# =============================================================================
# DIFF SYNTHESIS
# =============================================================================

def _diff_set(previous: Iterable[str], current: Iterable[str]):
    previous, current = list(previous), list(current)
    added = [value for value in dict.fromkeys(current) if value not in previous]
    removed = [value for value in dict.fromkeys(previous) if value not in current]
    return added, removed


def generate_state_events_from_diff(
    message_id: int,
    swipe_id: int,
    prev: Optional[ProjectedState],
    curr: ProjectedState,
    clock: Optional[LogicalClock] = None,
) -> List:
    """
    Synthesize the state events that turn `prev` into `curr`.

    All events share one timestamp. Relationships and props are not diffed;
    they arrive as their own events.
    """
    clock = clock or LogicalClock()
    timestamp = clock.now_ms()
    prev = prev or ProjectedState.empty()
    events: List = []

    def stamp(cls, **fields):
        events.append(cls.create(message_id, swipe_id, timestamp, **fields))

    if curr.time is not None and not curr.time.same_instant(prev.time):
        if prev.time is None:
            stamp(InitialTimeEvent, initial_time=curr.time)
        else:
            stamp(TimeEvent, delta=TimeDelta.between(prev.time, curr.time))

    old_loc, new_loc = prev.location, curr.location
    if new_loc is not None and (
        old_loc is None
        or (old_loc.area, old_loc.place, old_loc.position) != (new_loc.area, new_loc.place, new_loc.position)
    ):
        stamp(
            LocationMovedEvent,
            new_area=new_loc.area,
            new_place=new_loc.place,
            new_position=new_loc.position,
            previous_area=old_loc.area if old_loc else None,
            previous_place=old_loc.place if old_loc else None,
            previous_position=old_loc.position if old_loc else None,
        )

    for name, char in curr.characters.items():
        before = prev.characters.get(name)

        def character(subkind, **fields):
            stamp(CharacterEvent, subkind=subkind, character=name, **fields)

        if before is None:
            character(CharacterSubkind.APPEARED)
        # appeared characters start at the default position
        if char.position and char.position != (before or CharacterProjection(name)).position:
            character(CharacterSubkind.POSITION_CHANGED, new_value=char.position,
                      previous_value=before.position if before else None)
        if before is None or char.activity != before.activity:
            if before is not None or char.activity is not None:
                character(CharacterSubkind.ACTIVITY_CHANGED, new_value=char.activity,
                          previous_value=before.activity if before else None)

        added, removed = _diff_set(before.mood if before else (), char.mood)
        for mood in added:
            character(CharacterSubkind.MOOD_ADDED, mood=mood)
        for mood in removed:
            character(CharacterSubkind.MOOD_REMOVED, mood=mood)

        added, removed = _diff_set(before.physical_state if before else (), char.physical_state)
        for state in added:
            character(CharacterSubkind.PHYSICAL_STATE_ADDED, physical_state=state)
        for state in removed:
            character(CharacterSubkind.PHYSICAL_STATE_REMOVED, physical_state=state)

        for slot in OUTFIT_SLOTS:
            old_item = before.outfit.get(slot) if before else None
            new_item = char.outfit.get(slot)
            if old_item != new_item:
                character(CharacterSubkind.OUTFIT_CHANGED, slot=slot,
                          new_value=new_item, previous_value=old_item)

    for name in prev.characters:
        if name not in curr.characters:
            stamp(CharacterEvent, subkind=CharacterSubkind.DEPARTED, character=name)

    return events


__all__ = [
    "Deduplicator", "DeduplicationResult", "deduplicate", "deduplicate_event",
    "replace_state_events_for_message", "generate_state_events_from_diff",
]
