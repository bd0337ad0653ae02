"""
Event Contracts
===============

Immutable event records exchanged between layers.

Two families:
- STATE EVENTS: fine-grained transitions folded into a ProjectedState
  (time, location, character, relationship, forecast)
- NARRATIVE EVENTS: summarized interactions carrying event types and
  per-pair milestone annotations

INVARIANTS:
===========
- Events are frozen; soft delete and swipe reindexing produce replacements
- Every event carries (id, message_id, swipe_id, timestamp)
- The (kind, subkind) vocabulary is closed and enumerated in KIND_SUBKINDS
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple
import uuid

from .base import (
    OutfitSlot, RelationshipStatus, Pair, pair_key, derive_pair, sort_pair
)
from .temporal import NarrativeDateTime, TimeDelta


def new_event_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# KIND VOCABULARY
# =============================================================================

class EventKind(str, Enum):
    TIME_INITIAL = "time_initial"
    TIME = "time"
    LOCATION = "location"
    CHARACTER = "character"
    RELATIONSHIP = "relationship"
    FORECAST_GENERATED = "forecast_generated"


class LocationSubkind(str, Enum):
    MOVED = "moved"
    PROP_ADDED = "prop_added"
    PROP_REMOVED = "prop_removed"


class CharacterSubkind(str, Enum):
    APPEARED = "appeared"
    DEPARTED = "departed"
    POSITION_CHANGED = "position_changed"
    ACTIVITY_CHANGED = "activity_changed"
    MOOD_ADDED = "mood_added"
    MOOD_REMOVED = "mood_removed"
    PHYSICAL_STATE_ADDED = "physical_state_added"
    PHYSICAL_STATE_REMOVED = "physical_state_removed"
    OUTFIT_CHANGED = "outfit_changed"


class RelationshipSubkind(str, Enum):
    FEELING_ADDED = "feeling_added"
    FEELING_REMOVED = "feeling_removed"
    SECRET_ADDED = "secret_added"
    SECRET_REMOVED = "secret_removed"
    WANT_ADDED = "want_added"
    WANT_REMOVED = "want_removed"
    STATUS_CHANGED = "status_changed"


# Every (kind, subkind) a transition handler must exist for.
KIND_SUBKINDS: Dict[EventKind, Tuple[Optional[Enum], ...]] = {
    EventKind.TIME_INITIAL: (None,),
    EventKind.TIME: (None,),
    EventKind.LOCATION: tuple(LocationSubkind),
    EventKind.CHARACTER: tuple(CharacterSubkind),
    EventKind.RELATIONSHIP: tuple(RelationshipSubkind),
    EventKind.FORECAST_GENERATED: (None,),
}


# =============================================================================
# STATE EVENTS
# =============================================================================

class _EventRecord:
    """
    Shared behaviour for every event dataclass.

    Subclasses declare (id, message_id, swipe_id, timestamp) first and
    `deleted` last.
    """
    kind: ClassVar[EventKind]
    subkind: ClassVar[Optional[Enum]] = None

    @classmethod
    def create(cls, message_id: int, swipe_id: int, timestamp: int, **fields):
        return cls(
            id=new_event_id(),
            message_id=message_id,
            swipe_id=swipe_id,
            timestamp=timestamp,
            **fields
        )

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.message_id, self.timestamp)

    def soft_deleted(self):
        return replace(self, deleted=True)

    def with_swipe(self, swipe_id: int):
        return replace(self, swipe_id=swipe_id)


@dataclass(frozen=True)
class InitialTimeEvent(_EventRecord):
    """Absolute clock anchor."""
    kind: ClassVar[EventKind] = EventKind.TIME_INITIAL

    id: str
    message_id: int
    swipe_id: int
    timestamp: int
    initial_time: NarrativeDateTime
    deleted: bool = False


@dataclass(frozen=True)
class TimeEvent(_EventRecord):
    """Signed delta from the preceding folded time. Never absolute."""
    kind: ClassVar[EventKind] = EventKind.TIME

    id: str
    message_id: int
    swipe_id: int
    timestamp: int
    delta: TimeDelta
    deleted: bool = False


@dataclass(frozen=True)
class LocationMovedEvent(_EventRecord):
    kind: ClassVar[EventKind] = EventKind.LOCATION
    subkind: ClassVar[Optional[Enum]] = LocationSubkind.MOVED

    id: str
    message_id: int
    swipe_id: int
    timestamp: int
    new_area: str
    new_place: str
    new_position: str
    previous_area: Optional[str] = None
    previous_place: Optional[str] = None
    previous_position: Optional[str] = None
    deleted: bool = False


@dataclass(frozen=True)
class LocationPropEvent(_EventRecord):
    kind: ClassVar[EventKind] = EventKind.LOCATION

    id: str
    message_id: int
    swipe_id: int
    timestamp: int
    subkind: LocationSubkind = field()
    prop: str
    deleted: bool = False


@dataclass(frozen=True)
class CharacterEvent(_EventRecord):
    """
    One change to one present character.

    Which optional field is meaningful depends on subkind:
    new_value/previous_value for position, activity and outfit (with slot),
    mood for mood_*, physical_state for physical_state_*.
    """
    kind: ClassVar[EventKind] = EventKind.CHARACTER

    id: str
    message_id: int
    swipe_id: int
    timestamp: int
    subkind: CharacterSubkind = field()
    character: str
    new_value: Optional[str] = None
    previous_value: Optional[str] = None
    mood: Optional[str] = None
    physical_state: Optional[str] = None
    slot: Optional[OutfitSlot] = None
    deleted: bool = False


@dataclass(frozen=True)
class DirectionalRelationshipEvent(_EventRecord):
    """Feeling/secret/want held by from_character toward toward_character."""
    kind: ClassVar[EventKind] = EventKind.RELATIONSHIP

    id: str
    message_id: int
    swipe_id: int
    timestamp: int
    subkind: RelationshipSubkind = field()
    from_character: str
    toward_character: str
    value: str
    deleted: bool = False

    @property
    def pair(self) -> Optional[Pair]:
        return derive_pair(self.from_character, self.toward_character)


@dataclass(frozen=True)
class StatusChangedEvent(_EventRecord):
    kind: ClassVar[EventKind] = EventKind.RELATIONSHIP
    subkind: ClassVar[Optional[Enum]] = RelationshipSubkind.STATUS_CHANGED

    id: str
    message_id: int
    swipe_id: int
    timestamp: int
    pair: Pair
    new_status: RelationshipStatus
    previous_status: Optional[RelationshipStatus] = None
    deleted: bool = False

    def __post_init__(self):
        object.__setattr__(self, "pair", sort_pair(self.pair[0], self.pair[1]))


@dataclass(frozen=True)
class ForecastGeneratedEvent(_EventRecord):
    """Cached forecast payload for one area. Payload is opaque here."""
    kind: ClassVar[EventKind] = EventKind.FORECAST_GENERATED

    id: str
    message_id: int
    swipe_id: int
    timestamp: int
    area_name: str
    forecast: Mapping[str, Any]
    deleted: bool = False


StateEvent = Any  # Union of the classes in STATE_EVENT_CLASSES

STATE_EVENT_CLASSES = (
    InitialTimeEvent,
    TimeEvent,
    LocationMovedEvent,
    LocationPropEvent,
    CharacterEvent,
    DirectionalRelationshipEvent,
    StatusChangedEvent,
    ForecastGeneratedEvent,
)

RELATIONSHIP_EVENT_CLASSES = (DirectionalRelationshipEvent, StatusChangedEvent)


def event_pair(event) -> Optional[Pair]:
    """Sorted pair a relationship event refers to, or None."""
    if isinstance(event, RELATIONSHIP_EVENT_CLASSES):
        return event.pair
    return None


def validate_event(event) -> Optional[str]:
    """
    Check the base fields of a state or narrative event.

    Returns a description of the first problem found, or None if valid.
    """
    if not isinstance(event, STATE_EVENT_CLASSES + (NarrativeEvent,)):
        return f"not an event record: {type(event).__name__}"
    if not isinstance(event.id, str) or not event.id:
        return "missing id"
    for name in ("message_id", "swipe_id", "timestamp"):
        value = getattr(event, name)
        if isinstance(value, bool) or not isinstance(value, int):
            return f"{name} must be an integer"
    if event.message_id < 0 or event.swipe_id < 0:
        return "message_id and swipe_id must be non-negative"
    if isinstance(event, CharacterEvent):
        if not event.character:
            return "character event without character"
        if event.subkind == CharacterSubkind.OUTFIT_CHANGED and event.slot is None:
            return "outfit_changed without slot"
    return None


# =============================================================================
# NARRATIVE EVENTS
# =============================================================================

@dataclass(frozen=True)
class RelationshipChange:
    from_character: str
    toward_character: str
    feeling: str


@dataclass(frozen=True)
class AffectedPair:
    """
    Which pair an interaction touched.

    first_for and milestone_descriptions are DERIVED by the milestone pass,
    never supplied by extraction.
    """
    pair: Pair
    changes: Tuple[RelationshipChange, ...] = ()
    first_for: Tuple[str, ...] = ()
    milestone_descriptions: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "pair", sort_pair(self.pair[0], self.pair[1]))

    @property
    def key(self) -> str:
        return pair_key(*self.pair)


@dataclass(frozen=True)
class NarrativeEvent:
    id: str
    message_id: int
    swipe_id: int
    timestamp: int
    summary: str
    event_types: Tuple[str, ...] = ()
    tension_level: Optional[str] = None
    tension_type: Optional[str] = None
    witnesses: Tuple[str, ...] = ()
    location: str = ""
    narrative_timestamp: Optional[NarrativeDateTime] = None
    chapter_index: Optional[int] = None
    affected_pairs: Tuple[AffectedPair, ...] = ()
    deleted: bool = False

    @staticmethod
    def create(message_id: int, swipe_id: int, timestamp: int, summary: str, **fields) -> NarrativeEvent:
        return NarrativeEvent(
            id=new_event_id(),
            message_id=message_id,
            swipe_id=swipe_id,
            timestamp=timestamp,
            summary=summary,
            **fields
        )

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.message_id, self.timestamp)

    def find_pair(self, key: str) -> Optional[AffectedPair]:
        for affected in self.affected_pairs:
            if affected.key == key:
                return affected
        return None

    def soft_deleted(self) -> NarrativeEvent:
        return replace(self, deleted=True)

    def with_swipe(self, swipe_id: int) -> NarrativeEvent:
        return replace(self, swipe_id=swipe_id)
