"""
Test Fixtures

Explicit factories for events, projections and stores.
All timestamps are fixed - no wall-clock or random values.
"""

from typing import Dict, List, Optional, Tuple

from chronicle.contracts.base import OutfitSlot, RelationshipStatus
from chronicle.contracts.events import (
    AffectedPair, CharacterEvent, CharacterSubkind, DirectionalRelationshipEvent,
    ForecastGeneratedEvent, InitialTimeEvent, LocationMovedEvent, LocationPropEvent,
    LocationSubkind, NarrativeEvent, RelationshipChange, RelationshipSubkind,
    StatusChangedEvent, TimeEvent,
)
from chronicle.contracts.projection import (
    CharacterOutfit, CharacterProjection, LocationState, ProjectedState,
)
from chronicle.contracts.temporal import NarrativeDateTime, TimeDelta
from chronicle.temporal.event_log import UnifiedEventStore


# =============================================================================
# FIXED TIMES (deterministic)
# =============================================================================

T0 = 1_700_000_000_000
T1 = T0 + 1000
T2 = T0 + 2000
T3 = T0 + 3000

MORNING = NarrativeDateTime(2024, 6, 15, 10, 0, 0, "Saturday")


def always(swipe: int = 0):
    """Resolver that picks the same swipe for every message."""
    return lambda message_id: swipe


# =============================================================================
# STATE EVENT FACTORIES
# =============================================================================

def time_initial(message_id: int = 0, swipe_id: int = 0, timestamp: int = T0,
                 at: NarrativeDateTime = MORNING) -> InitialTimeEvent:
    return InitialTimeEvent.create(message_id, swipe_id, timestamp, initial_time=at)


def time_delta(minutes: int, message_id: int = 1, swipe_id: int = 0, timestamp: int = T1) -> TimeEvent:
    return TimeEvent.create(message_id, swipe_id, timestamp, delta=TimeDelta.from_minutes(minutes))


def moved(area: str, place: str, position: str = "by the door", message_id: int = 0,
          swipe_id: int = 0, timestamp: int = T0) -> LocationMovedEvent:
    return LocationMovedEvent.create(
        message_id, swipe_id, timestamp, new_area=area, new_place=place, new_position=position
    )


def prop(name: str, added: bool = True, message_id: int = 0, swipe_id: int = 0,
         timestamp: int = T0) -> LocationPropEvent:
    subkind = LocationSubkind.PROP_ADDED if added else LocationSubkind.PROP_REMOVED
    return LocationPropEvent.create(message_id, swipe_id, timestamp, subkind=subkind, prop=name)


def character(name: str, subkind: CharacterSubkind, message_id: int = 0, swipe_id: int = 0,
              timestamp: int = T0, **fields) -> CharacterEvent:
    return CharacterEvent.create(message_id, swipe_id, timestamp, subkind=subkind, character=name, **fields)


def appeared(name: str, **kwargs) -> CharacterEvent:
    return character(name, CharacterSubkind.APPEARED, **kwargs)


def mood(name: str, value: str, added: bool = True, **kwargs) -> CharacterEvent:
    subkind = CharacterSubkind.MOOD_ADDED if added else CharacterSubkind.MOOD_REMOVED
    return character(name, subkind, mood=value, **kwargs)


def outfit(name: str, slot: OutfitSlot, value: Optional[str], previous: Optional[str] = None,
           **kwargs) -> CharacterEvent:
    return character(name, CharacterSubkind.OUTFIT_CHANGED, slot=slot, new_value=value,
                     previous_value=previous, **kwargs)


def feeling(holder: str, toward: str, value: str, added: bool = True, message_id: int = 0,
            swipe_id: int = 0, timestamp: int = T0) -> DirectionalRelationshipEvent:
    subkind = RelationshipSubkind.FEELING_ADDED if added else RelationshipSubkind.FEELING_REMOVED
    return DirectionalRelationshipEvent.create(
        message_id, swipe_id, timestamp, subkind=subkind,
        from_character=holder, toward_character=toward, value=value,
    )


def status(first: str, second: str, value: RelationshipStatus, message_id: int = 0,
           swipe_id: int = 0, timestamp: int = T0) -> StatusChangedEvent:
    return StatusChangedEvent.create(message_id, swipe_id, timestamp, pair=(first, second), new_status=value)


def forecast(area: str, payload: Dict, message_id: int = 0, swipe_id: int = 0,
             timestamp: int = T0) -> ForecastGeneratedEvent:
    return ForecastGeneratedEvent.create(message_id, swipe_id, timestamp, area_name=area, forecast=payload)


# =============================================================================
# NARRATIVE EVENT FACTORIES
# =============================================================================

def narrative(summary: str, event_types: Tuple[str, ...], pair: Tuple[str, str] = ("Alice", "Bob"),
              message_id: int = 0, swipe_id: int = 0, timestamp: int = T0,
              changes: Tuple[RelationshipChange, ...] = (), **fields) -> NarrativeEvent:
    return NarrativeEvent.create(
        message_id, swipe_id, timestamp, summary,
        event_types=tuple(event_types),
        affected_pairs=(AffectedPair(pair=pair, changes=changes),),
        **fields
    )


# =============================================================================
# PROJECTIONS AND STORES
# =============================================================================

def tavern_projection() -> ProjectedState:
    """Alice alone in the tavern at MORNING."""
    return ProjectedState(
        time=MORNING,
        location=LocationState(area="Riverside", place="Tavern", position="bar", props=("lantern",)),
        characters={
            "Alice": CharacterProjection(
                name="Alice",
                position="at the bar",
                mood=("curious",),
                outfit=CharacterOutfit(torso="linen shirt"),
            ),
        },
    )


def populated_store() -> UnifiedEventStore:
    """
    Three messages on swipe 0, plus an alternative swipe 1 at message 1.

    message 0: time anchor, tavern, Alice appears
    message 1: +30 min, Bob appears (swipe 0) / Carol appears (swipe 1)
    message 2: Alice becomes tense
    """
    store = UnifiedEventStore()
    store.append([
        time_initial(0, 0, T0),
        moved("Riverside", "Tavern", "bar", message_id=0, timestamp=T0 + 1),
        appeared("Alice", message_id=0, timestamp=T0 + 2),
        time_delta(30, message_id=1, swipe_id=0, timestamp=T1),
        appeared("Bob", message_id=1, swipe_id=0, timestamp=T1 + 1),
        appeared("Carol", message_id=1, swipe_id=1, timestamp=T1 + 2),
        mood("Alice", "tense", message_id=2, timestamp=T2),
    ])
    return store


def legacy_v2_document(chapters: int = 2, events_per_chapter: Tuple[int, ...] = (4, 5)) -> Dict:
    """A v2 narrative-state document with events embedded in chapters."""
    doc_chapters: List[Dict] = []
    message_id = 1
    for index in range(chapters):
        events = []
        for _ in range(events_per_chapter[index]):
            events.append({
                "messageId": message_id,
                "summary": f"Event at message {message_id}",
                "eventTypes": ["conversation"],
                "witnesses": ["Alice", "Bob"],
                "location": "Tavern",
                "relationshipSignal": {
                    "pair": ["Alice", "Bob"],
                    "changes": [{"from": "Alice", "toward": "Bob", "feeling": "warm"}],
                },
            })
            message_id += 1
        doc_chapters.append({
            "index": index,
            "title": f"Chapter {index + 1}",
            "summary": "",
            "events": events,
        })
    return {
        "version": 2,
        "chapters": doc_chapters,
        "relationships": [{
            "pair": ["Alice", "Bob"],
            "status": "acquaintances",
            "aToB": {"feelings": ["warm"], "secrets": [], "wants": []},
            "bToA": {"feelings": [], "secrets": [], "wants": []},
            "milestones": [],
        }],
    }
