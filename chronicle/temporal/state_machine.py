"""
State Machine
=============

Pure transition function: apply(projection, event) -> projection.

INVARIANT: apply() is a PURE FUNCTION
- Never mutates its input projection (copy-on-write on every touched
  mapping or tuple); projections are cached and shared across consumers
- Total: every (kind, subkind) has a handler, checked at import time
- Set-like fields (moods, props, feelings, ...) never hold duplicates

This module DOES NOT store state.
It COMPUTES state from events on demand.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Callable, Dict, Iterable, Optional, Tuple

from ..contracts.base import derive_pair, pair_key, sort_pair
from ..contracts.events import (
    EventKind, LocationSubkind, CharacterSubkind, RelationshipSubkind,
    KIND_SUBKINDS, CharacterEvent, DirectionalRelationshipEvent,
)
from ..contracts.projection import (
    ProjectedState, CharacterProjection, RelationshipProjection,
    LocationState, UNKNOWN_LOCATION, Attitude,
)
from ..contracts.temporal import BASE_TIME


Handler = Callable[[ProjectedState, object], ProjectedState]


def _with_item(items: Tuple[str, ...], value: Optional[str]) -> Tuple[str, ...]:
    if not value or value in items:
        return items
    return items + (value,)


def _without_item(items: Tuple[str, ...], value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return items
    return tuple(item for item in items if item != value)


# =============================================================================
# TIME
# =============================================================================

def _apply_time_initial(state, event):
    return replace(state, time=event.initial_time)


def _apply_time(state, event):
    base = state.time or BASE_TIME
    return replace(state, time=base.plus(event.delta))


# =============================================================================
# LOCATION
# =============================================================================

def _apply_moved(state, event):
    props = state.location.props if state.location else ()
    return replace(state, location=LocationState(
        area=event.new_area,
        place=event.new_place,
        position=event.new_position,
        props=props,
    ))


def _apply_prop(add: bool) -> Handler:
    def handler(state, event):
        location = state.location or UNKNOWN_LOCATION
        if add:
            props = _with_item(location.props, event.prop)
        else:
            props = _without_item(location.props, event.prop)
        return replace(state, location=replace(location, props=props))
    return handler


# =============================================================================
# CHARACTERS
# =============================================================================

def _character_update(update: Callable[[CharacterProjection, CharacterEvent], CharacterProjection]) -> Handler:
    """Wrap a per-character update with get-or-create and map copy."""
    def handler(state, event):
        current = state.characters.get(event.character) or CharacterProjection(name=event.character)
        characters = dict(state.characters)
        characters[event.character] = update(current, event)
        return replace(state, characters=characters)
    return handler


def _apply_departed(state, event):
    if event.character not in state.characters:
        return state
    characters = dict(state.characters)
    del characters[event.character]
    return replace(state, characters=characters)


def _set_position(char, event):
    if event.new_value is None:
        return char
    return replace(char, position=event.new_value)


def _set_outfit(char, event):
    return replace(char, outfit=char.outfit.with_slot(event.slot, event.new_value))


_CHARACTER_UPDATES = {
    CharacterSubkind.APPEARED: lambda char, event: char,
    CharacterSubkind.POSITION_CHANGED: _set_position,
    CharacterSubkind.ACTIVITY_CHANGED: lambda char, event: replace(char, activity=event.new_value),
    CharacterSubkind.MOOD_ADDED: lambda char, event: replace(char, mood=_with_item(char.mood, event.mood)),
    CharacterSubkind.MOOD_REMOVED: lambda char, event: replace(char, mood=_without_item(char.mood, event.mood)),
    CharacterSubkind.PHYSICAL_STATE_ADDED: lambda char, event: replace(
        char, physical_state=_with_item(char.physical_state, event.physical_state)),
    CharacterSubkind.PHYSICAL_STATE_REMOVED: lambda char, event: replace(
        char, physical_state=_without_item(char.physical_state, event.physical_state)),
    CharacterSubkind.OUTFIT_CHANGED: _set_outfit,
}


# =============================================================================
# RELATIONSHIPS
# =============================================================================

_ATTITUDE_FIELDS = {
    RelationshipSubkind.FEELING_ADDED: ("feelings", True),
    RelationshipSubkind.FEELING_REMOVED: ("feelings", False),
    RelationshipSubkind.SECRET_ADDED: ("secrets", True),
    RelationshipSubkind.SECRET_REMOVED: ("secrets", False),
    RelationshipSubkind.WANT_ADDED: ("wants", True),
    RelationshipSubkind.WANT_REMOVED: ("wants", False),
}


def _relationship_update(state, pair, update):
    first, second = sort_pair(*pair)
    key = pair_key(first, second)
    current = state.relationships.get(key) or RelationshipProjection(pair=(first, second))
    relationships = dict(state.relationships)
    relationships[key] = update(current)
    return replace(state, relationships=relationships)


def _apply_directional(state, event: DirectionalRelationshipEvent):
    pair = derive_pair(event.from_character, event.toward_character)
    if pair is None:
        return state
    field_name, add = _ATTITUDE_FIELDS[event.subkind]

    def update(rel: RelationshipProjection) -> RelationshipProjection:
        side = "a_to_b" if rel.holds_a_to_b(event.from_character) else "b_to_a"
        attitude: Attitude = getattr(rel, side)
        items = getattr(attitude, field_name)
        items = _with_item(items, event.value) if add else _without_item(items, event.value)
        return replace(rel, **{side: replace(attitude, **{field_name: items})})

    return _relationship_update(state, pair, update)


def _apply_status(state, event):
    return _relationship_update(state, event.pair, lambda rel: replace(rel, status=event.new_status))


# =============================================================================
# FORECASTS
# =============================================================================

def _apply_forecast(state, event):
    forecasts = dict(state.forecasts)
    forecasts[event.area_name] = event.forecast
    return replace(state, forecasts=forecasts)


# =============================================================================
# DISPATCH TABLE (exhaustive)
# =============================================================================

TRANSITIONS: Dict[tuple, Handler] = {
    (EventKind.TIME_INITIAL, None): _apply_time_initial,
    (EventKind.TIME, None): _apply_time,
    (EventKind.LOCATION, LocationSubkind.MOVED): _apply_moved,
    (EventKind.LOCATION, LocationSubkind.PROP_ADDED): _apply_prop(add=True),
    (EventKind.LOCATION, LocationSubkind.PROP_REMOVED): _apply_prop(add=False),
    (EventKind.CHARACTER, CharacterSubkind.DEPARTED): _apply_departed,
    (EventKind.RELATIONSHIP, RelationshipSubkind.STATUS_CHANGED): _apply_status,
    (EventKind.FORECAST_GENERATED, None): _apply_forecast,
}
TRANSITIONS.update({
    (EventKind.CHARACTER, subkind): _character_update(update)
    for subkind, update in _CHARACTER_UPDATES.items()
})
TRANSITIONS.update({
    (EventKind.RELATIONSHIP, subkind): _apply_directional
    for subkind in _ATTITUDE_FIELDS
})


def missing_transitions() -> Tuple[tuple, ...]:
    """(kind, subkind) pairs declared in the contracts but not handled here."""
    return tuple(
        (kind, subkind)
        for kind, subkinds in KIND_SUBKINDS.items()
        for subkind in subkinds
        if (kind, subkind) not in TRANSITIONS
    )


_missing = missing_transitions()
if _missing:
    raise RuntimeError(f"State machine has no transition for: {_missing}")


def apply(projection: ProjectedState, event) -> ProjectedState:
    """Fold one event onto a projection, returning a new projection."""
    handler = TRANSITIONS[(event.kind, event.subkind)]
    return handler(projection, event)


class StateMachine:
    """
    Fold helper over an ordered event sequence.

    GUARANTEES:
    ===========
    1. fold(base, events) never mutates base
    2. Deleted events are skipped
    3. Events are applied in the given order (caller sorts)
    """

    @staticmethod
    def fold(base: ProjectedState, events: Iterable) -> ProjectedState:
        state = base
        for event in events:
            if event.deleted:
                continue
            state = apply(state, event)
        return state
