"""
Store Codec
===========

Plain-dict (JSON-compatible) encoding of a UnifiedEventStore.

Two layouts:

UNIFIED (version 4)::

    {"version": 4, "narrativeEvents": [...], "stateEvents": [...],
     "initialProjection": {...}?, "chapterSnapshots": [...]?,
     "projectionInvalidFrom": int?, "extracted": [[m, s], ...]?}

SNAPSHOT (version 1)::

    {"version": 1, "snapshots": [...], "events": [...]}

    message/swipe ids live under "source"; snapshot "type" is "initial"
    or "chapter"; narrative events carry kind "narrative".

GUARANTEES:
- deserialize_store never raises; malformed input returns None
- One malformed event rejects the whole document
- Optional fields added later (forecasts, ...) default when missing
"""

from __future__ import annotations
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..contracts.base import (
    MilestoneType, OutfitSlot, RelationshipStatus, coerce_enum,
)
from ..contracts.events import (
    AffectedPair, CharacterEvent, CharacterSubkind, DirectionalRelationshipEvent,
    EventKind, ForecastGeneratedEvent, InitialTimeEvent, LocationMovedEvent,
    LocationPropEvent, LocationSubkind, NarrativeEvent, RelationshipChange,
    RelationshipSubkind, StatusChangedEvent, TimeEvent, validate_event,
)
from ..contracts.projection import ChapterSnapshot, ProjectedState
from ..contracts.temporal import NarrativeDateTime, TimeDelta
from ..observability import get_logger
from ..temporal.event_log import CURRENT_STORE_VERSION, UnifiedEventStore

logger = get_logger(__name__)

SNAPSHOT_LAYOUT_VERSION = 1
NARRATIVE_KIND = "narrative"

UNIFIED = "unified"
SNAPSHOT = "snapshot"

_DECODE_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


def _value(item):
    return getattr(item, "value", item)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


# =============================================================================
# STATE EVENTS
# =============================================================================

def _encode_fields(event) -> Dict[str, Any]:
    if isinstance(event, InitialTimeEvent):
        return {"initialTime": event.initial_time.to_dict()}
    if isinstance(event, TimeEvent):
        return {"delta": event.delta.to_dict()}
    if isinstance(event, LocationMovedEvent):
        data = {
            "newArea": event.new_area,
            "newPlace": event.new_place,
            "newPosition": event.new_position,
        }
        for key, value in (("previousArea", event.previous_area),
                           ("previousPlace", event.previous_place),
                           ("previousPosition", event.previous_position)):
            if value is not None:
                data[key] = value
        return data
    if isinstance(event, LocationPropEvent):
        return {"prop": event.prop}
    if isinstance(event, CharacterEvent):
        data = {"character": event.character}
        if event.subkind in (CharacterSubkind.POSITION_CHANGED, CharacterSubkind.ACTIVITY_CHANGED,
                             CharacterSubkind.OUTFIT_CHANGED):
            data["newValue"] = event.new_value
            data["previousValue"] = event.previous_value
        if event.mood is not None:
            data["mood"] = event.mood
        if event.physical_state is not None:
            data["physicalState"] = event.physical_state
        if event.slot is not None:
            data["slot"] = _value(event.slot)
        return data
    if isinstance(event, DirectionalRelationshipEvent):
        return {
            "fromCharacter": event.from_character,
            "towardCharacter": event.toward_character,
            "value": event.value,
        }
    if isinstance(event, StatusChangedEvent):
        data = {"pair": list(event.pair), "newStatus": _value(event.new_status)}
        if event.previous_status is not None:
            data["previousStatus"] = _value(event.previous_status)
        return data
    if isinstance(event, ForecastGeneratedEvent):
        return {"areaName": event.area_name, "forecast": dict(event.forecast)}
    raise TypeError(f"cannot encode {type(event).__name__}")


def encode_state_event(event) -> Dict[str, Any]:
    data = {
        "id": event.id,
        "messageId": event.message_id,
        "swipeId": event.swipe_id,
        "timestamp": event.timestamp,
        "kind": _value(event.kind),
    }
    if event.subkind is not None:
        data["subkind"] = _value(event.subkind)
    data.update(_encode_fields(event))
    if event.deleted:
        data["deleted"] = True
    return data


def _base(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "id": data["id"],
        "message_id": data["messageId"],
        "swipe_id": data["swipeId"],
        "timestamp": data["timestamp"],
        "deleted": bool(data.get("deleted", False)),
    }


def _decode_time_initial(data, base):
    return InitialTimeEvent(initial_time=NarrativeDateTime.from_dict(data["initialTime"]), **base)


def _decode_time(data, base):
    return TimeEvent(delta=TimeDelta.from_dict(data["delta"]), **base)


def _decode_location(data, base):
    subkind = LocationSubkind(data["subkind"])
    if subkind == LocationSubkind.MOVED:
        return LocationMovedEvent(
            new_area=data["newArea"],
            new_place=data["newPlace"],
            new_position=data["newPosition"],
            previous_area=data.get("previousArea"),
            previous_place=data.get("previousPlace"),
            previous_position=data.get("previousPosition"),
            **base
        )
    return LocationPropEvent(subkind=subkind, prop=data["prop"], **base)


def _decode_character(data, base):
    slot = data.get("slot")
    return CharacterEvent(
        subkind=CharacterSubkind(data["subkind"]),
        character=data["character"],
        new_value=data.get("newValue"),
        previous_value=data.get("previousValue"),
        mood=data.get("mood"),
        physical_state=data.get("physicalState"),
        slot=OutfitSlot(slot) if slot is not None else None,
        **base
    )


def _decode_relationship(data, base):
    subkind = RelationshipSubkind(data["subkind"])
    if subkind == RelationshipSubkind.STATUS_CHANGED:
        first, second = data["pair"]
        previous = data.get("previousStatus")
        return StatusChangedEvent(
            pair=(str(first), str(second)),
            new_status=coerce_enum(RelationshipStatus, data["newStatus"]),
            previous_status=coerce_enum(RelationshipStatus, previous) if previous else None,
            **base
        )
    return DirectionalRelationshipEvent(
        subkind=subkind,
        from_character=data["fromCharacter"],
        toward_character=data["towardCharacter"],
        value=data["value"],
        **base
    )


def _decode_forecast(data, base):
    return ForecastGeneratedEvent(area_name=data["areaName"], forecast=dict(data["forecast"]), **base)


_DECODERS: Dict[EventKind, Callable] = {
    EventKind.TIME_INITIAL: _decode_time_initial,
    EventKind.TIME: _decode_time,
    EventKind.LOCATION: _decode_location,
    EventKind.CHARACTER: _decode_character,
    EventKind.RELATIONSHIP: _decode_relationship,
    EventKind.FORECAST_GENERATED: _decode_forecast,
}


def decode_state_event(data: Mapping[str, Any]):
    """Raises KeyError/TypeError/ValueError on malformed input."""
    if not has_base_fields(data):
        raise ValueError("missing base fields")
    return _DECODERS[EventKind(data["kind"])](data, _base(data))


def has_base_fields(data: Any) -> bool:
    if not isinstance(data, Mapping):
        return False
    return (
        isinstance(data.get("id"), str)
        and _is_int(data.get("messageId"))
        and _is_int(data.get("swipeId"))
        and _is_int(data.get("timestamp"))
    )


# =============================================================================
# NARRATIVE EVENTS
# =============================================================================

def encode_affected_pair(affected: AffectedPair) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "pair": list(affected.pair),
        "changes": [
            {"from": c.from_character, "toward": c.toward_character, "feeling": c.feeling}
            for c in affected.changes
        ],
    }
    if affected.first_for:
        data["firstFor"] = [_value(m) for m in affected.first_for]
    if affected.milestone_descriptions:
        data["milestoneDescriptions"] = {
            _value(k): v for k, v in affected.milestone_descriptions.items()
        }
    return data


def decode_affected_pair(data: Mapping[str, Any]) -> AffectedPair:
    first, second = data["pair"]
    return AffectedPair(
        pair=(str(first), str(second)),
        changes=tuple(
            RelationshipChange(c["from"], c["toward"], c["feeling"])
            for c in data.get("changes") or ()
        ),
        first_for=tuple(coerce_enum(MilestoneType, m) for m in data.get("firstFor") or ()),
        milestone_descriptions={
            coerce_enum(MilestoneType, k): v
            for k, v in (data.get("milestoneDescriptions") or {}).items()
        },
    )


def encode_narrative_event(event: NarrativeEvent) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": event.id,
        "messageId": event.message_id,
        "swipeId": event.swipe_id,
        "timestamp": event.timestamp,
        "summary": event.summary,
        "eventTypes": [_value(t) for t in event.event_types],
        "witnesses": list(event.witnesses),
        "location": event.location,
        "affectedPairs": [encode_affected_pair(p) for p in event.affected_pairs],
    }
    if event.tension_level is not None:
        data["tensionLevel"] = _value(event.tension_level)
    if event.tension_type is not None:
        data["tensionType"] = _value(event.tension_type)
    if event.narrative_timestamp is not None:
        data["narrativeTimestamp"] = event.narrative_timestamp.to_dict()
    if event.chapter_index is not None:
        data["chapterIndex"] = event.chapter_index
    if event.deleted:
        data["deleted"] = True
    return data


def decode_narrative_event(data: Mapping[str, Any]) -> NarrativeEvent:
    if not has_base_fields(data):
        raise ValueError("missing base fields")
    stamp = data.get("narrativeTimestamp")
    chapter = data.get("chapterIndex")
    return NarrativeEvent(
        id=data["id"],
        message_id=data["messageId"],
        swipe_id=data["swipeId"],
        timestamp=data["timestamp"],
        summary=str(data.get("summary", "")),
        event_types=tuple(data.get("eventTypes") or ()),
        tension_level=data.get("tensionLevel"),
        tension_type=data.get("tensionType"),
        witnesses=tuple(data.get("witnesses") or ()),
        location=str(data.get("location") or ""),
        narrative_timestamp=NarrativeDateTime.from_dict(stamp) if stamp else None,
        chapter_index=int(chapter) if chapter is not None else None,
        affected_pairs=tuple(decode_affected_pair(p) for p in data.get("affectedPairs") or ()),
        deleted=bool(data.get("deleted", False)),
    )


# =============================================================================
# SNAPSHOT LAYOUT HELPERS
# =============================================================================

def _with_source(data: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(data)
    data["source"] = {"messageId": data.pop("messageId"), "swipeId": data.pop("swipeId")}
    return data


def _flatten_source(data: Mapping[str, Any]) -> Dict[str, Any]:
    flat = dict(data)
    source = flat.pop("source")
    flat["messageId"] = source["messageId"]
    flat["swipeId"] = source["swipeId"]
    return flat


def is_valid_event(data: Any) -> bool:
    """Base-field check for either layout: id, message/swipe ids, timestamp, kind."""
    if not isinstance(data, Mapping) or not isinstance(data.get("kind"), str):
        return False
    if "source" in data:
        source = data.get("source")
        if not isinstance(source, Mapping):
            return False
        data = dict(data, messageId=source.get("messageId"), swipeId=source.get("swipeId"))
    return has_base_fields(data)


def is_valid_snapshot(data: Any) -> bool:
    if not isinstance(data, Mapping):
        return False
    source = data.get("source")
    return (
        isinstance(data.get("type"), str)
        and isinstance(source, Mapping)
        and _is_int(data.get("timestamp"))
        and _is_int(data.get("swipeId"))
        and _is_int(source.get("messageId"))
        and _is_int(source.get("swipeId"))
    )


def _encode_snapshot_projection(projection: ProjectedState) -> Dict[str, Any]:
    data = projection.to_dict()
    data["time"] = projection.time.to_iso() if projection.time else None
    return data


# =============================================================================
# STORE
# =============================================================================

def _serialize_unified(store: UnifiedEventStore) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "version": CURRENT_STORE_VERSION,
        "narrativeEvents": [encode_narrative_event(e) for e in store.narrative_events],
        "stateEvents": [encode_state_event(e) for e in store.state_events],
    }
    if store.initial_projection is not None:
        data["initialProjection"] = store.initial_projection.to_dict()
    if store.chapter_snapshots:
        data["chapterSnapshots"] = [s.to_dict() for s in store.chapter_snapshots]
    if store.projection_invalid_from is not None:
        data["projectionInvalidFrom"] = store.projection_invalid_from
    if store.extracted:
        data["extracted"] = [list(key) for key in sorted(store.extracted)]
    return data


def _serialize_snapshot_layout(store: UnifiedEventStore, created_at: int) -> Dict[str, Any]:
    snapshots = []
    if store.initial_projection is not None:
        snapshots.append(dict(
            _encode_snapshot_projection(store.initial_projection),
            type="initial",
            source={"messageId": 0, "swipeId": 0},
            timestamp=created_at,
            swipeId=0,
        ))
    for snapshot in store.chapter_snapshots:
        snapshots.append(dict(
            _encode_snapshot_projection(snapshot.projection),
            type="chapter",
            chapterIndex=snapshot.chapter_index,
            source={"messageId": snapshot.message_id, "swipeId": snapshot.swipe_id},
            timestamp=created_at,
            swipeId=snapshot.swipe_id,
        ))

    events = [_with_source(encode_state_event(e)) for e in store.state_events]
    events.extend(
        _with_source(dict(encode_narrative_event(e), kind=NARRATIVE_KIND))
        for e in store.narrative_events
    )
    return {"version": SNAPSHOT_LAYOUT_VERSION, "snapshots": snapshots, "events": events}


def serialize_store(store: UnifiedEventStore, layout: str = UNIFIED, created_at: int = 0) -> Dict[str, Any]:
    if layout == UNIFIED:
        return _serialize_unified(store)
    if layout == SNAPSHOT:
        return _serialize_snapshot_layout(store, created_at)
    raise ValueError(f"unknown layout: {layout}")


def _checked(events: List) -> List:
    """Decoded events must pass the same checks as appended ones."""
    for event in events:
        problem = validate_event(event)
        if problem is not None:
            raise ValueError(f"invalid event {getattr(event, 'id', '?')}: {problem}")
    return events


def _deserialize_unified(data: Mapping[str, Any]) -> UnifiedEventStore:
    narrative = data["narrativeEvents"]
    state = data["stateEvents"]
    if not isinstance(narrative, list) or not isinstance(state, list):
        raise TypeError("event arrays must be lists")
    initial = data.get("initialProjection")
    invalid_from = data.get("projectionInvalidFrom")
    return UnifiedEventStore(
        narrative_events=_checked([decode_narrative_event(e) for e in narrative]),
        state_events=_checked([decode_state_event(e) for e in state]),
        version=CURRENT_STORE_VERSION,
        initial_projection=ProjectedState.from_dict(initial) if initial else None,
        chapter_snapshots=[ChapterSnapshot.from_dict(s) for s in data.get("chapterSnapshots") or ()],
        projection_invalid_from=int(invalid_from) if invalid_from is not None else None,
        extracted=[(int(m), int(s)) for m, s in data.get("extracted") or ()],
    )


def _deserialize_snapshot_layout(data: Mapping[str, Any]) -> UnifiedEventStore:
    snapshots, events = data["snapshots"], data["events"]
    if not isinstance(snapshots, list) or not isinstance(events, list):
        raise TypeError("snapshots and events must be lists")

    initial = None
    chapters: List[ChapterSnapshot] = []
    for raw in snapshots:
        if not is_valid_snapshot(raw):
            raise ValueError("malformed snapshot")
        projection = ProjectedState.from_dict(raw)
        if raw["type"] == "initial":
            initial = projection
        else:
            chapters.append(ChapterSnapshot(
                chapter_index=int(raw.get("chapterIndex", len(chapters))),
                message_id=raw["source"]["messageId"],
                swipe_id=raw["source"]["swipeId"],
                projection=projection,
            ))

    narrative, state = [], []
    for raw in events:
        if not is_valid_event(raw):
            raise ValueError("malformed event")
        flat = _flatten_source(raw)
        if flat["kind"] == NARRATIVE_KIND:
            narrative.append(decode_narrative_event(flat))
        else:
            state.append(decode_state_event(flat))

    return UnifiedEventStore(
        narrative_events=_checked(narrative),
        state_events=_checked(state),
        initial_projection=initial,
        chapter_snapshots=chapters,
    )


def deserialize_store(data: Any) -> Optional[UnifiedEventStore]:
    """
    Decode either layout.

    Returns None for anything malformed. An unexpected version number is
    logged and decoding continues with the layout the keys indicate.
    """
    if not isinstance(data, Mapping) or not _is_int(data.get("version")):
        logger.debug("rejected store payload: not a versioned mapping")
        return None

    version = data["version"]
    if "snapshots" in data or "events" in data:
        layout, expected = SNAPSHOT, SNAPSHOT_LAYOUT_VERSION
    else:
        layout, expected = UNIFIED, CURRENT_STORE_VERSION
    if version != expected:
        logger.warning("unexpected %s store version %s, expected %s", layout, version, expected,
                       extra={"version": version})

    try:
        if layout == SNAPSHOT:
            return _deserialize_snapshot_layout(data)
        return _deserialize_unified(data)
    except _DECODE_ERRORS as exc:
        logger.warning("rejected malformed %s store: %s", layout, exc)
        return None
