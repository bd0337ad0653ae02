"""
Schema Migrations
=================

Upgrades a persisted narrative-state document to the current generation.

GENERATIONS:
============
v1: relationships carry current state only
v2: relationships carry per-message versions; chapters embed their events
v3: one flat narrative-event array; chapters and relationships hold ids;
    first_for is derived, not stored per relationship
v4: tracked state is event-sourced too (stateEvents + initialProjection)

GUARANTEES:
===========
1. Never drops a narrative event, only re-annotates or re-shapes it
2. Idempotent: a document already at v4 comes back unchanged
3. Never raises; unknown versions get a best-effort pass and a warning
4. The input document is never mutated

The host chat is passed in as a sequence of LegacyMessage records, one per
message in chat order.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence
import copy

from ..contracts.base import pair_key, sort_pair
from ..contracts.events import AffectedPair, NarrativeEvent, RelationshipChange, new_event_id
from ..contracts.projection import RelationshipProjection
from ..contracts.temporal import NarrativeDateTime
from ..core.milestones import tag_first_for
from ..core.relationships import tracked_state_to_projection
from ..normalization import generate_state_events_from_diff
from ..observability import get_logger
from ..storage.codec import deserialize_store, encode_narrative_event, encode_state_event
from .clock import LogicalClock
from .event_log import CURRENT_STORE_VERSION, UnifiedEventStore

logger = get_logger(__name__)

_BAD_DATA = (KeyError, TypeError, ValueError, AttributeError)


@dataclass(frozen=True)
class LegacyMessage:
    """One host chat message: its selected swipe and the tracked state stored on it."""
    swipe_id: int = 0
    state: Optional[Mapping[str, Any]] = None


@dataclass
class MigrationReport:
    document: Dict[str, Any]
    from_version: Any
    to_version: Any
    steps: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def migrated(self) -> bool:
        return bool(self.steps)


def _warn(warnings: Optional[List[str]], message: str) -> None:
    logger.warning(message)
    if warnings is not None:
        warnings.append(message)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_legacy_relationship(rel: Mapping[str, Any]) -> bool:
    return "milestoneEventIds" not in rel


def _is_legacy_chapter(chapter: Mapping[str, Any]) -> bool:
    return "eventIds" not in chapter


def _copy_attitude(attitude: Optional[Mapping[str, Any]]) -> Dict[str, List[str]]:
    attitude = attitude or {}
    return {
        "feelings": list(attitude.get("feelings") or ()),
        "secrets": list(attitude.get("secrets") or ()),
        "wants": list(attitude.get("wants") or ()),
    }


# =============================================================================
# v1 -> v2
# =============================================================================

def migrate_v1_to_v2(document: Mapping[str, Any]) -> Dict[str, Any]:
    """Give every legacy relationship a single version at message 0."""
    doc = copy.deepcopy(dict(document))
    for rel in doc.get("relationships") or ():
        if _is_legacy_relationship(rel) and not rel.get("versions"):
            rel["versions"] = [{
                "messageId": 0,
                "status": rel.get("status", "strangers"),
                "aToB": _copy_attitude(rel.get("aToB")),
                "bToA": _copy_attitude(rel.get("bToA")),
                "milestones": list(rel.get("milestones") or ()),
            }]
    doc["version"] = 2
    return doc


# =============================================================================
# v2 -> v3
# =============================================================================

def _narrative_time(raw, warnings) -> Optional[NarrativeDateTime]:
    if not raw:
        return None
    try:
        if isinstance(raw, str):
            return NarrativeDateTime.from_iso(raw)
        return NarrativeDateTime.from_dict(raw)
    except _BAD_DATA as exc:
        _warn(warnings, f"unreadable event timestamp {raw!r}: {exc}")
        return None


def _affected_pairs(signal, warnings) -> tuple:
    if not signal:
        return ()
    try:
        first, second = signal["pair"]
        changes = tuple(
            RelationshipChange(
                from_character=str(c.get("from", "")),
                toward_character=str(c.get("toward", "")),
                feeling=str(c.get("feeling", "")),
            )
            for c in signal.get("changes") or ()
        )
        return (AffectedPair(pair=(str(first), str(second)), changes=changes),)
    except _BAD_DATA as exc:
        _warn(warnings, f"unreadable relationship signal: {exc}")
        return ()


def convert_legacy_event(old: Mapping[str, Any], chapter_index: Optional[int], swipe_id: int,
                         timestamp: int, warnings: Optional[List[str]] = None) -> NarrativeEvent:
    """Embedded (v2) event -> NarrativeEvent. first_for is left for the tagging pass."""
    event_types = old.get("eventTypes")
    message_id = old.get("messageId")
    return NarrativeEvent(
        id=new_event_id(),
        message_id=message_id if _is_int(message_id) else 0,
        swipe_id=swipe_id,
        timestamp=timestamp,
        summary=str(old.get("summary", "")),
        event_types=tuple(event_types) if event_types is not None else ("conversation",),
        tension_level=old.get("tensionLevel"),
        tension_type=old.get("tensionType"),
        witnesses=tuple(old.get("witnesses") or ()),
        location=str(old.get("location") or ""),
        narrative_timestamp=_narrative_time(old.get("timestamp"), warnings),
        chapter_index=chapter_index,
        affected_pairs=_affected_pairs(old.get("relationshipSignal"), warnings),
    )


def _copy_descriptions(events: List[NarrativeEvent], relationships, warnings) -> List[NarrativeEvent]:
    events = list(events)
    for rel in relationships:
        if not _is_legacy_relationship(rel):
            continue
        try:
            key = pair_key(*rel["pair"])
        except _BAD_DATA:
            _warn(warnings, "relationship without a readable pair")
            continue
        for milestone in rel.get("milestones") or ():
            milestone_type = milestone.get("type")
            description = milestone.get("description")
            for index, event in enumerate(events):
                affected = event.find_pair(key)
                if affected is None:
                    continue
                tagged = [m for m in affected.first_for if getattr(m, "value", m) == milestone_type]
                if not tagged:
                    continue
                if description:
                    descriptions = dict(affected.milestone_descriptions)
                    descriptions[tagged[0]] = description
                    updated = replace(affected, milestone_descriptions=descriptions)
                    events[index] = replace(event, affected_pairs=tuple(
                        updated if p is affected else p for p in event.affected_pairs
                    ))
                break
    return events


def migrate_v2_to_v3(document: Mapping[str, Any], messages: Sequence[LegacyMessage] = (),
                     clock: Optional[LogicalClock] = None,
                     warnings: Optional[List[str]] = None) -> Dict[str, Any]:
    doc = copy.deepcopy(dict(document))
    clock = clock or LogicalClock()
    chapters = list(doc.get("chapters") or ())
    relationships = list(doc.get("relationships") or ())

    events: List[NarrativeEvent] = []
    for chapter in chapters:
        if _is_legacy_chapter(chapter):
            for old in chapter.get("events") or ():
                events.append(convert_legacy_event(old, chapter.get("index"), 0, clock.now_ms(), warnings))

    seen = {f"{e.message_id}|{e.summary}" for e in events}
    for msg_id, message in enumerate(messages):
        current = (message.state or {}).get("currentEvents") or ()
        for old in current:
            old_message_id = old.get("messageId")
            key = f"{old_message_id if old_message_id is not None else msg_id}|{old.get('summary', '')}"
            if key in seen:
                continue
            event = convert_legacy_event(old, None, message.swipe_id, clock.now_ms(), warnings)
            if event.message_id == 0 and msg_id > 0:
                event = replace(event, message_id=msg_id)
            events.append(event)
            seen.add(key)

    events.sort(key=lambda e: (e.message_id, e.timestamp))
    events = tag_first_for(events)
    events = _copy_descriptions(events, relationships, warnings)

    derived_chapters = []
    for chapter in chapters:
        if not _is_legacy_chapter(chapter):
            derived_chapters.append(chapter)
            continue
        chapter_events = [e for e in events if e.chapter_index == chapter.get("index")]
        derived_chapters.append({
            "index": chapter.get("index"),
            "title": chapter.get("title", ""),
            "summary": chapter.get("summary", ""),
            "outcomes": chapter.get("outcomes"),
            "eventIds": [e.id for e in chapter_events],
            "boundaryMessageId": chapter_events[-1].message_id if chapter_events else 0,
            "timeRange": chapter.get("timeRange"),
            "primaryLocation": chapter.get("primaryLocation", "Unknown"),
        })

    derived_relationships = []
    for rel in relationships:
        if not _is_legacy_relationship(rel):
            derived_relationships.append(rel)
            continue
        try:
            key = pair_key(*rel["pair"])
        except _BAD_DATA:
            key = None
        derived_relationships.append({
            "pair": rel.get("pair"),
            "status": rel.get("status", "strangers"),
            "aToB": rel.get("aToB"),
            "bToA": rel.get("bToA"),
            "milestoneEventIds": [
                e.id for e in events
                if key is not None and e.find_pair(key) is not None and e.find_pair(key).first_for
            ],
            "history": rel.get("history") or [],
        })

    snapshots = []
    if derived_chapters:
        last = derived_chapters[-1]
        snapshots.append({
            "chapterIndex": last.get("index"),
            "boundaryMessageId": last.get("boundaryMessageId", 0),
            "relationships": copy.deepcopy(derived_relationships),
        })

    doc["eventStore"] = {"events": [encode_narrative_event(e) for e in events]}
    doc["chapters"] = derived_chapters
    doc["relationships"] = derived_relationships
    doc["chapterSnapshots"] = snapshots
    doc["version"] = 3
    logger.info("v2 -> v3: %d narrative events, %d chapters", len(events), len(derived_chapters),
                extra={"count": len(events), "version": 3})
    return doc


# =============================================================================
# v3 -> v4
# =============================================================================

def _document_relationships(relationships, warnings) -> Dict[str, RelationshipProjection]:
    projected = {}
    for rel in relationships or ():
        try:
            first, second = rel["pair"]
            projection = RelationshipProjection.from_dict(dict(rel, pair=sort_pair(str(first), str(second))))
        except _BAD_DATA as exc:
            _warn(warnings, f"skipping unreadable relationship in initial projection: {exc}")
            continue
        projected[projection.key] = projection
    return projected


def migrate_v3_to_v4(document: Mapping[str, Any], messages: Sequence[LegacyMessage] = (),
                     clock: Optional[LogicalClock] = None,
                     warnings: Optional[List[str]] = None) -> Dict[str, Any]:
    doc = copy.deepcopy(dict(document))
    clock = clock or LogicalClock()
    legacy_store = doc.get("eventStore") or {}
    narrative = list(legacy_store.get("events") or legacy_store.get("narrativeEvents") or ())
    relationships = _document_relationships(doc.get("relationships"), warnings)

    initial = None
    previous = None
    state_events = []
    for msg_id, message in enumerate(messages):
        if not message.state:
            continue
        try:
            current = tracked_state_to_projection(message.state)
        except _BAD_DATA as exc:
            _warn(warnings, f"unreadable tracked state at message {msg_id}: {exc}")
            continue
        current = replace(current, relationships=relationships)
        if previous is None:
            initial = current
            logger.info("v3 -> v4: initial projection from message %d", msg_id, extra={"message_id": msg_id})
        else:
            state_events.extend(
                generate_state_events_from_diff(msg_id, message.swipe_id, previous, current, clock)
            )
        previous = current

    state_events.sort(key=lambda e: (e.message_id, e.timestamp))

    unified: Dict[str, Any] = {
        "version": CURRENT_STORE_VERSION,
        "narrativeEvents": narrative,
        "stateEvents": [encode_state_event(e) for e in state_events],
    }
    if initial is not None:
        unified["initialProjection"] = initial.to_dict()
    doc["eventStore"] = unified
    doc["version"] = 4
    logger.info("v3 -> v4: %d narrative events, %d state events", len(narrative), len(state_events),
                extra={"count": len(state_events), "version": 4})
    return doc


# =============================================================================
# PIPELINE
# =============================================================================

def _fill_missing(doc: Dict[str, Any]) -> None:
    store = doc.get("eventStore")
    if not isinstance(store, dict):
        store = doc["eventStore"] = {}
    store.setdefault("narrativeEvents", [])
    store.setdefault("stateEvents", [])
    if not isinstance(doc.get("chapters"), list):
        doc["chapters"] = []
    if not isinstance(doc.get("relationships"), list):
        doc["relationships"] = []


def migrate(document: Optional[Mapping[str, Any]], messages: Sequence[LegacyMessage] = (),
            clock: Optional[LogicalClock] = None) -> MigrationReport:
    """Run every step whose input version matches, in order."""
    doc = copy.deepcopy(dict(document)) if isinstance(document, Mapping) else {}
    from_version = doc.get("version")
    warnings: List[str] = []
    steps: List[str] = []
    clock = clock or LogicalClock()

    version = from_version
    if version is None or (_is_int(version) and version < 2):
        doc = migrate_v1_to_v2(doc)
        steps.append("v1_to_v2")
        version = 2
    if version == 2 and _is_int(version):
        doc = migrate_v2_to_v3(doc, messages, clock, warnings)
        steps.append("v2_to_v3")
        version = 3
    if version == 3 and _is_int(version):
        doc = migrate_v3_to_v4(doc, messages, clock, warnings)
        steps.append("v3_to_v4")
        version = 4

    if not (_is_int(version) and version == CURRENT_STORE_VERSION):
        _warn(warnings, f"unknown narrative state version {from_version!r}; applying best-effort defaults")
        _fill_missing(doc)

    return MigrationReport(
        document=doc,
        from_version=from_version,
        to_version=doc.get("version"),
        steps=steps,
        warnings=warnings,
    )


def store_from_document(document: Mapping[str, Any]) -> Optional[UnifiedEventStore]:
    """Decode the event store embedded in a (migrated) narrative-state document."""
    return deserialize_store(document.get("eventStore"))
