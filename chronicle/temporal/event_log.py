"""
Unified Event Store
===================

Append-only container for state events and narrative events, plus the
snapshots used to bound replay cost.

INVARIANTS:
- Both event lists are sorted by (message_id, timestamp) after every
  mutation; ties keep insertion order
- Events are never removed, only soft-deleted (replaced by a copy with
  deleted=True); "replace at message" is soft-delete-old + append-new
- projection_invalid_from only moves down until explicitly cleared
- No operation raises for a well-formed store; malformed events are
  rejected by validation BEFORE anything is inserted

This is the SOURCE OF TRUTH for narrative state.
State is DERIVED from this log, never stored per message.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from ..contracts.base import InvalidEventError, Pair, pair_key
from ..contracts.events import (
    STATE_EVENT_CLASSES, RELATIONSHIP_EVENT_CLASSES, ForecastGeneratedEvent,
    NarrativeEvent, validate_event, event_pair,
)
from ..contracts.projection import ChapterSnapshot, ProjectedState
from ..observability import get_logger

logger = get_logger(__name__)

CanonicalSwipeResolver = Callable[[int], int]

CURRENT_STORE_VERSION = 4


def canonical_from_chat(swipes: List[int]) -> CanonicalSwipeResolver:
    """Resolver backed by a chat-like list of selected swipe ids (missing -> 0)."""
    def resolve(message_id: int) -> int:
        if 0 <= message_id < len(swipes):
            return swipes[message_id] or 0
        return 0
    return resolve


def _sort_key(event) -> Tuple[int, int]:
    return (event.message_id, event.timestamp)


class UnifiedEventStore:
    """
    Event store for one chat session.

    GUARANTEES:
    ===========
    1. Sorted - active events are non-decreasing in (message_id, timestamp)
    2. Soft delete only - history is kept for audit and undo
    3. Total - unknown ids return False, never raise
    4. Canonical-path aware - queries take a canonical swipe resolver
    """

    def __init__(
        self,
        narrative_events: Optional[Iterable[NarrativeEvent]] = None,
        state_events: Optional[Iterable] = None,
        version: int = CURRENT_STORE_VERSION,
        initial_projection: Optional[ProjectedState] = None,
        chapter_snapshots: Optional[Iterable[ChapterSnapshot]] = None,
        projection_invalid_from: Optional[int] = None,
        extracted: Optional[Iterable[Tuple[int, int]]] = None,
    ):
        self._narrative_events: List[NarrativeEvent] = sorted(narrative_events or (), key=_sort_key)
        self._state_events: List = sorted(state_events or (), key=_sort_key)
        self.version = version
        self.initial_projection = initial_projection
        self._chapter_snapshots: List[ChapterSnapshot] = sorted(
            chapter_snapshots or (), key=lambda s: s.chapter_index
        )
        self.projection_invalid_from = projection_invalid_from
        self._extracted: Set[Tuple[int, int]] = set(extracted or ())

    # =========================================================================
    # RAW ACCESS (read-only copies)
    # =========================================================================

    @property
    def state_events(self) -> List:
        return list(self._state_events)

    @property
    def narrative_events(self) -> List[NarrativeEvent]:
        return list(self._narrative_events)

    @property
    def chapter_snapshots(self) -> List[ChapterSnapshot]:
        return list(self._chapter_snapshots)

    @property
    def extracted(self) -> Set[Tuple[int, int]]:
        return set(self._extracted)

    # =========================================================================
    # APPEND
    # =========================================================================

    def _check(self, events: List, allowed: tuple, existing: List) -> None:
        known_ids = {e.id for e in existing}
        for event in events:
            if not isinstance(event, allowed):
                raise InvalidEventError(f"unexpected record type {type(event).__name__}")
            problem = validate_event(event)
            if problem:
                raise InvalidEventError(f"event {getattr(event, 'id', '?')}: {problem}")
            if event.id in known_ids:
                raise InvalidEventError(f"duplicate event id {event.id}")
            known_ids.add(event.id)

    def append(self, events: Iterable) -> List[str]:
        """Validate, insert and re-sort state events. Returns the new ids."""
        events = list(events)
        self._check(events, STATE_EVENT_CLASSES, self._state_events)
        self._state_events.extend(events)
        self._state_events.sort(key=_sort_key)
        return [e.id for e in events]

    def append_narrative(self, events: Iterable[NarrativeEvent]) -> List[str]:
        events = list(events)
        self._check(events, (NarrativeEvent,), self._narrative_events)
        self._narrative_events.extend(events)
        self._narrative_events.sort(key=_sort_key)
        return [e.id for e in events]

    # =========================================================================
    # SOFT DELETE / REPLACE
    # =========================================================================

    def _replace_where(self, events: List, predicate, transform) -> int:
        count = 0
        for index, event in enumerate(events):
            if predicate(event):
                events[index] = transform(event)
                count += 1
        return count

    def soft_delete(self, event_id: str) -> bool:
        """Soft-delete one event (state or narrative) by id."""
        for events in (self._state_events, self._narrative_events):
            for index, event in enumerate(events):
                if event.id == event_id:
                    events[index] = event.soft_deleted()
                    return True
        return False

    def soft_delete_at(self, message_id: int, swipe_id: Optional[int] = None) -> int:
        """
        Soft-delete every active event at a message.

        swipe_id=None deletes across all swipes (message deleted);
        otherwise only that swipe (re-extraction of one swipe).
        """
        def matches(event) -> bool:
            return (
                not event.deleted
                and event.message_id == message_id
                and (swipe_id is None or event.swipe_id == swipe_id)
            )

        count = self._replace_where(self._state_events, matches, lambda e: e.soft_deleted())
        count += self._replace_where(self._narrative_events, matches, lambda e: e.soft_deleted())
        return count

    def reindex_swipes_after_deletion(self, message_id: int, deleted_swipe_id: int) -> int:
        """
        Close the gap left by a deleted swipe.

        Swipe indices are positional: after swipe N is deleted, N+1 becomes N.
        Events on the deleted swipe are soft-deleted first, then every later
        swipe at that message is decremented. Snapshots taken on the deleted
        swipe are dropped; later ones are decremented too.
        Returns the number of events whose swipe_id changed.
        """
        self.soft_delete_at(message_id, deleted_swipe_id)

        def later(event) -> bool:
            return event.message_id == message_id and event.swipe_id > deleted_swipe_id

        def shift(event):
            return event.with_swipe(event.swipe_id - 1)

        count = self._replace_where(self._state_events, later, shift)
        count += self._replace_where(self._narrative_events, later, shift)

        snapshots = []
        for snapshot in self._chapter_snapshots:
            if snapshot.message_id == message_id:
                if snapshot.swipe_id == deleted_swipe_id:
                    continue
                if snapshot.swipe_id > deleted_swipe_id:
                    snapshot = replace(snapshot, swipe_id=snapshot.swipe_id - 1)
            snapshots.append(snapshot)
        self._chapter_snapshots = snapshots

        extracted = set()
        for extracted_message, extracted_swipe in self._extracted:
            if extracted_message == message_id:
                if extracted_swipe == deleted_swipe_id:
                    continue
                if extracted_swipe > deleted_swipe_id:
                    extracted_swipe -= 1
            extracted.add((extracted_message, extracted_swipe))
        self._extracted = extracted
        return count

    def delete_events_after_message(self, boundary: int) -> int:
        """Soft-delete everything past `boundary` (chat truncated or branched)."""
        def after(event) -> bool:
            return not event.deleted and event.message_id > boundary

        count = self._replace_where(self._state_events, after, lambda e: e.soft_deleted())
        count += self._replace_where(self._narrative_events, after, lambda e: e.soft_deleted())
        self._chapter_snapshots = [s for s in self._chapter_snapshots if s.message_id <= boundary]
        self._extracted = {key for key in self._extracted if key[0] <= boundary}
        return count

    def replace_at_message(self, message_id: int, swipe_id: int, events: Iterable) -> List[str]:
        """Soft-delete the state events at (message, swipe), then append `events`."""
        events = list(events)
        self._check(events, STATE_EVENT_CLASSES, self._state_events)

        def matches(event) -> bool:
            return not event.deleted and event.message_id == message_id and event.swipe_id == swipe_id

        self._replace_where(self._state_events, matches, lambda e: e.soft_deleted())
        return self.append(events)

    def replace_narrative_at_message(self, message_id: int, swipe_id: int,
                                     events: Iterable[NarrativeEvent]) -> List[str]:
        events = list(events)
        self._check(events, (NarrativeEvent,), self._narrative_events)

        def matches(event) -> bool:
            return not event.deleted and event.message_id == message_id and event.swipe_id == swipe_id

        self._replace_where(self._narrative_events, matches, lambda e: e.soft_deleted())
        return self.append_narrative(events)

    # =========================================================================
    # EDITING (full-field replacement)
    # =========================================================================

    def _update(self, events: List, event_id: str, changes) -> bool:
        for index, event in enumerate(events):
            if event.id == event_id:
                changes = {k: v for k, v in changes.items() if k != "id"}
                try:
                    events[index] = replace(event, **changes)
                except TypeError:
                    logger.warning("rejected update of %s: unknown field in %s", event_id, sorted(changes))
                    return False
                events.sort(key=_sort_key)
                return True
        return False

    def update_event(self, event_id: str, **changes) -> bool:
        return self._update(self._state_events, event_id, changes)

    def update_narrative_event(self, event_id: str, **changes) -> bool:
        return self._update(self._narrative_events, event_id, changes)

    def replace_narrative_event(self, event: NarrativeEvent) -> bool:
        """Swap in a new version of an existing narrative event (same id)."""
        for index, existing in enumerate(self._narrative_events):
            if existing.id == event.id:
                self._narrative_events[index] = event
                self._narrative_events.sort(key=_sort_key)
                return True
        return False

    # =========================================================================
    # QUERIES: STATE EVENTS
    # =========================================================================

    def get_event(self, event_id: str):
        for event in self._state_events:
            if event.id == event_id:
                return event
        for event in self._narrative_events:
            if event.id == event_id:
                return event
        return None

    def get_active_events(self) -> List:
        return [e for e in self._state_events if not e.deleted]

    def events_for_message(self, message_id: int, swipe_id: int) -> List:
        return [
            e for e in self._state_events
            if not e.deleted and e.message_id == message_id and e.swipe_id == swipe_id
        ]

    def events_up_to_message(
        self,
        message_id: int,
        swipe_id: int,
        canonical_swipe_of: CanonicalSwipeResolver,
        after_message_id: Optional[int] = None,
    ) -> List:
        """
        Canonical-path events in (after_message_id, message_id].

        Earlier messages contribute only their canonical swipe; the target
        message contributes the caller-supplied swipe_id.
        """
        selected = []
        for event in self._state_events:
            if event.deleted or event.message_id > message_id:
                continue
            if after_message_id is not None and event.message_id <= after_message_id:
                continue
            if event.message_id == message_id:
                if event.swipe_id == swipe_id:
                    selected.append(event)
            elif event.swipe_id == canonical_swipe_of(event.message_id):
                selected.append(event)
        return selected

    def relationship_events_for_pair(self, pair: Pair) -> List:
        key = pair_key(*pair)
        return [
            e for e in self._state_events
            if not e.deleted
            and isinstance(e, RELATIONSHIP_EVENT_CLASSES)
            and event_pair(e) is not None
            and pair_key(*event_pair(e)) == key
        ]

    def message_ids_with_events(self) -> List[int]:
        ids = {e.message_id for e in self._state_events if not e.deleted}
        ids.update(e.message_id for e in self._narrative_events if not e.deleted)
        return sorted(ids)

    def has_events_at_message(self, message_id: int) -> bool:
        return message_id in self.message_ids_with_events()

    def last_message_with_events(self, before: Optional[int] = None) -> int:
        """Highest message id holding any active event (optionally < before), or -1."""
        candidates = [
            m for m in self.message_ids_with_events()
            if before is None or m < before
        ]
        return candidates[-1] if candidates else -1

    def has_earlier_events_or_projections(self, message_id: int) -> bool:
        if self.initial_projection is not None:
            return True
        return any(m < message_id for m in self.message_ids_with_events())

    # =========================================================================
    # QUERIES: NARRATIVE EVENTS
    # =========================================================================

    def get_active_narrative_events(self) -> List[NarrativeEvent]:
        return [e for e in self._narrative_events if not e.deleted]

    def narrative_events_for_message(self, message_id: int) -> List[NarrativeEvent]:
        return [e for e in self.get_active_narrative_events() if e.message_id == message_id]

    def narrative_events_for_pair(self, pair: Pair) -> List[NarrativeEvent]:
        key = pair_key(*pair)
        return [e for e in self.get_active_narrative_events() if e.find_pair(key) is not None]

    def narrative_events_for_chapter(self, chapter_index: int) -> List[NarrativeEvent]:
        return [e for e in self.get_active_narrative_events() if e.chapter_index == chapter_index]

    def current_chapter_events(self) -> List[NarrativeEvent]:
        """Active narrative events not yet assigned to a closed chapter."""
        return [e for e in self.get_active_narrative_events() if e.chapter_index is None]

    def assign_events_to_chapter(self, event_ids: Iterable[str], chapter_index: int) -> int:
        wanted = set(event_ids)
        return self._replace_where(
            self._narrative_events,
            lambda e: e.id in wanted,
            lambda e: replace(e, chapter_index=chapter_index),
        )

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def set_initial_projection(self, projection: ProjectedState) -> None:
        self.initial_projection = projection

    def get_initial_projection(self) -> Optional[ProjectedState]:
        return self.initial_projection

    def save_chapter_snapshot(self, chapter_index: int, message_id: int, swipe_id: int,
                              projection: ProjectedState) -> ChapterSnapshot:
        """Store (or replace) the snapshot for a chapter; list stays sorted by chapter."""
        snapshot = ChapterSnapshot(
            chapter_index=chapter_index,
            message_id=message_id,
            swipe_id=swipe_id,
            projection=projection,
        )
        snapshots = [s for s in self._chapter_snapshots if s.chapter_index != chapter_index]
        snapshots.append(snapshot)
        self._chapter_snapshots = sorted(snapshots, key=lambda s: s.chapter_index)
        return snapshot

    def find_snapshot(self, message_id: int, canonical_swipe_of: CanonicalSwipeResolver,
                      target_swipe_id: Optional[int] = None) -> Optional[ChapterSnapshot]:
        """
        Latest chapter snapshot at or before message_id that is still on the
        canonical path. A snapshot AT message_id is only usable when it was
        taken on target_swipe_id (when given).
        """
        best = None
        for snapshot in self._chapter_snapshots:
            if snapshot.message_id > message_id:
                continue
            if snapshot.swipe_id != canonical_swipe_of(snapshot.message_id):
                continue
            if (
                snapshot.message_id == message_id
                and target_swipe_id is not None
                and snapshot.swipe_id != target_swipe_id
            ):
                continue
            if best is None or snapshot.message_id > best.message_id:
                best = snapshot
        return best

    def invalidate_snapshots_from(self, message_id: int) -> int:
        """Drop chapter snapshots whose boundary is at or after message_id."""
        before = len(self._chapter_snapshots)
        self._chapter_snapshots = [s for s in self._chapter_snapshots if s.message_id < message_id]
        return before - len(self._chapter_snapshots)

    rebuild_snapshots_after_message = invalidate_snapshots_from

    # =========================================================================
    # INVALIDATION WATERMARK (advisory)
    # =========================================================================

    def invalidate_projections_from(self, message_id: int) -> None:
        if self.projection_invalid_from is None or message_id < self.projection_invalid_from:
            self.projection_invalid_from = message_id

    def is_projection_invalidated(self, message_id: int) -> bool:
        if self.projection_invalid_from is None:
            return False
        return message_id >= self.projection_invalid_from

    def clear_projection_invalidation(self) -> None:
        self.projection_invalid_from = None

    # =========================================================================
    # EXTRACTION MARKERS (persisted)
    # =========================================================================

    def is_extracted(self, message_id: int, swipe_id: int) -> bool:
        return (message_id, swipe_id) in self._extracted

    def mark_extracted(self, message_id: int, swipe_id: int) -> None:
        self._extracted.add((message_id, swipe_id))

    def clear_extracted(self, message_id: int, swipe_id: Optional[int] = None) -> None:
        self._extracted = {
            key for key in self._extracted
            if not (key[0] == message_id and (swipe_id is None or key[1] == swipe_id))
        }

    # =========================================================================
    # FORECASTS
    # =========================================================================

    def add_forecast(self, area_name: str, forecast, message_id: int, swipe_id: int,
                     timestamp: int) -> Optional[str]:
        """
        Record a forecast for an area. Write-once per (area, message, swipe):
        returns None when one already exists.
        """
        area = area_name.lower()
        for event in self._state_events:
            if (
                isinstance(event, ForecastGeneratedEvent)
                and not event.deleted
                and event.area_name.lower() == area
                and event.message_id == message_id
                and event.swipe_id == swipe_id
            ):
                return None
        event = ForecastGeneratedEvent.create(
            message_id, swipe_id, timestamp, area_name=area_name, forecast=dict(forecast)
        )
        self.append([event])
        return event.id

    def latest_forecast_for_area(self, area_name: str):
        area = area_name.lower()
        matches = [
            e for e in self._state_events
            if isinstance(e, ForecastGeneratedEvent) and not e.deleted and e.area_name.lower() == area
        ]
        return matches[-1].forecast if matches else None

    def all_forecasts(self) -> Dict[str, dict]:
        """Latest forecast per area (keyed by the area name as last written)."""
        latest: Dict[str, ForecastGeneratedEvent] = {}
        for event in self._state_events:
            if isinstance(event, ForecastGeneratedEvent) and not event.deleted:
                latest[event.area_name.lower()] = event
        return {e.area_name: e.forecast for e in latest.values()}

    # =========================================================================
    # SUMMARY
    # =========================================================================

    def has_events(self) -> bool:
        return bool(self.get_active_events() or self.get_active_narrative_events())

    def event_count(self) -> int:
        return len(self.get_active_events()) + len(self.get_active_narrative_events())
