"""
Engine Orchestration Module

One ChronicleEngine per chat session. It coordinates the layers while
keeping their boundaries intact.

DESIGN PRINCIPLES:
==================
1. Layers communicate ONLY through contracts
2. The store is the single source of truth; projections are derived
3. All mutations are traceable through the audit collectors
4. Expected failures come back as Result values; only strict projection raises

LAYER FLOW:
===========
1. Extraction (external): ExtractionBatch per (message, swipe)
2. Normalization: candidates deduplicated against the prior projection
3. Event store: accepted events appended
4. Core: first_for tags re-derived for the touched pairs
5. Projection: read on demand
6. Storage: whole store persisted per session
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple
import os

from .contracts.base import (
    Error, ErrorCode, IngestionCancelled, InvalidEventError, Pair, Result,
)
from .contracts.events import STATE_EVENT_CLASSES, NarrativeEvent, validate_event
from .contracts.projection import ProjectedState
from .core.chapters import BoundaryCheckResult, BoundaryReason, Chapter, ChapterConfig, check_chapter_boundary
from .core.milestones import (
    DerivedRelationship, MilestoneRecord, milestones_for_pair,
    promote_next_event_for_milestone, recompute_first_for, reproject_relationships,
)
from .normalization import Deduplicator
from .observability import (
    AuditEventType, ObservabilityConfig, ObservabilityEngine, SessionAdapter, get_logger,
)
from .storage import StorageBackend, StorageConfig
from .temporal.clock import LogicalClock
from .temporal.event_log import CanonicalSwipeResolver, UnifiedEventStore, canonical_from_chat
from .temporal.migrations import LegacyMessage, MigrationReport, migrate, store_from_document
from .temporal.replay import ProjectionConfig, ProjectionEngine

logger = get_logger(__name__)

_TRUE = ("1", "true", "yes", "on")


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class EngineConfig:
    """Unified configuration for a session engine."""
    storage: StorageConfig = None
    projection: ProjectionConfig = None
    chapters: ChapterConfig = None
    observability: ObservabilityConfig = None

    def __post_init__(self):
        self.storage = self.storage or StorageConfig()
        self.projection = self.projection or ProjectionConfig()
        self.chapters = self.chapters or ChapterConfig()
        self.observability = self.observability or ObservabilityConfig()

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> EngineConfig:
        """
        Build a config from CHRONICLE_* environment variables.

        CHRONICLE_STORAGE_DIR switches to the file backend.
        """
        environ = os.environ if environ is None else environ
        storage_dir = environ.get("CHRONICLE_STORAGE_DIR")
        threshold = environ.get("CHRONICLE_CHAPTER_THRESHOLD")
        return EngineConfig(
            storage=StorageConfig(backend_type="file", storage_dir=storage_dir) if storage_dir else None,
            projection=ProjectionConfig(
                strict=environ.get("CHRONICLE_STRICT_PROJECTION", "").lower() in _TRUE,
            ),
            chapters=ChapterConfig(time_threshold_minutes=int(threshold)) if threshold else None,
            observability=ObservabilityConfig(
                log_level=environ.get("CHRONICLE_LOG_LEVEL", "INFO").upper(),
            ),
        )


# =============================================================================
# INGESTION CONTRACTS
# =============================================================================

class CancellationToken:
    """Cooperative cancellation, checked between batches."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise IngestionCancelled("ingestion cancelled")


@dataclass(frozen=True)
class ExtractionBatch:
    """Everything extracted for one (message, swipe)."""
    message_id: int
    swipe_id: int
    state_events: Tuple = ()
    narrative_events: Tuple[NarrativeEvent, ...] = ()


@dataclass
class IngestResult:
    results: List[Result] = field(default_factory=list)
    cancelled: bool = False

    @property
    def applied(self) -> int:
        return sum(1 for r in self.results if r.is_success)

    @property
    def rejected(self) -> int:
        return sum(1 for r in self.results if r.is_failure)


def _failure(code: ErrorCode, message: str, batch: ExtractionBatch) -> Result:
    error = (
        Error.create(code, message)
        .with_context("message_id", str(batch.message_id))
        .with_context("swipe_id", str(batch.swipe_id))
    )
    return Result.failure(error)


def _validate_batch(batch: ExtractionBatch, store: UnifiedEventStore) -> None:
    """Reject the whole batch before anything touches the store."""
    for event in batch.state_events:
        if not isinstance(event, STATE_EVENT_CLASSES):
            raise InvalidEventError(f"unexpected record type {type(event).__name__}")
    for event in batch.narrative_events:
        if not isinstance(event, NarrativeEvent):
            raise InvalidEventError(f"unexpected record type {type(event).__name__}")
    seen = set()
    for event in tuple(batch.state_events) + tuple(batch.narrative_events):
        if event.id in seen or store.get_event(event.id) is not None:
            raise InvalidEventError(f"duplicate event id {event.id}")
        seen.add(event.id)
        problem = validate_event(event)
        if problem:
            raise InvalidEventError(f"event {getattr(event, 'id', '?')}: {problem}")
        if (event.message_id, event.swipe_id) != (batch.message_id, batch.swipe_id):
            raise InvalidEventError(
                f"event {event.id} belongs to ({event.message_id}, {event.swipe_id}), "
                f"not ({batch.message_id}, {batch.swipe_id})"
            )


# =============================================================================
# ENGINE
# =============================================================================

def _first_changed_message(old: List[int], new: List[int]) -> Optional[int]:
    for message_id in range(max(len(old), len(new))):
        before = old[message_id] if message_id < len(old) else 0
        after = new[message_id] if message_id < len(new) else 0
        if before != after:
            return message_id
    return None


class ChronicleEngine:
    """
    Session facade over the event store.

    GUARANTEES:
    ===========
    1. A (message, swipe) is extracted at most once until it is invalidated
    2. A rejected batch leaves the store untouched
    3. Cancellation never interrupts a batch half-way
    """

    def __init__(
        self,
        session_id: str,
        config: Optional[EngineConfig] = None,
        backend: Optional[StorageBackend] = None,
        clock: Optional[LogicalClock] = None,
        store: Optional[UnifiedEventStore] = None,
    ):
        self._session_id = session_id
        self._config = config or EngineConfig()
        self._backend = backend or self._config.storage.create_backend()
        self._clock = clock or LogicalClock()
        self._observability = ObservabilityEngine(self._config.observability)
        self._log = SessionAdapter(logger, session_id)
        self._in_progress: Set[Tuple[int, int]] = set()
        self._swipes: List[int] = []
        self._canonical: CanonicalSwipeResolver = canonical_from_chat([])

        if store is None:
            store = self._backend.load(session_id)
            if store is None:
                self._log.info("no stored events for session, starting empty")
                store = UnifiedEventStore()
            else:
                self._audit("storage").record(
                    AuditEventType.STORE_LOADED, session_id=session_id, events=store.event_count()
                )
        self._store = store
        self._deduplicator = Deduplicator(self._audit("normalization"))

    @classmethod
    def from_document(
        cls,
        session_id: str,
        document: Mapping[str, Any],
        messages: Sequence[LegacyMessage] = (),
        config: Optional[EngineConfig] = None,
        backend: Optional[StorageBackend] = None,
        clock: Optional[LogicalClock] = None,
    ) -> ChronicleEngine:
        """Migrate a narrative-state document of any generation and open it."""
        report: MigrationReport = migrate(document, messages, clock)
        store = store_from_document(report.document)
        if store is None:
            logger.warning("migrated document has no readable event store; starting empty",
                           extra={"session_id": session_id})
            store = UnifiedEventStore()
        engine = cls(session_id, config=config, backend=backend, clock=clock, store=store)
        engine._audit("migrations").record(
            AuditEventType.MIGRATION_APPLIED,
            from_version=report.from_version,
            to_version=report.to_version,
            steps=",".join(report.steps),
            warnings=len(report.warnings),
        )
        return engine

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def store(self) -> UnifiedEventStore:
        return self._store

    @property
    def config(self) -> EngineConfig:
        return self._config

    def _audit(self, layer: str):
        return self._observability.collector(layer)

    def audit_entries(self):
        return self._observability.all_entries()

    def set_canonical_swipes(self, swipes: List[int]) -> None:
        """
        Selected swipe per message, in chat order (missing -> 0).

        Chapter snapshots at or after the first message whose selection
        changed were taken on another path and are dropped.
        """
        swipes = [s or 0 for s in swipes]
        changed = _first_changed_message(self._swipes, swipes)
        self._swipes = swipes
        self._canonical = canonical_from_chat(swipes)
        if changed is None:
            return
        dropped = self._store.invalidate_snapshots_from(changed)
        self._store.invalidate_projections_from(changed)
        if dropped:
            self._audit("storage").record(AuditEventType.SNAPSHOTS_INVALIDATED,
                                          message_id=changed, count=dropped)

    def _resolver(self, canonical_swipe_of: Optional[CanonicalSwipeResolver]) -> CanonicalSwipeResolver:
        return canonical_swipe_of or self._canonical

    def _projection(self) -> ProjectionEngine:
        return ProjectionEngine(self._store, self._config.projection)

    # =========================================================================
    # EXTRACTION
    # =========================================================================

    def begin_extraction(self, message_id: int, swipe_id: int) -> bool:
        """Claim (message, swipe) for extraction. False if already claimed."""
        key = (message_id, swipe_id)
        if key in self._in_progress:
            return False
        self._in_progress.add(key)
        return True

    def end_extraction(self, message_id: int, swipe_id: int) -> None:
        self._in_progress.discard((message_id, swipe_id))

    def is_extracting(self, message_id: int, swipe_id: int) -> bool:
        return (message_id, swipe_id) in self._in_progress

    def set_initial_projection(self, projection: ProjectedState) -> None:
        self._store.set_initial_projection(projection)

    def add_forecast(self, area_name: str, forecast: Mapping[str, Any], message_id: int,
                     swipe_id: int) -> Optional[str]:
        return self._store.add_forecast(area_name, forecast, message_id, swipe_id, self._clock.now_ms())

    def complete_extraction(self, batch: ExtractionBatch,
                            canonical_swipe_of: Optional[CanonicalSwipeResolver] = None) -> Result:
        """
        Apply one batch: deduplicate state events, replace the message's
        events, and re-derive milestones for the touched pairs.

        Returns Result.success(new event ids) or a failure describing why
        the batch was rejected.
        """
        resolver = self._resolver(canonical_swipe_of)
        collector = self._audit("ingestion")
        try:
            if self._store.is_extracted(batch.message_id, batch.swipe_id):
                collector.record(AuditEventType.BATCH_REJECTED, message_id=batch.message_id,
                                 swipe_id=batch.swipe_id, reason="already_extracted")
                return _failure(ErrorCode.ALREADY_EXTRACTED, "message already extracted", batch)
            try:
                _validate_batch(batch, self._store)
            except InvalidEventError as exc:
                self._log.warning("rejected batch: %s", exc,
                                  extra={"message_id": batch.message_id, "swipe_id": batch.swipe_id})
                collector.record(AuditEventType.BATCH_REJECTED, message_id=batch.message_id,
                                 swipe_id=batch.swipe_id, reason=str(exc))
                return _failure(ErrorCode.MALFORMED_EVENT, str(exc), batch)

            new_ids = self._deduplicator.replace_state_events_for_message(
                self._store, batch.message_id, batch.swipe_id, batch.state_events, resolver
            )
            new_ids += self._store.replace_narrative_at_message(
                batch.message_id, batch.swipe_id, batch.narrative_events
            )
            touched = {a.key for e in batch.narrative_events for a in e.affected_pairs}
            if touched:
                recompute_first_for(self._store, batch.message_id, touched)
            self._store.invalidate_snapshots_from(batch.message_id)
            self._store.mark_extracted(batch.message_id, batch.swipe_id)
            collector.record(AuditEventType.BATCH_INGESTED, message_id=batch.message_id,
                             swipe_id=batch.swipe_id, count=len(new_ids))
            return Result.success(new_ids)
        finally:
            self.end_extraction(batch.message_id, batch.swipe_id)

    def ingest_batches(
        self,
        batches: Iterable[ExtractionBatch],
        canonical_swipe_of: Optional[CanonicalSwipeResolver] = None,
        token: Optional[CancellationToken] = None,
    ) -> IngestResult:
        """Apply batches in order, stopping before the next batch once cancelled."""
        outcome = IngestResult()
        for batch in batches:
            if token is not None and token.cancelled:
                self._log.info("ingestion cancelled after %d batches", len(outcome.results),
                               extra={"count": len(outcome.results)})
                self._audit("ingestion").record(AuditEventType.INGESTION_CANCELLED,
                                                applied=outcome.applied)
                outcome.cancelled = True
                return outcome
            if not self.begin_extraction(batch.message_id, batch.swipe_id):
                outcome.results.append(
                    _failure(ErrorCode.EXTRACTION_IN_PROGRESS, "extraction already in progress", batch)
                )
                continue
            outcome.results.append(self.complete_extraction(batch, canonical_swipe_of))
        return outcome

    # =========================================================================
    # CHAPTERS
    # =========================================================================

    def check_boundary(self, message_id: int, swipe_id: Optional[int] = None,
                       canonical_swipe_of: Optional[CanonicalSwipeResolver] = None) -> BoundaryCheckResult:
        resolver = self._resolver(canonical_swipe_of)
        swipe_id = resolver(message_id) if swipe_id is None else swipe_id
        engine = self._projection()
        previous = engine.project_before(message_id, resolver)
        current = engine.project_at(message_id, swipe_id, resolver, strict=False)
        return check_chapter_boundary(
            previous.location, current.location, previous.time, current.time,
            self._config.chapters.time_threshold_minutes,
        )

    def _next_chapter_index(self) -> int:
        indices = [e.chapter_index for e in self._store.narrative_events if e.chapter_index is not None]
        indices.extend(s.chapter_index for s in self._store.chapter_snapshots)
        return max(indices) + 1 if indices else 0

    def close_chapter(self, boundary_message_id: int, title: Optional[str] = None, summary: str = "",
                      reason: Optional[BoundaryReason] = None,
                      canonical_swipe_of: Optional[CanonicalSwipeResolver] = None) -> Chapter:
        """Assign the open narrative events up to the boundary and snapshot it."""
        resolver = self._resolver(canonical_swipe_of)
        index = self._next_chapter_index()
        events = [e for e in self._store.current_chapter_events() if e.message_id <= boundary_message_id]
        self._store.assign_events_to_chapter([e.id for e in events], index)

        swipe_id = resolver(boundary_message_id)
        projection = self._projection().project_at(boundary_message_id, swipe_id, resolver, strict=False)
        self._store.save_chapter_snapshot(index, boundary_message_id, swipe_id, projection)
        self._audit("storage").record(AuditEventType.SNAPSHOT_SAVED, chapter_index=index,
                                      message_id=boundary_message_id, swipe_id=swipe_id)
        return Chapter.from_events(index, events, boundary_message_id, title=title,
                                   summary=summary, reason=reason)

    # =========================================================================
    # CHAT WORKFLOWS
    # =========================================================================

    def on_swipe_deleted(self, message_id: int, swipe_id: int) -> int:
        shifted = self._store.reindex_swipes_after_deletion(message_id, swipe_id)
        self._in_progress = {
            (m, s - 1 if m == message_id and s > swipe_id else s)
            for m, s in self._in_progress
            if (m, s) != (message_id, swipe_id)
        }
        self._store.invalidate_projections_from(message_id)
        recompute_first_for(self._store, message_id)
        self._audit("storage").record(AuditEventType.SWIPES_REINDEXED, message_id=message_id,
                                      swipe_id=swipe_id, count=shifted)
        return shifted

    def on_message_edited(self, message_id: int, swipe_id: Optional[int] = None) -> int:
        """Forget what was extracted for an edited message so it can be re-extracted."""
        deleted = self._store.soft_delete_at(message_id, swipe_id)
        self._store.clear_extracted(message_id, swipe_id)
        dropped = self._store.invalidate_snapshots_from(message_id)
        self._store.invalidate_projections_from(message_id)
        recompute_first_for(self._store, message_id)
        self._audit("storage").record(AuditEventType.EVENTS_DELETED, message_id=message_id,
                                      count=deleted)
        if dropped:
            self._audit("storage").record(AuditEventType.SNAPSHOTS_INVALIDATED,
                                          message_id=message_id, count=dropped)
        return deleted

    def on_chat_truncated(self, boundary: int) -> int:
        deleted = self._store.delete_events_after_message(boundary)
        self._store.invalidate_projections_from(boundary + 1)
        self._audit("storage").record(AuditEventType.EVENTS_DELETED, message_id=boundary, count=deleted)
        return deleted

    def delete_narrative_event(self, event_id: str) -> bool:
        """
        Soft-delete a narrative event and hand its milestones on.

        Each milestone it carried is promoted to the next qualifying event,
        then first_for is re-derived from its message for the same pairs.
        """
        event = self._store.get_event(event_id)
        if not isinstance(event, NarrativeEvent) or event.deleted:
            return False
        self._store.soft_delete(event_id)
        for affected in event.affected_pairs:
            for milestone in affected.first_for:
                promote_next_event_for_milestone(self._store, affected.pair, milestone)
        keys = [a.key for a in event.affected_pairs]
        rewritten = recompute_first_for(self._store, event.message_id, keys) if keys else 0
        self._audit("milestones").record(AuditEventType.MILESTONES_RECOMPUTED,
                                         message_id=event.message_id, count=rewritten)
        return True

    # =========================================================================
    # READS
    # =========================================================================

    def project_at(self, message_id: int, swipe_id: Optional[int] = None,
                   canonical_swipe_of: Optional[CanonicalSwipeResolver] = None,
                   strict: Optional[bool] = None) -> ProjectedState:
        resolver = self._resolver(canonical_swipe_of)
        swipe_id = resolver(message_id) if swipe_id is None else swipe_id
        return self._projection().project_at(message_id, swipe_id, resolver, strict=strict)

    def project_current(self, canonical_swipe_of: Optional[CanonicalSwipeResolver] = None) -> ProjectedState:
        resolver = self._resolver(canonical_swipe_of)
        return self._projection().project_current(self._store.last_message_with_events(), resolver)

    def relationships(self) -> List[DerivedRelationship]:
        return reproject_relationships(self._store)

    def milestones(self, pair: Pair) -> List[MilestoneRecord]:
        return milestones_for_pair(self._store, pair)

    def events_at(self, message_id: int) -> Dict[str, List]:
        return {
            "state": [e for e in self._store.get_active_events() if e.message_id == message_id],
            "narrative": self._store.narrative_events_for_message(message_id),
        }

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def save(self) -> None:
        self._backend.save(self._session_id, self._store)
        self._audit("storage").record(AuditEventType.STORE_SAVED, session_id=self._session_id,
                                      events=self._store.event_count())
