"""
Projection Engine
=================

Reconstructs narrative state at any message.

ALGORITHM:
1. Pick a base: latest canonical chapter snapshot <= target, else the
   initial projection, else the empty state
2. Gather canonical-path events after the base, up to the target
   (the target message uses the caller-supplied swipe)
3. Fold in (message_id, timestamp) order

INVARIANT: snapshot use is a pure optimization.
project_at(...) == full_replay(...) for every store and target.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Tuple

from ..contracts.base import MissingSnapshotError
from ..contracts.projection import ProjectedState
from .event_log import UnifiedEventStore, CanonicalSwipeResolver
from .state_machine import StateMachine


@dataclass
class ProjectionConfig:
    strict: bool = False
    use_snapshots: bool = True


@dataclass(frozen=True)
class ProjectionBase:
    """Where a projection started from."""
    state: ProjectedState
    after_message_id: Optional[int]
    source: str  # "chapter", "initial" or "empty"


class ProjectionEngine:
    """
    Read-only state reconstruction over a UnifiedEventStore.

    GUARANTEES:
    ===========
    1. Never mutates the store or any cached projection
    2. Snapshot path and full replay agree
    3. Only strict mode raises (MissingSnapshotError)
    """

    def __init__(self, store: UnifiedEventStore, config: Optional[ProjectionConfig] = None):
        self._store = store
        self._config = config or ProjectionConfig()

    def _base_for(self, message_id: int, swipe_id: int, canonical_swipe_of: CanonicalSwipeResolver,
                  use_snapshots: bool) -> ProjectionBase:
        if use_snapshots:
            snapshot = self._store.find_snapshot(message_id, canonical_swipe_of, target_swipe_id=swipe_id)
            if snapshot is not None:
                return ProjectionBase(snapshot.projection, snapshot.message_id, "chapter")
        initial = self._store.get_initial_projection()
        if initial is not None:
            return ProjectionBase(initial, None, "initial")
        return ProjectionBase(ProjectedState.empty(), None, "empty")

    def project_at(
        self,
        message_id: int,
        swipe_id: int,
        canonical_swipe_of: CanonicalSwipeResolver,
        strict: Optional[bool] = None,
    ) -> ProjectedState:
        """
        State after every canonical event up to and including message_id,
        with swipe_id selected at message_id.

        Raises MissingSnapshotError in strict mode when no initial
        projection has ever been recorded.
        """
        strict = self._config.strict if strict is None else strict
        if strict and self._store.get_initial_projection() is None:
            raise MissingSnapshotError(
                "No snapshot available for projection. Initial extraction required."
            )

        base = self._base_for(message_id, swipe_id, canonical_swipe_of, self._config.use_snapshots)
        events = self._store.events_up_to_message(
            message_id, swipe_id, canonical_swipe_of, after_message_id=base.after_message_id
        )
        return StateMachine.fold(base.state, events)

    def full_replay(self, message_id: int, swipe_id: int,
                    canonical_swipe_of: CanonicalSwipeResolver) -> ProjectedState:
        """Reference projection that ignores chapter snapshots."""
        base = self._base_for(message_id, swipe_id, canonical_swipe_of, use_snapshots=False)
        events = self._store.events_up_to_message(message_id, swipe_id, canonical_swipe_of)
        return StateMachine.fold(base.state, events)

    def project_before(self, message_id: int, canonical_swipe_of: CanonicalSwipeResolver) -> ProjectedState:
        """State immediately before message_id on the canonical path."""
        if message_id <= 0:
            return self._store.get_initial_projection() or ProjectedState.empty()
        previous = message_id - 1
        return self.project_at(previous, canonical_swipe_of(previous), canonical_swipe_of, strict=False)

    def project_current(self, last_message_id: int, canonical_swipe_of: CanonicalSwipeResolver) -> ProjectedState:
        if last_message_id < 0:
            return ProjectedState.empty()
        return self.project_at(last_message_id, canonical_swipe_of(last_message_id), canonical_swipe_of)

    def verify_determinism(self, message_id: int, swipe_id: int,
                           canonical_swipe_of: CanonicalSwipeResolver) -> Tuple[bool, Optional[str]]:
        """
        Compare the snapshot-assisted projection with a full replay.

        Returns (True, None) when they agree, else (False, description).
        """
        fast = self.project_at(message_id, swipe_id, canonical_swipe_of, strict=False)
        reference = self.full_replay(message_id, swipe_id, canonical_swipe_of)
        if fast == reference:
            return True, None
        differing = [
            name for name in ("time", "location", "characters", "relationships", "forecasts")
            if getattr(fast, name) != getattr(reference, name)
        ]
        return False, f"Projection mismatch at message {message_id}: {', '.join(differing)}"
