"""
Temporal Layer

RESPONSIBILITY: Event log, state folding, projection, schema migrations
ALLOWED INPUTS: State and narrative events, persisted documents
OUTPUTS: ProjectedState, UnifiedEventStore

INVARIANTS:
===========
- State is never stored per message; it is folded from the log on demand
- Snapshots are a cache: project_at() equals full_replay() for any target
- The fold is pure; projections may be shared freely
"""

from .clock import LogicalClock, ClockExhausted
from .event_log import (
    UnifiedEventStore, CanonicalSwipeResolver, CURRENT_STORE_VERSION, canonical_from_chat,
)
from .state_machine import StateMachine, apply, missing_transitions
from .replay import ProjectionEngine, ProjectionConfig, ProjectionBase
