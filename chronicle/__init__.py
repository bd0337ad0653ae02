"""
Chronicle Engine

Event-sourced narrative state for branching roleplay chats. Every message
may have several swipes; exactly one is canonical at a time. The state at
any message (time, location, characters, relationships) is never stored;
it is folded from an append-only event log.

LAYER STRUCTURE:
================

1. CONTRACTS (contracts/)
   - Responsibility: Frozen record types, enums, error types, pair helpers
   - MUST NOT: Contain behaviour beyond construction helpers

2. TEMPORAL LAYER (temporal/)
   - Responsibility: Event store, pure state fold, projection, migrations
   - Allowed inputs: State and narrative events, persisted documents
   - Outputs: ProjectedState, UnifiedEventStore
   - MUST NOT: Decide what was said in a message

3. NORMALIZATION LAYER (normalization/)
   - Responsibility: Drop candidates that would not change state
   - Allowed inputs: Candidate events, the projection before the message
   - Outputs: Filtered candidates, diff-synthesized events

4. CORE NARRATIVE LAYER (core/)
   - Responsibility: Milestones, relationship status, chapter boundaries
   - MUST NOT: Accept milestone tags from extraction

5. STORAGE LAYER (storage/)
   - Responsibility: Document codec and per-session backends
   - MUST NOT: Raise on malformed stored data

6. OBSERVABILITY & AUDIT LAYER (observability/)
   - Responsibility: Structured logging, append-only audit collectors

7. API (api/)
   - Responsibility: Read-only HTTP access to stored sessions

CONSTRAINTS ENFORCED:
=====================
- Immutability-first: events and projections are frozen
- Append-only: events are soft-deleted, never removed
- Deterministic: snapshot-assisted projection equals full replay
- Explicit errors: expected failures are Result values
"""

__version__ = "0.1.0"
