"""
Core Narrative Layer

RESPONSIBILITY: Milestones, relationship status, chapter boundaries
ALLOWED INPUTS: UnifiedEventStore (narrative events), projections
OUTPUTS: Re-tagged narrative events, DerivedRelationship, BoundaryCheckResult

WHAT THIS LAYER MUST NOT DO:
============================
- Fold state events (temporal layer's job)
- Persist data (storage layer's job)
- Accept extracted milestone tags; milestones are always derived
"""

from .milestones import (
    DerivedRelationship, MilestoneRecord, all_pairs, compute_status_from_milestones,
    milestones_for_event, milestones_for_pair, project_relationship,
    promote_next_event_for_milestone, recompute_first_for, reproject_relationships,
    tag_first_for,
)
from .chapters import (
    BoundaryCheckResult, BoundaryReason, Chapter, ChapterConfig,
    check_chapter_boundary, format_chapter, format_chapters,
)
from .relationships import (
    find_unestablished_pairs, format_relationship, format_relationships,
    projection_to_tracked_state, tracked_state_to_projection,
)
