"""
Chapter Boundaries
==================

A chapter closes when the scene moves to a different area or place, or
when narrative time jumps past a threshold. Closing a chapter assigns the
open narrative events to it and caches a snapshot at the boundary.
"""

from __future__ import annotations
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from ..contracts.events import NarrativeEvent
from ..contracts.projection import LocationState
from ..contracts.temporal import (
    NarrativeDateTime, TimeDelta, format_date_time, format_time_elapsed,
)


@dataclass
class ChapterConfig:
    time_threshold_minutes: int = 60


class BoundaryReason(str, Enum):
    LOCATION_CHANGE = "location_change"
    TIME_JUMP = "time_jump"
    BOTH = "both"


@dataclass(frozen=True)
class LocationChange:
    from_location: str
    to_location: str


@dataclass(frozen=True)
class TimeJump:
    minutes: int
    formatted: str


@dataclass(frozen=True)
class BoundaryCheckResult:
    triggered: bool
    reason: Optional[BoundaryReason] = None
    location_change: Optional[LocationChange] = None
    time_jump: Optional[TimeJump] = None


NO_BOUNDARY = BoundaryCheckResult(triggered=False)


def _label(location: LocationState) -> str:
    return f"{location.area} - {location.place}"


def check_chapter_boundary(
    previous_location: Optional[LocationState],
    current_location: Optional[LocationState],
    previous_time: Optional[NarrativeDateTime],
    current_time: Optional[NarrativeDateTime],
    threshold_minutes: int = 60,
) -> BoundaryCheckResult:
    """
    Compare two consecutive states.

    Area and place compare case-insensitively; a position change alone
    never closes a chapter. Backwards time never counts as a jump.
    """
    location_change = None
    if previous_location is not None and current_location is not None:
        if (
            previous_location.area.lower() != current_location.area.lower()
            or previous_location.place.lower() != current_location.place.lower()
        ):
            location_change = LocationChange(_label(previous_location), _label(current_location))

    time_jump = None
    if previous_time is not None and current_time is not None:
        minutes = TimeDelta.between(previous_time, current_time).total_minutes
        if minutes >= threshold_minutes:
            time_jump = TimeJump(minutes=minutes, formatted=format_time_elapsed(minutes))

    if location_change and time_jump:
        reason = BoundaryReason.BOTH
    elif location_change:
        reason = BoundaryReason.LOCATION_CHANGE
    elif time_jump:
        reason = BoundaryReason.TIME_JUMP
    else:
        return NO_BOUNDARY
    return BoundaryCheckResult(True, reason, location_change, time_jump)


@dataclass(frozen=True)
class Chapter:
    """Closed chapter; events are referenced by id, never copied."""
    index: int
    title: str
    boundary_message_id: int
    event_ids: Tuple[str, ...] = ()
    summary: str = ""
    primary_location: str = "Unknown"
    start_time: Optional[NarrativeDateTime] = None
    end_time: Optional[NarrativeDateTime] = None
    relationship_changes: Tuple[str, ...] = ()
    secrets_revealed: Tuple[str, ...] = ()
    reason: Optional[BoundaryReason] = None

    @staticmethod
    def from_events(index: int, events: List[NarrativeEvent], boundary_message_id: Optional[int] = None,
                    title: Optional[str] = None, summary: str = "",
                    reason: Optional[BoundaryReason] = None) -> Chapter:
        times = [e.narrative_timestamp for e in events if e.narrative_timestamp is not None]
        locations = [e.location for e in events if e.location]
        if boundary_message_id is None:
            boundary_message_id = events[-1].message_id if events else 0
        return Chapter(
            index=index,
            title=title or f"Chapter {index + 1}",
            boundary_message_id=boundary_message_id,
            event_ids=tuple(e.id for e in events),
            summary=summary,
            primary_location=Counter(locations).most_common(1)[0][0] if locations else "Unknown",
            start_time=times[0] if times else None,
            end_time=times[-1] if times else None,
            reason=reason,
        )


def format_chapter(chapter: Chapter) -> str:
    lines = [
        f"## Chapter {chapter.index + 1}: {chapter.title}",
        f"Location: {chapter.primary_location}",
    ]
    if chapter.start_time and chapter.end_time:
        lines.append(f"Time: {format_date_time(chapter.start_time)} - {format_date_time(chapter.end_time)}")
    lines.append("")
    lines.append(chapter.summary)

    if chapter.relationship_changes:
        lines.append("")
        lines.append(f"Relationship changes: {'; '.join(chapter.relationship_changes)}")
    if chapter.secrets_revealed:
        lines.append(f"Secrets revealed: {'; '.join(chapter.secrets_revealed)}")
    return "\n".join(lines)


def format_chapters(chapters: List[Chapter], limit: Optional[int] = None) -> str:
    if not chapters:
        return "No previous chapters."
    selected = chapters[-limit:] if limit else chapters
    return "\n\n---\n\n".join(format_chapter(c) for c in selected)
