"""
Chapter Boundary Tests
======================
"""

from chronicle.contracts.projection import LocationState
from chronicle.contracts.temporal import NarrativeDateTime
from chronicle.core.chapters import (
    BoundaryReason, Chapter, check_chapter_boundary, format_chapter, format_chapters,
)

from tests.fixtures import MORNING, narrative

TAVERN = LocationState("Riverside", "Tavern", "bar")
EVENING = NarrativeDateTime(2024, 6, 15, 18, 30, 0, "Saturday")


class TestBoundary:

    def test_same_place_short_gap(self):
        later = NarrativeDateTime(2024, 6, 15, 10, 59, 0)
        result = check_chapter_boundary(TAVERN, TAVERN, MORNING, later)
        assert result.triggered is False
        assert result.reason is None

    def test_place_comparison_ignores_case(self):
        shouting = LocationState("RIVERSIDE", "tavern", "table")
        assert check_chapter_boundary(TAVERN, shouting, None, None).triggered is False

    def test_location_change(self):
        dock = LocationState("Riverside", "Dock", "pier")
        result = check_chapter_boundary(TAVERN, dock, None, None)
        assert result.reason == BoundaryReason.LOCATION_CHANGE
        assert result.location_change.from_location == "Riverside - Tavern"
        assert result.location_change.to_location == "Riverside - Dock"

    def test_time_jump_at_threshold(self):
        later = NarrativeDateTime(2024, 6, 15, 11, 0, 0)
        result = check_chapter_boundary(TAVERN, TAVERN, MORNING, later)
        assert result.reason == BoundaryReason.TIME_JUMP
        assert result.time_jump.minutes == 60
        assert result.time_jump.formatted == "1 hour"

    def test_custom_threshold(self):
        later = NarrativeDateTime(2024, 6, 15, 11, 0, 0)
        assert check_chapter_boundary(None, None, MORNING, later, threshold_minutes=120).triggered is False

    def test_backwards_time_is_not_a_jump(self):
        assert check_chapter_boundary(None, None, EVENING, MORNING).triggered is False

    def test_both(self):
        dock = LocationState("Riverside", "Dock", "pier")
        result = check_chapter_boundary(TAVERN, dock, MORNING, EVENING)
        assert result.reason == BoundaryReason.BOTH
        assert result.time_jump.formatted == "8 hours, 30 minutes"


class TestChapter:

    def test_from_events(self):
        events = [
            narrative("arrive", ("conversation",), message_id=1, location="Tavern", narrative_timestamp=MORNING),
            narrative("argue", ("argument",), message_id=2, location="Dock"),
            narrative("leave", ("conversation",), message_id=4, location="Tavern", narrative_timestamp=EVENING),
        ]
        chapter = Chapter.from_events(0, events, reason=BoundaryReason.TIME_JUMP)
        assert chapter.title == "Chapter 1"
        assert chapter.boundary_message_id == 4
        assert chapter.event_ids == tuple(e.id for e in events)
        assert chapter.primary_location == "Tavern"
        assert (chapter.start_time, chapter.end_time) == (MORNING, EVENING)

    def test_empty_chapter(self):
        chapter = Chapter.from_events(2, [], boundary_message_id=7, title="Quiet")
        assert chapter.primary_location == "Unknown"
        assert chapter.boundary_message_id == 7

    def test_format(self):
        chapter = Chapter(
            index=0, title="Arrival", boundary_message_id=3, summary="They meet.",
            primary_location="Tavern", start_time=MORNING, end_time=EVENING,
            relationship_changes=("Alice warms to Bob",),
        )
        text = format_chapter(chapter)
        assert text.startswith("## Chapter 1: Arrival\nLocation: Tavern\n")
        assert "Time: Saturday, June 15, 2024 at 10:00 AM - Saturday, June 15, 2024 at 6:30 PM" in text
        assert text.endswith("Relationship changes: Alice warms to Bob")

    def test_format_list(self):
        assert format_chapters([]) == "No previous chapters."
        chapters = [Chapter(index=i, title=f"C{i}", boundary_message_id=i) for i in range(3)]
        text = format_chapters(chapters, limit=2)
        assert "C0" not in text
        assert text.count("\n\n---\n\n") == 1
