"""
Relationship helpers and tracked-state bridges.

Tracked state is the flat per-message shape hosts and legacy documents use:
``{"time": {...}, "location": {...}, "characters": [...], "relationships": [...]}``.
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..contracts.base import Pair, pair_key, sort_pair
from ..contracts.projection import (
    CharacterProjection, LocationState, ProjectedState, RelationshipProjection,
)
from ..contracts.temporal import NarrativeDateTime


def find_unestablished_pairs(present_characters: List[str], known_pairs: Iterable[Pair]) -> List[Pair]:
    """Sorted pairs of present characters with no relationship yet."""
    if len(present_characters) < 2:
        return []
    known = {pair_key(a, b) for a, b in known_pairs}
    missing = []
    for i, first in enumerate(present_characters):
        for second in present_characters[i + 1:]:
            if pair_key(first, second) not in known:
                missing.append(sort_pair(first, second))
    return missing


def format_relationship(relationship: RelationshipProjection, include_secrets: bool = True) -> str:
    a, b = relationship.pair
    status = getattr(relationship.status, "value", relationship.status)
    lines = [f"## {a} & {b} ({status})"]
    for holder, other, attitude in ((a, b, relationship.a_to_b), (b, a, relationship.b_to_a)):
        lines.append(f"{holder} → {other}:")
        lines.append(f"  Feelings: {', '.join(attitude.feelings) or 'neutral'}")
        if attitude.wants:
            lines.append(f"  Wants: {', '.join(attitude.wants)}")
        if include_secrets and attitude.secrets:
            lines.append(f"  Secrets ({other} doesn't know): {', '.join(attitude.secrets)}")
    return "\n".join(lines)


def format_relationships(relationships: Iterable[RelationshipProjection],
                         present_characters: Optional[List[str]] = None,
                         include_secrets: bool = True) -> str:
    relationships = list(relationships)
    if not relationships:
        return "No established relationships."
    if present_characters:
        present = {name.lower() for name in present_characters}
        relationships = [
            r for r in relationships
            if r.pair[0].lower() in present and r.pair[1].lower() in present
        ]
    if not relationships:
        return "No established relationships between present characters."
    return "\n\n".join(format_relationship(r, include_secrets) for r in relationships)


# =============================================================================
# TRACKED STATE BRIDGES
# =============================================================================

def projection_to_tracked_state(projection: ProjectedState) -> Dict[str, Any]:
    tracked: Dict[str, Any] = {}
    if projection.time is not None:
        tracked["time"] = projection.time.to_dict()
    if projection.location is not None:
        tracked["location"] = projection.location.to_dict()
    if projection.characters:
        characters = []
        for char in projection.characters.values():
            data = char.to_dict()
            if not char.physical_state:
                del data["physicalState"]
            characters.append(data)
        tracked["characters"] = characters
    return tracked


def tracked_state_to_projection(tracked: Optional[Mapping[str, Any]],
                                include_relationships: bool = False) -> ProjectedState:
    """
    Build a projection from a tracked-state mapping.

    Relationships are only read when asked for; tracked states usually
    carry them elsewhere.
    """
    tracked = tracked or {}
    raw_time = tracked.get("time")
    if isinstance(raw_time, str):
        time = NarrativeDateTime.from_iso(raw_time)
    elif raw_time:
        time = NarrativeDateTime.from_dict(raw_time)
    else:
        time = None

    characters = {}
    for data in tracked.get("characters") or ():
        char = CharacterProjection.from_dict(data)
        characters[char.name] = char

    relationships = {}
    if include_relationships:
        raw = tracked.get("relationships") or ()
        if isinstance(raw, Mapping):
            raw = raw.values()
        for data in raw:
            rel = RelationshipProjection.from_dict(data)
            relationships[rel.key] = rel

    raw_location = tracked.get("location")
    return ProjectedState(
        time=time,
        location=LocationState.from_dict(raw_location) if raw_location else None,
        characters=characters,
        relationships=relationships,
    )
