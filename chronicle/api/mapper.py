"""
API Mapper
==========

Transforms projections, events and derived relationships into the plain
dicts the API returns. Field names follow the persisted camelCase form.
"""
from typing import Any, Dict, List

from ..contracts.projection import ProjectedState
from ..core.milestones import DerivedRelationship, MilestoneRecord
from ..storage.codec import encode_narrative_event, encode_state_event


def _value(item):
    return getattr(item, "value", item)


def map_projection(session_id: str, message_id: int, swipe_id: int, projection: ProjectedState) -> Dict[str, Any]:
    return {
        "session_id": session_id,
        "message_id": message_id,
        "swipe_id": swipe_id,
        "state": projection.to_dict(),
    }


def map_events(session_id: str, state_events: List, narrative_events: List) -> Dict[str, Any]:
    return {
        "session_id": session_id,
        "state_events": [encode_state_event(e) for e in state_events],
        "narrative_events": [encode_narrative_event(e) for e in narrative_events],
    }


def map_relationship(relationship: DerivedRelationship) -> Dict[str, Any]:
    return {
        "pair": list(relationship.pair),
        "status": _value(relationship.status),
        "a_to_b": relationship.a_to_b.to_dict(),
        "b_to_a": relationship.b_to_a.to_dict(),
        "milestone_event_ids": list(relationship.milestone_event_ids),
        "milestones": [_value(m) for m in relationship.milestones],
    }


def map_milestone(record: MilestoneRecord) -> Dict[str, Any]:
    return {
        "milestone_type": _value(record.milestone_type),
        "pair": list(record.pair),
        "event_id": record.event_id,
        "message_id": record.message_id,
        "description": record.description,
    }
