"""
Projection Contracts
====================

Reconstructed narrative state at a point in history.

A ProjectedState is never stored per message; it is COMPUTED by folding
state events onto a base (initial projection or chapter snapshot).
Projections are cached and shared between consumers, so every field is
immutable: tuples for lists, and mappings that are replaced, never edited.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Tuple

from .base import OutfitSlot, OUTFIT_SLOTS, Pair, RelationshipStatus, coerce_enum, pair_key, sort_pair
from .temporal import NarrativeDateTime


@dataclass(frozen=True)
class LocationState:
    area: str
    place: str
    position: str
    props: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "area": self.area,
            "place": self.place,
            "position": self.position,
            "props": list(self.props),
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> LocationState:
        return LocationState(
            area=str(data.get("area", "Unknown")),
            place=str(data.get("place", "Unknown")),
            position=str(data.get("position", "Unknown")),
            props=tuple(data.get("props") or ()),
        )


UNKNOWN_LOCATION = LocationState(area="Unknown", place="Unknown", position="Unknown")


@dataclass(frozen=True)
class CharacterOutfit:
    head: Optional[str] = None
    neck: Optional[str] = None
    jacket: Optional[str] = None
    back: Optional[str] = None
    torso: Optional[str] = None
    legs: Optional[str] = None
    footwear: Optional[str] = None
    socks: Optional[str] = None
    underwear: Optional[str] = None

    def get(self, slot: OutfitSlot) -> Optional[str]:
        return getattr(self, OutfitSlot(slot).value)

    def with_slot(self, slot: OutfitSlot, value: Optional[str]) -> CharacterOutfit:
        return replace(self, **{OutfitSlot(slot).value: value})

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {slot.value: self.get(slot) for slot in OUTFIT_SLOTS}

    @staticmethod
    def from_dict(data: Optional[Mapping[str, Any]]) -> CharacterOutfit:
        data = data or {}
        return CharacterOutfit(**{slot.value: data.get(slot.value) for slot in OUTFIT_SLOTS})


@dataclass(frozen=True)
class CharacterProjection:
    name: str
    position: str = "unknown"
    activity: Optional[str] = None
    mood: Tuple[str, ...] = ()
    physical_state: Tuple[str, ...] = ()
    outfit: CharacterOutfit = CharacterOutfit()

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "position": self.position,
            "mood": list(self.mood),
            "physicalState": list(self.physical_state),
            "outfit": self.outfit.to_dict(),
        }
        if self.activity is not None:
            data["activity"] = self.activity
        return data

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> CharacterProjection:
        return CharacterProjection(
            name=str(data["name"]),
            position=data.get("position") or "unknown",
            activity=data.get("activity"),
            mood=tuple(data.get("mood") or ()),
            physical_state=tuple(data.get("physicalState") or ()),
            outfit=CharacterOutfit.from_dict(data.get("outfit")),
        )


@dataclass(frozen=True)
class Attitude:
    feelings: Tuple[str, ...] = ()
    secrets: Tuple[str, ...] = ()
    wants: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feelings": list(self.feelings),
            "secrets": list(self.secrets),
            "wants": list(self.wants),
        }

    @staticmethod
    def from_dict(data: Optional[Mapping[str, Any]]) -> Attitude:
        data = data or {}
        return Attitude(
            feelings=tuple(data.get("feelings") or ()),
            secrets=tuple(data.get("secrets") or ()),
            wants=tuple(data.get("wants") or ()),
        )


@dataclass(frozen=True)
class RelationshipProjection:
    """Pairwise attitudes. a_to_b is held by pair[0] toward pair[1]."""
    pair: Pair
    status: RelationshipStatus = RelationshipStatus.STRANGERS
    a_to_b: Attitude = Attitude()
    b_to_a: Attitude = Attitude()

    @property
    def key(self) -> str:
        return pair_key(*self.pair)

    def holds_a_to_b(self, from_character: str) -> bool:
        return from_character.lower() == self.pair[0].lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pair": list(self.pair),
            "status": getattr(self.status, "value", self.status),
            "aToB": self.a_to_b.to_dict(),
            "bToA": self.b_to_a.to_dict(),
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> RelationshipProjection:
        first, second = data["pair"]
        return RelationshipProjection(
            pair=sort_pair(str(first), str(second)),
            status=coerce_enum(RelationshipStatus, data.get("status") or "strangers"),
            a_to_b=Attitude.from_dict(data.get("aToB")),
            b_to_a=Attitude.from_dict(data.get("bToA")),
        )


@dataclass(frozen=True)
class ProjectedState:
    """
    Narrative state at one message.

    characters: name -> CharacterProjection
    relationships: pair_key -> RelationshipProjection
    forecasts: area name -> opaque forecast payload
    """
    time: Optional[NarrativeDateTime] = None
    location: Optional[LocationState] = None
    characters: Mapping[str, CharacterProjection] = field(default_factory=dict)
    relationships: Mapping[str, RelationshipProjection] = field(default_factory=dict)
    forecasts: Mapping[str, Any] = field(default_factory=dict)

    @staticmethod
    def empty() -> ProjectedState:
        return ProjectedState()

    def character(self, name: str) -> Optional[CharacterProjection]:
        return self.characters.get(name)

    def relationship(self, first: str, second: str) -> Optional[RelationshipProjection]:
        return self.relationships.get(pair_key(first, second))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time.to_dict() if self.time else None,
            "location": self.location.to_dict() if self.location else None,
            "characters": {name: char.to_dict() for name, char in self.characters.items()},
            "relationships": {key: rel.to_dict() for key, rel in self.relationships.items()},
            "forecasts": {area: dict(forecast) for area, forecast in self.forecasts.items()},
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> ProjectedState:
        """
        Inverse of to_dict.

        Accepts time as a date-time record or an ISO string. Relationship
        keys are normalized to lowercase. A missing forecasts map is empty.
        """
        raw_time = data.get("time")
        if isinstance(raw_time, str):
            time = NarrativeDateTime.from_iso(raw_time)
        elif raw_time:
            time = NarrativeDateTime.from_dict(raw_time)
        else:
            time = None

        raw_location = data.get("location")
        characters = {
            str(name): CharacterProjection.from_dict(dict(char, name=char.get("name", name)))
            for name, char in (data.get("characters") or {}).items()
        }
        relationships = {}
        for rel_data in (data.get("relationships") or {}).values():
            rel = RelationshipProjection.from_dict(rel_data)
            relationships[rel.key] = rel

        return ProjectedState(
            time=time,
            location=LocationState.from_dict(raw_location) if raw_location else None,
            characters=characters,
            relationships=relationships,
            forecasts=dict(data.get("forecasts") or {}),
        )


@dataclass(frozen=True)
class ChapterSnapshot:
    """
    Cached projection at a chapter boundary.

    Covers every canonical event with message_id <= self.message_id.
    Valid only while swipe_id is still canonical at that message.
    """
    chapter_index: int
    message_id: int
    swipe_id: int
    projection: ProjectedState

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chapterIndex": self.chapter_index,
            "messageId": self.message_id,
            "swipeId": self.swipe_id,
            "projection": self.projection.to_dict(),
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> ChapterSnapshot:
        return ChapterSnapshot(
            chapter_index=int(data["chapterIndex"]),
            message_id=int(data["messageId"]),
            swipe_id=int(data.get("swipeId", 0)),
            projection=ProjectedState.from_dict(data["projection"]),
        )
