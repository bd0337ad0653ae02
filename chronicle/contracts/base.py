"""
Base Contracts and Shared Types

These are the foundational types used across all layers.
All types here are IMMUTABLE and represent pure data.

BOUNDARY ENFORCEMENT:
=====================
- This module is READ-ONLY from all layers
- Layers may import types but MUST NOT modify this module
- Enumerations are closed sets; unknown values stay plain strings
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional, Tuple
from enum import Enum, auto


# =============================================================================
# ERROR STATES (Explicit, never silent)
# =============================================================================

class ErrorCode(Enum):
    """
    Explicit error codes for deterministic error handling.
    Expected failures are returned as data, never raised.
    """
    # Event errors
    MALFORMED_EVENT = auto()
    UNKNOWN_EVENT_ID = auto()

    # Persistence errors
    MALFORMED_PAYLOAD = auto()
    UNKNOWN_VERSION = auto()
    SESSION_NOT_FOUND = auto()

    # Projection errors
    SNAPSHOT_NOT_FOUND = auto()

    # Ingestion errors
    EXTRACTION_IN_PROGRESS = auto()
    ALREADY_EXTRACTED = auto()
    CANCELLED = auto()


@dataclass(frozen=True)
class Error:
    """
    Immutable error representation with full context.
    Errors are data, not exceptions - they can be stored and queried.
    """
    code: ErrorCode
    message: str
    timestamp: datetime
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    @staticmethod
    def create(code: ErrorCode, message: str) -> Error:
        return Error(code=code, message=message, timestamp=datetime.now(timezone.utc))

    def with_context(self, key: str, value: str) -> Error:
        """Return new Error with additional context (immutable)."""
        return Error(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            context=self.context + ((key, value),)
        )


@dataclass(frozen=True)
class Result:
    """
    Generic result type for operations that can fail.
    Either contains a value OR an error, never both.
    """
    value: Optional[object] = None
    error: Optional[Error] = None

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    @staticmethod
    def success(value: object) -> Result:
        return Result(value=value, error=None)

    @staticmethod
    def failure(error: Error) -> Result:
        return Result(value=None, error=error)


class ChronicleError(Exception):
    """Base class for the few conditions that are raised instead of returned."""
    pass


class MissingSnapshotError(ChronicleError):
    """Raised by strict projection when no initial projection was ever recorded."""
    pass


class InvalidEventError(ChronicleError):
    """Raised when a malformed event is offered to the store."""
    pass


class IngestionCancelled(ChronicleError):
    """Raised by CancellationToken.raise_if_cancelled()."""
    pass


# =============================================================================
# DOMAIN ENUMERATIONS
# =============================================================================

class EventType(str, Enum):
    """Interaction types a narrative event may carry."""
    CONVERSATION = "conversation"
    CONFESSION = "confession"
    ARGUMENT = "argument"
    NEGOTIATION = "negotiation"
    DISCOVERY = "discovery"
    SECRET_SHARED = "secret_shared"
    SECRET_REVEALED = "secret_revealed"
    EMOTIONAL = "emotional"
    EMOTIONALLY_INTIMATE = "emotionally_intimate"
    SUPPORTIVE = "supportive"
    REJECTION = "rejection"
    COMFORT = "comfort"
    APOLOGY = "apology"
    FORGIVENESS = "forgiveness"
    LAUGH = "laugh"
    GIFT = "gift"
    COMPLIMENT = "compliment"
    TEASE = "tease"
    FLIRT = "flirt"
    DATE = "date"
    I_LOVE_YOU = "i_love_you"
    SLEEPOVER = "sleepover"
    SHARED_MEAL = "shared_meal"
    SHARED_ACTIVITY = "shared_activity"
    INTIMATE_TOUCH = "intimate_touch"
    INTIMATE_KISS = "intimate_kiss"
    INTIMATE_EMBRACE = "intimate_embrace"
    INTIMATE_HEATED = "intimate_heated"
    INTIMATE_FOREPLAY = "intimate_foreplay"
    INTIMATE_ORAL = "intimate_oral"
    INTIMATE_MANUAL = "intimate_manual"
    INTIMATE_PENETRATIVE = "intimate_penetrative"
    INTIMATE_CLIMAX = "intimate_climax"
    ACTION = "action"
    COMBAT = "combat"
    DANGER = "danger"
    DECISION = "decision"
    PROMISE = "promise"
    BETRAYAL = "betrayal"
    LIED = "lied"
    EXCLUSIVITY = "exclusivity"
    MARRIAGE = "marriage"
    PREGNANCY = "pregnancy"
    CHILDBIRTH = "childbirth"
    SOCIAL = "social"
    ACHIEVEMENT = "achievement"
    HELPED = "helped"
    COMMON_INTEREST = "common_interest"
    OUTING = "outing"
    DEFENDED = "defended"
    CRISIS_TOGETHER = "crisis_together"
    VULNERABILITY = "vulnerability"
    SHARED_VULNERABILITY = "shared_vulnerability"
    ENTRUSTED = "entrusted"


class MilestoneType(str, Enum):
    """First-occurrence markers derived per character pair."""
    FIRST_MEETING = "first_meeting"
    FIRST_TOUCH = "first_touch"
    FIRST_KISS = "first_kiss"
    FIRST_EMBRACE = "first_embrace"
    FIRST_HEATED = "first_heated"
    FIRST_FOREPLAY = "first_foreplay"
    FIRST_ORAL = "first_oral"
    FIRST_MANUAL = "first_manual"
    FIRST_PENETRATIVE = "first_penetrative"
    FIRST_CLIMAX = "first_climax"
    CONFESSION = "confession"
    FIRST_I_LOVE_YOU = "first_i_love_you"
    FIRST_LAUGH = "first_laugh"
    FIRST_GIFT = "first_gift"
    FIRST_DATE = "first_date"
    FIRST_SLEEPOVER = "first_sleepover"
    FIRST_SHARED_MEAL = "first_shared_meal"
    FIRST_SHARED_ACTIVITY = "first_shared_activity"
    FIRST_COMPLIMENT = "first_compliment"
    FIRST_TEASE = "first_tease"
    FIRST_FLIRT = "first_flirt"
    FIRST_HELPED = "first_helped"
    FIRST_COMMON_INTEREST = "first_common_interest"
    FIRST_OUTING = "first_outing"
    FIRST_COMFORT = "first_comfort"
    FIRST_SUPPORT = "first_support"
    FIRST_VULNERABILITY = "first_vulnerability"
    FIRST_CONFLICT = "first_conflict"
    DEFENDED = "defended"
    CRISIS_TOGETHER = "crisis_together"
    TRUSTED_WITH_TASK = "trusted_with_task"
    SECRET_SHARED = "secret_shared"
    SECRET_REVEALED = "secret_revealed"
    MAJOR_ARGUMENT = "major_argument"
    RECONCILIATION = "reconciliation"
    BETRAYAL = "betrayal"
    PROMISE_MADE = "promise_made"
    PROMISE_BROKEN = "promise_broken"
    PROMISED_EXCLUSIVITY = "promised_exclusivity"
    EMOTIONAL_INTIMACY = "emotional_intimacy"
    SACRIFICE = "sacrifice"
    MARRIAGE = "marriage"
    PREGNANCY = "pregnancy"
    HAD_CHILD = "had_child"


class RelationshipStatus(str, Enum):
    STRANGERS = "strangers"
    ACQUAINTANCES = "acquaintances"
    FRIENDLY = "friendly"
    CLOSE = "close"
    INTIMATE = "intimate"
    STRAINED = "strained"
    HOSTILE = "hostile"
    COMPLICATED = "complicated"


class OutfitSlot(str, Enum):
    HEAD = "head"
    NECK = "neck"
    JACKET = "jacket"
    BACK = "back"
    TORSO = "torso"
    LEGS = "legs"
    FOOTWEAR = "footwear"
    SOCKS = "socks"
    UNDERWEAR = "underwear"


# Diff order for outfit synthesis.
OUTFIT_SLOTS: Tuple[OutfitSlot, ...] = tuple(OutfitSlot)


class TensionLevel(str, Enum):
    RELAXED = "relaxed"
    AWARE = "aware"
    GUARDED = "guarded"
    TENSE = "tense"
    CHARGED = "charged"
    VOLATILE = "volatile"
    EXPLOSIVE = "explosive"


class TensionType(str, Enum):
    CONFRONTATION = "confrontation"
    INTIMATE = "intimate"
    VULNERABLE = "vulnerable"
    CELEBRATORY = "celebratory"
    NEGOTIATION = "negotiation"
    SUSPENSE = "suspense"
    CONVERSATION = "conversation"


def coerce_enum(enum_cls, value):
    """Return the enum member for value, or the raw value if it is not a member."""
    try:
        return enum_cls(value)
    except ValueError:
        return value


# =============================================================================
# MILESTONE TABLE (many-to-one)
# =============================================================================

EVENT_TYPE_TO_MILESTONE: Dict[EventType, MilestoneType] = {
    EventType.INTIMATE_TOUCH: MilestoneType.FIRST_TOUCH,
    EventType.INTIMATE_KISS: MilestoneType.FIRST_KISS,
    EventType.INTIMATE_EMBRACE: MilestoneType.FIRST_EMBRACE,
    EventType.INTIMATE_HEATED: MilestoneType.FIRST_HEATED,
    EventType.INTIMATE_FOREPLAY: MilestoneType.FIRST_FOREPLAY,
    EventType.INTIMATE_ORAL: MilestoneType.FIRST_ORAL,
    EventType.INTIMATE_MANUAL: MilestoneType.FIRST_MANUAL,
    EventType.INTIMATE_PENETRATIVE: MilestoneType.FIRST_PENETRATIVE,
    EventType.INTIMATE_CLIMAX: MilestoneType.FIRST_CLIMAX,
    EventType.CONFESSION: MilestoneType.CONFESSION,
    EventType.I_LOVE_YOU: MilestoneType.FIRST_I_LOVE_YOU,
    EventType.LAUGH: MilestoneType.FIRST_LAUGH,
    EventType.GIFT: MilestoneType.FIRST_GIFT,
    EventType.DATE: MilestoneType.FIRST_DATE,
    EventType.SLEEPOVER: MilestoneType.FIRST_SLEEPOVER,
    EventType.SHARED_MEAL: MilestoneType.FIRST_SHARED_MEAL,
    EventType.SHARED_ACTIVITY: MilestoneType.FIRST_SHARED_ACTIVITY,
    EventType.COMPLIMENT: MilestoneType.FIRST_COMPLIMENT,
    EventType.TEASE: MilestoneType.FIRST_TEASE,
    EventType.FLIRT: MilestoneType.FIRST_FLIRT,
    EventType.HELPED: MilestoneType.FIRST_HELPED,
    EventType.COMMON_INTEREST: MilestoneType.FIRST_COMMON_INTEREST,
    EventType.OUTING: MilestoneType.FIRST_OUTING,
    EventType.EMOTIONALLY_INTIMATE: MilestoneType.EMOTIONAL_INTIMACY,
    EventType.SUPPORTIVE: MilestoneType.FIRST_SUPPORT,
    EventType.COMFORT: MilestoneType.FIRST_COMFORT,
    EventType.FORGIVENESS: MilestoneType.RECONCILIATION,
    EventType.DEFENDED: MilestoneType.DEFENDED,
    EventType.CRISIS_TOGETHER: MilestoneType.CRISIS_TOGETHER,
    EventType.SHARED_VULNERABILITY: MilestoneType.FIRST_VULNERABILITY,
    EventType.ENTRUSTED: MilestoneType.TRUSTED_WITH_TASK,
    EventType.SECRET_SHARED: MilestoneType.SECRET_SHARED,
    EventType.SECRET_REVEALED: MilestoneType.SECRET_REVEALED,
    EventType.ARGUMENT: MilestoneType.FIRST_CONFLICT,
    EventType.COMBAT: MilestoneType.FIRST_CONFLICT,
    EventType.BETRAYAL: MilestoneType.BETRAYAL,
    EventType.PROMISE: MilestoneType.PROMISE_MADE,
    EventType.EXCLUSIVITY: MilestoneType.PROMISED_EXCLUSIVITY,
    EventType.MARRIAGE: MilestoneType.MARRIAGE,
    EventType.PREGNANCY: MilestoneType.PREGNANCY,
    EventType.CHILDBIRTH: MilestoneType.HAD_CHILD,
}


# =============================================================================
# CHARACTER PAIRS
# =============================================================================

Pair = Tuple[str, str]


def sort_pair(first: str, second: str) -> Pair:
    """Order two names alphabetically (case-insensitive, then exact)."""
    if (first.casefold(), first) <= (second.casefold(), second):
        return (first, second)
    return (second, first)


def derive_pair(from_character: Optional[str], toward_character: Optional[str]) -> Optional[Pair]:
    """Sorted pair for a directional event, or None if either name is empty."""
    if not from_character or not toward_character:
        return None
    return sort_pair(from_character, toward_character)


def pair_key(first: str, second: str) -> str:
    """Order-independent, case-insensitive key: 'alice|bob'."""
    a, b = sort_pair(first, second)
    return f"{a}|{b}".lower()


def pair_keys(pairs) -> FrozenSet[str]:
    return frozenset(pair_key(a, b) for a, b in pairs)
