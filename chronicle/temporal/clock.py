"""
Logical Clock for Event Timestamps
==================================

Injectable clock that stamps events with epoch milliseconds.

GUARANTEES:
- Timestamps handed out by one clock never decrease
- Never reads system time in replay mode
- All ticks are logged so a session can be replayed byte-identically
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List


class ClockExhausted(Exception):
    """Raised when replay clock runs out of ticks."""
    pass


@dataclass
class LogicalClock:
    """
    Source of event `timestamp` values.

    MODES:
    ======
    1. LIVE mode: wall-clock milliseconds, bumped by one when the wall
       clock has not advanced since the previous tick
    2. REPLAY mode: pre-recorded tick sequence
    """
    _ticks: List[int] = field(default_factory=list)
    _current_index: int = 0
    _is_live: bool = True

    def now_ms(self) -> int:
        if self._is_live:
            current = int(datetime.now(timezone.utc).timestamp() * 1000)
            if self._ticks and current <= self._ticks[-1]:
                current = self._ticks[-1] + 1
            self._ticks.append(current)
            self._current_index = len(self._ticks)
            return current

        if self._current_index >= len(self._ticks):
            raise ClockExhausted(
                f"no recorded tick left at position {self._current_index} "
                f"({len(self._ticks)} recorded)"
            )
        tick = self._ticks[self._current_index]
        self._current_index += 1
        return tick

    def tick_count(self) -> int:
        return self._current_index

    def is_live(self) -> bool:
        return self._is_live

    def get_tick_log(self) -> List[int]:
        return list(self._ticks)

    @classmethod
    def for_replay(cls, ticks: List[int]) -> LogicalClock:
        return cls(_ticks=list(ticks), _current_index=0, _is_live=False)

    @classmethod
    def stepping(cls, start: int, count: int, step: int = 1) -> LogicalClock:
        """Replay clock with evenly spaced ticks (used by migrations and tests)."""
        return cls.for_replay([start + i * step for i in range(count)])
