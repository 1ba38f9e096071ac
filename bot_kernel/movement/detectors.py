"""
Stuck and round-trip detection.

Both detectors are fed one sample per movement iteration with an explicit
clock reading, so they hold no timers of their own.

Precedence: stuck detection is evaluated first. Round-trip detection only
looks at samples where the avatar actually changed tile; a stationary
avatar is the stuck detector's business.
"""

import logging
from enum import Enum
from typing import Optional

from bot_kernel.models.snapshot import Position

logger = logging.getLogger(__name__)


class StuckVerdict(str, Enum):
    MOVED = "moved"         # tile changed (or stunned) since the previous sample
    STILL = "still"         # unchanged, below the block threshold
    BLOCKED = "blocked"     # soft: unchanged past the block threshold
    ESCAPE = "escape"       # stuck threshold reached, an escape attempt is due
    STUCK = "stuck"         # hard: escapes exhausted or total stuck time exceeded


class RoundTripVerdict(str, Enum):
    CLEAR = "clear"
    BLOCKED = "blocked"
    ROUND_TRIP = "round_trip"


def teleport_stuck_threshold(
    cast_duration: float, ping_ms: int, minimum: float, maximum: float
) -> float:
    """Three missed casts plus a network round trip and a safety margin."""
    threshold = cast_duration * 3 + (ping_ms * 2) / 1000.0 + 0.2
    return max(minimum, min(maximum, threshold))


class StuckDetector:
    def __init__(
        self,
        block_threshold: float,
        stuck_threshold: float,
        max_stuck_duration: float,
        max_escape_attempts: int,
        now: float,
    ):
        self.block_threshold = block_threshold
        self.stuck_threshold = stuck_threshold
        self.max_stuck_duration = max_stuck_duration
        self.max_escape_attempts = max_escape_attempts

        self.escape_attempts = 0
        self.total_stuck = 0.0
        self._previous: Optional[Position] = None
        self._stuck_since = now
        self._last_sample_at = now

    @property
    def stuck_for(self) -> float:
        return self._last_sample_at - self._stuck_since

    def observe(self, position: Position, stunned: bool, now: float) -> StuckVerdict:
        elapsed = now - self._last_sample_at
        self._last_sample_at = now
        previous, self._previous = self._previous, position

        if previous is None or position != previous or stunned:
            if self.escape_attempts:
                logger.debug(
                    "Movement resumed, resetting stuck detection: escape_attempts=%d",
                    self.escape_attempts,
                )
            self._stuck_since = now
            self.escape_attempts = 0
            return StuckVerdict.MOVED

        self.total_stuck += elapsed
        stuck_for = now - self._stuck_since

        if self.total_stuck > self.max_stuck_duration:
            return StuckVerdict.STUCK
        if stuck_for > self.stuck_threshold:
            if self.escape_attempts < self.max_escape_attempts:
                self.escape_attempts += 1
                self._stuck_since = now
                return StuckVerdict.ESCAPE
            return StuckVerdict.STUCK
        if stuck_for > self.block_threshold:
            return StuckVerdict.BLOCKED
        return StuckVerdict.STILL


class RoundTripDetector:
    """
    Flags oscillation around a reference point without net progress.

    A sample makes progress when its distance to the destination does not
    exceed the previous sample's and is strictly below the distance at the
    start of the current window. Leaving the radius starts a new window.
    """

    def __init__(self, threshold: float, radius: int, now: float):
        self.threshold = threshold
        self.radius = radius
        self.reference: Optional[Position] = None
        self.window_started_at = now
        self._window_start_distance = 0.0
        self._previous_distance = 0.0

    def _reset(self, position: Position, distance: float, now: float) -> None:
        self.reference = position
        self.window_started_at = now
        self._window_start_distance = distance
        self._previous_distance = distance

    def observe(self, position: Position, distance: float, now: float) -> RoundTripVerdict:
        if self.reference is None or position.distance_to(self.reference) > self.radius:
            self._reset(position, distance, now)
            return RoundTripVerdict.CLEAR

        progress = (
            distance <= self._previous_distance
            and distance < self._window_start_distance
        )
        self._previous_distance = distance
        if progress:
            return RoundTripVerdict.CLEAR

        in_window = now - self.window_started_at
        if in_window > self.threshold:
            return RoundTripVerdict.ROUND_TRIP
        if in_window > self.threshold / 2:
            return RoundTripVerdict.BLOCKED
        return RoundTripVerdict.CLEAR
