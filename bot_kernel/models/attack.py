"""Attack sequencing models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel

from bot_kernel.models.snapshot import Position


class AttackOutcome(str, Enum):
    """Neutral results of an attack sequence. None of them is an error."""

    COMPLETED = "completed"             # repetitions exhausted
    TARGET_GONE = "target_gone"         # dead, removed or no longer valid
    OUT_OF_RANGE = "out_of_range"       # not following and target left range
    UNREACHABLE = "unreachable"         # gave up after the allowed repositions
    TIMEOUT = "timeout"                 # burst window elapsed


class AttackState(BaseModel):
    """
    "Am I doing damage" tracking for one target.

    Timestamps are `time.monotonic()` readings; None means never.
    """

    target_id: int
    last_health: int
    last_health_check_at: float
    failed_attempt_started_at: Optional[float] = None
    last_reposition_at: Optional[float] = None
    reposition_attempts: int = 0
    position: Position


class AttackOptions(BaseModel):
    """How an attack sequence approaches and hits its target."""

    follow_enemy: bool = False
    min_distance: int = 0
    max_distance: int = 30
    stand_still: bool = False
    aura: Optional[str] = None
    burst: bool = False                 # re-select the closest enemy every iteration
    timeout: Optional[float] = None     # burst window; config default when None

    @classmethod
    def melee(cls, minimum: int, maximum: int, **kwargs) -> "AttackOptions":
        """Follow the enemy and stay within range."""
        return cls(follow_enemy=True, min_distance=minimum, max_distance=maximum, **kwargs)

    @classmethod
    def ranged(cls, minimum: int, maximum: int, **kwargs) -> "AttackOptions":
        return cls(follow_enemy=False, min_distance=minimum, max_distance=maximum, **kwargs)

    @classmethod
    def stationary(cls, minimum: int, maximum: int, **kwargs) -> "AttackOptions":
        """Hold position while attacking, for skills cast in place."""
        return cls(
            follow_enemy=False,
            min_distance=minimum,
            max_distance=maximum,
            stand_still=True,
            **kwargs,
        )
