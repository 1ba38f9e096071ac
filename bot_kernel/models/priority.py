"""Priority tiers used by the cooperative arbitrator."""

from enum import IntEnum


class Priority(IntEnum):
    """
    Scheduling rank of a logical loop.

    Lower values preempt higher ones: High preempts Normal, Normal runs
    ahead of Background. Pause blocks every loop; Stop is terminal.
    """

    HIGH = 0
    NORMAL = 1
    BACKGROUND = 5
    PAUSE = 10
    STOP = 100
