"""
Emergency Exit — leave the game before a fight turns fatal.

Behavioral Contract:
- Runs ahead of the potion and chicken checks on every health tick.
- Two triggers: life at or below `emergency_exit_at`, or a damage spike
  where life dropped by `damage_spike_threshold` points or more inside
  `damage_spike_window` seconds.
- Does nothing while disabled, in town or dead.
- Raises EmergencyExitError, a critical error, so the session ends.
"""

import logging
import time
from collections import deque
from typing import Callable, Deque, NamedTuple, Optional

from bot_kernel.errors import EmergencyExitError
from bot_kernel.models.config import HealthConfig
from bot_kernel.session.context import SessionHandle

logger = logging.getLogger(__name__)


class HPSample(NamedTuple):
    hp: int
    at: float


class EmergencyExitMonitor:
    def __init__(
        self,
        config: Optional[HealthConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or HealthConfig()
        self.clock = clock
        self.history: Deque[HPSample] = deque(maxlen=self.config.hp_history_size)

    def check(self, handle: SessionHandle) -> None:
        cfg = self.config
        if not cfg.emergency_exit_enabled:
            return
        snapshot = handle.snapshot
        player = snapshot.player
        if snapshot.is_town or player.is_dead:
            return

        hp = player.hp_percent
        self._record(hp)

        if cfg.emergency_exit_at > 0 and hp <= cfg.emergency_exit_at:
            logger.error(
                "Emergency exit, life threshold reached: hp=%d%% threshold=%d%%",
                hp, cfg.emergency_exit_at,
            )
            raise EmergencyExitError(
                f"life {hp}% at or below emergency threshold {cfg.emergency_exit_at}%"
            )

        if cfg.damage_spike_enabled:
            lost = self._damage_in_window()
            if lost >= cfg.damage_spike_threshold > 0:
                logger.error(
                    "Emergency exit, damage spike: lost=%d%% window=%.2fs threshold=%d%%",
                    lost, cfg.damage_spike_window, cfg.damage_spike_threshold,
                )
                raise EmergencyExitError(
                    f"lost {lost}% life in {cfg.damage_spike_window:.1f}s"
                )

    def _record(self, hp: int) -> None:
        now = self.clock()
        self.history.append(HPSample(hp, now))
        cutoff = now - self.config.hp_history_window
        while self.history and self.history[0].at < cutoff:
            self.history.popleft()

    def _damage_in_window(self) -> int:
        """Life lost between the oldest sample inside the window and the latest one."""
        if len(self.history) < 2 or self.config.damage_spike_window <= 0:
            return 0
        latest = self.history[-1]
        cutoff = latest.at - self.config.damage_spike_window
        oldest = next((s for s in self.history if s.at > cutoff), latest)
        return oldest.hp - latest.hp

    def reset(self) -> None:
        self.history.clear()
