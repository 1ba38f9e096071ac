"""
Priority Arbitrator — the cooperative gate in front of the input device.

Behavioral Contract:
- Exactly one tier is active at any instant.
- A loop proceeds only while its own tier is the active one; everyone else
  waits on a change notification instead of polling.
- Stop is terminal: any waiter unwinds with SessionStoppedError.
- The timeout variant never hangs. False means "not acquired", and the
  caller is expected to carry on with a warning.
"""

import asyncio
import logging
from typing import Callable, List

from bot_kernel.errors import SessionStoppedError
from bot_kernel.models.priority import Priority

logger = logging.getLogger(__name__)


class PriorityArbitrator:
    """Holds the active tier and wakes waiters whenever it changes."""

    def __init__(self, initial: Priority = Priority.NORMAL):
        self._active = initial
        self._changed = asyncio.Event()
        self._listeners: List[Callable[[Priority, Priority], None]] = []

    @property
    def active(self) -> Priority:
        return self._active

    def is_active(self, tier: Priority) -> bool:
        return self._active == tier

    def on_change(self, listener: Callable[[Priority, Priority], None]) -> None:
        """Register a callback receiving (previous, current) after each switch."""
        self._listeners.append(listener)

    def switch_priority(self, tier: Priority) -> None:
        """
        Make `tier` the active one and wake every waiter.

        Switching away from Stop is refused; a stopped session stays stopped.
        """
        previous = self._active
        if tier == previous:
            return
        if previous == Priority.STOP:
            logger.debug("Ignoring switch to %s, session already stopped", tier.name)
            return

        self._active = tier
        # fresh event per switch, current waiters hold the one being set
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

        logger.debug("Priority switched %s -> %s", previous.name, tier.name)
        for listener in list(self._listeners):
            listener(previous, tier)

    def reset(self, tier: Priority = Priority.NORMAL) -> None:
        """Start over for a new game, leaving a previous Stop behind."""
        previous = self._active
        self._active = tier
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()
        logger.debug("Priority reset %s -> %s", previous.name, tier.name)

    async def pause_if_not_priority(self, tier: Priority) -> None:
        """Block until `tier` is active. Raises SessionStoppedError on Stop."""
        while True:
            if self._active == Priority.STOP:
                raise SessionStoppedError()
            if self._active == tier:
                return
            await self._changed.wait()

    async def pause_if_not_priority_with_timeout(
        self, tier: Priority, timeout: float
    ) -> bool:
        """Like `pause_if_not_priority` but gives up after `timeout` seconds."""
        if self._active == tier:
            return True
        if timeout <= 0:
            if self._active == Priority.STOP:
                raise SessionStoppedError()
            return False
        try:
            await asyncio.wait_for(self.pause_if_not_priority(tier), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False
