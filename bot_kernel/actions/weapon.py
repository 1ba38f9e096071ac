"""Weapon set swapping, bounded in both time and attempts."""

import asyncio
import logging
import time
from typing import Callable

from bot_kernel.errors import WeaponSwapTimeoutError
from bot_kernel.models.snapshot import Snapshot
from bot_kernel.session.context import SessionHandle

logger = logging.getLogger(__name__)

SWAP_TIMEOUT = 5.0
MAX_SWAP_ATTEMPTS = 10
SWAP_SETTLE = 0.3
SWAP_RETRY_DELAY = 0.2
CTA_MARKER_SKILL = "battle_orders"


async def _swap_until(
    handle: SessionHandle, done: Callable[[Snapshot], bool], target: str
) -> None:
    deadline = time.monotonic() + SWAP_TIMEOUT
    attempts = 0
    while True:
        if time.monotonic() > deadline or attempts >= MAX_SWAP_ATTEMPTS:
            logger.warning("Weapon swap timeout reached: target=%s attempts=%d", target, attempts)
            raise WeaponSwapTimeoutError()

        remaining = max(deadline - time.monotonic(), 0.0)
        if not await handle.pause_if_not_priority_with_timeout(remaining):
            logger.warning(
                "Weapon swap priority not acquired, swapping anyway: target=%s tier=%s active=%s",
                target, handle.tier.name, handle.session.arbitrator.active.name,
            )
        snapshot = await handle.refresh(force=True)
        if done(snapshot):
            return

        handle.press_key(snapshot.key_bindings.swap_weapons)
        attempts += 1
        await asyncio.sleep(SWAP_SETTLE + snapshot.ping_ms / 1000.0)

        if done(await handle.refresh(force=True)):
            return
        await asyncio.sleep(SWAP_RETRY_DELAY)


async def swap_to_slot(handle: SessionHandle, slot: int) -> None:
    """Swap until the active weapon set is `slot` (0 main, 1 secondary)."""
    handle.set_last_step(f"swap_to_slot_{slot}")
    await _swap_until(handle, lambda s: s.active_weapon_slot == slot, f"slot_{slot}")


async def swap_to_cta(handle: SessionHandle) -> None:
    handle.set_last_step("swap_to_cta")
    await _swap_until(handle, lambda s: s.player.has_skill(CTA_MARKER_SKILL), "cta")


async def swap_to_main(handle: SessionHandle) -> None:
    handle.set_last_step("swap_to_main_weapon")
    await _swap_until(handle, lambda s: not s.player.has_skill(CTA_MARKER_SKILL), "main")
