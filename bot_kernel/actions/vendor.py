"""Vendor refill: trade with a town NPC through a pluggable flow."""

import asyncio
import logging
from typing import Protocol

from bot_kernel.actions.belt import missing_count
from bot_kernel.actions.menus import close_all_menus
from bot_kernel.actions.waits import wait_for_menu_open
from bot_kernel.errors import InteractionError
from bot_kernel.models.snapshot import PotionKind
from bot_kernel.session.context import SessionHandle

logger = logging.getLogger(__name__)

MAX_TRADE_ATTEMPTS = 3
SHOP_OPEN_TIMEOUT = 2.0


class VendorFlow(Protocol):
    """Game-specific NPC dialogue and shop handling."""

    async def open_trade(self, handle: SessionHandle, npc: str) -> None: ...

    async def sell_junk(self, handle: SessionHandle) -> int: ...

    async def buy_consumables(self, handle: SessionHandle, force_refill: bool) -> int: ...


def should_visit_vendor(handle: SessionHandle) -> bool:
    return any(missing_count(handle, kind) > 0 for kind in (PotionKind.HEALING, PotionKind.MANA))


async def vendor_refill(
    handle: SessionHandle,
    flow: VendorFlow,
    npc: str,
    force_refill: bool = False,
    sell_junk: bool = True,
) -> bool:
    """Open the NPC's shop, sell junk and buy consumables. False if skipped."""
    handle.set_last_action("vendor_refill")
    if not (force_refill or sell_junk or should_visit_vendor(handle)):
        logger.debug("No need to visit vendor")
        return False

    logger.info("Visiting vendor: npc=%s force_refill=%s sell_junk=%s", npc, force_refill, sell_junk)
    for attempt in range(1, MAX_TRADE_ATTEMPTS + 1):
        await handle.pause_if_not_priority()
        await close_all_menus(handle)
        await flow.open_trade(handle, npc)
        if await wait_for_menu_open(handle, "npc_shop", SHOP_OPEN_TIMEOUT):
            break
        logger.debug("Shop did not open: npc=%s attempt=%d", npc, attempt)
        await asyncio.sleep(0.3 * attempt)
    else:
        raise InteractionError(f"[{handle.name}] failed opening trade with {npc}")

    try:
        if sell_junk:
            sold = await flow.sell_junk(handle)
            logger.debug("Sold junk: items=%d", sold)
        bought = await flow.buy_consumables(handle, force_refill)
        logger.debug("Bought consumables: items=%d", bought)
    finally:
        await close_all_menus(handle)
    return True
