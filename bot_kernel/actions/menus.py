"""Game menu handling and the screen layout of carried items."""

import asyncio
import logging
from typing import Tuple

from bot_kernel.actions.waits import wait_for_menu_open
from bot_kernel.errors import InteractionError
from bot_kernel.models.snapshot import Item, ItemLocation
from bot_kernel.session.context import SessionHandle

logger = logging.getLogger(__name__)

MAX_CLOSE_ATTEMPTS = 10
CLOSE_DELAY = 0.1
OPEN_ATTEMPTS = 3

# Top-left cell centre and cell size, in screen pixels, per item location.
GRID_ORIGINS = {
    ItemLocation.INVENTORY: (846, 369),
    ItemLocation.STASH: (68, 159),
    ItemLocation.BELT: (422, 557),
}
CELL_SIZE = 33


def item_screen_position(item: Item) -> Tuple[int, int]:
    """Screen coordinates of a carried item's grid cell."""
    origin = GRID_ORIGINS.get(item.location)
    if origin is None:
        raise ValueError(f"item {item.unit_id} at {item.location.value} has no screen grid")
    x0, y0 = origin
    return x0 + item.position.x * CELL_SIZE, y0 + item.position.y * CELL_SIZE


async def close_all_menus(handle: SessionHandle) -> None:
    """Press escape until no menu is open."""
    handle.set_last_step("close_all_menus")
    for attempt in range(MAX_CLOSE_ATTEMPTS):
        snapshot = await handle.refresh(force=True)
        if not snapshot.menus.any_open():
            return
        logger.debug("Closing open menus: attempt=%d", attempt + 1)
        handle.press_key(snapshot.key_bindings.escape)
        await asyncio.sleep(CLOSE_DELAY)

    if (await handle.refresh(force=True)).menus.any_open():
        raise InteractionError(f"[{handle.name}] failed closing game menus")


async def close_chat(handle: SessionHandle) -> bool:
    """Close the chat box if it is open. Returns True if it was."""
    snapshot = handle.snapshot
    if not snapshot.menus.chat_open:
        return False
    logger.debug("Chat box open, closing it")
    handle.press_key(snapshot.key_bindings.chat)
    await asyncio.sleep(CLOSE_DELAY)
    return True


async def open_inventory(handle: SessionHandle) -> None:
    handle.set_last_step("open_inventory")
    for _ in range(OPEN_ATTEMPTS):
        if (await handle.refresh(force=True)).menus.inventory:
            return
        handle.press_key(handle.snapshot.key_bindings.inventory)
        if await wait_for_menu_open(handle, "inventory"):
            return
    raise InteractionError(f"[{handle.name}] failed opening inventory")
