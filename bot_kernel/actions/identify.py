"""Identify carried items with the tome of identify."""

import asyncio
import logging
from typing import List

from bot_kernel.actions.menus import close_all_menus, item_screen_position, open_inventory
from bot_kernel.actions.waits import wait_for_cursor_empty, wait_for_item_identified
from bot_kernel.interfaces import MouseButton
from bot_kernel.models.snapshot import Item, ItemLocation
from bot_kernel.session.context import SessionHandle

logger = logging.getLogger(__name__)

TOME_OF_IDENTIFY = "tome_of_identify"
SKIP_QUALITIES = {"normal", "superior"}
IDENTIFY_ATTEMPTS = 2
IDENTIFY_WAIT = 1.0


def items_to_identify(handle: SessionHandle) -> List[Item]:
    return [
        item for item in handle.snapshot.items_at(ItemLocation.INVENTORY)
        if not item.identified and item.quality not in SKIP_QUALITIES
    ]


async def identify_all(handle: SessionHandle) -> int:
    """
    Identify every unidentified magic-or-better inventory item.

    Each item is verified against a fresh snapshot and retried once.
    Returns how many items ended up identified. Missing tome or not
    enough scrolls are logged, not raised.
    """
    handle.set_last_action("identify_all")
    await handle.refresh_inventory()

    items = items_to_identify(handle)
    if not items or not handle.config.character.identify_items:
        logger.debug("No items to identify")
        return 0

    tome = next(
        (i for i in handle.snapshot.items_at(ItemLocation.INVENTORY) if i.name == TOME_OF_IDENTIFY),
        None,
    )
    if tome is None:
        logger.warning("ID tome not found, not identifying items")
        return 0
    if tome.quantity < len(items):
        logger.info("Not enough ID scrolls: scrolls=%d items=%d", tome.quantity, len(items))
        items = items[:tome.quantity]

    logger.info("Identifying %d items", len(items))
    identified = 0
    try:
        await close_all_menus(handle)
        await open_inventory(handle)
        for item in items:
            await handle.pause_if_not_priority()
            if await _identify_item(handle, tome, item):
                identified += 1
            else:
                logger.warning("Failed identifying item: name=%s unit_id=%d", item.name, item.unit_id)
    finally:
        await close_all_menus(handle)
    return identified


async def _identify_item(handle: SessionHandle, tome: Item, item: Item) -> bool:
    handle.set_last_step(f"identify_item_{item.unit_id}")
    tome_x, tome_y = item_screen_position(tome)
    item_x, item_y = item_screen_position(item)
    for attempt in range(1, IDENTIFY_ATTEMPTS + 1):
        handle.hid.click(MouseButton.RIGHT, tome_x, tome_y)
        await asyncio.sleep(0.2)
        handle.hid.click(MouseButton.LEFT, item_x, item_y)
        if await wait_for_item_identified(handle, item.unit_id, IDENTIFY_WAIT):
            return True
        logger.debug("Item not identified yet: unit_id=%d attempt=%d", item.unit_id, attempt)
        # a scroll left on the cursor would swallow the next click
        if not await wait_for_cursor_empty(handle, 0.3):
            handle.hid.click(MouseButton.RIGHT, item_x, item_y)
    return False
