"""Belt bookkeeping and refilling the belt from inventory potions."""

import asyncio
import logging
from typing import Dict, List, Optional

from bot_kernel.actions.menus import close_all_menus, item_screen_position, open_inventory
from bot_kernel.actions.waits import wait_for_item_in_belt
from bot_kernel.interfaces import MouseButton
from bot_kernel.models.snapshot import Item, PotionKind, Snapshot
from bot_kernel.session.context import SessionHandle

logger = logging.getLogger(__name__)

BELT_WAIT = 1.0


def missing_count(handle: SessionHandle, kind: PotionKind, snapshot: Optional[Snapshot] = None) -> int:
    """Free belt slots reserved for `kind` by the configured column layout."""
    snapshot = snapshot or handle.snapshot
    character = handle.config.character
    capacity = character.belt_columns.count(kind.value) * character.belt_rows
    return max(0, capacity - len(snapshot.belt_potions(kind)))


def belt_key_for(handle: SessionHandle, potion: Item) -> Optional[str]:
    keys = handle.snapshot.key_bindings.belt
    if not keys:
        return None
    return keys[potion.position.x % len(keys)]


def potions_to_move(handle: SessionHandle) -> Dict[PotionKind, List[Item]]:
    snapshot = handle.snapshot
    moves: Dict[PotionKind, List[Item]] = {}
    for kind in PotionKind:
        missing = missing_count(handle, kind, snapshot)
        available = snapshot.inventory_potions(kind)
        if missing and available:
            moves[kind] = available[:missing]
    return moves


async def refill_belt_from_inventory(handle: SessionHandle) -> int:
    """Shift-click inventory potions into free belt slots. Returns the count moved."""
    handle.set_last_action("refill_belt_from_inventory")
    await handle.refresh_inventory()

    moves = potions_to_move(handle)
    if not moves:
        logger.debug("No need to refill belt from inventory")
        return 0

    logger.info("Refilling belt from inventory: %s",
                ", ".join(f"{kind.value}={len(items)}" for kind, items in moves.items()))
    moved = 0
    try:
        await open_inventory(handle)
        for kind, potions in moves.items():
            for potion in potions:
                await handle.pause_if_not_priority()
                x, y = item_screen_position(potion)
                handle.hid.click(MouseButton.LEFT, x, y, modifier="shift")
                if await wait_for_item_in_belt(handle, potion.unit_id, BELT_WAIT):
                    moved += 1
                else:
                    logger.debug("Potion did not reach the belt: unit_id=%d kind=%s",
                                 potion.unit_id, kind.value)
    finally:
        await close_all_menus(handle)
        await asyncio.sleep(0.2)

    logger.info("Belt refilled from inventory: moved=%d", moved)
    return moved
