"""Mercenary revival at the town contractor."""

import asyncio
import logging
from typing import Awaitable, Callable

from bot_kernel.actions.waits import wait_for_snapshot
from bot_kernel.errors import InteractionError
from bot_kernel.session.context import SessionHandle

logger = logging.getLogger(__name__)

REVIVE_COST = 50_000
REVIVE_TIMEOUT = 2.0
DIALOG_KEY_DELAY = 0.1

DIALOG_KEYS = ["home", "down", "enter"]
# the act 5 contractor lists the revive option last
DIALOG_KEYS_BY_NPC = {"tyrael": ["end", "up", "enter"]}

NpcInteraction = Callable[[SessionHandle, str], Awaitable[None]]


def merc_needs_revive(handle: SessionHandle) -> bool:
    if not handle.config.character.use_merc:
        return False
    return (handle.snapshot.merc_hp_percent or 0) <= 0


async def revive_merc(handle: SessionHandle, interact_npc: NpcInteraction, npc: str) -> bool:
    """
    Talk to the mercenary contractor and pay for a revive.
    Returns False when there is nothing to do; raises InteractionError if
    the revive can't be paid for or doesn't take.
    """
    handle.set_last_action("revive_merc")
    if not merc_needs_revive(handle):
        return False

    gold = handle.snapshot.player.gold
    if gold < REVIVE_COST:
        raise InteractionError(
            f"insufficient gold to revive mercenary (available: {gold}, required: {REVIVE_COST})"
        )

    logger.info("Mercenary is dead, reviving: npc=%s gold=%d", npc, gold)
    await handle.pause_if_not_priority()
    await interact_npc(handle, npc)
    for key in DIALOG_KEYS_BY_NPC.get(npc, DIALOG_KEYS):
        handle.press_key(key)
        await asyncio.sleep(DIALOG_KEY_DELAY)
    handle.press_key(handle.snapshot.key_bindings.escape)

    revived = await wait_for_snapshot(
        handle, lambda s: (s.merc_hp_percent or 0) > 0, REVIVE_TIMEOUT
    )
    if not revived:
        logger.warning("Failed to revive mercenary: npc=%s gold=%d", npc, handle.snapshot.player.gold)
        raise InteractionError("mercenary still dead after revive attempt")
    logger.info("Mercenary successfully revived")
    return True
