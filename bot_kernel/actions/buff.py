"""
Buffing — keeps the character's self buffs and call-to-arms shouts up.

Behavioral Contract:
- No rebuff in town, while items are being picked up, or within the
  rebuff interval of the previous attempt.
- Every cast is verified against the player's states and retried.
- The attempt time is recorded even when casting failed, so a broken
  buff never turns into a tight rebuff loop.
- Three failed weapon swaps suspend CTA buffing for a minute.
"""

import asyncio
import logging
import time
from typing import Dict, FrozenSet, Iterable

from bot_kernel.actions.weapon import swap_to_cta, swap_to_main
from bot_kernel.errors import WeaponSwapTimeoutError
from bot_kernel.interfaces import MouseButton
from bot_kernel.models.snapshot import Snapshot
from bot_kernel.session.context import SessionHandle

logger = logging.getLogger(__name__)

MAX_SWAP_FAILURES = 3
SWAP_FAILURE_COOLDOWN = 60.0
MAX_CAST_RETRIES = 3
CAST_TARGET = (640, 340)

# Skills whose resulting player state has a different name, or several.
BUFF_STATES: Dict[str, FrozenSet[str]] = {
    "frozen_armor": frozenset({"frozen_armor", "shiver_armor", "chilling_armor"}),
    "shiver_armor": frozenset({"frozen_armor", "shiver_armor", "chilling_armor"}),
    "chilling_armor": frozenset({"frozen_armor", "shiver_armor", "chilling_armor"}),
}


def buff_states(skill: str) -> FrozenSet[str]:
    return BUFF_STATES.get(skill, frozenset({skill}))


def has_buff(snapshot: Snapshot, skill: str) -> bool:
    return any(snapshot.player.has_state(state) for state in buff_states(skill))


def _missing(snapshot: Snapshot, skills: Iterable[str]) -> bool:
    return any(not has_buff(snapshot, skill) for skill in skills)


def is_rebuff_required(handle: SessionHandle) -> bool:
    snapshot = handle.snapshot
    character = handle.config.character
    last_buff_at = handle.current_game.last_buff_at

    if snapshot.is_town:
        return False
    if last_buff_at is not None and time.monotonic() - last_buff_at < character.rebuff_interval:
        return False

    if character.use_cta and _missing(snapshot, character.cta_buff_skills):
        return True

    bound = [s for s in character.buff_skills if snapshot.key_bindings.for_skill(s) is not None]
    return _missing(snapshot, bound)


async def buff_if_required(handle: SessionHandle) -> bool:
    """Rebuff when needed. Returns True when a buff round ran."""
    if handle.current_game.is_picking_items:
        logger.debug("Skipping buff, item pickup in progress")
        return False
    if not is_rebuff_required(handle):
        return False
    await buff(handle)
    return True


async def buff(handle: SessionHandle) -> None:
    handle.set_last_action("buff")
    try:
        await handle.pause_if_not_priority()
        snapshot = await handle.refresh(force=True)
        character = handle.config.character

        for skill in character.buff_skills:
            key = snapshot.key_bindings.for_skill(skill)
            if key is None:
                logger.debug("Buff skill has no key binding: skill=%s", skill)
                continue
            await cast_buff_with_verify(handle, key, skill)

        if character.use_cta:
            await buff_cta(handle)
    finally:
        handle.current_game.last_buff_at = time.monotonic()


async def cast_buff_with_verify(
    handle: SessionHandle, key: str, skill: str, max_retries: int = MAX_CAST_RETRIES
) -> bool:
    for attempt in range(max_retries):
        if attempt > 0:
            logger.debug("Retrying buff cast: skill=%s attempt=%d max=%d", skill, attempt + 1, max_retries)
            await asyncio.sleep(0.2)

        await asyncio.sleep(0.1)
        handle.press_key(key)
        await asyncio.sleep(0.22)
        handle.hid.click(MouseButton.RIGHT, *CAST_TARGET)
        await asyncio.sleep(0.12 + 0.25 + handle.snapshot.ping_ms / 1000.0)

        if has_buff(await handle.refresh(force=True), skill):
            if attempt > 0:
                logger.debug("Buff applied after retry: skill=%s attempt=%d", skill, attempt + 1)
            return True

    logger.warning("Failed to apply buff after retries: skill=%s attempts=%d", skill, max_retries)
    return False


def _record_swap_failure(handle: SessionHandle) -> None:
    game = handle.current_game
    game.weapon_swap_failures += 1
    game.last_swap_failure_at = time.monotonic()


async def buff_cta(handle: SessionHandle, swap_back: bool = True) -> bool:
    """Swap to the CTA set, shout, and swap back. False when skipped or failed."""
    handle.set_last_action("buff_cta")
    game = handle.current_game
    failures = game.weapon_swap_failures
    since_failure = (
        time.monotonic() - game.last_swap_failure_at
        if game.last_swap_failure_at is not None else None
    )

    if failures >= MAX_SWAP_FAILURES:
        if since_failure is not None and since_failure < SWAP_FAILURE_COOLDOWN:
            logger.debug(
                "Skipping CTA buffs due to repeated weapon swap failures: failures=%d "
                "cooldown_remaining=%.1fs",
                failures, SWAP_FAILURE_COOLDOWN - since_failure,
            )
            return False
        game.weapon_swap_failures = 0

    try:
        await swap_to_cta(handle)
    except WeaponSwapTimeoutError as exc:
        logger.warning("Failed to swap to CTA, skipping CTA buffs: %s", exc)
        _record_swap_failure(handle)
        return False

    snapshot = await handle.refresh(force=True)
    for skill in handle.config.character.cta_buff_skills:
        key = snapshot.key_bindings.for_skill(skill)
        if key is None:
            logger.warning("CTA skill has no key binding: skill=%s", skill)
            continue
        await cast_buff_with_verify(handle, key, skill)

    if swap_back:
        try:
            await swap_to_main(handle)
        except WeaponSwapTimeoutError as exc:
            logger.warning("Failed to swap back to main weapon: %s", exc)
            _record_swap_failure(handle)
            return False

    game.weapon_swap_failures = 0
    return True
