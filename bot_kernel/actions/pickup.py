"""
Item pickup.

Behavioral Contract:
- `pickup_item` is one verified attempt: telekinesis for small items in
  range, the packet transport when enabled, otherwise clicking around the
  item. Success means the item left the ground in a fresh snapshot.
- `item_pickup` works the whole ground list with bounded retries, moving
  closer or around the item between attempts. A unit that still can't be
  picked up is blacklisted for the rest of the game, with a warning and
  an `item_blacklisted` event, and never retried.
- Only one pickup cycle runs at a time; the session's picking-items flag
  is held for the duration and always cleared.
"""

import asyncio
import logging
import math
import time
from typing import Callable, List, Optional, Tuple

from bot_kernel.actions.strategies import Strategy, run_strategies
from bot_kernel.actions.waits import wait_for_item_not_in_location
from bot_kernel.errors import (
    ItemTooFarError,
    MonsterAroundItemError,
    MovementError,
    NoLineOfSightToItemError,
    PickupError,
)
from bot_kernel.events.bus import EventName
from bot_kernel.interfaces import MouseButton
from bot_kernel.models.movement import MoveOptions
from bot_kernel.models.snapshot import Item, ItemLocation, Position, Snapshot
from bot_kernel.session.context import SessionHandle

logger = logging.getLogger(__name__)

PICKUP_RANGE = 7
MONSTER_AROUND_ITEM_RADIUS = 4
MAX_RETRIES = 5
MAX_TOO_FAR_RETRIES = 5
MAX_TOTAL_ATTEMPTS = MAX_RETRIES + MAX_TOO_FAR_RETRIES
GLOBAL_PICKUP_TIMEOUT = 60.0
PRIORITY_WAIT = 5.0
STEP_PRIORITY_WAIT = 2.0
CLICK_PRIORITY_WAIT = 0.5

PACKET_VERIFY_ATTEMPTS = 5
PACKET_VERIFY_INTERVAL = 0.15
MOUSE_PICKUP_TIMEOUT = 3.0
MAX_MOUSE_CLICKS = 24
HOVER_DELAY = 0.008
CLICK_DELAY = 0.1
TELEKINESIS_ATTEMPTS = 3

TELEKINESIS_ITEMS = {"gold", "scroll_of_town_portal", "scroll_of_identify"}

ItemFilter = Callable[[Item], bool]


def _on_ground(snapshot: Snapshot, unit_id: int) -> bool:
    return any(i.unit_id == unit_id for i in snapshot.ground_items())


def _item_spiral(attempt: int) -> Tuple[int, int]:
    if attempt == 0:
        return 0, 0
    angle = attempt * 1.2
    radius = 3 * math.sqrt(attempt)
    return int(radius * math.cos(angle)), int(radius * math.sin(angle))


def can_use_telekinesis_for_item(handle: SessionHandle, item: Item) -> bool:
    character = handle.config.character
    snapshot = handle.snapshot
    if not character.use_telekinesis or not snapshot.player.has_skill("telekinesis"):
        return False
    if snapshot.key_bindings.for_skill("telekinesis") is None:
        return False
    return item.potion is not None or item.name in TELEKINESIS_ITEMS


def _check_preconditions(handle: SessionHandle, item: Item, max_distance: int) -> None:
    snapshot = handle.snapshot
    pathfinder = handle.pathfinder
    for monster in snapshot.enemies():
        if monster.position.distance_to(item.position) <= MONSTER_AROUND_ITEM_RADIUS:
            raise MonsterAroundItemError()
    if not pathfinder.line_of_sight(snapshot, snapshot.player.position, item.position):
        raise NoLineOfSightToItemError()
    distance = pathfinder.distance_from_me(snapshot, item.position)
    if distance >= max_distance:
        raise ItemTooFarError(distance, item.name)


async def pickup_item(handle: SessionHandle, item: Item, attempt: int = 1) -> None:
    """One verified pickup attempt. Raises a PickupError subclass on failure."""
    handle.set_last_step("pickup_item")
    await handle.refresh()
    if not _on_ground(handle.snapshot, item.unit_id):
        return

    use_tk = can_use_telekinesis_for_item(handle, item)
    max_distance = handle.config.character.telekinesis_range if use_tk else PICKUP_RANGE
    _check_preconditions(handle, item, max_distance)

    use_packets = (
        handle.config.packets.use_for_item_pickup and handle.packet_sender is not None
    )
    strategies = [
        Strategy("telekinesis", lambda: _pickup_telekinesis(handle, item), enabled=use_tk),
        Strategy("packet", lambda: _pickup_packet(handle, item), enabled=use_packets),
        Strategy("mouse", lambda: _pickup_mouse(handle, item)),
    ]
    winner = await run_strategies(strategies, f"pickup[{item.name}:{item.unit_id}]")
    if winner is None:
        raise PickupError(f"failed picking up {item.name} ({item.unit_id}), attempt {attempt}")
    logger.debug("Picked up item: name=%s unit_id=%d method=%s attempt=%d",
                 item.name, item.unit_id, winner, attempt)


async def _verify_gone(handle: SessionHandle, unit_id: int) -> bool:
    return await wait_for_item_not_in_location(
        handle, unit_id, ItemLocation.GROUND,
        timeout=PACKET_VERIFY_ATTEMPTS * PACKET_VERIFY_INTERVAL,
        poll_interval=PACKET_VERIFY_INTERVAL,
    )


async def _wait_for_step_priority(handle: SessionHandle, timeout: float, step: str) -> None:
    if not await handle.pause_if_not_priority_with_timeout(timeout):
        logger.warning(
            "Priority not acquired, continuing %s: tier=%s active=%s waited=%.2fs",
            step, handle.tier.name, handle.session.arbitrator.active.name, timeout,
        )


async def _pickup_telekinesis(handle: SessionHandle, item: Item) -> bool:
    key = handle.snapshot.key_bindings.for_skill("telekinesis")
    for _ in range(TELEKINESIS_ATTEMPTS):
        await _wait_for_step_priority(handle, STEP_PRIORITY_WAIT, "telekinesis pickup")
        handle.press_key(key)
        await asyncio.sleep(0.05)
        x, y = handle.pathfinder.game_coords_to_screen(handle.snapshot, item.position)
        handle.hid.click(MouseButton.RIGHT, x, y)
        if await _verify_gone(handle, item.unit_id):
            return True
    return False


async def _pickup_packet(handle: SessionHandle, item: Item) -> bool:
    handle.packet_sender.pick_up_item(item.unit_id)
    if await _verify_gone(handle, item.unit_id):
        return True
    logger.debug("Packet pickup not confirmed: unit_id=%d", item.unit_id)
    return False


async def _pickup_mouse(handle: SessionHandle, item: Item) -> bool:
    deadline = time.monotonic() + MOUSE_PICKUP_TIMEOUT
    for attempt in range(MAX_MOUSE_CLICKS):
        if time.monotonic() > deadline:
            break
        await _wait_for_step_priority(handle, CLICK_PRIORITY_WAIT, "mouse pickup")
        snapshot = handle.snapshot
        x, y = handle.pathfinder.game_coords_to_screen(snapshot, item.position)
        dx, dy = _item_spiral(attempt)
        handle.hid.move_pointer(x + dx, y + dy)
        await asyncio.sleep(HOVER_DELAY)
        handle.hid.click(MouseButton.LEFT, x + dx, y + dy)
        await asyncio.sleep(CLICK_DELAY)
        if not _on_ground(await handle.refresh(force=True), item.unit_id):
            return True
    return False


def items_to_pickup(
    handle: SessionHandle, max_distance: int, item_filter: Optional[ItemFilter] = None
) -> List[Item]:
    """Ground items worth picking up, closest first, blacklisted units excluded."""
    snapshot = handle.snapshot
    game = handle.current_game
    pathfinder = handle.pathfinder
    candidates = []
    for item in snapshot.ground_items():
        if game.is_blacklisted(item.unit_id):
            continue
        if item_filter is not None and not item_filter(item):
            continue
        distance = pathfinder.distance_from_me(snapshot, item.position)
        if max_distance > 0 and distance > max_distance and item.potion is not None:
            continue
        candidates.append((distance, item))
    candidates.sort(key=lambda pair: pair[0])
    return [item for _, item in candidates]


def _retry_position(item: Item, attempt: int) -> Position:
    x, y = item.position
    offsets = {2: (3, -1), 3: (-3, 1), 4: (5, -3)}
    dx, dy = offsets.get(attempt, (0, 0))
    return Position(x + dx, y + dy)


async def item_pickup(
    handle: SessionHandle,
    movement,
    max_distance: int = 30,
    item_filter: Optional[ItemFilter] = None,
) -> int:
    """
    Pick up every eligible ground item. Returns how many were picked up.

    Raises PickupError only when the whole cycle runs past its global
    timeout. Individual items that can't be picked up are blacklisted.
    """
    handle.set_last_action("item_pickup")
    session = handle.session
    if handle.current_game.is_picking_items:
        return 0

    session.set_picking_items(True)
    picked = 0
    started_at = time.monotonic()
    try:
        while True:
            if time.monotonic() - started_at > GLOBAL_PICKUP_TIMEOUT:
                logger.warning("Item pickup global timeout reached, aborting pickup cycle: elapsed=%.1fs",
                               time.monotonic() - started_at)
                raise PickupError(f"item pickup timeout after {GLOBAL_PICKUP_TIMEOUT:.0f}s")

            if not await handle.pause_if_not_priority_with_timeout(PRIORITY_WAIT):
                logger.debug("Priority wait timeout in item pickup, continuing")

            await handle.refresh(force=True)
            await handle.refresh_inventory()
            candidates = items_to_pickup(handle, max_distance, item_filter)
            if not candidates:
                return picked

            item = candidates[0]
            if await _pickup_with_retries(handle, movement, item):
                picked += 1
                handle.current_game.picked_up_items[item.unit_id] = handle.snapshot.player.area_id
            else:
                _blacklist(handle, item)
    finally:
        session.set_picking_items(False)


async def _pickup_with_retries(handle: SessionHandle, movement, item: Item) -> bool:
    pathfinder = handle.pathfinder
    attempt = 1
    too_far_retries = 0
    total_attempts = 0
    last_error: Optional[Exception] = None

    while total_attempts < MAX_TOTAL_ATTEMPTS:
        total_attempts += 1
        snapshot = handle.snapshot
        use_tk = can_use_telekinesis_for_item(handle, item)
        tk_range = handle.config.character.telekinesis_range
        distance = pathfinder.distance_from_me(snapshot, item.position)

        if not (use_tk and distance <= tk_range and attempt == 1):
            if attempt == 5:
                destination = pathfinder.beyond_position(snapshot.player.position, item.position, 4)
                finish = None
            else:
                destination = _retry_position(item, attempt)
                finish = max(4 - attempt, 2)
                if use_tk and attempt == 1:
                    finish = tk_range - 2
            min_distance_for_move = tk_range if use_tk else PICKUP_RANGE
            if distance >= min_distance_for_move or attempt > 1:
                try:
                    await movement.move_to(
                        handle, destination,
                        MoveOptions(distance_to_finish=finish, ignore_items=True),
                    )
                except MovementError as exc:
                    last_error = exc
                    attempt += 1
                    continue

        try:
            await pickup_item(handle, item, attempt)
            return True
        except MonsterAroundItemError as exc:
            last_error = exc
        except ItemTooFarError as exc:
            last_error = exc
            too_far_retries += 1
            if too_far_retries < MAX_TOO_FAR_RETRIES:
                pathfinder.random_movement(handle.snapshot)
                continue
        except NoLineOfSightToItemError as exc:
            last_error = exc
            logger.debug("No line of sight to item, moving closer: name=%s", item.name)
            beyond = pathfinder.beyond_position(
                handle.snapshot.player.position, item.position, 2 + attempt
            )
            try:
                await movement.move_to(handle, beyond, MoveOptions(ignore_items=True))
                await pickup_item(handle, item, attempt)
                return True
            except (MovementError, PickupError) as retry_exc:
                last_error = retry_exc
        except PickupError as exc:
            last_error = exc
        attempt += 1

    logger.debug("Pickup attempts exhausted: name=%s unit_id=%d last_error=%s",
                 item.name, item.unit_id, last_error)
    return False


def _blacklist(handle: SessionHandle, item: Item) -> None:
    handle.current_game.blacklist(item.unit_id)
    area_id = handle.snapshot.player.area_id
    logger.warning(
        "Failed picking up item after all attempts, blacklisting it: name=%s unit_id=%d area=%d",
        item.name, item.unit_id, area_id,
    )
    handle.events.emit(
        EventName.ITEM_BLACKLISTED,
        session=handle.name,
        item=item,
        area_id=area_id,
    )
