"""
Object interaction — doors, chests, shrines, portals, waypoints.

Methods are tried in order: telekinesis (ranged, when the character has
it), packet interaction (portals only, when enabled), then hovering and
clicking with the mouse. Completion is always verified against a fresh
snapshot, never assumed from the input alone.
"""

import asyncio
import logging
import math
import time
from typing import Callable, Optional, Tuple

from bot_kernel.actions.strategies import Strategy, run_strategies
from bot_kernel.actions.waits import wait_for_snapshot
from bot_kernel.errors import InteractionError, ObjectNotFoundError, ObjectTooFarError
from bot_kernel.interfaces import MouseButton
from bot_kernel.models.movement import MoveOptions
from bot_kernel.models.snapshot import GameObject, ObjectKind, ObjectMode, Position, Snapshot
from bot_kernel.session.context import SessionHandle

logger = logging.getLogger(__name__)

MAX_INTERACTION_ATTEMPTS = 5
MAX_MOUSE_OVER_ATTEMPTS = 20
MAX_INTERACTION_DISTANCE = 15
TELEKINESIS_RANGE = 15
TELEKINESIS_ATTEMPTS = 3
PORTAL_TRANSITION_TIMEOUT = 2.0

TELEKINESIS_TARGETS = {
    ObjectKind.WAYPOINT,
    ObjectKind.CHEST,
    ObjectKind.SUPER_CHEST,
    ObjectKind.SHRINE,
    ObjectKind.PORTAL,
    ObjectKind.RED_PORTAL,
    ObjectKind.STASH,
}

CompletionCheck = Callable[[Snapshot], bool]


def _spiral(attempt: int) -> Tuple[int, int]:
    """Pointer offset for the n-th hover attempt, widening around the target."""
    if attempt == 0:
        return 0, 0
    angle = attempt * 0.9
    radius = 6 * math.sqrt(attempt)
    return int(radius * math.cos(angle)), int(radius * math.sin(angle))


def _find(snapshot: Snapshot, obj: GameObject) -> Optional[GameObject]:
    if obj.id:
        return snapshot.find_object(obj.id)
    return snapshot.find_object_by_name(obj.name)


def _portal_ready(obj: GameObject) -> bool:
    return not obj.is_portal or obj.mode == ObjectMode.OPENED


def can_use_telekinesis(handle: SessionHandle, obj: GameObject) -> bool:
    snapshot = handle.snapshot
    if not handle.config.character.use_telekinesis:
        return False
    if not snapshot.player.has_skill("telekinesis"):
        return False
    if snapshot.key_bindings.for_skill("telekinesis") is None:
        return False
    return obj.kind in TELEKINESIS_TARGETS


async def interact_object(
    handle: SessionHandle,
    obj: GameObject,
    is_completed: Optional[CompletionCheck] = None,
) -> None:
    """
    Interact with `obj` until `is_completed` holds for a fresh snapshot.

    Without a completion check, one verified click counts as done, except
    for portals, where done means the player left the starting area.
    Raises an InteractionError subclass when every method failed.
    """
    starting_area = handle.snapshot.player.area_id
    if is_completed is None and obj.is_portal:
        def is_completed(snapshot: Snapshot) -> bool:
            return snapshot.player.area_id != starting_area

    packets = handle.config.packets
    strategies = [
        Strategy(
            "telekinesis",
            lambda: _interact_telekinesis(handle, obj, is_completed),
            enabled=can_use_telekinesis(handle, obj),
        ),
        Strategy(
            "packet",
            lambda: _interact_packet(handle, obj, is_completed),
            enabled=(
                obj.is_portal
                and packets.use_for_tp_interaction
                and handle.packet_sender is not None
            ),
        ),
        Strategy("mouse", lambda: _interact_mouse(handle, obj, is_completed)),
    ]
    winner = await run_strategies(strategies, f"interact[{obj.name}:{obj.id}]")
    if winner is None:
        raise InteractionError(
            f"[{handle.name}] failed interacting with object {obj.name} ({obj.id})"
        )


async def _interact_telekinesis(
    handle: SessionHandle, obj: GameObject, is_completed: Optional[CompletionCheck]
) -> bool:
    handle.set_last_step("interact_object_telekinesis")
    key = handle.snapshot.key_bindings.for_skill("telekinesis")

    for attempt in range(1, TELEKINESIS_ATTEMPTS + 1):
        await handle.pause_if_not_priority()
        snapshot = await handle.refresh()
        if is_completed is not None and is_completed(snapshot):
            return True

        target = _find(snapshot, obj)
        if target is None:
            raise ObjectNotFoundError(f"object {obj.name} ({obj.id}) not found")

        distance = handle.pathfinder.distance_from_me(snapshot, target.position)
        if distance > TELEKINESIS_RANGE:
            logger.debug(
                "Object too far for telekinesis: object=%s distance=%d", target.name, distance
            )
            return False

        if not _portal_ready(target):
            await asyncio.sleep(0.1)
            continue

        handle.press_key(key)
        await asyncio.sleep(0.08)
        x, y = handle.pathfinder.game_coords_to_screen(
            snapshot, Position(target.position.x - 2, target.position.y - 2)
        )
        handle.hid.move_pointer(x, y)
        await asyncio.sleep(0.05)
        handle.hid.click(MouseButton.RIGHT, x, y)
        logger.debug(
            "Telekinesis on object: object=%s distance=%d attempt=%d",
            target.name, distance, attempt,
        )
        await asyncio.sleep(0.35)

        if is_completed is None:
            return True
        if is_completed(await handle.refresh(force=True)):
            return True

    logger.debug("Telekinesis interaction failed after %d attempts: object=%s",
                 TELEKINESIS_ATTEMPTS, obj.name)
    return False


async def _interact_packet(
    handle: SessionHandle, obj: GameObject, is_completed: Optional[CompletionCheck]
) -> bool:
    handle.set_last_step("interact_object_packet")
    await handle.pause_if_not_priority()
    target = _find(await handle.refresh(), obj)
    if target is None:
        raise ObjectNotFoundError(f"object {obj.name} ({obj.id}) not found")

    handle.packet_sender.interact_object(target.id)
    if is_completed is None:
        return True
    return await wait_for_snapshot(handle, is_completed, timeout=PORTAL_TRANSITION_TIMEOUT)


async def _interact_mouse(
    handle: SessionHandle, obj: GameObject, is_completed: Optional[CompletionCheck]
) -> bool:
    handle.set_last_step("interact_object_mouse")
    starting_area = handle.snapshot.player.area_id
    interaction_attempts = 0
    mouse_over_attempts = 0
    clicked = False
    last_click_at = 0.0
    hover_point: Optional[Tuple[int, int]] = None

    while True:
        await handle.pause_if_not_priority()
        snapshot = await handle.refresh()

        if is_completed is not None and is_completed(snapshot):
            return True
        if is_completed is None and clicked:
            return True
        if snapshot.player.area_id != starting_area:
            return True

        if interaction_attempts >= MAX_INTERACTION_ATTEMPTS or mouse_over_attempts >= MAX_MOUSE_OVER_ATTEMPTS:
            raise InteractionError(
                f"[{handle.name}] failed interacting with object {obj.name} "
                f"in area {snapshot.player.area_id}"
            )

        cooldown = 0.4 if snapshot.is_town else 0.2
        cooldown += snapshot.ping_ms / 1000.0
        if clicked and time.monotonic() - last_click_at < cooldown:
            await asyncio.sleep(0.01)
            continue

        target = _find(snapshot, obj)
        if target is None:
            raise ObjectNotFoundError(f"object {obj.name} ({obj.id}) not found")

        if not _portal_ready(target):
            await asyncio.sleep(0.1 * (interaction_attempts + 1))
            continue

        if target.is_hovered and hover_point is not None:
            handle.hid.click(MouseButton.LEFT, *hover_point)
            clicked = True
            interaction_attempts += 1
            last_click_at = time.monotonic()
            continue

        distance = handle.pathfinder.distance_from_me(snapshot, target.position)
        if distance > MAX_INTERACTION_DISTANCE:
            raise ObjectTooFarError(
                f"object {target.name} is too far away, distance {distance}"
            )

        base = Position(target.position.x - 2, target.position.y - 2)
        if mouse_over_attempts == 2 and target.is_portal:
            base = Position(base.x - 4, base.y - 4)
        x, y = handle.pathfinder.game_coords_to_screen(snapshot, base)
        dx, dy = _spiral(mouse_over_attempts)
        hover_point = (x + dx, y + dy)
        handle.hid.move_pointer(*hover_point)
        mouse_over_attempts += 1
        await asyncio.sleep(0.05)


def _not_selectable(object_id: int) -> CompletionCheck:
    def check(snapshot: Snapshot) -> bool:
        obj = snapshot.find_object(object_id)
        return obj is None or not obj.selectable
    return check


async def open_container(handle: SessionHandle, movement, obj: GameObject) -> bool:
    """
    Walk to a chest (or any selectable object) and open it.

    Idempotent: an object that is already non-selectable returns True
    straight away without touching the input device.
    """
    handle.set_last_step(f"open_container_{obj.id}")
    current = handle.snapshot.find_object(obj.id) or obj
    if not current.selectable:
        logger.debug("Container already opened: object=%s id=%d", obj.name, obj.id)
        return True

    if not can_use_telekinesis(handle, current):
        await movement.move_to(
            handle, current.position, MoveOptions(distance_to_finish=2, ignore_monsters=True)
        )
    await interact_object(handle, current, _not_selectable(obj.id))
    return True


async def open_door(handle: SessionHandle, door: GameObject) -> None:
    """Open a door in place; raises InteractionError if it stays selectable."""
    await interact_object(handle, door, _not_selectable(door.id))
