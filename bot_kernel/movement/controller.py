"""
Movement Controller — walks or teleports the avatar to a destination tile.

Behavioral Contract:
- The path is recomputed every iteration.
- Success: distance to destination <= finish distance (the boundary itself
  counts), <= twice the finish distance while blocked, inside the
  stationary band, an empty path, or an area transition once the new
  area's collision data is loaded.
- An absolute timeout is checked before anything else in each iteration,
  and priority pauses are bounded by the time left, so no call outlives
  the timeout by more than one polling interval.
- Recoverable failures raise typed MovementError subclasses for the
  caller to handle: monsters in path, stuck, round trip, no path, door.
"""

import asyncio
import logging
import random
import time
from typing import Optional

from bot_kernel.actions.interaction import open_door
from bot_kernel.errors import (
    AreaTransitionError,
    DoorInteractionError,
    InteractionError,
    MonstersInPathError,
    NoPathError,
    PlayerRoundTripError,
    PlayerStuckError,
)
from bot_kernel.interfaces import MouseButton
from bot_kernel.models.config import MovementConfig
from bot_kernel.models.movement import MoveOptions
from bot_kernel.models.snapshot import Monster, Position, Snapshot
from bot_kernel.movement.detectors import (
    RoundTripDetector,
    RoundTripVerdict,
    StuckDetector,
    StuckVerdict,
    teleport_stuck_threshold,
)
from bot_kernel.session.context import SessionHandle

logger = logging.getLogger(__name__)

TELEPORT_TILES_PER_SECOND = 10.0
WALK_TILES_PER_SECOND = 5.0
DESTRUCTIBLE_CLICK_DELAY = 0.1


class MovementController:
    """Stateless between calls; every `move_to` builds its own detectors."""

    def __init__(self, config: Optional[MovementConfig] = None):
        self.config = config or MovementConfig()

    def _walk_duration(self, snapshot: Snapshot) -> float:
        cfg = self.config
        if snapshot.is_town:
            low, high = cfg.town_walk_step_min, cfg.town_walk_step_max
        else:
            low, high = cfg.walk_step_min, cfg.walk_step_max
        return random.uniform(low, high) + snapshot.ping_ms * 0.5 / 1000.0

    async def move_to(
        self,
        handle: SessionHandle,
        destination: Position,
        options: Optional[MoveOptions] = None,
    ) -> None:
        options = options or MoveOptions()
        cfg = self.config
        finish_distance = (
            options.distance_to_finish
            if options.distance_to_finish is not None
            else cfg.distance_to_finish
        )
        handle.set_last_step(f"move_to_{destination.x}_{destination.y}")

        snapshot = handle.snapshot
        pathfinder = handle.pathfinder
        start_position = snapshot.player.position
        start_area = snapshot.player.area_id
        can_teleport = snapshot.can_teleport
        method = "teleport" if can_teleport else "walk"

        logger.debug(
            "Starting movement: from=%s to=%s method=%s finish_distance=%d "
            "ignore_monsters=%s area=%d",
            tuple(start_position), tuple(destination), method, finish_distance,
            options.ignore_monsters, start_area,
        )

        if can_teleport:
            stuck_threshold = teleport_stuck_threshold(
                snapshot.cast_duration, snapshot.ping_ms,
                cfg.teleport_stuck_min, cfg.teleport_stuck_max,
            )
        else:
            stuck_threshold = cfg.walk_stuck_threshold

        started_at = time.monotonic()
        stuck = StuckDetector(
            cfg.block_threshold, stuck_threshold, cfg.max_stuck_duration,
            cfg.max_escape_attempts, started_at,
        )
        round_trip = RoundTripDetector(cfg.round_trip_threshold, cfg.round_trip_radius, started_at)

        walk_duration = self._walk_duration(snapshot)
        clear_path_distance = cfg.clear_path_distance
        override_clear_path = options.clear_path_distance is not None
        if override_clear_path:
            clear_path_distance = options.clear_path_distance

        last_move_at: Optional[float] = None
        last_monster_check = 0.0
        last_log_at = 0.0
        blocked = False

        while True:
            now = time.monotonic()
            elapsed = now - started_at
            if elapsed > cfg.absolute_timeout:
                current = handle.snapshot.player.position
                logger.error(
                    "Movement absolute timeout exceeded: elapsed=%.2fs start=%s dest=%s "
                    "current=%s escape_attempts=%d area=%d",
                    elapsed, tuple(start_position), tuple(destination), tuple(current),
                    stuck.escape_attempts, handle.snapshot.player.area_id,
                )
                self._mark_stuck(handle)
                raise PlayerStuckError(
                    f"movement timeout after {elapsed:.1f}s towards {tuple(destination)}"
                )

            if not handle.is_active():
                logger.debug(
                    "Movement paused, priority mismatch: tier=%s active=%s elapsed=%.2fs",
                    handle.tier.name, handle.session.arbitrator.active.name, elapsed,
                )
            acquired = await handle.pause_if_not_priority_with_timeout(
                cfg.absolute_timeout - elapsed
            )
            if not acquired:
                continue

            snapshot = await handle.refresh()
            player = snapshot.player

            if player.area_id != start_area:
                await self._finish_area_transition(handle, start_area, started_at)
                return

            distance = pathfinder.distance_from_me(snapshot, destination)
            handle.set_last_step(f"move_to_dist{distance}")

            if distance <= finish_distance:
                self._log_arrival(handle, start_position, destination, distance,
                                  started_at, can_teleport, stuck.escape_attempts, blocked)
                handle.current_game.is_stuck = False
                return
            if blocked and distance <= finish_distance * 2:
                logger.debug(
                    "Movement completed within blocked tolerance: position=%s distance=%d "
                    "duration=%.2fs",
                    tuple(player.position), distance, time.monotonic() - started_at,
                )
                return

            if not snapshot.can_teleport:
                await self._open_doors_on_path(handle, snapshot, destination)

            if options.has_stationary_band and (
                options.stationary_min_distance <= distance <= options.stationary_max_distance
            ):
                logger.debug(
                    "Movement completed at stationary distance: band=[%d, %d] distance=%d",
                    options.stationary_min_distance, options.stationary_max_distance, distance,
                )
                return

            if snapshot.can_teleport and last_move_at is not None:
                since_move = time.monotonic() - last_move_at
                if since_move < snapshot.cast_duration:
                    await asyncio.sleep(min(snapshot.cast_duration - since_move, cfg.max_teleport_wait))
                    continue

            if (
                not options.ignore_monsters
                and not snapshot.is_town
                and (not snapshot.can_teleport or override_clear_path)
                and clear_path_distance > 0
                and time.monotonic() - last_monster_check > cfg.monster_check_interval
            ):
                last_monster_check = time.monotonic()
                blocking = self._blocking_monster(handle, snapshot, options, clear_path_distance)
                if blocking is not None:
                    logger.debug(
                        "Monster detected in movement path, aborting: monster_id=%d name=%s "
                        "distance=%d clear_path_distance=%d",
                        blocking.unit_id, blocking.name,
                        pathfinder.distance_from_me(snapshot, blocking.position),
                        clear_path_distance,
                    )
                    raise MonstersInPathError()

            blocked = False
            now = time.monotonic()
            verdict = stuck.observe(player.position, player.has_state("stunned"), now)

            if verdict == StuckVerdict.STUCK:
                logger.warning(
                    "Player stuck, aborting movement: position=%s dest=%s escape_attempts=%d "
                    "stuck_for=%.2fs total_stuck=%.2fs",
                    tuple(player.position), tuple(destination), stuck.escape_attempts,
                    stuck.stuck_for, stuck.total_stuck,
                )
                self._mark_stuck(handle)
                raise PlayerStuckError()
            if verdict == StuckVerdict.ESCAPE:
                logger.debug(
                    "Player stuck, attempting escape: attempt=%d/%d position=%s",
                    stuck.escape_attempts, stuck.max_escape_attempts, tuple(player.position),
                )
                pathfinder.smart_escape_movement(snapshot)
                last_move_at = None
                await asyncio.sleep(walk_duration)
                continue
            if verdict == StuckVerdict.BLOCKED:
                blocked = True
                last_move_at = None
                if now - last_log_at > cfg.log_throttle:
                    logger.debug("Player blocked: position=%s", tuple(player.position))
                    last_log_at = now
            elif verdict == StuckVerdict.MOVED:
                trip = round_trip.observe(player.position, distance, now)
                if trip == RoundTripVerdict.ROUND_TRIP:
                    logger.warning(
                        "Player doing round trips, aborting movement: area=%d dest=%s "
                        "window=%.2fs radius=%d distance=%d",
                        player.area_id, tuple(destination), now - round_trip.window_started_at,
                        round_trip.radius, distance,
                    )
                    raise PlayerRoundTripError()
                if trip == RoundTripVerdict.BLOCKED:
                    blocked = True
                    if now - last_log_at > cfg.log_throttle:
                        logger.debug(
                            "Round trip warning: window=%.2fs distance=%d",
                            now - round_trip.window_started_at, distance,
                        )
                        last_log_at = now

            if blocked:
                await self._clear_obstacle(handle, snapshot)

            self._select_movement_skill(handle, snapshot)

            path, path_distance, found = pathfinder.get_path(snapshot, destination)
            if not found:
                logger.warning(
                    "Path could not be calculated: area=%d from=%s to=%s distance=%d",
                    player.area_id, tuple(player.position), tuple(destination), distance,
                )
                raise NoPathError()
            if not path:
                logger.warning("Path found but it's empty: dest=%s", tuple(destination))
                return

            now = time.monotonic()
            if now - last_log_at > cfg.log_throttle:
                log = logger.info if now - started_at > cfg.slow_movement else logger.debug
                log(
                    "Movement progress: path_length=%d path_distance=%d distance=%d "
                    "position=%s dest=%s method=%s blocked=%s elapsed=%.2fs",
                    len(path), path_distance, distance, tuple(player.position),
                    tuple(destination), method, blocked, now - started_at,
                )
                last_log_at = now

            last_move_at = time.monotonic()
            pathfinder.move_through_path(snapshot, path, walk_duration)
            if snapshot.can_teleport:
                await asyncio.sleep(0)
            else:
                await asyncio.sleep(walk_duration)

    # --- helpers ---

    def _mark_stuck(self, handle: SessionHandle) -> None:
        game = handle.current_game
        if not game.is_stuck:
            game.is_stuck = True
            game.stuck_since = time.monotonic()

    async def _finish_area_transition(
        self, handle: SessionHandle, start_area: int, started_at: float
    ) -> None:
        cfg = self.config
        area = handle.snapshot.player.area_id
        logger.debug("Area transition during movement: from=%d to=%d", start_area, area)

        deadline = time.monotonic() + cfg.area_load_timeout
        while time.monotonic() < deadline:
            if handle.snapshot.collision_loaded:
                logger.debug(
                    "Movement completed via area transition: duration=%.2fs",
                    time.monotonic() - started_at,
                )
                return
            await asyncio.sleep(cfg.area_poll_interval)
            await handle.refresh(force=True)

        logger.warning("Area transition detected but collision data failed to load: area=%d", area)
        raise AreaTransitionError(
            f"area transition detected but collision data failed to load for area {area}"
        )

    def _log_arrival(
        self,
        handle: SessionHandle,
        start: Position,
        destination: Position,
        distance: int,
        started_at: float,
        teleported: bool,
        escape_attempts: int,
        blocked: bool,
    ) -> None:
        duration = time.monotonic() - started_at
        initial = start.distance_to(destination)
        speed = TELEPORT_TILES_PER_SECOND if teleported else WALK_TILES_PER_SECOND
        expected = initial / speed

        if duration > self.config.slow_movement or (expected > 0 and duration > expected * 3):
            logger.info(
                "Slow movement completed: area=%d start=%s dest=%s distance=%d "
                "duration=%.2fs expected=%.2fs method=%s escape_attempts=%d was_blocked=%s",
                handle.snapshot.player.area_id, tuple(start), tuple(destination), int(initial),
                duration, expected, "teleport" if teleported else "walk",
                escape_attempts, blocked,
            )
        else:
            logger.debug(
                "Movement completed: final=%s dest=%s distance=%d duration=%.2fs",
                tuple(handle.snapshot.player.position), tuple(destination), distance, duration,
            )

    async def _open_doors_on_path(
        self, handle: SessionHandle, snapshot: Snapshot, destination: Position
    ) -> None:
        pathfinder = handle.pathfinder
        found, door = pathfinder.has_door_between(snapshot, snapshot.player.position, destination)
        if not found or door is None:
            return

        logger.debug("Door detected on path: door_id=%d position=%s", door.id, tuple(door.position))
        last_error: Optional[InteractionError] = None
        for attempt in range(1, self.config.door_open_attempts + 1):
            try:
                await open_door(handle, door)
                logger.debug("Door opened: door_id=%d attempts=%d", door.id, attempt)
                return
            except InteractionError as exc:
                last_error = exc
            pathfinder.random_movement(handle.snapshot)
            await asyncio.sleep(0.25)

        logger.warning("Failed to open door after retries: door_id=%d error=%s", door.id, last_error)
        raise DoorInteractionError(f"failed to open door {door.id}: {last_error}")

    def _blocking_monster(
        self,
        handle: SessionHandle,
        snapshot: Snapshot,
        options: MoveOptions,
        clear_path_distance: int,
    ) -> Optional[Monster]:
        pathfinder = handle.pathfinder
        me = snapshot.player.position
        for monster in snapshot.enemies(options.monster_filter):
            if monster.is_skip:
                continue
            # cheapest check first, door lookup computes a path
            if pathfinder.distance_from_me(snapshot, monster.position) > clear_path_distance:
                continue
            if not pathfinder.line_of_sight(snapshot, me, monster.position):
                continue
            has_door, _ = pathfinder.has_door_between(snapshot, me, monster.position)
            if not has_door:
                return monster
        return None

    async def _clear_obstacle(self, handle: SessionHandle, snapshot: Snapshot) -> None:
        pathfinder = handle.pathfinder
        me = snapshot.player.position

        destructible = pathfinder.get_closest_destructible(snapshot, me)
        if destructible is not None:
            if not destructible.selectable:
                return
            logger.debug(
                "Destructible obstacle detected: object_id=%d name=%s position=%s",
                destructible.id, destructible.name, tuple(destructible.position),
            )
            x, y = pathfinder.game_coords_to_screen(snapshot, destructible.position)
            handle.hid.click(MouseButton.LEFT, x, y)
            await asyncio.sleep(DESTRUCTIBLE_CLICK_DELAY + snapshot.ping_ms / 1000.0)
            return

        door = pathfinder.get_closest_door(snapshot, me)
        if door is not None:
            logger.debug("Door detected nearby: door_id=%d position=%s", door.id, tuple(door.position))
            try:
                await open_door(handle, door)
            except InteractionError as exc:
                logger.debug("Nearby door did not open: door_id=%d error=%s", door.id, exc)

    def _select_movement_skill(self, handle: SessionHandle, snapshot: Snapshot) -> None:
        player = snapshot.player
        bindings = snapshot.key_bindings
        if snapshot.can_teleport:
            key = bindings.for_skill("teleport")
            if key is not None and player.right_skill != "teleport":
                handle.press_key(key)
            return

        aura = self.config.movement_aura
        if aura is None:
            return
        key = bindings.for_skill(aura)
        if key is not None and player.right_skill != aura:
            handle.press_key(key)
