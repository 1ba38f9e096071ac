"""
Attack Controller — sequences offensive actions against one target.

Behavioral Contract:
- Health is sampled at most once per sample interval. No damage while the
  target stands still starts a failure timer; any damage clears it.
- A stall past the failure timer triggers a reposition beyond the target.
  Once the allowed repositions are spent and the cooldown since the last
  one has passed, the target is declared unreachable. That is an outcome,
  not an error: the caller picks another target.
- Attacks are never re-issued faster than the observed cast duration.
- Only a pathing failure to reach the target raises.
- The stand-still key is always released on exit.
"""

import asyncio
import logging
import time
from typing import Dict, Optional, Set

from bot_kernel.actions.strategies import Strategy, run_strategies
from bot_kernel.errors import MovementError, NoPathError
from bot_kernel.interfaces import MouseButton
from bot_kernel.models.attack import AttackOptions, AttackOutcome, AttackState
from bot_kernel.models.config import AttackConfig
from bot_kernel.models.movement import MoveOptions
from bot_kernel.models.snapshot import Monster, Snapshot
from bot_kernel.session.context import SessionHandle

logger = logging.getLogger(__name__)

MELEE_RANGE = 3
OVERSHOOT_DISTANCE = 9
SKILL_SELECT_DELAY = 0.01


class _AttackRequest:
    """Per-call settings, merged from the public entry points."""

    def __init__(
        self,
        target_id: int,
        repetitions: int,
        options: AttackOptions,
        primary: bool,
        skill: Optional[str] = None,
    ):
        self.target_id = target_id
        self.repetitions = repetitions
        self.options = options
        self.primary = primary
        self.skill = skill


class AttackController:
    """
    Owns the per-target AttackState table. One instance per session; the
    table is only touched from the loop that is currently attacking.
    """

    def __init__(self, movement, config: Optional[AttackConfig] = None):
        self.movement = movement
        self.config = config or AttackConfig()
        self._states: Dict[int, AttackState] = {}

    # --- public API ---

    async def primary_attack(
        self,
        handle: SessionHandle,
        target_id: int,
        repetitions: int,
        options: Optional[AttackOptions] = None,
    ) -> AttackOutcome:
        request = _AttackRequest(target_id, repetitions, options or AttackOptions(), primary=True)
        return await self._attack(handle, request)

    async def secondary_attack(
        self,
        handle: SessionHandle,
        skill: str,
        target_id: int,
        repetitions: int,
        options: Optional[AttackOptions] = None,
    ) -> AttackOutcome:
        request = _AttackRequest(
            target_id, repetitions, options or AttackOptions(), primary=False, skill=skill
        )
        if request.options.burst:
            return await self._burst_attack(handle, request)
        return await self._attack(handle, request)

    def state_for(self, target_id: int) -> Optional[AttackState]:
        return self._states.get(target_id)

    @property
    def tracked_targets(self) -> int:
        return len(self._states)

    def forget(self, target_id: int) -> None:
        self._states.pop(target_id, None)

    # --- sequences ---

    async def _attack(self, handle: SessionHandle, request: _AttackRequest) -> AttackOutcome:
        cfg = self.config
        options = request.options
        handle.set_last_step("attack")

        remaining = request.repetitions
        last_attack_at: Optional[float] = None
        last_refresh_at = time.monotonic()
        last_log_at = 0.0
        started_at = time.monotonic()

        try:
            while True:
                await handle.pause_if_not_priority()

                if remaining <= 0:
                    logger.debug(
                        "Attack sequence completed: attacks=%d duration=%.2fs",
                        request.repetitions, time.monotonic() - started_at,
                    )
                    return AttackOutcome.COMPLETED

                if time.monotonic() - last_refresh_at > cfg.refresh_interval:
                    await handle.refresh()
                    last_refresh_at = time.monotonic()

                snapshot = handle.snapshot
                monster = snapshot.find_monster(request.target_id)
                if monster is None or not monster.is_valid_enemy:
                    logger.debug(
                        "Target not found or invalid: monster_id=%d found=%s",
                        request.target_id, monster is not None,
                    )
                    self.forget(request.target_id)
                    return AttackOutcome.TARGET_GONE

                pathfinder = handle.pathfinder
                distance = pathfinder.distance_from_me(snapshot, monster.position)
                now = time.monotonic()
                if now - last_log_at > cfg.log_throttle:
                    logger.debug(
                        "Attack state: monster_id=%d name=%s hp=%d/%d distance=%d "
                        "min=%d max=%d follow=%s remaining=%d",
                        monster.unit_id, monster.name, monster.life, monster.max_life,
                        distance, options.min_distance, options.max_distance,
                        options.follow_enemy, remaining,
                    )
                    last_log_at = now

                if last_attack_at is not None and not options.follow_enemy and distance > options.max_distance:
                    logger.debug(
                        "Enemy out of range, stopping attack: distance=%d max=%d",
                        distance, options.max_distance,
                    )
                    return AttackOutcome.OUT_OF_RANGE

                state = self._track_damage(monster)
                stalled = self._is_stalled(state)
                if stalled:
                    logger.debug(
                        "Repositioning needed, no damage: monster_id=%d no_damage_for=%.2fs "
                        "reposition_attempts=%d",
                        monster.unit_id, time.monotonic() - state.failed_attempt_started_at,
                        state.reposition_attempts,
                    )

                outcome = await self._ensure_in_range(handle, monster, state, options, stalled)
                if outcome == AttackOutcome.UNREACHABLE:
                    logger.info(
                        "Giving up on monster, unreachable or unkillable: monster_id=%d name=%s "
                        "area=%d reposition_attempts=%d",
                        monster.unit_id, monster.name, handle.snapshot.player.area_id,
                        state.reposition_attempts,
                    )
                    self.forget(request.target_id)
                    return AttackOutcome.UNREACHABLE

                if options.aura and last_attack_at is None:
                    key = handle.snapshot.key_bindings.for_skill(options.aura)
                    if key is not None:
                        logger.debug("Activating aura for attack: aura=%s", options.aura)
                        handle.press_key(key)

                if not self._ready_to_attack(handle.snapshot, last_attack_at):
                    await asyncio.sleep(cfg.poll_interval)
                    continue

                await self._perform_attack(handle, request, monster)
                last_attack_at = time.monotonic()
                remaining -= 1
                await asyncio.sleep(cfg.poll_interval)
        finally:
            self._release_stand_still(handle)

    async def _burst_attack(self, handle: SessionHandle, request: _AttackRequest) -> AttackOutcome:
        """Keep casting at the closest valid enemy in range until none is left."""
        cfg = self.config
        options = request.options
        timeout = options.timeout if options.timeout is not None else cfg.burst_timeout
        handle.set_last_step("burst_attack")

        try:
            monster = handle.snapshot.find_monster(request.target_id)
            if monster is None or not monster.is_valid_enemy:
                logger.debug("Burst attack: initial target invalid: monster_id=%d", request.target_id)
                return AttackOutcome.TARGET_GONE

            state = self._track_damage(monster)
            if await self._ensure_in_range(handle, monster, state, options, False) == AttackOutcome.UNREACHABLE:
                self.forget(monster.unit_id)
                return AttackOutcome.UNREACHABLE

            started_at = time.monotonic()
            last_refresh_at = started_at
            last_attack_at: Optional[float] = None
            given_up: Set[int] = set()
            current_target = request.target_id
            switches = 0

            while True:
                await handle.pause_if_not_priority()

                if time.monotonic() - started_at > timeout:
                    logger.debug(
                        "Burst attack timeout reached: duration=%.2fs target_switches=%d",
                        time.monotonic() - started_at, switches,
                    )
                    return AttackOutcome.TIMEOUT

                if time.monotonic() - last_refresh_at > cfg.refresh_interval:
                    await handle.refresh()
                    last_refresh_at = time.monotonic()

                snapshot = handle.snapshot
                target = self._closest_in_range(handle, snapshot, options.max_distance, given_up)
                if target is None:
                    logger.debug("Burst attack: no valid targets in range, max=%d", options.max_distance)
                    return AttackOutcome.COMPLETED

                if target.unit_id != current_target:
                    switches += 1
                    current_target = target.unit_id
                    logger.debug("Burst attack: target switched: monster_id=%d switches=%d",
                                 target.unit_id, switches)

                state = self._track_damage(target)
                stalled = self._is_stalled(state)
                has_los = handle.pathfinder.line_of_sight(
                    snapshot, snapshot.player.position, target.position
                )
                if not has_los or stalled:
                    outcome = await self._ensure_in_range(handle, target, state, options, stalled)
                    if outcome == AttackOutcome.UNREACHABLE:
                        logger.info(
                            "Giving up on monster during burst: monster_id=%d name=%s",
                            target.unit_id, target.name,
                        )
                        self.forget(target.unit_id)
                        given_up.add(target.unit_id)
                    await asyncio.sleep(cfg.poll_interval)
                    continue

                if not self._ready_to_attack(snapshot, last_attack_at):
                    await asyncio.sleep(cfg.poll_interval)
                    continue

                await self._perform_attack(handle, request, target)
                last_attack_at = time.monotonic()
                await asyncio.sleep(cfg.poll_interval)
        finally:
            self._release_stand_still(handle)

    # --- damage tracking ---

    def _track_damage(self, monster: Monster) -> AttackState:
        cfg = self.config
        now = time.monotonic()
        state = self._states.get(monster.unit_id)
        if state is None:
            state = AttackState(
                target_id=monster.unit_id,
                last_health=monster.life,
                last_health_check_at=now,
                position=monster.position,
            )
            self._states[monster.unit_id] = state
            logger.debug(
                "New attack state: monster_id=%d name=%s hp=%d",
                monster.unit_id, monster.name, monster.life,
            )
            return state

        if now - state.last_health_check_at <= cfg.health_sample_interval:
            return state

        if monster.life < state.last_health:
            if state.failed_attempt_started_at is not None:
                logger.debug(
                    "Damage detected: monster_id=%d hp_before=%d hp_after=%d",
                    monster.unit_id, state.last_health, monster.life,
                )
            state.failed_attempt_started_at = None
            state.reposition_attempts = 0
        elif state.failed_attempt_started_at is None and monster.position == state.position:
            state.failed_attempt_started_at = now
            state.reposition_attempts = 0
            logger.debug(
                "No damage detected, starting failure timer: monster_id=%d hp=%d",
                monster.unit_id, monster.life,
            )

        state.last_health = monster.life
        state.last_health_check_at = now
        state.position = monster.position
        self._evict_stale(now)
        return state

    def _evict_stale(self, now: float) -> None:
        cfg = self.config
        if len(self._states) <= cfg.state_table_cap:
            return
        stale = [
            target_id for target_id, state in self._states.items()
            if now - state.last_health_check_at > cfg.state_ttl
        ]
        for target_id in stale:
            del self._states[target_id]
        if stale:
            logger.debug(
                "Cleaned up old attack states: cleaned=%d remaining=%d",
                len(stale), len(self._states),
            )

    def _is_stalled(self, state: AttackState) -> bool:
        if state.failed_attempt_started_at is None:
            return False
        return time.monotonic() - state.failed_attempt_started_at > self.config.failed_attempt_timeout

    def _cooling_down(self, state: AttackState) -> bool:
        if state.last_reposition_at is None:
            return False
        return time.monotonic() - state.last_reposition_at < self.config.reposition_cooldown

    # --- range and line of sight ---

    async def _ensure_in_range(
        self,
        handle: SessionHandle,
        monster: Monster,
        state: AttackState,
        options: AttackOptions,
        stalled: bool,
    ) -> Optional[AttackOutcome]:
        """Reposition or approach as needed. Returns UNREACHABLE to give up."""
        handle.set_last_step("ensure_enemy_in_range")
        snapshot = handle.snapshot
        pathfinder = handle.pathfinder
        me = snapshot.player.position
        distance = pathfinder.distance_from_me(snapshot, monster.position)
        has_los = pathfinder.line_of_sight(snapshot, me, monster.position)

        if has_los and distance <= options.max_distance and not stalled:
            state.reposition_attempts = 0
            return None

        if stalled:
            if self._cooling_down(state):
                return None
            if state.reposition_attempts >= self.config.max_reposition_attempts:
                return AttackOutcome.UNREACHABLE

            destination = pathfinder.beyond_position(
                me, monster.position, self.config.reposition_beyond_distance
            )
            logger.info(
                "No damage detected, attempting reposition: monster_id=%d name=%s attempt=%d "
                "player=%s monster=%s distance=%d",
                monster.unit_id, monster.name, state.reposition_attempts + 1,
                tuple(me), tuple(monster.position), distance,
            )
            state.reposition_attempts += 1
            state.last_reposition_at = time.monotonic()
            try:
                await self.movement.move_to(handle, destination, MoveOptions(ignore_monsters=True))
            except MovementError as exc:
                logger.error(
                    "Reposition move failed: monster_id=%d dest=%s error=%s",
                    monster.unit_id, tuple(destination), exc,
                )
            return None

        if options.max_distance <= MELEE_RANGE:
            logger.debug(
                "Close-range combat, moving to target: monster_id=%d distance=%d",
                monster.unit_id, distance,
            )
            await self._approach(
                handle, monster.position,
                MoveOptions(ignore_monsters=True, distance_to_finish=max(2, options.max_distance)),
            )
            return None

        path, path_distance, found = pathfinder.get_path(snapshot, monster.position)
        if not found:
            logger.debug(
                "Path to monster could not be calculated: monster_id=%d player=%s monster=%s",
                monster.unit_id, tuple(me), tuple(monster.position),
            )
            raise NoPathError(f"path could not be calculated to reach monster {monster.unit_id}")

        finish_distance = self.movement.config.distance_to_finish
        force_attack = _force_attack(handle)
        for position in path:
            monster_distance = int(position.distance_to(monster.position))
            if monster_distance > options.max_distance or monster_distance < options.min_distance:
                continue

            destination = position
            distance_to_move = pathfinder.distance_from_me(snapshot, destination)
            if distance_to_move <= finish_distance:
                destination = pathfinder.beyond_position(me, destination, OVERSHOOT_DISTANCE)

            if pathfinder.line_of_sight(snapshot, destination, monster.position) and not force_attack:
                logger.debug(
                    "Moving to attack position: monster_id=%d dest=%s monster_distance=%d",
                    monster.unit_id, tuple(destination), monster_distance,
                )
                await self._approach(handle, destination, MoveOptions(ignore_monsters=True))
                return None

        logger.debug(
            "No suitable position along path, continuing attack: monster_id=%d distance=%d "
            "path_distance=%d has_los=%s",
            monster.unit_id, distance, path_distance, has_los,
        )
        return None

    async def _approach(self, handle: SessionHandle, destination, options: MoveOptions) -> None:
        try:
            await self.movement.move_to(handle, destination, options)
        except NoPathError:
            raise
        except MovementError as exc:
            logger.debug("Approach move failed, continuing attack: dest=%s error=%s",
                         tuple(destination), exc)

    def _closest_in_range(
        self, handle: SessionHandle, snapshot: Snapshot, max_distance: int, exclude: Set[int]
    ) -> Optional[Monster]:
        best: Optional[Monster] = None
        best_distance = 0
        for monster in snapshot.enemies():
            if monster.unit_id in exclude or not monster.is_valid_enemy:
                continue
            distance = handle.pathfinder.distance_from_me(snapshot, monster.position)
            if distance > max_distance:
                continue
            if best is None or distance < best_distance:
                best, best_distance = monster, distance
        return best

    # --- input ---

    def _ready_to_attack(self, snapshot: Snapshot, last_attack_at: Optional[float]) -> bool:
        if last_attack_at is None:
            return True
        since = time.monotonic() - last_attack_at
        return since > snapshot.cast_duration - self.config.attack_cycle

    async def _perform_attack(
        self, handle: SessionHandle, request: _AttackRequest, monster: Monster
    ) -> None:
        snapshot = handle.snapshot
        pathfinder = handle.pathfinder
        if not pathfinder.line_of_sight(snapshot, snapshot.player.position, monster.position):
            if not _force_attack(handle):
                logger.debug("Skipping attack, no line of sight: monster_id=%d", monster.unit_id)
                return

        use_packets = (
            handle.config.packets.use_for_entity_skills
            and handle.packet_sender is not None
            and request.target_id != 0
        )
        strategies = [
            Strategy(
                "packet_entity",
                lambda: self._attack_packet(handle, request, monster),
                enabled=use_packets,
            ),
            Strategy("mouse", lambda: self._attack_mouse(handle, request, monster)),
        ]
        await run_strategies(strategies, f"attack[{monster.unit_id}]")

    async def _select_skill(self, handle: SessionHandle, request: _AttackRequest) -> None:
        if not request.skill:
            return
        player = handle.snapshot.player
        selected = player.left_skill if request.primary else player.right_skill
        if selected == request.skill:
            return
        key = handle.snapshot.key_bindings.for_skill(request.skill)
        if key is not None:
            handle.press_key(key)
            await asyncio.sleep(SKILL_SELECT_DELAY)

    async def _attack_packet(
        self, handle: SessionHandle, request: _AttackRequest, monster: Monster
    ) -> bool:
        await self._select_skill(handle, request)
        button = MouseButton.LEFT if request.primary else MouseButton.RIGHT
        handle.packet_sender.cast_skill_entity(button, monster.unit_id)
        logger.debug("Entity skill cast via packet: monster_id=%d skill=%s", monster.unit_id, request.skill)
        return True

    async def _attack_mouse(
        self, handle: SessionHandle, request: _AttackRequest, monster: Monster
    ) -> bool:
        await self._select_skill(handle, request)
        stand_still = request.options.stand_still
        stand_still_key = handle.snapshot.key_bindings.stand_still
        if stand_still:
            handle.key_down(stand_still_key)

        x, y = handle.pathfinder.game_coords_to_screen(handle.snapshot, monster.position)
        button = MouseButton.LEFT if request.primary else MouseButton.RIGHT
        handle.hid.click(button, x, y)

        if stand_still:
            handle.key_up(stand_still_key)
        return True

    def _release_stand_still(self, handle: SessionHandle) -> None:
        handle.key_up(handle.snapshot.key_bindings.stand_still)


def _force_attack(handle: SessionHandle) -> bool:
    return handle.config.force_attack
