"""
Defense Manager — steps away from fights that are going badly.

Behavioral Contract:
- Two conditions are watched on every High tick outside town:
  standing still while losing life (poison excluded), and hitting the
  closest enemy without lowering its life.
- Standing still under fire always escapes: teleport to a safer spot
  when possible, otherwise the pathfinder's escape move, plus a
  rejuvenation potion at low life.
- Ineffective attacks escape the same way at low life and just
  reposition otherwise.
- Never raises; the action taken is returned for logging and tests.
"""

import logging
import time
from typing import Callable, Optional

from bot_kernel.health.manager import HealthManager
from bot_kernel.models.config import DefenseConfig
from bot_kernel.models.snapshot import Monster, Position, PotionKind, Snapshot
from bot_kernel.session.context import SessionHandle

logger = logging.getLogger(__name__)

HP_SAMPLE_INTERVAL = 0.1
ATTACK_SAMPLE_INTERVAL = 0.2
ESCAPE_WALK_DURATION = 0.2


class DefenseManager:
    def __init__(
        self,
        config: Optional[DefenseConfig] = None,
        health: Optional[HealthManager] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or DefenseConfig()
        self.health = health or HealthManager()
        self.clock = clock
        self.reset()

    def reset(self) -> None:
        self._last_position: Optional[Position] = None
        self._stationary_since: Optional[float] = None
        self._last_hp = 0
        self._last_hp_at: Optional[float] = None
        self._damage_since: Optional[float] = None
        self._target_id: Optional[int] = None
        self._target_life = 0
        self._target_checked_at = 0.0
        self._ineffective_since: Optional[float] = None

    def check(self, handle: SessionHandle) -> Optional[str]:
        if not self.config.enabled:
            return None
        snapshot = handle.snapshot
        player = snapshot.player
        if snapshot.is_town or player.is_dead:
            return None

        hp = player.hp_percent
        if self._stationary_and_taking_damage(player.position, hp, player.has_state("poison")):
            logger.warning("Player stationary and taking damage, taking defensive action: hp=%d%%", hp)
            return self._escape(handle, snapshot, drink=hp <= self.config.low_hp_threshold)

        if self._attacking_ineffectively(handle, snapshot):
            if hp < self.config.low_hp_threshold:
                logger.warning("Player attacking ineffectively with low life, escaping: hp=%d%%", hp)
                return self._escape(handle, snapshot, drink=True)
            logger.info("Player attacking ineffectively, repositioning")
            return self._reposition(handle, snapshot)

        self._reset_if_moved(player.position)
        return None

    # --- detection ---

    def _stationary_and_taking_damage(self, position: Position, hp: int, poisoned: bool) -> bool:
        cfg = self.config
        now = self.clock()

        if self._last_position is None or position.distance_to(self._last_position) > cfg.min_movement:
            self._last_position = position
            self._stationary_since = None
            return False

        if self._stationary_since is None:
            self._stationary_since = now
            return False
        if now - self._stationary_since < cfg.stationary_threshold:
            return False

        if self._last_hp_at is None:
            self._last_hp, self._last_hp_at = hp, now
            return False
        if now - self._last_hp_at < HP_SAMPLE_INTERVAL:
            return False

        taking_damage = False
        if hp < self._last_hp and not poisoned:
            if self._damage_since is None:
                self._damage_since = now
            taking_damage = now - self._damage_since >= cfg.damage_threshold
        else:
            self._damage_since = None

        self._last_hp, self._last_hp_at = hp, now
        return taking_damage

    def _attacking_ineffectively(self, handle: SessionHandle, snapshot: Snapshot) -> bool:
        now = self.clock()
        target = self._closest_enemy(handle, snapshot, self.config.attack_range)
        if target is None:
            self._target_id = None
            self._ineffective_since = None
            return False

        if target.unit_id != self._target_id:
            self._target_id = target.unit_id
            self._target_life = target.life
            self._target_checked_at = now
            self._ineffective_since = None
            return False

        if now - self._target_checked_at < ATTACK_SAMPLE_INTERVAL:
            return False

        if target.life < self._target_life:
            self._target_life = target.life
            self._target_checked_at = now
            self._ineffective_since = None
            return False

        if self._ineffective_since is None:
            self._ineffective_since = now
        if now - self._ineffective_since >= self.config.ineffective_attack_threshold:
            self._target_life = target.life
            self._target_checked_at = now
            return True
        return False

    def _reset_if_moved(self, position: Position) -> None:
        if self._last_position is not None and position.distance_to(self._last_position) > self.config.min_movement:
            self._stationary_since = None
            self._damage_since = None
        self._last_position = position

    # --- actions ---

    def _closest_enemy(self, handle: SessionHandle, snapshot: Snapshot, radius: int) -> Optional[Monster]:
        pathfinder = handle.pathfinder
        in_range = [
            m for m in snapshot.enemies()
            if pathfinder.distance_from_me(snapshot, m.position) <= radius
        ]
        if not in_range:
            return None
        return min(in_range, key=lambda m: pathfinder.distance_from_me(snapshot, m.position))

    def _move_away(self, handle: SessionHandle, snapshot: Snapshot, monster: Monster, distance: int) -> bool:
        pathfinder = handle.pathfinder
        destination = pathfinder.beyond_position(monster.position, snapshot.player.position, distance)
        path, _, found = pathfinder.get_path(snapshot, destination)
        if not found or not path:
            return False
        pathfinder.move_through_path(snapshot, path, ESCAPE_WALK_DURATION)
        return True

    def _escape(self, handle: SessionHandle, snapshot: Snapshot, drink: bool) -> str:
        cfg = self.config
        if snapshot.can_teleport:
            closest = self._closest_enemy(handle, snapshot, cfg.escape_distance)
            if closest is None or handle.pathfinder.distance_from_me(snapshot, closest.position) >= cfg.safe_distance:
                return "safe"
            if self._move_away(handle, snapshot, closest, cfg.escape_distance):
                logger.info("Teleporting to safe position")
                return "teleport"

        logger.info("Using escape movement")
        handle.pathfinder.smart_escape_movement(snapshot)
        if drink and self.health.drink_potion(handle, PotionKind.REJUVENATION):
            logger.info("Used rejuvenation potion")
        return "escape"

    def _reposition(self, handle: SessionHandle, snapshot: Snapshot) -> Optional[str]:
        closest = self._closest_enemy(handle, snapshot, self.config.attack_range)
        if closest is None:
            return None
        pathfinder = handle.pathfinder
        spot = pathfinder.beyond_position(closest.position, snapshot.player.position, self.config.safe_distance)
        if not pathfinder.line_of_sight(snapshot, spot, closest.position):
            logger.debug("No line of sight from reposition spot: spot=%s", tuple(spot))
            return None
        if self._move_away(handle, snapshot, closest, self.config.safe_distance):
            logger.info("Repositioning to new attack position: spot=%s", tuple(spot))
            return "reposition"
        return None
