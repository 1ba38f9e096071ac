"""
Health Manager — potion use and chicken checks.

Behavioral Contract:
- Death and chicken thresholds raise critical errors; nothing else here
  raises.
- Each potion type has its own cooldown so a slow snapshot never makes
  the character drink the whole belt.
- Rejuvenation takes precedence over healing and mana in the same tick.
"""

import logging
import time
from typing import Dict, Optional

from bot_kernel.errors import ChickenError, DiedError, MercChickenError
from bot_kernel.models.config import HealthConfig
from bot_kernel.models.snapshot import PotionKind, Snapshot
from bot_kernel.session.context import SessionHandle

logger = logging.getLogger(__name__)


class HealthManager:
    def __init__(self, config: Optional[HealthConfig] = None):
        self.config = config or HealthConfig()
        self._last_used: Dict[str, float] = {}

    def _ready(self, slot: str, cooldown: float) -> bool:
        last = self._last_used.get(slot)
        return last is None or time.monotonic() - last >= cooldown

    def handle_health_and_mana(self, handle: SessionHandle) -> None:
        """Check the current snapshot once. Raises on death or chicken."""
        cfg = self.config
        snapshot = handle.snapshot
        player = snapshot.player

        if player.is_dead:
            raise DiedError()

        hp = player.hp_percent
        mana = player.mana_percent
        chicken_at = cfg.town_chicken_at if snapshot.is_town else cfg.chicken_at
        if chicken_at > 0 and hp <= chicken_at:
            logger.info("Life below chicken threshold: hp=%d%% threshold=%d%%", hp, chicken_at)
            raise ChickenError(
                f"player life {hp}% below chicken threshold {chicken_at}%"
            )

        merc_hp = snapshot.merc_hp_percent
        if merc_hp is not None and merc_hp > 0 and cfg.merc_chicken_at > 0 and merc_hp <= cfg.merc_chicken_at:
            logger.info("Mercenary life below chicken threshold: hp=%d%%", merc_hp)
            raise MercChickenError(
                f"mercenary life {merc_hp}% below chicken threshold {cfg.merc_chicken_at}%"
            )

        used_rejuv = False
        if (hp <= cfg.rejuv_potion_at_life or (cfg.rejuv_potion_at_mana > 0 and mana <= cfg.rejuv_potion_at_mana)):
            if self._ready("rejuvenation", cfg.rejuv_cooldown):
                used_rejuv = self._drink(handle, snapshot, PotionKind.REJUVENATION, "rejuvenation")

        if not used_rejuv:
            if hp <= cfg.healing_potion_at and self._ready("healing", cfg.healing_cooldown):
                self._drink(handle, snapshot, PotionKind.HEALING, "healing")
            if mana <= cfg.mana_potion_at and self._ready("mana", cfg.mana_cooldown):
                self._drink(handle, snapshot, PotionKind.MANA, "mana")

        if merc_hp is not None and 0 < merc_hp <= cfg.merc_healing_potion_at:
            if self._ready("merc_healing", cfg.merc_healing_cooldown):
                self._drink(handle, snapshot, PotionKind.HEALING, "merc_healing", merc=True)

    def _drink(
        self,
        handle: SessionHandle,
        snapshot: Snapshot,
        kind: PotionKind,
        slot: str,
        merc: bool = False,
    ) -> bool:
        potions = sorted(snapshot.belt_potions(kind), key=lambda p: (p.position.y, p.position.x))
        keys = snapshot.key_bindings.belt
        if not potions or not keys:
            logger.debug("No %s potion in belt", kind.value)
            return False

        potion = potions[0]
        column = potion.position.x % len(keys)
        key = keys[column]
        handle.press_key(key, "shift" if merc else None)
        self._last_used[slot] = time.monotonic()
        logger.debug(
            "Using %s potion: column=%d hp=%d%% mana=%d%% merc=%s",
            kind.value, column + 1, snapshot.player.hp_percent, snapshot.player.mana_percent, merc,
        )
        return True

    def drink_potion(self, handle: SessionHandle, kind: PotionKind, merc: bool = False) -> bool:
        """Drink one potion of `kind` now, ignoring thresholds but not cooldowns."""
        slot = ("merc_" + kind.value) if merc else kind.value
        cooldowns = {
            "healing": self.config.healing_cooldown,
            "mana": self.config.mana_cooldown,
            "rejuvenation": self.config.rejuv_cooldown,
            "merc_healing": self.config.merc_healing_cooldown,
        }
        if not self._ready(slot, cooldowns.get(slot, 0.0)):
            return False
        return self._drink(handle, handle.snapshot, kind, slot, merc=merc)

    def reset(self) -> None:
        self._last_used.clear()
