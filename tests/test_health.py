"""Tests for the Health Manager, emergency exit and defense checks."""

import pytest

from bot_kernel.errors import ChickenError, DiedError, EmergencyExitError, MercChickenError
from bot_kernel.health.defense import DefenseManager
from bot_kernel.health.emergency import EmergencyExitMonitor
from bot_kernel.health.manager import HealthManager
from bot_kernel.models.config import DefenseConfig, HealthConfig
from bot_kernel.models.priority import Priority
from bot_kernel.models.snapshot import (
    Item,
    ItemLocation,
    Monster,
    PlayerMode,
    PlayerUnit,
    Position,
    PotionKind,
    Snapshot,
)
from tests.fakes import make_session


def _make_belt():
    return [
        Item(unit_id=1, name="healing", location=ItemLocation.BELT, position=Position(0, 0),
             potion=PotionKind.HEALING),
        Item(unit_id=2, name="mana", location=ItemLocation.BELT, position=Position(2, 0),
             potion=PotionKind.MANA),
        Item(unit_id=3, name="rejuv", location=ItemLocation.BELT, position=Position(3, 0),
             potion=PotionKind.REJUVENATION),
    ]


def _make_handle(hp=100, mana=100, merc_hp=None, mode=PlayerMode.IDLE, is_town=False):
    snapshot = Snapshot(
        player=PlayerUnit(hp=hp, mana=mana, mode=mode),
        items=_make_belt(),
        merc_hp_percent=merc_hp,
        is_town=is_town,
    )
    session, _, hid, _ = make_session(snapshot)
    return session.for_priority(Priority.HIGH), hid


class TestHealthManager:
    def setup_method(self):
        self.manager = HealthManager(HealthConfig(merc_chicken_at=20))

    def test_healthy_does_nothing(self):
        handle, hid = _make_handle()
        self.manager.handle_health_and_mana(handle)
        assert hid.events == []

    def test_dead_raises(self):
        handle, _ = _make_handle(mode=PlayerMode.DEAD)
        with pytest.raises(DiedError):
            self.manager.handle_health_and_mana(handle)

    def test_chicken(self):
        handle, _ = _make_handle(hp=20)
        with pytest.raises(ChickenError):
            self.manager.handle_health_and_mana(handle)

    def test_town_chicken_disabled_by_default(self):
        handle, _ = _make_handle(hp=20, is_town=True)
        self.manager.handle_health_and_mana(handle)

    def test_merc_chicken(self):
        handle, _ = _make_handle(merc_hp=10)
        with pytest.raises(MercChickenError):
            self.manager.handle_health_and_mana(handle)

    def test_healing_potion_with_cooldown(self):
        handle, hid = _make_handle(hp=50)
        self.manager.handle_health_and_mana(handle)
        self.manager.handle_health_and_mana(handle)
        assert hid.of_kind("press") == [("press", "1", None)]

    def test_reset_clears_cooldowns(self):
        handle, hid = _make_handle(hp=50)
        self.manager.handle_health_and_mana(handle)
        self.manager.reset()
        self.manager.handle_health_and_mana(handle)
        assert len(hid.of_kind("press")) == 2

    def test_rejuvenation_takes_precedence(self):
        handle, hid = _make_handle(hp=35, mana=10)
        self.manager.handle_health_and_mana(handle)
        assert hid.of_kind("press") == [("press", "4", None)]

    def test_mana_potion(self):
        handle, hid = _make_handle(mana=15)
        self.manager.handle_health_and_mana(handle)
        assert hid.of_kind("press") == [("press", "3", None)]

    def test_merc_healing_uses_modifier(self):
        handle, hid = _make_handle(merc_hp=40)
        self.manager.handle_health_and_mana(handle)
        assert hid.of_kind("press") == [("press", "1", "shift")]

    def test_drink_potion_respects_cooldown(self):
        handle, hid = _make_handle()
        assert self.manager.drink_potion(handle, PotionKind.REJUVENATION) is True
        assert self.manager.drink_potion(handle, PotionKind.REJUVENATION) is False
        assert hid.of_kind("press") == [("press", "4", None)]


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _make_emergency_config(**overrides) -> HealthConfig:
    values = dict(
        emergency_exit_enabled=True,
        damage_spike_enabled=True,
        damage_spike_threshold=40,
        damage_spike_window=1.0,
    )
    values.update(overrides)
    return HealthConfig(**values)


class TestEmergencyExit:
    def setup_method(self):
        self.clock = _Clock()

    def _check(self, monitor, hp, **kwargs):
        handle, _ = _make_handle(hp=hp, **kwargs)
        monitor.check(handle)

    def test_disabled_by_default(self):
        monitor = EmergencyExitMonitor(HealthConfig(emergency_exit_at=50), clock=self.clock)
        self._check(monitor, 10)
        assert len(monitor.history) == 0

    def test_life_threshold(self):
        monitor = EmergencyExitMonitor(_make_emergency_config(emergency_exit_at=30), clock=self.clock)
        self._check(monitor, 31)
        with pytest.raises(EmergencyExitError):
            self._check(monitor, 30)

    def test_damage_spike_inside_window(self):
        monitor = EmergencyExitMonitor(_make_emergency_config(), clock=self.clock)
        self._check(monitor, 100)
        self.clock.now = 0.5
        self._check(monitor, 80)
        self.clock.now = 0.9
        with pytest.raises(EmergencyExitError):
            self._check(monitor, 60)

    def test_slow_bleed_is_not_a_spike(self):
        monitor = EmergencyExitMonitor(_make_emergency_config(), clock=self.clock)
        for step, hp in enumerate([100, 85, 70, 55, 40]):
            self.clock.now = step * 0.8
            self._check(monitor, hp)

    def test_skipped_in_town_and_when_dead(self):
        monitor = EmergencyExitMonitor(_make_emergency_config(emergency_exit_at=30), clock=self.clock)
        self._check(monitor, 10, is_town=True)
        self._check(monitor, 0, mode=PlayerMode.DEAD)
        assert len(monitor.history) == 0

    def test_history_window_and_reset(self):
        monitor = EmergencyExitMonitor(_make_emergency_config(hp_history_window=2.0), clock=self.clock)
        for step in range(5):
            self.clock.now = float(step)
            self._check(monitor, 100)
        assert [s.at for s in monitor.history] == [2.0, 3.0, 4.0]
        monitor.reset()
        assert len(monitor.history) == 0


def _make_defense_handle(hp=100, position=Position(0, 0), monsters=(), states=frozenset(), can_teleport=False):
    snapshot = Snapshot(
        player=PlayerUnit(hp=hp, position=position, states=frozenset(states)),
        monsters=list(monsters),
        items=_make_belt(),
        can_teleport=can_teleport,
    )
    session, _, hid, pathfinder = make_session(snapshot)
    return session.for_priority(Priority.HIGH), hid, pathfinder


class TestDefenseManager:
    def setup_method(self):
        self.clock = _Clock()
        self.health = HealthManager()
        self.config = DefenseConfig(
            enabled=True,
            stationary_threshold=1.0,
            damage_threshold=0.5,
            ineffective_attack_threshold=1.0,
            low_hp_threshold=40,
        )
        self.defense = DefenseManager(self.config, self.health, clock=self.clock)

    def _tick(self, at, **kwargs):
        self.clock.now = at
        handle, hid, pathfinder = _make_defense_handle(**kwargs)
        return self.defense.check(handle), hid, pathfinder

    def _stand_and_bleed(self, hps, **kwargs):
        timeline = [0.0, 0.1, 1.2, 1.4, 2.0]
        results = [self._tick(at, hp=hp, **kwargs) for at, hp in zip(timeline, hps)]
        return results[-1]

    def test_disabled_does_nothing(self):
        defense = DefenseManager(DefenseConfig(), clock=self.clock)
        handle, _, _ = _make_defense_handle(hp=10)
        assert defense.check(handle) is None

    def test_stationary_damage_escapes(self):
        action, hid, pathfinder = self._stand_and_bleed([100, 100, 90, 80, 70])
        assert action == "escape"
        assert pathfinder.escapes == 1
        assert hid.of_kind("press") == []

    def test_stationary_damage_at_low_life_drinks_rejuvenation(self):
        action, hid, pathfinder = self._stand_and_bleed([100, 100, 60, 45, 30])
        assert action == "escape"
        assert hid.of_kind("press") == [("press", "4", None)]

    def test_poison_damage_ignored(self):
        action, _, pathfinder = self._stand_and_bleed([100, 100, 90, 80, 70], states={"poison"})
        assert action is None
        assert pathfinder.escapes == 0

    def test_moving_player_is_not_stationary(self):
        timeline = [(0.0, 0), (0.1, 10), (1.2, 20), (1.4, 30), (2.0, 40)]
        actions = [
            self._tick(at, hp=100 - x, position=Position(x, 0))[0]
            for at, x in timeline
        ]
        assert actions == [None] * 5

    def test_teleport_away_when_possible(self):
        monster = Monster(unit_id=9, position=Position(3, 0))
        timeline = [0.0, 0.1, 1.2, 1.4, 2.0]
        for at, hp in zip(timeline, [100, 100, 90, 80, 70]):
            action, _, pathfinder = self._tick(at, hp=hp, monsters=[monster], can_teleport=True)
        assert action == "teleport"
        assert pathfinder.moves == [[Position(-20, 0)]]

    def _chase(self, ticks, hp=100):
        """The player keeps moving so only the attack check can fire."""
        results = []
        for at, x, life in ticks:
            monster = Monster(unit_id=9, position=Position(x + 5, 0), life=life)
            results.append(self._tick(at, hp=hp, position=Position(x, 0), monsters=[monster]))
        return results

    def test_ineffective_attack_repositions(self):
        results = self._chase([(0.0, 0, 80), (0.3, 30, 80), (1.4, 60, 80)])
        assert [r[0] for r in results] == [None, None, "reposition"]
        assert results[-1][2].moves == [[Position(50, 0)]]

    def test_ineffective_attack_at_low_life_escapes(self):
        results = self._chase([(0.0, 0, 80), (0.3, 30, 80), (1.4, 60, 80)], hp=30)
        action, hid, pathfinder = results[-1]
        assert action == "escape"
        assert pathfinder.escapes == 1
        assert hid.of_kind("press") == [("press", "4", None)]

    def test_damaging_the_target_resets_tracking(self):
        results = self._chase([(0.0, 0, 80), (0.3, 30, 80), (0.6, 60, 70), (1.7, 170, 70)])
        assert [r[0] for r in results] == [None] * 4

    def test_reset_forgets_tracking(self):
        self._chase([(0.0, 0, 80), (0.3, 30, 80)])
        self.defense.reset()
        results = self._chase([(1.4, 60, 80)])
        assert results[0][0] is None
