"""Tests for the Attack Controller."""

import asyncio
import time

import pytest

from bot_kernel.attack.controller import AttackController
from bot_kernel.errors import NoPathError, PlayerStuckError
from bot_kernel.interfaces import MouseButton
from bot_kernel.models.attack import AttackOptions, AttackOutcome
from bot_kernel.models.config import AttackConfig, EngineConfig, PacketConfig
from bot_kernel.models.priority import Priority
from bot_kernel.models.snapshot import Monster, PlayerUnit, Position, Snapshot
from tests.fakes import FakeMovement, FakePacketSender, make_session


def _make_config(**overrides) -> AttackConfig:
    values = dict(
        poll_interval=0.005,
        health_sample_interval=0.02,
        failed_attempt_timeout=0.2,
        reposition_cooldown=0.2,
        refresh_interval=0.0,
    )
    values.update(overrides)
    return AttackConfig(**values)


def _make_snapshot(*monsters: Monster) -> Snapshot:
    return Snapshot(
        player=PlayerUnit(position=Position(0, 0)),
        monsters=list(monsters),
        cast_duration=0.05,
        ping_ms=0,
    )


class TestPrimaryAttack:
    def setup_method(self):
        self.monster = Monster(unit_id=42, position=Position(5, 0))
        self.session, self.provider, self.hid, self.pathfinder = make_session(
            _make_snapshot(self.monster)
        )
        self.handle = self.session.for_priority(Priority.NORMAL)
        self.movement = FakeMovement()
        self.controller = AttackController(self.movement, _make_config())

    def test_completes_repetitions(self):
        outcome = asyncio.run(
            self.controller.primary_attack(self.handle, 42, 3, AttackOptions.ranged(0, 30))
        )
        assert outcome == AttackOutcome.COMPLETED
        clicks = self.hid.of_kind("click")
        assert len(clicks) == 3
        assert clicks[0] == ("click", MouseButton.LEFT, 50, 0, None)

    def test_unkillable_target_repositions_once_then_gives_up(self):
        config = self.controller.config
        started = time.monotonic()
        outcome = asyncio.run(
            self.controller.primary_attack(self.handle, 42, 10_000, AttackOptions.ranged(0, 30))
        )
        elapsed = time.monotonic() - started
        assert outcome == AttackOutcome.UNREACHABLE
        # stall timer, then one reposition, then its cooldown
        give_up_after = config.failed_attempt_timeout + config.reposition_cooldown
        assert give_up_after <= elapsed < give_up_after + 1.0
        assert self.movement.calls == [Position(9, 0)]
        assert self.controller.state_for(42) is None

    def test_damage_resets_failure_timer(self):
        hits = {"count": 0}

        def script():
            hits["count"] += 1
            life = max(1, 100 - hits["count"])
            return _make_snapshot(self.monster.model_copy(update={"life": life}))

        self.provider.script = script
        outcome = asyncio.run(
            self.controller.primary_attack(self.handle, 42, 8, AttackOptions.ranged(0, 30))
        )
        assert outcome == AttackOutcome.COMPLETED
        assert self.movement.calls == []

    def test_dead_target_is_gone(self):
        self.provider.update(monsters=[self.monster.model_copy(update={"life": 0})])
        outcome = asyncio.run(
            self.controller.primary_attack(self.handle, 42, 5, AttackOptions.ranged(0, 30))
        )
        assert outcome == AttackOutcome.TARGET_GONE
        assert self.hid.of_kind("click") == []

    def test_target_leaving_range_stops_ranged_attack(self):
        def script():
            if self.hid.of_kind("click"):
                return _make_snapshot(self.monster.model_copy(update={"position": Position(50, 0)}))
            return _make_snapshot(self.monster)

        self.provider.script = script
        outcome = asyncio.run(
            self.controller.primary_attack(self.handle, 42, 5, AttackOptions.ranged(0, 30))
        )
        assert outcome == AttackOutcome.OUT_OF_RANGE

    def test_no_path_to_target_raises(self):
        self.pathfinder.los = False
        self.pathfinder.found = False
        with pytest.raises(NoPathError):
            asyncio.run(
                self.controller.primary_attack(self.handle, 42, 5, AttackOptions.ranged(0, 30))
            )

    def test_melee_approach_failure_is_tolerated(self):
        self.movement.error = PlayerStuckError()
        outcome = asyncio.run(
            self.controller.primary_attack(self.handle, 42, 2, AttackOptions.melee(1, 2))
        )
        assert outcome == AttackOutcome.COMPLETED
        assert len(self.movement.calls) == 2

    def test_stand_still_key_released(self):
        outcome = asyncio.run(
            self.controller.primary_attack(self.handle, 42, 2, AttackOptions.stationary(0, 30))
        )
        assert outcome == AttackOutcome.COMPLETED
        assert self.hid.of_kind("down") == [("down", "shift"), ("down", "shift")]
        assert self.hid.events[-1] == ("up", "shift")
        assert self.session.release_held_keys() == []


class TestSecondaryAttack:
    def _setup(self, *monsters, packets=False):
        config = EngineConfig(packets=PacketConfig(use_for_entity_skills=packets))
        sender = FakePacketSender() if packets else None
        session, provider, hid, pathfinder = make_session(
            _make_snapshot(*monsters), config=config, packet_sender=sender
        )
        return session, provider, hid, sender

    def test_packet_cast_preferred(self):
        session, _, hid, sender = self._setup(Monster(unit_id=7, position=Position(4, 0)), packets=True)
        controller = AttackController(FakeMovement(), _make_config())
        handle = session.for_priority(Priority.NORMAL)
        asyncio.run(controller.secondary_attack(handle, "blizzard", 7, 2, AttackOptions.ranged(0, 30)))
        assert sender.sent == [("cast", MouseButton.RIGHT, 7), ("cast", MouseButton.RIGHT, 7)]
        assert hid.of_kind("click") == []

    def test_burst_with_invalid_initial_target(self):
        session, _, _, _ = self._setup(Monster(unit_id=7, position=Position(4, 0)))
        controller = AttackController(FakeMovement(), _make_config())
        handle = session.for_priority(Priority.NORMAL)
        outcome = asyncio.run(controller.secondary_attack(
            handle, "nova", 99, 1, AttackOptions.ranged(0, 10, burst=True)
        ))
        assert outcome == AttackOutcome.TARGET_GONE

    def test_burst_switches_targets_until_none_left(self):
        first = Monster(unit_id=1, position=Position(2, 0))
        second = Monster(unit_id=2, position=Position(6, 0))
        session, provider, hid, _ = self._setup(first, second)

        def script():
            clicks = len(hid.of_kind("click"))
            if clicks == 0:
                return _make_snapshot(first, second)
            if clicks == 1:
                return _make_snapshot(second)
            return _make_snapshot()

        provider.script = script
        controller = AttackController(FakeMovement(), _make_config())
        handle = session.for_priority(Priority.NORMAL)
        outcome = asyncio.run(controller.secondary_attack(
            handle, "nova", 1, 1, AttackOptions.ranged(0, 10, burst=True)
        ))
        assert outcome == AttackOutcome.COMPLETED
        assert [c[2] for c in hid.of_kind("click")] == [20, 60]

    def test_burst_timeout(self):
        session, _, _, _ = self._setup(Monster(unit_id=1, position=Position(2, 0)))
        controller = AttackController(FakeMovement(), _make_config(failed_attempt_timeout=10))
        handle = session.for_priority(Priority.NORMAL)
        outcome = asyncio.run(controller.secondary_attack(
            handle, "nova", 1, 1, AttackOptions.ranged(0, 10, burst=True, timeout=0.1)
        ))
        assert outcome == AttackOutcome.TIMEOUT


class TestStateTable:
    def test_stale_states_evicted_over_cap(self):
        controller = AttackController(FakeMovement(), _make_config(state_table_cap=2, state_ttl=0.0,
                                                                   health_sample_interval=0.0))
        for unit_id in range(3):
            controller._track_damage(Monster(unit_id=unit_id, position=Position(1, 1)))
        assert controller.tracked_targets == 3
        controller._track_damage(Monster(unit_id=0, position=Position(1, 1)))
        assert controller.tracked_targets <= 2
