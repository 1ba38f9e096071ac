"""Tests for the Movement Controller and its detectors."""

import asyncio
import time

import pytest

from bot_kernel.errors import MonstersInPathError, NoPathError, PlayerRoundTripError, PlayerStuckError
from bot_kernel.models.config import MovementConfig
from bot_kernel.models.movement import MoveOptions
from bot_kernel.models.priority import Priority
from bot_kernel.models.snapshot import Monster, PlayerUnit, Position, Snapshot
from bot_kernel.movement.controller import MovementController
from bot_kernel.movement.detectors import (
    RoundTripDetector,
    RoundTripVerdict,
    StuckDetector,
    StuckVerdict,
    teleport_stuck_threshold,
)
from tests.fakes import make_session


def _make_config(**overrides) -> MovementConfig:
    values = dict(
        walk_step_min=0.01,
        walk_step_max=0.01,
        movement_aura=None,
    )
    values.update(overrides)
    return MovementConfig(**values)


def _make_snapshot(position=Position(0, 0), **kwargs) -> Snapshot:
    return Snapshot(player=PlayerUnit(position=position), ping_ms=0, **kwargs)


class TestMoveTo:
    def setup_method(self):
        self.session, self.provider, self.hid, self.pathfinder = make_session(_make_snapshot())
        self.handle = self.session.for_priority(Priority.NORMAL)

    def _teleport_on_move(self):
        def on_move(path):
            self.provider.move_player(path[-1])
        self.pathfinder.on_move = on_move

    def test_boundary_distance_counts_as_arrived(self):
        controller = MovementController(_make_config(distance_to_finish=4))
        asyncio.run(controller.move_to(self.handle, Position(4, 0)))
        assert self.pathfinder.moves == []

    def test_walks_until_arrival(self):
        self._teleport_on_move()
        controller = MovementController(_make_config())
        asyncio.run(controller.move_to(self.handle, Position(20, 0)))
        assert self.pathfinder.moves == [[Position(20, 0)]]
        assert self.session.current_game.is_stuck is False

    def test_no_path_raises(self):
        self.pathfinder.found = False
        controller = MovementController(_make_config())
        with pytest.raises(NoPathError):
            asyncio.run(controller.move_to(self.handle, Position(20, 0)))

    def test_monster_in_path_raises(self):
        self.provider.update(monsters=[Monster(unit_id=9, position=Position(3, 0))])
        controller = MovementController(_make_config())
        with pytest.raises(MonstersInPathError):
            asyncio.run(controller.move_to(self.handle, Position(20, 0)))

    def test_ignore_monsters_option(self):
        self.provider.update(monsters=[Monster(unit_id=9, position=Position(3, 0))])
        self._teleport_on_move()
        controller = MovementController(_make_config())
        asyncio.run(controller.move_to(self.handle, Position(20, 0), MoveOptions(ignore_monsters=True)))
        assert len(self.pathfinder.moves) == 1

    def test_stationary_band_completes(self):
        controller = MovementController(_make_config())
        options = MoveOptions(stationary_min_distance=8, stationary_max_distance=12)
        asyncio.run(controller.move_to(self.handle, Position(10, 0), options))
        assert self.pathfinder.moves == []

    def test_area_change_completes_move(self):
        def on_move(path):
            player = self.provider.snapshot.player.model_copy(update={"area_id": 2})
            self.provider.update(player=player)
        self.pathfinder.on_move = on_move
        controller = MovementController(_make_config())
        asyncio.run(controller.move_to(self.handle, Position(20, 0)))
        assert len(self.pathfinder.moves) == 1

    def test_absolute_timeout_while_paused(self):
        self.session.pause()
        controller = MovementController(_make_config(absolute_timeout=0.3))

        started = time.monotonic()
        with pytest.raises(PlayerStuckError):
            asyncio.run(controller.move_to(self.handle, Position(20, 0)))
        elapsed = time.monotonic() - started

        assert elapsed < 1.0
        assert self.pathfinder.moves == []
        assert self.session.current_game.is_stuck is True

    def test_stuck_after_escapes(self):
        controller = MovementController(_make_config(
            walk_stuck_threshold=0.05,
            block_threshold=0.02,
            max_escape_attempts=2,
        ))
        with pytest.raises(PlayerStuckError):
            asyncio.run(controller.move_to(self.handle, Position(20, 0)))
        assert self.pathfinder.escapes == 2

    def test_round_trip_raises(self):
        tiles = [Position(-1, 0), Position(1, 0)]

        def on_move(path):
            current = self.provider.snapshot.player.position
            self.provider.move_player(tiles[1] if current == tiles[0] else tiles[0])
        self.pathfinder.on_move = on_move
        controller = MovementController(_make_config(round_trip_threshold=0.2))

        with pytest.raises(PlayerRoundTripError):
            asyncio.run(controller.move_to(self.handle, Position(0, 20)))

    def test_weaving_towards_destination_is_not_a_round_trip(self):
        destination = Position(0, 200)

        def on_move(path):
            current = self.provider.snapshot.player.position
            if current.y >= 40:
                self.provider.move_player(destination)
                return
            # side to side, but one tile closer every step
            self.provider.move_player(Position(1 if current.x <= 0 else -1, current.y + 1))
        self.pathfinder.on_move = on_move
        controller = MovementController(_make_config(round_trip_threshold=0.1, round_trip_radius=50))

        started = time.monotonic()
        asyncio.run(controller.move_to(self.handle, destination))
        assert len(self.pathfinder.moves) == 41
        assert time.monotonic() - started > controller.config.round_trip_threshold

    def test_movement_skill_selected(self):
        self._teleport_on_move()
        self.provider.update(key_bindings=self.provider.snapshot.key_bindings.model_copy(
            update={"skills": {"vigor": "f5"}}
        ))
        controller = MovementController(_make_config(movement_aura="vigor"))
        asyncio.run(controller.move_to(self.handle, Position(20, 0)))
        assert ("press", "f5", None) in self.hid.events


class TestStuckDetector:
    def _make_detector(self, **overrides) -> StuckDetector:
        values = dict(
            block_threshold=0.2,
            stuck_threshold=1.5,
            max_stuck_duration=15.0,
            max_escape_attempts=3,
            now=0.0,
        )
        values.update(overrides)
        return StuckDetector(**values)

    def test_moving_avatar(self):
        detector = self._make_detector()
        assert detector.observe(Position(0, 0), False, 0.1) == StuckVerdict.MOVED
        assert detector.observe(Position(1, 0), False, 0.2) == StuckVerdict.MOVED

    def test_still_then_blocked_then_escape(self):
        detector = self._make_detector()
        detector.observe(Position(0, 0), False, 0.0)
        assert detector.observe(Position(0, 0), False, 0.1) == StuckVerdict.STILL
        assert detector.observe(Position(0, 0), False, 0.5) == StuckVerdict.BLOCKED
        assert detector.observe(Position(0, 0), False, 1.6) == StuckVerdict.ESCAPE
        assert detector.escape_attempts == 1

    def test_escapes_exhausted(self):
        detector = self._make_detector(max_escape_attempts=1)
        detector.observe(Position(0, 0), False, 0.0)
        assert detector.observe(Position(0, 0), False, 1.6) == StuckVerdict.ESCAPE
        assert detector.observe(Position(0, 0), False, 3.2) == StuckVerdict.STUCK

    def test_stunned_counts_as_moving(self):
        detector = self._make_detector()
        detector.observe(Position(0, 0), False, 0.0)
        assert detector.observe(Position(0, 0), True, 2.0) == StuckVerdict.MOVED

    def test_total_stuck_is_cumulative(self):
        detector = self._make_detector(max_stuck_duration=1.0, stuck_threshold=10.0)
        detector.observe(Position(0, 0), False, 0.0)
        detector.observe(Position(0, 0), False, 0.6)
        detector.observe(Position(1, 0), False, 0.7)
        assert detector.observe(Position(1, 0), False, 1.3) == StuckVerdict.STUCK

    def test_teleport_threshold_clamped(self):
        assert teleport_stuck_threshold(0.1, 0, 1.0, 3.0) == 1.0
        assert teleport_stuck_threshold(2.0, 0, 1.0, 3.0) == 3.0
        assert teleport_stuck_threshold(0.4, 100, 1.0, 3.0) == pytest.approx(1.6)


class TestRoundTripDetector:
    def test_strict_progress_never_trips(self):
        detector = RoundTripDetector(threshold=5.0, radius=8, now=0.0)
        verdicts = [
            detector.observe(Position(0, 0), 100 - step, float(step))
            for step in range(30)
        ]
        assert set(verdicts) == {RoundTripVerdict.CLEAR}

    def test_oscillation_trips(self):
        detector = RoundTripDetector(threshold=5.0, radius=8, now=0.0)
        detector.observe(Position(0, 0), 20, 0.0)
        assert detector.observe(Position(1, 0), 20, 1.0) == RoundTripVerdict.CLEAR
        assert detector.observe(Position(0, 0), 20, 3.0) == RoundTripVerdict.BLOCKED
        assert detector.observe(Position(1, 0), 20, 5.5) == RoundTripVerdict.ROUND_TRIP

    def test_leaving_radius_starts_new_window(self):
        detector = RoundTripDetector(threshold=5.0, radius=8, now=0.0)
        detector.observe(Position(0, 0), 20, 0.0)
        detector.observe(Position(1, 0), 20, 4.0)
        assert detector.observe(Position(20, 0), 20, 6.0) == RoundTripVerdict.CLEAR
        assert detector.window_started_at == 6.0
