"""
Session Orchestrator — runs one game instance with four cooperating loops.

  Background  refreshes the snapshot every tick
  Health      emergency exit, potions, chicken, idle and game-length watchdogs
  High        defense checks; interrupts the run for pickup, buffs, belt, area fixes
  Low         executes the configured runs in order

Behavioral Contract:
- All four loops share one cancellation scope. The first loop to finish,
  normally or with an error, stops the session. The others are cancelled
  and awaited, and the first error is re-raised.
- Critical errors (death, chicken, emergency exit) always end the
  session. Any other error raised by a run or a High tick is logged and
  the loop carries on.
- A stopped session unwinds every loop quietly.
- Every run() starts a fresh game: priority back to Normal, blacklist,
  stuck flags and potion cooldowns cleared, then waits out any loading
  screen before the loops start.
- Held keys are released whenever a loop exits.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Callable, List, Optional, Protocol, Sequence

from croniter import croniter

from bot_kernel.actions.belt import potions_to_move, refill_belt_from_inventory
from bot_kernel.actions.buff import buff_if_required, is_rebuff_required
from bot_kernel.actions.menus import close_chat
from bot_kernel.actions.pickup import item_pickup, items_to_pickup
from bot_kernel.errors import (
    ChickenError,
    CriticalError,
    DiedError,
    EmergencyExitError,
    IdleTimeoutError,
    MaxGameLengthError,
    MercChickenError,
    SessionStoppedError,
)
from bot_kernel.events.bus import EventName
from bot_kernel.health.defense import DefenseManager
from bot_kernel.health.emergency import EmergencyExitMonitor
from bot_kernel.health.manager import HealthManager
from bot_kernel.models.config import SessionConfig
from bot_kernel.models.history import FinishReason
from bot_kernel.models.priority import Priority
from bot_kernel.models.snapshot import PotionKind, Position
from bot_kernel.session.context import Session, SessionHandle

logger = logging.getLogger(__name__)

ACTIVITY_LOG_INTERVAL = 60.0


class Run(Protocol):
    """One scripted objective within a game."""

    name: str
    skip_town_routines: bool

    async def run(self, handle: SessionHandle) -> None: ...


class RunHooks:
    """
    Game-specific routines the orchestrator calls around runs.
    The defaults do nothing; subclass to plug in town logic.
    """

    async def pre_run(self, handle: SessionHandle, first_run: bool) -> None:
        pass

    async def post_run(self, handle: SessionHandle, is_last_run: bool) -> None:
        pass

    async def correct_area(self, handle: SessionHandle, expected_area: int) -> None:
        pass

    async def return_to_town(self, handle: SessionHandle, reason: str) -> None:
        pass


def is_critical_error(err: BaseException) -> bool:
    return isinstance(err, CriticalError)


def finish_reason_for(err: Optional[BaseException]) -> FinishReason:
    if err is None:
        return FinishReason.OK
    if isinstance(err, DiedError):
        return FinishReason.DIED
    if isinstance(err, MercChickenError):
        return FinishReason.MERC_CHICKEN
    if isinstance(err, ChickenError):
        return FinishReason.CHICKEN
    if isinstance(err, EmergencyExitError):
        return FinishReason.EMERGENCY_EXIT
    return FinishReason.ERROR


def within_activity_window(schedule: Optional[str], now: datetime) -> bool:
    """True when `now` falls on a minute matched by the cron `schedule`."""
    if not schedule:
        return True
    return croniter.match(schedule, now)


def town_return_reason(handle: SessionHandle) -> Optional[str]:
    snapshot = handle.snapshot
    character = handle.config.character
    if snapshot.is_town:
        return None
    if character.back_to_town_no_hp_potions and not snapshot.belt_potions(PotionKind.HEALING):
        return "no healing potions left"
    if character.back_to_town_no_mp_potions and not snapshot.belt_potions(PotionKind.MANA):
        return "no mana potions left"
    if character.back_to_town_merc_died and snapshot.merc_hp_percent == 0:
        return "mercenary died"
    return None


class SessionOrchestrator:
    """Drives one session through its runs until done, stopped or dead."""

    def __init__(
        self,
        session: Session,
        health: HealthManager,
        runs: Sequence[Run],
        hooks: Optional[RunHooks] = None,
        config: Optional[SessionConfig] = None,
        movement=None,
        clock: Callable[[], datetime] = datetime.now,
        emergency: Optional[EmergencyExitMonitor] = None,
        defense: Optional[DefenseManager] = None,
    ):
        self.session = session
        self.health = health
        self.runs: List[Run] = list(runs)
        self.hooks = hooks or RunHooks()
        self.config = config or session.config.session
        self.movement = movement
        self.clock = clock
        self.emergency = emergency or EmergencyExitMonitor(session.config.health)
        self.defense = defense or DefenseManager(session.config.defense, health)

    async def run(self, first_run: bool = True) -> None:
        """Play through every run. Re-raises the error that ended the game."""
        session = self.session
        session.attach_loop(asyncio.get_running_loop())
        logger.info("[%s] starting session, runs=%s", session.name, [r.name for r in self.runs])
        self._start_game()
        if await session.wait_for_game_to_load():
            logger.debug("[%s] game loaded", session.name)

        tasks = [
            asyncio.create_task(self._background_loop(), name="background"),
            asyncio.create_task(self._health_loop(), name="health"),
            asyncio.create_task(self._high_loop(), name="high"),
            asyncio.create_task(self._low_loop(first_run), name="low"),
        ]
        first_error: Optional[BaseException] = None
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in tasks:
                if task in done and not task.cancelled() and task.exception() is not None:
                    first_error = task.exception()
                    logger.debug("[%s] loop '%s' ended the session: %s",
                                 session.name, task.get_name(), first_error)
                    break
        finally:
            session.stop()
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            released = session.release_held_keys()
            if released:
                logger.debug("[%s] released held keys: %s", session.name, released)

        reason = finish_reason_for(first_error)
        session.events.emit(EventName.GAME_FINISHED, session=session.name, reason=reason)
        if first_error is not None:
            logger.info("[%s] session ended: reason=%s error=%s", session.name, reason.value, first_error)
            raise first_error
        logger.info("[%s] session ended: reason=%s", session.name, reason.value)

    def _start_game(self) -> None:
        """Fresh game state: priority back to Normal, ledgers and cooldowns cleared."""
        session = self.session
        session.new_game()
        session.cleanup()
        self.health.reset()
        self.emergency.reset()
        self.defense.reset()

    # --- Background ---

    async def _background_loop(self) -> None:
        session = self.session
        try:
            while not session.is_stopped:
                if session.arbitrator.active != Priority.PAUSE:
                    await session.refresh(force=True)
                await asyncio.sleep(self.config.tick_interval)
        finally:
            session.release_held_keys()

    # --- Health ---

    async def _health_loop(self) -> None:
        session = self.session
        cfg = self.config
        handle = session.for_priority(Priority.HIGH)
        anchor: Optional[Position] = None
        anchor_at = time.monotonic()
        try:
            while not session.is_stopped:
                await asyncio.sleep(cfg.tick_interval)
                snapshot = session.snapshot
                now = time.monotonic()
                if session.arbitrator.active == Priority.PAUSE or snapshot.menus.loading_screen:
                    anchor, anchor_at = None, now
                    continue

                self.emergency.check(handle)
                self.health.handle_health_and_mana(handle)

                position = snapshot.player.position
                if not position.is_zero():
                    if anchor is None or position.distance_to(anchor) > cfg.min_movement:
                        anchor, anchor_at = position, now
                    elif now - anchor_at > cfg.idle_timeout:
                        raise IdleTimeoutError(now - anchor_at)

                duration = now - session.game_started_at
                if duration > cfg.max_game_length:
                    raise MaxGameLengthError(duration)
        finally:
            session.release_held_keys()

    # --- High ---

    def _pending_work(self, handle: SessionHandle) -> List[str]:
        snapshot = handle.snapshot
        game = handle.current_game
        work = []
        correction = game.area_correction
        if (
            correction.enabled
            and correction.expected_area is not None
            and snapshot.player.area_id != correction.expected_area
            and not snapshot.is_town
        ):
            work.append("area_correction")
        if (
            self.movement is not None
            and game.pickup_items
            and not game.is_picking_items
            and not snapshot.is_town
            and items_to_pickup(handle, self.config.pickup_radius)
        ):
            work.append("pickup")
        if not game.is_picking_items and is_rebuff_required(handle):
            work.append("buff")
        if not snapshot.is_town and potions_to_move(handle):
            work.append("belt")
        if town_return_reason(handle) is not None:
            work.append("town")
        return work

    async def _high_tick(self, handle: SessionHandle) -> None:
        session = self.session
        snapshot = session.snapshot
        if snapshot.menus.loading_screen:
            return

        await close_chat(handle)
        session.reset_stuck_item_pickup(self.config.stuck_pickup_timeout)
        action = self.defense.check(handle)
        if action is not None:
            handle.set_last_action("defense:" + action)

        work = self._pending_work(handle)
        if not work:
            return

        session.switch_priority(Priority.HIGH)
        handle.set_last_action("high_priority:" + ",".join(work))

        if "area_correction" in work:
            expected = handle.current_game.area_correction.expected_area
            logger.info("[%s] wrong area, correcting: current=%d expected=%d",
                        session.name, snapshot.player.area_id, expected)
            await self.hooks.correct_area(handle, expected)
        if "pickup" in work:
            await item_pickup(handle, self.movement, self.config.pickup_radius)
        if "buff" in work:
            await buff_if_required(handle)
        if "belt" in work:
            await refill_belt_from_inventory(handle)
        if "town" in work:
            reason = town_return_reason(handle)
            if reason is not None:
                logger.info("[%s] returning to town: %s", session.name, reason)
                await self.hooks.return_to_town(handle, reason)

    async def _high_loop(self) -> None:
        session = self.session
        handle = session.for_priority(Priority.HIGH)
        try:
            while not session.is_stopped:
                await asyncio.sleep(self.config.tick_interval)
                if session.arbitrator.active in (Priority.PAUSE, Priority.STOP):
                    continue
                try:
                    await self._high_tick(handle)
                except SessionStoppedError:
                    raise
                except Exception as exc:
                    if is_critical_error(exc):
                        raise
                    logger.error("[%s] high priority tick failed: %s", session.name, exc)
                finally:
                    if session.arbitrator.active == Priority.HIGH:
                        session.switch_priority(Priority.NORMAL)
        except SessionStoppedError:
            logger.debug("[%s] high priority loop stopped", session.name)
        finally:
            session.release_held_keys()

    # --- Low ---

    async def _wait_for_activity_window(self) -> None:
        schedule = self.config.activity_schedule
        last_log = 0.0
        while not within_activity_window(schedule, self.clock()):
            if self.session.is_stopped:
                raise SessionStoppedError()
            if time.monotonic() - last_log > ACTIVITY_LOG_INTERVAL:
                logger.info("[%s] outside activity window '%s', waiting", self.session.name, schedule)
                last_log = time.monotonic()
            await asyncio.sleep(self.config.tick_interval)

    async def _low_loop(self, first_run: bool) -> None:
        session = self.session
        handle = session.for_priority(Priority.NORMAL)
        try:
            for index, run in enumerate(self.runs):
                await self._wait_for_activity_window()
                await handle.pause_if_not_priority()
                await self._execute_run(handle, run, first_run and index == 0,
                                        index == len(self.runs) - 1)
        except SessionStoppedError:
            logger.debug("[%s] low priority loop stopped", session.name)
        finally:
            session.release_held_keys()

    async def _execute_run(
        self, handle: SessionHandle, run: Run, first_run: bool, is_last_run: bool
    ) -> None:
        session = self.session
        handle.set_last_action(run.name)
        session.events.emit(EventName.RUN_STARTED, session=session.name, run_name=run.name)
        logger.info("[%s] starting run: %s", session.name, run.name)
        started_at = time.monotonic()

        try:
            if not run.skip_town_routines:
                await self.hooks.pre_run(handle, first_run)
            await run.run(handle)
        except SessionStoppedError:
            raise
        except Exception as exc:
            duration = time.monotonic() - started_at
            session.events.emit(
                EventName.RUN_FINISHED,
                session=session.name,
                run_name=run.name,
                reason=finish_reason_for(exc),
                duration=duration,
                error=str(exc),
            )
            if is_critical_error(exc):
                raise
            logger.error("[%s] run %s failed after %.1fs: %s", session.name, run.name, duration, exc)
            return

        duration = time.monotonic() - started_at
        session.events.emit(
            EventName.RUN_FINISHED,
            session=session.name,
            run_name=run.name,
            reason=FinishReason.OK,
            duration=duration,
        )
        logger.info("[%s] run %s finished in %.1fs", session.name, run.name, duration)
        if not run.skip_town_routines:
            await self.hooks.post_run(handle, is_last_run)
