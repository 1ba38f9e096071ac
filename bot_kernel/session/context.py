"""
Session — shared state of one running game instance.

Behavioral Contract:
- The snapshot is replaced wholesale on refresh; nobody mutates it.
- Refresh is rate limited with read-check, lock, re-check, so concurrent
  requests inside the interval cause a single provider fetch.
- Every loop talks to the session through a SessionHandle bound to its
  priority tier; there is no ambient "current session".
- Keys pressed down through a handle are tracked so loops can release
  them on exit.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Set

from bot_kernel.events.bus import EventBus, EventName
from bot_kernel.interfaces import InputDevice, PacketSender, PathFinder, SnapshotProvider
from bot_kernel.models.config import EngineConfig
from bot_kernel.models.priority import Priority
from bot_kernel.models.session import CurrentGame, DebugMarker
from bot_kernel.models.snapshot import ItemLocation, Snapshot
from bot_kernel.priority.arbitrator import PriorityArbitrator

logger = logging.getLogger(__name__)

PICKED_UP_LEDGER_CAP = 200
LOADING_SCREEN_GRACE = 0.005
LOADING_POLL_INTERVAL = 0.1
LOADING_SETTLE = 0.3


class Session:
    """One per running game instance."""

    def __init__(
        self,
        name: str,
        config: EngineConfig,
        provider: SnapshotProvider,
        hid: InputDevice,
        pathfinder: PathFinder,
        packet_sender: Optional[PacketSender] = None,
        events: Optional[EventBus] = None,
    ):
        self.name = name
        self.config = config
        self.provider = provider
        self.hid = hid
        self.pathfinder = pathfinder
        self.packet_sender = packet_sender
        self.events = events or EventBus()

        self.arbitrator = PriorityArbitrator()
        self.arbitrator.on_change(self._on_priority_changed)
        self.current_game = CurrentGame()
        self.debug: Dict[Priority, DebugMarker] = {}
        self.game_started_at = time.monotonic()

        self._snapshot = Snapshot()
        self._last_refresh: Optional[float] = None
        self._refresh_lock = asyncio.Lock()
        self._held_keys: Set[str] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._resume_tier = Priority.NORMAL

    # --- Snapshot ---

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    def _refresh_due(self) -> bool:
        if self._last_refresh is None:
            return True
        return time.monotonic() - self._last_refresh >= self.config.session.refresh_interval

    async def refresh(self, force: bool = False) -> Snapshot:
        """Pull a fresh snapshot unless one is still within the refresh interval."""
        if not force and not self._refresh_due():
            return self._snapshot

        async with self._refresh_lock:
            # another caller may have refreshed while we waited for the lock
            if not force and not self._refresh_due():
                return self._snapshot
            snapshot = await asyncio.to_thread(self.provider.get_data)
            self._snapshot = snapshot
            self._last_refresh = time.monotonic()
        return self._snapshot

    async def refresh_inventory(self) -> Snapshot:
        """Replace the carried items only. No-op when the provider can't."""
        get_inventory = getattr(self.provider, "get_inventory", None)
        if get_inventory is None:
            return await self.refresh(force=True)

        async with self._refresh_lock:
            carried = await asyncio.to_thread(get_inventory)
            ground = self._snapshot.ground_items()
            self._snapshot = self._snapshot.model_copy(
                update={"items": ground + [i for i in carried if i.location != ItemLocation.GROUND]}
            )
        return self._snapshot

    async def wait_for_game_to_load(self) -> bool:
        """Block while the loading screen is up. True if a load was waited out."""
        snapshot = await self.refresh(force=True)
        if not snapshot.menus.loading_screen:
            return False
        logger.debug("[%s] waiting for game to load", self.name)
        while self._snapshot.menus.loading_screen and not self.is_stopped:
            await asyncio.sleep(LOADING_POLL_INTERVAL)
            await self.refresh(force=True)
        await asyncio.sleep(LOADING_SETTLE)
        return True

    # --- Priority ---

    def for_priority(self, tier: Priority) -> "SessionHandle":
        return SessionHandle(self, tier)

    def attach_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Remember the event loop the session's tasks run on."""
        if loop is not self._loop:
            # asyncio primitives bind to the loop that first waits on them
            self._refresh_lock = asyncio.Lock()
        self._loop = loop

    def switch_priority(self, tier: Priority) -> None:
        self.arbitrator.switch_priority(tier)

    def request_priority(self, tier: Priority) -> None:
        """Thread-safe switch, for callers outside the session's event loop."""
        loop = self._loop
        if loop is not None and loop.is_running():
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is not loop:
                loop.call_soon_threadsafe(self.arbitrator.switch_priority, tier)
                return
        self.arbitrator.switch_priority(tier)

    def pause(self) -> None:
        active = self.arbitrator.active
        if active not in (Priority.PAUSE, Priority.STOP):
            self._resume_tier = active
        logger.info("[%s] pausing session", self.name)
        self.request_priority(Priority.PAUSE)

    def resume(self) -> None:
        """Back to the tier that was active when the session was paused."""
        logger.info("[%s] resuming session, tier=%s", self.name, self._resume_tier.name)
        self.request_priority(self._resume_tier)

    def stop(self) -> None:
        logger.info("[%s] stopping session", self.name)
        self.request_priority(Priority.STOP)

    @property
    def is_stopped(self) -> bool:
        return self.arbitrator.active == Priority.STOP

    def _on_priority_changed(self, previous: Priority, current: Priority) -> None:
        self.events.emit(
            EventName.PRIORITY_CHANGED,
            session=self.name,
            previous=previous,
            current=current,
        )

    # --- Game bookkeeping ---

    def new_game(self) -> None:
        """Fresh per-game record, priority back to Normal."""
        self.current_game = CurrentGame()
        self.debug.clear()
        self.game_started_at = time.monotonic()
        self.arbitrator.reset(Priority.NORMAL)

    def cleanup(self) -> None:
        """Between games: forget blacklisted items and stuck flags."""
        logger.debug("[%s] resetting blacklisted items", self.name)
        game = self.current_game
        game.blacklisted_items = []
        if len(game.picked_up_items) > PICKED_UP_LEDGER_CAP:
            logger.debug(
                "[%s] resetting picked up items ledger, size=%d",
                self.name, len(game.picked_up_items),
            )
            game.picked_up_items = {}
        game.is_stuck = False
        game.stuck_since = None
        game.weapon_swap_failures = 0
        game.last_swap_failure_at = None

    def set_picking_items(self, value: bool) -> None:
        self.current_game.is_picking_items = value
        self.current_game.picking_items_since = time.monotonic() if value else None

    def reset_stuck_item_pickup(self, timeout: float) -> bool:
        """Clear an `is_picking_items` flag held longer than `timeout`."""
        game = self.current_game
        if not game.is_picking_items:
            return False
        if game.picking_items_since is None:
            logger.warning("[%s] picking items flag set without timestamp, resetting", self.name)
            self.set_picking_items(False)
            return True
        held = time.monotonic() - game.picking_items_since
        if held > timeout:
            logger.warning(
                "[%s] picking items flag stuck for %.1fs (timeout=%.1fs), resetting",
                self.name, held, timeout,
            )
            self.set_picking_items(False)
            return True
        return False

    # --- Held input ---

    def hold_key(self, key: str) -> None:
        self.hid.key_down(key)
        self._held_keys.add(key)

    def release_key(self, key: str) -> None:
        self.hid.key_up(key)
        self._held_keys.discard(key)

    def release_held_keys(self) -> List[str]:
        released = sorted(self._held_keys)
        for key in released:
            self.hid.key_up(key)
        self._held_keys.clear()
        return released


class SessionHandle:
    """
    A session seen from one priority tier. Every core operation takes one
    explicitly instead of looking up an ambient context.
    """

    def __init__(self, session: Session, tier: Priority):
        self.session = session
        self.tier = tier

    @property
    def name(self) -> str:
        return self.session.name

    @property
    def snapshot(self) -> Snapshot:
        return self.session.snapshot

    @property
    def config(self) -> EngineConfig:
        return self.session.config

    @property
    def hid(self) -> InputDevice:
        return self.session.hid

    @property
    def pathfinder(self) -> PathFinder:
        return self.session.pathfinder

    @property
    def packet_sender(self) -> Optional[PacketSender]:
        return self.session.packet_sender

    @property
    def events(self) -> EventBus:
        return self.session.events

    @property
    def current_game(self) -> CurrentGame:
        return self.session.current_game

    async def refresh(self, force: bool = False) -> Snapshot:
        return await self.session.refresh(force=force)

    async def refresh_inventory(self) -> Snapshot:
        return await self.session.refresh_inventory()

    def is_active(self) -> bool:
        return self.session.arbitrator.is_active(self.tier)

    async def _loading_grace(self) -> None:
        if self.session.snapshot.menus.loading_screen:
            await asyncio.sleep(LOADING_SCREEN_GRACE)

    async def pause_if_not_priority(self) -> None:
        await self._loading_grace()
        await self.session.arbitrator.pause_if_not_priority(self.tier)

    async def pause_if_not_priority_with_timeout(self, timeout: float) -> bool:
        await self._loading_grace()
        return await self.session.arbitrator.pause_if_not_priority_with_timeout(
            self.tier, timeout
        )

    def _marker(self) -> DebugMarker:
        return self.session.debug.setdefault(self.tier, DebugMarker())

    def set_last_action(self, action: str) -> None:
        marker = self._marker()
        marker.last_action = action
        marker.last_step = ""

    def set_last_step(self, step: str) -> None:
        self._marker().last_step = step

    def press_key(self, key: str, modifier: Optional[str] = None) -> None:
        if modifier is None:
            self.session.hid.press_key(key)
        else:
            self.session.hid.press_key(key, modifier)

    def key_down(self, key: str) -> None:
        self.session.hold_key(key)

    def key_up(self, key: str) -> None:
        self.session.release_key(key)
