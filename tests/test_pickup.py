"""Tests for item pickup and blacklisting."""

import asyncio
import logging
import time

import pytest

from bot_kernel.actions import pickup
from bot_kernel.actions.pickup import MAX_TOTAL_ATTEMPTS, item_pickup, items_to_pickup, pickup_item
from bot_kernel.errors import ItemTooFarError, MonsterAroundItemError, NoLineOfSightToItemError
from bot_kernel.events.bus import EventName
from bot_kernel.models.config import EngineConfig, PacketConfig
from bot_kernel.models.priority import Priority
from bot_kernel.models.snapshot import Item, Monster, Position, PotionKind, Snapshot
from tests.fakes import FakeMovement, FakePacketSender, make_session


def _make_item(unit_id: int = 11, position: Position = Position(2, 0), **kwargs) -> Item:
    return Item(unit_id=unit_id, name="ring", position=position, **kwargs)


class TestPickupItem:
    def setup_method(self):
        self.item = _make_item()
        self.session, self.provider, self.hid, self.pathfinder = make_session(
            Snapshot(items=[self.item], ping_ms=0)
        )
        self.handle = self.session.for_priority(Priority.HIGH)

    def test_monster_next_to_item(self):
        self.provider.update(monsters=[Monster(unit_id=5, position=Position(3, 0))])
        with pytest.raises(MonsterAroundItemError):
            asyncio.run(pickup_item(self.handle, self.item))

    def test_no_line_of_sight(self):
        self.pathfinder.los = False
        with pytest.raises(NoLineOfSightToItemError):
            asyncio.run(pickup_item(self.handle, self.item))

    def test_too_far(self):
        far = _make_item(position=Position(20, 0))
        self.provider.update(items=[far])
        with pytest.raises(ItemTooFarError):
            asyncio.run(pickup_item(self.handle, far))

    def test_item_already_gone_is_success(self):
        self.provider.update(items=[])
        asyncio.run(pickup_item(self.handle, self.item))
        assert self.hid.events == []

    def test_mouse_pickup_verified(self):
        def script():
            items = [] if self.hid.of_kind("click") else [self.item]
            return Snapshot(items=items, ping_ms=0)

        self.provider.script = script
        asyncio.run(pickup_item(self.handle, self.item))
        assert len(self.hid.of_kind("click")) == 1

    def test_mouse_pickup_continues_when_priority_is_held_elsewhere(self, caplog):
        self.provider.script = lambda: Snapshot(
            items=[] if self.hid.of_kind("click") else [self.item], ping_ms=0
        )
        self.session.switch_priority(Priority.HIGH)
        normal = self.session.for_priority(Priority.NORMAL)

        started = time.monotonic()
        with caplog.at_level(logging.WARNING, logger="bot_kernel.actions.pickup"):
            asyncio.run(pickup_item(normal, self.item))

        assert len(self.hid.of_kind("click")) == 1
        assert time.monotonic() - started < pickup.CLICK_PRIORITY_WAIT + 1.0
        assert "Priority not acquired" in caplog.text

    def test_packet_pickup_preferred(self):
        sender = FakePacketSender()
        session, provider, hid, _ = make_session(
            Snapshot(items=[self.item], ping_ms=0),
            config=EngineConfig(packets=PacketConfig(use_for_item_pickup=True)),
            packet_sender=sender,
        )

        def script():
            return Snapshot(items=[] if sender.sent else [self.item], ping_ms=0)

        provider.script = script
        asyncio.run(pickup_item(session.for_priority(Priority.HIGH), self.item))
        assert sender.sent == [("pickup", 11)]
        assert hid.events == []


class TestItemPickup:
    def setup_method(self):
        self.item = _make_item()
        self.session, self.provider, self.hid, self.pathfinder = make_session(
            Snapshot(items=[self.item], ping_ms=0)
        )
        self.handle = self.session.for_priority(Priority.HIGH)
        self.movement = FakeMovement()

    def test_candidates_sorted_and_filtered(self):
        near = _make_item(unit_id=1, position=Position(1, 0))
        far = _make_item(unit_id=2, position=Position(9, 0))
        far_potion = _make_item(unit_id=3, position=Position(50, 0), potion=PotionKind.HEALING)
        self.provider.update(items=[far, far_potion, near])
        asyncio.run(self.session.refresh())
        self.session.current_game.blacklist(2)

        assert [i.unit_id for i in items_to_pickup(self.handle, 30)] == [1]

    def test_picks_up_and_records(self):
        def script():
            items = [] if self.hid.of_kind("click") else [self.item]
            return Snapshot(items=items, ping_ms=0)

        self.provider.script = script
        picked = asyncio.run(item_pickup(self.handle, self.movement))

        assert picked == 1
        assert self.session.current_game.picked_up_items == {11: 0}
        assert self.session.current_game.is_picking_items is False

    def test_unpickable_item_blacklisted_once(self, caplog):
        self.provider.update(monsters=[Monster(unit_id=5, position=Position(3, 0))])
        blacklisted = []
        self.session.events.subscribe(EventName.ITEM_BLACKLISTED, lambda **kw: blacklisted.append(kw))

        with caplog.at_level(logging.WARNING, logger="bot_kernel.actions.pickup"):
            picked = asyncio.run(item_pickup(self.handle, self.movement))

        assert picked == 0
        game = self.session.current_game
        assert game.is_blacklisted(11)
        assert game.is_picking_items is False
        assert len(blacklisted) == 1
        assert blacklisted[0]["item"].unit_id == 11
        assert blacklisted[0]["session"] == "test"
        assert "blacklisting" in caplog.text
        # the first attempt is made in place, every retry moves first
        assert len(self.movement.calls) == MAX_TOTAL_ATTEMPTS - 1

    def test_blacklisted_item_not_retried(self):
        self.session.current_game.blacklist(11)
        picked = asyncio.run(item_pickup(self.handle, self.movement))
        assert picked == 0
        assert self.movement.calls == []
        assert self.hid.events == []

    def test_reentrant_call_is_noop(self):
        self.session.set_picking_items(True)
        assert asyncio.run(item_pickup(self.handle, self.movement)) == 0
        assert self.session.current_game.is_picking_items is True
