"""Tests for the Priority Arbitrator."""

import asyncio
import time

import pytest

from bot_kernel.errors import SessionStoppedError
from bot_kernel.models.priority import Priority
from bot_kernel.priority.arbitrator import PriorityArbitrator


class TestPriorityArbitrator:
    def setup_method(self):
        self.arbitrator = PriorityArbitrator()

    def test_starts_normal(self):
        assert self.arbitrator.active == Priority.NORMAL
        assert self.arbitrator.is_active(Priority.NORMAL)

    def test_lower_value_preempts(self):
        assert Priority.HIGH < Priority.NORMAL < Priority.BACKGROUND < Priority.PAUSE < Priority.STOP

    def test_listener_receives_switches(self):
        seen = []
        self.arbitrator.on_change(lambda prev, cur: seen.append((prev, cur)))
        self.arbitrator.switch_priority(Priority.HIGH)
        self.arbitrator.switch_priority(Priority.HIGH)
        self.arbitrator.switch_priority(Priority.NORMAL)
        assert seen == [
            (Priority.NORMAL, Priority.HIGH),
            (Priority.HIGH, Priority.NORMAL),
        ]

    def test_only_active_tier_proceeds(self):
        order = []

        async def scenario():
            async def high_worker():
                await self.arbitrator.pause_if_not_priority(Priority.HIGH)
                order.append("high")

            task = asyncio.create_task(high_worker())
            await asyncio.sleep(0.05)
            order.append("normal")
            assert not task.done()
            self.arbitrator.switch_priority(Priority.HIGH)
            await asyncio.wait_for(task, timeout=1.0)

        asyncio.run(scenario())
        assert order == ["normal", "high"]

    def test_timeout_variant_returns_false(self):
        async def scenario():
            started = time.monotonic()
            acquired = await self.arbitrator.pause_if_not_priority_with_timeout(
                Priority.HIGH, 0.2
            )
            return acquired, time.monotonic() - started

        acquired, elapsed = asyncio.run(scenario())
        assert acquired is False
        assert 0.15 <= elapsed < 1.0

    def test_timeout_variant_immediate_when_active(self):
        acquired = asyncio.run(
            self.arbitrator.pause_if_not_priority_with_timeout(Priority.NORMAL, 0.2)
        )
        assert acquired is True

    def test_stop_wakes_waiters_with_error(self):
        async def scenario():
            waiter = asyncio.create_task(self.arbitrator.pause_if_not_priority(Priority.HIGH))
            await asyncio.sleep(0.01)
            self.arbitrator.switch_priority(Priority.STOP)
            with pytest.raises(SessionStoppedError):
                await asyncio.wait_for(waiter, timeout=1.0)

        asyncio.run(scenario())

    def test_stop_raises_even_with_zero_timeout(self):
        self.arbitrator.switch_priority(Priority.STOP)
        with pytest.raises(SessionStoppedError):
            asyncio.run(
                self.arbitrator.pause_if_not_priority_with_timeout(Priority.NORMAL, 0)
            )

    def test_stop_is_terminal(self):
        self.arbitrator.switch_priority(Priority.STOP)
        self.arbitrator.switch_priority(Priority.NORMAL)
        assert self.arbitrator.active == Priority.STOP

    def test_reset_leaves_stop(self):
        self.arbitrator.switch_priority(Priority.STOP)
        self.arbitrator.reset(Priority.NORMAL)
        assert self.arbitrator.active == Priority.NORMAL
