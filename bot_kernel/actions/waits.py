"""
Condition polling helpers.

Input is never acknowledged, so every step verifies its effect by
re-reading the game until a predicate holds or a deadline passes.
Timeouts and intervals are in seconds.
"""

import asyncio
import time
from typing import Awaitable, Callable, Union

from bot_kernel.models.snapshot import ItemLocation, Snapshot
from bot_kernel.session.context import SessionHandle

DEFAULT_POLL_INTERVAL = 0.05
DEFAULT_TIMEOUT = 1.5

SnapshotPredicate = Callable[[Snapshot], bool]


async def wait_for_condition(
    condition: Callable[[], Union[bool, Awaitable[bool]]],
    timeout: float = DEFAULT_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> bool:
    """Poll `condition` (sync or async) until true or `timeout` elapses."""
    if timeout <= 0:
        timeout = DEFAULT_TIMEOUT
    if poll_interval <= 0:
        poll_interval = DEFAULT_POLL_INTERVAL

    deadline = time.monotonic() + timeout
    while True:
        result = condition()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return True
        if time.monotonic() >= deadline:
            return False
        await asyncio.sleep(poll_interval)


async def retry_with_polling(
    action: Callable[[], Union[None, Awaitable[None]]],
    condition: Callable[[], Union[bool, Awaitable[bool]]],
    max_attempts: int = 3,
    timeout: float = DEFAULT_TIMEOUT,
) -> bool:
    """Run `action`, then poll `condition`; repeat up to `max_attempts` times."""
    if max_attempts <= 0:
        max_attempts = 3
    for _ in range(max_attempts):
        result = action()
        if asyncio.iscoroutine(result):
            await result
        if await wait_for_condition(condition, timeout):
            return True
    return False


async def wait_for_snapshot(
    handle: SessionHandle,
    predicate: SnapshotPredicate,
    timeout: float = DEFAULT_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> bool:
    """Force a refresh before every check of `predicate`."""

    async def check() -> bool:
        return predicate(await handle.refresh(force=True))

    return await wait_for_condition(check, timeout, poll_interval)


async def wait_for_item_not_in_location(
    handle: SessionHandle, unit_id: int, location: ItemLocation,
    timeout: float = DEFAULT_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> bool:
    return await wait_for_snapshot(
        handle,
        lambda s: not any(i.unit_id == unit_id and i.location == location for i in s.items),
        timeout,
        poll_interval,
    )


async def wait_for_item_in_location(
    handle: SessionHandle, unit_id: int, location: ItemLocation,
    timeout: float = DEFAULT_TIMEOUT,
) -> bool:
    return await wait_for_snapshot(
        handle,
        lambda s: any(i.unit_id == unit_id and i.location == location for i in s.items),
        timeout,
    )


async def wait_for_item_identified(
    handle: SessionHandle, unit_id: int, timeout: float = DEFAULT_TIMEOUT
) -> bool:
    def identified(snapshot: Snapshot) -> bool:
        item = snapshot.find_item(unit_id)
        return item is not None and item.identified

    return await wait_for_snapshot(handle, identified, timeout)


async def wait_for_cursor_empty(handle: SessionHandle, timeout: float = DEFAULT_TIMEOUT) -> bool:
    return await wait_for_snapshot(
        handle, lambda s: not s.items_at(ItemLocation.CURSOR), timeout
    )


async def wait_for_menu_open(
    handle: SessionHandle, menu: str, timeout: float = DEFAULT_TIMEOUT
) -> bool:
    """`menu` names an `OpenMenus` field, e.g. "stash" or "npc_shop"."""
    return await wait_for_snapshot(handle, lambda s: bool(getattr(s.menus, menu)), timeout)


async def wait_for_item_in_belt(
    handle: SessionHandle, unit_id: int, timeout: float = DEFAULT_TIMEOUT
) -> bool:
    return await wait_for_item_in_location(handle, unit_id, ItemLocation.BELT, timeout)

