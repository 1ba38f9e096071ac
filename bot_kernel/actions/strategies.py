"""
Fallback chains as ordered strategy lists.

Each strategy answers one question: did it get the job done? A strategy
that raises is logged and the next one is tried. If the whole chain fails,
the last error propagates so the caller still sees a typed condition.
"""

import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from bot_kernel.errors import CriticalError, SessionStoppedError

logger = logging.getLogger(__name__)


class Strategy:
    """One way of performing an operation, e.g. "packet" or "mouse"."""

    def __init__(
        self,
        name: str,
        attempt: Callable[[], Awaitable[bool]],
        enabled: bool = True,
    ):
        self.name = name
        self.attempt = attempt
        self.enabled = enabled

    def __repr__(self) -> str:
        return f"Strategy({self.name!r}, enabled={self.enabled})"


async def run_strategies(
    strategies: Sequence[Strategy], operation: str
) -> Optional[str]:
    """
    Try enabled strategies in order. Returns the winner's name, or None
    when every strategy reported failure without raising.
    """
    errors: List[Exception] = []
    for strategy in strategies:
        if not strategy.enabled:
            continue
        try:
            if await strategy.attempt():
                logger.debug("%s succeeded via %s", operation, strategy.name)
                return strategy.name
            logger.debug("%s: strategy %s did not succeed", operation, strategy.name)
        except (SessionStoppedError, CriticalError):
            raise
        except Exception as exc:
            logger.warning(
                "%s: strategy %s failed, trying next: %s", operation, strategy.name, exc
            )
            errors.append(exc)

    if errors:
        raise errors[-1]
    return None
