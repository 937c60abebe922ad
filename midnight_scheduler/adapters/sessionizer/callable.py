"""
In-process sessionizer adapter.

This module wraps any async callable with the sessionize signature
so it can be plugged into the trigger driver directly.
"""

from typing import Awaitable, Callable
from midnight_scheduler.common.errors import DownstreamError

SessionizeFn = Callable[[str, int, int], Awaitable[int]]

class CallableSessionizer:
    """비동기 함수를 세션화 포트로 감싸는 어댑터"""

    def __init__(self, fn: SessionizeFn, name: str = "callable"):
        self.fn = fn
        self.name = name
        self.calls = 0

    async def sessionize(self, entity_id: str, gap_threshold_minutes: int, lookback_hours: int) -> int:
        self.calls += 1
        try:
            affected = await self.fn(entity_id, gap_threshold_minutes, lookback_hours)
        except DownstreamError:
            raise
        except Exception as e:
            raise DownstreamError(f"{self.name} sessionize failed for {entity_id}: {e}") from e
        return int(affected or 0)
