"""
테스트 공용 헬퍼

메모리 기반 레지스트리, 호출 기록 세션화 포트, 시각 헬퍼를 제공합니다.
"""

import asyncio
from datetime import datetime, timedelta, timezone


class FakeRegistry:
    """메모리 기반 레지스트리 (테스트용)"""

    def __init__(self, entities=None):
        self.entities = list(entities or [])
        self.calls = 0

    async def list_candidates(self):
        self.calls += 1
        return [e for e in self.entities if e.timezone is not None]


class RecordingSessionizer:
    """호출을 기록하는 세션화 포트 (테스트용)"""

    def __init__(self, fail_for=(), delay: float = 0.0):
        self.calls = []
        self.fail_for = set(fail_for)
        self.delay = delay

    async def sessionize(self, entity_id, gap_threshold_minutes, lookback_hours):
        if self.delay:
            await asyncio.sleep(self.delay)
        self.calls.append((entity_id, gap_threshold_minutes, lookback_hours))
        if entity_id in self.fail_for:
            raise RuntimeError(f"downstream exploded for {entity_id}")
        return 3

    @property
    def entity_ids(self):
        return [c[0] for c in self.calls]


def utc(*args) -> datetime:
    """UTC aware datetime 헬퍼"""
    return datetime(*args, tzinfo=timezone.utc)


def tick_times(start: datetime, end: datetime, step_minutes: int = 15):
    """start 부터 end 직전까지 step 간격의 틱 시각"""
    t = start
    while t < end:
        yield t
        t += timedelta(minutes=step_minutes)
