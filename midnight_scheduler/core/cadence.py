"""
Tick cadence helpers for the local-midnight trigger service.

This module validates cron expressions and checks that the detector
window is wider than the longest gap between consecutive ticks.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from croniter import croniter

from midnight_scheduler.common.errors import CadenceError

# 요일/월 단위 표현식까지 덮도록 충분히 긴 기준 기간
_SCAN_HORIZON = timedelta(days=8)
_SCAN_ORIGIN = datetime(2024, 1, 1, tzinfo=timezone.utc)

# DST 전환일을 포함한 가장 긴 로컬 하루
LONGEST_LOCAL_DAY = timedelta(days=1, hours=1)


def validate_cron(expression: str) -> str:
    """cron 표현식을 검증하고 그대로 반환합니다."""
    if not expression or not croniter.is_valid(expression):
        raise CadenceError(f"invalid cron expression: {expression!r}")
    return expression


def max_tick_interval(expression: str) -> timedelta:
    """
    연속된 두 cron 실행 사이의 가장 긴 간격을 계산합니다.

    Args:
        expression: 5필드 cron 표현식 (UTC 기준)

    Returns:
        최대 간격
    """
    validate_cron(expression)
    it = croniter(expression, _SCAN_ORIGIN)
    prev = it.get_next(datetime)
    end = prev + _SCAN_HORIZON
    longest = timedelta(0)
    while prev < end:
        nxt = it.get_next(datetime)
        longest = max(longest, nxt - prev)
        prev = nxt
    return longest


def ensure_window_covers(expression: str, window_minutes: int) -> None:
    """
    윈도우가 틱 간격보다 넓은지 확인합니다.

    Raises:
        CadenceError: 윈도우가 최대 틱 간격 이하인 경우 (자정 통과 누락 위험)
    """
    interval = max_tick_interval(expression)
    if timedelta(minutes=window_minutes) <= interval:
        raise CadenceError(
            f"window_minutes={window_minutes} must exceed tick interval "
            f"{int(interval.total_seconds() // 60)}m of {expression!r}"
        )


def next_fire(expression: str, after: Optional[datetime] = None) -> datetime:
    """after 이후 다음 cron 실행 시각 (UTC)"""
    base = after or datetime.now(timezone.utc)
    return croniter(expression, base).get_next(datetime)


def retention_floor(window: timedelta = timedelta(0)) -> timedelta:
    """
    원장 레코드를 지워도 안전한 최소 보존 기간을 계산합니다.

    레코드는 그 로컬 날짜가 끝나고, 윈도우가 그 날의 자정을 지나칠 때까지
    같은 날짜의 중복 선점을 막아야 합니다.

    Args:
        window: 탐지 윈도우

    Returns:
        window + 가장 긴 로컬 하루
    """
    return window + LONGEST_LOCAL_DAY


def ensure_retention_covers(horizon_days: int, window_minutes: int) -> None:
    """
    보존 기간이 탐지 윈도우 기준 최소 보존 기간 이상인지 확인합니다.

    Raises:
        CadenceError: 정리 작업이 아직 필요한 레코드를 지울 수 있는 경우
    """
    floor = retention_floor(timedelta(minutes=window_minutes))
    if timedelta(days=horizon_days) < floor:
        raise CadenceError(
            f"retention horizon_days={horizon_days} must be at least {floor} "
            f"for window_minutes={window_minutes}"
        )
