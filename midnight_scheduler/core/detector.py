"""
Midnight-crossing detection for the local-midnight trigger service.

This module contains pure functions that decide whether an entity's
local calendar date changed inside a tick window. Each instant resolves
its own UTC offset from the IANA database, so DST transitions need no
special handling.
"""

from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from midnight_scheduler.common.errors import InvalidTimezoneError
from .models import Entity, TickWindow, TriggerCandidate, UpcomingCrossing


@lru_cache(maxsize=1024)
def resolve_zone(name: Optional[str]) -> ZoneInfo:
    """
    IANA 타임존 이름을 ZoneInfo 로 변환합니다.

    Args:
        name: IANA 타임존 이름 (예: "America/New_York")

    Returns:
        ZoneInfo 객체

    Raises:
        InvalidTimezoneError: 비어 있거나 알 수 없는 이름
    """
    if not name or not name.strip():
        raise InvalidTimezoneError(name)
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        raise InvalidTimezoneError(name) from e


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None or instant.utcoffset() is None:
        raise ValueError("instant must be timezone-aware")
    return instant.astimezone(timezone.utc)


def local_date(instant: datetime, tz: ZoneInfo) -> date:
    """절대 시각을 주어진 타임존의 로컬 날짜로 변환합니다."""
    return _as_utc(instant).astimezone(tz).date()


def detect(now: datetime, window: timedelta, tz: ZoneInfo) -> bool:
    """
    now 와 now - window 의 로컬 날짜가 다른지 판단합니다.

    Args:
        now: 현재 시각 (aware)
        window: 되돌아볼 기간
        tz: 엔티티 타임존

    Returns:
        윈도우 안에서 로컬 자정을 넘었으면 True
    """
    # 벽시계 산술 방지: 뺄셈은 UTC 에서
    now = _as_utc(now)
    return local_date(now, tz) != local_date(now - window, tz)


def crossing_for(entity: Entity, tick: TickWindow) -> Optional[TriggerCandidate]:
    """
    단일 엔티티에 대해 자정 통과 후보를 계산합니다.

    Raises:
        InvalidTimezoneError: 엔티티 타임존이 잘못된 경우
    """
    tz = resolve_zone(entity.timezone)
    if not detect(tick.now, tick.lookback, tz):
        return None
    return TriggerCandidate(
        entity_id=entity.entity_id,
        timezone=entity.timezone,
        local_date=local_date(tick.now, tz),
    )


def find_crossings(
    entities: Iterable[Entity], tick: TickWindow
) -> Tuple[List[TriggerCandidate], List[Entity]]:
    """
    레지스트리 전체에 대해 탐지기를 실행합니다.

    Args:
        entities: 타임존이 있는 엔티티 목록
        tick: 이번 틱의 윈도우

    Returns:
        (자정 통과 후보 목록, 타임존 오류로 건너뛴 엔티티 목록)
    """
    candidates: List[TriggerCandidate] = []
    skipped: List[Entity] = []
    for entity in entities:
        if entity.timezone is None:
            continue
        try:
            candidate = crossing_for(entity, tick)
        except InvalidTimezoneError:
            skipped.append(entity)
            continue
        if candidate is not None:
            candidates.append(candidate)
    return candidates, skipped


def upcoming_crossings(
    entities: Iterable[Entity], now: datetime, ahead: timedelta
) -> List[UpcomingCrossing]:
    """
    앞으로 ahead 안에 로컬 자정을 넘을 엔티티를 미리 계산합니다.

    잘못된 타임존을 가진 엔티티는 조용히 제외합니다.
    """
    result: List[UpcomingCrossing] = []
    now = _as_utc(now)
    later = now + ahead
    for entity in entities:
        try:
            tz = resolve_zone(entity.timezone)
        except InvalidTimezoneError:
            continue
        if not detect(later, ahead, tz):
            continue
        result.append(UpcomingCrossing(
            entity_id=entity.entity_id,
            timezone=entity.timezone,
            current_local_date=local_date(now, tz),
            next_local_date=local_date(later, tz),
        ))
    result.sort(key=lambda c: (c.timezone, c.entity_id))
    return result
