"""
Core domain models for the local-midnight trigger service.

This module defines the core domain models using Pydantic v2
for type safety and validation.
"""

from datetime import date, datetime, timedelta, timezone
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class Entity(BaseModel):
    """레지스트리 엔티티 (외부 테이블, 읽기 전용)"""
    model_config = ConfigDict(frozen=True)

    entity_id: str
    timezone: Optional[str] = None


class TickWindow(BaseModel):
    """한 틱의 관측 윈도우 (매 틱마다 새로 생성)"""
    model_config = ConfigDict(frozen=True)

    now: datetime
    lookback: timedelta

    @field_validator("now")
    @classmethod
    def _require_aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None or v.utcoffset() is None:
            raise ValueError("now must be timezone-aware")
        return v.astimezone(timezone.utc)

    @field_validator("lookback")
    @classmethod
    def _require_positive(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError("lookback must be positive")
        return v

    @property
    def previous(self) -> datetime:
        """윈도우 시작 시각 (now - lookback)"""
        return self.now - self.lookback

    @classmethod
    def of_minutes(cls, now: datetime, window_minutes: int) -> "TickWindow":
        return cls(now=now, lookback=timedelta(minutes=window_minutes))


class TriggerCandidate(BaseModel):
    """자정을 넘은 엔티티와 새 로컬 날짜"""
    model_config = ConfigDict(frozen=True)

    entity_id: str
    timezone: str
    local_date: date


class UpcomingCrossing(BaseModel):
    """곧 로컬 자정을 넘을 엔티티 미리보기"""
    entity_id: str
    timezone: str
    current_local_date: date
    next_local_date: date


class ClaimRecord(BaseModel):
    """중복 방지 원장 레코드"""
    entity_id: str
    local_date: date
    triggered_at: datetime


class TickResult(BaseModel):
    """틱 한 번의 처리 결과 (관측용 카운터)"""
    started_at: datetime
    window_minutes: int
    entities_scanned: int = 0
    candidates: int = 0
    skipped_invalid: int = 0
    claimed: int = 0
    duplicates: int = 0
    invoked: int = 0
    succeeded: int = 0
    failed: int = 0
    duration_sec: float = 0.0
    failed_entities: List[str] = Field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """선점했지만 처리되지 않은 엔티티가 있는지"""
        return self.failed > 0
