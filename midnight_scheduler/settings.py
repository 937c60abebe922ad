# midnight_scheduler/settings.py
from __future__ import annotations
from pydantic import BaseModel, Field, field_validator, model_validator

from midnight_scheduler.core.cadence import ensure_retention_covers, ensure_window_covers, validate_cron

class StorageConfig(BaseModel):
    db_path: str = "/data/midnight.db"
    busy_timeout_sec: float = 10.0

class SchedulerConfig(BaseModel):
    enabled: bool = True
    cron: str = "5,20,35,50 * * * *"          # UTC, 정시 부하 회피용 엇갈린 오프셋
    gap_threshold_minutes: int = Field(default=10, gt=0)
    lookback_hours: int = Field(default=24, gt=0)
    window_minutes: int = Field(default=30, gt=0)  # 틱 간격보다 커야 함
    max_concurrency: int = Field(default=8, gt=0)

    @field_validator("cron")
    @classmethod
    def _valid_cron(cls, v: str) -> str:
        return validate_cron(v)

    @model_validator(mode="after")
    def _window_covers_interval(self) -> "SchedulerConfig":
        ensure_window_covers(self.cron, self.window_minutes)
        return self

class RetentionConfig(BaseModel):
    enabled: bool = True
    cron: str = "17 3 * * *"
    horizon_days: int = Field(default=90, ge=2)     # 윈도우 + 가장 긴 로컬 하루 이상

    @field_validator("cron")
    @classmethod
    def _valid_cron(cls, v: str) -> str:
        return validate_cron(v)

class SessionizerConfig(BaseModel):
    base_url: str = "http://localhost:54321/rest/v1"
    endpoint: str = "/rpc/sessionize_recent_visits"
    token: str = ""
    timeout_sec: int = 30
    max_retries: int = 3
    backoff_initial_sec: float = 0.5
    backoff_max_sec: float = 10.0

class Observability(BaseModel):
    http_port: int = 8099
    metrics_enabled: bool = True
    service_name: str = "midnight-scheduler"
    build_version: str = "0.1.0"
    build_date: str = "2025-01-01"
    log_level: str = "INFO"
    log_json: bool = False

class Settings(BaseModel):
    # 하위 섹션 (기본값/팩토리로 누락 방지)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    sessionizer: SessionizerConfig = Field(default_factory=SessionizerConfig)
    observability: Observability = Field(default_factory=Observability)

    @model_validator(mode="after")
    def _retention_covers_window(self) -> "Settings":
        ensure_retention_covers(self.retention.horizon_days, self.scheduler.window_minutes)
        return self
