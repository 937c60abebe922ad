"""
Periodic scheduler for the local-midnight trigger service.

This module fires the trigger driver on a fixed cron cadence and runs
the dedupe ledger retention sweep on its own cadence. Ticks are started
as independent tasks, so a slow tick may overlap the next one; the
ledger claim keeps overlapping ticks safe.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Set

from midnight_scheduler.common.errors import StorageError
from midnight_scheduler.core.cadence import (
    ensure_retention_covers, ensure_window_covers, max_tick_interval, next_fire, validate_cron,
)
from midnight_scheduler.core.models import TickResult
from midnight_scheduler.orchestrators.trigger_driver import TriggerDriver
from midnight_scheduler.observability import metrics
from midnight_scheduler.observability.logging_setup import get_logger
from midnight_scheduler.settings import RetentionConfig, SchedulerConfig

log = get_logger("midnight.scheduler")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TickScheduler:
    """cron 주기로 트리거 드라이버를 호출하는 스케줄러"""

    def __init__(self,
                 driver: TriggerDriver,
                 ledger,
                 config: SchedulerConfig,
                 retention: Optional[RetentionConfig] = None,
                 *,
                 clock: Callable[[], datetime] = _utcnow):
        """
        초기화합니다.

        Args:
            driver: 트리거 드라이버
            ledger: 중복 방지 원장 (보존 정리 및 크기 메트릭용)
            config: 스케줄러 설정
            retention: 보존 정리 설정, None이면 기본값
            clock: 현재 시각 공급자
        """
        self.driver = driver
        self.ledger = ledger
        self.config = config.model_copy()
        self.retention = (retention or RetentionConfig()).model_copy()
        ensure_retention_covers(self.retention.horizon_days, self.config.window_minutes)
        self.clock = clock

        self.last_result: Optional[TickResult] = None
        self.last_error: Optional[str] = None
        self.last_error_at: Optional[datetime] = None
        self.last_purge_count: Optional[int] = None
        self._inflight: Set[asyncio.Task] = set()
        self.start_time = time.time()

        metrics.scheduler_enabled.set(1 if self.config.enabled else 0)
        log.info(f"스케줄러 초기화됨 cron:'{self.config.cron}' window:{self.config.window_minutes}m "
                 f"enabled:{self.config.enabled}")

    # ---- 운영 제어 ----

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def enable(self) -> None:
        self.config.enabled = True
        metrics.scheduler_enabled.set(1)
        log.info("주기 트리거 활성화")

    def disable(self) -> None:
        self.config.enabled = False
        metrics.scheduler_enabled.set(0)
        log.warning("주기 트리거 비활성화")

    def reconfigure(self, *, cron: Optional[str] = None, window_minutes: Optional[int] = None) -> SchedulerConfig:
        """
        주기와 윈도우를 변경합니다.

        Raises:
            CadenceError: 잘못된 cron, 틱 간격 이하의 윈도우, 또는 보존 기간보다 긴 윈도우
        """
        new_cron = validate_cron(cron) if cron is not None else self.config.cron
        new_window = window_minutes if window_minutes is not None else self.config.window_minutes
        ensure_window_covers(new_cron, new_window)
        ensure_retention_covers(self.retention.horizon_days, new_window)
        self.config.cron = new_cron
        self.config.window_minutes = new_window
        log.info(f"스케줄 변경됨 cron:'{new_cron}' window:{new_window}m")
        return self.config

    # ---- 틱 ----

    async def trigger(self) -> int:
        """
        설정된 파라미터로 틱 한 번을 수행합니다.

        Returns:
            이번 틱에서 다운스트림을 호출한 엔티티 수

        Raises:
            틱 실패 예외 (스케줄러 루프에서는 기록 후 다음 틱에 재시도)
        """
        cfg = self.config
        try:
            result = await self.driver.run_tick(
                cfg.gap_threshold_minutes, cfg.lookback_hours, cfg.window_minutes,
                now=self.clock(),
            )
        except Exception as e:
            metrics.ticks_total.labels(status="error").inc()
            self.last_error = f"{type(e).__name__}: {e}"
            self.last_error_at = self.clock()
            raise
        metrics.ticks_total.labels(status="degraded" if result.degraded else "ok").inc()
        self.last_result = result
        return result.invoked

    async def _run_tick_task(self) -> None:
        try:
            await self.trigger()
        except StorageError as e:
            log.error(f"틱 실패 (저장소 오류, 다음 틱에서 재시도) error:{e}")
        except Exception as e:
            log.opt(exception=e).error(f"틱 실패 error:{e}")

    def _spawn_tick(self) -> asyncio.Task:
        task = asyncio.create_task(self._run_tick_task())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        if len(self._inflight) > 1:
            log.warning(f"이전 틱이 아직 실행 중 (중첩 실행) in_flight:{len(self._inflight)}")
        return task

    async def _sleep_until_next(self, expression: str, last: Optional[datetime]) -> datetime:
        """
        다음 cron 실행 시각까지 대기하고 그 시각을 반환합니다.

        last 이후의 슬롯만 고르므로 sleep 이 조금 일찍 깨어나도 같은 슬롯을 두 번 실행하지 않습니다.
        """
        now = self.clock()
        base = max(now, last) if last else now
        target = next_fire(expression, base)
        await asyncio.sleep(max(0.0, (target - now).total_seconds()))
        return target

    async def _tick_loop(self) -> None:
        last: Optional[datetime] = None
        while True:
            last = await self._sleep_until_next(self.config.cron, last)
            if not self.config.enabled:
                log.debug("주기 트리거 비활성 상태, 틱 건너뜀")
                continue
            self._spawn_tick()

    # ---- 보존 정리 ----

    async def sweep(self) -> int:
        """보존 기간이 지난 원장 레코드를 정리합니다."""
        horizon = timedelta(days=self.retention.horizon_days)
        window = timedelta(minutes=self.config.window_minutes)
        deleted = await self.ledger.purge_older_than(horizon, window=window)
        self.last_purge_count = deleted
        metrics.retention_purged.inc(deleted)
        log.info(f"원장 보존 정리 완료 horizon:{self.retention.horizon_days}d deleted:{deleted}")
        return deleted

    async def _retention_loop(self) -> None:
        last: Optional[datetime] = None
        while True:
            last = await self._sleep_until_next(self.retention.cron, last)
            if not self.retention.enabled:
                continue
            try:
                await self.sweep()
            except Exception as e:
                log.error(f"원장 보존 정리 실패 error:{e}")

    # ---- 메트릭 ----

    async def _update_metrics(self) -> None:
        """주기적으로 메트릭을 업데이트합니다."""
        while True:
            try:
                metrics.uptime_seconds.set(time.time() - self.start_time)
                metrics.ledger_size.set(await self.ledger.get_count())
            except Exception as e:
                log.error(f"메트릭 업데이트 오류 error:{e}")
            await asyncio.sleep(30)

    def status(self) -> dict:
        """운영 상태 요약"""
        cfg = self.config
        return {
            "enabled": cfg.enabled,
            "cron": cfg.cron,
            "tick_interval_minutes": int(max_tick_interval(cfg.cron).total_seconds() // 60),
            "window_minutes": cfg.window_minutes,
            "gap_threshold_minutes": cfg.gap_threshold_minutes,
            "lookback_hours": cfg.lookback_hours,
            "next_tick_at": next_fire(cfg.cron, self.clock()).isoformat(),
            "ticks_in_flight": len(self._inflight),
            "last_result": self.last_result.model_dump(mode="json") if self.last_result else None,
            "last_error": self.last_error,
            "last_error_at": self.last_error_at.isoformat() if self.last_error_at else None,
            "retention": {
                "enabled": self.retention.enabled,
                "cron": self.retention.cron,
                "horizon_days": self.retention.horizon_days,
                "last_purge_count": self.last_purge_count,
            },
        }

    async def start(self) -> None:
        """
        스케줄러를 시작합니다.

        틱 루프, 보존 정리 루프, 메트릭 루프를 함께 실행합니다.
        """
        tasks = [
            asyncio.create_task(self._tick_loop()),
            asyncio.create_task(self._retention_loop()),
            asyncio.create_task(self._update_metrics()),
        ]
        log.info("스케줄러 시작됨")
        try:
            await asyncio.gather(*tasks)
        finally:
            for t in tasks + list(self._inflight):
                t.cancel()
