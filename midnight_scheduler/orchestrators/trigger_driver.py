"""
Trigger driver for the local-midnight trigger service.

This module runs one scheduling tick: it reads the registry, detects
local-midnight crossings, claims each (entity_id, local_date) pair in
the dedupe ledger and invokes the downstream sessionizer for every
claim it wins.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from midnight_scheduler.common.errors import StorageError
from midnight_scheduler.core.detector import find_crossings
from midnight_scheduler.core.models import TickResult, TickWindow, TriggerCandidate
from midnight_scheduler.ports.ledger import DedupeLedgerPort
from midnight_scheduler.ports.processor import SessionizerPort
from midnight_scheduler.ports.registry import EntityRegistryPort
from midnight_scheduler.observability import metrics
from midnight_scheduler.observability.logging_setup import get_logger, with_context

log = get_logger("midnight.driver")

# 엔티티별 처리 결과
DUPLICATE = "duplicate"
SUCCEEDED = "succeeded"
FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TriggerDriver:
    """틱 한 번을 수행하는 트리거 드라이버"""

    def __init__(self,
                 registry: EntityRegistryPort,
                 ledger: DedupeLedgerPort,
                 sessionizer: SessionizerPort,
                 *,
                 max_concurrency: int = 8,
                 clock: Callable[[], datetime] = _utcnow):
        """
        초기화합니다.

        Args:
            registry: 엔티티 타임존 레지스트리
            ledger: 중복 방지 원장
            sessionizer: 다운스트림 세션화 포트
            max_concurrency: 한 틱 안에서 동시에 처리할 엔티티 수
            clock: 현재 시각 공급자
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.registry = registry
        self.ledger = ledger
        self.sessionizer = sessionizer
        self.max_concurrency = max_concurrency
        self.clock = clock

    async def run_tick(self,
                       gap_threshold_minutes: int,
                       lookback_hours: int,
                       window_minutes: int,
                       now: Optional[datetime] = None) -> TickResult:
        """
        틱 한 번을 수행합니다.

        Args:
            gap_threshold_minutes: 다운스트림에 넘길 세션 분리 간격 (분)
            lookback_hours: 다운스트림에 넘길 재처리 기간 (시간)
            window_minutes: 자정 통과 탐지 윈도우 (분)
            now: 기준 시각, None이면 clock() 사용

        Returns:
            TickResult (invoked = 이번 틱에서 다운스트림을 호출한 엔티티 수)

        Raises:
            StorageError: 레지스트리 조회 또는 원장 선점 실패
        """
        t0 = time.perf_counter()
        tick = TickWindow.of_minutes(now or self.clock(), window_minutes)
        result = TickResult(started_at=tick.now, window_minutes=window_minutes)

        metrics.ticks_in_flight.inc()
        try:
            entities = await self.registry.list_candidates()
            result.entities_scanned = len(entities)
            metrics.registry_entities.set(len(entities))
            if not entities:
                log.warning("타임존이 설정된 엔티티가 없습니다 (레지스트리 설정 확인 필요)")

            candidates, skipped = find_crossings(entities, tick)
            result.candidates = len(candidates)
            result.skipped_invalid = len(skipped)
            metrics.last_tick_candidates.set(len(candidates))
            metrics.crossings_detected.inc(len(candidates))
            if skipped:
                metrics.entities_skipped_invalid.inc(len(skipped))
                log.warning(f"잘못된 타임존으로 건너뜀 count:{len(skipped)} "
                            f"entities:{[e.entity_id for e in skipped[:10]]}")

            outcomes = await self._process_all(candidates, gap_threshold_minutes, lookback_hours)
        finally:
            metrics.ticks_in_flight.dec()

        storage_errors: List[StorageError] = []
        for candidate, outcome in zip(candidates, outcomes):
            if isinstance(outcome, StorageError):
                storage_errors.append(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            elif outcome == DUPLICATE:
                result.duplicates += 1
            else:
                result.claimed += 1
                result.invoked += 1
                if outcome == SUCCEEDED:
                    result.succeeded += 1
                else:
                    result.failed += 1
                    result.failed_entities.append(candidate.entity_id)

        result.duration_sec = time.perf_counter() - t0
        metrics.tick_seconds.observe(result.duration_sec)

        if storage_errors:
            log.error(f"원장 선점 중 저장소 오류로 틱 실패 errors:{len(storage_errors)} "
                      f"claimed:{result.claimed} invoked:{result.invoked}")
            raise storage_errors[0]

        metrics.last_success_timestamp.set(time.time())
        log.info(
            f"틱 완료 window:{window_minutes}m entities:{result.entities_scanned} "
            f"candidates:{result.candidates} claimed:{result.claimed} duplicates:{result.duplicates} "
            f"invoked:{result.invoked} failed:{result.failed} duration:{result.duration_sec:.3f}s"
        )
        return result

    async def tick(self, gap_threshold_minutes: int, lookback_hours: int, window_minutes: int) -> int:
        """스케줄러 트리거 형식: 이번 틱에서 처리한 엔티티 수를 반환합니다."""
        result = await self.run_tick(gap_threshold_minutes, lookback_hours, window_minutes)
        return result.invoked

    async def _process_all(self, candidates: List[TriggerCandidate],
                           gap_threshold_minutes: int, lookback_hours: int) -> list:
        if not candidates:
            return []
        sem = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(candidate: TriggerCandidate):
            async with sem:
                return await self._claim_and_process(candidate, gap_threshold_minutes, lookback_hours)

        # 이미 시작된 엔티티는 끝까지 진행시키고 저장소 오류는 틱 끝에서 전파
        return await asyncio.gather(*(_bounded(c) for c in candidates), return_exceptions=True)

    async def _claim_and_process(self, candidate: TriggerCandidate,
                                 gap_threshold_minutes: int, lookback_hours: int) -> str:
        """엔티티 하나를 선점하고, 이긴 경우 다운스트림을 호출합니다."""
        with with_context(entity_id=candidate.entity_id, local_date=str(candidate.local_date)):
            return await self._claim_and_invoke(candidate, gap_threshold_minutes, lookback_hours)

    async def _claim_and_invoke(self, candidate: TriggerCandidate,
                                gap_threshold_minutes: int, lookback_hours: int) -> str:
        won = await self.ledger.claim(candidate.entity_id, candidate.local_date)
        if not won:
            metrics.claims_duplicate.inc()
            log.debug(f"이미 선점됨 entity_id:{candidate.entity_id} local_date:{candidate.local_date}")
            return DUPLICATE
        metrics.claims_won.inc()

        metrics.downstream_invocations.labels(trigger="scheduled").inc()
        try:
            with metrics.downstream_seconds.time():
                affected = await self.sessionizer.sessionize(
                    candidate.entity_id, gap_threshold_minutes, lookback_hours
                )
        except Exception as e:
            # 선점은 되돌리지 않음: 수동 재실행으로만 복구
            metrics.downstream_failures.labels(trigger="scheduled").inc()
            log.opt(exception=e).error(
                f"세션화 실패 (선점 유지, 수동 재실행 필요) entity_id:{candidate.entity_id} "
                f"local_date:{candidate.local_date} error:{e}"
            )
            return FAILED

        log.info(f"세션화 완료 entity_id:{candidate.entity_id} timezone:{candidate.timezone} "
                 f"local_date:{candidate.local_date} affected:{affected}")
        return SUCCEEDED

    async def force_run(self, entity_id: str, gap_threshold_minutes: int, lookback_hours: int) -> int:
        """
        원장을 무시하고 다운스트림을 직접 호출합니다 (운영자 수동 재실행).

        Returns:
            영향받은 세션/행 수

        Raises:
            다운스트림 예외를 그대로 전파
        """
        log.warning(f"수동 재실행 (원장 우회) entity_id:{entity_id}")
        metrics.downstream_invocations.labels(trigger="manual").inc()
        try:
            with metrics.downstream_seconds.time():
                return await self.sessionizer.sessionize(entity_id, gap_threshold_minutes, lookback_hours)
        except Exception:
            metrics.downstream_failures.labels(trigger="manual").inc()
            raise
