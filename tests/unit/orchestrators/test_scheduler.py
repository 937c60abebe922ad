"""
TickScheduler 테스트

이 모듈은 스케줄러의 수동 트리거, 운영 제어, 보존 정리,
cron 슬롯 대기와 중첩 틱 처리를 테스트합니다.
"""

import asyncio
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, patch
from prometheus_client import REGISTRY

from midnight_scheduler.adapters.storage.sqlite_ledger import SQLiteDedupeLedger
from midnight_scheduler.common.errors import CadenceError, StorageError
from midnight_scheduler.orchestrators.scheduler import TickScheduler
from midnight_scheduler.orchestrators.trigger_driver import TriggerDriver
from midnight_scheduler.settings import SchedulerConfig, RetentionConfig
from tests.helpers import RecordingSessionizer, utc


NOW = utc(2024, 1, 15, 5, 5)


class _StopLoop(Exception):
    """테스트용 루프 중단 신호"""


@pytest.fixture
async def ledger(temp_db_path):
    ledger = SQLiteDedupeLedger(temp_db_path, clock=lambda: NOW)
    await ledger.init()
    return ledger


@pytest.fixture
def scheduler(fake_registry, ledger, recording_sessionizer):
    driver = TriggerDriver(fake_registry, ledger, recording_sessionizer)
    return TickScheduler(driver, ledger, SchedulerConfig(), RetentionConfig(horizon_days=7),
                         clock=lambda: NOW)


class TestTrigger:
    """트리거 테스트"""

    @pytest.mark.asyncio
    async def test_trigger_returns_processed_count(self, scheduler, recording_sessionizer):
        assert await scheduler.trigger() == 2
        assert await scheduler.trigger() == 0

        assert scheduler.last_result.duplicates == 2
        assert recording_sessionizer.calls[0][1:] == (10, 24)

    @pytest.mark.asyncio
    async def test_trigger_records_degraded_status(self, fake_registry, ledger):
        before = REGISTRY.get_sample_value("midnight_ticks_total", {"status": "degraded"}) or 0.0
        driver = TriggerDriver(fake_registry, ledger, RecordingSessionizer(fail_for={"u-ny"}))
        scheduler = TickScheduler(driver, ledger, SchedulerConfig(), clock=lambda: NOW)

        assert await scheduler.trigger() == 2

        assert scheduler.last_result.failed_entities == ["u-ny"]
        assert REGISTRY.get_sample_value("midnight_ticks_total", {"status": "degraded"}) == before + 1

    @pytest.mark.asyncio
    async def test_trigger_records_error(self, ledger):
        driver = AsyncMock()
        driver.run_tick.side_effect = StorageError("database is locked")
        scheduler = TickScheduler(driver, ledger, SchedulerConfig(), clock=lambda: NOW)

        with pytest.raises(StorageError):
            await scheduler.trigger()

        assert "database is locked" in scheduler.last_error
        assert scheduler.last_error_at == NOW

    @pytest.mark.asyncio
    async def test_tick_task_does_not_raise(self, ledger):
        """루프에서 실행되는 틱은 실패를 기록만 하고 루프를 유지"""
        driver = AsyncMock()
        driver.run_tick.side_effect = StorageError("database is locked")
        scheduler = TickScheduler(driver, ledger, SchedulerConfig(), clock=lambda: NOW)

        await scheduler._run_tick_task()

        assert scheduler.last_error is not None

    @pytest.mark.asyncio
    async def test_spawned_ticks_overlap_safely(self, fake_registry, ledger):
        """이전 틱이 끝나기 전에 다음 틱이 시작되어도 엔티티당 한 번"""
        sessionizer = RecordingSessionizer(delay=0.05)
        driver = TriggerDriver(fake_registry, ledger, sessionizer)
        scheduler = TickScheduler(driver, ledger, SchedulerConfig(), clock=lambda: NOW)

        first = scheduler._spawn_tick()
        second = scheduler._spawn_tick()
        assert scheduler.status()["ticks_in_flight"] == 2

        await asyncio.gather(first, second)

        assert sorted(sessionizer.entity_ids) == ["u-fixed5", "u-ny"]
        assert scheduler.status()["ticks_in_flight"] == 0


class TestControl:
    """운영 제어 테스트"""

    async def test_enable_disable(self, scheduler):
        scheduler.disable()
        assert scheduler.enabled is False

        scheduler.enable()
        assert scheduler.enabled is True

    async def test_config_is_copied(self, fake_registry, ledger, recording_sessionizer):
        """스케줄러 변경이 원래 설정 객체에 영향 없음"""
        config = SchedulerConfig()
        driver = TriggerDriver(fake_registry, ledger, recording_sessionizer)
        scheduler = TickScheduler(driver, ledger, config)

        scheduler.disable()

        assert config.enabled is True

    async def test_reconfigure(self, scheduler):
        config = scheduler.reconfigure(cron="*/10 * * * *", window_minutes=20)

        assert config.cron == "*/10 * * * *"
        assert scheduler.status()["tick_interval_minutes"] == 10

    @pytest.mark.parametrize("kwargs", [
        {"cron": "0 * * * *"},            # 60분 간격 > 30분 윈도우
        {"window_minutes": 15},
        {"cron": "bogus"},
    ])
    async def test_reconfigure_rejects_unsafe_cadence(self, scheduler, kwargs):
        with pytest.raises(CadenceError):
            scheduler.reconfigure(**kwargs)

        assert scheduler.config.cron == "5,20,35,50 * * * *"
        assert scheduler.config.window_minutes == 30

    async def test_retention_shorter_than_window_rejected(self, fake_registry, ledger, recording_sessionizer):
        """보존 기간이 윈도우 + 가장 긴 로컬 하루보다 짧으면 생성 거부"""
        driver = TriggerDriver(fake_registry, ledger, recording_sessionizer)

        with pytest.raises(CadenceError):
            TickScheduler(driver, ledger, SchedulerConfig(window_minutes=2880),
                          RetentionConfig(horizon_days=2))

    async def test_reconfigure_rejects_window_beyond_retention(self, fake_registry, ledger,
                                                               recording_sessionizer):
        """넓힌 윈도우가 보존 기간을 넘으면 거부하고 기존 설정 유지"""
        driver = TriggerDriver(fake_registry, ledger, recording_sessionizer)
        scheduler = TickScheduler(driver, ledger, SchedulerConfig(), RetentionConfig(horizon_days=2))

        with pytest.raises(CadenceError):
            scheduler.reconfigure(window_minutes=2880)

        assert scheduler.config.window_minutes == 30

    async def test_status(self, scheduler):
        status = scheduler.status()

        assert status["enabled"] is True
        assert status["next_tick_at"] == "2024-01-15T05:20:00+00:00"
        assert status["retention"]["horizon_days"] == 7
        assert status["last_error"] is None


class TestRetention:
    """보존 정리 테스트"""

    @pytest.mark.asyncio
    async def test_sweep(self, scheduler, ledger):
        await scheduler.trigger()

        # 방금 선점한 레코드는 보존 기간 안
        assert await scheduler.sweep() == 0
        assert scheduler.last_purge_count == 0
        assert await ledger.get_count() == 2

    @pytest.mark.asyncio
    async def test_sweep_deletes_expired(self, fake_registry, temp_db_path, recording_sessionizer):
        state = {"now": utc(2024, 1, 1, 0, 0)}
        ledger = SQLiteDedupeLedger(temp_db_path, clock=lambda: state["now"])
        await ledger.init()
        await ledger.claim("u-old", utc(2024, 1, 1).date())
        state["now"] = NOW
        driver = TriggerDriver(fake_registry, ledger, recording_sessionizer)
        scheduler = TickScheduler(driver, ledger, SchedulerConfig(), RetentionConfig(horizon_days=7),
                                  clock=lambda: NOW)

        assert await scheduler.sweep() == 1

    @pytest.mark.asyncio
    async def test_sweep_passes_window_to_ledger(self):
        """정리 시 현재 탐지 윈도우를 원장에 전달"""
        store = AsyncMock()
        store.purge_older_than.return_value = 0
        scheduler = TickScheduler(AsyncMock(), store, SchedulerConfig(window_minutes=45),
                                  RetentionConfig(horizon_days=7), clock=lambda: NOW)

        await scheduler.sweep()

        store.purge_older_than.assert_awaited_once_with(timedelta(days=7), window=timedelta(minutes=45))


class TestCronSleep:
    """cron 슬롯 대기 테스트"""

    @pytest.mark.asyncio
    async def test_sleeps_until_next_slot(self, scheduler):
        with patch("midnight_scheduler.orchestrators.scheduler.asyncio.sleep", new=AsyncMock()) as sleep:
            target = await scheduler._sleep_until_next("5,20,35,50 * * * *", None)

        assert target == utc(2024, 1, 15, 5, 20)
        sleep.assert_awaited_once_with(15 * 60.0)

    @pytest.mark.asyncio
    async def test_early_wakeup_does_not_repeat_slot(self, fake_registry, ledger, recording_sessionizer):
        """sleep 이 슬롯 직전에 깨어나도 같은 슬롯을 다시 고르지 않음"""
        early = utc(2024, 1, 15, 5, 19, 59, 990000)
        driver = TriggerDriver(fake_registry, ledger, recording_sessionizer)
        scheduler = TickScheduler(driver, ledger, SchedulerConfig(), clock=lambda: early)

        with patch("midnight_scheduler.orchestrators.scheduler.asyncio.sleep", new=AsyncMock()):
            target = await scheduler._sleep_until_next("5,20,35,50 * * * *", utc(2024, 1, 15, 5, 20))

        assert target == utc(2024, 1, 15, 5, 35)

    @pytest.mark.asyncio
    async def test_disabled_loop_skips_ticks(self, scheduler):
        """비활성 상태에서는 슬롯이 와도 틱을 만들지 않음"""
        scheduler.disable()
        slots = iter([utc(2024, 1, 15, 5, 20), utc(2024, 1, 15, 5, 35)])

        async def fake_sleep(expression, last):
            try:
                return next(slots)
            except StopIteration:
                raise _StopLoop()

        with patch.object(scheduler, "_sleep_until_next", side_effect=fake_sleep), \
                patch.object(scheduler, "_spawn_tick") as spawn:
            with pytest.raises(_StopLoop):
                await scheduler._tick_loop()

        spawn.assert_not_called()
