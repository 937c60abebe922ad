# midnight_scheduler/main.py
import os, asyncio, signal
from typing import Optional
import uvicorn
from midnight_scheduler.settings import Settings
from midnight_scheduler.observability.health import create_app
from midnight_scheduler.observability.logging_setup import setup_logging, get_logger
from midnight_scheduler.adapters.storage import SQLiteDedupeLedger, SQLiteEntityRegistry
from midnight_scheduler.adapters.sessionizer import HttpSessionizer
from midnight_scheduler.orchestrators import TriggerDriver, TickScheduler

def _b(name, default=False): return os.getenv(name, str(default)).lower() in ("1","true","yes","on")

def build_settings() -> Settings:
    """기본값 위에 환경변수를 덮어써 설정을 만듭니다 (검증 포함)."""
    s = Settings().model_dump()

    # 저장소
    s["storage"]["db_path"] = os.getenv("DB_PATH", s["storage"]["db_path"])

    # 스케줄러
    s["scheduler"]["enabled"] = _b("SCHEDULER_ENABLED", s["scheduler"]["enabled"])
    s["scheduler"]["cron"] = os.getenv("SCHEDULER_CRON", s["scheduler"]["cron"])
    s["scheduler"]["gap_threshold_minutes"] = int(os.getenv("GAP_THRESHOLD_MINUTES", s["scheduler"]["gap_threshold_minutes"]))
    s["scheduler"]["lookback_hours"] = int(os.getenv("LOOKBACK_HOURS", s["scheduler"]["lookback_hours"]))
    s["scheduler"]["window_minutes"] = int(os.getenv("WINDOW_MINUTES", s["scheduler"]["window_minutes"]))
    s["scheduler"]["max_concurrency"] = int(os.getenv("MAX_CONCURRENCY", s["scheduler"]["max_concurrency"]))

    # 보존 정리
    s["retention"]["enabled"] = _b("RETENTION_ENABLED", s["retention"]["enabled"])
    s["retention"]["cron"] = os.getenv("RETENTION_CRON", s["retention"]["cron"])
    s["retention"]["horizon_days"] = int(os.getenv("RETENTION_DAYS", s["retention"]["horizon_days"]))

    # 세션화
    s["sessionizer"]["base_url"] = os.getenv("SESSIONIZER_URL", s["sessionizer"]["base_url"])
    s["sessionizer"]["endpoint"] = os.getenv("SESSIONIZER_ENDPOINT", s["sessionizer"]["endpoint"])
    s["sessionizer"]["token"] = os.getenv("SESSIONIZER_TOKEN", s["sessionizer"]["token"])
    s["sessionizer"]["max_retries"] = int(os.getenv("SESSIONIZER_MAX_RETRIES", s["sessionizer"]["max_retries"]))

    # 관측성
    s["observability"]["metrics_enabled"] = _b("METRICS_ENABLED", s["observability"]["metrics_enabled"])
    s["observability"]["http_port"] = int(os.getenv("HTTP_PORT", s["observability"]["http_port"]))
    s["observability"]["log_level"] = os.getenv("LOG_LEVEL", s["observability"]["log_level"])
    s["observability"]["log_json"] = _b("LOG_JSON", s["observability"]["log_json"])

    return Settings.model_validate(s)

async def start_http(settings: Settings, scheduler: TickScheduler, registry) -> asyncio.Task:
    app = create_app(settings, scheduler=scheduler, registry=registry)
    return asyncio.create_task(uvicorn.Server(
        uvicorn.Config(app, host="0.0.0.0", port=settings.observability.http_port,
                       log_level=settings.observability.log_level.lower(), log_config=None)
    ).serve())

async def main():
    # 로거 초기화 (환경변수 LOG_LEVEL 우선)
    setup_logging(os.getenv("LOG_LEVEL", "INFO"), json_lines=_b("LOG_JSON"))
    log = get_logger("midnight.main")

    s = build_settings()
    setup_logging(s.observability.log_level, json_lines=s.observability.log_json)
    log.info("설정 로드 완료")

    registry = SQLiteEntityRegistry(s.storage.db_path, busy_timeout_sec=s.storage.busy_timeout_sec)
    await registry.init()
    ledger = SQLiteDedupeLedger(s.storage.db_path, busy_timeout_sec=s.storage.busy_timeout_sec)
    await ledger.init()

    sessionizer = HttpSessionizer(
        base_url=s.sessionizer.base_url,
        token=s.sessionizer.token,
        endpoint=s.sessionizer.endpoint,
        timeout=s.sessionizer.timeout_sec,
        max_retries=s.sessionizer.max_retries,
        backoff_initial=s.sessionizer.backoff_initial_sec,
        backoff_max=s.sessionizer.backoff_max_sec,
    )

    async with sessionizer:
        driver = TriggerDriver(registry, ledger, sessionizer, max_concurrency=s.scheduler.max_concurrency)
        scheduler = TickScheduler(driver, ledger, s.scheduler, s.retention)
        log.info("스케줄러 생성 완료")

        http_task: Optional[asyncio.Task] = await start_http(s, scheduler, registry)
        log.info(f"HTTP 서버 시작됨 port:{s.observability.http_port}")

        stop = asyncio.Future()
        try:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                try: loop.add_signal_handler(sig, lambda: (not stop.done()) and stop.set_result(True))
                except NotImplementedError: pass
        except RuntimeError: pass

        sched_task = asyncio.create_task(scheduler.start())
        await stop
        log.info("종료 신호 수신, 스케줄러 중지")
        sched_task.cancel()
        if http_task: http_task.cancel()
        await asyncio.gather(sched_task, http_task, return_exceptions=True)

def run():
    asyncio.run(main())

if __name__ == "__main__":
    run()
