"""
HTTP endpoints for the local-midnight trigger service.

This module implements health, readiness, metrics and info endpoints
together with the operational controls: enable/disable the periodic
trigger, adjust cadence and window, run a manual tick, force a re-run
for one entity, sweep the ledger and preview upcoming crossings.
"""

from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import Response, JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from pydantic import BaseModel, Field
import time

from midnight_scheduler.common.errors import CadenceError, StorageError
from midnight_scheduler.core.detector import upcoming_crossings
from midnight_scheduler.settings import Settings
from midnight_scheduler.observability.logging_setup import get_logger

log = get_logger("midnight.http")


class ScheduleUpdate(BaseModel):
    cron: Optional[str] = None
    window_minutes: Optional[int] = Field(default=None, gt=0)


class RerunRequest(BaseModel):
    gap_threshold_minutes: Optional[int] = Field(default=None, gt=0)
    lookback_hours: Optional[int] = Field(default=None, gt=0)


def create_app(settings: Settings, scheduler=None, registry=None) -> FastAPI:
    """
    FastAPI 애플리케이션을 생성합니다.

    Args:
        settings: 애플리케이션 설정
        scheduler: TickScheduler (없으면 운영 엔드포인트는 503)
        registry: 엔티티 레지스트리 (미리보기용)
    """
    app = FastAPI(
        title=settings.observability.service_name,
        version=settings.observability.build_version,
        description="Per-entity local-midnight trigger service"
    )

    start_time = time.time()

    def _require_scheduler():
        if scheduler is None:
            raise HTTPException(status_code=503, detail="scheduler not running")
        return scheduler

    @app.get("/health")
    async def health():
        """헬스 체크 엔드포인트"""
        return JSONResponse({
            "status": "ok",
            "service": settings.observability.service_name,
            "timestamp": time.time()
        })

    @app.get("/ready")
    async def ready():
        """레디니스 체크 엔드포인트 (원장 DB 접근 확인)"""
        if scheduler is not None:
            try:
                await scheduler.ledger.get_count()
            except StorageError as e:
                log.error(f"레디니스 체크 실패 error:{e}")
                return JSONResponse(status_code=503, content={
                    "status": "unavailable",
                    "service": settings.observability.service_name,
                    "error": str(e),
                    "timestamp": time.time()
                })
        return JSONResponse({
            "status": "ready",
            "service": settings.observability.service_name,
            "timestamp": time.time()
        })

    @app.get("/metrics")
    async def metrics():
        """Prometheus 메트릭 엔드포인트"""
        if not settings.observability.metrics_enabled:
            raise HTTPException(status_code=503, detail="Metrics disabled")

        return Response(
            generate_latest(),
            media_type=CONTENT_TYPE_LATEST
        )

    @app.get("/info")
    async def info():
        """서비스 정보 엔드포인트"""
        uptime = time.time() - start_time
        return JSONResponse({
            "service": settings.observability.service_name,
            "version": settings.observability.build_version,
            "build_date": settings.observability.build_date,
            "uptime_seconds": int(uptime),
            "metrics_enabled": settings.observability.metrics_enabled,
            "log_level": settings.observability.log_level
        })

    @app.get("/scheduler")
    async def scheduler_status():
        """스케줄러 상태 (마지막 틱 결과, 마지막 오류)"""
        return _require_scheduler().status()

    @app.post("/scheduler/enable")
    async def scheduler_enable():
        """주기 트리거 활성화"""
        s = _require_scheduler()
        s.enable()
        return {"ok": True, "enabled": s.enabled}

    @app.post("/scheduler/disable")
    async def scheduler_disable():
        """주기 트리거 비활성화"""
        s = _require_scheduler()
        s.disable()
        return {"ok": True, "enabled": s.enabled}

    @app.put("/scheduler/config")
    async def scheduler_config(update: ScheduleUpdate):
        """주기(cron)와 윈도우 변경 (윈도우 > 틱 간격)"""
        s = _require_scheduler()
        try:
            cfg = s.reconfigure(cron=update.cron, window_minutes=update.window_minutes)
        except CadenceError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return {"ok": True, "cron": cfg.cron, "window_minutes": cfg.window_minutes}

    @app.post("/scheduler/tick")
    async def scheduler_tick():
        """수동 틱 실행 (배포 직후 확인용)"""
        s = _require_scheduler()
        try:
            runs = await s.trigger()
        except StorageError as e:
            log.error(f"수동 틱 실패 error:{e}")
            raise HTTPException(status_code=503, detail=f"Tick failed: {e}")
        return {"ok": True, "runs_triggered": runs, "result": s.last_result.model_dump(mode="json")}

    @app.post("/entities/{entity_id}/rerun")
    async def entity_rerun(entity_id: str, req: Optional[RerunRequest] = None):
        """원장을 우회하여 엔티티 하나를 강제로 재처리"""
        s = _require_scheduler()
        req = req or RerunRequest()
        gap = req.gap_threshold_minutes or s.config.gap_threshold_minutes
        lookback = req.lookback_hours or s.config.lookback_hours
        try:
            affected = await s.driver.force_run(entity_id, gap, lookback)
        except Exception as e:
            log.error(f"수동 재실행 실패 entity_id:{entity_id} error:{e}")
            raise HTTPException(status_code=502, detail=f"Rerun failed: {e}")
        log.info(f"수동 재실행 완료 entity_id:{entity_id} affected:{affected}")
        return {"ok": True, "entity_id": entity_id, "affected": affected}

    @app.post("/ledger/purge")
    async def ledger_purge():
        """원장 보존 정리 실행"""
        s = _require_scheduler()
        try:
            deleted = await s.sweep()
        except StorageError as e:
            raise HTTPException(status_code=503, detail=f"Purge failed: {e}")
        return {"ok": True, "deleted": deleted, "horizon_days": s.retention.horizon_days}

    @app.get("/ledger/recent")
    async def ledger_recent(limit: int = Query(default=50, ge=1, le=1000)):
        """최근 선점 기록 조회"""
        s = _require_scheduler()
        records = await s.ledger.list_recent(limit)
        return {"count": len(records), "records": [r.model_dump(mode="json") for r in records]}

    @app.get("/crossings/upcoming")
    async def crossings_upcoming(minutes: int = Query(default=30, ge=1, le=1440)):
        """앞으로 minutes 안에 로컬 자정을 넘을 엔티티 미리보기"""
        if registry is None:
            raise HTTPException(status_code=503, detail="registry not configured")
        s = _require_scheduler()
        entities = await registry.list_candidates()
        upcoming = upcoming_crossings(entities, s.clock(), timedelta(minutes=minutes))
        return {"minutes": minutes, "count": len(upcoming),
                "entities": [u.model_dump(mode="json") for u in upcoming]}

    @app.get("/")
    async def root():
        """루트 엔드포인트"""
        return JSONResponse({
            "service": settings.observability.service_name,
            "version": settings.observability.build_version,
            "endpoints": {
                "health": "/health",
                "ready": "/ready",
                "metrics": "/metrics",
                "info": "/info",
                "scheduler": "/scheduler",
                "rerun": "/entities/{entity_id}/rerun",
                "ledger_purge": "/ledger/purge",
                "upcoming": "/crossings/upcoming"
            }
        })

    return app
