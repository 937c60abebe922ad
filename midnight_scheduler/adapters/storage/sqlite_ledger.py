"""
SQLite-based dedupe ledger for the local-midnight trigger service.

This module implements the (entity_id, local_date) claim ledger.
The composite primary key makes every claim a single conflict-checked
insert, so concurrent ticks and workers need no extra locking.
"""

import aiosqlite
from datetime import date, datetime, timedelta, timezone
from typing import Callable, List, Optional
from midnight_scheduler.common.errors import StorageError
from midnight_scheduler.core.cadence import retention_floor
from midnight_scheduler.core.models import ClaimRecord
from midnight_scheduler.observability.logging_setup import get_logger

log = get_logger("midnight.ledger")

# SQLite 스키마
SCHEMA = """
PRAGMA journal_mode=WAL;
CREATE TABLE IF NOT EXISTS midnight_runs (
    entity_id TEXT NOT NULL,
    local_date TEXT NOT NULL,
    triggered_at INTEGER NOT NULL,
    PRIMARY KEY (entity_id, local_date)
);
CREATE INDEX IF NOT EXISTS idx_midnight_runs_triggered ON midnight_runs(triggered_at DESC);
"""

# 가장 긴 로컬 하루(25시간)보다 짧은 보존 기간은 아직 진행 중인 날짜의 레코드를 지울 수 있음
MIN_RETENTION = retention_floor()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SQLiteDedupeLedger:
    """SQLite 기반 중복 방지 원장"""

    def __init__(self, path: str, *, busy_timeout_sec: float = 10.0,
                 clock: Callable[[], datetime] = _utcnow):
        """
        초기화합니다.

        Args:
            path: SQLite 데이터베이스 파일 경로
            busy_timeout_sec: 다른 연결이 쓰기 잠금을 잡고 있을 때 대기 시간 (초)
            clock: 현재 시각 공급자 (테스트용)
        """
        self.path = path
        self.busy_timeout = busy_timeout_sec
        self.clock = clock
        log.info(f"SQLiteDedupeLedger 초기화: {path}")

    def _connect(self):
        return aiosqlite.connect(self.path, timeout=self.busy_timeout)

    async def init(self) -> None:
        """데이터베이스를 초기화합니다."""
        try:
            async with self._connect() as db:
                await db.executescript(SCHEMA)
                await db.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"ledger init failed: {e}") from e
        log.info("SQLiteDedupeLedger 스키마 초기화 완료")

    async def claim(self, entity_id: str, local_date: date) -> bool:
        """
        (entity_id, local_date) 를 원자적으로 삽입합니다.

        Args:
            entity_id: 엔티티 ID
            local_date: 엔티티가 막 진입한 로컬 날짜

        Returns:
            이 호출이 삽입했으면 True, 이미 있으면 False

        Raises:
            StorageError: 저장소 오류 (틱 전체를 실패시킴)
        """
        triggered_at = int(self.clock().timestamp())
        try:
            async with self._connect() as db:
                cursor = await db.execute(
                    "INSERT INTO midnight_runs (entity_id, local_date, triggered_at) VALUES (?, ?, ?) "
                    "ON CONFLICT (entity_id, local_date) DO NOTHING",
                    (entity_id, local_date.isoformat(), triggered_at)
                )
                inserted = cursor.rowcount
                await db.commit()
        except aiosqlite.Error as e:
            log.error(f"원장 선점 실패 entity_id:{entity_id} local_date:{local_date} error:{e}")
            raise StorageError(f"claim failed for {entity_id}/{local_date}: {e}") from e
        return inserted > 0

    async def purge_older_than(self, horizon: timedelta, now: Optional[datetime] = None,
                               *, window: Optional[timedelta] = None) -> int:
        """
        보존 기간이 지난 레코드를 정리합니다.

        Args:
            horizon: 보존 기간 (최소 window + 25시간)
            now: 기준 시각, None이면 현재 시각 사용
            window: 현재 탐지 윈도우, None이면 윈도우 없이 계산

        Returns:
            삭제된 레코드 수
        """
        floor = retention_floor(window) if window is not None else MIN_RETENTION
        if horizon < floor:
            raise ValueError(f"retention horizon must be at least {floor}, got {horizon}")

        cutoff = int(((now or self.clock()) - horizon).timestamp())
        try:
            async with self._connect() as db:
                cursor = await db.execute(
                    "DELETE FROM midnight_runs WHERE triggered_at < ?",
                    (cutoff,)
                )
                await db.commit()
                deleted = cursor.rowcount
        except aiosqlite.Error as e:
            raise StorageError(f"purge failed: {e}") from e
        if deleted > 0:
            log.info(f"보존 기간 지난 레코드 {deleted}개 정리됨")
        return deleted

    async def has_claim(self, entity_id: str, local_date: date) -> bool:
        """해당 쌍이 이미 선점되었는지 확인합니다."""
        try:
            async with self._connect() as db:
                cursor = await db.execute(
                    "SELECT 1 FROM midnight_runs WHERE entity_id = ? AND local_date = ?",
                    (entity_id, local_date.isoformat())
                )
                return await cursor.fetchone() is not None
        except aiosqlite.Error as e:
            raise StorageError(f"lookup failed: {e}") from e

    async def list_recent(self, limit: int = 50) -> List[ClaimRecord]:
        """
        최근 선점 기록을 조회합니다.

        Args:
            limit: 최대 조회 개수

        Returns:
            triggered_at 내림차순 ClaimRecord 목록
        """
        try:
            async with self._connect() as db:
                cursor = await db.execute(
                    "SELECT entity_id, local_date, triggered_at FROM midnight_runs "
                    "ORDER BY triggered_at DESC, entity_id LIMIT ?",
                    (limit,)
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageError(f"list failed: {e}") from e
        return [
            ClaimRecord(
                entity_id=row[0],
                local_date=date.fromisoformat(row[1]),
                triggered_at=datetime.fromtimestamp(row[2], tz=timezone.utc),
            )
            for row in rows
        ]

    async def get_count(self) -> int:
        """
        현재 저장된 레코드 수를 반환합니다.

        Returns:
            레코드 수
        """
        try:
            async with self._connect() as db:
                cursor = await db.execute("SELECT COUNT(*) FROM midnight_runs")
                result = await cursor.fetchone()
                return result[0] if result else 0
        except aiosqlite.Error as e:
            raise StorageError(f"count failed: {e}") from e
