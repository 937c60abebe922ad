"""
SQLite-based entity timezone registry for the local-midnight trigger service.

This module exposes the entity table as a read-only view of
(entity_id, timezone) pairs. A partial index on present timezones keeps
the candidate scan independent of entities that have none.
"""

import aiosqlite
import time
from typing import List, Optional
from midnight_scheduler.common.errors import StorageError
from midnight_scheduler.core.models import Entity
from midnight_scheduler.observability.logging_setup import get_logger

log = get_logger("midnight.registry")

# SQLite 스키마
SCHEMA = """
CREATE TABLE IF NOT EXISTS entities (
    entity_id TEXT PRIMARY KEY,
    timezone TEXT,
    updated_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_entities_timezone
    ON entities(timezone, entity_id)
    WHERE timezone IS NOT NULL;
"""

CANDIDATES_SQL = "SELECT entity_id, timezone FROM entities WHERE timezone IS NOT NULL"


class SQLiteEntityRegistry:
    """SQLite 기반 엔티티 타임존 레지스트리"""

    def __init__(self, path: str, *, busy_timeout_sec: float = 10.0):
        """
        초기화합니다.

        Args:
            path: SQLite 데이터베이스 파일 경로
            busy_timeout_sec: 잠금 대기 시간 (초)
        """
        self.path = path
        self.busy_timeout = busy_timeout_sec
        log.info(f"SQLiteEntityRegistry 초기화: {path}")

    def _connect(self):
        return aiosqlite.connect(self.path, timeout=self.busy_timeout)

    async def init(self) -> None:
        """데이터베이스를 초기화합니다."""
        try:
            async with self._connect() as db:
                await db.executescript(SCHEMA)
                await db.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"registry init failed: {e}") from e
        log.info("SQLiteEntityRegistry 스키마 초기화 완료")

    async def list_candidates(self) -> List[Entity]:
        """
        타임존이 있는 엔티티를 모두 조회합니다.

        Returns:
            Entity 목록

        Raises:
            StorageError: 조회 실패 (틱 전체를 실패시킴)
        """
        try:
            async with self._connect() as db:
                cursor = await db.execute(CANDIDATES_SQL)
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            log.error(f"레지스트리 조회 실패 error:{e}")
            raise StorageError(f"registry read failed: {e}") from e
        return [Entity(entity_id=row[0], timezone=row[1]) for row in rows]

    async def explain_candidates(self) -> List[str]:
        """후보 조회 쿼리의 실행 계획을 반환합니다 (인덱스 사용 확인용)."""
        async with self._connect() as db:
            cursor = await db.execute(f"EXPLAIN QUERY PLAN {CANDIDATES_SQL}")
            rows = await cursor.fetchall()
        return [row[-1] for row in rows]

    # ---- 아래는 테이블 관리용 (포트에는 포함되지 않음) ----

    async def upsert_entity(self, entity_id: str, timezone: Optional[str]) -> None:
        """
        엔티티 타임존을 추가하거나 갱신합니다.

        Args:
            entity_id: 엔티티 ID
            timezone: IANA 타임존 이름, None이면 후보에서 제외
        """
        try:
            async with self._connect() as db:
                await db.execute(
                    "INSERT INTO entities (entity_id, timezone, updated_at) VALUES (?, ?, ?) "
                    "ON CONFLICT (entity_id) DO UPDATE SET timezone = excluded.timezone, "
                    "updated_at = excluded.updated_at",
                    (entity_id, timezone, int(time.time()))
                )
                await db.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"upsert failed for {entity_id}: {e}") from e

    async def get_timezone(self, entity_id: str) -> Optional[str]:
        """엔티티의 타임존을 조회합니다."""
        try:
            async with self._connect() as db:
                cursor = await db.execute(
                    "SELECT timezone FROM entities WHERE entity_id = ?", (entity_id,)
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageError(f"lookup failed for {entity_id}: {e}") from e
        return row[0] if row else None

    async def get_count(self) -> int:
        """전체 엔티티 수를 반환합니다."""
        try:
            async with self._connect() as db:
                cursor = await db.execute("SELECT COUNT(*) FROM entities")
                result = await cursor.fetchone()
                return result[0] if result else 0
        except aiosqlite.Error as e:
            raise StorageError(f"count failed: {e}") from e
