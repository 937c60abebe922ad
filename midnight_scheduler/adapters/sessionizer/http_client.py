"""
HTTP sessionizer client for the local-midnight trigger service.

This module provides a client that invokes the downstream
sessionization RPC over HTTP, retrying transient failures.
"""

import aiohttp
import asyncio
from typing import Any, Dict, Optional
from midnight_scheduler.common.errors import DownstreamError
from midnight_scheduler.common.retry import retry_with_backoff
from midnight_scheduler.observability.logging_setup import get_logger

log = get_logger("midnight.sessionizer")


class _RetryableStatus(Exception):
    """재시도 가능한 HTTP 상태 (5xx, 429)"""

    def __init__(self, status: int, body: str):
        self.status = status
        super().__init__(f"HTTP {status}: {body[:200]}")


class HttpSessionizer:
    """세션화 RPC HTTP 클라이언트"""

    def __init__(self,
                 base_url: str,
                 token: str = "",
                 *,
                 endpoint: str = "/rpc/sessionize_recent_visits",
                 timeout: int = 30,
                 max_retries: int = 3,
                 backoff_initial: float = 0.5,
                 backoff_max: float = 10.0):
        """
        초기화합니다.

        Args:
            base_url: 세션화 서비스 기본 URL
            token: Bearer 토큰 (비어 있으면 인증 헤더 생략)
            endpoint: RPC 엔드포인트 경로
            timeout: 요청 타임아웃 (초)
            max_retries: 일시 오류 최대 재시도 횟수
            backoff_initial: 초기 백오프 (초)
            backoff_max: 최대 백오프 (초)
        """
        self.base_url = base_url.rstrip('/')
        self.endpoint = endpoint
        self.token = token
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self.session: Optional[aiohttp.ClientSession] = None

        log.info(f"세션화 클라이언트 초기화됨 url:{self.base_url}{self.endpoint}")

    async def __aenter__(self):
        """비동기 컨텍스트 매니저 진입"""
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        self.session = aiohttp.ClientSession(
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.timeout)
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """비동기 컨텍스트 매니저 종료"""
        if self.session:
            await self.session.close()
            self.session = None

    async def _post(self, payload: Dict[str, Any]) -> Any:
        if not self.session:
            raise RuntimeError("세션이 초기화되지 않았습니다. async with를 사용하세요.")

        url = f"{self.base_url}{self.endpoint}"

        async def _request():
            async with self.session.post(url, json=payload) as response:
                if response.status >= 500 or response.status == 429:
                    raise _RetryableStatus(response.status, await response.text())
                if response.status >= 400:
                    body = await response.text()
                    raise DownstreamError(f"HTTP {response.status}: {body[:200]}")
                return await response.json(content_type=None)

        return await retry_with_backoff(
            _request,
            max_retries=self.max_retries,
            base_delay=self.backoff_initial,
            max_delay=self.backoff_max,
            retry_on=(aiohttp.ClientConnectionError, asyncio.TimeoutError, _RetryableStatus),
            operation="sessionize",
        )

    async def sessionize(self, entity_id: str, gap_threshold_minutes: int, lookback_hours: int) -> int:
        """
        엔티티 세션화를 요청합니다.

        Args:
            entity_id: 엔티티 ID
            gap_threshold_minutes: 세션 분리 간격 (분)
            lookback_hours: 재처리할 기간 (시간)

        Returns:
            영향받은 세션/행 수

        Raises:
            DownstreamError: 재시도 후에도 실패하거나 4xx 응답
        """
        payload = {
            "p_entity_id": entity_id,
            "p_gap_threshold_minutes": gap_threshold_minutes,
            "p_lookback_hours": lookback_hours,
        }
        try:
            data = await self._post(payload)
        except DownstreamError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, _RetryableStatus) as e:
            raise DownstreamError(f"sessionize failed for {entity_id}: {e}") from e

        affected = _parse_affected(data)
        log.debug(f"세션화 완료 entity_id:{entity_id} affected:{affected}")
        return affected


def _parse_affected(data: Any) -> int:
    """RPC 응답에서 영향받은 행 수를 추출합니다 (정수 또는 {"affected": n})."""
    if data is None:
        return 0
    if isinstance(data, bool):
        raise DownstreamError(f"unexpected sessionize response: {data!r}")
    if isinstance(data, (int, float)):
        return int(data)
    if isinstance(data, dict):
        for key in ("affected", "sessions", "count"):
            if key in data:
                return int(data[key])
    raise DownstreamError(f"unexpected sessionize response: {data!r}")
