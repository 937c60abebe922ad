"""
Downstream processor port interface.

This module defines the protocol for the sessionization service
invoked once an entity's local date flips.
"""

from typing import Protocol

class SessionizerPort(Protocol):
    """다운스트림 세션화 포트 인터페이스"""
    
    async def sessionize(self, entity_id: str, gap_threshold_minutes: int, lookback_hours: int) -> int:
        """
        엔티티의 최근 방문 기록을 세션화합니다.
        
        Args:
            entity_id: 엔티티 ID
            gap_threshold_minutes: 세션 분리 간격 (분)
            lookback_hours: 재처리할 기간 (시간)
            
        Returns:
            영향받은 세션/행 수
            
        Raises:
            DownstreamError: 호출 실패
        """
        ...
