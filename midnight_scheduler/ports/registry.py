"""
Entity timezone registry port interface.

This module defines the protocol for reading entities and their
IANA timezones.
"""

from typing import Protocol, Sequence
from midnight_scheduler.core.models import Entity

class EntityRegistryPort(Protocol):
    """엔티티 타임존 레지스트리 포트 인터페이스 (읽기 전용)"""
    
    async def list_candidates(self) -> Sequence[Entity]:
        """
        타임존이 설정된 모든 엔티티를 조회합니다.
        
        Returns:
            (entity_id, timezone) 을 담은 Entity 목록
            
        Raises:
            StorageError: 저장소 조회 실패
        """
        ...
