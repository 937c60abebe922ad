"""
Dedupe ledger port interface.

This module defines the protocol for the (entity_id, local_date)
claim ledger that guarantees one trigger per entity per local day.
"""

from datetime import date, timedelta
from typing import Optional, Protocol

class DedupeLedgerPort(Protocol):
    """중복 방지 원장 포트 인터페이스"""
    
    async def claim(self, entity_id: str, local_date: date) -> bool:
        """
        (entity_id, local_date) 를 원자적으로 삽입합니다.
        
        Args:
            entity_id: 엔티티 ID
            local_date: 엔티티가 막 진입한 로컬 날짜
            
        Returns:
            이 호출이 삽입에 성공했으면 True, 이미 존재하면 False
            
        Raises:
            StorageError: 저장소 쓰기 실패
        """
        ...
    
    async def purge_older_than(self, horizon: timedelta, *, window: Optional[timedelta] = None) -> int:
        """
        horizon 보다 오래된 레코드를 삭제합니다.
        
        Args:
            horizon: 보존 기간
            window: 현재 탐지 윈도우 (보존 기간의 하한 계산용)
            
        Returns:
            삭제된 레코드 수
        """
        ...
