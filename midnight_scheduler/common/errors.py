"""
Error types for the local-midnight trigger service.

This module defines the exception hierarchy shared by the core,
the storage adapters and the trigger driver.
"""


class MidnightError(Exception):
    """서비스 공통 예외"""


class InvalidTimezoneError(MidnightError):
    """IANA 타임존 이름이 비어 있거나 알 수 없음 (설정 오류, 재시도 안 함)"""

    def __init__(self, timezone_name):
        self.timezone_name = timezone_name
        super().__init__(f"invalid timezone: {timezone_name!r}")


class StorageError(MidnightError):
    """레지스트리/원장 저장소 오류 (틱 전체 실패)"""


class DownstreamError(MidnightError):
    """다운스트림 세션화 호출 실패"""


class CadenceError(MidnightError, ValueError):
    """잘못된 cron 표현식 또는 틱 간격보다 짧은 윈도우"""
