"""
테스트 설정 및 픽스처

이 모듈은 pytest 설정과 공통 픽스처를 제공합니다.
"""

import pytest
import asyncio
import tempfile
import os
from tests.helpers import FakeRegistry, RecordingSessionizer
from unittest.mock import AsyncMock
from midnight_scheduler.settings import Settings
from midnight_scheduler.core.models import Entity


@pytest.fixture
def temp_db_path():
    """임시 데이터베이스 파일 경로"""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        temp_path = f.name
    yield temp_path
    # 테스트 후 파일 정리 (WAL 보조 파일 포함)
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(temp_path + suffix):
            os.unlink(temp_path + suffix)


@pytest.fixture
def sample_settings():
    """테스트용 설정"""
    settings = Settings()
    settings.observability.service_name = "test-service"
    settings.observability.build_version = "1.0.0"
    settings.observability.log_level = "INFO"
    settings.observability.http_port = 8080
    return settings


@pytest.fixture
def sample_entities():
    """테스트용 엔티티 목록"""
    return [
        Entity(entity_id="u-ny", timezone="America/New_York"),
        Entity(entity_id="u-la", timezone="America/Los_Angeles"),
        Entity(entity_id="u-seoul", timezone="Asia/Seoul"),
        Entity(entity_id="u-fixed5", timezone="Etc/GMT+5"),
        Entity(entity_id="u-none", timezone=None),
    ]


@pytest.fixture
def fake_registry(sample_entities):
    """테스트용 레지스트리"""
    return FakeRegistry(sample_entities)


@pytest.fixture
def recording_sessionizer():
    """테스트용 세션화 포트"""
    return RecordingSessionizer()


@pytest.fixture
def mock_dependencies():
    """테스트용 의존성 목업"""
    return {
        'registry': AsyncMock(),
        'ledger': AsyncMock(),
        'sessionizer': AsyncMock(),
    }


# pytest 설정
def pytest_configure(config):
    """pytest 설정"""
    config.addinivalue_line(
        "markers", "slow: 느린 테스트 마커"
    )
    config.addinivalue_line(
        "markers", "integration: 통합 테스트 마커"
    )


def pytest_collection_modifyitems(config, items):
    """테스트 아이템 수정"""
    for item in items:
        # 비동기 테스트에 asyncio 마커 추가
        if asyncio.iscoroutinefunction(getattr(item, "function", None)):
            item.add_marker(pytest.mark.asyncio)

        # 느린 테스트 마커 추가
        if "dst" in item.name or "stress" in item.name:
            item.add_marker(pytest.mark.slow)

        # 통합 테스트 마커 추가
        if "integration" in item.name or "scenario" in item.nodeid:
            item.add_marker(pytest.mark.integration)
