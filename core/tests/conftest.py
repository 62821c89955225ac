"""
core 테스트 공통 Fixtures
"""

import os
import sys
from unittest.mock import AsyncMock, patch

import pytest

# 프로젝트 경로 추가
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))


@pytest.fixture
def no_sleep():
    """asyncio.sleep을 즉시 반환하는 mock으로 교체"""
    with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep
