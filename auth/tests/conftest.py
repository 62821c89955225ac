"""
auth 테스트 공통 Fixtures

aiohttp 세션은 MagicMock으로 대체하고, 응답은 async context manager mock으로 만든다.
"""

import json
import os
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

# 프로젝트 경로 추가
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from auth.oauth_types import ServerMetadata


def make_response(status=200, body="", json_body=None):
    """session.get/post가 반환하는 async context manager mock"""
    if json_body is not None:
        body = json.dumps(json_body)

    response = MagicMock()
    response.status = status
    response.text = AsyncMock(return_value=body)
    response.read = AsyncMock(return_value=body.encode("utf-8"))

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


@pytest.fixture
def response_factory():
    return make_response


@pytest.fixture
def http_session():
    """Mock aiohttp.ClientSession"""
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    return session


@pytest.fixture
def metadata():
    return ServerMetadata(
        issuer="https://auth.example.com",
        device_authorization_endpoint="https://auth.example.com/oauth/device",
        token_endpoint="https://auth.example.com/oauth/token",
    )


@pytest.fixture
def no_sleep():
    """asyncio.sleep을 즉시 반환하는 mock으로 교체"""
    with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep
