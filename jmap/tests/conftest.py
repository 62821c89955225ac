"""
jmap 테스트 공통 Fixtures

테스트 구성:
    - http_session: MagicMock aiohttp 세션 (get = 세션 문서, request = API / blob)
    - token_store: 유효한 토큰이 들어 있는 MemoryTokenStore
    - oauth_client: 위 두 가지와 mock 토큰 갱신기를 사용하는 JmapOAuthClient
"""

import json
import os
import sys
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

# 프로젝트 경로 추가
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from auth.oauth_types import ServerMetadata, StoredToken, TokenResponse
from auth.time_utils import utc_now
from auth.token_store import MemoryTokenStore
from jmap.jmap_oauth_client import JmapOAuthClient


SERVER = "https://mail.example.com"
IDENTITY = "kim@example.com"
ACCOUNT_ID = "u1234"


def make_response(status=200, body="", json_body=None, raw=None):
    """session.get/request가 반환하는 async context manager mock"""
    if json_body is not None:
        body = json.dumps(json_body)

    response = MagicMock()
    response.status = status
    response.text = AsyncMock(return_value=body)
    response.read = AsyncMock(return_value=raw if raw is not None else body.encode("utf-8"))

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


def jmap_reply(*method_responses):
    """methodResponses 응답 mock"""
    return make_response(200, json_body={"methodResponses": list(method_responses), "sessionState": "s1"})


def session_document(**overrides):
    document = {
        "apiUrl": f"{SERVER}/jmap/api/",
        "downloadUrl": f"{SERVER}/jmap/download/{{accountId}}/{{blobId}}/{{name}}?accept={{type}}",
        "uploadUrl": f"{SERVER}/jmap/upload/{{accountId}}/",
        "eventSourceUrl": f"{SERVER}/jmap/eventsource/",
        "accounts": {
            ACCOUNT_ID: {"name": IDENTITY, "isPersonal": True, "isReadOnly": False},
        },
        "primaryAccounts": {"urn:ietf:params:jmap:mail": ACCOUNT_ID},
        "capabilities": {"urn:ietf:params:jmap:core": {}, "urn:ietf:params:jmap:mail": {}},
        "state": "s1",
    }
    document.update(overrides)
    return document


@pytest.fixture
def response_factory():
    return make_response


@pytest.fixture
def http_session():
    """Mock aiohttp.ClientSession - 기본으로 세션 문서를 반환"""
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    session.get = MagicMock(side_effect=lambda url, **kwargs: make_response(200, json_body=session_document()))
    return session


@pytest.fixture
def metadata():
    return ServerMetadata(
        issuer="https://auth.example.com",
        device_authorization_endpoint="https://auth.example.com/oauth/device",
        token_endpoint="https://auth.example.com/oauth/token",
    )


@pytest.fixture
def token_store():
    store = MemoryTokenStore()
    store.put(SERVER, IDENTITY, StoredToken(
        access_token="valid-token",
        expires_at=utc_now() + timedelta(hours=1),
        refresh_token="refresh-1",
    ))
    return store


@pytest.fixture
def token_refresh():
    """Mock OAuthTokenRefresh - 호출마다 새 토큰 발급"""
    refresher = MagicMock()
    counter = {"n": 0}

    async def _refresh(refresh_token):
        counter["n"] += 1
        return TokenResponse(
            access_token=f"refreshed-{counter['n']}",
            expires_in=3600,
            refresh_token=refresh_token,
        )

    refresher.refresh = AsyncMock(side_effect=_refresh)
    refresher.close = AsyncMock()
    return refresher


@pytest.fixture
def oauth_client(http_session, token_store, metadata, token_refresh):
    client = JmapOAuthClient(
        SERVER, IDENTITY, ACCOUNT_ID, token_store, metadata, "jmap-connector",
        http_session=http_session, token_refresh=token_refresh,
    )
    # 150ms 워밍업은 별도 테스트에서 확인
    client._first_request = False
    return client


@pytest.fixture
def no_sleep():
    """asyncio.sleep을 즉시 반환하는 mock으로 교체"""
    with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep
