"""
Token Store Tests
SQLite / 메모리 토큰 저장소 테스트
"""

import os
import shutil
import tempfile
from datetime import timedelta

import pytest

from auth.oauth_types import StoredToken, TokenResponse
from auth.time_utils import utc_now
from auth.token_store import MemoryTokenStore, SqliteTokenStore
from core.protocols import TokenStoreProtocol


SERVER = "https://mail.example.com"


@pytest.fixture
def temp_directory():
    """임시 디렉토리 생성 및 정리"""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def sqlite_store(temp_directory):
    return SqliteTokenStore(os.path.join(temp_directory, "nested", "tokens.db"))


class TestSqliteTokenStore:
    """SqliteTokenStore 테스트"""

    def test_implements_protocol(self, sqlite_store):
        assert isinstance(sqlite_store, TokenStoreProtocol)

    def test_save_and_get(self, sqlite_store):
        sqlite_store.save(SERVER, "kim@example.com", TokenResponse(
            access_token="access-1", expires_in=3600, refresh_token="refresh-1", scope="mail"
        ))

        token = sqlite_store.get(SERVER, "kim@example.com")

        assert token.access_token == "access-1"
        assert token.refresh_token == "refresh-1"
        assert token.token_type == "Bearer"
        assert token.is_valid()
        assert token.expires_at > utc_now() + timedelta(minutes=59)

    def test_token_without_expiry_round_trips_as_none(self, sqlite_store):
        sqlite_store.save(SERVER, "kim@example.com", TokenResponse(access_token="forever"))

        token = sqlite_store.get(SERVER, "kim@example.com")

        assert token.expires_at is None
        assert token.is_valid()

    def test_keys_are_server_and_identity(self, sqlite_store):
        sqlite_store.save(SERVER, "a@example.com", TokenResponse(access_token="a"))
        sqlite_store.save("https://other.example.com", "a@example.com", TokenResponse(access_token="b"))

        assert sqlite_store.get(SERVER, "a@example.com").access_token == "a"
        assert sqlite_store.get("https://other.example.com", "a@example.com").access_token == "b"
        assert sqlite_store.get(SERVER, "b@example.com") is None

    def test_save_replaces_existing(self, sqlite_store):
        sqlite_store.save(SERVER, "a@example.com", TokenResponse(access_token="old"))
        sqlite_store.save(SERVER, "a@example.com", TokenResponse(access_token="new"))

        assert sqlite_store.get(SERVER, "a@example.com").access_token == "new"
        assert sqlite_store.list_identities(SERVER) == ["a@example.com"]

    def test_clear(self, sqlite_store):
        sqlite_store.save(SERVER, "a@example.com", TokenResponse(access_token="a"))

        sqlite_store.clear(SERVER, "a@example.com")
        sqlite_store.clear(SERVER, "missing@example.com")

        assert sqlite_store.get(SERVER, "a@example.com") is None

    def test_cleanup_only_removes_unrefreshable(self, sqlite_store):
        sqlite_store.save(SERVER, "expired@example.com", TokenResponse(access_token="x", expires_in=1))
        sqlite_store.save(SERVER, "refreshable@example.com", TokenResponse(
            access_token="y", expires_in=1, refresh_token="r"
        ))
        sqlite_store.save(SERVER, "forever@example.com", TokenResponse(access_token="z"))

        # 만료 시각을 과거로 이동
        conn = sqlite_store._connect()
        try:
            past = (utc_now() - timedelta(hours=1)).isoformat()
            conn.execute(
                "UPDATE oauth_token_info SET access_token_expires_at = ? "
                "WHERE access_token_expires_at IS NOT NULL",
                (past,),
            )
            conn.commit()
        finally:
            conn.close()

        assert sqlite_store.cleanup_expired_tokens() == 1
        assert sorted(sqlite_store.list_identities(SERVER)) == ["forever@example.com", "refreshable@example.com"]


class TestMemoryTokenStore:
    """MemoryTokenStore 테스트"""

    def test_round_trip(self):
        store = MemoryTokenStore()
        store.save(SERVER, "a@example.com", TokenResponse(access_token="a", refresh_token="r"))

        token = store.get(SERVER, "a@example.com")
        assert token.access_token == "a"
        assert token.refresh_token == "r"

        store.clear(SERVER, "a@example.com")
        assert store.get(SERVER, "a@example.com") is None

    def test_put_existing_token(self):
        store = MemoryTokenStore()
        token = StoredToken(access_token="a", expires_at=utc_now() - timedelta(seconds=1))

        store.put(SERVER, "a@example.com", token)

        assert store.get(SERVER, "a@example.com").is_expired()
        assert store.list_identities(SERVER) == ["a@example.com"]
