"""
Token Store Module
(server, identity) 단위 OAuth 토큰 저장소 - SQLite 구현과 메모리 구현
"""

import logging
import os
import sqlite3
import threading
from typing import Dict, List, Optional, Tuple

from .oauth_types import StoredToken, TokenResponse
from .time_utils import expires_at_from, parse_iso_to_utc, utc_now

logger = logging.getLogger(__name__)


class SqliteTokenStore:
    """SQLite 토큰 저장소 - oauth_token_info 테이블 사용"""

    def __init__(self, db_path: str = "database/tokens.db"):
        """
        데이터베이스 초기화

        Args:
            db_path: 데이터베이스 파일 경로 (상위 디렉토리는 자동 생성)
        """
        self.db_path = db_path
        self._lock = threading.Lock()

        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        self.ensure_tables()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def ensure_tables(self):
        """필요한 테이블 생성"""
        conn = self._connect()
        try:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS oauth_token_info (
                    server TEXT NOT NULL,
                    identity TEXT NOT NULL,
                    access_token TEXT NOT NULL,
                    token_type TEXT NOT NULL DEFAULT 'Bearer',
                    refresh_token TEXT,
                    scope TEXT,
                    access_token_expires_at TIMESTAMP,  -- ISO-8601 UTC, NULL이면 만료 없음
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (server, identity)
                );

                CREATE INDEX IF NOT EXISTS idx_oauth_token_expires
                    ON oauth_token_info(access_token_expires_at);
            """)
            conn.commit()
            logger.debug(f"Token tables ready: {self.db_path}")
        except sqlite3.Error as e:
            logger.error(f"❌ Failed to create tables: {e}")
            raise
        finally:
            conn.close()

    def get(self, server: str, identity: str) -> Optional[StoredToken]:
        """
        저장된 토큰 조회

        Args:
            server: 서버 URL
            identity: 사용자 식별자 (이메일 등)

        Returns:
            StoredToken 또는 None
        """
        conn = self._connect()
        try:
            row = conn.execute("""
                SELECT access_token, token_type, refresh_token, access_token_expires_at
                FROM oauth_token_info
                WHERE server = ? AND identity = ?
            """, (server, identity)).fetchone()
        finally:
            conn.close()

        if not row:
            return None

        expires_at = row['access_token_expires_at']
        return StoredToken(
            access_token=row['access_token'],
            token_type=row['token_type'] or 'Bearer',
            refresh_token=row['refresh_token'],
            expires_at=parse_iso_to_utc(expires_at) if expires_at else None,
        )

    def save(self, server: str, identity: str, token_grant: TokenResponse):
        """
        토큰 저장 (기존 행 교체)

        Args:
            server: 서버 URL
            identity: 사용자 식별자
            token_grant: 토큰 엔드포인트 응답
        """
        expires_at = expires_at_from(token_grant.expires_in)

        with self._lock:
            conn = self._connect()
            try:
                conn.execute("""
                    INSERT OR REPLACE INTO oauth_token_info (
                        server,
                        identity,
                        access_token,
                        token_type,
                        refresh_token,
                        scope,
                        access_token_expires_at,
                        created_at,
                        updated_at
                    ) VALUES (
                        ?, ?, ?, ?, ?, ?, ?,
                        COALESCE(
                            (SELECT created_at FROM oauth_token_info WHERE server = ? AND identity = ?),
                            CURRENT_TIMESTAMP
                        ),
                        CURRENT_TIMESTAMP
                    )
                """, (
                    server,
                    identity,
                    token_grant.access_token,
                    token_grant.token_type or 'Bearer',
                    token_grant.refresh_token,
                    token_grant.scope,
                    expires_at.isoformat() if expires_at else None,
                    server,
                    identity,
                ))
                conn.commit()
            except sqlite3.Error as e:
                logger.error(f"❌ Failed to save token for {identity}@{server}: {e}")
                conn.rollback()
                raise
            finally:
                conn.close()

        logger.info(f"✅ Token saved for: {identity} ({server})")

    def clear(self, server: str, identity: str):
        """토큰 삭제 (로그아웃 / 재인증 필요)"""
        with self._lock:
            conn = self._connect()
            try:
                cursor = conn.execute(
                    "DELETE FROM oauth_token_info WHERE server = ? AND identity = ?",
                    (server, identity),
                )
                conn.commit()
                removed = cursor.rowcount
            finally:
                conn.close()

        if removed > 0:
            logger.info(f"Token cleared for: {identity} ({server})")

    def list_identities(self, server: str) -> List[str]:
        """
        서버에 토큰이 저장된 사용자 목록

        Returns:
            최근 갱신 순 identity 리스트
        """
        conn = self._connect()
        try:
            rows = conn.execute("""
                SELECT identity FROM oauth_token_info
                WHERE server = ?
                ORDER BY updated_at DESC
            """, (server,)).fetchall()
        finally:
            conn.close()
        return [row['identity'] for row in rows]

    def cleanup_expired_tokens(self) -> int:
        """
        갱신 불가능한 만료 토큰 정리 (refresh token이 없는 행만)

        Returns:
            정리된 토큰 수
        """
        # ISO 문자열은 같은 UTC 오프셋 형식이므로 문자열 비교로 충분
        now = utc_now().isoformat()

        with self._lock:
            conn = self._connect()
            try:
                cursor = conn.execute("""
                    DELETE FROM oauth_token_info
                    WHERE access_token_expires_at IS NOT NULL
                      AND access_token_expires_at < ?
                      AND (refresh_token IS NULL OR refresh_token = '')
                """, (now,))
                conn.commit()
                count = cursor.rowcount
            finally:
                conn.close()

        if count > 0:
            logger.info(f"✅ Cleaned up {count} expired tokens")
        return count


class MemoryTokenStore:
    """프로세스 메모리 토큰 저장소 (테스트 / 단발성 스크립트용)"""

    def __init__(self):
        self._tokens: Dict[Tuple[str, str], StoredToken] = {}
        self._lock = threading.Lock()

    def get(self, server: str, identity: str) -> Optional[StoredToken]:
        with self._lock:
            return self._tokens.get((server, identity))

    def save(self, server: str, identity: str, token_grant: TokenResponse):
        with self._lock:
            self._tokens[(server, identity)] = StoredToken.from_grant(token_grant)

    def put(self, server: str, identity: str, token: StoredToken):
        """이미 만들어진 StoredToken을 그대로 저장"""
        with self._lock:
            self._tokens[(server, identity)] = token

    def clear(self, server: str, identity: str):
        with self._lock:
            self._tokens.pop((server, identity), None)

    def list_identities(self, server: str) -> List[str]:
        with self._lock:
            return [identity for (srv, identity) in self._tokens if srv == server]
