"""
JMAP OAuth configuration module.
서버 주소, 클라이언트 ID, 스코프, 토큰 DB 경로 설정을 담당합니다.
"""

import os
from typing import List, Optional
import logging

from dotenv import load_dotenv

from .oauth_types import DEFAULT_SCOPES

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_ID = "jmap-connector"
DEFAULT_TOKEN_DB_PATH = "database/tokens.db"


class JmapOAuthConfig:
    """JMAP OAuth 설정 관리 클래스"""

    def __init__(
        self,
        server_url: Optional[str] = None,
        client_id: Optional[str] = None,
        scopes: Optional[List[str]] = None,
        identity: Optional[str] = None,
        token_db_path: Optional[str] = None,
        env_file: Optional[str] = None,
        load_env: bool = True,
    ):
        """
        설정 초기화

        우선순위: 1. 매개변수 2. 환경변수 3. 기본값

        Args:
            server_url: JMAP 서버 주소
            client_id: OAuth 클라이언트 ID
            scopes: 요청 스코프
            identity: 토큰 저장 키로 쓰는 사용자 식별자
            token_db_path: SQLite 토큰 DB 경로
            env_file: .env 파일 경로 (None이면 현재 디렉토리에서 탐색)
            load_env: .env 파일 로드 여부
        """
        if load_env:
            load_dotenv(env_file, encoding="utf-8-sig")

        self.server_url = (server_url or os.getenv("JMAP_SERVER_URL") or "").strip().rstrip("/")
        self.client_id = client_id or os.getenv("JMAP_CLIENT_ID") or DEFAULT_CLIENT_ID
        self.identity = identity or os.getenv("JMAP_IDENTITY") or ""
        self.token_db_path = token_db_path or os.getenv("JMAP_TOKEN_DB_PATH") or DEFAULT_TOKEN_DB_PATH
        self.log_level = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()

        if scopes is not None:
            self.scopes = list(scopes)
        else:
            self._load_scopes_from_env()

        if self.server_url:
            logger.info(f"JMAP config loaded: server={self.server_url}, client_id={self.client_id}")
        else:
            logger.warning("⚠️ JMAP_SERVER_URL not configured")

    def _load_scopes_from_env(self):
        """환경변수에서 스코프 로드 (공백 구분)"""
        scopes_str = os.getenv("JMAP_SCOPES")
        if scopes_str and scopes_str.strip():
            self.scopes = scopes_str.split()
        else:
            self.scopes = list(DEFAULT_SCOPES)

    def is_configured(self) -> bool:
        """서버 주소가 설정되어 있는지 확인"""
        return bool(self.server_url)

    def require_server_url(self) -> str:
        """
        서버 주소 반환 (없으면 ValueError)

        Returns:
            끝 슬래시 없는 서버 주소
        """
        if not self.server_url:
            raise ValueError("JMAP_SERVER_URL is not set")
        return self.server_url

    def __repr__(self) -> str:
        return (
            f"JmapOAuthConfig(server_url={self.server_url!r}, client_id={self.client_id!r}, "
            f"identity={self.identity!r}, scopes={self.scopes!r})"
        )
