"""
JMAP OAuth Client - Bearer 토큰 기반 JMAP 클라이언트
TokenStore의 토큰을 사용하고 만료 시 refresh_token으로 한 번만 갱신
"""

import logging
from typing import Optional

import aiohttp

from auth.oauth_types import ServerMetadata, StoredToken
from auth.token_refresh import OAuthTokenRefresh
from core.errors import OAuthError, TokenExpiredError
from core.http_utils import TRANSIENT_ERRORS
from core.protocols import TokenStoreProtocol
from .jmap_client import JmapClient

logger = logging.getLogger(__name__)


class JmapOAuthClient(JmapClient):
    """OAuth Bearer 토큰 JMAP 클라이언트"""

    SESSION_PATHS = ("/.well-known/jmap",)

    def __init__(
        self,
        server_url: str,
        identity: str,
        account_id: str,
        token_store: TokenStoreProtocol,
        metadata: ServerMetadata,
        client_id: str,
        http_session: Optional[aiohttp.ClientSession] = None,
        token_refresh: Optional[OAuthTokenRefresh] = None,
    ):
        """
        Args:
            server_url: JMAP 서버 주소
            identity: 토큰 저장 키로 쓰는 사용자 식별자
            account_id: 기본 계정 ID
            token_store: 토큰 저장소
            metadata: OAuth 서버 메타데이터 (토큰 엔드포인트)
            client_id: OAuth 클라이언트 ID
            http_session: 공유 aiohttp 세션 (선택적)
            token_refresh: 토큰 갱신 클라이언트 (테스트 주입용)
        """
        super().__init__(server_url, identity, account_id, http_session)
        self.token_store = token_store
        self.metadata = metadata
        self.client_id = client_id
        self.token_refresh = token_refresh or OAuthTokenRefresh(metadata, client_id, http_session)

    def _auth_header(self, credential: str) -> str:
        return f"Bearer {credential}"

    async def get_access_token(self) -> str:
        """
        유효한 액세스 토큰 반환 (필요하면 한 번 갱신)

        동시 호출은 같은 락으로 직렬화되어 갱신은 한 번만 일어난다.

        Raises:
            TokenExpiredError: 저장된 토큰이 없거나 갱신 실패 (토큰 삭제됨)
        """
        async with self._lock:
            return await self._credential_locked()

    async def force_refresh(self, stale_token: str) -> str:
        """
        401/403 이후 강제 갱신

        다른 호출자가 이미 토큰을 교체했다면 갱신하지 않고 교체된 토큰을 반환한다.

        Args:
            stale_token: 거부된 액세스 토큰

        Returns:
            새 액세스 토큰
        """
        async with self._lock:
            return await self._refresh_locked(stale_token)

    async def _credential_locked(self) -> str:
        stored = self.token_store.get(self.server_url, self.identity)
        if stored and stored.is_valid():
            return stored.access_token

        logger.info(f"Access token expired or missing for {self.identity}, refreshing")
        return await self._refresh_stored(stored)

    async def _refresh_locked(self, stale: str) -> Optional[str]:
        stored = self.token_store.get(self.server_url, self.identity)
        if stored and stored.access_token != stale and stored.is_valid():
            logger.debug("Token already rotated by another caller")
            return stored.access_token
        return await self._refresh_stored(stored)

    async def _refresh_stored(self, stored: Optional[StoredToken]) -> str:
        if not stored or not stored.refresh_token:
            self.token_store.clear(self.server_url, self.identity)
            raise TokenExpiredError(f"No refresh token for {self.identity}; re-authentication required")

        try:
            grant = await self.token_refresh.refresh(stored.refresh_token)
        except (OAuthError, *TRANSIENT_ERRORS) as e:
            logger.error(f"Token refresh failed for {self.identity}: {e!r}")
            self.token_store.clear(self.server_url, self.identity)
            raise TokenExpiredError(f"Token refresh failed for {self.identity}; re-authentication required") from e

        self.token_store.save(self.server_url, self.identity, grant)
        logger.info(f"Access token refreshed for {self.identity}: {grant.access_token[:8]}...")
        return grant.access_token

    async def close(self):
        """리소스 정리"""
        await self.token_refresh.close()
        await super().close()

