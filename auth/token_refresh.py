"""
OAuth Token Refresh
refresh_token 그랜트로 새 액세스 토큰을 발급받는다 (재시도 없음)
"""

import json
import logging
from typing import Optional

import aiohttp
from pydantic import ValidationError

from core.errors import OAuthError, truncate_body
from core.http_utils import OPERATION_TIMEOUT
from .oauth_types import ServerMetadata, TokenResponse

logger = logging.getLogger(__name__)


class OAuthTokenRefresh:
    """토큰 갱신 클라이언트"""

    def __init__(
        self,
        metadata: ServerMetadata,
        client_id: str,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        self.metadata = metadata
        self.client_id = client_id
        self.session = http_session
        self._owns_session = http_session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """aiohttp 세션 관리"""
        if not self.session or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=OPERATION_TIMEOUT)
            self._owns_session = True
        return self.session

    async def refresh(self, refresh_token: str) -> TokenResponse:
        """
        토큰 갱신

        Args:
            refresh_token: 리프레시 토큰

        Returns:
            새로운 토큰 정보 (서버가 새 refresh token을 주지 않으면 기존 것 유지)

        Raises:
            OAuthError: 토큰 엔드포인트 실패 또는 응답 파싱 실패
        """
        data = {
            'grant_type': 'refresh_token',
            'refresh_token': refresh_token,
            'client_id': self.client_id,
        }

        logger.debug(f"Refreshing token at {self.metadata.token_endpoint}")

        session = await self._get_session()
        async with session.post(
            self.metadata.token_endpoint,
            data=data,
            headers={'Accept': 'application/json'},
            timeout=OPERATION_TIMEOUT,
        ) as response:
            body = await response.text()
            status = response.status

        if status != 200:
            raise OAuthError(
                f"Token refresh failed: {self._error_message(body)}",
                status_code=status,
                body=body,
            )

        try:
            token = TokenResponse.model_validate(json.loads(body))
        except (ValueError, ValidationError) as e:
            raise OAuthError(f"Invalid refresh response: {e}", status_code=status, body=body) from e

        # 새 refresh token이 없으면 기존 것 유지
        if not token.refresh_token:
            token = token.model_copy(update={'refresh_token': refresh_token})

        logger.info(f"Token refreshed: token_type={token.token_type}, expires_in={token.expires_in}")
        return token

    @staticmethod
    def _error_message(body: str) -> str:
        """error_description > error > 본문 앞부분"""
        try:
            payload = json.loads(body)
        except ValueError:
            return truncate_body(body)
        if isinstance(payload, dict):
            return payload.get('error_description') or payload.get('error') or 'Unknown error'
        return truncate_body(body)

    async def close(self):
        """리소스 정리"""
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()
