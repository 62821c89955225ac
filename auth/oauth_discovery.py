"""
OAuth Discovery - 인가 서버 메타데이터 조회
well-known 문서(OpenID, OAuth AS 순)에서 디바이스 플로우 엔드포인트를 얻는다
"""

import json
import logging
from typing import List, Optional

import aiohttp
from pydantic import ValidationError

from core.errors import DiscoveryError, HttpStatusError, ProtocolError, TransportError
from core.http_utils import DISCOVERY_TIMEOUT, with_transient_retry
from .oauth_types import ServerMetadata

logger = logging.getLogger(__name__)


WELL_KNOWN_PATHS: List[str] = [
    "/.well-known/openid-configuration",
    "/.well-known/oauth-authorization-server",
]

REQUIRED_FIELDS = ("issuer", "device_authorization_endpoint", "token_endpoint")


class OAuthDiscovery:
    """OAuth 서버 메타데이터 discovery 클라이언트"""

    def __init__(self, http_session: Optional[aiohttp.ClientSession] = None):
        """
        Args:
            http_session: 공유 aiohttp 세션 (없으면 내부에서 생성 후 close()에서 정리)
        """
        self.session = http_session
        self._owns_session = http_session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """aiohttp 세션 관리"""
        if not self.session or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=DISCOVERY_TIMEOUT)
            self._owns_session = True
        return self.session

    @staticmethod
    def normalize_server_url(server_url: str) -> str:
        """끝 슬래시와 이미 붙어 있는 well-known 접미사 제거"""
        url = server_url.strip().rstrip("/")
        for path in WELL_KNOWN_PATHS:
            if url.endswith(path):
                return url[: -len(path)]
        return url

    async def discover(self, server_origin: str) -> ServerMetadata:
        """
        인가 서버 메타데이터 조회

        Args:
            server_origin: 서버 주소 (예: https://mail.example.com)

        Returns:
            ServerMetadata

        Raises:
            DiscoveryError: 두 well-known 문서 모두 필수 필드를 제공하지 못함
        """
        base_url = self.normalize_server_url(server_origin)
        last_error: Optional[Exception] = None

        for path in WELL_KNOWN_PATHS:
            url = f"{base_url}{path}"
            try:
                metadata = await self._fetch_metadata(url)
                logger.info(
                    f"Discovery succeeded: issuer={metadata.issuer}, "
                    f"device_endpoint={metadata.device_authorization_endpoint}"
                )
                return metadata
            except (TransportError, HttpStatusError, ProtocolError) as e:
                logger.warning(f"Discovery candidate failed ({url}): {e}")
                last_error = e

        raise DiscoveryError(f"No usable OAuth metadata document at {base_url}") from last_error

    async def _fetch_metadata(self, url: str) -> ServerMetadata:
        """단일 well-known URL 조회 (일시 장애만 재시도)"""
        logger.debug(f"Discovery request: {url}")

        async def _get():
            session = await self._get_session()
            async with session.get(
                url, headers={"Accept": "application/json"}, timeout=DISCOVERY_TIMEOUT
            ) as response:
                return response.status, await response.text()

        status, body = await with_transient_retry(_get, label=f"OAuth discovery {url}")

        if not 200 <= status < 300:
            raise HttpStatusError(status, body, url)

        try:
            data = json.loads(body)
        except ValueError as e:
            raise ProtocolError(f"Discovery document is not JSON: {url}", body) from e

        if not isinstance(data, dict):
            raise ProtocolError(f"Discovery document is not an object: {url}", body)

        missing = [name for name in REQUIRED_FIELDS if not data.get(name)]
        if missing:
            raise ProtocolError(f"Discovery document missing {', '.join(missing)}: {url}", body)

        try:
            return ServerMetadata.model_validate(data)
        except ValidationError as e:
            raise ProtocolError(f"Invalid discovery document: {url}", body) from e

    async def close(self):
        """리소스 정리"""
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()
