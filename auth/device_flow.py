"""
Device Authorization Flow (RFC 8628)
디바이스/사용자 코드 발급과 토큰 폴링을 담당

상태: IDLE -> WAITING_FOR_USER -> {SUCCESS, ERROR}, 외부 취소 시 CANCELLED
폴링 루프는 취소 가능한 asyncio 태스크로 실행되며 최종 상태 콜백은 최대 한 번만 호출된다.
"""

import asyncio
import json
import logging
from typing import Callable, List, Optional

import aiohttp
from pydantic import ValidationError

from core.errors import DeviceFlowError, DeviceFlowErrorKind, truncate_body
from core.http_utils import DISCOVERY_TIMEOUT, TRANSIENT_ERRORS
from .oauth_types import (
    DEFAULT_SCOPES,
    DEVICE_CODE_GRANT_TYPE,
    DeviceCodeGrant,
    DeviceFlowResult,
    DeviceFlowState,
    ServerMetadata,
    TokenResponse,
)

logger = logging.getLogger(__name__)

# slow_down 수신 시 폴링 간격 증가량 (초)
SLOW_DOWN_INCREMENT = 5

StateCallback = Callable[[DeviceFlowResult], None]

_ERROR_CODES = {
    "authorization_pending": DeviceFlowErrorKind.AUTHORIZATION_PENDING,
    "slow_down": DeviceFlowErrorKind.SLOW_DOWN,
    "expired_token": DeviceFlowErrorKind.EXPIRED_TOKEN,
    "access_denied": DeviceFlowErrorKind.ACCESS_DENIED,
}


class DeviceFlowClient:
    """디바이스 인가 플로우 클라이언트"""

    def __init__(
        self,
        metadata: ServerMetadata,
        client_id: str,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Args:
            metadata: discovery로 얻은 서버 메타데이터
            client_id: OAuth 클라이언트 ID
            http_session: 공유 aiohttp 세션 (선택적)
        """
        self.metadata = metadata
        self.client_id = client_id
        self.session = http_session
        self._owns_session = http_session is None

        self.state = DeviceFlowState.IDLE
        self._cancelled = False
        self._polling_task: Optional[asyncio.Task] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """aiohttp 세션 관리"""
        if not self.session or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=DISCOVERY_TIMEOUT)
            self._owns_session = True
        return self.session

    async def request_device_code(self, scopes: Optional[List[str]] = None) -> DeviceCodeGrant:
        """
        디바이스 코드 발급 요청

        Args:
            scopes: 요청 스코프 (None이면 JMAP core/mail + offline_access)

        Returns:
            DeviceCodeGrant

        Raises:
            DeviceFlowError: 요청 실패 (OAuth 오류 코드 포함)
        """
        if scopes is None:
            scopes = DEFAULT_SCOPES

        data = {'client_id': self.client_id}
        if scopes:
            data['scope'] = ' '.join(scopes)

        endpoint = self.metadata.device_authorization_endpoint
        logger.info(f"Requesting device code: endpoint={endpoint}, scopes={', '.join(scopes)}")

        try:
            session = await self._get_session()
            async with session.post(
                endpoint, data=data, headers={'Accept': 'application/json'}, timeout=DISCOVERY_TIMEOUT
            ) as response:
                status = response.status
                body = await response.text()
        except TRANSIENT_ERRORS as e:
            raise DeviceFlowError(
                f"Device code request failed: {e!r}", DeviceFlowErrorKind.NETWORK_ERROR
            ) from e
        except Exception as e:
            logger.error(f"Device code request failed: {e!r}")
            raise DeviceFlowError(
                f"Device code request failed: {e!r}", DeviceFlowErrorKind.UNKNOWN_ERROR
            ) from e

        if not 200 <= status < 300:
            error = self.parse_error_response(body, status)
            raise DeviceFlowError(
                f"Device code request failed: {error.message}",
                error.error_kind,
                oauth_error=error.oauth_error,
                status_code=status,
            )

        try:
            grant = DeviceCodeGrant.from_response(json.loads(body))
        except (ValueError, ValidationError) as e:
            raise DeviceFlowError(
                f"Invalid device code response: {e}",
                DeviceFlowErrorKind.UNKNOWN_ERROR,
                status_code=status,
            ) from e

        logger.info(
            f"Device code received: user_code={grant.user_code}, "
            f"expires_in={grant.expires_in}, interval={grant.interval}"
        )
        return grant

    def start_polling(
        self, grant: DeviceCodeGrant, on_state_change: Optional[StateCallback] = None
    ) -> asyncio.Task:
        """
        폴링 루프를 백그라운드 태스크로 시작

        Returns:
            최종 DeviceFlowResult를 결과로 갖는 태스크
        """
        self.cancel()
        self._cancelled = False
        self._polling_task = asyncio.create_task(self._poll_loop(grant, on_state_change))
        return self._polling_task

    async def poll_for_token(
        self, grant: DeviceCodeGrant, on_state_change: Optional[StateCallback] = None
    ) -> DeviceFlowResult:
        """
        토큰 발급까지 폴링 (현재 태스크에서 실행)

        Args:
            grant: request_device_code() 결과
            on_state_change: 최종 상태 콜백 (SUCCESS/ERROR에서 한 번만 호출)

        Returns:
            DeviceFlowResult
        """
        self._cancelled = False
        return await self._poll_loop(grant, on_state_change)

    def cancel(self):
        """폴링 취소 - 이후 콜백은 호출되지 않음"""
        self._cancelled = True
        if self._polling_task and not self._polling_task.done():
            self._polling_task.cancel()
        self._polling_task = None

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    async def _poll_loop(
        self, grant: DeviceCodeGrant, on_state_change: Optional[StateCallback]
    ) -> DeviceFlowResult:
        interval = grant.interval or 5
        self.state = DeviceFlowState.WAITING_FOR_USER
        logger.info(f"Polling for token: device_code={grant.device_code[:8]}..., interval={interval}s")

        try:
            while True:
                if self._cancelled:
                    logger.info("Device flow polling cancelled")
                    return self._cancelled_result()

                if grant.is_expired():
                    logger.warning("Device code expired, stopping polling")
                    error = DeviceFlowError("Device code expired", DeviceFlowErrorKind.EXPIRED_TOKEN)
                    return self._finish(DeviceFlowResult(DeviceFlowState.ERROR, error=error), on_state_change)

                try:
                    token = await self._request_token(grant.device_code)
                except DeviceFlowError as e:
                    if e.error_kind is DeviceFlowErrorKind.AUTHORIZATION_PENDING:
                        logger.debug(f"Authorization pending, waiting {interval}s")
                        await asyncio.sleep(interval)
                        continue
                    if e.error_kind is DeviceFlowErrorKind.SLOW_DOWN:
                        interval += SLOW_DOWN_INCREMENT
                        logger.warning(f"Slow down requested, interval now {interval}s")
                        await asyncio.sleep(interval)
                        continue

                    logger.error(f"Device flow failed: {e.error_kind.value}: {e.message}")
                    return self._finish(DeviceFlowResult(DeviceFlowState.ERROR, error=e), on_state_change)
                except TRANSIENT_ERRORS as e:
                    logger.warning(f"Network error during polling: {e!r}, retrying in {interval}s")
                    await asyncio.sleep(interval)
                    continue
                except Exception as e:
                    logger.error(f"Device flow polling failed: {e!r}")
                    error = DeviceFlowError(f"Token polling failed: {e!r}", DeviceFlowErrorKind.UNKNOWN_ERROR)
                    error.__cause__ = e
                    return self._finish(DeviceFlowResult(DeviceFlowState.ERROR, error=error), on_state_change)

                logger.info("Token polling successful")
                return self._finish(DeviceFlowResult(DeviceFlowState.SUCCESS, token=token), on_state_change)

        except asyncio.CancelledError:
            self._cancelled = True
            self.state = DeviceFlowState.CANCELLED
            raise

    def _cancelled_result(self) -> DeviceFlowResult:
        self.state = DeviceFlowState.CANCELLED
        return DeviceFlowResult(DeviceFlowState.CANCELLED)

    def _finish(
        self, result: DeviceFlowResult, on_state_change: Optional[StateCallback]
    ) -> DeviceFlowResult:
        """최종 상태 기록 후 콜백 한 번 호출 (취소된 경우 호출하지 않음)"""
        if self._cancelled:
            return self._cancelled_result()

        self.state = result.state
        if on_state_change:
            on_state_change(result)
        return result

    async def _request_token(self, device_code: str) -> TokenResponse:
        """토큰 엔드포인트 1회 폴링"""
        data = {
            'grant_type': DEVICE_CODE_GRANT_TYPE,
            'device_code': device_code,
            'client_id': self.client_id,
        }

        session = await self._get_session()
        async with session.post(
            self.metadata.token_endpoint,
            data=data,
            headers={'Accept': 'application/json'},
            timeout=DISCOVERY_TIMEOUT,
        ) as response:
            status = response.status
            body = await response.text()

        logger.debug(f"Token poll response: status={status}")

        if status != 200:
            raise self.parse_error_response(body, status)

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise DeviceFlowError(
                f"Invalid token response: {truncate_body(body)}",
                DeviceFlowErrorKind.UNKNOWN_ERROR,
                status_code=status,
            ) from e

        if isinstance(payload, dict) and payload.get('error'):
            raise self.parse_error_response(body, status)

        try:
            return TokenResponse.model_validate(payload)
        except ValidationError as e:
            raise DeviceFlowError(
                f"Invalid token response: {e}", DeviceFlowErrorKind.UNKNOWN_ERROR, status_code=status
            ) from e

    @staticmethod
    def parse_error_response(body: str, status_code: Optional[int]) -> DeviceFlowError:
        """
        OAuth 오류 응답 해석

        본문에서 표준 오류 코드를 먼저 찾고, 없으면 JSON의 error / error_description을 사용한다.

        Args:
            body: 응답 본문
            status_code: HTTP 상태 코드

        Returns:
            DeviceFlowError (raise 하지 않음)
        """
        normalized = (body or "").lower()
        for code, kind in _ERROR_CODES.items():
            if code in normalized:
                return DeviceFlowError(code, kind, oauth_error=code, status_code=status_code)

        try:
            payload = json.loads(body)
        except (TypeError, ValueError):
            payload = None

        if isinstance(payload, dict):
            error = payload.get('error') or ''
            description = payload.get('error_description') or ''
            return DeviceFlowError(
                description or f"Server error: {error}",
                DeviceFlowErrorKind.SERVER_ERROR,
                oauth_error=error or None,
                status_code=status_code,
            )

        if status_code is not None and status_code >= 500:
            return DeviceFlowError(
                f"Server error: status {status_code}", DeviceFlowErrorKind.SERVER_ERROR, status_code=status_code
            )
        if status_code is not None and 400 <= status_code < 500:
            return DeviceFlowError(
                f"Client error: status {status_code}", DeviceFlowErrorKind.NETWORK_ERROR, status_code=status_code
            )
        return DeviceFlowError(
            f"Unknown error: {truncate_body(body)}", DeviceFlowErrorKind.UNKNOWN_ERROR, status_code=status_code
        )

    async def close(self):
        """리소스 정리"""
        self.cancel()
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()
