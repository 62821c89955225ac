"""
Core Errors - JMAP 커넥터 공통 예외 계층

모든 예외는 JmapConnectorError를 상속하며 ErrorKind 태그를 가진다.
호출자는 classify_error()로 재인증 / 재시도 / 치명적 오류를 구분한다.
"""

from enum import Enum
from typing import Optional


# 진단용 응답 본문 최대 길이
MAX_BODY_PREVIEW = 200


def truncate_body(body: Optional[str], limit: int = MAX_BODY_PREVIEW) -> str:
    """응답 본문을 진단용 길이로 자름"""
    if not body:
        return ""
    return body[:limit]


class ErrorKind(str, Enum):
    """오류 종류 태그"""
    DISCOVERY = "discovery"
    DEVICE_FLOW = "device_flow"
    OAUTH = "oauth"
    TOKEN_EXPIRED = "token_expired"
    PROTOCOL = "protocol"
    TRANSPORT = "transport"
    HTTP_STATUS = "http_status"


class ErrorCategory(str, Enum):
    """호출자 복구 방식"""
    REAUTHENTICATE = "reauthenticate"
    RETRY_LATER = "retry_later"
    FATAL = "fatal"


class DeviceFlowErrorKind(str, Enum):
    """RFC 8628 디바이스 플로우 오류 코드"""
    AUTHORIZATION_PENDING = "authorization_pending"
    SLOW_DOWN = "slow_down"
    EXPIRED_TOKEN = "expired_token"
    ACCESS_DENIED = "access_denied"
    NETWORK_ERROR = "network_error"
    SERVER_ERROR = "server_error"
    UNKNOWN_ERROR = "unknown_error"


class JmapConnectorError(Exception):
    """커넥터 예외 기반 클래스"""

    kind: ErrorKind = ErrorKind.PROTOCOL

    @property
    def retryable(self) -> bool:
        return False

    @property
    def requires_reauth(self) -> bool:
        return False


class DiscoveryError(JmapConnectorError):
    """사용 가능한 OAuth 메타데이터 문서를 찾지 못함"""

    kind = ErrorKind.DISCOVERY


class DeviceFlowError(JmapConnectorError):
    """
    디바이스 플로우 오류

    AUTHORIZATION_PENDING / SLOW_DOWN은 폴링 루프 안에서 복구된다.
    NETWORK_ERROR는 I/O 장애(status_code 없음)일 때만 재시도 가능하고,
    HTTP 4xx 응답을 해석하지 못한 경우는 최종 오류다.
    """

    kind = ErrorKind.DEVICE_FLOW

    def __init__(
        self,
        message: str,
        error_kind: DeviceFlowErrorKind = DeviceFlowErrorKind.UNKNOWN_ERROR,
        oauth_error: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_kind = error_kind
        self.oauth_error = oauth_error
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        if self.error_kind is DeviceFlowErrorKind.NETWORK_ERROR:
            return self.status_code is None
        return self.error_kind in (
            DeviceFlowErrorKind.AUTHORIZATION_PENDING,
            DeviceFlowErrorKind.SLOW_DOWN,
        )

    @property
    def requires_reauth(self) -> bool:
        return self.error_kind in (
            DeviceFlowErrorKind.EXPIRED_TOKEN,
            DeviceFlowErrorKind.ACCESS_DENIED,
        )


class OAuthError(JmapConnectorError):
    """토큰 엔드포인트 실패"""

    kind = ErrorKind.OAUTH

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = truncate_body(body)


class TokenExpiredError(JmapConnectorError):
    """토큰 갱신 불가 - 사용자 재인증 필요 (재시도 금지)"""

    kind = ErrorKind.TOKEN_EXPIRED

    @property
    def requires_reauth(self) -> bool:
        return True


class ProtocolError(JmapConnectorError):
    """JMAP 응답 형태 불일치"""

    kind = ErrorKind.PROTOCOL

    def __init__(self, message: str, body: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.body = truncate_body(body)


class MethodError(ProtocolError):
    """서버가 메서드 단위 오류(["error", {...}, callId])나 notCreated를 반환함"""

    def __init__(self, message: str, error_type: Optional[str] = None, body: Optional[str] = None):
        super().__init__(message, body)
        self.error_type = error_type


class TransportError(JmapConnectorError):
    """I/O 장애 - 재시도 소진 후 마지막 원인과 함께 전달"""

    kind = ErrorKind.TRANSPORT

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.message = message
        self.attempts = attempts

    @property
    def retryable(self) -> bool:
        return True


class HttpStatusError(JmapConnectorError):
    """2xx가 아닌 응답 (401/403 재시도 이후 포함)"""

    kind = ErrorKind.HTTP_STATUS

    def __init__(self, status: int, body: Optional[str] = None, url: Optional[str] = None):
        self.status = status
        self.body = truncate_body(body)
        self.url = url
        super().__init__(f"HTTP {status} from {url or 'server'}: {self.body}")


def classify_error(exc: BaseException) -> ErrorCategory:
    """
    예외를 호출자 복구 방식으로 분류

    Args:
        exc: 발생한 예외

    Returns:
        REAUTHENTICATE / RETRY_LATER / FATAL
    """
    if not isinstance(exc, JmapConnectorError):
        return ErrorCategory.FATAL

    kind = exc.kind
    if kind is ErrorKind.TOKEN_EXPIRED:
        return ErrorCategory.REAUTHENTICATE
    if kind is ErrorKind.DEVICE_FLOW:
        if exc.requires_reauth:
            return ErrorCategory.REAUTHENTICATE
        return ErrorCategory.RETRY_LATER if exc.retryable else ErrorCategory.FATAL
    if kind is ErrorKind.TRANSPORT:
        return ErrorCategory.RETRY_LATER
    if kind in (ErrorKind.DISCOVERY, ErrorKind.OAUTH, ErrorKind.PROTOCOL, ErrorKind.HTTP_STATUS):
        return ErrorCategory.FATAL

    raise AssertionError(f"Unhandled error kind: {kind}")
