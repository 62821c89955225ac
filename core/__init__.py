"""
Core Module - 공통 Protocol, 예외, HTTP 재시도 유틸리티

jmap 클라이언트가 토큰 저장소 구현을 직접 의존하지 않도록 추상화.
"""

from .protocols import TokenStoreProtocol, MailProtocolClientProtocol
from .errors import (
    ErrorKind,
    ErrorCategory,
    DeviceFlowErrorKind,
    JmapConnectorError,
    DiscoveryError,
    DeviceFlowError,
    OAuthError,
    TokenExpiredError,
    ProtocolError,
    MethodError,
    TransportError,
    HttpStatusError,
    classify_error,
)

__all__ = [
    'TokenStoreProtocol',
    'MailProtocolClientProtocol',
    'ErrorKind',
    'ErrorCategory',
    'DeviceFlowErrorKind',
    'JmapConnectorError',
    'DiscoveryError',
    'DeviceFlowError',
    'OAuthError',
    'TokenExpiredError',
    'ProtocolError',
    'MethodError',
    'TransportError',
    'HttpStatusError',
    'classify_error',
]
