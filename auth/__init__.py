"""
JMAP OAuth Module
OAuth 2.0 Device Authorization Grant (RFC 8628) 인증을 처리하는 모듈입니다.
"""

from .oauth_types import (
    DEFAULT_SCOPES,
    DeviceCodeGrant,
    DeviceFlowResult,
    DeviceFlowState,
    ServerMetadata,
    StoredToken,
    TokenResponse,
)
from .oauth_discovery import OAuthDiscovery
from .device_flow import DeviceFlowClient
from .token_refresh import OAuthTokenRefresh
from .token_store import MemoryTokenStore, SqliteTokenStore
from .oauth_config import JmapOAuthConfig

# 메인 인터페이스
__all__ = [
    # 클래스
    'OAuthDiscovery',        # 서버 메타데이터 discovery
    'DeviceFlowClient',      # 디바이스 인가 플로우
    'OAuthTokenRefresh',     # 토큰 갱신
    'SqliteTokenStore',      # SQLite 토큰 저장소
    'MemoryTokenStore',      # 메모리 토큰 저장소
    'JmapOAuthConfig',       # 설정 관리
    # 타입
    'ServerMetadata',
    'TokenResponse',
    'StoredToken',
    'DeviceCodeGrant',
    'DeviceFlowState',
    'DeviceFlowResult',
    'DEFAULT_SCOPES',
]

__version__ = '1.0.0'
