"""
OAuth 타입 정의
Discovery 메타데이터, 토큰 응답, 디바이스 코드, 저장 토큰 모델
Pydantic 모델을 사용하여 서버 응답의 런타임 유효성 검증 제공
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.errors import DeviceFlowError
from .time_utils import expires_at_from, to_utc, utc_now


DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

DEFAULT_SCOPES: List[str] = [
    "urn:ietf:params:jmap:core",
    "urn:ietf:params:jmap:mail",
    "offline_access",
]


class ServerMetadata(BaseModel):
    """OAuth 인가 서버 메타데이터 (discovery 문서)"""

    model_config = ConfigDict(extra="ignore", frozen=True)

    issuer: str = Field(..., min_length=1)
    device_authorization_endpoint: str = Field(..., min_length=1)
    token_endpoint: str = Field(..., min_length=1)
    authorization_endpoint: Optional[str] = None
    registration_endpoint: Optional[str] = None
    introspection_endpoint: Optional[str] = None
    grant_types_supported: List[str] = Field(default_factory=list)
    response_types_supported: Optional[List[str]] = None
    scopes_supported: Optional[List[str]] = None


class TokenResponse(BaseModel):
    """토큰 엔드포인트 성공 응답"""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1)
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None

    @field_validator("expires_in")
    @classmethod
    def _positive_expiry(cls, value: Optional[int]) -> Optional[int]:
        # 0 이하 값은 "만료 정보 없음"으로 취급
        if value is None or value <= 0:
            return None
        return value

    @field_validator("refresh_token")
    @classmethod
    def _blank_refresh_token(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip() or value == "null":
            return None
        return value


class DeviceCodeGrant(BaseModel):
    """디바이스 인가 응답 (RFC 8628 3.2)"""

    model_config = ConfigDict(extra="ignore")

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: Optional[str] = None
    expires_in: int
    interval: Optional[int] = 5
    expires_at: Optional[datetime] = None

    @field_validator("verification_uri_complete")
    @classmethod
    def _blank_complete_uri(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value

    @classmethod
    def from_response(cls, data: Dict[str, Any], now: Optional[datetime] = None) -> "DeviceCodeGrant":
        """
        디바이스 인가 응답을 파싱하고 절대 만료 시각 계산

        Args:
            data: 서버 JSON 응답
            now: 기준 시각 (기본 현재 UTC)

        Returns:
            DeviceCodeGrant
        """
        grant = cls.model_validate(data)
        if grant.interval is None or grant.interval <= 0:
            grant.interval = 5
        grant.expires_at = expires_at_from(grant.expires_in, now) or (now or utc_now())
        return grant

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utc_now()) >= to_utc(self.expires_at)


class StoredToken(BaseModel):
    """저장소에 보관된 현재 토큰 쌍"""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "Bearer"
    expires_at: Optional[datetime] = None
    refresh_token: Optional[str] = None

    @classmethod
    def from_grant(cls, grant: TokenResponse, now: Optional[datetime] = None) -> "StoredToken":
        return cls(
            access_token=grant.access_token,
            token_type=grant.token_type or "Bearer",
            expires_at=expires_at_from(grant.expires_in, now),
            refresh_token=grant.refresh_token,
        )

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """만료 시각이 없거나 아직 지나지 않았으면 유효"""
        if self.expires_at is None:
            return True
        return (now or utc_now()) < to_utc(self.expires_at)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return not self.is_valid(now)


class DeviceFlowState(str, Enum):
    """디바이스 플로우 상태"""
    IDLE = "idle"
    WAITING_FOR_USER = "waiting_for_user"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class DeviceFlowResult:
    """폴링 루프의 최종 결과"""
    state: DeviceFlowState
    token: Optional[TokenResponse] = None
    error: Optional[DeviceFlowError] = None

    @property
    def is_success(self) -> bool:
        return self.state is DeviceFlowState.SUCCESS
