"""
시간대 처리 유틸리티
토큰 만료 시각 계산과 UTC 변환을 담당
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """현재 UTC 시간 반환"""
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    datetime을 UTC로 변환

    Args:
        dt: 변환할 datetime (timezone aware or naive)

    Returns:
        UTC datetime
    """
    if dt.tzinfo is None:
        # naive datetime은 UTC로 가정
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso_to_utc(iso_string: str) -> datetime:
    """
    ISO 형식 문자열을 UTC datetime으로 파싱

    Args:
        iso_string: ISO 형식 시간 문자열 ('Z' 접미사 허용)

    Returns:
        UTC datetime
    """
    if iso_string.endswith("Z"):
        iso_string = iso_string[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(iso_string))


def expires_at_from(expires_in: Optional[int], now: Optional[datetime] = None) -> Optional[datetime]:
    """
    expires_in(초)을 절대 만료 시각으로 변환

    Args:
        expires_in: 서버가 준 유효 기간 (없거나 0 이하면 만료 없음)
        now: 기준 시각 (기본 현재 UTC)

    Returns:
        만료 시각 또는 None
    """
    if expires_in is None or expires_in <= 0:
        return None
    return (now or utc_now()) + timedelta(seconds=expires_in)
