"""
HTTP Utilities - aiohttp 공통 타임아웃 / 일시 장애 재시도

일시 장애(연결 끊김, 잘린 본문, 타임아웃)만 선형 백오프로 재시도한다.
HTTP 상태 코드는 여기서 재시도하지 않는다.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar
from urllib.parse import urlsplit

import aiohttp

from .errors import TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = 3

# 운영 호출 30초, discovery / 디바이스 플로우 60초
OPERATION_TIMEOUT = aiohttp.ClientTimeout(connect=30, sock_connect=30, sock_read=30)
DISCOVERY_TIMEOUT = aiohttp.ClientTimeout(connect=60, sock_connect=60, sock_read=60)

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (
    aiohttp.ClientConnectionError,  # ServerDisconnectedError, ClientConnectorError 포함
    aiohttp.ClientPayloadError,     # 잘린 본문
    asyncio.TimeoutError,
)


def is_transient(exc: BaseException) -> bool:
    """재시도 가능한 I/O 장애 여부"""
    return isinstance(exc, TRANSIENT_ERRORS)


def linear_backoff(attempt: int) -> float:
    """attempt(0부터)에 대한 대기 시간(초): 1, 2, 3 ..."""
    return float(attempt + 1)


def origin_of(url: str) -> str:
    """
    URL에서 scheme://host[:port] 부분만 추출

    Args:
        url: 임의의 URL (경로 포함 가능)

    Returns:
        끝 슬래시 없는 origin
    """
    parts = urlsplit(url.strip())
    if not parts.scheme or not parts.netloc:
        return url.strip().rstrip("/")
    return f"{parts.scheme}://{parts.netloc}"


async def with_transient_retry(
    operation: Callable[[], Awaitable[T]],
    label: str,
    attempts: int = MAX_ATTEMPTS,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """
    일시 장애에 대해 operation을 최대 attempts회 실행

    Args:
        operation: 요청 전송과 본문 읽기까지 수행하는 코루틴 팩토리
        label: 로그용 이름
        attempts: 최대 시도 횟수
        on_retry: 재시도 직전 호출 (attempt, 원인)

    Returns:
        operation 결과

    Raises:
        TransportError: 모든 시도가 일시 장애로 실패 (__cause__ = 마지막 장애)
    """
    last_error: Optional[BaseException] = None

    for attempt in range(attempts):
        try:
            return await operation()
        except TRANSIENT_ERRORS as e:
            last_error = e
            logger.warning(f"{label}: transient fault on attempt {attempt + 1}/{attempts}: {e!r}")
            if attempt < attempts - 1:
                if on_retry:
                    on_retry(attempt, e)
                await asyncio.sleep(linear_backoff(attempt))

    raise TransportError(
        f"{label} failed after {attempts} attempts: {last_error!r}",
        attempts=attempts,
    ) from last_error
