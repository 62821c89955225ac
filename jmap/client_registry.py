"""
JMAP Client Registry
(server, identity) 키로 클라이언트 인스턴스를 재사용하는 명시적 캐시
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from .jmap_client import JmapClient

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], JmapClient]


class JmapClientRegistry:
    """
    클라이언트 레지스트리

    프로세스 전역 상태가 아니라 조립 지점(composition root)이 소유하는 인스턴스
    """

    def __init__(self):
        self._clients: Dict[Tuple[str, str], JmapClient] = {}

    @staticmethod
    def _key(server: str, identity: str) -> Tuple[str, str]:
        return server.strip().rstrip("/"), identity

    def get(self, server: str, identity: str) -> Optional[JmapClient]:
        return self._clients.get(self._key(server, identity))

    def get_or_create(
        self, server: str, identity: str, factory: Optional[ClientFactory] = None
    ) -> JmapClient:
        """
        캐시된 클라이언트 반환, 없으면 factory로 생성 후 등록

        Args:
            server: 서버 주소
            identity: 사용자 식별자
            factory: 인자 없는 클라이언트 생성 함수

        Returns:
            JmapClient

        Raises:
            KeyError: 캐시에 없고 factory도 없음
        """
        key = self._key(server, identity)
        client = self._clients.get(key)
        if client is not None:
            return client

        if factory is None:
            raise KeyError(f"No JMAP client registered for {identity} on {key[0]}")

        client = factory()
        self._clients[key] = client
        logger.info(f"JMAP client registered: {identity} ({key[0]})")
        return client

    async def remove(self, server: str, identity: str) -> bool:
        """클라이언트 제거 후 close (없으면 False)"""
        client = self._clients.pop(self._key(server, identity), None)
        if client is None:
            return False
        await client.close()
        return True

    def clear(self):
        """등록 정보만 삭제 (클라이언트는 닫지 않음)"""
        self._clients.clear()

    async def close_all(self):
        """모든 클라이언트 close 후 비우기"""
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.close()
        if clients:
            logger.info(f"Closed {len(clients)} JMAP clients")

    def keys(self) -> List[Tuple[str, str]]:
        return list(self._clients)

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return self._key(*key) in self._clients

    def __len__(self) -> int:
        return len(self._clients)
