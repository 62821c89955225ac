"""
Core Protocols - 모듈 간 의존성 추상화를 위한 Protocol 정의

현재 정의:
    - TokenStoreProtocol: jmap 클라이언트가 토큰 영속화 구현을 직접 알지 않아도 되게 함
    - MailProtocolClientProtocol: 상위 레이어가 사용하는 메일 프로토콜 기능 계약

사용 예시:
    # 테스트용 메모리 저장소 주입
    store = MemoryTokenStore()
    client = JmapOAuthClient(server_url, identity, account_id, store, metadata, client_id)
"""

from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

if TYPE_CHECKING:
    from auth.oauth_types import StoredToken, TokenResponse
    from jmap.jmap_types import (
        EmailQueryResult,
        JmapSession,
        Mailbox,
        MailEnvelope,
        SubmissionStatus,
        UploadedBlob,
    )


@runtime_checkable
class TokenStoreProtocol(Protocol):
    """
    토큰 저장소 프로토콜

    (server, identity) 키로 현재 토큰 쌍을 영속화한다.
    한 클라이언트 인스턴스에서의 동시 읽기/쓰기에 안전해야 한다.
    """

    def get(self, server: str, identity: str) -> Optional["StoredToken"]:
        """
        저장된 토큰 조회

        Args:
            server: 서버 origin
            identity: 사용자 식별자 (이메일)

        Returns:
            StoredToken 또는 None
        """
        ...

    def save(self, server: str, identity: str, token_grant: "TokenResponse") -> None:
        """토큰 응답 저장 (만료 시각은 저장 시점 기준으로 계산)"""
        ...

    def clear(self, server: str, identity: str) -> None:
        """토큰 삭제"""
        ...


@runtime_checkable
class MailProtocolClientProtocol(Protocol):
    """메일 프로토콜 클라이언트 기능 계약"""

    async def get_session(self) -> "JmapSession":
        ...

    async def list_mailboxes(self, account_id: Optional[str] = None) -> List["Mailbox"]:
        ...

    async def query_emails(
        self,
        mailbox_id: Optional[str] = None,
        account_id: Optional[str] = None,
        position: int = 0,
        limit: int = 50,
        filter: Optional[Dict[str, Any]] = None,
        search_text: Optional[str] = None,
    ) -> "EmailQueryResult":
        ...

    async def fetch_emails(
        self,
        ids: Sequence[str],
        account_id: Optional[str] = None,
        properties: Optional[Sequence[str]] = None,
    ) -> List["MailEnvelope"]:
        ...

    async def update_keywords(
        self, email_id: str, keywords: Dict[str, bool], account_id: Optional[str] = None
    ) -> bool:
        ...

    async def delete(self, email_id: str, account_id: Optional[str] = None) -> bool:
        ...

    async def move(
        self,
        email_id: str,
        from_mailbox_id: str,
        to_mailbox_id: str,
        account_id: Optional[str] = None,
    ) -> bool:
        ...

    async def download_blob(
        self, blob_id: str, account_id: Optional[str] = None, name: str = "attachment"
    ) -> bytes:
        ...

    async def upload_blob(
        self, data: bytes, mime_type: str, filename: str, account_id: Optional[str] = None
    ) -> "UploadedBlob":
        ...

    async def send_email(
        self,
        from_address: str,
        to: Sequence[str],
        subject: str,
        body: str,
        attachments: Sequence[Any] = (),
        draft_id: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> str:
        ...

    async def get_email_submission(
        self, submission_id: str, account_id: Optional[str] = None
    ) -> "SubmissionStatus":
        ...

    async def close(self) -> None:
        """리소스 정리"""
        ...
