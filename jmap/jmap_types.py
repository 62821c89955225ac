"""
JMAP 타입 정의 (RFC 8620 / RFC 8621)
Pydantic 모델을 사용하여 서버 camelCase JSON을 런타임 검증하고 파이썬 이름으로 노출
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


JMAP_CORE = "urn:ietf:params:jmap:core"
JMAP_MAIL = "urn:ietf:params:jmap:mail"
JMAP_SUBMISSION = "urn:ietf:params:jmap:submission"

DEFAULT_USING: List[str] = [JMAP_CORE, JMAP_MAIL]
SUBMISSION_USING: List[str] = [JMAP_CORE, JMAP_MAIL, JMAP_SUBMISSION]

# Email/get 기본 속성
DEFAULT_EMAIL_PROPERTIES: List[str] = [
    "id",
    "threadId",
    "mailboxIds",
    "keywords",
    "size",
    "receivedAt",
    "hasAttachment",
    "preview",
    "subject",
    "from",
    "to",
    "cc",
    "bcc",
    "bodyStructure",
    "bodyValues",
    "textBody",
    "htmlBody",
]


class JmapModel(BaseModel):
    """camelCase alias를 받는 공통 베이스"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# ============================================================================
# Session
# ============================================================================

class Account(JmapModel):
    """세션의 계정 항목"""

    id: str = ""
    name: str = ""
    is_personal: bool = Field(True, alias="isPersonal")
    is_read_only: bool = Field(False, alias="isReadOnly")
    account_capabilities: Optional[Dict[str, Any]] = Field(None, alias="accountCapabilities")


class PrimaryAccounts(JmapModel):
    """capability별 기본 계정 포인터 (mail만 사용)"""

    mail: Optional[str] = Field(None, alias=JMAP_MAIL)


class JmapSession(JmapModel):
    """JMAP 세션 객체"""

    api_url: str = Field(..., alias="apiUrl", min_length=1)
    download_url: str = Field("", alias="downloadUrl")
    upload_url: str = Field("", alias="uploadUrl")
    event_source_url: Optional[str] = Field(None, alias="eventSourceUrl")
    accounts: Dict[str, Account] = Field(default_factory=dict)
    primary_accounts: Optional[PrimaryAccounts] = Field(None, alias="primaryAccounts")
    capabilities: Optional[Dict[str, Any]] = None
    username: Optional[str] = None
    state: Optional[str] = None

    @field_validator("accounts", mode="before")
    @classmethod
    def _fill_account_ids(cls, value: Any) -> Any:
        # 계정 객체에 id가 없으면 맵의 키를 사용
        if isinstance(value, dict):
            filled = {}
            for account_id, account in value.items():
                if isinstance(account, dict) and not account.get("id"):
                    account = {**account, "id": account_id}
                filled[account_id] = account
            return filled
        return value

    @field_validator("primary_accounts", mode="before")
    @classmethod
    def _primary_mail(cls, value: Any) -> Any:
        # 일부 서버는 "mail" 키를 사용
        if isinstance(value, dict) and JMAP_MAIL not in value and "mail" in value:
            return {JMAP_MAIL: value["mail"]}
        return value

    def resolve_account_id(self, account_id: Optional[str] = None, fallback: str = "") -> str:
        """
        계정 ID 결정

        우선순위: 명시적 인자 > primaryAccounts의 mail > accounts 첫 키 > fallback

        Args:
            account_id: 호출자가 지정한 계정 ID
            fallback: 클라이언트 기본 식별자

        Returns:
            사용할 계정 ID
        """
        if account_id:
            return account_id
        if self.primary_accounts and self.primary_accounts.mail:
            return self.primary_accounts.mail
        if self.accounts:
            return next(iter(self.accounts))
        return fallback


# ============================================================================
# Mailbox
# ============================================================================

class Mailbox(JmapModel):
    """Mailbox/get 항목"""

    id: str
    name: str = ""
    parent_id: Optional[str] = Field(None, alias="parentId")
    role: Optional[str] = None
    sort_order: Optional[int] = Field(None, alias="sortOrder")
    total_emails: Optional[int] = Field(None, alias="totalEmails")
    unread_emails: Optional[int] = Field(None, alias="unreadEmails")
    total_threads: Optional[int] = Field(None, alias="totalThreads")
    unread_threads: Optional[int] = Field(None, alias="unreadThreads")


# ============================================================================
# Email
# ============================================================================

class EmailAddress(JmapModel):
    """메일 주소"""

    name: Optional[str] = None
    email: str = ""

    def display(self) -> str:
        return f"{self.name} <{self.email}>" if self.name else self.email


class BodyValue(JmapModel):
    """bodyValues 항목"""

    value: str = ""
    is_encoding_problem: Optional[bool] = Field(None, alias="isEncodingProblem")
    is_truncated: Optional[bool] = Field(None, alias="isTruncated")


class BodyPartRef(JmapModel):
    """textBody / htmlBody 파트 참조"""

    part_id: Optional[str] = Field(None, alias="partId")
    blob_id: Optional[str] = Field(None, alias="blobId")
    type: str = ""


class BodyPart(BaseModel):
    """
    bodyStructure 디코딩 결과 (재귀 트리)

    main_type / subtype은 소문자, filename은 여러 후보 중 처음 발견된 값
    """

    part_id: Optional[str] = None
    blob_id: Optional[str] = None
    size: int = 0
    main_type: str = ""
    subtype: str = ""
    disposition: str = ""
    filename: Optional[str] = None
    charset: Optional[str] = None
    sub_parts: List["BodyPart"] = Field(default_factory=list)

    @property
    def mime_type(self) -> str:
        if self.main_type and self.subtype:
            return f"{self.main_type}/{self.subtype}"
        return "application/octet-stream"

    @property
    def is_text_body(self) -> bool:
        return self.main_type == "text" and self.subtype in ("plain", "html")

    @property
    def is_explicit_attachment(self) -> bool:
        return self.disposition.lower() == "attachment"

    def walk(self):
        """자신과 모든 하위 파트를 깊이 우선으로 순회"""
        yield self
        for part in self.sub_parts:
            yield from part.walk()


class Attachment(BaseModel):
    """첨부파일 정보 (id는 blobId, 없으면 partId)"""

    id: str
    filename: str
    mime: str = "application/octet-stream"
    size: int = 0


class MailSummary(BaseModel):
    """목록 표시용 메일 요약"""

    id: str
    thread_id: str = ""
    subject: str = ""
    sender: str = ""
    recipients: List[str] = Field(default_factory=list)
    preview: str = ""
    received_at: Optional[datetime] = None
    is_unread: bool = True
    is_starred: bool = False
    has_attachments: bool = False
    size: int = 0


class MailEnvelope(JmapModel):
    """Email/get 항목"""

    id: str
    thread_id: str = Field("", alias="threadId")
    mailbox_ids: Dict[str, bool] = Field(default_factory=dict, alias="mailboxIds")
    keywords: Dict[str, bool] = Field(default_factory=dict)
    size: int = 0
    received_at: Optional[datetime] = Field(None, alias="receivedAt")
    has_attachment: Optional[bool] = Field(None, alias="hasAttachment")
    preview: Optional[str] = None
    subject: Optional[str] = None
    from_: List[EmailAddress] = Field(default_factory=list, alias="from")
    to: List[EmailAddress] = Field(default_factory=list)
    cc: List[EmailAddress] = Field(default_factory=list)
    bcc: List[EmailAddress] = Field(default_factory=list)
    # None이면 bodyStructure를 조회하지 않은 것
    body_structure: Optional[List[BodyPart]] = Field(None, alias="bodyStructure")
    body_values: Dict[str, BodyValue] = Field(default_factory=dict, alias="bodyValues")
    text_body: List[BodyPartRef] = Field(default_factory=list, alias="textBody")
    html_body: List[BodyPartRef] = Field(default_factory=list, alias="htmlBody")

    @field_validator("keywords", "mailbox_ids", "body_values", mode="before")
    @classmethod
    def _null_to_empty_dict(cls, value: Any) -> Any:
        return value if value is not None else {}

    @field_validator("from_", "to", "cc", "bcc", "text_body", "html_body", mode="before")
    @classmethod
    def _null_to_empty_list(cls, value: Any) -> Any:
        return value if value is not None else []

    @field_validator("body_structure", mode="before")
    @classmethod
    def _decode_body_structure(cls, value: Any) -> Any:
        from .attachment_parser import decode_body_structure

        if value is None:
            return None
        if isinstance(value, list) and all(isinstance(part, BodyPart) for part in value):
            return value
        return decode_body_structure(value)

    @property
    def is_unread(self) -> bool:
        """$seen 키워드가 없거나 false면 읽지 않음"""
        return not self.keywords.get("$seen", False)

    @property
    def is_starred(self) -> bool:
        return bool(self.keywords.get("$flagged", False))

    @property
    def is_draft(self) -> bool:
        return bool(self.keywords.get("$draft", False))

    @property
    def attachments(self) -> List[Attachment]:
        from .attachment_parser import extract_attachments

        return extract_attachments(self.body_structure or [])

    @property
    def has_attachments(self) -> bool:
        """bodyStructure 기준 첨부 여부 (조회하지 않았을 때만 서버 hasAttachment 사용)"""
        if self.body_structure is None:
            return bool(self.has_attachment)
        return bool(self.attachments)

    def _join_values(self, refs: List[BodyPartRef]) -> str:
        values = []
        for ref in refs:
            body_value = self.body_values.get(ref.part_id or "")
            if body_value and body_value.value:
                values.append(body_value.value)
        return "\n".join(values)

    @property
    def text_content(self) -> str:
        return self._join_values(self.text_body)

    @property
    def html_content(self) -> str:
        return self._join_values(self.html_body)

    def to_summary(self) -> MailSummary:
        """목록 표시용 요약으로 변환"""
        sender = self.from_[0].display() if self.from_ else ""
        return MailSummary(
            id=self.id,
            thread_id=self.thread_id,
            subject=self.subject or "",
            sender=sender,
            recipients=[address.email for address in self.to],
            preview=self.preview or "",
            received_at=self.received_at,
            is_unread=self.is_unread,
            is_starred=self.is_starred,
            has_attachments=self.has_attachments,
            size=self.size,
        )


class EmailQueryResult(JmapModel):
    """Email/query 결과"""

    ids: List[str] = Field(default_factory=list)
    position: int = 0
    total: Optional[int] = None
    query_state: Optional[str] = Field(None, alias="queryState")


# ============================================================================
# Blob / Submission
# ============================================================================

class UploadedBlob(JmapModel):
    """업로드 엔드포인트 응답"""

    account_id: str = Field("", alias="accountId")
    blob_id: str = Field(..., alias="blobId", min_length=1)
    type: str = "application/octet-stream"
    size: int = 0

    def as_attachment(self, filename: str) -> Attachment:
        return Attachment(id=self.blob_id, filename=filename, mime=self.type, size=self.size)


class SubmissionStatus(BaseModel):
    """EmailSubmission/get 정규화 결과"""

    id: str
    email_id: Optional[str] = None
    delivered: Optional[bool] = None
    failed: Optional[bool] = None
    last_status_text: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)
