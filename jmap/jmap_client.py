"""
JMAP Client - 세션 discovery, 요청 dispatch, 메일 기능

JmapClient는 인증 방식과 무관한 공통 로직을 담고,
하위 클래스(JmapOAuthClient, JmapBasicClient)가 인증 헤더와 갱신 방식을 제공한다.

동시성:
    - asyncio.Lock 하나가 토큰 결정과 세션 결정을 직렬화
    - asyncio.Semaphore(2)가 모든 외부 요청(업로드/다운로드 포함) 동시 실행 수 제한
    - 첫 요청만 150ms 대기
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import quote, urlsplit

import aiohttp
from pydantic import ValidationError

from core.errors import HttpStatusError, MethodError, ProtocolError
from core.http_utils import OPERATION_TIMEOUT, origin_of, with_transient_retry
from .jmap_request import JmapRequest, JmapResponse, set_error_message
from .jmap_types import (
    DEFAULT_EMAIL_PROPERTIES,
    SUBMISSION_USING,
    Attachment,
    EmailQueryResult,
    JmapSession,
    Mailbox,
    MailEnvelope,
    SubmissionStatus,
    UploadedBlob,
)

logger = logging.getLogger(__name__)

AUTH_FAILURE_STATUSES = (401, 403)


def _preview(payload: Union[str, bytes, None]) -> str:
    if isinstance(payload, bytes):
        return payload.decode("utf-8", errors="replace")
    return payload or ""


class JmapClient:
    """
    JMAP 클라이언트 베이스

    하위 클래스 구현 필요:
        _credential_locked(): 현재 자격 증명 (락 보유 상태에서 호출)
        _refresh_locked(stale): 401/403 이후 새 자격 증명 또는 None (락 보유 상태)
        _auth_header(credential): Authorization 헤더 값
    """

    SESSION_PATHS: Tuple[str, ...] = ("/.well-known/jmap",)
    SESSION_TTL_SECONDS = 300
    MAX_CONCURRENT_REQUESTS = 2
    WARMUP_DELAY_SECONDS = 0.15

    def __init__(
        self,
        server_url: str,
        identity: str,
        account_id: str = "",
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Args:
            server_url: 서버 주소 (끝 슬래시 제거)
            identity: 사용자 식별자 (토큰 저장 키)
            account_id: 세션에서 계정을 찾지 못할 때 쓰는 기본 계정 ID
            http_session: 공유 aiohttp 세션 (선택적)
        """
        self.server_url = server_url.strip().rstrip("/")
        self.identity = identity
        self.account_id = account_id

        self._http = http_session
        self._owns_http = http_session is None

        self._lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(self.MAX_CONCURRENT_REQUESTS)
        self._first_request = True
        # (account_id, credential) -> (session, 저장 시각)
        self._session_cache: Dict[Tuple[str, str], Tuple[JmapSession, float]] = {}

    async def _get_http(self) -> aiohttp.ClientSession:
        """aiohttp 세션 관리"""
        if not self._http or self._http.closed:
            self._http = aiohttp.ClientSession(timeout=OPERATION_TIMEOUT)
            self._owns_http = True
        return self._http

    # ------------------------------------------------------------------
    # 인증 훅
    # ------------------------------------------------------------------

    async def _credential_locked(self) -> str:
        raise NotImplementedError

    async def _refresh_locked(self, stale: str) -> Optional[str]:
        raise NotImplementedError

    def _auth_header(self, credential: str) -> str:
        raise NotImplementedError

    async def _credential(self) -> str:
        async with self._lock:
            return await self._credential_locked()

    async def _refresh_credential(self, stale: str) -> Optional[str]:
        async with self._lock:
            return await self._refresh_locked(stale)

    def _adjust_session(self, session: JmapSession) -> JmapSession:
        """세션 후처리 (기본은 그대로)"""
        return session

    # ------------------------------------------------------------------
    # 세션
    # ------------------------------------------------------------------

    async def get_session(self) -> JmapSession:
        """
        JMAP 세션 조회 (5분 캐시)

        캐시 키는 (account_id, 자격 증명)이므로 토큰이 바뀌면 자동으로 다시 조회한다.

        Returns:
            JmapSession

        Raises:
            TokenExpiredError: 토큰 갱신 불가
            HttpStatusError: 2xx가 아닌 응답 (인증 재시도 이후 포함)
            TransportError: 일시 장애 재시도 소진
            ProtocolError: 세션 문서 파싱 실패
        """
        async with self._lock:
            credential = await self._credential_locked()

            cached = self._session_cache.get((self.account_id, credential))
            if cached and time.monotonic() - cached[1] < self.SESSION_TTL_SECONDS:
                return cached[0]

            session, credential = await self._fetch_session_locked(credential)
            self._session_cache[(self.account_id, credential)] = (session, time.monotonic())
            return session

    async def _fetch_session_locked(self, credential: str) -> Tuple[JmapSession, str]:
        status, body, url = await self._get_session_document(credential)

        if status in AUTH_FAILURE_STATUSES:
            logger.info(f"Session request returned {status}, refreshing credentials once")
            refreshed = await self._refresh_locked(credential)
            if refreshed is None:
                raise HttpStatusError(status, body, url)
            credential = refreshed
            status, body, url = await self._get_session_document(credential)

        if not 200 <= status < 300:
            raise HttpStatusError(status, body, url)

        try:
            session = JmapSession.model_validate_json(body)
        except ValidationError as e:
            raise ProtocolError(f"Invalid JMAP session document from {url}", body) from e

        session = self._adjust_session(session)
        logger.info(
            f"JMAP session loaded: api_url={session.api_url}, "
            f"accounts={len(session.accounts)}"
        )
        return session, credential

    async def _get_session_document(self, credential: str) -> Tuple[int, str, str]:
        """
        세션 경로를 순서대로 조회

        인증 실패(401/403)는 바로 반환하고, 그 외 실패는 다음 경로로 넘어간다.

        Returns:
            (상태 코드, 본문, URL)
        """
        headers = {"Authorization": self._auth_header(credential), "Accept": "application/json"}
        result: Tuple[int, str, str] = (0, "", self.server_url)

        for path in self.SESSION_PATHS:
            url = f"{self.server_url}{path}"

            async def _get(url=url):
                http = await self._get_http()
                async with http.get(url, headers=headers, timeout=OPERATION_TIMEOUT) as response:
                    return response.status, await response.text()

            status, body = await with_transient_retry(_get, label=f"JMAP session {url}")
            result = (status, body, url)

            if 200 <= status < 300 or status in AUTH_FAILURE_STATUSES:
                return result
            logger.warning(f"Session request to {url} failed with {status}")

        return result

    async def resolve_account_id(self, account_id: Optional[str] = None) -> str:
        """명시적 인자 > 세션 기본 mail 계정 > 첫 계정 > 클라이언트 기본값"""
        if account_id:
            return account_id
        session = await self.get_session()
        return session.resolve_account_id(None, self.account_id)

    # ------------------------------------------------------------------
    # 요청 dispatch
    # ------------------------------------------------------------------

    async def make_request(
        self,
        method_calls: Union[JmapRequest, Sequence[Sequence[Any]]],
        using: Optional[Sequence[str]] = None,
    ) -> JmapResponse:
        """
        메서드 호출 배치 실행

        Args:
            method_calls: JmapRequest 또는 [[name, args, callId], ...]
            using: capability URN 목록 (기본 core + mail)

        Returns:
            검증된 JmapResponse

        Raises:
            ProtocolError: 응답 형태 불일치 (재시도 안 함)
            MethodError: 첫 응답이 메서드 오류
        """
        if isinstance(method_calls, JmapRequest):
            request = method_calls
        else:
            request = JmapRequest.from_calls(method_calls, using)

        session = await self.get_session()
        logger.debug(f"JMAP request: {[call.name for call in request.method_calls]}")

        body = await self._send(
            "POST",
            session.api_url,
            data=request.to_json().encode("utf-8"),
            content_type="application/json",
            label=f"JMAP {request.first_method}",
        )
        return JmapResponse.parse(body, request)

    async def _send(
        self,
        method: str,
        url: str,
        data: Optional[bytes] = None,
        content_type: Optional[str] = None,
        as_bytes: bool = False,
        label: str = "JMAP request",
    ) -> Union[str, bytes]:
        """
        인증된 HTTP 요청 1건 (동시 실행 제한, 일시 장애 재시도, 401/403 1회 재인증)

        Returns:
            응답 본문 (as_bytes면 bytes)
        """
        async with self._semaphore:
            if self._first_request:
                self._first_request = False
                await asyncio.sleep(self.WARMUP_DELAY_SECONDS)

            credential = await self._credential()
            status, payload = await self._exchange(method, url, credential, data, content_type, as_bytes, label)

            if status in AUTH_FAILURE_STATUSES:
                logger.info(f"{label}: got {status}, refreshing credentials and retrying once")
                refreshed = await self._refresh_credential(credential)
                if refreshed is None:
                    raise HttpStatusError(status, _preview(payload), url)
                status, payload = await self._exchange(
                    method, url, refreshed, data, content_type, as_bytes, label
                )

            if not 200 <= status < 300:
                logger.error(f"{label} failed: status={status}")
                raise HttpStatusError(status, _preview(payload), url)

            return payload

    async def _exchange(
        self,
        method: str,
        url: str,
        credential: str,
        data: Optional[bytes],
        content_type: Optional[str],
        as_bytes: bool,
        label: str,
    ) -> Tuple[int, Union[str, bytes]]:
        headers = {"Authorization": self._auth_header(credential)}
        headers["Accept"] = "*/*" if as_bytes else "application/json"
        if content_type:
            headers["Content-Type"] = content_type

        async def _call():
            http = await self._get_http()
            async with http.request(
                method, url, data=data, headers=headers, timeout=OPERATION_TIMEOUT
            ) as response:
                payload = await response.read() if as_bytes else await response.text()
                return response.status, payload

        return await with_transient_retry(_call, label=label)

    # ------------------------------------------------------------------
    # 메일 기능
    # ------------------------------------------------------------------

    async def list_mailboxes(self, account_id: Optional[str] = None) -> List[Mailbox]:
        """
        메일함 목록 조회 (Mailbox/get)

        Args:
            account_id: 계정 ID (선택적)

        Returns:
            Mailbox 리스트
        """
        account = await self.resolve_account_id(account_id)
        response = await self.make_request([["Mailbox/get", {"accountId": account, "ids": None}, "0"]])
        result = response.result_for("0", "Mailbox/get")

        try:
            return [Mailbox.model_validate(item) for item in result.get("list") or []]
        except ValidationError as e:
            raise ProtocolError(f"Invalid Mailbox/get response: {e}") from e

    async def query_emails(
        self,
        mailbox_id: Optional[str] = None,
        account_id: Optional[str] = None,
        position: int = 0,
        limit: int = 50,
        filter: Optional[Dict[str, Any]] = None,
        search_text: Optional[str] = None,
    ) -> EmailQueryResult:
        """
        메일 ID 조회 (Email/query, 수신 시각 내림차순)

        Args:
            mailbox_id: 메일함 ID (filter가 없을 때 inMailbox로 사용)
            account_id: 계정 ID
            position: 시작 위치
            limit: 최대 개수
            filter: 호출자가 만든 FilterCondition (있으면 그대로 사용)
            search_text: 전체 텍스트 검색어 (filter가 없을 때 text로 사용)

        Returns:
            EmailQueryResult
        """
        account = await self.resolve_account_id(account_id)

        if filter is None:
            filter = {}
            if mailbox_id:
                filter["inMailbox"] = mailbox_id
            if search_text and search_text.strip():
                filter["text"] = search_text

        arguments = {
            "accountId": account,
            "filter": filter,
            "sort": [{"property": "receivedAt", "isAscending": False}],
            "position": position,
            "limit": limit,
            "calculateTotal": True,
        }
        response = await self.make_request([["Email/query", arguments, "0"]])
        result = response.result_for("0", "Email/query")

        try:
            return EmailQueryResult.model_validate(result)
        except ValidationError as e:
            raise ProtocolError(f"Invalid Email/query response: {e}") from e

    async def fetch_emails(
        self,
        ids: Sequence[str],
        account_id: Optional[str] = None,
        properties: Optional[Sequence[str]] = None,
    ) -> List[MailEnvelope]:
        """
        메일 상세 조회 (Email/get, 본문 값 포함)

        Args:
            ids: 메일 ID 목록 (비어 있으면 요청 없이 빈 리스트)
            account_id: 계정 ID
            properties: 조회 속성 (기본 DEFAULT_EMAIL_PROPERTIES)

        Returns:
            MailEnvelope 리스트 (서버 응답 순서)
        """
        if not ids:
            return []

        account = await self.resolve_account_id(account_id)
        arguments = {
            "accountId": account,
            "ids": list(ids),
            "properties": list(properties) if properties else list(DEFAULT_EMAIL_PROPERTIES),
            "fetchTextBodyValues": True,
            "fetchHTMLBodyValues": True,
        }
        response = await self.make_request([["Email/get", arguments, "0"]])
        result = response.result_for("0", "Email/get")

        not_found = result.get("notFound") or []
        if not_found:
            logger.info(f"Email/get notFound: {len(not_found)} ids")

        try:
            return [MailEnvelope.model_validate(item) for item in result.get("list") or []]
        except ValidationError as e:
            raise ProtocolError(f"Invalid Email/get response: {e}") from e

    async def _email_set(self, account_id: Optional[str], arguments: Dict[str, Any]) -> Dict[str, Any]:
        account = await self.resolve_account_id(account_id)
        response = await self.make_request([["Email/set", {"accountId": account, **arguments}, "0"]])
        return response.result_for("0", "Email/set")

    async def update_keywords(
        self, email_id: str, keywords: Dict[str, bool], account_id: Optional[str] = None
    ) -> bool:
        """
        키워드 변경 (true는 설정, false는 제거)

        Returns:
            응답 updated에 email_id가 있는지 여부 (없으면 False, 오류 아님)
        """
        patch = {f"keywords/{keyword}": True if value else None for keyword, value in keywords.items()}
        result = await self._email_set(account_id, {"update": {email_id: patch}})
        return email_id in (result.get("updated") or {})

    async def mark_read(self, email_id: str, read: bool = True, account_id: Optional[str] = None) -> bool:
        return await self.update_keywords(email_id, {"$seen": read}, account_id)

    async def set_starred(self, email_id: str, starred: bool = True, account_id: Optional[str] = None) -> bool:
        return await self.update_keywords(email_id, {"$flagged": starred}, account_id)

    async def delete(self, email_id: str, account_id: Optional[str] = None) -> bool:
        """
        메일 영구 삭제 (Email/set destroy)

        Returns:
            응답 destroyed에 email_id가 있는지 여부
        """
        result = await self._email_set(account_id, {"destroy": [email_id]})
        return email_id in (result.get("destroyed") or [])

    async def move(
        self,
        email_id: str,
        from_mailbox_id: str,
        to_mailbox_id: str,
        account_id: Optional[str] = None,
    ) -> bool:
        """
        메일함 이동 (mailboxIds 패치)

        Returns:
            응답 updated에 email_id가 있는지 여부
        """
        patch = {
            f"mailboxIds/{from_mailbox_id}": None,
            f"mailboxIds/{to_mailbox_id}": True,
        }
        result = await self._email_set(account_id, {"update": {email_id: patch}})
        return email_id in (result.get("updated") or {})

    # ------------------------------------------------------------------
    # Blob
    # ------------------------------------------------------------------

    def _download_url(
        self, session: JmapSession, account_id: str, blob_id: str, name: str, mime_type: str
    ) -> str:
        template = session.download_url
        if template and "{blobId}" in template:
            return (
                template.replace("{accountId}", quote(account_id, safe=""))
                .replace("{blobId}", quote(blob_id, safe=""))
                .replace("{name}", quote(name, safe=""))
                .replace("{type}", quote(mime_type, safe=""))
            )
        return (
            f"{origin_of(self.server_url)}/jmap/download/{quote(account_id, safe='')}/"
            f"{quote(blob_id, safe='')}/{quote(name, safe='')}?accept=application/octet-stream"
        )

    async def download_blob(
        self,
        blob_id: str,
        account_id: Optional[str] = None,
        name: str = "attachment",
        mime_type: str = "application/octet-stream",
    ) -> bytes:
        """
        blob 다운로드

        Args:
            blob_id: blob ID (공백 / "null"이면 요청 없이 ValueError)
            account_id: 계정 ID
            name: URL에 넣을 파일명
            mime_type: URL 템플릿의 {type} 값

        Returns:
            blob 바이트
        """
        if not blob_id or not blob_id.strip() or blob_id == "null":
            raise ValueError(f"blob_id must not be blank: {blob_id!r}")

        session = await self.get_session()
        account = session.resolve_account_id(account_id, self.account_id)
        url = self._download_url(session, account, blob_id, name, mime_type)
        logger.info(f"Downloading blob: {blob_id}")

        return await self._send("GET", url, as_bytes=True, label=f"Blob download {blob_id}")

    async def upload_blob(
        self, data: bytes, mime_type: str, filename: str, account_id: Optional[str] = None
    ) -> UploadedBlob:
        """
        blob 업로드 (세션 uploadUrl)

        Args:
            data: 파일 내용
            mime_type: Content-Type
            filename: 로그 / 첨부 이름용 파일명
            account_id: 계정 ID

        Returns:
            UploadedBlob
        """
        session = await self.get_session()
        account = session.resolve_account_id(account_id, self.account_id)

        if not session.upload_url:
            raise ProtocolError("JMAP session has no uploadUrl")
        url = session.upload_url.replace("{accountId}", quote(account, safe=""))

        logger.info(f"Uploading blob: {filename} ({mime_type}, {len(data)} bytes)")
        body = await self._send(
            "POST",
            url,
            data=data,
            content_type=mime_type or "application/octet-stream",
            label=f"Blob upload {filename}",
        )

        try:
            blob = UploadedBlob.model_validate_json(body)
        except ValidationError as e:
            raise ProtocolError("Invalid upload response", body) from e

        if not blob.account_id:
            blob = blob.model_copy(update={"account_id": account})
        return blob

    # ------------------------------------------------------------------
    # 작성 / 발송
    # ------------------------------------------------------------------

    async def _mailbox_ids_by_role(self, account_id: str) -> Dict[str, str]:
        mailboxes = await self.list_mailboxes(account_id)
        roles: Dict[str, str] = {}
        for mailbox in mailboxes:
            if mailbox.role and mailbox.role.lower() not in roles:
                roles[mailbox.role.lower()] = mailbox.id
        return roles

    @staticmethod
    def _build_email(
        from_address: str,
        to: Sequence[str],
        subject: str,
        body: str,
        attachments: Sequence[Attachment],
        mailbox_id: str,
        keywords: Dict[str, bool],
    ) -> Dict[str, Any]:
        email: Dict[str, Any] = {
            "mailboxIds": {mailbox_id: True},
            "keywords": keywords,
            "from": [{"email": from_address}],
            "to": [{"email": address} for address in to],
            "subject": subject,
            "bodyValues": {"body": {"value": body}},
            "textBody": [{"partId": "body", "type": "text/plain"}],
        }
        if attachments:
            email["attachments"] = [
                {
                    "blobId": attachment.id,
                    "type": attachment.mime,
                    "name": attachment.filename,
                    "disposition": "attachment",
                }
                for attachment in attachments
            ]
        return email

    async def save_draft(
        self,
        from_address: str,
        to: Sequence[str],
        subject: str,
        body: str,
        attachments: Sequence[Attachment] = (),
        draft_id: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> str:
        """
        임시 보관함에 초안 저장 (기존 draft_id가 있으면 교체)

        Returns:
            새 초안 메일 ID
        """
        account = await self.resolve_account_id(account_id)
        roles = await self._mailbox_ids_by_role(account)
        drafts_id = roles.get("drafts")
        if not drafts_id:
            raise ProtocolError("No mailbox with role 'drafts'")

        email = self._build_email(
            from_address, to, subject, body, attachments, drafts_id, {"$draft": True, "$seen": True}
        )
        arguments: Dict[str, Any] = {"accountId": account, "create": {"draft": email}}
        if draft_id:
            arguments["destroy"] = [draft_id]

        response = await self.make_request([["Email/set", arguments, "0"]])
        result = response.result_for("0", "Email/set")

        not_created = result.get("notCreated") or {}
        if "draft" in not_created:
            raise MethodError(
                f"Failed to save draft: {set_error_message(not_created, 'draft')}",
                error_type=(not_created["draft"] or {}).get("type"),
            )

        created = (result.get("created") or {}).get("draft") or {}
        if not created.get("id"):
            raise ProtocolError("Email/set did not return the created draft id")

        logger.info(f"Draft saved: {created['id']}")
        return created["id"]

    async def send_email(
        self,
        from_address: str,
        to: Sequence[str],
        subject: str,
        body: str,
        attachments: Sequence[Attachment] = (),
        draft_id: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> str:
        """
        메일 발송 (Email/set + EmailSubmission/set 한 번의 배치)

        Args:
            from_address: 발신 주소 (일치하는 Identity가 없으면 첫 Identity 사용)
            to: 수신자 목록 (비어 있으면 ValueError)
            subject: 제목
            body: 텍스트 본문
            attachments: 업로드된 첨부파일
            draft_id: 발송 후 삭제할 기존 초안 ID
            account_id: 계정 ID

        Returns:
            EmailSubmission ID
        """
        if not to:
            raise ValueError("At least one recipient is required")

        account = await self.resolve_account_id(account_id)
        identity = await self._find_identity(account, from_address)
        roles = await self._mailbox_ids_by_role(account)

        drafts_id = roles.get("drafts")
        sent_id = roles.get("sent")
        staging_id = drafts_id or sent_id
        if not staging_id:
            raise ProtocolError("No mailbox with role 'drafts' or 'sent'")

        email = self._build_email(
            identity.get("email") or from_address,
            to,
            subject,
            body,
            attachments,
            staging_id,
            {"$draft": True, "$seen": True},
        )

        on_success: Dict[str, Any] = {"keywords/$draft": None}
        if drafts_id and sent_id:
            on_success[f"mailboxIds/{drafts_id}"] = None
            on_success[f"mailboxIds/{sent_id}"] = True

        request = JmapRequest(SUBMISSION_USING)
        email_arguments: Dict[str, Any] = {"accountId": account, "create": {"draft": email}}
        if draft_id:
            email_arguments["destroy"] = [draft_id]
        request.add("Email/set", email_arguments, "0")
        request.add(
            "EmailSubmission/set",
            {
                "accountId": account,
                "create": {"send": {"identityId": identity["id"], "emailId": "#draft"}},
                "onSuccessUpdateEmail": {"#send": on_success},
            },
            "1",
        )

        response = await self.make_request(request)

        email_result = response.result_for("0", "Email/set")
        not_created = email_result.get("notCreated") or {}
        if "draft" in not_created:
            raise MethodError(
                f"Failed to create email: {set_error_message(not_created, 'draft')}",
                error_type=(not_created["draft"] or {}).get("type"),
            )

        submission_result = response.result_for("1", "EmailSubmission/set")
        not_submitted = submission_result.get("notCreated") or {}
        if "send" in not_submitted:
            raise MethodError(
                f"Failed to send email: {set_error_message(not_submitted, 'send')}",
                error_type=(not_submitted["send"] or {}).get("type"),
            )

        submission = (submission_result.get("created") or {}).get("send") or {}
        if not submission.get("id"):
            raise ProtocolError("EmailSubmission/set did not return a submission id")

        logger.info(f"Email submitted: submission_id={submission['id']}, recipients={len(to)}")
        return submission["id"]

    async def _find_identity(self, account_id: str, from_address: str) -> Dict[str, Any]:
        """Identity/get에서 발신 주소와 일치하는 Identity (없으면 첫 번째)"""
        response = await self.make_request(
            [["Identity/get", {"accountId": account_id, "ids": None}, "0"]],
            using=SUBMISSION_USING,
        )
        identities = response.result_for("0", "Identity/get").get("list") or []
        if not identities:
            raise ProtocolError("No sending identity available")

        wanted = (from_address or "").strip().lower()
        for identity in identities:
            if (identity.get("email") or "").lower() == wanted:
                return identity
        return identities[0]

    async def get_email_submission(
        self, submission_id: str, account_id: Optional[str] = None
    ) -> SubmissionStatus:
        """
        발송 상태 조회 (EmailSubmission/get)

        Returns:
            deliveryStatus / undoStatus를 정규화한 SubmissionStatus
        """
        account = await self.resolve_account_id(account_id)
        response = await self.make_request(
            [["EmailSubmission/get", {"accountId": account, "ids": [submission_id]}, "0"]],
            using=SUBMISSION_USING,
        )
        result = response.result_for("0", "EmailSubmission/get")

        for item in result.get("list") or []:
            if item.get("id") == submission_id:
                return self._submission_status(item)

        raise ProtocolError(f"Email submission not found: {submission_id}")

    @staticmethod
    def _submission_status(item: Dict[str, Any]) -> SubmissionStatus:
        delivery = item.get("deliveryStatus") or {}
        states = [str((status or {}).get("delivered") or "").lower() for status in delivery.values()]
        replies = [(status or {}).get("smtpReply") for status in delivery.values()]
        replies = [reply for reply in replies if reply]

        delivered: Optional[bool] = None
        failed: Optional[bool] = None
        if states and all(state == "yes" for state in states):
            delivered = True
        if any(state == "no" for state in states) or item.get("undoStatus") == "canceled":
            failed = True
            delivered = False

        return SubmissionStatus(
            id=item.get("id") or "",
            email_id=item.get("emailId"),
            delivered=delivered,
            failed=failed,
            last_status_text=replies[-1] if replies else item.get("undoStatus"),
            raw=item,
        )

    # ------------------------------------------------------------------
    # 리소스
    # ------------------------------------------------------------------

    async def close(self):
        """리소스 정리"""
        if self._owns_http and self._http and not self._http.closed:
            await self._http.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


class JmapBasicClient(JmapClient):
    """
    Basic 인증 JMAP 클라이언트

    세션은 /jmap/session에서 조회하고 실패하면 /.well-known/jmap으로 넘어간다.
    갱신할 자격 증명이 없으므로 401/403은 바로 HttpStatusError.
    """

    SESSION_PATHS = ("/jmap/session", "/.well-known/jmap")

    def __init__(
        self,
        server_url: str,
        identity: str,
        password: str,
        account_id: str = "",
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(server_url, identity, account_id, http_session)
        self._basic_auth = aiohttp.BasicAuth(identity, password).encode()

    async def _credential_locked(self) -> str:
        return self._basic_auth

    async def _refresh_locked(self, stale: str) -> Optional[str]:
        return None

    def _auth_header(self, credential: str) -> str:
        return credential

    def _adjust_session(self, session: JmapSession) -> JmapSession:
        """apiUrl이 설정된 서버와 다른 호스트/포트를 가리키면 {server}/jmap 사용"""
        if self._same_endpoint(session.api_url):
            return session
        effective = f"{self.server_url}/jmap"
        logger.info(f"Using {effective} instead of session apiUrl {session.api_url}")
        return session.model_copy(update={"api_url": effective})

    def _same_endpoint(self, url: str) -> bool:
        try:
            base, other = urlsplit(self.server_url), urlsplit(url)
            return base.hostname == other.hostname and self._port(base) == self._port(other)
        except ValueError:
            return False

    @staticmethod
    def _port(parts) -> Optional[int]:
        if parts.port:
            return parts.port
        return {"https": 443, "http": 80}.get(parts.scheme)
