"""
JMAP Client Tests
세션 캐시, 재인증, 일시 장애 재시도, 메일 기능 테스트
"""

import asyncio
import json
from datetime import timedelta
from unittest.mock import AsyncMock

import aiohttp
import pytest

from auth.oauth_types import StoredToken
from auth.time_utils import utc_now
from core.errors import HttpStatusError, MethodError, ProtocolError, TokenExpiredError, TransportError
from jmap.jmap_types import JMAP_SUBMISSION, Attachment

from .conftest import ACCOUNT_ID, SERVER, jmap_reply, make_response, session_document


def sent_body(http_session, index=-1):
    """http.request에 전달된 JMAP 요청 본문"""
    call = http_session.request.call_args_list[index]
    return json.loads(call.kwargs["data"].decode("utf-8"))


def auth_header(call):
    return call.kwargs["headers"]["Authorization"]


def token_store_token(access_token):
    return StoredToken(access_token=access_token, expires_at=utc_now() + timedelta(hours=1), refresh_token="r")


MAILBOXES = [
    "Mailbox/get",
    {"list": [
        {"id": "mb-inbox", "name": "Inbox", "role": "inbox"},
        {"id": "mb-drafts", "name": "Drafts", "role": "drafts"},
        {"id": "mb-sent", "name": "Sent", "role": "Sent"},
    ]},
    "0",
]

IDENTITIES = [
    "Identity/get",
    {"list": [
        {"id": "id-other", "email": "other@example.com"},
        {"id": "id-kim", "email": "kim@example.com"},
    ]},
    "0",
]


class TestSession:
    """세션 discovery / 캐시 테스트"""

    @pytest.mark.asyncio
    async def test_session_is_cached(self, oauth_client, http_session):
        first = await oauth_client.get_session()
        second = await oauth_client.get_session()

        assert first is second
        assert http_session.get.call_count == 1
        assert http_session.get.call_args.args[0] == f"{SERVER}/.well-known/jmap"
        assert auth_header(http_session.get.call_args) == "Bearer valid-token"

    @pytest.mark.asyncio
    async def test_new_token_invalidates_cache(self, oauth_client, http_session, token_store):
        await oauth_client.get_session()
        token_store.clear(SERVER, "kim@example.com")
        token_store.put(SERVER, "kim@example.com", token_store_token("rotated-token"))

        await oauth_client.get_session()

        assert http_session.get.call_count == 2

    @pytest.mark.asyncio
    async def test_session_401_refreshes_once(self, oauth_client, http_session, token_refresh):
        http_session.get.side_effect = [
            make_response(401, "unauthorized"),
            make_response(200, json_body=session_document()),
        ]

        session = await oauth_client.get_session()

        assert session.api_url == f"{SERVER}/jmap/api/"
        assert token_refresh.refresh.await_count == 1
        assert auth_header(http_session.get.call_args_list[1]) == "Bearer refreshed-1"

    @pytest.mark.asyncio
    async def test_session_invalid_document(self, oauth_client, http_session):
        http_session.get.side_effect = None
        http_session.get.return_value = make_response(200, json_body={"accounts": {}})

        with pytest.raises(ProtocolError):
            await oauth_client.get_session()

    @pytest.mark.asyncio
    async def test_expired_token_without_refresh_fails_before_request(self, oauth_client, http_session, token_store):
        token_store.clear(SERVER, "kim@example.com")

        with pytest.raises(TokenExpiredError):
            await oauth_client.list_mailboxes()

        http_session.get.assert_not_called()
        http_session.request.assert_not_called()


class TestDispatch:
    """요청 dispatch 테스트"""

    @pytest.mark.asyncio
    async def test_auth_failure_refreshes_once_then_raises(self, oauth_client, http_session, token_refresh):
        http_session.request.side_effect = [make_response(401, "nope"), make_response(401, "still nope")]

        with pytest.raises(HttpStatusError) as exc_info:
            await oauth_client.list_mailboxes()

        assert exc_info.value.status == 401
        assert token_refresh.refresh.await_count == 1
        assert http_session.request.call_count == 2
        calls = http_session.request.call_args_list
        assert auth_header(calls[0]) == "Bearer valid-token"
        assert auth_header(calls[1]) == "Bearer refreshed-1"

    @pytest.mark.asyncio
    async def test_forbidden_then_success(self, oauth_client, http_session):
        http_session.request.side_effect = [make_response(403, "forbidden"), jmap_reply(MAILBOXES)]

        mailboxes = await oauth_client.list_mailboxes()

        assert [m.id for m in mailboxes] == ["mb-inbox", "mb-drafts", "mb-sent"]

    @pytest.mark.asyncio
    async def test_transient_faults_exhaust_retries(self, oauth_client, http_session, no_sleep):
        oauth_client._first_request = True
        http_session.request.side_effect = aiohttp.ClientConnectionError("connection reset")

        with pytest.raises(TransportError) as exc_info:
            await oauth_client.list_mailboxes()

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, aiohttp.ClientConnectionError)
        assert http_session.request.call_count == 3
        assert [c.args[0] for c in no_sleep.await_args_list] == [0.15, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_transient_fault_then_success(self, oauth_client, http_session, no_sleep):
        http_session.request.side_effect = [aiohttp.ServerDisconnectedError(), jmap_reply(MAILBOXES)]

        mailboxes = await oauth_client.list_mailboxes()

        assert len(mailboxes) == 3
        assert [c.args[0] for c in no_sleep.await_args_list] == [1.0]

    @pytest.mark.asyncio
    async def test_server_error_is_not_retried(self, oauth_client, http_session, no_sleep):
        http_session.request.return_value = make_response(500, "x" * 500)

        with pytest.raises(HttpStatusError) as exc_info:
            await oauth_client.list_mailboxes()

        assert exc_info.value.status == 500
        assert len(exc_info.value.body) == 200
        assert http_session.request.call_count == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_at_most_two_requests_in_flight(self, oauth_client, http_session):
        """동시 호출 6건도 외부 요청은 최대 2건만 동시에 진행"""
        in_flight = {"now": 0, "peak": 0}

        def slow_request(method, url, **kwargs):
            context = jmap_reply(MAILBOXES)
            response = context.__aenter__.return_value

            async def enter():
                in_flight["now"] += 1
                in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
                await asyncio.sleep(0.01)
                return response

            async def exit_(*args):
                in_flight["now"] -= 1
                return False

            context.__aenter__ = AsyncMock(side_effect=enter)
            context.__aexit__ = AsyncMock(side_effect=exit_)
            return context

        http_session.request.side_effect = slow_request

        results = await asyncio.gather(*(oauth_client.list_mailboxes() for _ in range(6)))

        assert all(len(mailboxes) == 3 for mailboxes in results)
        assert http_session.request.call_count == 6
        assert in_flight["peak"] == 2
        assert in_flight["now"] == 0

    @pytest.mark.asyncio
    async def test_warmup_delay_only_before_first_request(self, oauth_client, http_session, no_sleep):
        oauth_client._first_request = True
        http_session.request.side_effect = lambda *args, **kwargs: jmap_reply(MAILBOXES)

        await oauth_client.list_mailboxes()
        await oauth_client.list_mailboxes()
        await oauth_client.list_mailboxes()

        assert [c.args[0] for c in no_sleep.await_args_list] == [0.15]
        assert http_session.request.call_count == 3

    @pytest.mark.asyncio
    async def test_make_request_envelope(self, oauth_client, http_session):
        http_session.request.return_value = jmap_reply(["Mailbox/get", {"list": []}, "c1"])

        response = await oauth_client.make_request([["Mailbox/get", {"accountId": ACCOUNT_ID}, "c1"]])

        call = http_session.request.call_args
        assert call.args == ("POST", f"{SERVER}/jmap/api/")
        assert call.kwargs["headers"]["Content-Type"] == "application/json"
        assert sent_body(http_session) == {
            "using": ["urn:ietf:params:jmap:core", "urn:ietf:params:jmap:mail"],
            "methodCalls": [["Mailbox/get", {"accountId": ACCOUNT_ID}, "c1"]],
        }
        assert response.by_call_id("c1").result == {"list": []}


class TestMailOperations:
    """메일 조회 / 변경 테스트"""

    @pytest.mark.asyncio
    async def test_query_emails_arguments(self, oauth_client, http_session):
        http_session.request.return_value = jmap_reply(
            ["Email/query", {"ids": ["m1", "m2"], "position": 0, "total": 42}, "0"]
        )

        result = await oauth_client.query_emails(mailbox_id="mb-inbox", limit=2, search_text="회의")

        assert result.ids == ["m1", "m2"]
        assert result.total == 42
        arguments = sent_body(http_session)["methodCalls"][0][1]
        assert arguments["accountId"] == ACCOUNT_ID
        assert arguments["filter"] == {"inMailbox": "mb-inbox", "text": "회의"}
        assert arguments["sort"] == [{"property": "receivedAt", "isAscending": False}]
        assert arguments["limit"] == 2
        assert arguments["calculateTotal"] is True

    @pytest.mark.asyncio
    async def test_query_without_criteria_sends_empty_filter(self, oauth_client, http_session):
        http_session.request.return_value = jmap_reply(["Email/query", {"ids": []}, "0"])

        await oauth_client.query_emails(search_text="   ")

        assert sent_body(http_session)["methodCalls"][0][1]["filter"] == {}

    @pytest.mark.asyncio
    async def test_fetch_emails(self, oauth_client, http_session):
        http_session.request.return_value = jmap_reply([
            "Email/get",
            {"list": [{"id": "m1", "subject": "Hi", "keywords": {"$seen": True}}], "notFound": ["m9"]},
            "0",
        ])

        emails = await oauth_client.fetch_emails(["m1", "m9"])

        assert [e.id for e in emails] == ["m1"]
        assert not emails[0].is_unread
        arguments = sent_body(http_session)["methodCalls"][0][1]
        assert arguments["fetchTextBodyValues"] is True
        assert "bodyStructure" in arguments["properties"]

    @pytest.mark.asyncio
    async def test_fetch_no_ids_makes_no_request(self, oauth_client, http_session):
        assert await oauth_client.fetch_emails([]) == []
        http_session.get.assert_not_called()
        http_session.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_mark_read_patch(self, oauth_client, http_session):
        http_session.request.return_value = jmap_reply(["Email/set", {"updated": {"m1": None}}, "0"])

        assert await oauth_client.mark_read("m1") is True
        assert sent_body(http_session)["methodCalls"][0][1]["update"] == {"m1": {"keywords/$seen": True}}

    @pytest.mark.asyncio
    async def test_unstar_removes_keyword(self, oauth_client, http_session):
        http_session.request.return_value = jmap_reply(["Email/set", {"updated": {"m1": None}}, "0"])

        await oauth_client.set_starred("m1", False)

        assert sent_body(http_session)["methodCalls"][0][1]["update"] == {"m1": {"keywords/$flagged": None}}

    @pytest.mark.asyncio
    async def test_update_not_applied_returns_false(self, oauth_client, http_session):
        http_session.request.return_value = jmap_reply(
            ["Email/set", {"updated": {}, "notUpdated": {"m1": {"type": "notFound"}}}, "0"]
        )

        assert await oauth_client.mark_read("m1") is False

    @pytest.mark.asyncio
    async def test_move_patch(self, oauth_client, http_session):
        http_session.request.return_value = jmap_reply(["Email/set", {"updated": {"m1": None}}, "0"])

        assert await oauth_client.move("m1", "mb-inbox", "mb-archive") is True
        assert sent_body(http_session)["methodCalls"][0][1]["update"] == {
            "m1": {"mailboxIds/mb-inbox": None, "mailboxIds/mb-archive": True}
        }

    @pytest.mark.asyncio
    async def test_delete(self, oauth_client, http_session):
        http_session.request.side_effect = [
            jmap_reply(["Email/set", {"destroyed": ["m1"]}, "0"]),
            jmap_reply(["Email/set", {"destroyed": [], "notDestroyed": {"m2": {"type": "notFound"}}}, "0"]),
        ]

        assert await oauth_client.delete("m1") is True
        assert await oauth_client.delete("m2") is False
        assert sent_body(http_session, 0)["methodCalls"][0][1]["destroy"] == ["m1"]

    @pytest.mark.asyncio
    async def test_method_error_propagates(self, oauth_client, http_session):
        http_session.request.return_value = jmap_reply(["error", {"type": "accountNotFound"}, "0"])

        with pytest.raises(MethodError) as exc_info:
            await oauth_client.list_mailboxes()

        assert exc_info.value.error_type == "accountNotFound"


class TestBlobs:
    """blob 업로드 / 다운로드 테스트"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("blob_id", ["", "   ", "null"])
    async def test_blank_blob_id_rejected_before_network(self, oauth_client, http_session, blob_id):
        with pytest.raises(ValueError):
            await oauth_client.download_blob(blob_id)

        http_session.get.assert_not_called()
        http_session.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_download_uses_session_template(self, oauth_client, http_session):
        http_session.request.return_value = make_response(200, raw=b"%PDF-1.7")

        data = await oauth_client.download_blob("G/1", name="a b.pdf", mime_type="application/pdf")

        assert data == b"%PDF-1.7"
        call = http_session.request.call_args
        assert call.args == (
            "GET",
            f"{SERVER}/jmap/download/{ACCOUNT_ID}/G%2F1/a%20b.pdf?accept=application%2Fpdf",
        )

    @pytest.mark.asyncio
    async def test_download_fallback_url(self, oauth_client, http_session):
        http_session.get.side_effect = lambda url, **kwargs: make_response(
            200, json_body=session_document(downloadUrl="")
        )
        http_session.request.return_value = make_response(200, raw=b"data")

        await oauth_client.download_blob("B1", account_id="other")

        assert http_session.request.call_args.args[1] == (
            f"{SERVER}/jmap/download/other/B1/attachment?accept=application/octet-stream"
        )

    @pytest.mark.asyncio
    async def test_upload(self, oauth_client, http_session):
        http_session.request.return_value = make_response(
            200, json_body={"blobId": "G99", "type": "image/png", "size": 4}
        )

        blob = await oauth_client.upload_blob(b"\x89PNG", "image/png", "logo.png")

        assert blob.blob_id == "G99"
        assert blob.account_id == ACCOUNT_ID
        call = http_session.request.call_args
        assert call.args == ("POST", f"{SERVER}/jmap/upload/{ACCOUNT_ID}/")
        assert call.kwargs["data"] == b"\x89PNG"
        assert call.kwargs["headers"]["Content-Type"] == "image/png"

    @pytest.mark.asyncio
    async def test_upload_without_upload_url(self, oauth_client, http_session):
        http_session.get.side_effect = lambda url, **kwargs: make_response(
            200, json_body=session_document(uploadUrl="")
        )

        with pytest.raises(ProtocolError):
            await oauth_client.upload_blob(b"x", "text/plain", "x.txt")

        http_session.request.assert_not_called()


class TestCompose:
    """초안 저장 / 발송 테스트"""

    @pytest.mark.asyncio
    async def test_send_email_batch(self, oauth_client, http_session):
        http_session.request.side_effect = [
            jmap_reply(IDENTITIES),
            jmap_reply(MAILBOXES),
            jmap_reply(
                ["Email/set", {"created": {"draft": {"id": "m-new"}}}, "0"],
                ["EmailSubmission/set", {"created": {"send": {"id": "sub-1"}}}, "1"],
                ["Email/set", {"updated": {"m-new": None}}, "1"],
            ),
        ]
        attachment = Attachment(id="G1", filename="a.pdf", mime="application/pdf", size=10)

        submission_id = await oauth_client.send_email(
            "KIM@example.com", ["lee@example.com"], "제목", "본문", attachments=[attachment]
        )

        assert submission_id == "sub-1"
        request = sent_body(http_session)
        assert JMAP_SUBMISSION in request["using"]

        email_call, submission_call = request["methodCalls"]
        assert email_call[0] == "Email/set"
        draft = email_call[1]["create"]["draft"]
        assert draft["mailboxIds"] == {"mb-drafts": True}
        assert draft["from"] == [{"email": "kim@example.com"}]
        assert draft["to"] == [{"email": "lee@example.com"}]
        assert draft["attachments"][0]["blobId"] == "G1"

        assert submission_call[0] == "EmailSubmission/set"
        assert submission_call[1]["create"]["send"] == {"identityId": "id-kim", "emailId": "#draft"}
        assert submission_call[1]["onSuccessUpdateEmail"]["#send"] == {
            "keywords/$draft": None,
            "mailboxIds/mb-drafts": None,
            "mailboxIds/mb-sent": True,
        }

    @pytest.mark.asyncio
    async def test_send_requires_recipient(self, oauth_client, http_session):
        with pytest.raises(ValueError):
            await oauth_client.send_email("kim@example.com", [], "s", "b")
        http_session.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_send_submission_rejected(self, oauth_client, http_session):
        http_session.request.side_effect = [
            jmap_reply(IDENTITIES),
            jmap_reply(MAILBOXES),
            jmap_reply(
                ["Email/set", {"created": {"draft": {"id": "m-new"}}}, "0"],
                ["EmailSubmission/set", {"notCreated": {"send": {"type": "forbiddenToSend"}}}, "1"],
            ),
        ]

        with pytest.raises(MethodError) as exc_info:
            await oauth_client.send_email("kim@example.com", ["lee@example.com"], "s", "b")

        assert exc_info.value.error_type == "forbiddenToSend"

    @pytest.mark.asyncio
    async def test_save_draft_replaces_previous(self, oauth_client, http_session):
        http_session.request.side_effect = [
            jmap_reply(MAILBOXES),
            jmap_reply(["Email/set", {"created": {"draft": {"id": "d2"}}, "destroyed": ["d1"]}, "0"]),
        ]

        draft_id = await oauth_client.save_draft("kim@example.com", ["lee@example.com"], "s", "b", draft_id="d1")

        assert draft_id == "d2"
        arguments = sent_body(http_session)["methodCalls"][0][1]
        assert arguments["destroy"] == ["d1"]
        assert arguments["create"]["draft"]["keywords"] == {"$draft": True, "$seen": True}

    @pytest.mark.asyncio
    async def test_save_draft_not_created(self, oauth_client, http_session):
        http_session.request.side_effect = [
            jmap_reply(MAILBOXES),
            jmap_reply(["Email/set", {"notCreated": {"draft": {"type": "invalidProperties", "description": "bad to"}}}, "0"]),
        ]

        with pytest.raises(MethodError) as exc_info:
            await oauth_client.save_draft("kim@example.com", ["x"], "s", "b")

        assert "bad to" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_submission_status(self, oauth_client, http_session):
        http_session.request.return_value = jmap_reply([
            "EmailSubmission/get",
            {"list": [{
                "id": "sub-1",
                "emailId": "m-new",
                "undoStatus": "final",
                "deliveryStatus": {"lee@example.com": {"delivered": "yes", "smtpReply": "250 OK"}},
            }]},
            "0",
        ])

        status = await oauth_client.get_email_submission("sub-1")

        assert status.delivered is True
        assert status.failed is None
        assert status.last_status_text == "250 OK"
        assert status.email_id == "m-new"

    @pytest.mark.asyncio
    async def test_submission_failure(self, oauth_client, http_session):
        http_session.request.return_value = jmap_reply([
            "EmailSubmission/get",
            {"list": [{"id": "sub-2", "deliveryStatus": {"x@example.com": {"delivered": "no"}}}]},
            "0",
        ])

        status = await oauth_client.get_email_submission("sub-2")

        assert status.failed is True
        assert status.delivered is False
