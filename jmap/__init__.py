"""
JMAP Mail Module
JMAP(RFC 8620/8621) 세션, 메일함, 메일, blob, 발송 기능을 제공하는 모듈입니다.
"""

from .jmap_types import (
    Account,
    Attachment,
    BodyPart,
    EmailAddress,
    EmailQueryResult,
    JmapSession,
    Mailbox,
    MailEnvelope,
    MailSummary,
    SubmissionStatus,
    UploadedBlob,
)
from .jmap_request import JmapRequest, JmapResponse
from .attachment_parser import decode_body_structure, extract_attachments, parse_attachments
from .jmap_client import JmapClient, JmapBasicClient
from .jmap_oauth_client import JmapOAuthClient
from .client_registry import JmapClientRegistry

__all__ = [
    # 클라이언트
    'JmapClient',
    'JmapOAuthClient',
    'JmapBasicClient',
    'JmapClientRegistry',
    # 요청 / 응답
    'JmapRequest',
    'JmapResponse',
    # 타입
    'JmapSession',
    'Account',
    'Mailbox',
    'MailEnvelope',
    'MailSummary',
    'EmailAddress',
    'EmailQueryResult',
    'BodyPart',
    'Attachment',
    'UploadedBlob',
    'SubmissionStatus',
    # 첨부파일
    'decode_body_structure',
    'extract_attachments',
    'parse_attachments',
]
