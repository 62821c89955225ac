"""
Attachment Parser - bodyStructure 디코딩과 첨부파일 판별

서버마다 bodyStructure 표현이 다르다:
    - disposition: 문자열 또는 {"disposition": ..., "params": {...}} 객체
    - type: "image/png" 또는 type="image" + subtype="png"
    - 하위 파트: "subParts" (RFC 8621) 또는 "parts"
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from .jmap_types import Attachment, BodyPart

logger = logging.getLogger(__name__)

_FILENAME_PATTERN = re.compile(r"filename[*]?=['\"]?([^'\"\r\n]+)['\"]?", re.IGNORECASE)


def _usable(value: Any) -> Optional[str]:
    """공백/"null" 문자열은 값 없음으로 취급"""
    if value is None:
        return None
    text = str(value).strip()
    if not text or text == "null":
        return None
    return text


def _split_type(part: Dict[str, Any]):
    main_type = str(part.get("type") or "").lower()
    subtype = str(part.get("subtype") or "").lower()
    if "/" in main_type and not subtype:
        main_type, _, subtype = main_type.partition("/")
    return main_type, subtype


def _resolve_filename(part: Dict[str, Any], disposition: Any) -> Optional[str]:
    """
    파일명 후보를 순서대로 확인

    1. disposition params의 filename
    2. filename으로 시작하는 params 키 (filename*, filename*0 등)
    3. disposition 문자열 안의 filename= 구문
    4. 파트의 name
    """
    params = disposition.get("params") if isinstance(disposition, dict) else None
    if isinstance(params, dict):
        filename = _usable(params.get("filename"))
        if filename:
            return filename
        for key, value in params.items():
            if key.startswith("filename") and _usable(value):
                return _usable(value)

    if isinstance(disposition, dict):
        disposition_text = str(disposition.get("disposition") or "")
    else:
        disposition_text = str(disposition or "")
    if disposition_text:
        match = _FILENAME_PATTERN.search(disposition_text)
        if match and _usable(match.group(1)):
            return _usable(match.group(1))

    return _usable(part.get("name"))


def decode_body_part(part: Dict[str, Any]) -> BodyPart:
    """
    bodyStructure 한 파트를 BodyPart 트리로 디코딩

    Args:
        part: 서버 JSON 파트 객체

    Returns:
        BodyPart (하위 파트 포함)
    """
    raw_disposition = part.get("disposition")
    if isinstance(raw_disposition, dict):
        disposition = str(raw_disposition.get("disposition") or "")
    else:
        disposition = str(raw_disposition or "")
    # "attachment; filename=..." 형태는 앞부분만 disposition 유형
    disposition_type = disposition.split(";", 1)[0].strip()

    main_type, subtype = _split_type(part)

    children = part.get("subParts")
    if children is None:
        children = part.get("parts")

    try:
        size = int(part.get("size") or 0)
    except (TypeError, ValueError):
        size = 0

    return BodyPart(
        part_id=_usable(part.get("partId")),
        blob_id=_usable(part.get("blobId")),
        size=size,
        main_type=main_type,
        subtype=subtype,
        disposition=disposition_type,
        filename=_resolve_filename(part, raw_disposition),
        charset=_usable(part.get("charset")),
        sub_parts=[decode_body_part(child) for child in children or [] if isinstance(child, dict)],
    )


def decode_body_structure(raw: Any) -> List[BodyPart]:
    """
    bodyStructure (객체 또는 배열)를 최상위 파트 리스트로 디코딩

    알 수 없는 형태는 빈 리스트
    """
    if isinstance(raw, dict):
        return [decode_body_part(raw)]
    if isinstance(raw, list):
        return [decode_body_part(part) for part in raw if isinstance(part, dict)]
    if raw is not None:
        logger.warning(f"Unexpected bodyStructure type: {type(raw).__name__}")
    return []


def _default_filename(part: BodyPart) -> str:
    if part.subtype:
        ext = part.subtype
    elif part.main_type == "image":
        ext = "jpg"
    elif part.main_type == "application":
        ext = "bin"
    else:
        ext = "dat"
    return f"attachment.{ext}"


def is_attachment(part: BodyPart) -> bool:
    """
    첨부파일 여부

    text/plain, text/html 파트는 명시적 attachment disposition이 있어야 하고,
    그 외 파트는 attachment disposition 또는 파일명이 있으면 첨부파일
    """
    if part.is_text_body:
        return part.is_explicit_attachment
    return part.is_explicit_attachment or bool(part.filename)


def to_attachment(part: BodyPart) -> Optional[Attachment]:
    """첨부파일 파트를 Attachment로 변환 (id나 파일명을 정할 수 없으면 None)"""
    attachment_id = part.blob_id or part.part_id
    if not attachment_id:
        return None

    filename = part.filename
    if not filename:
        if not part.is_explicit_attachment:
            return None
        filename = _default_filename(part)

    return Attachment(id=attachment_id, filename=filename, mime=part.mime_type, size=part.size)


def extract_attachments(parts: Iterable[BodyPart]) -> List[Attachment]:
    """
    BodyPart 트리 전체에서 첨부파일 수집

    Args:
        parts: decode_body_structure() 결과

    Returns:
        문서 순서의 Attachment 리스트
    """
    attachments: List[Attachment] = []
    for root in parts:
        for part in root.walk():
            if not is_attachment(part):
                continue
            attachment = to_attachment(part)
            if attachment:
                attachments.append(attachment)
    return attachments


def parse_attachments(body_structure: Any) -> List[Attachment]:
    """원본 bodyStructure JSON에서 바로 첨부파일 목록 추출"""
    return extract_attachments(decode_body_structure(body_structure))
