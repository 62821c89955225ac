"""
JMAP Request - 요청 envelope 구성과 응답 검증
{"using": [...], "methodCalls": [[name, args, callId], ...]} 형식
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from core.errors import MethodError, ProtocolError, truncate_body
from .jmap_types import DEFAULT_USING

logger = logging.getLogger(__name__)


class MethodCall:
    """단일 메서드 호출 [name, arguments, callId]"""

    def __init__(self, name: str, arguments: Dict[str, Any], call_id: str):
        self.name = name
        self.arguments = arguments
        self.call_id = call_id

    def to_wire(self) -> List[Any]:
        return [self.name, self.arguments, self.call_id]

    def __repr__(self) -> str:
        return f"MethodCall({self.name!r}, call_id={self.call_id!r})"


class MethodResponse:
    """단일 메서드 응답 [name, result, callId]"""

    def __init__(self, name: str, result: Dict[str, Any], call_id: str):
        self.name = name
        self.result = result
        self.call_id = call_id

    @property
    def is_error(self) -> bool:
        return self.name == "error"

    def __repr__(self) -> str:
        return f"MethodResponse({self.name!r}, call_id={self.call_id!r})"


class JmapRequest:
    """
    메서드 호출 배치 빌더

    callId를 지정하지 않으면 호출 순서대로 "0", "1", ... 부여
    """

    def __init__(self, using: Optional[Sequence[str]] = None):
        self.using: List[str] = list(using) if using else list(DEFAULT_USING)
        self.method_calls: List[MethodCall] = []

    def add(self, name: str, arguments: Dict[str, Any], call_id: Optional[str] = None) -> str:
        """
        메서드 호출 추가

        Args:
            name: 메서드 이름 (예: "Email/get")
            arguments: 인자 객체
            call_id: 호출 ID (생략 시 순번)

        Returns:
            사용된 callId
        """
        if call_id is None:
            call_id = str(len(self.method_calls))
        self.method_calls.append(MethodCall(name, arguments, call_id))
        return call_id

    def require(self, capability: str):
        """capability URN 추가 (중복 무시)"""
        if capability not in self.using:
            self.using.append(capability)

    @property
    def first_method(self) -> str:
        return self.method_calls[0].name if self.method_calls else ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "using": list(self.using),
            "methodCalls": [call.to_wire() for call in self.method_calls],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_calls(cls, method_calls: Sequence[Sequence[Any]], using: Optional[Sequence[str]] = None) -> "JmapRequest":
        """[[name, args, callId], ...] 또는 [[name, args], ...] 리스트로 생성"""
        request = cls(using)
        for call in method_calls:
            if isinstance(call, MethodCall):
                request.method_calls.append(call)
                continue
            name, arguments = call[0], call[1]
            call_id = call[2] if len(call) > 2 else None
            request.add(name, arguments, call_id)
        return request


class JmapResponse:
    """methodResponses 검증 결과"""

    def __init__(self, method_responses: List[MethodResponse], session_state: Optional[str] = None):
        self.method_responses = method_responses
        self.session_state = session_state

    def __iter__(self):
        return iter(self.method_responses)

    def __len__(self) -> int:
        return len(self.method_responses)

    @property
    def first(self) -> MethodResponse:
        return self.method_responses[0]

    def by_call_id(self, call_id: str, method: Optional[str] = None) -> MethodResponse:
        """
        callId로 응답 찾기

        암묵적 호출(onSuccessUpdateEmail 등)은 같은 callId를 공유하므로
        method를 주면 그 이름 또는 "error" 응답만 매칭한다.

        Raises:
            ProtocolError: 해당 callId 응답 없음
        """
        for response in self.method_responses:
            if response.call_id != call_id:
                continue
            if method is None or response.name == method or response.is_error:
                return response
        raise ProtocolError(f"No {method or 'method'} response for callId {call_id!r}")

    def result_for(self, call_id: str, method: str) -> Dict[str, Any]:
        """
        callId 응답의 결과 객체 (메서드 오류면 MethodError)

        Args:
            call_id: 요청 callId
            method: 기대 메서드 이름

        Returns:
            결과 객체
        """
        response = self.by_call_id(call_id, method)
        if response.is_error:
            raise method_error(response.result, method)
        return response.result

    @classmethod
    def parse(cls, body: str, request: JmapRequest) -> "JmapResponse":
        """
        응답 본문 파싱 및 검증

        methodResponses 배열이 있어야 하고, 첫 응답 이름이 첫 호출 메서드와 같아야 한다.
        첫 응답이 "error"면 MethodError.

        Args:
            body: HTTP 응답 본문
            request: 보낸 요청

        Returns:
            JmapResponse

        Raises:
            ProtocolError: 형태 불일치
            MethodError: 첫 응답이 메서드 오류
        """
        try:
            payload = json.loads(body)
        except ValueError as e:
            raise ProtocolError("JMAP response is not JSON", body) from e

        if not isinstance(payload, dict):
            raise ProtocolError("JMAP response is not an object", body)

        raw_responses = payload.get("methodResponses")
        if not isinstance(raw_responses, list) or not raw_responses:
            raise ProtocolError("JMAP response has no methodResponses", body)

        responses = []
        for raw in raw_responses:
            if not isinstance(raw, list) or len(raw) < 2 or not isinstance(raw[1], dict):
                raise ProtocolError(f"Malformed method response: {truncate_body(str(raw))}", body)
            call_id = str(raw[2]) if len(raw) > 2 else ""
            responses.append(MethodResponse(str(raw[0]), raw[1], call_id))

        first = responses[0]
        if first.is_error:
            raise method_error(first.result, request.first_method, body)
        if first.name != request.first_method:
            raise ProtocolError(
                f"Unexpected method response: expected {request.first_method}, got {first.name}",
                body,
            )

        return cls(responses, payload.get("sessionState"))


def method_error(result: Dict[str, Any], method: str, body: Optional[str] = None) -> MethodError:
    """["error", {"type": ..., "description": ...}, callId] -> MethodError"""
    error_type = result.get("type") or "unknown"
    description = result.get("description")
    message = f"{method} failed: {error_type}"
    if description:
        message += f" ({description})"
    return MethodError(message, error_type=error_type, body=body)


def set_error_message(not_created: Dict[str, Any], key: str) -> str:
    """notCreated / notUpdated 항목의 설명 추출"""
    error = not_created.get(key) or {}
    return error.get("description") or error.get("type") or "unknown error"
