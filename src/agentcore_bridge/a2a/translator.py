"""
AgentCore HTTP ↔ A2A Protocol Translation Layer

Builds the JSON-RPC bodies the bridge sends to the loopback A2A server
and maps A2A responses (blocking results and stream events) back into
the compact client envelopes. Everything here is pure: no I/O and no
shared mutable state, so one translator instance serves all requests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from ..errors import UpstreamDecodeError
from ..logging_config import body_preview
from ..models import InvocationResponse, StreamEvent, Usage, WebSocketResponse
from .models import (
    TERMINAL_STATES,
    JSONRPCRequest,
    Message,
    MessageSendConfiguration,
    MessageSendParams,
    SendMessageResponse,
    StreamResponse,
    StreamResultView,
    TaskResultView,
    TaskState,
    TextPart,
    create_message_id,
)

logger = logging.getLogger(__name__)

METHOD_SEND = "message/send"
METHOD_STREAM = "message/stream"

# Message ids are "<tag>-<ns>"; request ids are stable per call class.
HTTP_TAG = "http"
WS_TAG = "ws"
_SEND_REQUEST_IDS = {HTTP_TAG: "http-bridge-1", WS_TAG: "ws-bridge-1"}
STREAM_REQUEST_ID = "http-bridge-stream-1"

FAILED_TASK_MESSAGE = "agent task failed"


@dataclass(frozen=True)
class SendOutcome:
    """Result of one blocking message/send, independent of the client transport."""

    ok: bool
    text: str
    task_id: Optional[str] = None
    context_id: Optional[str] = None
    usage: Optional[Usage] = None


def is_terminal_state(state: Optional[str]) -> bool:
    """True for A2A task states that end a task."""
    return state in TERMINAL_STATES


def extract_sse_data(line: str) -> Optional[str]:
    """Return the payload of an SSE ``data:`` line, or None for any other line."""
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):]
    if data.startswith(" "):
        data = data[1:]
    return data


def extract_failed_message(result: TaskResultView) -> str:
    """First non-empty text of a failed task's status message."""
    status = result.status
    if status is not None and status.message is not None:
        for part in status.message.parts or []:
            if part.text:
                return part.text
    return FAILED_TASK_MESSAGE


def extract_artifact_text(result: TaskResultView) -> str:
    """Concatenate every non-empty artifact text part, in order."""
    chunks: List[str] = []
    for artifact in result.artifacts or []:
        for part in artifact.parts or []:
            if part.text:
                chunks.append(part.text)
    return "".join(chunks)


def _token_count(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    count = int(value)
    return count if count > 0 else None


def extract_usage(metadata: Optional[Dict[str, Any]]) -> Optional[Usage]:
    """Token usage from result.metadata.usage, or None when nothing positive is reported."""
    if not metadata:
        return None
    usage = metadata.get("usage")
    if not isinstance(usage, dict):
        return None
    input_tokens = _token_count(usage.get("input_tokens"))
    output_tokens = _token_count(usage.get("output_tokens"))
    if input_tokens is None and output_tokens is None:
        return None
    return Usage(input_tokens=input_tokens, output_tokens=output_tokens)


class EnvelopeTranslator:
    """
    Translates between the AgentCore HTTP contract and A2A JSON-RPC.

    Outbound: client text, session id and metadata become message/send or
    message/stream requests. Inbound: A2A task results and stream events
    become invocation envelopes, WebSocket frames and bridge SSE events.
    """

    def _build_request(
        self,
        *,
        request_id: str,
        method: str,
        text: str,
        tag: str,
        session_id: Optional[str],
        metadata: Optional[Dict[str, Any]],
        blocking: bool,
    ) -> bytes:
        message = Message(
            role="user",
            parts=[TextPart(text=text)],
            messageId=create_message_id(tag),
            metadata=metadata or None,
        )
        params = MessageSendParams(
            message=message,
            configuration=MessageSendConfiguration(blocking=True) if blocking else None,
            contextId=session_id or None,
        )
        request = JSONRPCRequest(
            id=request_id,
            method=method,
            params=params.model_dump(exclude_none=True),
        )
        return request.model_dump_json(exclude_none=True).encode("utf-8")

    def build_send_request(
        self,
        text: str,
        *,
        session_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        tag: str = HTTP_TAG,
    ) -> bytes:
        """Build a blocking message/send JSON-RPC body.

        Args:
            text: Effective user text.
            session_id: Opaque AgentCore session id, forwarded as params.contextId.
            metadata: Effective metadata, sent as message.metadata when non-empty.
            tag: Call class ("http" or "ws"); selects the request and message ids.
        """
        return self._build_request(
            request_id=_SEND_REQUEST_IDS.get(tag, f"{tag}-bridge-1"),
            method=METHOD_SEND,
            text=text,
            tag=tag,
            session_id=session_id,
            metadata=metadata,
            blocking=True,
        )

    def build_stream_request(
        self,
        text: str,
        *,
        session_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bytes:
        """Build a message/stream JSON-RPC body (no blocking configuration)."""
        return self._build_request(
            request_id=STREAM_REQUEST_ID,
            method=METHOD_STREAM,
            text=text,
            tag=HTTP_TAG,
            session_id=session_id,
            metadata=metadata,
            blocking=False,
        )

    def parse_send_response(self, body: Union[bytes, str]) -> SendOutcome:
        """Map a message/send response body to a SendOutcome.

        Raises:
            UpstreamDecodeError: the body is not a decodable JSON-RPC response.
        """
        try:
            parsed = SendMessageResponse.model_validate_json(body)
        except ValidationError as exc:
            raw = body if isinstance(body, bytes) else body.encode("utf-8")
            raise UpstreamDecodeError(f"undecodable A2A response: {exc.error_count()} errors", raw) from exc

        if parsed.error is not None:
            return SendOutcome(ok=False, text=parsed.error.message)

        result = parsed.result or TaskResultView()
        state = result.status.state if result.status is not None else None
        if state == TaskState.FAILED.value:
            return SendOutcome(ok=False, text=extract_failed_message(result))

        return SendOutcome(
            ok=True,
            text=extract_artifact_text(result),
            task_id=result.id or None,
            context_id=result.contextId or None,
            usage=extract_usage(result.metadata),
        )

    def to_invocation_response(self, outcome: SendOutcome) -> InvocationResponse:
        if not outcome.ok:
            return InvocationResponse(response=outcome.text, status="error")
        return InvocationResponse(
            response=outcome.text,
            status="success",
            task_id=outcome.task_id,
            context_id=outcome.context_id,
            usage=outcome.usage,
        )

    def to_websocket_frames(self, outcome: SendOutcome) -> List[WebSocketResponse]:
        """A text frame followed by done on success, a single error frame otherwise."""
        if not outcome.ok:
            return [WebSocketResponse(type="error", content=outcome.text or None)]
        return [
            WebSocketResponse(
                type="text",
                content=outcome.text or None,
                task_id=outcome.task_id,
                context_id=outcome.context_id,
                usage=outcome.usage,
            ),
            WebSocketResponse(type="done"),
        ]

    def parse_stream_line(self, data: str) -> Optional[StreamEvent]:
        """Convert one upstream SSE data payload into a bridge event.

        Returns None for payloads that produce no client event: undecodable
        JSON, results with neither status nor artifact, and empty artifacts.
        """
        try:
            envelope = StreamResponse.model_validate_json(data)
        except ValidationError as exc:
            logger.warning(
                "Unparseable SSE data",
                extra={"data": body_preview(data), "error_count": exc.error_count()},
            )
            return None

        if envelope.error is not None:
            return StreamEvent(type="error", content=envelope.error.message or None)

        if envelope.result is None:
            return None

        try:
            event = StreamResultView.model_validate(envelope.result)
        except ValidationError as exc:
            logger.warning(
                "Unrecognised A2A stream event",
                extra={"data": body_preview(data), "error_count": exc.error_count()},
            )
            return None

        if event.status is not None:
            return StreamEvent(
                type="status",
                state=event.status.state or None,
                task_id=event.taskId or None,
                context_id=event.contextId or None,
            )

        if event.artifact is not None:
            text = "".join(part.text for part in event.artifact.parts or [] if part.text)
            if not text:
                return None
            return StreamEvent(
                type="text",
                content=text,
                task_id=event.taskId or None,
                context_id=event.contextId or None,
            )

        return None
