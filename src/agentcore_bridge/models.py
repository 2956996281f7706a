"""
Client-facing data models for the AgentCore HTTP contract.

These are the shapes external callers see on /invocations (blocking and
SSE) and on /ws. Zero-valued optional fields are omitted on the wire.
"""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, StrictStr

# Key under which unknown top-level request fields are nested in message metadata.
PAYLOAD_KEY = "payload"


class InvocationRequest(BaseModel):
    """Payload sent by invoke_agent_runtime.

    Accepts both "prompt" and "input" for the user text. Any other
    top-level field is kept in the extras bag (``model_extra``).
    """

    model_config = ConfigDict(extra="allow")

    prompt: Optional[StrictStr] = None
    input: Optional[StrictStr] = None
    metadata: Optional[Dict[str, Any]] = None

    def effective_text(self) -> str:
        """The user's message, preferring prompt over input."""
        return self.prompt or self.input or ""

    def extras(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})

    def effective_metadata(self) -> Optional[Dict[str, Any]]:
        """Explicit metadata with the extras bag nested under "payload".

        Returns None when there is neither metadata nor extras.
        """
        extras = self.extras()
        if not self.metadata and not extras:
            return None
        merged: Dict[str, Any] = dict(self.metadata or {})
        if extras:
            merged[PAYLOAD_KEY] = extras
        return merged


class WebSocketRequest(BaseModel):
    """A single client frame on /ws. Unknown fields are ignored."""

    prompt: Optional[StrictStr] = None
    input: Optional[StrictStr] = None
    metadata: Optional[Dict[str, Any]] = None

    def effective_text(self) -> str:
        return self.prompt or self.input or ""


class Usage(BaseModel):
    """Token usage reported by the agent."""

    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


class _WireModel(BaseModel):
    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class InvocationResponse(_WireModel):
    """Response envelope for blocking /invocations calls."""

    response: str
    status: Literal["success", "error"]
    task_id: Optional[str] = None
    context_id: Optional[str] = None
    usage: Optional[Usage] = None
    metadata: Optional[Dict[str, Any]] = None


class StreamEvent(_WireModel):
    """One event on the client SSE stream."""

    type: Literal["status", "text", "error", "done"]
    content: Optional[str] = None
    state: Optional[str] = None
    task_id: Optional[str] = None
    context_id: Optional[str] = None


class WebSocketResponse(_WireModel):
    """One frame written back on /ws."""

    type: Literal["text", "error", "done"]
    content: Optional[str] = None
    state: Optional[str] = None
    task_id: Optional[str] = None
    context_id: Optional[str] = None
    usage: Optional[Usage] = None


DONE_EVENT = StreamEvent(type="done")
