"""
A2A (Agent-to-Agent) Protocol Data Models

The subset of A2A v0.3 types the bridge writes and the loopback server
speaks, plus lenient read-side views used to decode upstream payloads.
Read-side views ignore unknown fields and tolerate missing ones so that
additive protocol changes do not break decoding.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, model_validator


# ===== FOUNDATIONAL TYPES =====

class TaskState(str, Enum):
    """Defines the lifecycle states of a Task."""
    SUBMITTED = "submitted"
    WORKING = "working"
    INPUT_REQUIRED = "input-required"
    COMPLETED = "completed"
    CANCELED = "canceled"
    FAILED = "failed"
    REJECTED = "rejected"
    AUTH_REQUIRED = "auth-required"
    UNKNOWN = "unknown"


TERMINAL_STATES = frozenset(
    {
        TaskState.COMPLETED.value,
        TaskState.FAILED.value,
        TaskState.CANCELED.value,
        TaskState.REJECTED.value,
    }
)


class TextPart(BaseModel):
    """A text fragment of a message or artifact."""
    kind: Literal["text"] = "text"
    text: str
    metadata: Optional[Dict[str, Any]] = None


class Message(BaseModel):
    """A single message exchanged between user and agent."""
    role: Literal["user", "agent"]
    parts: List[TextPart]
    messageId: str
    taskId: Optional[str] = None
    contextId: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    kind: Literal["message"] = "message"


class TaskStatus(BaseModel):
    state: TaskState
    message: Optional[Message] = None
    timestamp: Optional[str] = None


class Artifact(BaseModel):
    artifactId: str
    name: Optional[str] = None
    parts: List[TextPart]
    metadata: Optional[Dict[str, Any]] = None


class Task(BaseModel):
    id: str
    contextId: str
    status: TaskStatus
    artifacts: Optional[List[Artifact]] = None
    metadata: Optional[Dict[str, Any]] = None
    kind: Literal["task"] = "task"


class TaskStatusUpdateEvent(BaseModel):
    """Streaming event carrying a task state transition."""
    taskId: str
    contextId: str
    kind: Literal["status-update"] = "status-update"
    status: TaskStatus
    final: bool
    metadata: Optional[Dict[str, Any]] = None


class TaskArtifactUpdateEvent(BaseModel):
    """Streaming event carrying an artifact chunk."""
    taskId: str
    contextId: str
    kind: Literal["artifact-update"] = "artifact-update"
    artifact: Artifact
    append: Optional[bool] = None
    lastChunk: Optional[bool] = None


# ===== AGENT CARD =====

class AgentCapabilities(BaseModel):
    streaming: Optional[bool] = None
    pushNotifications: Optional[bool] = None
    stateTransitionHistory: Optional[bool] = None


class AgentSkill(BaseModel):
    id: str
    name: str
    description: str
    tags: List[str] = []
    examples: Optional[List[str]] = None


class AgentCard(BaseModel):
    """Self-description served at /.well-known/agent.json."""
    protocolVersion: str = "0.3.0"
    name: str
    description: str = ""
    url: str
    preferredTransport: str = "JSONRPC"
    version: str = ""
    capabilities: AgentCapabilities = AgentCapabilities()
    defaultInputModes: List[str] = ["text/plain"]
    defaultOutputModes: List[str] = ["text/plain"]
    skills: List[AgentSkill] = []


# ===== JSON-RPC =====

class JSONRPCRequest(BaseModel):
    jsonrpc: Literal["2.0"] = "2.0"
    id: Optional[Union[int, str]] = None
    method: str
    params: Optional[Dict[str, Any]] = None


class JSONRPCError(BaseModel):
    code: int
    message: str
    data: Optional[Any] = None


class JSONRPCSuccessResponse(BaseModel):
    jsonrpc: Literal["2.0"] = "2.0"
    id: Optional[Union[int, str]] = None
    result: Any


class JSONRPCErrorResponse(BaseModel):
    jsonrpc: Literal["2.0"] = "2.0"
    id: Optional[Union[int, str]] = None
    error: JSONRPCError


class MessageSendConfiguration(BaseModel):
    blocking: Optional[bool] = None


class MessageSendParams(BaseModel):
    """Params of message/send and message/stream.

    contextId sits at the params level: it carries the AgentCore session
    identifier for multi-turn continuity.
    """
    message: Message
    configuration: Optional[MessageSendConfiguration] = None
    contextId: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


# ===== READ-SIDE VIEWS =====

class PartView(BaseModel):
    text: Optional[str] = None


class StatusMessageView(BaseModel):
    parts: Optional[List[PartView]] = None


class StatusView(BaseModel):
    state: Optional[str] = None
    message: Optional[StatusMessageView] = None


class ArtifactView(BaseModel):
    parts: Optional[List[PartView]] = None


class TaskResultView(BaseModel):
    id: Optional[str] = None
    contextId: Optional[str] = None
    status: Optional[StatusView] = None
    artifacts: Optional[List[ArtifactView]] = None
    metadata: Optional[Dict[str, Any]] = None


class ErrorView(BaseModel):
    message: str = ""


class SendMessageResponse(BaseModel):
    """JSON-RPC response to a blocking message/send."""
    result: Optional[TaskResultView] = None
    error: Optional[ErrorView] = None


class StreamResponse(BaseModel):
    """JSON-RPC envelope of one message/stream SSE event."""
    result: Optional[Dict[str, Any]] = None
    error: Optional[ErrorView] = None


class StreamResultView(BaseModel):
    """An A2A stream event, discriminated by which of status/artifact is present."""
    taskId: Optional[str] = None
    contextId: Optional[str] = None
    status: Optional[StatusView] = None
    artifact: Optional[ArtifactView] = None

    @model_validator(mode="after")
    def _single_variant(self) -> "StreamResultView":
        if self.status is not None and self.artifact is not None:
            raise ValueError("stream event carries both status and artifact")
        return self


# ===== HELPERS =====

def generate_id(prefix: str = "") -> str:
    """Generate a random identifier with an optional prefix."""
    return f"{prefix}{uuid4().hex}"


def create_message_id(tag: str) -> str:
    """Message id unique within the process: <tag>-<wall clock ns>."""
    return f"{tag}-{time.time_ns()}"


def current_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()
