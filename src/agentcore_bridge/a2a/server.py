"""
A2A JSON-RPC 2.0 HTTP Server

The loopback A2A server the bridge fronts. Serves the agent card, a
health endpoint sharing the runtime's health gate, and the JSON-RPC
endpoint with message/send (blocking Task result) and message/stream
(Server-Sent Events of status and artifact updates).
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

from fastapi import FastAPI, Request, Response
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ValidationError

from ..health import HealthGate
from ..tracing import server_span
from .agents import Agent
from .models import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    AgentCard,
    Artifact,
    JSONRPCError,
    JSONRPCErrorResponse,
    JSONRPCRequest,
    JSONRPCSuccessResponse,
    Message,
    MessageSendParams,
    Task,
    TaskArtifactUpdateEvent,
    TaskState,
    TaskStatus,
    TaskStatusUpdateEvent,
    TextPart,
    current_timestamp,
    generate_id,
)

logger = logging.getLogger(__name__)

A2A_PATH = "/a2a"
AGENT_CARD_PATHS = ("/.well-known/agent.json", "/.well-known/agent-card.json")

RequestId = Optional[Union[int, str]]


class JSONRPCMethodError(Exception):
    """Raised by a method handler to answer with a specific JSON-RPC error."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json", exclude_none=True)


def _dump_envelope(envelope: BaseModel) -> Dict[str, Any]:
    # JSON-RPC responses always carry "id", null when unknown.
    payload = _dump(envelope)
    payload.setdefault("id", None)
    return payload


class A2AServer:
    """
    A2A JSON-RPC 2.0 server for a single agent.

    Parses JSON-RPC messages, dispatches them to method handlers and
    returns JSON-RPC responses. Streaming methods return their own
    StreamingResponse instead of a result object.
    """

    def __init__(self, agent: Agent, agent_card: AgentCard, health: Optional[HealthGate] = None):
        self.agent = agent
        self.agent_card = agent_card
        self.health = health or HealthGate()
        self.methods: Dict[str, Callable[[RequestId, Dict[str, Any]], Awaitable[Any]]] = {}
        self.app = FastAPI(
            title="AgentCore A2A Server",
            version="0.1.0",
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
        )

        self.register_method("message/send", self.handle_message_send)
        self.register_method("message/stream", self.handle_message_stream)
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Set up FastAPI routes for A2A endpoints."""

        @self.app.post(A2A_PATH)
        async def handle_jsonrpc(request: Request) -> Response:
            """Main JSON-RPC 2.0 endpoint."""
            body = await request.body()
            try:
                request_data = json.loads(body)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.error("Invalid JSON in request body", extra={"error": str(e)})
                return self._error_response(None, PARSE_ERROR, "Invalid JSON payload")

            method = request_data.get("method") if isinstance(request_data, dict) else None
            attributes = {"rpc.system": "jsonrpc"}
            if isinstance(method, str):
                attributes["rpc.method"] = method
            with server_span(f"jsonrpc {method}", request.headers, attributes):
                return await self._handle_single_request(request_data)

        async def agent_card() -> Dict[str, Any]:
            return _dump(self.agent_card)

        for path in AGENT_CARD_PATHS:
            self.app.add_api_route(path, agent_card, methods=["GET"])

        async def health_check() -> Response:
            return self.health.ping_response()

        self.app.add_api_route("/ping", health_check, methods=["GET"])
        self.app.add_api_route("/health", health_check, methods=["GET"])

    async def _handle_single_request(self, request_data: Any) -> Response:
        """Validate, dispatch and answer one JSON-RPC request."""
        raw_id = request_data.get("id") if isinstance(request_data, dict) else None
        try:
            request = JSONRPCRequest.model_validate(request_data)
        except ValidationError as e:
            logger.error("Invalid JSON-RPC request format", extra={"error_count": e.error_count()})
            request_id = raw_id if isinstance(raw_id, (int, str)) else None
            return self._error_response(request_id, INVALID_REQUEST, "Invalid request format")

        logger.info(
            "Processing A2A request",
            extra={"method": request.method, "id": request.id, "has_params": request.params is not None},
        )

        handler = self.methods.get(request.method)
        if handler is None:
            logger.warning("Method not found", extra={"method": request.method})
            return self._error_response(request.id, METHOD_NOT_FOUND, "Method not found")

        try:
            result = await handler(request.id, request.params or {})
        except JSONRPCMethodError as e:
            return self._error_response(request.id, e.code, e.message, e.data)
        except Exception as e:
            logger.exception("Unexpected error in method handler", extra={"method": request.method, "error": str(e)})
            return self._error_response(request.id, INTERNAL_ERROR, "Internal server error")

        if isinstance(result, Response):
            return result
        return self._json_response(JSONRPCSuccessResponse(id=request.id, result=result))

    def _json_response(self, payload: BaseModel) -> Response:
        return Response(content=json.dumps(_dump_envelope(payload)), media_type="application/json")

    def _error_response(self, id: RequestId, code: int, message: str, data: Any = None) -> Response:
        """Create a JSON-RPC error response."""
        return self._json_response(
            JSONRPCErrorResponse(id=id, error=JSONRPCError(code=code, message=message, data=data))
        )

    def register_method(
        self,
        method_name: str,
        handler: Callable[[RequestId, Dict[str, Any]], Awaitable[Any]],
    ) -> None:
        """Register an A2A method handler."""
        self.methods[method_name] = handler
        logger.debug("Registered A2A method handler", extra={"method": method_name})

    def get_fastapi_app(self) -> FastAPI:
        """Get the underlying FastAPI application."""
        return self.app

    # ===== METHOD HANDLERS =====

    def _parse_send_params(self, params: Dict[str, Any]) -> MessageSendParams:
        try:
            return MessageSendParams.model_validate(params)
        except ValidationError as e:
            logger.warning("Invalid message params", extra={"error_count": e.error_count()})
            raise JSONRPCMethodError(INVALID_PARAMS, "Invalid params") from e

    @staticmethod
    def _message_text(message: Message) -> str:
        return "".join(part.text for part in message.parts)

    @staticmethod
    def _context_id(params: MessageSendParams) -> str:
        return params.contextId or params.message.contextId or generate_id("ctx_")

    @staticmethod
    def _failed_status(task_id: str, context_id: str, error: Exception) -> TaskStatus:
        return TaskStatus(
            state=TaskState.FAILED,
            message=Message(
                role="agent",
                parts=[TextPart(text=str(error) or type(error).__name__)],
                messageId=generate_id("msg_"),
                taskId=task_id,
                contextId=context_id,
            ),
            timestamp=current_timestamp(),
        )

    async def handle_message_send(self, request_id: RequestId, params: Dict[str, Any]) -> Dict[str, Any]:
        """Run the agent to completion and return the resulting Task."""
        send_params = self._parse_send_params(params)
        task_id = generate_id("task_")
        context_id = self._context_id(send_params)
        text = self._message_text(send_params.message)

        logger.info("message/send called", extra={"task_id": task_id, "context_id": context_id})

        chunks: List[str] = []
        try:
            async for chunk in self.agent.stream(text, context_id, send_params.message.metadata):
                chunks.append(chunk)
        except Exception as e:
            logger.exception("Agent failed", extra={"task_id": task_id})
            task = Task(
                id=task_id,
                contextId=context_id,
                status=self._failed_status(task_id, context_id, e),
            )
            return _dump(task)

        output = "".join(chunks)
        task = Task(
            id=task_id,
            contextId=context_id,
            status=TaskStatus(state=TaskState.COMPLETED, timestamp=current_timestamp()),
            artifacts=[
                Artifact(artifactId=generate_id("artifact_"), name="response", parts=[TextPart(text=output)])
            ] if output else None,
        )
        logger.info("Message processed successfully", extra={"task_id": task_id, "chunks": len(chunks)})
        return _dump(task)

    async def handle_message_stream(self, request_id: RequestId, params: Dict[str, Any]) -> StreamingResponse:
        """Stream the agent's output as SSE: working, artifact chunks, final status."""
        send_params = self._parse_send_params(params)
        task_id = generate_id("task_")
        context_id = self._context_id(send_params)
        text = self._message_text(send_params.message)

        logger.info("message/stream called", extra={"task_id": task_id, "context_id": context_id})

        async def event_stream() -> AsyncIterator[BaseModel]:
            yield TaskStatusUpdateEvent(
                taskId=task_id,
                contextId=context_id,
                status=TaskStatus(state=TaskState.WORKING, timestamp=current_timestamp()),
                final=False,
            )

            artifact_id = generate_id("artifact_")
            chunks_sent = 0
            try:
                async for chunk in self.agent.stream(text, context_id, send_params.message.metadata):
                    if not chunk:
                        continue
                    yield TaskArtifactUpdateEvent(
                        taskId=task_id,
                        contextId=context_id,
                        artifact=Artifact(artifactId=artifact_id, parts=[TextPart(text=chunk)]),
                        append=chunks_sent > 0,
                        lastChunk=False,
                    )
                    chunks_sent += 1
            except Exception as e:
                logger.exception("Agent failed during stream", extra={"task_id": task_id})
                yield TaskStatusUpdateEvent(
                    taskId=task_id,
                    contextId=context_id,
                    status=self._failed_status(task_id, context_id, e),
                    final=True,
                )
                return

            logger.info("Streaming completed successfully", extra={"task_id": task_id, "chunks_sent": chunks_sent})
            yield TaskStatusUpdateEvent(
                taskId=task_id,
                contextId=context_id,
                status=TaskStatus(state=TaskState.COMPLETED, timestamp=current_timestamp()),
                final=True,
            )

        return StreamingResponse(
            self._jsonrpc_sse_generator(request_id, event_stream()),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    async def _jsonrpc_sse_generator(
        self, request_id: RequestId, events: AsyncIterator[BaseModel]
    ) -> AsyncIterator[str]:
        """Wrap each event in a JSON-RPC envelope on one SSE data line."""
        async for event in events:
            envelope = JSONRPCSuccessResponse(id=request_id, result=_dump(event))
            yield f"data: {json.dumps(_dump_envelope(envelope))}\n\n"


def create_a2a_server(agent: Agent, agent_card: AgentCard, health: Optional[HealthGate] = None) -> A2AServer:
    """Create an A2A server for one agent."""
    return A2AServer(agent, agent_card, health)


__all__ = ["A2AServer", "JSONRPCMethodError", "create_a2a_server"]
