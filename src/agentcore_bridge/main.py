"""
AgentCore HTTP Bridge Application

Serves the AgentCore HTTP protocol contract (/invocations, /ping, /ws)
and forwards every invocation to the co-located A2A server as a
JSON-RPC 2.0 call on the loopback interface.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Depends, FastAPI, Request, WebSocket, status
from fastapi.responses import PlainTextResponse, Response
from httpx import AsyncClient
from pydantic import ValidationError
from starlette.requests import ClientDisconnect

from .a2a.translator import EnvelopeTranslator
from .errors import InvalidInvocationError, UpstreamDecodeError, UpstreamUnavailableError
from .health import HealthGate
from .logging_config import body_preview
from .models import InvocationRequest
from .settings import Settings, get_settings
from .streaming_manager import SSERelay, wants_sse
from .tracing import server_span
from .upstream import A2AClient
from .websocket_bridge import WebSocketBridge

logger = logging.getLogger(__name__)

INVOCATIONS_PATH = "/invocations"

# AgentCore header carrying the runtime session id (matched case-insensitively).
SESSION_HEADER = "X-Amzn-Bedrock-AgentCore-Runtime-Session-Id"

# How often a blocked /invocations call checks whether its client is still there.
DISCONNECT_POLL_INTERVAL = 0.1

# nginx convention for "client closed request"; never reaches the client.
CLIENT_CLOSED_REQUEST = 499

_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


async def parse_invocation(request: Request) -> InvocationRequest:
    """Read and validate an /invocations body.

    Raises:
        InvalidInvocationError: unreadable body, invalid JSON, or no prompt/input.
    """
    try:
        body = await request.body()
    except ClientDisconnect as exc:
        logger.error("Failed to read body", extra={"error": str(exc)})
        raise InvalidInvocationError("failed to read body") from exc

    logger.info(
        "Invocation body",
        extra={"body_size": len(body), "body_preview": body_preview(body)},
    )

    try:
        invocation = InvocationRequest.model_validate_json(body)
    except ValidationError as exc:
        logger.error(
            "Invalid JSON in invocation",
            extra={"error_count": exc.error_count(), "body_preview": body_preview(body)},
        )
        raise InvalidInvocationError("invalid JSON") from exc

    if not invocation.effective_text():
        logger.warning(
            "Invocation missing prompt/input field",
            extra={"body_preview": body_preview(body)},
        )
        raise InvalidInvocationError("prompt or input is required")

    return invocation


async def wait_for_disconnect(request: Request) -> None:
    """Return once the client behind ``request`` has gone away."""
    while not await request.is_disconnected():
        await asyncio.sleep(DISCONNECT_POLL_INTERVAL)


class HTTPBridge:
    """Blocking /invocations: one message/send round-trip per request."""

    def __init__(self, client: A2AClient, translator: EnvelopeTranslator):
        self.client = client
        self.translator = translator

    async def send_while_connected(self, body: bytes, request: Optional[Request]) -> Optional[bytes]:
        """Forward ``body`` upstream; None if the client disconnected first.

        The upstream call is cancelled as soon as the client goes away.
        """
        if request is None:
            return await self.client.send_message(body)

        send = asyncio.ensure_future(self.client.send_message(body))
        watcher = asyncio.ensure_future(wait_for_disconnect(request))
        try:
            await asyncio.wait({send, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (send, watcher):
                if not task.done():
                    task.cancel()
            await asyncio.gather(send, watcher, return_exceptions=True)

        if send.cancelled():
            logger.warning("Client disconnected, upstream call cancelled")
            return None
        return send.result()

    async def invoke(
        self,
        invocation: InvocationRequest,
        session_id: Optional[str],
        request: Optional[Request] = None,
    ) -> Response:
        try:
            body = self.translator.build_send_request(
                invocation.effective_text(),
                session_id=session_id,
                metadata=invocation.effective_metadata(),
            )
        except (TypeError, ValueError):
            logger.exception("Failed to encode A2A request")
            return PlainTextResponse("internal error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

        try:
            response_body = await self.send_while_connected(body, request)
        except UpstreamUnavailableError:
            return PlainTextResponse("agent unavailable", status_code=status.HTTP_502_BAD_GATEWAY)

        if response_body is None:
            return Response(status_code=CLIENT_CLOSED_REQUEST)
        return self.write_a2a_response(response_body)

    def write_a2a_response(self, response_body: bytes) -> Response:
        """Map the A2A JSON-RPC response to an invocation envelope.

        Bodies that do not decode as an A2A response are passed through
        unchanged so newer upstream shapes still reach the caller.
        """
        try:
            outcome = self.translator.parse_send_response(response_body)
        except UpstreamDecodeError:
            logger.warning(
                "Passing through undecodable A2A response",
                extra={"body_size": len(response_body), "body_preview": body_preview(response_body)},
            )
            return Response(content=response_body, media_type="application/json")

        envelope = self.translator.to_invocation_response(outcome)
        return Response(
            content=envelope.to_json(),
            media_type="application/json",
            status_code=status.HTTP_200_OK if outcome.ok else status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


def get_http_bridge(request: Request) -> HTTPBridge:
    return request.app.state.http_bridge


def get_sse_relay(request: Request) -> SSERelay:
    return request.app.state.sse_relay


def get_health_gate(request: Request) -> HealthGate:
    return request.app.state.health


def create_app(
    settings: Optional[Settings] = None,
    health: Optional[HealthGate] = None,
    *,
    a2a_url: Optional[str] = None,
    http_client: Optional[AsyncClient] = None,
) -> FastAPI:
    """
    Create the AgentCore HTTP bridge FastAPI application.

    Args:
        settings: Runtime settings; read from the environment when omitted.
        health: Shared health gate; a fresh ready gate when omitted.
        a2a_url: Override for the upstream A2A endpoint (e.g. an ephemeral port).
        http_client: httpx client to use for upstream calls; owned by the caller.

    Returns:
        Configured FastAPI application for the bridge listener
    """
    settings = settings or get_settings()
    upstream_url = a2a_url or settings.a2a_url

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        client = A2AClient(upstream_url, http_client)
        translator = EnvelopeTranslator()
        app.state.a2a_client = client
        app.state.http_bridge = HTTPBridge(client, translator)
        app.state.sse_relay = SSERelay(client, translator)
        app.state.ws_bridge = WebSocketBridge(
            client,
            translator,
            max_frame_bytes=settings.ws_max_frame_bytes,
            session_header=SESSION_HEADER,
        )
        logger.info("HTTP bridge initialized", extra={"a2a_url": upstream_url})

        yield

        await client.close()
        logger.info("HTTP bridge shutdown")

    app = FastAPI(
        title="AgentCore HTTP Bridge",
        description="AgentCore HTTP contract in front of a loopback A2A server",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.health = health or HealthGate()

    @app.post(INVOCATIONS_PATH)
    async def invocations(
        request: Request,
        http_bridge: HTTPBridge = Depends(get_http_bridge),
        sse_relay: SSERelay = Depends(get_sse_relay),
    ) -> Response:
        """Blocking or streaming invocation, chosen by the Accept header."""
        accept = request.headers.get("accept")
        logger.info(
            "Invocation received",
            extra={
                "method": request.method,
                "path": request.url.path,
                "content_type": request.headers.get("content-type"),
                "accept": accept,
            },
        )

        streaming = wants_sse(accept)
        with server_span(
            f"POST {INVOCATIONS_PATH}", request.headers, {"agentcore.streaming": streaming}
        ):
            try:
                invocation = await parse_invocation(request)
            except InvalidInvocationError as exc:
                return PlainTextResponse(str(exc), status_code=exc.status_code)

            session_id = request.headers.get(SESSION_HEADER) or None
            if streaming:
                return await sse_relay.open(request, invocation, session_id)
            return await http_bridge.invoke(invocation, session_id, request)

    @app.get("/ping")
    async def ping(health_gate: HealthGate = Depends(get_health_gate)) -> Response:
        return health_gate.ping_response()

    @app.websocket("/ws")
    async def websocket_invocations(websocket: WebSocket) -> None:
        await websocket.app.state.ws_bridge.handle(websocket)

    @app.api_route("/{path:path}", methods=_ALL_METHODS, include_in_schema=False)
    async def unknown(request: Request, path: str) -> Response:
        """Log unmatched requests for debugging."""
        body = await request.body()
        logger.warning(
            "Unmatched request on http bridge",
            extra={
                "method": request.method,
                "path": request.url.path,
                "content_type": request.headers.get("content-type"),
                "body_size": len(body),
                "body_preview": body_preview(body),
            },
        )
        return PlainTextResponse("not found", status_code=status.HTTP_404_NOT_FOUND)

    return app
