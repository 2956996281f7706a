"""
WebSocket endpoint for the AgentCore bidirectional contract.

Each client frame is forwarded to the A2A server as a blocking
message/send. The reply is a ``text`` frame followed by ``done``, or a
single ``error`` frame; errors never end the connection.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Union
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from .a2a.translator import WS_TAG, EnvelopeTranslator
from .errors import UpstreamDecodeError, UpstreamUnavailableError
from .logging_config import body_preview
from .models import WebSocketRequest, WebSocketResponse
from .settings import DEFAULT_WS_MAX_FRAME_BYTES
from .tracing import server_span
from .upstream import A2AClient

logger = logging.getLogger(__name__)

_NORMAL_CLOSE_CODES = {status.WS_1000_NORMAL_CLOSURE, status.WS_1001_GOING_AWAY}


def _is_disconnect(receive: asyncio.Future) -> bool:
    if not receive.done():
        return False
    if receive.cancelled() or receive.exception() is not None:
        return True
    return receive.result()["type"] == "websocket.disconnect"


class WebSocketBridge:
    """Per-connection message pump between a WebSocket client and the A2A server.

    Any origin is accepted: the bridge is only reachable inside the
    runtime's private network.
    """

    def __init__(
        self,
        client: A2AClient,
        translator: EnvelopeTranslator,
        *,
        max_frame_bytes: int = DEFAULT_WS_MAX_FRAME_BYTES,
        session_header: Optional[str] = None,
    ):
        self.client = client
        self.translator = translator
        self.max_frame_bytes = max_frame_bytes
        self.session_header = session_header

    async def handle(self, websocket: WebSocket) -> None:
        """Accept the upgrade and serve frames until the client goes away."""
        await websocket.accept()

        connection_id = uuid4().hex[:8]
        session_id = None
        if self.session_header:
            session_id = websocket.headers.get(self.session_header) or None
        logger.info(
            "WebSocket connection established",
            extra={"connection_id": connection_id, "has_session": session_id is not None},
        )

        # The next receive is always in flight so a disconnect during a
        # round-trip is seen immediately; a frame that arrives meanwhile
        # waits in the task until the current round-trip finishes.
        receive: asyncio.Future = asyncio.ensure_future(websocket.receive())
        try:
            while True:
                message = await receive
                if message["type"] == "websocket.disconnect":
                    self._log_close(connection_id, message.get("code", status.WS_1000_NORMAL_CLOSURE))
                    return

                data: Union[str, bytes, None] = message.get("text")
                if data is None:
                    data = message.get("bytes") or b""
                size = len(data.encode("utf-8")) if isinstance(data, str) else len(data)
                if size > self.max_frame_bytes:
                    logger.error(
                        "WebSocket frame exceeds read limit",
                        extra={"connection_id": connection_id, "size": size, "limit": self.max_frame_bytes},
                    )
                    await websocket.close(code=status.WS_1009_MESSAGE_TOO_BIG)
                    return

                receive = asyncio.ensure_future(websocket.receive())
                if not await self._process_while_connected(websocket, data, session_id, receive):
                    logger.warning(
                        "WebSocket closed mid round-trip, upstream call cancelled",
                        extra={"connection_id": connection_id},
                    )
        except WebSocketDisconnect as exc:
            self._log_close(connection_id, exc.code)
        finally:
            if not receive.done():
                receive.cancel()
                await asyncio.gather(receive, return_exceptions=True)

    async def _process_while_connected(
        self,
        websocket: WebSocket,
        data: Union[str, bytes],
        session_id: Optional[str],
        receive: asyncio.Future,
    ) -> bool:
        """Run one round-trip; False if the client disconnected and it was cancelled."""
        process = asyncio.ensure_future(self.process_message(websocket, data, session_id))
        try:
            await asyncio.wait({process, receive}, return_when=asyncio.FIRST_COMPLETED)
            if not process.done() and _is_disconnect(receive):
                process.cancel()
                await asyncio.gather(process, return_exceptions=True)
                return False
            await process
        finally:
            if not process.done():
                process.cancel()
                await asyncio.gather(process, return_exceptions=True)
        return True

    def _log_close(self, connection_id: str, code: int) -> None:
        if code in _NORMAL_CLOSE_CODES:
            logger.info("WebSocket closed", extra={"connection_id": connection_id, "code": code})
        else:
            logger.error("WebSocket read error", extra={"connection_id": connection_id, "code": code})

    async def process_message(
        self,
        websocket: WebSocket,
        data: Union[str, bytes],
        session_id: Optional[str] = None,
    ) -> None:
        """Handle one client frame: validate, forward, write the reply frames."""
        with server_span("WS /ws frame", websocket.headers):
            await self._round_trip(websocket, data, session_id)

    async def _round_trip(
        self,
        websocket: WebSocket,
        data: Union[str, bytes],
        session_id: Optional[str],
    ) -> None:
        try:
            request = WebSocketRequest.model_validate_json(data)
        except ValidationError:
            logger.warning("Invalid WebSocket frame", extra={"body_preview": body_preview(data)})
            await self.write_error(websocket, "invalid JSON")
            return

        text = request.effective_text()
        if not text:
            await self.write_error(websocket, "prompt or input is required")
            return

        try:
            body = self.translator.build_send_request(
                text, session_id=session_id, metadata=request.metadata, tag=WS_TAG
            )
        except (TypeError, ValueError):
            logger.exception("Failed to encode A2A request")
            await self.write_error(websocket, "internal error")
            return

        try:
            response_body = await self.client.send_message(body)
        except UpstreamUnavailableError:
            await self.write_error(websocket, "agent unavailable")
            return

        try:
            outcome = self.translator.parse_send_response(response_body)
        except UpstreamDecodeError:
            logger.warning(
                "Undecodable A2A response on WebSocket",
                extra={"body_preview": body_preview(response_body)},
            )
            await self.write_error(websocket, "invalid response from agent")
            return

        for frame in self.translator.to_websocket_frames(outcome):
            await self.write_frame(websocket, frame)

    async def write_error(self, websocket: WebSocket, content: str) -> None:
        await self.write_frame(websocket, WebSocketResponse(type="error", content=content))

    async def write_frame(self, websocket: WebSocket, frame: WebSocketResponse) -> None:
        """Send one JSON frame; a failed write is logged and the pump carries on."""
        try:
            await websocket.send_text(frame.to_json())
        except (WebSocketDisconnect, RuntimeError) as exc:
            logger.error("WebSocket write error", extra={"frame_type": frame.type, "error": str(exc)})
