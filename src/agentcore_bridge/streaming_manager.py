"""
Server-Sent Events relay for streaming /invocations.

Sends message/stream to the loopback A2A server and re-emits its SSE
events as simplified bridge events, one ``data:`` line per event, in
upstream order. The stream always ends with a ``done`` event unless the
client went away first.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Optional
from uuid import uuid4

import httpx
from fastapi import Request, status
from fastapi.responses import PlainTextResponse, Response, StreamingResponse

from .a2a.translator import EnvelopeTranslator, extract_sse_data, is_terminal_state
from .errors import UpstreamUnavailableError
from .models import DONE_EVENT, InvocationRequest, StreamEvent
from .upstream import A2AClient

logger = logging.getLogger(__name__)

SSE_CONTENT_TYPE = "text/event-stream"

SSE_HEADERS = {
    "Content-Type": SSE_CONTENT_TYPE,
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def wants_sse(accept: Optional[str]) -> bool:
    """True if the Accept header asks for an event stream."""
    return bool(accept) and SSE_CONTENT_TYPE in accept


def format_sse(event: StreamEvent) -> bytes:
    """Serialize a bridge event as one SSE data line."""
    return f"data: {event.to_json()}\n\n".encode("utf-8")


class SSERelay:
    """Relays one A2A message/stream call per client request."""

    def __init__(self, client: A2AClient, translator: EnvelopeTranslator):
        self.client = client
        self.translator = translator

    async def open(
        self,
        request: Request,
        invocation: InvocationRequest,
        session_id: Optional[str],
    ) -> Response:
        """Start the upstream stream and return the client streaming response.

        The upstream POST happens before any client header is written, so
        an unreachable A2A server still yields a plain 502.
        """
        try:
            body = self.translator.build_stream_request(
                invocation.effective_text(),
                session_id=session_id,
                metadata=invocation.effective_metadata(),
            )
        except (TypeError, ValueError):
            logger.exception("Failed to encode A2A stream request")
            return PlainTextResponse("internal error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

        try:
            upstream = await self.client.open_stream(body)
        except UpstreamUnavailableError:
            return PlainTextResponse("agent unavailable", status_code=status.HTTP_502_BAD_GATEWAY)

        return StreamingResponse(
            self.relay_events(request, upstream),
            status_code=status.HTTP_200_OK,
            headers=SSE_HEADERS,
        )

    async def relay_events(
        self, request: Request, upstream: httpx.Response
    ) -> AsyncIterator[bytes]:
        """Translate upstream SSE lines into bridge SSE events."""
        stream_id = uuid4().hex[:8]
        event_count = 0
        logger.debug("SSE relay started", extra={"stream_id": stream_id})

        try:
            async for line in upstream.aiter_lines():
                data = extract_sse_data(line)
                if data is None:
                    continue

                event = self.translator.parse_stream_line(data)
                if event is None:
                    continue

                event_count += 1
                yield format_sse(event)

                if event.type == "status" and is_terminal_state(event.state):
                    logger.info(
                        "SSE relay reached terminal state",
                        extra={"stream_id": stream_id, "state": event.state, "events": event_count},
                    )
                    yield format_sse(DONE_EVENT)
                    return

                if await request.is_disconnected():
                    logger.info(
                        "Client disconnected during stream",
                        extra={"stream_id": stream_id, "events": event_count},
                    )
                    return
        except httpx.TransportError as exc:
            logger.error(
                "A2A stream interrupted",
                extra={"stream_id": stream_id, "error": str(exc), "events": event_count},
            )
            yield format_sse(StreamEvent(type="error", content="agent unavailable"))
        finally:
            await upstream.aclose()

        logger.info(
            "A2A stream ended without terminal state",
            extra={"stream_id": stream_id, "events": event_count},
        )
        yield format_sse(DONE_EVENT)
