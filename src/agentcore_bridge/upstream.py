"""HTTP client for the co-located A2A server on the loopback interface."""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from httpx import AsyncClient, Response

from .errors import UpstreamUnavailableError
from .logging_config import body_preview
from .tracing import client_span, inject_trace_headers

logger = logging.getLogger(__name__)

_JSON_HEADERS = {"Content-Type": "application/json"}
_STREAM_HEADERS = {"Content-Type": "application/json", "Accept": "text/event-stream"}


class A2AClient:
    """
    Posts JSON-RPC bodies to ``http://127.0.0.1:<a2a-port>/a2a``.

    Every call is a fresh POST. Transport failures of any kind surface as
    UpstreamUnavailableError; the HTTP status of the upstream is not
    interpreted here, the JSON-RPC body carries the outcome.
    """

    def __init__(self, url: str, http_client: Optional[AsyncClient] = None):
        self.url = url
        self._owns_client = http_client is None
        # No timeout: agent turns can legitimately run for minutes.
        self.http_client = http_client or AsyncClient(timeout=None)

    async def send_message(self, body: bytes) -> bytes:
        """POST a blocking request and return the full response body."""
        logger.info("Forwarding to A2A", extra={"url": self.url, "body_size": len(body)})
        with client_span("a2a message/send", {"server.address": self.url}):
            try:
                response = await self.http_client.post(
                    self.url, content=body, headers=inject_trace_headers(_JSON_HEADERS)
                )
            except httpx.TransportError as exc:
                logger.error("A2A forward failed", extra={"url": self.url, "error": str(exc)})
                raise UpstreamUnavailableError(str(exc)) from exc

        logger.info(
            "A2A response",
            extra={
                "status": response.status_code,
                "body_size": len(response.content),
                "body_preview": body_preview(response.content),
            },
        )
        return response.content

    async def open_stream(self, body: bytes) -> Response:
        """POST a streaming request and return the response with its body unread.

        The caller owns the returned response and must ``aclose()`` it.
        """
        logger.info("Forwarding stream to A2A", extra={"url": self.url, "body_size": len(body)})
        with client_span("a2a message/stream", {"server.address": self.url}):
            request = self.http_client.build_request(
                "POST", self.url, content=body, headers=inject_trace_headers(_STREAM_HEADERS)
            )
            try:
                return await self.http_client.send(request, stream=True)
            except httpx.TransportError as exc:
                logger.error("A2A stream forward failed", extra={"url": self.url, "error": str(exc)})
                raise UpstreamUnavailableError(str(exc)) from exc

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self.http_client.aclose()
