"""Exception types shared by the bridge, the loopback A2A server and the runtime."""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all agentcore-bridge errors."""


class InvalidInvocationError(BridgeError):
    """Client input was rejected before anything was sent upstream.

    The message is the client-facing reason and is written verbatim into
    the HTTP 400 body or the WebSocket error frame.
    """

    status_code = 400


class UpstreamUnavailableError(BridgeError):
    """The loopback A2A server could not be reached."""


class UpstreamDecodeError(BridgeError):
    """The A2A server answered with a payload the bridge cannot decode."""

    def __init__(self, message: str, body: bytes = b""):
        super().__init__(message)
        self.body = body


class PackError(BridgeError):
    """The prompt pack is missing, unreadable, or does not name an agent."""


class StartupError(BridgeError):
    """A listener or collaborator failed to start."""


class ListenerError(BridgeError):
    """A running listener exited without being asked to."""


class ShutdownError(BridgeError):
    """A listener did not drain within the shutdown deadline."""
