"""
Agents served by the loopback A2A server.

An agent turns one user text into a stream of response chunks. The
default EchoAgent is a development stand-in; deployments plug their own
agent in through a ``module:attribute`` factory path.
"""

from __future__ import annotations

import importlib
import logging
from typing import Any, AsyncIterator, Dict, Optional, Protocol, runtime_checkable

from ..errors import StartupError

logger = logging.getLogger(__name__)


@runtime_checkable
class Agent(Protocol):
    """Anything with an async ``stream`` producing text chunks."""

    def stream(
        self,
        text: str,
        context_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[str]:
        ...


class EchoAgent:
    """Replies with the user's text, prefixed with ``echo: ``."""

    def __init__(self, name: str = "echo"):
        self.name = name

    async def stream(
        self,
        text: str,
        context_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[str]:
        yield f"echo: {text}"


def load_agent(path: str, **kwargs: Any) -> Agent:
    """
    Import and call an agent factory.

    Args:
        path: ``package.module:attribute``; the attribute is a class or a
            callable returning an Agent.
        **kwargs: Passed to the factory (e.g. ``name=<agent name>``).

    Raises:
        StartupError: the path is malformed, the import fails, or the
            factory raises or does not produce an Agent.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise StartupError(f"agent factory must be 'module:attribute', got {path!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise StartupError(f"cannot import agent module {module_name!r}: {exc}") from exc

    try:
        factory = getattr(module, attr)
    except AttributeError as exc:
        raise StartupError(f"module {module_name!r} has no attribute {attr!r}") from exc

    try:
        agent = factory(**kwargs)
    except Exception as exc:
        raise StartupError(f"agent factory {path!r} failed: {exc}") from exc
    if not isinstance(agent, Agent):
        raise StartupError(f"agent factory {path!r} returned {type(agent).__name__}, not an Agent")

    logger.info("Loaded agent", extra={"factory": path, "agent_type": type(agent).__name__})
    return agent
