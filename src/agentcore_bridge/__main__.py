"""Command-line entry point: ``agentcore-bridge`` / ``python -m agentcore_bridge``."""

from __future__ import annotations

import asyncio
import logging
import sys

from .errors import BridgeError
from .logging_config import configure_logging
from .runtime import AgentRuntime
from .settings import get_settings

logger = logging.getLogger("agentcore_bridge")


async def _serve() -> None:
    settings = get_settings()
    await AgentRuntime(settings).run()


def main() -> int:
    """Run the runtime until shutdown; 0 on a clean exit, 1 on any failure."""
    configure_logging()
    try:
        asyncio.run(_serve())
    except (BridgeError, ValueError) as exc:
        logger.error("fatal", extra={"error": str(exc), "error_type": type(exc).__name__})
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
