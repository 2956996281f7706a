"""Liveness/readiness gate shared by the bridge and the loopback A2A server."""

from __future__ import annotations

import logging

from fastapi import status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class HealthGate:
    """Readiness flag that starts ready and flips to draining exactly once.

    Reads and the single write are plain attribute access, which is atomic
    under the interpreter lock; the flag never returns to ready.
    """

    def __init__(self) -> None:
        self._ready = True

    @property
    def ready(self) -> bool:
        return self._ready

    def set_unhealthy(self) -> None:
        """Mark the process as draining (called once at shutdown start)."""
        if self._ready:
            self._ready = False
            logger.info("Health gate set to draining")

    def ping_response(self) -> JSONResponse:
        """Build the /ping response for the current readiness state."""
        if self._ready:
            return JSONResponse({"status": "healthy"}, status_code=status.HTTP_200_OK)
        return JSONResponse(
            {"status": "draining"}, status_code=status.HTTP_503_SERVICE_UNAVAILABLE
        )
