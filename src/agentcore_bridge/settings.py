from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

logger = logging.getLogger(__name__)

# Protocol mode values, matching what the deploy adapter writes into the container env.
PROTOCOL_HTTP = "http"
PROTOCOL_A2A = "a2a"
PROTOCOL_BOTH = "both"

DEFAULT_HTTP_PORT = 8080
DEFAULT_A2A_PORT = 9000
DEFAULT_SHUTDOWN_TIMEOUT = 10.0
DEFAULT_READ_HEADER_TIMEOUT = 10.0
DEFAULT_WS_MAX_FRAME_BYTES = 1 << 20

_TRUE_VALUES = {"1", "t", "true", "yes", "on"}
_FALSE_VALUES = {"0", "f", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    """Runtime settings sourced from environment variables."""

    # Prompt pack source; PROMPTPACK_FILE wins when both are set.
    pack_file: Optional[str]
    pack_json: Optional[str]

    # Agent identity and implementation
    agent_name: Optional[str] = None
    agent_factory: Optional[str] = None

    # Listeners
    host: str = "0.0.0.0"
    port: int = DEFAULT_HTTP_PORT
    a2a_port: int = DEFAULT_A2A_PORT
    protocol_mode: Optional[str] = None

    # Timeouts and limits
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    read_header_timeout: float = DEFAULT_READ_HEADER_TIMEOUT
    ws_max_frame_bytes: int = DEFAULT_WS_MAX_FRAME_BYTES

    # Tracing
    otlp_endpoint: Optional[str] = None
    tracing_enabled: bool = False

    @property
    def wants_http_bridge(self) -> bool:
        """True if the HTTP bridge listener should run."""
        return self.protocol_mode in (None, "", PROTOCOL_BOTH, PROTOCOL_HTTP)

    @property
    def wants_a2a_server(self) -> bool:
        """True if the loopback A2A listener should run."""
        return self.protocol_mode in (None, "", PROTOCOL_BOTH, PROTOCOL_A2A)

    @property
    def a2a_url(self) -> str:
        return f"http://127.0.0.1:{self.a2a_port}/a2a"


def _env_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value


def _env_int(name: str, default: int, errors: List[str]) -> int:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        errors.append(f"{name} must be an integer, got {raw!r}")
        return default


def _env_float(name: str, default: float, errors: List[str]) -> float:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        errors.append(f"{name} must be a number of seconds, got {raw!r}")
        return default


def _env_bool(name: str, default: bool, errors: List[str]) -> bool:
    raw = _env_str(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    errors.append(f"{name} must be a boolean, got {raw!r}")
    return default


def validate_settings(settings: Settings, errors: Optional[List[str]] = None) -> None:
    """Validate settings and raise ValueError for invalid configurations."""
    errors = list(errors or [])

    if not settings.pack_file and not settings.pack_json:
        errors.append("PROMPTPACK_FILE or PROMPTPACK_PACK_JSON is required")

    for name, port in (
        ("PROMPTPACK_HTTP_PORT", settings.port),
        ("PROMPTPACK_PORT", settings.a2a_port),
    ):
        if not 0 <= port <= 65535:
            errors.append(f"{name} must be between 0 and 65535")

    if settings.protocol_mode not in (None, "", PROTOCOL_HTTP, PROTOCOL_A2A, PROTOCOL_BOTH):
        errors.append(
            f"PROMPTPACK_PROTOCOL must be one of '{PROTOCOL_HTTP}', '{PROTOCOL_A2A}', "
            f"'{PROTOCOL_BOTH}', got {settings.protocol_mode!r}"
        )

    if settings.shutdown_timeout <= 0:
        errors.append("PROMPTPACK_SHUTDOWN_TIMEOUT must be positive")

    if settings.read_header_timeout <= 0:
        errors.append("PROMPTPACK_READ_HEADER_TIMEOUT must be positive")

    if settings.ws_max_frame_bytes <= 0:
        errors.append("PROMPTPACK_WS_MAX_FRAME_BYTES must be positive")

    if settings.tracing_enabled and not settings.otlp_endpoint:
        logger.warning(
            "OTEL_TRACING_ENABLED is set without OTEL_EXPORTER_OTLP_ENDPOINT - tracing stays disabled"
        )

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(
            f"  - {error}" for error in errors
        )
        raise ValueError(error_msg)


def load_settings() -> Settings:
    """Read and validate settings from the current environment."""
    errors: List[str] = []

    protocol_mode = _env_str("PROMPTPACK_PROTOCOL")
    if protocol_mode is not None:
        protocol_mode = protocol_mode.strip().lower()

    settings = Settings(
        pack_file=_env_str("PROMPTPACK_FILE"),
        pack_json=_env_str("PROMPTPACK_PACK_JSON"),
        agent_name=_env_str("PROMPTPACK_AGENT"),
        agent_factory=_env_str("PROMPTPACK_AGENT_FACTORY"),
        host=_env_str("PROMPTPACK_HOST") or "0.0.0.0",
        port=_env_int("PROMPTPACK_HTTP_PORT", DEFAULT_HTTP_PORT, errors),
        a2a_port=_env_int("PROMPTPACK_PORT", DEFAULT_A2A_PORT, errors),
        protocol_mode=protocol_mode,
        shutdown_timeout=_env_float(
            "PROMPTPACK_SHUTDOWN_TIMEOUT", DEFAULT_SHUTDOWN_TIMEOUT, errors
        ),
        read_header_timeout=_env_float(
            "PROMPTPACK_READ_HEADER_TIMEOUT", DEFAULT_READ_HEADER_TIMEOUT, errors
        ),
        ws_max_frame_bytes=_env_int(
            "PROMPTPACK_WS_MAX_FRAME_BYTES", DEFAULT_WS_MAX_FRAME_BYTES, errors
        ),
        otlp_endpoint=_env_str("OTEL_EXPORTER_OTLP_ENDPOINT"),
        tracing_enabled=_env_bool("OTEL_TRACING_ENABLED", False, errors),
    )

    validate_settings(settings, errors)
    return settings


@lru_cache()
def get_settings() -> Settings:
    """Return cached and validated settings."""
    return load_settings()
