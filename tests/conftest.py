"""Shared fixtures: settings, a scriptable mock A2A upstream and bridge clients."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Dict, List

import httpx
import pytest
from fastapi.testclient import TestClient

from agentcore_bridge.health import HealthGate
from agentcore_bridge.main import create_app
from agentcore_bridge.settings import Settings, get_settings

UPSTREAM_URL = "http://a2a.test/a2a"

PACK = {
    "id": "test-pack",
    "name": "Test Pack",
    "version": "1.0.0",
    "template_engine": {"version": "v1", "syntax": "{{variable}}"},
    "prompts": {
        "agent": {
            "id": "agent",
            "name": "Test Agent",
            "version": "1.0.0",
            "description": "Answers test questions",
            "system_template": "You are a test agent.",
        }
    },
}


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {"pack_file": None, "pack_json": json.dumps(PACK)}
    values.update(overrides)
    return Settings(**values)


def a2a_result(result: Dict[str, Any], request_id: str = "http-bridge-1") -> bytes:
    return json.dumps({"jsonrpc": "2.0", "id": request_id, "result": result}).encode()


def a2a_error(message: str, code: int = -32603, request_id: str = "http-bridge-1") -> bytes:
    return json.dumps(
        {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}
    ).encode()


def completed_task(text: str, task_id: str = "task-001", **extra: Any) -> Dict[str, Any]:
    result = {
        "id": task_id,
        "status": {"state": "completed"},
        "artifacts": [{"artifactId": "a1", "parts": [{"kind": "text", "text": text}]}],
    }
    result.update(extra)
    return result


def failed_task(message: str, task_id: str = "task-002") -> Dict[str, Any]:
    return {
        "id": task_id,
        "status": {
            "state": "failed",
            "message": {"role": "agent", "parts": [{"kind": "text", "text": message}]},
        },
    }


def sse_body(*results: Dict[str, Any]) -> bytes:
    lines = []
    for result in results:
        envelope = {"jsonrpc": "2.0", "id": "http-bridge-stream-1", "result": result}
        lines.append(f"data: {json.dumps(envelope)}\n\n")
    return "".join(lines).encode()


def parse_sse(text: str) -> List[Dict[str, Any]]:
    return [json.loads(line[len("data: "):]) for line in text.splitlines() if line.startswith("data: ")]


class MockUpstream:
    """Scripted A2A server: records every request and replays queued responses."""

    def __init__(self) -> None:
        self.requests: List[Dict[str, Any]] = []
        self.responses: List[Callable[[httpx.Request], httpx.Response]] = []

    def reply(self, body: bytes, status_code: int = 200, content_type: str = "application/json") -> None:
        self.responses.append(
            lambda request: httpx.Response(status_code, content=body, headers={"content-type": content_type})
        )

    def reply_stream(self, body: bytes) -> None:
        self.reply(body, content_type="text/event-stream")

    def fail(self, exc_type: type = httpx.ConnectError) -> None:
        def raise_error(request: httpx.Request) -> httpx.Response:
            raise exc_type("connection refused", request=request)

        self.responses.append(raise_error)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(
            {"url": str(request.url), "headers": dict(request.headers), "json": json.loads(request.content)}
        )
        assert self.responses, "unexpected upstream call"
        return self.responses.pop(0)(request)

    @property
    def last_json(self) -> Dict[str, Any]:
        return self.requests[-1]["json"]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class SlowUpstream:
    """A2A upstream that answers after ``delay`` seconds and records cancellation."""

    def __init__(self, delay: float = 5.0, text: str = "late reply") -> None:
        self.delay = delay
        self.text = text
        self.calls = 0
        self.started = asyncio.Event()
        self.cancelled = False
        self.finished = False

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        self.started.set()
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        self.finished = True
        return httpx.Response(
            200,
            content=a2a_result(completed_task(self.text), request_id="ws-bridge-1"),
            headers={"content-type": "application/json"},
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def upstream() -> MockUpstream:
    return MockUpstream()


@pytest.fixture
def health() -> HealthGate:
    return HealthGate()


@pytest.fixture
def bridge_client(settings: Settings, health: HealthGate, upstream: MockUpstream):
    """TestClient for the bridge app wired to the mock upstream (lifespan runs)."""
    app = create_app(settings, health, a2a_url=UPSTREAM_URL, http_client=upstream.client())
    with TestClient(app) as client:
        yield client
