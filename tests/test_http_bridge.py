"""
Tests for the blocking /invocations path, request validation, routing and
the catch-all 404, against a scripted A2A upstream.
"""

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from agentcore_bridge.health import HealthGate
from agentcore_bridge.main import SESSION_HEADER, create_app
from agentcore_bridge.runtime import Listener, bind_socket
from conftest import (
    UPSTREAM_URL,
    SlowUpstream,
    a2a_error,
    a2a_result,
    completed_task,
    failed_task,
    make_settings,
)


class TestBlockingInvocations:
    def test_blocking_success(self, bridge_client, upstream):
        """S1: a completed task with usage maps to a 200 success envelope."""
        upstream.reply(
            a2a_result(
                completed_task(
                    "echo: hello world",
                    metadata={"usage": {"input_tokens": 10, "output_tokens": 20}},
                )
            )
        )

        response = bridge_client.post("/invocations", json={"prompt": "hello world"})

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        assert response.json() == {
            "response": "echo: hello world",
            "status": "success",
            "task_id": "task-001",
            "usage": {"input_tokens": 10, "output_tokens": 20},
        }

        sent = upstream.last_json
        assert upstream.requests[-1]["url"] == UPSTREAM_URL
        assert upstream.requests[-1]["headers"]["content-type"] == "application/json"
        assert sent["method"] == "message/send"
        assert sent["params"]["message"]["parts"] == [{"kind": "text", "text": "hello world"}]
        assert sent["params"]["configuration"] == {"blocking": True}
        assert "contextId" not in sent["params"]
        assert "metadata" not in sent["params"]["message"]

    def test_session_and_extras(self, bridge_client, upstream):
        """S2: the session header becomes contextId; extras land in metadata.payload."""
        upstream.reply(a2a_result(completed_task("ok", contextId="session-42")))

        response = bridge_client.post(
            "/invocations",
            json={"prompt": "test", "metadata": {"user": "u1"}, "trace_id": "t123"},
            headers={SESSION_HEADER: "session-42"},
        )

        assert response.status_code == 200
        assert response.json()["context_id"] == "session-42"
        params = upstream.last_json["params"]
        assert params["contextId"] == "session-42"
        assert params["message"]["metadata"]["user"] == "u1"
        assert params["message"]["metadata"]["payload"] == {"trace_id": "t123"}

    def test_session_header_is_case_insensitive(self, bridge_client, upstream):
        upstream.reply(a2a_result(completed_task("ok")))

        bridge_client.post(
            "/invocations",
            json={"prompt": "x"},
            headers={SESSION_HEADER.lower(): "abc"},
        )

        assert upstream.last_json["params"]["contextId"] == "abc"

    def test_context_id_comes_from_upstream(self, bridge_client, upstream):
        upstream.reply(a2a_result(completed_task("ok", contextId="upstream-ctx")))

        response = bridge_client.post(
            "/invocations", json={"prompt": "x"}, headers={SESSION_HEADER: "client-session"}
        )

        assert response.json()["context_id"] == "upstream-ctx"

    def test_input_is_used_when_prompt_missing(self, bridge_client, upstream):
        upstream.reply(a2a_result(completed_task("ok")))

        bridge_client.post("/invocations", json={"input": "from input"})

        assert upstream.last_json["params"]["message"]["parts"][0]["text"] == "from input"

    def test_task_failure(self, bridge_client, upstream):
        """S4: a failed task maps to a 500 error envelope."""
        upstream.reply(a2a_result(failed_task("rate limit exceeded")))

        response = bridge_client.post("/invocations", json={"prompt": "x"})

        assert response.status_code == 500
        assert response.json() == {"response": "rate limit exceeded", "status": "error"}

    def test_jsonrpc_error(self, bridge_client, upstream):
        upstream.reply(a2a_error("method exploded"))

        response = bridge_client.post("/invocations", json={"prompt": "x"})

        assert response.status_code == 500
        assert response.json() == {"response": "method exploded", "status": "error"}

    def test_undecodable_upstream_body_is_passed_through(self, bridge_client, upstream):
        upstream.reply(b"<html>not json-rpc</html>", content_type="text/html")

        response = bridge_client.post("/invocations", json={"prompt": "x"})

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        assert response.content == b"<html>not json-rpc</html>"

    def test_upstream_unreachable(self, bridge_client, upstream):
        upstream.fail()

        response = bridge_client.post("/invocations", json={"prompt": "x"})

        assert response.status_code == 502
        assert response.text == "agent unavailable"


class TestValidation:
    @pytest.mark.parametrize(
        "body, reason",
        [
            (b"{not json", "invalid JSON"),
            (b"", "invalid JSON"),
            (b"[]", "invalid JSON"),
            (b'{"prompt": 5}', "invalid JSON"),
            (b"{}", "prompt or input is required"),
            (b'{"prompt": "", "input": ""}', "prompt or input is required"),
            (b'{"metadata": {"user": "u1"}}', "prompt or input is required"),
        ],
    )
    def test_bad_request(self, bridge_client, upstream, body, reason):
        response = bridge_client.post(
            "/invocations", content=body, headers={"content-type": "application/json"}
        )

        assert response.status_code == 400
        assert response.text == reason
        assert upstream.requests == []

    def test_bad_request_on_sse_path(self, bridge_client, upstream):
        response = bridge_client.post(
            "/invocations", json={"prompt": ""}, headers={"accept": "text/event-stream"}
        )

        assert response.status_code == 400
        assert upstream.requests == []


class TestRouting:
    @pytest.mark.parametrize("method", ["GET", "PUT", "DELETE"])
    def test_non_post_invocations_does_not_match(self, bridge_client, method):
        response = bridge_client.request(method, "/invocations")
        assert response.status_code in (404, 405)

    @pytest.mark.parametrize("path", ["/", "/unknown", "/docs", "/openapi.json", "/a2a"])
    def test_unknown_paths_return_404(self, bridge_client, path):
        response = bridge_client.post(path, content=b"some body")
        assert response.status_code == 404
        assert response.text == "not found"

    def test_ping_only_answers_get(self, bridge_client):
        assert bridge_client.get("/ping").status_code == 200
        assert bridge_client.post("/ping").status_code in (404, 405)


def test_upstream_down_on_real_port(settings):
    """S5: nothing listens on port 1, so blocking and SSE both get 502."""
    app = create_app(settings, HealthGate(), a2a_url="http://127.0.0.1:1/a2a")
    with TestClient(app) as client:
        blocking = client.post("/invocations", json={"prompt": "x"})
        streaming = client.post(
            "/invocations", json={"prompt": "x"}, headers={"accept": "text/event-stream"}
        )

    assert blocking.status_code == 502
    assert blocking.text == "agent unavailable"
    assert streaming.status_code == 502
    assert streaming.text == "agent unavailable"


def test_default_upstream_url_follows_a2a_port(upstream):
    upstream.reply(a2a_result(completed_task("ok")))
    app = create_app(make_settings(a2a_port=9123), HealthGate(), http_client=upstream.client())
    with TestClient(app) as client:
        client.post("/invocations", json={"prompt": "x"})

    assert upstream.requests[-1]["url"] == "http://127.0.0.1:9123/a2a"


def test_timeout_error_is_treated_as_unavailable(bridge_client, upstream):
    upstream.fail(httpx.ReadTimeout)

    response = bridge_client.post("/invocations", json={"prompt": "x"})

    assert response.status_code == 502


@pytest.mark.asyncio
async def test_client_disconnect_cancels_blocking_upstream_call():
    upstream = SlowUpstream(delay=5.0)
    http_client = upstream.client()
    settings = make_settings()
    app = create_app(settings, HealthGate(), a2a_url=UPSTREAM_URL, http_client=http_client)
    listener = Listener("bridge", app, bind_socket("127.0.0.1", 0), settings)
    await listener.start()
    try:
        body = b'{"prompt": "slow"}'
        _reader, writer = await asyncio.open_connection("127.0.0.1", listener.port)
        writer.write(
            b"POST /invocations HTTP/1.1\r\n"
            b"Host: bridge\r\n"
            b"Content-Type: application/json\r\n"
            b"Content-Length: %d\r\n\r\n%s" % (len(body), body)
        )
        await writer.drain()
        await asyncio.wait_for(upstream.started.wait(), timeout=2)

        writer.close()
        await writer.wait_closed()
        for _ in range(100):
            if upstream.cancelled:
                break
            await asyncio.sleep(0.02)

        assert upstream.cancelled is True
        assert upstream.finished is False
    finally:
        await listener.stop(5.0)
        await http_client.aclose()
