from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from buildwatch.api.client import BackendClient
from buildwatch.errors import AnalysisError, BuildTriggerError
from buildwatch.models import UIActionCommand


def test_trigger_build_posts_to_project_build_endpoint(make_client) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "job-7", "project_id": "42", "type": "BUILD", "status": "QUEUED"})

    job = asyncio.run(make_client(handler).trigger_build(42))
    assert job.id == "job-7"
    assert job.status == "QUEUED"
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/api/projects/42/build"


def test_trigger_build_http_error_is_a_build_trigger_error(make_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="db down")

    with pytest.raises(BuildTriggerError, match="build_http_500"):
        asyncio.run(make_client(handler).trigger_build(1))


def test_trigger_build_is_not_retried_on_network_error(make_client) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(BuildTriggerError, match="ConnectError"):
        asyncio.run(make_client(handler).trigger_build(1))
    assert calls["n"] == 1


def test_trigger_build_rejects_response_without_id(make_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "QUEUED"})

    with pytest.raises(BuildTriggerError, match="job_response_invalid"):
        asyncio.run(make_client(handler).trigger_build(1))


def test_dispatch_command_sends_ui_action(make_client) -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/projects/p1/ai-command"
        bodies.append(json.loads(request.content.decode("utf-8")))
        return httpx.Response(200, json={"id": "job-9"})

    cmd = UIActionCommand(action="TYPE", target="Notepad", value="Hello World")
    job = asyncio.run(make_client(handler).dispatch_command("p1", cmd))
    assert job.id == "job-9"
    assert bodies == [{"type": "UI_ACTION", "action": "TYPE", "target": "Notepad", "value": "Hello World"}]


def test_analyze_logs_parses_full_result(make_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/ai/analyze"
        assert json.loads(request.content.decode("utf-8")) == {"logs": "a\nb"}
        return httpx.Response(200, json={"confidence": 85, "analysis": "build failed", "suggestion": "npm install"})

    res = asyncio.run(make_client(handler).analyze_logs("a\nb"))
    assert res.confidence == 85
    assert res.analysis == "build failed"
    assert res.suggestion == "npm install"


@pytest.mark.parametrize(
    "payload",
    [
        {"confidence": 85, "analysis": "missing suggestion"},
        {"confidence": 150, "analysis": "x", "suggestion": "y"},
        ["not", "a", "record"],
    ],
)
def test_analyze_logs_rejects_malformed_payloads(make_client, payload) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    with pytest.raises(AnalysisError, match="analysis_response_invalid"):
        asyncio.run(make_client(handler).analyze_logs("x"))


def test_analyze_logs_rejects_non_json_body(make_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>")

    with pytest.raises(AnalysisError, match="analysis_response_parse_error"):
        asyncio.run(make_client(handler).analyze_logs("x"))


def test_analyze_logs_retries_transient_network_errors(make_client) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            raise httpx.ReadError("incomplete chunked read", request=request)
        return httpx.Response(200, json={"confidence": 50, "analysis": "ok", "suggestion": "none"})

    res = asyncio.run(make_client(handler, max_retries=3).analyze_logs("x"))
    assert res.confidence == 50
    assert calls["n"] == 3


def test_analyze_logs_gives_up_after_max_retries(make_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(AnalysisError, match="after 2 attempts"):
        asyncio.run(make_client(handler, max_retries=2).analyze_logs("x"))


@pytest.mark.parametrize("base_url", ["http://[::1/api", "http://localhost:99999/api"])
def test_trigger_build_wraps_misconfigured_base_url(base_url) -> None:
    client = BackendClient(api_base_url=base_url, timeout_s=2.0)
    with pytest.raises(BuildTriggerError):
        asyncio.run(client.trigger_build(1))


def test_transport_failures_outside_httpx_errors_are_typed(make_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise RuntimeError("transport blew up")

    with pytest.raises(BuildTriggerError, match="RuntimeError: transport blew up"):
        asyncio.run(make_client(handler).trigger_build(1))
    with pytest.raises(BuildTriggerError, match="RuntimeError"):
        asyncio.run(make_client(handler).dispatch_command(1, UIActionCommand(action="CLICK", target="#go")))
    with pytest.raises(AnalysisError, match="RuntimeError"):
        asyncio.run(make_client(handler).analyze_logs("x"))
