from __future__ import annotations

import httpx
import pytest

from buildwatch import cli


def test_parser_accepts_watch_and_command() -> None:
    ap = cli.build_parser()
    w = ap.parse_args(["watch", "42", "--name", "web", "--analyze"])
    assert (w.cmd, w.project_id, w.name, w.analyze) == ("watch", "42", "web", True)
    c = ap.parse_args(["command", "42", "TYPE", "Notepad", "Hello World"])
    assert (c.cmd, c.action, c.target, c.value) == ("command", "TYPE", "Notepad", "Hello World")
    with pytest.raises(SystemExit):
        ap.parse_args(["command", "42", "DANCE", "Notepad"])


def test_command_prints_job_id(monkeypatch, capsys, make_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/projects/42/ai-command"
        return httpx.Response(200, json={"id": "job-3"})

    monkeypatch.setattr(cli, "BuildMonitor", _monitor_with(make_client(handler)))
    assert cli.main(["command", "42", "FIND", "Calculator"]) == 0
    assert "Job ID: job-3" in capsys.readouterr().out


def test_command_failure_exits_nonzero(monkeypatch, capsys, make_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    monkeypatch.setattr(cli, "BuildMonitor", _monitor_with(make_client(handler)))
    assert cli.main(["command", "42", "FIND", "Calculator"]) == 1
    assert "command_http_500" in capsys.readouterr().err


def _monitor_with(client):
    from buildwatch.monitor import BuildMonitor

    def _make(settings, **kwargs):
        return BuildMonitor(settings, client=client, **kwargs)

    return _make
