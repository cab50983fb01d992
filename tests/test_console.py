import pytest
import requests

from botpanel.local.console import execute_command
from botpanel.local.console.client import PanelClient, PanelClientError
from botpanel.local.console.handler import handle_logs_command


class FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self.ok = status_code < 400
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no body")
        return self._payload


class FakeSession:
    """Answers panel API calls from a {(method, path): (status, payload)} table."""

    def __init__(self, routes=None, error=None):
        self.routes = routes or {}
        self.error = error
        self.calls = []

    def request(self, method, url, timeout=None, **kwargs):
        path = url.split("://", 1)[1].split("/", 1)[1]
        self.calls.append((method, "/" + path, kwargs))
        if self.error:
            raise self.error
        status, payload = self.routes.get((method, "/" + path), (404, None))
        return FakeResponse(status, payload)


def _client(**kwargs):
    session = FakeSession(**kwargs)
    return PanelClient("http://panel.test", session=session), session


def test_client_surfaces_structured_errors():
    client, _ = _client(routes={
        ("POST", "/api/start/echo"): (409, {"error": "AlreadyRunning", "category": "Conflict", "unit": "echo",
                                            "detail": "Bot is already running."}),
    })
    with pytest.raises(PanelClientError) as excinfo:
        client.lifecycle("start", "echo")
    assert excinfo.value.code == "AlreadyRunning"
    assert str(excinfo.value) == "AlreadyRunning: Bot is already running."


def test_client_reports_unreachable_server():
    client, _ = _client(error=requests.ConnectionError("refused"))
    with pytest.raises(PanelClientError) as excinfo:
        client.list_bots()
    assert "unreachable" in str(excinfo.value)


def test_client_quotes_names():
    client, session = _client(routes={("GET", "/api/env/Music%20Bot"): (200, {"name": "Music Bot", "env": {}})})
    assert client.get_env("Music Bot") == {}
    assert session.calls[0][1] == "/api/env/Music%20Bot"


def test_lifecycle_command_prints_result(capsys):
    client, _ = _client(routes={
        ("POST", "/api/start/echo"): (200, {"status": "success", "name": "echo", "message": "Bot started"}),
        ("POST", "/api/start/ghost"): (404, {"error": "NotFound", "detail": "Bot 'ghost' not found."}),
    })

    assert execute_command("start", ["echo", "ghost"], client) is False

    out = capsys.readouterr().out
    assert "echo: Bot started" in out
    assert "ghost: ERROR: NotFound: Bot 'ghost' not found." in out


def test_list_command(capsys):
    client, _ = _client(routes={
        ("GET", "/api/bots"): (200, [{"name": "echo", "status": "Stopped", "pid": None, "uptime": None}]),
    })
    execute_command("list", [], client)
    out = capsys.readouterr().out
    assert "echo" in out
    assert "Stopped" in out


def test_env_set_joins_value(capsys):
    client, session = _client(routes={
        ("PUT", "/api/env/echo/GREETING"): (200, {"status": "success"}),
    })
    execute_command("env", ["echo", "set", "GREETING", "hello", "world"], client)
    assert session.calls[0][2]["json"] == {"value": "hello world"}
    assert "'GREETING' set for 'echo'" in capsys.readouterr().out


def test_deploy_missing_file(tmp_path, capsys):
    client, session = _client()
    execute_command("deploy", [str(tmp_path / "nope.zip")], client)
    assert "is not a file" in capsys.readouterr().out
    assert session.calls == []


def test_deploy_uploads_archive(tmp_path, capsys):
    archive = tmp_path / "echo.zip"
    archive.write_bytes(b"PK")
    client, session = _client(routes={("POST", "/api/upload"): (201, {"status": "success", "name": "echo"})})

    execute_command("deploy", [str(archive)], client)

    assert session.calls[0][2]["files"]["botfile"][0] == "echo.zip"
    assert "Deployed 'echo'" in capsys.readouterr().out


def test_exit_and_unknown_commands():
    client, _ = _client()
    assert execute_command("exit", [], client) is True
    assert execute_command("frobnicate", [], client) is False


def test_logs_without_database(tmp_path, capsys):
    handle_logs_command([], db_path=tmp_path / "missing.db")
    assert "No log database found" in capsys.readouterr().out
