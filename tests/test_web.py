import pytest
from starlette.datastructures import UploadFile
from starlette.testclient import TestClient

from botpanel.local.config import effective_settings
from botpanel.web.server import create_app, serialize_event
from botpanel.local.broadcast import REGISTRY_CHANGED, LogEvent
from tests.helpers import LONG_RUNNING_BOT, build_zip, wait_until


@pytest.fixture
def client(supervisor):
    with TestClient(create_app(supervisor)) as client:
        yield client


def _upload(client, filename="echo.zip", files=None):
    archive = build_zip(files or {"echo/bot.py": LONG_RUNNING_BOT})
    return client.post("/api/upload", files={"botfile": (filename, archive, "application/zip")})


#* --- Pages and headers ---
def test_index_page(client):
    response = client.get("/")
    assert response.status_code == 200
    assert "Bot Panel" in response.text
    assert response.headers["X-Frame-Options"] == "DENY"
    assert "connect-src 'self' ws: wss:" in response.headers["Content-Security-Policy"]


def test_empty_bot_list(client):
    response = client.get("/api/bots")
    assert response.status_code == 200
    assert response.json() == []
    assert response.headers["Cache-Control"] == "no-store"


#* --- Upload ---
def test_upload_registers_bot(client):
    response = _upload(client)
    assert response.status_code == 201
    assert response.json()["name"] == "echo"
    assert client.get("/api/bots").json() == [{"name": "echo", "status": "Stopped", "pid": None, "uptime": None}]


def test_upload_without_file(client):
    response = client.post("/api/upload", data={"other": "value"})
    assert response.status_code == 400
    assert response.json()["error"] == "MissingField"


def test_upload_wrong_extension(client):
    response = _upload(client, filename="echo.tar.gz")
    assert response.status_code == 400
    assert response.json() == {
        "error": "BadArchiveFormat",
        "category": "InvalidInput",
        "unit": None,
        "detail": "Only .zip files are allowed.",
    }


def test_upload_too_large(client, monkeypatch):
    monkeypatch.setattr(effective_settings, "MAX_UPLOAD_SIZE_MB", 0)
    response = _upload(client)
    assert response.status_code == 400
    assert response.json()["category"] == "InvalidInput"


def test_upload_too_large_is_rejected_before_reading(client, monkeypatch):
    reads = []

    async def recording_read(self, size=-1):
        reads.append(size)
        return b""

    monkeypatch.setattr(UploadFile, "read", recording_read)
    monkeypatch.setattr(effective_settings, "MAX_UPLOAD_SIZE_MB", 0)

    response = _upload(client)

    assert response.status_code == 400
    assert response.json()["error"] == "BadArchiveFormat"
    assert reads == []
    assert client.get("/api/bots").json() == []


#* --- Lifecycle ---
def test_start_and_stop(client, supervisor):
    _upload(client)

    response = client.post("/api/start/echo")
    assert response.status_code == 200
    assert response.json()["status"] == "success"
    [bot] = client.get("/api/bots").json()
    assert bot["status"] == "Running"
    assert isinstance(bot["pid"], int)

    again = client.get("/api/start/echo")
    assert again.status_code == 409
    assert again.json()["error"] == "AlreadyRunning"
    assert again.json()["category"] == "Conflict"
    assert again.json()["unit"] == "echo"

    assert client.post("/api/stop/echo").status_code == 200
    assert wait_until(lambda: not supervisor.is_running("echo"))


def test_unknown_bot_is_404(client):
    response = client.post("/api/start/ghost")
    assert response.status_code == 404
    assert response.json()["category"] == "NotFound"


def test_missing_entrypoint_is_422(client):
    _upload(client, files={"echo/readme.txt": "nothing to run"})
    response = client.post("/api/start/echo")
    assert response.status_code == 422
    assert response.json()["error"] == "EntrypointNotFound"


def test_unknown_action_has_no_route(client):
    assert client.post("/api/launch/echo").status_code == 404


def test_delete(client):
    _upload(client)
    assert client.post("/api/delete/echo").status_code == 200
    assert client.get("/api/bots").json() == []


#* --- Environment ---
def test_env_round_trip(client):
    _upload(client)

    assert client.get("/api/env/echo").json() == {"name": "echo", "env": {}}
    assert client.put("/api/env/echo/TOKEN", json={"value": "abc"}).status_code == 200
    assert client.get("/api/env/echo").json()["env"] == {"TOKEN": "abc"}

    assert client.delete("/api/env/echo/TOKEN").status_code == 200
    assert client.get("/api/env/echo").json()["env"] == {}
    assert client.delete("/api/env/echo/TOKEN").status_code == 404


def test_env_requires_value(client):
    _upload(client)
    response = client.put("/api/env/echo/TOKEN", json={})
    assert response.status_code == 400
    assert response.json()["error"] == "MissingField"


def test_env_of_unknown_bot(client):
    assert client.get("/api/env/ghost").status_code == 404
    assert client.put("/api/env/ghost/TOKEN", json={"value": "x"}).status_code == 404


#* --- Observer stream ---
def test_serialize_event():
    assert serialize_event(LogEvent("echo", "hi", True)) == {
        "type": "log", "unit": "echo", "text": "hi", "isError": True, "line": "[echo]: hi",
    }
    assert serialize_event(REGISTRY_CHANGED) == {"type": "status_update"}


def test_websocket_receives_welcome_and_events(client, supervisor):
    with client.websocket_connect("/ws") as websocket:
        welcome = websocket.receive_json()
        assert welcome == {"type": "welcome", "text": effective_settings.WELCOME_MESSAGE}

        supervisor.broadcaster.publish("echo", "hello observers")
        supervisor.broadcaster.notify_registry_changed()

        message = websocket.receive_json()
        assert message["type"] == "log"
        assert message["unit"] == "echo"
        assert message["text"] == "hello observers"
        assert message["isError"] is False
        assert websocket.receive_json() == {"type": "status_update"}

    assert wait_until(lambda: supervisor.broadcaster.observer_count == 0)


def test_websocket_streams_bot_output(client):
    _upload(client)
    with client.websocket_connect("/ws") as websocket:
        websocket.receive_json()
        client.post("/api/start/echo")

        texts = []
        while "hello from echo" not in texts:
            message = websocket.receive_json()
            if message["type"] == "log":
                texts.append(message["text"])
        assert texts[0] == "--- starting... ---"
