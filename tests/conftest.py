"""
Pytest fixtures for bot panel tests
"""
import os
import json
import tempfile
from pathlib import Path
from typing import Optional

import pytest

# Keep settings, overrides and logs of the test run out of the working directory.
os.environ.setdefault("BOTPANEL_DATA_DIR", tempfile.mkdtemp(prefix="botpanel-tests-"))

from botpanel.local.broadcast import LogBroadcaster
from botpanel.local.registry import BotRegistry
from botpanel.local.supervisor import BotSupervisor
from tests.helpers import INSTALL_OK, LONG_RUNNING_BOT, PYTHON_RUNTIME, EventRecorder


@pytest.fixture
def registry(tmp_path):
    return BotRegistry(tmp_path / "registry.json")


@pytest.fixture
def broadcaster():
    return LogBroadcaster()


@pytest.fixture
def recorder(broadcaster):
    """Records every event published while the test runs."""
    recorder = EventRecorder()
    with broadcaster.subscribe(recorder):
        yield recorder


@pytest.fixture
def bots_dir(tmp_path):
    path = tmp_path / "bots"
    path.mkdir()
    return path


@pytest.fixture
def supervisor(bots_dir, registry, broadcaster):
    """A supervisor running Python stand-in bots, torn down with all its children."""
    supervisor = BotSupervisor(
        bots_dir=bots_dir,
        registry=registry,
        broadcaster=broadcaster,
        runtime=PYTHON_RUNTIME,
        install_command=INSTALL_OK,
        manifest_file="package.json",
        entrypoint_candidates=("bot.py", "index.py"),
        restart_delay=0.2,
        deploy_stop_timeout=5,
        pipe_drain_timeout=2,
    )
    yield supervisor
    supervisor.shutdown(timeout=5)


@pytest.fixture
def make_bot(bots_dir, registry):
    """Creates a bot folder with a script and, optionally, a manifest."""

    def _make_bot(name: str, script: str = LONG_RUNNING_BOT, entrypoint: str = "bot.py",
                  manifest: Optional[dict] = None, register: bool = True) -> Path:
        working_dir = bots_dir / name
        working_dir.mkdir(parents=True, exist_ok=True)
        if script is not None:
            (working_dir / entrypoint).write_text(script)
        if manifest is not None:
            (working_dir / "package.json").write_text(json.dumps(manifest))
        if register:
            registry.register(name)
        return working_dir

    return _make_bot
