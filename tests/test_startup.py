import logging
import subprocess
import sys

from botpanel.local.supervisor.shutdown import graceful_shutdown_sequence, identify_processes_to_stop
from botpanel.local.supervisor.startup import setup_initial_environment


def test_orphan_folders_are_registered(supervisor, bots_dir):
    (bots_dir / "orphan").mkdir()
    (bots_dir / ".hidden").mkdir()
    (bots_dir / "stray-file.txt").write_text("")

    setup_initial_environment(supervisor)

    assert supervisor.registry.list_names() == ["orphan"]


def test_records_without_folder_are_kept(supervisor, caplog):
    supervisor.registry.register("gone")
    with caplog.at_level(logging.WARNING):
        setup_initial_environment(supervisor)

    assert supervisor.registry.list_names() == ["gone"]
    assert "folder is missing" in caplog.text
    assert [u["status"] for u in supervisor.list_units()] == ["Stopped"]


def test_creates_missing_directories(supervisor, tmp_path):
    supervisor.bots_dir = tmp_path / "fresh" / "bots"
    setup_initial_environment(supervisor)
    assert supervisor.bots_dir.is_dir()


def test_graceful_shutdown_terminates_processes():
    process = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
    try:
        assert {p.pid for p in identify_processes_to_stop([process.pid])} == {process.pid}
        graceful_shutdown_sequence([process.pid], timeout=5)
        assert process.wait(timeout=5) is not None
    finally:
        if process.poll() is None:
            process.kill()


def test_identify_skips_vanished_processes():
    process = subprocess.Popen([sys.executable, "-c", "pass"])
    process.wait()
    assert identify_processes_to_stop([process.pid]) == set()
