import sys
import shlex
import shutil
import logging
import threading
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from botpanel.local.errors import SPAWN_FAILED, IOFailureError

log = logging.getLogger(__name__)

LineHandler = Callable[[str, bool], None]


#* --- Process Creation ---
def _get_popen_creation_flags() -> Dict[str, Any]:
    """Returns platform-specific creation flags for subprocess.Popen."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NO_WINDOW}
    return {}


def split_command(command: str) -> List[str]:
    """Splits a configured command line such as 'npm install' into argv form."""
    return shlex.split(command, posix=sys.platform != "win32")


def get_bot_args(runtime: str, entrypoint: str) -> List[str]:
    """Returns the command-line arguments that launch a bot's entrypoint."""
    return split_command(runtime) + [entrypoint]


def spawn_process(unit: str, args: List[str], cwd: Path, env: Optional[Dict[str, str]] = None) -> subprocess.Popen:
    """
    Launches a child process with piped output in the given working directory.

    :param unit: The bot the process belongs to, used for error context.
    :param args: The command-line arguments.
    :param cwd: The working directory of the child.
    :param env: The full environment of the child, or None to inherit.
    :raises IOFailureError: If the host refuses to create the process.
    """
    # Resolves launchers such as npm.cmd on Windows.
    executable = shutil.which(args[0])
    if executable:
        args = [executable] + args[1:]
    log.debug(f"Spawning {args} for '{unit}' in '{cwd}'")
    try:
        return subprocess.Popen(
            args,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            cwd=str(cwd),
            env=env,
            **_get_popen_creation_flags(),
        )
    except (OSError, ValueError) as e:
        log.error(f"Failed to spawn {args[0]!r} for '{unit}': {e}")
        raise IOFailureError(SPAWN_FAILED, unit, f"Could not launch '{args[0]}': {e}") from e


#* --- Output Forwarding ---
def _read_pipe(pipe, unit: str, is_error: bool, line_handler: LineHandler) -> None:
    """Target function for reader threads. Forwards each line of a pipe to the handler."""
    try:
        for line_bytes in iter(pipe.readline, b""):
            line = line_bytes.decode("utf-8", errors="replace").rstrip("\r\n")
            if not line:
                continue
            line_handler(line, is_error)
    except Exception as e:
        log.debug(f"Pipe reader for {unit} stream exited: {e}")
    finally:
        pipe.close()


def forward_process_output(process: subprocess.Popen, unit: str, line_handler: LineHandler) -> List[threading.Thread]:
    """
    Starts background threads that consume a process's stdout/stderr.

    Consuming both pipes keeps the child from blocking on a full pipe buffer.

    :param process: The `subprocess.Popen` object to read from.
    :param unit: The bot name, used for thread names.
    :param line_handler: Called as ``line_handler(line, is_error)`` for every line.
    :return: The started reader threads, so callers can drain them after exit.
    """
    readers = []
    for pipe, is_error in ((process.stdout, False), (process.stderr, True)):
        if pipe is None:
            continue
        reader = threading.Thread(
            target=_read_pipe,
            args=(pipe, unit, is_error, line_handler),
            daemon=True,
            name=f"{unit}-{'stderr' if is_error else 'stdout'}",
        )
        reader.start()
        readers.append(reader)
    return readers


def drain_readers(readers: List[threading.Thread], timeout: float) -> None:
    """Waits for reader threads to reach end-of-stream, bounded by `timeout` seconds each."""
    for reader in readers:
        reader.join(timeout)
        if reader.is_alive():
            log.debug(f"Reader thread {reader.name} still open after process exit; a grandchild may hold the pipe.")
