"""
Helpers shared by the test modules: stand-in bot scripts, archive building
and an observer that records broadcaster events.
"""
import io
import sys
import time
import shlex
import zipfile
import threading
import textwrap
from typing import Callable, Dict, List, Optional

from botpanel.local.broadcast import REGISTRY_CHANGED, LogEvent

# Bots are plain Python scripts run by the current interpreter.
PYTHON_RUNTIME = f"{shlex.quote(sys.executable)} -u"
INSTALL_OK = f"{shlex.quote(sys.executable)} -c \"print('deps installed')\""
INSTALL_FAIL = f"{shlex.quote(sys.executable)} -c \"import sys; print('broken', file=sys.stderr); sys.exit(3)\""
INSTALL_SLOW = f"{shlex.quote(sys.executable)} -c \"import time; time.sleep(3)\""

LONG_RUNNING_BOT = textwrap.dedent("""
    import os
    import sys
    import time

    print("hello from " + os.path.basename(os.getcwd()))
    print("warming up", file=sys.stderr)
    print("TOKEN=" + os.environ.get("TOKEN", ""))
    sys.stdout.flush()
    while True:
        time.sleep(0.1)
""")

CRASHING_BOT = textwrap.dedent("""
    import sys

    print("about to crash")
    sys.exit(7)
""")


def build_zip(files: Dict[str, str]) -> bytes:
    """Builds an in-memory zip archive from a {path: content} mapping."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for path, content in files.items():
            archive.writestr(path, content)
    return buffer.getvalue()


def wait_until(predicate: Callable[[], bool], timeout: float = 10, interval: float = 0.05) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class EventRecorder:
    """Observer that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: List[object] = []
        self._condition = threading.Condition()

    def __call__(self, event) -> None:
        with self._condition:
            self.events.append(event)
            self._condition.notify_all()

    def log_events(self, unit: Optional[str] = None) -> List[LogEvent]:
        with self._condition:
            return [e for e in self.events if isinstance(e, LogEvent) and (unit is None or e.unit == unit)]

    def lines(self, unit: Optional[str] = None) -> List[str]:
        return [e.text for e in self.log_events(unit)]

    def count(self, text: str, unit: Optional[str] = None) -> int:
        return sum(1 for line in self.lines(unit) if text in line)

    def registry_changes(self) -> int:
        with self._condition:
            return sum(1 for e in self.events if e is REGISTRY_CHANGED)

    def wait_for_line(self, text: str, unit: Optional[str] = None, count: int = 1, timeout: float = 10) -> bool:
        """Blocks until `text` has appeared in at least `count` lines."""
        with self._condition:
            return self._condition.wait_for(
                lambda: sum(
                    1 for e in self.events
                    if isinstance(e, LogEvent) and (unit is None or e.unit == unit) and text in e.text
                ) >= count,
                timeout,
            )
