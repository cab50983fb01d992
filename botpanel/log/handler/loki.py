import sys
import socket
import logging
import requests
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from botpanel.local.config import effective_settings as config


class LokiHandler(logging.Handler):
    """
    A custom logging handler that sends logs to a Grafana Loki instance
    in batches using a background thread.

    Bot output (`proc.<bot>` loggers) is labelled with `unit=<bot>` so each
    bot's stream can be queried on its own.
    """
    def __init__(self, url: str, org_id: Optional[str] = None, session: Optional[requests.Session] = None):
        """
        Initializes the Loki handler.

        :param url: The base URL of the Loki instance.
        :param org_id: The tenant ID for Loki (e.g., 'X-Scope-OrgID').
        :param session: An optional requests session, mainly for testing.
        """
        super().__init__()
        self.url = f"{url.rstrip('/')}/loki/api/v1/push"
        self.org_id = org_id
        self.session = session or requests.Session()
        self.log_buffer: Deque[Dict[str, Any]] = deque()
        self.buffer_lock = threading.Lock()
        self.flush_interval = config.LOG_BUFFER_FLUSH_INTERVAL
        self.batch_size = 200
        self.hostname = socket.gethostname()

        self.stop_event = threading.Event()
        self.flush_thread = threading.Thread(target=self._periodic_flush, daemon=True, name="LokiFlushThread")
        self.flush_thread.start()

    def _periodic_flush(self) -> None:
        while not self.stop_event.wait(self.flush_interval):
            self.flush()

    def build_entry(self, record: logging.LogRecord) -> Dict[str, Any]:
        """Converts a log record into a Loki stream entry."""
        labels = {
            "job": "botpanel",
            "level": record.levelname.lower(),
            "hostname": self.hostname,
        }
        if record.name.startswith('proc.'):
            labels["unit"] = record.name.split('.', 1)[1]
            msg = record.getMessage()
        else:
            labels["logger"] = record.name
            msg = self.format(record)

        return {
            "stream": labels,
            "values": [[str(int(record.created * 1e9)), msg]],
        }

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = self.build_entry(record)
            with self.buffer_lock:
                self.log_buffer.append(entry)
                should_flush = len(self.log_buffer) >= self.batch_size
            if should_flush:
                self.flush()
        except Exception as e:
            print(f"ERROR: LokiHandler failed to process a log record: {e}", file=sys.stderr)

    def flush(self) -> None:
        """Sends the buffered entries to Loki outside the buffer lock."""
        with self.buffer_lock:
            if not self.log_buffer:
                return
            logs_to_send: List[Dict[str, Any]] = list(self.log_buffer)
            self.log_buffer.clear()

        headers = {'Content-Type': 'application/json'}
        if self.org_id:
            headers['X-Scope-OrgID'] = self.org_id
        try:
            response = self.session.post(self.url, json={"streams": logs_to_send}, headers=headers, timeout=5)
            # 204 No Content is the success status for Loki push
            if response.status_code != 204:
                print(f"Loki returned non-204 status: {response.status_code} - {response.text}", file=sys.stderr)
        except requests.RequestException as e:
            print(f"CRITICAL: Failed to send {len(logs_to_send)} logs to Loki: {e}", file=sys.stderr)

    def close(self) -> None:
        self.stop_event.set()
        if self.flush_thread.is_alive():
            self.flush_thread.join(timeout=self.flush_interval + 2)
        self.flush()
        super().close()
