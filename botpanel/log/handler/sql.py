import sys
import sqlite3
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from botpanel.local.config import effective_settings as config
from botpanel.local.database import LogDBManager


class SQLiteHandler(logging.Handler):
    """
    A custom logging handler that writes logs to a SQLite database
    in batches using a background thread.
    """
    def __init__(self, db_path: Path):
        """
        Initializes the SQLite handler.

        :param db_path: The path to the SQLite database file.
        """
        super().__init__()
        self.log_buffer: List[Dict[str, Any]] = []
        self.buffer_lock = threading.Lock()
        self.flush_interval = config.LOG_BUFFER_FLUSH_INTERVAL
        self.batch_size = config.LOG_BUFFER_SIZE
        self.stop_event = threading.Event()
        self.logDB = LogDBManager(db_path)
        self.logDB.initialize_database()
        self.flush_thread: Optional[threading.Thread] = threading.Thread(
            target=self._periodic_flush, daemon=True, name="SQLiteFlushThread"
        )
        self.flush_thread.start()

    def _periodic_flush(self) -> None:
        """Periodically flushes the log buffer. This runs in a background thread."""
        while not self.stop_event.wait(self.flush_interval):
            self.flush()

    def emit(self, record: logging.LogRecord) -> None:
        """
        Adds a log record to the internal buffer for batch writing.

        Bot output arrives on `proc.<bot>` loggers; those rows are tagged with
        the bot name and the stream it came from.

        :param record: The log record to be processed.
        """
        unit = stream = None
        if record.name.startswith('proc.'):
            unit = record.name.split('.', 1)[1]
            stream = 'stderr' if record.levelno >= logging.ERROR else 'stdout'

        log_entry = {
            "timestamp": record.created,
            "level": record.levelname,
            "logger": record.name,
            "unit": unit,
            "stream": stream,
            "message": record.getMessage(),
        }
        with self.buffer_lock:
            self.log_buffer.append(log_entry)
            should_flush = len(self.log_buffer) >= self.batch_size
        if should_flush:
            self.flush()

    def flush(self) -> None:
        """Writes the buffered logs to the database."""
        with self.buffer_lock:
            if not self.log_buffer:
                return
            entries_to_write = self.log_buffer
            self.log_buffer = []

        try:
            self.logDB.insert_log_batch(entries_to_write)
        except sqlite3.Error as e:
            print(f"Error writing logs to DB: {e}. Log entries: {len(entries_to_write)}", file=sys.stderr)

    def close(self) -> None:
        """Stops the flush thread and writes out anything still buffered."""
        self.stop_event.set()
        if self.flush_thread and self.flush_thread.is_alive():
            self.flush_thread.join()
        self.flush()
        super().close()
