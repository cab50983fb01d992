import sqlite3
import logging
import threading
from pathlib import Path
from collections import namedtuple
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional

LogEntry = namedtuple('LogEntry', ['timestamp', 'level', 'logger', 'unit', 'stream', 'message'])
log = logging.getLogger(__name__)


class LogDBManager:
    """
    Manages all interactions with the application's logging SQLite database.

    Supervisor logs and every line of bot output end up in the `logs` table;
    bot output rows carry the bot name in `unit` and 'stdout'/'stderr' in `stream`.
    """

    def __init__(self, db_path: Path):
        """
        Initializes the LogDBManager.

        :param db_path: The path to the logging SQLite database file.
        """
        self.db_path = db_path
        self.lock = threading.Lock()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Yields a new connection while holding the write lock."""
        with self.lock:
            conn = sqlite3.connect(self.db_path, timeout=10)
            try:
                yield conn
            finally:
                conn.close()

    def initialize_database(self) -> None:
        """Ensures the log table exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._get_connection() as conn:
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS logs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        timestamp REAL,
                        level TEXT,
                        logger TEXT,
                        unit TEXT,
                        stream TEXT,
                        message TEXT
                    )
                ''')
                conn.execute("CREATE INDEX IF NOT EXISTS idx_logs_unit ON logs (unit, timestamp)")
                conn.commit()
            log.debug("Log database tables created/verified.")
        except sqlite3.Error as e:
            log.critical(f"Could not create log database tables: {e}", exc_info=True)
            raise

    def insert_log_batch(self, log_entries: List[Dict[str, Any]]) -> None:
        """
        Inserts multiple log entries in a single transaction.

        :param log_entries: Dicts with keys timestamp, level, logger, unit, stream, message.
        """
        if not log_entries:
            return
        params = [
            (e['timestamp'], e['level'], e['logger'], e.get('unit'), e.get('stream'), e['message'])
            for e in log_entries
        ]
        with self._get_connection() as conn:
            conn.executemany(
                "INSERT INTO logs (timestamp, level, logger, unit, stream, message) VALUES (?, ?, ?, ?, ?, ?)",
                params,
            )
            conn.commit()

    def fetch_last_entries(self, limit: int, unit: Optional[str] = None, include_debug: bool = False) -> List[LogEntry]:
        """
        Fetches the most recent log entries in chronological order.

        :param limit: Maximum number of entries.
        :param unit: Only return output of this bot.
        :param include_debug: Include DEBUG records.
        """
        clauses, params = [], []
        if unit is not None:
            clauses.append("unit = ?")
            params.append(unit)
        if not include_debug:
            clauses.append("level != 'DEBUG'")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT timestamp, level, logger, unit, stream, message FROM logs {where} "
                "ORDER BY id DESC LIMIT ?",
                params,
            ).fetchall()
        return [LogEntry(*row) for row in reversed(rows)]
