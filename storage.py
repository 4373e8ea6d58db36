import logging
import sqlite3
from contextlib import contextmanager
from typing import List

from models import AnalysisLogEntry

logger = logging.getLogger("LogStore")

SCHEMA = """
CREATE TABLE IF NOT EXISTS analysis_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    original_url TEXT NOT NULL,
    final_url TEXT NOT NULL,
    timestamp INTEGER NOT NULL DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)),
    network TEXT NOT NULL,
    max_severity TEXT NOT NULL,
    findings TEXT NOT NULL,
    title TEXT,
    thumbnail TEXT,
    size_approx INTEGER
)
"""


class StorageError(Exception):
    pass


class LogStore:
    """Append-only analysis log backed by a sqlite file."""

    def __init__(self, db_path):
        self.db_path = db_path
        self._ready = False

    @contextmanager
    def _connect(self):
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open log database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            if not self._ready:
                conn.execute(SCHEMA)
                self._ready = True
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    def append(self, entry: AnalysisLogEntry) -> AnalysisLogEntry:
        columns = ["original_url", "final_url", "network", "max_severity", "findings", "title", "thumbnail", "size_approx"]
        values = [
            entry.original_url, entry.final_url, entry.network.value, entry.max_severity.value,
            entry.findings, entry.title, entry.thumbnail, entry.size_approx,
        ]
        if entry.timestamp is not None:
            columns.append("timestamp")
            values.append(int(entry.timestamp))

        sql = f"INSERT INTO analysis_logs ({', '.join(columns)}) VALUES ({', '.join('?' * len(columns))})"
        with self._connect() as conn:
            cur = conn.execute(sql, values)
            row = conn.execute("SELECT * FROM analysis_logs WHERE id = ?", (cur.lastrowid,)).fetchone()
        logger.info(f"Logged analysis #{row['id']} for {entry.original_url}")
        return AnalysisLogEntry.from_row(row)

    def list_entries(self) -> List[AnalysisLogEntry]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM analysis_logs ORDER BY timestamp DESC, id DESC").fetchall()
        return [AnalysisLogEntry.from_row(r) for r in rows]
