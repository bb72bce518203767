"""
SQLite adapter, the default local store.

Timestamps are stored as TEXT in "YYYY-MM-DD HH:MM:SS" UTC, the same form
SQLite's CURRENT_TIMESTAMP produces, so text comparison orders them.
"""

import re
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from dejacmd.schema import Dialect
from dejacmd.store.base import HISTORY_TABLE, TIMESTAMP_INDEX, BackendAdapter

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

SCHEMA_SQL = [
    f"""
    CREATE TABLE IF NOT EXISTS {HISTORY_TABLE} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        shell TEXT NOT NULL DEFAULT 'unknown',
        command TEXT NOT NULL,
        command_timestamp TEXT,
        exit_status INTEGER,
        pid INTEGER,
        sequence_no INTEGER,
        source_origin TEXT NOT NULL DEFAULT 'live',
        cwd TEXT,
        user_name TEXT,
        hostname TEXT,
        inserted_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    f"CREATE INDEX IF NOT EXISTS {TIMESTAMP_INDEX} ON {HISTORY_TABLE} (command_timestamp)",
]


def sqlite_path(url: str) -> str:
    """
    Filesystem path (or :memory:) named by an sqlite:// URL.

    Both sqlite:///abs/path and sqlite://relative/path are accepted.
    """
    rest = url.split("://", 1)[1] if "://" in url else url
    rest = rest.split("?", 1)[0]
    if rest.startswith("//"):
        rest = rest[1:]
    return str(Path(rest).expanduser()) if rest != ":memory:" else rest


def _regexp(pattern: str, value: Any) -> bool:
    if value is None:
        return False
    return re.search(pattern, str(value)) is not None


class SQLiteAdapter(BackendAdapter):
    """History table in a local SQLite database file."""

    dialect = Dialect.SQLITE

    def _open(self) -> sqlite3.Connection:
        path = sqlite_path(self.config.url)
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(path, timeout=self.config.connect_timeout)
        conn.create_function("REGEXP", 2, _regexp, deterministic=True)
        return conn

    def _driver_error(self) -> type[Exception]:
        return sqlite3.Error

    def _schema_statements(self) -> list[str]:
        return SCHEMA_SQL

    def _truncate_sql(self) -> str:
        return f"DELETE FROM {HISTORY_TABLE}"

    def _bind_timestamp(self, value: datetime | None) -> Any:
        if value is None:
            return None
        return value.astimezone(UTC).strftime(TIMESTAMP_FORMAT)

    def _substring_filter(self, text: str, ignore_case: bool) -> tuple[str, Any]:
        # LIKE is case-insensitive for ASCII in SQLite
        if ignore_case:
            return "instr(lower(command), lower(?)) > 0", text
        return "instr(command, ?) > 0", text

    def _regex_filter(self, pattern: str, ignore_case: bool) -> tuple[str, Any]:
        return "command REGEXP ?", f"(?i){pattern}" if ignore_case else pattern

    def describe_schema(self) -> str:
        self.ensure_schema()
        stream = self.query(
            "SELECT sql FROM sqlite_master WHERE tbl_name = ? AND sql IS NOT NULL ORDER BY type DESC, name",
            (HISTORY_TABLE,),
        )
        return ";\n".join(row[0].strip() for row in stream.fetchall()) + ";"
