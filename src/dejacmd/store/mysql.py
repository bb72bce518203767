"""
MySQL / MariaDB adapter (PyMySQL).

The session time zone is pinned to UTC so that CURRENT_TIMESTAMP defaults
agree with the naive UTC datetimes bound for command_timestamp. MySQL has no
CREATE INDEX IF NOT EXISTS, so the timestamp index is declared inline.
"""

from typing import Any
from urllib.parse import unquote, urlsplit

import pymysql
import pymysql.cursors

from dejacmd.schema import Dialect
from dejacmd.store.base import HISTORY_TABLE, TIMESTAMP_INDEX, BackendAdapter

DEFAULT_PORT = 3306

SCHEMA_SQL = [
    f"""
    CREATE TABLE IF NOT EXISTS {HISTORY_TABLE} (
        id BIGINT NOT NULL AUTO_INCREMENT PRIMARY KEY,
        shell VARCHAR(16) NOT NULL DEFAULT 'unknown',
        command TEXT NOT NULL,
        command_timestamp DATETIME NULL,
        exit_status INT NULL,
        pid BIGINT NULL,
        sequence_no BIGINT NULL,
        source_origin VARCHAR(1024) NOT NULL DEFAULT 'live',
        cwd TEXT,
        user_name VARCHAR(255),
        hostname VARCHAR(255),
        inserted_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
        INDEX {TIMESTAMP_INDEX} (command_timestamp)
    ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
    """,
]


def connect_kwargs(url: str, connect_timeout: int) -> dict[str, Any]:
    """Translate a mysql:// URL into pymysql.connect() keyword arguments."""
    parts = urlsplit(url)
    kwargs: dict[str, Any] = {
        "host": parts.hostname or "localhost",
        "port": parts.port or DEFAULT_PORT,
        "charset": "utf8mb4",
        "connect_timeout": connect_timeout,
        "init_command": "SET time_zone = '+00:00'",
    }
    if parts.username:
        kwargs["user"] = unquote(parts.username)
    if parts.password:
        kwargs["password"] = unquote(parts.password)
    database = parts.path.lstrip("/")
    if database:
        kwargs["database"] = unquote(database)
    return kwargs


class MySQLAdapter(BackendAdapter):
    """History table in a MySQL or MariaDB database."""

    dialect = Dialect.MYSQL
    placeholder = "%s"

    def _open(self) -> Any:
        return pymysql.connect(**connect_kwargs(self.config.url, self.config.connect_timeout))

    def _driver_error(self) -> type[Exception]:
        return pymysql.Error

    def _schema_statements(self) -> list[str]:
        return SCHEMA_SQL

    def _truncate_sql(self) -> str:
        return f"TRUNCATE TABLE {HISTORY_TABLE}"

    def _stream_cursor(self) -> Any:
        return self.connection.cursor(pymysql.cursors.SSCursor)

    def _substring_filter(self, text: str, ignore_case: bool) -> tuple[str, Any]:
        clause, param = super()._substring_filter(text, ignore_case)
        if not ignore_case:
            # the default utf8mb4 collations compare case-insensitively
            clause = clause.replace("command LIKE", "command COLLATE utf8mb4_bin LIKE")
        return clause, param

    def _regex_filter(self, pattern: str, ignore_case: bool) -> tuple[str, Any]:
        if ignore_case:
            return "command REGEXP ?", f"(?i){pattern}"
        return "command COLLATE utf8mb4_bin REGEXP ?", pattern

    def describe_schema(self) -> str:
        self.ensure_schema()
        row = self.query(f"SHOW CREATE TABLE {HISTORY_TABLE}").fetchall()[0]
        return f"{row[1]};"
