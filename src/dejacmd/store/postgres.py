"""
PostgreSQL adapter (psycopg 3).

Timestamps are TIMESTAMP WITHOUT TIME ZONE holding UTC; values are bound as
naive UTC datetimes.
"""

import itertools
from typing import Any

import psycopg

from dejacmd.schema import Dialect
from dejacmd.store.base import HISTORY_TABLE, INSERT_SQL, TIMESTAMP_INDEX, BackendAdapter

SCHEMA_SQL = [
    f"""
    CREATE TABLE IF NOT EXISTS {HISTORY_TABLE} (
        id BIGINT GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY,
        shell VARCHAR(16) NOT NULL DEFAULT 'unknown',
        command TEXT NOT NULL,
        command_timestamp TIMESTAMP,
        exit_status INTEGER,
        pid BIGINT,
        sequence_no BIGINT,
        source_origin TEXT NOT NULL DEFAULT 'live',
        cwd TEXT,
        user_name TEXT,
        hostname TEXT,
        inserted_at TIMESTAMP NOT NULL DEFAULT (now() AT TIME ZONE 'utc')
    )
    """,
    f"CREATE INDEX IF NOT EXISTS {TIMESTAMP_INDEX} ON {HISTORY_TABLE} (command_timestamp)",
]

COLUMNS_SQL = """
    SELECT column_name, data_type, is_nullable, column_default
    FROM information_schema.columns
    WHERE table_schema = current_schema() AND table_name = %s
    ORDER BY ordinal_position
"""

INDEXES_SQL = """
    SELECT indexdef FROM pg_indexes
    WHERE schemaname = current_schema() AND tablename = %s
    ORDER BY indexname
"""

_cursor_names = itertools.count(1)


def libpq_url(url: str) -> str:
    """Drop a +driver suffix from the scheme; libpq only knows postgres(ql)://."""
    scheme, sep, rest = url.partition("://")
    return f"postgresql://{rest}" if sep and "+" in scheme else url


class PostgresAdapter(BackendAdapter):
    """History table in a PostgreSQL database."""

    dialect = Dialect.POSTGRES
    placeholder = "%s"

    def _open(self) -> Any:
        return psycopg.connect(libpq_url(self.config.url), connect_timeout=self.config.connect_timeout)

    def _driver_error(self) -> type[Exception]:
        return psycopg.Error

    def _schema_statements(self) -> list[str]:
        return SCHEMA_SQL

    def _truncate_sql(self) -> str:
        return f"TRUNCATE TABLE {HISTORY_TABLE}"

    def _insert_one(self, cursor: Any, params: Any) -> int:
        cursor.execute(self._sql(INSERT_SQL) + " RETURNING id", params)
        return int(cursor.fetchone()[0])

    def _stream_cursor(self) -> Any:
        # named cursors are server-side; rows arrive in batches of itersize
        return self.connection.cursor(name=f"dejacmd_export_{next(_cursor_names)}")

    def _order_asc_nulls_first(self, column: str) -> str:
        return f"{column} ASC NULLS FIRST"

    def _order_desc_nulls_last(self, column: str) -> str:
        return f"{column} DESC NULLS LAST"

    def _substring_filter(self, text: str, ignore_case: bool) -> tuple[str, Any]:
        clause, param = super()._substring_filter(text, False)
        if ignore_case:
            clause = clause.replace(" LIKE ", " ILIKE ")
        return clause, param

    def _regex_filter(self, pattern: str, ignore_case: bool) -> tuple[str, Any]:
        return ("command ~* ?" if ignore_case else "command ~ ?"), pattern

    def describe_schema(self) -> str:
        self.ensure_schema()
        columns = self.query(COLUMNS_SQL, (HISTORY_TABLE,)).fetchall()
        lines = []
        for name, data_type, nullable, default in columns:
            line = f"    {name} {data_type}"
            if nullable == "NO":
                line += " NOT NULL"
            if default is not None:
                line += f" DEFAULT {default}"
            lines.append(line)
        ddl = f"CREATE TABLE {HISTORY_TABLE} (\n" + ",\n".join(lines) + "\n);"
        indexes = self.query(INDEXES_SQL, (HISTORY_TABLE,)).fetchall()
        return "\n".join([ddl, *(f"{row[0]};" for row in indexes)])
