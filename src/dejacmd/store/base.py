"""
Backend adapter interface.

Every store, local or central, is reached through a BackendAdapter. The
three dialects (SQLite, PostgreSQL, MySQL/MariaDB) share one logical
history table; all SQL that differs between them lives in the subclasses:

    - placeholder style (? vs %s)
    - generated key syntax and how the new id is returned
    - timestamp column types and how timestamps are bound
    - case-(in)sensitive substring and regex matching
    - NULL ordering, truncation and schema inspection

Callers only see dialect SQL through query(), which runs user-supplied SQL
verbatim.

Design Principles:
    - Append-only: rows are inserted, never updated
    - Atomic batches: insert_batch() is one transaction, all rows or none
    - Driver errors never escape; they become Backend*Error with context
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from dejacmd.errors import (
    BackendConnectionError,
    BackendReadError,
    BackendWriteError,
    TruncateError,
)
from dejacmd.schema import CommandRecord, Dialect, HistoryRow, Shell, StoreConfig

if TYPE_CHECKING:
    from dejacmd.search import SearchCriteria

logger = logging.getLogger(__name__)

HISTORY_TABLE = "history"
TIMESTAMP_INDEX = "idx_history_timestamp"
LIKE_ESCAPE = "!"

RECORD_COLUMNS = (
    "shell",
    "command",
    "command_timestamp",
    "exit_status",
    "pid",
    "sequence_no",
    "source_origin",
    "cwd",
    "user_name",
    "hostname",
)
ROW_COLUMNS = ("id", *RECORD_COLUMNS, "inserted_at")

INSERT_SQL = (
    f"INSERT INTO {HISTORY_TABLE} ({', '.join(RECORD_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in RECORD_COLUMNS)})"
)


def escape_like(text: str) -> str:
    """Escape LIKE wildcards using the '!' escape character."""
    return (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


@dataclass
class RowStream:
    """
    Result of a query: column names plus a lazy row iterator.

    Attributes:
        columns: Column names from the cursor description (empty for statements)
        rows: Iterator over result tuples
        rowcount: Rows affected, for statements that return no rows
    """

    columns: list[str]
    rows: Iterator[tuple[Any, ...]] = field(default_factory=lambda: iter(()))
    rowcount: int = -1

    def __iter__(self) -> Iterator[tuple[Any, ...]]:
        return self.rows

    def fetchall(self) -> list[tuple[Any, ...]]:
        return list(self.rows)


@dataclass(frozen=True)
class SearchHit:
    """One search result: the command and when it ran (last run for --unique)."""

    command: str
    command_timestamp: datetime | None = None


class BackendAdapter(ABC):
    """
    Abstract base class for the dialect adapters.

    Subclasses must implement:
    - dialect: The Dialect they speak
    - _open(): Return a DB-API connection
    - _driver_error(): The driver's base exception class
    - _schema_statements(): DDL for the history table and its index
    - _truncate_sql(): Statement that clears the history table
    - describe_schema(): The live table definition as text

    Usage:
        with create_adapter(config) as adapter:
            adapter.ensure_schema()
            adapter.insert(record)

    Attributes:
        config: Resolved connection descriptor
    """

    dialect: Dialect
    placeholder = "?"

    def __init__(
        self,
        config: StoreConfig,
        connect: Callable[[], Any] | None = None,
    ) -> None:
        """
        Initialize the adapter without connecting.

        Args:
            config: Resolved connection descriptor for this store
            connect: Optional factory returning a DB-API connection, used in
                     place of the driver's own connect call
        """
        self.config = config
        self._connect_factory = connect
        self._conn: Any = None

    # =========================================================================
    # Dialect hooks
    # =========================================================================

    @abstractmethod
    def _open(self) -> Any:
        """Open a driver connection for self.config."""
        ...

    @abstractmethod
    def _driver_error(self) -> type[Exception]:
        """Base exception class raised by the driver."""
        ...

    @abstractmethod
    def _schema_statements(self) -> list[str]:
        """DDL statements creating the history table and index if absent."""
        ...

    @abstractmethod
    def _truncate_sql(self) -> str:
        ...

    @abstractmethod
    def describe_schema(self) -> str:
        """Return the history table definition as reported by the backend."""
        ...

    def _sql(self, sql: str) -> str:
        """Rewrite internal '?' placeholders into the driver's paramstyle."""
        if self.placeholder == "?":
            return sql
        return sql.replace("?", self.placeholder)

    def _bind_timestamp(self, value: datetime | None) -> Any:
        """Value to bind for a timestamp column (naive UTC by default)."""
        if value is None:
            return None
        return value.astimezone(UTC).replace(tzinfo=None)

    def _read_timestamp(self, value: Any) -> datetime | None:
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=UTC)
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            logger.debug("Unparseable timestamp in %s store: %r", self.role, value)
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)

    def _order_asc_nulls_first(self, column: str) -> str:
        return f"{column} ASC"

    def _order_desc_nulls_last(self, column: str) -> str:
        return f"{column} DESC"

    def _substring_filter(self, text: str, ignore_case: bool) -> tuple[str, Any]:
        """WHERE clause and parameter for a substring match on command."""
        if ignore_case:
            return f"LOWER(command) LIKE LOWER(?) ESCAPE '{LIKE_ESCAPE}'", f"%{escape_like(text)}%"
        return f"command LIKE ? ESCAPE '{LIKE_ESCAPE}'", f"%{escape_like(text)}%"

    @abstractmethod
    def _regex_filter(self, pattern: str, ignore_case: bool) -> tuple[str, Any]:
        """WHERE clause and parameter for a regular expression match on command."""
        ...

    def _insert_one(self, cursor: Any, params: Sequence[Any]) -> int:
        """Execute the insert for one row and return the generated id."""
        cursor.execute(self._sql(INSERT_SQL), params)
        return int(cursor.lastrowid)

    def _stream_cursor(self) -> Any:
        """Cursor used for large reads; server-side where the driver supports it."""
        return self.connection.cursor()

    # =========================================================================
    # Connection
    # =========================================================================

    @property
    def role(self) -> str:
        return self.config.role.value

    @property
    def connection(self) -> Any:
        """The open DB-API connection, connecting on first use."""
        if self._conn is None:
            self.connect()
        return self._conn

    def connect(self) -> None:
        """
        Open the connection.

        Raises:
            BackendConnectionError: If the driver cannot connect
        """
        if self._conn is not None:
            return
        try:
            self._conn = self._connect_factory() if self._connect_factory else self._open()
        except BackendConnectionError:
            raise
        except Exception as e:
            raise BackendConnectionError(
                dialect=self.dialect.value,
                role=self.role,
                url=self.config.redacted_url,
                underlying_error=str(e),
            ) from e
        logger.debug("Connected to %s %s store %s", self.role, self.dialect.value, self.config.redacted_url)

    def close(self) -> None:
        """Close the connection."""
        if self._conn is not None:
            try:
                self._conn.close()
            except self._driver_error() as e:
                logger.debug("Error closing %s store: %s", self.role, e)
            self._conn = None

    def __enter__(self) -> "BackendAdapter":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Yield a cursor; commit on success, roll back on any exception."""
        conn = self.connection
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            try:
                conn.rollback()
            except self._driver_error() as e:
                logger.debug("Rollback failed on %s store: %s", self.role, e)
            raise
        finally:
            cursor.close()

    def _write_error(self, operation: str, e: Exception) -> BackendWriteError:
        return BackendWriteError(
            dialect=self.dialect.value,
            role=self.role,
            operation=operation,
            underlying_error=str(e),
        )

    def _read_error(self, operation: str, e: Exception) -> BackendReadError:
        return BackendReadError(
            dialect=self.dialect.value,
            role=self.role,
            operation=operation,
            underlying_error=str(e),
        )

    # =========================================================================
    # Write operations
    # =========================================================================

    def ensure_schema(self) -> None:
        """Create the history table and timestamp index if they do not exist."""
        try:
            with self.transaction() as cursor:
                for statement in self._schema_statements():
                    cursor.execute(statement)
        except self._driver_error() as e:
            raise self._write_error("ensure_schema", e) from e

    def _params(self, record: CommandRecord) -> tuple[Any, ...]:
        return (
            record.shell.value,
            record.command,
            self._bind_timestamp(record.command_timestamp),
            record.exit_status,
            record.pid,
            record.sequence_no,
            record.source_origin,
            record.cwd,
            record.user_name,
            record.hostname,
        )

    def insert(self, record: CommandRecord) -> int:
        """
        Append one record.

        Returns:
            The generated row id

        Raises:
            BackendWriteError: If the insert fails
        """
        try:
            with self.transaction() as cursor:
                return self._insert_one(cursor, self._params(record))
        except self._driver_error() as e:
            raise self._write_error("insert", e) from e

    def insert_batch(self, records: Iterable[CommandRecord]) -> int:
        """
        Append a batch of records in a single transaction.

        Either every record lands or none does.

        Returns:
            Number of records inserted

        Raises:
            BackendWriteError: If any insert in the batch fails
        """
        rows = [self._params(record) for record in records]
        if not rows:
            return 0
        try:
            with self.transaction() as cursor:
                cursor.executemany(self._sql(INSERT_SQL), rows)
        except self._driver_error() as e:
            raise self._write_error("insert_batch", e) from e
        return len(rows)

    def truncate(self) -> None:
        """
        Delete every row from the history table.

        Raises:
            TruncateError: If the table cannot be cleared
        """
        try:
            with self.transaction() as cursor:
                cursor.execute(self._truncate_sql())
        except self._driver_error() as e:
            raise TruncateError(
                dialect=self.dialect.value,
                role=self.role,
                underlying_error=str(e),
            ) from e

    # =========================================================================
    # Read operations
    # =========================================================================

    def _iter_cursor(self, cursor: Any, operation: str) -> Iterator[tuple[Any, ...]]:
        try:
            for row in cursor:
                yield tuple(row)
        except self._driver_error() as e:
            raise self._read_error(operation, e) from e
        finally:
            cursor.close()

    def query(self, sql: str, params: Sequence[Any] | None = None) -> RowStream:
        """
        Execute SQL verbatim and stream its rows.

        Statements that return no rows are committed and reported through
        rowcount.

        Raises:
            BackendReadError: If the statement or row fetch fails
        """
        cursor = self.connection.cursor()
        try:
            if params is None:
                cursor.execute(sql)
            else:
                cursor.execute(sql, params)
            if cursor.description is None:
                rowcount = cursor.rowcount
                self.connection.commit()
                cursor.close()
                return RowStream(columns=[], rowcount=rowcount)
        except self._driver_error() as e:
            cursor.close()
            try:
                self.connection.rollback()
            except self._driver_error():
                pass
            raise self._read_error("query", e) from e

        columns = [d[0] for d in cursor.description]
        return RowStream(columns=columns, rows=self._iter_cursor(cursor, "query"))

    def _to_row(self, values: Sequence[Any]) -> HistoryRow:
        data = dict(zip(ROW_COLUMNS, values))
        return HistoryRow(
            id=data["id"],
            shell=Shell.from_name(data["shell"]),
            command=data["command"],
            command_timestamp=self._read_timestamp(data["command_timestamp"]),
            exit_status=data["exit_status"],
            pid=data["pid"],
            sequence_no=data["sequence_no"],
            source_origin=data["source_origin"] or "",
            cwd=data["cwd"],
            user_name=data["user_name"],
            hostname=data["hostname"],
            inserted_at=self._read_timestamp(data["inserted_at"]),
        )

    def iter_records(self) -> Iterator[HistoryRow]:
        """
        Stream every row, oldest first.

        Rows without a timestamp come first, ties keep insertion order. Rows
        that do not form a valid record (written through raw SQL) are skipped
        with a warning.

        Raises:
            BackendReadError: If the read fails
        """
        sql = (
            f"SELECT {', '.join(ROW_COLUMNS)} FROM {HISTORY_TABLE} "
            f"ORDER BY {self._order_asc_nulls_first('command_timestamp')}, id ASC"
        )
        cursor = self._stream_cursor()
        try:
            cursor.execute(sql)
        except self._driver_error() as e:
            cursor.close()
            raise self._read_error("iter_records", e) from e
        for values in self._iter_cursor(cursor, "iter_records"):
            if not values[ROW_COLUMNS.index("command")]:
                continue
            try:
                row = self._to_row(values)
            except ValidationError as e:
                logger.warning(
                    "Skipping invalid row %s in %s store: %s",
                    values[ROW_COLUMNS.index("id")],
                    self.role,
                    e.errors()[0]["msg"],
                )
                continue
            yield row

    def count(self) -> int:
        """Number of rows in the history table."""
        stream = self.query(f"SELECT COUNT(*) FROM {HISTORY_TABLE}")
        return int(stream.fetchall()[0][0])

    def search(self, criteria: "SearchCriteria") -> list[SearchHit]:
        """
        Find commands matching the criteria, newest first.

        With criteria.unique, duplicate commands collapse into one hit
        carrying the most recent timestamp.

        Raises:
            BackendReadError: If the query fails
        """
        where: list[str] = []
        params: list[Any] = []

        if criteria.text:
            if criteria.regex:
                clause, param = self._regex_filter(criteria.text, criteria.ignore_case)
            else:
                clause, param = self._substring_filter(criteria.text, criteria.ignore_case)
            where.append(clause)
            params.append(param)
        if criteria.start is not None:
            where.append("command_timestamp >= ?")
            params.append(self._bind_timestamp(criteria.start))
        if criteria.end is not None:
            where.append("command_timestamp <= ?")
            params.append(self._bind_timestamp(criteria.end))

        where_sql = " AND ".join(where) if where else "1=1"
        if criteria.unique:
            sql = (
                f"SELECT command, MAX(command_timestamp) AS last_used FROM {HISTORY_TABLE} "
                f"WHERE {where_sql} GROUP BY command "
                f"ORDER BY {self._order_desc_nulls_last('last_used')}"
            )
        else:
            sql = (
                f"SELECT command, command_timestamp FROM {HISTORY_TABLE} "
                f"WHERE {where_sql} "
                f"ORDER BY {self._order_desc_nulls_last('command_timestamp')}, id DESC"
            )
        if criteria.limit:
            sql += f" LIMIT {int(criteria.limit)}"

        rows = self.query(self._sql(sql), params).fetchall()
        return [SearchHit(command=row[0], command_timestamp=self._read_timestamp(row[1])) for row in rows]

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {self.role} {self.config.redacted_url}>"
