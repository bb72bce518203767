"""
Pytest configuration and fixtures for dejacmd tests.

This module provides shared fixtures used across unit and integration tests:
settings pointing at throw-away SQLite files, adapters on those files, and a
recording fake DB-API connection for the server dialects.
"""

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from dejacmd.schema import CommandRecord, Dialect, Settings, Shell, StoreConfig, StoreRole, StoreSettings
from dejacmd.store import SQLiteAdapter


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep tests away from the user's settings, passwords and shell."""
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.delenv("DEJACMD_SETTINGS", raising=False)
    monkeypatch.delenv("DEJACMD_LOCAL_PASSWORD", raising=False)
    monkeypatch.delenv("DEJACMD_CENTRAL_PASSWORD", raising=False)
    monkeypatch.setenv("SHELL", "/bin/bash")


def _sqlite_config(path: Path, role: StoreRole = StoreRole.LOCAL) -> StoreConfig:
    url = f"sqlite://{path}"
    return StoreConfig(role=role, dialect=Dialect.SQLITE, url=url, redacted_url=url)


@pytest.fixture
def local_db_path(tmp_path: Path) -> Path:
    return tmp_path / "local.sqlite"


@pytest.fixture
def central_db_path(tmp_path: Path) -> Path:
    return tmp_path / "central.sqlite"


@pytest.fixture
def local_adapter(local_db_path: Path):
    """A SQLite adapter on a fresh file, schema created."""
    adapter = SQLiteAdapter(_sqlite_config(local_db_path))
    adapter.ensure_schema()
    yield adapter
    adapter.close()


@pytest.fixture
def settings_file(tmp_path: Path, local_db_path: Path) -> Path:
    """A settings file with only a local SQLite store."""
    path = tmp_path / "dejacmd.yaml"
    path.write_text(f"local:\n  url: sqlite://{local_db_path}\n")
    return path


@pytest.fixture
def dual_settings(local_db_path: Path, central_db_path: Path) -> Settings:
    """Settings with SQLite files for both stores."""
    return Settings(
        local=StoreSettings(url=f"sqlite://{local_db_path}"),
        central=StoreSettings(url=f"sqlite://{central_db_path}"),
    )


@pytest.fixture
def record() -> CommandRecord:
    return CommandRecord(
        shell=Shell.BASH,
        command="git status",
        command_timestamp=datetime(2024, 3, 1, 13, 5, 2, tzinfo=UTC),
        exit_status=0,
        pid=4242,
    )


def _make_records(count: int, start: int = 1709298302) -> list[CommandRecord]:
    """count records one second apart."""
    return [
        CommandRecord(
            shell=Shell.ZSH,
            command=f"echo {i}",
            command_timestamp=datetime.fromtimestamp(start + i, UTC),
            sequence_no=i + 1,
            source_origin="import:test",
        )
        for i in range(count)
    ]


# =============================================================================
# Fake DB-API connection
# =============================================================================


class FakeCursor:
    """Records executed SQL; returns canned rows."""

    def __init__(self, connection: "FakeConnection", name: str | None = None) -> None:
        self.connection = connection
        self.name = name
        self.description: list[tuple[Any, ...]] | None = None
        self.rowcount = -1
        self.lastrowid = 0
        self._rows: list[tuple[Any, ...]] = []
        self.closed = False

    def execute(self, sql: str, params: Any = None) -> None:
        self.connection.executed.append((sql, params))
        if self.connection.fail_on and self.connection.fail_on in sql:
            raise self.connection.error_class(f"simulated failure on {self.connection.fail_on}")
        self.lastrowid = self.connection.next_id
        self.connection.next_id += 1
        self._rows = list(self.connection.rows)
        if self._rows or sql.lstrip().upper().startswith("SELECT") or "RETURNING" in sql:
            self.description = [(name,) for name in self.connection.columns]
        else:
            self.description = None
        if "RETURNING" in sql:
            self._rows = [(self.lastrowid,)]

    def executemany(self, sql: str, seq: Any) -> None:
        rows = list(seq)
        self.connection.executed.append((sql, rows))
        if self.connection.fail_on and self.connection.fail_on in sql:
            raise self.connection.error_class(f"simulated failure on {self.connection.fail_on}")
        self.rowcount = len(rows)

    def fetchone(self) -> tuple[Any, ...] | None:
        return self._rows.pop(0) if self._rows else None

    def fetchall(self) -> list[tuple[Any, ...]]:
        rows, self._rows = self._rows, []
        return rows

    def __iter__(self):
        while self._rows:
            yield self._rows.pop(0)

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    """
    Minimal DB-API connection that records SQL, commits and rollbacks.

    Attributes:
        executed: (sql, params) for every execute/executemany call
        fail_on: Raise error_class from execute when this substring is in the SQL
        rows/columns: Result returned by every SELECT
    """

    def __init__(self, error_class: type[Exception], fail_on: str | None = None) -> None:
        self.error_class = error_class
        self.fail_on = fail_on
        self.executed: list[tuple[str, Any]] = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = False
        self.next_id = 1
        self.rows: list[tuple[Any, ...]] = []
        self.columns: list[str] = []
        self.cursor_kwargs: list[Any] = []

    def cursor(self, *args: Any, **kwargs: Any) -> FakeCursor:
        self.cursor_kwargs.append((args, kwargs))
        return FakeCursor(self, name=kwargs.get("name"))

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def close(self) -> None:
        self.closed = True

    def sql(self) -> list[str]:
        return [" ".join(sql.split()) for sql, _ in self.executed]


@pytest.fixture
def sqlite_config():
    """Factory: StoreConfig for a SQLite file."""
    return _sqlite_config


@pytest.fixture
def make_records():
    """Factory: count zsh records one second apart."""
    return _make_records


@pytest.fixture
def fake_connection():
    """Factory: FakeConnection(error_class, fail_on=None)."""
    return FakeConnection
