"""
History file importer.

Turns a shell history file, or a legacy single-table SQLite history database,
into a lazy stream of CommandRecords.

Text files are classified line by line because one file can mix formats:

    : 1709298302:0;git status        zsh extended history
    #1709298302                      bash timestamp comment, applies to the
    git status                       ... next command line
    git status                       bash plain history

Classification is a pure function of the line. The only carried state is
the pending timestamp comment waiting for its command line. Whatever line
follows a timestamp comment is its command, even one that looks like
another timestamp comment or a zsh entry.
Lines that match nothing are skipped and counted, never fatal.

A physical line ending in an odd number of backslashes continues onto the
next line; the joined command keeps an embedded newline in place of the
backslash. This is how zsh writes multi-line commands.
"""

import logging
import re
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import IO, Iterator

from dejacmd.errors import UnreadableSourceError, UnrecognizedFormatError
from dejacmd.parser import parse_epoch
from dejacmd.schema import CommandRecord, Shell, import_origin, legacy_origin

logger = logging.getLogger(__name__)

SQLITE_MAGIC = b"SQLite format 3\x00"
SAMPLE_BYTES = 64 * 1024

ZSH_EXTENDED_RE = re.compile(r"^:\s*(?P<epoch>\d+):(?P<duration>\d+);(?P<command>.*)$", re.DOTALL)
BASH_TIMESTAMP_RE = re.compile(r"^#(?P<epoch>\d+)\s*$")

# "recent" logger schema: commands(command_dt, command, pid, return_val, pwd, session, json_data)
LEGACY_TABLE = "commands"


class LineKind(str, Enum):
    """Classification of one logical history line."""

    BLANK = "blank"
    ZSH_EXTENDED = "zsh_extended"
    TIMESTAMP_COMMENT = "timestamp_comment"
    BASH_PLAIN = "bash_plain"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class ClassifiedLine:
    """
    A logical line and what it was recognized as.

    Attributes:
        kind: The line's classification
        lineno: 1-based number of the first physical line
        command: Command text for zsh and bash plain lines
        timestamp: Timestamp carried by zsh lines and timestamp comments
        text: The logical line as read
    """

    kind: LineKind
    lineno: int
    command: str | None = None
    timestamp: datetime | None = None
    text: str = ""


@dataclass
class ImportSummary:
    """Counters for one pass over a history source."""

    records: int = 0
    skipped: int = 0


def classify_line(text: str, lineno: int = 0) -> ClassifiedLine:
    """
    Classify one logical line. Precedence: zsh extended, timestamp comment, bash plain.

    Args:
        text: The line without its trailing newline
        lineno: Line number, carried through for ordering and diagnostics
    """
    if not text.strip():
        return ClassifiedLine(LineKind.BLANK, lineno, text=text)

    match = ZSH_EXTENDED_RE.match(text)
    if match:
        command = match.group("command")
        timestamp = parse_epoch(match.group("epoch"))
        # `: 1768106083:0;#1768105585` is a stray bash timestamp, not a command
        if timestamp is None or not command.strip() or BASH_TIMESTAMP_RE.match(command):
            return ClassifiedLine(LineKind.UNRECOGNIZED, lineno, text=text)
        return ClassifiedLine(LineKind.ZSH_EXTENDED, lineno, command, timestamp, text)

    match = BASH_TIMESTAMP_RE.match(text)
    if match:
        timestamp = parse_epoch(match.group("epoch"))
        if timestamp is None:
            return ClassifiedLine(LineKind.UNRECOGNIZED, lineno, text=text)
        return ClassifiedLine(LineKind.TIMESTAMP_COMMENT, lineno, timestamp=timestamp, text=text)

    if text.startswith("#"):
        return ClassifiedLine(LineKind.UNRECOGNIZED, lineno, text=text)

    return ClassifiedLine(LineKind.BASH_PLAIN, lineno, command=text, text=text)


def _continues(line: str) -> bool:
    """True if the line ends in an odd number of backslashes."""
    stripped = line.rstrip("\\")
    return (len(line) - len(stripped)) % 2 == 1


def logical_lines(stream: IO[str]) -> Iterator[tuple[int, str]]:
    """
    Yield (first line number, text) with backslash continuations joined.

    The continuing backslash is replaced by an embedded newline. Only "\n"
    ends a line (one "\r" before it is dropped); a lone "\r" is command text.
    Open the stream with newline="\n" so it reaches this function untranslated.
    """
    buffer: list[str] = []
    start = 0
    for lineno, raw in enumerate(stream, start=1):
        line = raw[:-1] if raw.endswith("\n") else raw
        if line.endswith("\r"):
            line = line[:-1]
        if not buffer:
            start = lineno
        if _continues(line):
            buffer.append(line[:-1])
            continue
        buffer.append(line)
        yield start, "\n".join(buffer)
        buffer = []
    if buffer:
        yield start, "\n".join(buffer)


# =============================================================================
# Sources
# =============================================================================


class HistorySource(ABC):
    """
    A detected import source.

    records() returns a fresh generator on every call; summary describes
    the most recent pass.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.summary = ImportSummary()

    @property
    @abstractmethod
    def format_name(self) -> str:
        """Short name of the detected format."""
        ...

    @abstractmethod
    def records(self) -> Iterator[CommandRecord]:
        """Stream the source's records in source order."""
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {self.path}>"


class ShellHistoryFile(HistorySource):
    """A bash, zsh or mixed text history file."""

    format_name = "shell history"

    def _record(self, shell: Shell, command: str, timestamp: datetime | None, lineno: int) -> CommandRecord:
        return CommandRecord(
            shell=shell,
            command=command,
            command_timestamp=timestamp,
            sequence_no=lineno,
            source_origin=import_origin(self.path),
        )

    def _skip(self, line: ClassifiedLine, why: str) -> None:
        self.summary.skipped += 1
        logger.debug("%s:%d: skipped %s: %r", self.path, line.lineno, why, line.text[:80])

    def records(self) -> Iterator[CommandRecord]:
        self.summary = ImportSummary()
        pending: ClassifiedLine | None = None
        try:
            with self.path.open(encoding="utf-8", errors="replace", newline="\n") as stream:
                for lineno, text in logical_lines(stream):
                    line = classify_line(text, lineno)

                    if line.kind == LineKind.BLANK:
                        continue

                    if pending is not None:
                        # the next non-blank line is the command, whatever it looks like
                        self.summary.records += 1
                        yield self._record(Shell.BASH, line.text, pending.timestamp, line.lineno)
                        pending = None
                        continue

                    if line.kind == LineKind.TIMESTAMP_COMMENT:
                        pending = line
                    elif line.kind == LineKind.ZSH_EXTENDED:
                        self.summary.records += 1
                        yield self._record(Shell.ZSH, line.command, line.timestamp, line.lineno)
                    elif line.kind == LineKind.BASH_PLAIN:
                        self.summary.records += 1
                        yield self._record(Shell.BASH, line.command, None, line.lineno)
                    else:
                        self._skip(line, "unrecognized line")
        except OSError as e:
            raise UnreadableSourceError(path=str(self.path), underlying_error=str(e)) from e

        if pending is not None:
            self._skip(pending, "timestamp comment at end of file")


class LegacyDatabase(HistorySource):
    """A single-table SQLite database written by the 'recent' shell logger."""

    format_name = "legacy SQLite history"

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(f"{self.path.resolve().as_uri()}?mode=ro", uri=True)

    def columns(self) -> list[str]:
        """
        Column names of the legacy commands table.

        Raises:
            UnrecognizedFormatError: If the database has no commands table
        """
        try:
            conn = self._connect()
            try:
                rows = conn.execute(f"PRAGMA table_info({LEGACY_TABLE})").fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise UnrecognizedFormatError(path=str(self.path), reason=f"unreadable SQLite database: {e}") from e
        columns = [row[1] for row in rows]
        if "command" not in columns:
            raise UnrecognizedFormatError(
                path=str(self.path),
                reason=f"SQLite database has no '{LEGACY_TABLE}' table with a command column",
            )
        return columns

    @staticmethod
    def _timestamp(value: object) -> datetime | None:
        if value is None:
            return None
        if isinstance(value, int | float):
            return parse_epoch(int(value))
        try:
            parsed = datetime.fromisoformat(str(value).strip())
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)

    def _integer(self, value: object, column: str, seq: int) -> int | None:
        if value is None or (isinstance(value, int) and not isinstance(value, bool)):
            return value
        text = str(value).strip()
        if text.lstrip("-").isdigit():
            return int(text)
        logger.debug("%s: row %d: ignoring non-integer %s %r", self.path, seq, column, value)
        return None

    def records(self) -> Iterator[CommandRecord]:
        self.summary = ImportSummary()
        available = self.columns()
        wanted = [c for c in ("command_dt", "command", "return_val", "pid") if c in available]
        sql = f"SELECT {', '.join(wanted)} FROM {LEGACY_TABLE} ORDER BY rowid"
        origin = legacy_origin(self.path)

        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise UnreadableSourceError(path=str(self.path), underlying_error=str(e)) from e
        try:
            for seq, row in enumerate(conn.execute(sql), start=1):
                values = dict(zip(wanted, row))
                command = values.get("command")
                if not isinstance(command, str) or not command.strip():
                    self.summary.skipped += 1
                    logger.debug("%s: row %d skipped: empty command", self.path, seq)
                    continue
                self.summary.records += 1
                yield CommandRecord(
                    shell=Shell.BASH,
                    command=command,
                    command_timestamp=self._timestamp(values.get("command_dt")),
                    exit_status=self._integer(values.get("return_val"), "return_val", seq),
                    pid=self._integer(values.get("pid"), "pid", seq),
                    sequence_no=seq,
                    source_origin=origin,
                )
        except sqlite3.Error as e:
            raise UnreadableSourceError(path=str(self.path), underlying_error=str(e)) from e
        finally:
            conn.close()


# =============================================================================
# Detection
# =============================================================================


def open_history_source(path: str | Path) -> HistorySource:
    """
    Detect the format of an import file.

    Detection happens here, before anything is written, so that format
    problems abort an import up front.

    Raises:
        UnreadableSourceError: If the file is missing or unreadable
        UnrecognizedFormatError: If the content is empty, binary, or has no history lines
    """
    path = Path(path).expanduser()
    try:
        with path.open("rb") as f:
            sample = f.read(SAMPLE_BYTES)
    except OSError as e:
        raise UnreadableSourceError(path=str(path), underlying_error=e.strerror or str(e)) from e

    if sample.startswith(SQLITE_MAGIC):
        source = LegacyDatabase(path)
        source.columns()
        return source

    if not sample.strip():
        raise UnrecognizedFormatError(path=str(path), reason="file is empty")
    if b"\x00" in sample:
        raise UnrecognizedFormatError(path=str(path), reason="binary content")

    text = sample.decode("utf-8", errors="replace")
    lines = text.splitlines()
    if len(sample) == SAMPLE_BYTES and len(lines) > 1:
        lines = lines[:-1]  # possibly cut mid-line
    recognized = (
        LineKind.ZSH_EXTENDED,
        LineKind.TIMESTAMP_COMMENT,
        LineKind.BASH_PLAIN,
    )
    if not any(classify_line(line).kind in recognized for line in lines):
        raise UnrecognizedFormatError(path=str(path), reason="no bash or zsh history lines found")

    return ShellHistoryFile(path)
