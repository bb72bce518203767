"""
Shell line parser for live logging.

A prompt hook passes one line of `history`/`fc` output per command. The
expected shapes are:

    bash (HISTTIMEFORMAT="%F %T "):   "  42  2024-03-01 13:05:02 git status"
    zsh  (fc -t / extended history):  ": 1709298302:0;git status"
    PowerShell:                       "42  2024-03-01 13:05:02 git status"

The index field is optional. When no timestamp form matches, everything
after the index is the command and the timestamp is left absent; only a
line with nothing after the index is rejected.
"""

import getpass
import os
import re
import socket
from datetime import UTC, datetime

from dejacmd.errors import MalformedLiveEntryError
from dejacmd.schema import ORIGIN_LIVE, CommandRecord, Shell

# `history` marks edited entries with a '*' after the index
_INDEX = r"(?:(?P<index>\d+)\*?\s+)?"

BASH_LIVE_RE = re.compile(
    r"^\s*" + _INDEX
    + r"(?P<ts>\d{4}-\d{2}-\d{2}[ \t]+\d{2}:\d{2}:\d{2})\s(?P<command>.*)$",
    re.DOTALL,
)
ZSH_LIVE_RE = re.compile(
    r"^\s*" + _INDEX + r":\s*(?P<epoch>\d+):(?P<duration>\d+);(?P<command>.*)$",
    re.DOTALL,
)
INDEX_RE = re.compile(r"^\s*(?P<index>\d+)\*?(?:\s+(?P<rest>.*))?$", re.DOTALL)

HISTTIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_histtime(value: str) -> datetime | None:
    """Parse a `YYYY-MM-DD HH:MM:SS` stamp as UTC, None if it is not a real date."""
    try:
        parsed = datetime.strptime(" ".join(value.split()), HISTTIME_FORMAT)
    except ValueError:
        return None
    return parsed.replace(tzinfo=UTC)


def parse_epoch(value: str | int) -> datetime | None:
    """Epoch seconds to an aware UTC datetime, None when out of range."""
    try:
        return datetime.fromtimestamp(int(value), UTC)
    except (OverflowError, OSError, ValueError):
        return None


def _split_live_line(line: str) -> tuple[str, datetime | None]:
    """Return (command, timestamp) for a live line, trying the timestamped forms first."""
    match = BASH_LIVE_RE.match(line)
    if match:
        timestamp = parse_histtime(match.group("ts"))
        if timestamp is not None:
            return match.group("command"), timestamp

    match = ZSH_LIVE_RE.match(line)
    if match:
        timestamp = parse_epoch(match.group("epoch"))
        if timestamp is not None:
            return match.group("command"), timestamp

    match = INDEX_RE.match(line)
    if match:
        return match.group("rest") or "", None
    return line, None


def parse_live_line(
    line: str,
    shell: Shell = Shell.UNKNOWN,
    exit_status: int | None = None,
    pid: int | None = None,
    cwd: str | None = None,
    user_name: str | None = None,
    hostname: str | None = None,
) -> CommandRecord:
    """
    Turn one hook-supplied history line into a CommandRecord.

    Args:
        line: Raw `history 1` / `fc -lt` output for the last command
        shell: Shell the hook runs in
        exit_status: Exit status of the command, supplied out of band
        pid: Process id of the shell session, supplied out of band
        cwd, user_name, hostname: Session context, see session_context()

    Returns:
        The parsed record, tagged with the live source origin

    Raises:
        MalformedLiveEntryError: If no command text remains after the index
    """
    command, timestamp = _split_live_line(line)
    command = command.strip()
    if not command:
        raise MalformedLiveEntryError(line=line, shell=shell.value)

    return CommandRecord(
        shell=shell,
        command=command,
        command_timestamp=timestamp,
        exit_status=exit_status,
        pid=pid,
        source_origin=ORIGIN_LIVE,
        cwd=cwd,
        user_name=user_name,
        hostname=hostname,
    )


def session_context() -> dict[str, str | None]:
    """
    Working directory, login name and host of the calling shell.

    The hook runs as a child of the shell, so its working directory is the
    shell's. Values that cannot be determined are None.
    """
    try:
        cwd: str | None = os.getcwd()
    except OSError:
        cwd = None
    try:
        user_name: str | None = getpass.getuser()
    except (OSError, KeyError):
        user_name = None
    return {"cwd": cwd, "user_name": user_name, "hostname": socket.gethostname() or None}
