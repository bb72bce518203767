"""
History file exporter.

Writes records back out as a bash or zsh history file that the importer
reads back to the same command text and timestamps:

    bash:  #1709298302          zsh:  : 1709298302:0;git status
           git status

Embedded newlines are written as backslash-newline continuations. Records
without a timestamp become plain lines in both formats; zsh has no way to
express a missing timestamp, so that case is lossy.
"""

import os
import tempfile
from pathlib import Path
from typing import Iterable

from dejacmd.schema import CommandRecord, ExportFormat


def _escape_newlines(command: str) -> str:
    return command.replace("\n", "\\\n")


def format_record(record: CommandRecord, fmt: ExportFormat) -> str:
    """Render one record, including its trailing newline."""
    command = _escape_newlines(record.command)
    epoch = record.epoch
    if epoch is None:
        return f"{command}\n"
    if fmt == ExportFormat.ZSH:
        return f": {epoch}:0;{command}\n"
    return f"#{epoch}\n{command}\n"


def write_history(records: Iterable[CommandRecord], stream, fmt: ExportFormat) -> int:
    """Write records to an open text stream; returns the number written."""
    count = 0
    for record in records:
        stream.write(format_record(record, fmt))
        count += 1
    return count


def export_history(
    records: Iterable[CommandRecord],
    path: str | Path,
    fmt: ExportFormat = ExportFormat.BASH,
) -> int:
    """
    Export records to a history file.

    The file is written to a temporary sibling and renamed into place once
    every record has been written, so a failing read leaves no partial file.

    Args:
        records: Records in the order they should appear (newest last)
        path: Destination file
        fmt: bash or zsh

    Returns:
        Number of records written
    """
    path = Path(path).expanduser()
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as stream:
            count = write_history(records, stream, fmt)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return count
