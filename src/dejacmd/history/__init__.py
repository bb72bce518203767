"""
History file formats for dejacmd.

Import detects the format of a file (bash, zsh, mixed, or a legacy 'recent'
SQLite database) and streams CommandRecords; export writes records back as a
bash or zsh history file.
"""

from dejacmd.history.exporter import export_history, format_record
from dejacmd.history.importer import (
    ClassifiedLine,
    HistorySource,
    ImportSummary,
    LegacyDatabase,
    LineKind,
    ShellHistoryFile,
    classify_line,
    open_history_source,
)

__all__ = [
    "ClassifiedLine",
    "HistorySource",
    "ImportSummary",
    "LegacyDatabase",
    "LineKind",
    "ShellHistoryFile",
    "classify_line",
    "export_history",
    "format_record",
    "open_history_source",
]
