"""
Exception hierarchy for dejacmd.

All dejacmd exceptions inherit from DejacmdError, allowing callers to catch
all dejacmd-specific exceptions with a single except clause.

Exception Categories:
    - MalformedLiveEntryError: Shell hook line could not be parsed
    - HistorySourceError: Import file missing, unreadable or unrecognized
    - BackendError: A database connect, read, write or truncate failed
    - ConfigError / CredentialError: Settings file or credential problems
    - InvalidTimeRangeError: Bad search timestamp bounds

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors carry context (dialect, store role, path, line number)
    - Driver exceptions never escape; they are chained with ``from``
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Live logging errors: 1xxx
ERROR_MALFORMED_LIVE_ENTRY = 1001

# Import source errors: 2xxx
ERROR_UNREADABLE_SOURCE = 2001
ERROR_UNRECOGNIZED_FORMAT = 2002

# Backend errors: 3xxx
ERROR_BACKEND_CONNECTION = 3001
ERROR_BACKEND_WRITE = 3002
ERROR_BACKEND_READ = 3003
ERROR_BACKEND_TRUNCATE = 3004

# Configuration errors: 4xxx
ERROR_CONFIG_INVALID = 4001
ERROR_CREDENTIALS = 4002

# Search errors: 5xxx
ERROR_INVALID_TIME_RANGE = 5001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class DejacmdError(Exception):
    """
    Base exception for all dejacmd errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Live Logging Errors
# =============================================================================


@dataclass
class MalformedLiveEntryError(DejacmdError):
    """
    Raised when a shell hook line has no command text.

    Attributes:
        line: The raw line that was supplied by the hook
        shell: The shell tag supplied with the line
    """

    line: str = ""
    shell: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Failed to parse history line: {self.line!r}"
        if self.code == 0:
            self.code = ERROR_MALFORMED_LIVE_ENTRY
        if not self.suggestion:
            self.suggestion = "The hook should pass the output of `history 1` (bash) or `fc -lt` (zsh)"
        self.context.update({
            "line": self.line,
            "shell": self.shell,
        })


# =============================================================================
# Import Source Errors
# =============================================================================


@dataclass
class HistorySourceError(DejacmdError):
    """
    Base class for problems with an import source file.

    Attributes:
        path: The file that was being imported
    """

    path: str = ""

    def __post_init__(self) -> None:
        self.context["path"] = self.path


@dataclass
class UnreadableSourceError(HistorySourceError):
    """Raised when the import file is missing or cannot be read."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Cannot read history file {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_UNREADABLE_SOURCE
        if not self.suggestion:
            self.suggestion = "Check that the path exists and is readable"
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class UnrecognizedFormatError(HistorySourceError):
    """Raised when the import file matches none of the supported formats."""

    reason: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Unrecognized history format in {self.path}: {self.reason}"
        if self.code == 0:
            self.code = ERROR_UNRECOGNIZED_FORMAT
        if not self.suggestion:
            self.suggestion = (
                "Supported inputs are bash or zsh history files and 'recent' SQLite databases"
            )
        super().__post_init__()
        self.context["reason"] = self.reason


# =============================================================================
# Backend Errors
# =============================================================================


@dataclass
class BackendError(DejacmdError):
    """
    Base class for database backend errors.

    Attributes:
        dialect: The SQL dialect of the store (sqlite, postgres, mysql)
        role: Which store failed (local or central)
        operation: The operation that failed (e.g., "insert", "query")
    """

    dialect: str = ""
    role: str = ""
    operation: str = ""

    def __post_init__(self) -> None:
        self.context.update({
            "dialect": self.dialect,
            "role": self.role,
            "operation": self.operation,
        })


@dataclass
class BackendConnectionError(BackendError):
    """Raised when a store cannot be opened."""

    url: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = (
                f"Error connecting to {self.role or 'the'} {self.dialect} database "
                f"{self.url}: {self.underlying_error}"
            )
        if self.code == 0:
            self.code = ERROR_BACKEND_CONNECTION
        if not self.operation:
            self.operation = "connect"
        super().__post_init__()
        self.context.update({
            "url": self.url,
            "underlying_error": self.underlying_error,
        })


@dataclass
class BackendWriteError(BackendError):
    """Raised when an insert, batch insert or schema creation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = (
                f"{self.dialect} write failed on {self.role or 'store'} "
                f"({self.operation}): {self.underlying_error}"
            )
        if self.code == 0:
            self.code = ERROR_BACKEND_WRITE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class BackendReadError(BackendError):
    """Raised when a query against a store fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = (
                f"{self.dialect} read failed on {self.role or 'store'} "
                f"({self.operation}): {self.underlying_error}"
            )
        if self.code == 0:
            self.code = ERROR_BACKEND_READ
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class TruncateError(BackendError):
    """Raised when clearing the history table before an import fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = (
                f"Error truncating {self.role or 'the'} history table ({self.dialect}): "
                f"{self.underlying_error}"
            )
        if self.code == 0:
            self.code = ERROR_BACKEND_TRUNCATE
        if not self.suggestion:
            self.suggestion = "Nothing was imported; fix the store and re-run the import"
        if not self.operation:
            self.operation = "truncate"
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


# =============================================================================
# Configuration Errors
# =============================================================================


@dataclass
class ConfigError(DejacmdError):
    """Raised when the settings file or a database URL is invalid."""

    path: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Invalid settings: {self.path}"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        self.context["path"] = self.path


@dataclass
class CredentialError(DejacmdError):
    """Raised when a store password cannot be recovered."""

    role: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Cannot resolve credentials for the {self.role} database"
        if self.code == 0:
            self.code = ERROR_CREDENTIALS
        if not self.suggestion:
            self.suggestion = (
                f"Set DEJACMD_{self.role.upper()}_PASSWORD or re-enter the password"
            )
        self.context["role"] = self.role


# =============================================================================
# Search Errors
# =============================================================================


@dataclass
class InvalidTimeRangeError(DejacmdError):
    """Raised when a search start or end bound cannot be used."""

    value: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Invalid timestamp bound: {self.value!r}"
        if self.code == 0:
            self.code = ERROR_INVALID_TIME_RANGE
        if not self.suggestion:
            self.suggestion = "Use YYYY-MM-DD_HH:MM:SS (time defaults to 00:00:00)"
        self.context["value"] = self.value
