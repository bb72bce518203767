"""
Schema definitions for dejacmd.

This module defines the Pydantic models used throughout dejacmd:
- CommandRecord: The canonical, store-agnostic form of one executed command
- HistoryRow: A CommandRecord as read back from a store (adds id, inserted_at)
- StoreSettings/Settings: The persisted YAML settings file
- StoreConfig: The resolved, immutable connection descriptor for one store

Design Decisions:
    - Records are immutable (frozen=True); rows are append-only in every store
    - Timestamps are always timezone-aware UTC once validated
    - Command text is stored verbatim; only emptiness is checked
"""

import os
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from dejacmd.errors import ConfigError


DEFAULT_SETTINGS_FILE = "~/.dejacmd.yaml"
DEFAULT_LOCAL_DATABASE_URL = "sqlite://~/.dejacmd.sqlite"
SETTINGS_ENV_VAR = "DEJACMD_SETTINGS"

# source_origin tags
ORIGIN_LIVE = "live"


def import_origin(path: str | Path) -> str:
    """Origin tag for records read from a shell history file."""
    return f"import:{path}"


def legacy_origin(path: str | Path) -> str:
    """Origin tag for records read from a legacy SQLite history database."""
    return f"legacy-db:{path}"


# =============================================================================
# Enums
# =============================================================================


class Shell(str, Enum):
    """Provenance of a history entry."""

    BASH = "bash"
    ZSH = "zsh"
    POWERSHELL = "powershell"
    UNKNOWN = "unknown"

    @classmethod
    def from_name(cls, name: str | None) -> "Shell":
        """
        Map a shell executable name or path to a Shell.

        Login-shell prefixes ("-bash") and paths ("/usr/bin/zsh") are accepted.
        """
        if not name:
            return cls.UNKNOWN
        base = Path(name.strip()).name.lstrip("-").lower()
        if base.endswith(".exe"):
            base = base[:-4]
        if base in ("pwsh", "powershell"):
            return cls.POWERSHELL
        for shell in (cls.BASH, cls.ZSH):
            if base == shell.value:
                return shell
        return cls.UNKNOWN


class Dialect(str, Enum):
    """The supported SQL backends."""

    SQLITE = "sqlite"
    POSTGRES = "postgres"
    MYSQL = "mysql"

    @classmethod
    def from_url(cls, url: str) -> "Dialect":
        """
        Select the dialect from a database URL scheme.

        Raises:
            ConfigError: If the scheme is not one of the supported backends
        """
        scheme = url.split("://", 1)[0].lower() if "://" in url else ""
        scheme = scheme.split("+", 1)[0]
        if scheme == "sqlite":
            return cls.SQLITE
        if scheme in ("postgres", "postgresql"):
            return cls.POSTGRES
        if scheme in ("mysql", "mariadb"):
            return cls.MYSQL
        raise ConfigError(
            message=f"Unsupported database scheme: {scheme or url!r}",
            suggestion="Supported schemes are: sqlite, postgres, mysql",
        )


class StoreRole(str, Enum):
    """Which configured store an operation targets."""

    LOCAL = "local"
    CENTRAL = "central"


class ExportFormat(str, Enum):
    """Shell-native history file formats for export."""

    BASH = "bash"
    ZSH = "zsh"


# =============================================================================
# Record Models
# =============================================================================


class CommandRecord(BaseModel):
    """
    One executed command in canonical form.

    Created once by the shell line parser (one per prompt) or the history
    importer (many per file) and never modified afterwards.

    Attributes:
        shell: Shell the command came from
        command: Literal command text, may contain embedded newlines
        command_timestamp: When the command ran (UTC), None if unknown
        exit_status: Exit status reported by the hook, None for imports
        pid: Process id of the originating shell session
        sequence_no: Source-local ordering number (e.g., history file line)
        source_origin: Audit tag: live, import:<path> or legacy-db:<path>
        cwd: Working directory of the shell (live logging only)
        user_name: Login name of the user (live logging only)
        hostname: Host the command ran on (live logging only)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    shell: Shell = Field(default=Shell.UNKNOWN, description="Provenance of the entry")
    command: str = Field(..., description="Literal command text")
    command_timestamp: datetime | None = Field(
        default=None,
        description="When the command ran (UTC)",
    )
    exit_status: int | None = Field(default=None, description="Exit status of the command")
    pid: int | None = Field(default=None, description="Originating shell process id")
    sequence_no: int | None = Field(default=None, description="Source-local ordering number")
    source_origin: str = Field(default=ORIGIN_LIVE, description="Where the record came from")
    cwd: str | None = Field(default=None, description="Working directory of the shell")
    user_name: str | None = Field(default=None, description="Login name of the user")
    hostname: str | None = Field(default=None, description="Host the command ran on")

    @field_validator("command")
    @classmethod
    def validate_command(cls, v: str) -> str:
        """Reject commands that are empty after trimming; keep the text verbatim."""
        if not v.strip():
            msg = "command must not be empty"
            raise ValueError(msg)
        return v

    @field_validator("command_timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime | None) -> datetime | None:
        """Normalize timestamps to aware UTC; naive values are taken as UTC."""
        if v is None:
            return None
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v.astimezone(UTC)

    @property
    def epoch(self) -> int | None:
        """Timestamp as integer epoch seconds, or None."""
        if self.command_timestamp is None:
            return None
        return int(self.command_timestamp.timestamp())


class HistoryRow(CommandRecord):
    """
    A CommandRecord as stored in a history table.

    Attributes:
        id: Generated primary key (store-local, differs between stores)
        inserted_at: When the row was inserted
    """

    id: int = Field(..., description="Generated primary key")
    inserted_at: datetime | None = Field(default=None, description="Insertion time")

    @field_validator("inserted_at")
    @classmethod
    def validate_inserted_at(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v


# =============================================================================
# Settings Models
# =============================================================================


class StoreSettings(BaseModel):
    """
    Persisted settings for one store.

    Attributes:
        url: Database URL; may contain {{user}} and {{password}} placeholders
        user: Database user substituted into {{user}}
        encrypted_password: Opaque encrypted secret substituted into {{password}}
        connect_timeout: Seconds to wait for the database to accept a connection
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str = Field(..., description="Database URL", min_length=1)
    user: str | None = Field(default=None, description="Database user")
    encrypted_password: str | None = Field(
        default=None,
        description="Encrypted database password",
        repr=False,
    )
    connect_timeout: int = Field(
        default=5,
        description="Connection timeout in seconds",
        gt=0,
        le=300,
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """The scheme must name a supported dialect."""
        Dialect.from_url(v)
        return v

    @property
    def dialect(self) -> Dialect:
        return Dialect.from_url(self.url)


class Settings(BaseModel):
    """
    Complete dejacmd settings.

    Attributes:
        local: The mandatory local store
        central: The optional central shared store
        encryption_key: Key handed to the password decryption capability
        batch_size: Records per transaction when importing
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    local: StoreSettings = Field(
        default_factory=lambda: StoreSettings(url=DEFAULT_LOCAL_DATABASE_URL),
        description="Local store",
    )
    central: StoreSettings | None = Field(default=None, description="Central store")
    encryption_key: str | None = Field(default=None, description="Encryption key", repr=False)
    batch_size: int = Field(
        default=500,
        description="Records per import transaction",
        ge=1,
        le=100_000,
    )

    def store(self, role: StoreRole) -> StoreSettings | None:
        """Settings for a role, None when the central store is not configured."""
        if role == StoreRole.LOCAL:
            return self.local
        return self.central


class StoreConfig(BaseModel):
    """
    Resolved connection descriptor for one store.

    Built once per process from StoreSettings after credential expansion;
    immutable for the process lifetime.

    Attributes:
        role: local or central
        dialect: SQL dialect selected from the URL scheme
        url: Connection URL with credentials substituted (never logged)
        redacted_url: Same URL with the password masked, for messages
        connect_timeout: Seconds to wait when connecting
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    role: StoreRole
    dialect: Dialect
    url: str = Field(..., repr=False)
    redacted_url: str
    connect_timeout: int = 5


# =============================================================================
# YAML Loading Helpers
# =============================================================================


def settings_path(explicit: Path | str | None = None) -> Path:
    """
    Resolve the settings file location.

    Order: explicit argument, $DEJACMD_SETTINGS, ~/.dejacmd.yaml.
    """
    if explicit:
        return Path(explicit).expanduser()
    env = os.environ.get(SETTINGS_ENV_VAR)
    if env:
        return Path(env).expanduser()
    return Path(DEFAULT_SETTINGS_FILE).expanduser()


def load_settings(path: Path | str | None = None) -> Settings:
    """
    Load settings from a YAML file.

    A missing file yields the defaults (local SQLite store only).

    Raises:
        ConfigError: If the file cannot be parsed or fails validation
    """
    path = settings_path(path)
    if not path.exists():
        return Settings()
    try:
        with path.open() as f:
            data = yaml.safe_load(f)
        return Settings.model_validate(data or {})
    except ConfigError as e:
        e.path = str(path)
        e.context["path"] = str(path)
        raise
    except (OSError, yaml.YAMLError, ValueError) as e:
        raise ConfigError(
            message=f"Error loading settings file {path}: {e}",
            path=str(path),
        ) from e


def save_settings(settings: Settings, path: Path | str | None = None) -> Path:
    """Write settings to a YAML file, creating parent directories."""
    path = settings_path(path)
    data: dict[str, Any] = settings.model_dump(mode="json", exclude_none=True)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w") as f:
            yaml.safe_dump(data, f, sort_keys=False)
    except OSError as e:
        raise ConfigError(
            message=f"Failed to write settings file {path}: {e}",
            path=str(path),
        ) from e
    return path


def load_settings_from_string(content: str) -> Settings:
    """Load settings from a YAML string."""
    data = yaml.safe_load(content)
    return Settings.model_validate(data or {})


def utc_now() -> datetime:
    """Current UTC time, second precision."""
    return datetime.now(UTC).replace(microsecond=0)
