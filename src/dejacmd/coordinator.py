"""
Dual-store coordinator for dejacmd.

DualStore decides which store(s) take part in an operation and combines
their outcomes. It coordinates between:
- Local store: always present, always written first
- Central store: optional, written after local as an independent write

Write Flow (live log and import):
    1. Write to the local store; any failure is fatal and central is never tried
    2. If a central store is configured, write the same record(s) to it
    3. A central failure becomes a warning and central is disabled for the
       rest of the operation

Read Flow (search, query, export):
    Exactly one store per operation: local by default, central on request.
    Rows from the two stores are never merged.

Design Principles:
    - Local history never disappears because a remote database is unreachable
    - No two-phase commit: the two writes are not linked
    - Truncate targets only the selected store, before the first batch
"""

import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from itertools import islice
from pathlib import Path

from dejacmd.credentials import Decryptor, build_store_config
from dejacmd.errors import BackendError, ConfigError, CredentialError, TruncateError
from dejacmd.history import HistorySource, export_history
from dejacmd.schema import CommandRecord, ExportFormat, Settings, StoreRole
from dejacmd.search import SearchCriteria
from dejacmd.store import BackendAdapter, RowStream, SearchHit, create_adapter

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500


@dataclass
class WriteOutcome:
    """
    Result of logging a single record.

    Attributes:
        local_id: Row id in the local store
        central_id: Row id in the central store, None if not written
        warnings: Non-fatal problems (central failures)
    """

    local_id: int | None = None
    central_id: int | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Whether the record reached the local store."""
        return self.local_id is not None


@dataclass
class ImportOutcome:
    """
    Result of a bulk import.

    Attributes:
        imported: Records written to the local store
        skipped: Source lines or rows that were not recognized
        central_written: Records written to the central store
        central_missed: Records the central store did not receive
        truncated: Which store was cleared first, if any
        source_format: Detected format of the import file
        warnings: Non-fatal problems (central failures)
    """

    imported: int = 0
    skipped: int = 0
    central_written: int = 0
    central_missed: int = 0
    truncated: StoreRole | None = None
    source_format: str = ""
    warnings: list[str] = field(default_factory=list)


def batched(records: Iterable[CommandRecord], size: int) -> Iterator[list[CommandRecord]]:
    """Split a record stream into lists of at most size records."""
    iterator = iter(records)
    while batch := list(islice(iterator, size)):
        yield batch


class DualStore:
    """
    The local store plus an optional central store.

    Usage:
        with DualStore.open(settings) as stores:
            outcome = stores.log(record)
            for warning in outcome.warnings:
                print(warning)

    Attributes:
        local: Adapter for the mandatory local store
        central: Adapter for the central store, None when absent or disabled
        warnings: Problems found while opening the stores
    """

    def __init__(
        self,
        local: BackendAdapter,
        central: BackendAdapter | None = None,
        warnings: list[str] | None = None,
    ) -> None:
        self.local = local
        self.central = central
        self.warnings = warnings if warnings is not None else []
        self._central_configured = central is not None

    @classmethod
    def open(
        cls,
        settings: Settings,
        decrypt: Decryptor | None = None,
        with_central: bool = True,
    ) -> "DualStore":
        """
        Build adapters for the configured stores.

        Credential problems for the local store are fatal; for the central
        store they are recorded as a warning and central is left out.

        Args:
            settings: Loaded settings
            decrypt: Capability that decrypts stored passwords
            with_central: Whether to set up the central store at all
        """
        local_config = build_store_config(settings, StoreRole.LOCAL, decrypt)
        if local_config is None:
            raise ConfigError(message="The local database URL is empty")
        local = create_adapter(local_config)

        central: BackendAdapter | None = None
        warnings: list[str] = []
        if with_central:
            try:
                central_config = build_store_config(settings, StoreRole.CENTRAL, decrypt)
            except CredentialError as e:
                logger.warning("Central database disabled: %s", e.message)
                warnings.append(e.message)
                central_config = None
            if central_config is not None:
                central = create_adapter(central_config)

        return cls(local, central, warnings)

    def close(self) -> None:
        self.local.close()
        if self.central is not None:
            self.central.close()

    def __enter__(self) -> "DualStore":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def adapter(self, role: StoreRole) -> BackendAdapter:
        """
        The adapter for one role.

        Raises:
            ConfigError: If the central store is requested but not configured
        """
        if role == StoreRole.LOCAL:
            return self.local
        if self.central is None:
            raise ConfigError(
                message="No central database is configured",
                suggestion="Set one with: dejacmd config --central-database URL",
            )
        return self.central

    def _disable_central(self, error: BackendError, warnings: list[str]) -> None:
        logger.warning("Central database write failed, continuing with local only: %s", error.message)
        warnings.append(error.message)
        if self.central is not None:
            self.central.close()
        self.central = None

    # =========================================================================
    # Write path
    # =========================================================================

    def log(self, record: CommandRecord) -> WriteOutcome:
        """
        Append one record to local, then central.

        Returns:
            WriteOutcome with the row ids and any central warnings

        Raises:
            BackendError: If the local write fails (central is not attempted)
        """
        outcome = WriteOutcome(warnings=list(self.warnings))

        self.local.ensure_schema()
        outcome.local_id = self.local.insert(record)

        if self.central is not None:
            try:
                self.central.ensure_schema()
                outcome.central_id = self.central.insert(record)
            except BackendError as e:
                self._disable_central(e, outcome.warnings)

        return outcome

    def import_records(
        self,
        records: Iterable[CommandRecord],
        truncate: bool = False,
        target: StoreRole = StoreRole.LOCAL,
        batch_size: int = DEFAULT_BATCH_SIZE,
        progress: Callable[[int], None] | None = None,
    ) -> ImportOutcome:
        """
        Stream records into the stores in batches.

        Each batch is one transaction per store. Memory is bounded by the
        batch size.

        Args:
            records: Records in source order
            truncate: Clear the target store before the first batch
            target: Store to truncate
            batch_size: Records per transaction
            progress: Called with the running local count after each batch

        Raises:
            TruncateError: If clearing the target store fails (nothing is inserted)
            BackendError: If a local write fails
        """
        outcome = ImportOutcome(warnings=list(self.warnings))

        self.local.ensure_schema()
        if truncate:
            self._truncate(target)
            outcome.truncated = target

        if self.central is not None:
            try:
                self.central.ensure_schema()
            except BackendError as e:
                self._disable_central(e, outcome.warnings)

        for batch in batched(records, batch_size):
            count = self.local.insert_batch(batch)
            outcome.imported += count

            if self.central is not None:
                try:
                    outcome.central_written += self.central.insert_batch(batch)
                except BackendError as e:
                    self._disable_central(e, outcome.warnings)
                    outcome.central_missed += count
            elif self._central_configured:
                outcome.central_missed += count

            if progress is not None:
                progress(outcome.imported)

        logger.debug(
            "Imported %d records (central: %d written, %d missed)",
            outcome.imported,
            outcome.central_written,
            outcome.central_missed,
        )
        return outcome

    def import_source(
        self,
        source: HistorySource,
        truncate: bool = False,
        target: StoreRole = StoreRole.LOCAL,
        batch_size: int = DEFAULT_BATCH_SIZE,
        progress: Callable[[int], None] | None = None,
    ) -> ImportOutcome:
        """Import a detected history source; see import_records()."""
        outcome = self.import_records(
            source.records(),
            truncate=truncate,
            target=target,
            batch_size=batch_size,
            progress=progress,
        )
        outcome.skipped = source.summary.skipped
        outcome.source_format = source.format_name
        return outcome

    def _truncate(self, role: StoreRole) -> None:
        adapter = self.adapter(role)
        try:
            adapter.ensure_schema()
        except BackendError as e:
            raise TruncateError(
                message=f"Cannot prepare the {role.value} store for truncation: {e.message}",
                dialect=adapter.dialect.value,
                role=role.value,
                underlying_error=e.message,
            ) from e
        adapter.truncate()
        logger.info("Truncated the %s history table", role.value)

    # =========================================================================
    # Read path
    # =========================================================================

    def reader(self, role: StoreRole) -> BackendAdapter:
        """The adapter for a read, with its schema in place."""
        adapter = self.adapter(role)
        adapter.ensure_schema()
        return adapter

    def search(self, criteria: SearchCriteria, role: StoreRole = StoreRole.LOCAL) -> list[SearchHit]:
        """Search one store."""
        return self.reader(role).search(criteria)

    def query(self, sql: str, role: StoreRole = StoreRole.LOCAL) -> RowStream:
        """Run SQL verbatim against one store."""
        return self.reader(role).query(sql)

    def describe_schema(self, role: StoreRole = StoreRole.LOCAL) -> str:
        """The history table definition of one store."""
        return self.reader(role).describe_schema()

    def export(
        self,
        path: str | Path,
        fmt: ExportFormat = ExportFormat.BASH,
        role: StoreRole = StoreRole.LOCAL,
    ) -> int:
        """
        Export one store to a history file, oldest first.

        Returns:
            Number of records written
        """
        return export_history(self.reader(role).iter_records(), path, fmt)
