"""Capture the complete current state of the watched tables."""

from typing import Iterable

import structlog
from pydantic import BaseModel, ConfigDict, Field

from tablewatch.ingestion.airtable_client import RecordStoreClient
from tablewatch.models.record import Snapshot, Table

log = structlog.stdlib.get_logger()


class FetchError(RuntimeError):
    """Raised when reading one table from the record store fails."""

    def __init__(self, table: str, cause: Exception):
        super().__init__(f"Failed to fetch table '{table}': {cause}")
        self.table = table
        self.cause = cause


class FetchResult(BaseModel):
    """Snapshot of one tick together with the tables that failed to load."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    snapshot: Snapshot = Field(default_factory=dict, description="Captured tables")
    errors: list[FetchError] = Field(default_factory=list, description="Per-table failures")

    @property
    def failed_tables(self) -> list[str]:
        return [error.table for error in self.errors]


class SnapshotFetcher:
    """Reads whole tables from a record store client."""

    def __init__(self, client: RecordStoreClient):
        self._client = client

    def fetch_all(self, tables: Iterable[str]) -> FetchResult:
        """
        Read every requested table exhaustively.

        A table that fails to load contributes an empty table; the failure is
        logged and collected, and the remaining tables are still fetched.

        Args:
            tables: Table names, in the order they should appear in the snapshot

        Returns:
            FetchResult with the assembled snapshot and per-table errors
        """
        result = FetchResult()

        for table in tables:
            if table in result.snapshot:
                continue
            try:
                result.snapshot[table] = self.fetch_table(table)
            except Exception as e:
                error = FetchError(table, e)
                log.error("table_fetch_failed", table=table, error=str(e))
                result.snapshot[table] = {}
                result.errors.append(error)

        log.info(
            "snapshot_fetched",
            table_count=len(result.snapshot),
            record_count=sum(len(records) for records in result.snapshot.values()),
            failed_tables=result.failed_tables,
        )
        return result

    def fetch_table(self, table: str) -> Table:
        """
        Read all records of one table, following pagination to the end.

        Args:
            table: Table name

        Returns:
            Mapping of record id to Record
        """
        records: Table = {}
        for page in self._client.list_pages(table):
            for record in page:
                records[record.id] = record
        return records
