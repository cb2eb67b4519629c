"""Data models for change detection and tick results."""

from datetime import datetime

from pydantic import BaseModel, Field

from tablewatch.models.record import Table


class TableDiff(BaseModel):
    """Changes detected in one table between two snapshots."""

    additions: Table = Field(
        default_factory=dict, description="Records present only in the new snapshot"
    )
    modifications: Table = Field(
        default_factory=dict, description="Records present in both with different fields"
    )
    removals: Table = Field(
        default_factory=dict, description="Records present only in the old snapshot"
    )
    unchanged: set[str] = Field(
        default_factory=set, description="Ids present in both with equal fields"
    )

    @property
    def has_changes(self) -> bool:
        """Check if there are any changes to dispatch."""
        return bool(self.additions or self.modifications or self.removals)

    @property
    def total_changes(self) -> int:
        return len(self.additions) + len(self.modifications) + len(self.removals)


class DiffResult(BaseModel):
    """Per-table changes between two snapshots."""

    tables: dict[str, TableDiff] = Field(default_factory=dict, description="Diff by table name")

    def for_table(self, table: str) -> TableDiff:
        """Get the diff of a table, or an empty diff if the table was not compared."""
        return self.tables.get(table) or TableDiff()

    @property
    def change_count(self) -> int:
        """Get total number of changes across all tables."""
        return sum(diff.total_changes for diff in self.tables.values())

    def modifications(self) -> dict[str, Table]:
        """Get the raw modifications of every table."""
        return {table: diff.modifications for table, diff in self.tables.items()}


class DispatchStats(BaseModel):
    """Counts of handler invocations performed during one tick."""

    additions: int = Field(default=0, ge=0, description="Addition events delivered")
    settled_modifications: int = Field(
        default=0, ge=0, description="Settled modification events delivered"
    )
    raw_modifications: int = Field(
        default=0, ge=0, description="Raw modification events delivered"
    )
    removals: int = Field(default=0, ge=0, description="Removal events delivered")
    handler_errors: list[str] = Field(
        default_factory=list, description="Messages of handlers that raised"
    )

    @property
    def total_events(self) -> int:
        return (
            self.additions
            + self.settled_modifications
            + self.raw_modifications
            + self.removals
        )


class TickReport(BaseModel):
    """Report of one fetch, diff, reconcile and dispatch run."""

    tables: list[str] = Field(default_factory=list, description="Tables watched this tick")
    change_count: int = Field(default=0, ge=0, description="Raw changes detected")
    settled_count: int = Field(default=0, ge=0, description="Modifications that settled")
    dispatch: DispatchStats = Field(default_factory=DispatchStats)
    fetch_errors: list[str] = Field(
        default_factory=list, description="Messages of tables that failed to load"
    )
    start_time: datetime = Field(..., description="Tick start timestamp")
    end_time: datetime = Field(..., description="Tick end timestamp")
    duration_seconds: float = Field(default=0.0, ge=0.0, description="Tick duration in seconds")

    @property
    def success(self) -> bool:
        """Check if the tick completed without fetch or handler errors."""
        return not self.fetch_errors and not self.dispatch.handler_errors
