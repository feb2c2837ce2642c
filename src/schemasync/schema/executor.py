"""
Abstract query executor for schemasync.

The reconciler never builds SQL. Every database-facing action goes through
a ``QueryExecutor``: snapshot loading, transaction control and one
coroutine per DDL action. Batch methods are applied as a single unit;
the reconciler does not assume partial success within a batch.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .catalog import LiveColumn, LiveForeignKey, LiveIndex, LivePrimaryKey, LiveTable
from .target import TargetColumn


@dataclass
class ColumnChange:
    """Old and new definitions of a column being altered."""

    old: LiveColumn
    new: LiveColumn


class QueryExecutor(ABC):
    """
    Abstract base class for dialect-specific query executors.

    Implementations own a single transactional connection for the
    duration of one reconciliation run and must serialize statements on
    it if the driver requires it, since the reconciler issues calls for
    different tables concurrently.
    """

    @abstractmethod
    async def load_snapshot(self, table_names: Sequence[str]) -> List[LiveTable]:
        """
        Load the current state of the named tables.

        Tables that don't exist are absent from the result.
        """
        pass

    @abstractmethod
    async def begin_transaction(self) -> None:
        pass

    @abstractmethod
    async def commit_transaction(self) -> None:
        pass

    @abstractmethod
    async def rollback_transaction(self) -> None:
        pass

    @abstractmethod
    async def release(self) -> None:
        """Return the underlying connection. Safe to call more than once."""
        pass

    @abstractmethod
    def normalize_type(self, column: TargetColumn) -> str:
        """Map a declared column type to the dialect's canonical type."""
        pass

    @abstractmethod
    def compare_default_values(
        self, target_default: Optional[str], live_default: Optional[str]
    ) -> bool:
        """Check whether a declared default equals the one stored in the database."""
        pass

    @abstractmethod
    async def create_table(self, table: LiveTable) -> None:
        pass

    @abstractmethod
    async def drop_columns(self, table: LiveTable, columns: Sequence[LiveColumn]) -> None:
        pass

    @abstractmethod
    async def create_columns(self, table: LiveTable, columns: Sequence[LiveColumn]) -> None:
        pass

    @abstractmethod
    async def change_columns(self, table: LiveTable, changes: Sequence[ColumnChange]) -> None:
        pass

    @abstractmethod
    async def update_primary_keys(
        self,
        table: LiveTable,
        added: Sequence[LivePrimaryKey],
        dropped: Sequence[LivePrimaryKey],
    ) -> None:
        """
        Apply a primary key change.

        ``table.primary_keys`` already reflects the final key set when this
        is called; ``added`` and ``dropped`` describe the difference.
        """
        pass

    @abstractmethod
    async def drop_foreign_keys(
        self, table: LiveTable, foreign_keys: Sequence[LiveForeignKey]
    ) -> None:
        pass

    @abstractmethod
    async def create_foreign_keys(
        self, table: LiveTable, foreign_keys: Sequence[LiveForeignKey]
    ) -> None:
        pass

    @abstractmethod
    async def create_index(self, table: LiveTable, index: LiveIndex) -> None:
        pass

    @abstractmethod
    async def drop_index(self, table: LiveTable, index: LiveIndex) -> None:
        pass
