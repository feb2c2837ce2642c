"""
Schema reconciliation core logic for schemasync.

Converges the live database schema to the target schema in one
transaction. Steps of a run:

1. load the current state of every target table from the database
2. drop foreign keys that exist in the database but not in the target
3. create tables that don't exist yet (no foreign keys, no explicit
   primary keys; generated primary columns come with the table)
4. drop columns that are no longer in the target, dropping the foreign
   keys that depend on them first
5. add columns that are missing from the database
6. alter columns whose definition changed
7. update primary keys of non-generated primary columns
8. create foreign keys that don't exist yet
9. drop indices no longer in the target and create missing ones

Steps run strictly in order. Within a step all tables are processed
concurrently, since each step only touches one table's state per unit.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from operator import attrgetter
from typing import Any, Awaitable, Dict, Iterable, List, Optional, Sequence, Tuple

from .catalog import (
    LiveColumn,
    LiveForeignKey,
    LiveIndex,
    LivePrimaryKey,
    LiveTable,
    changed_items,
    items_only_in,
)
from .executor import ColumnChange, QueryExecutor
from .operations import ChangeType, SchemaChange
from .target import TargetColumn, TargetTable
from ..exceptions import TransactionError
from ..logger import SchemaBuildLogger


logger = logging.getLogger(__name__)

by_column_name = attrgetter("column_name")


class ReconciliationStatus(str, Enum):
    """Status of a completed reconciliation run."""

    SUCCESS = "success"
    NO_CHANGES = "no_changes"
    DRY_RUN = "dry_run"


@dataclass
class ReconciliationResult:
    """Result of a reconciliation run."""

    status: ReconciliationStatus
    tables: List[str]
    changes: List[SchemaChange] = field(default_factory=list)
    execution_time_ms: float = 0.0

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    def changes_by_type(self) -> Dict[ChangeType, List[SchemaChange]]:
        """Group recorded changes by change type."""
        grouped: Dict[ChangeType, List[SchemaChange]] = {}
        for change in self.changes:
            grouped.setdefault(change.change_type, []).append(change)
        return grouped

    def summary(self) -> Dict[str, Any]:
        """Get summary of the run."""
        return {
            "status": self.status.value,
            "tables": len(self.tables),
            "total_changes": len(self.changes),
            "destructive_changes": sum(1 for c in self.changes if c.is_destructive),
            "changes_by_type": {
                change_type.value: len(changes)
                for change_type, changes in self.changes_by_type().items()
            },
            "execution_time_ms": round(self.execution_time_ms, 1),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Summary plus every recorded change, ready for JSON output."""
        data = self.summary()
        data["table_names"] = list(self.tables)
        data["changes"] = [change.to_dict() for change in self.changes]
        return data


class SchemaReconciler:
    """
    Converges the database schema to a set of target tables.

    The live snapshot is owned by a single ``run()`` call: it is loaded at
    the start, passed explicitly to every phase, mutated in place as DDL
    succeeds and discarded at the end.
    """

    def __init__(
        self,
        executor: QueryExecutor,
        target_tables: Iterable[TargetTable],
        build_logger: Optional[SchemaBuildLogger] = None,
        dry_run: bool = False,
    ):
        self.executor = executor
        self.target_tables = list(target_tables)
        self.build_logger = build_logger or SchemaBuildLogger()
        self.dry_run = dry_run

        self._changes: List[SchemaChange] = []

    async def run(self) -> ReconciliationResult:
        """
        Synchronize the database schema with the target tables.

        Either every change is committed or none is: on any failure the
        transaction is rolled back and the first error is re-raised. The
        executor is released on every exit path.

        Returns:
            ReconciliationResult listing the changes applied

        Raises:
            ExecutorError: If a snapshot query or DDL statement fails
            TransactionError: If the transaction can't be committed or rolled back
        """
        start_time = time.time()
        self._changes = []
        table_names = [target.name for target in self.target_tables]

        logger.info(f"Starting schema synchronization for {len(table_names)} tables")

        try:
            snapshot = await self.executor.load_snapshot(table_names)
            await self.executor.begin_transaction()

            try:
                await self._drop_old_foreign_keys(snapshot)
                await self._create_new_tables(snapshot)
                await self._drop_removed_columns(snapshot)
                await self._add_new_columns(snapshot)
                await self._update_exist_columns(snapshot)
                await self._update_primary_keys(snapshot)
                await self._create_foreign_keys(snapshot)
                await self._create_indices(snapshot)

                if self.dry_run:
                    await self.executor.rollback_transaction()
                else:
                    await self.executor.commit_transaction()

            except Exception as e:
                logger.error(f"Schema synchronization failed, rolling back: {e}")
                await self._rollback_after(e)
                raise

        finally:
            await self.executor.release()

        if self.dry_run:
            status = ReconciliationStatus.DRY_RUN
        elif self._changes:
            status = ReconciliationStatus.SUCCESS
        else:
            status = ReconciliationStatus.NO_CHANGES

        result = ReconciliationResult(
            status=status,
            tables=table_names,
            changes=list(self._changes),
            execution_time_ms=(time.time() - start_time) * 1000,
        )

        logger.info(
            f"Schema synchronization completed: {status.value}, "
            f"{len(result.changes)} changes ({result.execution_time_ms:.1f}ms)"
        )
        return result

    async def _rollback_after(self, error: Exception) -> None:
        try:
            await self.executor.rollback_transaction()
        except Exception as rollback_error:
            logger.error(f"Rollback failed: {rollback_error}")
            raise TransactionError(
                f"Rollback failed after error: {error}", cause=error
            ) from rollback_error

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _drop_old_foreign_keys(self, snapshot: List[LiveTable]) -> None:
        """Drop foreign keys that exist in the database but not in the target."""

        async def drop(target: TargetTable, table: LiveTable) -> None:
            to_drop = items_only_in(table.foreign_keys, target.foreign_keys)
            if not to_drop:
                return

            names = [fk.name for fk in to_drop]
            self._log(f"dropping old foreign keys of {table.name}: {', '.join(names)}")

            table.remove_foreign_keys(to_drop)
            await self.executor.drop_foreign_keys(table, to_drop)
            self._record(ChangeType.DROP_FOREIGN_KEYS, table.name, "Drop old foreign keys", names)

        await self._fan_out([drop(t, table) for t, table in self._paired(snapshot)])

    async def _create_new_tables(self, snapshot: List[LiveTable]) -> None:
        """
        Create tables that don't exist in the database yet.

        New tables are created without foreign keys and without explicit
        primary keys; a primary key can only come with a generated column.
        They are appended to the snapshot before any DDL is issued.
        """
        new_tables = []
        for target in self.target_tables:
            if self._find_table(snapshot, target.name) is not None:
                continue

            table = LiveTable(
                name=target.name,
                columns=self._to_live_columns(target.columns),
                primary_keys=[
                    LivePrimaryKey(name="", column_name=column.name)
                    for column in target.generated_columns
                    if column.is_primary
                ],
            )
            snapshot.append(table)
            new_tables.append(table)

        async def create(table: LiveTable) -> None:
            self._log(f"creating a new table: {table.name}")
            await self.executor.create_table(table)
            self._record(
                ChangeType.CREATE_TABLE,
                table.name,
                f"Create table {table.name}",
                [c.name for c in table.columns],
            )

        await self._fan_out([create(table) for table in new_tables])

    async def _drop_removed_columns(self, snapshot: List[LiveTable]) -> None:
        """
        Drop columns that exist in the database but not in the target.

        Foreign keys depending on those columns are dropped first, whatever
        table owns them.
        """
        removals: List[Tuple[LiveTable, List[LiveColumn]]] = []
        for target, table in self._paired(snapshot):
            dropped = items_only_in(table.columns, target.columns)
            if dropped:
                removals.append((table, dropped))

        await self._drop_column_referenced_foreign_keys(
            snapshot,
            [(table.name, column.name) for table, columns in removals for column in columns],
        )

        async def drop(table: LiveTable, columns: List[LiveColumn]) -> None:
            names = [c.name for c in columns]
            self._log(f"columns dropped in {table.name}: {', '.join(names)}")

            table.remove_columns(columns)
            table.remove_primary_keys_of_columns(columns)
            table.remove_indices_of_columns(columns)
            await self.executor.drop_columns(table, columns)
            self._record(ChangeType.DROP_COLUMNS, table.name, "Drop removed columns", names)

        await self._fan_out([drop(table, columns) for table, columns in removals])

    async def _add_new_columns(self, snapshot: List[LiveTable]) -> None:
        """Add target columns missing from the database, without keys."""

        async def add(target: TargetTable, table: LiveTable) -> None:
            new_columns = items_only_in(target.columns, table.columns)
            if not new_columns:
                return

            names = [c.name for c in new_columns]
            self._log(f"new columns added to {table.name}: {', '.join(names)}")

            columns = self._to_live_columns(new_columns)
            table.add_columns(columns)
            await self.executor.create_columns(table, columns)
            self._record(ChangeType.ADD_COLUMNS, table.name, "Add new columns", names)

        await self._fan_out([add(t, table) for t, table in self._paired(snapshot)])

    async def _update_exist_columns(self, snapshot: List[LiveTable]) -> None:
        """
        Alter columns whose definition differs from the target.

        Foreign keys depending on changed columns are dropped first (they
        are recreated by the foreign key phase). Primary key membership is
        left to the primary key phase.
        """
        updates: List[Tuple[TargetTable, LiveTable, List[LiveColumn]]] = []
        for target, table in self._paired(snapshot):
            changed = changed_items(table.columns, target.columns, self._column_matches)
            if changed:
                updates.append((target, table, changed))

        await self._drop_column_referenced_foreign_keys(
            snapshot,
            [(table.name, column.name) for _, table, columns in updates for column in columns],
        )

        async def update(target: TargetTable, table: LiveTable, changed: List[LiveColumn]) -> None:
            names = [c.name for c in changed]
            self._log(f"columns changed in {table.name}. updating: {', '.join(names)}")

            changes = []
            for old_column in changed:
                target_column = target.column(old_column.name)
                new_column = LiveColumn.from_target(
                    target_column, self.executor.normalize_type(target_column)
                )
                table.replace_column(old_column, new_column)
                changes.append(ColumnChange(old=old_column, new=new_column))

            await self.executor.change_columns(table, changes)
            self._record(ChangeType.CHANGE_COLUMNS, table.name, "Change columns", names)

        await self._fan_out([update(t, table, changed) for t, table, changed in updates])

    async def _update_primary_keys(self, snapshot: List[LiveTable]) -> None:
        """Bring non-generated primary keys in line with the target."""

        async def update(target: TargetTable, table: LiveTable) -> None:
            wanted = [
                LivePrimaryKey(name="", column_name=column.name)
                for column in target.primary_columns
            ]
            current = table.primary_keys_without_generated

            added = items_only_in(wanted, current, key=by_column_name)
            dropped = items_only_in(current, wanted, key=by_column_name)
            if not added and not dropped:
                return

            dropped_names = [pk.column_name for pk in dropped]
            added_names = [pk.column_name for pk in added]
            self._log(
                f"primary keys of {table.name} have changed: "
                f"dropped - {', '.join(dropped_names) or 'nothing'}; "
                f"added - {', '.join(added_names) or 'nothing'}"
            )

            table.add_primary_keys(added)
            table.remove_primary_keys(dropped)
            await self.executor.update_primary_keys(table, added, dropped)
            self._record(
                ChangeType.UPDATE_PRIMARY_KEYS,
                table.name,
                "Update primary keys",
                added_names + dropped_names,
            )

        await self._fan_out([update(t, table) for t, table in self._paired(snapshot)])

    async def _create_foreign_keys(self, snapshot: List[LiveTable]) -> None:
        """Create target foreign keys that don't exist in the database yet."""

        async def create(target: TargetTable, table: LiveTable) -> None:
            new_keys = items_only_in(target.foreign_keys, table.foreign_keys)
            if not new_keys:
                return

            names = [fk.name for fk in new_keys]
            self._log(f"creating foreign keys of {table.name}: {', '.join(names)}")

            foreign_keys = [LiveForeignKey.from_target(fk) for fk in new_keys]
            await self.executor.create_foreign_keys(table, foreign_keys)
            table.add_foreign_keys(foreign_keys)
            self._record(ChangeType.CREATE_FOREIGN_KEYS, table.name, "Create foreign keys", names)

        await self._fan_out([create(t, table) for t, table in self._paired(snapshot)])

    async def _create_indices(self, snapshot: List[LiveTable]) -> None:
        """
        Drop indices missing from the target and create new ones.

        Drops and creates of one table run concurrently with each other.
        """

        async def sync(target: TargetTable, table: LiveTable) -> None:
            to_drop = items_only_in(table.indices, target.indices)
            to_create = [
                LiveIndex.from_target(index)
                for index in items_only_in(target.indices, table.indices)
            ]

            for index in to_drop:
                table.remove_index(index)
            for index in to_create:
                table.add_index(index)

            await self._fan_out(
                [self._drop_index(table, index) for index in to_drop]
                + [self._create_index(table, index) for index in to_create]
            )

        await self._fan_out([sync(t, table) for t, table in self._paired(snapshot)])

    async def _drop_index(self, table: LiveTable, index: LiveIndex) -> None:
        self._log(f"dropping an index: {index.name}")
        await self.executor.drop_index(table, index)
        self._record(ChangeType.DROP_INDEX, table.name, f"Drop index {index.name}", [index.name])

    async def _create_index(self, table: LiveTable, index: LiveIndex) -> None:
        self._log(f"adding new index: {index.name}")
        await self.executor.create_index(table, index)
        self._record(ChangeType.CREATE_INDEX, table.name, f"Create index {index.name}", [index.name])

    # ------------------------------------------------------------------
    # Foreign key dependencies
    # ------------------------------------------------------------------

    def _column_referenced_foreign_keys(
        self, snapshot: List[LiveTable], table_name: str, column_name: str
    ) -> List[Tuple[LiveTable, LiveForeignKey]]:
        """
        Find live foreign keys that must go before ``table_name.column_name`` changes.

        Scans the target foreign keys of every table for keys owning the
        column or referencing it, and keeps those still present in the
        live table that owns them.
        """
        dependent = []
        for target in self.target_tables:
            for foreign_key in target.foreign_keys:
                if not foreign_key.references_column(table_name, column_name):
                    continue

                owner = self._find_table(snapshot, foreign_key.table_name)
                if owner is None:
                    continue

                live_key = owner.foreign_key(foreign_key.name)
                if live_key is not None:
                    dependent.append((owner, live_key))

        return dependent

    async def _drop_column_referenced_foreign_keys(
        self, snapshot: List[LiveTable], columns: Sequence[Tuple[str, str]]
    ) -> None:
        """Drop every live foreign key depending on any of ``columns``.

        Keys are grouped by owning table so each table gets one batched
        drop and no two concurrent drops touch the same table.
        """
        grouped: Dict[str, Tuple[LiveTable, Dict[str, LiveForeignKey]]] = {}
        for table_name, column_name in columns:
            for owner, live_key in self._column_referenced_foreign_keys(
                snapshot, table_name, column_name
            ):
                _, keys = grouped.setdefault(owner.name, (owner, {}))
                keys.setdefault(live_key.name, live_key)

        async def drop(table: LiveTable, foreign_keys: List[LiveForeignKey]) -> None:
            names = [fk.name for fk in foreign_keys]
            self._log(f"dropping related foreign keys of {table.name}: {', '.join(names)}")

            table.remove_foreign_keys(foreign_keys)
            await self.executor.drop_foreign_keys(table, foreign_keys)
            self._record(
                ChangeType.DROP_FOREIGN_KEYS, table.name, "Drop related foreign keys", names
            )

        await self._fan_out(
            [drop(table, list(keys.values())) for table, keys in grouped.values()]
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _fan_out(self, coroutines: List[Awaitable[None]]) -> None:
        """Run per-table units concurrently; the first failure cancels the rest."""
        if not coroutines:
            return

        tasks = [asyncio.ensure_future(coroutine) for coroutine in coroutines]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    def _paired(self, snapshot: List[LiveTable]) -> List[Tuple[TargetTable, LiveTable]]:
        """Target tables paired with their live mirror, skipping missing tables."""
        pairs = []
        for target in self.target_tables:
            table = self._find_table(snapshot, target.name)
            if table is not None:
                pairs.append((target, table))
        return pairs

    @staticmethod
    def _find_table(snapshot: List[LiveTable], name: str) -> Optional[LiveTable]:
        for table in snapshot:
            if table.name == name:
                return table
        return None

    def _to_live_columns(self, columns: Iterable[TargetColumn]) -> List[LiveColumn]:
        return [
            LiveColumn.from_target(column, self.executor.normalize_type(column))
            for column in columns
        ]

    def _column_matches(self, live: LiveColumn, target: TargetColumn) -> bool:
        """Check whether a live column already has its target definition."""
        if live.type != self.executor.normalize_type(target):
            return False
        if live.comment != target.comment:
            return False
        if live.is_nullable != target.is_nullable:
            return False
        if live.is_generated != target.is_generated:
            return False
        if not live.is_generated and not self.executor.compare_default_values(
            target.default, live.default
        ):
            return False
        return True

    def _log(self, message: str) -> None:
        self.build_logger.log_schema_build(message)

    def _record(
        self, change_type: ChangeType, table: str, description: str, targets: List[str]
    ) -> None:
        self._changes.append(
            SchemaChange(
                change_type=change_type,
                table=table,
                description=description,
                target_objects=list(targets),
            )
        )
