"""
Pytest configuration and shared fixtures for schemasync tests.

Provides an in-memory ``QueryExecutor`` that behaves like a transactional
database: DDL mutates an in-memory catalog, rollback restores the state
from ``begin_transaction``, and constraint violations a real database
would reject (dropping a column a foreign key still uses, dropping a
missing constraint) raise ``ExecutorError``.
"""

import asyncio
import copy
from typing import Dict, List, Optional, Sequence, Tuple

import pytest
import yaml

from schemasync.database.ddl import compare_default_values, normalize_type
from schemasync.exceptions import ExecutorError, TransactionError
from schemasync.logger import SchemaBuildLogger
from schemasync.schema import (
    ColumnChange,
    LiveColumn,
    LiveForeignKey,
    LiveIndex,
    LivePrimaryKey,
    LiveTable,
    QueryExecutor,
    TargetColumn,
    TargetForeignKey,
    TargetIndex,
    TargetTable,
)


class InMemoryQueryExecutor(QueryExecutor):
    """Transactional in-memory database for reconciler tests.

    ``fail_on`` names a mutating operation that raises when called;
    ``fail_at`` makes the Nth mutating operation (1-based) raise.
    """

    def __init__(
        self,
        tables: Optional[Sequence[LiveTable]] = None,
        fail_on: Optional[str] = None,
        fail_at: Optional[int] = None,
        fail_commit: bool = False,
        fail_rollback: bool = False,
    ):
        self.tables: Dict[str, LiveTable] = {
            table.name: copy.deepcopy(table) for table in (tables or [])
        }
        self.fail_on = fail_on
        self.fail_at = fail_at
        self.fail_commit = fail_commit
        self.fail_rollback = fail_rollback

        self.calls: List[str] = []
        self.operations: List[Tuple[str, str, List[str]]] = []
        self.column_changes: List[ColumnChange] = []
        self.released = 0
        self._saved: Optional[Dict[str, LiveTable]] = None
        self._mutations = 0

    # -- state helpers -----------------------------------------------------

    def table(self, name: str) -> LiveTable:
        return self.tables[name]

    def operation_names(self) -> List[str]:
        return [op for op, _, _ in self.operations]

    def index_of(self, op: str, table: str, obj: Optional[str] = None) -> int:
        for position, (name, table_name, objects) in enumerate(self.operations):
            if name == op and table_name == table and (obj is None or obj in objects):
                return position
        raise AssertionError(f"{op} on {table} ({obj}) was not executed")

    async def _mutate(self, op: str, table_name: str, objects: List[str], apply) -> None:
        self.calls.append(op)
        await asyncio.sleep(0)

        self._mutations += 1
        if op == self.fail_on or self._mutations == self.fail_at:
            raise ExecutorError(f"injected failure in {op}", statement=op)

        apply()
        self.operations.append((op, table_name, objects))

    def _referencing_keys(self, table_name: str, column_name: str) -> List[str]:
        keys = []
        for table in self.tables.values():
            for fk in table.foreign_keys:
                if fk.table_name == table_name and column_name in fk.column_names:
                    keys.append(fk.name)
                elif (
                    fk.referenced_table_name == table_name
                    and column_name in fk.referenced_column_names
                ):
                    keys.append(fk.name)
        return keys

    def _check_unreferenced(self, table_name: str, column_names: Sequence[str]) -> None:
        for column_name in column_names:
            keys = self._referencing_keys(table_name, column_name)
            if keys:
                raise ExecutorError(
                    f"cannot alter {table_name}.{column_name}: "
                    f"foreign keys {', '.join(keys)} still reference it"
                )

    # -- QueryExecutor -----------------------------------------------------

    async def load_snapshot(self, table_names: Sequence[str]) -> List[LiveTable]:
        self.calls.append("load_snapshot")
        await asyncio.sleep(0)
        return [copy.deepcopy(self.tables[name]) for name in table_names if name in self.tables]

    async def begin_transaction(self) -> None:
        self.calls.append("begin_transaction")
        self._saved = copy.deepcopy(self.tables)

    async def commit_transaction(self) -> None:
        self.calls.append("commit_transaction")
        if self.fail_commit:
            raise TransactionError("injected commit failure")
        self._saved = None

    async def rollback_transaction(self) -> None:
        self.calls.append("rollback_transaction")
        if self.fail_rollback:
            raise TransactionError("injected rollback failure")
        if self._saved is not None:
            self.tables = self._saved
            self._saved = None

    async def release(self) -> None:
        self.calls.append("release")
        self.released += 1

    @property
    def is_transaction_active(self) -> bool:
        return self._saved is not None

    def normalize_type(self, column: TargetColumn) -> str:
        return normalize_type(column)

    def compare_default_values(self, target_default, live_default) -> bool:
        return compare_default_values(target_default, live_default)

    async def create_table(self, table: LiveTable) -> None:
        def apply():
            if table.name in self.tables:
                raise ExecutorError(f"table {table.name} already exists")
            created = LiveTable(name=table.name, columns=copy.deepcopy(table.columns))
            created.primary_keys = [
                LivePrimaryKey(name=f"{table.name}_pkey", column_name=pk.column_name)
                for pk in table.primary_keys
            ]
            self.tables[table.name] = created

        await self._mutate("create_table", table.name, [c.name for c in table.columns], apply)

    async def drop_columns(self, table: LiveTable, columns: Sequence[LiveColumn]) -> None:
        names = [c.name for c in columns]

        def apply():
            self._check_unreferenced(table.name, names)
            state = self.tables[table.name]
            state.remove_columns(columns)
            state.remove_primary_keys_of_columns(columns)
            state.remove_indices_of_columns(columns)

        await self._mutate("drop_columns", table.name, names, apply)

    async def create_columns(self, table: LiveTable, columns: Sequence[LiveColumn]) -> None:
        def apply():
            state = self.tables[table.name]
            for column in columns:
                if state.column(column.name) is not None:
                    raise ExecutorError(f"column {table.name}.{column.name} already exists")
            state.add_columns(copy.deepcopy(list(columns)))

        await self._mutate("create_columns", table.name, [c.name for c in columns], apply)

    async def change_columns(self, table: LiveTable, changes: Sequence[ColumnChange]) -> None:
        names = [change.new.name for change in changes]

        def apply():
            self._check_unreferenced(table.name, names)
            state = self.tables[table.name]
            for change in changes:
                replacement = copy.deepcopy(change.new)
                replacement.is_primary = state.column(change.old.name).is_primary
                state.replace_column(change.old, replacement)
            self.column_changes.extend(changes)

        await self._mutate("change_columns", table.name, names, apply)

    async def update_primary_keys(
        self,
        table: LiveTable,
        added: Sequence[LivePrimaryKey],
        dropped: Sequence[LivePrimaryKey],
    ) -> None:
        def apply():
            state = self.tables[table.name]
            state.primary_keys = [
                LivePrimaryKey(name=f"{table.name}_pkey", column_name=pk.column_name)
                for pk in table.primary_keys
            ]
            primary = {pk.column_name for pk in state.primary_keys}
            for column in state.columns:
                column.is_primary = column.name in primary

        objects = [pk.column_name for pk in added] + [pk.column_name for pk in dropped]
        await self._mutate("update_primary_keys", table.name, objects, apply)

    async def drop_foreign_keys(
        self, table: LiveTable, foreign_keys: Sequence[LiveForeignKey]
    ) -> None:
        names = [fk.name for fk in foreign_keys]

        def apply():
            state = self.tables[table.name]
            for name in names:
                if not state.has_foreign_key(name):
                    raise ExecutorError(f"constraint {name} of {table.name} does not exist")
            state.remove_foreign_keys(foreign_keys)

        await self._mutate("drop_foreign_keys", table.name, names, apply)

    async def create_foreign_keys(
        self, table: LiveTable, foreign_keys: Sequence[LiveForeignKey]
    ) -> None:
        def apply():
            state = self.tables[table.name]
            for fk in foreign_keys:
                if state.has_foreign_key(fk.name):
                    raise ExecutorError(f"constraint {fk.name} already exists")
                referenced = self.tables.get(fk.referenced_table_name)
                if referenced is None:
                    raise ExecutorError(f"table {fk.referenced_table_name} does not exist")
                for column_name in fk.referenced_column_names:
                    if referenced.column(column_name) is None:
                        raise ExecutorError(
                            f"column {fk.referenced_table_name}.{column_name} does not exist"
                        )
            state.add_foreign_keys(copy.deepcopy(list(foreign_keys)))

        await self._mutate(
            "create_foreign_keys", table.name, [fk.name for fk in foreign_keys], apply
        )

    async def create_index(self, table: LiveTable, index: LiveIndex) -> None:
        def apply():
            state = self.tables[table.name]
            if any(i.name == index.name for i in state.indices):
                raise ExecutorError(f"index {index.name} already exists")
            state.add_index(copy.deepcopy(index))

        await self._mutate("create_index", table.name, [index.name], apply)

    async def drop_index(self, table: LiveTable, index: LiveIndex) -> None:
        def apply():
            state = self.tables[table.name]
            if not any(i.name == index.name for i in state.indices):
                raise ExecutorError(f"index {index.name} does not exist")
            state.remove_index(index)

        await self._mutate("drop_index", table.name, [index.name], apply)


# ============================================================================
# Executor Fixtures
# ============================================================================

@pytest.fixture
def make_executor():
    """Factory for in-memory executors seeded with live tables."""
    def factory(tables: Optional[Sequence[LiveTable]] = None, **kwargs) -> InMemoryQueryExecutor:
        return InMemoryQueryExecutor(tables, **kwargs)
    return factory


@pytest.fixture
def build_logger() -> SchemaBuildLogger:
    """Schema build logger collecting messages of one test."""
    return SchemaBuildLogger()


# ============================================================================
# Target Schema Fixtures
# ============================================================================

@pytest.fixture
def users_target() -> TargetTable:
    """users(id generated pk, name varchar(255), email varchar(255))."""
    return TargetTable(
        name="users",
        columns=[
            TargetColumn(name="id", type="int", is_primary=True, is_generated=True),
            TargetColumn(name="name", type="varchar", length=255),
            TargetColumn(name="email", type="varchar", length=255, is_nullable=True),
        ],
    )


@pytest.fixture
def orders_target() -> TargetTable:
    """orders(id generated pk, user_id int, total decimal(10,2)) referencing users."""
    return TargetTable(
        name="orders",
        columns=[
            TargetColumn(name="id", type="int", is_primary=True, is_generated=True),
            TargetColumn(name="user_id", type="int"),
            TargetColumn(name="total", type="decimal", precision=10, scale=2, default="0"),
        ],
        foreign_keys=[
            TargetForeignKey(
                name="fk_orders_user_id",
                table_name="orders",
                column_names=["user_id"],
                referenced_table_name="users",
                referenced_column_names=["id"],
                on_delete="CASCADE",
            )
        ],
        indices=[
            TargetIndex(name="idx_orders_user_id", table_name="orders", column_names=["user_id"])
        ],
    )


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config_dict():
    """Sample configuration for testing."""
    return {
        "database": {
            "host": "localhost",
            "port": 5432,
            "database": "shop",
            "user": "postgres",
            "password": "secret",
        },
        "sync": {"schema": "public", "dry_run": False},
        "logging": {"level": "INFO", "console": False},
        "tables": [
            {
                "name": "users",
                "columns": [
                    {"name": "id", "type": "int", "primary": True, "generated": True},
                    {"name": "name", "type": "varchar", "length": 255},
                    {"name": "email", "type": "varchar", "length": 255, "nullable": True},
                ],
                "indices": [{"columns": ["email"], "unique": True}],
            },
            {
                "name": "orders",
                "columns": [
                    {"name": "id", "type": "int", "primary": True, "generated": True},
                    {"name": "user_id", "type": "int"},
                ],
                "foreign_keys": [
                    {
                        "columns": ["user_id"],
                        "references": "users",
                        "referenced_columns": ["id"],
                        "on_delete": "cascade",
                    }
                ],
            },
        ],
    }


@pytest.fixture
def config_file(tmp_path, sample_config_dict):
    """Write the sample configuration to a YAML file."""
    path = tmp_path / "schemasync.yaml"
    path.write_text(yaml.dump(sample_config_dict), encoding="utf-8")
    return path
