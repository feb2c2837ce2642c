"""
PostgreSQL query executor for schemasync.

Runs the reconciler's schema operations on a single pooled asyncpg
connection inside one transaction. Calls for different tables arrive
concurrently, so every statement goes through a lock: an asyncpg
connection can't run two queries at once.
"""

import asyncio
import logging
from typing import List, Optional, Sequence

import asyncpg

from .connection import ConnectionPool
from .ddl import PostgresDDL, compare_default_values, normalize_type
from .introspection import SchemaIntrospector
from ..exceptions import ExecutorError, TransactionError
from ..schema.catalog import LiveColumn, LiveForeignKey, LiveIndex, LivePrimaryKey, LiveTable
from ..schema.executor import ColumnChange, QueryExecutor
from ..schema.target import TargetColumn


logger = logging.getLogger(__name__)


class PostgresQueryExecutor(QueryExecutor):
    """QueryExecutor over one asyncpg connection taken from a ConnectionPool."""

    def __init__(self, pool: ConnectionPool, schema: str = "public"):
        self.pool = pool
        self.schema = schema
        self.ddl = PostgresDDL(schema)

        self._connection: Optional[asyncpg.Connection] = None
        self._transaction = None
        self._lock = asyncio.Lock()

        # Statements executed on this connection, in order
        self.executed_statements: List[str] = []

    async def _get_connection(self) -> asyncpg.Connection:
        if self._connection is None:
            self._connection = await self.pool.acquire_connection()
        return self._connection

    async def _execute(self, statements: Sequence[str]) -> None:
        async with self._lock:
            connection = await self._get_connection()
            for statement in statements:
                logger.debug(f"SQL: {statement}")
                try:
                    await connection.execute(statement)
                except Exception as e:
                    logger.error(f"Statement failed: {statement}: {e}")
                    raise ExecutorError(
                        f"Failed to execute statement: {e}", statement=statement, cause=e
                    ) from e
                self.executed_statements.append(statement)

    async def load_snapshot(self, table_names: Sequence[str]) -> List[LiveTable]:
        async with self._lock:
            connection = await self._get_connection()
            return await SchemaIntrospector(connection, self.schema).load_tables(table_names)

    async def begin_transaction(self) -> None:
        async with self._lock:
            if self.is_transaction_active:
                raise TransactionError("Transaction already started")

            connection = await self._get_connection()
            transaction = connection.transaction()
            try:
                await transaction.start()
            except Exception as e:
                raise TransactionError(f"Failed to begin transaction: {e}", cause=e) from e
            self._transaction = transaction

    async def commit_transaction(self) -> None:
        async with self._lock:
            if not self.is_transaction_active:
                raise TransactionError("No active transaction to commit")

            transaction, self._transaction = self._transaction, None
            try:
                await transaction.commit()
            except Exception as e:
                raise TransactionError(f"Failed to commit transaction: {e}", cause=e) from e

    async def rollback_transaction(self) -> None:
        async with self._lock:
            if not self.is_transaction_active:
                return

            transaction, self._transaction = self._transaction, None
            try:
                await transaction.rollback()
            except Exception as e:
                raise TransactionError(f"Failed to roll back transaction: {e}", cause=e) from e

    async def release(self) -> None:
        async with self._lock:
            if self._connection is None:
                return

            connection, self._connection = self._connection, None
            self._transaction = None
            await self.pool.release_connection(connection)

    @property
    def is_transaction_active(self) -> bool:
        return self._transaction is not None

    def normalize_type(self, column: TargetColumn) -> str:
        return normalize_type(column)

    def compare_default_values(
        self, target_default: Optional[str], live_default: Optional[str]
    ) -> bool:
        return compare_default_values(target_default, live_default)

    async def create_table(self, table: LiveTable) -> None:
        await self._execute(self.ddl.create_table(table))

    async def drop_columns(self, table: LiveTable, columns: Sequence[LiveColumn]) -> None:
        statements = [self.ddl.drop_column(table, column) for column in columns]
        # dropping any key column drops the whole primary key constraint
        if table.primary_keys and any(column.is_primary for column in columns):
            statements.extend(self.ddl.update_primary_keys(table))
        await self._execute(statements)

    async def create_columns(self, table: LiveTable, columns: Sequence[LiveColumn]) -> None:
        statements = []
        for column in columns:
            statements.extend(self.ddl.add_column(table, column))
        await self._execute(statements)

    async def change_columns(self, table: LiveTable, changes: Sequence[ColumnChange]) -> None:
        statements = []
        for change in changes:
            statements.extend(self.ddl.change_column(table, change.old, change.new))
        await self._execute(statements)

    async def update_primary_keys(
        self,
        table: LiveTable,
        added: Sequence[LivePrimaryKey],
        dropped: Sequence[LivePrimaryKey],
    ) -> None:
        await self._execute(self.ddl.update_primary_keys(table, dropped))

    async def drop_foreign_keys(
        self, table: LiveTable, foreign_keys: Sequence[LiveForeignKey]
    ) -> None:
        await self._execute([self.ddl.drop_foreign_key(table, fk) for fk in foreign_keys])

    async def create_foreign_keys(
        self, table: LiveTable, foreign_keys: Sequence[LiveForeignKey]
    ) -> None:
        await self._execute([self.ddl.add_foreign_key(table, fk) for fk in foreign_keys])

    async def create_index(self, table: LiveTable, index: LiveIndex) -> None:
        await self._execute([self.ddl.create_index(table, index)])

    async def drop_index(self, table: LiveTable, index: LiveIndex) -> None:
        await self._execute([self.ddl.drop_index(index)])
