"""
Database schema introspection for schemasync.

Loads the live state of tables (columns, primary keys, foreign keys and
indices) from PostgreSQL catalogs into ``LiveTable`` snapshots.
"""

import logging
from typing import Any, Dict, List, Sequence

from .ddl import array_type, canonical_type, is_generated_default
from ..exceptions import ExecutorError
from ..schema.catalog import LiveColumn, LiveForeignKey, LiveIndex, LivePrimaryKey, LiveTable


logger = logging.getLogger(__name__)


COLUMNS_QUERY = """
    SELECT
        c.table_name,
        c.column_name,
        c.data_type,
        c.udt_name,
        c.is_nullable,
        c.column_default,
        c.character_maximum_length,
        c.numeric_precision,
        c.numeric_scale,
        c.ordinal_position,
        col_description(
            format('%I.%I', c.table_schema, c.table_name)::regclass,
            c.ordinal_position::int
        ) AS column_comment
    FROM information_schema.columns c
    WHERE c.table_schema = $1 AND c.table_name = ANY($2::text[])
    ORDER BY c.table_name, c.ordinal_position
"""

CONSTRAINTS_QUERY = """
    SELECT
        con.conname AS constraint_name,
        con.contype::text AS constraint_type,
        tbl.relname AS table_name,
        ref.relname AS referenced_table_name,
        ARRAY(
            SELECT a.attname
            FROM unnest(con.conkey) WITH ORDINALITY AS k(attnum, ord)
            JOIN pg_attribute a ON a.attrelid = con.conrelid AND a.attnum = k.attnum
            ORDER BY k.ord
        ) AS column_names,
        ARRAY(
            SELECT a.attname
            FROM unnest(con.confkey) WITH ORDINALITY AS k(attnum, ord)
            JOIN pg_attribute a ON a.attrelid = con.confrelid AND a.attnum = k.attnum
            ORDER BY k.ord
        ) AS referenced_column_names,
        con.confdeltype::text AS on_delete
    FROM pg_constraint con
    JOIN pg_class tbl ON tbl.oid = con.conrelid
    JOIN pg_namespace ns ON ns.oid = tbl.relnamespace
    LEFT JOIN pg_class ref ON ref.oid = con.confrelid
    WHERE ns.nspname = $1
    AND tbl.relname = ANY($2::text[])
    AND con.contype IN ('p', 'f')
    ORDER BY tbl.relname, con.conname
"""

INDEXES_QUERY = """
    SELECT
        tbl.relname AS table_name,
        idx.relname AS index_name,
        ix.indisunique AS is_unique,
        ARRAY(
            SELECT a.attname
            FROM unnest(ix.indkey) WITH ORDINALITY AS k(attnum, ord)
            JOIN pg_attribute a ON a.attrelid = ix.indrelid AND a.attnum = k.attnum
            ORDER BY k.ord
        ) AS column_names
    FROM pg_index ix
    JOIN pg_class idx ON idx.oid = ix.indexrelid
    JOIN pg_class tbl ON tbl.oid = ix.indrelid
    JOIN pg_namespace ns ON ns.oid = tbl.relnamespace
    WHERE ns.nspname = $1
    AND tbl.relname = ANY($2::text[])
    AND NOT ix.indisprimary
    AND NOT EXISTS (
        SELECT 1 FROM pg_constraint con WHERE con.conindid = ix.indexrelid
    )
    ORDER BY tbl.relname, idx.relname
"""

TABLES_QUERY = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = $1
    AND table_type = 'BASE TABLE'
    AND table_name = ANY($2::text[])
    ORDER BY table_name
"""

ON_DELETE_ACTIONS = {
    "c": "CASCADE",
    "n": "SET NULL",
    "d": "SET DEFAULT",
    "r": "RESTRICT",
    "a": None,  # NO ACTION is the default
}


class SchemaIntrospector:
    """
    Loads live table snapshots from PostgreSQL catalogs.

    ``source`` is anything with an asyncpg-style ``fetch(query, *args)``:
    a ``ConnectionPool`` or a single ``asyncpg.Connection``.
    """

    def __init__(self, source: Any, schema: str = "public"):
        self.source = source
        self.schema = schema

    async def load_tables(self, table_names: Sequence[str]) -> List[LiveTable]:
        """Load the named tables; tables that don't exist are left out."""
        names = list(table_names)
        if not names:
            return []

        try:
            table_rows = await self.source.fetch(TABLES_QUERY, self.schema, names)
            column_rows = await self.source.fetch(COLUMNS_QUERY, self.schema, names)
            constraint_rows = await self.source.fetch(CONSTRAINTS_QUERY, self.schema, names)
            index_rows = await self.source.fetch(INDEXES_QUERY, self.schema, names)
        except Exception as e:
            logger.error(f"Error loading schema of {self.schema} tables {names}: {e}")
            raise ExecutorError(f"Failed to load table schemas: {e}", cause=e) from e

        tables: Dict[str, LiveTable] = {
            row["table_name"]: LiveTable(name=row["table_name"]) for row in table_rows
        }

        for row in column_rows:
            table = tables.get(row["table_name"])
            if table is not None:
                table.columns.append(self._build_column(row))

        for row in constraint_rows:
            table = tables.get(row["table_name"])
            if table is None:
                continue

            if row["constraint_type"] == "p":
                for column_name in row["column_names"]:
                    table.primary_keys.append(
                        LivePrimaryKey(name=row["constraint_name"], column_name=column_name)
                    )
            else:
                table.foreign_keys.append(
                    LiveForeignKey(
                        name=row["constraint_name"],
                        table_name=table.name,
                        column_names=list(row["column_names"]),
                        referenced_table_name=row["referenced_table_name"],
                        referenced_column_names=list(row["referenced_column_names"]),
                        on_delete=ON_DELETE_ACTIONS.get(row["on_delete"]),
                    )
                )

        for row in index_rows:
            table = tables.get(row["table_name"])
            if table is not None:
                table.indices.append(
                    LiveIndex(
                        name=row["index_name"],
                        table_name=table.name,
                        column_names=list(row["column_names"]),
                        is_unique=row["is_unique"],
                    )
                )

        for table in tables.values():
            primary = {pk.column_name for pk in table.primary_keys}
            for column in table.columns:
                column.is_primary = column.name in primary

        logger.debug(f"Loaded {len(tables)} of {len(names)} tables from schema {self.schema}")
        return [tables[name] for name in names if name in tables]

    @staticmethod
    def _build_column(row: Any) -> LiveColumn:
        data_type = row["data_type"]
        if data_type == "ARRAY":
            column_type = array_type(row["udt_name"].lstrip("_"))
        else:
            if data_type == "USER-DEFINED":
                data_type = row["udt_name"]
            column_type = canonical_type(
                data_type,
                length=row["character_maximum_length"],
                precision=row["numeric_precision"],
                scale=row["numeric_scale"],
            )

        default = row["column_default"]
        is_generated = is_generated_default(default)

        return LiveColumn(
            name=row["column_name"],
            type=column_type,
            default=default,
            is_nullable=row["is_nullable"] == "YES",
            is_generated=is_generated,
            comment=row["column_comment"],
        )
