"""
PostgreSQL DDL rendering for schemasync.

Turns live schema objects into DDL statements and maps declared column
types to the canonical names PostgreSQL reports through
``information_schema``, so declared and introspected types compare equal.
"""

import re
from typing import List, Optional, Sequence

from ..schema.catalog import LiveColumn, LiveForeignKey, LiveIndex, LivePrimaryKey, LiveTable
from ..schema.target import TargetColumn


TYPE_ALIASES = {
    "int": "integer",
    "int4": "integer",
    "integer": "integer",
    "serial": "integer",
    "smallint": "smallint",
    "int2": "smallint",
    "smallserial": "smallint",
    "bigint": "bigint",
    "int8": "bigint",
    "bigserial": "bigint",
    "varchar": "character varying",
    "character varying": "character varying",
    "string": "character varying",
    "char": "character",
    "character": "character",
    "text": "text",
    "bool": "boolean",
    "boolean": "boolean",
    "float": "double precision",
    "float8": "double precision",
    "double": "double precision",
    "double precision": "double precision",
    "real": "real",
    "float4": "real",
    "decimal": "numeric",
    "numeric": "numeric",
    "date": "date",
    "time": "time without time zone",
    "datetime": "timestamp without time zone",
    "timestamp": "timestamp without time zone",
    "timestamp without time zone": "timestamp without time zone",
    "timestamptz": "timestamp with time zone",
    "timestamp with time zone": "timestamp with time zone",
    "json": "json",
    "jsonb": "jsonb",
    "uuid": "uuid",
    "bytea": "bytea",
    "blob": "bytea",
    "bpchar": "character",
    "timetz": "time with time zone",
}

SERIAL_TYPES = {
    "smallint": "SMALLSERIAL",
    "integer": "SERIAL",
    "bigint": "BIGSERIAL",
}

GENERATED_DEFAULT_PREFIXES = ("nextval(", "gen_random_uuid(", "uuid_generate_v4(")

_DECLARED_TYPE = re.compile(
    r"^\s*(?P<base>[a-z][a-z0-9 ]*?)\s*(?:\(\s*(?P<first>\d+)\s*(?:,\s*(?P<second>\d+)\s*)?\))?\s*$"
)
_CAST = re.compile(r"::[a-z_][a-z0-9_ ]*(?:\([0-9, ]*\))?(?:\[\])?$", re.IGNORECASE)
_QUOTED_NUMBER = re.compile(r"^'(-?\d+(?:\.\d+)?)'$")


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def canonical_type(
    data_type: str,
    length: Optional[int] = None,
    precision: Optional[int] = None,
    scale: Optional[int] = None,
) -> str:
    """Build a type name the way PostgreSQL reports it."""
    data_type = data_type.lower()
    if data_type in ("character varying", "character") and length is not None:
        return f"{data_type}({length})"
    if data_type == "numeric" and precision is not None:
        return f"numeric({precision},{scale or 0})"
    return data_type


def array_type(element: str) -> str:
    """Canonical name of an array of ``element``.

    PostgreSQL reports arrays through the element's udt name only, so
    length, precision and dimensions are not part of the result.
    """
    match = _DECLARED_TYPE.match(element.lower())
    base = match.group("base") if match else element.lower()
    return TYPE_ALIASES.get(base, base) + "[]"


def normalize_type(column: TargetColumn) -> str:
    """Map a declared column type to its canonical PostgreSQL name."""
    declared = column.type.lower().strip()
    if declared.endswith("[]"):
        while declared.endswith("[]"):
            declared = declared[:-2].rstrip()
        return array_type(declared)

    match = _DECLARED_TYPE.match(declared)
    if not match:
        return declared

    base = TYPE_ALIASES.get(match.group("base"), match.group("base"))
    first = int(match.group("first")) if match.group("first") else None
    second = int(match.group("second")) if match.group("second") else None

    if base in ("character varying", "character"):
        length = column.length if column.length is not None else first
        if length is None and base == "character":
            length = 1
        return canonical_type(base, length=length)

    if base == "numeric":
        precision = column.precision if column.precision is not None else first
        scale = column.scale if column.scale is not None else second
        return canonical_type(base, precision=precision, scale=scale)

    return base


def normalize_default(value: Optional[str]) -> Optional[str]:
    """Reduce a default expression to a comparable form.

    Strips type casts, enclosing parentheses and quotes around plain
    numbers; lowercases anything that isn't a string literal.
    """
    if value is None:
        return None

    value = value.strip()
    while True:
        stripped = _CAST.sub("", value).strip()
        if stripped.startswith("(") and stripped.endswith(")") and _balanced(stripped[1:-1]):
            stripped = stripped[1:-1].strip()
        if stripped == value:
            break
        value = stripped

    number = _QUOTED_NUMBER.match(value)
    if number:
        return number.group(1)
    if value.startswith("'"):
        return value
    return value.lower()


def _balanced(text: str) -> bool:
    depth = 0
    for char in text:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def compare_default_values(target_default: Optional[str], live_default: Optional[str]) -> bool:
    return normalize_default(target_default) == normalize_default(live_default)


def is_generated_default(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower().startswith(GENERATED_DEFAULT_PREFIXES)


class PostgresDDL:
    """Renders DDL statements for tables of one PostgreSQL schema."""

    def __init__(self, schema: str = "public"):
        self.schema = schema

    def qualified(self, name: str) -> str:
        return f"{quote_identifier(self.schema)}.{quote_identifier(name)}"

    def sequence_name(self, table: LiveTable, column: LiveColumn) -> str:
        return f"{table.name}_{column.name}_seq"

    def column_definition(self, column: LiveColumn) -> str:
        parts = [quote_identifier(column.name)]

        if column.is_generated and column.type in SERIAL_TYPES:
            parts.append(SERIAL_TYPES[column.type])
        else:
            parts.append(column.type)

        if column.is_generated and column.is_primary:
            parts.append("PRIMARY KEY")
        if not column.is_nullable:
            parts.append("NOT NULL")

        if column.is_generated and column.type == "uuid":
            parts.append("DEFAULT gen_random_uuid()")
        elif column.default is not None and not column.is_generated:
            parts.append(f"DEFAULT {column.default}")

        return " ".join(parts)

    def comment_on_column(self, table: LiveTable, column: LiveColumn) -> str:
        comment = quote_literal(column.comment) if column.comment is not None else "NULL"
        return (
            f"COMMENT ON COLUMN {self.qualified(table.name)}."
            f"{quote_identifier(column.name)} IS {comment}"
        )

    def create_table(self, table: LiveTable) -> List[str]:
        definitions = ", ".join(self.column_definition(c) for c in table.columns)
        statements = [f"CREATE TABLE {self.qualified(table.name)} ({definitions})"]
        statements.extend(
            self.comment_on_column(table, c) for c in table.columns if c.comment is not None
        )
        return statements

    def add_column(self, table: LiveTable, column: LiveColumn) -> List[str]:
        statements = [
            f"ALTER TABLE {self.qualified(table.name)} ADD COLUMN {self.column_definition(column)}"
        ]
        if column.comment is not None:
            statements.append(self.comment_on_column(table, column))
        return statements

    def drop_column(self, table: LiveTable, column: LiveColumn) -> str:
        return (
            f"ALTER TABLE {self.qualified(table.name)} "
            f"DROP COLUMN {quote_identifier(column.name)}"
        )

    def change_column(self, table: LiveTable, old: LiveColumn, new: LiveColumn) -> List[str]:
        """Render the ALTER statements turning ``old`` into ``new``."""
        alter = (
            f"ALTER TABLE {self.qualified(table.name)} "
            f"ALTER COLUMN {quote_identifier(new.name)}"
        )
        statements = []

        if old.is_generated and not new.is_generated:
            statements.append(f"{alter} DROP DEFAULT")

        if old.type != new.type:
            statements.append(
                f"{alter} TYPE {new.type} USING {quote_identifier(new.name)}::{new.type}"
            )

        if old.is_nullable != new.is_nullable:
            statements.append(f"{alter} {'DROP' if new.is_nullable else 'SET'} NOT NULL")

        if new.is_generated and not old.is_generated:
            if new.type == "uuid":
                statements.append(f"{alter} SET DEFAULT gen_random_uuid()")
            else:
                sequence = self.qualified(self.sequence_name(table, new))
                statements.append(
                    f"CREATE SEQUENCE IF NOT EXISTS {sequence} OWNED BY "
                    f"{self.qualified(table.name)}.{quote_identifier(new.name)}"
                )
                statements.append(f"{alter} SET DEFAULT nextval({quote_literal(sequence)})")
        elif not new.is_generated and (
            old.is_generated or not compare_default_values(new.default, old.default)
        ):
            if new.default is None:
                if old.default is not None and not old.is_generated:
                    statements.append(f"{alter} DROP DEFAULT")
            else:
                statements.append(f"{alter} SET DEFAULT {new.default}")

        if old.comment != new.comment:
            statements.append(self.comment_on_column(table, new))

        return statements

    def update_primary_keys(
        self, table: LiveTable, dropped: Sequence[LivePrimaryKey] = ()
    ) -> List[str]:
        """Rebuild the primary key constraint over ``table.primary_keys``."""
        names = [pk.name for pk in list(table.primary_keys) + list(dropped) if pk.name]
        constraint = names[0] if names else f"{table.name}_pkey"

        statements = [
            f"ALTER TABLE {self.qualified(table.name)} "
            f"DROP CONSTRAINT IF EXISTS {quote_identifier(constraint)}"
        ]
        if table.primary_keys:
            columns = ", ".join(quote_identifier(pk.column_name) for pk in table.primary_keys)
            statements.append(
                f"ALTER TABLE {self.qualified(table.name)} "
                f"ADD CONSTRAINT {quote_identifier(constraint)} PRIMARY KEY ({columns})"
            )
        return statements

    def add_foreign_key(self, table: LiveTable, foreign_key: LiveForeignKey) -> str:
        columns = ", ".join(quote_identifier(c) for c in foreign_key.column_names)
        referenced = ", ".join(quote_identifier(c) for c in foreign_key.referenced_column_names)
        sql = (
            f"ALTER TABLE {self.qualified(table.name)} "
            f"ADD CONSTRAINT {quote_identifier(foreign_key.name)} "
            f"FOREIGN KEY ({columns}) "
            f"REFERENCES {self.qualified(foreign_key.referenced_table_name)} ({referenced})"
        )
        if foreign_key.on_delete:
            sql += f" ON DELETE {foreign_key.on_delete}"
        return sql

    def drop_foreign_key(self, table: LiveTable, foreign_key: LiveForeignKey) -> str:
        return (
            f"ALTER TABLE {self.qualified(table.name)} "
            f"DROP CONSTRAINT {quote_identifier(foreign_key.name)}"
        )

    def create_index(self, table: LiveTable, index: LiveIndex) -> str:
        columns = ", ".join(quote_identifier(c) for c in index.column_names)
        unique = "UNIQUE " if index.is_unique else ""
        return (
            f"CREATE {unique}INDEX {quote_identifier(index.name)} "
            f"ON {self.qualified(table.name)} ({columns})"
        )

    def drop_index(self, index: LiveIndex) -> str:
        return f"DROP INDEX {self.qualified(index.name)}"
