"""
Live schema catalog for schemasync.

Mirrors the actual state of database tables. A snapshot is loaded once per
run and then updated in place after every successful DDL operation, so
later reconciliation phases see the current state without querying the
database again.

Also provides the name-keyed diff helpers shared by every phase.
"""

from dataclasses import dataclass, field
from operator import attrgetter
from typing import Callable, Iterable, List, Optional, Sequence, TypeVar

from .target import TargetColumn, TargetForeignKey, TargetIndex


T = TypeVar("T")
U = TypeVar("U")

by_name = attrgetter("name")


def items_only_in(
    items: Iterable[T],
    others: Iterable[U],
    key: Callable[[object], str] = by_name,
) -> List[T]:
    """Return the elements of ``items`` whose key has no match in ``others``.

    Order of ``items`` is preserved.
    """
    other_keys = {key(other) for other in others}
    return [item for item in items if key(item) not in other_keys]


def changed_items(
    db_items: Iterable[T],
    target_items: Iterable[U],
    is_equal: Callable[[T, U], bool],
    key: Callable[[object], str] = by_name,
) -> List[T]:
    """Return db elements present in ``target_items`` whose content differs.

    Elements are paired by ``key``; a pair is changed when ``is_equal``
    returns False. Elements with no counterpart are ignored.
    """
    targets = {key(target): target for target in target_items}
    changed = []
    for item in db_items:
        target = targets.get(key(item))
        if target is not None and not is_equal(item, target):
            changed.append(item)
    return changed


@dataclass
class LiveColumn:
    """Actual state of a column."""

    name: str
    type: str
    default: Optional[str] = None
    is_nullable: bool = False
    is_generated: bool = False
    is_primary: bool = False
    comment: Optional[str] = None

    @classmethod
    def from_target(cls, column: TargetColumn, normalized_type: str) -> "LiveColumn":
        """Build the column a target definition produces once applied."""
        return cls(
            name=column.name,
            type=normalized_type,
            default=column.default,
            is_nullable=column.is_nullable,
            is_generated=column.is_generated,
            is_primary=column.is_primary,
            comment=column.comment,
        )


@dataclass
class LiveForeignKey:
    """Actual state of a foreign key constraint."""

    name: str
    table_name: str
    column_names: List[str]
    referenced_table_name: str
    referenced_column_names: List[str]
    on_delete: Optional[str] = None

    @classmethod
    def from_target(cls, foreign_key: TargetForeignKey) -> "LiveForeignKey":
        return cls(
            name=foreign_key.name,
            table_name=foreign_key.table_name,
            column_names=list(foreign_key.column_names),
            referenced_table_name=foreign_key.referenced_table_name,
            referenced_column_names=list(foreign_key.referenced_column_names),
            on_delete=foreign_key.on_delete,
        )


@dataclass
class LiveIndex:
    """Actual state of an index."""

    name: str
    table_name: str
    column_names: List[str]
    is_unique: bool = False

    @classmethod
    def from_target(cls, index: TargetIndex) -> "LiveIndex":
        return cls(
            name=index.name,
            table_name=index.table_name,
            column_names=list(index.column_names),
            is_unique=index.is_unique,
        )


@dataclass
class LivePrimaryKey:
    """One column of a table's primary key constraint.

    ``name`` is the constraint name; it is empty for keys that have been
    scheduled but not read back from the database.
    """

    name: str
    column_name: str


@dataclass
class LiveTable:
    """Actual state of a table, mutated in place during a run."""

    name: str
    columns: List[LiveColumn] = field(default_factory=list)
    foreign_keys: List[LiveForeignKey] = field(default_factory=list)
    indices: List[LiveIndex] = field(default_factory=list)
    primary_keys: List[LivePrimaryKey] = field(default_factory=list)

    @property
    def primary_keys_without_generated(self) -> List[LivePrimaryKey]:
        """Primary keys whose column is not generated by the database."""
        generated = {c.name for c in self.columns if c.is_generated}
        return [pk for pk in self.primary_keys if pk.column_name not in generated]

    def column(self, name: str) -> Optional[LiveColumn]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def foreign_key(self, name: str) -> Optional[LiveForeignKey]:
        for foreign_key in self.foreign_keys:
            if foreign_key.name == name:
                return foreign_key
        return None

    def has_foreign_key(self, name: str) -> bool:
        return self.foreign_key(name) is not None

    def add_columns(self, columns: Sequence[LiveColumn]) -> None:
        self.columns.extend(columns)

    def remove_columns(self, columns: Sequence[LiveColumn]) -> None:
        names = {c.name for c in columns}
        self.columns = [c for c in self.columns if c.name not in names]

    def replace_column(self, old: LiveColumn, new: LiveColumn) -> None:
        """Swap ``old`` for ``new`` keeping the column position."""
        for position, column in enumerate(self.columns):
            if column.name == old.name:
                self.columns[position] = new
                return
        self.columns.append(new)

    def add_primary_keys(self, primary_keys: Sequence[LivePrimaryKey]) -> None:
        self.primary_keys.extend(primary_keys)

    def remove_primary_keys(self, primary_keys: Sequence[LivePrimaryKey]) -> None:
        names = {pk.column_name for pk in primary_keys}
        self.primary_keys = [
            pk for pk in self.primary_keys if pk.column_name not in names
        ]

    def remove_primary_keys_of_columns(self, columns: Sequence[LiveColumn]) -> None:
        names = {c.name for c in columns}
        self.primary_keys = [
            pk for pk in self.primary_keys if pk.column_name not in names
        ]

    def add_foreign_keys(self, foreign_keys: Sequence[LiveForeignKey]) -> None:
        self.foreign_keys.extend(foreign_keys)

    def remove_foreign_keys(self, foreign_keys: Sequence[object]) -> None:
        """Remove keys by name; accepts live or target foreign keys."""
        names = {fk.name for fk in foreign_keys}
        self.foreign_keys = [fk for fk in self.foreign_keys if fk.name not in names]

    def add_index(self, index: LiveIndex) -> None:
        self.indices.append(index)

    def remove_index(self, index: LiveIndex) -> None:
        self.indices = [i for i in self.indices if i.name != index.name]

    def remove_indices_of_columns(self, columns: Sequence[LiveColumn]) -> None:
        """Forget indices covering any of ``columns``; PostgreSQL drops them with the column."""
        names = {c.name for c in columns}
        self.indices = [i for i in self.indices if not names.intersection(i.column_names)]
