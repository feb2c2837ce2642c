"""
Target schema model for schemasync.

Target objects describe the desired end state of each table. They are
built once (from entity declarations or a YAML file) with every name
already final, and are never mutated during a run.
"""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class TargetColumn:
    """Desired definition of a column."""

    name: str
    type: str
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    is_nullable: bool = False
    is_primary: bool = False
    is_generated: bool = False
    default: Optional[str] = None
    comment: Optional[str] = None


@dataclass(frozen=True)
class TargetForeignKey:
    """Desired foreign key owned by ``table_name``."""

    name: str
    table_name: str
    column_names: List[str]
    referenced_table_name: str
    referenced_column_names: List[str]
    on_delete: Optional[str] = None

    def references_column(self, table_name: str, column_name: str) -> bool:
        """Check whether this key depends on ``table_name.column_name``.

        A key depends on a column when it owns it as a local column, or
        when it points at it as a referenced column.
        """
        if self.table_name == table_name and column_name in self.column_names:
            return True
        if (
            self.referenced_table_name == table_name
            and column_name in self.referenced_column_names
        ):
            return True
        return False


@dataclass(frozen=True)
class TargetIndex:
    """Desired index on ``table_name``."""

    name: str
    table_name: str
    column_names: List[str]
    is_unique: bool = False


@dataclass(frozen=True)
class TargetTable:
    """Desired definition of one table."""

    name: str
    columns: List[TargetColumn] = field(default_factory=list)
    foreign_keys: List[TargetForeignKey] = field(default_factory=list)
    indices: List[TargetIndex] = field(default_factory=list)

    @property
    def primary_columns(self) -> List[TargetColumn]:
        """Primary columns that are managed through primary key updates."""
        return [c for c in self.columns if c.is_primary and not c.is_generated]

    @property
    def generated_columns(self) -> List[TargetColumn]:
        return [c for c in self.columns if c.is_generated]

    def column(self, name: str) -> Optional[TargetColumn]:
        """Get a column by name."""
        for column in self.columns:
            if column.name == name:
                return column
        return None
