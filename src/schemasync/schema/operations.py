"""
Schema change records for schemasync.

Every mutating executor call made during a reconciliation run is recorded
as a ``SchemaChange`` so callers can report what a run applied (or, in a
dry run, would apply).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class ChangeType(str, Enum):
    """Types of schema changes."""

    CREATE_TABLE = "create_table"
    DROP_COLUMNS = "drop_columns"
    ADD_COLUMNS = "add_columns"
    CHANGE_COLUMNS = "change_columns"
    UPDATE_PRIMARY_KEYS = "update_primary_keys"
    DROP_FOREIGN_KEYS = "drop_foreign_keys"
    CREATE_FOREIGN_KEYS = "create_foreign_keys"
    CREATE_INDEX = "create_index"
    DROP_INDEX = "drop_index"


DESTRUCTIVE_CHANGES = frozenset({ChangeType.DROP_COLUMNS, ChangeType.CHANGE_COLUMNS})


@dataclass
class SchemaChange:
    """Represents one schema change operation."""

    change_type: ChangeType
    table: str
    description: str
    target_objects: List[str] = field(default_factory=list)

    @property
    def is_destructive(self) -> bool:
        """Check if this change can lose data."""
        return self.change_type in DESTRUCTIVE_CHANGES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "change_type": self.change_type.value,
            "table": self.table,
            "description": self.description,
            "target_objects": list(self.target_objects),
        }
