"""
Schema reconciliation package for schemasync.

This package provides:
- Target and live schema models with name-keyed diff helpers
- The abstract query executor contract
- The multi-phase schema reconciler
- Schema change records
"""

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
from .reconciler import ReconciliationResult, ReconciliationStatus, SchemaReconciler
from .target import TargetColumn, TargetForeignKey, TargetIndex, TargetTable

__all__ = [
    "LiveColumn",
    "LiveForeignKey",
    "LiveIndex",
    "LivePrimaryKey",
    "LiveTable",
    "changed_items",
    "items_only_in",
    "ColumnChange",
    "QueryExecutor",
    "ChangeType",
    "SchemaChange",
    "ReconciliationResult",
    "ReconciliationStatus",
    "SchemaReconciler",
    "TargetColumn",
    "TargetForeignKey",
    "TargetIndex",
    "TargetTable",
]
