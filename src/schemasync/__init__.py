"""
schemasync: Declarative PostgreSQL schema synchronization.

schemasync converges a live PostgreSQL schema to a declared target schema
(tables, columns, primary keys, foreign keys and indices) in a single
transaction.
"""

__version__ = "0.1.0"
__author__ = "schemasync Contributors"

from .config import SchemaSyncConfig
from .exceptions import (
    ConfigurationError,
    DatabaseError,
    ExecutorError,
    SchemaSyncError,
    TransactionError,
)
from .schema import ReconciliationResult, SchemaReconciler

__all__ = [
    "__version__",
    "SchemaSyncConfig",
    "SchemaSyncError",
    "ConfigurationError",
    "DatabaseError",
    "ExecutorError",
    "TransactionError",
    "ReconciliationResult",
    "SchemaReconciler",
]
