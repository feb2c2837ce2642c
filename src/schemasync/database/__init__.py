"""
Database integration package for schemasync.

This package provides:
- Async PostgreSQL connection pooling
- Live schema introspection into table snapshots
- PostgreSQL DDL rendering and type normalization
- The PostgreSQL query executor used by the reconciler
"""

from .connection import ConnectionConfig, ConnectionPool
from .ddl import PostgresDDL
from .executor import PostgresQueryExecutor
from .introspection import SchemaIntrospector

__all__ = [
    "ConnectionConfig",
    "ConnectionPool",
    "PostgresDDL",
    "PostgresQueryExecutor",
    "SchemaIntrospector",
]
