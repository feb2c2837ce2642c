"""
Errors raised by schemasync.

Everything derives from ``SchemaSyncError`` so callers and the CLI can catch
a single type. Database-side failures live under ``DatabaseError``.
"""

from typing import Any, Dict, Optional


class SchemaSyncError(Exception):
    """Root of the schemasync error tree.

    Args:
        message: Human readable description
        details: Extra context rendered as ``key=value`` pairs
        cause: Lower level exception that triggered this one
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details) if details else {}
        self.cause = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.details:
            parts.append("[" + ", ".join(f"{key}={value}" for key, value in self.details.items()) + "]")
        if self.cause is not None:
            parts.append(f"(caused by: {self.cause})")
        return " ".join(parts)


class ConfigurationError(SchemaSyncError):
    """Invalid or unreadable configuration file, or an inconsistent target schema."""


class DatabaseError(SchemaSyncError):
    """Anything that went wrong talking to PostgreSQL."""


class DatabaseConnectionError(DatabaseError):
    """The pool could not be opened or a connection could not be checked out."""


class SchemaError(DatabaseError):
    """A reconciliation step failed against the live schema."""


class ExecutorError(SchemaError):
    """A DDL statement or a snapshot query failed.

    ``statement`` is the SQL that was running, when there was one.
    """

    def __init__(
        self,
        message: str,
        statement: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, details=details, cause=cause)
        self.statement = statement


class TransactionError(SchemaError):
    """Begin, commit or rollback failed.

    When a rollback fails after an earlier error, ``cause`` holds that
    earlier error and ``__cause__`` the rollback failure.
    """
