"""
Database connection management for schemasync.

Wraps an asyncpg pool. A sync run keeps one connection checked out for
its whole transaction, so next to the scoped ``acquire()`` the pool hands
out connections explicitly through ``acquire_connection()`` and takes
them back with ``release_connection()``.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg
from pydantic import BaseModel, Field, field_validator

from ..exceptions import DatabaseConnectionError


logger = logging.getLogger(__name__)


class ConnectionConfig(BaseModel):
    """asyncpg pool settings."""

    host: str = Field(..., description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field(..., description="Database name")
    user: str = Field(..., description="Database user")
    password: str = Field("", description="Database password")

    min_size: int = Field(1, description="Connections opened up front")
    max_size: int = Field(1, description="Upper bound of open connections")

    command_timeout: float = Field(60.0, description="Statement timeout in seconds")
    ssl_mode: Optional[str] = Field(None, description="Value passed to asyncpg as ssl")
    application_name: str = Field("schemasync", description="Reported in pg_stat_activity")

    @field_validator("database")
    @classmethod
    def database_not_blank(cls, v):
        if not v.strip():
            raise ValueError("Database name is required")
        return v

    def to_connection_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``asyncpg.create_pool``."""
        kwargs: Dict[str, Any] = dict(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            command_timeout=self.command_timeout,
            server_settings={"application_name": self.application_name},
            min_size=self.min_size,
            max_size=self.max_size,
        )
        if self.ssl_mode:
            kwargs["ssl"] = self.ssl_mode
        return kwargs

    @property
    def target(self) -> str:
        return f"{self.user}@{self.host}:{self.port}/{self.database}"


class ConnectionPool:
    """Lazily created asyncpg pool; usable as ``async with``."""

    def __init__(self, config: ConnectionConfig):
        self.config = config
        self._pool: Optional[asyncpg.Pool] = None
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._pool is not None

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise DatabaseConnectionError("Pool is not connected")
        return self._pool

    async def initialize(self) -> None:
        """Open the pool; a second call is a no-op."""
        async with self._lock:
            if self._pool is not None:
                return

            logger.info(f"Connecting to {self.config.target}")
            try:
                self._pool = await asyncpg.create_pool(**self.config.to_connection_kwargs())
            except Exception as e:
                logger.error(f"Could not connect to {self.config.target}: {e}")
                raise DatabaseConnectionError(
                    f"Failed to initialize connection pool: {e}", cause=e
                ) from e

    async def close(self) -> None:
        async with self._lock:
            pool, self._pool = self._pool, None
            if pool is not None:
                logger.info(f"Closing connections to {self.config.target}")
                await pool.close()

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """Borrow a connection for the duration of a block."""
        pool = self._require_pool()
        async with pool.acquire() as connection:
            yield connection

    async def acquire_connection(self) -> asyncpg.Connection:
        """Borrow a connection until ``release_connection`` is called."""
        pool = self._require_pool()
        try:
            return await pool.acquire()
        except Exception as e:
            logger.error(f"Could not acquire a connection: {e}")
            raise DatabaseConnectionError(f"Failed to acquire connection: {e}", cause=e) from e

    async def release_connection(self, connection: asyncpg.Connection) -> None:
        if self._pool is not None:
            await self._pool.release(connection)

    async def fetch(self, query: str, *args) -> List[asyncpg.Record]:
        """Run a query on a borrowed connection and return all rows."""
        async with self.acquire() as connection:
            return await connection.fetch(query, *args)

    async def __aenter__(self) -> "ConnectionPool":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
