"""
Read-only PostgreSQL access to the advisor CRM database.

The compliance engine never writes to the CRM, so every pooled
connection is opened with ``default_transaction_read_only`` set and
tagged with an application name that shows up in ``pg_stat_activity``.
"""

import logging
from typing import Any

import asyncpg

from src.config.settings import get_settings

logger = logging.getLogger(__name__)

APPLICATION_NAME = "compliance-engine"


class Database:
    """
    Pooled, read-only connection to the CRM database.

    Usage:
        db = Database()
        await db.connect()
        rows = await db.fetch("SELECT id FROM households WHERE advisor_id = $1", 7)
        await db.close()
    """

    def __init__(
        self,
        database_url: str | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
        command_timeout: float | None = None,
    ):
        """
        Args:
            database_url: PostgreSQL connection URL (default from settings)
            min_size: Minimum pool size
            max_size: Maximum pool size
            command_timeout: Per-statement timeout in seconds
        """
        settings = get_settings()

        self._dsn = database_url or str(settings.database_url)
        self._pool_bounds = (
            min_size or settings.db_pool_min_size,
            max_size or settings.db_pool_max_size,
        )
        self._command_timeout = command_timeout or settings.db_command_timeout
        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        """Open the pool. Connection failures propagate to the caller."""
        if self._pool is not None:
            return

        min_size, max_size = self._pool_bounds
        self._pool = await asyncpg.create_pool(
            self._dsn,
            min_size=min_size,
            max_size=max_size,
            command_timeout=self._command_timeout,
            server_settings={
                "application_name": APPLICATION_NAME,
                "default_transaction_read_only": "on",
            },
        )
        logger.info("CRM database pool open (%d-%d connections, read-only)", min_size, max_size)

    async def close(self) -> None:
        if self._pool is None:
            return
        await self._pool.close()
        self._pool = None
        logger.info("CRM database pool closed")

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        """Run a query and return every row."""
        return await self._require_pool().fetch(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        """Run a query and return the first column of the first row."""
        return await self._require_pool().fetchval(query, *args)

    async def health_check(self) -> bool:
        """True if the CRM answers a trivial query."""
        try:
            return await self.fetchval("SELECT 1") == 1
        except (OSError, RuntimeError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.warning("CRM health check failed: %s", e)
            return False
