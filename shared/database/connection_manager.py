"""
Database Connection Manager for PinDrop.

Provides PostgreSQL connection management with async support, health
monitoring, automatic reconnection, transaction management and the
bucket/file schema bootstrap.
"""

import asyncio
import asyncpg
import functools
import logging
from contextlib import asynccontextmanager
from typing import Optional, AsyncGenerator
from datetime import datetime, timezone

from shared.config.config_manager import ConfigManager
from shared.services.errors import BackendUnavailableError

# Configure logging
logger = logging.getLogger(__name__)


class DatabaseConnectionError(Exception):
    """Raised when database connection operations fail."""
    pass


def translate_backend_errors(func):
    """Turn driver/connection failures of a CRUD coroutine into BackendUnavailableError."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except (
            asyncpg.PostgresError,
            asyncpg.InterfaceError,
            DatabaseConnectionError,
            OSError,
            asyncio.TimeoutError
        ) as e:
            logger.error(f"{func.__qualname__} failed: {e}")
            raise BackendUnavailableError("Document store is unavailable", cause=e)
    return wrapper


SCHEMA_SQL = """
CREATE EXTENSION IF NOT EXISTS pgcrypto;

CREATE TABLE IF NOT EXISTS buckets (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name VARCHAR(255) NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    owner_id VARCHAR(255) NOT NULL,
    owner_email VARCHAR(255),
    owner_name VARCHAR(255),
    collaborators TEXT[] NOT NULL DEFAULT '{}',
    pin_code VARCHAR(32),
    encrypted_pin TEXT,
    hashed_pin TEXT,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    file_count INTEGER NOT NULL DEFAULT 0 CHECK (file_count >= 0),
    storage_used BIGINT NOT NULL DEFAULT 0 CHECK (storage_used >= 0),
    preview VARCHAR(64) NOT NULL DEFAULT 'folder',
    color VARCHAR(128) NOT NULL DEFAULT 'from-blue-500 to-cyan-500',
    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    deleted_at TIMESTAMPTZ,
    deleted_reason VARCHAR(64),
    CONSTRAINT buckets_single_credential CHECK (
        (pin_code IS NOT NULL AND encrypted_pin IS NULL AND hashed_pin IS NULL)
        OR (pin_code IS NULL AND encrypted_pin IS NOT NULL AND hashed_pin IS NOT NULL)
    )
);

CREATE TABLE IF NOT EXISTS files (
    id UUID PRIMARY KEY,
    bucket_id UUID NOT NULL REFERENCES buckets(id) ON DELETE CASCADE,
    name VARCHAR(255) NOT NULL,
    original_name VARCHAR(255) NOT NULL,
    size BIGINT NOT NULL CHECK (size >= 0),
    mime_type VARCHAR(255) NOT NULL DEFAULT 'application/octet-stream',
    uploaded_by VARCHAR(255),
    storage_path TEXT NOT NULL,
    download_url TEXT NOT NULL DEFAULT '',
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    download_count INTEGER NOT NULL DEFAULT 0,
    last_downloaded_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    deleted_at TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_buckets_active_created ON buckets(is_active, created_at);
CREATE INDEX IF NOT EXISTS idx_buckets_active_updated ON buckets(is_active, updated_at);
CREATE INDEX IF NOT EXISTS idx_buckets_owner ON buckets(owner_id);
CREATE INDEX IF NOT EXISTS idx_buckets_pin_code ON buckets(pin_code) WHERE pin_code IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_buckets_hashed_pin ON buckets(hashed_pin) WHERE hashed_pin IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_buckets_collaborators ON buckets USING GIN (collaborators);
CREATE INDEX IF NOT EXISTS idx_files_bucket ON files(bucket_id, is_active);
"""


class DatabaseConnectionManager:
    """
    Manages PostgreSQL database connections with async support.

    Features:
    - Async database connections using asyncpg
    - Health check functionality
    - Automatic reconnection with exponential backoff
    - Transaction management with isolation levels
    """

    def __init__(
        self,
        config_manager: ConfigManager
    ):
        """
        Initialize DatabaseConnectionManager.

        Args:
            config_manager: Configuration manager for database settings
        """
        self.config = config_manager

        self._connection: Optional[asyncpg.Connection] = None
        # Held for the whole acquire/transaction scope: asyncpg runs one
        # operation per connection, and nested acquire() is not supported
        self._lock = asyncio.Lock()

        # Reconnection settings
        self.max_reconnect_attempts: int = 5
        self.reconnect_backoff_base: float = 1.0
        self.reconnect_backoff_max: float = 60.0

        self._last_health_check: Optional[datetime] = None

    def get_connection_string(self) -> str:
        """Get the PostgreSQL connection string."""
        return self.config.get_database_url()

    async def connect(self, timeout: Optional[int] = None) -> asyncpg.Connection:
        """
        Establish a single database connection.

        Args:
            timeout: Connection timeout in seconds

        Returns:
            Database connection

        Raises:
            DatabaseConnectionError: If connection fails
        """
        connection_string = self.get_connection_string()

        try:
            self._connection = await asyncpg.connect(
                connection_string,
                timeout=timeout or 60
            )
            logger.info("Database connection established")
            return self._connection

        except asyncpg.InvalidPasswordError as e:
            raise DatabaseConnectionError(f"Invalid password: {e}")
        except asyncpg.InvalidCatalogNameError as e:
            raise DatabaseConnectionError(f"Database does not exist: {e}")
        except asyncpg.PostgresError as e:
            raise DatabaseConnectionError(f"PostgreSQL connection error: {e}")
        except asyncio.TimeoutError as e:
            raise DatabaseConnectionError(f"Connection timeout: {e}")
        except OSError as e:
            raise DatabaseConnectionError(f"Cannot connect to host: {e}")

    @asynccontextmanager
    async def acquire(self, timeout: Optional[float] = None) -> AsyncGenerator[asyncpg.Connection, None]:
        """
        Acquire the shared database connection, reconnecting if it was closed.

        Callers get the connection one at a time; a transaction keeps it
        until the transaction ends.

        Args:
            timeout: Connection timeout in seconds

        Yields:
            Database connection

        Raises:
            DatabaseConnectionError: If connection acquisition fails
        """
        async with self._lock:
            if not self._connection or self._connection.is_closed():
                await self.connect(timeout=timeout)
            yield self._connection

    async def close(self):
        """Close database connections and cleanup resources."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    async def health_check(self) -> bool:
        """
        Perform database health check.

        Returns:
            True if database is healthy, False otherwise
        """
        try:
            async with self.acquire() as conn:
                result = await conn.fetchval('SELECT 1')
                is_healthy = result == 1

            self._last_health_check = datetime.now(timezone.utc)
            if is_healthy:
                logger.debug("Database health check passed")
            else:
                logger.warning("Database health check failed - unexpected result")

            return is_healthy

        except (DatabaseConnectionError, asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error(f"Database health check failed: {e}")
            return False

    async def connect_with_retry(self) -> asyncpg.Connection:
        """
        Connect to database with automatic retry and exponential backoff.

        Returns:
            Database connection

        Raises:
            DatabaseConnectionError: If max retries exceeded
        """
        last_exception = None

        for attempt in range(self.max_reconnect_attempts):
            try:
                return await self.connect()
            except DatabaseConnectionError as e:
                last_exception = e
                if attempt < self.max_reconnect_attempts - 1:
                    delay = min(
                        self.reconnect_backoff_base * (2 ** attempt),
                        self.reconnect_backoff_max
                    )
                    logger.warning(
                        f"Connection attempt {attempt + 1} failed, retrying in {delay}s: {e}"
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"Max reconnection attempts ({self.max_reconnect_attempts}) exceeded")

        raise DatabaseConnectionError(
            f"Max reconnection attempts ({self.max_reconnect_attempts}) exceeded. "
            f"Last error: {last_exception}"
        )

    @asynccontextmanager
    async def transaction(
        self,
        isolation: Optional[str] = None,
        readonly: bool = False,
        deferrable: bool = False
    ) -> AsyncGenerator[asyncpg.Connection, None]:
        """
        Database transaction context manager.

        Args:
            isolation: Transaction isolation level
            readonly: Whether transaction is read-only
            deferrable: Whether transaction is deferrable

        Yields:
            Database connection within transaction
        """
        async with self.acquire() as conn:
            async with conn.transaction(
                isolation=isolation,
                readonly=readonly,
                deferrable=deferrable
            ):
                yield conn

    async def initialize_schema(self):
        """Create the bucket and file tables if they do not exist yet."""
        async with self.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Database schema initialized")
