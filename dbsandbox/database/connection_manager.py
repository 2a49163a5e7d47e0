"""
Database connection establishment for provisioned environments.

Builds a DSN from the database container's published address and opens a
live asyncpg connection, probing it with SELECT 1 and retrying with
exponential backoff.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional
from urllib.parse import quote

import asyncpg

from ..config.config_manager import EscalationPolicy, ProvisionConfig
from ..containers.models import ContainerHandle
from ..errors import ConnectionFailure, RetryExhaustedError
from ..retry import retry_async

RecreateCallback = Callable[[], Awaitable[ContainerHandle]]


class ConnectionHandle:
    """
    A live connection handed to the caller of provision().

    Once closed, every operation raises ConnectionFailure instead of an
    asyncpg specific error.
    """

    def __init__(self, dsn: str, connection: asyncpg.Connection):
        self.dsn = dsn
        self._connection: Optional[asyncpg.Connection] = connection
        self._closed = False

    @property
    def connection(self) -> asyncpg.Connection:
        """The underlying asyncpg connection."""
        if self._closed or self._connection is None:
            raise ConnectionFailure("Connection has been closed")
        return self._connection

    @property
    def is_alive(self) -> bool:
        return not self._closed and self._connection is not None and not self._connection.is_closed()

    async def execute(self, query: str, *args, timeout: Optional[float] = None) -> str:
        return await self._call("execute", query, *args, timeout=timeout)

    async def fetch(self, query: str, *args, timeout: Optional[float] = None) -> List[asyncpg.Record]:
        return await self._call("fetch", query, *args, timeout=timeout)

    async def fetchrow(self, query: str, *args, timeout: Optional[float] = None) -> Optional[asyncpg.Record]:
        return await self._call("fetchrow", query, *args, timeout=timeout)

    async def fetchval(self, query: str, *args, timeout: Optional[float] = None) -> Any:
        return await self._call("fetchval", query, *args, timeout=timeout)

    async def ping(self, timeout: Optional[float] = None) -> bool:
        """
        Liveness probe.

        Raises:
            ConnectionFailure: If the connection is closed or the probe fails
        """
        result = await self.fetchval("SELECT 1", timeout=timeout)
        if result != 1:
            raise ConnectionFailure(f"Liveness probe returned {result!r}")
        return True

    async def close(self):
        """Close the connection. Closing twice is a no-op."""
        if self._closed:
            return
        self._closed = True
        connection, self._connection = self._connection, None
        if connection is not None and not connection.is_closed():
            await connection.close()

    async def _call(self, method: str, query: str, *args, timeout: Optional[float] = None):
        connection = self.connection
        try:
            return await getattr(connection, method)(query, *args, timeout=timeout)
        except (asyncpg.exceptions.ConnectionDoesNotExistError, asyncpg.exceptions.InterfaceError) as e:
            raise ConnectionFailure(f"Connection is no longer usable: {e}") from e

    def __repr__(self) -> str:
        return f"<ConnectionHandle alive={self.is_alive}>"


class ConnectionEstablisher:
    """
    Opens the connection returned by provision().

    Features:
    - DSN built from the database container's host and mapped port
    - Liveness probe after every connect
    - Exponential backoff via the shared retry utility
    - Optional escalation that recreates the database once
    """

    def __init__(self, config: ProvisionConfig, logger: Optional[logging.Logger] = None):
        """
        Initialize ConnectionEstablisher.

        Args:
            config: Provisioning configuration (credentials, timeouts,
                connection retry policy and escalation policy)
            logger: Logger for attempt and escalation messages
        """
        self.config = config
        self.logger = logger if logger is not None else logging.getLogger(__name__)

    def build_dsn(self, database: ContainerHandle) -> str:
        """Build the PostgreSQL DSN for the externally reachable database address."""
        config = self.config
        if not database.host:
            raise ConnectionFailure(f"Database container {database.name} has no reachable host")
        try:
            port = database.mapped_port(config.database_port)
        except KeyError as e:
            raise ConnectionFailure(str(e)) from e

        user = quote(config.database_user, safe="")
        password = quote(config.database_password, safe="")
        return f"postgresql://{user}:{password}@{database.host}:{port}/{config.database_name}"

    async def connect(self, dsn: str) -> ConnectionHandle:
        """
        Open one connection and probe it.

        Raises:
            ConnectionFailure: If connecting or the liveness probe fails
        """
        try:
            connection = await asyncpg.connect(dsn, timeout=self.config.connect_timeout)
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise ConnectionFailure(f"PostgreSQL connection error: {e}") from e
        except asyncio.TimeoutError as e:
            raise ConnectionFailure(f"Connection timeout: {e}") from e
        except OSError as e:
            raise ConnectionFailure(f"Cannot connect to host: {e}") from e

        handle = ConnectionHandle(dsn, connection)
        try:
            await handle.ping(timeout=self.config.connect_timeout)
        except (ConnectionFailure, asyncpg.PostgresError, asyncio.TimeoutError, OSError) as e:
            await self._close_quietly(connection)
            if isinstance(e, ConnectionFailure):
                raise
            raise ConnectionFailure(f"Liveness probe failed: {e}") from e
        except BaseException:
            await self._close_quietly(connection)
            raise
        return handle

    async def establish(
        self,
        database: ContainerHandle,
        recreate: Optional[RecreateCallback] = None,
    ) -> ConnectionHandle:
        """
        Connect to the database with retries.

        Args:
            database: Ready database container
            recreate: Callback that replaces the database container and
                returns the new handle; used by the RECREATE_ONCE policy

        Returns:
            A pinged ConnectionHandle

        Raises:
            ConnectionFailure: If the retry budget (and escalation, if
                configured) is exhausted
        """
        try:
            return await self._connect_with_retry(database)
        except RetryExhaustedError as e:
            policy = EscalationPolicy(self.config.escalation_policy)
            if policy != EscalationPolicy.RECREATE_ONCE or recreate is None:
                raise ConnectionFailure(str(e)) from e.last_error
            self.logger.warning(f"{e}; recreating the database container once")

        database = await recreate()
        try:
            return await self._connect_with_retry(database)
        except RetryExhaustedError as e:
            raise ConnectionFailure(f"{e} (after recreating the database container)") from e.last_error

    async def _connect_with_retry(self, database: ContainerHandle) -> ConnectionHandle:
        dsn = self.build_dsn(database)
        self.logger.debug(f"Connecting to {database.host}:{database.mapped_port(self.config.database_port)}")
        handle = await retry_async(
            lambda: self.connect(dsn),
            self.config.connection_retry,
            description="Connecting to database",
            retry_on=(ConnectionFailure,),
            logger=self.logger,
        )
        self.logger.info("Database connection established")
        return handle

    async def _close_quietly(self, connection: asyncpg.Connection):
        try:
            await connection.close(timeout=self.config.connect_timeout)
        except Exception as e:
            self.logger.debug(f"Closing a failed connection raised: {e}")
