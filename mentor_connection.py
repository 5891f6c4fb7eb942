"""
Connection manager for the Neo4j graph store.

This module owns the async driver lifecycle, scoped sessions and query
execution. Establishing the driver is retried with exponential backoff;
individual queries are not retried, and transport failures surface as
StoreUnavailableError so callers decide what to do with them.
"""

import time
import logging
from typing import Optional, Dict, Any, List, Callable, Sequence, Tuple
from dataclasses import dataclass
from contextlib import asynccontextmanager
from enum import Enum

from neo4j import AsyncGraphDatabase, AsyncDriver, AsyncSession, AsyncManagedTransaction
from neo4j.exceptions import ServiceUnavailable, SessionExpired
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from mentor_config import get_config, RuntimeConfig
from mentor_errors import StoreUnavailableError


logger = logging.getLogger(__name__)


# A statement is a Cypher string with its parameters
Statement = Tuple[str, Dict[str, Any]]

TRANSPORT_ERRORS = (ServiceUnavailable, SessionExpired, OSError)


class ConnectionState(str, Enum):
    """Connection state enumeration."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass
class ConnectionMetrics:
    """Metrics for connection monitoring."""
    total_connections: int = 0
    successful_connections: int = 0
    failed_connections: int = 0
    total_queries: int = 0
    failed_queries: int = 0
    last_connection_time: Optional[float] = None
    last_failure_time: Optional[float] = None
    last_error: Optional[str] = None
    connection_duration: float = 0.0

    def record_success(self, duration: float):
        """Record successful connection."""
        self.total_connections += 1
        self.successful_connections += 1
        self.last_connection_time = time.time()
        self.connection_duration = duration

    def record_failure(self, error: str):
        """Record failed connection."""
        self.total_connections += 1
        self.failed_connections += 1
        self.last_failure_time = time.time()
        self.last_error = error

    def record_query(self, failed: bool = False):
        """Record an executed query."""
        self.total_queries += 1
        if failed:
            self.failed_queries += 1

    @property
    def success_rate(self) -> float:
        """Calculate connection success rate."""
        if self.total_connections == 0:
            return 0.0
        return self.successful_connections / self.total_connections


def native_value(value: Any) -> Any:
    """Convert neo4j temporal values (recursively) into Python natives."""
    if isinstance(value, dict):
        return {key: native_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [native_value(item) for item in value]
    to_native = getattr(value, "to_native", None)
    if callable(to_native):
        return to_native()
    return value


def record_to_dict(record: Any) -> Dict[str, Any]:
    """Convert a neo4j record into a plain dictionary."""
    return {key: native_value(value) for key, value in dict(record).items()}


class Neo4jConnectionManager:
    """Manages async Neo4j connections for the mentor components."""

    def __init__(self, config: Optional[RuntimeConfig] = None):
        """Initialize connection manager."""
        self.config = config or get_config()
        self._async_driver: Optional[AsyncDriver] = None
        self._state = ConnectionState.DISCONNECTED
        self._metrics = ConnectionMetrics()
        self._callbacks: List[Callable[[ConnectionState], None]] = []

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def metrics(self) -> ConnectionMetrics:
        """Get connection metrics."""
        return self._metrics

    def add_state_callback(self, callback: Callable[[ConnectionState], None]):
        """Add callback for state changes."""
        self._callbacks.append(callback)

    def _set_state(self, state: ConnectionState):
        """Set connection state and notify callbacks."""
        self._state = state
        for callback in self._callbacks:
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Error in state callback: {e}")

    async def connect_async(self) -> AsyncDriver:
        """Connect to Neo4j asynchronously with retry logic."""
        if self._async_driver is not None:
            return self._async_driver

        start_time = time.time()
        self._set_state(ConnectionState.CONNECTING)

        @retry(
            stop=stop_after_attempt(self.config.neo4j.connect_retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type((ServiceUnavailable, ConnectionError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async def _connect():
            if not self.config.validate_neo4j_connection():
                raise ValueError("Invalid Neo4j configuration")

            logger.info(f"Connecting to Neo4j at {self.config.neo4j.uri}")
            driver = AsyncGraphDatabase.driver(**self.config.get_neo4j_driver_config())
            try:
                await driver.verify_connectivity()
            except Exception:
                await driver.close()
                raise
            return driver

        try:
            self._async_driver = await _connect()
        except TRANSPORT_ERRORS as e:
            self._metrics.record_failure(str(e))
            self._set_state(ConnectionState.FAILED)
            logger.error(f"Failed to connect to Neo4j: {e}")
            raise StoreUnavailableError(
                f"Neo4j unavailable at {self.config.neo4j.uri}: {e}",
                context={'uri': self.config.neo4j.uri},
            ) from e
        except Exception as e:
            self._metrics.record_failure(str(e))
            self._set_state(ConnectionState.FAILED)
            logger.error(f"Failed to connect to Neo4j: {e}")
            raise

        duration = time.time() - start_time
        self._metrics.record_success(duration)
        self._set_state(ConnectionState.CONNECTED)
        logger.info(f"Connected to Neo4j in {duration:.2f}s")
        return self._async_driver

    @asynccontextmanager
    async def async_session(self, **kwargs) -> AsyncSession:
        """Create a scoped async session that is always closed."""
        driver = await self.connect_async()
        kwargs.setdefault("database", self.config.neo4j.database)
        session = driver.session(**kwargs)
        try:
            yield session
        finally:
            await session.close()

    async def execute_query_async(self, query: str, parameters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Execute a single auto-commit statement and return its records."""
        try:
            async with self.async_session() as session:
                result = await session.run(query, parameters or {})
                records = [record_to_dict(record) async for record in result]
        except TRANSPORT_ERRORS as e:
            self._metrics.record_query(failed=True)
            logger.error(f"Neo4j query failed, store unavailable: {e}")
            raise StoreUnavailableError(f"Neo4j unavailable: {e}") from e

        self._metrics.record_query()
        return records

    async def execute_write_async(self, statements: Sequence[Statement]) -> List[List[Dict[str, Any]]]:
        """Run several statements in one write transaction.

        Either every statement commits or none does. Returns the records of
        each statement in order.
        """
        async def _work(tx: AsyncManagedTransaction) -> List[List[Dict[str, Any]]]:
            results = []
            for query, parameters in statements:
                result = await tx.run(query, parameters or {})
                results.append([record_to_dict(record) async for record in result])
            return results

        try:
            async with self.async_session() as session:
                results = await session.execute_write(_work)
        except TRANSPORT_ERRORS as e:
            self._metrics.record_query(failed=True)
            logger.error(f"Neo4j write transaction failed, store unavailable: {e}")
            raise StoreUnavailableError(f"Neo4j unavailable: {e}") from e

        self._metrics.record_query()
        return results

    async def verify_connectivity(self) -> bool:
        """Check the store answers a trivial query."""
        try:
            records = await self.execute_query_async("RETURN 1 AS ok")
        except StoreUnavailableError:
            return False
        return bool(records) and records[0].get("ok") == 1

    async def close_async(self):
        """Close the connection asynchronously."""
        if self._async_driver:
            await self._async_driver.close()
            self._async_driver = None
        self._set_state(ConnectionState.CLOSED)
        logger.info("Neo4j connection closed")

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect_async()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close_async()


# Global connection manager
_neo4j_manager: Optional[Neo4jConnectionManager] = None


def get_neo4j_connection() -> Neo4jConnectionManager:
    """Get or create global Neo4j connection manager."""
    global _neo4j_manager

    if _neo4j_manager is None:
        _neo4j_manager = Neo4jConnectionManager()
    return _neo4j_manager


async def close_neo4j_connection():
    """Close the global connection asynchronously."""
    global _neo4j_manager

    if _neo4j_manager:
        await _neo4j_manager.close_async()
        _neo4j_manager = None
