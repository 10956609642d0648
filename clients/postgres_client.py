"""
PostgreSQL client with connection pooling and transaction scopes.

Uses psycopg2 with ThreadedConnectionPool. Outside a transaction each call
borrows a connection and commits on its own. Inside ``transaction()`` every
call on the same context reuses one pinned connection, and the outermost
scope commits or rolls back once, so a financial operation either lands
completely or not at all.
"""

import logging
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extensions
import psycopg2.extras
import psycopg2.pool

logger = logging.getLogger(__name__)

# Global JSONB registration flag
_jsonb_registered = False

# Connection pinned by the innermost open transaction, per database URL
_active_connections: ContextVar[Dict[str, Any] | None] = ContextVar(
    "active_connections", default=None
)


class PostgresClient:
    """
    PostgreSQL client with optional transaction pinning.

    Usage:
        db = PostgresClient(database_url)

        # Autocommit per call
        rows = db.execute("SELECT * FROM invoices WHERE family_id = %s", (family_id,))

        # One atomic unit
        with db.transaction():
            db.execute_single("SELECT * FROM invoices WHERE id = %s FOR UPDATE", (invoice_id,))
            db.execute("UPDATE invoices SET ... WHERE id = %s", (invoice_id,))
    """

    # Class-level connection pools shared across instances
    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str, minconn: int = 2, maxconn: int = 20):
        self._database_url = database_url
        self._minconn = minconn
        self._maxconn = maxconn
        self._ensure_connection_pool()

    def _ensure_connection_pool(self) -> None:
        """Create connection pool if it doesn't exist."""
        with self._pools_lock:
            if self._database_url not in self._connection_pools:
                pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self._minconn,
                    maxconn=self._maxconn,
                    dsn=self._database_url,
                    connect_timeout=30,
                )

                global _jsonb_registered
                if not _jsonb_registered:
                    psycopg2.extras.register_default_jsonb(globally=True)
                    psycopg2.extras.register_uuid()
                    _jsonb_registered = True

                self._connection_pools[self._database_url] = pool
                logger.info("Connection pool created")

    def _pinned_connection(self):
        pinned = _active_connections.get()
        if pinned is None:
            return None
        return pinned.get(self._database_url)

    @property
    def in_transaction(self) -> bool:
        return self._pinned_connection() is not None

    @contextmanager
    def get_connection(self):
        """Yield the pinned transaction connection, or borrow one from the pool."""
        pinned = self._pinned_connection()
        if pinned is not None:
            yield pinned
            return

        if self._database_url not in self._connection_pools:
            self._ensure_connection_pool()

        pool = self._connection_pools[self._database_url]
        conn = None

        try:
            conn = pool.getconn()
            if conn is None:
                raise RuntimeError("Could not get connection from pool")
            yield conn
        except Exception:
            if conn is not None:
                conn.rollback()
            raise
        finally:
            if conn:
                pool.putconn(conn)

    @contextmanager
    def transaction(self, isolation_level: int | None = None):
        """
        Run the enclosed calls as one transaction.

        Nested scopes join the outermost one. The outermost scope commits on
        normal exit and rolls back on any exception, then re-raises.

        Args:
            isolation_level: psycopg2.extensions.ISOLATION_LEVEL_* for the
                outermost scope. Defaults to the server default.
        """
        if self._pinned_connection() is not None:
            yield
            return

        pool = self._connection_pools[self._database_url]
        conn = pool.getconn()
        if conn is None:
            raise RuntimeError("Could not get connection from pool")

        pinned = dict(_active_connections.get() or {})
        pinned[self._database_url] = conn
        token = _active_connections.set(pinned)

        try:
            if isolation_level is not None:
                conn.set_session(isolation_level=isolation_level)
            yield
            conn.commit()
        except Exception:
            conn.rollback()
            logger.warning("Transaction rolled back")
            raise
        finally:
            _active_connections.reset(token)
            if isolation_level is not None:
                conn.set_session(isolation_level=psycopg2.extensions.ISOLATION_LEVEL_DEFAULT)
            pool.putconn(conn)

    def _finish(self, conn) -> None:
        if not self.in_transaction:
            conn.commit()

    def _convert_params(self, params: Tuple | Dict | None) -> Tuple | Dict | None:
        """Convert UUID objects to strings."""
        if params is None:
            return None

        def convert(value: Any) -> Any:
            if isinstance(value, UUID):
                return str(value)
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(params)

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        params = self._convert_params(params)
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params)
                rows = [dict(row) for row in cur.fetchall()] if cur.description else []
                self._finish(conn)
                return rows

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """Execute query, return first value of first row or None."""
        params = self._convert_params(params)
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                result = cur.fetchone()
                self._finish(conn)
                return result[0] if result else None

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute INSERT/UPDATE with RETURNING, return results."""
        params = self._convert_params(params)
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params)
                rows = [dict(row) for row in cur.fetchall()]
                self._finish(conn)
                return rows

    def close(self) -> None:
        """Close connection pool."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                self._connection_pools[self._database_url].closeall()
                del self._connection_pools[self._database_url]
