# -*- coding: utf-8 -*-
"""
Unified Database Adapter - Backend-agnostic database abstraction layer.

Provides a consistent interface for both SQLite (development/fallback) and
PostgreSQL (production). Queries are written with "?" placeholders and
converted for psycopg2.

Transactions:
    Calls made on the same thread inside ``transaction()`` join that
    transaction instead of auto-committing, so repositories can be composed
    into one atomic unit of work (the commit engine relies on this).
    ``savepoint()`` scopes a per-record rollback inside a transaction.

This module is the ONLY place that should import sqlite3 or psycopg2 for the main database.
(.uhc container parsing is exempt as .uhc files are SQLite format by design)
"""

import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from utils.logger import get_logger

logger = get_logger(__name__)


class DatabaseType(Enum):
    """Supported database backends."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


@dataclass
class DatabaseConfig:
    """Database configuration."""
    db_type: DatabaseType = DatabaseType.SQLITE
    # PostgreSQL settings
    pg_host: str = "localhost"
    pg_port: int = 5432
    pg_database: str = "trrcms"
    pg_user: str = "trrcms_user"
    pg_password: str = ""
    pg_pool_min: int = 2
    pg_pool_max: int = 10
    # SQLite settings
    sqlite_path: Optional[Path] = None

    @classmethod
    def from_env(cls) -> 'DatabaseConfig':
        """Load configuration from environment variables."""
        from app.config import Config

        db_type = DatabaseType.POSTGRESQL if Config.DB_TYPE == "postgresql" else DatabaseType.SQLITE

        return cls(
            db_type=db_type,
            pg_host=os.getenv("TRRCMS_DB_HOST", "localhost"),
            pg_port=int(os.getenv("TRRCMS_DB_PORT", "5432")),
            pg_database=os.getenv("TRRCMS_DB_NAME", "trrcms"),
            pg_user=os.getenv("TRRCMS_DB_USER", "trrcms_user"),
            pg_password=os.getenv("TRRCMS_DB_PASSWORD", ""),
            pg_pool_min=int(os.getenv("TRRCMS_DB_POOL_MIN", "2")),
            pg_pool_max=int(os.getenv("TRRCMS_DB_POOL_MAX", "10")),
            sqlite_path=Config.DB_PATH
        )


class RowProxy:
    """
    A dict-like row proxy that supports both dict access and attribute access.
    Provides consistent interface regardless of backend.
    """

    def __init__(self, data: Dict[str, Any], columns: Optional[List[str]] = None):
        self._data = data
        self._columns = columns or list(data.keys())

    def __getitem__(self, key):
        if isinstance(key, int):
            return self._data[self._columns[key]]
        return self._data[key]

    def __getattr__(self, name):
        if name.startswith('_'):
            raise AttributeError(name)
        try:
            return self._data[name]
        except KeyError:
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")

    def __contains__(self, key):
        return key in self._data

    def __len__(self):
        return len(self._data)

    def get(self, key, default=None):
        return self._data.get(key, default)

    def keys(self):
        return self._data.keys()

    def items(self):
        return self._data.items()

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data)

    def __repr__(self):
        return f"RowProxy({self._data})"


class DatabaseAdapter(ABC):
    """
    Abstract base class for database adapters.
    Defines the interface that all database backends must implement.
    """

    @abstractmethod
    def connect(self) -> bool:
        """Establish database connection."""

    @abstractmethod
    def close(self) -> None:
        """Close database connection."""

    @abstractmethod
    def execute(self, query: str, params: Optional[Sequence] = None) -> List[RowProxy]:
        """Execute a query and return results."""

    @abstractmethod
    def execute_update(self, query: str, params: Optional[Sequence] = None) -> int:
        """Execute a write and return the affected row count."""

    @abstractmethod
    def execute_many(self, query: str, params_list: List[Sequence]) -> int:
        """Execute a query with multiple parameter sets."""

    @abstractmethod
    def fetch_one(self, query: str, params: Optional[Sequence] = None) -> Optional[RowProxy]:
        """Execute query and fetch single row."""

    @abstractmethod
    def fetch_all(self, query: str, params: Optional[Sequence] = None) -> List[RowProxy]:
        """Execute query and fetch all rows."""

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Transaction context manager with auto-commit/rollback."""

    @property
    @abstractmethod
    def db_type(self) -> DatabaseType:
        """Return the database type."""

    @property
    @abstractmethod
    def driver_error(self) -> type:
        """Base exception class raised by the database driver."""

    @contextmanager
    def savepoint(self, name: str) -> Iterator[None]:
        """
        Per-statement-group rollback scope; must be used inside transaction().
        """
        self.execute(f"SAVEPOINT {name}")
        try:
            yield
        except Exception:
            self.execute(f"ROLLBACK TO SAVEPOINT {name}")
            self.execute(f"RELEASE SAVEPOINT {name}")
            raise
        self.execute(f"RELEASE SAVEPOINT {name}")

    def initialize(self) -> None:
        """Create the pipeline and production schema."""
        from .schema import SCHEMA_STATEMENTS

        logger.info(f"Initializing {self.db_type.value} schema")
        with self.transaction():
            for statement in SCHEMA_STATEMENTS:
                self.execute(statement)
        logger.info("Database schema initialized successfully")


class SQLiteAdapter(DatabaseAdapter):
    """SQLite database adapter sharing one connection across threads."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize SQLite adapter."""
        import sqlite3 as _sqlite3
        self._sqlite3 = _sqlite3

        if db_path is None:
            from app.config import Config
            db_path = Config.DB_PATH

        self._db_path = Path(db_path)
        self._connection = None
        self._lock = threading.RLock()
        self._tx_depth = 0

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def db_type(self) -> DatabaseType:
        return DatabaseType.SQLITE

    @property
    def driver_error(self) -> type:
        return self._sqlite3.Error

    @property
    def db_path(self) -> Path:
        """Get database file path."""
        return self._db_path

    def connect(self) -> bool:
        """Establish SQLite connection."""
        try:
            if self._connection is None:
                self._connection = self._sqlite3.connect(
                    str(self._db_path),
                    check_same_thread=False,
                    timeout=30
                )
                self._connection.row_factory = self._dict_factory
                self._connection.execute("PRAGMA foreign_keys = ON")
            return True
        except self._sqlite3.Error as e:
            logger.error(f"SQLite connection error: {e}")
            return False

    def _dict_factory(self, cursor, row):
        """Convert row to dictionary."""
        columns = [col[0] for col in cursor.description]
        return {col: row[idx] for idx, col in enumerate(columns)}

    def close(self) -> None:
        """Close SQLite connection."""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
                logger.info("SQLite connection closed")

    def _get_connection(self):
        """Get connection, connecting if needed."""
        if not self._connection:
            self.connect()
        return self._connection

    def _run(self, query: str, params: Optional[Sequence], fetch: str):
        with self._lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            try:
                cursor.execute(query, tuple(params or ()))
                if fetch == "rowcount":
                    result = cursor.rowcount
                elif cursor.description:
                    columns = [col[0] for col in cursor.description]
                    rows = cursor.fetchall() if fetch == "all" else [cursor.fetchone()]
                    result = [RowProxy(row, columns) for row in rows if row is not None]
                else:
                    result = []
                if self._tx_depth == 0:
                    conn.commit()
                return result
            except self._sqlite3.Error as e:
                if self._tx_depth == 0:
                    conn.rollback()
                logger.error(f"SQLite execute error: {e}\nQuery: {query}")
                raise
            finally:
                cursor.close()

    def execute(self, query: str, params: Optional[Sequence] = None) -> List[RowProxy]:
        """Execute query and return results."""
        return self._run(query, params, "all")

    def execute_update(self, query: str, params: Optional[Sequence] = None) -> int:
        return self._run(query, params, "rowcount")

    def execute_many(self, query: str, params_list: List[Sequence]) -> int:
        """Execute query with multiple parameter sets."""
        with self._lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            try:
                cursor.executemany(query, [tuple(p) for p in params_list])
                if self._tx_depth == 0:
                    conn.commit()
                return cursor.rowcount
            except self._sqlite3.Error as e:
                if self._tx_depth == 0:
                    conn.rollback()
                logger.error(f"SQLite executemany error: {e}")
                raise
            finally:
                cursor.close()

    def fetch_one(self, query: str, params: Optional[Sequence] = None) -> Optional[RowProxy]:
        """Fetch single row."""
        rows = self._run(query, params, "one")
        return rows[0] if rows else None

    def fetch_all(self, query: str, params: Optional[Sequence] = None) -> List[RowProxy]:
        """Fetch all rows."""
        return self._run(query, params, "all")

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """
        Transaction context manager.

        Holds the adapter lock for its whole duration, so other threads
        cannot interleave statements into the open transaction.
        """
        with self._lock:
            conn = self._get_connection()
            if self._tx_depth > 0:
                # Nested use joins the outer transaction
                self._tx_depth += 1
                try:
                    yield conn
                finally:
                    self._tx_depth -= 1
                return

            if conn.in_transaction:
                conn.commit()
            conn.execute("BEGIN IMMEDIATE")
            self._tx_depth = 1
            try:
                yield conn
                conn.commit()
            except Exception as e:
                conn.rollback()
                logger.error(f"SQLite transaction rolled back: {e}")
                raise
            finally:
                self._tx_depth = 0


class PostgreSQLAdapter(DatabaseAdapter):
    """PostgreSQL database adapter with connection pooling."""

    def __init__(self, config: DatabaseConfig):
        """Initialize PostgreSQL adapter."""
        import psycopg2
        from psycopg2 import pool as pg_pool
        from psycopg2.extras import RealDictCursor

        self._config = config
        self._pool = None
        self._psycopg2 = psycopg2
        self._pg_pool = pg_pool
        self._RealDictCursor = RealDictCursor
        self._local = threading.local()

    @property
    def db_type(self) -> DatabaseType:
        return DatabaseType.POSTGRESQL

    @property
    def driver_error(self) -> type:
        return self._psycopg2.Error

    def connect(self) -> bool:
        """Establish PostgreSQL connection pool."""
        try:
            self._pool = self._pg_pool.ThreadedConnectionPool(
                minconn=self._config.pg_pool_min,
                maxconn=self._config.pg_pool_max,
                host=self._config.pg_host,
                port=self._config.pg_port,
                database=self._config.pg_database,
                user=self._config.pg_user,
                password=self._config.pg_password
            )
            logger.info(
                f"PostgreSQL connection pool established: "
                f"{self._config.pg_host}:{self._config.pg_port}/{self._config.pg_database}"
            )
            return True
        except self._psycopg2.Error as e:
            logger.error(f"PostgreSQL connection error: {e}")
            return False

    def close(self) -> None:
        """Close PostgreSQL connection pool."""
        if self._pool:
            self._pool.closeall()
            self._pool = None
            logger.info("PostgreSQL connection pool closed")

    def _tx_connection(self):
        return getattr(self._local, "conn", None)

    def _get_connection(self):
        """Get connection from pool."""
        if not self._pool:
            if not self.connect():
                raise RuntimeError("Could not connect to PostgreSQL")
        return self._pool.getconn()

    def _put_connection(self, conn):
        """Return connection to pool."""
        if self._pool and conn:
            self._pool.putconn(conn)

    def _convert_placeholders(self, query: str) -> str:
        """Convert ? placeholders to %s for PostgreSQL."""
        return query.replace("?", "%s")

    def _run(self, query: str, params: Optional[Sequence], fetch: str):
        query = self._convert_placeholders(query)
        tx_conn = self._tx_connection()
        conn = tx_conn or self._get_connection()
        try:
            with conn.cursor(cursor_factory=self._RealDictCursor) as cursor:
                cursor.execute(query, tuple(params or ()))
                if fetch == "rowcount":
                    result = cursor.rowcount
                elif cursor.description:
                    columns = [col.name for col in cursor.description]
                    rows = cursor.fetchall() if fetch == "all" else [cursor.fetchone()]
                    result = [RowProxy(dict(row), columns) for row in rows if row is not None]
                else:
                    result = []
                if tx_conn is None:
                    conn.commit()
                return result
        except self._psycopg2.Error as e:
            if tx_conn is None:
                conn.rollback()
            logger.error(f"PostgreSQL execute error: {e}\nQuery: {query}")
            raise
        finally:
            if tx_conn is None:
                self._put_connection(conn)

    def execute(self, query: str, params: Optional[Sequence] = None) -> List[RowProxy]:
        """Execute query and return results."""
        return self._run(query, params, "all")

    def execute_update(self, query: str, params: Optional[Sequence] = None) -> int:
        return self._run(query, params, "rowcount")

    def execute_many(self, query: str, params_list: List[Sequence]) -> int:
        """Execute query with multiple parameter sets."""
        query = self._convert_placeholders(query)
        tx_conn = self._tx_connection()
        conn = tx_conn or self._get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.executemany(query, [tuple(p) for p in params_list])
                if tx_conn is None:
                    conn.commit()
                return cursor.rowcount
        except self._psycopg2.Error as e:
            if tx_conn is None:
                conn.rollback()
            logger.error(f"PostgreSQL executemany error: {e}")
            raise
        finally:
            if tx_conn is None:
                self._put_connection(conn)

    def fetch_one(self, query: str, params: Optional[Sequence] = None) -> Optional[RowProxy]:
        """Fetch single row."""
        rows = self._run(query, params, "one")
        return rows[0] if rows else None

    def fetch_all(self, query: str, params: Optional[Sequence] = None) -> List[RowProxy]:
        """Fetch all rows."""
        return self._run(query, params, "all")

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Transaction bound to the calling thread."""
        existing = self._tx_connection()
        if existing is not None:
            yield existing
            return

        conn = self._get_connection()
        self._local.conn = conn
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"PostgreSQL transaction rolled back: {e}")
            raise
        finally:
            self._local.conn = None
            self._put_connection(conn)


class DatabaseFactory:
    """
    Factory for creating database adapters.
    """

    _instance: Optional[DatabaseAdapter] = None
    _config: Optional[DatabaseConfig] = None

    @classmethod
    def create(cls, config: Optional[DatabaseConfig] = None) -> DatabaseAdapter:
        """
        Create or return existing database adapter.

        Args:
            config: Database configuration. If None, loads from environment.

        Returns:
            DatabaseAdapter instance
        """
        if config is None:
            config = DatabaseConfig.from_env()

        if cls._instance is not None and cls._config == config:
            return cls._instance

        cls._config = config

        if config.db_type == DatabaseType.POSTGRESQL:
            adapter = PostgreSQLAdapter(config)
            if adapter.connect():
                logger.info(f"Using PostgreSQL database: {config.pg_host}:{config.pg_port}/{config.pg_database}")
                cls._instance = adapter
                return adapter
            logger.warning("PostgreSQL unavailable, falling back to SQLite")

        adapter = SQLiteAdapter(config.sqlite_path)
        adapter.connect()
        logger.info(f"Using SQLite database: {adapter.db_path}")
        cls._instance = adapter
        return adapter

    @classmethod
    def reset(cls) -> None:
        """Reset factory and close connections."""
        if cls._instance:
            cls._instance.close()
        cls._instance = None
        cls._config = None


def get_database() -> DatabaseAdapter:
    """Get the configured database adapter."""
    return DatabaseFactory.create()
