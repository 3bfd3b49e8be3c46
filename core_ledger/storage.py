"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing),
SQLite (single-node persistence) and PostgreSQL (production). Records are JSON
documents keyed by id; all monetary values stored as Decimal strings.

Every backend offers a unit of work through atomic(): reads-for-update, writes and
inserts made inside it commit or roll back together, and nested units join the
outermost one.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Iterable, Union
from decimal import Decimal
from datetime import datetime, timezone
import copy
import sqlite3
import json
import re
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .logging_config import get_logger

logger = get_logger("ledger.storage")

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


class StorageError(Exception):
    """Base class for storage failures"""
    pass


class StorageConflictError(StorageError):
    """Unique constraint violated"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class StorageUnavailableError(StorageError):
    """Storage could not be reached or the connection was lost"""
    pass


def _check_identifier(name: str) -> str:
    """Table and field names are interpolated into SQL, so restrict them"""
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid storage identifier: {name!r}")
    return name


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        # Convert datetime objects to ISO strings
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        # Convert Decimal objects to strings
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def register_table(self, table: str, unique_fields: Iterable[str] = ()) -> None:
        """Create a table (if missing) with unique indexes on the given fields"""
        pass

    @abstractmethod
    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """
        Insert a new record

        Raises:
            StorageConflictError: If the id or a unique field already exists
        """
        pass

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a record, still enforcing unique fields"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    def load_for_update(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """
        Load a record and hold it against concurrent writers until the current
        unit of work ends. Backends that serialize whole units need nothing more
        than load().
        """
        return self.load(table, record_id)

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching all filters, in insertion order"""
        pass

    @abstractmethod
    def find_any(
        self,
        table: str,
        filters: Dict[str, Any],
        offset: int = 0,
        limit: Optional[int] = None,
        newest_first: bool = False
    ) -> List[Dict[str, Any]]:
        """Find records matching at least one filter, in insertion order"""
        pass

    @abstractmethod
    def count_any(self, table: str, filters: Dict[str, Any]) -> int:
        """Count records matching at least one filter"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def begin_transaction(self) -> None:
        """Start a unit of work (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current unit of work (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current unit of work (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
        except BaseException:
            self.rollback()
            raise
        self.commit()


def _matches_all(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(key in record and record[key] == value for key, value in filters.items())


def _matches_any(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return any(key in record and record[key] == value for key, value in filters.items())


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing

    A unit of work holds the storage lock from begin to end and snapshots the
    data so rollback restores it exactly.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._unique: Dict[str, tuple] = {}
        self._lock = threading.RLock()
        self._depth = 0
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None

    def _ensure_table(self, table: str) -> Dict[str, Dict[str, Any]]:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}
        return self._data[table]

    def register_table(self, table: str, unique_fields: Iterable[str] = ()) -> None:
        with self._lock:
            self._ensure_table(_check_identifier(table))
            self._unique[table] = tuple(_check_identifier(f) for f in unique_fields)

    def _check_unique(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        rows = self._ensure_table(table)
        for field in self._unique.get(table, ()):
            value = data.get(field)
            if value is None:
                continue
            for other_id, other in rows.items():
                if other_id != record_id and other.get(field) == value:
                    raise StorageConflictError(
                        f"Unique constraint failed: {table}.{field}", field=field
                    )

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a record into memory"""
        with self._lock:
            rows = self._ensure_table(table)
            if record_id in rows:
                raise StorageConflictError(f"Unique constraint failed: {table}.id", field="id")
            self._check_unique(table, record_id, data)
            # Deep copy to prevent external mutation
            rows[record_id] = json.loads(json.dumps(data, default=str))

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            rows = self._ensure_table(table)
            self._check_unique(table, record_id, data)
            rows[record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            record = self._ensure_table(table).get(record_id)
            if record:
                # Deep copy to prevent external mutation
                return json.loads(json.dumps(record))
            return None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            return [
                json.loads(json.dumps(record))
                for record in self._ensure_table(table).values()
                if _matches_all(record, filters)
            ]

    def find_any(
        self,
        table: str,
        filters: Dict[str, Any],
        offset: int = 0,
        limit: Optional[int] = None,
        newest_first: bool = False
    ) -> List[Dict[str, Any]]:
        with self._lock:
            matched = [r for r in self._ensure_table(table).values() if _matches_any(r, filters)]
            if newest_first:
                matched.reverse()
            end = None if limit is None else offset + limit
            return [json.loads(json.dumps(r)) for r in matched[offset:end]]

    def count_any(self, table: str, filters: Dict[str, Any]) -> int:
        with self._lock:
            return sum(1 for r in self._ensure_table(table).values() if _matches_any(r, filters))

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            return len(self._ensure_table(table))

    def begin_transaction(self) -> None:
        self._lock.acquire()
        if self._depth == 0:
            self._snapshot = copy.deepcopy(self._data)
        self._depth += 1

    def commit(self) -> None:
        self._depth -= 1
        if self._depth == 0:
            self._snapshot = None
        self._lock.release()

    def rollback(self) -> None:
        self._depth -= 1
        if self._depth == 0:
            self._data = self._snapshot
            self._snapshot = None
        self._lock.release()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite storage implementation for persistence

    The connection runs in autocommit mode; a unit of work issues BEGIN IMMEDIATE
    and holds the storage lock until COMMIT or ROLLBACK, so units are serialized.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout: float = 30.0):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None, timeout=timeout
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._tables: Dict[str, tuple] = {}
        self._index_fields: Dict[str, str] = {}

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    @contextmanager
    def _translate_errors(self):
        try:
            yield
        except sqlite3.IntegrityError as e:
            raise StorageConflictError(str(e), field=self._conflict_field(str(e))) from e
        except sqlite3.OperationalError as e:
            raise StorageUnavailableError(str(e)) from e
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    def _conflict_field(self, message: str) -> Optional[str]:
        # "UNIQUE constraint failed: index 'uq_accounts_account_number'"
        match = re.search(r"index '([^']+)'", message)
        if match:
            return self._index_fields.get(match.group(1))
        # "UNIQUE constraint failed: accounts.id"
        match = re.search(r"failed: \w+\.(\w+)", message)
        return match.group(1) if match else None

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._translate_errors():
            return self._connection.execute(sql, params)

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        self.register_table(table)

    def register_table(self, table: str, unique_fields: Iterable[str] = ()) -> None:
        with self._lock:
            _check_identifier(table)
            fields = tuple(_check_identifier(f) for f in unique_fields)
            self._execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            for field in fields:
                index = f"uq_{table}_{field}"
                self._execute(f"""
                    CREATE UNIQUE INDEX IF NOT EXISTS {index}
                    ON {table}(json_extract(data, '$.{field}'))
                """)
                self._index_fields[index] = field
            self._tables[table] = fields

    @staticmethod
    def _where(filters: Dict[str, Any], joiner: str) -> tuple:
        conditions = []
        params = []
        for key, value in filters.items():
            conditions.append(f"json_extract(data, '$.{_check_identifier(key)}') IS ?")
            params.append(value)
        return f" {joiner} ".join(conditions) or "1", tuple(params)

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a record into SQLite"""
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            self._execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
            """, (record_id, json.dumps(data, default=str), now, now))

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            # Upsert keeps the rowid, so insertion order survives updates
            self._execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (record_id, json.dumps(data, default=str), now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            row = self._execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            where, params = self._where(filters, "AND")
            cursor = self._execute(
                f"SELECT data FROM {table} WHERE {where} ORDER BY rowid", params
            )
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def find_any(
        self,
        table: str,
        filters: Dict[str, Any],
        offset: int = 0,
        limit: Optional[int] = None,
        newest_first: bool = False
    ) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            where, params = self._where(filters, "OR")
            order = "DESC" if newest_first else "ASC"
            cursor = self._execute(f"""
                SELECT data FROM {table} WHERE {where}
                ORDER BY rowid {order}
                LIMIT ? OFFSET ?
            """, params + (-1 if limit is None else limit, offset))
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def count_any(self, table: str, filters: Dict[str, Any]) -> int:
        with self._lock:
            self._ensure_table(table)
            where, params = self._where(filters, "OR")
            return self._execute(
                f"SELECT COUNT(*) AS count FROM {table} WHERE {where}", params
            ).fetchone()['count']

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return self._execute(f"SELECT COUNT(*) AS count FROM {table}").fetchone()['count']

    def begin_transaction(self) -> None:
        """Start a unit of work"""
        self._lock.acquire()
        if self._depth == 0:
            try:
                self._execute("BEGIN IMMEDIATE")
            except StorageError:
                self._lock.release()
                raise
        self._depth += 1

    def commit(self) -> None:
        """Commit current unit of work"""
        try:
            self._depth -= 1
            if self._depth == 0:
                try:
                    self._execute("COMMIT")
                except StorageError:
                    self._connection.rollback()
                    raise
        finally:
            self._lock.release()

    def rollback(self) -> None:
        """Rollback current unit of work"""
        try:
            self._depth -= 1
            if self._depth == 0 and self._connection.in_transaction:
                self._execute("ROLLBACK")
        finally:
            self._lock.release()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLStorage(StorageInterface):
    """
    PostgreSQL storage backend with ACID transaction support

    Connections come from a thread-safe pool. A unit of work pins one connection
    to the calling thread until commit or rollback; load_for_update() takes a
    row lock with SELECT ... FOR UPDATE. Isolation stays at READ COMMITTED.
    """

    def __init__(self, connection_string: str, min_connections: int = 1,
                 max_connections: int = 10):
        try:
            import psycopg2
            import psycopg2.errors
            import psycopg2.extras
            import psycopg2.pool
            self.psycopg2 = psycopg2
            self.extras = psycopg2.extras
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.connection_string = connection_string
        self._local = threading.local()
        self._tables: Dict[str, tuple] = {}
        self._index_fields: Dict[str, str] = {}
        self._schema_lock = threading.Lock()
        try:
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                min_connections,
                max_connections,
                dsn=connection_string,
                cursor_factory=self.extras.RealDictCursor
            )
        except psycopg2.OperationalError as e:
            raise StorageUnavailableError(str(e)) from e

    @contextmanager
    def _translate_errors(self):
        pg = self.psycopg2
        try:
            yield
        except pg.errors.UniqueViolation as e:
            constraint = getattr(e.diag, 'constraint_name', None) or ""
            if constraint.endswith("_pkey"):
                field = "id"
            else:
                field = self._index_fields.get(constraint)
            raise StorageConflictError(str(e).strip(), field=field) from e
        except (pg.OperationalError, pg.InterfaceError, pg.pool.PoolError) as e:
            raise StorageUnavailableError(str(e).strip()) from e
        except pg.Error as e:
            raise StorageError(str(e).strip()) from e

    @contextmanager
    def _cursor(self):
        """Cursor on the thread's unit-of-work connection, or a pooled autocommit one"""
        connection = getattr(self._local, 'connection', None)
        if connection is not None:
            with self._translate_errors():
                cursor = connection.cursor()
                try:
                    yield cursor
                finally:
                    cursor.close()
            return

        with self._translate_errors():
            connection = self._pool.getconn()
        try:
            with self._translate_errors():
                cursor = connection.cursor()
                try:
                    yield cursor
                    connection.commit()
                except BaseException:
                    connection.rollback()
                    raise
                finally:
                    cursor.close()
        finally:
            self._pool.putconn(connection)

    def _ensure_table(self, table: str) -> None:
        if table in self._tables:
            return
        self.register_table(table)

    def register_table(self, table: str, unique_fields: Iterable[str] = ()) -> None:
        _check_identifier(table)
        fields = tuple(_check_identifier(f) for f in unique_fields)
        with self._schema_lock:
            with self._cursor() as cursor:
                cursor.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id TEXT PRIMARY KEY,
                        seq BIGSERIAL,
                        data JSONB NOT NULL,
                        created_at TIMESTAMPTZ DEFAULT NOW(),
                        updated_at TIMESTAMPTZ DEFAULT NOW()
                    )
                """)
                cursor.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_{table}_seq
                    ON {table}(seq)
                """)
                for field in fields:
                    index = f"uq_{table}_{field}"
                    cursor.execute(f"""
                        CREATE UNIQUE INDEX IF NOT EXISTS {index}
                        ON {table} ((data ->> '{field}'))
                    """)
                    self._index_fields[index] = field
            self._tables[table] = fields

    @staticmethod
    def _where(filters: Dict[str, Any], joiner: str) -> tuple:
        conditions = []
        params = []
        for key, value in filters.items():
            if value is None:
                conditions.append("data ->> %s IS NULL")
                params.append(key)
            else:
                conditions.append("data ->> %s = %s")
                params.extend([key, value if isinstance(value, str) else json.dumps(value)])
        return f" {joiner} ".join(conditions) or "TRUE", params

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a record into PostgreSQL"""
        self._ensure_table(table)
        now = datetime.now(timezone.utc)
        with self._cursor() as cursor:
            cursor.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (%s, %s, %s, %s)
            """, (record_id, json.dumps(data, default=str), now, now))

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to PostgreSQL using UPSERT"""
        self._ensure_table(table)
        now = datetime.now(timezone.utc)
        with self._cursor() as cursor:
            cursor.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    data = EXCLUDED.data,
                    updated_at = EXCLUDED.updated_at
            """, (record_id, json.dumps(data, default=str), now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from PostgreSQL"""
        self._ensure_table(table)
        with self._cursor() as cursor:
            cursor.execute(f"SELECT data FROM {table} WHERE id = %s", (record_id,))
            row = cursor.fetchone()
            if row:
                return dict(row['data'])
            return None

    def load_for_update(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record and lock its row until the unit of work ends"""
        self._ensure_table(table)
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT data FROM {table} WHERE id = %s FOR UPDATE", (record_id,)
            )
            row = cursor.fetchone()
            if row:
                return dict(row['data'])
            return None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using JSONB operators"""
        self._ensure_table(table)
        where, params = self._where(filters, "AND")
        with self._cursor() as cursor:
            cursor.execute(f"SELECT data FROM {table} WHERE {where} ORDER BY seq", params)
            return [dict(row['data']) for row in cursor.fetchall()]

    def find_any(
        self,
        table: str,
        filters: Dict[str, Any],
        offset: int = 0,
        limit: Optional[int] = None,
        newest_first: bool = False
    ) -> List[Dict[str, Any]]:
        self._ensure_table(table)
        where, params = self._where(filters, "OR")
        order = "DESC" if newest_first else "ASC"
        with self._cursor() as cursor:
            cursor.execute(f"""
                SELECT data FROM {table} WHERE {where}
                ORDER BY seq {order}
                LIMIT %s OFFSET %s
            """, params + [limit, offset])
            return [dict(row['data']) for row in cursor.fetchall()]

    def count_any(self, table: str, filters: Dict[str, Any]) -> int:
        self._ensure_table(table)
        where, params = self._where(filters, "OR")
        with self._cursor() as cursor:
            cursor.execute(f"SELECT COUNT(*) AS count FROM {table} WHERE {where}", params)
            return cursor.fetchone()['count']

    def count(self, table: str) -> int:
        """Count records in table"""
        self._ensure_table(table)
        with self._cursor() as cursor:
            cursor.execute(f"SELECT COUNT(*) AS count FROM {table}")
            return cursor.fetchone()['count']

    def begin_transaction(self) -> None:
        """Pin a pooled connection to this thread for the unit of work"""
        depth = getattr(self._local, 'depth', 0)
        if depth == 0:
            with self._translate_errors():
                self._local.connection = self._pool.getconn()
        self._local.depth = depth + 1

    def _release(self) -> None:
        connection = self._local.connection
        self._local.connection = None
        self._pool.putconn(connection)

    def commit(self) -> None:
        """Commit current unit of work"""
        self._local.depth -= 1
        if self._local.depth == 0:
            try:
                with self._translate_errors():
                    self._local.connection.commit()
            finally:
                self._release()

    def rollback(self) -> None:
        """Rollback current unit of work"""
        self._local.depth -= 1
        if self._local.depth == 0:
            try:
                with self._translate_errors():
                    self._local.connection.rollback()
            finally:
                self._release()

    def close(self) -> None:
        """Drain the connection pool"""
        if not self._pool.closed:
            self._pool.closeall()


def create_storage(database_url: str, pool_min: int = 1, pool_max: int = 10) -> StorageInterface:
    """
    Build a storage backend from a database URL

    Supported schemes: ``memory://``, ``sqlite:///path`` (``sqlite://`` for an
    in-memory database) and ``postgresql://`` / ``postgres://``.
    """
    if database_url.startswith("memory://"):
        storage: StorageInterface = InMemoryStorage()
    elif database_url.startswith("sqlite://"):
        path = database_url[len("sqlite:///"):] if database_url.startswith("sqlite:///") else ""
        storage = SQLiteStorage(path or ":memory:")
    elif database_url.startswith(("postgresql://", "postgres://")):
        storage = PostgreSQLStorage(database_url, pool_min, pool_max)
    else:
        raise ValueError(f"Unsupported database URL: {database_url}")

    logger.info(f"Storage backend initialised: {type(storage).__name__}")
    return storage
