# Records_DB.py
#########################################
# Records_DB Library
# Durable on-device store for captured records (reports and people) awaiting, or past, server submission.
#
# This library provides a `RecordsDatabase` class to encapsulate operations for a specific
# SQLite database file. It handles connection management (thread-locally),
# schema initialization and versioning, and the sync bookkeeping columns the sync engine relies on.
#
# Key Features:
# - Instance-based: Each `RecordsDatabase` object connects to a specific DB file (or ':memory:').
# - Client ID Tracking: Requires a `client_id` (the device id), mixed into each record's idempotency key.
# - Sync State: `synced` flag + `remote_id`, with `CHECK ((synced = 1) = (remote_id IS NOT NULL))`.
# - Monotonic Sync: A trigger aborts updates that change an assigned `remote_id` or revert `synced`.
# - Failure Bookkeeping: attempt count, last error and a `needs_review` flag for permanent rejections.
# - Transaction Management: Provides a context manager for atomic operations.
####
import hashlib
import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from pathlib import Path
from typing import List, Dict, Any, Optional, Union
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..Constants import ALL_KINDS
#
#######################################################################################################################
#
# Functions:

# --- Custom Exceptions ---
class DatabaseError(Exception):
    """Base exception for database related errors."""
    pass


class StorageError(DatabaseError):
    """The local store is unavailable or refused a write (quota exceeded, disk full, I/O failure)."""
    pass


class StoreBusyError(StorageError):
    """The database is temporarily locked or busy; the operation may succeed if retried."""
    pass


class SchemaError(DatabaseError):
    """Exception for schema version mismatches or migration failures."""
    pass


class InputError(ValueError):
    """Custom exception for input validation errors."""
    pass


class ConflictError(DatabaseError):
    """Indicates a conflicting identifier, e.g. a remote id already owned by another record."""

    def __init__(self, message="Conflict detected: conflicting record identifiers.", entity=None, identifier=None):
        super().__init__(message)
        self.entity = entity
        self.identifier = identifier

    def __str__(self):
        base = super().__str__()
        details = []
        if self.entity:
            details.append(f"Entity: {self.entity}")
        if self.identifier:
            details.append(f"ID: {self.identifier}")
        return f"{base} ({', '.join(details)})" if details else base


def _classify_sqlite_error(e: sqlite3.Error, action: str) -> DatabaseError:
    """Maps a raw sqlite3 error onto the store's exception hierarchy."""
    msg = str(e).lower()
    if isinstance(e, sqlite3.IntegrityError):
        if "sync error" in msg or "unique constraint failed: localrecords.remote_id" in msg:
            return ConflictError(f"{action} rejected: {e}", entity="LocalRecords")
        return DatabaseError(f"Integrity constraint violation during {action}: {e}")
    if isinstance(e, sqlite3.OperationalError) and ("locked" in msg or "busy" in msg):
        return StoreBusyError(f"{action} failed, database busy: {e}")
    return StorageError(f"{action} failed: {e}")


# --- Record Model ---
class SyncState(IntEnum):
    PENDING = 0
    SYNCED = 1


@dataclass
class LocalRecord:
    local_key: int
    kind: str
    payload: Dict[str, Any]
    captured_at: int
    sync_state: SyncState = SyncState.PENDING
    remote_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    attempt_count: int = 0
    last_error: Optional[str] = None
    last_attempt_at: Optional[str] = None
    needs_review: bool = False
    created_at: Optional[str] = field(default=None, compare=False)

    @property
    def is_synced(self) -> bool:
        return self.sync_state == SyncState.SYNCED

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "LocalRecord":
        return cls(
            local_key=row["local_key"],
            kind=row["kind"],
            payload=json.loads(row["payload"]),
            captured_at=row["captured_at"],
            sync_state=SyncState(row["synced"]),
            remote_id=row["remote_id"],
            idempotency_key=row["idempotency_key"],
            attempt_count=row["attempt_count"],
            last_error=row["last_error"],
            last_attempt_at=row["last_attempt_at"],
            needs_review=bool(row["needs_review"]),
            created_at=row["created_at"],
        )


def compute_idempotency_key(client_id: str, local_key: int, captured_at: int) -> str:
    """Stable per-record token the server can use to dedupe retried submissions."""
    raw = f"{client_id}:{local_key}:{captured_at}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


# --- Database Class ---
class RecordsDatabase:
    _CURRENT_SCHEMA_VERSION = 1

    _TABLES_SQL_V1 = """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY NOT NULL
    );
    INSERT OR IGNORE INTO schema_version (version) VALUES (0);

    CREATE TABLE IF NOT EXISTS LocalRecords (
        local_key INTEGER PRIMARY KEY AUTOINCREMENT,
        kind TEXT NOT NULL CHECK(kind IN ('report', 'person')),
        remote_id TEXT UNIQUE,
        synced INTEGER NOT NULL DEFAULT 0 CHECK(synced IN (0, 1)),
        payload TEXT NOT NULL,
        captured_at INTEGER NOT NULL,
        idempotency_key TEXT UNIQUE,
        attempt_count INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        last_attempt_at DATETIME,
        needs_review BOOLEAN NOT NULL DEFAULT 0,
        created_at DATETIME NOT NULL,
        CHECK ((synced = 1) = (remote_id IS NOT NULL))
    );
    """

    _INDICES_SQL_V1 = """
    CREATE INDEX IF NOT EXISTS idx_localrecords_synced ON LocalRecords(synced);
    CREATE INDEX IF NOT EXISTS idx_localrecords_kind_synced ON LocalRecords(kind, synced);
    CREATE INDEX IF NOT EXISTS idx_localrecords_captured_at ON LocalRecords(captured_at);
    """

    _TRIGGERS_SQL_V1 = """
    DROP TRIGGER IF EXISTS localrecords_validate_sync_update;
    CREATE TRIGGER localrecords_validate_sync_update BEFORE UPDATE ON LocalRecords
    BEGIN
        SELECT RAISE(ABORT, 'Sync Error (LocalRecords): remote_id cannot be changed once assigned.')
        WHERE OLD.remote_id IS NOT NULL AND NEW.remote_id IS NOT OLD.remote_id;
        SELECT RAISE(ABORT, 'Sync Error (LocalRecords): a synced record cannot revert to pending.')
        WHERE OLD.synced = 1 AND NEW.synced = 0;
    END;
    """

    _SCHEMA_UPDATE_VERSION_SQL_V1 = "UPDATE schema_version SET version = 1 WHERE version = 0;"

    def __init__(self, db_path: Union[str, Path], client_id: str):
        """
        Initializes the RecordsDatabase instance and ensures the schema is initialized or migrated.

        Args:
            db_path (Union[str, Path]): The path to the SQLite database file or ':memory:'.
            client_id (str): Identifier of this device, mixed into idempotency keys.

        Raises:
            ValueError: If client_id is empty or None.
            DatabaseError: If database initialization or schema setup fails.
        """
        if isinstance(db_path, Path):
            self.is_memory_db = False
            self.db_path = db_path.resolve()
        else:
            self.is_memory_db = (db_path == ':memory:')
            self.db_path = Path(":memory:") if self.is_memory_db else Path(db_path).resolve()
        self.db_path_str = ':memory:' if self.is_memory_db else str(self.db_path)

        if not client_id:
            raise ValueError("Client ID cannot be empty or None.")
        self.client_id = client_id

        if not self.is_memory_db:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(f"Failed to create database directory {self.db_path.parent}: {e}") from e

        logger.info(f"Initializing RecordsDatabase for path: {self.db_path_str} [Client ID: {self.client_id}]")
        self._local = threading.local()

        try:
            self._initialize_schema()
        except (DatabaseError, sqlite3.Error) as e:
            logger.critical(f"FATAL: Records DB initialization failed for {self.db_path_str}: {e}")
            self.close_connection()
            if isinstance(e, DatabaseError):
                raise
            raise DatabaseError(f"Records database initialization failed: {e}") from e

    # --- Connection Management ---
    def _get_thread_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, 'conn', None)
        if conn is not None:
            try:
                conn.execute("SELECT 1")
                return conn
            except (sqlite3.ProgrammingError, sqlite3.OperationalError):
                logger.warning(f"Thread-local connection to {self.db_path_str} was closed. Reopening.")
                self._local.conn = None

        try:
            conn = sqlite3.connect(
                self.db_path_str,
                check_same_thread=False,
                timeout=5,  # seconds
                isolation_level=None,  # explicit BEGIN/COMMIT via transaction()
            )
            conn.row_factory = sqlite3.Row
            if not self.is_memory_db:
                conn.execute("PRAGMA journal_mode=WAL;")
            self._local.conn = conn
            logger.debug(f"Opened SQLite connection to {self.db_path_str} [Thread: {threading.current_thread().name}]")
        except sqlite3.Error as e:
            self._local.conn = None
            raise StorageError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
        return conn

    def get_connection(self) -> sqlite3.Connection:
        return self._get_thread_connection()

    def close_connection(self):
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            return
        self._local.conn = None
        try:
            conn.close()
            logger.debug(f"Closed connection for thread {threading.current_thread().name}.")
        except sqlite3.Error as e:
            logger.warning(f"Error closing connection: {e}")

    # --- Transaction Context ---
    @contextmanager
    def transaction(self):
        conn = self.get_connection()
        in_outer = conn.in_transaction
        try:
            if not in_outer:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            if not in_outer:
                conn.commit()
        except Exception as e:
            if not in_outer:
                logger.debug(f"Transaction failed, rolling back: {type(e).__name__} - {e}")
                try:
                    conn.rollback()
                except sqlite3.Error as rb_err:
                    logger.error(f"Rollback FAILED: {rb_err}")
            raise

    # --- Schema Initialization and Migration ---
    def _get_db_version(self, conn: sqlite3.Connection) -> int:
        try:
            result = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            return result['version'] if result else 0
        except sqlite3.Error as e:
            if "no such table: schema_version" in str(e).lower():
                return 0
            raise SchemaError(f"Could not determine schema version: {e}") from e

    def _apply_schema_v1(self, conn: sqlite3.Connection):
        logger.info(f"Applying initial schema (Version 1) to DB: {self.db_path_str}...")
        # executescript() commits any open transaction itself, so the script carries its own BEGIN/COMMIT
        conn.executescript(f"""
            BEGIN;
            {self._TABLES_SQL_V1}
            {self._INDICES_SQL_V1}
            {self._TRIGGERS_SQL_V1}
            {self._SCHEMA_UPDATE_VERSION_SQL_V1}
            COMMIT;
        """)
        columns = {row['name'] for row in conn.execute("PRAGMA table_info(LocalRecords)").fetchall()}
        expected_cols = {'local_key', 'kind', 'remote_id', 'synced', 'payload', 'captured_at',
                         'idempotency_key', 'attempt_count', 'last_error', 'needs_review'}
        if not expected_cols.issubset(columns):
            raise SchemaError(f"Validation Error: LocalRecords table missing columns: {expected_cols - columns}")

    def _initialize_schema(self):
        conn = self.get_connection()
        current_db_version = self._get_db_version(conn)
        target_version = self._CURRENT_SCHEMA_VERSION
        logger.debug(f"Checking DB schema. Current: {current_db_version}, Code supports: {target_version}")

        if current_db_version == target_version:
            return
        if current_db_version > target_version:
            raise SchemaError(
                f"DB schema version ({current_db_version}) is newer than supported ({target_version}).")
        if current_db_version == 0:
            self._apply_schema_v1(conn)
            final_db_version = self._get_db_version(conn)
            if final_db_version != target_version:
                raise SchemaError(
                    f"Schema migration applied, but final DB version is {final_db_version}, expected {target_version}.")
            logger.info(f"Records database schema initialized to version {target_version}.")
        else:
            raise SchemaError(
                f"Migration needed from {current_db_version} to {target_version}, but no path defined.")

    # --- Internal Helpers ---
    @staticmethod
    def _get_current_utc_timestamp_str() -> str:
        return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'

    @staticmethod
    def _validate_kind(kind: Optional[str], allow_none: bool = True):
        if kind is None and allow_none:
            return
        if kind not in ALL_KINDS:
            raise InputError(f"Unknown record kind '{kind}'. Expected one of {ALL_KINDS}.")

    @staticmethod
    def _pending_filter(kind: Optional[str], include_flagged: bool):
        clauses = ["synced = 0"]
        params: List[Any] = []
        if kind is not None:
            clauses.append("kind = ?")
            params.append(kind)
        if not include_flagged:
            clauses.append("needs_review = 0")
        return " AND ".join(clauses), tuple(params)

    # --- Record Operations ---
    def add_record(self, kind: str, payload: Dict[str, Any], captured_at: Optional[int] = None) -> int:
        """
        Inserts a new PENDING record and returns its local key.

        Raises:
            InputError: If kind is unknown or payload is not a JSON-serializable dict.
            StorageError: If the write could not be persisted.
        """
        self._validate_kind(kind, allow_none=False)
        if not isinstance(payload, dict):
            raise InputError("Record payload must be a dictionary.")
        try:
            payload_json = json.dumps(payload, separators=(',', ':'))
        except (TypeError, ValueError) as e:
            raise InputError(f"Record payload is not JSON serializable: {e}") from e
        captured_at = int(captured_at) if captured_at is not None else int(time.time() * 1000)

        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    "INSERT INTO LocalRecords (kind, synced, payload, captured_at, created_at) VALUES (?, 0, ?, ?, ?)",
                    (kind, payload_json, captured_at, self._get_current_utc_timestamp_str()))
                local_key = cursor.lastrowid
                conn.execute("UPDATE LocalRecords SET idempotency_key = ? WHERE local_key = ?",
                             (compute_idempotency_key(self.client_id, local_key, captured_at), local_key))
        except sqlite3.Error as e:
            logger.error(f"Failed to store new {kind} record locally: {e}")
            raise _classify_sqlite_error(e, "Storing record") from e
        logger.debug(f"Stored {kind} record locally with key {local_key}.")
        return local_key

    def get_record(self, local_key: int) -> Optional[LocalRecord]:
        try:
            row = self.get_connection().execute(
                "SELECT * FROM LocalRecords WHERE local_key = ?", (local_key,)).fetchone()
        except sqlite3.Error as e:
            raise _classify_sqlite_error(e, "Reading record") from e
        return LocalRecord.from_row(row) if row else None

    def list_pending(self, kind: Optional[str] = None, include_flagged: bool = True) -> List[LocalRecord]:
        """Returns PENDING records oldest first (insertion order)."""
        self._validate_kind(kind)
        where, params = self._pending_filter(kind, include_flagged)
        try:
            rows = self.get_connection().execute(
                f"SELECT * FROM LocalRecords WHERE {where} ORDER BY local_key ASC", params).fetchall()
        except sqlite3.Error as e:
            raise _classify_sqlite_error(e, "Listing pending records") from e
        return [LocalRecord.from_row(row) for row in rows]

    def count_pending(self, kind: Optional[str] = None, include_flagged: bool = True) -> int:
        self._validate_kind(kind)
        where, params = self._pending_filter(kind, include_flagged)
        try:
            row = self.get_connection().execute(
                f"SELECT COUNT(*) AS pending FROM LocalRecords WHERE {where}", params).fetchone()
        except sqlite3.Error as e:
            raise _classify_sqlite_error(e, "Counting pending records") from e
        return row['pending']

    def list_all(self, kind: Optional[str] = None) -> List[LocalRecord]:
        """Full scan for display, newest capture first."""
        self._validate_kind(kind)
        query = "SELECT * FROM LocalRecords"
        params: tuple = ()
        if kind is not None:
            query += " WHERE kind = ?"
            params = (kind,)
        query += " ORDER BY captured_at DESC, local_key DESC"
        try:
            rows = self.get_connection().execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise _classify_sqlite_error(e, "Listing records") from e
        return [LocalRecord.from_row(row) for row in rows]

    def mark_synced(self, local_key: int, remote_id: str) -> bool:
        """
        Marks a record SYNCED with its server-assigned id.

        Returns:
            True if the record is (now or already) synced with `remote_id`,
            False if the record no longer exists.

        Raises:
            InputError: If remote_id is empty.
            ConflictError: If the record is synced under a different id,
                or another record already owns `remote_id`.
        """
        if not remote_id or not isinstance(remote_id, str):
            raise InputError("remote_id must be a non-empty string.")
        try:
            with self.transaction() as conn:
                row = conn.execute("SELECT synced, remote_id FROM LocalRecords WHERE local_key = ?",
                                   (local_key,)).fetchone()
                if row is None:
                    return False
                if row['synced'] == SyncState.SYNCED:
                    if row['remote_id'] == remote_id:
                        return True
                    raise ConflictError(
                        f"Record already synced as '{row['remote_id']}', refusing to re-assign '{remote_id}'.",
                        entity="LocalRecords", identifier=local_key)
                owner = conn.execute("SELECT local_key FROM LocalRecords WHERE remote_id = ?",
                                     (remote_id,)).fetchone()
                if owner is not None:
                    raise ConflictError(
                        f"Remote id '{remote_id}' is already assigned to local record {owner['local_key']}.",
                        entity="LocalRecords", identifier=local_key)
                conn.execute("""
                    UPDATE LocalRecords
                    SET synced = 1, remote_id = ?, last_error = NULL, needs_review = 0, last_attempt_at = ?,
                        attempt_count = attempt_count + 1
                    WHERE local_key = ? AND synced = 0
                    """, (remote_id, self._get_current_utc_timestamp_str(), local_key))
        except sqlite3.Error as e:
            raise _classify_sqlite_error(e, f"Marking record {local_key} synced") from e
        return True

    def record_sync_failure(self, local_key: int, error: str, permanent: bool = False) -> bool:
        """Stores the outcome of a failed submission. Returns False if the record vanished or is already synced."""
        try:
            with self.transaction() as conn:
                cursor = conn.execute("""
                    UPDATE LocalRecords
                    SET attempt_count = attempt_count + 1, last_error = ?, last_attempt_at = ?,
                        needs_review = CASE WHEN ? THEN 1 ELSE needs_review END
                    WHERE local_key = ? AND synced = 0
                    """, (error[:2000], self._get_current_utc_timestamp_str(), 1 if permanent else 0, local_key))
        except sqlite3.Error as e:
            raise _classify_sqlite_error(e, f"Recording failure for record {local_key}") from e
        return cursor.rowcount > 0

    def clear_review_flag(self, local_key: int) -> bool:
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    "UPDATE LocalRecords SET needs_review = 0 WHERE local_key = ? AND synced = 0 AND needs_review = 1",
                    (local_key,))
        except sqlite3.Error as e:
            raise _classify_sqlite_error(e, f"Re-queueing record {local_key}") from e
        return cursor.rowcount > 0

    def delete_record(self, local_key: int) -> bool:
        try:
            with self.transaction() as conn:
                cursor = conn.execute("DELETE FROM LocalRecords WHERE local_key = ?", (local_key,))
        except sqlite3.Error as e:
            raise _classify_sqlite_error(e, f"Deleting record {local_key}") from e
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"Deleted local record {local_key}.")
        return deleted

#
# End of Records_DB.py
#######################################################################################################################
