"""SQLite record store - structured, durable persistence for one chain.

Layout (table audit_logs):
    seq         INTEGER PRIMARY KEY AUTOINCREMENT   append order
    id          TEXT UNIQUE
    actor_id    TEXT NULL          (indexed)
    action      TEXT
    payload     TEXT               canonical JSON
    created_at  TEXT               (indexed)
    origin      TEXT NULL
    prev_hash   TEXT
    hash        TEXT

Cross-process appenders are serialised by an flock on "<db>.lock"; inside
it each append is a BEGIN IMMEDIATE transaction that re-reads the tip.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from auditchain.audit.hash_chain import HashChain
from auditchain.audit.locking import ProcessFileLock, chain_critical_section
from auditchain.audit.schemas import AuditRecord
from auditchain.audit.store import RecordStore
from auditchain.common.constants import AuditConstants, SinkConstants, StoreConstants
from auditchain.common.exceptions import StorageError

logger = logging.getLogger(__name__)

_COLUMNS = "id, actor_id, action, payload, created_at, origin, prev_hash, hash"


class SQLiteRecordStore(RecordStore):
    """SQLite-backed append-only record store."""

    TABLE = StoreConstants.SQLITE_TABLE

    def __init__(
        self,
        db_path: Union[str, Path],
        lock_timeout: float = AuditConstants.LOCK_TIMEOUT_SECONDS,
        fetch_batch_size: int = StoreConstants.SQLITE_FETCH_BATCH,
    ):
        """Initialize SQLite store.

        Args:
            db_path: Database file (created if missing)
            lock_timeout: Default critical-section timeout in seconds
            fetch_batch_size: Rows fetched per round-trip in iterate_all()

        Raises:
            StorageError: If the database cannot be opened or initialised
        """
        super().__init__(lock_timeout=lock_timeout)
        self.db_path = Path(db_path)
        self.fetch_batch_size = fetch_batch_size
        self._file_lock = ProcessFileLock(
            self.db_path.with_name(self.db_path.name + SinkConstants.LOCK_SUFFIX)
        )
        self._local = threading.local()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()
        logger.info(f"SQLite record store initialized: {self.db_path}")

    def _connection(self) -> sqlite3.Connection:
        """Get this thread's connection (sqlite3 connections are per-thread)."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            try:
                conn = sqlite3.connect(
                    str(self.db_path),
                    timeout=self.lock_timeout,
                    isolation_level=None,
                )
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=FULL")
            except sqlite3.Error as e:
                raise StorageError(
                    f"Cannot open audit database {self.db_path}: {e}",
                    details={"db_path": str(self.db_path)},
                ) from e
            self._local.conn = conn
        return conn

    def _init_schema(self) -> None:
        try:
            conn = self._connection()
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.TABLE} (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    actor_id TEXT NULL,
                    action TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    origin TEXT NULL,
                    prev_hash TEXT NOT NULL,
                    hash TEXT NOT NULL
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{self.TABLE}_actor_id "
                f"ON {self.TABLE} (actor_id)"
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{self.TABLE}_created_at "
                f"ON {self.TABLE} (created_at)"
            )
        except sqlite3.Error as e:
            raise StorageError(f"Cannot initialise audit schema: {e}") from e

    @contextmanager
    def chain_lock(self, timeout: Optional[float] = None) -> Iterator[None]:
        with chain_critical_section(
            self._thread_lock, self._file_lock, self._timeout(timeout)
        ):
            yield

    @staticmethod
    def _row_to_record(row: tuple) -> AuditRecord:
        id_, actor_id, action, payload, created_at, origin, prev_hash, hash_ = row
        return AuditRecord(
            id=id_,
            actor_id=actor_id,
            action=action,
            payload=json.loads(payload),
            created_at=created_at,
            origin=origin,
            prev_hash=prev_hash,
            hash=hash_,
        )

    def fetch_tip(self) -> Optional[AuditRecord]:
        try:
            row = self._connection().execute(
                f"SELECT {_COLUMNS} FROM {self.TABLE} ORDER BY seq DESC LIMIT 1"
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read chain tip: {e}") from e
        return self._row_to_record(row) if row else None

    def fetch_tip_hash(self) -> str:
        try:
            row = self._connection().execute(
                f"SELECT hash FROM {self.TABLE} ORDER BY seq DESC LIMIT 1"
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read chain tip: {e}") from e
        return row[0] if row else AuditConstants.GENESIS_HASH

    def append(self, record: AuditRecord) -> None:
        conn = self._connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StorageError(f"Cannot start audit transaction: {e}") from e

        try:
            row = conn.execute(
                f"SELECT hash FROM {self.TABLE} ORDER BY seq DESC LIMIT 1"
            ).fetchone()
            self._check_tip(record, row[0] if row else AuditConstants.GENESIS_HASH)
            conn.execute(
                f"INSERT INTO {self.TABLE} ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.actor_id,
                    record.action,
                    HashChain.serialize_payload(record.payload),
                    record.created_at,
                    record.origin,
                    record.prev_hash,
                    record.hash,
                ),
            )
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            self._rollback(conn)
            logger.error(f"Audit append failed for {record.id}: {e}")
            raise StorageError(
                f"Failed to append audit record: {e}",
                details={"record_id": record.id},
            ) from e
        except Exception:
            self._rollback(conn)
            raise

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.warning(f"Rollback failed: {e}")

    def iterate_all(self) -> Iterator[AuditRecord]:
        """Yield records ordered by seq, fetching in batches."""
        last_seq = 0
        while True:
            try:
                rows = self._connection().execute(
                    f"SELECT seq, {_COLUMNS} FROM {self.TABLE} "
                    f"WHERE seq > ? ORDER BY seq ASC LIMIT ?",
                    (last_seq, self.fetch_batch_size),
                ).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to read audit records: {e}") from e

            if not rows:
                return
            for row in rows:
                last_seq = row[0]
                yield self._row_to_record(row[1:])

    def count(self) -> int:
        try:
            row = self._connection().execute(
                f"SELECT COUNT(*) FROM {self.TABLE}"
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to count audit records: {e}") from e
        return int(row[0])

    def close(self) -> None:
        """Close this thread's connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
