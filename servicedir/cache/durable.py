"""
SQLite-backed durable cache tier.

Keeps a subset of the entry store across process restarts. Every record is
stamped with the schema version of the code that wrote it; bumping the
version invalidates everything written before.

Durability is an optimization: every I/O or (de)serialization failure is
logged and degrades to "absent".
"""
import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Optional, Tuple

from servicedir.errors import CorruptRecordError

from .core import DurableRecord
from .entry_store import MISSING

logger = logging.getLogger("cache.durable")


SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_records (
    key TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    inserted_at REAL NOT NULL,
    ttl REAL NOT NULL,
    schema_version INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cache_records_version ON cache_records(schema_version);
"""


def _identity(value: Any) -> Any:
    return value


class DurableStore:
    """
    Persistent key/value records with TTL and schema version.

    Values go through ``encode`` (to something JSON-serializable) before
    being written and through ``decode`` after being read.
    """

    def __init__(
        self,
        db_path: Path,
        schema_version: int,
        encode: Callable[[Any], Any] = _identity,
        decode: Callable[[Any], Any] = _identity,
        clock: Callable[[], float] = time.time,
    ):
        self.db_path = Path(db_path)
        self.schema_version = schema_version
        self._encode = encode
        self._decode = decode
        self._clock = clock
        self._available = False

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._init_db()
            self._available = True
        except (OSError, sqlite3.Error) as e:
            logger.warning(f"Durable cache disabled, cannot open {self.db_path}: {e}")

    def _init_db(self):
        """Initialize database with schema."""
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    @contextmanager
    def _get_connection(self):
        """Get a database connection."""
        conn = sqlite3.connect(str(self.db_path), timeout=5.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @property
    def available(self) -> bool:
        return self._available

    # =========================================================================
    # Records
    # =========================================================================

    def load(self, key: str) -> Any:
        """
        Load and decode a record.

        Returns MISSING if the record is absent, expired, written by another
        schema version, or cannot be decoded. Invalid records are deleted.
        """
        value, _ = self.load_with_remaining(key)
        return value

    def load_with_remaining(self, key: str) -> Tuple[Any, float]:
        """
        Like load(), also returning the seconds the record has left to live.

        Returns (MISSING, 0.0) when load() would return MISSING.
        """
        if not self._available:
            return MISSING, 0.0

        try:
            record = self._read_record(key)
        except sqlite3.Error as e:
            logger.warning(f"Durable read failed for {key}: {e}")
            return MISSING, 0.0

        if record is None:
            return MISSING, 0.0

        now = self._clock()
        try:
            value = self._validate_and_decode(record, now)
        except CorruptRecordError as e:
            logger.info(f"Dropping durable record {key}: {e}")
            self.delete(key)
            return MISSING, 0.0
        return value, record.inserted_at + record.ttl - now

    def _read_record(self, key: str) -> Optional[DurableRecord]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM cache_records WHERE key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return None
        return DurableRecord(
            key=row["key"],
            payload=row["payload"],
            inserted_at=row["inserted_at"],
            ttl=row["ttl"],
            schema_version=row["schema_version"],
        )

    def _validate_and_decode(self, record: DurableRecord, now: float) -> Any:
        if record.schema_version != self.schema_version:
            raise CorruptRecordError(
                f"schema version {record.schema_version} != {self.schema_version}"
            )
        if not record.is_valid(now, self.schema_version):
            raise CorruptRecordError("expired")
        try:
            return self._decode(json.loads(record.payload))
        except (ValueError, TypeError, KeyError) as e:
            raise CorruptRecordError(f"undecodable payload: {e}") from e

    def save(self, key: str, value: Any, ttl: float) -> bool:
        """
        Encode and persist a value.

        Returns:
            True if written. Serialization or I/O failures are logged and skipped.
        """
        if not self._available:
            return False

        try:
            payload = json.dumps(self._encode(value), ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.warning(f"Skipping durable write for {key}, not serializable: {e}")
            return False

        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO cache_records (
                        key, payload, inserted_at, ttl, schema_version
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    (key, payload, self._clock(), ttl, self.schema_version),
                )
                conn.commit()
            return True
        except sqlite3.Error as e:
            logger.warning(f"Durable write failed for {key}: {e}")
            return False

    def delete(self, key: str) -> bool:
        """Remove a record. Returns True if one was removed."""
        if not self._available:
            return False
        try:
            with self._get_connection() as conn:
                cursor = conn.execute("DELETE FROM cache_records WHERE key = ?", (key,))
                conn.commit()
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            logger.warning(f"Durable delete failed for {key}: {e}")
            return False

    def delete_pattern(self, pattern: str) -> int:
        """Remove every record whose key contains the pattern."""
        if not self._available:
            return 0
        escaped = pattern.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "DELETE FROM cache_records WHERE key LIKE ? ESCAPE '\\'",
                    (f"%{escaped}%",),
                )
                conn.commit()
                return cursor.rowcount
        except sqlite3.Error as e:
            logger.warning(f"Durable pattern delete failed for '{pattern}': {e}")
            return 0

    # =========================================================================
    # Maintenance
    # =========================================================================

    def clear_expired(self) -> int:
        """
        Purge expired, stale-schema and undecodable records.

        Meant to run once per session start, not on every access.

        Returns:
            Number of records removed
        """
        if not self._available:
            return 0

        now = self._clock()
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    """
                    DELETE FROM cache_records
                    WHERE schema_version != ? OR inserted_at + ttl <= ?
                    """,
                    (self.schema_version, now),
                )
                removed = cursor.rowcount

                corrupt = []
                for row in conn.execute("SELECT key, payload FROM cache_records"):
                    try:
                        json.loads(row["payload"])
                    except ValueError:
                        corrupt.append(row["key"])
                for key in corrupt:
                    conn.execute("DELETE FROM cache_records WHERE key = ?", (key,))
                conn.commit()
        except sqlite3.Error as e:
            logger.warning(f"Durable cleanup failed: {e}")
            return 0

        removed += len(corrupt)
        if removed:
            logger.info(f"Durable cleanup removed {removed} records")
        return removed

    def clear(self) -> int:
        """Remove all records."""
        if not self._available:
            return 0
        try:
            with self._get_connection() as conn:
                cursor = conn.execute("DELETE FROM cache_records")
                conn.commit()
                return cursor.rowcount
        except sqlite3.Error as e:
            logger.warning(f"Durable clear failed: {e}")
            return 0

    def count(self) -> int:
        """Number of stored records, valid or not."""
        if not self._available:
            return 0
        try:
            with self._get_connection() as conn:
                return conn.execute("SELECT COUNT(*) FROM cache_records").fetchone()[0]
        except sqlite3.Error as e:
            logger.warning(f"Durable count failed: {e}")
            return 0

    def approx_size_bytes(self) -> int:
        """Total payload size in bytes."""
        if not self._available:
            return 0
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT COALESCE(SUM(LENGTH(CAST(payload AS BLOB))), 0) FROM cache_records"
                ).fetchone()
                return int(row[0])
        except sqlite3.Error as e:
            logger.warning(f"Durable size query failed: {e}")
            return 0
