"""
SQLite audit log backend for production use.
"""

import json
import logging
import os
import sqlite3
from contextlib import closing
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..exceptions import ConfigurationError, DuplicateSignatureError, StorageError
from ..models import TransactionRecord
from .base import AuditLog

logger = logging.getLogger(__name__)

TABLE_NAME = "phonepe_logs"

JSON_COLUMNS = ("raw_request", "raw_response", "webhook_payload")
DATETIME_COLUMNS = ("processed_at", "created_at", "updated_at")


class SQLiteAuditLog(AuditLog):
    """
    SQLite audit log backend.

    Every operation opens its own connection so the backend can be shared
    between threads. Webhook deduplication relies on the UNIQUE constraint on
    ``signature``: two concurrent inserts of the same signature cannot both
    succeed, and the loser gets DuplicateSignatureError.
    """

    def __init__(self, db_path: str = "phonepe_audit.db", timeout: float = 30.0):
        self.db_path = db_path
        self.timeout = timeout
        super().__init__("SQLiteAuditLog")
        self._init_database()
        logger.info("SQLiteAuditLog initialized with database: %s", db_path)

    def _validate_configuration(self):
        if not self.db_path or not isinstance(self.db_path, str):
            raise ConfigurationError("db_path is required for SQLiteAuditLog.", config_key="db_path")
        if self.db_path == ":memory:":
            raise ConfigurationError(
                "SQLiteAuditLog needs a file path; use MemoryAuditLog for in-memory storage.", config_key="db_path"
            )
        parent = os.path.dirname(os.path.abspath(self.db_path))
        if not os.path.isdir(parent) or not os.access(parent, os.W_OK):
            raise ConfigurationError(f"Database directory {parent} is not writable", config_key="db_path")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        return conn

    def _perform_health_check(self):
        try:
            with closing(self._connect()) as conn:
                conn.execute("SELECT 1")
        except sqlite3.Error as e:
            raise StorageError(f"SQLiteAuditLog health check failed: {e}", storage_type="sqlite", operation="health_check")

    def _init_database(self):
        try:
            with closing(self._connect()) as conn, conn:
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        merchant_order_id TEXT,
                        gateway_order_id TEXT,
                        transaction_id TEXT,
                        merchant_refund_id TEXT,
                        refund_id TEXT,
                        amount INTEGER,
                        currency TEXT NOT NULL DEFAULT 'INR',
                        status TEXT NOT NULL DEFAULT 'PENDING',
                        event_type TEXT,
                        payment_instrument_type TEXT,
                        raw_request TEXT,
                        raw_response TEXT,
                        webhook_payload TEXT,
                        signature TEXT UNIQUE,
                        source_ip TEXT,
                        error_message TEXT,
                        processed_at TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                """
                )
                conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_merchant_order_id ON {TABLE_NAME} (merchant_order_id)")
                conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_gateway_order_id ON {TABLE_NAME} (gateway_order_id)")
                conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_merchant_refund_id ON {TABLE_NAME} (merchant_refund_id)")
            logger.info("Audit log table initialized successfully")
        except sqlite3.Error as e:
            logger.error("Error initializing database: %s", str(e))
            raise StorageError(f"Failed to initialize database: {str(e)}", storage_type="sqlite", operation="init")

    @staticmethod
    def _to_column(key: str, value: Any) -> Any:
        if value is None:
            return None
        if key in JSON_COLUMNS:
            return json.dumps(value, default=str)
        if key in DATETIME_COLUMNS and isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, Enum):
            return value.value
        return value

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> TransactionRecord:
        data = dict(row)
        for key in JSON_COLUMNS:
            if data.get(key) is not None:
                data[key] = json.loads(data[key])
        return TransactionRecord.from_dict(data)

    def create(self, record: TransactionRecord) -> TransactionRecord:
        data = record.to_dict()
        data.pop("id", None)
        columns = list(data)
        placeholders = ", ".join("?" for _ in columns)
        values = [self._to_column(key, data[key]) for key in columns]
        try:
            with closing(self._connect()) as conn, conn:
                cursor = conn.execute(
                    f"INSERT INTO {TABLE_NAME} ({', '.join(columns)}) VALUES ({placeholders})",
                    values,
                )
                record_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            if record.signature is not None and "signature" in str(e):
                raise DuplicateSignatureError(
                    "Audit record with this signature already exists",
                    storage_type="sqlite",
                    operation="create",
                    signature=record.signature,
                )
            raise StorageError(f"Failed to create audit record: {e}", storage_type="sqlite", operation="create")
        except sqlite3.Error as e:
            logger.error("Error creating audit record: %s", str(e))
            raise StorageError(f"Failed to create audit record: {e}", storage_type="sqlite", operation="create")

        created = self.get(record_id)
        if created is None:
            raise StorageError("Audit record vanished after insert", storage_type="sqlite", operation="create")
        logger.debug("Created audit record %s (%s)", record_id, created.event_type)
        return created

    def _apply_update(self, record_id: int, changes: Dict[str, Any]) -> TransactionRecord:
        columns = list(changes)
        assignments = ", ".join(f"{key} = ?" for key in columns)
        values = [self._to_column(key, changes[key]) for key in columns]
        try:
            with closing(self._connect()) as conn, conn:
                cursor = conn.execute(f"UPDATE {TABLE_NAME} SET {assignments} WHERE id = ?", values + [record_id])
                updated_rows = cursor.rowcount
        except sqlite3.IntegrityError as e:
            raise DuplicateSignatureError(
                f"Audit record update violates signature uniqueness: {e}",
                storage_type="sqlite",
                operation="update",
                signature=changes.get("signature"),
            )
        except sqlite3.Error as e:
            logger.error("Error updating audit record %s: %s", record_id, str(e))
            raise StorageError(
                f"Failed to update audit record: {e}", storage_type="sqlite", operation="update", entity_id=str(record_id)
            )
        if not updated_rows:
            raise StorageError(
                f"Audit record {record_id} not found", storage_type="sqlite", operation="update", entity_id=str(record_id)
            )
        record = self.get(record_id)
        assert record is not None
        return record

    def _query(self, where: str = "", params: tuple = (), order: str = "id ASC", limit: Optional[int] = None):
        sql = f"SELECT * FROM {TABLE_NAME}"
        if where:
            sql += f" WHERE {where}"
        sql += f" ORDER BY {order}"
        if limit is not None:
            sql += " LIMIT ?"
            params = params + (int(limit),)
        try:
            with closing(self._connect()) as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error("Error querying audit log: %s", str(e))
            raise StorageError(f"Failed to query audit log: {e}", storage_type="sqlite", operation="query")
        return [self._row_to_record(row) for row in rows]

    def get(self, record_id: int) -> Optional[TransactionRecord]:
        rows = self._query("id = ?", (record_id,))
        return rows[0] if rows else None

    def find_by_signature(self, signature: str) -> Optional[TransactionRecord]:
        rows = self._query("signature = ?", (signature,))
        return rows[0] if rows else None

    def find_by_merchant_order_id(self, merchant_order_id: str) -> List[TransactionRecord]:
        return self._query("merchant_order_id = ?", (merchant_order_id,))

    def find_by_merchant_refund_id(self, merchant_refund_id: str) -> List[TransactionRecord]:
        return self._query("merchant_refund_id = ?", (merchant_refund_id,))

    def list_records(self, limit: Optional[int] = None) -> List[TransactionRecord]:
        return self._query(order="id DESC", limit=limit)
