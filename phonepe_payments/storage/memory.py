"""
In-memory audit log for development and testing.

This backend stores all records in memory and is not persistent.
"""

import copy
import itertools
import logging
import threading
from typing import Any, Dict, List, Optional

from ..exceptions import DuplicateSignatureError, StorageError
from ..models import TransactionRecord
from .base import AuditLog

logger = logging.getLogger(__name__)


class MemoryAuditLog(AuditLog):
    """
    In-memory audit log.

    A single re-entrant lock makes the signature check and the insert one
    atomic step, matching what a UNIQUE constraint gives a database backend.
    Callers always receive copies, so mutating a returned record never
    changes the stored one.
    """

    def __init__(self):
        """Initialize the memory audit log."""
        self.records: Dict[int, TransactionRecord] = {}
        self._signatures: Dict[str, int] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()
        super().__init__("MemoryAuditLog")

    def _validate_configuration(self):
        """No configuration needed for memory storage."""
        pass

    def _perform_health_check(self):
        with self._lock:
            _ = len(self.records)

    def create(self, record: TransactionRecord) -> TransactionRecord:
        with self._lock:
            if record.signature is not None and record.signature in self._signatures:
                raise DuplicateSignatureError(
                    "Audit record with this signature already exists",
                    storage_type="memory",
                    operation="create",
                    signature=record.signature,
                )
            stored = copy.deepcopy(record)
            stored.id = next(self._ids)
            self.records[stored.id] = stored
            if stored.signature is not None:
                self._signatures[stored.signature] = stored.id
            logger.debug("Created audit record %s (%s)", stored.id, stored.event_type)
            return copy.deepcopy(stored)

    def _apply_update(self, record_id: int, changes: Dict[str, Any]) -> TransactionRecord:
        with self._lock:
            stored = self.records.get(record_id)
            if stored is None:
                raise StorageError(
                    f"Audit record {record_id} not found", storage_type="memory", operation="update", entity_id=str(record_id)
                )
            new_signature = changes.get("signature")
            if new_signature is not None and new_signature != stored.signature:
                if new_signature in self._signatures:
                    raise DuplicateSignatureError(
                        "Audit record with this signature already exists",
                        storage_type="memory",
                        operation="update",
                        signature=new_signature,
                    )
                self._signatures.pop(stored.signature, None)
                self._signatures[new_signature] = record_id
            updated = TransactionRecord.from_dict({**stored.to_dict(), **changes})
            self.records[record_id] = updated
            return copy.deepcopy(updated)

    def get(self, record_id: int) -> Optional[TransactionRecord]:
        with self._lock:
            record = self.records.get(record_id)
            return copy.deepcopy(record) if record else None

    def find_by_signature(self, signature: str) -> Optional[TransactionRecord]:
        with self._lock:
            record_id = self._signatures.get(signature)
            return self.get(record_id) if record_id is not None else None

    def _select(self, predicate) -> List[TransactionRecord]:
        with self._lock:
            return [copy.deepcopy(r) for _, r in sorted(self.records.items()) if predicate(r)]

    def find_by_merchant_order_id(self, merchant_order_id: str) -> List[TransactionRecord]:
        return self._select(lambda r: r.merchant_order_id == merchant_order_id)

    def find_by_merchant_refund_id(self, merchant_refund_id: str) -> List[TransactionRecord]:
        return self._select(lambda r: r.merchant_refund_id == merchant_refund_id)

    def list_records(self, limit: Optional[int] = None) -> List[TransactionRecord]:
        records = list(reversed(self._select(lambda r: True)))
        return records[:limit] if limit is not None else records
