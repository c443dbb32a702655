"""
Abstract base class for audit log backends.

Defines the CRUD contract the gateway client and the webhook processor rely
on. Backends must enforce signature uniqueness themselves, atomically, and
report a conflict by raising DuplicateSignatureError.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..exceptions import StorageError, ValidationError
from ..models import TransactionRecord

logger = logging.getLogger(__name__)

# Columns that may change after a record is created.
UPDATABLE_FIELDS = frozenset(TransactionRecord.field_names()) - {"id", "created_at", "updated_at"}


@dataclass
class StorageStatus:
    """Represents the current status of an audit log backend."""

    is_healthy: bool = True
    last_check: Optional[datetime] = None
    error_message: Optional[str] = None
    response_time_ms: Optional[float] = None
    record_count: Optional[int] = None

    def __post_init__(self):
        if self.last_check is None:
            self.last_check = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert status to dictionary."""
        return {
            "is_healthy": self.is_healthy,
            "last_check": self.last_check.isoformat() if self.last_check else None,
            "error_message": self.error_message,
            "response_time_ms": self.response_time_ms,
            "record_count": self.record_count,
        }


class AuditLog(ABC):
    """
    Abstract base class for audit log backends.

    Records are append-then-update: ``create`` assigns the id, ``update``
    mutates known columns in place, nothing is ever deleted.
    """

    def __init__(self, name: str):
        """Initialize the audit log backend."""
        self.name = name
        self.status = StorageStatus()
        self._validate_configuration()
        logger.info("Initialized audit log backend: %s", self.name)

    @abstractmethod
    def _validate_configuration(self) -> None:
        """Validate the backend configuration."""
        pass

    @abstractmethod
    def create(self, record: TransactionRecord) -> TransactionRecord:
        """
        Persist a new record and return it with its id assigned.

        Raises:
            DuplicateSignatureError: If ``record.signature`` is already stored
            StorageError: On any other persistence failure
        """
        pass

    @abstractmethod
    def _apply_update(self, record_id: int, changes: Dict[str, Any]) -> TransactionRecord:
        """Write already-validated changes and return the updated record."""
        pass

    @abstractmethod
    def get(self, record_id: int) -> Optional[TransactionRecord]:
        """Retrieve a record by id."""
        pass

    @abstractmethod
    def find_by_signature(self, signature: str) -> Optional[TransactionRecord]:
        """Retrieve the record carrying a webhook signature."""
        pass

    @abstractmethod
    def find_by_merchant_order_id(self, merchant_order_id: str) -> List[TransactionRecord]:
        """All records of a merchant order, oldest first."""
        pass

    @abstractmethod
    def find_by_merchant_refund_id(self, merchant_refund_id: str) -> List[TransactionRecord]:
        """All records of a merchant refund, oldest first."""
        pass

    @abstractmethod
    def list_records(self, limit: Optional[int] = None) -> List[TransactionRecord]:
        """List records, newest first."""
        pass

    @abstractmethod
    def _perform_health_check(self) -> None:
        """Return None when healthy, raise otherwise."""
        pass

    def signature_exists(self, signature: str) -> bool:
        """Check whether a webhook with this signature was already recorded."""
        return self.find_by_signature(signature) is not None

    def update(self, record_id: int, **changes: Any) -> TransactionRecord:
        """
        Update columns of an existing record and bump ``updated_at``.

        Raises:
            ValidationError: For unknown column names
            StorageError: If the record does not exist or the write fails
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Cannot update unknown audit fields: {sorted(unknown)}", field="changes", value=sorted(unknown)
            )
        changes["updated_at"] = datetime.now(timezone.utc)
        record = self._apply_update(record_id, changes)
        logger.debug("Audit record %s updated: %s", record_id, sorted(changes))
        return record

    def health_check(self) -> StorageStatus:
        """Run a health check and record the outcome in ``self.status``."""
        start = time.time()
        try:
            self._perform_health_check()
            self.status = StorageStatus(
                is_healthy=True,
                response_time_ms=(time.time() - start) * 1000,
                record_count=len(self.list_records()),
            )
        except (StorageError, OSError) as e:
            logger.error("Audit log health check failed for %s: %s", self.name, e)
            self.status = StorageStatus(
                is_healthy=False,
                error_message=str(e),
                response_time_ms=(time.time() - start) * 1000,
            )
        return self.status

    def get_storage_info(self) -> Dict[str, Any]:
        """Get backend name and last known status."""
        return {"name": self.name, "status": self.status.to_dict()}
