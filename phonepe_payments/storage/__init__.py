from .base import AuditLog, StorageStatus
from .credentials import CredentialStore, EncryptedFileCredentialStore, MemoryCredentialStore
from .database import SQLiteAuditLog
from .memory import MemoryAuditLog

__all__ = [
    "AuditLog",
    "StorageStatus",
    "MemoryAuditLog",
    "SQLiteAuditLog",
    "CredentialStore",
    "MemoryCredentialStore",
    "EncryptedFileCredentialStore",
]
