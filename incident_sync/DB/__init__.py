from .Records_DB import (
    RecordsDatabase, LocalRecord, SyncState, compute_idempotency_key,
    DatabaseError, StorageError, StoreBusyError, SchemaError, InputError, ConflictError,
)
from .local_store import LocalRecordStore

__all__ = [
    "RecordsDatabase", "LocalRecord", "SyncState", "compute_idempotency_key",
    "DatabaseError", "StorageError", "StoreBusyError", "SchemaError", "InputError", "ConflictError",
    "LocalRecordStore",
]
