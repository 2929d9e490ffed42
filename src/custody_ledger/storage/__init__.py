"""Storage module - Database, blob store and ledger recorder."""

from .database import Database, get_db, init_database, set_db
from .models import CaseDB, CheckpointDB, EvidenceDB
from .repository import SQLEvidenceRepository
from .blobstore import BlobStore, LocalBlobStore
from .ledger import LedgerRecorder, NoopLedgerRecorder

__all__ = [
    "Database",
    "get_db",
    "init_database",
    "set_db",
    "CaseDB",
    "CheckpointDB",
    "EvidenceDB",
    "SQLEvidenceRepository",
    "BlobStore",
    "LocalBlobStore",
    "LedgerRecorder",
    "NoopLedgerRecorder",
]
