from __future__ import annotations

from .backups import BackupManager, BackupStats, SnapshotVerification
from .document_store import DocumentStore, Mutation, UpdateOutcome
from .editing_lock import EditingLockRegistry, LockInfo
from .errors import (
    DocumentStoreError,
    InvalidDocumentId,
    IOFailure,
    LockTimeout,
    MalformedDocument,
    MutationRejected,
    SnapshotNotFound,
    Unencodable,
    UnrecoverableCorruption,
)
from .grid_state import DiskGridStateRepository, GridState, GridStateRepository
from .interfaces import ChangeNotifier, LoggingChangeNotifier
from .repositories import (
    AsyncDiskDocumentRepository,
    AsyncDiskGridRepository,
    AsyncDocumentRepository,
    AsyncGridRepository,
)
from .retention import BackupRetentionPolicy, BackupTier, SlotStrategy, SnapshotInfo, default_tiers

__all__ = [
    "DocumentStore",
    "Mutation",
    "UpdateOutcome",
    "BackupManager",
    "BackupStats",
    "SnapshotVerification",
    "BackupRetentionPolicy",
    "BackupTier",
    "SlotStrategy",
    "SnapshotInfo",
    "default_tiers",
    "EditingLockRegistry",
    "LockInfo",
    "ChangeNotifier",
    "LoggingChangeNotifier",
    "GridState",
    "GridStateRepository",
    "DiskGridStateRepository",
    "AsyncDocumentRepository",
    "AsyncDiskDocumentRepository",
    "AsyncGridRepository",
    "AsyncDiskGridRepository",
    "DocumentStoreError",
    "InvalidDocumentId",
    "IOFailure",
    "LockTimeout",
    "MalformedDocument",
    "MutationRejected",
    "SnapshotNotFound",
    "Unencodable",
    "UnrecoverableCorruption",
]
