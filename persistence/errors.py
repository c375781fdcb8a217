"""
Exception hierarchy for the document store.

Every error raised by a store operation derives from DocumentStoreError, so
endpoint handlers can catch one type and render a structured failure body.
Each class carries a short machine-readable ``code``.
"""

from __future__ import annotations


class DocumentStoreError(Exception):
    """Base class for document store failures."""

    code = "store_error"

    def __init__(self, message: str, *, document_id: str | None = None) -> None:
        self.document_id = document_id
        super().__init__(message)


class InvalidDocumentId(DocumentStoreError):
    """Raised when a document id is empty or resolves outside the data directory."""

    code = "invalid_document_id"


class MalformedDocument(DocumentStoreError):
    """
    Raised when bytes do not parse as JSON.

    Recoverable: load paths fall back to snapshots before giving up.
    """

    code = "malformed_document"


class UnrecoverableCorruption(DocumentStoreError):
    """Raised when the primary file and every snapshot fail to decode."""

    code = "unrecoverable_corruption"


class Unencodable(DocumentStoreError):
    """Raised when a value cannot be represented as JSON (cycles, NaN, sets, ...)."""

    code = "unencodable"


class LockTimeout(DocumentStoreError):
    """Raised when the exclusive lock could not be acquired within the retry budget.

    Attributes:
        attempts: Number of acquisition attempts made before giving up.
    """

    code = "lock_timeout"

    def __init__(self, message: str, *, document_id: str | None = None, attempts: int = 0) -> None:
        self.attempts = attempts
        super().__init__(message, document_id=document_id)


class IOFailure(DocumentStoreError):
    """Raised when a filesystem write, rename or permission check fails."""

    code = "io_failure"


class MutationRejected(DocumentStoreError):
    """Raised when a mutation returns an error instead of a new value."""

    code = "mutation_rejected"


class SnapshotNotFound(DocumentStoreError):
    """Raised when a restore or verify names a slot that does not exist."""

    code = "snapshot_not_found"
