from __future__ import annotations

import hashlib
import logging
import time
from pathlib import Path
from typing import Callable

from pydantic import BaseModel, ValidationError

from settings import get_settings

from .json_store import atomic_write_json, read_json
from .paths import editing_locks_dir, normalize_document_id, safe_file_name

logger = logging.getLogger(__name__)


class LockInfo(BaseModel):
    """
    A soft "someone is editing this" claim. Timestamps are epoch seconds.
    """

    document_id: str
    holder: str
    acquired_at: float
    ttl_seconds: float

    @property
    def expires_at(self) -> float:
        return self.acquired_at + self.ttl_seconds

    def age(self, now: float) -> float:
        return max(0.0, now - self.acquired_at)

    def is_expired(self, now: float) -> bool:
        return now - self.acquired_at >= self.ttl_seconds


class EditingLockRegistry:
    """
    Advisory, short-TTL editing locks keyed by document id.

    Not a mutex: acquire() always succeeds and overwrites the previous record, and
    nothing here is consulted by DocumentStore. Collaborators poll inspect() to show
    "X is currently editing" warnings.

    Records live in <data_dir>/editing_locks/ as small JSON files.
    """

    def __init__(
        self,
        root: Path | None = None,
        *,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        settings = get_settings()
        self._root = root if root is not None else settings.data_dir
        self._ttl = float(ttl_seconds if ttl_seconds is not None else settings.edit_lock_ttl_seconds)
        self._clock = clock

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def acquire(self, document_id: str, holder: str, now: float | None = None) -> LockInfo:
        doc_id = normalize_document_id(document_id)
        info = LockInfo(
            document_id=doc_id,
            holder=(holder or "").strip() or "unknown",
            acquired_at=self._clock() if now is None else float(now),
            ttl_seconds=self._ttl,
        )
        atomic_write_json(
            self._record_path(doc_id),
            {"document_id": info.document_id, "holder": info.holder, "acquired_at": info.acquired_at},
        )
        logger.debug("Editing lock on %s taken by %s", doc_id, info.holder)
        return info

    def inspect(self, document_id: str, now: float | None = None) -> LockInfo | None:
        doc_id = normalize_document_id(document_id)
        path = self._record_path(doc_id)
        raw = read_json(path)
        if not isinstance(raw, dict):
            return None
        try:
            info = LockInfo.model_validate({**raw, "document_id": doc_id, "ttl_seconds": self._ttl})
        except ValidationError:
            logger.warning("Ignoring malformed editing lock record %s", path)
            return None

        ts = self._clock() if now is None else float(now)
        if info.is_expired(ts):
            # inspect() never deletes; records change only through acquire() and release().
            return None
        return info

    def release(self, document_id: str, holder: str) -> bool:
        """Drop the record if ``holder`` owns it. Returns True when a record was removed."""
        doc_id = normalize_document_id(document_id)
        path = self._record_path(doc_id)
        raw = read_json(path)
        if not isinstance(raw, dict) or raw.get("holder") != ((holder or "").strip() or "unknown"):
            return False
        return self._remove(path)

    def _record_path(self, document_id: str) -> Path:
        digest = hashlib.sha256(document_id.encode("utf-8")).hexdigest()[:12]
        return editing_locks_dir(self._root) / f"{safe_file_name(document_id)}-{digest}.json"

    @staticmethod
    def _remove(path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("Could not remove editing lock record %s: %r", path, e)
            return False
