from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from .errors import InvalidDocumentId


BACKUP_DIR_NAME = "backups"
EDITING_LOCK_DIR_NAME = "editing_locks"
# Final segments the HTTP routes claim for themselves.
ROUTE_SUFFIXES = frozenset({"editing-lock"})


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def editing_locks_dir(data_dir: Path) -> Path:
    return ensure_dir(data_dir / EDITING_LOCK_DIR_NAME)


def normalize_document_id(document_id: str) -> str:
    """
    Canonical form of a document id: a relative POSIX path with no "." or ".." parts.

    Ids that would land on the store's own files are refused: anything under a
    backups directory or the top-level editing_locks directory, lock and temp
    siblings, and final segments that collide with HTTP route suffixes.
    """
    raw = (document_id or "").strip().replace("\\", "/")
    if not raw or raw.startswith("/"):
        raise InvalidDocumentId(f"invalid document id {document_id!r}", document_id=document_id)
    parts = [p for p in PurePosixPath(raw).parts if p not in ("", ".")]
    if not parts or any(p == ".." for p in parts) or BACKUP_DIR_NAME in parts:
        raise InvalidDocumentId(f"invalid document id {document_id!r}", document_id=document_id)
    if parts[0] == EDITING_LOCK_DIR_NAME:
        raise InvalidDocumentId(f"{document_id!r} is inside the editing lock directory", document_id=document_id)
    name = parts[-1]
    if name.endswith(".lock") or ".tmp." in name or name in ROUTE_SUFFIXES:
        raise InvalidDocumentId(f"{document_id!r} names a reserved file", document_id=document_id)
    return "/".join(parts)


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_file_name(document_id: str) -> str:
    return _UNSAFE_CHARS.sub("_", normalize_document_id(document_id).replace("/", "__"))


@dataclass(frozen=True)
class DocumentPaths:
    """
    Filesystem layout for one document:

    - primary:  <data_dir>/<document_id>
    - lock:     <primary>.lock
    - temp:     <primary>.tmp.<suffix>   (see json_store.temp_sibling)
    - backups:  <primary dir>/backups/<file name>_<tier>_<slot>.json
    """

    document_id: str
    primary: Path

    @classmethod
    def for_document(cls, root: Path, document_id: str) -> "DocumentPaths":
        doc_id = normalize_document_id(document_id)
        return cls(document_id=doc_id, primary=root / doc_id)

    @property
    def lock(self) -> Path:
        return self.primary.with_name(self.primary.name + ".lock")

    @property
    def backup_dir(self) -> Path:
        return self.primary.parent / BACKUP_DIR_NAME

    @property
    def backup_prefix(self) -> str:
        # Unique per document id within one directory.
        return self.primary.name

    def backup_path(self, tier_name: str, slot_id: str) -> Path:
        return self.backup_dir / f"{self.backup_prefix}_{tier_name}_{slot_id}.json"

    def backup_glob(self, tier_name: str) -> str:
        return f"{self.backup_prefix}_{tier_name}_*.json"

    def slot_from_backup_name(self, tier_name: str, file_name: str) -> str | None:
        head = f"{self.backup_prefix}_{tier_name}_"
        if not file_name.startswith(head) or not file_name.endswith(".json"):
            return None
        slot = file_name[len(head) : -len(".json")]
        return slot or None
