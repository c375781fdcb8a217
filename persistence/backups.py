from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from .errors import IOFailure, MalformedDocument, SnapshotNotFound
from .json_store import decode_document, read_bytes, write_bytes_atomic
from .paths import DocumentPaths
from .retention import (
    SINGLE_SLOT_ID,
    BackupRetentionPolicy,
    BackupTier,
    SlotStrategy,
    SnapshotInfo,
    newest_first,
)

logger = logging.getLogger(__name__)


class SnapshotVerification(BaseModel):
    tier: str
    slot_id: str
    valid_json: bool
    size: int
    records: int = 0
    error: str | None = None


class BackupStats(BaseModel):
    total_backups: int = 0
    total_size: int = 0
    by_tier: dict[str, int] = Field(default_factory=dict)
    oldest_backup: str | None = None
    newest_backup: str | None = None


def count_records(value: Any) -> int:
    """Number of entries across the top-level collections of a document (metadata excluded)."""
    if not isinstance(value, dict):
        return len(value) if isinstance(value, list) else 0
    count = 0
    for key, item in value.items():
        if key != "metadata" and isinstance(item, (dict, list)):
            count += len(item)
    return count


class BackupManager:
    """
    Snapshot files for documents, laid out by DocumentPaths and retained by a
    BackupRetentionPolicy.

    Callers that write snapshots are expected to hold the document's exclusive lock.
    """

    def __init__(self, policy: BackupRetentionPolicy):
        self._policy = policy

    def list_tier(self, paths: DocumentPaths, tier_name: str) -> list[SnapshotInfo]:
        tier = self._policy.tier(tier_name)
        if not paths.backup_dir.is_dir():
            return []
        members: list[SnapshotInfo] = []
        for file in paths.backup_dir.glob(paths.backup_glob(tier.name)):
            slot = paths.slot_from_backup_name(tier.name, file.name)
            if slot is None or not _slot_matches(tier, slot):
                continue
            try:
                st = file.stat()
            except FileNotFoundError:
                # Evicted by a concurrent cleanup between glob and stat.
                continue
            members.append(
                SnapshotInfo(tier=tier.name, slot_id=slot, modified=st.st_mtime, path=file, size=st.st_size)
            )
        return members

    def list_all(self, paths: DocumentPaths) -> list[SnapshotInfo]:
        members: list[SnapshotInfo] = []
        for tier in self._policy.tiers:
            members.extend(self.list_tier(paths, tier.name))
        return newest_first(members)

    def recovery_candidates(self, paths: DocumentPaths) -> list[SnapshotInfo]:
        """Latest "recent" snapshot first, then every other snapshot newest-first."""
        first: list[SnapshotInfo] = []
        if self._policy.has_tier("recent"):
            first = newest_first(self.list_tier(paths, "recent"))[:1]
        seen = {(m.tier, m.slot_id) for m in first}
        rest = [m for m in self.list_all(paths) if (m.tier, m.slot_id) not in seen]
        return first + rest

    def write_snapshot(
        self,
        paths: DocumentPaths,
        tier_name: str,
        content: bytes,
        now: datetime | None = None,
    ) -> SnapshotInfo:
        ts = now or datetime.now()
        members = self.list_tier(paths, tier_name)
        placement = self._policy.place_snapshot(tier_name, members, ts)

        for slot in placement.evict:
            self._remove(paths.backup_path(tier_name, slot))

        target = paths.backup_path(tier_name, placement.slot_id)
        write_bytes_atomic(target, content)
        stamp = ts.timestamp()
        try:
            os.utime(target, (stamp, stamp))
        except OSError as e:
            raise IOFailure(f"failed to stamp snapshot {target}: {e}", document_id=paths.document_id) from e

        logger.debug(
            "Snapshot %s: tier=%s slot=%s overwrite=%s evicted=%s",
            paths.document_id,
            tier_name,
            placement.slot_id,
            placement.overwrite,
            list(placement.evict),
        )
        return SnapshotInfo(
            tier=tier_name,
            slot_id=placement.slot_id,
            modified=stamp,
            path=target,
            size=len(content),
        )

    def cleanup(self, paths: DocumentPaths) -> list[Path]:
        """Delete snapshots beyond each tier's cap. Safe to call repeatedly."""
        removed: list[Path] = []
        for tier in self._policy.tiers:
            members = self.list_tier(paths, tier.name)
            for slot in self._policy.plan_cleanup(tier.name, members):
                path = paths.backup_path(tier.name, slot)
                if self._remove(path):
                    removed.append(path)
        if removed:
            logger.info("Backup cleanup for %s removed %d snapshot(s)", paths.document_id, len(removed))
        return removed

    def read_snapshot(self, paths: DocumentPaths, tier_name: str, slot_id: str) -> bytes:
        if not self._policy.has_tier(tier_name):
            raise SnapshotNotFound(f"no backup tier {tier_name!r}", document_id=paths.document_id)
        tier = self._policy.tier(tier_name)
        if not _slot_matches(tier, slot_id):
            raise SnapshotNotFound(f"no snapshot {tier_name}/{slot_id}", document_id=paths.document_id)
        try:
            raw = read_bytes(paths.backup_path(tier.name, slot_id))
        except OSError as e:
            raise IOFailure(f"failed to read snapshot {tier_name}/{slot_id}: {e}", document_id=paths.document_id) from e
        if raw is None:
            raise SnapshotNotFound(f"no snapshot {tier_name}/{slot_id}", document_id=paths.document_id)
        return raw

    def verify(self, paths: DocumentPaths, tier_name: str, slot_id: str) -> SnapshotVerification:
        raw = self.read_snapshot(paths, tier_name, slot_id)
        try:
            value = decode_document(raw, document_id=paths.document_id)
        except MalformedDocument as e:
            return SnapshotVerification(
                tier=tier_name, slot_id=slot_id, valid_json=False, size=len(raw), error=str(e)
            )
        return SnapshotVerification(
            tier=tier_name, slot_id=slot_id, valid_json=True, size=len(raw), records=count_records(value)
        )

    def stats(self, paths: DocumentPaths) -> BackupStats:
        members = self.list_all(paths)
        stats = BackupStats(by_tier={t.name: 0 for t in self._policy.tiers})
        if not members:
            return stats
        for m in members:
            stats.total_backups += 1
            stats.total_size += m.size
            stats.by_tier[m.tier] = stats.by_tier.get(m.tier, 0) + 1
        newest, oldest = members[0], members[-1]
        stats.newest_backup = paths.backup_path(newest.tier, newest.slot_id).name
        stats.oldest_backup = paths.backup_path(oldest.tier, oldest.slot_id).name
        return stats

    @staticmethod
    def _remove(path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise IOFailure(f"failed to remove snapshot {path}: {e}") from e


def _slot_matches(tier: BackupTier, slot_id: str) -> bool:
    if tier.strategy is SlotStrategy.SINGLE:
        return slot_id == SINGLE_SLOT_ID
    if tier.strategy is SlotStrategy.ROUND_ROBIN:
        return slot_id.isdigit()
    try:
        datetime.strptime(slot_id, tier.period_format)
    except ValueError:
        return False
    return True
