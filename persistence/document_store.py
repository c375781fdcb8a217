from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, NamedTuple

from settings import get_settings

from .backups import BackupManager, BackupStats, SnapshotVerification
from .errors import IOFailure, MalformedDocument, MutationRejected, UnrecoverableCorruption
from .interfaces import ChangeNotifier, LoggingChangeNotifier
from .json_store import decode_document, discard, encode_document, read_bytes, replace_atomic, write_temp
from .locks import ExclusiveLock
from .paths import DocumentPaths
from .retention import BackupRetentionPolicy, SnapshotInfo, default_tiers

logger = logging.getLogger(__name__)

_MISSING: Any = object()


class Mutation(NamedTuple):
    """
    What a mutate callback hands back to DocumentStore.update.

    - value: the new document (may be the loaded value, changed in place)
    - save: False to finish without touching storage
    - result: passed through to the caller as UpdateOutcome.result
    - error: abort the transaction with MutationRejected
    """

    value: Any
    save: bool = True
    result: Any = None
    error: str | None = None


@dataclass(frozen=True)
class UpdateOutcome:
    saved: bool
    value: Any
    result: Any = None
    snapshots: tuple[SnapshotInfo, ...] = ()


Mutator = Callable[[Any], Mutation]


class UpdatePhase(str, Enum):
    IDLE = "idle"
    LOCKING = "locking"
    LOADED = "loaded"
    MUTATED = "mutated"
    ABORTED = "aborted"
    COMMITTING = "committing"
    COMMITTED = "committed"
    UNLOCKED = "unlocked"


class DocumentStore:
    """
    JSON documents on disk with serialized read-modify-write transactions.

    - load() is lock-free; atomic renames mean it sees whole old or whole new content.
    - update() holds the document's exclusive lock for the whole cycle, snapshots the
      prior bytes into backup tiers, and commits via verified temp file + rename.
    - Corrupt primaries are recovered from the newest decodable snapshot.
    """

    def __init__(
        self,
        root: Path | None = None,
        *,
        policy: BackupRetentionPolicy | None = None,
        default_tiers_for_update: Iterable[str] | None = None,
        lock_attempts: int | None = None,
        lock_wait_seconds: float | None = None,
        notifier: ChangeNotifier | None = None,
        default_factory: Callable[[], Any] = dict,
        clock: Callable[[], datetime] = datetime.now,
    ):
        settings = get_settings()
        self._root = root if root is not None else settings.data_dir
        self._policy = policy or BackupRetentionPolicy(
            default_tiers(session_slots=settings.session_slots, daily_slots=settings.daily_slots)
        )
        self._backups = BackupManager(self._policy)
        tiers = tuple(default_tiers_for_update) if default_tiers_for_update is not None else settings.default_tiers
        for name in tiers:
            self._policy.tier(name)
        self._default_tiers = tiers
        self._lock_attempts = lock_attempts if lock_attempts is not None else settings.lock_attempts
        self._lock_wait = lock_wait_seconds if lock_wait_seconds is not None else settings.lock_wait_seconds
        self._notifier = notifier or LoggingChangeNotifier()
        self._default_factory = default_factory
        self._clock = clock

    def paths(self, document_id: str) -> DocumentPaths:
        return DocumentPaths.for_document(self._root, document_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load(self, document_id: str, *, default: Any = _MISSING) -> Any:
        """
        Return a private copy of the document.

        Missing file -> ``default`` (or the store's default factory). Corrupt file ->
        newest decodable snapshot, else ``default`` if one was passed, else
        UnrecoverableCorruption.
        """
        paths = self.paths(document_id)
        value, _ = self._load_with_recovery(paths, default)
        return value

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def update(
        self,
        document_id: str,
        mutate: Mutator,
        *,
        default: Any = _MISSING,
        tiers: Iterable[str] | None = None,
        event: str = "updated",
        deadline: float | None = None,
    ) -> UpdateOutcome:
        """
        Run ``mutate`` against the current document under the exclusive lock.

        ``tiers`` names the backup tiers that receive the prior content (defaults to
        the store's configured tiers). ``deadline`` caps the lock wait in seconds.
        Exceptions raised by ``mutate`` propagate after the lock is released.
        """
        paths = self.paths(document_id)
        tier_names = self._resolve_tiers(tiers)
        lock = self._lock(paths, deadline)

        self._phase(paths, UpdatePhase.LOCKING)
        lock.acquire()
        try:
            value, original = self._load_with_recovery(paths, default)
            self._phase(paths, UpdatePhase.LOADED)

            mutation = mutate(value)
            if not isinstance(mutation, Mutation):
                raise TypeError(f"mutate must return Mutation, got {type(mutation).__name__}")
            self._phase(paths, UpdatePhase.MUTATED)

            if mutation.error is not None:
                self._phase(paths, UpdatePhase.ABORTED)
                raise MutationRejected(mutation.error, document_id=paths.document_id)
            if not mutation.save:
                self._phase(paths, UpdatePhase.ABORTED)
                return UpdateOutcome(saved=False, value=mutation.value, result=mutation.result)

            self._phase(paths, UpdatePhase.COMMITTING)
            encoded = encode_document(mutation.value, document_id=paths.document_id)
            snapshots = self._snapshot_original(paths, original, tier_names)
            self._commit(paths, encoded)
            self._phase(paths, UpdatePhase.COMMITTED)
        finally:
            lock.release()
            self._phase(paths, UpdatePhase.UNLOCKED)

        logger.info("Committed %s (%d bytes, %d snapshot(s))", paths.document_id, len(encoded), len(snapshots))
        self._notify(paths.document_id, event)
        return UpdateOutcome(
            saved=True,
            # Fresh decode: must not alias the object mutate returned.
            value=decode_document(encoded, document_id=paths.document_id),
            result=mutation.result,
            snapshots=tuple(snapshots),
        )

    def replace(self, document_id: str, value: Any, **kwargs: Any) -> UpdateOutcome:
        return self.update(document_id, lambda _current: Mutation(value), **kwargs)

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    def list_snapshots(self, document_id: str) -> list[SnapshotInfo]:
        return self._backups.list_all(self.paths(document_id))

    def backup_stats(self, document_id: str) -> BackupStats:
        return self._backups.stats(self.paths(document_id))

    def verify_snapshot(self, document_id: str, tier_name: str, slot_id: str) -> SnapshotVerification:
        return self._backups.verify(self.paths(document_id), tier_name, slot_id)

    def cleanup(self, document_id: str, *, deadline: float | None = None) -> list[Path]:
        paths = self.paths(document_id)
        with self._lock(paths, deadline):
            return self._backups.cleanup(paths)

    def restore(
        self,
        document_id: str,
        tier_name: str,
        slot_id: str,
        *,
        event: str = "restored",
        deadline: float | None = None,
    ) -> Any:
        """
        Put a snapshot back as the primary document.

        The current primary content is first saved to the "recent" tier (when the
        policy has one) so a restore can itself be undone.
        """
        paths = self.paths(document_id)
        with self._lock(paths, deadline):
            raw = self._backups.read_snapshot(paths, tier_name, slot_id)
            value = decode_document(raw, document_id=paths.document_id)

            current = self._read_primary(paths)
            if current and self._policy.has_tier("recent"):
                self._backups.write_snapshot(paths, "recent", current, self._clock())

            self._commit(paths, raw)
            self._backups.cleanup(paths)

        logger.info("Restored %s from %s/%s", paths.document_id, tier_name, slot_id)
        self._notify(paths.document_id, event)
        return value

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock(self, paths: DocumentPaths, deadline: float | None) -> ExclusiveLock:
        return ExclusiveLock(
            paths.lock,
            attempts=self._lock_attempts,
            wait_seconds=self._lock_wait,
            deadline=deadline,
            document_id=paths.document_id,
        )

    def _resolve_tiers(self, tiers: Iterable[str] | None) -> tuple[str, ...]:
        if tiers is None:
            return self._default_tiers
        names = tuple(tiers)
        for name in names:
            self._policy.tier(name)
        return names

    def _default_value(self, default: Any) -> Any:
        if default is _MISSING:
            return self._default_factory()
        return copy.deepcopy(default() if callable(default) else default)

    def _read_primary(self, paths: DocumentPaths) -> bytes | None:
        try:
            return read_bytes(paths.primary)
        except OSError as e:
            raise IOFailure(f"failed to read {paths.document_id}: {e}", document_id=paths.document_id) from e

    def _load_with_recovery(self, paths: DocumentPaths, default: Any) -> tuple[Any, bytes | None]:
        """
        Returns (value, original bytes). Original bytes are None when the primary is
        missing, and are returned even when they failed to decode.
        """
        raw = self._read_primary(paths)
        if raw is None:
            return self._default_value(default), None

        try:
            return decode_document(raw, document_id=paths.document_id), raw
        except MalformedDocument as e:
            logger.warning("Primary document %s is corrupt (%s); trying snapshots", paths.document_id, e)

        for snap in self._backups.recovery_candidates(paths):
            if snap.path is None:
                continue
            try:
                content = read_bytes(snap.path)
                if content is None:
                    continue
                value = decode_document(content, document_id=paths.document_id)
            except (OSError, MalformedDocument) as e:
                logger.warning("Snapshot %s/%s of %s unusable: %s", snap.tier, snap.slot_id, paths.document_id, e)
                continue
            logger.warning("Recovered %s from snapshot %s/%s", paths.document_id, snap.tier, snap.slot_id)
            return value, raw

        if default is not _MISSING:
            logger.warning("No valid snapshot for %s; using caller default", paths.document_id)
            return self._default_value(default), raw
        raise UnrecoverableCorruption(
            f"{paths.document_id} and all of its snapshots failed to decode",
            document_id=paths.document_id,
        )

    def _snapshot_original(
        self,
        paths: DocumentPaths,
        original: bytes | None,
        tier_names: tuple[str, ...],
    ) -> list[SnapshotInfo]:
        if not original:
            return []
        try:
            decode_document(original, document_id=paths.document_id)
        except MalformedDocument:
            # Corrupt bytes would overwrite the snapshots recovery depends on.
            logger.warning("Not snapshotting corrupt content of %s", paths.document_id)
            return []
        now = self._clock()
        return [self._backups.write_snapshot(paths, name, original, now) for name in tier_names]

    def _commit(self, paths: DocumentPaths, encoded: bytes) -> None:
        try:
            tmp_path = write_temp(paths.primary, encoded)
        except OSError as e:
            raise IOFailure(f"failed to write temp file for {paths.document_id}: {e}", document_id=paths.document_id) from e

        try:
            check = tmp_path.read_bytes()
            if check != encoded:
                raise IOFailure(f"temp file for {paths.document_id} does not match", document_id=paths.document_id)
            decode_document(check, document_id=paths.document_id)
            replace_atomic(tmp_path, paths.primary)
        except MalformedDocument as e:
            discard(tmp_path)
            raise IOFailure(f"temp file for {paths.document_id} holds invalid JSON", document_id=paths.document_id) from e
        except OSError as e:
            discard(tmp_path)
            raise IOFailure(f"failed to replace {paths.document_id}: {e}", document_id=paths.document_id) from e
        except IOFailure:
            discard(tmp_path)
            raise

    def _notify(self, document_id: str, event: str) -> None:
        try:
            self._notifier.notify(document_id, event)
        except Exception as e:
            logger.warning("Change notification for %s (%s) failed: %r", document_id, event, e)

    @staticmethod
    def _phase(paths: DocumentPaths, phase: UpdatePhase) -> None:
        logger.debug("update %s: %s", paths.document_id, phase.value)

