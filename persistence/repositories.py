from __future__ import annotations

import asyncio
from typing import Any, Mapping, Protocol

from .backups import BackupStats
from .document_store import DocumentStore, Mutation, UpdateOutcome
from .editing_lock import EditingLockRegistry, LockInfo
from .grid_state import DiskGridStateRepository, GridState
from .retention import SnapshotInfo


class AsyncDocumentRepository(Protocol):
    async def load(self, document_id: str) -> Any: ...
    async def replace(self, document_id: str, value: Any, *, editor: str | None = None) -> UpdateOutcome: ...
    async def merge(self, document_id: str, changes: Mapping[str, Any], *, editor: str | None = None) -> UpdateOutcome: ...

    async def list_snapshots(self, document_id: str) -> list[SnapshotInfo]: ...
    async def backup_stats(self, document_id: str) -> BackupStats: ...
    async def restore(self, document_id: str, tier: str, slot_id: str) -> Any: ...

    async def acquire_editing_lock(self, document_id: str, holder: str) -> LockInfo: ...
    async def inspect_editing_lock(self, document_id: str) -> LockInfo | None: ...
    async def release_editing_lock(self, document_id: str, holder: str) -> bool: ...


class AsyncGridRepository(Protocol):
    async def get(self) -> GridState: ...
    async def save(
        self,
        cells: Mapping[str, Any],
        *,
        saved_by: str,
        connections: list[Any] | None = None,
        timestamp: str | None = None,
    ) -> GridState: ...
    async def merge_cells(self, changes: Mapping[str, Any], *, saved_by: str) -> tuple[GridState, bool]: ...


def _shallow_merge(changes: Mapping[str, Any]):
    def _mutate(current: Any) -> Mutation:
        if not isinstance(current, dict):
            return Mutation(current, error="document is not a JSON object")
        merged = {**current, **changes}
        if merged == current:
            return Mutation(current, save=False)
        return Mutation(merged)

    return _mutate


class AsyncDiskDocumentRepository(AsyncDocumentRepository):
    """
    Async wrapper around DocumentStore and EditingLockRegistry.
    Uses asyncio.to_thread to avoid blocking the event loop on file I/O and lock waits.
    """

    def __init__(self, store: DocumentStore, editing_locks: EditingLockRegistry) -> None:
        self._store = store
        self._editing_locks = editing_locks

    async def load(self, document_id: str) -> Any:
        return await asyncio.to_thread(self._store.load, document_id)

    async def replace(self, document_id: str, value: Any, *, editor: str | None = None) -> UpdateOutcome:
        outcome = await asyncio.to_thread(self._store.replace, document_id, value)
        await self._touch_editing_lock(document_id, editor)
        return outcome

    async def merge(self, document_id: str, changes: Mapping[str, Any], *, editor: str | None = None) -> UpdateOutcome:
        outcome = await asyncio.to_thread(self._store.update, document_id, _shallow_merge(dict(changes)))
        await self._touch_editing_lock(document_id, editor)
        return outcome

    async def list_snapshots(self, document_id: str) -> list[SnapshotInfo]:
        return await asyncio.to_thread(self._store.list_snapshots, document_id)

    async def backup_stats(self, document_id: str) -> BackupStats:
        return await asyncio.to_thread(self._store.backup_stats, document_id)

    async def restore(self, document_id: str, tier: str, slot_id: str) -> Any:
        return await asyncio.to_thread(self._store.restore, document_id, tier, slot_id)

    async def acquire_editing_lock(self, document_id: str, holder: str) -> LockInfo:
        return await asyncio.to_thread(self._editing_locks.acquire, document_id, holder)

    async def inspect_editing_lock(self, document_id: str) -> LockInfo | None:
        return await asyncio.to_thread(self._editing_locks.inspect, document_id)

    async def release_editing_lock(self, document_id: str, holder: str) -> bool:
        return await asyncio.to_thread(self._editing_locks.release, document_id, holder)

    async def _touch_editing_lock(self, document_id: str, editor: str | None) -> None:
        # A save is also a sign of activity; refresh the editor's claim.
        if editor:
            await self.acquire_editing_lock(document_id, editor)


class AsyncDiskGridRepository(AsyncGridRepository):
    def __init__(self, store: DocumentStore) -> None:
        self._repo = DiskGridStateRepository(store)

    async def get(self) -> GridState:
        return await asyncio.to_thread(self._repo.get)

    async def save(
        self,
        cells: Mapping[str, Any],
        *,
        saved_by: str,
        connections: list[Any] | None = None,
        timestamp: str | None = None,
    ) -> GridState:
        return await asyncio.to_thread(
            lambda: self._repo.save(cells, saved_by=saved_by, connections=connections, timestamp=timestamp)
        )

    async def merge_cells(self, changes: Mapping[str, Any], *, saved_by: str) -> tuple[GridState, bool]:
        return await asyncio.to_thread(lambda: self._repo.merge_cells(changes, saved_by=saved_by))
