from __future__ import annotations

import asyncio

import pytest

from persistence.editing_lock import EditingLockRegistry
from persistence.errors import MutationRejected
from persistence.grid_state import GRID_DOCUMENT_ID, DiskGridStateRepository, GridState
from persistence.repositories import AsyncDiskDocumentRepository, AsyncDiskGridRepository


def test_grid_repository_save_and_merge(store):
    repo = DiskGridStateRepository(store)

    assert repo.get() == GridState()

    saved = repo.save({"r1c1": {"text": "Forge"}}, saved_by="GM", connections=[["r1c1", "r1c2"]])
    assert saved.savedBy == "GM"
    assert saved.lastSaved is not None
    assert repo.get().editableCells == {"r1c1": {"text": "Forge"}}

    state, changed = repo.merge_cells({"r2c2": {"text": "Vault"}, "r1c1": None}, saved_by="zepha")
    assert changed is True
    assert state.editableCells == {"r2c2": {"text": "Vault"}}
    assert state.customConnections == [["r1c1", "r1c2"]]
    assert state.savedBy == "zepha"

    _, changed = repo.merge_cells({"r2c2": {"text": "Vault"}}, saved_by="zepha")
    assert changed is False


def test_grid_full_saves_rotate_session_slots(store):
    repo = DiskGridStateRepository(store)
    for n in range(4):
        repo.save({"r1c1": n}, saved_by="GM")

    session = [s for s in store.list_snapshots(GRID_DOCUMENT_ID) if s.tier == "session"]
    assert sorted(s.slot_id for s in session) == ["1", "2"]


def test_async_document_repository_flow(store, data_root):
    async def _run():
        repo = AsyncDiskDocumentRepository(store, EditingLockRegistry(data_root, ttl_seconds=10))

        outcome = await repo.replace("gm/tabs.json", {"tabs": ["npcs"]}, editor="GM")
        assert outcome.saved is True
        assert (await repo.inspect_editing_lock("gm/tabs.json")).holder == "GM"

        outcome = await repo.merge("gm/tabs.json", {"active": "npcs"})
        assert outcome.value == {"tabs": ["npcs"], "active": "npcs"}

        unchanged = await repo.merge("gm/tabs.json", {"active": "npcs"})
        assert unchanged.saved is False

        snapshots = await repo.list_snapshots("gm/tabs.json")
        assert [(s.tier, s.slot_id) for s in snapshots] == [("recent", "latest")]

        restored = await repo.restore("gm/tabs.json", "recent", "latest")
        assert restored == {"tabs": ["npcs"]}
        assert await repo.load("gm/tabs.json") == {"tabs": ["npcs"]}

        assert await repo.release_editing_lock("gm/tabs.json", "GM") is True

    asyncio.run(_run())


def test_merge_rejects_non_object_documents(store, data_root):
    async def _run():
        repo = AsyncDiskDocumentRepository(store, EditingLockRegistry(data_root))
        await repo.replace("list.json", [1, 2, 3])
        with pytest.raises(MutationRejected):
            await repo.merge("list.json", {"a": 1})

    asyncio.run(_run())


def test_async_grid_repository(store):
    async def _run():
        repo = AsyncDiskGridRepository(store)
        await repo.save({"a": 1}, saved_by="GM", timestamp="2025-03-01T12:00:00")
        grid = await repo.get()
        assert grid.timestamp == "2025-03-01T12:00:00"
        state, saved = await repo.merge_cells({"b": 2}, saved_by="GM")
        assert saved is True
        assert state.editableCells == {"a": 1, "b": 2}

    asyncio.run(_run())
