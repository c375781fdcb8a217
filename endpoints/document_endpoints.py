# document_endpoints.py
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from persistence.document_store import DocumentStore, UpdateOutcome
from persistence.editing_lock import EditingLockRegistry, LockInfo
from persistence.errors import (
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
from persistence.repositories import AsyncDiskDocumentRepository, AsyncDiskGridRepository
from persistence.retention import SnapshotInfo

router = APIRouter(tags=["documents"])
logger = logging.getLogger(__name__)

# Repository singletons; tests reload this module after pointing DOCSTORE_DATA_DIR at a sandbox.
STORE = DocumentStore()
EDITING_LOCKS = EditingLockRegistry()
DOCUMENTS = AsyncDiskDocumentRepository(STORE, EDITING_LOCKS)
GRID = AsyncDiskGridRepository(STORE)

EDITOR_HEADER = "X-Editor"

_STATUS_BY_ERROR: dict[type[DocumentStoreError], int] = {
    InvalidDocumentId: 400,
    SnapshotNotFound: 404,
    MutationRejected: 409,
    MalformedDocument: 422,
    Unencodable: 422,
    LockTimeout: 503,
    UnrecoverableCorruption: 500,
    IOFailure: 500,
}


async def document_store_error_handler(request: Request, exc: DocumentStoreError) -> JSONResponse:
    """
    Render store failures as {"success": false, "error": <code>, "detail": <message>}.
    """
    status = next((s for cls, s in _STATUS_BY_ERROR.items() if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error("STORE ERROR %s %s: %s (%s)", request.method, request.url.path, exc.code, exc)
    else:
        logger.info("STORE REJECT %s %s: %s (%s)", request.method, request.url.path, exc.code, exc)
    return JSONResponse(
        {"success": False, "error": exc.code, "detail": str(exc), "document_id": exc.document_id},
        status_code=status,
    )


def _require_editor(editor: Optional[str]) -> str:
    name = (editor or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail=f"{EDITOR_HEADER} header is required")
    return name


def _lock_payload(info: LockInfo | None) -> dict[str, Any]:
    if info is None:
        return {"locked": False}
    return {
        "locked": True,
        "user": info.holder,
        # Milliseconds, for browser Date()
        "timestamp": int(info.acquired_at * 1000),
        "expires_at": int(info.expires_at * 1000),
    }


def _snapshot_payload(snap: SnapshotInfo) -> dict[str, Any]:
    return {
        "tier": snap.tier,
        "slot": snap.slot_id,
        "name": snap.path.name if snap.path is not None else None,
        "size": snap.size,
        "modified": int(snap.modified * 1000),
    }


def _outcome_payload(outcome: UpdateOutcome) -> dict[str, Any]:
    return {
        "success": True,
        "saved": outcome.saved,
        "document": outcome.value,
        "snapshots": [_snapshot_payload(s) for s in outcome.snapshots],
    }


# -------------------------------------------------------------------
# Editing locks (advisory)
# -------------------------------------------------------------------


@router.get("/documents/{document_id:path}/editing-lock")
async def get_editing_lock(document_id: str):
    info = await DOCUMENTS.inspect_editing_lock(document_id)
    return JSONResponse(_lock_payload(info))


@router.post("/documents/{document_id:path}/editing-lock")
async def take_editing_lock(document_id: str, editor: Optional[str] = Header(default=None, alias=EDITOR_HEADER)):
    name = _require_editor(editor)
    previous = await DOCUMENTS.inspect_editing_lock(document_id)
    info = await DOCUMENTS.acquire_editing_lock(document_id, name)
    payload = _lock_payload(info)
    # Tell the caller whom they just displaced, if anyone.
    if previous is not None and previous.holder != info.holder:
        payload["previous_user"] = previous.holder
    return JSONResponse(payload)


@router.delete("/documents/{document_id:path}/editing-lock")
async def drop_editing_lock(document_id: str, editor: Optional[str] = Header(default=None, alias=EDITOR_HEADER)):
    name = _require_editor(editor)
    released = await DOCUMENTS.release_editing_lock(document_id, name)
    return JSONResponse({"success": True, "released": released})


# -------------------------------------------------------------------
# Backups
# -------------------------------------------------------------------


@router.get("/documents/{document_id:path}/backups")
async def list_backups(document_id: str):
    snapshots = await DOCUMENTS.list_snapshots(document_id)
    stats = await DOCUMENTS.backup_stats(document_id)
    return JSONResponse(
        {
            "success": True,
            "backups": [_snapshot_payload(s) for s in snapshots],
            "stats": stats.model_dump(mode="json"),
        }
    )


@router.post("/documents/{document_id:path}/backups/{tier}/{slot}/restore")
async def restore_backup(document_id: str, tier: str, slot: str):
    value = await DOCUMENTS.restore(document_id, tier, slot)
    return JSONResponse({"success": True, "document": value})


# -------------------------------------------------------------------
# Arcane construction grid
# -------------------------------------------------------------------


class GridSaveRequest(BaseModel):
    editableCells: dict[str, Any] = Field(default_factory=dict)
    customConnections: list[Any] | None = None
    timestamp: str | None = None


@router.get("/arcane/grid")
async def get_grid():
    state = await GRID.get()
    return JSONResponse(state.to_disk_doc())


@router.post("/arcane/grid")
async def save_grid(body: GridSaveRequest, editor: Optional[str] = Header(default=None, alias=EDITOR_HEADER)):
    name = _require_editor(editor)
    state = await GRID.save(
        body.editableCells,
        saved_by=name,
        connections=body.customConnections,
        timestamp=body.timestamp,
    )
    return JSONResponse({"success": True, "message": "Grid data saved successfully", "grid": state.to_disk_doc()})


@router.patch("/arcane/grid/cells")
async def patch_grid_cells(
    changes: dict[str, Any] = Body(...),
    editor: Optional[str] = Header(default=None, alias=EDITOR_HEADER),
):
    name = _require_editor(editor)
    state, saved = await GRID.merge_cells(changes, saved_by=name)
    return JSONResponse({"success": True, "saved": saved, "grid": state.to_disk_doc()})


# -------------------------------------------------------------------
# Documents
# -------------------------------------------------------------------


@router.get("/documents/{document_id:path}")
async def get_document(document_id: str):
    value = await DOCUMENTS.load(document_id)
    editing = await DOCUMENTS.inspect_editing_lock(document_id)
    return JSONResponse({"success": True, "document": value, "editing": _lock_payload(editing)})


@router.put("/documents/{document_id:path}")
async def put_document(
    document_id: str,
    value: Any = Body(...),
    editor: Optional[str] = Header(default=None, alias=EDITOR_HEADER),
):
    outcome = await DOCUMENTS.replace(document_id, value, editor=editor)
    return JSONResponse(_outcome_payload(outcome))


@router.patch("/documents/{document_id:path}")
async def patch_document(
    document_id: str,
    changes: dict[str, Any] = Body(...),
    editor: Optional[str] = Header(default=None, alias=EDITOR_HEADER),
):
    outcome = await DOCUMENTS.merge(document_id, changes, editor=editor)
    return JSONResponse(_outcome_payload(outcome))
