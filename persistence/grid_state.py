from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Protocol

from pydantic import BaseModel, Field

from .document_store import DocumentStore, Mutation


GRID_DOCUMENT_ID = "arcane/grid_data.json"


class GridState(BaseModel):
    """
    Mirrors the on-disk grid_data.json schema:
      {
        "editableCells": { "<cell key>": <cell payload> },
        "customConnections": [ ... ],
        "lastSaved": "YYYY-MM-DD HH:MM:SS" | null,
        "savedBy": "<user>" | null,
        "timestamp": "<client ISO timestamp>" | null
      }
    """

    editableCells: dict[str, Any] = Field(default_factory=dict)
    customConnections: list[Any] = Field(default_factory=list)
    lastSaved: str | None = None
    savedBy: str | None = None
    timestamp: str | None = None

    @classmethod
    def from_disk_doc(cls, doc: Any) -> "GridState":
        if not isinstance(doc, Mapping):
            return cls()
        return cls.model_validate(doc)

    def to_disk_doc(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def stamp(self, saved_by: str, timestamp: str | None = None, now: datetime | None = None) -> None:
        ts = now or datetime.now()
        self.lastSaved = ts.strftime("%Y-%m-%d %H:%M:%S")
        self.savedBy = saved_by
        self.timestamp = timestamp or ts.isoformat()


class GridStateRepository(Protocol):
    def get(self) -> GridState:
        ...

    def save(
        self,
        cells: Mapping[str, Any],
        *,
        saved_by: str,
        connections: list[Any] | None = None,
        timestamp: str | None = None,
    ) -> GridState:
        ...

    def merge_cells(self, changes: Mapping[str, Any], *, saved_by: str) -> tuple[GridState, bool]:
        ...


class DiskGridStateRepository(GridStateRepository):
    """
    Grid document backed by DocumentStore.

    Full saves go to the "recent" and "session" tiers; cell merges only snapshot to
    "recent" and skip the write when nothing changed.
    """

    def __init__(self, store: DocumentStore, document_id: str = GRID_DOCUMENT_ID):
        self._store = store
        self._document_id = document_id

    @property
    def document_id(self) -> str:
        return self._document_id

    def get(self) -> GridState:
        return GridState.from_disk_doc(self._store.load(self._document_id, default=GridState().to_disk_doc))

    def save(
        self,
        cells: Mapping[str, Any],
        *,
        saved_by: str,
        connections: list[Any] | None = None,
        timestamp: str | None = None,
    ) -> GridState:
        def _mutate(current: Any) -> Mutation:
            state = GridState.from_disk_doc(current)
            state.editableCells = dict(cells)
            if connections is not None:
                state.customConnections = list(connections)
            state.stamp(saved_by, timestamp)
            return Mutation(state.to_disk_doc(), result=state)

        outcome = self._store.update(
            self._document_id,
            _mutate,
            default=GridState().to_disk_doc,
            tiers=("recent", "session"),
            event="grid_saved",
        )
        return outcome.result

    def merge_cells(self, changes: Mapping[str, Any], *, saved_by: str) -> tuple[GridState, bool]:
        """
        Apply per-cell changes; a value of None clears the cell.

        Returns (state, saved).
        """

        def _mutate(current: Any) -> Mutation:
            state = GridState.from_disk_doc(current)
            before = dict(state.editableCells)
            for key, value in changes.items():
                if value is None:
                    state.editableCells.pop(key, None)
                else:
                    state.editableCells[key] = value
            if state.editableCells == before:
                return Mutation(current, save=False, result=state)
            state.stamp(saved_by)
            return Mutation(state.to_disk_doc(), result=state)

        outcome = self._store.update(
            self._document_id,
            _mutate,
            default=GridState().to_disk_doc,
            event="grid_cells_changed",
        )
        return outcome.result, outcome.saved
