from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterable, Sequence

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SlotStrategy(str, Enum):
    SINGLE = "single"
    ROUND_ROBIN = "round_robin"
    CALENDAR = "calendar"


class BackupTier(BaseModel):
    """
    A named retention class.

    - single: one slot named "latest", overwritten on every snapshot.
    - round_robin: numbered slots "1".."cap"; when full, the oldest slot is overwritten in place.
    - calendar: one slot per period key (``period_format`` applied to the snapshot time);
      the oldest bucket is evicted when a new bucket would exceed the cap.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    cap: int = Field(ge=1)
    strategy: SlotStrategy
    period_format: str = "%Y-%m-%d"

    @model_validator(mode="after")
    def _single_has_one_slot(self) -> "BackupTier":
        if self.strategy is SlotStrategy.SINGLE and self.cap != 1:
            raise ValueError("single-slot tiers must have cap 1")
        if self.strategy is SlotStrategy.ROUND_ROBIN and self.cap < 2:
            raise ValueError("round-robin tiers need at least 2 slots")
        return self


class SnapshotInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: str
    slot_id: str
    modified: float
    path: Path | None = None
    size: int = 0


class Placement(BaseModel):
    """Where a new snapshot goes and which slots must be deleted to make room."""

    model_config = ConfigDict(frozen=True)

    tier: str
    slot_id: str
    overwrite: bool
    evict: tuple[str, ...] = ()


SINGLE_SLOT_ID = "latest"


def default_tiers(*, session_slots: int = 2, daily_slots: int = 2) -> list[BackupTier]:
    return [
        BackupTier(name="recent", cap=1, strategy=SlotStrategy.SINGLE),
        BackupTier(name="session", cap=session_slots, strategy=SlotStrategy.ROUND_ROBIN),
        BackupTier(name="daily", cap=daily_slots, strategy=SlotStrategy.CALENDAR),
    ]


def oldest_first(members: Iterable[SnapshotInfo]) -> list[SnapshotInfo]:
    # Equal mtimes fall back to the slot id so eviction order is deterministic.
    return sorted(members, key=lambda m: (m.modified, m.slot_id))


def newest_first(members: Iterable[SnapshotInfo]) -> list[SnapshotInfo]:
    return sorted(members, key=lambda m: (-m.modified, m.slot_id))


class BackupRetentionPolicy:
    """
    Pure slot-placement and eviction decisions. Performs no I/O.

    ``members`` arguments are the snapshots currently present in a single tier.
    """

    def __init__(self, tiers: Iterable[BackupTier]):
        self._tiers: dict[str, BackupTier] = {}
        for tier in tiers:
            if tier.name in self._tiers:
                raise ValueError(f"duplicate backup tier {tier.name!r}")
            self._tiers[tier.name] = tier

    @property
    def tiers(self) -> list[BackupTier]:
        return list(self._tiers.values())

    def tier(self, tier_name: str) -> BackupTier:
        tier = self._tiers.get(tier_name)
        if tier is None:
            raise ValueError(f"unknown backup tier {tier_name!r}")
        return tier

    def has_tier(self, tier_name: str) -> bool:
        return tier_name in self._tiers

    def place_snapshot(
        self,
        tier_name: str,
        members: Sequence[SnapshotInfo],
        now: datetime | None = None,
    ) -> Placement:
        tier = self.tier(tier_name)
        existing = {m.slot_id for m in members}

        if tier.strategy is SlotStrategy.SINGLE:
            stray = tuple(m.slot_id for m in oldest_first(members) if m.slot_id != SINGLE_SLOT_ID)
            return Placement(
                tier=tier.name,
                slot_id=SINGLE_SLOT_ID,
                overwrite=SINGLE_SLOT_ID in existing,
                evict=stray,
            )

        if tier.strategy is SlotStrategy.ROUND_ROBIN:
            if len(members) < tier.cap:
                free = self._lowest_free_slot(tier, existing)
                if free is not None:
                    return Placement(tier=tier.name, slot_id=free, overwrite=False)
            target = self.select_eviction_candidate(tier.name, members)
            others = [m for m in oldest_first(members) if m.slot_id != target]
            excess = max(0, len(members) - tier.cap)
            evict = tuple(m.slot_id for m in others[:excess])
            return Placement(tier=tier.name, slot_id=target, overwrite=True, evict=evict)

        ts = now or datetime.now()
        key = ts.strftime(tier.period_format)
        if key in existing:
            others = [m for m in oldest_first(members) if m.slot_id != key]
            excess = max(0, len(others) + 1 - tier.cap)
            return Placement(
                tier=tier.name,
                slot_id=key,
                overwrite=True,
                evict=tuple(m.slot_id for m in others[:excess]),
            )
        ordered = oldest_first(members)
        excess = max(0, len(ordered) + 1 - tier.cap)
        return Placement(
            tier=tier.name,
            slot_id=key,
            overwrite=False,
            evict=tuple(m.slot_id for m in ordered[:excess]),
        )

    def select_eviction_candidate(self, tier_name: str, members: Sequence[SnapshotInfo]) -> str | None:
        """
        Return the slot to give up when the tier is full, or None while there is room.
        """
        tier = self.tier(tier_name)
        if len(members) < tier.cap:
            return None
        return oldest_first(members)[0].slot_id

    def plan_cleanup(self, tier_name: str, members: Sequence[SnapshotInfo]) -> list[str]:
        """
        Slots to delete so the tier fits its cap, oldest first.

        Applying the plan and planning again yields an empty list.
        """
        tier = self.tier(tier_name)
        ordered = oldest_first(members)
        excess = len(ordered) - tier.cap
        if excess <= 0:
            return []
        return [m.slot_id for m in ordered[:excess]]

    @staticmethod
    def _lowest_free_slot(tier: BackupTier, existing: set[str]) -> str | None:
        for n in range(1, tier.cap + 1):
            if str(n) not in existing:
                return str(n)
        return None
