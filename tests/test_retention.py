from __future__ import annotations

from datetime import datetime

import pytest
from pydantic import ValidationError

from persistence.retention import (
    BackupRetentionPolicy,
    BackupTier,
    SlotStrategy,
    SnapshotInfo,
    default_tiers,
)


def _snap(tier: str, slot: str, modified: float) -> SnapshotInfo:
    return SnapshotInfo(tier=tier, slot_id=slot, modified=modified)


@pytest.fixture
def policy() -> BackupRetentionPolicy:
    return BackupRetentionPolicy(default_tiers(session_slots=2, daily_slots=2))


def test_single_slot_always_overwrites_latest(policy):
    first = policy.place_snapshot("recent", [])
    assert (first.slot_id, first.overwrite, first.evict) == ("latest", False, ())

    again = policy.place_snapshot("recent", [_snap("recent", "latest", 10.0)])
    assert (again.slot_id, again.overwrite, again.evict) == ("latest", True, ())


def test_round_robin_fills_free_slots_then_overwrites_oldest(policy):
    p1 = policy.place_snapshot("session", [])
    assert (p1.slot_id, p1.overwrite) == ("1", False)

    p2 = policy.place_snapshot("session", [_snap("session", "1", 10.0)])
    assert (p2.slot_id, p2.overwrite) == ("2", False)

    full = [_snap("session", "1", 10.0), _snap("session", "2", 20.0)]
    p3 = policy.place_snapshot("session", full)
    assert (p3.slot_id, p3.overwrite, p3.evict) == ("1", True, ())


def test_round_robin_reuses_lowest_free_number(policy):
    p = policy.place_snapshot("session", [_snap("session", "2", 10.0)])
    assert p.slot_id == "1"


def test_calendar_overwrites_current_bucket(policy):
    members = [_snap("daily", "2025-03-01", 10.0), _snap("daily", "2025-03-02", 20.0)]
    p = policy.place_snapshot("daily", members, datetime(2025, 3, 2, 18, 30))
    assert (p.slot_id, p.overwrite, p.evict) == ("2025-03-02", True, ())


def test_calendar_new_bucket_evicts_oldest_when_full(policy):
    members = [_snap("daily", "2025-03-02", 20.0), _snap("daily", "2025-03-01", 10.0)]
    p = policy.place_snapshot("daily", members, datetime(2025, 3, 3, 9, 0))
    assert (p.slot_id, p.overwrite, p.evict) == ("2025-03-03", False, ("2025-03-01",))


def test_calendar_new_bucket_with_room_evicts_nothing(policy):
    p = policy.place_snapshot("daily", [_snap("daily", "2025-03-01", 10.0)], datetime(2025, 3, 2))
    assert (p.slot_id, p.evict) == ("2025-03-02", ())


def test_eviction_ties_break_on_smallest_slot_id(policy):
    members = [_snap("session", "2", 10.0), _snap("session", "1", 10.0)]
    assert policy.select_eviction_candidate("session", members) == "1"
    assert policy.place_snapshot("session", members).slot_id == "1"


def test_select_eviction_candidate_none_while_room(policy):
    assert policy.select_eviction_candidate("session", [_snap("session", "1", 1.0)]) is None
    assert policy.select_eviction_candidate("recent", []) is None


def test_plan_cleanup_trims_to_cap_and_is_idempotent():
    policy = BackupRetentionPolicy([BackupTier(name="session", cap=2, strategy=SlotStrategy.ROUND_ROBIN)])
    members = [_snap("session", str(n), float(n)) for n in range(1, 6)]

    plan = policy.plan_cleanup("session", members)
    assert plan == ["1", "2", "3"]

    remaining = [m for m in members if m.slot_id not in plan]
    assert policy.plan_cleanup("session", remaining) == []


def test_round_robin_over_cap_after_shrink_evicts_extras():
    policy = BackupRetentionPolicy([BackupTier(name="session", cap=2, strategy=SlotStrategy.ROUND_ROBIN)])
    members = [_snap("session", "1", 1.0), _snap("session", "2", 2.0), _snap("session", "3", 3.0)]
    p = policy.place_snapshot("session", members)
    assert (p.slot_id, p.evict) == ("1", ("2",))


def test_tiers_are_independent(policy):
    busy_session = [_snap("session", "1", 1.0), _snap("session", "2", 2.0), _snap("session", "3", 3.0)]
    assert policy.plan_cleanup("session", busy_session) == ["1"]
    assert policy.plan_cleanup("daily", [_snap("daily", "2025-03-01", 1.0)]) == []


def test_tier_validation():
    with pytest.raises(ValidationError):
        BackupTier(name="recent", cap=2, strategy=SlotStrategy.SINGLE)
    with pytest.raises(ValidationError):
        BackupTier(name="session", cap=1, strategy=SlotStrategy.ROUND_ROBIN)
    with pytest.raises(ValueError):
        BackupRetentionPolicy(default_tiers() + default_tiers())


def test_unknown_tier_is_rejected(policy):
    with pytest.raises(ValueError):
        policy.place_snapshot("hourly", [])
