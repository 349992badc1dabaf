"""Unit tests for sync conflict detection and resolution strategies."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from dms.services.conflict_resolution import (
    has_conflict,
    resolve_last_write_wins,
    resolve_manual,
    resolve_merge,
)

T0 = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


def test_conflict_only_when_both_versions_known_and_different() -> None:
    assert has_conflict(1, 2) is True
    assert has_conflict(3, 3) is False
    assert has_conflict(None, 2) is False


def test_last_write_wins_prefers_newer_local_change() -> None:
    res = resolve_last_write_wins(
        {"notes": "terrain"},
        {"notes": "serveur"},
        local_modified=T0 + timedelta(minutes=5),
        server_modified=T0,
        local_version=1,
        server_version=3,
    )
    assert res.winner == "local"
    assert res.data == {"notes": "terrain"}
    assert res.version == 4


def test_last_write_wins_keeps_server_on_tie() -> None:
    res = resolve_last_write_wins(
        {"notes": "terrain"},
        {"notes": "serveur"},
        local_modified=T0,
        server_modified=T0,
        local_version=1,
        server_version=3,
    )
    assert res.winner == "server"
    assert res.data == {"notes": "serveur"}
    assert res.version == 3


def test_naive_timestamps_are_read_as_utc() -> None:
    res = resolve_last_write_wins(
        {"a": 1},
        {"a": 2},
        local_modified=datetime(2025, 3, 1, 9, 0),
        server_modified=T0,
        local_version=2,
        server_version=2,
    )
    assert res.winner == "local"


def test_merge_overlays_local_fields_on_server_state() -> None:
    res = resolve_merge(
        {"data": {"hasFunctionalClinic": False}, "notes": "terrain"},
        {"data": {"hasFunctionalClinic": True, "numberHealthFacilities": 2}, "location": "Maiduguri"},
        local_modified=T0,
        server_modified=T0 + timedelta(hours=1),
        local_version=2,
        server_version=5,
    )
    assert res.data == {
        "data": {"hasFunctionalClinic": False, "numberHealthFacilities": 2},
        "location": "Maiduguri",
        "notes": "terrain",
    }
    assert res.version == 6
    assert res.last_modified == T0 + timedelta(hours=1)


def test_manual_requires_resolved_data() -> None:
    with pytest.raises(ValueError):
        resolve_manual({}, local_version=1, server_version=2, resolved_at=T0)

    res = resolve_manual({"notes": "arbitrage"}, local_version=1, server_version=2, resolved_at=T0)
    assert res.winner == "manual"
    assert res.version == 3
