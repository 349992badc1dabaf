"""Unit tests for the pandas performance trend series."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from dms.services.trends_service import build_trends


def _at(y: int, m: int, d: int) -> datetime:
    return datetime(y, m, d, 12, 0, tzinfo=timezone.utc)


def test_monthly_series_fills_empty_periods() -> None:
    commitments = [
        {"commitment_date": _at(2025, 1, 20), "status": "COMPLETE", "total_committed_quantity": 100,
         "delivered_quantity": 80, "total_value_estimated": 300.0},
        {"commitment_date": _at(2025, 3, 1), "status": "PLANNED", "total_committed_quantity": 50,
         "delivered_quantity": 0, "total_value_estimated": 100.0},
    ]
    responses = [
        {"created_at": _at(2025, 1, 21), "verification_status": "VERIFIED"},
        {"created_at": _at(2025, 3, 2), "verification_status": "SUBMITTED"},
    ]

    points = build_trends(commitments, responses, start=_at(2025, 1, 15), end=_at(2025, 3, 20))

    assert [p["period"] for p in points] == ["2025-01", "2025-02", "2025-03"]

    jan, feb, mar = points
    assert jan["commitments"] == 1
    assert jan["completed_commitments"] == 1
    assert jan["delivery_rate"] == 80.0
    assert jan["value"] == 300.0
    assert jan["verified_responses"] == 1

    assert feb["commitments"] == 0
    assert feb["delivery_rate"] == 0.0
    assert feb["start"] == "2025-02-01"

    assert mar["committed_items"] == 50
    assert mar["responses"] == 1
    assert mar["verified_responses"] == 0


def test_quarter_and_week_labels() -> None:
    quarters = build_trends([], [], start=_at(2025, 1, 1), end=_at(2025, 6, 30), granularity="quarter")
    assert [p["period"] for p in quarters] == ["2025-Q1", "2025-Q2"]

    weeks = build_trends([], [], start=_at(2025, 1, 6), end=_at(2025, 1, 19), granularity="week")
    assert [p["period"] for p in weeks] == ["2025-W02", "2025-W03"]
    assert all(p["commitments"] == 0 for p in weeks)


def test_unknown_granularity_is_rejected() -> None:
    with pytest.raises(ValueError):
        build_trends([], [], start=_at(2025, 1, 1), end=_at(2025, 2, 1), granularity="day")
