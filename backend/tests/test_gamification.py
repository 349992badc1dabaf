"""Unit tests for donor performance metrics, score and badges."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from dms.services.gamification_service import (
    DEFAULT_RESPONSE_HOURS,
    achievement_badges,
    compute_metrics,
    overall_score,
    timeframe_start,
)

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def test_metrics_from_commitments_and_responses() -> None:
    commitments = [
        {
            "id": "c1",
            "status": "COMPLETE",
            "total_committed_quantity": 100,
            "delivered_quantity": 100,
            "verified_delivered_quantity": 90,
            "total_value_estimated": 5000,
            "commitment_date": T0 + timedelta(days=1),
            "last_updated": T0 + timedelta(days=2),
        },
        {
            "id": "c2",
            "status": "PLANNED",
            "total_committed_quantity": 100,
            "delivered_quantity": 0,
            "verified_delivered_quantity": 0,
            "total_value_estimated": 5000,
            "commitment_date": T0 + timedelta(days=10),
            "last_updated": T0 + timedelta(days=10),
        },
    ]
    responses = [
        {"verification_status": "VERIFIED", "response_date": T0 + timedelta(days=1, hours=12), "commitment_id": "c1"},
    ]

    m = compute_metrics("donor-1", T0, commitments, responses, now=T0 + timedelta(days=60))

    assert m.total_commitments == 2
    assert m.completed_commitments == 1
    assert m.self_reported_delivery_rate == 50.0
    assert m.verified_delivery_rate == 45.0
    assert m.response_verification_rate == 100.0
    assert m.activity_frequency == 0.05
    assert m.months_active == 2
    assert m.avg_response_time_hours == 12.0
    # 45×0.4 + 100×0.3 + 50×0.2 + 90×0.1
    assert m.overall_score == 67.0
    assert m.badges == ["Quick Response Silver"]
    assert m.last_activity_date == T0 + timedelta(days=10)


def test_metrics_without_activity_use_defaults() -> None:
    m = compute_metrics("donor-2", T0, [], [], now=T0 + timedelta(days=5))

    assert m.verified_delivery_rate == 0.0
    assert m.avg_response_time_hours == DEFAULT_RESPONSE_HOURS
    assert m.activity_frequency == 0.0
    assert m.last_activity_date == T0


def test_response_delay_is_capped_at_one_week() -> None:
    commitments = [{"id": "c1", "total_committed_quantity": 1, "commitment_date": T0}]
    responses = [{"verification_status": "SUBMITTED", "response_date": T0 + timedelta(days=30), "commitment_id": "c1"}]

    m = compute_metrics("donor-3", T0, commitments, responses, now=T0 + timedelta(days=31))
    assert m.avg_response_time_hours == 168.0


def test_overall_score_caps_each_component() -> None:
    score = overall_score(
        verified_delivery_rate=120.0,
        total_commitment_value=50_000.0,
        activity_frequency=1.0,
        avg_response_time_hours=0.0,
    )
    assert score == 100.0


def test_badges_pick_best_tier_per_category() -> None:
    badges = achievement_badges(
        verified_delivery_rate=96.0,
        completed_commitments=30,
        avg_response_time_hours=30.0,
        months_active=3,
    )
    assert badges == ["Reliable Delivery Gold", "High Volume Silver", "Consistency Bronze"]


def test_timeframe_start() -> None:
    now = T0 + timedelta(days=100)
    assert timeframe_start("30d", now) == now - timedelta(days=30)
    assert timeframe_start("all", now) is None
    with pytest.raises(ValueError):
        timeframe_start("5y", now)
