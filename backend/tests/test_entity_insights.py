"""Unit tests for the donor-facing entity insight calculations."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from dms.services.entity_insights_service import (
    assessment_score,
    assessment_summary,
    build_assessment_trends,
    population_profile,
    trend_direction,
    trend_insight,
)


def _at(y: int, m: int, d: int) -> datetime:
    return datetime(y, m, d, 12, 0, tzinfo=timezone.utc)


POPULATION = {
    "totalPopulation": 1200,
    "totalHouseholds": 200,
    "populationUnder5": 150,
    "pregnantWomen": 90,
    "personWithDisability": 30,
    "elderlyPersons": 30,
    "numberLivesLost": 0,
    "numberInjured": 4,
}


def test_score_ignores_unanswered_fields() -> None:
    data = {"hasFunctionalClinic": False, "hasEmergencyServices": True, "hasTrainedStaff": None,
            "numberHealthFacilities": 0}
    assert assessment_score("HEALTH", data) == 50.0
    assert assessment_score("HEALTH", {"numberHealthFacilities": 2}) is None
    assert assessment_score("POPULATION", POPULATION) is None


def test_inverted_rule_counts_as_gap() -> None:
    # hasOpenDefecationConcerns=True est un écart
    assert assessment_score("WASH", {"isWaterSufficient": True, "hasOpenDefecationConcerns": True}) == 50.0


def test_population_profile() -> None:
    profile = population_profile(POPULATION)

    assert profile["total_population"] == 1200
    assert profile["vulnerable_count"] == 300
    assert profile["vulnerability_rate"] == 25.0
    assert profile["average_household_size"] == 6.0
    assert profile["injured"] == 4


def test_population_profile_handles_empty_data() -> None:
    profile = population_profile({})
    assert profile["total_population"] == 0
    assert profile["vulnerability_rate"] == 0.0
    assert profile["average_household_size"] == 0.0


def test_summary_lists_gap_labels_and_numeric_metrics() -> None:
    summary = assessment_summary(
        "HEALTH", {"hasFunctionalClinic": False, "hasEmergencyServices": True, "qualifiedHealthWorkers": 3}
    )
    assert summary["overall_score"] == 50.0
    assert summary["gaps"] == ["Functional clinic"]
    assert summary["key_metrics"] == {"qualifiedHealthWorkers": 3}


def test_population_summary_flags() -> None:
    data = dict(POPULATION, numberLivesLost=2, populationUnder5=400)
    summary = assessment_summary("POPULATION", data)

    assert summary["overall_score"] is None
    assert summary["gaps"] == ["2 lives lost", "4 injured persons", "High vulnerable population ratio"]
    assert summary["key_metrics"]["vulnerable_count"] == 550


@pytest.mark.parametrize(
    "score_change,gap_change,expected",
    [(12.0, -1, "improving"), (12.0, 1, "stable"), (-8.0, 2, "declining"), (-8.0, 0, "stable"), (3.0, 0, "stable")],
)
def test_trend_direction(score_change: float, gap_change: int, expected: str) -> None:
    assert trend_direction(score_change, gap_change) == expected


def test_monthly_assessment_trends() -> None:
    rows = [
        {"assessment_date": _at(2025, 1, 10), "score": 40.0, "gap_count": 4},
        {"assessment_date": _at(2025, 3, 5), "score": 80.0, "gap_count": 1},
    ]

    points = build_assessment_trends(rows, start=_at(2025, 1, 1), end=_at(2025, 3, 31))

    assert [p["period"] for p in points] == ["2025-01", "2025-02", "2025-03"]
    jan, feb, mar = points
    assert jan["score"] == 40.0 and jan["trend"] == "stable"
    assert feb["score"] is None and feb["assessment_count"] == 0
    assert mar["trend"] == "improving"

    insight = trend_insight("WASH", points)
    assert insight["category"] == "WASH"
    assert insight["trend"] == "improving significantly"
    assert insight["recommendation"].endswith("Gaps are decreasing, showing positive impact.")


def test_scoreless_rows_still_count_assessments() -> None:
    rows = [
        {"assessment_date": _at(2025, 1, 10), "score": None, "gap_count": 0},
        {"assessment_date": _at(2025, 1, 12), "score": 60.0, "gap_count": 2},
    ]

    (jan,) = build_assessment_trends(rows, start=_at(2025, 1, 1), end=_at(2025, 1, 31))
    assert jan["assessment_count"] == 2
    assert jan["score"] == 60.0
    assert jan["gap_count"] == 2


def test_insight_needs_two_measured_periods() -> None:
    points = build_assessment_trends(
        [{"assessment_date": _at(2025, 1, 10), "score": 40.0, "gap_count": 4}],
        start=_at(2025, 1, 1),
        end=_at(2025, 2, 28),
    )
    assert trend_insight("HEALTH", points) is None


def test_declining_insight_with_growing_gaps() -> None:
    points = [
        {"period": "2025-01", "score": 80.0, "gap_count": 1, "assessment_count": 1},
        {"period": "2025-02", "score": 72.0, "gap_count": 5, "assessment_count": 1},
    ]
    insight = trend_insight("food", points)
    assert insight["trend"] == "declining"
    assert insight["recommendation"] == (
        "Declining trend in food. Review and adjust current strategies. Increasing gaps require immediate attention."
    )


def test_unknown_granularity_is_rejected() -> None:
    with pytest.raises(ValueError):
        build_assessment_trends([], start=_at(2025, 1, 1), end=_at(2025, 2, 1), granularity="day")
