"""Unit tests for assessment gap analysis and entity resource gaps."""
from __future__ import annotations

from dms.services.gap_analysis import (
    analyze_assessment,
    compute_resource_gaps,
    find_gap_fields,
    normalize_resource,
    summarize_entities,
    sum_items,
)


def test_health_gaps_take_highest_field_severity() -> None:
    result = analyze_assessment(
        "HEALTH",
        {"hasFunctionalClinic": True, "hasTrainedStaff": False, "hasMaternalChildServices": False},
    )

    assert result.has_gap is True
    assert result.gap_fields == ["hasTrainedStaff", "hasMaternalChildServices"]
    assert result.severity == "HIGH"
    assert len(result.recommendations) == 2


def test_missing_values_are_not_gaps() -> None:
    result = analyze_assessment("FOOD", {"isFoodSufficient": None})

    assert result.has_gap is False
    assert result.severity == "LOW"
    assert result.recommendations == []


def test_inverted_fields_flag_gap_when_true() -> None:
    assert find_gap_fields("WASH", {"hasOpenDefecationConcerns": True}) == ["hasOpenDefecationConcerns"]
    assert find_gap_fields("WASH", {"hasOpenDefecationConcerns": False}) == []
    assert find_gap_fields("SHELTER", {"areOvercrowded": True}) == ["areOvercrowded"]
    assert find_gap_fields("SECURITY", {"gbvCasesReported": True}) == ["gbvCasesReported"]


def test_configured_severity_overrides_default() -> None:
    result = analyze_assessment("SECURITY", {"hasLighting": False}, {"hasLighting": "CRITICAL"})

    assert result.severity == "CRITICAL"
    assert result.field_severities == {"hasLighting": "CRITICAL"}


def test_population_has_no_gap_fields() -> None:
    result = analyze_assessment("POPULATION", {"totalPopulation": 1200})
    assert result.has_gap is False


def test_resource_gap_subtracts_committed_and_delivered() -> None:
    needs = [
        {"resource_type": "food", "required_quantity": 100, "unit": "bags", "priority": "CRITICAL"},
        {"resource_type": "Water", "required_quantity": 1000, "unit": "liters", "priority": "MEDIUM"},
    ]
    gaps = compute_resource_gaps(needs, {"FOOD": 30}, {"FOOD": 20, "WATER": 1000})

    food = next(g for g in gaps if g.resource_type == "FOOD")
    water = next(g for g in gaps if g.resource_type == "WATER")

    assert food.gap == 50
    assert food.percentage_met == 50.0
    assert food.severity == "CRITICAL"
    assert food.estimated_value == 150.0

    # Besoin couvert : plus d’écart, sévérité ramenée à LOW
    assert water.gap == 0
    assert water.severity == "LOW"
    assert water.percentage_met == 100.0

    assert gaps[0] is food


def test_needs_for_same_resource_are_merged() -> None:
    needs = [
        {"resource_type": "medical", "required_quantity": 10, "priority": "LOW"},
        {"resource_type": "MEDICAL", "required_quantity": 5, "priority": "HIGH"},
    ]
    (gap,) = compute_resource_gaps(needs, {}, {})

    assert gap.required == 15
    assert gap.priority == "HIGH"


def test_sum_items_normalizes_names_and_applies_ratio() -> None:
    totals = sum_items([{"name": "first aid", "quantity": 4}, {"name": "First-Aid", "quantity": 6}], ratio=0.5)
    assert totals == {"FIRST_AID": 5.0}
    assert normalize_resource("  clean  water ") == "CLEAN_WATER"


def test_summarize_entities_orders_by_critical_gaps() -> None:
    a = compute_resource_gaps([{"resource_type": "FOOD", "required_quantity": 10, "priority": "MEDIUM"}], {}, {})
    b = compute_resource_gaps([{"resource_type": "MEDICAL", "required_quantity": 2, "priority": "CRITICAL"}], {}, {})
    covered = compute_resource_gaps([{"resource_type": "WATER", "required_quantity": 5, "priority": "HIGH"}], {"WATER": 5}, {})

    out = summarize_entities({"a": ({"name": "A"}, a), "b": ({"name": "B"}, b), "c": ({"name": "C"}, covered)})

    assert [e["entity_id"] for e in out["entities"]] == ["b", "a"]
    assert out["entities"][0]["critical_gaps"] == 1

    only_critical = summarize_entities({"a": ({"name": "A"}, a), "b": ({"name": "B"}, b)}, severity="CRITICAL")
    assert [e["entity_id"] for e in only_critical["entities"]] == ["b"]
