"""Unit tests for donor capability estimation and ranking."""
from __future__ import annotations

from dms.services.donor_matching import (
    compatibility_score,
    donor_capabilities,
    rank_donors,
    recommend_items,
)
from dms.services.gap_analysis import compute_resource_gaps


def _gaps():
    needs = [
        {"resource_type": "FOOD", "required_quantity": 100, "unit": "bags", "priority": "CRITICAL"},
        {"resource_type": "WATER", "required_quantity": 1000, "unit": "liters", "priority": "LOW"},
    ]
    return compute_resource_gaps(needs, {}, {})


def test_capabilities_sum_past_commitments_per_resource() -> None:
    caps = donor_capabilities(
        [
            {"donor_id": "d1", "items": [{"name": "food", "quantity": 40}]},
            {"donor_id": "d1", "items": [{"name": "Food", "quantity": 60}, {"name": "water", "quantity": 5}]},
            {"donor_id": "d2", "items": []},
        ]
    )
    assert caps == {"d1": {"FOOD": 100.0, "WATER": 5.0}, "d2": {}}


def test_score_is_weighted_by_severity() -> None:
    gaps = _gaps()

    # FOOD couvert à 100 % (poids 4), WATER à 0 % (poids 1)
    assert compatibility_score(gaps, {"FOOD": 100}) == 80
    # WATER couvert à 50 % (poids 1)
    assert compatibility_score(gaps, {"WATER": 500}) == 10
    assert compatibility_score(gaps, {}) == 0


def test_score_is_zero_without_open_gaps() -> None:
    covered = compute_resource_gaps([{"resource_type": "FOOD", "required_quantity": 10, "priority": "HIGH"}], {"FOOD": 10}, {})
    assert compatibility_score(covered, {"FOOD": 50}) == 0


def test_recommended_items_are_capped_by_gap() -> None:
    items = recommend_items(_gaps(), {"FOOD": 250, "WATER": 400})

    by_type = {i.resource_type: i for i in items}
    assert by_type["FOOD"].max_quantity == 100
    assert by_type["FOOD"].reason == "Can fully meet the requirement"
    assert by_type["WATER"].max_quantity == 400
    assert by_type["WATER"].reason == "Can partially meet the requirement"
    assert [i.resource_type for i in items] == ["WATER", "FOOD"]


def test_rank_skips_inactive_and_zero_score_donors() -> None:
    donors = [
        {"id": "a", "name": "Alpha", "type": "NGO", "is_active": True},
        {"id": "b", "name": "Beta", "type": "GOVERNMENT", "is_active": True},
        {"id": "c", "name": "Gamma", "type": "NGO", "is_active": False},
        {"id": "d", "name": "Delta", "type": "INDIVIDUAL", "is_active": True},
    ]
    caps = {"a": {"WATER": 500}, "b": {"FOOD": 80}, "c": {"FOOD": 100}, "d": {"SHELTER": 3}}

    ranked = rank_donors(_gaps(), donors, caps)

    assert [r.donor_id for r in ranked] == ["b", "a"]
    assert ranked[0].recommended_items[0].reason == "Can meet most of the requirement"
    assert rank_donors(_gaps(), donors, caps, limit=1)[0].donor_id == "b"
