"""
Tests API : vue donateur des entités affectées (évaluations, démographie, tendances,
écarts, impact consolidé).
"""
from __future__ import annotations

import pytest_asyncio

from .conftest import auth

POPULATION = {
    "totalPopulation": 1200,
    "totalHouseholds": 200,
    "populationUnder5": 150,
    "pregnantWomen": 90,
    "personWithDisability": 30,
    "elderlyPersons": 30,
}


async def _assess(client, assessor, coordinator, entity, assessment_type, data, *, verify=True, **extra):
    res = await client.post(
        "/assessments",
        json={"assessment_type": assessment_type, "entity_id": str(entity.id), "data": data, **extra},
        headers=auth(assessor),
    )
    assert res.status_code == 201, res.text
    a = res.json()
    await client.post(f"/assessments/{a['id']}/submit", headers=auth(assessor))
    if verify:
        res = await client.post(f"/verification/assessments/{a['id']}/verify", headers=auth(coordinator))
        assert res.status_code == 200, res.text
    return a


@pytest_asyncio.fixture
async def donor(make_user):
    return await make_user("DONOR", name="Halima Yusuf")


@pytest_asyncio.fixture
async def funded_entity(client, assessor, coordinator, donor, make_entity):
    """Entité affectée au donateur : HEALTH et POPULATION vérifiées, WASH seulement soumise."""
    entity = await make_entity("Bakassi Camp", "CAMP", assigned=[assessor, donor])
    health = await _assess(
        client, assessor, coordinator, entity, "HEALTH", {"hasFunctionalClinic": False, "hasEmergencyServices": True}
    )
    population = await _assess(client, assessor, coordinator, entity, "POPULATION", POPULATION)
    wash = await _assess(
        client,
        assessor,
        coordinator,
        entity,
        "WASH",
        {"isWaterSufficient": False},
        verify=False,
        resource_needs=[{"resource_type": "water", "required_quantity": 1000, "unit": "liters", "priority": "HIGH"}],
    )
    return entity, {"HEALTH": health, "POPULATION": population, "WASH": wash}


async def test_unassigned_donor_cannot_see_entity(client, make_user, funded_entity) -> None:
    entity, _ = funded_entity
    stranger = await make_user("DONOR")

    res = await client.get(f"/donors/entities/{entity.id}/assessments/latest", headers=auth(stranger))
    assert res.status_code == 404
    assert res.json()["error"]["code"] == "NOT_FOUND"


async def test_field_roles_are_forbidden(client, assessor, funded_entity) -> None:
    entity, _ = funded_entity
    res = await client.get(f"/donors/entities/{entity.id}/demographics", headers=auth(assessor))
    assert res.status_code == 403


async def test_coordinator_sees_any_entity(client, coordinator, funded_entity) -> None:
    entity, _ = funded_entity
    res = await client.get(f"/donors/entities/{entity.id}/demographics", headers=auth(coordinator))
    assert res.status_code == 200


async def test_entity_assessments_hide_drafts(client, assessor, donor, funded_entity) -> None:
    entity, _ = funded_entity
    draft = await client.post(
        "/assessments",
        json={"assessment_type": "FOOD", "entity_id": str(entity.id), "data": {"isFoodSufficient": False}},
        headers=auth(assessor),
    )
    assert draft.status_code == 201

    body = (await client.get(f"/donors/entities/{entity.id}/assessments", headers=auth(donor))).json()
    assert body["meta"]["total"] == 3
    assert {a["assessment_type"] for a in body["data"]} == {"HEALTH", "POPULATION", "WASH"}
    assert body["summary"]["verified_assessments"] == 2
    food = next(c for c in body["summary"]["categories"] if c["type"] == "FOOD")
    assert food["count"] == 0

    only_wash = (
        await client.get(
            f"/donors/entities/{entity.id}/assessments", params={"assessment_type": "WASH"}, headers=auth(donor)
        )
    ).json()
    assert [a["verification_status"] for a in only_wash["data"]] == ["SUBMITTED"]


async def test_latest_assessments_are_verified_and_scored(client, donor, funded_entity) -> None:
    entity, _ = funded_entity

    body = (await client.get(f"/donors/entities/{entity.id}/assessments/latest", headers=auth(donor))).json()
    assert [item["type"] for item in body["data"]] == ["HEALTH", "POPULATION"]

    health = body["data"][0]["summary"]
    assert health["overall_score"] == 50.0
    assert health["gaps"] == ["Functional clinic"]

    population = body["data"][1]["summary"]
    assert population["overall_score"] is None
    assert population["key_metrics"]["vulnerable_count"] == 300

    with_pending = (
        await client.get(
            f"/donors/entities/{entity.id}/assessments/latest",
            params={"include_unverified": "true", "categories": ["WASH"]},
            headers=auth(donor),
        )
    ).json()
    (wash,) = with_pending["data"]
    assert wash["type"] == "WASH"
    assert wash["summary"]["gaps"] == ["Water sufficiency"]


async def test_demographics_from_population_assessment(client, donor, funded_entity) -> None:
    entity, _ = funded_entity

    body = (await client.get(f"/donors/entities/{entity.id}/demographics", headers=auth(donor))).json()
    assert body["source"] == "assessment"
    assert body["entity"]["name"] == "Bakassi Camp"

    demographics = body["demographics"]
    assert demographics["total_population"] == 1200
    assert demographics["vulnerable_count"] == 300
    assert demographics["vulnerability_rate"] == 25.0
    assert demographics["average_household_size"] == 6.0

    assert body["stats"]["verified_assessments"] == 2
    assert body["latest_activity"]["last_assessment_type"] in {"HEALTH", "POPULATION"}


async def test_demographics_without_data(client, donor, make_entity) -> None:
    entity = await make_entity(assigned=[donor])

    body = (await client.get(f"/donors/entities/{entity.id}/demographics", headers=auth(donor))).json()
    assert body["source"] is None
    assert body["demographics"]["total_population"] == 0
    assert body["latest_activity"]["last_assessment_date"] is None


async def test_assessment_trends(client, donor, funded_entity) -> None:
    entity, _ = funded_entity

    res = await client.get(
        f"/donors/entities/{entity.id}/assessments/trends",
        params={"timeframe": "3m", "categories": ["HEALTH", "WASH"]},
        headers=auth(donor),
    )
    assert res.status_code == 200, res.text
    body = res.json()

    assert [t["type"] for t in body["trends"]] == ["HEALTH", "WASH"]
    health, wash = body["trends"]
    measured = [p for p in health["points"] if p["assessment_count"]]
    assert len(measured) == 1
    assert measured[0]["score"] == 50.0
    assert measured[0]["gap_count"] == 1
    # WASH seulement soumise : absente des tendances
    assert all(p["assessment_count"] == 0 for p in wash["points"])
    assert body["insights"] == []


async def test_trends_reject_unknown_timeframe(client, donor, funded_entity) -> None:
    entity, _ = funded_entity
    res = await client.get(
        f"/donors/entities/{entity.id}/assessments/trends", params={"timeframe": "5y"}, headers=auth(donor)
    )
    assert res.status_code == 422


async def test_gap_analysis_after_verification(client, coordinator, donor, funded_entity) -> None:
    entity, assessments = funded_entity
    res = await client.post(
        f"/verification/assessments/{assessments['WASH']['id']}/verify", headers=auth(coordinator)
    )
    assert res.status_code == 200, res.text

    body = (await client.get(f"/donors/entities/{entity.id}/gap-analysis", headers=auth(donor))).json()
    assert {g["assessment_type"] for g in body["assessment_gaps"]} == {"HEALTH", "WASH"}
    wash = next(g for g in body["assessment_gaps"] if g["assessment_type"] == "WASH")
    assert wash["severity"] == "CRITICAL"
    assert wash["gap_fields"] == ["isWaterSufficient"]
    assert body["summary"]["assessment_gaps_by_severity"]["CRITICAL"] == 2

    (gap,) = body["resource_gaps"]
    assert gap["resource_type"] == "WATER"
    assert gap["gap"] == 1000

    high_only = (
        await client.get(
            f"/donors/entities/{entity.id}/gap-analysis", params={"severity": "HIGH"}, headers=auth(donor)
        )
    ).json()
    assert high_only["assessment_gaps"] == []
    assert [g["resource_type"] for g in high_only["resource_gaps"]] == ["WATER"]


async def test_donor_impact_aggregates_assigned_entities(client, donor, funded_entity, make_entity) -> None:
    await make_entity("Dalori Host Community", assigned=[donor])
    await make_entity("Non affectée")

    res = await client.get("/donors/entities/impact", headers=auth(donor))
    assert res.status_code == 200, res.text
    body = res.json()

    assert body["total_entities"] == 2
    assert body["aggregated_demographics"]["total_population"] == 1200
    assert body["overall_stats"]["assessment_coverage"] == 50.0
    assert body["overall_stats"]["verified_assessments"] == 2
    assert body["distribution"]["by_type"] == {"CAMP": 1, "COMMUNITY": 1}

    health = next(c for c in body["category_coverage"] if c["type"] == "HEALTH")
    assert health["entities_covered"] == 1
    assert health["coverage"] == 50.0

    camp = next(e for e in body["entities"] if e["name"] == "Bakassi Camp")
    assert camp["critical_assessment_gaps"] == 1
    assert camp["assessed_types"] == ["HEALTH", "POPULATION"]
