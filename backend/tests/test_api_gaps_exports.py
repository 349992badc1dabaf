"""
Tests API : analyse d’écarts (dashboard, recommandations de donateurs, sévérités configurables)
et exports CSV.
"""
from __future__ import annotations

import io

import pandas as pd
import pytest_asyncio

from dms.models import Donor

from .conftest import auth


@pytest_asyncio.fixture
async def needy_entity(client, sessions, assessor, coordinator, make_entity, make_incident):
    """Entité avec une évaluation WASH vérifiée (1000 L d’eau, HIGH) et 400 L déjà engagés."""
    entity = await make_entity("Muna Garage", "CAMP", assigned=[assessor])
    incident = await make_incident()

    res = await client.post(
        "/assessments",
        json={
            "assessment_type": "WASH",
            "entity_id": str(entity.id),
            "data": {"isWaterSufficient": False},
            "resource_needs": [{"resource_type": "water", "required_quantity": 1000, "unit": "liters", "priority": "HIGH"}],
        },
        headers=auth(assessor),
    )
    a = res.json()
    await client.post(f"/assessments/{a['id']}/submit", headers=auth(assessor))
    await client.post(f"/verification/assessments/{a['id']}/verify", headers=auth(coordinator))

    donor = Donor(name="Lake Chad Water Trust", type="NGO")
    async with sessions() as db:
        db.add(donor)
        await db.commit()

    res = await client.post(
        "/commitments",
        json={
            "donor_id": str(donor.id),
            "entity_id": str(entity.id),
            "incident_id": str(incident.id),
            "items": [{"name": "Water", "unit": "liters", "quantity": 400}],
        },
        headers=auth(coordinator),
    )
    assert res.status_code == 201, res.text
    return entity, donor


async def test_entity_gaps_subtract_open_commitments(client, coordinator, needy_entity) -> None:
    entity, _ = needy_entity

    res = await client.get(f"/gap-analysis/entities/{entity.id}", headers=auth(coordinator))
    assert res.status_code == 200
    (gap,) = res.json()["gaps"]
    assert gap["resource_type"] == "WATER"
    assert gap["committed"] == 400
    assert gap["gap"] == 600
    assert gap["severity"] == "HIGH"
    assert gap["estimated_value"] == 300.0


async def test_gap_dashboard_summary(client, coordinator, needy_entity, make_entity) -> None:
    entity, _ = needy_entity
    await make_entity("Sans évaluation")

    body = (await client.get("/gap-analysis/dashboard", headers=auth(coordinator))).json()
    assert [e["entity_id"] for e in body["entities"]] == [str(entity.id)]
    assert body["summary"]["total_gaps"] == 1
    assert body["summary"]["by_severity"]["HIGH"] == 1

    critical_only = (
        await client.get("/gap-analysis/dashboard", params={"severity": "CRITICAL"}, headers=auth(coordinator))
    ).json()
    assert critical_only["entities"] == []


async def test_donor_recommendations(client, coordinator, needy_entity) -> None:
    entity, donor = needy_entity

    body = (
        await client.get(f"/gap-analysis/entities/{entity.id}/donor-recommendations", headers=auth(coordinator))
    ).json()
    (rec,) = body["recommendations"]
    assert rec["donor_id"] == str(donor.id)
    assert rec["compatibility_score"] == 67
    assert rec["recommended_items"][0]["max_quantity"] == 400
    assert rec["recommended_items"][0]["reason"] == "Can partially meet the requirement"


async def test_unknown_entity_is_404(client, coordinator) -> None:
    res = await client.get("/gap-analysis/entities/00000000-0000-0000-0000-000000000000", headers=auth(coordinator))
    assert res.status_code == 404


async def test_configured_field_severity_drives_analysis(client, coordinator, assessor) -> None:
    body = {"assessment_type": "SECURITY", "data": {"hasLighting": False}}
    before = (await client.post("/gap-analysis/analyze", json=body, headers=auth(assessor))).json()
    assert before["severity"] == "LOW"

    denied = await client.put(
        "/gap-analysis/field-severities",
        json={"assessment_type": "SECURITY", "field_name": "hasLighting", "severity": "CRITICAL"},
        headers=auth(assessor),
    )
    assert denied.status_code == 403

    res = await client.put(
        "/gap-analysis/field-severities",
        json={"assessment_type": "SECURITY", "field_name": "hasLighting", "severity": "CRITICAL"},
        headers=auth(coordinator),
    )
    assert res.status_code == 200

    after = (await client.post("/gap-analysis/analyze", json=body, headers=auth(assessor))).json()
    assert after["severity"] == "CRITICAL"

    unknown = await client.put(
        "/gap-analysis/field-severities",
        json={"assessment_type": "SECURITY", "field_name": "hasMoat", "severity": "HIGH"},
        headers=auth(coordinator),
    )
    assert unknown.status_code == 404


async def test_gaps_csv_export(client, coordinator, needy_entity) -> None:
    res = await client.get("/exports/gaps.csv", headers=auth(coordinator))
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/csv")
    assert "attachment; filename=resource_gaps_" in res.headers["content-disposition"]

    df = pd.read_csv(io.StringIO(res.text))
    assert list(df["entity_name"]) == ["Muna Garage"]
    assert df.loc[0, "gap"] == 600


async def test_empty_exports_keep_header(client, coordinator) -> None:
    res = await client.get("/exports/assessments.csv", headers=auth(coordinator))
    assert res.text.splitlines()[0].startswith("id,assessment_type,assessment_date")

    df = pd.read_csv(io.StringIO((await client.get("/exports/commitments.csv", headers=auth(coordinator))).text))
    assert df.empty
    assert "remaining_quantity" in df.columns


async def test_exports_are_coordinator_only(client, assessor) -> None:
    res = await client.get("/exports/gaps.csv", headers=auth(assessor))
    assert res.status_code == 403


async def test_situation_overview(client, coordinator, needy_entity) -> None:
    res = await client.get("/dashboard/situation", headers=auth(coordinator))
    assert res.status_code == 200
