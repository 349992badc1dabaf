"""
Tests API : planification de réponse, livraison, vérification et consommation des engagements.
"""
from __future__ import annotations

import pytest_asyncio

from dms.models import Donor

from .conftest import auth


@pytest_asyncio.fixture
async def field(client, sessions, assessor, responder, coordinator, make_entity, make_incident):
    """Entité affectée (évaluateur + intervenant), incident, évaluation vérifiée, donateur."""
    entity = await make_entity("Gwange", assigned=[assessor, responder])
    incident = await make_incident()

    res = await client.post(
        "/assessments",
        json={"assessment_type": "WASH", "entity_id": str(entity.id), "data": {"isWaterSufficient": False}},
        headers=auth(assessor),
    )
    assessment = res.json()
    await client.post(f"/assessments/{assessment['id']}/submit", headers=auth(assessor))
    await client.post(f"/verification/assessments/{assessment['id']}/verify", headers=auth(coordinator))

    donor = Donor(name="Borno Relief Fund", type="NGO")
    async with sessions() as db:
        db.add(donor)
        await db.commit()

    return {"entity": entity, "incident": incident, "assessment": assessment, "donor": donor}


async def _commit(client, coordinator, field, quantity=100):
    res = await client.post(
        "/commitments",
        json={
            "donor_id": str(field["donor"].id),
            "entity_id": str(field["entity"].id),
            "incident_id": str(field["incident"].id),
            "items": [{"name": "Water", "unit": "liters", "quantity": quantity}],
        },
        headers=auth(coordinator),
    )
    assert res.status_code == 201, res.text
    return res.json()


async def test_plan_requires_verified_assessment(client, assessor, responder, make_entity) -> None:
    entity = await make_entity(assigned=[assessor, responder])
    res = await client.post(
        "/assessments",
        json={"assessment_type": "FOOD", "entity_id": str(entity.id), "data": {}},
        headers=auth(assessor),
    )
    draft = res.json()

    res = await client.post(
        "/responses",
        json={
            "assessment_id": draft["id"],
            "entity_id": str(entity.id),
            "type": "FOOD",
            "items": [{"name": "Food", "unit": "bags", "quantity": 10}],
        },
        headers=auth(responder),
    )
    assert res.status_code == 409
    assert res.json()["error"]["code"] == "INVALID_STATE"


async def test_single_planned_response_per_assessment(client, responder, field) -> None:
    body = {
        "assessment_id": field["assessment"]["id"],
        "entity_id": str(field["entity"].id),
        "type": "WASH",
        "items": [{"name": "Water", "unit": "liters", "quantity": 500}],
    }
    first = await client.post("/responses", json=body, headers=auth(responder))
    assert first.status_code == 201
    assert first.json()["status"] == "PLANNED"

    second = await client.post("/responses", json=body, headers=auth(responder))
    assert second.status_code == 409


async def test_delivery_consumes_commitment_and_verification_counts(client, responder, coordinator, field) -> None:
    commitment = await _commit(client, coordinator, field)
    assert commitment["status"] == "PLANNED"
    assert commitment["remaining_quantity"] == 100

    res = await client.post(
        "/responses/from-commitment",
        json={"commitment_id": commitment["id"], "assessment_id": field["assessment"]["id"], "type": "WASH"},
        headers=auth(responder),
    )
    assert res.status_code == 201, res.text
    response = res.json()
    assert response["commitment_id"] == commitment["id"]
    assert response["items"][0]["quantity"] == 100

    res = await client.post(
        f"/responses/{response['id']}/deliver",
        json={"delivered_items": [{"name": "Water", "unit": "liters", "quantity": 60}]},
        headers=auth(responder),
    )
    assert res.status_code == 200
    assert res.json()["status"] == "DELIVERED"
    assert res.json()["verification_status"] == "SUBMITTED"

    c = (await client.get(f"/commitments/{commitment['id']}", headers=auth(coordinator))).json()
    assert c["status"] == "PARTIAL"
    assert c["delivered_quantity"] == 60
    assert c["remaining_quantity"] == 40

    res = await client.post(f"/verification/deliveries/{response['id']}/verify", headers=auth(coordinator))
    assert res.status_code == 200
    assert res.json()["verification_status"] == "VERIFIED"

    c = (await client.get(f"/commitments/{commitment['id']}", headers=auth(coordinator))).json()
    assert c["verified_delivered_quantity"] == 60


async def test_delivery_defaults_to_planned_items(client, responder, field) -> None:
    res = await client.post(
        "/responses",
        json={
            "assessment_id": field["assessment"]["id"],
            "entity_id": str(field["entity"].id),
            "type": "WASH",
            "items": [{"name": "Hygiene kits", "unit": "kits", "quantity": 25}],
        },
        headers=auth(responder),
    )
    response = res.json()

    res = await client.post(f"/responses/{response['id']}/deliver", json={}, headers=auth(responder))
    assert res.json()["delivered_items"][0]["quantity"] == 25

    again = await client.post(f"/responses/{response['id']}/deliver", json={}, headers=auth(responder))
    assert again.status_code == 409


async def test_commitment_usage_cannot_exceed_remaining(client, coordinator, field) -> None:
    commitment = await _commit(client, coordinator, field, quantity=40)

    too_much = await client.post(
        f"/commitments/{commitment['id']}/usage", json={"quantity": 50}, headers=auth(coordinator)
    )
    assert too_much.status_code == 400

    res = await client.post(f"/commitments/{commitment['id']}/usage", json={"quantity": 40}, headers=auth(coordinator))
    assert res.status_code == 200
    assert res.json()["status"] == "COMPLETE"
    assert res.json()["remaining_quantity"] == 0

    cancel = await client.post(f"/commitments/{commitment['id']}/cancel", headers=auth(coordinator))
    assert cancel.status_code == 409


async def test_other_responder_cannot_deliver(client, responder, make_user, field) -> None:
    res = await client.post(
        "/responses",
        json={
            "assessment_id": field["assessment"]["id"],
            "entity_id": str(field["entity"].id),
            "type": "WASH",
            "items": [{"name": "Water", "unit": "liters", "quantity": 10}],
        },
        headers=auth(responder),
    )
    intruder = await make_user("RESPONDER")

    res = await client.post(f"/responses/{res.json()['id']}/deliver", json={}, headers=auth(intruder))
    assert res.status_code == 403
