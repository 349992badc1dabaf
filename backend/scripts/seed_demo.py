# backend/scripts/seed_demo.py
from __future__ import annotations

import argparse
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import create_engine, delete
from sqlalchemy.orm import sessionmaker

# Permet de lancer le script depuis backend/ sans souci d'import
BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

from dms.core.settings import settings
from dms.models import (
    AuditLog,
    Donor,
    DonorCommitment,
    Entity,
    EntityAssignment,
    GapFieldSeverity,
    Incident,
    IncidentEntity,
    PreliminaryAssessment,
    RapidAssessment,
    RapidResponse,
    SyncConflict,
    User,
    UserRole,
)
from dms.services.gap_analysis import GAP_FIELDS, analyze_assessment

"""
Seed de démonstration.

Contenu :
- utilisateurs par rôle (admin, coordination, évaluateurs, intervenants, donateurs)
- entités (Borno State) + affectations
- un incident actif, un rapport préliminaire
- évaluations rapides de chaque type (écarts calculés), besoins en ressources
- donateurs + engagements répartis sur l’année (historique pour leaderboard / tendances)
- sévérités par défaut des champs d’écart

Usage :
    python scripts/seed_demo.py --reset
"""


# ---- Données réalistes (Borno State) ----
ENTITIES = [
    ("Maiduguri Metropolitan", "LGA", "Borno State", 11.8311, 13.1511),
    ("Jere Local Government", "LGA", "Borno State", 11.8822, 13.2143),
    ("Gwoza Local Government", "LGA", "Borno State", 11.0417, 13.6875),
    ("Primary Health Center Maiduguri", "FACILITY", "Maiduguri", 11.8467, 13.1569),
    ("IDP Camp Dalori", "CAMP", "Maiduguri", 11.7833, 13.2167),
    ("Bulumkutu Community", "COMMUNITY", "Maiduguri", 11.8200, 13.1300),
]

USERS = [
    ("admin@dms.gov.ng", "admin", "System Administrator", ["ADMIN"]),
    ("coordinator@dms.gov.ng", "coordinator", "Aisha Bello", ["COORDINATOR"]),
    ("assessor@dms.gov.ng", "assessor", "Musa Ibrahim", ["ASSESSOR"]),
    ("assessor2@dms.gov.ng", "assessor2", "Fatima Kolo", ["ASSESSOR"]),
    ("responder@dms.gov.ng", "responder", "Usman Ali", ["RESPONDER"]),
    ("donor@dms.gov.ng", "donor", "Relief Partners", ["DONOR"]),
]

DONORS = [
    ("Relief Partners International", "ORGANIZATION", "donor@dms.gov.ng"),
    ("Borno State Emergency Agency", "GOVERNMENT", None),
    ("Hope Foundation NGO", "NGO", None),
    ("Sahel Foods Ltd", "CORPORATE", None),
    ("Dr. Amina Yusuf", "INDIVIDUAL", None),
]

ITEMS = {
    "FOOD": ("bags", 20, 400),
    "WATER": ("liters", 500, 20000),
    "MEDICAL": ("kits", 5, 200),
    "SHELTER": ("kits", 5, 150),
    "BLANKETS": ("pieces", 20, 600),
    "HYGIENE": ("kits", 10, 500),
}

SAMPLE_DATA = {
    "HEALTH": {
        "hasFunctionalClinic": False, "hasEmergencyServices": True, "hasTrainedStaff": False,
        "hasMedicineSupply": False, "hasMedicalSupplies": True, "hasMaternalChildServices": True,
        "numberHealthFacilities": 2, "healthFacilityType": "Primary Health Center",
        "qualifiedHealthWorkers": 6,
    },
    "FOOD": {
        "isFoodSufficient": False, "hasRegularMealAccess": False, "hasInfantNutrition": True,
        "foodSource": ["Humanitarian aid"], "availableFoodDurationDays": 3,
    },
    "WASH": {
        "isWaterSufficient": False, "hasCleanWaterAccess": True, "areLatrinesSufficient": False,
        "hasHandwashingFacilities": True, "hasOpenDefecationConcerns": True,
    },
    "SHELTER": {
        "areSheltersSufficient": False, "hasSafeStructures": True, "areOvercrowded": True,
        "provideWeatherProtection": False,
    },
    "SECURITY": {
        "isSafeFromViolence": True, "gbvCasesReported": False, "hasSecurityPresence": True,
        "hasProtectionReportingMechanism": False, "vulnerableGroupsHaveAccess": True, "hasLighting": False,
    },
    "POPULATION": {
        "totalHouseholds": 850, "totalPopulation": 4200, "populationMale": 1980, "populationFemale": 2220,
        "populationUnder5": 730, "pregnantWomen": 140, "lactatingMothers": 210,
        "personWithDisability": 95, "elderlyPersons": 260, "separatedChildren": 18,
        "numberLivesLost": 4, "numberInjured": 37,
    },
}

NEEDS = {
    "HEALTH": [("MEDICAL", 120, "kits", "CRITICAL")],
    "FOOD": [("FOOD", 900, "bags", "CRITICAL")],
    "WASH": [("WATER", 40000, "liters", "HIGH"), ("HYGIENE", 600, "kits", "MEDIUM")],
    "SHELTER": [("SHELTER", 300, "kits", "HIGH"), ("BLANKETS", 1200, "pieces", "MEDIUM")],
    "SECURITY": [],
    "POPULATION": [],
}


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def reset(db) -> None:
    # Ordre inverse des dépendances FK
    for model in (
        AuditLog, SyncConflict, RapidResponse, DonorCommitment, Donor, RapidAssessment,
        PreliminaryAssessment, IncidentEntity, Incident, EntityAssignment, Entity,
        GapFieldSeverity, UserRole, User,
    ):
        db.execute(delete(model))
    db.commit()


def seed(db, *, months: int, rng: random.Random) -> dict:
    now = now_utc()

    # --- Utilisateurs ---
    users = {}
    for email, username, name, roles in USERS:
        u = User(email=email, username=username, name=name, organization="DMS Borno")
        u.roles = [UserRole(role=r) for r in roles]
        db.add(u)
        users[username] = u
    db.flush()

    # --- Entités + affectations ---
    entities = []
    for name, etype, location, lat, lon in ENTITIES:
        e = Entity(
            name=name,
            type=etype,
            location=location,
            coordinates={"latitude": lat, "longitude": lon},
            meta={"autoApproval": {"enabled": etype == "FACILITY", "scope": "assessments"}},
            auto_approve_enabled=etype == "FACILITY",
        )
        db.add(e)
        entities.append(e)
    db.flush()

    coordinator = users["coordinator"]
    for username in ("assessor", "responder"):
        for e in entities:
            db.add(EntityAssignment(user_id=users[username].id, entity_id=e.id, assigned_by=coordinator.id))
    for e in entities[3:]:
        db.add(EntityAssignment(user_id=users["assessor2"].id, entity_id=e.id, assigned_by=coordinator.id))

    # --- Sévérités par défaut ---
    for atype, rules in GAP_FIELDS.items():
        for rule in rules:
            db.add(GapFieldSeverity(
                assessment_type=atype,
                field_name=rule.field,
                display_name=rule.label,
                severity=rule.severity,
                updated_by=coordinator.id,
            ))

    # --- Incident + rapport préliminaire ---
    incident = Incident(
        type="Flood",
        sub_type="Flash flood",
        severity="HIGH",
        status="ACTIVE",
        description="Flooding along the Ngadda river after heavy rainfall",
        location="Maiduguri, Borno State",
        coordinates={"latitude": 11.8311, "longitude": 13.1511},
        created_by=coordinator.id,
        created_at=now - timedelta(days=20),
    )
    db.add(incident)
    db.flush()
    for e in entities:
        db.add(IncidentEntity(incident_id=incident.id, entity_id=e.id))

    db.add(PreliminaryAssessment(
        reporting_date=now - timedelta(days=20),
        reporting_latitude=11.8311,
        reporting_longitude=13.1511,
        reporting_lga="Maiduguri",
        reporting_ward="Bolori",
        number_lives_lost=4,
        number_injured=37,
        number_displaced=2600,
        number_houses_affected=540,
        number_schools_affected=3,
        number_medical_facilities_affected=1,
        reporting_agent="SEMA Field Team",
        incident_id=incident.id,
        created_by=users["assessor"].id,
    ))

    # --- Évaluations rapides (vérifiées, pour alimenter écarts / dashboard) ---
    assessor = users["assessor"]
    assessments = []
    for e in (entities[0], entities[4], entities[5]):
        for atype, data in SAMPLE_DATA.items():
            gap = analyze_assessment(atype, data)
            needs = [
                {"resource_type": r, "required_quantity": q, "unit": unit, "priority": p}
                for r, q, unit, p in NEEDS[atype]
            ]
            a = RapidAssessment(
                assessment_type=atype,
                assessment_date=now - timedelta(days=rng.randint(5, 18)),
                assessor_id=assessor.id,
                assessor_name=assessor.name,
                entity_id=e.id,
                incident_id=incident.id,
                location=e.location,
                coordinates=e.coordinates,
                status="VERIFIED",
                priority=gap.severity,
                data=data,
                resource_needs=needs,
                gap_analysis=gap.to_dict(),
                verification_status="VERIFIED",
                submitted_at=now - timedelta(days=4),
                verified_at=now - timedelta(days=3),
                verified_by=str(coordinator.id),
            )
            db.add(a)
            assessments.append(a)
    db.flush()

    # --- Donateurs + engagements (historique) ---
    donors = []
    for name, dtype, email in DONORS:
        user = next((u for u in users.values() if u.email == email), None)
        d = Donor(
            name=name,
            type=dtype,
            contact_email=email,
            organization=name,
            user_id=user.id if user else None,
            created_at=now - timedelta(days=30 * months),
        )
        db.add(d)
        donors.append(d)
    db.flush()

    commitments = 0
    for d in donors:
        reliability = rng.uniform(0.55, 1.0)
        for _ in range(rng.randint(4, 14)):
            resource = rng.choice(list(ITEMS))
            unit, lo, hi = ITEMS[resource]
            qty = rng.randint(lo, hi)
            delivered = int(qty * reliability) if rng.random() < 0.8 else 0
            verified = int(delivered * rng.uniform(0.7, 1.0))
            status = "COMPLETE" if delivered >= qty else ("PARTIAL" if delivered else "PLANNED")
            db.add(DonorCommitment(
                donor_id=d.id,
                entity_id=rng.choice(entities).id,
                incident_id=incident.id,
                status=status,
                items=[{"name": resource, "unit": unit, "quantity": qty}],
                total_committed_quantity=qty,
                delivered_quantity=delivered,
                verified_delivered_quantity=verified,
                total_value_estimated=round(qty * rng.uniform(2, 40), 2),
                commitment_date=now - timedelta(days=rng.randint(1, 30 * months)),
            ))
            commitments += 1

    db.commit()
    return {
        "users": len(users),
        "entities": len(entities),
        "assessments": len(assessments),
        "donors": len(donors),
        "commitments": commitments,
    }


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--reset", action="store_true", help="Supprime les données demo avant de reseed")
    parser.add_argument("--months", type=int, default=12, help="Profondeur d’historique des engagements")
    parser.add_argument("--seed", type=int, default=42, help="Seed RNG pour reproductibilité")
    args = parser.parse_args()

    engine = create_engine(settings.DATABASE_URL_SYNC, future=True)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

    with SessionLocal() as db:
        if args.reset:
            reset(db)
            print("✅ Reset done (all demo data deleted).")

        counts = seed(db, months=args.months, rng=random.Random(args.seed))

    print("✅ Seed terminé.")
    for key, value in counts.items():
        print(f"   - {key}: {value}")
    print("   Jeton de dev : python scripts/issue_token.py coordinator@dms.gov.ng")


if __name__ == "__main__":
    main()
