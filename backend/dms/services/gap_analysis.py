from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from dms.schemas.common import Priority, max_priority, priority_rank

"""
Gap Analysis (logique pure).

Rôle (fonctionnel) :
- Analyse d’écarts d’une évaluation rapide : repère les champs en défaut (“gap fields”),
  calcule une sévérité et produit des recommandations lisibles.
- Écarts de ressources d’une entité : besoin chiffré vs engagé (non livré) vs livré.
- Synthèse “dashboard” : valeur estimée des écarts, tri des entités, compteurs par sévérité.

Principe des champs d’écart :
- Un champ “positif” (hasFunctionalClinic, isWaterSufficient...) est en défaut quand il vaut False.
- Un champ “inversé” (hasOpenDefecationConcerns, gbvCasesReported, areOvercrowded) est en défaut
  quand il vaut True.
- Une valeur absente (None) n’est jamais comptée comme un écart.

Sévérité :
- La plus haute sévérité parmi les champs en défaut (configurable en base, sinon DEFAULT_FIELD_SEVERITY).
- LOW s’il n’y a aucun écart.

Ce module n’accède pas à la base : les services appelants fournissent les données.
"""


@dataclass(frozen=True)
class GapFieldRule:
    field: str
    label: str
    recommendation: str
    gap_when: bool = False      # valeur qui signale l’écart
    severity: str = "MEDIUM"    # sévérité par défaut


GAP_FIELDS: Dict[str, Tuple[GapFieldRule, ...]] = {
    "HEALTH": (
        GapFieldRule("hasFunctionalClinic", "Functional clinic",
                     "Deploy mobile clinics or establish temporary health facilities", severity="CRITICAL"),
        GapFieldRule("hasEmergencyServices", "Emergency services",
                     "Establish emergency medical response team with proper equipment", severity="HIGH"),
        GapFieldRule("hasTrainedStaff", "Trained staff",
                     "Deploy trained medical personnel and provide emergency training", severity="HIGH"),
        GapFieldRule("hasMedicineSupply", "Medicine supply",
                     "Procure and distribute essential medicines and medical supplies", severity="CRITICAL"),
        GapFieldRule("hasMedicalSupplies", "Medical supplies",
                     "Secure medical equipment, diagnostic tools, and protective equipment", severity="HIGH"),
        GapFieldRule("hasMaternalChildServices", "Maternal and child services",
                     "Establish maternal and child health services with emergency obstetric care", severity="MEDIUM"),
    ),
    "FOOD": (
        GapFieldRule("isFoodSufficient", "Food sufficiency",
                     "Request emergency food assistance and establish food distribution points", severity="CRITICAL"),
        GapFieldRule("hasRegularMealAccess", "Regular meal access",
                     "Implement regular meal distribution programs and community kitchens", severity="HIGH"),
        GapFieldRule("hasInfantNutrition", "Infant nutrition",
                     "Distribute therapeutic feeding and infant nutrition supplements", severity="HIGH"),
    ),
    "WASH": (
        GapFieldRule("isWaterSufficient", "Water sufficiency",
                     "Deploy water trucking services and install water purification systems", severity="CRITICAL"),
        GapFieldRule("hasCleanWaterAccess", "Clean water access",
                     "Establish water treatment points and ensure water quality testing", severity="CRITICAL"),
        GapFieldRule("areLatrinesSufficient", "Latrine sufficiency",
                     "Construct emergency sanitation facilities and improve existing latrines", severity="HIGH"),
        GapFieldRule("hasHandwashingFacilities", "Handwashing facilities",
                     "Distribute soap and hand sanitizer, establish handwashing stations", severity="MEDIUM"),
        GapFieldRule("hasOpenDefecationConcerns", "Open defecation concerns",
                     "Implement safe defecation campaigns and monitor sanitation practices",
                     gap_when=True, severity="HIGH"),
    ),
    "SHELTER": (
        GapFieldRule("areSheltersSufficient", "Shelter sufficiency",
                     "Deploy emergency shelter kits and establish temporary housing", severity="CRITICAL"),
        GapFieldRule("hasSafeStructures", "Safe structures",
                     "Identify and retrofit safe buildings for emergency shelter use", severity="HIGH"),
        GapFieldRule("areOvercrowded", "Overcrowding",
                     "Decongest existing shelters and establish additional shelter sites",
                     gap_when=True, severity="MEDIUM"),
        GapFieldRule("provideWeatherProtection", "Weather protection",
                     "Provide weatherproofing materials and improve shelter insulation", severity="MEDIUM"),
    ),
    "SECURITY": (
        GapFieldRule("isSafeFromViolence", "Safety from violence",
                     "Establish security patrols and safe zones for vulnerable populations", severity="CRITICAL"),
        GapFieldRule("gbvCasesReported", "GBV cases reported",
                     "Deploy specialized GBV response teams and establish safe reporting mechanisms",
                     gap_when=True, severity="CRITICAL"),
        GapFieldRule("hasSecurityPresence", "Security presence",
                     "Request security personnel deployment and establish local security committees", severity="HIGH"),
        GapFieldRule("hasProtectionReportingMechanism", "Protection reporting mechanism",
                     "Establish confidential protection reporting channels and community alert systems",
                     severity="MEDIUM"),
        GapFieldRule("vulnerableGroupsHaveAccess", "Vulnerable groups access",
                     "Ensure priority access to services for women, children, elderly, and persons with disabilities",
                     severity="HIGH"),
        GapFieldRule("hasLighting", "Lighting",
                     "Install lighting systems in high-risk areas and communal spaces", severity="LOW"),
    ),
    "POPULATION": (),
}

DEFAULT_FIELD_SEVERITY: Dict[str, Dict[str, str]] = {
    atype: {rule.field: rule.severity for rule in rules} for atype, rules in GAP_FIELDS.items()
}

# Valeur estimée par unité (USD) pour chiffrer un écart
VALUE_PER_UNIT: Dict[str, float] = {
    "WATER": 0.5,
    "FOOD": 3.0,
    "MEDICAL": 25.0,
    "SHELTER": 100.0,
    "CLOTHING": 15.0,
    "BLANKETS": 20.0,
    "HYGIENE": 10.0,
    "TOOLS": 35.0,
    "FUEL": 1.5,
    "COMMUNICATION": 200.0,
    "TRANSPORT": 500.0,
    "GENERATORS": 1000.0,
    "MEDICINE": 50.0,
    "FIRST_AID": 25.0,
}
DEFAULT_VALUE_PER_UNIT = 10.0


def value_per_unit(resource_type: str) -> float:
    return VALUE_PER_UNIT.get(normalize_resource(resource_type), DEFAULT_VALUE_PER_UNIT)


def normalize_resource(name: str) -> str:
    """Nom de ressource canonique (MAJ, espaces -> '_') pour rapprocher besoins et articles."""
    return "_".join(str(name or "").strip().upper().replace("-", " ").split())


# ---------------------------------------------------------------------------
# Analyse d’une évaluation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssessmentGapResult:
    """Résultat d’analyse d’une évaluation (stocké en JSON sur l’évaluation)."""
    assessment_type: str
    has_gap: bool
    gap_fields: List[str]
    severity: str
    recommendations: List[str]
    field_severities: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def gap_fields_for(assessment_type: str) -> Tuple[GapFieldRule, ...]:
    return GAP_FIELDS.get(str(assessment_type).upper(), ())


def find_gap_fields(assessment_type: str, data: Mapping[str, Any]) -> List[str]:
    gaps: List[str] = []
    for rule in gap_fields_for(assessment_type):
        value = data.get(rule.field)
        if value is None:
            continue
        if bool(value) is rule.gap_when:
            gaps.append(rule.field)
    return gaps


def analyze_assessment(
    assessment_type: str,
    data: Mapping[str, Any],
    severity_overrides: Optional[Mapping[str, str]] = None,
) -> AssessmentGapResult:
    """
    Analyse d’écarts d’une évaluation.

    `severity_overrides` : sévérités configurées {field_name: severity} (table gap_field_severities).
    """
    atype = str(assessment_type).upper()
    defaults = DEFAULT_FIELD_SEVERITY.get(atype, {})
    overrides = dict(severity_overrides or {})

    gap_fields = find_gap_fields(atype, data)
    severities = {f: overrides.get(f) or defaults.get(f, Priority.MEDIUM.value) for f in gap_fields}

    severity = max_priority(*severities.values()) if gap_fields else Priority.LOW.value
    recommendations = [rule.recommendation for rule in gap_fields_for(atype) if rule.field in gap_fields]

    return AssessmentGapResult(
        assessment_type=atype,
        has_gap=bool(gap_fields),
        gap_fields=gap_fields,
        severity=severity,
        recommendations=recommendations,
        field_severities=severities,
    )


# ---------------------------------------------------------------------------
# Écarts de ressources d’une entité
# ---------------------------------------------------------------------------


@dataclass
class ResourceGap:
    resource_type: str
    unit: str
    required: float
    committed: float
    delivered: float
    severity: str
    priority: str
    gap: float = 0.0
    percentage_met: float = 0.0
    estimated_value: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def sum_items(items: Iterable[Mapping[str, Any]], ratio: float = 1.0) -> Dict[str, float]:
    """Somme des quantités par ressource (nom normalisé), pondérée par `ratio`."""
    totals: Dict[str, float] = {}
    for item in items or []:
        key = normalize_resource(item.get("name") or item.get("resource_type") or "")
        if not key:
            continue
        qty = float(item.get("quantity") or 0) * ratio
        totals[key] = totals.get(key, 0.0) + qty
    return totals


def compute_resource_gaps(
    needs: Sequence[Mapping[str, Any]],
    committed: Mapping[str, float],
    delivered: Mapping[str, float],
) -> List[ResourceGap]:
    """
    Écarts par ressource : gap = max(0, requis - engagé - livré).

    - `needs` : [{resource_type, required_quantity, unit, priority}] (plusieurs besoins d’une même
      ressource sont cumulés, la priorité la plus haute est conservée).
    - `committed` / `delivered` : quantités par ressource normalisée.
    """
    merged: Dict[str, Dict[str, Any]] = {}
    for need in needs:
        key = normalize_resource(need.get("resource_type") or "")
        if not key:
            continue
        row = merged.setdefault(key, {"required": 0.0, "unit": need.get("unit") or "units", "priority": "LOW"})
        row["required"] += float(need.get("required_quantity") or 0)
        row["priority"] = max_priority(row["priority"], need.get("priority"))

    gaps: List[ResourceGap] = []
    for key, row in merged.items():
        required = row["required"]
        c = float(committed.get(key, 0.0))
        d = float(delivered.get(key, 0.0))
        gap = max(0.0, required - c - d)

        if required > 0:
            pct = round(min(100.0, (c + d) / required * 100.0), 2)
        else:
            pct = 100.0

        gaps.append(
            ResourceGap(
                resource_type=key,
                unit=row["unit"],
                required=round(required, 2),
                committed=round(c, 2),
                delivered=round(d, 2),
                severity=row["priority"] if gap > 0 else Priority.LOW.value,
                priority=row["priority"],
                gap=round(gap, 2),
                percentage_met=pct,
                estimated_value=round(gap * value_per_unit(key), 2),
            )
        )

    gaps.sort(key=lambda g: (-priority_rank(g.severity), -g.gap))
    return gaps


# ---------------------------------------------------------------------------
# Synthèse dashboard
# ---------------------------------------------------------------------------


def summarize_entities(
    entity_gaps: Mapping[str, Tuple[Mapping[str, Any], List[ResourceGap]]],
    *,
    severity: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Agrège les écarts par entité pour le dashboard.

    - ne garde que les écarts > 0 (et la sévérité demandée le cas échéant)
    - tri : nombre d’écarts critiques desc, puis valeur totale desc
    """
    entities: List[Dict[str, Any]] = []
    by_severity = {p.value: 0 for p in Priority}
    total_gaps = 0
    total_value = 0.0

    for entity_id, (info, gaps) in entity_gaps.items():
        kept = [g for g in gaps if g.gap > 0 and (severity is None or g.severity == severity)]
        if not kept:
            continue

        critical = sum(1 for g in kept if g.severity == "CRITICAL")
        value = round(sum(g.estimated_value for g in kept), 2)

        for g in kept:
            by_severity[g.severity] = by_severity.get(g.severity, 0) + 1

        total_gaps += len(kept)
        total_value += value

        entities.append(
            {
                "entity_id": entity_id,
                "entity": dict(info),
                "gaps": [g.to_dict() for g in kept],
                "total_gaps": len(kept),
                "critical_gaps": critical,
                "total_gap_value": value,
            }
        )

    entities.sort(key=lambda e: (-e["critical_gaps"], -e["total_gap_value"]))

    return {
        "entities": entities,
        "summary": {
            "total_entities": len(entities),
            "total_gaps": total_gaps,
            "critical_gaps": by_severity.get("CRITICAL", 0),
            "total_gap_value": round(total_value, 2),
            "by_severity": by_severity,
        },
    }
