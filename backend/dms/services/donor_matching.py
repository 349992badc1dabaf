from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from dms.schemas.common import priority_rank
from dms.services.gap_analysis import ResourceGap, normalize_resource

"""
Donor Matching (logique pure).

Rôle (fonctionnel) :
- Estime la capacité de chaque donateur par ressource à partir de ses engagements passés.
- Calcule un score de compatibilité 0..100 entre un donateur et les écarts d’une entité.
- Propose, par donateur, les articles qu’il pourrait fournir (quantité + justification).

Calcul du score :
- Pour chaque écart : couverture = min(capacité / écart × 100, 100), pondérée par la sévérité
  (CRITICAL 4, HIGH 3, MEDIUM 2, LOW 1).
- Score = somme pondérée / somme des poids × 100 max, ramené à 0..100 et arrondi.
"""

SEVERITY_WEIGHT = {"CRITICAL": 4, "HIGH": 3, "MEDIUM": 2, "LOW": 1}

MAX_RECOMMENDATIONS = 10


@dataclass(frozen=True)
class RecommendedItem:
    resource_type: str
    max_quantity: float
    unit: str
    reason: str


@dataclass
class DonorRecommendation:
    donor_id: str
    donor_name: str
    donor_type: str
    compatibility_score: int
    recommended_items: List[RecommendedItem] = field(default_factory=list)
    capabilities: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def donor_capabilities(commitments: Iterable[Mapping[str, Any]]) -> Dict[str, Dict[str, float]]:
    """
    Capacités par donateur : somme des quantités engagées par ressource.

    `commitments` : [{donor_id, items: [{name, quantity, ...}]}] (engagements non annulés).
    """
    caps: Dict[str, Dict[str, float]] = {}
    for c in commitments:
        donor_caps = caps.setdefault(str(c["donor_id"]), {})
        for item in c.get("items") or []:
            key = normalize_resource(item.get("name") or "")
            if not key:
                continue
            donor_caps[key] = donor_caps.get(key, 0.0) + float(item.get("quantity") or 0)
    return caps


def sort_gaps(gaps: Sequence[ResourceGap]) -> List[ResourceGap]:
    """Écarts > 0 triés par sévérité desc, puis taille d’écart desc."""
    return sorted((g for g in gaps if g.gap > 0), key=lambda g: (-priority_rank(g.severity), -g.gap))


def compatibility_score(gaps: Sequence[ResourceGap], capabilities: Mapping[str, float]) -> int:
    open_gaps = [g for g in gaps if g.gap > 0]
    if not open_gaps:
        return 0

    weighted = 0.0
    max_weighted = 0.0
    for g in open_gaps:
        weight = SEVERITY_WEIGHT.get(g.severity, 1)
        cap = float(capabilities.get(g.resource_type, 0.0))
        coverage = min(cap / g.gap * 100.0, 100.0)
        weighted += coverage * weight
        max_weighted += 100.0 * weight

    return int(round(weighted / max_weighted * 100.0))


def _reason(capability: float, gap: float) -> str:
    if capability >= gap:
        return "Can fully meet the requirement"
    if capability >= 0.7 * gap:
        return "Can meet most of the requirement"
    if capability >= 0.3 * gap:
        return "Can partially meet the requirement"
    return "Has previous experience with this resource"


def recommend_items(gaps: Sequence[ResourceGap], capabilities: Mapping[str, float]) -> List[RecommendedItem]:
    items: List[RecommendedItem] = []
    for g in sort_gaps(gaps):
        cap = float(capabilities.get(g.resource_type, 0.0))
        if cap <= 0:
            continue
        items.append(
            RecommendedItem(
                resource_type=g.resource_type,
                max_quantity=round(min(cap, g.gap), 2),
                unit=g.unit,
                reason=_reason(cap, g.gap),
            )
        )
    items.sort(key=lambda i: -i.max_quantity)
    return items


def rank_donors(
    gaps: Sequence[ResourceGap],
    donors: Sequence[Mapping[str, Any]],
    capabilities: Mapping[str, Mapping[str, float]],
    *,
    limit: int = MAX_RECOMMENDATIONS,
) -> List[DonorRecommendation]:
    """
    Classement des donateurs pour une entité.

    - `donors` : [{id, name, type, is_active}] ; seuls les actifs sont considérés.
    - garde les scores > 0, tri desc, `limit` premiers.
    """
    ranked: List[DonorRecommendation] = []
    for d in donors:
        if not d.get("is_active", True):
            continue
        caps = dict(capabilities.get(str(d["id"]), {}))
        score = compatibility_score(gaps, caps)
        if score <= 0:
            continue
        ranked.append(
            DonorRecommendation(
                donor_id=str(d["id"]),
                donor_name=d.get("name") or "",
                donor_type=d.get("type") or "",
                compatibility_score=score,
                recommended_items=recommend_items(gaps, caps),
                capabilities=caps,
            )
        )

    ranked.sort(key=lambda r: -r.compatibility_score)
    return ranked[:limit]
