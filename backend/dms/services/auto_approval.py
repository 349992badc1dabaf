from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from dms.models.entity import Entity
from dms.schemas.common import priority_rank
from dms.schemas.entities import AutoApprovalConfig

"""
Auto-approval.

Rôle (fonctionnel) :
- Lit / écrit la configuration d’auto-approbation d’une entité (metadata["autoApproval"]).
- Décide si une évaluation soumise ou une livraison confirmée est approuvée sans coordinateur.

Règles (toutes requises) :
- auto_approve_enabled sur l’entité
- le scope couvre le type d’objet (assessments / responses / both)
- le type est listé (liste vide = tous)
- la priorité ne dépasse pas max_priority
- pièces jointes présentes si requires_documentation
"""

META_KEY = "autoApproval"


def get_config(entity: Entity) -> AutoApprovalConfig:
    raw: Dict[str, Any] = dict((entity.meta or {}).get(META_KEY) or {})
    raw["enabled"] = bool(entity.auto_approve_enabled)
    return AutoApprovalConfig.model_validate(raw)


def set_config(entity: Entity, config: AutoApprovalConfig) -> None:
    meta = dict(entity.meta or {})
    payload = config.model_dump(mode="json")
    payload.pop("enabled", None)
    meta[META_KEY] = payload
    # Réaffectation du dict : la colonne JSON n’est pas suivie en mutation
    entity.meta = meta
    entity.auto_approve_enabled = config.enabled


def qualifies(
    entity: Optional[Entity],
    *,
    kind: str,
    item_type: str,
    priority: str,
    attachments: Sequence[str] = (),
) -> bool:
    """`kind` : "assessments" ou "responses"."""
    if entity is None or not entity.auto_approve_enabled:
        return False

    cfg = get_config(entity)
    if cfg.scope not in (kind, "both"):
        return False

    allowed = cfg.assessment_types if kind == "assessments" else cfg.response_types
    if allowed and item_type not in {t.value for t in allowed}:
        return False

    if priority_rank(priority) > priority_rank(cfg.max_priority):
        return False

    if cfg.requires_documentation and not attachments:
        return False

    return True
