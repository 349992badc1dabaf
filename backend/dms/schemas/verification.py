from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

"""
Schemas Verification (Pydantic).

Rôle (fonctionnel) :
- Décision d’un coordinateur sur une évaluation ou une livraison :
  - approbation (note optionnelle),
  - rejet (motif + commentaire obligatoires, renvoyés à l’auteur pour correction).
"""

REJECTION_REASONS = (
    "INCOMPLETE_DATA",
    "INACCURATE_DATA",
    "MISSING_DOCUMENTATION",
    "DUPLICATE_ENTRY",
    "OTHER",
)


class VerifyPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    notes: Optional[str] = Field(default=None, max_length=2000)


class RejectPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(..., pattern="^(" + "|".join(REJECTION_REASONS) + ")$")
    feedback: str = Field(..., min_length=1, max_length=4000)
