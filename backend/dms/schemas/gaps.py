from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from dms.schemas.assessments import validate_typed_data
from dms.schemas.common import AssessmentType, Priority

"""
Schemas Gap Analysis (Pydantic).

Rôle (fonctionnel) :
- Administration des sévérités par champ d’écart (unitaire et en masse).
- Analyse à la volée de données d’évaluation (sans persistance).
"""


class GapFieldSeverityUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    assessment_type: AssessmentType
    field_name: str = Field(..., min_length=1, max_length=80)
    severity: Priority
    display_name: Optional[str] = Field(default=None, max_length=200)


class GapFieldSeverityBulkUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    updates: List[GapFieldSeverityUpdate] = Field(..., min_length=1, max_length=200)


class GapAnalyzeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    assessment_type: AssessmentType
    data: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _typed_data(self) -> "GapAnalyzeRequest":
        self.data = validate_typed_data(self.assessment_type.value, self.data)
        return self


class GapAnalyzeOut(BaseModel):
    assessment_type: str
    has_gap: bool
    gap_fields: List[str]
    severity: str
    recommendations: List[str]
    field_severities: Dict[str, str]
