from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from dms.schemas.common import (
    AssessmentType,
    Coordinates,
    PageMeta,
    Priority,
    parse_iso_datetime,
)

"""
Schemas Assessments (Pydantic).

Rôle (fonctionnel) :
- Contrat HTTP des évaluations rapides (création, mise à jour, listing, détail) et des
  évaluations préliminaires.
- Données spécifiques par type (HEALTH, FOOD, WASH, SHELTER, SECURITY, POPULATION) : la structure
  est validée ici, les règles d’écart sont dans services.gap_analysis.

Notes :
- Les noms de champs des données typées restent ceux des formulaires terrain (camelCase).
- Les champs non prévus dans `data` sont refusés (extra="forbid").
"""


class _TypedData(BaseModel):
    model_config = ConfigDict(extra="forbid")


class HealthData(_TypedData):
    hasFunctionalClinic: Optional[bool] = None
    hasEmergencyServices: Optional[bool] = None
    numberHealthFacilities: int = Field(default=0, ge=0)
    healthFacilityType: Optional[str] = Field(default=None, max_length=100)
    qualifiedHealthWorkers: int = Field(default=0, ge=0)
    hasTrainedStaff: Optional[bool] = None
    hasMedicineSupply: Optional[bool] = None
    hasMedicalSupplies: Optional[bool] = None
    hasMaternalChildServices: Optional[bool] = None
    commonHealthIssues: List[str] = Field(default_factory=list)
    additionalDetails: Optional[str] = Field(default=None, max_length=2000)


class FoodData(_TypedData):
    isFoodSufficient: Optional[bool] = None
    hasRegularMealAccess: Optional[bool] = None
    hasInfantNutrition: Optional[bool] = None
    foodSource: List[str] = Field(default_factory=list)
    availableFoodDurationDays: int = Field(default=0, ge=0)
    additionalFoodRequiredPersons: int = Field(default=0, ge=0)
    additionalFoodRequiredHouseholds: int = Field(default=0, ge=0)
    additionalDetails: Optional[str] = Field(default=None, max_length=2000)


class WashData(_TypedData):
    waterSource: List[str] = Field(default_factory=list)
    isWaterSufficient: Optional[bool] = None
    hasCleanWaterAccess: Optional[bool] = None
    functionalLatrinesAvailable: int = Field(default=0, ge=0)
    areLatrinesSufficient: Optional[bool] = None
    hasHandwashingFacilities: Optional[bool] = None
    hasOpenDefecationConcerns: Optional[bool] = None
    additionalDetails: Optional[str] = Field(default=None, max_length=2000)


class ShelterData(_TypedData):
    areSheltersSufficient: Optional[bool] = None
    hasSafeStructures: Optional[bool] = None
    shelterTypes: List[str] = Field(default_factory=list)
    requiredShelterType: List[str] = Field(default_factory=list)
    numberSheltersRequired: int = Field(default=0, ge=0)
    areOvercrowded: Optional[bool] = None
    provideWeatherProtection: Optional[bool] = None
    additionalDetails: Optional[str] = Field(default=None, max_length=2000)


class SecurityData(_TypedData):
    isSafeFromViolence: Optional[bool] = None
    gbvCasesReported: Optional[bool] = None
    hasSecurityPresence: Optional[bool] = None
    hasProtectionReportingMechanism: Optional[bool] = None
    vulnerableGroupsHaveAccess: Optional[bool] = None
    hasLighting: Optional[bool] = None
    additionalDetails: Optional[str] = Field(default=None, max_length=2000)


class PopulationData(_TypedData):
    totalHouseholds: int = Field(default=0, ge=0)
    totalPopulation: int = Field(default=0, ge=0)
    populationMale: int = Field(default=0, ge=0)
    populationFemale: int = Field(default=0, ge=0)
    populationUnder5: int = Field(default=0, ge=0)
    pregnantWomen: int = Field(default=0, ge=0)
    lactatingMothers: int = Field(default=0, ge=0)
    personWithDisability: int = Field(default=0, ge=0)
    elderlyPersons: int = Field(default=0, ge=0)
    separatedChildren: int = Field(default=0, ge=0)
    numberLivesLost: int = Field(default=0, ge=0)
    numberInjured: int = Field(default=0, ge=0)
    additionalDetails: Optional[str] = Field(default=None, max_length=2000)


TYPED_DATA: Dict[str, Type[_TypedData]] = {
    AssessmentType.HEALTH.value: HealthData,
    AssessmentType.FOOD.value: FoodData,
    AssessmentType.WASH.value: WashData,
    AssessmentType.SHELTER.value: ShelterData,
    AssessmentType.SECURITY.value: SecurityData,
    AssessmentType.POPULATION.value: PopulationData,
}


def validate_typed_data(assessment_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Valide / normalise les données typées (lève ValidationError si invalide)."""
    model = TYPED_DATA[str(assessment_type)]
    return model.model_validate(data or {}).model_dump()


class ResourceNeed(BaseModel):
    """Besoin chiffré d’une ressource (ex : WATER 5000 litres, HIGH)."""
    model_config = ConfigDict(extra="forbid")

    resource_type: str = Field(..., min_length=1, max_length=60)
    required_quantity: float = Field(..., gt=0)
    unit: str = Field(default="units", max_length=40)
    priority: Priority = Priority.MEDIUM

    @field_validator("resource_type", mode="before")
    @classmethod
    def _upper(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v


class AssessmentCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    assessment_type: AssessmentType
    entity_id: uuid.UUID
    incident_id: Optional[uuid.UUID] = None
    assessment_date: Optional[datetime] = None
    location: Optional[str] = Field(default=None, max_length=255)
    coordinates: Optional[Coordinates] = None
    priority: Optional[Priority] = None

    data: Dict[str, Any] = Field(default_factory=dict)
    resource_needs: List[ResourceNeed] = Field(default_factory=list)
    media_attachments: List[str] = Field(default_factory=list, max_length=50)

    # Offline
    offline_id: Optional[str] = Field(default=None, max_length=64)
    is_offline_created: bool = False

    @field_validator("assessment_date", mode="before")
    @classmethod
    def _parse_date(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_iso_datetime(v)
        return v

    @model_validator(mode="after")
    def _validate_data(self) -> "AssessmentCreate":
        self.data = validate_typed_data(self.assessment_type.value, self.data)
        return self


class AssessmentUpdate(BaseModel):
    """Mise à jour partielle (évaluation en brouillon ou rejetée)."""
    model_config = ConfigDict(extra="forbid")

    assessment_date: Optional[datetime] = None
    location: Optional[str] = Field(default=None, max_length=255)
    coordinates: Optional[Coordinates] = None
    priority: Optional[Priority] = None
    data: Optional[Dict[str, Any]] = None
    resource_needs: Optional[List[ResourceNeed]] = None
    media_attachments: Optional[List[str]] = None
    incident_id: Optional[uuid.UUID] = None

    # Version connue du client (contrôle optimiste, optionnel)
    version_number: Optional[int] = Field(default=None, ge=1)

    @field_validator("assessment_date", mode="before")
    @classmethod
    def _parse_date(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_iso_datetime(v)
        return v


class AssessmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    assessment_type: str
    assessment_date: datetime
    assessor_id: uuid.UUID
    assessor_name: Optional[str] = None
    entity_id: uuid.UUID
    incident_id: Optional[uuid.UUID] = None
    location: Optional[str] = None
    coordinates: Optional[Dict[str, Any]] = None
    status: str
    priority: str
    version_number: int
    data: Dict[str, Any]
    resource_needs: List[Dict[str, Any]]
    gap_analysis: Optional[Dict[str, Any]] = None
    media_attachments: List[str] = Field(default_factory=list)
    is_offline_created: bool
    offline_id: Optional[str] = None
    sync_status: str
    verification_status: str
    submitted_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    rejection_feedback: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class AssessmentListResponse(BaseModel):
    data: List[AssessmentOut]
    meta: PageMeta


class PreliminaryAssessmentCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reporting_date: datetime
    reporting_latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    reporting_longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    reporting_lga: str = Field(..., min_length=1, max_length=120)
    reporting_ward: str = Field(..., min_length=1, max_length=120)
    number_lives_lost: int = Field(default=0, ge=0)
    number_injured: int = Field(default=0, ge=0)
    number_displaced: int = Field(default=0, ge=0)
    number_houses_affected: int = Field(default=0, ge=0)
    number_schools_affected: int = Field(default=0, ge=0)
    number_medical_facilities_affected: int = Field(default=0, ge=0)
    estimated_agricultural_lands_affected: Optional[str] = Field(default=None, max_length=255)
    reporting_agent: str = Field(..., min_length=1, max_length=200)
    additional_details: Optional[str] = Field(default=None, max_length=4000)

    incident_id: Optional[uuid.UUID] = None

    # Création d’incident à partir du rapport (si incident_id absent)
    create_incident: bool = False
    incident_type: Optional[str] = Field(default=None, max_length=100)
    incident_severity: Priority = Priority.MEDIUM

    @field_validator("reporting_date", mode="before")
    @classmethod
    def _parse_date(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_iso_datetime(v)
        return v

    @model_validator(mode="after")
    def _incident_type_required(self) -> "PreliminaryAssessmentCreate":
        if self.create_incident and not self.incident_id and not self.incident_type:
            raise ValueError("incident_type est requis pour créer un incident")
        return self


class PreliminaryAssessmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    reporting_date: datetime
    reporting_latitude: Optional[float] = None
    reporting_longitude: Optional[float] = None
    reporting_lga: str
    reporting_ward: str
    number_lives_lost: int
    number_injured: int
    number_displaced: int
    number_houses_affected: int
    number_schools_affected: int
    number_medical_facilities_affected: int
    estimated_agricultural_lands_affected: Optional[str] = None
    reporting_agent: str
    additional_details: Optional[str] = None
    incident_id: Optional[uuid.UUID] = None
    created_by: Optional[uuid.UUID] = None
    created_at: datetime
