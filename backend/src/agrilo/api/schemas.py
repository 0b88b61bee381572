"""
Schémas Pydantic - Modèles Request pour l'API Agrilo

Les noms de champs suivent le JSON exposé au frontend (camelCase).
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from agrilo.services.irrigation import GROWTH_STAGES, SOIL_WATER_CAPACITY
from agrilo.services.models import (
    EXPERIENCE_LEVELS, FARMING_TYPES, ISSUE_TYPES, LANGUAGES, RECOMMENDATION_TYPES, SEVERITIES,
)

PHONE_PATTERN = r"^\+?[\d\s\-()]+$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

IRRIGATION_METHODS = ("sprinkler", "drip", "flood", "furrow", "manual")
BUDGETS = ("low", "medium", "high")
MARKET_ACCESS = ("local", "regional", "national", "export")
AREA_UNITS = ("hectares", "acres", "square_meters")
EFFECTIVENESS = ("poor", "fair", "good", "excellent", "unknown")


def _one_of(value, allowed, label: str):
    if value is not None and value not in allowed:
        raise ValueError(f"{label} must be one of: {', '.join(allowed)}")
    return value


# ============================================
# AUTH
# ============================================

class PersonalInfo(BaseModel):
    firstName: str = Field(min_length=2, max_length=50)
    lastName: str = Field(min_length=2, max_length=50)
    phoneNumber: str = Field(pattern=PHONE_PATTERN)
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN)


class Credentials(BaseModel):
    password: str = Field(min_length=6)


class Coordinates(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class LocationInfo(BaseModel):
    coordinates: Optional[Coordinates] = None
    country: Optional[str] = None
    address: Optional[str] = None


class FarmingProfile(BaseModel):
    experienceLevel: str = "beginner"
    farmingType: str = "subsistence"

    @field_validator("experienceLevel")
    @classmethod
    def _experience(cls, v):
        return _one_of(v, EXPERIENCE_LEVELS, "Experience level")

    @field_validator("farmingType")
    @classmethod
    def _farming_type(cls, v):
        return _one_of(v, FARMING_TYPES, "Farming type")


class Preferences(BaseModel):
    language: str = "en"

    @field_validator("language")
    @classmethod
    def _language(cls, v):
        return _one_of(v, LANGUAGES, "Language")


class RegisterRequest(BaseModel):
    personalInfo: PersonalInfo
    authentication: Credentials
    location: Optional[LocationInfo] = None
    farmingProfile: FarmingProfile = FarmingProfile()
    preferences: Preferences = Preferences()


class LoginRequest(BaseModel):
    phoneNumber: str = Field(min_length=1)
    password: str = Field(min_length=1)


class ForgotPasswordRequest(BaseModel):
    phoneNumber: str = Field(pattern=PHONE_PATTERN)


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1)
    newPassword: str = Field(min_length=6)


# ============================================
# FARMS
# ============================================

class CropEntry(BaseModel):
    cropName: str = Field(min_length=2)
    growthStage: Optional[str] = None
    plantingDate: Optional[datetime] = None
    fieldId: Optional[str] = None


class FarmCreate(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    address: Optional[str] = None
    centerPoint: Optional[Coordinates] = None
    totalArea: float = Field(1.0, gt=0, le=100000)
    soilType: str = "loam"
    crops: List[CropEntry] = []
    fields: List[Dict[str, Any]] = []

    @field_validator("soilType")
    @classmethod
    def _soil(cls, v):
        return _one_of(v, tuple(SOIL_WATER_CAPACITY), "Soil type")


class FarmUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    address: Optional[str] = None
    centerPoint: Optional[Coordinates] = None
    totalArea: Optional[float] = Field(None, gt=0, le=100000)
    soilType: Optional[str] = None
    crops: Optional[List[CropEntry]] = None
    fields: Optional[List[Dict[str, Any]]] = None

    @field_validator("soilType")
    @classmethod
    def _soil(cls, v):
        return _one_of(v, tuple(SOIL_WATER_CAPACITY), "Soil type")


# ============================================
# IRRIGATION
# ============================================

class IrrigationRecommendationRequest(BaseModel):
    farmId: str = Field(min_length=1)
    fieldId: str = Field(min_length=1)
    cropType: Optional[str] = Field(None, min_length=2)
    growthStage: str = "mid"
    soilType: Optional[str] = None
    lastIrrigation: Optional[datetime] = None
    fieldSize: Optional[float] = Field(None, ge=0.1, le=1000)

    @field_validator("growthStage")
    @classmethod
    def _stage(cls, v):
        return _one_of(v, GROWTH_STAGES, "Growth stage")

    @field_validator("soilType")
    @classmethod
    def _soil(cls, v):
        return _one_of(v, tuple(s for s in SOIL_WATER_CAPACITY if s != "unknown"), "Soil type")


class IrrigationLogRequest(BaseModel):
    farmId: str = Field(min_length=1)
    fieldId: str = Field("main", min_length=1)
    irrigationDate: Optional[datetime] = None
    recommendationType: str = "monitor"
    recommendation: Dict[str, Any] = {}
    amount: Optional[float] = Field(None, ge=0)
    duration: Optional[float] = Field(None, ge=0)
    method: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("recommendationType")
    @classmethod
    def _type(cls, v):
        return _one_of(v, RECOMMENDATION_TYPES, "Recommendation type")

    @field_validator("method")
    @classmethod
    def _method(cls, v):
        return _one_of(v, IRRIGATION_METHODS, "Irrigation method")


# ============================================
# PLANNING
# ============================================

class PlanningPreferences(BaseModel):
    experience: Optional[str] = None
    budget: str = "medium"
    marketAccess: str = "local"
    riskTolerance: str = "medium"
    farmSize: Optional[float] = Field(None, gt=0)
    soilType: Optional[str] = None

    @field_validator("experience")
    @classmethod
    def _experience(cls, v):
        return _one_of(v, EXPERIENCE_LEVELS, "Experience level")

    @field_validator("budget", "riskTolerance")
    @classmethod
    def _level(cls, v):
        return _one_of(v, BUDGETS, "Value")

    @field_validator("marketAccess")
    @classmethod
    def _market(cls, v):
        return _one_of(v, MARKET_ACCESS, "Market access")


class RecommendationRequest(BaseModel):
    farmId: Optional[str] = None
    preferences: PlanningPreferences = PlanningPreferences()


class CompareCropsRequest(BaseModel):
    farmId: Optional[str] = None
    crops: List[str] = Field(min_length=2, max_length=4)


# ============================================
# DIAGNOSIS
# ============================================

class DiagnosisCreate(BaseModel):
    cropName: str = Field(min_length=2, max_length=64)
    symptoms: Optional[str] = Field(None, max_length=2000)
    diagnosis: Optional[str] = Field(None, max_length=255)
    confidence: Optional[float] = Field(None, ge=0, le=100)
    treatment: List[str] = []
    imageUrl: Optional[str] = None


class TreatmentUpdate(BaseModel):
    treatment: str = Field(min_length=1, max_length=255)
    applicationDate: datetime
    method: str = Field(min_length=1, max_length=64)
    effectiveness: str = "unknown"
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("effectiveness")
    @classmethod
    def _effectiveness(cls, v):
        return _one_of(v, EFFECTIVENESS, "Effectiveness")


class ProgressUpdate(BaseModel):
    # absents : 400 explicite côté route
    status: Optional[str] = Field(None, max_length=32)
    description: Optional[str] = Field(None, max_length=1000)
    images: List[str] = []


# ============================================
# ONBOARDING
# ============================================

class GeoPoint(BaseModel):
    """Point GeoJSON : coordinates = [longitude, latitude]."""
    coordinates: List[float] = Field(min_length=2, max_length=2)
    address: Optional[str] = None

    @field_validator("coordinates")
    @classmethod
    def _range(cls, v):
        lon, lat = v
        if not -180 <= lon <= 180 or not -90 <= lat <= 90:
            raise ValueError("Coordinates must be [longitude, latitude] within valid ranges")
        return v

    @property
    def longitude(self) -> float:
        return self.coordinates[0]

    @property
    def latitude(self) -> float:
        return self.coordinates[1]


class FarmBoundary(BaseModel):
    coordinates: List[List[float]] = Field(min_length=3)

    @field_validator("coordinates")
    @classmethod
    def _points(cls, v):
        if any(len(point) != 2 for point in v):
            raise ValueError("Boundary points must be [longitude, latitude] pairs")
        return v

    def closed(self) -> List[List[float]]:
        points = [list(p) for p in self.coordinates]
        if points[0] != points[-1]:
            points.append(list(points[0]))
        return points


class OnboardingCrop(BaseModel):
    cropName: str = Field(min_length=2, max_length=50)
    plantingDate: Optional[datetime] = None
    expectedHarvest: Optional[datetime] = None
    growthStage: Optional[str] = None


class OnboardingRequest(BaseModel):
    firstName: str = Field(min_length=1, max_length=50)
    lastName: str = Field(min_length=1, max_length=50)
    phoneNumber: str = Field(pattern=PHONE_PATTERN)
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6)
    location: GeoPoint
    farmBoundary: FarmBoundary
    area: float = Field(ge=0.01, le=100000)
    crops: List[OnboardingCrop] = Field(min_length=1)
    language: str = "en"
    experienceLevel: str = "beginner"
    farmingType: str = "subsistence"

    @field_validator("language")
    @classmethod
    def _language(cls, v):
        return _one_of(v, LANGUAGES, "Language")

    @field_validator("experienceLevel")
    @classmethod
    def _experience(cls, v):
        return _one_of(v, EXPERIENCE_LEVELS, "Experience level")

    @field_validator("farmingType")
    @classmethod
    def _farming_type(cls, v):
        return _one_of(v, FARMING_TYPES, "Farming type")


class OnboardingUpdate(BaseModel):
    location: Optional[GeoPoint] = None
    farmBoundary: Optional[FarmBoundary] = None
    area: Optional[float] = Field(None, ge=0.01, le=100000)
    crops: Optional[List[OnboardingCrop]] = None


# ============================================
# FARM FIELDS & SOIL
# ============================================

class FieldArea(BaseModel):
    value: float = Field(gt=0)
    unit: str = "hectares"

    @field_validator("unit")
    @classmethod
    def _unit(cls, v):
        return _one_of(v, AREA_UNITS, "Area unit")


class FieldCreate(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    area: FieldArea
    cropType: Optional[str] = Field(None, min_length=2)
    soilType: Optional[str] = None
    boundary: Optional[FarmBoundary] = None

    @field_validator("soilType")
    @classmethod
    def _soil(cls, v):
        return _one_of(v, tuple(SOIL_WATER_CAPACITY), "Soil type")


class SoilDataUpdate(BaseModel):
    soilType: Optional[str] = None
    ph: Optional[float] = Field(None, ge=0, le=14)
    organicMatter: Optional[float] = Field(None, ge=0, le=100)
    nitrogen: Optional[float] = Field(None, ge=0)
    phosphorus: Optional[float] = Field(None, ge=0)
    potassium: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("soilType")
    @classmethod
    def _soil(cls, v):
        return _one_of(v, tuple(SOIL_WATER_CAPACITY), "Soil type")


# ============================================
# ISSUES
# ============================================

class IssueCreate(BaseModel):
    type: str
    description: str = Field(min_length=1, max_length=1000)
    severity: str = "medium"
    location: GeoPoint
    farmId: Optional[str] = None
    radius: Optional[float] = Field(None, gt=0, le=100000)
    images: List[str] = []

    @field_validator("type")
    @classmethod
    def _type(cls, v):
        return _one_of(v, ISSUE_TYPES, "Issue type")

    @field_validator("severity")
    @classmethod
    def _severity(cls, v):
        return _one_of(v, SEVERITIES, "Severity")


__all__ = [
    "RegisterRequest", "LoginRequest", "ForgotPasswordRequest", "ResetPasswordRequest",
    "FarmCreate", "FarmUpdate", "CropEntry", "Coordinates",
    "IrrigationRecommendationRequest", "IrrigationLogRequest",
    "RecommendationRequest", "CompareCropsRequest", "PlanningPreferences",
    "DiagnosisCreate", "TreatmentUpdate", "ProgressUpdate",
    "OnboardingRequest", "OnboardingUpdate", "GeoPoint", "FarmBoundary",
    "FieldCreate", "SoilDataUpdate", "IssueCreate",
]
