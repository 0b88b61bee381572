"""
SQLAlchemy Models — Schéma persistant Agrilo.

SOURCE UNIQUE DE VÉRITÉ pour le schéma ORM.
Utilisé par agrilo/services/db_handler.py (AgriloDatabase)
et agrilo/core/database.py (engine centralisé).
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, DateTime, Boolean, Integer, Float,
    JSON, ForeignKey, Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


EXPERIENCE_LEVELS = ("beginner", "intermediate", "experienced", "expert")
FARMING_TYPES = ("subsistence", "commercial", "organic", "mixed")
LANGUAGES = ("en", "es", "fr", "hi", "sw", "am", "yo", "ha")
RECOMMENDATION_TYPES = ("urgent", "needed", "optimal", "skip", "monitor")
SEVERITIES = ("low", "medium", "high", "critical")
ISSUE_TYPES = ("pest", "disease", "fire", "flood", "drought", "other")
ISSUE_STATUSES = ("reported", "investigating", "resolved", "false_alarm")
FOLLOW_UP_STATUSES = ("pending", "in_progress", "treated", "resolved", "worsened", "abandoned")


class User(Base):
    """Agriculteur inscrit."""
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_uuid)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    phone_number = Column(String(32), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=True)
    password_hash = Column(String, nullable=False)

    # Coordonnées saisies à l'onboarding
    latitude = Column(Float)
    longitude = Column(Float)
    country = Column(String(64))
    region = Column(String(64))
    district = Column(String(64))
    address = Column(String(255))

    experience_level = Column(String(20), default="beginner")
    farming_type = Column(String(20), default="subsistence")
    language = Column(String(5), default="en")
    onboarding_completed = Column(Boolean, default=False, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    login_attempts = Column(Integer, default=0, nullable=False)
    lock_until = Column(DateTime(timezone=True))
    password_reset_token = Column(String)
    password_reset_expires = Column(DateTime(timezone=True))
    last_login = Column(DateTime(timezone=True))
    last_active_date = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    farms = relationship("Farm", back_populates="owner", cascade="all, delete-orphan")

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def is_locked(self, now: datetime = None) -> bool:
        if self.lock_until is None:
            return False
        lock_until = self.lock_until
        if lock_until.tzinfo is None:
            lock_until = lock_until.replace(tzinfo=timezone.utc)
        return lock_until > (now or _now())

    def to_dict(self):
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "phoneNumber": self.phone_number,
            "email": self.email,
            "location": {
                "coordinates": [self.longitude, self.latitude] if self.has_coordinates else None,
                "country": self.country,
                "region": self.region,
                "district": self.district,
                "address": self.address,
            },
            "experienceLevel": self.experience_level,
            "farmingType": self.farming_type,
            "language": self.language,
            "onboardingCompleted": self.onboarding_completed,
            "isActive": self.is_active,
            "lastLogin": _iso(self.last_login),
            "createdAt": _iso(self.created_at),
        }


class Farm(Base):
    """Exploitation d'un agriculteur, avec ses cultures en cours."""
    __tablename__ = "farms"

    id = Column(String, primary_key=True, default=_uuid)
    owner_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    address = Column(String(255))
    country = Column(String(64))
    region = Column(String(64))
    district = Column(String(64))
    # center point optionnel : le dashboard retombe sur l'utilisateur puis un défaut
    center_latitude = Column(Float)
    center_longitude = Column(Float)
    total_area = Column(Float, default=1.0)
    soil_type = Column(String(32), default="loam")
    # dernière analyse de sol (propriétés, nutriments, santé)
    soil_data = Column(JSON, default=dict)
    # polygone fermé [[lon, lat], ...]
    boundary = Column(JSON)
    crops = Column(JSON, default=list)
    fields = Column(JSON, default=list)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    owner = relationship("User", back_populates="farms")

    @property
    def has_center_point(self) -> bool:
        return self.center_latitude is not None and self.center_longitude is not None

    def to_dict(self):
        return {
            "id": self.id,
            "owner": self.owner_id,
            "name": self.name,
            "address": self.address,
            "location": {"country": self.country, "region": self.region, "district": self.district},
            "centerPoint": (
                {"type": "Point", "coordinates": [self.center_longitude, self.center_latitude]}
                if self.has_center_point else None
            ),
            "totalArea": self.total_area,
            "soilType": self.soil_type,
            "soilData": dict(self.soil_data or {}),
            "boundary": {"type": "Polygon", "coordinates": [self.boundary]} if self.boundary else None,
            "currentCrops": list(self.crops or []),
            "fields": list(self.fields or []),
            "isActive": self.is_active,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class IrrigationLog(Base):
    """Historique des recommandations d'irrigation et des arrosages effectifs."""
    __tablename__ = "irrigation_logs"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    farm_id = Column(String, ForeignKey("farms.id"), nullable=False, index=True)
    field_id = Column(String(64), default="main")
    irrigation_date = Column(DateTime(timezone=True), default=_now)
    recommendation_type = Column(String(16), nullable=False)
    recommendation = Column(JSON, default=dict)
    actual_amount = Column(Float)
    actual_duration = Column(Float)
    method = Column(String(32))
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), default=_now)

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "farmId": self.farm_id,
            "fieldId": self.field_id,
            "irrigationDate": _iso(self.irrigation_date),
            "recommendationType": self.recommendation_type,
            "recommendation": self.recommendation or {},
            "actualAmount": self.actual_amount,
            "actualDuration": self.actual_duration,
            "method": self.method,
            "notes": self.notes,
            "createdAt": _iso(self.created_at),
        }


class DiagnosisHistory(Base):
    __tablename__ = "diagnosis_history"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    farm_id = Column(String, ForeignKey("farms.id"), index=True)
    crop_name = Column(String(64), nullable=False)
    symptoms = Column(Text)
    diagnosis = Column(String(255))
    confidence = Column(Float)
    treatment = Column(JSON, default=list)
    severity = Column(String(16))
    follow_up_status = Column(String(16), default="pending", nullable=False)
    treatments_applied = Column(JSON, default=list)
    progress_updates = Column(JSON, default=list)
    image_url = Column(String)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "farmId": self.farm_id,
            "cropName": self.crop_name,
            "symptoms": self.symptoms,
            "diagnosis": self.diagnosis,
            "confidence": self.confidence,
            "treatment": self.treatment or [],
            "severity": self.severity,
            "followUp": {
                "status": self.follow_up_status,
                "treatmentsApplied": list(self.treatments_applied or []),
                "progressUpdates": list(self.progress_updates or []),
            },
            "imageUrl": self.image_url,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class Issue(Base):
    """Incident signalé par un agriculteur (ravageur, maladie, incendie...)."""
    __tablename__ = "issues"

    id = Column(String, primary_key=True, default=_uuid)
    type = Column(String(16), nullable=False)
    description = Column(Text, nullable=False)
    severity = Column(String(16), default="medium", nullable=False)
    status = Column(String(16), default="reported", nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    # rayon d'impact en mètres
    radius = Column(Float, default=1000.0, nullable=False)
    images = Column(JSON, default=list)
    reported_by = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    farm_id = Column(String, ForeignKey("farms.id"), index=True)
    resolved_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "description": self.description,
            "severity": self.severity,
            "status": self.status,
            "location": {"type": "Point", "coordinates": [self.longitude, self.latitude]},
            "radius": self.radius,
            "images": list(self.images or []),
            "reportedBy": self.reported_by,
            "farmId": self.farm_id,
            "resolvedAt": _iso(self.resolved_at),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
