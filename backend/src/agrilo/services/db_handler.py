"""
AgriloDatabase — opérations métier sur la couche persistante.

Enveloppe une Session SQLAlchemy. Les routes l'obtiennent via la dependency
FastAPI `get_database`, les jobs cron via `session_scope()`.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .external_apis.geocoding import haversine_km
from .models import DiagnosisHistory, Farm, IrrigationLog, Issue, User

logger = logging.getLogger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite renvoie des datetimes naïfs : on les considère en UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AgriloDatabase:
    """Abstraction de la couche mémoire pour les routes et les services."""

    def __init__(self, session: Session):
        self.session = session

    # ═══════════════════════════════════════════════════════════
    # USERS
    # ═══════════════════════════════════════════════════════════

    def get_user(self, user_id: str) -> Optional[User]:
        return self.session.get(User, user_id)

    def get_user_by_phone(self, phone_number: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.phone_number == phone_number))

    def get_user_by_email(self, email: str) -> Optional[User]:
        if not email:
            return None
        return self.session.scalar(select(User).where(User.email == email.lower()))

    def get_user_by_reset_token(self, token_hash: str, now: Optional[datetime] = None) -> Optional[User]:
        user = self.session.scalar(select(User).where(User.password_reset_token == token_hash))
        if user is None:
            return None
        expires = as_utc(user.password_reset_expires)
        if expires is None or expires <= (now or datetime.now(timezone.utc)):
            return None
        return user

    def create_user(self, **fields) -> User:
        user = User(**fields)
        self.session.add(user)
        self.session.flush()
        logger.info("User created: %s", user.id)
        return user

    def list_active_users(self) -> List[User]:
        return list(self.session.scalars(select(User).where(User.is_active.is_(True))))

    def touch_user(self, user: User) -> None:
        user.last_active_date = datetime.now(timezone.utc)

    def register_failed_login(self, user: User, max_attempts: int, lock_hours: int,
                              now: Optional[datetime] = None) -> None:
        """Incrémente le compteur ; verrouille le compte au N-ième échec."""
        now = now or datetime.now(timezone.utc)
        lock_until = as_utc(user.lock_until)
        if lock_until is not None and lock_until < now:
            # verrou expiré : on repart à 1
            user.lock_until = None
            user.login_attempts = 1
        else:
            user.login_attempts = (user.login_attempts or 0) + 1
            if user.login_attempts >= max_attempts and lock_until is None:
                user.lock_until = now + timedelta(hours=lock_hours)
                logger.warning("Account locked after %s failed attempts: %s", user.login_attempts, user.id)
        self.session.flush()

    def reset_login_attempts(self, user: User, now: Optional[datetime] = None) -> None:
        now = now or datetime.now(timezone.utc)
        user.login_attempts = 0
        user.lock_until = None
        user.last_login = now
        user.last_active_date = now
        self.session.flush()

    # ═══════════════════════════════════════════════════════════
    # FARMS
    # ═══════════════════════════════════════════════════════════

    def latest_farm_for_owner(self, owner_id: str) -> Optional[Farm]:
        """Ferme la plus récemment créée de l'utilisateur."""
        stmt = (
            select(Farm)
            .where(Farm.owner_id == owner_id, Farm.is_active.is_(True))
            .order_by(Farm.created_at.desc())
            .limit(1)
        )
        return self.session.scalar(stmt)

    def get_farm_for_owner(self, farm_id: str, owner_id: str) -> Optional[Farm]:
        farm = self.session.get(Farm, farm_id)
        if farm is None or farm.owner_id != owner_id or not farm.is_active:
            return None
        return farm

    def list_farms(self, owner_id: str) -> List[Farm]:
        stmt = (
            select(Farm)
            .where(Farm.owner_id == owner_id, Farm.is_active.is_(True))
            .order_by(Farm.created_at.desc())
        )
        return list(self.session.scalars(stmt))

    def list_active_farms(self) -> List[Farm]:
        return list(self.session.scalars(select(Farm).where(Farm.is_active.is_(True))))

    def create_farm(self, owner_id: str, **fields) -> Farm:
        farm = Farm(owner_id=owner_id, **fields)
        self.session.add(farm)
        self.session.flush()
        logger.info("Farm created: %s (owner=%s)", farm.id, owner_id)
        return farm

    def update_farm(self, farm: Farm, changes: Dict[str, Any]) -> Farm:
        for key, value in changes.items():
            setattr(farm, key, value)
        self.session.flush()
        return farm

    def deactivate_farm(self, farm: Farm) -> None:
        farm.is_active = False
        self.session.flush()

    def farms_near(self, lat: float, lon: float, radius_km: float,
                   exclude_owner: Optional[str] = None) -> List[Tuple[Farm, float]]:
        """Fermes actives dont le centre est à moins de `radius_km`, triées par distance."""
        stmt = select(Farm).where(
            Farm.is_active.is_(True),
            Farm.center_latitude.is_not(None),
            Farm.center_longitude.is_not(None),
        )
        if exclude_owner:
            stmt = stmt.where(Farm.owner_id != exclude_owner)
        nearby = []
        for farm in self.session.scalars(stmt):
            distance = haversine_km(lat, lon, farm.center_latitude, farm.center_longitude)
            if distance <= radius_km:
                nearby.append((farm, distance))
        return sorted(nearby, key=lambda pair: pair[1])

    # ═══════════════════════════════════════════════════════════
    # IRRIGATION LOGS
    # ═══════════════════════════════════════════════════════════

    def add_irrigation_log(self, **fields) -> IrrigationLog:
        entry = IrrigationLog(**fields)
        self.session.add(entry)
        self.session.flush()
        return entry

    def irrigation_history(self, user_id: str, farm_id: Optional[str] = None, limit: int = 30) -> List[IrrigationLog]:
        stmt = select(IrrigationLog).where(IrrigationLog.user_id == user_id)
        if farm_id:
            stmt = stmt.where(IrrigationLog.farm_id == farm_id)
        stmt = stmt.order_by(IrrigationLog.irrigation_date.desc()).limit(limit)
        return list(self.session.scalars(stmt))

    def last_irrigation_date(self, farm_id: str, field_id: str = "main") -> Optional[datetime]:
        stmt = (
            select(func.max(IrrigationLog.irrigation_date))
            .where(
                IrrigationLog.farm_id == farm_id,
                IrrigationLog.field_id == field_id,
                IrrigationLog.actual_amount.is_not(None),
            )
        )
        return as_utc(self.session.scalar(stmt))

    def monthly_irrigation_summary(self, user_id: str, since: datetime) -> Dict[str, Any]:
        stmt = (
            select(func.count(IrrigationLog.id), func.coalesce(func.sum(IrrigationLog.actual_amount), 0.0))
            .where(IrrigationLog.user_id == user_id, IrrigationLog.irrigation_date >= since)
        )
        count, total = self.session.execute(stmt).one()
        return {"irrigationEvents": int(count), "totalWaterLiters": round(float(total), 1)}

    # ═══════════════════════════════════════════════════════════
    # DIAGNOSIS HISTORY
    # ═══════════════════════════════════════════════════════════

    def add_diagnosis(self, **fields) -> DiagnosisHistory:
        entry = DiagnosisHistory(**fields)
        self.session.add(entry)
        self.session.flush()
        return entry

    def list_diagnoses(self, user_id: str, limit: int = 50) -> List[DiagnosisHistory]:
        stmt = (
            select(DiagnosisHistory)
            .where(DiagnosisHistory.user_id == user_id)
            .order_by(DiagnosisHistory.created_at.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def get_diagnosis(self, diagnosis_id: str, user_id: str) -> Optional[DiagnosisHistory]:
        entry = self.session.get(DiagnosisHistory, diagnosis_id)
        if entry is None or entry.user_id != user_id:
            return None
        return entry

    def diagnoses_since(self, user_id: str, since: datetime) -> List[DiagnosisHistory]:
        stmt = (
            select(DiagnosisHistory)
            .where(DiagnosisHistory.user_id == user_id, DiagnosisHistory.created_at >= since)
            .order_by(DiagnosisHistory.created_at)
        )
        return list(self.session.scalars(stmt))

    def diagnoses_for_crop(self, crop_name: str) -> List[DiagnosisHistory]:
        """Tous les diagnostics d'une culture, tous agriculteurs confondus."""
        stmt = select(DiagnosisHistory).where(DiagnosisHistory.crop_name == crop_name.strip().lower())
        return list(self.session.scalars(stmt))

    def update_diagnosis(self, entry: DiagnosisHistory, changes: Dict[str, Any]) -> DiagnosisHistory:
        for key, value in changes.items():
            setattr(entry, key, value)
        self.session.flush()
        return entry

    # ═══════════════════════════════════════════════════════════
    # ISSUES
    # ═══════════════════════════════════════════════════════════

    def create_issue(self, **fields) -> Issue:
        issue = Issue(**fields)
        self.session.add(issue)
        self.session.flush()
        logger.info("Issue reported: %s (%s)", issue.id, issue.type)
        return issue

    def get_issue(self, issue_id: str) -> Optional[Issue]:
        return self.session.get(Issue, issue_id)

    def delete_issue(self, issue: Issue) -> None:
        self.session.delete(issue)
        self.session.flush()

    def issues_near(self, lat: float, lon: float, radius_km: float) -> List[Tuple[Issue, float]]:
        """Incidents non résolus dans le rayon, les plus proches d'abord."""
        stmt = select(Issue).where(Issue.status != "resolved")
        nearby = []
        for issue in self.session.scalars(stmt):
            distance = haversine_km(lat, lon, issue.latitude, issue.longitude)
            if distance <= radius_km:
                nearby.append((issue, distance))
        return sorted(nearby, key=lambda pair: pair[1])

    def issues_for_farm(self, farm_id: str) -> List[Issue]:
        stmt = select(Issue).where(Issue.farm_id == farm_id).order_by(Issue.created_at.desc())
        return list(self.session.scalars(stmt))


def previous_month_start(now: Optional[datetime] = None) -> datetime:
    """Premier jour du mois précédent, 00:00 UTC."""
    now = now or datetime.now(timezone.utc)
    first_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return (first_of_month - timedelta(days=1)).replace(day=1)


DEFAULT_LOCATION = (28.7041, 77.1025)


def resolve_coordinates(farm: Optional[Farm], user: Optional[User] = None,
                        default: Optional[Tuple[float, float]] = None) -> Optional[Tuple[float, float]]:
    """Centre de la ferme, sinon coordonnées de l'utilisateur, sinon `default`."""
    if farm is not None and farm.has_center_point:
        return farm.center_latitude, farm.center_longitude
    owner = user if user is not None else (farm.owner if farm is not None else None)
    if owner is not None and owner.has_coordinates:
        return owner.latitude, owner.longitude
    return default
