"""
Fermes de l'utilisateur connecté : CRUD (suppression = désactivation),
parcelles, analyse de sol, indicateurs et recherche de fermes voisines.
"""

import logging
import math
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from agrilo.api.deps import get_current_user, get_database
from agrilo.api.schemas import FarmCreate, FarmUpdate, FieldCreate, SoilDataUpdate
from agrilo.core.errors import ApiError, success_body, utc_now_iso
from agrilo.services.db_handler import AgriloDatabase, as_utc, resolve_coordinates
from agrilo.services.irrigation import SOIL_WATER_CAPACITY
from agrilo.services.models import Farm, User
from agrilo.services.soil import SoilApiService, get_soil_service

logger = logging.getLogger("Agrilo.Farms")

router = APIRouter(prefix="/api/farm", tags=["farms"])

HECTARES_PER_UNIT = {"hectares": 1.0, "acres": 0.404686, "square_meters": 0.0001}
DEFAULT_NEARBY_RADIUS_KM = 50


def farm_columns(body) -> Dict[str, Any]:
    """Traduit un schéma (création ou mise à jour partielle) en colonnes Farm."""
    data = body.model_dump(mode="json", exclude_unset=True)
    columns: Dict[str, Any] = {}
    if "name" in data:
        columns["name"] = data["name"].strip()
    if "address" in data:
        columns["address"] = data["address"]
    if "centerPoint" in data:
        point = data["centerPoint"] or {}
        columns["center_latitude"] = point.get("latitude")
        columns["center_longitude"] = point.get("longitude")
    if "totalArea" in data:
        columns["total_area"] = data["totalArea"]
    if "soilType" in data:
        columns["soil_type"] = data["soilType"]
    if "crops" in data:
        columns["crops"] = data["crops"]
    if "fields" in data:
        columns["fields"] = data["fields"]
    return columns


def owned_farm(db: AgriloDatabase, farm_id: str, user: User) -> Farm:
    farm = db.get_farm_for_owner(farm_id, user.id)
    if farm is None:
        raise ApiError("Farm not found", 404)
    return farm


def field_hectares(field: Dict[str, Any]) -> float:
    area = field.get("area") or {}
    if not isinstance(area, dict):
        return float(area or 0)
    return float(area.get("value") or 0) * HECTARES_PER_UNIT.get(area.get("unit", "hectares"), 1.0)


def days_until(value: Optional[str], now: Optional[datetime] = None) -> Optional[int]:
    if not value:
        return None
    try:
        target = as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None
    return math.ceil((target - (now or datetime.now(timezone.utc))).total_seconds() / 86400)


def data_completeness(farm: Farm) -> int:
    checks = [
        farm.has_center_point,
        bool(farm.address),
        bool(farm.boundary),
        bool(farm.soil_data),
        bool(farm.crops),
        bool(farm.fields),
    ]
    return round(sum(checks) / len(checks) * 100)


def farm_analytics(farm: Farm, time_range: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    fields: List[Dict[str, Any]] = list(farm.fields or [])
    crops: List[Dict[str, Any]] = list(farm.crops or [])
    soil: Dict[str, Any] = dict(farm.soil_data or {})
    nutrients = soil.get("nutrients") or {}
    cultivated = round(sum(field_hectares(f) for f in fields if f.get("status", "active") == "active"), 2)
    total = farm.total_area or 0

    analytics = {
        "overview": {
            "totalArea": total,
            "cultivatedArea": cultivated,
            "utilizationRate": round(cultivated / total * 100, 1) if total > 0 else 0,
            "activeFields": sum(1 for f in fields if f.get("status", "active") == "active"),
            "totalFields": len(fields),
            "healthScore": soil.get("healthScore") or 0,
        },
        "crops": {
            "totalCrops": len(crops),
            "cropDiversity": len({c.get("cropName") for c in crops}),
            "currentCrops": [
                {
                    "name": c.get("cropName"),
                    "growthStage": c.get("growthStage"),
                    "fieldId": c.get("fieldId"),
                    "daysToHarvest": days_until(c.get("expectedHarvest"), now),
                }
                for c in crops
            ],
        },
        "soil": {
            "lastTested": soil.get("lastTested"),
            "pH": soil.get("ph"),
            "nutrientStatus": {
                name: (nutrients.get(name) or {}).get("status")
                for name in ("nitrogen", "phosphorus", "potassium")
            },
            "recommendations": len(soil.get("recommendations") or []),
        },
        "dataQuality": {
            "completeness": data_completeness(farm),
            "lastUpdated": farm.updated_at.isoformat() if farm.updated_at else None,
        },
    }
    if time_range > 0:
        # pas encore d'historique agrégé : tendances indicatives
        analytics["trends"] = {
            "period": f"{time_range} days",
            "productivity": "stable",
            "soilHealth": "improving",
            "waterUsage": "decreasing",
        }
    return analytics


def soil_snapshot(soil_data: Dict[str, Any], nutrients: Dict[str, Any], health: Dict[str, Any]) -> Dict[str, Any]:
    """Résumé persisté dans Farm.soil_data après une analyse."""
    return {
        "lastTested": utc_now_iso(),
        "testingMethod": "digital_sensor",
        "soilType": soil_data.get("soilType"),
        "ph": soil_data.get("ph"),
        "organicMatter": soil_data.get("organicMatter"),
        "nutrients": {
            name: {"value": info.get("value"), "status": info.get("status")}
            for name, info in nutrients.get("nutrients", {}).items()
        },
        "healthScore": health["health"]["healthScore"],
        "recommendations": list(health["health"]["recommendations"]),
        "dataQuality": soil_data.get("dataQuality"),
    }


def nearby_summary(farm: Farm, distance: float) -> Dict[str, Any]:
    owner = farm.owner
    return {
        "id": farm.id,
        "name": farm.name,
        "totalArea": farm.total_area,
        "centerPoint": {"type": "Point", "coordinates": [farm.center_longitude, farm.center_latitude]},
        "currentCrops": [c.get("cropName") for c in farm.crops or []],
        "distanceKm": round(distance, 2),
        "owner": {
            "firstName": owner.first_name,
            "lastName": owner.last_name,
            "country": owner.country,
        } if owner is not None else None,
    }


@router.post("", status_code=201)
def create_farm(body: FarmCreate, user: User = Depends(get_current_user),
                db: AgriloDatabase = Depends(get_database)):
    columns = farm_columns(body)
    columns.setdefault("total_area", body.totalArea)
    columns.setdefault("soil_type", body.soilType)
    farm = db.create_farm(user.id, **columns)
    return success_body({"farm": farm.to_dict()}, "Farm created successfully")


@router.get("")
def list_farms(user: User = Depends(get_current_user), db: AgriloDatabase = Depends(get_database)):
    farms = db.list_farms(user.id)
    return success_body({"farms": [f.to_dict() for f in farms], "count": len(farms)}, "Farms retrieved successfully")


@router.get("/nearby/{lat}/{lon}")
def nearby_farms(
    lat: float,
    lon: float,
    radius: float = Query(DEFAULT_NEARBY_RADIUS_KM, gt=0, le=500),
    user: User = Depends(get_current_user),
    db: AgriloDatabase = Depends(get_database),
):
    if math.isnan(lat) or math.isnan(lon) or not -90 <= lat <= 90 or not -180 <= lon <= 180:
        raise ApiError("Invalid coordinates provided", 400)
    nearby = db.farms_near(lat, lon, radius, exclude_owner=user.id)
    return success_body({
        "nearbyFarms": [nearby_summary(farm, distance) for farm, distance in nearby],
        "searchCenter": {"latitude": lat, "longitude": lon},
        "radius": radius,
        "count": len(nearby),
    }, "Nearby farms retrieved successfully")


@router.get("/{farm_id}")
def get_farm(farm_id: str, user: User = Depends(get_current_user), db: AgriloDatabase = Depends(get_database)):
    return success_body({"farm": owned_farm(db, farm_id, user).to_dict()}, "Farm retrieved successfully")


@router.put("/{farm_id}")
def update_farm(farm_id: str, body: FarmUpdate, user: User = Depends(get_current_user),
                db: AgriloDatabase = Depends(get_database)):
    farm = db.update_farm(owned_farm(db, farm_id, user), farm_columns(body))
    logger.info("Farm updated: %s", farm.id)
    return success_body({"farm": farm.to_dict()}, "Farm updated successfully")


@router.delete("/{farm_id}")
def delete_farm(farm_id: str, user: User = Depends(get_current_user), db: AgriloDatabase = Depends(get_database)):
    farm = owned_farm(db, farm_id, user)
    db.deactivate_farm(farm)
    logger.info("Farm deactivated: %s", farm.id)
    return success_body(None, "Farm deleted successfully")


@router.post("/{farm_id}/fields", status_code=201)
def add_field(farm_id: str, body: FieldCreate, user: User = Depends(get_current_user),
              db: AgriloDatabase = Depends(get_database)):
    farm = owned_farm(db, farm_id, user)
    field = body.model_dump(mode="json", exclude_none=True)
    field["name"] = body.name.strip()
    field["fieldId"] = f"field_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
    field["status"] = "active"
    if body.boundary is not None:
        field["boundary"] = body.boundary.closed()
    # nouvelle liste : le JSON n'est pas suivi en place
    db.update_farm(farm, {"fields": [*(farm.fields or []), field]})
    logger.info("Field added to farm %s: %s", farm.id, field["fieldId"])
    return success_body({"field": field, "farm": farm.to_dict()}, "Field added successfully")


@router.get("/{farm_id}/soil-analysis")
def soil_analysis(
    farm_id: str,
    user: User = Depends(get_current_user),
    db: AgriloDatabase = Depends(get_database),
    soil: SoilApiService = Depends(get_soil_service),
):
    farm = owned_farm(db, farm_id, user)
    coords = resolve_coordinates(farm, user)
    if coords is None:
        raise ApiError("Farm location is required for soil analysis", 400)
    lat, lon = coords
    last_tested = (farm.soil_data or {}).get("lastTested")

    try:
        properties = soil.get_soil_data(lat, lon)
        nutrients = soil.get_soil_nutrients(lat, lon)
        health = soil.get_soil_health(lat, lon)
    except ApiError as e:
        logger.error("Soil analysis failed for farm %s: %s", farm.id, e.message)
        raise ApiError("Soil analysis service temporarily unavailable", 503)

    snapshot = soil_snapshot(properties, nutrients, health)
    changes: Dict[str, Any] = {"soil_data": snapshot}
    if farm.soil_type == "unknown" and properties.get("soilType") in SOIL_WATER_CAPACITY:
        changes["soil_type"] = properties["soilType"]
    db.update_farm(farm, changes)

    return success_body({
        "soilAnalysis": {
            "properties": properties,
            "nutrients": nutrients,
            "health": health["health"],
            "lastUpdated": last_tested,
            "recommendations": health["health"]["recommendations"],
        },
        "farmId": farm.id,
    }, "Soil analysis retrieved successfully")


@router.post("/{farm_id}/soil-data")
def update_soil_data(farm_id: str, body: SoilDataUpdate, user: User = Depends(get_current_user),
                     db: AgriloDatabase = Depends(get_database)):
    """Saisie manuelle (test de laboratoire) fusionnée avec l'analyse existante."""
    farm = owned_farm(db, farm_id, user)
    manual = body.model_dump(exclude_none=True)
    soil_data = {**(farm.soil_data or {}), **manual, "lastTested": utc_now_iso(), "testingMethod": "manual"}
    changes: Dict[str, Any] = {"soil_data": soil_data}
    if body.soilType:
        changes["soil_type"] = body.soilType
    db.update_farm(farm, changes)
    logger.info("Soil data updated for farm %s", farm.id)
    return success_body({"soilData": soil_data, "farmId": farm.id}, "Soil data updated successfully")


@router.get("/{farm_id}/analytics")
def analytics(
    farm_id: str,
    timeRange: int = Query(30, ge=0, le=365),
    user: User = Depends(get_current_user),
    db: AgriloDatabase = Depends(get_database),
):
    farm = owned_farm(db, farm_id, user)
    return success_body({"analytics": farm_analytics(farm, timeRange), "farmId": farm.id},
                        "Farm analytics retrieved successfully")
