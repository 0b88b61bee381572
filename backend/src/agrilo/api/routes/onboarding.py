"""
Onboarding : création du compte et de la première ferme en une étape,
aperçu du sol, géocodage et premières recommandations de cultures.

L'enrichissement (nom de lieu, sol) est au mieux : un échec du service
externe ne bloque jamais l'inscription.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from agrilo.api.deps import get_current_user, get_database
from agrilo.api.schemas import OnboardingCrop, OnboardingRequest, OnboardingUpdate
from agrilo.core.errors import ApiError, success_body
from agrilo.core.security import create_access_token, hash_password
from agrilo.core.settings import settings
from agrilo.services.db_handler import AgriloDatabase
from agrilo.services.external_apis.openepi import OpenEpiService, get_openepi_service
from agrilo.services.irrigation import SOIL_WATER_CAPACITY
from agrilo.services.models import User
from agrilo.services.soil import SoilApiService, get_soil_service

logger = logging.getLogger("Agrilo.Onboarding")

router = APIRouter(prefix="/api/onboarding", tags=["onboarding"])

DEFAULT_SUITABLE_CROPS = ["maize", "beans", "vegetables"]

FALLBACK_SOIL = {
    "soilType": "unknown",
    "ph": None,
    "organicMatter": None,
    "source": "fallback",
    "dataQuality": "low",
}

BASE_CROP_RECOMMENDATIONS = [
    {"crop": "maize", "suitability": "high", "reason": "Staple crop, good market demand"},
    {"crop": "beans", "suitability": "high", "reason": "Nitrogen fixing, good companion crop"},
    {"crop": "tomatoes", "suitability": "medium", "reason": "High value crop, requires more care"},
    {"crop": "cabbage", "suitability": "medium", "reason": "Good for cooler seasons"},
]


def require_coordinates(lat: Optional[float], lng: Optional[float]) -> None:
    if lat is None or lng is None:
        raise ApiError("Latitude and longitude are required", 400)


def enhance_location(openepi: OpenEpiService, lat: float, lon: float) -> Dict[str, Optional[str]]:
    """Pays / région / localité via Nominatim ; vide si le service est indisponible."""
    try:
        info = openepi.reverse_geocode(lat, lon)
    except ApiError as e:
        logger.warning("Location enhancement skipped: %s", e.message)
        return {"country": None, "region": None, "district": None, "formatted": None}
    admin = info["administrativeInfo"]
    return {
        "country": admin.get("country"),
        "region": admin.get("region"),
        "district": admin.get("locality"),
        "formatted": info["address"]["formatted"],
    }


def fetch_soil(soil: SoilApiService, lat: float, lon: float) -> Dict[str, Any]:
    try:
        return soil.get_soil_data(lat, lon)
    except ApiError as e:
        logger.warning("Soil data unavailable during onboarding: %s", e.message)
        return dict(FALLBACK_SOIL)


def crop_entries(crops: List[OnboardingCrop]) -> List[Dict[str, Any]]:
    entries = []
    for crop in crops:
        entry = crop.model_dump(mode="json", exclude_none=True)
        entry["cropName"] = crop.cropName.strip().lower()
        entry["fieldId"] = "main_field"
        entry.setdefault("growthStage", "initial")
        entries.append(entry)
    return entries


def farm_columns(body, location: Dict[str, Optional[str]], soil: Dict[str, Any]) -> Dict[str, Any]:
    lon, lat = body.location.coordinates
    area = body.area if body.area is not None else 1.0
    soil_type = soil.get("soilType")
    return {
        "address": body.location.address or location["formatted"],
        "country": location["country"],
        "region": location["region"],
        "district": location["district"],
        "center_latitude": lat,
        "center_longitude": lon,
        "total_area": area,
        "boundary": body.farmBoundary.closed(),
        "soil_type": soil_type if soil_type in SOIL_WATER_CAPACITY else "unknown",
        "soil_data": soil,
        "crops": crop_entries(body.crops),
        "fields": [{
            "fieldId": "main_field",
            "name": "Main Field",
            "area": {"value": area, "unit": "hectares"},
            "boundary": body.farmBoundary.closed(),
            "status": "active",
        }],
    }


def farm_summary(farm) -> Dict[str, Any]:
    return {
        "id": farm.id,
        "name": farm.name,
        "area": farm.total_area,
        "location": {
            "coordinates": [farm.center_longitude, farm.center_latitude],
            "address": farm.address,
            "country": farm.country,
            "region": farm.region,
        },
        "cropCount": len(farm.crops or []),
        "status": "active",
    }


@router.post("/complete", status_code=201)
def complete_onboarding(
    body: OnboardingRequest,
    db: AgriloDatabase = Depends(get_database),
    soil: SoilApiService = Depends(get_soil_service),
    openepi: OpenEpiService = Depends(get_openepi_service),
):
    if db.get_user_by_phone(body.phoneNumber) is not None:
        raise ApiError("A user with this phone number already exists", 409)
    if body.email and db.get_user_by_email(body.email) is not None:
        raise ApiError("A user with this email already exists", 409)

    lon, lat = body.location.coordinates
    location = enhance_location(openepi, lat, lon)
    soil_data = fetch_soil(soil, lat, lon)

    user = db.create_user(
        first_name=body.firstName.strip(),
        last_name=body.lastName.strip(),
        phone_number=body.phoneNumber,
        email=body.email.lower() if body.email else None,
        password_hash=hash_password(body.password),
        latitude=lat,
        longitude=lon,
        country=location["country"],
        region=location["region"],
        district=location["district"],
        address=body.location.address or location["formatted"],
        experience_level=body.experienceLevel,
        farming_type=body.farmingType,
        language=body.language,
        onboarding_completed=True,
        last_active_date=datetime.now(timezone.utc),
    )
    farm = db.create_farm(user.id, name=f"{user.first_name}'s Farm", **farm_columns(body, location, soil_data))
    logger.info("Onboarding completed: user=%s farm=%s", user.id, farm.id)

    return success_body({
        "user": user.to_dict(),
        "farm": farm_summary(farm),
        "token": create_access_token(user.id, user.phone_number),
        "expiresIn": settings.JWT_EXPIRE,
        "onboardingComplete": True,
    }, "Onboarding completed successfully! Welcome to Agrilo!")


@router.get("/soil-preview")
def soil_preview(
    lat: Optional[float] = Query(None),
    lng: Optional[float] = Query(None),
    soil: SoilApiService = Depends(get_soil_service),
):
    require_coordinates(lat, lng)
    try:
        data = soil.get_soil_data(lat, lng)
    except ApiError as e:
        logger.error("Failed to get soil preview: %s (lat=%s lng=%s)", e.message, lat, lng)
        return success_body({
            "soilType": "unknown",
            "ph": None,
            "organicMatter": None,
            "suitableFor": list(DEFAULT_SUITABLE_CROPS),
            "recommendations": ["Soil testing recommended for optimal results"],
            "note": "Detailed soil data will be available after account creation",
        }, "Soil data preview (limited)")

    return success_body({
        "soilType": data.get("soilType"),
        "ph": data.get("ph"),
        "organicMatter": data.get("organicMatter"),
        "suitableFor": list(DEFAULT_SUITABLE_CROPS),
        "dataQuality": data.get("dataQuality"),
    }, "Soil data preview retrieved successfully")


@router.put("/update")
def update_onboarding(
    body: OnboardingUpdate,
    user: User = Depends(get_current_user),
    db: AgriloDatabase = Depends(get_database),
    soil: SoilApiService = Depends(get_soil_service),
    openepi: OpenEpiService = Depends(get_openepi_service),
):
    """Complète l'onboarding d'un compte déjà inscrit (ferme, cultures)."""
    if body.location is None or body.farmBoundary is None or not body.crops:
        raise ApiError("Missing required fields: location, farmBoundary, and crops are required", 400)

    lon, lat = body.location.coordinates
    location = enhance_location(openepi, lat, lon)
    soil_data = fetch_soil(soil, lat, lon)

    user.latitude, user.longitude = lat, lon
    user.country = location["country"] or user.country
    user.region = location["region"]
    user.district = location["district"]
    user.address = body.location.address or location["formatted"]
    user.onboarding_completed = True

    farm = db.create_farm(user.id, name=f"{user.first_name}'s Farm", **farm_columns(body, location, soil_data))
    logger.info("Onboarding updated: user=%s farm=%s", user.id, farm.id)
    return success_body({
        "user": user.to_dict(),
        "farm": farm_summary(farm),
        "onboardingComplete": True,
    }, "Onboarding data updated successfully")


@router.get("/geocode")
def geocode(
    lat: Optional[float] = Query(None),
    lng: Optional[float] = Query(None),
    address: Optional[str] = Query(None),
    openepi: OpenEpiService = Depends(get_openepi_service),
):
    try:
        if lat is not None and lng is not None:
            info = openepi.reverse_geocode(lat, lng)
            admin = info["administrativeInfo"]
            parts = [p for p in (admin.get("locality"), admin.get("region"), admin.get("country")) if p]
            return success_body({
                "address": ", ".join(parts) or info["address"]["formatted"],
                "name": openepi.get_location_name_from_coordinates(lat, lng),
                "coordinates": {"latitude": lat, "longitude": lng},
                "details": admin,
            }, "Address retrieved successfully")
        if address:
            result = openepi.geocode_address(address)
            best = result["features"][0]
            lon_, lat_ = best["coordinates"]
            return success_body({
                "coordinates": {"latitude": lat_, "longitude": lon_},
                "formattedAddress": best["formatted_address"],
                "results": result["features"],
            }, "Coordinates retrieved successfully")
    except ApiError as e:
        logger.error("Geocoding failed: %s", e.message)
        if e.status_code == 404:
            raise
        raise ApiError("Geocoding service unavailable", 500)

    raise ApiError("Either lat/lng or address parameter is required", 400)


@router.get("/crop-recommendations")
def crop_recommendations(
    lat: Optional[float] = Query(None),
    lng: Optional[float] = Query(None),
    area: Optional[float] = Query(None, gt=0),
    season: Optional[str] = Query(None),
    openepi: OpenEpiService = Depends(get_openepi_service),
):
    require_coordinates(lat, lng)
    try:
        country = openepi.reverse_geocode(lat, lng)["administrativeInfo"].get("country")
    except ApiError as e:
        logger.warning("Country lookup failed for crop recommendations: %s", e.message)
        country = None
    return success_body({
        "recommendations": [dict(r) for r in BASE_CROP_RECOMMENDATIONS],
        "location": country or "Unknown",
        "farmArea": area or 1,
        "bestSeason": season or "rainy_season",
        "note": "Detailed recommendations will be available after account creation",
    }, "Crop recommendations retrieved successfully")
