"""
Planification des cultures : recommandations, fiche culture, comparaison.
"""

import logging
from typing import Optional, Tuple

from fastapi import APIRouter, Depends

from agrilo.api.deps import get_current_user, get_database
from agrilo.api.schemas import CompareCropsRequest, RecommendationRequest
from agrilo.core.errors import ApiError, success_body
from agrilo.services.crop_recommendation import CropRecommendationService, get_crop_recommendation_service
from agrilo.services.db_handler import DEFAULT_LOCATION, AgriloDatabase, resolve_coordinates
from agrilo.services.models import Farm, User

logger = logging.getLogger("Agrilo.Planning")

router = APIRouter(prefix="/api/planning", tags=["planning"])


def planning_farm(db: AgriloDatabase, farm_id: Optional[str], user: User) -> Tuple[Optional[Farm], Tuple[float, float]]:
    if farm_id:
        farm = db.get_farm_for_owner(farm_id, user.id)
        if farm is None:
            raise ApiError("Farm not found or access denied", 404)
    else:
        farm = db.latest_farm_for_owner(user.id)
    return farm, resolve_coordinates(farm, user, DEFAULT_LOCATION)


@router.post("/recommendations")
def recommendations(
    body: RecommendationRequest,
    user: User = Depends(get_current_user),
    db: AgriloDatabase = Depends(get_database),
    service: CropRecommendationService = Depends(get_crop_recommendation_service),
):
    farm, (lat, lon) = planning_farm(db, body.farmId, user)
    prefs = body.preferences
    farm_size = prefs.farmSize or (farm.total_area if farm is not None else None) or 1.0
    soil_type = prefs.soilType or (farm.soil_type if farm is not None else None) or "unknown"

    logger.info("Generating crop recommendations: user=%s farm=%s", user.id, farm.id if farm else None)
    result = service.get_recommendations(
        lat, lon,
        farm_size=farm_size,
        soil_type=soil_type,
        experience=prefs.experience or user.experience_level or "beginner",
        budget=prefs.budget,
        market_access=prefs.marketAccess,
        risk_tolerance=prefs.riskTolerance,
    )
    weather = result["environmental"]["weather"]
    result["environmental"]["weather"] = {
        "current": weather.get("current"),
        "forecast": (weather.get("forecast") or [])[:5],
        "source": weather.get("source"),
    }
    return success_body(result, "Crop recommendations generated successfully")


@router.get("/crop-details/{crop_type}")
def crop_details(crop_type: str, user: User = Depends(get_current_user)):
    crop = CropRecommendationService.get_crop(crop_type)
    if crop is None:
        raise ApiError("Crop not found", 404)
    return success_body(
        {"crop": {"key": crop_type.lower(), **crop, "sustainabilityScore": 75, "marketTrend": "stable"}},
        "Crop details retrieved successfully",
    )


@router.post("/compare-crops")
def compare_crops(
    body: CompareCropsRequest,
    user: User = Depends(get_current_user),
    db: AgriloDatabase = Depends(get_database),
    service: CropRecommendationService = Depends(get_crop_recommendation_service),
):
    farm, (lat, lon) = planning_farm(db, body.farmId, user)
    comparison = service.compare_crops(
        [c.lower() for c in body.crops], lat, lon,
        farm_size=(farm.total_area if farm is not None else None) or 1.0,
        soil_type=(farm.soil_type if farm is not None else None) or "unknown",
    )
    logger.info("Crop comparison generated: user=%s crops=%s", user.id, body.crops)
    return success_body(comparison, "Crop comparison generated successfully")
