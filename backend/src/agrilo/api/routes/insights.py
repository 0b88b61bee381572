"""
Insights satellitaires (Google Earth Engine) : sécheresse, végétation,
inondation, et vue combinée. Authentification facultative.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from agrilo.api.deps import get_optional_user
from agrilo.core.errors import ApiError, success_body
from agrilo.services.external_apis.earth_engine import EarthEngineInsights, get_earth_engine_insights
from agrilo.services.models import User

logger = logging.getLogger("Agrilo.Insights")

router = APIRouter(prefix="/api/insights", tags=["insights"])

Latitude = Query(..., ge=-90, le=90)
Longitude = Query(..., ge=-180, le=180)


@router.get("/drought")
def drought(
    lat: float = Latitude,
    lon: float = Longitude,
    user: Optional[User] = Depends(get_optional_user),
    insights: EarthEngineInsights = Depends(get_earth_engine_insights),
):
    try:
        result = insights.calculate_drought_risk(lat, lon)
    except ApiError as e:
        if e.status_code == 503:
            raise
        logger.error("Drought analysis failed (lat=%s lon=%s): %s", lat, lon, e.message)
        raise ApiError("Failed to retrieve drought analysis", 503)
    return success_body(result, "Drought analysis retrieved successfully")


@router.get("/vegetation")
def vegetation(
    lat: float = Latitude,
    lon: float = Longitude,
    user: Optional[User] = Depends(get_optional_user),
    insights: EarthEngineInsights = Depends(get_earth_engine_insights),
):
    result = insights.calculate_vegetation_health(lat, lon)
    if result is None:
        raise ApiError("Vegetation data not available for this location", 404)
    return success_body(result, "Vegetation health retrieved successfully")


@router.get("/flood")
def flood(
    lat: float = Latitude,
    lon: float = Longitude,
    user: Optional[User] = Depends(get_optional_user),
    insights: EarthEngineInsights = Depends(get_earth_engine_insights),
):
    result = insights.calculate_flood_risk(lat, lon)
    if result is None:
        raise ApiError("Flood data not available for this location", 404)
    return success_body(result, "Flood risk retrieved successfully")


@router.get("/combined")
def combined(
    lat: float = Latitude,
    lon: float = Longitude,
    user: Optional[User] = Depends(get_optional_user),
    insights: EarthEngineInsights = Depends(get_earth_engine_insights),
):
    logger.info("Combined insights requested (lat=%s lon=%s user=%s)", lat, lon, user.id if user else None)
    return success_body(insights.combined(lat, lon), "Combined insights retrieved successfully")
