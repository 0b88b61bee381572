"""
Irrigation : recommandation (Open-Meteo + bilan hydrique), journal et historique.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from agrilo.api.deps import get_current_user, get_database
from agrilo.api.routes.farms import owned_farm
from agrilo.api.schemas import IrrigationLogRequest, IrrigationRecommendationRequest
from agrilo.core.errors import ApiError, success_body
from agrilo.services.db_handler import AgriloDatabase, resolve_coordinates
from agrilo.services.irrigation import IrrigationService, get_irrigation_service
from agrilo.services.models import User

logger = logging.getLogger("Agrilo.Irrigation")

router = APIRouter(prefix="/api/irrigation", tags=["irrigation"])


@router.post("/recommendation")
def recommendation(
    body: IrrigationRecommendationRequest,
    user: User = Depends(get_current_user),
    db: AgriloDatabase = Depends(get_database),
    service: IrrigationService = Depends(get_irrigation_service),
):
    farm = owned_farm(db, body.farmId, user)
    coords = resolve_coordinates(farm, user)
    if coords is None:
        raise ApiError("Farm location coordinates are required", 400)

    crops = farm.crops or []
    crop = body.cropType or (crops[0].get("cropName") if crops else "unknown")
    last_irrigation = body.lastIrrigation or db.last_irrigation_date(farm.id, body.fieldId)
    if last_irrigation is not None and last_irrigation.tzinfo is None:
        last_irrigation = last_irrigation.replace(tzinfo=timezone.utc)

    result = service.calculate_recommendation(
        coords[0], coords[1],
        crop_type=crop,
        growth_stage=body.growthStage,
        soil_type=body.soilType or farm.soil_type or "unknown",
        last_irrigation=last_irrigation,
        field_size=body.fieldSize or farm.total_area or 1.0,
    )
    result["farm"] = {"id": farm.id, "name": farm.name, "fieldId": body.fieldId}
    return success_body(result, "Irrigation recommendation generated successfully")


@router.post("/log", status_code=201)
def log_irrigation(body: IrrigationLogRequest, user: User = Depends(get_current_user),
                   db: AgriloDatabase = Depends(get_database)):
    farm = owned_farm(db, body.farmId, user)
    entry = db.add_irrigation_log(
        user_id=user.id,
        farm_id=farm.id,
        field_id=body.fieldId,
        irrigation_date=body.irrigationDate or datetime.now(timezone.utc),
        recommendation_type=body.recommendationType,
        recommendation=body.recommendation,
        actual_amount=body.amount,
        actual_duration=body.duration,
        method=body.method,
        notes=body.notes,
    )
    logger.info("Irrigation logged: farm=%s field=%s amount=%s", farm.id, body.fieldId, body.amount)
    return success_body({"log": entry.to_dict()}, "Irrigation logged successfully")


@router.get("/history")
def history(
    farmId: Optional[str] = None,
    limit: int = Query(30, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AgriloDatabase = Depends(get_database),
):
    if farmId:
        owned_farm(db, farmId, user)
    logs = db.irrigation_history(user.id, farmId, limit)
    return success_body(
        {"logs": [entry.to_dict() for entry in logs], "count": len(logs)},
        "Irrigation history retrieved successfully",
    )
