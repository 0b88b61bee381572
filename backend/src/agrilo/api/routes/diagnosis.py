"""
Diagnostic des maladies des cultures : analyse photo (modèle OpenEPI),
historique, statistiques, suivi des traitements et de l'évolution.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.exc import SQLAlchemyError

from agrilo.api.deps import get_current_user, get_database
from agrilo.api.routes.farms import owned_farm
from agrilo.api.schemas import DiagnosisCreate, ProgressUpdate, TreatmentUpdate
from agrilo.core.errors import ApiError, success_body, utc_now_iso
from agrilo.core.settings import settings
from agrilo.services.crop_health import (
    CropHealthService, crop_conditions, diagnosis_stats, get_crop_health_service,
    prevention_tips, timeframe_start, treatment_effectiveness,
)
from agrilo.services.db_handler import AgriloDatabase
from agrilo.services.models import DiagnosisHistory, User

logger = logging.getLogger("Agrilo.Diagnosis")

router = APIRouter(prefix="/api/diagnosis", tags=["diagnosis"])

# statuts de progression qui ferment ou rouvrent le suivi
TERMINAL_PROGRESS = ("resolved", "worsened")


def owned_diagnosis(db: AgriloDatabase, diagnosis_id: str, user: User) -> DiagnosisHistory:
    entry = db.get_diagnosis(diagnosis_id, user.id)
    if entry is None:
        raise ApiError("Diagnosis not found", 404)
    return entry


@router.post("", status_code=201)
def create_diagnosis(body: DiagnosisCreate, user: User = Depends(get_current_user),
                     db: AgriloDatabase = Depends(get_database)):
    entry = db.add_diagnosis(
        user_id=user.id,
        crop_name=body.cropName.strip().lower(),
        symptoms=body.symptoms,
        diagnosis=body.diagnosis,
        confidence=body.confidence,
        treatment=body.treatment,
        image_url=body.imageUrl,
    )
    logger.info("Diagnosis recorded: %s (%s)", entry.id, entry.crop_name)
    return success_body({"diagnosis": entry.to_dict()}, "Diagnosis saved successfully")


@router.post("/analyze", status_code=201)
def analyze(
    image: Optional[UploadFile] = File(None),
    cropType: str = Form("unknown"),
    farmId: Optional[str] = Form(None),
    symptoms: Optional[str] = Form(None),
    user: User = Depends(get_current_user),
    db: AgriloDatabase = Depends(get_database),
    service: CropHealthService = Depends(get_crop_health_service),
):
    if image is None:
        raise ApiError("Image file is required", 400)
    max_bytes = settings.MAX_UPLOAD_MB * 1024 * 1024
    data = image.file.read(max_bytes + 1)
    if not data:
        raise ApiError("Image file is required", 400)
    if len(data) > max_bytes:
        raise ApiError(f"Image file exceeds {settings.MAX_UPLOAD_MB}MB limit", 413)
    farm_id = owned_farm(db, farmId, user).id if farmId else None
    crop = (cropType or "unknown").strip().lower()

    try:
        result = service.analyze(data, crop)
    except ApiError as e:
        logger.error("Crop image analysis failed for user %s: %s", user.id, e.message)
        raise ApiError("Failed to analyze crop images. Please try again.", 500)

    entry = db.add_diagnosis(
        user_id=user.id,
        farm_id=farm_id,
        crop_name=crop,
        symptoms=symptoms,
        diagnosis=result["primaryIssue"],
        confidence=result["confidence"],
        severity=result["severity"],
        treatment=result["recommendations"]["immediate"],
        image_url=image.filename,
    )
    logger.info("Crop analysis saved: %s (%s, %s)", entry.id, result["code"], result["severity"])
    return success_body({
        "diagnosis": {
            "id": entry.id,
            "confidence": result["confidence"],
            "primaryIssue": result["primaryIssue"],
            "severity": result["severity"],
            "plantHealth": result["plantHealth"],
            "recommendations": result["recommendations"],
        },
        "analysisMetadata": {
            "cropType": crop,
            "confident": result["confident"],
            "diseases": result["diseases"],
            "imageSize": len(data),
            "modelSource": result["source"],
            "analyzedAt": result["analyzedAt"],
        },
    }, "Crop analysis completed successfully")


@router.get("")
def list_diagnoses(
    limit: int = Query(50, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AgriloDatabase = Depends(get_database),
):
    entries = db.list_diagnoses(user.id, limit)
    return success_body(
        {"diagnoses": [e.to_dict() for e in entries], "count": len(entries)},
        "Diagnosis history retrieved successfully",
    )


@router.get("/stats")
def stats(
    timeframe: str = Query("30d", pattern="^(7d|30d|90d|1y)$"),
    user: User = Depends(get_current_user),
    db: AgriloDatabase = Depends(get_database),
):
    entries = db.diagnoses_since(user.id, timeframe_start(timeframe))
    return success_body(diagnosis_stats(entries, timeframe), "Diagnosis statistics retrieved successfully")


@router.get("/conditions/{crop_name}")
def conditions(crop_name: str, user: User = Depends(get_current_user), db: AgriloDatabase = Depends(get_database)):
    try:
        entries = db.diagnoses_for_crop(crop_name)
    except SQLAlchemyError as e:
        logger.error("Crop condition lookup failed for %s: %s", crop_name, e)
        raise ApiError("Failed to retrieve crop condition data", 500)
    return success_body({
        "cropName": crop_name,
        **crop_conditions(entries),
        "preventionTips": prevention_tips(crop_name),
    }, "Crop condition data retrieved successfully")


@router.get("/{diagnosis_id}")
def get_diagnosis(diagnosis_id: str, user: User = Depends(get_current_user),
                  db: AgriloDatabase = Depends(get_database)):
    return success_body({"diagnosis": owned_diagnosis(db, diagnosis_id, user).to_dict()},
                        "Diagnosis retrieved successfully")


@router.put("/{diagnosis_id}/treatment")
def record_treatment(diagnosis_id: str, body: TreatmentUpdate, user: User = Depends(get_current_user),
                     db: AgriloDatabase = Depends(get_database)):
    entry = owned_diagnosis(db, diagnosis_id, user)
    treatment = body.model_dump(mode="json", exclude_none=True)
    treatment["recordedAt"] = utc_now_iso()
    treatments = [*(entry.treatments_applied or []), treatment]
    db.update_diagnosis(entry, {"treatments_applied": treatments, "follow_up_status": "in_progress"})
    logger.info("Treatment recorded for diagnosis %s: %s", entry.id, body.treatment)
    return success_body({
        "diagnosis": entry.to_dict(),
        "treatmentEffectiveness": treatment_effectiveness(treatments),
    }, "Treatment information updated successfully")


@router.post("/{diagnosis_id}/progress")
def add_progress(diagnosis_id: str, body: ProgressUpdate, user: User = Depends(get_current_user),
                 db: AgriloDatabase = Depends(get_database)):
    if not body.status or not body.description:
        raise ApiError("Status and description are required", 400)
    entry = owned_diagnosis(db, diagnosis_id, user)
    update = {
        "status": body.status,
        "description": body.description,
        "images": list(body.images),
        "date": datetime.now(timezone.utc).isoformat(),
    }
    changes = {"progress_updates": [*(entry.progress_updates or []), update]}
    if body.status in TERMINAL_PROGRESS:
        changes["follow_up_status"] = body.status
    db.update_diagnosis(entry, changes)
    return success_body({"diagnosis": entry.to_dict(), "update": update}, "Progress update added successfully")
