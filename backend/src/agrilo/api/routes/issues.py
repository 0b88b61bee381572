"""
Signalement d'incidents (ravageurs, maladies, incendies, inondations...).

À la création, les propriétaires des fermes voisines sont prévenus par
WhatsApp en tâche de fond : la réponse n'attend pas l'envoi.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query

from agrilo.api.deps import get_current_user, get_database
from agrilo.api.routes.farms import owned_farm
from agrilo.api.schemas import IssueCreate
from agrilo.core.errors import ApiError, success_body
from agrilo.services.db_handler import AgriloDatabase
from agrilo.services.models import User
from agrilo.services.whatsapp import WhatsAppService, get_whatsapp_service

logger = logging.getLogger("Agrilo.Issues")

router = APIRouter(prefix="/api/issues", tags=["issues"])

DEFAULT_ISSUE_RADIUS_M = 1000.0
DEFAULT_ALERT_RADIUS_KM = 5.0
ALERT_TEMPLATE = "farm_alert_nearby"


def alert_text(issue: Dict[str, Any]) -> str:
    return (
        f"⚠️ {issue['type'].upper()} alert near your farm ({issue['severity']} severity): "
        f"{issue['description'][:160]}"
    )


def alert_nearby_farmers(whatsapp: WhatsAppService, phones: List[str], issue: Dict[str, Any]) -> int:
    """Template `farm_alert_nearby`, texte libre si le template est refusé."""
    components = [{
        "type": "body",
        "parameters": [
            {"type": "text", "text": issue["type"].upper()},
            {"type": "text", "text": issue["severity"]},
            {"type": "text", "text": issue["description"][:60]},
        ],
    }]
    sent = 0
    for phone in phones:
        try:
            ok = whatsapp.send_template(phone, ALERT_TEMPLATE, components=components)
            if not ok:
                ok = whatsapp.send_alert(phone, alert_text(issue))
        except Exception as e:
            logger.error("Issue alert to %s failed: %s", phone, e)
            continue
        sent += int(bool(ok))
    logger.info("Issue %s: alerted %d/%d nearby farmers", issue["id"], sent, len(phones))
    return sent


@router.post("", status_code=201)
def report_issue(
    body: IssueCreate,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AgriloDatabase = Depends(get_database),
    whatsapp: WhatsAppService = Depends(get_whatsapp_service),
):
    farm_id: Optional[str] = None
    if body.farmId:
        farm_id = owned_farm(db, body.farmId, user).id

    issue = db.create_issue(
        type=body.type,
        description=body.description.strip(),
        severity=body.severity,
        latitude=body.location.latitude,
        longitude=body.location.longitude,
        radius=body.radius or DEFAULT_ISSUE_RADIUS_M,
        images=list(body.images),
        reported_by=user.id,
        farm_id=farm_id,
    )
    payload = issue.to_dict()

    alert_radius = body.radius / 1000 if body.radius else DEFAULT_ALERT_RADIUS_KM
    nearby = db.farms_near(issue.latitude, issue.longitude, alert_radius, exclude_owner=user.id)
    phones = sorted({farm.owner.phone_number for farm, _ in nearby if farm.owner and farm.owner.phone_number})
    if phones:
        background_tasks.add_task(alert_nearby_farmers, whatsapp, phones, payload)

    return success_body({"issue": payload, "notifiedFarmers": len(phones)}, "Issue reported successfully")


@router.get("/nearby")
def nearby_issues(
    latitude: Optional[float] = Query(None, ge=-90, le=90),
    longitude: Optional[float] = Query(None, ge=-180, le=180),
    radius: float = Query(DEFAULT_ALERT_RADIUS_KM, gt=0, le=500),
    user: User = Depends(get_current_user),
    db: AgriloDatabase = Depends(get_database),
):
    if latitude is None or longitude is None:
        raise ApiError("Please provide latitude and longitude", 400)
    nearby = db.issues_near(latitude, longitude, radius)
    issues = [{**issue.to_dict(), "distanceKm": round(distance, 2)} for issue, distance in nearby]
    return success_body({"issues": issues, "count": len(issues), "radius": radius},
                        "Nearby issues retrieved successfully")


@router.get("/farm/{farm_id}")
def farm_issues(farm_id: str, user: User = Depends(get_current_user), db: AgriloDatabase = Depends(get_database)):
    farm = owned_farm(db, farm_id, user)
    issues = [i.to_dict() for i in db.issues_for_farm(farm.id)]
    return success_body({"issues": issues, "count": len(issues)}, "Farm issues retrieved successfully")


@router.delete("/{issue_id}")
def delete_issue(issue_id: str, user: User = Depends(get_current_user), db: AgriloDatabase = Depends(get_database)):
    issue = db.get_issue(issue_id)
    if issue is None:
        raise ApiError("Issue not found", 404)
    if issue.reported_by != user.id:
        raise ApiError("Not authorized to delete this issue", 401)
    db.delete_issue(issue)
    logger.info("Issue deleted: %s", issue_id)
    return success_body(None, "Issue removed")
