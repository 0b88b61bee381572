"""
NotificationService — tâches planifiées (APScheduler, fuseau Asia/Kolkata).

Jobs :
  daily-irrigation-check  06:00 tous les jours
  weather-alerts          08:00 et 18:00
  weekly-planning         dimanche 09:00
  monthly-analytics       le 1er du mois à 10:00

Chaque job lit la base via session_scope(). Une erreur sur une ferme ou un
utilisateur est loggée et n'interrompt pas le job. Les notifications sont
loggées, puis envoyées par WhatsApp si les identifiants Meta sont configurés.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from agrilo.core.database import session_scope
from agrilo.core.errors import ApiError
from agrilo.core.settings import settings
from agrilo.services.crop_recommendation import (
    CropRecommendationService, current_season, get_crop_recommendation_service,
)
from agrilo.services.db_handler import AgriloDatabase, previous_month_start, resolve_coordinates
from agrilo.services.irrigation import IrrigationService, get_irrigation_service
from agrilo.services.models import Farm, User
from agrilo.services.weather import WeatherApiService, get_weather_service
from agrilo.services.whatsapp import WhatsAppService, get_whatsapp_service

logger = logging.getLogger("Agrilo.Notifications")

HEAVY_RAIN_MM = 50
EXTREME_HEAT_C = 40
STRONG_WIND_MS = 25

# day_of_week explicite : pour APScheduler 3, "0" = lundi et non dimanche
JOB_SCHEDULES = {
    "daily-irrigation-check": ("0 6 * * *", {"hour": 6, "minute": 0}),
    "weather-alerts": ("0 8,18 * * *", {"hour": "8,18", "minute": 0}),
    "weekly-planning": ("0 9 * * 0", {"day_of_week": "sun", "hour": 9, "minute": 0}),
    "monthly-analytics": ("0 10 1 * *", {"day": 1, "hour": 10, "minute": 0}),
}


def weather_alerts_for_forecast(forecast: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Alertes pluie forte / chaleur extrême / vent fort sur une prévision journalière."""
    alerts = []
    for day in forecast:
        date = day.get("date")
        precipitation = day.get("precipitation") or 0
        max_temp = (day.get("temperature") or {}).get("max")
        wind = day.get("windSpeed") or 0

        if precipitation > HEAVY_RAIN_MM:
            alerts.append({
                "type": "heavy_rain",
                "severity": "high",
                "date": date,
                "message": (f"Heavy rainfall expected: {precipitation}mm. "
                            "Consider postponing irrigation and ensure proper drainage."),
                "recommendations": [
                    "Postpone any planned irrigation",
                    "Check and clear drainage channels",
                    "Protect vulnerable crops",
                    "Monitor for waterlogging",
                ],
            })
        if max_temp is not None and max_temp > EXTREME_HEAT_C:
            alerts.append({
                "type": "extreme_heat",
                "severity": "high",
                "date": date,
                "message": f"Extreme heat expected: {max_temp}°C. Take measures to protect crops from heat stress.",
                "recommendations": [
                    "Increase irrigation frequency",
                    "Irrigate during early morning or evening",
                    "Provide shade for sensitive crops",
                    "Monitor for heat stress symptoms",
                ],
            })
        if wind > STRONG_WIND_MS:
            alerts.append({
                "type": "strong_wind",
                "severity": "medium",
                "date": date,
                "message": f"Strong winds expected: {wind} m/s. Secure equipment and avoid overhead irrigation.",
                "recommendations": [
                    "Secure farm equipment and structures",
                    "Avoid overhead irrigation systems",
                    "Support tall plants if needed",
                    "Check for wind damage after the event",
                ],
            })
    return alerts


def primary_crop(farm: Farm) -> Optional[str]:
    crops = farm.crops or []
    return crops[0].get("cropName") if crops else None


class NotificationService:
    """Planifie et exécute les jobs de notification."""

    def __init__(
        self,
        scheduler: Optional[BackgroundScheduler] = None,
        session_factory: Callable = session_scope,
        irrigation: Optional[IrrigationService] = None,
        weather: Optional[WeatherApiService] = None,
        crops: Optional[CropRecommendationService] = None,
        whatsapp: Optional[WhatsAppService] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.scheduler = scheduler or BackgroundScheduler(timezone=settings.NOTIFICATION_TIMEZONE)
        self._session_scope = session_factory
        self._irrigation = irrigation
        self._weather = weather
        self._crops = crops
        self.whatsapp = whatsapp
        self._clock = clock
        self.is_initialized = False
        self.jobs: Dict[str, Callable[[], Dict[str, Any]]] = {
            "daily-irrigation-check": self.check_daily_irrigation,
            "weather-alerts": self.check_weather_alerts,
            "weekly-planning": self.send_weekly_planning_reminders,
            "monthly-analytics": self.send_monthly_analytics,
        }

    @property
    def irrigation(self) -> IrrigationService:
        return self._irrigation or get_irrigation_service()

    @property
    def weather(self) -> WeatherApiService:
        return self._weather or get_weather_service()

    @property
    def crops(self) -> CropRecommendationService:
        return self._crops or get_crop_recommendation_service()

    # ── Lifecycle ────────────────────────────────────────────

    def start(self, enable_jobs: bool = True) -> None:
        if self.is_initialized:
            return
        logger.info("Initializing notification service...")
        if enable_jobs:
            for name, (expression, fields) in JOB_SCHEDULES.items():
                self.scheduler.add_job(
                    self.jobs[name],
                    CronTrigger(timezone=settings.NOTIFICATION_TIMEZONE, **fields),
                    id=name,
                    replace_existing=True,
                )
                logger.info("Scheduled job: %s with schedule: %s", name, expression)
        if not self.scheduler.running:
            self.scheduler.start()
        self.is_initialized = True
        logger.info("Notification service initialized successfully")

    def stop(self) -> None:
        logger.info("Stopping all notification jobs...")
        for name in JOB_SCHEDULES:
            if self.scheduler.get_job(name) is not None:
                self.scheduler.remove_job(name)
                logger.info("Stopped job: %s", name)
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.is_initialized = False

    def get_job_status(self) -> Dict[str, Any]:
        active = [name for name in JOB_SCHEDULES if self.scheduler.get_job(name) is not None]
        jobs = []
        for name in active:
            job = self.scheduler.get_job(name)
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "name": name,
                "schedule": JOB_SCHEDULES[name][0],
                "nextRun": next_run.isoformat() if next_run else None,
            })
        return {"isInitialized": self.is_initialized, "activeJobs": active, "jobCount": len(active), "jobs": jobs}

    def trigger_job(self, name: str) -> Dict[str, Any]:
        """Exécute un job immédiatement, dans le thread appelant."""
        job = self.jobs.get(name)
        if job is None:
            raise ApiError(f"Unknown job: {name}", 404)
        logger.info("Manually triggering job: %s", name)
        return job()

    # ── Envoi ────────────────────────────────────────────────

    def _notify(self, user: Optional[User], kind: str, text: str) -> None:
        user_id = user.id if user is not None else None
        logger.info("Notification [%s] for user %s: %s", kind, user_id, text)
        if self.whatsapp is not None and user is not None and user.phone_number:
            self.whatsapp.send_alert(user.phone_number, text)

    # ── Jobs ─────────────────────────────────────────────────

    def check_daily_irrigation(self) -> Dict[str, Any]:
        logger.info("Running daily irrigation check...")
        checked = sent = failures = 0
        with self._session_scope() as session:
            db = AgriloDatabase(session)
            for farm in db.list_active_farms():
                coords = resolve_coordinates(farm)
                crop = primary_crop(farm)
                if coords is None or crop is None:
                    continue
                checked += 1
                try:
                    result = self.irrigation.calculate_recommendation(
                        coords[0], coords[1],
                        crop_type=crop,
                        growth_stage="mid",
                        soil_type=farm.soil_type or "unknown",
                        last_irrigation=db.last_irrigation_date(farm.id),
                        field_size=farm.total_area or 1,
                    )
                    rec = result["recommendation"]
                    db.add_irrigation_log(
                        user_id=farm.owner_id,
                        farm_id=farm.id,
                        field_id="main",
                        irrigation_date=self._clock(),
                        recommendation_type=rec["status"],
                        recommendation={k: rec[k] for k in ("status", "priority", "action", "amount", "timing", "reason")},
                        notes=f"Automated daily irrigation check - {rec['status']}",
                    )
                    if rec["status"] in ("urgent", "needed"):
                        self._notify(
                            farm.owner, "irrigation_reminder",
                            f"{farm.name}: irrigation {rec['status']} ({rec['amount']} L, {rec['timing']}). {rec['reason']}",
                        )
                        sent += 1
                except Exception as e:
                    failures += 1
                    logger.error("Error checking irrigation for farm %s: %s", farm.id, e)
        logger.info("Daily irrigation check completed (farmsChecked=%s notificationsSent=%s)", checked, sent)
        return {"farmsChecked": checked, "notificationsSent": sent, "failures": failures}

    def check_weather_alerts(self) -> Dict[str, Any]:
        logger.info("Checking weather alerts...")
        checked = sent = failures = 0
        with self._session_scope() as session:
            db = AgriloDatabase(session)
            for farm in db.list_active_farms():
                coords = resolve_coordinates(farm)
                if coords is None:
                    continue
                checked += 1
                try:
                    forecast = self.weather.get_weather_forecast(coords[0], coords[1], days=3)["forecast"]
                    alerts = weather_alerts_for_forecast(forecast)
                    if alerts:
                        self._notify(farm.owner, "weather_alert",
                                     f"{farm.name}: " + " ".join(a["message"] for a in alerts))
                        sent += 1
                except Exception as e:
                    failures += 1
                    logger.error("Error checking weather for farm %s: %s", farm.id, e)
        logger.info("Weather alerts check completed (alertsSent=%s)", sent)
        return {"farmsChecked": checked, "alertsSent": sent, "failures": failures}

    def weekly_suggestions(self, farms: List[Farm]) -> List[Dict[str, Any]]:
        season = current_season(self._clock().month)
        suggestions = []
        for farm in farms:
            coords = resolve_coordinates(farm)
            if coords is None:
                continue
            recs = self.crops.get_recommendations(
                coords[0], coords[1], farm_size=farm.total_area or 1, soil_type=farm.soil_type or "unknown",
            )
            seasonal = (recs["seasonalCalendar"].get(season) or {}).get("recommendedCrops") or []
            actions = [f"Consider planting {crop['name']} this season" for crop in seasonal]
            if not actions:
                actions = [f"{crop['name']}: {crop['bestPlantingTime']}" for crop in recs["topRecommendations"]]
            suggestions.append({"farmName": farm.name, "actions": actions})
        return suggestions

    def send_weekly_planning_reminders(self) -> Dict[str, Any]:
        logger.info("Sending weekly planning reminders...")
        sent = failures = 0
        with self._session_scope() as session:
            db = AgriloDatabase(session)
            for user in db.list_active_users():
                farms = db.list_farms(user.id)
                if not farms:
                    continue
                try:
                    suggestions = self.weekly_suggestions(farms)
                    if suggestions:
                        lines = [f"{s['farmName']}: {'; '.join(s['actions'])}" for s in suggestions]
                        self._notify(user, "planning_reminder", "Weekly plan - " + " | ".join(lines))
                        sent += 1
                except Exception as e:
                    failures += 1
                    logger.error("Error sending planning reminder to user %s: %s", user.id, e)
        logger.info("Weekly planning reminders completed (remindersSent=%s)", sent)
        return {"remindersSent": sent, "failures": failures}

    def monthly_analytics(self, db: AgriloDatabase, user: User) -> Dict[str, Any]:
        since = previous_month_start(self._clock())
        stats = db.monthly_irrigation_summary(user.id, since)
        insights = []
        if stats["irrigationEvents"] > 0:
            insights.append({
                "type": "achievement",
                "message": f"You completed {stats['irrigationEvents']} irrigation sessions this month",
                "suggestion": "Consistent irrigation helps maintain optimal crop health",
            })
        else:
            insights.append({
                "type": "improvement",
                "message": "No irrigation activity was logged last month",
                "suggestion": "Log irrigation events to track water usage and efficiency",
            })
        return {
            "period": f"{since.date().isoformat()} - {self._clock().date().isoformat()}",
            "irrigationStats": stats,
            "farmCount": len(db.list_farms(user.id)),
            "insights": insights,
            "recommendations": [
                "Continue monitoring soil moisture levels",
                "Plan for upcoming seasonal changes",
                "Consider crop rotation for soil health",
            ],
        }

    def send_monthly_analytics(self) -> Dict[str, Any]:
        logger.info("Generating monthly analytics...")
        sent = failures = 0
        with self._session_scope() as session:
            db = AgriloDatabase(session)
            for user in db.list_active_users():
                try:
                    report = self.monthly_analytics(db, user)
                    stats = report["irrigationStats"]
                    self._notify(
                        user, "monthly_analytics",
                        f"Monthly report {report['period']}: {stats['irrigationEvents']} irrigations, "
                        f"{stats['totalWaterLiters']} L of water",
                    )
                    sent += 1
                except Exception as e:
                    failures += 1
                    logger.error("Error generating analytics for user %s: %s", user.id, e)
        logger.info("Monthly analytics completed (analyticsSent=%s)", sent)
        return {"analyticsSent": sent, "failures": failures}


_notification_service: Optional[NotificationService] = None
_notification_lock = threading.Lock()


def get_notification_service() -> NotificationService:
    global _notification_service
    if _notification_service is not None:
        return _notification_service
    with _notification_lock:
        if _notification_service is None:
            whatsapp = get_whatsapp_service()
            _notification_service = NotificationService(whatsapp=whatsapp if whatsapp.configured else None)
    return _notification_service
