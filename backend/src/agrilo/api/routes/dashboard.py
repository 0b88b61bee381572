"""
Dashboard : vue d'ensemble (météo, insights, tâches, progression), widget
météo, tâches du jour et validation de tâche.

Chaque bloc de la vue d'ensemble est récupéré séparément : un échec ne
dégrade que son propre bloc.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends

from agrilo.api.deps import get_current_user, get_database
from agrilo.core.errors import ApiError, success_body, utc_now_iso
from agrilo.services.db_handler import DEFAULT_LOCATION, AgriloDatabase, resolve_coordinates
from agrilo.services.external_apis.geocoding import coordinates_label
from agrilo.services.models import Farm, User
from agrilo.services.weather import WeatherApiService, format_weather_description, get_weather_service

logger = logging.getLogger("Agrilo.Dashboard")

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])

DAYS_TO_HARVEST = 90

TASK_POINTS = {
    "irrigation_check": 50,
    "soil_testing": 30,
    "pest_inspection": 40,
    "crop_monitoring": 35,
}

CROP_ICONS = {
    "tomato": "🍅",
    "corn": "🌽",
    "wheat": "🌾",
    "rice": "🌾",
    "potato": "🥔",
    "carrot": "🥕",
    "pepper": "🌶️",
    "cucumber": "🥒",
    "lettuce": "🥬",
}

PARTICLES = {
    "rain": {"type": "raindrops", "count": 50, "speed": "fast"},
    "sunny": {"type": "sunrays", "count": 20, "speed": "slow"},
    "cloudy": {"type": "clouds", "count": 10, "speed": "medium"},
    "snow": {"type": "snowflakes", "count": 30, "speed": "slow"},
    "hot": {"type": "heatwaves", "count": 15, "speed": "medium"},
}

GRADIENTS = {
    "sunny": "from-yellow-400 via-orange-500 to-red-500",
    "rain": "from-gray-600 via-blue-600 to-blue-800",
    "cloudy": "from-gray-400 via-gray-600 to-gray-700",
    "snow": "from-blue-200 via-white to-gray-300",
    "hot": "from-red-400 via-orange-500 to-yellow-500",
}

EMPTY_TASKS = {"urgent": [], "recommended": [], "completed": 0, "total": 0}
DEFAULT_PROGRESS = {
    "cropGrowth": [],
    "farmHealth": 0,
    "sustainabilityScore": 0,
    "weeklyGoals": {"completed": 0, "total": 0, "percentage": 0},
}


# ── Helpers ──────────────────────────────────────────────────

def dashboard_location(farm: Farm, user: User) -> Tuple[float, float]:
    coords = resolve_coordinates(farm, user)
    if coords is None:
        logger.warning("No farm or user coordinates for farm %s, using default location", farm.id)
        return DEFAULT_LOCATION
    if not farm.has_center_point:
        logger.warning("Farm %s missing coordinates, using user location", farm.id)
    return coords


def days_since(planting: Optional[str], today: Optional[date] = None) -> int:
    if not planting:
        return 0
    try:
        planted = datetime.fromisoformat(str(planting).replace("Z", "+00:00")).date()
    except ValueError:
        return 0
    return max(((today or date.today()) - planted).days, 0)


def growth_stage(days: int) -> str:
    if days < 14:
        return "seedling"
    if days < 45:
        return "vegetative"
    if days < 75:
        return "flowering"
    return "maturation"


def crop_icon(name: str) -> str:
    return CROP_ICONS.get((name or "").lower(), "🌱")


def weather_alerts(current: Dict[str, Any], forecast: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    alerts = []
    if (current.get("temperature") or 0) > 35:
        alerts.append({
            "type": "heat_warning",
            "title": "High Temperature Alert",
            "message": "Consider extra irrigation during hot weather",
            "severity": "moderate",
            "icon": "🌡️",
        })
    if any((day.get("precipitationProbability") or 0) > 70 for day in forecast):
        alerts.append({
            "type": "rain_forecast",
            "title": "Rain Expected",
            "message": "Reduce irrigation schedule for the next few days",
            "severity": "info",
            "icon": "🌧️",
        })
    return alerts


def weather_animation(current: Dict[str, Any]) -> Dict[str, Any]:
    temp = current.get("temperature") or 0
    description = format_weather_description(current.get("description")).lower()
    if "rain" in description:
        animation = "rain"
    elif "cloud" in description:
        animation = "cloudy"
    elif "snow" in description:
        animation = "snow"
    elif temp > 30:
        animation = "hot"
    else:
        animation = "sunny"
    return {"primary": animation, "particles": PARTICLES[animation], "background": GRADIENTS[animation]}


def weather_summary(weather: WeatherApiService, lat: float, lon: float, place: Optional[str]) -> Dict[str, Any]:
    current = weather.get_current_weather(lat, lon)
    forecast = weather.get_weather_forecast(lat, lon, 3)["forecast"]
    now = current["current"]
    return {
        "location": {
            **current["location"],
            "name": f"{place or coordinates_label(lat, lon)} ({coordinates_label(lat, lon)})",
            "lat": lat,
            "lon": lon,
        },
        "current": {
            "temperature": round(now["temperature"]) if now.get("temperature") is not None else None,
            "description": format_weather_description(now.get("description")),
            "humidity": now.get("humidity"),
            "windSpeed": now.get("windSpeed"),
            "icon": now.get("icon"),
            "uvIndex": now.get("uvIndex"),
        },
        "forecast": [
            {
                "date": day["date"],
                "high": round(day["temperature"]["max"]) if day["temperature"]["max"] is not None else None,
                "low": round(day["temperature"]["min"]) if day["temperature"]["min"] is not None else None,
                "description": format_weather_description(day.get("description")),
                "icon": day.get("icon"),
                "precipitation": day.get("precipitationProbability"),
            }
            for day in forecast[:3]
        ],
        "alerts": weather_alerts(now, forecast),
    }


def agricultural_insights(farm: Farm) -> List[Dict[str, Any]]:
    insights = []
    crops = farm.crops or []
    if crops:
        crop = crops[0]
        insights.append({
            "type": "crop_growth",
            "title": f"{crop.get('cropName')} Growth Update",
            "message": f"Your {crop.get('cropName')} has been growing for {days_since(crop.get('plantingDate'))} days",
            "icon": "🌱",
            "priority": "medium",
        })
    insights.append({
        "type": "soil_health",
        "title": "Soil Health Check",
        "message": "Consider testing soil pH this week for optimal crop nutrition",
        "icon": "🌍",
        "priority": "low",
    })
    return insights


def tasks_summary(farm: Farm) -> Dict[str, Any]:
    urgent = []
    if farm.crops:
        urgent.append({
            "id": "irrigation_check",
            "title": "Check Irrigation System",
            "description": "Ensure proper water distribution across your farm",
            "priority": "high",
            "estimatedTime": "30 min",
            "icon": "💧",
            "points": TASK_POINTS["irrigation_check"],
        })
    recommended = [
        {
            "id": "soil_testing",
            "title": "Schedule Soil Testing",
            "description": "Test soil nutrients for next planting season",
            "priority": "medium",
            "estimatedTime": "1 hour",
            "icon": "🧪",
            "points": TASK_POINTS["soil_testing"],
        },
        {
            "id": "pest_inspection",
            "title": "Inspect for Pests",
            "description": "Check crops for signs of pest damage",
            "priority": "medium",
            "estimatedTime": "45 min",
            "icon": "🔍",
            "points": TASK_POINTS["pest_inspection"],
        },
    ]
    return {"urgent": urgent, "recommended": recommended, "completed": 0, "total": len(urgent) + len(recommended)}


def progress_data(farm: Farm) -> Dict[str, Any]:
    growth = []
    for crop in farm.crops or []:
        days = days_since(crop.get("plantingDate"))
        growth.append({
            "cropName": crop.get("cropName"),
            "stage": growth_stage(days),
            "percentage": round(min(days / DAYS_TO_HARVEST * 100, 100)),
            "daysToHarvest": max(DAYS_TO_HARVEST - days, 0),
            "health": "good",
            "icon": crop_icon(crop.get("cropName")),
        })
    return {
        "cropGrowth": growth,
        "farmHealth": 85,
        "sustainabilityScore": 78,
        "weeklyGoals": {"completed": 3, "total": 5, "percentage": 60},
    }


def primary_farm(db: AgriloDatabase, user: User) -> Farm:
    farm = db.latest_farm_for_owner(user.id)
    if farm is None:
        raise ApiError("No farm found. Please complete farm setup first.", 404)
    return farm


# ── Routes ───────────────────────────────────────────────────

@router.get("/overview")
def overview(
    user: User = Depends(get_current_user),
    db: AgriloDatabase = Depends(get_database),
    weather: WeatherApiService = Depends(get_weather_service),
):
    farm = db.latest_farm_for_owner(user.id)
    if farm is None:
        return success_body({
            "hasActiveFarm": False,
            "onboardingRequired": True,
            "message": "Complete farm setup to unlock dashboard features",
        }, "Dashboard data retrieved")

    lat, lon = dashboard_location(farm, user)
    logger.info("Dashboard overview: farm=%s lat=%s lon=%s", farm.id, lat, lon)

    try:
        weather_data = weather_summary(weather, lat, lon, farm.address)
    except Exception as e:
        logger.error("Weather data fetch failed: %s", e)
        weather_data = None
    try:
        insights = agricultural_insights(farm)
    except Exception as e:
        logger.error("Agricultural insights fetch failed: %s", e)
        insights = []
    try:
        tasks = tasks_summary(farm)
    except Exception as e:
        logger.error("Tasks summary fetch failed: %s", e)
        tasks = dict(EMPTY_TASKS)
    try:
        progress = progress_data(farm)
    except Exception as e:
        logger.error("Progress data fetch failed: %s", e)
        progress = dict(DEFAULT_PROGRESS)

    fallback_location = {"name": coordinates_label(lat, lon), "country": "Coordinates"}
    return success_body({
        "hasActiveFarm": True,
        "farm": {
            "id": farm.id,
            "name": farm.name,
            "location": {"address": farm.address, "coordinates": [lon, lat], "lat": lat, "lon": lon},
            "area": farm.total_area,
        },
        "weather": weather_data or {"location": fallback_location, "current": None, "forecast": []},
        "insights": insights,
        "tasks": tasks,
        "progress": progress,
        "timestamp": utc_now_iso(),
    }, "Dashboard data retrieved successfully")


@router.get("/weather")
def weather_widget(
    user: User = Depends(get_current_user),
    db: AgriloDatabase = Depends(get_database),
    weather: WeatherApiService = Depends(get_weather_service),
):
    farm = primary_farm(db, user)
    lat, lon = dashboard_location(farm, user)
    try:
        current = weather.get_current_weather(lat, lon)
        forecast = weather.get_weather_forecast(lat, lon, 5)["forecast"]
    except ApiError as e:
        logger.error("Failed to fetch weather data: %s", e.message)
        raise ApiError("Failed to load weather data. Please try again.", 500)

    name = current["location"].get("name")
    if not name or name == "Unknown":
        name = coordinates_label(lat, lon)
    current["location"] = {**current["location"], "name": f"{name} ({coordinates_label(lat, lon)})", "lat": lat, "lon": lon}
    return success_body({
        "current": current,
        "forecast": forecast[:5],
        "insights": current.get("agriculturalInsights"),
        "alerts": weather_alerts(current["current"], forecast),
        "animations": weather_animation(current["current"]),
    }, "Weather data retrieved successfully")


@router.get("/tasks")
def tasks(user: User = Depends(get_current_user), db: AgriloDatabase = Depends(get_database)):
    farm = primary_farm(db, user)
    summary = tasks_summary(farm)
    return success_body({
        "urgentTasks": summary["urgent"],
        "recommendedTasks": summary["recommended"],
        "completedToday": summary["completed"],
        "totalTasks": summary["total"],
    }, "Tasks retrieved successfully")


@router.post("/task/{task_id}/complete")
def complete_task(task_id: str, user: User = Depends(get_current_user)):
    logger.info("Task completed: task=%s user=%s", task_id, user.id)
    return success_body({
        "taskId": task_id,
        "completedAt": datetime.now(timezone.utc).isoformat(),
        "userId": user.id,
        "points": TASK_POINTS.get(task_id, 25),
    }, "Task completed successfully! Great job! 🎉")
