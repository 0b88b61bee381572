"""
IrrigationService — conseil d'irrigation à partir d'Open-Meteo.

Étapes :
  1. météo courante + prévision journalière (obligatoire)
  2. humidité du sol horaire (optionnelle, défauts par type de sol sinon)
  3. ET0 simplifiée × Kc (coefficient cultural FAO-56 par stade)
  4. bilan hydrique sur 60 cm de profondeur racinaire
  5. classification urgent / needed / skip / optimal / monitor
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from agrilo.core.errors import ApiError, utc_now_iso
from agrilo.services.external_apis.openmeteo import OpenMeteoClient, get_open_meteo_client, weather_summary

logger = logging.getLogger("Agrilo.Irrigation")

# Kc par stade : initial, développement, mi-saison, fin de cycle
CROP_COEFFICIENTS = {
    "tomato": {"initial": 0.6, "development": 0.8, "mid": 1.15, "late": 0.8},
    "corn": {"initial": 0.3, "development": 0.7, "mid": 1.2, "late": 0.6},
    "rice": {"initial": 1.05, "development": 1.10, "mid": 1.20, "late": 0.90},
    "wheat": {"initial": 0.4, "development": 0.7, "mid": 1.15, "late": 0.4},
    "potato": {"initial": 0.5, "development": 0.75, "mid": 1.15, "late": 0.75},
    "cassava": {"initial": 0.3, "development": 0.6, "mid": 0.8, "late": 0.5},
    "default": {"initial": 0.5, "development": 0.75, "mid": 1.0, "late": 0.7},
}

# Réserve utile en mm par mètre de sol
SOIL_WATER_CAPACITY = {
    "sandy": 120,
    "loam": 200,
    "clay": 250,
    "sandy_loam": 160,
    "clay_loam": 220,
    "silt_loam": 240,
    "unknown": 180,
}

CROP_ALIASES = {
    "tomatoes": "tomato", "tomato": "tomato",
    "corn": "corn", "maize": "corn",
    "rice": "rice", "wheat": "wheat",
    "potatoes": "potato", "potato": "potato",
    "cassava": "cassava",
    "mixed_crops": "default", "mixed crops": "default",
    "unknown": "default",
}

GROWTH_STAGES = ("initial", "development", "mid", "late")
ROOT_DEPTH_M = 0.6
SOLAR_RADIATION_PROXY = 20

NEXT_ASSESSMENT_HOURS = {"urgent": 6, "needed": 24, "skip": 72}
WATER_COST_PER_LITER = 0.2
ENERGY_COST_PER_LITER = 0.02
CO2_PER_LITER = 0.0003


def normalize_crop_type(crop_type: Optional[str]) -> str:
    if not crop_type:
        return "default"
    return CROP_ALIASES.get(crop_type.lower(), "default")


def crop_coefficient(crop_type: Optional[str], growth_stage: str = "mid") -> float:
    table = CROP_COEFFICIENTS.get(normalize_crop_type(crop_type), CROP_COEFFICIENTS["default"])
    return table.get(growth_stage, table["mid"])


def evapotranspiration(current: Dict[str, Any], crop_type: Optional[str], growth_stage: str = "mid") -> Dict[str, float]:
    """ET0 simplifiée (mm/jour) pondérée par température, humidité, vent, rayonnement."""
    temperature = current.get("temperature") or 0
    humidity = current.get("humidity") if current.get("humidity") is not None else 50
    wind = current.get("windSpeed") or 0
    radiation = current.get("solarRadiation")

    temp_factor = max(0.0, (temperature - 5) / 30)
    humidity_factor = max(0.3, (100 - humidity) / 100)
    wind_factor = min(2.0, 1 + wind / 10)
    radiation_factor = radiation / 25 if radiation else 1.0

    et0 = temp_factor * humidity_factor * wind_factor * radiation_factor * 5
    kc = crop_coefficient(crop_type, growth_stage)
    return {
        "et0": round(et0, 2),
        "etCrop": round(et0 * kc, 2),
        "cropCoefficient": kc,
    }


def process_weather(data: Dict[str, Any]) -> Dict[str, Any]:
    current = data.get("current") or {}
    daily = data.get("daily") or {}
    times = daily.get("time") or []

    def column(name):
        values = daily.get(name) or []
        return lambda i: values[i] if i < len(values) else None

    t_max, t_min = column("temperature_2m_max"), column("temperature_2m_min")
    precip, prob, code = column("precipitation_sum"), column("precipitation_probability_max"), column("weather_code")

    forecast = [
        {
            "time": day,
            "temperature": {"max": t_max(i), "min": t_min(i)},
            "precipitation": precip(i) or 0,
            "precipitationProbability": prob(i) or 0,
            "summary": weather_summary(code(i)),
        }
        for i, day in enumerate(times)
    ]
    return {
        "current": {
            "temperature": current.get("temperature_2m"),
            "humidity": current.get("relative_humidity_2m"),
            "windSpeed": current.get("wind_speed_10m"),
            "solarRadiation": SOLAR_RADIATION_PROXY,
            "summary": weather_summary(current.get("weather_code")),
        },
        "forecast": forecast,
        "source": "Open-Meteo",
    }


def process_soil(data: Dict[str, Any]) -> Dict[str, Any]:
    """Humidité volumique (m³/m³) des 3 premières couches, pondérée 1/2/3 → %."""
    hourly = data.get("hourly") or {}

    def first(name, default):
        values = hourly.get(name)
        return values[0] if values and values[0] is not None else default

    m0 = first("soil_moisture_0_to_1cm", 0.2)
    m3 = first("soil_moisture_3_to_9cm", 0.25)
    m9 = first("soil_moisture_9_to_27cm", 0.3)
    mean = (m0 * 1 + m3 * 2 + m9 * 3) / 6
    return {
        "type": "loam",
        "moistureMean": round(mean * 100),
        "tempSurface": first("soil_temperature_0cm", None),
        "tempRoot": first("soil_temperature_18cm", None),
        "ph": 6.5,
        "organicMatter": 3.5,
        "drainage": "well",
        "waterHoldingCapacity": 160,
        "source": "Open-Meteo",
    }


def water_balance(et: Dict[str, float], weather: Dict[str, Any], soil: Dict[str, Any],
                  soil_type: str, last_irrigation: Optional[datetime], now: datetime) -> Dict[str, Any]:
    total_capacity = SOIL_WATER_CAPACITY.get(soil_type, SOIL_WATER_CAPACITY["unknown"]) * ROOT_DEPTH_M

    if soil.get("source") == "Open-Meteo" and soil.get("moistureMean") is not None:
        percentage = float(soil["moistureMean"])
        current = percentage / 100 * total_capacity
    else:
        if last_irrigation is not None:
            if last_irrigation.tzinfo is None:
                last_irrigation = last_irrigation.replace(tzinfo=timezone.utc)
            days_since = max(0, (now - last_irrigation).days)
        else:
            days_since = 7
        loss = et["etCrop"] * days_since
        gain = sum(day.get("precipitation") or 0 for day in weather["forecast"][:min(days_since, 7)])
        start_ratio = soil["currentMoisture"] / 100 if soil.get("currentMoisture") else 0.8
        current = max(0.0, total_capacity * start_ratio - loss + gain)
        percentage = current / total_capacity * 100

    return {
        "currentMoisture": round(current),
        "totalCapacity": round(total_capacity),
        "moisturePercentage": round(percentage),
        "isCritical": current < total_capacity * 0.3,
        "isOptimal": current >= total_capacity * 0.7,
    }


def optimal_irrigation_times(current: Dict[str, Any]) -> Dict[str, Any]:
    temperature = current.get("temperature") or 0
    early_morning = {"time": "05:30 - 07:00", "reason": "Low evaporation, good water absorption", "efficiency": 95}
    evening = {
        "time": "18:30 - 20:00" if temperature > 30 else "17:00 - 19:00",
        "reason": "Cooler temperatures, reduced water loss",
        "efficiency": 85,
    }
    return {
        "recommended": [early_morning, evening],
        "avoid": [{"time": "10:00 - 16:00", "reason": "High evaporation, water stress on plants", "efficiency": 45}],
        "best": early_morning if temperature > 25 else evening,
    }


def conservation_tips(status: str, current: Dict[str, Any]) -> List[Dict[str, str]]:
    tips = [
        {"tip": "Use drip irrigation for 30-50% water savings", "impact": "high", "savings": "30-50%"},
        {"tip": "Apply mulch around plants to reduce evaporation", "impact": "medium", "savings": "15-25%"},
    ]
    if (current.get("windSpeed") or 0) > 15:
        tips.append({"tip": "Avoid irrigation during windy conditions to reduce drift",
                     "impact": "medium", "savings": "10-20%"})
    if status == "urgent":
        tips.append({"tip": "Consider split irrigation to improve absorption", "impact": "high", "savings": "20-30%"})
    return tips


def irrigation_cost(amount: float) -> Dict[str, Any]:
    water = amount * WATER_COST_PER_LITER
    energy = amount * ENERGY_COST_PER_LITER
    return {
        "water": round(water, 2),
        "energy": round(energy, 2),
        "total": round(water + energy, 2),
        "currency": "INR",
    }


def environmental_impact(amount: float, status: str) -> Dict[str, Any]:
    if status in ("optimal", "skip"):
        sustainability = "excellent"
    elif status == "monitor":
        sustainability = "good"
    elif status == "needed":
        sustainability = "moderate"
    else:
        sustainability = "concerning"
    return {
        "co2Footprint": round(amount * CO2_PER_LITER, 3),
        "sustainability": sustainability,
        "waterEfficiency": "low" if status == "urgent" else "high",
        "recommendation": "Consider precision irrigation techniques for better efficiency",
    }


def classify(balance: Dict[str, Any], upcoming_rain: float, field_size: float) -> Dict[str, Any]:
    """Statut, priorité, action et volume (litres) selon le bilan et la pluie à 3 jours."""
    current = balance["currentMoisture"]
    capacity = balance["totalCapacity"]

    if balance["isCritical"] and upcoming_rain < 10:
        return {
            "status": "urgent", "priority": "high", "action": "irrigate_now",
            "amount": max(0, round((capacity * 0.8 - current) * field_size * 10)),
            "timing": "within_2_hours",
            "reason": "Critical soil moisture level detected. Immediate irrigation required to prevent crop stress.",
        }
    if balance["moisturePercentage"] < 50 and upcoming_rain < 5:
        return {
            "status": "needed", "priority": "medium", "action": "irrigate_soon",
            "amount": max(0, round((capacity * 0.7 - current) * field_size * 10)),
            "timing": "within_24_hours",
            "reason": "Soil moisture below optimal level. Irrigation recommended before crop stress occurs.",
        }
    if upcoming_rain >= 10:
        return {
            "status": "skip", "priority": "low", "action": "wait_for_rain", "amount": 0,
            "timing": "after_rainfall",
            "reason": (f"Significant rainfall expected ({round(upcoming_rain)}mm). "
                       "Skip irrigation and reassess after rain."),
        }
    if balance["isOptimal"]:
        return {
            "status": "optimal", "priority": "low", "action": "monitor", "amount": 0,
            "timing": "next_assessment",
            "reason": "Soil moisture at optimal level. Continue monitoring and reassess in 2-3 days.",
        }
    return {
        "status": "monitor", "priority": "low", "action": "assess_tomorrow", "amount": 0,
        "timing": "tomorrow",
        "reason": "Soil moisture adequate for now. Reassess tomorrow based on weather conditions.",
    }


class IrrigationService:
    """Conseiller d'irrigation. `clock` retourne un datetime UTC (injectable en test)."""

    def __init__(self, client: Optional[OpenMeteoClient] = None, clock=None):
        self._client = client
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def client(self) -> OpenMeteoClient:
        return self._client or get_open_meteo_client()

    def get_weather_forecast(self, lat: float, lon: float) -> Dict[str, Any]:
        try:
            data = self.client.get_weather_data(lat, lon)
        except ApiError as e:
            logger.error("Failed to get weather forecast: %s", e.message)
            raise ApiError("Weather service temporarily unavailable", 503)
        if not data or not data.get("current"):
            raise ApiError("Weather service temporarily unavailable", 503)
        return process_weather(data)

    def get_soil_data(self, lat: float, lon: float) -> Dict[str, Any]:
        data = self.client.get_soil_data(lat, lon)
        if not data or not data.get("hourly"):
            raise ApiError("Soil data unavailable from Open-Meteo", 404)
        return process_soil(data)

    def get_air_quality(self, lat: float, lon: float) -> Optional[Dict[str, Any]]:
        try:
            data = self.client.get_air_quality(lat, lon)
        except ApiError as e:
            logger.warning("Failed to get air quality data: %s", e.message)
            return None
        current = (data or {}).get("current")
        if not current:
            return None
        hourly = data.get("hourly") or {}
        return {
            "aqi": current.get("european_aqi"),
            "pm10": current.get("pm10"),
            "pm2_5": current.get("pm2_5"),
            "uvIndex": current.get("uv_index"),
            "pollen": {
                name: (hourly.get(f"{name}_pollen") or [0])[0]
                for name in ("birch", "grass", "olive", "ragweed")
            },
            "source": "Open-Meteo",
        }

    def calculate_recommendation(
        self,
        lat: float,
        lon: float,
        crop_type: str = "unknown",
        growth_stage: str = "mid",
        soil_type: str = "unknown",
        last_irrigation: Optional[datetime] = None,
        field_size: float = 1.0,
    ) -> Dict[str, Any]:
        now = self._clock()
        availability = {"weather": False, "soil": False, "airQuality": False, "hasRealData": False}
        metadata: Dict[str, Any] = {
            "calculatedAt": utc_now_iso(),
            "location": {"latitude": lat, "longitude": lon},
            "crop": {"type": crop_type, "growthStage": growth_stage},
            "fieldSize": field_size,
            "dataAvailability": availability,
        }

        weather = None
        try:
            weather = self.get_weather_forecast(lat, lon)
            availability["weather"] = True
        except ApiError as e:
            logger.error("Weather API failed: %s", e.message)
            metadata["weatherError"] = e.message

        soil = None
        try:
            soil = self.get_soil_data(lat, lon)
            availability["soil"] = True
        except ApiError as e:
            logger.error("Soil API failed: %s", e.message)
            metadata["soilError"] = e.message

        air_quality = self.get_air_quality(lat, lon)
        availability["airQuality"] = air_quality is not None
        availability["hasRealData"] = availability["weather"] and availability["soil"]

        if weather is None and soil is None:
            raise ApiError(
                "Insufficient real data available. Both weather and soil data are required "
                "for irrigation recommendations.", 503,
            )
        if weather is None:
            raise ApiError(
                "Weather data unavailable. Real-time weather data is required for accurate "
                "irrigation calculations.", 503,
            )
        if soil is None:
            soil = {
                "type": soil_type or "unknown",
                "waterHoldingCapacity": SOIL_WATER_CAPACITY.get(soil_type, SOIL_WATER_CAPACITY["unknown"]),
                "drainage": "moderate",
                "currentMoisture": 50,
                "source": "default",
            }
            metadata["warnings"] = [
                "Soil data unavailable - using default soil properties. Recommendations may be less accurate."
            ]

        et = evapotranspiration(weather["current"], crop_type, growth_stage)
        balance = water_balance(et, weather, soil, soil_type, last_irrigation, now)
        upcoming_rain = sum(day.get("precipitation") or 0 for day in weather["forecast"][:3])

        decision = classify(balance, upcoming_rain, field_size)
        status, amount = decision["status"], decision["amount"]
        next_assessment = now + timedelta(hours=NEXT_ASSESSMENT_HOURS.get(status, 48))

        recommendation = {
            **decision,
            "optimalTimes": optimal_irrigation_times(weather["current"]),
            "conservationTips": conservation_tips(status, weather["current"]),
            "nextAssessment": next_assessment.isoformat(),
            "costEstimate": irrigation_cost(amount),
            "environmentalImpact": environmental_impact(amount, status),
            "dataSource": {
                "weather": "real",
                "soil": "real" if soil.get("source") != "default" else "limited",
                "reliability": "high" if availability["hasRealData"] else "limited",
            },
        }
        logger.info(
            "Irrigation recommendation: status=%s amount=%sL (lat=%s lon=%s crop=%s)",
            status, amount, lat, lon, crop_type,
        )
        return {
            "recommendation": recommendation,
            "waterBalance": balance,
            "evapotranspiration": et,
            "weather": weather,
            "soil": soil,
            "airQuality": air_quality,
            "metadata": metadata,
        }


_irrigation_service: Optional[IrrigationService] = None


def get_irrigation_service() -> IrrigationService:
    global _irrigation_service
    if _irrigation_service is None:
        _irrigation_service = IrrigationService()
    return _irrigation_service
