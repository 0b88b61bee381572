"""
Client Open-Meteo : prévision, humidité du sol et qualité de l'air.

Pas de clé API. Les prévisions et l'humidité du sol sont gardées 30 min en
cache mémoire ; la qualité de l'air ne l'est pas.
"""

import logging
import threading
from typing import Any, Dict, Optional

import requests

from agrilo.core.errors import ApiError
from agrilo.core.settings import settings
from agrilo.services.utils.cache import TTLCache, make_cache_key

logger = logging.getLogger("Agrilo.OpenMeteo")

OPEN_METEO_CACHE_TTL = 1800

CURRENT_METRICS = [
    "temperature_2m",
    "relative_humidity_2m",
    "apparent_temperature",
    "precipitation",
    "rain",
    "weather_code",
    "cloud_cover",
    "wind_speed_10m",
    "wind_direction_10m",
]
HOURLY_METRICS = [
    "temperature_2m",
    "relative_humidity_2m",
    "precipitation_probability",
    "weather_code",
    "wind_speed_10m",
]
DAILY_METRICS = [
    "weather_code",
    "temperature_2m_max",
    "temperature_2m_min",
    "precipitation_sum",
    "precipitation_probability_max",
]
SOIL_METRICS = [
    "soil_moisture_0_to_1cm",
    "soil_moisture_3_to_9cm",
    "soil_moisture_9_to_27cm",
    "soil_temperature_0cm",
    "soil_temperature_18cm",
]
AIR_QUALITY_CURRENT = ["european_aqi", "pm10", "pm2_5", "uv_index"]
AIR_QUALITY_HOURLY = ["birch_pollen", "grass_pollen", "olive_pollen", "ragweed_pollen"]


def weather_summary(code: Optional[int]) -> str:
    """Résumé grossier d'un code WMO, utilisé par le conseil d'irrigation."""
    if code is None:
        return "unknown"
    if code == 0:
        return "clear"
    if code < 3:
        return "partly-cloudy"
    if code < 50:
        return "cloudy"
    if code < 80:
        return "rain"
    if code < 90:
        return "heavy-rain"
    return "storm"


class OpenMeteoClient:
    """Lecture seule sur les API Open-Meteo."""

    def __init__(self, session: Optional[requests.Session] = None, cache: Optional[TTLCache] = None):
        self.base_url = settings.OPEN_METEO_URL.rstrip("/")
        self.air_quality_url = settings.OPEN_METEO_AIR_QUALITY_URL
        self.timeout = settings.OPEN_METEO_TIMEOUT_SECONDS
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": settings.NOMINATIM_USER_AGENT})
        self.cache = cache or TTLCache(default_ttl=OPEN_METEO_CACHE_TTL, name="open-meteo")

    def _get(self, url: str, params: Dict[str, Any], use_cache: bool = False) -> Dict[str, Any]:
        key = make_cache_key(url, params)
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.info("Using cached Open-Meteo data (%s)", url)
                return cached

        try:
            response = self.session.request("GET", url, params=params, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.error("Open-Meteo network error: %s", e)
            raise ApiError("Weather service unreachable", 503)
        except requests.RequestException as e:
            logger.error("Open-Meteo service error: %s", e)
            raise ApiError("Internal weather service error", 500)

        if response.status_code >= 400:
            reason = response.reason
            try:
                reason = response.json().get("reason") or reason
            except ValueError:
                pass
            logger.error("Open-Meteo API error: status=%s reason=%s", response.status_code, reason)
            raise ApiError(f"Open-Meteo API Unavailable: {reason}", response.status_code)

        data = response.json()
        if use_cache:
            self.cache.set(key, data)
        return data

    def get_weather_data(self, lat: float, lon: float, days: int = 7) -> Dict[str, Any]:
        logger.info("Fetching weather data from Open-Meteo (lat=%s lon=%s)", lat, lon)
        return self._get(f"{self.base_url}/forecast", {
            "latitude": lat,
            "longitude": lon,
            "current": ",".join(CURRENT_METRICS),
            "hourly": ",".join(HOURLY_METRICS),
            "daily": ",".join(DAILY_METRICS),
            "timezone": "auto",
            "forecast_days": days,
        }, use_cache=True)

    def get_soil_data(self, lat: float, lon: float) -> Dict[str, Any]:
        return self._get(f"{self.base_url}/forecast", {
            "latitude": lat,
            "longitude": lon,
            "hourly": ",".join(SOIL_METRICS),
            "timezone": "auto",
            "forecast_days": 1,
        }, use_cache=True)

    def get_air_quality(self, lat: float, lon: float) -> Dict[str, Any]:
        return self._get(self.air_quality_url, {
            "latitude": lat,
            "longitude": lon,
            "current": ",".join(AIR_QUALITY_CURRENT),
            "hourly": ",".join(AIR_QUALITY_HOURLY),
            "forecast_days": 1,
        })


_client: Optional[OpenMeteoClient] = None
_client_lock = threading.Lock()


def get_open_meteo_client() -> OpenMeteoClient:
    global _client
    if _client is not None:
        return _client
    with _client_lock:
        if _client is None:
            _client = OpenMeteoClient()
    return _client
