"""
WeatherApiService — météo agricole au-dessus de la passerelle OpenEPI.

Transforme la prévision MET-Norway (properties.timeseries) en DTO :
  current  : conditions instantanées
  forecast : agrégats journaliers {date, temperature{min,max,avg}, …}
  alerts   : seuils agricoles (chaleur, vent)
"""

import logging
import math
from collections import OrderedDict
from datetime import timedelta
from typing import Any, Dict, List, Optional

from agrilo.core.errors import ApiError, utc_now_iso
from agrilo.services.external_apis.openepi import OpenEpiService, get_openepi_service, parse_time

logger = logging.getLogger("Agrilo.Weather")

WEATHER_CACHE_TTL = 1800
FORECAST_CACHE_TTL = 3600
HISTORICAL_CACHE_TTL = 86400

HEAT_ALERT_C = 35
WIND_ALERT_MS = 20

SYMBOL_DESCRIPTIONS = {
    "clearsky_day": "Clear Sky",
    "clearsky_night": "Clear Sky",
    "fair_day": "Fair",
    "fair_night": "Fair",
    "partlycloudy_day": "Partly Cloudy",
    "partlycloudy_night": "Partly Cloudy",
    "cloudy": "Cloudy",
    "lightrainshowers_day": "Light Rain",
    "lightrainshowers_night": "Light Rain",
    "rainshowers_day": "Rain Showers",
    "rainshowers_night": "Rain Showers",
    "heavyrainshowers_day": "Heavy Rain",
    "heavyrainshowers_night": "Heavy Rain",
    "rain": "Rain",
    "heavyrain": "Heavy Rain",
    "lightrain": "Light Rain",
    "snow": "Snow",
    "fog": "Fog",
    "mist": "Mist",
    "unknown": "Unknown",
}


def format_weather_description(symbol: Optional[str]) -> str:
    """clearsky_day → Clear Sky ; code inconnu → mots capitalisés."""
    if not symbol:
        return "Unknown"
    if symbol in SYMBOL_DESCRIPTIONS:
        return SYMBOL_DESCRIPTIONS[symbol]
    return symbol.replace("_", " ").title()


def apparent_temperature(temp: Optional[float], humidity: Optional[float], wind: Optional[float]) -> Optional[float]:
    """Température ressentie (formule de Steadman, sans rayonnement)."""
    if temp is None:
        return None
    humidity = humidity if humidity is not None else 50.0
    wind = wind if wind is not None else 0.0
    vapour = humidity / 100.0 * 6.105 * math.exp(17.27 * temp / (237.7 + temp))
    return round(temp + 0.33 * vapour - 0.70 * wind - 4.0, 1)


def _next_block(entry: Dict[str, Any]) -> Dict[str, Any]:
    data = entry.get("data") or {}
    return data.get("next_1_hours") or data.get("next_6_hours") or data.get("next_12_hours") or {}


def _details(entry: Dict[str, Any]) -> Dict[str, Any]:
    return ((entry.get("data") or {}).get("instant") or {}).get("details") or {}


def transform_current(payload: Dict[str, Any], lat: float, lon: float,
                      name: Optional[str] = None) -> Dict[str, Any]:
    timeseries = payload["properties"]["timeseries"]
    first = timeseries[0]
    details = _details(first)
    block = _next_block(first)
    symbol = (block.get("summary") or {}).get("symbol_code")
    temp = details.get("air_temperature")
    humidity = details.get("relative_humidity")
    wind = details.get("wind_speed")

    return {
        "location": {"lat": lat, "lon": lon, "name": name or "Unknown", "country": "Unknown"},
        "current": {
            "temperature": temp,
            "feelsLike": apparent_temperature(temp, humidity, wind),
            "humidity": humidity,
            "pressure": details.get("air_pressure_at_sea_level"),
            "windSpeed": wind,
            "windDirection": details.get("wind_from_direction"),
            "cloudiness": details.get("cloud_area_fraction"),
            "description": symbol or "unknown",
            "icon": symbol or "unknown",
            "precipitation": (block.get("details") or {}).get("precipitation_amount", 0.0),
            "uvIndex": details.get("ultraviolet_index_clear_sky"),
        },
        "observedAt": first.get("time"),
    }


def transform_forecast(payload: Dict[str, Any], days: int) -> List[Dict[str, Any]]:
    """Regroupe la timeseries par jour calendaire (UTC)."""
    grouped: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
    for entry in payload["properties"]["timeseries"]:
        day = parse_time(entry["time"]).date().isoformat()
        grouped.setdefault(day, []).append(entry)

    forecast = []
    for day, entries in list(grouped.items())[:days]:
        temps = [_details(e).get("air_temperature") for e in entries]
        temps = [t for t in temps if t is not None]
        humidities = [h for h in (_details(e).get("relative_humidity") for e in entries) if h is not None]
        winds = [w for w in (_details(e).get("wind_speed") for e in entries) if w is not None]

        precipitation = 0.0
        probabilities = []
        covered_until = None
        for e in entries:
            data = e.get("data") or {}
            start = parse_time(e["time"])
            if covered_until is not None and start < covered_until:
                continue
            for key, hours in (("next_1_hours", 1), ("next_6_hours", 6)):
                block = data.get(key)
                if block:
                    block_details = block.get("details") or {}
                    precipitation += block_details.get("precipitation_amount", 0.0) or 0.0
                    if block_details.get("probability_of_precipitation") is not None:
                        probabilities.append(block_details["probability_of_precipitation"])
                    covered_until = start + timedelta(hours=hours)
                    break

        midday = min(entries, key=lambda e: abs(parse_time(e["time"]).hour - 12))
        symbol = (_next_block(midday).get("summary") or {}).get("symbol_code") or "unknown"

        if probabilities:
            probability = max(probabilities)
        else:
            probability = min(100, round(precipitation * 10))

        forecast.append({
            "date": day,
            "temperature": {
                "min": min(temps) if temps else None,
                "max": max(temps) if temps else None,
                "avg": round((max(temps) + min(temps)) / 2, 1) if temps else None,
            },
            "humidity": round(sum(humidities) / len(humidities), 1) if humidities else None,
            "windSpeed": max(winds) if winds else None,
            "precipitation": round(precipitation, 1),
            "precipitationProbability": probability,
            "description": symbol,
            "icon": symbol,
        })
    return forecast


class WeatherApiService:
    """Façade météo utilisée par les routes, le dashboard et les jobs."""

    def __init__(self, openepi: Optional[OpenEpiService] = None):
        self._openepi = openepi

    @property
    def openepi(self) -> OpenEpiService:
        return self._openepi or get_openepi_service()

    @staticmethod
    def _require_coordinates(lat, lon) -> None:
        if lat is None or lon is None:
            raise ApiError("Latitude and longitude are required", 400)

    def get_current_weather(self, lat: float, lon: float) -> Dict[str, Any]:
        self._require_coordinates(lat, lon)
        logger.info("Getting current weather (lat=%s lon=%s)", lat, lon)
        payload = self.openepi.get_weather_data(lat, lon, cache_ttl=WEATHER_CACHE_TTL)
        result = transform_current(payload, lat, lon)
        result.update({
            "forecast": transform_forecast(payload, 3),
            "alerts": self.build_alerts(result["current"]),
            "agriculturalInsights": self.agricultural_insights(result["current"]),
            "lastUpdated": utc_now_iso(),
            "source": "OpenEPI",
        })
        return result

    def get_weather_forecast(self, lat: float, lon: float, days: int = 7) -> Dict[str, Any]:
        self._require_coordinates(lat, lon)
        payload = self.openepi.get_weather_forecast(lat, lon, days, cache_ttl=FORECAST_CACHE_TTL)
        return {
            "location": {"lat": lat, "lon": lon, "name": "Unknown", "country": "Unknown"},
            "forecast": transform_forecast(payload, days),
            "timestamp": utc_now_iso(),
            "source": "OpenEPI",
        }

    def get_historical_weather(self, lat: float, lon: float, start_date: str, end_date: str) -> Dict[str, Any]:
        if lat is None or lon is None or not start_date or not end_date:
            raise ApiError("Latitude, longitude, start date, and end date are required", 400)
        data = self.openepi.get_historical_weather(lat, lon, start_date, end_date, cache_ttl=HISTORICAL_CACHE_TTL)
        return {
            "location": {"lat": lat, "lon": lon},
            "period": {"startDate": start_date, "endDate": end_date},
            "data": data,
            "timestamp": utc_now_iso(),
            "source": "OpenEPI",
        }

    def get_weather_alerts(self, lat: float, lon: float) -> Dict[str, Any]:
        try:
            current = self.get_current_weather(lat, lon)
        except ApiError as e:
            logger.error("Failed to get weather alerts: %s", e.message)
            raise ApiError("Weather alerts service temporarily unavailable", 503)
        return {
            "location": current["location"],
            "alerts": current["alerts"],
            "timestamp": utc_now_iso(),
        }

    @staticmethod
    def build_alerts(current: Dict[str, Any]) -> List[Dict[str, Any]]:
        alerts = []
        if (current.get("temperature") or 0) > HEAT_ALERT_C:
            alerts.append({
                "type": "heat_warning",
                "severity": "moderate",
                "title": "High Temperature Alert",
                "description": "Temperature is above 35°C. Consider irrigation and crop protection.",
                "recommendations": ["Increase irrigation frequency", "Provide shade for sensitive crops"],
            })
        if (current.get("windSpeed") or 0) > WIND_ALERT_MS:
            alerts.append({
                "type": "wind_warning",
                "severity": "moderate",
                "title": "Strong Wind Alert",
                "description": "Strong winds may damage crops and affect spraying operations.",
                "recommendations": ["Secure loose items", "Postpone pesticide application"],
            })
        return alerts

    @staticmethod
    def agricultural_insights(current: Dict[str, Any]) -> Dict[str, Any]:
        rainy = (current.get("precipitation") or 0) > 1
        return {
            "planting": {
                "suitability": "fair" if rainy else "good",
                "recommendations": ["Check soil moisture before planting"],
            },
            "harvesting": {
                "conditions": "unfavorable" if rainy else "favorable",
                "recommendations": (
                    ["Delay harvest until dry conditions return"] if rainy
                    else ["Good drying conditions expected"]
                ),
            },
        }


_weather_service: Optional[WeatherApiService] = None


def get_weather_service() -> WeatherApiService:
    global _weather_service
    if _weather_service is None:
        _weather_service = WeatherApiService()
    return _weather_service
