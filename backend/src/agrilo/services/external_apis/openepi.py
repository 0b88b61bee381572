"""
OpenEpiService — passerelle unique vers l'API OpenEPI.

Responsabilités :
  1. Cache mémoire des lectures GET (clé = endpoint + paramètres triés)
  2. Budget de requêtes par minute (fenêtre fixe), rejet immédiat en 429
  3. Retry avec exponential backoff (2s, 4s …), sauf erreurs 4xx hors 429
  4. Normalisation de toutes les erreurs en ApiError(message, status_code)

Le cache et le compteur sont locaux au process : plusieurs réplicas
multiplient le budget effectif vers l'amont.

Usage:
    from agrilo.services.external_apis.openepi import get_openepi_service
    data = get_openepi_service().get_weather_data(28.70, 77.10)
"""

import copy
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from agrilo.core.errors import ApiError, utc_now_iso
from agrilo.core.settings import settings
from agrilo.services.external_apis.geocoding import (
    NominatimClient, address_parts, coordinates_label, format_location_name, nearest_known_city,
)
from agrilo.services.utils.cache import TTLCache, make_cache_key
from agrilo.services.utils.error_handling import (
    FixedWindowRateLimiter, RateLimitExceeded, retry_with_backoff,
)

logger = logging.getLogger("Agrilo.OpenEPI")

SOIL_PROPERTIES = ["bdod", "cec", "cfvo", "clay", "nitrogen", "ocd", "ocs", "phh2o", "sand", "silt", "soc"]
COMPOSITION_PROPERTIES = ["clay", "sand", "silt", "bdod"]
HEALTH_PROPERTIES = ["phh2o", "soc", "nitrogen", "cec"]

# Valeurs par défaut exprimées directement en unités cibles (d_factor = 1)
FALLBACK_COMPOSITION = {"clay": 25.0, "sand": 45.0, "silt": 30.0}
FALLBACK_HEALTH = {"phh2o": 6.5, "soc": 2.5, "nitrogen": 0.15, "cec": 15.0}


class UpstreamError(Exception):
    """Échec d'un appel sortant, avant traduction en ApiError."""

    def __init__(self, message: str, status: Optional[int] = None, reached: bool = True):
        super().__init__(message)
        self.message = message
        self.status = status
        # reached=False : aucune réponse (réseau, timeout)
        self.reached = reached


def depth_band(depth: float) -> str:
    """Profondeur en cm → tranche SoilGrids."""
    if depth <= 5:
        return "0-5cm"
    if depth <= 15:
        return "5-15cm"
    if depth <= 30:
        return "15-30cm"
    if depth <= 60:
        return "30-60cm"
    return "60-100cm"


def fallback_soil_payload(values: Dict[str, float], depth_label: str) -> Dict[str, Any]:
    """Réponse au format layers, marquée `fallback`, pour une tranche donnée."""
    return {
        "type": "Feature",
        "fallback": True,
        "properties": {
            "layers": [
                {
                    "code": code,
                    "unit_measure": {"d_factor": 1},
                    "depths": [{"label": depth_label, "values": {"mean": value}}],
                }
                for code, value in values.items()
            ]
        },
    }


def parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def map_upstream_error(error: Exception) -> ApiError:
    """Traduit un échec sortant en ApiError avec un code HTTP cohérent."""
    if isinstance(error, ApiError):
        return error
    if isinstance(error, RateLimitExceeded):
        return ApiError(str(error), 429)
    if isinstance(error, UpstreamError):
        if error.status is not None:
            status = error.status
            if status == 401:
                return ApiError("OpenEPI API authentication failed. Please check your API key.", 401)
            if status == 403:
                return ApiError("OpenEPI API access forbidden. Check your subscription and permissions.", 403)
            if status == 429:
                return ApiError("OpenEPI API rate limit exceeded. Please try again later.", 429)
            if status == 500:
                return ApiError("OpenEPI API server error. Please try again later.", 500)
            if status in (502, 503, 504):
                return ApiError("OpenEPI API service temporarily unavailable. Please try again later.", 503)
            return ApiError(f"OpenEPI API error: {error.message}", status)
        if not error.reached:
            return ApiError("OpenEPI API is unreachable. Please check your internet connection.", 503)
        return ApiError(f"OpenEPI API request failed: {error.message}", 500)
    return ApiError(f"OpenEPI API request failed: {error}", 500)


def is_retryable(error: Exception) -> bool:
    """4xx (hors 429) et rejet local du rate limiter : pas de retry."""
    if isinstance(error, (RateLimitExceeded, ApiError)):
        return False
    if isinstance(error, UpstreamError) and error.status is not None:
        return not (400 <= error.status < 500 and error.status != 429)
    return True


class OpenEpiService:
    """Client OpenEPI avec cache, rate limiting et retry."""

    RATE_LIMIT_WINDOW = 60.0

    def __init__(
        self,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        rate_limit_per_minute: Optional[int] = None,
        cache_ttl: Optional[int] = None,
        retry_attempts: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
        nominatim: Optional[NominatimClient] = None,
    ):
        self.base_url = (base_url or settings.OPENEPI_API_URL).rstrip("/")
        self.client_id = settings.OPENEPI_CLIENT_ID
        self.client_secret = settings.OPENEPI_CLIENT_SECRET
        self.retry_attempts = retry_attempts if retry_attempts is not None else settings.OPENEPI_RETRY_ATTEMPTS
        self.retry_delay_ms = retry_delay_ms if retry_delay_ms is not None else settings.OPENEPI_RETRY_DELAY_MS
        self.rate_limit_per_minute = (
            rate_limit_per_minute if rate_limit_per_minute is not None else settings.OPENEPI_RATE_LIMIT_PER_MINUTE
        )
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.OPENEPI_CACHE_TTL_SECONDS
        self.timeout = settings.OPENEPI_REQUEST_TIMEOUT_MS / 1000.0

        self._clock = clock
        self._sleep = sleep
        self.cache = TTLCache(default_ttl=self.cache_ttl, clock=clock, name="openepi")
        self.rate_limiter = FixedWindowRateLimiter(
            limit=self.rate_limit_per_minute, window=self.RATE_LIMIT_WINDOW, clock=clock,
        )

        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "User-Agent": "Agrilo/1.0",
        })
        self.nominatim = nominatim or NominatimClient()

    # ── Lifecycle ────────────────────────────────────────────

    def schedule_cleanup(self, scheduler) -> None:
        """Enregistre le balayage périodique du cache sur un scheduler APScheduler."""
        scheduler.add_job(
            self.cache.sweep,
            "interval",
            seconds=settings.CACHE_SWEEP_INTERVAL_SECONDS,
            id="openepi-cache-cleanup",
            replace_existing=True,
        )

    # ── Core request pipeline ────────────────────────────────

    def _send(self, method: str, endpoint: str, params: Optional[Dict[str, Any]], data: Any,
              timeout: Optional[float] = None) -> requests.Response:
        """Un seul appel HTTP, consommant une unité du budget."""
        self.rate_limiter.acquire()
        url = f"{self.base_url}{endpoint}"
        logger.info("OpenEPI API request: %s %s %s", method, endpoint, params or {})
        try:
            response = self.session.request(
                method,
                url,
                params=params if method == "GET" else None,
                json=(data if data is not None else params) if method != "GET" else None,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise UpstreamError(str(e), reached=False)
        except requests.RequestException as e:
            raise UpstreamError(str(e))

        if response.status_code >= 400:
            message = response.reason or f"HTTP {response.status_code}"
            try:
                body = response.json()
                if isinstance(body, dict) and body.get("message"):
                    message = body["message"]
            except ValueError:
                pass
            logger.error("OpenEPI API error: status=%s url=%s message=%s", response.status_code, endpoint, message)
            raise UpstreamError(message, status=response.status_code)

        logger.info("OpenEPI API response: status=%s url=%s", response.status_code, endpoint)
        return response

    def make_request(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        method: str = "GET",
        data: Any = None,
        use_cache: bool = True,
        cache_ttl: Optional[int] = None,
        retry: bool = True,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Appel cacheable + rate-limité + retry. Lève toujours ApiError en cas d'échec.

        retry=False : une seule tentative (une seule unité de budget).
        timeout : délai par tentative en secondes, sinon OPENEPI_REQUEST_TIMEOUT_MS.
        """
        method = method.upper()
        params = params or {}
        cache_key = make_cache_key(endpoint, {"method": method, "params": params, "data": data})
        cacheable = method == "GET" and use_cache

        if cacheable:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        try:
            response = retry_with_backoff(
                lambda: self._send(method, endpoint, params, data, timeout),
                max_attempts=self.retry_attempts if retry else 1,
                base_delay=self.retry_delay_ms / 1000.0,
                should_retry=is_retryable,
                sleep=self._sleep,
                label=f"OpenEPI {method} {endpoint}",
            )
            payload = response.json()
        except ValueError as e:
            raise ApiError(f"OpenEPI API request failed: invalid JSON ({e})", 500)
        except Exception as e:
            raise map_upstream_error(e)

        if cacheable and response.status_code == 200:
            self.cache.set(cache_key, payload, cache_ttl if cache_ttl is not None else self.cache_ttl)
        return payload

    # ── Weather ──────────────────────────────────────────────

    def get_weather_data(self, lat: float, lon: float, cache_ttl: Optional[int] = None) -> Dict[str, Any]:
        """Prévision MET-Norway brute ; exige une timeseries non vide."""
        try:
            result = self.make_request(
                "/weather/locationforecast",
                {"lat": lat, "lon": lon, "altitude": 0},
                cache_ttl=cache_ttl,
            )
        except ApiError as e:
            logger.error("OpenEPI weather API failed: %s (lat=%s lon=%s)", e.message, lat, lon)
            raise ApiError(f"Weather data unavailable: {e.message}", e.status_code)

        timeseries = ((result or {}).get("properties") or {}).get("timeseries") or []
        if not timeseries:
            raise ApiError(
                "Weather data unavailable: No weather data available from OpenEPI for this location", 502,
            )
        return result

    def get_weather_forecast(self, lat: float, lon: float, days: int = 7,
                             cache_ttl: Optional[int] = None) -> Dict[str, Any]:
        """Même donnée que get_weather_data, tronquée à now + days."""
        forecast = copy.deepcopy(self.get_weather_data(lat, lon, cache_ttl=cache_ttl))
        end = datetime.fromtimestamp(self._clock(), tz=timezone.utc) + timedelta(days=days)
        forecast["properties"]["timeseries"] = [
            entry for entry in forecast["properties"]["timeseries"]
            if parse_time(entry["time"]) <= end
        ]
        return forecast

    def get_historical_weather(self, lat: float, lon: float, start_date: str, end_date: str,
                               cache_ttl: Optional[int] = None) -> Any:
        return self.make_request(
            "/weather/historical",
            {"lat": lat, "lon": lon, "start_date": start_date, "end_date": end_date, "units": "metric"},
            cache_ttl=cache_ttl,
        )

    # ── Soil ─────────────────────────────────────────────────

    def _soil_property(self, lat: float, lon: float, depth: str, properties: List[str],
                       cache_ttl: Optional[int]) -> Dict[str, Any]:
        # requests encode les listes en clés répétées : properties=bdod&properties=cec…
        return self.make_request(
            "/soil/property",
            {"lon": lon, "lat": lat, "depths": depth, "properties": properties, "values": "mean"},
            cache_ttl=cache_ttl,
        )

    def get_soil_data(self, lat: float, lon: float, cache_ttl: Optional[int] = None) -> Dict[str, Any]:
        try:
            result = self._soil_property(lat, lon, "0-30cm", SOIL_PROPERTIES, cache_ttl)
        except ApiError as e:
            logger.error("OpenEPI soil API failed: %s (lat=%s lon=%s)", e.message, lat, lon)
            raise ApiError(f"Soil data unavailable: {e.message}", e.status_code)

        layers = ((result or {}).get("properties") or {}).get("layers") or []
        if not layers:
            raise ApiError("Soil data unavailable: No soil data available from OpenEPI for this location", 502)
        return result

    def get_soil_composition(self, lat: float, lon: float, depth: float = 30,
                             cache_ttl: Optional[int] = None) -> Dict[str, Any]:
        band = depth_band(depth)
        try:
            return self._soil_property(lat, lon, band, COMPOSITION_PROPERTIES, cache_ttl)
        except ApiError as e:
            logger.warning("OpenEPI soil composition failed, using fallback data: %s", e.message)
            return fallback_soil_payload(FALLBACK_COMPOSITION, band)

    def get_soil_health(self, lat: float, lon: float, cache_ttl: Optional[int] = None) -> Dict[str, Any]:
        try:
            return self._soil_property(lat, lon, "0-30cm", HEALTH_PROPERTIES, cache_ttl)
        except ApiError as e:
            logger.warning("OpenEPI soil health failed, using fallback data: %s", e.message)
            return fallback_soil_payload(FALLBACK_HEALTH, "0-30cm")

    # ── Geocoding (Nominatim) ────────────────────────────────

    def geocode_address(self, address: str) -> Dict[str, Any]:
        if not address or not address.strip():
            raise ApiError("Address is required", 400)
        try:
            places = self.nominatim.search(address.strip(), limit=5)
        except (requests.RequestException, ValueError) as e:
            logger.error("Forward geocoding failed via Nominatim: %s (%s)", e, address)
            raise ApiError("Geocoding service unavailable", 503)

        if not places:
            raise ApiError("No locations found for the provided address", 404)

        features = []
        for place in places:
            importance = place.get("importance")
            features.append({
                "formatted_address": place.get("display_name"),
                "coordinates": [float(place["lon"]), float(place["lat"])],
                "components": address_parts(place.get("address") or {}),
                "confidence": 0.8,
                "place_type": place.get("type") or "unknown",
                "relevance": float(importance) if importance else 0.5,
            })
        logger.info("Forward geocoding successful: %s (%d results)", address, len(features))
        return {
            "features": features,
            "results": features,
            "query": address,
            "resultCount": len(features),
            "timestamp": utc_now_iso(),
            "source": "Nominatim",
        }

    def reverse_geocode(self, lat: float, lon: float) -> Dict[str, Any]:
        if lat is None or lon is None:
            raise ApiError("Latitude and longitude are required", 400)
        try:
            place = self.nominatim.reverse(lat, lon, zoom=10)
        except (requests.RequestException, ValueError) as e:
            logger.error("Reverse geocoding failed via Nominatim: %s (lat=%s lon=%s)", e, lat, lon)
            raise ApiError("Reverse geocoding service unavailable", 503)

        if not place or not place.get("display_name"):
            raise ApiError("No address found for the provided coordinates", 404)

        components = address_parts(place.get("address") or {})
        return {
            "address": {
                "formatted": format_location_name(place),
                "components": components,
                "confidence": 0.8,
                "place_type": "address",
            },
            "administrativeInfo": {
                "country": components["country"],
                "region": components["region"],
                "locality": components["locality"],
                "timezone": "Asia/Kolkata",
            },
            "coordinates": {"latitude": lat, "longitude": lon},
            "timestamp": utc_now_iso(),
            "source": "Nominatim",
        }

    def get_location_name_from_coordinates(self, lat: float, lon: float) -> str:
        """Ville connue (< 50 km), sinon Nominatim, sinon "lat, lon"."""
        known = nearest_known_city(lat, lon)
        if known:
            return known
        try:
            place = self.nominatim.reverse(lat, lon, zoom=10)
        except (requests.RequestException, ValueError) as e:
            logger.warning("Reverse geocoding failed, using coordinates: %s", e)
            return coordinates_label(lat, lon)
        if place and place.get("display_name"):
            return format_location_name(place) or coordinates_label(lat, lon)
        return coordinates_label(lat, lon)

    def get_administrative_boundaries(self, lat: float, lon: float) -> Any:
        return self.make_request("/geocoding/administrative", {"lat": lat, "lon": lon})

    # ── Crops ────────────────────────────────────────────────

    def analyze_crop(self, image_data: str, crop_type: str) -> Any:
        return self.make_request(
            "/crops/analyze", {"image": image_data, "crop_type": crop_type},
            method="POST", use_cache=False,
        )

    def get_crop_diseases(self, crop_type: str, region: Optional[str] = None) -> Any:
        return self.make_request("/crops/diseases", {"crop_type": crop_type, "region": region})

    def get_treatment_recommendations(self, disease_id: str, crop_type: str) -> Any:
        return self.make_request("/crops/treatment", {"disease_id": disease_id, "crop_type": crop_type})

    # ── Flood ────────────────────────────────────────────────

    def get_flood_risk(self, lat: float, lon: float, cache_ttl: Optional[int] = None) -> Any:
        return self.make_request("/flood/risk", {"lat": lat, "lon": lon}, cache_ttl=cache_ttl)

    def get_flood_forecast(self, lat: float, lon: float, days: int = 7, cache_ttl: Optional[int] = None) -> Any:
        return self.make_request("/flood/forecast", {"lat": lat, "lon": lon, "days": days}, cache_ttl=cache_ttl)

    def get_historical_floods(self, lat: float, lon: float, start_date: str, end_date: str,
                              cache_ttl: Optional[int] = None) -> Any:
        return self.make_request(
            "/flood/history",
            {"lat": lat, "lon": lon, "start_date": start_date, "end_date": end_date},
            cache_ttl=cache_ttl,
        )

    # ── Agriculture ──────────────────────────────────────────

    def get_agricultural_calendar(self, crop_type: str, lat: float, lon: float) -> Any:
        return self.make_request("/agriculture/calendar", {"crop_type": crop_type, "lat": lat, "lon": lon})

    def get_irrigation_recommendations(self, lat: float, lon: float, crop_type: str, soil_type: str) -> Any:
        return self.make_request(
            "/agriculture/irrigation",
            {"lat": lat, "lon": lon, "crop_type": crop_type, "soil_type": soil_type},
        )

    def get_pest_alerts(self, lat: float, lon: float, crop_type: str) -> Any:
        return self.make_request("/agriculture/pests", {"lat": lat, "lon": lon, "crop_type": crop_type})

    # ── Maintenance ──────────────────────────────────────────

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("OpenEPI service cache cleared")

    def get_stats(self) -> Dict[str, Any]:
        last_reset = datetime.fromtimestamp(self.rate_limiter.window_start, tz=timezone.utc)
        return {
            "cacheSize": len(self.cache),
            "requestCount": self.rate_limiter.request_count,
            "lastReset": last_reset.isoformat().replace("+00:00", "Z"),
            "rateLimitPerMinute": self.rate_limit_per_minute,
            "cacheTTL": self.cache_ttl,
        }


# ── Singleton (lazy, thread-safe) ────────────────────────────

_service: Optional[OpenEpiService] = None
_service_lock = threading.Lock()


def get_openepi_service() -> OpenEpiService:
    global _service
    if _service is not None:
        return _service
    with _service_lock:
        if _service is None:
            _service = OpenEpiService()
            logger.info("OpenEPI service initialised (base=%s)", _service.base_url)
    return _service
