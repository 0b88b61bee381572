"""
Analyses satellitaires Earth Engine autour d'un point.

- Sécheresse : cumul CHIRPS des 3 derniers mois vs moyenne saisonnière sur 20 ans
- Végétation : NDVI MODIS le plus récent vs moyenne saisonnière sur 20 ans
- Inondation : cumul CHIRPS des 30 derniers jours vs pluie normale du mois

Les résultats sont mis en cache 1 h par (analyse, lat, lon).
"""

import logging
import threading
from typing import Any, Callable, Dict, Optional

import ee

from agrilo.core.errors import ApiError, utc_now_iso
from agrilo.core.settings import settings
from agrilo.services.utils.cache import TTLCache

from .gee_auth import initialize_ee

logger = logging.getLogger("Agrilo.GEE")

CHIRPS = "UCSB-CHG/CHIRPS/DAILY"
MODIS_NDVI = "MODIS/061/MOD13Q1"
NDVI_SCALE = 0.0001
HISTORY_YEARS = 20


def _region_mean(image, region, scale: int):
    return image.reduceRegion(reducer=ee.Reducer.mean(), geometry=region, scale=scale, maxPixels=1e9)


def get_chirps_rainfall(lat: float, lon: float, start_date: str, end_date: str) -> Optional[float]:
    """Cumul de pluie CHIRPS (mm) au point sur la période."""
    poi = ee.Geometry.Point(lon, lat)
    total = ee.ImageCollection(CHIRPS).filterBounds(poi).filterDate(start_date, end_date).select("precipitation").sum()
    stats = total.reduceRegion(reducer=ee.Reducer.first(), geometry=poi, scale=5000).getInfo()
    return stats.get("precipitation")


def drought_values(lat: float, lon: float) -> Dict[str, Optional[float]]:
    region = ee.Geometry.Point([lon, lat]).buffer(5000)
    end = ee.Date(utc_now_iso())
    start = end.advance(-3, "month")
    chirps = ee.ImageCollection(CHIRPS)

    current = _region_mean(chirps.filterDate(start, end).sum(), region, 5000)
    historical = _region_mean(
        chirps.filterDate(end.advance(-HISTORY_YEARS, "year"), end)
        .filter(ee.Filter.calendarRange(start.getRelative("day", "year"), end.getRelative("day", "year"), "day_of_year"))
        .sum()
        .divide(HISTORY_YEARS),
        region, 5000,
    )
    return ee.Dictionary({
        "current": current.get("precipitation"),
        "historical": historical.get("precipitation"),
    }).getInfo()


def vegetation_values(lat: float, lon: float) -> Dict[str, Optional[float]]:
    region = ee.Geometry.Point([lon, lat]).buffer(1000)
    end = ee.Date(utc_now_iso())
    start = end.advance(-180, "day")
    modis = ee.ImageCollection(MODIS_NDVI)

    latest = modis.filterDate(start, end).sort("system:time_start", False).limit(1).mosaic()
    current = _region_mean(latest.select("NDVI"), region, 250)
    historical = _region_mean(
        modis.filterDate(end.advance(-HISTORY_YEARS, "year"), end)
        .filter(ee.Filter.calendarRange(start.getRelative("day", "year"), end.getRelative("day", "year"), "day_of_year"))
        .mean()
        .select("NDVI"),
        region, 250,
    )
    return ee.Dictionary({"current": current.get("NDVI"), "historical": historical.get("NDVI")}).getInfo()


def flood_values(lat: float, lon: float) -> Dict[str, Optional[float]]:
    region = ee.Geometry.Point([lon, lat]).buffer(5000)
    end = ee.Date(utc_now_iso())
    start = end.advance(-30, "day")
    chirps = ee.ImageCollection(CHIRPS)

    recent = _region_mean(chirps.filterDate(start, end).sum(), region, 5000)
    baseline = _region_mean(
        chirps.filterDate(end.advance(-HISTORY_YEARS, "year"), end)
        .filter(ee.Filter.calendarRange(start.getRelative("month", "year"), end.getRelative("month", "year"), "month"))
        .mean()
        .multiply(30),
        region, 5000,
    )
    return ee.Dictionary({"recent": recent.get("precipitation"), "baseline": baseline.get("precipitation")}).getInfo()


# ── Interprétation (pure) ────────────────────────────────────

def interpret_drought(current: Optional[float], historical: Optional[float]) -> Dict[str, Any]:
    current = current or 0.0
    historical = historical or 1.0
    anomaly = (current - historical) / historical
    if anomaly < -0.5:
        level = "High"
    elif anomaly < -0.2:
        level = "Moderate"
    else:
        level = "Low"
    return {
        "riskLevel": level,
        "anomalyPercentage": f"{anomaly * 100:.1f}",
        "currentPrecipitation": f"{current:.1f}",
        "historicalAverage": f"{historical:.1f}",
        "period": "Last 3 Months",
        "dataset": CHIRPS,
        "timestamp": utc_now_iso(),
    }


def interpret_vegetation(current: Optional[float], historical: Optional[float]) -> Dict[str, Any]:
    current_ndvi = (current or 0) * NDVI_SCALE
    historical_ndvi = (historical or 0) * NDVI_SCALE
    anomaly = current_ndvi - historical_ndvi
    if anomaly < -0.1:
        status = "Poor"
    elif anomaly > 0.1:
        status = "Excellent"
    else:
        status = "Normal"
    return {
        "healthStatus": status,
        "ndviValue": f"{current_ndvi:.2f}",
        "historicalAverage": f"{historical_ndvi:.2f}",
        "anomaly": f"{anomaly:.2f}",
        "dataset": MODIS_NDVI,
        "timestamp": utc_now_iso(),
    }


def interpret_flood(recent: Optional[float], baseline: Optional[float]) -> Dict[str, Any]:
    recent = recent or 0.0
    baseline = baseline or 1.0
    if recent > baseline * 3 and recent > 50:
        level = "High"
    elif recent > baseline * 1.5 and recent > 30:
        level = "Moderate"
    else:
        level = "Low"
    return {
        "riskLevel": level,
        "recentAccumulation": f"{recent:.1f}",
        "normalAccumulation": f"{baseline:.1f}",
        "dataset": CHIRPS,
        "timestamp": utc_now_iso(),
    }


class EarthEngineInsights:
    """
    Façade des analyses GEE, avec cache.

    `initializer` et les fonctions `*_values` sont injectables : les tests
    remplacent les appels Earth Engine par des valeurs fixes.
    """

    def __init__(
        self,
        initializer: Callable[[], None] = initialize_ee,
        drought_fn: Callable = drought_values,
        vegetation_fn: Callable = vegetation_values,
        flood_fn: Callable = flood_values,
        cache: Optional[TTLCache] = None,
    ):
        self._initialize = initializer
        self._drought = drought_fn
        self._vegetation = vegetation_fn
        self._flood = flood_fn
        self.cache = cache or TTLCache(default_ttl=settings.GEE_CACHE_TTL_SECONDS, name="gee")

    def _cached(self, kind: str, lat: float, lon: float, compute: Callable[[], Dict[str, Any]]):
        key = f"{kind}:{lat}:{lon}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        result = compute()
        if result is not None:
            self.cache.set(key, result)
        return result

    def calculate_drought_risk(self, lat: float, lon: float) -> Dict[str, Any]:
        self._initialize()

        def compute():
            try:
                values = self._drought(lat, lon) or {}
            except Exception as e:
                logger.error("GEE drought analysis failed (lat=%s lon=%s): %s", lat, lon, e)
                raise ApiError("Drought analysis failed", 500)
            return interpret_drought(values.get("current"), values.get("historical"))

        return self._cached("drought", lat, lon, compute)

    def calculate_vegetation_health(self, lat: float, lon: float) -> Optional[Dict[str, Any]]:
        """None si l'analyse échoue (pas de donnée pour ce point)."""
        self._initialize()

        def compute():
            try:
                values = self._vegetation(lat, lon) or {}
            except Exception as e:
                logger.error("GEE NDVI analysis failed (lat=%s lon=%s): %s", lat, lon, e)
                return None
            return interpret_vegetation(values.get("current"), values.get("historical"))

        return self._cached("ndvi", lat, lon, compute)

    def calculate_flood_risk(self, lat: float, lon: float) -> Optional[Dict[str, Any]]:
        self._initialize()

        def compute():
            try:
                values = self._flood(lat, lon) or {}
            except Exception as e:
                logger.error("GEE flood analysis failed (lat=%s lon=%s): %s", lat, lon, e)
                return None
            return interpret_flood(values.get("recent"), values.get("baseline"))

        return self._cached("flood", lat, lon, compute)

    def combined(self, lat: float, lon: float) -> Dict[str, Any]:
        """Les trois analyses ; chaque échec est remplacé par {"error": "Unavailable"}."""
        results: Dict[str, Any] = {}
        for name, fn in (
            ("drought", self.calculate_drought_risk),
            ("vegetation", self.calculate_vegetation_health),
            ("flood", self.calculate_flood_risk),
        ):
            try:
                value = fn(lat, lon)
            except ApiError as e:
                logger.warning("Combined insights: %s unavailable (%s)", name, e.message)
                value = None
            results[name] = value if value is not None else {"error": "Unavailable"}
        results["timestamp"] = utc_now_iso()
        return results


_insights: Optional[EarthEngineInsights] = None
_insights_lock = threading.Lock()


def get_earth_engine_insights() -> EarthEngineInsights:
    global _insights
    if _insights is not None:
        return _insights
    with _insights_lock:
        if _insights is None:
            _insights = EarthEngineInsights()
    return _insights
