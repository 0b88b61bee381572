"""
Géocodage via Nominatim (OpenStreetMap).

- search / reverse : appels HTTP bruts (requests)
- format_location_name : "Ville, Région, Pays" à partir d'une adresse Nominatim
- nearest_known_city : raccourci local (< 50 km) pour les villes fréquentes
"""

import logging
import math
from typing import Any, Dict, List, Optional

import requests

from agrilo.core.settings import settings

logger = logging.getLogger("Agrilo.Geocoding")

EARTH_RADIUS_KM = 6371.0
KNOWN_CITY_RADIUS_KM = 50.0

KNOWN_CITIES = [
    {"lat": 28.7041, "lon": 77.1025, "name": "Delhi, India"},
    {"lat": 19.0760, "lon": 72.8777, "name": "Mumbai, India"},
    {"lat": 12.9716, "lon": 77.5946, "name": "Bangalore, India"},
    {"lat": 13.0827, "lon": 80.2707, "name": "Chennai, India"},
    {"lat": 22.5726, "lon": 88.3639, "name": "Kolkata, India"},
    {"lat": 17.3850, "lon": 78.4867, "name": "Hyderabad, India"},
    {"lat": 26.8467, "lon": 80.9462, "name": "Lucknow, India"},
    {"lat": 23.0225, "lon": 72.5714, "name": "Ahmedabad, India"},
    {"lat": 30.7333, "lon": 76.7794, "name": "Chandigarh, India"},
    {"lat": 25.2048, "lon": 55.2708, "name": "Dubai, UAE"},
    {"lat": 40.7128, "lon": -74.0060, "name": "New York, USA"},
    {"lat": 51.5074, "lon": -0.1278, "name": "London, UK"},
]


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def nearest_known_city(lat: float, lon: float) -> Optional[str]:
    for city in KNOWN_CITIES:
        if haversine_km(lat, lon, city["lat"], city["lon"]) <= KNOWN_CITY_RADIUS_KM:
            return city["name"]
    return None


def coordinates_label(lat: float, lon: float) -> str:
    return f"{lat:.4f}, {lon:.4f}"


def address_parts(address: Dict[str, Any]) -> Dict[str, Optional[str]]:
    country_code = address.get("country_code")
    return {
        "locality": address.get("city") or address.get("town") or address.get("village") or address.get("municipality"),
        "region": address.get("state") or address.get("region"),
        "country": address.get("country"),
        "country_code": country_code.upper() if country_code else None,
        "postal_code": address.get("postcode"),
    }


def format_location_name(place: Dict[str, Any]) -> str:
    """Ville[, Région][, Pays] ; sinon les 3 premiers segments de display_name."""
    parts = address_parts(place.get("address") or {})
    city, state, country = parts["locality"], parts["region"], parts["country"]

    if city:
        name = city
        if state and state != city:
            name += f", {state}"
        if country:
            name += f", {country}"
        return name
    if state:
        return f"{state}, {country}" if country else state
    if country:
        return country
    display = place.get("display_name") or ""
    return ", ".join(p.strip() for p in display.split(",")[:3])


class NominatimClient:
    """Client minimal Nominatim : search et reverse, sans cache."""

    def __init__(self, base_url: Optional[str] = None, session: Optional[requests.Session] = None):
        self.base_url = (base_url or settings.NOMINATIM_URL).rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": settings.NOMINATIM_USER_AGENT})

    def _get(self, path: str, params: Dict[str, Any], timeout: float) -> Any:
        params = {
            "format": "json",
            "addressdetails": 1,
            "extratags": 1,
            "namedetails": 1,
            "accept-language": "en",
            **params,
        }
        response = self.session.request("GET", f"{self.base_url}/{path}", params=params, timeout=timeout)
        response.raise_for_status()
        return response.json()

    def search(self, query: str, limit: int = 5, timeout: float = None) -> List[Dict[str, Any]]:
        timeout = timeout or settings.GEOCODING_TIMEOUT_SECONDS
        return self._get("search", {"q": query, "limit": limit}, timeout) or []

    def reverse(self, lat: float, lon: float, zoom: int = 10, timeout: float = None) -> Dict[str, Any]:
        timeout = timeout or settings.GEOCODING_TIMEOUT_SECONDS
        return self._get("reverse", {"lat": lat, "lon": lon, "zoom": zoom}, timeout) or {}
