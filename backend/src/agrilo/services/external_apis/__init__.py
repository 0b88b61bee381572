"""
External APIs Module

Clients des API externes : OpenEPI, Nominatim, Open-Meteo, Earth Engine.
"""

__all__ = [
    "earth_engine",
    "geocoding",
    "openepi",
    "openmeteo",
]
