"""
Google Earth Engine Integration

Analyses satellitaires (CHIRPS, MODIS) pour les insights agricoles.

Modules:
- gee_auth: authentification par compte de service
- engine: analyses sécheresse / végétation / inondation, avec cache

Configuration:
- GOOGLE_CLIENT_EMAIL + GOOGLE_PRIVATE_KEY, ou GOOGLE_APPLICATION_CREDENTIALS
"""

from .engine import EarthEngineInsights, get_chirps_rainfall, get_earth_engine_insights
from .gee_auth import has_credentials, initialize_ee

__all__ = [
    "EarthEngineInsights",
    "get_chirps_rainfall",
    "get_earth_engine_insights",
    "has_credentials",
    "initialize_ee",
]
