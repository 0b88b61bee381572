"""
FloodApiService — risque, prévision et historique d'inondation via OpenEPI,
plus un plan de préparation par type de culture.
"""

import logging
from typing import Any, Dict, List, Optional

from agrilo.core.errors import ApiError, utc_now_iso
from agrilo.services.external_apis.openepi import OpenEpiService, get_openepi_service

logger = logging.getLogger("Agrilo.Flood")

FLOOD_RISK_CACHE_TTL = 3600
FLOOD_FORECAST_CACHE_TTL = 1800
FLOOD_HISTORY_CACHE_TTL = 86400

CROP_FLOOD_ACTIONS = {
    "corn": [
        "Harvest early if near maturity",
        "Improve field drainage",
        "Consider flood-tolerant varieties for future",
    ],
    "rice": [
        "Monitor water levels carefully",
        "Ensure proper drainage outlets",
        "Rice can tolerate flooding better than other crops",
    ],
    "vegetables": [
        "Harvest immediately if possible",
        "Protect with row covers",
        "Plan for replanting if needed",
    ],
    "soybeans": [
        "Avoid planting in low-lying areas",
        "Improve drainage systems",
        "Consider early-maturing varieties",
    ],
}
DEFAULT_FLOOD_ACTIONS = [
    "Monitor crop condition closely",
    "Improve drainage where possible",
    "Consider crop insurance coverage",
]


def crop_flood_actions(crop: str) -> List[str]:
    return CROP_FLOOD_ACTIONS.get((crop or "").lower(), DEFAULT_FLOOD_ACTIONS)


def risk_recommendations(risk_level: str) -> List[str]:
    recommendations = []
    if risk_level == "extreme":
        recommendations += ["EXTREME FLOOD WARNING - EVACUATE IF NECESSARY", "Contact emergency services if needed"]
    if risk_level in ("high", "extreme"):
        recommendations += [
            "IMMEDIATE ACTION REQUIRED",
            "Move livestock to safe areas NOW",
            "Harvest any ready crops immediately",
        ]
    recommendations += [
        "Monitor weather forecasts closely",
        "Ensure drainage systems are clear",
    ]
    return recommendations


class FloodApiService:

    def __init__(self, openepi: Optional[OpenEpiService] = None):
        self._openepi = openepi

    @property
    def openepi(self) -> OpenEpiService:
        return self._openepi or get_openepi_service()

    @staticmethod
    def transform_flood_risk(response: Dict[str, Any], lat: float, lon: float) -> Dict[str, Any]:
        response = response or {}
        return {
            "location": {"lat": lat, "lon": lon},
            "riskLevel": response.get("risk_level") or response.get("riskLevel") or "moderate",
            "riskScore": response.get("risk_score") or response.get("riskScore") or 50,
            "factors": response.get("factors") or [],
            "recommendations": response.get("recommendations") or [],
            "timestamp": utc_now_iso(),
            "source": "OpenEPI",
        }

    @staticmethod
    def transform_flood_forecast(response: Dict[str, Any], lat: float, lon: float) -> Dict[str, Any]:
        response = response or {}
        return {
            "location": {"lat": lat, "lon": lon},
            "forecast": response.get("forecast") or response.get("data") or [],
            "timestamp": utc_now_iso(),
            "source": "OpenEPI",
        }

    def get_flood_risk(self, lat: float, lon: float) -> Dict[str, Any]:
        if lat is None or lon is None:
            raise ApiError("Latitude and longitude are required", 400)
        response = self.openepi.get_flood_risk(lat, lon, cache_ttl=FLOOD_RISK_CACHE_TTL)
        risk = self.transform_flood_risk(response, lat, lon)
        if not risk["recommendations"]:
            risk["recommendations"] = risk_recommendations(risk["riskLevel"])
        logger.info("Flood risk retrieved (lat=%s lon=%s level=%s)", lat, lon, risk["riskLevel"])
        return risk

    def get_flood_forecast(self, lat: float, lon: float, days: int = 7) -> Dict[str, Any]:
        if lat is None or lon is None:
            raise ApiError("Latitude and longitude are required", 400)
        response = self.openepi.get_flood_forecast(lat, lon, days, cache_ttl=FLOOD_FORECAST_CACHE_TTL)
        return self.transform_flood_forecast(response, lat, lon)

    def get_historical_floods(self, lat: float, lon: float, start_date: str, end_date: str) -> Dict[str, Any]:
        if lat is None or lon is None or not start_date or not end_date:
            raise ApiError("Latitude, longitude, start date, and end date are required", 400)
        response = self.openepi.get_historical_floods(
            lat, lon, start_date, end_date, cache_ttl=FLOOD_HISTORY_CACHE_TTL,
        ) or {}
        return {
            "location": {"lat": lat, "lon": lon},
            "period": {"startDate": start_date, "endDate": end_date},
            "events": response.get("events") or response.get("data") or [],
            "timestamp": utc_now_iso(),
            "source": "OpenEPI",
        }

    @staticmethod
    def get_flood_preparedness(risk_level: str = "moderate", crop_types: Optional[List[str]] = None,
                               farm_type: Optional[str] = None) -> Dict[str, Any]:
        return {
            "farmType": farm_type,
            "riskLevel": risk_level,
            "cropTypes": crop_types or [],
            "generalPreparation": [
                "Develop a comprehensive emergency plan",
                "Identify evacuation routes and safe areas",
                "Maintain emergency supply kit",
                "Keep important documents in waterproof containers",
            ],
            "riskActions": risk_recommendations(risk_level),
            "cropSpecificActions": {crop: crop_flood_actions(crop) for crop in (crop_types or [])},
            "equipmentProtection": [
                "Move machinery to higher ground",
                "Secure fuel tanks and chemicals",
                "Backup important farm records",
                "Prepare sandbags for critical areas",
            ],
            "postFloodRecovery": [
                "Assess crop and livestock damage",
                "Test water sources for contamination",
                "Document damage for insurance claims",
                "Develop replanting strategies",
            ],
            "timestamp": utc_now_iso(),
        }


_flood_service: Optional[FloodApiService] = None


def get_flood_service() -> FloodApiService:
    global _flood_service
    if _flood_service is None:
        _flood_service = FloodApiService()
    return _flood_service
