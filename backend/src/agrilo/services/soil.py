"""
SoilApiService — propriétés du sol via OpenEPI (SoilGrids).

Les réponses OpenEPI arrivent au format `properties.layers[]` en unités
"mapped" SoilGrids ; on divise par `unit_measure.d_factor` pour obtenir :
  phh2o → pH, soc → g/kg, nitrogen → g/kg, cec → cmol(c)/kg,
  bdod → g/cm³, clay/sand/silt → %.
"""

import logging
from typing import Any, Dict, List, Optional

from agrilo.core.errors import ApiError, utc_now_iso
from agrilo.services.external_apis.openepi import OpenEpiService, get_openepi_service

logger = logging.getLogger("Agrilo.Soil")

SOIL_CACHE_TTL = 7200
COMPOSITION_CACHE_TTL = 86400
HEALTH_CACHE_TTL = 3600

# d_factor SoilGrids par défaut quand l'API ne le fournit pas
DEFAULT_D_FACTORS = {
    "phh2o": 10, "soc": 10, "nitrogen": 100, "cec": 10, "bdod": 100,
    "clay": 10, "sand": 10, "silt": 10, "cfvo": 10, "ocd": 10, "ocs": 1,
}

# Carbone organique → matière organique (facteur de van Bemmelen)
SOC_TO_OM = 1.724

NUTRIENT_THRESHOLDS = {
    "nitrogen": {"low": 30, "high": 80},
    "phosphorus": {"low": 15, "high": 40},
    "potassium": {"low": 100, "high": 200},
    "calcium": {"low": 500, "high": 1500},
    "magnesium": {"low": 100, "high": 300},
    "sulfur": {"low": 10, "high": 20},
}

NUTRIENT_RECOMMENDATIONS = {
    "nitrogen": {
        "low": ["Apply nitrogen fertilizer", "Consider legume cover crops", "Add compost or manure"],
        "high": ["Reduce nitrogen inputs", "Plant nitrogen-consuming crops", "Monitor for leaching"],
        "optimal": ["Maintain current nitrogen management practices"],
    },
    "phosphorus": {
        "low": ["Apply phosphorus fertilizer", "Use bone meal or rock phosphate", "Improve mycorrhizal associations"],
        "high": ["Reduce phosphorus inputs", "Monitor runoff to prevent water pollution", "Test soil regularly"],
        "optimal": ["Continue balanced phosphorus management"],
    },
    "potassium": {
        "low": ["Apply potassium fertilizer", "Use wood ash or greensand", "Add compost"],
        "high": ["Reduce potassium inputs", "Monitor for salt buildup", "Ensure adequate calcium and magnesium"],
        "optimal": ["Maintain current potassium levels"],
    },
}

CROP_REQUIREMENTS = {
    "tomato": {"ph_min": 6.0, "ph_max": 7.0, "drainage": "good", "organic_matter": 3.0},
    "corn": {"ph_min": 6.0, "ph_max": 6.8, "drainage": "good", "organic_matter": 2.5},
    "wheat": {"ph_min": 6.0, "ph_max": 7.5, "drainage": "moderate", "organic_matter": 2.0},
    "rice": {"ph_min": 5.5, "ph_max": 7.0, "drainage": "poor", "organic_matter": 2.0},
    "potato": {"ph_min": 5.0, "ph_max": 6.5, "drainage": "good", "organic_matter": 3.0},
    "default": {"ph_min": 6.0, "ph_max": 7.0, "drainage": "good", "organic_matter": 2.5},
}


# ── Parsing ──────────────────────────────────────────────────

def extract_layer_values(payload: Dict[str, Any]) -> Dict[str, float]:
    """{code: valeur convertie} depuis une réponse `properties.layers`."""
    values: Dict[str, float] = {}
    layers = ((payload or {}).get("properties") or {}).get("layers") or []
    for layer in layers:
        code = layer.get("code")
        depths = layer.get("depths") or []
        if not code or not depths:
            continue
        mean = (depths[0].get("values") or {}).get("mean")
        if mean is None:
            continue
        d_factor = (layer.get("unit_measure") or {}).get("d_factor") or DEFAULT_D_FACTORS.get(code, 1)
        values[code] = round(mean / d_factor, 3)
    return values


def texture_class(clay: Optional[float], sand: Optional[float], silt: Optional[float]) -> str:
    """Classe de texture USDA simplifiée."""
    if clay is None or sand is None or silt is None:
        return "unknown"
    if clay >= 40:
        return "clay"
    if clay >= 27:
        return "clay_loam" if sand < 45 else "sandy_clay_loam"
    if sand >= 70:
        return "sandy"
    if sand >= 52:
        return "sandy_loam"
    if silt >= 50:
        return "silt_loam"
    return "loam"


def drainage_class(texture: str) -> str:
    if texture in ("sandy", "sandy_loam"):
        return "well"
    if texture in ("clay", "clay_loam"):
        return "poor"
    return "moderate"


def nutrient_status(value: Optional[float], nutrient: str) -> str:
    threshold = NUTRIENT_THRESHOLDS.get(nutrient)
    if not threshold or value is None:
        return "optimal"
    if value < threshold["low"]:
        return "low"
    if value > threshold["high"]:
        return "high"
    return "optimal"


def nutrient_recommendations(value: Optional[float], nutrient: str) -> List[str]:
    if not value:
        return ["Data not available - consider soil testing"]
    status = nutrient_status(value, nutrient)
    return NUTRIENT_RECOMMENDATIONS.get(nutrient, {}).get(
        status, ["Consult agricultural specialist for specific recommendations"],
    )


def generate_soil_recommendations(soil: Dict[str, Any]) -> List[str]:
    recommendations = []
    ph = soil.get("ph")
    om = soil.get("organicMatter")
    salinity = soil.get("salinity")
    cec = soil.get("cationExchangeCapacity")

    if ph is not None and ph < 6.0:
        recommendations.append("Consider lime application to raise pH for better nutrient availability")
    elif ph is not None and ph > 8.0:
        recommendations.append("Consider sulfur application to lower pH")
    if om is not None and om < 2.0:
        recommendations.append("Increase organic matter through compost, cover crops, or green manure")
    if salinity is not None and salinity > 2.0:
        recommendations.append("Address soil salinity through improved drainage or salt-tolerant crops")
    if cec is not None and cec < 10:
        recommendations.append("Improve soil CEC through organic matter addition and clay amendments")

    recommendations.extend([
        "Regular soil testing every 2-3 years",
        "Practice crop rotation to maintain soil health",
        "Minimize soil compaction through proper equipment use",
    ])
    return recommendations


def soil_health_score(ph: Optional[float], soc: Optional[float], nitrogen: Optional[float],
                      cec: Optional[float]) -> int:
    """Score 0-100 : pénalités sur pH, carbone, azote et CEC."""
    score = 100.0
    if ph is not None:
        distance = 6.0 - ph if ph < 6.0 else (ph - 7.5 if ph > 7.5 else 0.0)
        score -= min(distance * 15, 30)
    if soc is not None and soc < 10:
        score -= min((10 - soc) * 2.5, 25)
    if nitrogen is not None and nitrogen < 1.0:
        score -= min((1.0 - nitrogen) * 20, 20)
    if cec is not None and cec < 10:
        score -= min((10 - cec) * 1.5, 15)
    return max(0, min(100, int(round(score))))


def suitability_rating(score: float) -> str:
    if score >= 80:
        return "excellent"
    if score >= 60:
        return "good"
    if score >= 40:
        return "fair"
    return "poor"


def suitability_score(ph: Optional[float], organic_matter: Optional[float], health_score: float,
                      requirements: Dict[str, Any]) -> int:
    score = 100.0
    if ph is not None:
        ph_diff = min(abs(ph - requirements["ph_min"]), abs(ph - requirements["ph_max"]))
        if ph_diff > 0.5:
            score -= min(ph_diff * 10, 30)
    if organic_matter is not None and organic_matter < requirements["organic_matter"]:
        score -= (requirements["organic_matter"] - organic_matter) * 10
    score = score * (health_score / 100.0)
    return max(0, int(round(score)))


# ── Service ──────────────────────────────────────────────────

class SoilApiService:
    """Façade sol : données brutes, composition, santé, nutriments, aptitude."""

    def __init__(self, openepi: Optional[OpenEpiService] = None):
        self._openepi = openepi

    @property
    def openepi(self) -> OpenEpiService:
        return self._openepi or get_openepi_service()

    @staticmethod
    def _require_coordinates(lat, lon) -> None:
        if lat is None or lon is None:
            raise ApiError("Latitude and longitude are required", 400)

    @staticmethod
    def transform_soil_data(payload: Dict[str, Any]) -> Dict[str, Any]:
        v = extract_layer_values(payload)
        texture = texture_class(v.get("clay"), v.get("sand"), v.get("silt"))
        soc = v.get("soc")
        bdod = v.get("bdod")
        return {
            "soilType": texture,
            "ph": v.get("phh2o"),
            "organicMatter": round(soc / 10 * SOC_TO_OM, 2) if soc is not None else None,
            "nitrogen": v.get("nitrogen"),
            "phosphorus": None,
            "potassium": None,
            "salinity": None,
            "cationExchangeCapacity": v.get("cec"),
            "bulkDensity": bdod,
            "porosity": round((1 - bdod / 2.65) * 100, 1) if bdod else None,
            "clay": v.get("clay"),
            "sand": v.get("sand"),
            "silt": v.get("silt"),
            "carbonContent": soc,
            "coarseFragments": v.get("cfvo"),
            "lastUpdated": utc_now_iso(),
            "source": "OpenEPI",
            "dataQuality": "low" if payload.get("fallback") else "medium",
        }

    def get_soil_data(self, lat: float, lon: float, depth: int = 30) -> Dict[str, Any]:
        self._require_coordinates(lat, lon)
        payload = self.openepi.get_soil_data(lat, lon, cache_ttl=SOIL_CACHE_TTL)
        soil = self.transform_soil_data(payload)
        logger.info("Soil data retrieved (lat=%s lon=%s)", lat, lon)
        return {"location": {"lat": lat, "lon": lon, "depth": depth}, **soil, "timestamp": utc_now_iso()}

    def get_soil_composition(self, lat: float, lon: float, depth: int = 30) -> Dict[str, Any]:
        self._require_coordinates(lat, lon)
        payload = self.openepi.get_soil_composition(lat, lon, depth, cache_ttl=COMPOSITION_CACHE_TTL)
        v = extract_layer_values(payload)
        texture = texture_class(v.get("clay"), v.get("sand"), v.get("silt"))
        return {
            "location": {"lat": lat, "lon": lon, "depth": depth},
            "composition": {
                "sand": v.get("sand"),
                "clay": v.get("clay"),
                "silt": v.get("silt"),
                "bulkDensity": v.get("bdod"),
                "textureClass": texture,
                "drainage": drainage_class(texture),
                "source": "OpenEPI",
                "fallback": bool(payload.get("fallback")),
            },
            "timestamp": utc_now_iso(),
        }

    def get_soil_health(self, lat: float, lon: float) -> Dict[str, Any]:
        self._require_coordinates(lat, lon)
        payload = self.openepi.get_soil_health(lat, lon, cache_ttl=HEALTH_CACHE_TTL)
        v = extract_layer_values(payload)
        ph, soc, nitrogen, cec = v.get("phh2o"), v.get("soc"), v.get("nitrogen"), v.get("cec")
        score = soil_health_score(ph, soc, nitrogen, cec)
        concerns = []
        if ph is not None and not 5.5 <= ph <= 8.0:
            concerns.append("Soil pH outside the range suitable for most crops")
        if soc is not None and soc < 10:
            concerns.append("Low soil organic carbon")
        if cec is not None and cec < 10:
            concerns.append("Low nutrient holding capacity")
        return {
            "location": {"lat": lat, "lon": lon},
            "health": {
                "healthScore": score,
                "indicators": {"ph": ph, "organicCarbon": soc, "nitrogen": nitrogen, "cationExchangeCapacity": cec},
                "concerns": concerns,
                "recommendations": generate_soil_recommendations({
                    "ph": ph,
                    "organicMatter": round(soc / 10 * SOC_TO_OM, 2) if soc is not None else None,
                    "cationExchangeCapacity": cec,
                }),
                "source": "OpenEPI",
                "fallback": bool(payload.get("fallback")),
            },
            "timestamp": utc_now_iso(),
        }

    def get_soil_nutrients(self, lat: float, lon: float) -> Dict[str, Any]:
        soil = self.get_soil_data(lat, lon)
        nutrients = {
            name: {
                "value": soil.get(name),
                "status": nutrient_status(soil.get(name), name),
                "recommendations": nutrient_recommendations(soil.get(name), name),
            }
            for name in ("nitrogen", "phosphorus", "potassium")
        }
        return {
            "location": {"lat": lat, "lon": lon},
            "nutrients": nutrients,
            "soilProperties": {
                "ph": soil.get("ph"),
                "organicMatter": soil.get("organicMatter"),
                "cationExchangeCapacity": soil.get("cationExchangeCapacity"),
                "salinity": soil.get("salinity"),
            },
            "generalRecommendations": generate_soil_recommendations(soil),
            "timestamp": utc_now_iso(),
            "source": "OpenEPI",
        }

    def get_soil_suitability(self, lat: float, lon: float, crop_type: str) -> Dict[str, Any]:
        if lat is None or lon is None or not crop_type:
            raise ApiError("Latitude, longitude, and crop type are required", 400)
        soil = self.get_soil_data(lat, lon)
        health = self.get_soil_health(lat, lon)
        return {
            "location": {"lat": lat, "lon": lon},
            "cropType": crop_type,
            "suitability": self.assess_crop_suitability(soil, health, crop_type),
            "timestamp": utc_now_iso(),
            "source": "OpenEPI",
        }

    @staticmethod
    def assess_crop_suitability(soil: Dict[str, Any], health: Dict[str, Any], crop_type: str) -> Dict[str, Any]:
        requirements = CROP_REQUIREMENTS.get((crop_type or "").lower(), CROP_REQUIREMENTS["default"])
        ph = soil.get("ph")
        om = soil.get("organicMatter")
        health_score = health["health"]["healthScore"]
        limitations, recommendations = [], []

        if ph is not None and ph < requirements["ph_min"]:
            limitations.append("pH too low for optimal growth")
            recommendations.append("Apply lime to raise soil pH")
        elif ph is not None and ph > requirements["ph_max"]:
            limitations.append("pH too high for optimal growth")
            recommendations.append("Apply sulfur or organic matter to lower pH")
        if om is not None and om < requirements["organic_matter"]:
            limitations.append("Low organic matter content")
            recommendations.append("Increase organic matter through compost or cover crops")
        if health_score < 70:
            limitations.append("Poor soil health indicators")
            recommendations.append("Improve soil health through biological amendments")

        score = suitability_score(ph, om, health_score, requirements)
        return {
            "score": score,
            "rating": suitability_rating(score),
            "limitations": limitations,
            "recommendations": recommendations,
            "details": {
                "ph": {"current": ph, "optimal": f"{requirements['ph_min']}-{requirements['ph_max']}"},
                "organicMatter": {"current": om, "optimal": f">{requirements['organic_matter']}%"},
                "healthScore": health_score,
            },
        }


_soil_service: Optional[SoilApiService] = None


def get_soil_service() -> SoilApiService:
    global _soil_service
    if _soil_service is None:
        _soil_service = SoilApiService()
    return _soil_service
