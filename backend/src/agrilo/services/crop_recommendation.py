"""
CropRecommendationService — recommandation de cultures "climate-smart".

Score pondéré par culture :
  climat 25 % · sol 20 % · économie 20 % · profil agriculteur 15 %
  saison 10 % · risque 10 %

Les scores de plage tolèrent 30 % de la largeur de la plage optimale.
"""

import logging
import math
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from agrilo.core.errors import ApiError, utc_now_iso
from agrilo.services.irrigation import IrrigationService, get_irrigation_service

logger = logging.getLogger("Agrilo.CropRecommendation")

SCORE_WEIGHTS = {
    "climate": 0.25,
    "soil": 0.20,
    "economic": 0.20,
    "farmer": 0.15,
    "seasonal": 0.10,
    "risk": 0.10,
}
RANGE_TOLERANCE = 0.3
RISK_VALUES = {"very_low": 1, "low": 2, "medium": 3, "high": 4, "very_high": 5}
WATER_NEED_MM = {"very_high": 1000, "high": 600, "medium": 400, "low": 200}

SEASONS = ["spring", "summer", "autumn", "winter"]
SEASON_MONTHS = {
    "spring": [3, 4, 5],
    "summer": [6, 7, 8],
    "monsoon": [6, 7, 8, 9],
    "autumn": [9, 10, 11],
    "winter": [12, 1, 2],
}
MONTH_ABBR = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

CROP_DATABASE: Dict[str, Dict[str, Any]] = {
    "tomato": {
        "name": "Tomato",
        "scientificName": "Solanum lycopersicum",
        "category": "vegetable",
        "image": "/images/crops/tomato.jpg",
        "climate": {
            "optimalTemp": {"min": 20, "max": 30},
            "rainfall": {"min": 500, "max": 800},
            "humidity": {"min": 60, "max": 80},
            "season": ["spring", "summer"],
        },
        "soil": {
            "ph": {"min": 6.0, "max": 7.0},
            "drainage": "good",
            "type": ["loam", "sandy_loam"],
            "organicMatter": {"min": 2, "max": 5},
        },
        "growing": {"duration": 90, "difficulty": "medium", "waterNeed": "high", "spacing": 0.6},
        "economics": {"seedCost": 150, "expectedYield": 25000, "marketPrice": 2.5, "profitMargin": 60},
        "benefits": [
            "High market demand",
            "Multiple harvests possible",
            "Rich in vitamins and antioxidants",
            "Good processing potential",
        ],
        "challenges": [
            "Susceptible to pests and diseases",
            "Requires regular watering",
            "Sensitive to extreme temperatures",
            "Needs support structures",
        ],
        "riskFactors": {"drought": "high", "flood": "medium", "pest": "high", "disease": "high", "market": "low"},
    },
    "corn": {
        "name": "Corn (Maize)",
        "scientificName": "Zea mays",
        "category": "cereal",
        "image": "/images/crops/corn.jpg",
        "climate": {
            "optimalTemp": {"min": 18, "max": 32},
            "rainfall": {"min": 400, "max": 700},
            "humidity": {"min": 50, "max": 70},
            "season": ["spring", "summer"],
        },
        "soil": {
            "ph": {"min": 6.0, "max": 7.5},
            "drainage": "moderate",
            "type": ["loam", "clay_loam", "sandy_loam"],
            "organicMatter": {"min": 2, "max": 4},
        },
        "growing": {"duration": 120, "difficulty": "easy", "waterNeed": "medium", "spacing": 0.3},
        "economics": {"seedCost": 200, "expectedYield": 8000, "marketPrice": 0.8, "profitMargin": 45},
        "benefits": [
            "Stable market demand",
            "Drought tolerant varieties available",
            "Multiple uses (food, feed, industrial)",
            "Mechanization friendly",
        ],
        "challenges": [
            "Requires large planting area",
            "Vulnerable to strong winds",
            "Heavy feeder (needs fertilizers)",
            "Post-harvest storage challenges",
        ],
        "riskFactors": {"drought": "medium", "flood": "high", "pest": "medium", "disease": "medium", "market": "low"},
    },
    "rice": {
        "name": "Rice",
        "scientificName": "Oryza sativa",
        "category": "cereal",
        "image": "/images/crops/rice.jpg",
        "climate": {
            "optimalTemp": {"min": 22, "max": 32},
            "rainfall": {"min": 1000, "max": 2000},
            "humidity": {"min": 70, "max": 90},
            "season": ["monsoon", "summer"],
        },
        "soil": {
            "ph": {"min": 5.5, "max": 7.0},
            "drainage": "poor",
            "type": ["clay", "clay_loam"],
            "organicMatter": {"min": 1.5, "max": 3},
        },
        "growing": {"duration": 110, "difficulty": "medium", "waterNeed": "very_high", "spacing": 0.2},
        "economics": {"seedCost": 100, "expectedYield": 6000, "marketPrice": 1.2, "profitMargin": 40},
        "benefits": [
            "Staple food with guaranteed demand",
            "Suitable for waterlogged areas",
            "Multiple varieties available",
            "Government support often available",
        ],
        "challenges": [
            "High water requirement",
            "Labor intensive",
            "Pest and disease pressure",
            "Climate change vulnerability",
        ],
        "riskFactors": {"drought": "very_high", "flood": "low", "pest": "high", "disease": "high", "market": "very_low"},
    },
    "potato": {
        "name": "Potato",
        "scientificName": "Solanum tuberosum",
        "category": "tuber",
        "image": "/images/crops/potato.jpg",
        "climate": {
            "optimalTemp": {"min": 15, "max": 25},
            "rainfall": {"min": 400, "max": 600},
            "humidity": {"min": 60, "max": 80},
            "season": ["winter", "spring"],
        },
        "soil": {
            "ph": {"min": 5.5, "max": 6.5},
            "drainage": "good",
            "type": ["sandy_loam", "loam"],
            "organicMatter": {"min": 2, "max": 4},
        },
        "growing": {"duration": 75, "difficulty": "easy", "waterNeed": "medium", "spacing": 0.3},
        "economics": {"seedCost": 300, "expectedYield": 20000, "marketPrice": 1.5, "profitMargin": 55},
        "benefits": [
            "Short growing season",
            "High yield potential",
            "Good storage life",
            "Multiple market channels",
        ],
        "challenges": [
            "Susceptible to late blight",
            "Requires quality seed tubers",
            "Storage facility needed",
            "Price volatility",
        ],
        "riskFactors": {"drought": "medium", "flood": "high", "pest": "medium", "disease": "high", "market": "medium"},
    },
    "cassava": {
        "name": "Cassava",
        "scientificName": "Manihot esculenta",
        "category": "tuber",
        "image": "/images/crops/cassava.jpg",
        "climate": {
            "optimalTemp": {"min": 25, "max": 35},
            "rainfall": {"min": 600, "max": 1200},
            "humidity": {"min": 60, "max": 85},
            "season": ["all_year"],
        },
        "soil": {
            "ph": {"min": 5.5, "max": 7.0},
            "drainage": "good",
            "type": ["sandy", "sandy_loam", "loam"],
            "organicMatter": {"min": 1, "max": 3},
        },
        "growing": {"duration": 300, "difficulty": "easy", "waterNeed": "low", "spacing": 1.0},
        "economics": {"seedCost": 50, "expectedYield": 15000, "marketPrice": 0.5, "profitMargin": 70},
        "benefits": [
            "Drought tolerant",
            "Grows in poor soils",
            "Long storage in ground",
            "Climate resilient",
        ],
        "challenges": [
            "Long growing period",
            "Processing required for some varieties",
            "Limited market in some areas",
            "Pest and disease issues",
        ],
        "riskFactors": {"drought": "low", "flood": "medium", "pest": "medium", "disease": "medium", "market": "medium"},
    },
    "wheat": {
        "name": "Wheat",
        "scientificName": "Triticum aestivum",
        "category": "cereal",
        "image": "/images/crops/wheat.jpg",
        "climate": {
            "optimalTemp": {"min": 15, "max": 25},
            "rainfall": {"min": 300, "max": 600},
            "humidity": {"min": 40, "max": 60},
            "season": ["winter", "spring"],
        },
        "soil": {
            "ph": {"min": 6.0, "max": 7.5},
            "drainage": "moderate",
            "type": ["clay_loam", "loam"],
            "organicMatter": {"min": 1.5, "max": 3},
        },
        "growing": {"duration": 130, "difficulty": "easy", "waterNeed": "medium", "spacing": 0.1},
        "economics": {"seedCost": 80, "expectedYield": 4000, "marketPrice": 1.0, "profitMargin": 35},
        "benefits": [
            "Stable market demand",
            "Mechanization friendly",
            "Good for rotation",
            "Government support",
        ],
        "challenges": [
            "Requires specific climate",
            "Competition from imports",
            "Storage and processing needed",
            "Vulnerable to weather extremes",
        ],
        "riskFactors": {"drought": "high", "flood": "medium", "pest": "medium", "disease": "medium", "market": "low"},
    },
}

ADAPTATION_STRATEGIES = {
    "drought": [
        "Select drought-tolerant varieties",
        "Implement water-efficient irrigation",
        "Use mulching to retain moisture",
        "Practice conservation agriculture",
    ],
    "flood": [
        "Choose flood-tolerant varieties",
        "Improve drainage systems",
        "Raise field beds",
        "Plan for early/late planting",
    ],
    "temperature": [
        "Use heat/cold tolerant varieties",
        "Adjust planting dates",
        "Provide shade or protection",
        "Select appropriate microclimates",
    ],
}

PLANTING_CALENDAR = {
    "spring": {
        "months": ["March", "April", "May"],
        "suitableCrops": ["tomato", "corn", "potato"],
        "characteristics": "Moderate temperatures, increasing daylight",
    },
    "summer": {
        "months": ["June", "July", "August"],
        "suitableCrops": ["tomato", "corn", "rice"],
        "characteristics": "High temperatures, monsoon rains",
    },
    "monsoon": {
        "months": ["June", "July", "August", "September"],
        "suitableCrops": ["rice", "cassava"],
        "characteristics": "Heavy rainfall, high humidity",
    },
    "winter": {
        "months": ["November", "December", "January", "February"],
        "suitableCrops": ["potato", "wheat"],
        "characteristics": "Cool temperatures, dry conditions",
    },
}


# ── Helpers de score ─────────────────────────────────────────

def score_in_range(value: float, low: float, high: float) -> float:
    """100 dans [low, high], décroît linéairement jusqu'à 0 à ±30 % de la largeur."""
    if low <= value <= high:
        return 100.0
    tolerance = (high - low) * RANGE_TOLERANCE
    if tolerance <= 0:
        return 0.0
    deviation = low - value if value < low else value - high
    return max(0.0, 100 - deviation / tolerance * 100)


def current_season(month: int) -> str:
    if 3 <= month <= 5:
        return "spring"
    if 6 <= month <= 8:
        return "summer"
    if 9 <= month <= 11:
        return "autumn"
    return "winter"


def next_season(season: str) -> str:
    return SEASONS[(SEASONS.index(season) + 1) % len(SEASONS)]


def recommendation_level(score: float) -> str:
    if score >= 80:
        return "highly_recommended"
    if score >= 60:
        return "recommended"
    if score >= 40:
        return "suitable_with_care"
    return "not_recommended"


def average_crop_risk(crop: Dict[str, Any]) -> float:
    factors = crop["riskFactors"]
    return sum(RISK_VALUES.get(level, 3) for level in factors.values()) / len(factors)


def weekly_climate(weather: Dict[str, Any]) -> Dict[str, float]:
    """Moyennes sur 7 jours : température (moyenne max/min), pluie cumulée, humidité."""
    days = (weather.get("forecast") or [])[:7]
    current_humidity = (weather.get("current") or {}).get("humidity") or 0
    if not days:
        return {"avgTemp": (weather.get("current") or {}).get("temperature") or 0,
                "totalRain": 0.0, "avgHumidity": current_humidity}

    temps = []
    for day in days:
        t = day.get("temperature") or {}
        values = [v for v in (t.get("max"), t.get("min")) if v is not None]
        if values:
            temps.append(sum(values) / len(values))
    humidities = [day["humidity"] if day.get("humidity") is not None else current_humidity for day in days]
    return {
        "avgTemp": sum(temps) / len(temps) if temps else 0,
        "totalRain": sum(day.get("precipitation") or 0 for day in days),
        "avgHumidity": sum(humidities) / len(humidities),
    }


def climate_score(crop: Dict[str, Any], climate: Dict[str, float]) -> float:
    c = crop["climate"]
    temp = score_in_range(climate["avgTemp"], c["optimalTemp"]["min"], c["optimalTemp"]["max"])
    rain = score_in_range(climate["totalRain"] * 52, c["rainfall"]["min"], c["rainfall"]["max"])
    humidity = score_in_range(climate["avgHumidity"], c["humidity"]["min"], c["humidity"]["max"])
    return (temp + rain + humidity) / 3


def soil_score(crop: Dict[str, Any], soil: Dict[str, Any]) -> float:
    """Moyenne des critères disponibles ; 70 (neutre) sans donnée sol."""
    req = crop["soil"]
    scores = []
    if soil.get("ph") is not None:
        scores.append(score_in_range(soil["ph"], req["ph"]["min"], req["ph"]["max"]))
    if soil.get("type"):
        scores.append(100 if soil["type"] in req["type"] else 60)
    if soil.get("drainage"):
        scores.append(100 if soil["drainage"] == req["drainage"] else 70)
    if soil.get("organicMatter") is not None:
        scores.append(score_in_range(soil["organicMatter"], req["organicMatter"]["min"], req["organicMatter"]["max"]))
    return sum(scores) / len(scores) if scores else 70.0


def economic_score(crop: Dict[str, Any], farm_size: float, budget: str, market_access: str) -> float:
    eco = crop["economics"]
    investment = eco["seedCost"] * farm_size
    revenue = eco["expectedYield"] * farm_size * eco["marketPrice"]
    roi = (revenue - investment) / investment * 100

    if budget == "high" or (budget == "low" and investment < 5000) or (budget == "medium" and investment < 15000):
        budget_score = 100
    else:
        budget_score = 50

    market_score = 70
    if market_access == "export" and crop["category"] == "vegetable":
        market_score = 100
    if market_access == "local" and crop["category"] == "cereal":
        market_score = 90

    return (budget_score + market_score + min(100.0, roi)) / 3


def farmer_score(crop: Dict[str, Any], experience: str, risk_tolerance: str) -> float:
    difficulty = crop["growing"]["difficulty"]
    experience_score = 100
    if experience == "beginner" and difficulty == "hard":
        experience_score = 40
    elif experience == "beginner" and difficulty == "medium":
        experience_score = 70
    elif experience == "intermediate" and difficulty == "hard":
        experience_score = 80

    crop_risk = average_crop_risk(crop)
    risk_score = 100
    if risk_tolerance == "low" and crop_risk > 3:
        risk_score = 50
    if risk_tolerance == "medium" and crop_risk > 4:
        risk_score = 70
    return (experience_score + risk_score) / 2


def seasonal_score(crop: Dict[str, Any], season: str) -> float:
    seasons = crop["climate"]["season"]
    if "all_year" in seasons or season in seasons:
        return 100
    if next_season(season) in seasons:
        return 80
    return 40


def risk_score(crop: Dict[str, Any], climate: Dict[str, float]) -> float:
    weather_risk = 0
    if climate["avgTemp"] > 35 or climate["avgTemp"] < 10:
        weather_risk += 20
    if climate["totalRain"] > 100:
        weather_risk += 15
    if climate["totalRain"] < 5:
        weather_risk += 10
    return max(0.0, 100 - (weather_risk + average_crop_risk(crop) * 10))


def profit_projection(crop: Dict[str, Any], farm_size: float) -> Dict[str, Any]:
    eco = crop["economics"]
    investment = eco["seedCost"] * farm_size
    revenue = eco["expectedYield"] * farm_size * eco["marketPrice"]
    profit = revenue - investment
    return {
        "investment": investment,
        "revenue": revenue,
        "profit": profit,
        "margin": eco["profitMargin"],
        "roi": f"{profit / investment * 100:.1f}",
        "paybackPeriod": math.ceil(crop["growing"]["duration"] / 30),
    }


def water_requirement(crop: Dict[str, Any], climate: Dict[str, float]) -> Dict[str, Any]:
    requirement = WATER_NEED_MM.get(crop["growing"]["waterNeed"], 400)
    natural = climate["totalRain"] * 15
    needed = max(0.0, requirement - natural)
    return {
        "total": requirement,
        "naturalRainfall": natural,
        "irrigationNeeded": needed,
        "efficiency": needed / requirement,
    }


def best_planting_time(crop: Dict[str, Any], month: int) -> str:
    seasons = crop["climate"]["season"]
    if "all_year" in seasons:
        return "Any time of year"
    if any(month in SEASON_MONTHS.get(s, []) for s in seasons):
        return "Plant now"
    for offset in range(1, 13):
        future = (month + offset - 1) % 12 + 1
        if any(future in SEASON_MONTHS.get(s, []) for s in seasons):
            return f"Best time: {MONTH_ABBR[future - 1]}"
    return "Check seasonal calendar"


def seasonal_calendar(recommendations: List[Dict[str, Any]]) -> Dict[str, Any]:
    calendar = {}
    for season, info in PLANTING_CALENDAR.items():
        matching = [
            crop for crop in recommendations
            if season in crop["climate"]["season"] or "all_year" in crop["climate"]["season"]
        ][:3]
        calendar[season] = {
            **info,
            "recommendedCrops": [
                {
                    "name": crop["name"],
                    "duration": crop["growing"]["duration"],
                    "expectedYield": crop["economics"]["expectedYield"],
                    "score": crop["overallScore"],
                }
                for crop in matching
            ],
        }
    return calendar


def climate_adaptation(climate: Dict[str, float], recommendations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    strategies = []
    if climate["avgTemp"] > 32:
        strategies.append({
            "risk": "High Temperature",
            "impact": "Heat stress on crops",
            "strategies": ADAPTATION_STRATEGIES["temperature"],
            "priority": "high",
            "affectedCrops": [c["name"] for c in recommendations if c["climate"]["optimalTemp"]["max"] < climate["avgTemp"]],
        })
    if climate["totalRain"] < 10:
        strategies.append({
            "risk": "Low Rainfall",
            "impact": "Drought stress and water scarcity",
            "strategies": ADAPTATION_STRATEGIES["drought"],
            "priority": "high",
            "affectedCrops": [c["name"] for c in recommendations if c["growing"]["waterNeed"] in ("high", "very_high")],
        })
    if climate["totalRain"] > 80:
        strategies.append({
            "risk": "Excessive Rainfall",
            "impact": "Flooding and waterlogging",
            "strategies": ADAPTATION_STRATEGIES["flood"],
            "priority": "medium",
            "affectedCrops": [c["name"] for c in recommendations if c["riskFactors"]["flood"] == "high"],
        })
    return strategies


# ── Service ──────────────────────────────────────────────────

class CropRecommendationService:

    def __init__(self, irrigation: Optional[IrrigationService] = None,
                 today: Callable[[], date] = date.today):
        self._irrigation = irrigation
        self._today = today

    @property
    def irrigation(self) -> IrrigationService:
        return self._irrigation or get_irrigation_service()

    @staticmethod
    def get_crop(crop_type: str) -> Optional[Dict[str, Any]]:
        return CROP_DATABASE.get((crop_type or "").lower())

    def score_crops(self, weather: Dict[str, Any], soil: Dict[str, Any], farm_size: float = 1.0,
                    experience: str = "beginner", budget: str = "medium", market_access: str = "local",
                    risk_tolerance: str = "medium") -> List[Dict[str, Any]]:
        """Toutes les cultures de la base, triées par score global décroissant."""
        month = self._today().month
        season = current_season(month)
        climate = weekly_climate(weather)

        scored = []
        for key, crop in CROP_DATABASE.items():
            scores = {
                "climate": climate_score(crop, climate),
                "soil": soil_score(crop, soil),
                "economic": economic_score(crop, farm_size, budget, market_access),
                "farmer": farmer_score(crop, experience, risk_tolerance),
                "seasonal": seasonal_score(crop, season),
                "risk": risk_score(crop, climate),
            }
            overall = sum(scores[name] * weight for name, weight in SCORE_WEIGHTS.items())
            suitability = {name: round(value) for name, value in scores.items()}
            suitability["overall"] = round(overall)
            scored.append({
                "cropKey": key,
                **crop,
                "suitabilityScores": suitability,
                "overallScore": round(overall),
                "recommendation": recommendation_level(overall),
                "profitProjection": profit_projection(crop, farm_size),
                "waterRequirement": water_requirement(crop, climate),
                "bestPlantingTime": best_planting_time(crop, month),
            })
        scored.sort(key=lambda c: c["overallScore"], reverse=True)
        return scored

    def get_recommendations(self, lat: float, lon: float, farm_size: float = 1.0, soil_type: str = "unknown",
                            experience: str = "beginner", budget: str = "medium", market_access: str = "local",
                            risk_tolerance: str = "medium") -> Dict[str, Any]:
        weather = self.irrigation.get_weather_forecast(lat, lon)
        try:
            soil = self.irrigation.get_soil_data(lat, lon)
        except ApiError as e:
            logger.warning("Soil data unavailable for crop recommendations: %s", e.message)
            soil = {}
        if soil_type and soil_type != "unknown":
            soil = {**soil, "type": soil_type}

        ranked = self.score_crops(weather, soil, farm_size, experience, budget, market_access, risk_tolerance)
        top = ranked[:6]
        climate = weekly_climate(weather)
        logger.info("Crop recommendations computed (lat=%s lon=%s top=%s)", lat, lon, top[0]["cropKey"])
        return {
            "topRecommendations": top[:3],
            "allRecommendations": top,
            "seasonalCalendar": seasonal_calendar(top),
            "climateAdaptation": climate_adaptation(climate, top),
            "location": {"latitude": lat, "longitude": lon},
            "environmental": {"weather": weather, "soil": soil},
            "metadata": {
                "calculatedAt": utc_now_iso(),
                "parameters": {
                    "farmSize": farm_size, "soilType": soil_type, "experience": experience,
                    "budget": budget, "marketAccess": market_access, "riskTolerance": risk_tolerance,
                },
                "totalCropsEvaluated": len(CROP_DATABASE),
            },
        }

    def compare_crops(self, crops: List[str], lat: float, lon: float, farm_size: float = 1.0,
                      soil_type: str = "unknown") -> Dict[str, Any]:
        unknown = [c for c in crops if c not in CROP_DATABASE]
        if unknown:
            raise ApiError("Some requested crops not found", 400)

        weather = self.irrigation.get_weather_forecast(lat, lon)
        soil = {"type": soil_type} if soil_type and soil_type != "unknown" else {}
        ranked = self.score_crops(weather, soil, farm_size)
        selected = [c for c in ranked if c["cropKey"] in crops]
        return {
            "crops": [
                {
                    "key": c["cropKey"],
                    "name": c["name"],
                    "overallScore": c["overallScore"],
                    "scores": c["suitabilityScores"],
                    "economics": c["profitProjection"],
                    "duration": c["growing"]["duration"],
                    "difficulty": c["growing"]["difficulty"],
                }
                for c in selected
            ],
            "summary": {
                "bestOverall": max(selected, key=lambda c: c["overallScore"])["name"],
                "mostProfitable": max(selected, key=lambda c: c["profitProjection"]["profit"])["name"],
            },
        }


_crop_service: Optional[CropRecommendationService] = None


def get_crop_recommendation_service() -> CropRecommendationService:
    global _crop_service
    if _crop_service is None:
        _crop_service = CropRecommendationService()
    return _crop_service
