"""
Santé des cultures : interprétation des probabilités renvoyées par le modèle
OpenEPI, recommandations de traitement et statistiques d'historique.
"""

import base64
import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from agrilo.core.errors import ApiError, utc_now_iso
from agrilo.services.db_handler import as_utc
from agrilo.services.external_apis.openepi import OpenEpiService, get_openepi_service

logger = logging.getLogger("Agrilo.CropHealth")

HEALTHY_CODE = "HLT"
CONFIDENCE_THRESHOLD = 0.5
HIGH_CONFIDENCE = 75
CONDITION_MIN_CONFIDENCE = 60

DISEASE_NAMES = {
    "HLT": "Healthy Plant",
    "CSSVD": "Cocoa Swollen Shoot Virus Disease",
    "CMD": "Cassava Mosaic Disease",
    "ANT": "Anthracnose",
    "FAW": "Fall Armyworm",
    "MLN": "Maize Lethal Necrosis",
    "BLB": "Bacterial Leaf Blight",
}

TIMEFRAMES = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}
EFFECTIVENESS_SCORES = {"excellent": 100, "good": 80, "fair": 60, "poor": 40}
HEALTHY_MARKERS = ("healthy", "good", "excellent")

PREVENTION_TIPS = {
    "tomato": [
        "Maintain proper spacing between plants",
        "Avoid overhead watering",
        "Practice crop rotation",
        "Remove diseased plant material promptly",
    ],
    "corn": [
        "Plant disease-resistant varieties",
        "Ensure good drainage",
        "Monitor for pest insects",
        "Maintain proper nutrition",
    ],
    "rice": [
        "Manage water levels carefully",
        "Use certified clean seeds",
        "Practice proper field sanitation",
        "Monitor for blast disease",
    ],
}
DEFAULT_PREVENTION_TIPS = [
    "Practice good field hygiene",
    "Monitor crops regularly",
    "Use appropriate fertilizers",
    "Implement integrated pest management",
]

RECOMMENDATIONS = {
    "CSSVD": {
        "immediate": ["Remove and destroy infected plants", "Control whitefly vectors with approved insecticides"],
        "preventive": ["Plant varieties resistant to the virus"],
        "longTerm": ["Rotate with non-host crops to break the disease cycle"],
    },
    "CMD": {
        "immediate": ["Remove and destroy plants showing mosaic symptoms"],
        "preventive": ["Only use disease-free cuttings"],
        "longTerm": ["Switch to CMD-resistant varieties"],
    },
    "ANT": {
        "immediate": ["Apply a copper-based fungicide", "Prune and dispose of infected plant parts"],
        "preventive": ["Avoid overhead irrigation and improve air circulation"],
        "longTerm": ["Practice crop rotation and field sanitation"],
    },
}
HEALTHY_RECOMMENDATIONS = {
    "immediate": [],
    "preventive": ["Continue regular crop monitoring", "Maintain balanced fertilization"],
    "longTerm": ["Keep detailed records of crop health"],
}
GENERIC_RECOMMENDATIONS = {
    "immediate": ["Isolate affected plants", "Consult a local agricultural extension officer"],
    "preventive": ["Inspect neighbouring plants for similar symptoms"],
    "longTerm": ["Practice crop rotation", "Use certified disease-free seed"],
}


def extract_probabilities(payload: Dict[str, Any]) -> Dict[str, float]:
    """Accepte {"predictions": {...}} ou directement {code: probabilité}."""
    raw = payload.get("predictions", payload) if isinstance(payload, dict) else {}
    if not isinstance(raw, dict):
        return {}
    return {code: float(p) for code, p in raw.items() if isinstance(p, (int, float)) and not isinstance(p, bool)}


def interpret_probabilities(probabilities: Dict[str, float]) -> Dict[str, Any]:
    """
    Classe la maladie la plus probable.

    Sous CONFIDENCE_THRESHOLD le résultat est marqué non concluant ; HLT
    signifie plante saine (sévérité low). Au-delà de 75 % de confiance une
    maladie est classée high, sinon medium.
    """
    if not probabilities:
        raise ApiError("Crop health model returned no predictions", 502)

    code, probability = max(probabilities.items(), key=lambda item: item[1])
    confidence = round(probability * 100, 1)
    healthy = code == HEALTHY_CODE
    if healthy:
        plant_health, severity = "excellent", "low"
    elif confidence > HIGH_CONFIDENCE:
        plant_health, severity = "poor", "high"
    else:
        plant_health, severity = "fair", "medium"

    diseases = [
        {"code": c, "name": DISEASE_NAMES.get(c, c), "probability": round(p * 100, 1)}
        for c, p in sorted(probabilities.items(), key=lambda item: item[1], reverse=True)
        if c != HEALTHY_CODE and p > 0.1
    ]
    return {
        "code": code,
        "primaryIssue": DISEASE_NAMES.get(code, code),
        "confidence": confidence,
        "confident": probability >= CONFIDENCE_THRESHOLD,
        "healthy": healthy,
        "plantHealth": plant_health,
        "severity": severity,
        "diseases": diseases,
    }


def recommendations_for(result: Dict[str, Any]) -> Dict[str, List[str]]:
    if result["healthy"]:
        plan = HEALTHY_RECOMMENDATIONS
    else:
        plan = RECOMMENDATIONS.get(result["code"], GENERIC_RECOMMENDATIONS)
    recommendations = {key: list(items) for key, items in plan.items()}
    if not result["confident"]:
        recommendations["immediate"].insert(0, "Retake the photo in daylight for a clearer diagnosis")
    return recommendations


def prevention_tips(crop_name: str) -> List[str]:
    return list(PREVENTION_TIPS.get((crop_name or "").strip().lower(), DEFAULT_PREVENTION_TIPS))


def timeframe_start(timeframe: str, now: Optional[datetime] = None) -> datetime:
    """Début de la fenêtre `7d|30d|90d|1y` ; 30 jours par défaut."""
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=TIMEFRAMES.get(timeframe, 30))


def is_healthy(entry) -> bool:
    diagnosis = (entry.diagnosis or "").lower()
    return entry.severity == "low" and any(marker in diagnosis for marker in HEALTHY_MARKERS)


def diagnosis_stats(entries: Iterable, timeframe: str) -> Dict[str, Any]:
    entries = list(entries)
    total = len(entries)
    healthy = sum(1 for e in entries if is_healthy(e))
    detected = sum(1 for e in entries if e.severity in ("medium", "high"))

    severity = Counter(e.severity or "unknown" for e in entries)

    by_crop = defaultdict(list)
    for e in entries:
        by_crop[e.crop_name or "Unknown"].append(e.confidence or 0)
    top_crops = sorted(by_crop.items(), key=lambda item: len(item[1]), reverse=True)[:5]

    trend = defaultdict(lambda: {"total": 0, "healthy": 0})
    for e in entries:
        day = as_utc(e.created_at).date().isoformat()
        trend[day]["total"] += 1
        if is_healthy(e):
            trend[day]["healthy"] += 1

    return {
        "summary": {
            "totalDiagnoses": total,
            "healthyPlants": healthy,
            "diseaseDetected": detected,
            "healthPercentage": round(healthy / total * 100) if total else 0,
        },
        "severity": dict(severity),
        "topCrops": [
            {"cropType": crop, "count": len(scores), "avgConfidence": round(sum(scores) / len(scores))}
            for crop, scores in top_crops
        ],
        "trend": [{"date": day, **counts} for day, counts in sorted(trend.items())[-30:]],
        "timeframe": timeframe,
    }


def treatment_effectiveness(treatments: Iterable[Dict[str, Any]]) -> Optional[float]:
    """Moyenne des scores d'efficacité connus ; None si aucun n'est noté."""
    scores = [EFFECTIVENESS_SCORES[t.get("effectiveness")] for t in treatments
              if t.get("effectiveness") in EFFECTIVENESS_SCORES]
    if not scores:
        return None
    return round(sum(scores) / len(scores))


def crop_conditions(entries: Iterable) -> Dict[str, Any]:
    """Conditions fréquentes (confiance >= 60) et taux de succès des traitements."""
    entries = list(entries)
    grouped = defaultdict(list)
    for e in entries:
        if e.diagnosis and (e.confidence or 0) >= CONDITION_MIN_CONFIDENCE:
            grouped[e.diagnosis].append(e)
    common = sorted(grouped.items(), key=lambda item: len(item[1]), reverse=True)[:10]

    success = defaultdict(list)
    for e in entries:
        score = treatment_effectiveness(e.treatments_applied or [])
        if score is not None and e.diagnosis:
            success[e.diagnosis].append(score)

    return {
        "commonConditions": [
            {
                "condition": condition,
                "count": len(items),
                "avgConfidence": round(sum(i.confidence for i in items) / len(items)),
                "severity": [i.severity for i in items if i.severity],
            }
            for condition, items in common
        ],
        "treatmentSuccessRates": [
            {"condition": condition, "treatedCases": len(scores),
             "averageEffectiveness": round(sum(scores) / len(scores))}
            for condition, scores in sorted(success.items())
        ],
        "totalRecords": sum(len(items) for _, items in common),
    }


class CropHealthService:
    """Envoie la photo au modèle OpenEPI et met en forme le diagnostic."""

    def __init__(self, openepi: Optional[OpenEpiService] = None):
        self._openepi = openepi

    @property
    def openepi(self) -> OpenEpiService:
        return self._openepi or get_openepi_service()

    def analyze(self, image: bytes, crop_type: str = "unknown") -> Dict[str, Any]:
        if not image:
            raise ApiError("Image file is required", 400)
        encoded = base64.b64encode(image).decode("ascii")
        payload = self.openepi.analyze_crop(encoded, crop_type)
        result = interpret_probabilities(extract_probabilities(payload))
        logger.info("Crop analysis: %s (%.1f%%, crop=%s)", result["code"], result["confidence"], crop_type)
        return {
            **result,
            "recommendations": recommendations_for(result),
            "analyzedAt": utc_now_iso(),
            "source": "OpenEPI",
        }


_crop_health: Optional[CropHealthService] = None


def get_crop_health_service() -> CropHealthService:
    global _crop_health
    if _crop_health is None:
        _crop_health = CropHealthService()
    return _crop_health
