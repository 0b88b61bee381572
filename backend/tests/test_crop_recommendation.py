"""
Tests — Recommandation de cultures (scores, classement, comparaison, routes planning).
"""

from datetime import date
from unittest.mock import MagicMock

import pytest

from agrilo.core.errors import ApiError
from agrilo.main import app
from agrilo.services.crop_recommendation import (
    CROP_DATABASE,
    CropRecommendationService,
    current_season,
    get_crop_recommendation_service,
    score_in_range,
    seasonal_score,
)
from agrilo.services.irrigation import process_weather
from conftest import auth_headers, make_farm, make_user

WEATHER = process_weather({
    "current": {"temperature_2m": 27, "relative_humidity_2m": 70, "wind_speed_10m": 5, "weather_code": 2},
    "daily": {
        "time": [f"2026-10-{19 + i}" for i in range(7)],
        "temperature_2m_max": [31] * 7,
        "temperature_2m_min": [21] * 7,
        "precipitation_sum": [2] * 7,
        "precipitation_probability_max": [30] * 7,
        "weather_code": [2] * 7,
    },
})


def make_service(soil_error=True):
    irrigation = MagicMock()
    irrigation.get_weather_forecast.return_value = WEATHER
    if soil_error:
        irrigation.get_soil_data.side_effect = ApiError("Soil data unavailable from Open-Meteo", 404)
    else:
        irrigation.get_soil_data.return_value = {"type": "loam", "ph": 6.5, "organicMatter": 3.5, "drainage": "good"}
    return CropRecommendationService(irrigation=irrigation, today=lambda: date(2026, 10, 19)), irrigation


class TestScoring:

    def test_score_in_range(self):
        assert score_in_range(25, 20, 30) == 100
        # tolérance = 30 % de la largeur (3) ; 1.5 hors plage → 50
        assert score_in_range(31.5, 20, 30) == pytest.approx(50)
        assert score_in_range(40, 20, 30) == 0

    @pytest.mark.parametrize("month,season", [(1, "winter"), (4, "spring"), (7, "summer"), (10, "autumn")])
    def test_current_season(self, month, season):
        assert current_season(month) == season

    def test_seasonal_score_next_season_bonus(self):
        crop = {"climate": {"season": ["winter"]}}
        assert seasonal_score(crop, "winter") == 100
        assert seasonal_score(crop, "autumn") == 80
        assert seasonal_score(crop, "summer") == 40


class TestRecommendations:

    def test_ranking_is_sorted_and_complete(self):
        service, _ = make_service(soil_error=False)
        result = service.get_recommendations(18.5, 73.8, farm_size=2.0, soil_type="loam")
        scores = [c["overallScore"] for c in result["allRecommendations"]]
        assert scores == sorted(scores, reverse=True)
        assert len(result["topRecommendations"]) == 3
        assert result["metadata"]["totalCropsEvaluated"] == len(CROP_DATABASE)

    def test_soil_failure_does_not_block(self):
        service, _ = make_service(soil_error=True)
        result = service.get_recommendations(18.5, 73.8)
        assert result["environmental"]["soil"] == {}
        assert result["topRecommendations"]

    def test_beginner_penalised_on_hard_crops(self):
        service, _ = make_service()
        beginner = {c["cropKey"]: c for c in service.score_crops(WEATHER, {}, experience="beginner")}
        expert = {c["cropKey"]: c for c in service.score_crops(WEATHER, {}, experience="expert")}
        for key, crop in CROP_DATABASE.items():
            if crop["growing"]["difficulty"] == "hard":
                assert beginner[key]["suitabilityScores"]["farmer"] < expert[key]["suitabilityScores"]["farmer"]

    def test_compare_unknown_crop(self):
        service, _ = make_service()
        with pytest.raises(ApiError) as exc:
            service.compare_crops(["tomato", "dragonfruit"], 18.5, 73.8)
        assert exc.value.status_code == 400

    def test_compare_crops_summary(self):
        service, _ = make_service()
        result = service.compare_crops(["tomato", "wheat"], 18.5, 73.8)
        assert {c["key"] for c in result["crops"]} == {"tomato", "wheat"}
        assert result["summary"]["bestOverall"] in ("Tomato", "Wheat")


@pytest.fixture
def crop_override():
    service, irrigation = make_service()
    app.dependency_overrides[get_crop_recommendation_service] = lambda: service
    yield irrigation
    app.dependency_overrides.pop(get_crop_recommendation_service, None)


class TestPlanningRoutes:

    def test_recommendations_use_default_location_without_farm(self, client, crop_override):
        _, token = make_user()
        res = client.post("/api/planning/recommendations", json={}, headers=auth_headers(token))
        assert res.status_code == 200
        crop_override.get_weather_forecast.assert_called_with(28.7041, 77.1025)
        weather = res.json()["data"]["environmental"]["weather"]
        assert set(weather) == {"current", "forecast", "source"}
        assert len(weather["forecast"]) == 5

    def test_unknown_farm_is_404(self, client, crop_override):
        _, token = make_user()
        res = client.post("/api/planning/recommendations", json={"farmId": "nope"}, headers=auth_headers(token))
        assert res.status_code == 404

    def test_recommendations_use_farm_location(self, client, crop_override):
        user_id, token = make_user()
        farm_id = make_farm(user_id, name="Farm", center_latitude=11.0, center_longitude=76.9)
        client.post("/api/planning/recommendations", json={"farmId": farm_id}, headers=auth_headers(token))
        crop_override.get_weather_forecast.assert_called_with(11.0, 76.9)

    def test_crop_details(self, client):
        _, token = make_user()
        res = client.get("/api/planning/crop-details/Tomato", headers=auth_headers(token))
        assert res.status_code == 200
        assert res.json()["data"]["crop"]["key"] == "tomato"
        assert client.get("/api/planning/crop-details/kiwi", headers=auth_headers(token)).status_code == 404

    def test_compare_requires_two_crops(self, client, crop_override):
        _, token = make_user()
        res = client.post("/api/planning/compare-crops", json={"crops": ["tomato"]}, headers=auth_headers(token))
        assert res.status_code == 400
