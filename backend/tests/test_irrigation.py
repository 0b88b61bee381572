"""
Tests — Recommandations d'irrigation (bilan hydrique, classification, routes).
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from agrilo.core.errors import ApiError
from agrilo.main import app
from agrilo.services.irrigation import (
    IrrigationService,
    classify,
    crop_coefficient,
    evapotranspiration,
    get_irrigation_service,
)
from conftest import auth_headers, make_farm, make_user

NOW = datetime(2026, 10, 19, 6, 0, tzinfo=timezone.utc)


def open_meteo_weather(rain=(0, 0, 0, 0, 0, 0, 0), temperature=28.0):
    return {
        "current": {"temperature_2m": temperature, "relative_humidity_2m": 40, "wind_speed_10m": 8, "weather_code": 1},
        "daily": {
            "time": [f"2026-10-{19 + i}" for i in range(7)],
            "temperature_2m_max": [31] * 7,
            "temperature_2m_min": [19] * 7,
            "precipitation_sum": list(rain),
            "precipitation_probability_max": [10] * 7,
            "weather_code": [1] * 7,
        },
    }


def open_meteo_soil(moisture):
    return {"hourly": {
        "soil_moisture_0_to_1cm": [moisture],
        "soil_moisture_3_to_9cm": [moisture],
        "soil_moisture_9_to_27cm": [moisture],
        "soil_temperature_0cm": [24.0],
        "soil_temperature_18cm": [22.0],
    }}


def make_service(weather=None, soil=None, weather_error=None, soil_error=None):
    client = MagicMock()
    if weather_error:
        client.get_weather_data.side_effect = weather_error
    else:
        client.get_weather_data.return_value = weather or open_meteo_weather()
    if soil_error:
        client.get_soil_data.side_effect = soil_error
    else:
        client.get_soil_data.return_value = soil or open_meteo_soil(0.3)
    client.get_air_quality.side_effect = ApiError("air quality down", 503)
    return IrrigationService(client=client, clock=lambda: NOW)


class TestCalculations:

    def test_crop_coefficient_aliases(self):
        assert crop_coefficient("Tomatoes", "mid") == 1.15
        assert crop_coefficient("maize", "initial") == 0.3
        assert crop_coefficient("okra", "late") == 0.7

    def test_et_increases_with_heat(self):
        cool = evapotranspiration({"temperature": 15, "humidity": 50, "windSpeed": 2}, "tomato")
        hot = evapotranspiration({"temperature": 35, "humidity": 50, "windSpeed": 2}, "tomato")
        assert hot["etCrop"] > cool["etCrop"]

    def test_classify_prefers_urgent_over_rain_forecast_below_10mm(self):
        balance = {"currentMoisture": 20, "totalCapacity": 120, "moisturePercentage": 17,
                   "isCritical": True, "isOptimal": False}
        assert classify(balance, upcoming_rain=8, field_size=1)["status"] == "urgent"
        assert classify(balance, upcoming_rain=12, field_size=1)["status"] == "skip"


class TestIrrigationService:

    def test_dry_soil_is_urgent(self):
        result = make_service(soil=open_meteo_soil(0.1)).calculate_recommendation(
            18.5, 73.8, crop_type="tomato", soil_type="loam", field_size=1.0,
        )
        rec = result["recommendation"]
        assert rec["status"] == "urgent"
        assert rec["action"] == "irrigate_now"
        # capacité 200 mm/m * 0.6 m = 120 ; humidité 10 % → 12 ; cible 80 %
        assert rec["amount"] == round((120 * 0.8 - 12) * 10)
        assert rec["nextAssessment"] == "2026-10-19T12:00:00+00:00"
        assert result["metadata"]["dataAvailability"]["airQuality"] is False

    def test_heavy_rain_forecast_skips(self):
        service = make_service(weather=open_meteo_weather(rain=(6, 6, 0, 0, 0, 0, 0)), soil=open_meteo_soil(0.4))
        rec = service.calculate_recommendation(18.5, 73.8, soil_type="loam")["recommendation"]
        assert rec["status"] == "skip"
        assert rec["amount"] == 0

    def test_wet_soil_is_optimal(self):
        rec = make_service(soil=open_meteo_soil(0.8)).calculate_recommendation(18.5, 73.8)["recommendation"]
        assert rec["status"] == "optimal"

    def test_weather_failure_is_503(self):
        service = make_service(weather_error=ApiError("down", 503))
        with pytest.raises(ApiError) as exc:
            service.calculate_recommendation(18.5, 73.8)
        assert exc.value.status_code == 503
        assert exc.value.message.startswith("Weather data unavailable")

    def test_soil_failure_uses_defaults(self):
        service = make_service(soil_error=ApiError("down", 503))
        result = service.calculate_recommendation(18.5, 73.8, soil_type="clay")
        assert result["soil"]["source"] == "default"
        assert result["recommendation"]["dataSource"]["soil"] == "limited"
        assert result["metadata"]["warnings"]


@pytest.fixture
def irrigation_override():
    service = make_service(soil=open_meteo_soil(0.1))
    app.dependency_overrides[get_irrigation_service] = lambda: service
    yield service
    app.dependency_overrides.pop(get_irrigation_service, None)


class TestIrrigationRoutes:

    def test_recommendation_for_owned_farm(self, client, irrigation_override):
        user_id, token = make_user()
        farm_id = make_farm(user_id, name="Field", center_latitude=18.5, center_longitude=73.8,
                            crops=[{"cropName": "corn"}])
        res = client.post("/api/irrigation/recommendation", headers=auth_headers(token),
                          json={"farmId": farm_id, "fieldId": "north"})
        assert res.status_code == 200
        data = res.json()["data"]
        assert data["recommendation"]["status"] == "urgent"
        assert data["farm"] == {"id": farm_id, "name": "Field", "fieldId": "north"}
        assert data["metadata"]["crop"]["type"] == "corn"

    def test_recommendation_is_not_a_get(self, client, irrigation_override):
        user_id, token = make_user()
        farm_id = make_farm(user_id, name="Field", center_latitude=18.5, center_longitude=73.8)
        res = client.get(f"/api/irrigation/recommendation?farmId={farm_id}&fieldId=main",
                         headers=auth_headers(token))
        assert res.status_code == 405

    @pytest.mark.parametrize("override", [
        {"growthStage": "bloom"},
        {"soilType": "lava"},
        {"fieldSize": 0.05},
        {"fieldId": ""},
        {"lastIrrigation": "yesterday"},
    ])
    def test_invalid_body(self, client, irrigation_override, override):
        user_id, token = make_user()
        farm_id = make_farm(user_id, name="Field", center_latitude=18.5, center_longitude=73.8)
        res = client.post("/api/irrigation/recommendation", headers=auth_headers(token),
                          json={"farmId": farm_id, "fieldId": "main", **override})
        assert res.status_code == 400
        assert res.json()["message"] == "Validation failed"

    def test_body_overrides_farm_defaults(self, client, irrigation_override, monkeypatch):
        user_id, token = make_user()
        farm_id = make_farm(user_id, name="Field", center_latitude=18.5, center_longitude=73.8, soil_type="loam")
        calls = []
        monkeypatch.setattr(irrigation_override, "calculate_recommendation",
                            lambda lat, lon, **kwargs: calls.append(kwargs) or {"recommendation": {}})
        client.post("/api/irrigation/recommendation", headers=auth_headers(token), json={
            "farmId": farm_id, "fieldId": "main", "cropType": "rice", "growthStage": "late",
            "soilType": "clay", "fieldSize": 3.5, "lastIrrigation": "2024-05-01T06:00:00Z",
        })
        kwargs = calls[0]
        assert kwargs["crop_type"] == "rice"
        assert kwargs["growth_stage"] == "late"
        assert kwargs["soil_type"] == "clay"
        assert kwargs["field_size"] == 3.5
        assert kwargs["last_irrigation"].isoformat() == "2024-05-01T06:00:00+00:00"

    def test_missing_coordinates(self, client, irrigation_override):
        user_id, token = make_user()
        farm_id = make_farm(user_id, name="Field")
        res = client.post("/api/irrigation/recommendation", headers=auth_headers(token),
                          json={"farmId": farm_id, "fieldId": "main"})
        assert res.status_code == 400
        assert res.json()["message"] == "Farm location coordinates are required"

    def test_log_and_history(self, client):
        user_id, token = make_user()
        farm_id = make_farm(user_id, name="Field")
        res = client.post("/api/irrigation/log", headers=auth_headers(token), json={
            "farmId": farm_id, "recommendationType": "urgent", "amount": 500, "method": "drip",
        })
        assert res.status_code == 201
        history = client.get(f"/api/irrigation/history?farmId={farm_id}", headers=auth_headers(token)).json()
        assert history["data"]["count"] == 1
        assert history["data"]["logs"][0]["actualAmount"] == 500

    def test_foreign_farm_is_404(self, client):
        owner_id, _ = make_user(phone="+915555555555")
        farm_id = make_farm(owner_id, name="Not yours")
        _, token = make_user(phone="+916666666666")
        res = client.get(f"/api/irrigation/history?farmId={farm_id}", headers=auth_headers(token))
        assert res.status_code == 404
