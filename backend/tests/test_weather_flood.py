"""
Tests — Services météo, inondation et géocodage au-dessus de la passerelle OpenEPI.
"""

from unittest.mock import MagicMock

import pytest
import requests

from agrilo.core.errors import ApiError
from agrilo.services.external_apis.openepi import OpenEpiService
from agrilo.services.flood import FloodApiService
from agrilo.services.weather import (
    WeatherApiService,
    apparent_temperature,
    format_weather_description,
    transform_current,
    transform_forecast,
)


def entry(time, temp, humidity=50, wind=3, symbol="clearsky_day", precip=0.0, probability=None, block="next_1_hours"):
    details = {"precipitation_amount": precip}
    if probability is not None:
        details["probability_of_precipitation"] = probability
    return {
        "time": time,
        "data": {
            "instant": {"details": {"air_temperature": temp, "relative_humidity": humidity, "wind_speed": wind}},
            block: {"summary": {"symbol_code": symbol}, "details": details},
        },
    }


PAYLOAD = {"properties": {"timeseries": [
    entry("2026-10-19T06:00:00Z", 20, humidity=60, wind=3, symbol="rain", precip=2.0, probability=80),
    entry("2026-10-19T12:00:00Z", 30, humidity=40, wind=5, probability=10),
    entry("2026-10-20T12:00:00Z", 36, symbol="cloudy", precip=6.0, block="next_6_hours"),
]}}


class TestWeatherTransforms:

    def test_current_conditions(self):
        result = transform_current(PAYLOAD, 18.52, 73.85)
        current = result["current"]
        assert current["temperature"] == 20
        assert current["description"] == "rain"
        assert current["precipitation"] == 2.0
        assert current["feelsLike"] == pytest.approx(18.5, abs=0.2)
        assert result["location"]["name"] == "Unknown"

    def test_forecast_groups_by_day(self):
        first, second = transform_forecast(PAYLOAD, 7)
        assert first["date"] == "2026-10-19"
        assert first["temperature"] == {"min": 20, "max": 30, "avg": 25.0}
        assert first["humidity"] == 50.0
        assert first["precipitation"] == 2.0
        assert first["precipitationProbability"] == 80
        assert first["description"] == "clearsky_day"
        # sans probabilité amont : 10 % par mm
        assert second["precipitationProbability"] == 60
        assert len(transform_forecast(PAYLOAD, 1)) == 1

    def test_descriptions(self):
        assert format_weather_description("partlycloudy_day") == "Partly Cloudy"
        assert format_weather_description("sleetshowers_day") == "Sleetshowers Day"
        assert format_weather_description(None) == "Unknown"

    def test_apparent_temperature_without_data(self):
        assert apparent_temperature(None, 50, 2) is None


class TestWeatherApiService:

    def test_current_weather_shape(self):
        openepi = MagicMock()
        openepi.get_weather_data.return_value = PAYLOAD
        result = WeatherApiService(openepi=openepi).get_current_weather(18.52, 73.85)
        assert set(result) >= {"location", "current", "forecast", "alerts", "agriculturalInsights", "lastUpdated"}
        assert result["agriculturalInsights"]["harvesting"]["conditions"] == "unfavorable"
        assert openepi.get_weather_data.call_args[1] == {"cache_ttl": 1800}

    def test_alert_thresholds(self):
        alerts = WeatherApiService.build_alerts({"temperature": 36, "windSpeed": 21})
        assert [a["type"] for a in alerts] == ["heat_warning", "wind_warning"]
        assert WeatherApiService.build_alerts({"temperature": 35, "windSpeed": 20}) == []

    def test_alerts_failure_is_503(self):
        openepi = MagicMock()
        openepi.get_weather_data.side_effect = ApiError("OpenEPI API is unreachable.", 503)
        with pytest.raises(ApiError) as exc:
            WeatherApiService(openepi=openepi).get_weather_alerts(1.0, 2.0)
        assert exc.value.message == "Weather alerts service temporarily unavailable"

    def test_missing_coordinates(self):
        with pytest.raises(ApiError) as exc:
            WeatherApiService(openepi=MagicMock()).get_weather_forecast(1.0, None)
        assert exc.value.status_code == 400


class TestFloodApiService:

    def test_defaults_when_upstream_is_sparse(self):
        openepi = MagicMock()
        openepi.get_flood_risk.return_value = {}
        risk = FloodApiService(openepi=openepi).get_flood_risk(23.8, 90.4)
        assert risk["riskLevel"] == "moderate"
        assert risk["riskScore"] == 50
        assert "Monitor weather forecasts closely" in risk["recommendations"]

    def test_high_risk_recommendations(self):
        openepi = MagicMock()
        openepi.get_flood_risk.return_value = {"risk_level": "high", "risk_score": 82}
        risk = FloodApiService(openepi=openepi).get_flood_risk(23.8, 90.4)
        assert risk["riskScore"] == 82
        assert risk["recommendations"][0] == "IMMEDIATE ACTION REQUIRED"

    def test_history_requires_dates(self):
        with pytest.raises(ApiError) as exc:
            FloodApiService(openepi=MagicMock()).get_historical_floods(1.0, 2.0, "2025-01-01", "")
        assert exc.value.status_code == 400

    def test_preparedness_per_crop(self):
        plan = FloodApiService.get_flood_preparedness("extreme", ["Rice", "millet"])
        assert plan["riskActions"][0].startswith("EXTREME FLOOD WARNING")
        assert plan["cropSpecificActions"]["Rice"][0] == "Monitor water levels carefully"
        assert plan["cropSpecificActions"]["millet"][0] == "Monitor crop condition closely"


def make_gateway(nominatim):
    return OpenEpiService(base_url="https://api.test", session=MagicMock(), nominatim=nominatim)


class TestGeocoding:

    def test_forward_geocoding_features(self):
        nominatim = MagicMock()
        nominatim.search.return_value = [{
            "display_name": "Pune, Maharashtra, India", "lat": "18.52", "lon": "73.85",
            "type": "city", "importance": 0.7, "address": {"city": "Pune", "country_code": "in"},
        }]
        result = make_gateway(nominatim).geocode_address(" Pune ")
        feature = result["features"][0]
        assert feature["coordinates"] == [73.85, 18.52]
        assert feature["components"]["country_code"] == "IN"
        assert feature["relevance"] == 0.7

    def test_forward_geocoding_errors(self):
        nominatim = MagicMock()
        nominatim.search.return_value = []
        with pytest.raises(ApiError) as exc:
            make_gateway(nominatim).geocode_address("Atlantis")
        assert exc.value.status_code == 404

        nominatim.search.side_effect = requests.Timeout("slow")
        with pytest.raises(ApiError) as exc:
            make_gateway(nominatim).geocode_address("Pune")
        assert exc.value.message == "Geocoding service unavailable"

    def test_reverse_geocoding_name(self):
        nominatim = MagicMock()
        nominatim.reverse.return_value = {
            "display_name": "Nashik, Maharashtra, India",
            "address": {"town": "Nashik", "state": "Maharashtra", "country": "India"},
        }
        result = make_gateway(nominatim).reverse_geocode(20.0, 73.78)
        assert result["address"]["formatted"] == "Nashik, Maharashtra, India"

    def test_location_name_prefers_known_city(self):
        nominatim = MagicMock()
        assert make_gateway(nominatim).get_location_name_from_coordinates(28.70, 77.10) == "Delhi, India"
        nominatim.reverse.assert_not_called()

    def test_location_name_falls_back_to_coordinates(self):
        nominatim = MagicMock()
        nominatim.reverse.side_effect = requests.ConnectionError("offline")
        assert make_gateway(nominatim).get_location_name_from_coordinates(-1.5, 36.9) == "-1.5000, 36.9000"
