"""
Tests unitaires — Service sol (conversion SoilGrids, nutriments, aptitude).
"""

from unittest.mock import MagicMock

import pytest

from agrilo.core.errors import ApiError
from agrilo.services.soil import (
    SoilApiService,
    extract_layer_values,
    nutrient_status,
    soil_health_score,
    texture_class,
)


def layer(code, mean, d_factor=None):
    entry = {"code": code, "depths": [{"label": "0-30cm", "values": {"mean": mean}}]}
    if d_factor is not None:
        entry["unit_measure"] = {"d_factor": d_factor}
    return entry


SOIL_PAYLOAD = {
    "properties": {
        "layers": [
            layer("phh2o", 55, 10),
            layer("soc", 120, 10),
            layer("nitrogen", 5000, 100),
            layer("cec", 80, 10),
            layer("bdod", 132, 100),
            layer("clay", 200, 10),
            layer("sand", 400, 10),
            layer("silt", 400, 10),
        ]
    }
}


@pytest.fixture
def service():
    openepi = MagicMock()
    openepi.get_soil_data.return_value = SOIL_PAYLOAD
    openepi.get_soil_health.return_value = SOIL_PAYLOAD
    return SoilApiService(openepi=openepi)


class TestParsing:

    def test_d_factor_conversion(self):
        values = extract_layer_values(SOIL_PAYLOAD)
        assert values["phh2o"] == 5.5
        assert values["nitrogen"] == 50.0
        assert values["bdod"] == 1.32

    def test_default_d_factor_when_missing(self):
        values = extract_layer_values({"properties": {"layers": [layer("phh2o", 65)]}})
        assert values["phh2o"] == 6.5

    @pytest.mark.parametrize("clay,sand,silt,expected", [
        (45, 20, 35, "clay"),
        (10, 75, 15, "sandy"),
        (10, 30, 60, "silt_loam"),
        (20, 40, 40, "loam"),
        (None, 40, 40, "unknown"),
    ])
    def test_texture_class(self, clay, sand, silt, expected):
        assert texture_class(clay, sand, silt) == expected


class TestNutrients:

    def test_nutrient_status_thresholds(self):
        assert nutrient_status(20, "nitrogen") == "low"
        assert nutrient_status(50, "nitrogen") == "optimal"
        assert nutrient_status(90, "nitrogen") == "high"

    def test_get_soil_nutrients(self, service):
        result = service.get_soil_nutrients(12.0, 77.0)
        nitrogen = result["nutrients"]["nitrogen"]
        assert nitrogen["value"] == 50.0
        assert nitrogen["status"] == "optimal"
        assert result["nutrients"]["phosphorus"]["recommendations"] == ["Data not available - consider soil testing"]
        assert "Consider lime application to raise pH for better nutrient availability" in result["generalRecommendations"]

    def test_soil_data_shape(self, service):
        data = service.get_soil_data(12.0, 77.0)
        assert data["soilType"] == "loam"
        assert data["organicMatter"] == round(12.0 / 10 * 1.724, 2)
        assert data["porosity"] == round((1 - 1.32 / 2.65) * 100, 1)

    def test_missing_coordinates(self, service):
        with pytest.raises(ApiError) as exc:
            service.get_soil_data(None, 77.0)
        assert exc.value.status_code == 400


class TestHealthAndSuitability:

    def test_health_score_penalises_acidic_soil(self):
        assert soil_health_score(7.0, 20, 2.0, 15) == 100
        assert soil_health_score(5.0, 20, 2.0, 15) == 85

    def test_potato_tolerates_acidic_soil_better_than_tomato(self, service):
        potato = service.get_soil_suitability(12.0, 77.0, "potato")["suitability"]
        tomato = service.get_soil_suitability(12.0, 77.0, "tomato")["suitability"]
        assert "pH too low for optimal growth" in tomato["limitations"]
        assert "pH too low for optimal growth" not in potato["limitations"]
        assert potato["score"] >= tomato["score"]

    def test_suitability_requires_crop(self, service):
        with pytest.raises(ApiError):
            service.get_soil_suitability(12.0, 77.0, "")
