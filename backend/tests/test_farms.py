"""
Tests — Fermes (CRUD, parcelles, sol, indicateurs) et historique des diagnostics.
"""

from unittest.mock import MagicMock

import pytest

from agrilo.core.errors import ApiError
from agrilo.main import app
from agrilo.services.crop_health import CropHealthService, get_crop_health_service
from agrilo.services.soil import get_soil_service
from conftest import auth_headers, make_farm, make_user

FARM = {
    "name": "Green Valley",
    "address": "Nashik, Maharashtra",
    "centerPoint": {"latitude": 20.0, "longitude": 73.78},
    "totalArea": 2.5,
    "soilType": "clay",
    "crops": [{"cropName": "tomato", "growthStage": "vegetative"}],
}


class TestFarms:

    def test_create_and_get(self, client):
        _, token = make_user()
        res = client.post("/api/farm", json=FARM, headers=auth_headers(token))
        assert res.status_code == 201
        farm = res.json()["data"]["farm"]
        assert farm["centerPoint"]["coordinates"] == [73.78, 20.0]
        assert farm["currentCrops"][0]["cropName"] == "tomato"

        res = client.get(f"/api/farm/{farm['id']}", headers=auth_headers(token))
        assert res.json()["data"]["farm"]["name"] == "Green Valley"

    def test_invalid_soil_type(self, client):
        _, token = make_user()
        res = client.post("/api/farm", json={**FARM, "soilType": "lava"}, headers=auth_headers(token))
        assert res.status_code == 400
        assert res.json()["message"] == "Validation failed"

    def test_partial_update(self, client):
        _, token = make_user()
        farm_id = client.post("/api/farm", json=FARM, headers=auth_headers(token)).json()["data"]["farm"]["id"]
        res = client.put(f"/api/farm/{farm_id}", json={"totalArea": 4}, headers=auth_headers(token))
        farm = res.json()["data"]["farm"]
        assert farm["totalArea"] == 4
        assert farm["soilType"] == "clay"

    def test_delete_deactivates(self, client):
        _, token = make_user()
        farm_id = client.post("/api/farm", json=FARM, headers=auth_headers(token)).json()["data"]["farm"]["id"]
        assert client.delete(f"/api/farm/{farm_id}", headers=auth_headers(token)).status_code == 200
        assert client.get(f"/api/farm/{farm_id}", headers=auth_headers(token)).status_code == 404
        assert client.get("/api/farm", headers=auth_headers(token)).json()["data"]["count"] == 0

    def test_other_users_farm_is_hidden(self, client):
        _, owner_token = make_user(phone="+915555555555")
        farm_id = client.post("/api/farm", json=FARM, headers=auth_headers(owner_token)).json()["data"]["farm"]["id"]
        _, token = make_user(phone="+916666666666")
        assert client.get(f"/api/farm/{farm_id}", headers=auth_headers(token)).status_code == 404

@pytest.fixture
def soil():
    service = MagicMock()
    service.get_soil_data.return_value = {"soilType": "clay", "ph": 6.4, "organicMatter": 2.0, "dataQuality": "medium"}
    service.get_soil_nutrients.return_value = {"nutrients": {
        "nitrogen": {"value": 0.08, "status": "low"},
        "phosphorus": {"value": None, "status": "unknown"},
        "potassium": {"value": None, "status": "unknown"},
    }}
    service.get_soil_health.return_value = {"health": {"healthScore": 72, "recommendations": ["Add compost"]}}
    app.dependency_overrides[get_soil_service] = lambda: service
    yield service
    app.dependency_overrides.pop(get_soil_service, None)


class TestFarmExtras:

    def create(self, client, token, **changes):
        return client.post("/api/farm", json={**FARM, **changes}, headers=auth_headers(token)).json()["data"]["farm"]["id"]

    def test_add_field(self, client):
        _, token = make_user()
        farm_id = self.create(client, token)
        res = client.post(f"/api/farm/{farm_id}/fields", headers=auth_headers(token),
                          json={"name": "North plot", "area": {"value": 2, "unit": "acres"}})
        assert res.status_code == 201
        assert res.json()["message"] == "Field added successfully"
        field = res.json()["data"]["field"]
        assert field["fieldId"].startswith("field_")
        assert field["status"] == "active"
        assert len(res.json()["data"]["farm"]["fields"]) == 1

    @pytest.mark.parametrize("field", [
        {"name": "N", "area": {"value": 1}},
        {"name": "North", "area": {"value": 0}},
        {"name": "North", "area": {"value": 1, "unit": "bighas"}},
    ])
    def test_invalid_field(self, client, field):
        _, token = make_user()
        farm_id = self.create(client, token)
        assert client.post(f"/api/farm/{farm_id}/fields", json=field, headers=auth_headers(token)).status_code == 400

    def test_soil_analysis_updates_farm(self, client, soil):
        _, token = make_user()
        farm_id = self.create(client, token)
        res = client.get(f"/api/farm/{farm_id}/soil-analysis", headers=auth_headers(token))
        assert res.status_code == 200
        analysis = res.json()["data"]["soilAnalysis"]
        assert analysis["recommendations"] == ["Add compost"]
        assert analysis["lastUpdated"] is None
        soil.get_soil_health.assert_called_once_with(20.0, 73.78)

        farm = client.get(f"/api/farm/{farm_id}", headers=auth_headers(token)).json()["data"]["farm"]
        assert farm["soilData"]["healthScore"] == 72
        assert farm["soilData"]["nutrients"]["nitrogen"]["status"] == "low"

    def test_soil_analysis_unavailable(self, client, soil):
        _, token = make_user()
        farm_id = self.create(client, token)
        soil.get_soil_nutrients.side_effect = ApiError("OpenEPI down", 503)
        res = client.get(f"/api/farm/{farm_id}/soil-analysis", headers=auth_headers(token))
        assert res.status_code == 503
        assert res.json()["message"] == "Soil analysis service temporarily unavailable"

    def test_manual_soil_data(self, client):
        _, token = make_user()
        farm_id = self.create(client, token)
        res = client.post(f"/api/farm/{farm_id}/soil-data", json={"ph": 5.9, "soilType": "sandy"},
                          headers=auth_headers(token))
        assert res.json()["message"] == "Soil data updated successfully"
        farm = client.get(f"/api/farm/{farm_id}", headers=auth_headers(token)).json()["data"]["farm"]
        assert farm["soilType"] == "sandy"
        assert farm["soilData"]["ph"] == 5.9
        assert farm["soilData"]["testingMethod"] == "manual"

    def test_analytics(self, client):
        _, token = make_user()
        farm_id = self.create(client, token, fields=[
            {"fieldId": "a", "area": {"value": 1, "unit": "hectares"}, "status": "active"},
            {"fieldId": "b", "area": {"value": 5000, "unit": "square_meters"}, "status": "fallow"},
        ])
        res = client.get(f"/api/farm/{farm_id}/analytics?timeRange=0", headers=auth_headers(token))
        analytics = res.json()["data"]["analytics"]
        assert analytics["overview"]["cultivatedArea"] == 1.0
        assert analytics["overview"]["utilizationRate"] == 40.0
        assert analytics["overview"]["activeFields"] == 1
        assert analytics["crops"]["cropDiversity"] == 1
        assert "trends" not in analytics

        res = client.get(f"/api/farm/{farm_id}/analytics", headers=auth_headers(token))
        assert res.json()["data"]["analytics"]["trends"]["period"] == "30 days"

    def test_nearby_farms(self, client):
        user_id, token = make_user()
        make_farm(user_id, name="Mine", center_latitude=20.0, center_longitude=73.78)
        other_id, _ = make_user(phone="+917777777777")
        make_farm(other_id, name="Neighbour", center_latitude=20.1, center_longitude=73.78)
        make_farm(other_id, name="Distant", center_latitude=25.0, center_longitude=73.78)

        res = client.get("/api/farm/nearby/20.0/73.78?radius=20", headers=auth_headers(token))
        data = res.json()["data"]
        assert data["count"] == 1
        assert data["nearbyFarms"][0]["name"] == "Neighbour"
        assert data["nearbyFarms"][0]["owner"]["firstName"] == "Ravi"

    def test_nearby_rejects_out_of_range(self, client):
        _, token = make_user()
        res = client.get("/api/farm/nearby/95/73.78", headers=auth_headers(token))
        assert res.status_code == 400
        assert res.json()["message"] == "Invalid coordinates provided"



class TestDiagnosis:

    def test_save_list_and_get(self, client):
        _, token = make_user()
        res = client.post("/api/diagnosis", headers=auth_headers(token), json={
            "cropName": "  Tomato ", "diagnosis": "Early blight", "confidence": 87.5,
            "treatment": ["Remove infected leaves"],
        })
        assert res.status_code == 201
        entry = res.json()["data"]["diagnosis"]
        assert entry["cropName"] == "tomato"

        listing = client.get("/api/diagnosis?limit=5", headers=auth_headers(token)).json()["data"]
        assert listing["count"] == 1
        res = client.get(f"/api/diagnosis/{entry['id']}", headers=auth_headers(token))
        assert res.json()["data"]["diagnosis"]["treatment"] == ["Remove infected leaves"]

    def test_unknown_diagnosis(self, client):
        _, token = make_user()
        res = client.get("/api/diagnosis/missing", headers=auth_headers(token))
        assert res.status_code == 404
        assert res.json()["message"] == "Diagnosis not found"

    def test_limit_bounds(self, client):
        _, token = make_user()
        assert client.get("/api/diagnosis?limit=500", headers=auth_headers(token)).status_code == 400


@pytest.fixture
def crop_model():
    openepi = MagicMock()
    openepi.analyze_crop.return_value = {"predictions": {"HLT": 0.1, "CMD": 0.85, "ANT": 0.05}}
    app.dependency_overrides[get_crop_health_service] = lambda: CropHealthService(openepi=openepi)
    yield openepi
    app.dependency_overrides.pop(get_crop_health_service, None)


def save_diagnosis(client, token, **fields):
    body = {"cropName": "tomato", "diagnosis": "Early blight", "confidence": 80, **fields}
    return client.post("/api/diagnosis", json=body, headers=auth_headers(token)).json()["data"]["diagnosis"]["id"]


class TestDiagnosisAnalysis:

    def test_analyze_saves_history(self, client, crop_model):
        _, token = make_user()
        res = client.post("/api/diagnosis/analyze", headers=auth_headers(token), data={"cropType": "Cassava"},
                          files={"image": ("leaf.jpg", b"\xff\xd8jpeg", "image/jpeg")})
        assert res.status_code == 201
        diagnosis = res.json()["data"]["diagnosis"]
        assert diagnosis["primaryIssue"] == "Cassava Mosaic Disease"
        assert diagnosis["severity"] == "high"
        assert diagnosis["plantHealth"] == "poor"
        assert diagnosis["recommendations"]["immediate"]
        encoded, crop = crop_model.analyze_crop.call_args[0]
        assert (encoded, crop) == ("/9hqcGVn", "cassava")

        saved = client.get(f"/api/diagnosis/{diagnosis['id']}", headers=auth_headers(token)).json()["data"]["diagnosis"]
        assert saved["confidence"] == 85.0
        assert saved["followUp"]["status"] == "pending"

    def test_missing_image(self, client, crop_model):
        _, token = make_user()
        res = client.post("/api/diagnosis/analyze", headers=auth_headers(token), data={"cropType": "maize"})
        assert res.status_code == 400
        assert res.json()["message"] == "Image file is required"

    def test_model_failure_is_500(self, client, crop_model):
        crop_model.analyze_crop.side_effect = ApiError("OpenEPI API server error. Please try again later.", 500)
        _, token = make_user()
        res = client.post("/api/diagnosis/analyze", headers=auth_headers(token),
                          files={"image": ("leaf.jpg", b"jpeg", "image/jpeg")})
        assert res.status_code == 500
        assert res.json()["message"] == "Failed to analyze crop images. Please try again."


class TestDiagnosisFollowUp:

    def test_treatment_moves_to_in_progress(self, client):
        _, token = make_user()
        diagnosis_id = save_diagnosis(client, token)
        res = client.put(f"/api/diagnosis/{diagnosis_id}/treatment", headers=auth_headers(token), json={
            "treatment": "Copper fungicide", "applicationDate": "2026-10-01T08:00:00Z",
            "method": "spray", "effectiveness": "good",
        })
        assert res.status_code == 200
        data = res.json()["data"]
        assert data["diagnosis"]["followUp"]["status"] == "in_progress"
        assert data["treatmentEffectiveness"] == 80

    def test_invalid_effectiveness(self, client):
        _, token = make_user()
        diagnosis_id = save_diagnosis(client, token)
        res = client.put(f"/api/diagnosis/{diagnosis_id}/treatment", headers=auth_headers(token), json={
            "treatment": "Neem oil", "applicationDate": "2026-10-01", "method": "spray", "effectiveness": "great",
        })
        assert res.status_code == 400

    def test_progress_updates_status(self, client):
        _, token = make_user()
        diagnosis_id = save_diagnosis(client, token)
        res = client.post(f"/api/diagnosis/{diagnosis_id}/progress", headers=auth_headers(token),
                          json={"status": "resolved", "description": "No new lesions"})
        assert res.json()["message"] == "Progress update added successfully"
        follow_up = res.json()["data"]["diagnosis"]["followUp"]
        assert follow_up["status"] == "resolved"
        assert follow_up["progressUpdates"][0]["description"] == "No new lesions"

    def test_progress_requires_status_and_description(self, client):
        _, token = make_user()
        diagnosis_id = save_diagnosis(client, token)
        res = client.post(f"/api/diagnosis/{diagnosis_id}/progress", headers=auth_headers(token),
                          json={"status": "improving"})
        assert res.status_code == 400
        assert res.json()["message"] == "Status and description are required"


class TestDiagnosisStats:

    def test_stats_summary(self, client):
        _, token = make_user()
        save_diagnosis(client, token, cropName="tomato")
        save_diagnosis(client, token, cropName="tomato", confidence=60)
        save_diagnosis(client, token, cropName="rice")

        res = client.get("/api/diagnosis/stats?timeframe=7d", headers=auth_headers(token))
        data = res.json()["data"]
        assert data["summary"]["totalDiagnoses"] == 3
        assert data["topCrops"][0] == {"cropType": "tomato", "count": 2, "avgConfidence": 70}
        assert data["timeframe"] == "7d"
        assert sum(day["total"] for day in data["trend"]) == 3

    def test_unknown_timeframe(self, client):
        _, token = make_user()
        assert client.get("/api/diagnosis/stats?timeframe=2w", headers=auth_headers(token)).status_code == 400

    def test_conditions_for_crop(self, client):
        _, token = make_user()
        save_diagnosis(client, token, confidence=90)
        save_diagnosis(client, token, confidence=40)
        res = client.get("/api/diagnosis/conditions/tomato", headers=auth_headers(token))
        data = res.json()["data"]
        assert data["commonConditions"][0]["condition"] == "Early blight"
        assert data["commonConditions"][0]["count"] == 1
        assert data["totalRecords"] == 1
        assert "Avoid overhead watering" in data["preventionTips"]
