"""
Tests — Signalement d'incidents et alertes WhatsApp aux fermes voisines.
"""

from unittest.mock import MagicMock

import pytest

from agrilo.api.routes.issues import alert_nearby_farmers
from agrilo.main import app
from agrilo.services.whatsapp import get_whatsapp_service
from conftest import auth_headers, make_farm, make_user

ISSUE = {
    "type": "pest",
    "description": "Fall armyworm spotted in maize rows",
    "severity": "high",
    "location": {"coordinates": [73.78, 20.0]},
}


@pytest.fixture
def whatsapp():
    service = MagicMock()
    service.send_template.return_value = True
    app.dependency_overrides[get_whatsapp_service] = lambda: service
    yield service
    app.dependency_overrides.pop(get_whatsapp_service, None)


class TestReportIssue:

    def test_alerts_neighbours_but_not_reporter(self, client, whatsapp):
        reporter_id, token = make_user()
        make_farm(reporter_id, name="Own", center_latitude=20.0, center_longitude=73.78)
        near_id, _ = make_user(phone="+911111111111")
        make_farm(near_id, name="Near", center_latitude=20.01, center_longitude=73.78)
        far_id, _ = make_user(phone="+912222222222")
        make_farm(far_id, name="Far", center_latitude=21.0, center_longitude=73.78)

        res = client.post("/api/issues", json=ISSUE, headers=auth_headers(token))

        assert res.status_code == 201
        data = res.json()["data"]
        assert data["notifiedFarmers"] == 1
        assert data["issue"]["status"] == "reported"
        assert data["issue"]["radius"] == 1000.0
        args, kwargs = whatsapp.send_template.call_args
        assert args[:2] == ("+911111111111", "farm_alert_nearby")
        params = [p["text"] for p in kwargs["components"][0]["parameters"]]
        assert params == ["PEST", "high", ISSUE["description"]]

    def test_radius_limits_alerts(self, client, whatsapp):
        _, token = make_user()
        near_id, _ = make_user(phone="+911111111111")
        make_farm(near_id, name="Near", center_latitude=20.01, center_longitude=73.78)

        res = client.post("/api/issues", json={**ISSUE, "radius": 500}, headers=auth_headers(token))
        assert res.json()["data"]["notifiedFarmers"] == 0
        whatsapp.send_template.assert_not_called()

    def test_unknown_farm_is_404(self, client, whatsapp):
        _, token = make_user()
        res = client.post("/api/issues", json={**ISSUE, "farmId": "missing"}, headers=auth_headers(token))
        assert res.status_code == 404

    @pytest.mark.parametrize("change", [{"type": "locusts"}, {"severity": "extreme"}, {"description": ""}])
    def test_invalid_issue(self, client, whatsapp, change):
        _, token = make_user()
        assert client.post("/api/issues", json={**ISSUE, **change}, headers=auth_headers(token)).status_code == 400


class TestIssueQueries:

    def test_nearby_excludes_far_issues(self, client, whatsapp):
        _, token = make_user()
        client.post("/api/issues", json=ISSUE, headers=auth_headers(token))
        client.post("/api/issues", json={**ISSUE, "location": {"coordinates": [75.0, 22.0]}},
                    headers=auth_headers(token))

        res = client.get("/api/issues/nearby?latitude=20.0&longitude=73.78&radius=10", headers=auth_headers(token))
        data = res.json()["data"]
        assert data["count"] == 1
        assert data["issues"][0]["distanceKm"] == 0

    def test_nearby_requires_coordinates(self, client, whatsapp):
        _, token = make_user()
        res = client.get("/api/issues/nearby?latitude=20.0", headers=auth_headers(token))
        assert res.status_code == 400
        assert res.json()["message"] == "Please provide latitude and longitude"

    def test_farm_issues(self, client, whatsapp):
        user_id, token = make_user()
        farm_id = make_farm(user_id, name="Home", center_latitude=20.0, center_longitude=73.78)
        client.post("/api/issues", json={**ISSUE, "farmId": farm_id}, headers=auth_headers(token))
        client.post("/api/issues", json=ISSUE, headers=auth_headers(token))

        res = client.get(f"/api/issues/farm/{farm_id}", headers=auth_headers(token))
        assert res.json()["data"]["count"] == 1


class TestDeleteIssue:

    def test_only_reporter_can_delete(self, client, whatsapp):
        _, token = make_user()
        _, other_token = make_user(phone="+913333333333")
        issue_id = client.post("/api/issues", json=ISSUE, headers=auth_headers(token)).json()["data"]["issue"]["id"]

        res = client.delete(f"/api/issues/{issue_id}", headers=auth_headers(other_token))
        assert res.status_code == 401
        assert res.json()["message"] == "Not authorized to delete this issue"

        assert client.delete(f"/api/issues/{issue_id}", headers=auth_headers(token)).status_code == 200
        res = client.delete(f"/api/issues/{issue_id}", headers=auth_headers(token))
        assert res.status_code == 404
        assert res.json()["message"] == "Issue not found"


def test_alert_falls_back_to_text():
    whatsapp = MagicMock()
    whatsapp.send_template.return_value = False
    whatsapp.send_alert.return_value = True
    issue = {"id": "i1", "type": "fire", "severity": "critical", "description": "Smoke near the barn"}

    assert alert_nearby_farmers(whatsapp, ["+911111111111"], issue) == 1
    text = whatsapp.send_alert.call_args[0][1]
    assert "FIRE" in text
    assert "Smoke near the barn" in text
