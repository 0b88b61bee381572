"""
Tests — NotificationService (jobs planifiés, isolation des erreurs par ferme).
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from agrilo.core.database import session_scope
from agrilo.core.errors import ApiError
from agrilo.services.db_handler import AgriloDatabase
from agrilo.services.notifications import NotificationService, primary_crop, weather_alerts_for_forecast
from conftest import make_farm, make_user

NOW = datetime(2026, 10, 1, 10, 0, tzinfo=timezone.utc)


def recommendation(status="urgent"):
    return {"recommendation": {
        "status": status, "priority": "high", "action": "irrigate_now",
        "amount": 800, "timing": "within_2_hours", "reason": "Critical soil moisture level detected.",
    }}


def make_service(**deps):
    return NotificationService(scheduler=MagicMock(), clock=lambda: NOW, **deps)


class TestWeatherAlertRules:

    def test_thresholds(self):
        forecast = [
            {"date": "2026-10-01", "precipitation": 60, "temperature": {"max": 30}, "windSpeed": 5},
            {"date": "2026-10-02", "precipitation": 0, "temperature": {"max": 42}, "windSpeed": 30},
            {"date": "2026-10-03", "precipitation": 50, "temperature": {"max": 40}, "windSpeed": 25},
        ]
        types = [(a["date"], a["type"]) for a in weather_alerts_for_forecast(forecast)]
        assert types == [
            ("2026-10-01", "heavy_rain"),
            ("2026-10-02", "extreme_heat"),
            ("2026-10-02", "strong_wind"),
        ]

    def test_primary_crop(self):
        farm = MagicMock(crops=[{"cropName": "rice"}, {"cropName": "wheat"}])
        assert primary_crop(farm) == "rice"
        assert primary_crop(MagicMock(crops=[])) is None


class TestDailyIrrigationCheck:

    def test_one_failing_farm_does_not_stop_the_job(self, db_engine):
        owner_id, _ = make_user()
        good = make_farm(owner_id, name="Good", center_latitude=10.0, center_longitude=20.0,
                         crops=[{"cropName": "tomato"}])
        make_farm(owner_id, name="Broken", center_latitude=-5.0, center_longitude=30.0,
                  crops=[{"cropName": "corn"}])
        make_farm(owner_id, name="No crops", center_latitude=1.0, center_longitude=1.0)

        def calculate(lat, lon, **kwargs):
            if lat < 0:
                raise ApiError("Weather service temporarily unavailable", 503)
            return recommendation("urgent")

        irrigation = MagicMock()
        irrigation.calculate_recommendation.side_effect = calculate
        whatsapp = MagicMock()

        result = make_service(irrigation=irrigation, whatsapp=whatsapp).check_daily_irrigation()

        assert result == {"farmsChecked": 2, "notificationsSent": 1, "failures": 1}
        whatsapp.send_alert.assert_called_once()
        assert whatsapp.send_alert.call_args[0][0] == "+911234567890"
        with session_scope() as session:
            logs = AgriloDatabase(session).irrigation_history(owner_id, good)
            assert len(logs) == 1
            assert logs[0].recommendation_type == "urgent"
            assert logs[0].notes == "Automated daily irrigation check - urgent"

    def test_farm_without_coordinates_uses_owner_location(self, db_engine):
        owner_id, _ = make_user(lat=12.0, lon=77.0)
        make_farm(owner_id, name="Owner GPS", crops=[{"cropName": "rice"}])
        irrigation = MagicMock()
        irrigation.calculate_recommendation.return_value = recommendation("optimal")

        result = make_service(irrigation=irrigation).check_daily_irrigation()

        assert result["farmsChecked"] == 1
        assert result["notificationsSent"] == 0
        args, kwargs = irrigation.calculate_recommendation.call_args
        assert args[:2] == (12.0, 77.0)
        assert kwargs["crop_type"] == "rice"


class TestWeatherAlertsJob:

    def test_alert_sent_only_for_dangerous_forecast(self, db_engine):
        owner_id, _ = make_user()
        make_farm(owner_id, name="Wet", center_latitude=10.0, center_longitude=20.0)
        make_farm(owner_id, name="Dry", center_latitude=11.0, center_longitude=21.0)

        def forecast(lat, lon, days=7):
            rain = 80 if lat == 10.0 else 1
            return {"forecast": [{"date": "2026-10-01", "precipitation": rain, "temperature": {"max": 30}}]}

        weather = MagicMock()
        weather.get_weather_forecast.side_effect = forecast

        result = make_service(weather=weather).check_weather_alerts()
        assert result == {"farmsChecked": 2, "alertsSent": 1, "failures": 0}


class TestMonthlyAnalytics:

    def test_counts_previous_month_logs(self, db_engine):
        owner_id, _ = make_user()
        farm_id = make_farm(owner_id, name="Farm")
        with session_scope() as session:
            AgriloDatabase(session).add_irrigation_log(
                user_id=owner_id, farm_id=farm_id, field_id="main",
                irrigation_date=datetime(2026, 9, 15, tzinfo=timezone.utc),
                recommendation_type="needed", actual_amount=300.0,
            )

        service = make_service()
        with session_scope() as session:
            db = AgriloDatabase(session)
            report = service.monthly_analytics(db, db.get_user(owner_id))

        assert report["irrigationStats"] == {"irrigationEvents": 1, "totalWaterLiters": 300.0}
        assert report["farmCount"] == 1
        assert report["insights"][0]["type"] == "achievement"
        assert report["period"].startswith("2026-09-01")

    def test_job_reports_every_user(self, db_engine):
        make_user(phone="+911000000001")
        make_user(phone="+911000000002")
        assert make_service().send_monthly_analytics() == {"analyticsSent": 2, "failures": 0}


class TestScheduling:

    def test_trigger_unknown_job(self):
        with pytest.raises(ApiError) as exc:
            make_service().trigger_job("nightly-backup")
        assert exc.value.status_code == 404

    def test_start_registers_cron_jobs(self):
        scheduler = BackgroundScheduler(timezone="Asia/Kolkata")
        service = NotificationService(scheduler=scheduler)
        service.start()
        try:
            status = service.get_job_status()
            assert status["isInitialized"] is True
            assert status["jobCount"] == 4
            weekly = scheduler.get_job("weekly-planning").trigger
            fields = {f.name: str(f) for f in weekly.fields}
            assert fields["day_of_week"] == "sun"
            assert fields["hour"] == "9"
        finally:
            service.stop()
        assert service.get_job_status()["jobCount"] == 0

    def test_start_without_jobs(self):
        scheduler = BackgroundScheduler(timezone="Asia/Kolkata")
        service = NotificationService(scheduler=scheduler)
        service.start(enable_jobs=False)
        try:
            assert service.get_job_status()["jobCount"] == 0
        finally:
            service.stop()
