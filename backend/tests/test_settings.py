"""
Tests unitaires — Settings (durées JWT, validation de l'environnement).
"""

import pytest

from agrilo.core.settings import Settings, parse_duration, validate_environment


@pytest.mark.parametrize("value,seconds", [("7d", 604800), ("12h", 43200), ("30m", 1800), ("3600", 3600)])
def test_parse_duration(value, seconds):
    assert parse_duration(value) == seconds


def test_parse_duration_rejects_garbage():
    with pytest.raises(ValueError):
        parse_duration("soon")


class TestValidateEnvironment:

    def test_production_requires_secrets(self):
        config = Settings(APP_ENV="production", JWT_SECRET="short", DATABASE_URL="sqlite:///agrilo.db",
                          OPENEPI_CLIENT_ID="", OPENEPI_CLIENT_SECRET="")
        problems = validate_environment(config)
        assert "JWT_SECRET (must be at least 32 characters)" in problems
        assert "DATABASE_URL" in problems
        assert "OPENEPI_CLIENT_ID" in problems

    def test_development_only_needs_jwt_secret(self):
        assert validate_environment(Settings(APP_ENV="development", JWT_SECRET="dev-secret")) == []
        assert validate_environment(Settings(APP_ENV="development", JWT_SECRET="")) == ["JWT_SECRET"]

    def test_cors_origins_list(self):
        config = Settings(CORS_ORIGIN="http://a.test, http://b.test,")
        assert config.cors_origins_list == ["http://a.test", "http://b.test"]
