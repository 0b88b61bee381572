"""
Tests d'intégration — Authentification (JWT, verrouillage, reset du mot de passe).
"""

from agrilo.core.security import create_access_token, decode_access_token, extract_bearer
from agrilo.core.settings import settings
from conftest import auth_headers, make_user


def register_payload(phone="+919876543210", **overrides):
    payload = {
        "personalInfo": {"firstName": "Asha", "lastName": "Patel", "phoneNumber": phone, "email": "Asha@Example.com"},
        "authentication": {"password": "secret123"},
        "location": {"coordinates": {"latitude": 19.07, "longitude": 72.87}, "country": "India"},
        "farmingProfile": {"experienceLevel": "intermediate", "farmingType": "organic"},
    }
    payload.update(overrides)
    return payload


class TestRegisterAndLogin:

    def test_register_returns_token(self, client):
        res = client.post("/api/auth/register", json=register_payload())
        assert res.status_code == 201
        body = res.json()
        assert body["status"] == "success"
        assert body["data"]["user"]["email"] == "asha@example.com"
        assert decode_access_token(body["data"]["token"])["phoneNumber"] == "+919876543210"

    def test_duplicate_phone_is_rejected(self, client):
        client.post("/api/auth/register", json=register_payload())
        res = client.post("/api/auth/register", json=register_payload())
        assert res.status_code == 400
        assert res.json()["message"] == "A user with this phone number already exists"

    def test_validation_error_shape(self, client):
        payload = register_payload()
        payload["authentication"]["password"] = "123"
        res = client.post("/api/auth/register", json=payload)
        assert res.status_code == 400
        body = res.json()
        assert body["message"] == "Validation failed"
        assert any(e["field"] == "authentication.password" for e in body["errors"])

    def test_login_success(self, client):
        make_user(phone="+911111111111", password="goodpass")
        res = client.post("/api/auth/login", json={"phoneNumber": "+911111111111", "password": "goodpass"})
        assert res.status_code == 200
        assert res.json()["message"] == "Login successful"

    def test_unknown_phone_is_401(self, client):
        res = client.post("/api/auth/login", json={"phoneNumber": "+910000000000", "password": "x"})
        assert res.status_code == 401

    def test_account_locks_after_max_attempts(self, client):
        make_user(phone="+912222222222", password="goodpass")
        creds = {"phoneNumber": "+912222222222", "password": "wrong"}
        for _ in range(settings.MAX_LOGIN_ATTEMPTS):
            assert client.post("/api/auth/login", json=creds).status_code == 401

        res = client.post("/api/auth/login", json={"phoneNumber": "+912222222222", "password": "goodpass"})
        assert res.status_code == 423


class TestTokens:

    def test_missing_token_is_401(self, client):
        res = client.get("/api/auth/me")
        assert res.status_code == 401
        assert res.json()["message"] == "Access denied. No token provided."

    def test_expired_token_is_401(self, client):
        user_id, _ = make_user()
        token = create_access_token(user_id, "+911234567890", expires_in=-10)
        res = client.get("/api/auth/verify-token", headers=auth_headers(token))
        assert res.status_code == 401
        assert res.json()["message"] == "Token has expired."

    def test_garbage_token_is_401(self, client):
        res = client.get("/api/auth/me", headers=auth_headers("not-a-jwt"))
        assert res.status_code == 401
        assert res.json()["message"] == "Invalid token."

    def test_valid_token_returns_profile(self, client):
        _, token = make_user()
        res = client.get("/api/auth/me", headers=auth_headers(token))
        assert res.status_code == 200
        assert res.json()["data"]["user"]["firstName"] == "Ravi"

    def test_refresh_accepts_expired_token(self, client):
        user_id, _ = make_user()
        expired = create_access_token(user_id, "+911234567890", expires_in=-10)
        res = client.post("/api/auth/refresh-token", headers=auth_headers(expired))
        assert res.status_code == 200
        assert decode_access_token(res.json()["data"]["token"])["userId"] == user_id

    def test_extract_bearer(self):
        assert extract_bearer("Bearer abc") == "abc"
        assert extract_bearer(None) is None


class TestPasswordReset:

    def test_unknown_phone_gets_generic_message(self, client):
        res = client.post("/api/auth/forgot-password", json={"phoneNumber": "+919999999999"})
        assert res.status_code == 200
        assert "resetToken" not in res.json()

    def test_reset_flow_in_development(self, client, monkeypatch):
        monkeypatch.setattr(settings, "APP_ENV", "development")
        make_user(phone="+913333333333", password="oldpass")
        token = client.post("/api/auth/forgot-password", json={"phoneNumber": "+913333333333"}).json()["resetToken"]

        res = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "newpass1"})
        assert res.status_code == 200
        login = client.post("/api/auth/login", json={"phoneNumber": "+913333333333", "password": "newpass1"})
        assert login.status_code == 200

        again = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "other12"})
        assert again.status_code == 400
