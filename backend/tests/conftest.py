"""
Fixtures partagées : environnement de test, base SQLite mémoire, client HTTP.
"""

import os

os.environ.setdefault("JWT_SECRET", "test-secret-key-with-at-least-32-characters")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("ENABLE_NOTIFICATIONS", "false")
os.environ.setdefault("ENABLE_VOICE", "false")
os.environ.setdefault("LOG_FILE", "")

import pytest
from fastapi.testclient import TestClient

from agrilo.core.database import close_db, init_db, session_scope
from agrilo.core.security import create_access_token, hash_password
from agrilo.services.db_handler import AgriloDatabase


@pytest.fixture
def db_engine():
    engine = init_db("sqlite://")
    yield engine
    close_db()


@pytest.fixture
def client(db_engine):
    from agrilo.main import app

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def make_user(phone="+911234567890", password="secret123", lat=None, lon=None, **extra):
    """Crée un utilisateur en base et renvoie (id, token)."""
    with session_scope() as session:
        db = AgriloDatabase(session)
        user = db.create_user(
            first_name=extra.pop("first_name", "Ravi"),
            last_name=extra.pop("last_name", "Kumar"),
            phone_number=phone,
            password_hash=hash_password(password),
            latitude=lat,
            longitude=lon,
            **extra,
        )
        user_id = user.id
    return user_id, create_access_token(user_id, phone)


def make_farm(owner_id, **fields):
    with session_scope() as session:
        farm = AgriloDatabase(session).create_farm(owner_id, **fields)
        return farm.id


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}
