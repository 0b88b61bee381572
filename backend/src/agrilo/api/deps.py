"""
Dependencies FastAPI partagées : base de données et authentification.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from agrilo.core.database import get_db
from agrilo.core.errors import ApiError
from agrilo.core.security import decode_access_token, extract_bearer
from agrilo.services.db_handler import AgriloDatabase
from agrilo.services.models import User

logger = logging.getLogger("Agrilo.Auth")


def get_database(session: Session = Depends(get_db)) -> AgriloDatabase:
    return AgriloDatabase(session)


def _resolve_user(db: AgriloDatabase, token: str) -> User:
    payload = decode_access_token(token)
    user = db.get_user(payload.get("userId", ""))
    if user is None:
        raise ApiError("Invalid token. User not found.", 401)
    if not user.is_active:
        raise ApiError("Account is deactivated. Please contact support.", 403)
    if user.is_locked():
        raise ApiError("Account is temporarily locked. Please try again later.", 423)
    return user


def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None),
    db: AgriloDatabase = Depends(get_database),
) -> User:
    """Vérifie le bearer JWT et attache l'utilisateur à la requête."""
    token = extract_bearer(authorization)
    if not token:
        raise ApiError("Access denied. No token provided.", 401)

    user = _resolve_user(db, token)
    db.touch_user(user)
    request.state.user = user
    request.state.user_id = user.id
    return user


def get_optional_user(
    request: Request,
    authorization: Optional[str] = Header(None),
    db: AgriloDatabase = Depends(get_database),
) -> Optional[User]:
    """Variante sans échec : None si le jeton est absent ou invalide."""
    token = extract_bearer(authorization)
    if not token:
        return None
    try:
        user = _resolve_user(db, token)
    except ApiError as e:
        logger.debug("Optional auth ignored: %s", e.message)
        return None
    request.state.user = user
    request.state.user_id = user.id
    return user


__all__ = ["get_database", "get_current_user", "get_optional_user"]
