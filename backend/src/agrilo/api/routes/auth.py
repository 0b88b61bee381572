"""
Authentification : inscription, connexion (avec verrouillage), mot de passe
oublié, vérification et rafraîchissement du JWT.
"""

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Header

from agrilo.api.deps import get_current_user, get_database
from agrilo.api.schemas import ForgotPasswordRequest, LoginRequest, RegisterRequest, ResetPasswordRequest
from agrilo.core.errors import ApiError, success_body, utc_now_iso
from agrilo.core.security import (
    create_access_token, decode_access_token, extract_bearer,
    generate_reset_token, hash_password, hash_token, verify_password,
)
from agrilo.core.settings import settings
from agrilo.services.db_handler import AgriloDatabase
from agrilo.services.models import User

logger = logging.getLogger("Agrilo.Auth")

router = APIRouter(prefix="/api/auth", tags=["auth"])

INVALID_CREDENTIALS = "Invalid phone number or password"
GENERIC_RESET_MESSAGE = "If a user with this phone number exists, a password reset token has been sent."


def _token_payload(user: User) -> dict:
    return {
        "user": user.to_dict(),
        "token": create_access_token(user.id, user.phone_number),
        "expiresIn": settings.JWT_EXPIRE,
    }


@router.post("/register", status_code=201)
def register(body: RegisterRequest, db: AgriloDatabase = Depends(get_database)):
    info = body.personalInfo
    if db.get_user_by_phone(info.phoneNumber) is not None:
        raise ApiError("A user with this phone number already exists", 400)
    if info.email and db.get_user_by_email(info.email) is not None:
        raise ApiError("A user with this email already exists", 400)

    coords = body.location.coordinates if body.location else None
    now = datetime.now(timezone.utc)
    user = db.create_user(
        first_name=info.firstName.strip(),
        last_name=info.lastName.strip(),
        phone_number=info.phoneNumber,
        email=info.email.lower() if info.email else None,
        password_hash=hash_password(body.authentication.password),
        latitude=coords.latitude if coords else None,
        longitude=coords.longitude if coords else None,
        country=body.location.country if body.location else None,
        experience_level=body.farmingProfile.experienceLevel,
        farming_type=body.farmingProfile.farmingType,
        language=body.preferences.language,
        last_active_date=now,
    )
    logger.info("New user registered successfully: %s", user.id)
    return success_body(_token_payload(user), "User registered successfully")


@router.post("/login")
def login(body: LoginRequest, db: AgriloDatabase = Depends(get_database)):
    user = db.get_user_by_phone(body.phoneNumber)
    if user is None:
        raise ApiError(INVALID_CREDENTIALS, 401)
    if user.is_locked():
        raise ApiError(
            "Account is temporarily locked due to too many failed login attempts. Please try again later.", 423,
        )
    if not user.is_active:
        raise ApiError("Account is deactivated. Please contact support.", 403)

    if not verify_password(body.password, user.password_hash):
        db.register_failed_login(user, settings.MAX_LOGIN_ATTEMPTS, settings.LOCK_TIME_HOURS)
        # l'erreur ci-dessous annule la transaction : le compteur doit être validé avant
        db.session.commit()
        logger.warning("Failed login attempt for %s (attempts=%s)", body.phoneNumber, user.login_attempts)
        raise ApiError(INVALID_CREDENTIALS, 401)

    db.reset_login_attempts(user)
    logger.info("User logged in successfully: %s", user.id)
    return success_body(_token_payload(user), "Login successful")


@router.post("/forgot-password")
def forgot_password(body: ForgotPasswordRequest, db: AgriloDatabase = Depends(get_database)):
    response = {"status": "success", "message": GENERIC_RESET_MESSAGE, "timestamp": utc_now_iso()}
    user = db.get_user_by_phone(body.phoneNumber)
    if user is None:
        return response

    raw, hashed = generate_reset_token()
    user.password_reset_token = hashed
    user.password_reset_expires = datetime.now(timezone.utc) + timedelta(minutes=settings.PASSWORD_RESET_MINUTES)
    logger.info("Password reset token generated for user %s", user.id)
    if settings.is_development:
        response["resetToken"] = raw
    return response


@router.post("/reset-password")
def reset_password(body: ResetPasswordRequest, db: AgriloDatabase = Depends(get_database)):
    user = db.get_user_by_reset_token(hash_token(body.token))
    if user is None:
        raise ApiError("Invalid or expired password reset token", 400)

    user.password_hash = hash_password(body.newPassword)
    user.password_reset_token = None
    user.password_reset_expires = None
    user.login_attempts = 0
    user.lock_until = None
    logger.info("Password reset successfully for user %s", user.id)
    return {
        "status": "success",
        "message": "Password has been reset successfully. Please login with your new password.",
        "timestamp": utc_now_iso(),
    }


@router.get("/verify-token")
def verify_token(user: User = Depends(get_current_user)):
    return success_body(
        {"userId": user.id, "phoneNumber": user.phone_number, "isActive": user.is_active},
        "Token is valid",
    )


@router.post("/refresh-token")
def refresh_token(authorization: str = Header(None), db: AgriloDatabase = Depends(get_database)):
    token = extract_bearer(authorization)
    if not token:
        raise ApiError("Access denied. No token provided.", 401)

    payload = decode_access_token(token, verify_exp=False)
    user = db.get_user(payload.get("userId", ""))
    if user is None or not user.is_active:
        raise ApiError("User not found or inactive", 401)

    db.touch_user(user)
    return success_body(
        {"token": create_access_token(user.id, user.phone_number), "expiresIn": settings.JWT_EXPIRE},
        "Token refreshed successfully",
    )


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return success_body({"user": user.to_dict()}, "User profile retrieved successfully")
