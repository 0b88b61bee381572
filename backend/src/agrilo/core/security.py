"""
Security Module — Authentification et sécurité pour Agrilo.

Fournit :
- Hash / vérification des mots de passe (bcrypt via passlib)
- Émission et vérification des JWT (python-jose)
- Jetons de réinitialisation de mot de passe
- Génération de request ID
- Sanitization des entrées utilisateur
"""

import hashlib
import logging
import secrets
import time
from typing import Any, Dict, Optional, Tuple

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from agrilo.core.errors import ApiError
from agrilo.core.settings import settings

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)


# ── Passwords ───────────────────────────────────────────────

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


# ── JWT ─────────────────────────────────────────────────────

def create_access_token(user_id: str, phone_number: str, expires_in: Optional[int] = None) -> str:
    """Signe un JWT {userId, phoneNumber} avec JWT_SECRET."""
    now = int(time.time())
    ttl = expires_in if expires_in is not None else settings.jwt_expire_seconds
    claims = {
        "userId": user_id,
        "phoneNumber": phone_number,
        "iat": now,
        "exp": now + ttl,
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str, verify_exp: bool = True) -> Dict[str, Any]:
    """
    Vérifie la signature (et l'expiration par défaut).

    Lève ApiError 401 "Token has expired." ou "Invalid token.".
    """
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": verify_exp},
        )
    except ExpiredSignatureError:
        raise ApiError("Token has expired.", 401)
    except JWTError:
        raise ApiError("Invalid token.", 401)


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """Retire le préfixe 'Bearer ' si présent."""
    if not authorization:
        return None
    token = authorization.strip()
    if token.startswith("Bearer "):
        token = token[7:].strip()
    return token or None


# ── Password reset ──────────────────────────────────────────

def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_reset_token() -> Tuple[str, str]:
    """Retourne (jeton brut envoyé à l'utilisateur, hash stocké en base)."""
    raw = secrets.token_hex(32)
    return raw, hash_token(raw)


# ── Divers ──────────────────────────────────────────────────

def generate_request_id() -> str:
    """Génère un identifiant unique pour le suivi des requêtes."""
    return secrets.token_hex(16)


def sanitize_user_input(text: str, max_length: int = 2000) -> str:
    """
    Nettoie l'entrée utilisateur :
    - Limite la longueur
    - Supprime les caractères de contrôle
    """
    if not text:
        return ""
    text = text[:max_length]
    text = "".join(ch for ch in text if ch == "\n" or ch == "\t" or (ord(ch) >= 32))
    return text.strip()


__all__ = [
    "hash_password",
    "verify_password",
    "create_access_token",
    "decode_access_token",
    "extract_bearer",
    "hash_token",
    "generate_reset_token",
    "generate_request_id",
    "sanitize_user_input",
]
