"""
Core Module — Fondations transverses Agrilo.

- settings  : Configuration centralisée (Pydantic Settings)
- database  : Connexion SQLAlchemy
- logger    : Logging unifié (stdlib + Sentry optionnel)
- errors    : ApiError et corps de réponse standard
- security  : JWT, mots de passe, sanitisation
"""

from .settings import settings, validate_environment
from .logger import setup_logging, get_logger
from .errors import ApiError
from .database import init_db, close_db, get_db, session_scope, check_connection

__all__ = [
    "settings", "validate_environment",
    "setup_logging", "get_logger",
    "ApiError",
    "init_db", "close_db", "get_db", "session_scope", "check_connection",
]
