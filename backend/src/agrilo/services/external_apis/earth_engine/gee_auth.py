"""
Authentification Google Earth Engine par compte de service.

Sources des identifiants, par ordre :
  1. GOOGLE_CLIENT_EMAIL + GOOGLE_PRIVATE_KEY (\\n échappés acceptés)
  2. GOOGLE_APPLICATION_CREDENTIALS : chemin vers la clé JSON du compte
"""

import json
import logging
import threading
from typing import Optional, Tuple

import ee

from agrilo.core.errors import ApiError
from agrilo.core.settings import settings

logger = logging.getLogger("Agrilo.GEE")

_initialized = False
_init_lock = threading.Lock()


def _load_credentials() -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """(client_email, private_key, key_file)."""
    email = settings.GOOGLE_CLIENT_EMAIL or None
    private_key = settings.GOOGLE_PRIVATE_KEY.replace("\\n", "\n") if settings.GOOGLE_PRIVATE_KEY else None
    key_file = settings.GOOGLE_APPLICATION_CREDENTIALS or None

    if (not email or not private_key) and key_file:
        try:
            with open(key_file, "r", encoding="utf-8") as f:
                email = email or json.load(f).get("client_email")
            logger.info("Loaded GEE credentials from JSON file")
            return email, None, key_file
        except (OSError, ValueError) as e:
            logger.warning("Failed to read GOOGLE_APPLICATION_CREDENTIALS: %s", e)
    return email, private_key, None


def has_credentials() -> bool:
    email, private_key, key_file = _load_credentials()
    return bool(email and (private_key or key_file))


def initialize_ee() -> None:
    """Initialise Earth Engine une seule fois par process ; échec → ApiError 503."""
    global _initialized
    if _initialized:
        return
    with _init_lock:
        if _initialized:
            return
        email, private_key, key_file = _load_credentials()
        try:
            if not email or not (private_key or key_file):
                raise ValueError("Missing Google Earth Engine credentials (private key or client email)")
            logger.info("Initializing Google Earth Engine...")
            credentials = ee.ServiceAccountCredentials(email, key_file=key_file, key_data=private_key)
            ee.Initialize(credentials=credentials)
        except Exception as e:
            logger.error("Failed to initialize Google Earth Engine: %s", e)
            raise ApiError("Advanced analysis service unavailable (GEE Auth)", 503)
        _initialized = True
        logger.info("Google Earth Engine initialized successfully")


def reset_initialization() -> None:
    global _initialized
    _initialized = False
