"""
Settings — Configuration centralisée Agrilo (Pydantic Settings).

Toute la configuration passe par ici, lue depuis les variables d'env / .env.
Usage:
    from agrilo.core.settings import settings
    print(settings.OPENEPI_API_URL)
"""

import re
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhdw]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}


def parse_duration(value: str) -> int:
    """Convertit '7d', '12h', '30m' ou '3600' en secondes."""
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return int(amount) * _DURATION_UNITS[unit]


class Settings(BaseSettings):
    """Configuration centralisée, lue depuis les variables d'env / .env."""

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    AUDIO_OUTPUT_DIR: str = "./audio_output"
    LOG_FILE: str = "app.log"

    # --- API ---
    APP_NAME: str = "Agrilo"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "development"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 5000
    CORS_ORIGIN: str = "http://localhost:3000"
    MAX_UPLOAD_MB: int = 10

    # --- Database ---
    # SQLite par défaut en dev, PostgreSQL en production
    DATABASE_URL: str = "sqlite:///./agrilo.db"

    # --- Auth / JWT ---
    JWT_SECRET: str = ""
    JWT_EXPIRE: str = "7d"
    JWT_ALGORITHM: str = "HS256"
    BCRYPT_ROUNDS: int = 12
    MAX_LOGIN_ATTEMPTS: int = 5
    LOCK_TIME_HOURS: int = 2
    PASSWORD_RESET_MINUTES: int = 10

    # --- OpenEPI gateway ---
    OPENEPI_API_URL: str = "https://api.openepi.io"
    OPENEPI_CLIENT_ID: str = ""
    OPENEPI_CLIENT_SECRET: str = ""
    OPENEPI_REQUEST_TIMEOUT_MS: int = 30000
    OPENEPI_RATE_LIMIT_PER_MINUTE: int = 60
    OPENEPI_CACHE_TTL_SECONDS: int = 3600
    OPENEPI_RETRY_ATTEMPTS: int = 3
    OPENEPI_RETRY_DELAY_MS: int = 2000
    CACHE_SWEEP_INTERVAL_SECONDS: int = 300

    # --- Geocoding (Nominatim) ---
    NOMINATIM_URL: str = "https://nominatim.openstreetmap.org"
    NOMINATIM_USER_AGENT: str = "Agrilo/1.0 (contact@agrilo.com)"
    GEOCODING_TIMEOUT_SECONDS: int = 10

    # --- Open-Meteo ---
    OPEN_METEO_URL: str = "https://api.open-meteo.com/v1"
    OPEN_METEO_AIR_QUALITY_URL: str = "https://air-quality-api.open-meteo.com/v1/air-quality"
    OPEN_METEO_TIMEOUT_SECONDS: int = 10

    # --- Google Earth Engine ---
    GOOGLE_CLIENT_EMAIL: str = ""
    GOOGLE_PRIVATE_KEY: str = ""
    GOOGLE_APPLICATION_CREDENTIALS: str = ""
    GEE_CACHE_TTL_SECONDS: int = 3600

    # --- WhatsApp Cloud API ---
    FACEBOOK_ACCESS_TOKEN: str = ""
    FACEBOOK_PHONE_NUMBER_ID: str = ""
    FACEBOOK_GRAPH_VERSION: str = "v19.0"

    # --- LLM (Provider-agnostic) ---
    # Valeurs possibles : "groq", "azure"
    LLM_PROVIDER: str = "groq"
    GROQ_API_KEY: str = ""
    LLM_MODEL: str = "llama-3.1-8b-instant"
    LLM_TEMPERATURE: float = 0.3

    # --- Azure OpenAI (utilisé si LLM_PROVIDER=azure) ---
    AZURE_OPENAI_API_KEY: str = ""
    AZURE_OPENAI_ENDPOINT: str = ""
    AZURE_OPENAI_DEPLOYMENT_NAME: str = "gpt-4o"
    AZURE_OPENAI_API_VERSION: str = "2024-05-01-preview"

    # --- Azure Speech (TTS/STT) ---
    AZURE_SPEECH_KEY: str = ""
    AZURE_SPEECH_KEY_2: str = ""
    AZURE_REGION: str = "westeurope"

    # --- Feature flags ---
    ENABLE_NOTIFICATIONS: bool = True
    ENABLE_VOICE: bool = True
    NOTIFICATION_TIMEZONE: str = "Asia/Kolkata"

    # --- Sentry (observabilité erreurs) ---
    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = "development"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.APP_ENV.lower() == "development"

    @property
    def cors_origins_list(self) -> List[str]:
        """CORS_ORIGIN accepte une liste séparée par des virgules."""
        return [o.strip() for o in self.CORS_ORIGIN.split(",") if o.strip()]

    @property
    def jwt_expire_seconds(self) -> int:
        return parse_duration(self.JWT_EXPIRE)

    @property
    def llm_api_key(self) -> str:
        return self.GROQ_API_KEY


# Singleton — importable partout
settings = Settings()


def validate_environment(config: Settings = settings) -> List[str]:
    """
    Retourne la liste des problèmes de configuration bloquants.

    JWT_SECRET est toujours requis. En production on exige en plus la base
    et les identifiants OpenEPI, et un secret JWT d'au moins 32 caractères.
    """
    problems = []
    if not config.JWT_SECRET:
        problems.append("JWT_SECRET")
    if config.is_production:
        if config.JWT_SECRET and len(config.JWT_SECRET) < 32:
            problems.append("JWT_SECRET (must be at least 32 characters)")
        if not config.DATABASE_URL or config.DATABASE_URL.startswith("sqlite"):
            problems.append("DATABASE_URL")
        if not config.OPENEPI_CLIENT_ID:
            problems.append("OPENEPI_CLIENT_ID")
        if not config.OPENEPI_CLIENT_SECRET:
            problems.append("OPENEPI_CLIENT_SECRET")
    return problems
