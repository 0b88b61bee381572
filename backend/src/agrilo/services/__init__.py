"""
Services — couche métier Agrilo.

Structure :
  - models.py              : Modèles SQLAlchemy (source unique de vérité)
  - db_handler.py          : Accès base de données (SQLAlchemy ORM)
  - soil.py                : Propriétés du sol (OpenEPI SoilGrids)
  - weather.py             : Météo courante / prévisions (OpenEPI MET Norway)
  - flood.py               : Risque d'inondation (OpenEPI GloFAS)
  - irrigation.py          : Recommandations d'irrigation (Open-Meteo)
  - crop_recommendation.py : Planification des cultures
  - notifications.py       : Jobs planifiés (APScheduler)
  - voice_engine.py        : Azure TTS / STT
  - voice.py               : Assistant vocal (STT → LLM → TTS)
  - llm_clients.py         : Clients LLM (Groq / Azure OpenAI)
  - whatsapp.py            : Envoi de messages WhatsApp Cloud API
  - external_apis/         : Intégrations APIs externes
  - utils/                 : Cache TTL, rate limiting, retry
"""

from .db_handler import AgriloDatabase
from .llm_clients import get_sdk_client

__all__ = [
    "AgriloDatabase",
    "get_sdk_client",
]
