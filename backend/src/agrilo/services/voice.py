"""
Assistant vocal : audio de l'agriculteur → texte (Azure STT) → réponse LLM
contextualisée (profil + ferme active) → audio (Azure TTS).

Si la synthèse vocale échoue, la réponse texte est renvoyée seule avec le
statut "partial_success".
"""

import base64
import logging
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from agrilo.core.errors import ApiError
from agrilo.core.security import sanitize_user_input
from agrilo.core.settings import settings
from agrilo.services.llm_clients import chat_completion
from agrilo.services.models import Farm, User
from agrilo.services.voice_engine import SpeechError, VoiceEngine

logger = logging.getLogger("Agrilo.Voice")

# Langue du profil → locale de reconnaissance Azure
RECOGNITION_LOCALES = {
    "en": "en-US",
    "es": "es-ES",
    "fr": "fr-FR",
    "hi": "hi-IN",
    "sw": "sw-KE",
    "am": "am-ET",
    "yo": "en-NG",
    "ha": "en-NG",
}

VOICES = {
    "en-US": "en-US-JennyNeural",
    "es-ES": "es-ES-ElviraNeural",
    "hi-IN": "hi-IN-SwaraNeural",
}

DEVANAGARI = re.compile(r"[ऀ-ॿ]")
SPANISH = re.compile(r"[¿ñáéíóúü]|\b(el|la|los|las|en|y|qué|por)\b", re.IGNORECASE)


def detect_language(text: Optional[str]) -> str:
    """Heuristique simple sur le texte de la réponse : hi-IN, es-ES ou en-US."""
    if not text:
        return "en-US"
    if DEVANAGARI.search(text):
        return "hi-IN"
    if SPANISH.search(text):
        return "es-ES"
    return "en-US"


def build_context(user: Optional[User], farm: Optional[Farm]) -> str:
    user_context = f"Farmer Name: {user.first_name}" if user is not None else "User: Unknown"
    if farm is None:
        return f"{user_context}\nFarm: No data available"

    crops = ", ".join(
        f"{c.get('cropName')} ({c.get('growthStage') or 'unknown stage'})" for c in (farm.crops or [])
    ) or "None"
    return (
        f"{user_context}\n"
        f"Farm Name: {farm.name or 'Unnamed Farm'}\n"
        f"Location: {farm.address or 'Unknown location'}\n"
        f"Current Crops: {crops}\n"
        f"Soil Type: {farm.soil_type or 'Mixed'}\n"
        f"Area: {farm.total_area} ha"
    )


def build_messages(question: str, context: str, farmer_name: str = "the farmer") -> List[Dict[str, str]]:
    system = (
        f"You are AgriBot, an expert agricultural assistant for {farmer_name}.\n\n"
        f"CONTEXT:\n{context}\n\n"
        "INSTRUCTIONS:\n"
        "1. Answer the farmer's question briefly and helpfully in the same language they spoke.\n"
        "2. Use the context above to give specific advice (crops, soil, location).\n"
        "3. Keep the answer concise (under 3 sentences) for voice output.\n"
        "4. Output ONLY plain text."
    )
    return [{"role": "system", "content": system}, {"role": "user", "content": question}]


class VoiceAssistant:

    def __init__(self, engine: Optional[VoiceEngine] = None, llm: Callable[..., str] = chat_completion):
        self._engine = engine
        self._llm = llm

    @property
    def engine(self) -> VoiceEngine:
        if self._engine is None:
            if not settings.ENABLE_VOICE or not settings.AZURE_SPEECH_KEY:
                raise ApiError("Voice service unavailable", 503)
            self._engine = VoiceEngine(
                api_key=settings.AZURE_SPEECH_KEY,
                region=settings.AZURE_REGION,
                fallback_key=settings.AZURE_SPEECH_KEY_2 or None,
                storage_dir=settings.AUDIO_OUTPUT_DIR,
            )
        return self._engine

    def transcribe(self, audio: bytes, filename: str, language: str = "en") -> str:
        locale = RECOGNITION_LOCALES.get(language, "en-US")
        suffix = Path(filename or "").suffix or ".wav"
        try:
            text, confidence = self.engine.transcribe_bytes(audio, suffix=suffix, lang=locale)
        except (OSError, ValueError, SpeechError) as e:
            logger.error("Speech recognition error: %s", e)
            raise ApiError("Failed to process voice query", 500)
        if not text:
            raise ApiError("Could not understand the audio", 422)
        logger.info("Transcribed query (%s, confidence=%s): %s...", locale, confidence, text[:50])
        return text

    def process_query(self, audio: bytes, filename: str, user: Optional[User] = None,
                      farm: Optional[Farm] = None) -> Dict[str, Any]:
        language = user.language if user is not None and user.language else "en"
        question = sanitize_user_input(self.transcribe(audio, filename, language), max_length=1000)

        context = build_context(user, farm)
        farmer = user.first_name if user is not None else "the farmer"
        text_response = self._llm(build_messages(question, context, farmer))
        language_code = detect_language(text_response)
        logger.info("Detected language for TTS: %s", language_code)

        try:
            audio_out = self.engine.synthesize_bytes(text_response, VOICES[language_code])
        except Exception as e:
            logger.error("TTS Synthesis Failed: %s", e)
            return {
                "status": "partial_success",
                "data": {
                    "textResponse": text_response,
                    "audioBase64": None,
                    "languageDetected": language_code,
                    "message": "Voice synthesis failed, but here is the text.",
                },
            }

        return {
            "status": "success",
            "data": {
                "textResponse": text_response,
                "audioBase64": base64.b64encode(audio_out).decode("ascii"),
                "languageDetected": language_code,
            },
        }


_assistant: Optional[VoiceAssistant] = None


def get_voice_assistant() -> VoiceAssistant:
    global _assistant
    if _assistant is None:
        _assistant = VoiceAssistant()
    return _assistant
