"""
Assistant vocal : audio → transcription → LLM → synthèse vocale.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile

from agrilo.api.deps import get_current_user, get_database
from agrilo.core.errors import ApiError
from agrilo.core.settings import settings
from agrilo.services.db_handler import AgriloDatabase
from agrilo.services.models import User
from agrilo.services.voice import VoiceAssistant, get_voice_assistant

logger = logging.getLogger("Agrilo.Voice")

router = APIRouter(prefix="/api/voice", tags=["voice"])


@router.post("/query")
def voice_query(
    audio: Optional[UploadFile] = File(None),
    user: User = Depends(get_current_user),
    db: AgriloDatabase = Depends(get_database),
    assistant: VoiceAssistant = Depends(get_voice_assistant),
):
    if audio is None:
        raise ApiError("No audio file provided", 400)

    max_bytes = settings.MAX_UPLOAD_MB * 1024 * 1024
    # lecture bornée à limite + 1 octet
    data = audio.file.read(max_bytes + 1)
    if not data:
        raise ApiError("No audio file provided", 400)
    if len(data) > max_bytes:
        raise ApiError(f"Audio file exceeds {settings.MAX_UPLOAD_MB}MB limit", 413)

    farm = db.latest_farm_for_owner(user.id)
    logger.info("Voice query from user %s (%s bytes, farm=%s)", user.id, len(data), farm.id if farm else None)
    return assistant.process_query(data, audio.filename or "query.wav", user=user, farm=farm)
