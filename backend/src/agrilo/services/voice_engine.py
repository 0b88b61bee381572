"""
Azure Speech pour l'assistant vocal : STT sur l'audio envoyé par
l'agriculteur, TTS en mémoire (MP3) pour la réponse.

La clé de secours AZURE_SPEECH_KEY_2 est tentée une fois quand la clé
principale échoue (quota, révocation).
"""

import logging
import uuid
from pathlib import Path
from typing import Callable, Optional, Tuple, TypeVar

import azure.cognitiveservices.speech as speechsdk

logger = logging.getLogger("Agrilo.VoiceEngine")

T = TypeVar("T")


class SpeechError(Exception):
    """Échec renvoyé par le service Azure Speech (annulation, clé refusée)."""


class VoiceEngine:

    def __init__(
        self,
        api_key: str,
        region: str = "westeurope",
        fallback_key: Optional[str] = None,
        storage_dir: str = "./audio_output",
    ):
        self.api_key = api_key
        self.fallback_key = fallback_key
        self.region = region
        # fichiers d'upload temporaires pour la reconnaissance
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def _config(self, use_fallback: bool = False) -> speechsdk.SpeechConfig:
        key = self.fallback_key if use_fallback else self.api_key
        if not key:
            raise ValueError("Azure Speech key missing.")
        config = speechsdk.SpeechConfig(subscription=key, region=self.region)
        config.set_speech_synthesis_output_format(
            speechsdk.SpeechSynthesisOutputFormat.Audio16Khz32KBitRateMonoMp3
        )
        return config

    def _with_fallback(self, operation: Callable[[speechsdk.SpeechConfig], T]) -> T:
        try:
            return operation(self._config())
        except SpeechError as e:
            if not self.fallback_key:
                raise
            logger.warning("Primary Azure Speech key failed, trying fallback: %s", e)
            return operation(self._config(use_fallback=True))

    # ── TTS ──────────────────────────────────────────────────

    def synthesize_bytes(self, text: str, voice: str = "en-US-JennyNeural") -> bytes:
        """Synthèse en mémoire ; retourne le MP3 brut."""
        def speak(config: speechsdk.SpeechConfig) -> bytes:
            config.speech_synthesis_voice_name = voice
            synthesizer = speechsdk.SpeechSynthesizer(speech_config=config, audio_config=None)
            result = synthesizer.speak_text_async(text).get()
            if result.reason == speechsdk.ResultReason.SynthesizingAudioCompleted:
                return bytes(result.audio_data)
            details = getattr(result, "cancellation_details", None)
            raise SpeechError(f"Azure Speech synthesis failed: {getattr(details, 'error_details', result.reason)}")

        logger.info("Synthesizing voice: %s (%d chars)", voice, len(text))
        return self._with_fallback(speak)

    # ── STT ──────────────────────────────────────────────────

    def transcribe_audio(self, file_path: str, lang: str = "en-US") -> Tuple[str, float]:
        """
        Reconnaissance d'un fichier audio.
        Retourne (texte, confiance) ; ("", 0.0) si rien n'a été reconnu.
        """
        if not Path(file_path).exists():
            raise FileNotFoundError(f"Audio file not found: {file_path}")

        def recognize(config: speechsdk.SpeechConfig) -> Tuple[str, float]:
            config.speech_recognition_language = lang
            audio_config = speechsdk.audio.AudioConfig(filename=file_path)
            recognizer = speechsdk.SpeechRecognizer(speech_config=config, audio_config=audio_config)
            result = recognizer.recognize_once_async().get()
            if result.reason == speechsdk.ResultReason.RecognizedSpeech:
                return result.text, getattr(result, "confidence", 0.0)
            if result.reason == speechsdk.ResultReason.Canceled:
                raise SpeechError(f"Azure Speech recognition canceled: {result.cancellation_details.error_details}")
            logger.warning("No speech recognized (reason=%s)", result.reason)
            return "", 0.0

        return self._with_fallback(recognize)

    def transcribe_bytes(self, data: bytes, suffix: str = ".wav", lang: str = "en-US") -> Tuple[str, float]:
        path = self.storage_dir / f"upload-{uuid.uuid4()}{suffix}"
        path.write_bytes(data)
        try:
            return self.transcribe_audio(str(path), lang)
        finally:
            path.unlink(missing_ok=True)
