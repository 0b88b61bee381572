"""
Tests unitaires — VoiceEngine & VoiceAssistant.
"""

from unittest.mock import MagicMock, patch

import pytest

from agrilo.core.errors import ApiError
from agrilo.main import app
from agrilo.services.voice import VoiceAssistant, build_context, detect_language, get_voice_assistant
from agrilo.services.voice_engine import SpeechError, VoiceEngine
from conftest import auth_headers, make_farm, make_user


class TestVoiceEngine:
    """Teste le service VoiceEngine (Azure TTS/STT)."""

    def test_init_creates_storage_dir(self, tmp_path):
        storage = tmp_path / "audio_test"
        engine = VoiceEngine(api_key="fake-key", region="westeurope", storage_dir=str(storage))
        assert storage.exists()
        assert engine.api_key == "fake-key"
        assert engine.region == "westeurope"

    @patch("agrilo.services.voice_engine.speechsdk")
    def test_synthesize_bytes_in_memory(self, mock_sdk, tmp_path):
        mock_result = MagicMock(audio_data=b"ID3-mp3")
        mock_result.reason = mock_sdk.ResultReason.SynthesizingAudioCompleted
        mock_synth = MagicMock()
        mock_synth.speak_text_async.return_value.get.return_value = mock_result
        mock_sdk.SpeechSynthesizer.return_value = mock_synth

        engine = VoiceEngine(api_key="fake", storage_dir=str(tmp_path))
        assert engine.synthesize_bytes("Namaste", voice="hi-IN-SwaraNeural") == b"ID3-mp3"
        assert mock_sdk.SpeechConfig.return_value.speech_synthesis_voice_name == "hi-IN-SwaraNeural"
        assert mock_sdk.SpeechSynthesizer.call_args[1]["audio_config"] is None

    @patch("agrilo.services.voice_engine.speechsdk")
    def test_fallback_key_after_cancellation(self, mock_sdk, tmp_path):
        canceled = MagicMock()
        canceled.reason = mock_sdk.ResultReason.Canceled
        completed = MagicMock(audio_data=b"ok")
        completed.reason = mock_sdk.ResultReason.SynthesizingAudioCompleted
        mock_sdk.SpeechSynthesizer.return_value.speak_text_async.return_value.get.side_effect = [canceled, completed]

        engine = VoiceEngine(api_key="primary", fallback_key="secondary", storage_dir=str(tmp_path))
        assert engine.synthesize_bytes("Hello") == b"ok"
        keys = [c[1]["subscription"] for c in mock_sdk.SpeechConfig.call_args_list]
        assert keys == ["primary", "secondary"]

    @patch("agrilo.services.voice_engine.speechsdk")
    def test_cancellation_without_fallback_raises(self, mock_sdk, tmp_path):
        canceled = MagicMock()
        canceled.reason = mock_sdk.ResultReason.Canceled
        mock_sdk.SpeechSynthesizer.return_value.speak_text_async.return_value.get.return_value = canceled

        engine = VoiceEngine(api_key="primary", storage_dir=str(tmp_path))
        with pytest.raises(SpeechError):
            engine.synthesize_bytes("Hello")

    def test_transcribe_audio_file_not_found(self, tmp_path):
        engine = VoiceEngine(api_key="fake", storage_dir=str(tmp_path))
        with pytest.raises(FileNotFoundError):
            engine.transcribe_audio("/nonexistent/file.wav")

    @patch("agrilo.services.voice_engine.speechsdk")
    def test_transcribe_bytes_cleans_up(self, mock_sdk, tmp_path):
        result = MagicMock(text="When should I irrigate?", confidence=0.9)
        result.reason = mock_sdk.ResultReason.RecognizedSpeech
        mock_sdk.SpeechRecognizer.return_value.recognize_once_async.return_value.get.return_value = result

        engine = VoiceEngine(api_key="fake", storage_dir=str(tmp_path))
        assert engine.transcribe_bytes(b"RIFF", suffix=".wav") == ("When should I irrigate?", 0.9)
        assert list(tmp_path.iterdir()) == []


class TestLanguageDetection:

    @pytest.mark.parametrize("text,expected", [
        ("अभी सिंचाई करें", "hi-IN"),
        ("¿Cuándo debo regar?", "es-ES"),
        ("Irrigate your tomatoes tomorrow morning.", "en-US"),
        ("", "en-US"),
        (None, "en-US"),
    ])
    def test_detect_language(self, text, expected):
        assert detect_language(text) == expected


class TestVoiceAssistant:

    def make_assistant(self, answer="Irrigate tomorrow morning.", tts_error=None, transcript="When to irrigate?"):
        engine = MagicMock()
        engine.transcribe_bytes.return_value = (transcript, 0.8)
        if tts_error:
            engine.synthesize_bytes.side_effect = tts_error
        else:
            engine.synthesize_bytes.return_value = b"mp3-bytes"
        llm = MagicMock(return_value=answer)
        return VoiceAssistant(engine=engine, llm=llm), engine, llm

    def test_full_pipeline(self):
        assistant, engine, llm = self.make_assistant()
        user = MagicMock(language="hi", first_name="Ravi")

        result = assistant.process_query(b"audio", "query.webm", user=user)

        assert result["status"] == "success"
        assert result["data"]["audioBase64"] == "bXAzLWJ5dGVz"
        assert result["data"]["languageDetected"] == "en-US"
        assert engine.transcribe_bytes.call_args[1] == {"suffix": ".webm", "lang": "hi-IN"}
        system_prompt = llm.call_args[0][0][0]["content"]
        assert "Farmer Name: Ravi" in system_prompt
        assert "Farm: No data available" in system_prompt

    def test_tts_failure_returns_text_only(self):
        assistant, _, _ = self.make_assistant(tts_error=RuntimeError("Azure down"))
        result = assistant.process_query(b"audio", "query.wav")
        assert result["status"] == "partial_success"
        assert result["data"]["audioBase64"] is None
        assert result["data"]["textResponse"] == "Irrigate tomorrow morning."

    def test_empty_transcription_is_422(self):
        assistant, _, llm = self.make_assistant(transcript="")
        with pytest.raises(ApiError) as exc:
            assistant.process_query(b"audio", "query.wav")
        assert exc.value.status_code == 422
        llm.assert_not_called()

    def test_disabled_engine_is_503(self):
        with pytest.raises(ApiError) as exc:
            VoiceAssistant(engine=None).engine
        assert exc.value.status_code == 503

    def test_context_lists_crops(self):
        farm = MagicMock(crops=[{"cropName": "rice", "growthStage": "vegetative"}], address="Nashik",
                         soil_type="clay", total_area=2.5)
        farm.name = "River Farm"
        context = build_context(None, farm)
        assert "User: Unknown" in context
        assert "Current Crops: rice (vegetative)" in context


@pytest.fixture
def assistant_override():
    assistant = MagicMock()
    assistant.process_query.return_value = {"status": "success", "data": {"textResponse": "ok"}}
    app.dependency_overrides[get_voice_assistant] = lambda: assistant
    yield assistant
    app.dependency_overrides.pop(get_voice_assistant, None)


class TestVoiceRoute:

    def test_missing_audio(self, client, assistant_override):
        _, token = make_user()
        res = client.post("/api/voice/query", headers=auth_headers(token))
        assert res.status_code == 400
        assert res.json()["message"] == "No audio file provided"

    def test_query_uses_latest_farm(self, client, assistant_override):
        user_id, token = make_user()
        farm_id = make_farm(user_id, name="Latest")
        res = client.post("/api/voice/query", headers=auth_headers(token),
                          files={"audio": ("question.wav", b"RIFF-data", "audio/wav")})
        assert res.status_code == 200
        assert res.json()["status"] == "success"
        args, kwargs = assistant_override.process_query.call_args
        assert args == (b"RIFF-data", "question.wav")
        assert kwargs["farm"].id == farm_id

    def test_requires_auth(self, client, assistant_override):
        res = client.post("/api/voice/query", files={"audio": ("q.wav", b"x", "audio/wav")})
        assert res.status_code == 401

    def test_oversized_audio_is_413(self, client, assistant_override, monkeypatch):
        from agrilo.core.settings import settings

        monkeypatch.setattr(settings, "MAX_UPLOAD_MB", 1)
        _, token = make_user()
        res = client.post("/api/voice/query", headers=auth_headers(token),
                          files={"audio": ("big.wav", b"0" * (1024 * 1024 + 1), "audio/wav")})
        assert res.status_code == 413
        assert res.json()["message"] == "Audio file exceeds 1MB limit"
        assistant_override.process_query.assert_not_called()

    def test_audio_at_limit_is_accepted(self, client, assistant_override, monkeypatch):
        from agrilo.core.settings import settings

        monkeypatch.setattr(settings, "MAX_UPLOAD_MB", 1)
        _, token = make_user()
        res = client.post("/api/voice/query", headers=auth_headers(token),
                          files={"audio": ("ok.wav", b"0" * (1024 * 1024), "audio/wav")})
        assert res.status_code == 200
        assert len(assistant_override.process_query.call_args[0][0]) == 1024 * 1024
