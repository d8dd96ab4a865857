# chatapp/services.py
"""
Builds a ChatOrchestrator from Django settings.

Audio adapters are imported lazily: PyAudio needs PortAudio on the host, and
the web surface must keep working (text chat, persistence) without it.
"""
import functools
import logging
from typing import Optional

from django.conf import settings

from voiceapp.errors import DeviceError
from voiceapp.playback import SpeechPlaybackController
from voiceapp.recorder import DeviceLock, device_lock
from voiceapp.transcription import SpeechRecognitionBackend, TranscriptionClient

from .gemini import MODEL, GeminiModelClient
from .orchestrator import ChatOrchestrator, Listener
from .store import ConversationStore

logger = logging.getLogger(__name__)


def _chat_settings() -> dict:
    return getattr(settings, "CHAT_SETTINGS", {}) or {}


def _voice_settings() -> dict:
    return getattr(settings, "VOICE_SETTINGS", {}) or {}


def websocket_voice_enabled() -> bool:
    return _chat_settings().get("WEBSOCKET_VOICE", True)


def build_model_client() -> GeminiModelClient:
    return GeminiModelClient(
        api_key=getattr(settings, "GEMINI_API_KEY", None),
        model=getattr(settings, "GEMINI_MODEL", None) or MODEL,
    )


def build_store() -> ConversationStore:
    backend_name = getattr(settings, "CHAT_STORE_BACKEND", "django")
    if backend_name == "supabase":
        from .supabase_backend import SupabaseStoreBackend

        backend = SupabaseStoreBackend(
            url=getattr(settings, "SUPABASE_URL", None),
            key=getattr(settings, "SUPABASE_KEY", None),
        )
    else:
        from .db_helpers import DjangoStoreBackend

        backend = DjangoStoreBackend()
    return ConversationStore(backend)


@functools.lru_cache(maxsize=None)
def _shared_microphone(device_index: Optional[int]):
    from voiceapp.audio_io import PyAudioMicrophone

    return PyAudioMicrophone(device_index=device_index)


def build_capture_backend():
    """
    The process-wide microphone. Every session gets the same backend, so
    they all share one DeviceLock and only one of them can record at a time.
    """
    if not _voice_settings().get("ENABLE_MICROPHONE", True):
        return None
    try:
        return _shared_microphone(_voice_settings().get("INPUT_DEVICE_INDEX"))
    except (ImportError, DeviceError, OSError) as e:
        logger.warning("Microphone unavailable: %s", e)
        return None


def build_transcriber(lock: Optional[DeviceLock] = None) -> Optional[TranscriptionClient]:
    voice = _voice_settings()
    return TranscriptionClient(
        SpeechRecognitionBackend(),
        timeout=voice.get("TRANSCRIBE_TIMEOUT_S", 10.0),
        language=voice.get("LANGUAGE"),
        lock=lock,
    )


def build_speaker() -> SpeechPlaybackController:
    voice = _voice_settings()
    synthesizer = player = engine = None

    api_key = getattr(settings, "GOOGLE_CLOUD_TTS_API_KEY", None)
    if api_key and voice.get("CLOUD_TTS", True):
        try:
            from voiceapp.audio_io import PyAudioPlayer
            from voiceapp.synthesis import CloudTtsClient

            player = PyAudioPlayer()
            synthesizer = CloudTtsClient(api_key)
        except (ImportError, OSError) as e:
            logger.warning("Cloud TTS disabled, no audio output: %s", e)
            synthesizer = player = None

    if synthesizer is None:
        try:
            from voiceapp.synthesis import Pyttsx3Engine

            engine = Pyttsx3Engine(base_rate=voice.get("BASE_RATE"))
        except (ImportError, RuntimeError, OSError) as e:
            logger.warning("On-device speech unavailable: %s", e)

    return SpeechPlaybackController(
        synthesizer=synthesizer,
        player=player,
        engine=engine,
        language=voice.get("LANGUAGE"),
        chunk_limit=voice.get("CHUNK_LIMIT", 200),
        watchdog_interval=voice.get("WATCHDOG_INTERVAL_S", 0.1),
    )


def build_orchestrator(listener: Optional[Listener] = None, *, voice: bool = True) -> ChatOrchestrator:
    chat = _chat_settings()
    capture = build_capture_backend() if voice else None
    lock = device_lock(capture) if capture is not None else None
    orchestrator = ChatOrchestrator(
        build_model_client(),
        build_store(),
        transcriber=build_transcriber(lock) if voice else None,
        speaker=build_speaker() if voice else None,
        capture_backend=capture,
        persona=chat.get("DEFAULT_PERSONA", "general"),
        language=chat.get("RESPONSE_LANGUAGE", "en"),
        history_turns=chat.get("HISTORY_TURNS", 10),
        max_recording_ms=_voice_settings().get("MAX_RECORDING_MS", 60_000),
        max_upload_bytes=chat.get("MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
        speak_voice_replies=chat.get("SPEAK_VOICE_REPLIES", True),
        autosave=chat.get("AUTOSAVE", False),
        listener=listener,
    )
    logger.info(
        "Chat session ready (persona=%s, language=%s, voice=%s)", orchestrator.persona.id, orchestrator.language, voice
    )
    return orchestrator
