# voiceapp/synthesis.py
"""Speech engines: Google Cloud Text-to-Speech over HTTP and on-device pyttsx3."""
from __future__ import annotations

import base64
import binascii
import logging
import threading
from typing import List, Optional

import httpx
import pyttsx3

from .errors import SynthesisError
from .language import Voice, VoiceConfig
from .playback import Utterance

logger = logging.getLogger(__name__)

CLOUD_TTS_ENDPOINT = "https://texttospeech.googleapis.com/v1/text:synthesize"


class CloudTtsClient:
    """
    Remote synthesis. Returns decoded audio bytes; LINEAR16 by default so the
    result is a WAV file the PyAudio player can stream directly.
    """

    def __init__(
        self,
        api_key: str,
        *,
        endpoint: str = CLOUD_TTS_ENDPOINT,
        audio_encoding: str = "LINEAR16",
        speaking_rate: float = 1.0,
        pitch: float = 0.0,
        volume_gain_db: float = 0.0,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 20.0,
    ):
        self.api_key = api_key
        self.endpoint = endpoint
        self.audio_encoding = audio_encoding
        self.speaking_rate = speaking_rate
        self.pitch = pitch
        self.volume_gain_db = volume_gain_db
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10.0))

    def build_request(self, text: str, voice: VoiceConfig) -> dict:
        return {
            "input": {"text": text},
            "voice": {
                "languageCode": voice.language_code,
                "name": voice.voice_name,
                "ssmlGender": voice.gender,
            },
            "audioConfig": {
                "audioEncoding": self.audio_encoding,
                "speakingRate": self.speaking_rate,
                "pitch": self.pitch,
                "volumeGainDb": self.volume_gain_db,
            },
        }

    async def synthesize(self, text: str, voice: VoiceConfig) -> bytes:
        logger.info("POST %s voice=%s chars=%d", self.endpoint, voice.voice_name, len(text))
        try:
            response = await self._client.post(
                self.endpoint, params={"key": self.api_key}, json=self.build_request(text, voice)
            )
        except httpx.HTTPError as exc:
            raise SynthesisError(f"TTS request failed: {exc}") from exc

        if response.status_code != 200:
            logger.error("TTS API error %s: %s", response.status_code, response.text[:200])
            raise SynthesisError(f"TTS API error: {response.status_code}")

        try:
            content = response.json().get("audioContent")
        except ValueError as exc:
            raise SynthesisError("TTS response was not JSON") from exc
        if not content:
            raise SynthesisError("No audio content in response")
        try:
            return base64.b64decode(content, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise SynthesisError("Audio content was not valid base64") from exc

    async def aclose(self) -> None:
        await self._client.aclose()


def _voice_language(raw_languages) -> str:
    for item in raw_languages or []:
        if isinstance(item, bytes):
            # espeak reports e.g. b"\x05en-us"
            item = item.decode("utf-8", errors="ignore")
        cleaned = "".join(ch for ch in str(item) if ch.isprintable()).strip()
        if cleaned:
            return cleaned.replace("_", "-")
    return ""


class Pyttsx3Engine:
    """
    On-device synthesis with pyttsx3.

    ``runAndWait`` blocks, so every utterance runs on its own daemon thread;
    a lock keeps the engine's run loop single-entry. pyttsx3 cannot pause,
    so ``paused`` is always False and the watchdog never has to intervene.
    """

    def __init__(self, engine=None, *, base_rate: Optional[int] = None):
        self._engine = engine or pyttsx3.init()
        self._base_rate = base_rate or int(self._engine.getProperty("rate") or 200)
        self._lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._current: Optional[Utterance] = None

    @property
    def speaking(self) -> bool:
        return self._current is not None

    @property
    def paused(self) -> bool:
        return False

    def get_voices(self) -> List[Voice]:
        current = self._engine.getProperty("voice")
        voices = []
        for v in self._engine.getProperty("voices") or []:
            voices.append(
                Voice(
                    name=v.name or v.id,
                    lang=_voice_language(getattr(v, "languages", None)),
                    default=(v.id == current),
                    voice_uri=v.id,
                )
            )
        return voices

    def speak(self, utterance: Utterance) -> None:
        with self._state_lock:
            self._current = utterance
        threading.Thread(target=self._run, args=(utterance,), daemon=True, name="tts-local").start()

    def _run(self, utterance: Utterance) -> None:
        with self._lock:
            try:
                if utterance.voice is not None and utterance.voice.voice_uri:
                    self._engine.setProperty("voice", utterance.voice.voice_uri)
                self._engine.setProperty("rate", int(self._base_rate * utterance.rate))
                self._engine.setProperty("volume", utterance.volume)
                self._engine.say(utterance.text)
                self._engine.runAndWait()
            except Exception as exc:
                self._finished(utterance)
                utterance.fail(exc)
                return
            self._finished(utterance)
        utterance.finish()

    def _finished(self, utterance: Utterance) -> None:
        # only the current utterance may clear the speaking flag
        with self._state_lock:
            if self._current is utterance:
                self._current = None

    def cancel(self) -> None:
        try:
            self._engine.stop()
        except Exception:
            logger.debug("pyttsx3 stop failed", exc_info=True)
        with self._state_lock:
            self._current = None

    def pause(self) -> None:
        pass

    def resume(self) -> None:
        pass
