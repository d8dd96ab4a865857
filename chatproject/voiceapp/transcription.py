# voiceapp/transcription.py
"""
Single-utterance speech-to-text.

Recognizers report through callbacks (possibly from a worker thread). The
client turns one recognition into one awaitable that settles exactly once:
a transcript, a classified RecognitionError, or a timeout.
"""
from __future__ import annotations

import asyncio
import locale
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import speech_recognition as sr

from .errors import (
    InvalidStateError,
    RecognitionError,
    RecognitionErrorKind,
    TranscriptionTimeoutError,
    UnsupportedError,
)
from .recorder import DeviceLock

logger = logging.getLogger(__name__)

TRANSCRIBE_TIMEOUT_S = 10.0
DEFAULT_LANGUAGE = "en-US"

# Recognizer error codes (web speech names plus our own) -> taxonomy
_ERROR_CODES = {
    "no-speech": RecognitionErrorKind.NO_SPEECH,
    "no-match": RecognitionErrorKind.NO_SPEECH,
    "audio-capture": RecognitionErrorKind.DEVICE,
    "device": RecognitionErrorKind.DEVICE,
    "not-allowed": RecognitionErrorKind.DENIED,
    "service-not-allowed": RecognitionErrorKind.DENIED,
    "denied": RecognitionErrorKind.DENIED,
    "network": RecognitionErrorKind.NETWORK,
    "aborted": RecognitionErrorKind.ABORTED,
    "language-not-supported": RecognitionErrorKind.LANGUAGE_UNSUPPORTED,
    "language-unsupported": RecognitionErrorKind.LANGUAGE_UNSUPPORTED,
}


def classify_error(code: str) -> RecognitionErrorKind:
    return _ERROR_CODES.get((code or "").strip().lower(), RecognitionErrorKind.OTHER)


def ambient_language() -> str:
    """The process locale as a BCP-47 tag, e.g. ``en_US`` -> ``en-US``."""
    try:
        name = locale.getlocale()[0]
    except ValueError:
        name = None
    if not name or name in ("C", "POSIX"):
        return DEFAULT_LANGUAGE
    return name.split(".")[0].replace("_", "-")


@dataclass(frozen=True)
class RecognitionConfig:
    language: str = DEFAULT_LANGUAGE
    continuous: bool = False
    interim_results: bool = False
    max_alternatives: int = 1


class RecognizerBackend(Protocol):
    def is_supported(self) -> bool: ...

    def start(
        self,
        config: RecognitionConfig,
        on_result: Callable[[str], None],
        on_error: Callable[[str], None],
    ) -> None: ...

    def stop(self) -> None: ...


class TranscriptionClient:
    def __init__(
        self,
        backend: Optional[RecognizerBackend],
        *,
        timeout: float = TRANSCRIBE_TIMEOUT_S,
        language: Optional[str] = None,
        lock: Optional[DeviceLock] = None,
    ):
        self._backend = backend
        self.timeout = timeout
        self.lock = lock
        self.config = RecognitionConfig(language=language or ambient_language())

    @property
    def supported(self) -> bool:
        return self._backend is not None and self._backend.is_supported()

    async def transcribe(self) -> str:
        if not self.supported:
            raise UnsupportedError("Speech recognition not supported")
        if self.lock is not None:
            try:
                self.lock.acquire(self)
            except InvalidStateError as exc:
                raise RecognitionError(RecognitionErrorKind.DEVICE, "Microphone is busy") from exc

        backend = self._backend
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def _settle_result(text: str) -> None:
            if future.done():
                return
            transcript = (text or "").strip()
            if transcript:
                future.set_result(transcript)
            else:
                future.set_exception(
                    RecognitionError(RecognitionErrorKind.NO_SPEECH, "No speech detected")
                )

        def _settle_error(code: str) -> None:
            if future.done():
                return
            future.set_exception(RecognitionError(classify_error(code)))

        def _on_timeout() -> None:
            if future.done():
                return
            backend.stop()
            future.set_exception(TranscriptionTimeoutError("Speech recognition timeout"))

        def on_result(text: str) -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_settle_result, text)

        def on_error(code: str) -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_settle_error, code)

        timer = loop.call_later(self.timeout, _on_timeout)
        logger.debug("Speech recognition started (lang=%s)", self.config.language)
        try:
            try:
                backend.start(self.config, on_result, on_error)
            except Exception as exc:
                raise RecognitionError(RecognitionErrorKind.OTHER, f"Recognizer failed to start: {exc}") from exc
            return await future
        except asyncio.CancelledError:
            backend.stop()
            raise
        finally:
            timer.cancel()
            if self.lock is not None:
                self.lock.release(self)
            logger.debug("Speech recognition ended")


class SpeechRecognitionBackend:
    """
    ``speech_recognition`` microphone + Google Web Speech recognizer.

    ``listen``/``recognize_google`` block, so each utterance runs on a daemon
    thread. ``stop`` cannot interrupt the thread; it only makes sure nothing
    is reported afterwards.
    """

    def __init__(
        self,
        recognizer: Optional[sr.Recognizer] = None,
        *,
        ambient_duration: float = 0.5,
        listen_timeout: float = TRANSCRIBE_TIMEOUT_S,
    ):
        self.recognizer = recognizer or sr.Recognizer()
        self.ambient_duration = ambient_duration
        self.listen_timeout = listen_timeout
        self._cancelled = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def is_supported(self) -> bool:
        try:
            sr.Microphone.get_pyaudio()
        except AttributeError:
            return False
        return True

    def start(self, config, on_result, on_error) -> None:
        self._cancelled = threading.Event()
        cancelled = self._cancelled
        self._thread = threading.Thread(
            target=self._listen, args=(config, on_result, on_error, cancelled), daemon=True, name="stt-listen"
        )
        self._thread.start()

    def stop(self) -> None:
        self._cancelled.set()

    def _listen(self, config, on_result, on_error, cancelled: threading.Event) -> None:
        try:
            with sr.Microphone() as source:
                self.recognizer.adjust_for_ambient_noise(source, duration=self.ambient_duration)
                audio = self.recognizer.listen(
                    source, timeout=self.listen_timeout, phrase_time_limit=self.listen_timeout
                )
            if cancelled.is_set():
                return
            result = self.recognizer.recognize_google(audio, language=config.language)
        except sr.WaitTimeoutError:
            code = "no-speech"
        except sr.UnknownValueError:
            code = "no-match"
        except sr.RequestError as exc:
            logger.warning("Recognition request failed: %s", exc)
            code = "language-not-supported" if "language" in str(exc).lower() else "network"
        except (OSError, AttributeError) as exc:
            logger.warning("Microphone unavailable for recognition: %s", exc)
            code = "audio-capture"
        else:
            if not cancelled.is_set():
                on_result(result if isinstance(result, str) else "")
            return
        if not cancelled.is_set():
            on_error(code)
