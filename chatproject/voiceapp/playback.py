# voiceapp/playback.py
"""
Speak text aloud: remote synthesis when configured, on-device otherwise.

Only one playback exists at a time. Every ``speak``/``stop`` bumps a
generation counter; callbacks and late synthesis results carrying an older
generation are dropped, which is what keeps two quick ``speak`` calls from
overlapping.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional, Protocol, Sequence

from .errors import SynthesisError, UnsupportedError
from .language import (
    CHUNK_LIMIT,
    Voice,
    VoiceConfig,
    detect_language as default_detect_language,
    select_voice as default_select_voice,
    split_into_chunks,
    voice_for_language,
)
from .transcription import ambient_language

logger = logging.getLogger(__name__)

WATCHDOG_INTERVAL_S = 0.1


@dataclass
class Utterance:
    text: str
    voice: Optional[Voice] = None
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0
    on_end: Optional[Callable[[], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None

    def finish(self) -> None:
        if self.on_end:
            self.on_end()

    def fail(self, exc: Exception) -> None:
        if self.on_error:
            self.on_error(exc)


class SpeechEngine(Protocol):
    speaking: bool
    paused: bool

    def get_voices(self) -> List[Voice]: ...

    def speak(self, utterance: Utterance) -> None: ...

    def cancel(self) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...


class RemoteSynthesizer(Protocol):
    async def synthesize(self, text: str, voice: VoiceConfig) -> bytes: ...


class PlaybackHandle(Protocol):
    def stop(self) -> None: ...


class AudioPlayer(Protocol):
    def play(
        self, audio: bytes, on_end: Callable[[], None], on_error: Callable[[Exception], None]
    ) -> PlaybackHandle: ...


class SpeechPlaybackController:
    def __init__(
        self,
        *,
        synthesizer: Optional[RemoteSynthesizer] = None,
        player: Optional[AudioPlayer] = None,
        engine: Optional[SpeechEngine] = None,
        language: Optional[str] = None,
        detect_language: Callable[[str], str] = default_detect_language,
        select_voice: Callable[[Sequence[Voice], str], Optional[Voice]] = default_select_voice,
        chunk_limit: int = CHUNK_LIMIT,
        watchdog_interval: float = WATCHDOG_INTERVAL_S,
    ):
        self._synthesizer = synthesizer
        self._player = player
        self._engine = engine
        self.language = language or ambient_language()
        self._detect_language = detect_language
        self._select_voice = select_voice
        self.chunk_limit = chunk_limit
        self.watchdog_interval = watchdog_interval

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._generation = 0
        self._speaking = False
        self._handle: Optional[PlaybackHandle] = None
        self._queue: Deque[str] = deque()
        self._watchdog: Optional[asyncio.Task] = None

    @property
    def remote_enabled(self) -> bool:
        return self._synthesizer is not None and self._player is not None

    @property
    def supported(self) -> bool:
        return self.remote_enabled or self._engine is not None

    def is_speaking(self) -> bool:
        return self._speaking

    # ---------------- Public API ----------------
    async def speak(self, text: str, on_done: Optional[Callable[[], None]] = None) -> None:
        self.stop()
        text = (text or "").strip()
        if not text:
            self._done(on_done)
            return
        if not self.supported:
            raise UnsupportedError("Speech synthesis not supported")

        self._loop = asyncio.get_running_loop()
        self._generation += 1
        generation = self._generation
        if self.remote_enabled:
            await self._speak_remote(text, on_done, generation)
        else:
            self._speak_local(text, on_done, generation)

    def stop(self) -> None:
        self._generation += 1
        if self._handle is not None:
            try:
                self._handle.stop()
            except Exception:
                logger.warning("Stopping playback failed", exc_info=True)
            self._handle = None
        self._cancel_watchdog()
        self._queue.clear()
        if self._engine is not None and (self._speaking or self._engine.speaking):
            self._engine.cancel()
        self._speaking = False

    # ---------------- Remote path ----------------
    async def _speak_remote(self, text: str, on_done, generation: int) -> None:
        voice = voice_for_language(self._detect_language(text))
        self._speaking = True
        try:
            audio = await self._synthesizer.synthesize(text, voice)
            if generation != self._generation:
                logger.debug("Discarding synthesized audio for a superseded request")
                return
            self._handle = self._player.play(
                audio,
                on_end=lambda: self._from_thread(self._remote_finished, generation, on_done, None),
                on_error=lambda exc: self._from_thread(self._remote_finished, generation, on_done, exc),
            )
        except Exception as exc:
            if generation != self._generation:
                logger.debug("Synthesis failed for a superseded request: %s", exc)
                return
            logger.error("Cloud TTS error: %s", exc)
            self._speaking = False
            self._done(on_done)
            if isinstance(exc, SynthesisError):
                raise
            raise SynthesisError(str(exc)) from exc

    def _remote_finished(self, generation: int, on_done, exc: Optional[Exception]) -> None:
        if generation != self._generation:
            return
        if exc is not None:
            logger.error("Error playing audio: %s", exc)
        self._handle = None
        self._speaking = False
        self._done(on_done)

    # ---------------- On-device path ----------------
    def _speak_local(self, text: str, on_done, generation: int) -> None:
        voice = self._select_voice(self._engine.get_voices(), self.language)
        self._speaking = True
        if len(text) > self.chunk_limit:
            self._queue = deque(split_into_chunks(text, self.chunk_limit))
            logger.debug("Speaking %d chunks", len(self._queue))
            self._speak_next(generation, voice, on_done)
            return

        self._engine.speak(self._utterance(text, voice, generation, on_done))
        self._watchdog = self._loop.create_task(self._watch(generation))

    def _utterance(self, text: str, voice: Optional[Voice], generation: int, on_done) -> Utterance:
        return Utterance(
            text=text,
            voice=voice,
            on_end=lambda: self._from_thread(self._utterance_ended, generation, voice, on_done),
            on_error=lambda exc: self._from_thread(self._utterance_failed, generation, on_done, exc),
        )

    def _speak_next(self, generation: int, voice: Optional[Voice], on_done) -> None:
        chunk = self._queue.popleft()
        self._engine.speak(self._utterance(chunk, voice, generation, on_done))

    def _utterance_ended(self, generation: int, voice: Optional[Voice], on_done) -> None:
        if generation != self._generation:
            return
        if self._queue:
            self._speak_next(generation, voice, on_done)
            return
        self._finish_local(on_done)

    def _utterance_failed(self, generation: int, on_done, exc: Exception) -> None:
        if generation != self._generation:
            return
        logger.error("Speech synthesis error: %s", exc)
        self._queue.clear()
        self._finish_local(on_done)

    def _finish_local(self, on_done) -> None:
        self._cancel_watchdog()
        self._speaking = False
        self._done(on_done)

    async def _watch(self, generation: int) -> None:
        # Some engines pause themselves mid-utterance; nudge them back.
        try:
            while True:
                await asyncio.sleep(self.watchdog_interval)
                if generation != self._generation or not self._speaking or not self._engine.speaking:
                    break
                if self._engine.paused:
                    logger.debug("Engine paused itself, resuming")
                    self._engine.resume()
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.warning("Speech watchdog failed", exc_info=True)
        finally:
            if self._watchdog is asyncio.current_task():
                self._watchdog = None

    # ---------------- Helpers ----------------
    def _cancel_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _from_thread(self, fn, *args) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(fn, *args)

    @staticmethod
    def _done(on_done) -> None:
        if on_done is None:
            return
        try:
            on_done()
        except Exception:
            logger.exception("Speech completion callback failed")
