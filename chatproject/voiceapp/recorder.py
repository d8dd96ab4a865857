# voiceapp/recorder.py
"""
One microphone capture at a time: start / pause / resume / stop, a hard
maximum duration, and release of every acquired resource on the way out.

The actual device lives behind ``CaptureBackend`` (see ``audio_io.PyAudioMicrophone``).
Backends deliver frames from their own audio thread; the session hops them
onto the event loop before touching any state.
"""
from __future__ import annotations

import asyncio
import io
import logging
import threading
import time
import wave
import weakref
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Protocol

from .errors import DeviceError, InvalidStateError
from .level_meter import AudioLevelMeter

logger = logging.getLogger(__name__)

MAX_DURATION_MS = 60_000
TICK_INTERVAL_S = 0.1


class RecordingState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"


@dataclass(frozen=True)
class CaptureConstraints:
    echo_cancellation: bool = True
    noise_suppression: bool = True
    sample_rate: int = 44100
    channels: int = 1
    sample_width: int = 2  # bytes, PCM16


@dataclass(frozen=True)
class AudioClip:
    data: bytes
    duration_ms: int
    sample_rate: int
    channels: int = 1
    mime_type: str = "audio/wav"

    @property
    def size(self) -> int:
        return len(self.data)


class CaptureStream(Protocol):
    sample_rate: int
    channels: int
    sample_width: int

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def close(self) -> None: ...


class CaptureBackend(Protocol):
    def open(
        self,
        constraints: CaptureConstraints,
        on_frames: Callable[[bytes], None],
        on_error: Callable[[Exception], None],
    ) -> CaptureStream:
        """Blocking open of an exclusive input stream. Raises DeviceError."""


class DeviceLock:
    """
    Process-wide ownership of one input device. Every RecordingSession and
    TranscriptionClient on the same backend shares the lock, so only one of
    them ever has the microphone open.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._owner = None

    @property
    def owner(self):
        return self._owner

    def acquire(self, owner) -> None:
        with self._guard:
            if self._owner is not None and self._owner is not owner:
                raise InvalidStateError("The microphone is in use by another session")
            self._owner = owner

    def release(self, owner) -> None:
        with self._guard:
            if self._owner is owner:
                self._owner = None


_device_locks: "weakref.WeakKeyDictionary[object, DeviceLock]" = weakref.WeakKeyDictionary()


def device_lock(backend) -> DeviceLock:
    lock = _device_locks.get(backend)
    if lock is None:
        lock = _device_locks[backend] = DeviceLock()
    return lock


def encode_wav(frames: List[bytes], sample_rate: int, channels: int, sample_width: int) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(b"".join(frames))
    return buf.getvalue()


class RecordingSession:
    def __init__(
        self,
        backend: CaptureBackend,
        *,
        on_data_available: Optional[Callable[[AudioClip], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        on_tick: Optional[Callable[[int, float], None]] = None,
        max_duration_ms: int = MAX_DURATION_MS,
        constraints: Optional[CaptureConstraints] = None,
        tick_interval: float = TICK_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
        meter: Optional[AudioLevelMeter] = None,
        lock: Optional[DeviceLock] = None,
    ):
        self._backend = backend
        self._device = lock or device_lock(backend)
        self.on_data_available = on_data_available
        self.on_error = on_error
        self.on_tick = on_tick
        self.max_duration_ms = max_duration_ms
        self.constraints = constraints or CaptureConstraints()
        self.tick_interval = tick_interval
        self._clock = clock
        self._meter = meter or AudioLevelMeter()

        self._state = RecordingState.IDLE
        self._starting = False
        self._start_cancelled = False
        self._stream: Optional[CaptureStream] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._frames: List[bytes] = []
        self._accumulated_s = 0.0
        self._segment_started: Optional[float] = None
        self._ticker: Optional[asyncio.Task] = None
        self._deadline: Optional[asyncio.TimerHandle] = None

    # ---------------- State ----------------
    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state is not RecordingState.IDLE

    @property
    def is_paused(self) -> bool:
        return self._state is RecordingState.PAUSED

    @property
    def duration_ms(self) -> int:
        total = self._accumulated_s
        if self._state is RecordingState.RECORDING and self._segment_started is not None:
            total += self._clock() - self._segment_started
        return int(total * 1000)

    @property
    def audio_level(self) -> float:
        return self._meter.level

    @property
    def holds_resources(self) -> bool:
        return (
            self._stream is not None
            or self._ticker is not None
            or self._deadline is not None
            or self._meter.running
            or self._device.owner is self
        )

    # ---------------- Public API ----------------
    async def start(self) -> None:
        if self._state is not RecordingState.IDLE or self._starting:
            raise InvalidStateError("A recording is already in progress")
        self._device.acquire(self)

        self._loop = asyncio.get_running_loop()
        self._starting = True
        self._start_cancelled = False
        try:
            stream = await asyncio.to_thread(
                self._backend.open, self.constraints, self._frames_from_thread, self._error_from_thread
            )
        except DeviceError:
            self._device.release(self)
            raise
        except Exception as exc:
            self._device.release(self)
            raise DeviceError(f"Could not open microphone: {exc}") from exc
        except asyncio.CancelledError:
            self._device.release(self)
            raise
        finally:
            self._starting = False

        if self._start_cancelled:
            logger.info("Recording cancelled while the microphone was opening")
            self._close_stream(stream)
            self._device.release(self)
            return

        self._stream = stream
        self._frames = []
        self._accumulated_s = 0.0
        self._segment_started = self._clock()
        self._state = RecordingState.RECORDING

        self._meter.start()
        self._ticker = self._loop.create_task(self._tick())
        self._deadline = self._loop.call_later(self.max_duration_ms / 1000, self._on_deadline)
        logger.info(
            "Recording started (rate=%s, max=%sms)", getattr(stream, "sample_rate", "?"), self.max_duration_ms
        )

    def pause(self) -> bool:
        if self._state is not RecordingState.RECORDING:
            return False
        self._accumulated_s += self._clock() - (self._segment_started or self._clock())
        self._segment_started = None
        self._state = RecordingState.PAUSED
        self._meter.freeze()
        self._stream.pause()
        self._emit_tick()
        return True

    def resume(self) -> bool:
        if self._state is not RecordingState.PAUSED:
            return False
        self._stream.resume()
        self._segment_started = self._clock()
        self._state = RecordingState.RECORDING
        self._meter.start()
        return True

    def stop(self) -> Optional[AudioClip]:
        if self._starting:
            self._start_cancelled = True
            return None
        if self._state is RecordingState.IDLE:
            return None

        duration_ms = self.duration_ms
        stream = self._stream
        frames = self._frames
        try:
            clip = AudioClip(
                data=encode_wav(
                    frames,
                    sample_rate=getattr(stream, "sample_rate", self.constraints.sample_rate),
                    channels=getattr(stream, "channels", self.constraints.channels),
                    sample_width=getattr(stream, "sample_width", self.constraints.sample_width),
                ),
                duration_ms=duration_ms,
                sample_rate=getattr(stream, "sample_rate", self.constraints.sample_rate),
                channels=getattr(stream, "channels", self.constraints.channels),
            )
        except Exception as exc:
            self._fail(DeviceError(f"Could not encode recording: {exc}"))
            return None

        self.cleanup()
        logger.info("Recording stopped after %sms (%s bytes)", duration_ms, clip.size)
        if self.on_data_available:
            self.on_data_available(clip)
        return clip

    def cleanup(self) -> None:
        if self._starting:
            self._start_cancelled = True
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None
        self._meter.stop()
        if self._stream is not None:
            self._close_stream(self._stream)
            self._stream = None
        self._frames = []
        self._accumulated_s = 0.0
        self._segment_started = None
        self._state = RecordingState.IDLE
        if not self._starting:
            self._device.release(self)

    # ---------------- Internal ----------------
    def _close_stream(self, stream: CaptureStream) -> None:
        try:
            stream.close()
        except Exception:
            logger.warning("Closing the capture stream failed", exc_info=True)

    def _frames_from_thread(self, data: bytes) -> None:
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._handle_frames, data)

    def _error_from_thread(self, exc: Exception) -> None:
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._fail, exc)

    def _handle_frames(self, data: bytes) -> None:
        if self._state is not RecordingState.RECORDING or not data:
            return
        self._frames.append(data)
        self._meter.feed(data)

    def _fail(self, exc: Exception) -> None:
        if not isinstance(exc, DeviceError):
            exc = DeviceError(f"Recording failed: {exc}")
        logger.error("Recording error: %s", exc)
        self.cleanup()
        if self.on_error:
            self.on_error(exc)

    def _on_deadline(self) -> None:
        self._deadline = None
        if self.is_recording:
            logger.info("Maximum recording duration reached (%sms)", self.max_duration_ms)
            self.stop()

    def _emit_tick(self) -> None:
        if self.on_tick:
            self.on_tick(self.duration_ms, self._meter.level)

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.tick_interval)
            self._emit_tick()
