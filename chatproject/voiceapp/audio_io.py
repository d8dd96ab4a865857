# voiceapp/audio_io.py
"""PyAudio-backed microphone capture and speaker playback."""
import io
import logging
import threading
import wave
from typing import Callable, Optional

import pyaudio

from .errors import DeviceError
from .recorder import CaptureConstraints

logger = logging.getLogger(__name__)

FORMAT = pyaudio.paInt16
CHUNK = 1024


class PyAudioCaptureStream:
    def __init__(self, pya: pyaudio.PyAudio, stream, sample_rate: int, channels: int):
        self._pya = pya
        self._stream = stream
        self.sample_rate = sample_rate
        self.channels = channels
        self.sample_width = pya.get_sample_size(FORMAT)

    def pause(self) -> None:
        self._stream.stop_stream()

    def resume(self) -> None:
        self._stream.start_stream()

    def close(self) -> None:
        try:
            if self._stream.is_active():
                self._stream.stop_stream()
        finally:
            self._stream.close()


class PyAudioMicrophone:
    """
    Opens the default input device in callback mode.

    PortAudio has no echo cancellation or noise suppression switches; those
    constraints are accepted and logged so the host OS settings apply.
    """

    def __init__(self, pya: Optional[pyaudio.PyAudio] = None, device_index: Optional[int] = None):
        self.pya = pya or pyaudio.PyAudio()
        self.device_index = device_index

    def _pick_rate(self, device_index: int, preferred: int) -> int:
        try:
            self.pya.is_format_supported(
                preferred, input_device=device_index, input_channels=1, input_format=FORMAT
            )
            return preferred
        except ValueError:
            info = self.pya.get_device_info_by_index(device_index)
            return int(info.get("defaultSampleRate", 16000))

    def open(
        self,
        constraints: CaptureConstraints,
        on_frames: Callable[[bytes], None],
        on_error: Callable[[Exception], None],
    ) -> PyAudioCaptureStream:
        try:
            if self.device_index is None:
                mic_info = self.pya.get_default_input_device_info()
                device_index = int(mic_info["index"])
            else:
                device_index = self.device_index
        except (IOError, OSError) as exc:
            raise DeviceError(f"No microphone available: {exc}") from exc

        if constraints.echo_cancellation or constraints.noise_suppression:
            logger.debug("Echo cancellation / noise suppression left to the OS audio stack")

        rate = self._pick_rate(device_index, constraints.sample_rate)

        def _callback(in_data, frame_count, time_info, status):
            if status & pyaudio.paInputOverflow:
                logger.debug("Input overflow (%s frames)", frame_count)
            try:
                on_frames(in_data)
            except Exception as exc:
                on_error(exc)
                return (None, pyaudio.paAbort)
            return (None, pyaudio.paContinue)

        try:
            stream = self.pya.open(
                format=FORMAT,
                channels=constraints.channels,
                rate=rate,
                input=True,
                input_device_index=device_index,
                frames_per_buffer=CHUNK,
                stream_callback=_callback,
            )
        except (IOError, OSError) as exc:
            raise DeviceError(f"Microphone could not be opened: {exc}") from exc
        return PyAudioCaptureStream(self.pya, stream, rate, constraints.channels)


class PlaybackHandle:
    def __init__(self):
        self._stop = threading.Event()
        self.thread: Optional[threading.Thread] = None

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        self._stop.set()


class PyAudioPlayer:
    """Plays WAV bytes on the default output device from a worker thread."""

    def __init__(self, pya: Optional[pyaudio.PyAudio] = None):
        self.pya = pya or pyaudio.PyAudio()

    def play(
        self,
        audio: bytes,
        on_end: Callable[[], None],
        on_error: Callable[[Exception], None],
    ) -> PlaybackHandle:
        handle = PlaybackHandle()
        handle.thread = threading.Thread(
            target=self._worker, args=(audio, handle, on_end, on_error), daemon=True, name="tts-playback"
        )
        handle.thread.start()
        return handle

    def _worker(self, audio, handle, on_end, on_error) -> None:
        stream = None
        try:
            with wave.open(io.BytesIO(audio), "rb") as wf:
                stream = self.pya.open(
                    format=self.pya.get_format_from_width(wf.getsampwidth()),
                    channels=wf.getnchannels(),
                    rate=wf.getframerate(),
                    output=True,
                )
                data = wf.readframes(CHUNK)
                while data and not handle.stopped:
                    stream.write(data)
                    data = wf.readframes(CHUNK)
        except Exception as exc:
            if not handle.stopped:
                on_error(exc)
            return
        finally:
            if stream is not None:
                try:
                    stream.stop_stream()
                    stream.close()
                except Exception:
                    logger.debug("Closing playback stream failed", exc_info=True)
        if not handle.stopped:
            on_end()
