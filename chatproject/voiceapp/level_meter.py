# voiceapp/level_meter.py
import asyncio
import logging
from typing import Callable, Optional

import numpy as np

logger = logging.getLogger(__name__)

DISPLAY_INTERVAL_S = 1 / 60


def _int16_to_float32(frame: bytes) -> np.ndarray:
    samples = np.frombuffer(frame, dtype=np.int16)
    return (samples.astype(np.float32) / 32768.0).clip(-1.0, 1.0)


class AudioLevelMeter:
    """
    Turns the live microphone signal into one loudness number in [0, 1].

    Mirrors what a web analyser node reports: Blackman-windowed FFT, each bin
    converted to dB and squeezed into a byte between ``min_decibels`` and
    ``max_decibels``, then the bins are averaged and divided by 255.
    """

    def __init__(
        self,
        on_level: Optional[Callable[[float], None]] = None,
        *,
        interval: float = DISPLAY_INTERVAL_S,
        fft_size: int = 256,
        min_decibels: float = -100.0,
        max_decibels: float = -30.0,
    ):
        self.on_level = on_level
        self.interval = interval
        self.fft_size = fft_size
        self.min_decibels = min_decibels
        self.max_decibels = max_decibels
        self._window = np.blackman(fft_size).astype(np.float32)
        self._samples = np.zeros(fft_size, dtype=np.float32)
        self._level = 0.0
        self._task: Optional[asyncio.Task] = None

    @property
    def level(self) -> float:
        return self._level

    @property
    def running(self) -> bool:
        return self._task is not None

    def feed(self, frame: bytes) -> None:
        """Keep the newest ``fft_size`` samples; called for every captured frame."""
        if not frame:
            return
        incoming = _int16_to_float32(frame)
        if incoming.size >= self.fft_size:
            self._samples = incoming[-self.fft_size:].copy()
        else:
            self._samples = np.concatenate((self._samples[incoming.size:], incoming))

    def compute_level(self, samples: Optional[np.ndarray] = None) -> float:
        data = self._samples if samples is None else samples
        spectrum = np.abs(np.fft.rfft(data * self._window))[: self.fft_size // 2] / self.fft_size
        decibels = 20.0 * np.log10(np.maximum(spectrum, 1e-12))
        scaled = (decibels - self.min_decibels) / (self.max_decibels - self.min_decibels) * 255.0
        byte_bins = np.floor(np.clip(scaled, 0.0, 255.0))
        return float(byte_bins.mean() / 255.0)

    def sample(self) -> float:
        self._level = self.compute_level()
        if self.on_level:
            self.on_level(self._level)
        return self._level

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def freeze(self) -> None:
        """Stop sampling and keep the last published value."""
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def stop(self) -> None:
        self.freeze()
        self._samples = np.zeros(self.fft_size, dtype=np.float32)
        self._level = 0.0

    async def _run(self) -> None:
        try:
            while True:
                self.sample()
                await asyncio.sleep(self.interval)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Audio level sampling failed")
            self._task = None
