"""Real-time output graph: voices -> master bus -> (delay loop -> reverb) + dry/analyser.

The graph's clock is the count of frames it has rendered. It only moves when an
output device (or an offline renderer) pulls blocks, which makes it the
hardware clock the scheduler plans against.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from scipy.signal import fftconvolve  # type: ignore[import]

from .settings import EngineSettings

_LOGGER = logging.getLogger("groovedna.graph")

FloatArray = NDArray[np.float64]

_ANALYSER_FFT_SIZE = 256
_ANALYSER_MIN_DB = -100.0
_ANALYSER_MAX_DB = -30.0
_REVERB_DECAY_POWER = 2.5


@dataclass(slots=True)
class _Voice:
    samples: FloatArray
    start: int

    @property
    def end(self) -> int:
        return self.start + len(self.samples)


class _FeedbackDelay:
    """Delay line whose output is fed back into its input through a gain."""

    def __init__(self, delay_samples: int, feedback: float) -> None:
        self._buffer = np.zeros(max(1, delay_samples), dtype=np.float64)
        self._feedback = feedback
        self._pos = 0

    def process(self, block: FloatArray) -> FloatArray:
        out = np.empty_like(block)
        size = len(self._buffer)
        done = 0
        while done < len(block):
            count = min(len(block) - done, size - self._pos)
            segment = slice(self._pos, self._pos + count)
            delayed = self._buffer[segment].copy()
            out[done : done + count] = delayed
            self._buffer[segment] = block[done : done + count] + self._feedback * delayed
            self._pos = (self._pos + count) % size
            done += count
        return out


def build_impulse(seconds: float, sample_rate: int, rng: np.random.Generator) -> FloatArray:
    """Decaying-noise impulse response normalized to unit energy."""
    length = max(1, int(seconds * sample_rate))
    decay = (1.0 - np.arange(length) / length) ** _REVERB_DECAY_POWER
    impulse = rng.uniform(-1.0, 1.0, size=length) * decay
    energy = float(np.sqrt(np.sum(impulse**2)))
    if energy > 0.0:
        impulse = impulse / energy
    return impulse


class _ConvolutionReverb:
    """Block convolution with overlap-add so tails carry across blocks."""

    def __init__(self, impulse: FloatArray) -> None:
        self._impulse = impulse
        self._tail = np.zeros(max(0, len(impulse) - 1), dtype=np.float64)

    def process(self, block: FloatArray) -> FloatArray:
        n = len(block)
        if not block.any():
            out = np.zeros(n, dtype=np.float64)
            head = min(n, len(self._tail))
            out[:head] = self._tail[:head]
            self._tail = np.concatenate((self._tail[head:], np.zeros(head)))
            return out
        wet = np.asarray(fftconvolve(block, self._impulse), dtype=np.float64)
        wet[: len(self._tail)] += self._tail
        self._tail = wet[n:].copy()
        return wet[:n]


def _analyser_level(block: FloatArray) -> float:
    frame = block[-_ANALYSER_FFT_SIZE:]
    if len(frame) < _ANALYSER_FFT_SIZE:
        frame = np.pad(frame, (_ANALYSER_FFT_SIZE - len(frame), 0))
    window = np.blackman(_ANALYSER_FFT_SIZE)
    spectrum = np.abs(np.fft.rfft(frame * window))[: _ANALYSER_FFT_SIZE // 2]
    spectrum = spectrum / _ANALYSER_FFT_SIZE
    decibels = 20.0 * np.log10(spectrum + 1e-12)
    span = _ANALYSER_MAX_DB - _ANALYSER_MIN_DB
    scaled = np.clip((decibels - _ANALYSER_MIN_DB) / span * 255.0, 0.0, 255.0)
    return float(np.mean(scaled)) / 100.0


class AudioGraph:
    """Shared mix bus. Voices are added from the scheduler thread and mixed on render."""

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        rng: np.random.Generator | None = None,
    ) -> None:
        self._settings = settings or EngineSettings()
        self._sample_rate = self._settings.sample_rate
        self._lock = threading.Lock()
        self._voices: list[_Voice] = []
        self._frame = 0
        self._closed = False
        self._level = 0.0
        self._delay = _FeedbackDelay(
            int(round(self._settings.delay_time * self._sample_rate)),
            self._settings.delay_feedback,
        )
        self._reverb: _ConvolutionReverb | None = None
        if self._settings.reverb_enabled:
            impulse = build_impulse(
                self._settings.reverb_seconds,
                self._sample_rate,
                rng or np.random.default_rng(),
            )
            self._reverb = _ConvolutionReverb(impulse)

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def current_time(self) -> float:
        return self._frame / self._sample_rate

    @property
    def frames_rendered(self) -> int:
        return self._frame

    @property
    def audio_level(self) -> float:
        return self._level

    @property
    def active_voices(self) -> int:
        with self._lock:
            return len(self._voices)

    @property
    def closed(self) -> bool:
        return self._closed

    def add_voice(self, samples: FloatArray, onset: float) -> bool:
        """Queue a rendered voice at an absolute clock time; False when the graph is closed."""
        if len(samples) == 0:
            return False
        start = int(round(onset * self._sample_rate))
        with self._lock:
            if self._closed:
                return False
            # Late voices start on the next rendered frame rather than being dropped.
            self._voices.append(_Voice(np.asarray(samples, dtype=np.float64), max(start, self._frame)))
        return True

    def render(self, frames: int) -> NDArray[np.float32]:
        """Mix and advance the clock by `frames`, returning the output block."""
        dry = np.zeros(frames, dtype=np.float64)
        with self._lock:
            block_start = self._frame
            block_end = block_start + frames
            remaining: list[_Voice] = []
            for voice in self._voices:
                if voice.start >= block_end:
                    remaining.append(voice)
                    continue
                dst = max(0, voice.start - block_start)
                src = max(0, block_start - voice.start)
                count = min(frames - dst, len(voice.samples) - src)
                if count > 0:
                    dry[dst : dst + count] += voice.samples[src : src + count]
                if voice.end > block_end:
                    remaining.append(voice)
            self._voices = remaining
            self._frame = block_end

        master = dry * self._settings.master_gain
        delayed = self._delay.process(master)
        wet = self._reverb.process(delayed) if self._reverb is not None else delayed
        self._level = _analyser_level(master)
        return (master + wet).astype(np.float32)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            dropped = len(self._voices)
            self._voices = []
        _LOGGER.debug("Audio graph closed (%d pending voices dropped).", dropped)
