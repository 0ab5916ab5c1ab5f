# pyright: reportUnknownVariableType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownArgumentType=false

"""
Synthesis layer.

1. Primitives: oscillators, envelopes, low-pass filter
2. Voices: one tonal note or one percussion hit rendered to a finite buffer
3. Graph writers: hand a rendered voice to the output graph at its onset

Every voice has a fixed length, so the graph can drop it as soon as it has
played out; callers never tear anything down.
"""

from __future__ import annotations

from collections.abc import Mapping
from functools import lru_cache
from types import MappingProxyType
from typing import Callable, Literal, TypeAlias

import numpy as np
from numpy.typing import NDArray
from scipy.signal import butter, lfilter  # type: ignore[import]

from .audio import SAMPLE_RATE
from .graph import AudioGraph

WaveformName = Literal["sine", "triangle", "sawtooth", "square"]
EnvelopeShape = Literal["pluck", "pad", "lead"]
PercussionKind = Literal["kick", "snare", "hat", "glitch"]

FloatArray: TypeAlias = NDArray[np.float64]
OscFn: TypeAlias = Callable[[float, float, int], FloatArray]

# =============================================================================
# CONSTANTS
# =============================================================================

A4_MIDI = 69
A4_FREQ = 440.0
SILENCE_FLOOR = 0.001

PLUCK_ATTACK = 0.005
LEAD_ATTACK = 0.05
PAD_ATTACK_RATIO = 0.4

PAD_CUTOFF = 800.0
BRIGHT_CUTOFF = 2200.0

KICK_START_FREQ = 120.0
KICK_END_FREQ = 45.0
KICK_SWEEP = 0.1
KICK_DECAY = 0.3
SNARE_LENGTH = 0.1
SNARE_GAIN = 0.4
CLICK_GAIN = 0.08
CLICK_DECAY = 0.05
CLICK_FREQS: Mapping[str, float] = MappingProxyType({"hat": 8000.0, "glitch": 1500.0})


def midi_to_freq(note: float) -> float:
    """Equal temperament, A4 (MIDI 69) = 440 Hz."""
    return A4_FREQ * 2 ** ((note - A4_MIDI) / 12)


def _num_samples(duration: float, sr: int) -> int:
    return max(1, int(round(duration * sr)))


# =============================================================================
# PART 1: PRIMITIVES
# =============================================================================


def _phase(freq: float, duration: float, sr: int) -> FloatArray:
    t = np.arange(_num_samples(duration, sr)) / sr
    return (t * freq) % 1.0


def _poly_blep(phase: FloatArray, dt: float) -> FloatArray:
    """Two-sample PolyBLEP residual for a unit step at phase 0."""
    correction = np.zeros_like(phase)
    rising = phase < dt
    x = phase[rising] / dt
    correction[rising] = x + x - x * x - 1.0
    falling = phase > 1.0 - dt
    x = (phase[falling] - 1.0) / dt
    correction[falling] = x * x + x + x + 1.0
    return correction


def generate_sine(freq: float, duration: float, sr: int = SAMPLE_RATE) -> FloatArray:
    """Generate sine wave."""
    return np.sin(2 * np.pi * _phase(freq, duration, sr))


def generate_triangle(freq: float, duration: float, sr: int = SAMPLE_RATE) -> FloatArray:
    """Generate triangle wave."""
    phase = _phase(freq, duration, sr)
    return 2 * np.abs(2 * (phase - np.floor(phase + 0.5))) - 1


def generate_sawtooth(freq: float, duration: float, sr: int = SAMPLE_RATE) -> FloatArray:
    """Generate band-limited sawtooth (PolyBLEP)."""
    phase = _phase(freq, duration, sr)
    dt = min(freq / sr, 0.5)
    return 2.0 * phase - 1.0 - _poly_blep(phase, dt)


def generate_square(freq: float, duration: float, sr: int = SAMPLE_RATE) -> FloatArray:
    """Generate band-limited square wave (PolyBLEP at both edges)."""
    phase = _phase(freq, duration, sr)
    dt = min(freq / sr, 0.5)
    naive = np.where(phase < 0.5, 1.0, -1.0)
    return naive + _poly_blep(phase, dt) - _poly_blep((phase + 0.5) % 1.0, dt)


def generate_noise(duration: float, sr: int = SAMPLE_RATE, rng: np.random.Generator | None = None) -> FloatArray:
    """Generate white noise in [-1, 1)."""
    generator = rng or np.random.default_rng()
    return generator.uniform(-1.0, 1.0, _num_samples(duration, sr))


OSC_FUNCTIONS: Mapping[WaveformName, OscFn] = MappingProxyType(
    {
        "sine": generate_sine,
        "triangle": generate_triangle,
        "sawtooth": generate_sawtooth,
        "square": generate_square,
    }
)


def _linear_ramp(start: float, end: float, n: int) -> FloatArray:
    return np.linspace(start, end, n, endpoint=False)


def _exponential_ramp(start: float, end: float, n: int) -> FloatArray:
    return start * (end / start) ** (np.arange(n) / max(1, n))


def envelope(
    shape: EnvelopeShape,
    duration: float,
    peak: float,
    sr: int = SAMPLE_RATE,
) -> FloatArray:
    """Gain curve from silence to `peak` and back down to the silence floor at `duration`."""
    total = _num_samples(duration, sr)
    if peak <= 0.0:
        return np.zeros(total)
    match shape:
        case "pluck":
            attack = min(total, int(round(PLUCK_ATTACK * sr)))
            tail = _exponential_ramp(peak, SILENCE_FLOOR, total - attack)
        case "lead":
            attack = min(total, int(round(LEAD_ATTACK * sr)))
            tail = _exponential_ramp(peak, SILENCE_FLOOR, total - attack)
        case "pad":
            attack = int(total * PAD_ATTACK_RATIO)
            tail = _linear_ramp(peak, SILENCE_FLOOR, total - attack)
        case _:
            raise ValueError(f"Unknown envelope shape: {shape!r}")
    return np.concatenate((_linear_ramp(0.0, peak, attack), tail))


def _quantize(value: float, step: float = 0.001) -> float:
    return round(value / step) * step


@lru_cache(maxsize=128)
def _butter_cached(
    kind: str, normalized_cutoff: float
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    coeffs = butter(2, normalized_cutoff, btype=kind, output="ba")
    assert isinstance(coeffs, tuple)
    b_raw, a_raw = coeffs
    assert isinstance(b_raw, np.ndarray)
    assert isinstance(a_raw, np.ndarray)
    return b_raw, a_raw


def apply_lowpass(signal: FloatArray, cutoff: float, sr: int = SAMPLE_RATE) -> FloatArray:
    """Apply lowpass filter (causal, analog-style)."""
    nyquist = sr / 2
    normalized = min(max(cutoff / nyquist, 0.001), 0.99)
    b, a = _butter_cached("low", _quantize(normalized))
    return np.asarray(lfilter(b, a, signal), dtype=np.float64)


# =============================================================================
# PART 2: VOICES
# =============================================================================


def render_tone(
    freq: float,
    duration: float,
    peak_gain: float,
    waveform: WaveformName = "sine",
    shape: EnvelopeShape = "pluck",
    sr: int = SAMPLE_RATE,
) -> FloatArray:
    """Oscillator -> low-pass -> envelope. Pads get the duller filter."""
    try:
        oscillator = OSC_FUNCTIONS[waveform]
    except KeyError as exc:
        raise ValueError(f"Unknown waveform: {waveform!r}") from exc
    cutoff = PAD_CUTOFF if shape == "pad" else BRIGHT_CUTOFF
    filtered = apply_lowpass(oscillator(freq, duration, sr), cutoff, sr)
    return filtered * envelope(shape, duration, peak_gain, sr)


def _render_kick(peak_gain: float, sr: int) -> FloatArray:
    n = _num_samples(KICK_DECAY, sr)
    t = np.arange(n) / sr
    sweep = KICK_START_FREQ * (KICK_END_FREQ / KICK_START_FREQ) ** (np.minimum(t, KICK_SWEEP) / KICK_SWEEP)
    phase = 2 * np.pi * np.cumsum(sweep) / sr
    return np.sin(phase) * _exponential_ramp(peak_gain, SILENCE_FLOOR, n)


def _render_snare(peak_gain: float, sr: int, rng: np.random.Generator | None) -> FloatArray:
    noise = generate_noise(SNARE_LENGTH, sr, rng)
    return noise * _exponential_ramp(peak_gain * SNARE_GAIN, SILENCE_FLOOR, len(noise))


def _render_click(kind: str, peak_gain: float, sr: int) -> FloatArray:
    tone = generate_triangle(CLICK_FREQS[kind], CLICK_DECAY, sr)
    return tone * _exponential_ramp(peak_gain * CLICK_GAIN, SILENCE_FLOOR, len(tone))


def render_percussion(
    kind: PercussionKind,
    peak_gain: float,
    sr: int = SAMPLE_RATE,
    rng: np.random.Generator | None = None,
) -> FloatArray:
    if peak_gain <= 0.0:
        return np.zeros(0)
    match kind:
        case "kick":
            return _render_kick(peak_gain, sr)
        case "snare":
            return _render_snare(peak_gain, sr, rng)
        case "hat" | "glitch":
            return _render_click(kind, peak_gain, sr)
        case _:
            raise ValueError(f"Unknown percussion kind: {kind!r}")


# =============================================================================
# PART 3: GRAPH WRITERS
# =============================================================================


def play_tone(
    graph: AudioGraph | None,
    freq: float,
    onset: float,
    duration: float,
    peak_gain: float,
    waveform: WaveformName = "sine",
    shape: EnvelopeShape = "pluck",
) -> bool:
    """Render one note into the graph. No graph means nothing happens and nothing is queued."""
    if graph is None or graph.closed:
        return False
    samples = render_tone(freq, duration, peak_gain, waveform, shape, graph.sample_rate)
    return graph.add_voice(samples, onset)


def play_percussion(
    graph: AudioGraph | None,
    kind: PercussionKind,
    onset: float,
    peak_gain: float,
    rng: np.random.Generator | None = None,
) -> bool:
    if graph is None or graph.closed:
        return False
    samples = render_percussion(kind, peak_gain, graph.sample_rate, rng)
    return graph.add_voice(samples, onset)


class GraphSynth:
    """Scheduler-facing synth bound to whatever graph the runtime currently exposes."""

    def __init__(
        self,
        graph_source: Callable[[], AudioGraph | None],
        *,
        rng: np.random.Generator | None = None,
    ) -> None:
        self._graph_source = graph_source
        self._rng = rng or np.random.default_rng()

    def tone(
        self,
        freq: float,
        onset: float,
        duration: float,
        peak_gain: float,
        waveform: WaveformName,
        shape: EnvelopeShape,
    ) -> None:
        play_tone(self._graph_source(), freq, onset, duration, peak_gain, waveform, shape)

    def percussion(self, kind: PercussionKind, onset: float, peak_gain: float) -> None:
        play_percussion(self._graph_source(), kind, onset, peak_gain, self._rng)
