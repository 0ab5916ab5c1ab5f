from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

import numpy as np

_LOGGER = logging.getLogger("groovedna.providers.procedural")

NOTE_NAMES: tuple[str, ...] = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")

MODE_INTERVALS: Mapping[str, tuple[int, ...]] = MappingProxyType(
    {
        "Minor": (0, 2, 3, 5, 7, 8, 10),
        "Dorian": (0, 2, 3, 5, 7, 9, 10),
        "Phrygian": (0, 1, 3, 5, 7, 8, 10),
        "Major": (0, 2, 4, 5, 7, 9, 11),
    }
)

GENRES: tuple[str, ...] = (
    "DREAM_ELECTRONICA",
    "DEEP_TECHNO",
    "GLITCH_HOP",
    "MINIMAL_HOUSE",
    "BROKEN_AMBIENT",
)
MOODS: tuple[str, ...] = ("MYSTICAL", "NOCTURNAL", "EUPHORIC", "HYPNOTIC", "MELANCHOLIC")
PALETTES: tuple[str, ...] = ("ETHEREAL", "NEON", "DUSK", "GLACIAL", "EMBER")
COLORS: tuple[str, ...] = ("#a855f7", "#22d3ee", "#f97316", "#84cc16", "#f43f5e")

_BASS_OCTAVE = 36
_CHORD_OCTAVE = 48
_LEAD_LOW = 60
_LEAD_HIGH = 84
_MIN_LEAD_NOTES = 5


def _energy_for(bpm: float) -> float:
    return float(np.clip((bpm - 60.0) / 120.0, 0.1, 0.95))


class ProceduralDnaProvider:
    """Local seeded generator that needs no network; output follows the provider payload shape."""

    def __init__(self, *, seed: int | None = None, pattern_length: int = 8) -> None:
        self._rng = np.random.default_rng(seed)
        self._length = pattern_length

    async def generate(self, bpm: float) -> Mapping[str, Any]:
        await asyncio.sleep(0)
        rng = self._rng
        root = int(rng.integers(12))
        mode = str(rng.choice(list(MODE_INTERVALS)))
        scale = tuple(root + interval for interval in MODE_INTERVALS[mode])
        energy = _energy_for(bpm)
        genre = str(rng.choice(GENRES))
        payload: dict[str, Any] = {
            "genre": genre,
            "palette": str(rng.choice(PALETTES)),
            "energy": round(energy, 2),
            "color": str(rng.choice(COLORS)),
            "mood": str(rng.choice(MOODS)),
            "scale": f"{NOTE_NAMES[root]} {mode}",
            "aiThought": f"{mode} pulse at {bpm:.0f} BPM, sections trade density.",
            "sections": {
                "A": self._section(scale, energy, degree=0),
                "B": self._section(scale, min(1.0, energy + 0.15), degree=int(rng.choice((3, 4, 5)))),
            },
        }
        _LOGGER.debug("Procedural DNA: %s %s", genre, payload["scale"])
        return payload

    def _section(self, scale: tuple[int, ...], energy: float, *, degree: int) -> dict[str, Any]:
        rng = self._rng
        length = self._length
        steps = np.arange(length)
        quarter = max(1, length // 4)

        kick = (steps % quarter == 0) | (rng.random(length) < energy * 0.2)
        snare = np.isin(steps, (quarter, 3 * quarter)) | (rng.random(length) < 0.08)
        hihat = rng.random(length) < 0.35 + energy * 0.55
        glitch = rng.random(length) < 0.1 + energy * 0.15

        chord_root = scale[degree % len(scale)]
        chord = [
            _CHORD_OCTAVE + scale[(degree + offset) % len(scale)] + 12 * ((degree + offset) // len(scale))
            for offset in (0, 2, 4, 6)
        ]
        fifth = scale[(degree + 4) % len(scale)]
        bass: list[int | None] = []
        for _ in range(length):
            roll = rng.random()
            if roll < 0.15:
                bass.append(None)
            elif roll < 0.3:
                bass.append(_BASS_OCTAVE + fifth)
            else:
                bass.append(_BASS_OCTAVE + chord_root)

        lead_pool = [
            octave + pitch
            for octave in range(_LEAD_LOW - 12, _LEAD_HIGH + 1, 12)
            for pitch in scale
            if _LEAD_LOW <= octave + pitch <= _LEAD_HIGH
        ]
        lead: list[int | None] = [
            int(rng.choice(lead_pool)) if rng.random() > 0.35 else None for _ in range(length)
        ]
        rests = [i for i, note in enumerate(lead) if note is None]
        rng.shuffle(rests)
        while len(lead) - len(rests) < min(_MIN_LEAD_NOTES, length) and rests:
            lead[rests.pop()] = int(rng.choice(lead_pool))

        return {
            "drums": {
                "kick": kick.astype(int).tolist(),
                "snare": snare.astype(int).tolist(),
                "hihat": hihat.astype(int).tolist(),
                "glitch": glitch.astype(int).tolist(),
            },
            "bassLine": bass,
            "leadMelody": lead,
            "chordProgression": [chord],
            "arpPattern": (rng.random(length) < 0.5).astype(int).tolist(),
            "probMap": np.round(rng.uniform(0.6, 1.0, length), 2).tolist(),
        }
