"""Pattern DNA: two alternating sections of step patterns plus cosmetic metadata.

All models are frozen. A new generation always produces a new MasterDNA, so a
reader holding a reference never observes a half-updated pattern.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping, Sequence
from typing import Annotated, Any, Literal, TypeVar, cast

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from .errors import InvalidDnaError

_LOGGER = logging.getLogger("groovedna.dna")

SectionName = Literal["A", "B"]
DrumLane = Literal["kick", "snare", "hihat", "glitch"]

SECTION_NAMES: tuple[SectionName, ...] = ("A", "B")
DRUM_LANES: tuple[DrumLane, ...] = ("kick", "snare", "hihat", "glitch")
SECTION_STEPS = 32
PHRASE_STEPS = 8
DEFAULT_PROBABILITY = 0.9
FALLBACK_CHORD: tuple[int, ...] = (60, 64, 67)
MIDI_MIN = 0
MIDI_MAX = 127

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


def section_for_step(step: int, *, section_steps: int = SECTION_STEPS) -> SectionName:
    """Section is a pure function of the global step counter."""
    return SECTION_NAMES[(step // section_steps) % 2]


def pattern_index(step: int, length: int) -> int:
    return step % length


def is_phrase_start(step: int, *, phrase_steps: int = PHRASE_STEPS) -> bool:
    return step % phrase_steps == 0


# -----------------------------------------------------------------------------
# Coercion of provider values
# -----------------------------------------------------------------------------


def _coerce_number(value: object) -> float:
    try:
        match value:
            case bool() | int() | float():
                number = float(value)
            case str():
                number = float(value.strip())
            case _:
                raise ValueError(f"not a number: {type(value).__name__}")
    except (ValueError, OverflowError) as exc:
        raise ValueError(f"not a number: {type(value).__name__}") from exc
    if not math.isfinite(number):
        raise ValueError("not a finite number")
    return number


def _sequence(value: object) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ValueError(f"expected an array, got {type(value).__name__}")
    return cast(Sequence[object], value)


def _to_note(value: object) -> int:
    return int(max(MIDI_MIN, min(MIDI_MAX, round(_coerce_number(value)))))


def _to_flag(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return _coerce_number(value) != 0.0


def _flags(value: object) -> tuple[bool, ...]:
    return tuple(_to_flag(item) for item in _sequence(value))


def _rest_notes(value: object) -> tuple[int | None, ...]:
    return tuple(None if item is None else _to_note(item) for item in _sequence(value))


def _chords(value: object) -> tuple[tuple[int, ...], ...]:
    return tuple(
        tuple(_to_note(note) for note in _sequence(chord) if note is not None)
        for chord in _sequence(value)
    )


def _to_probability(value: object) -> float:
    if value is None:
        return DEFAULT_PROBABILITY
    return max(0.0, min(1.0, _coerce_number(value)))


def _probabilities(value: object) -> tuple[float, ...]:
    return tuple(_to_probability(item) for item in _sequence(value))


Flags = Annotated[tuple[bool, ...], BeforeValidator(_flags)]
RestNotes = Annotated[tuple[int | None, ...], BeforeValidator(_rest_notes)]
Chords = Annotated[tuple[tuple[int, ...], ...], BeforeValidator(_chords)]
Probabilities = Annotated[tuple[float, ...], BeforeValidator(_probabilities)]


def _at(values: Sequence[T], index: int, default: T) -> T:
    if 0 <= index < len(values):
        return values[index]
    return default


# -----------------------------------------------------------------------------
# Models
# -----------------------------------------------------------------------------


class DrumPattern(BaseModel):
    kick: Flags
    snare: Flags
    hihat: Flags
    glitch: Flags = ()

    model_config = ConfigDict(frozen=True, extra="ignore")

    def hit(self, lane: DrumLane, index: int) -> bool:
        lanes: Mapping[DrumLane, tuple[bool, ...]] = {
            "kick": self.kick,
            "snare": self.snare,
            "hihat": self.hihat,
            "glitch": self.glitch,
        }
        return _at(lanes[lane], index, False)


class SectionDNA(BaseModel):
    """One section's step patterns. Every read is bounds-safe."""

    drums: DrumPattern
    bass_line: RestNotes = Field(default=(), alias="bassLine")
    lead_melody: RestNotes = Field(default=(), alias="leadMelody")
    chord_progression: Chords = Field(default=(), alias="chordProgression")
    arp_pattern: Flags = Field(default=(), alias="arpPattern")
    prob_map: Probabilities = Field(default=(), alias="probMap")

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    def drum_hit(self, lane: DrumLane, index: int) -> bool:
        return self.drums.hit(lane, index)

    def bass_note(self, index: int) -> int | None:
        return _at(self.bass_line, index, None)

    def lead_note(self, index: int) -> int | None:
        return _at(self.lead_melody, index, None)

    def arp_gate(self, index: int) -> bool:
        return _at(self.arp_pattern, index, False)

    def probability(self, index: int, *, default: float = DEFAULT_PROBABILITY) -> float:
        return _at(self.prob_map, index, default)

    def pad_chord(self) -> tuple[int, ...]:
        # Only the first chord is voiced; the rest of the progression is carried as-is.
        first = _at(self.chord_progression, 0, ())
        return first or FALLBACK_CHORD


class Sections(BaseModel):
    A: SectionDNA
    B: SectionDNA

    model_config = ConfigDict(frozen=True, extra="ignore")

    def __getitem__(self, name: SectionName) -> SectionDNA:
        match name:
            case "A":
                return self.A
            case "B":
                return self.B
            case _:
                raise KeyError(name)


class MasterDNA(BaseModel):
    sections: Sections
    genre: str = "UNKNOWN"
    palette: str = ""
    energy: float = 0.5
    color: str = "#a855f7"
    mood: str = ""
    scale: str = ""
    ai_thought: str | None = Field(default=None, alias="aiThought")

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    def section(self, name: SectionName) -> SectionDNA:
        return self.sections[name]

    @property
    def label(self) -> str:
        return self.genre.upper()

    def to_payload(self) -> dict[str, Any]:
        """Provider-shaped (camelCase) JSON-compatible dict."""
        return self.model_dump(mode="json", by_alias=True)


BASELINE_DNA = MasterDNA(
    sections=Sections(
        A=SectionDNA(
            drums=DrumPattern(
                kick=(1, 0, 0, 0, 1, 0, 0, 0),
                snare=(0, 0, 1, 0, 0, 0, 1, 0),
                hihat=(1, 1, 1, 1, 1, 1, 1, 1),
                glitch=(0, 0, 0, 0, 0, 0, 0, 1),
            ),
            bass_line=(36,) * 8,
            lead_melody=(60, None, 63, 65, None, 67, None, 60),
            chord_progression=((48, 52, 55, 58),),
            arp_pattern=(1, 0, 1, 0, 1, 0, 1, 0),
            prob_map=(0.9,) * 8,
        ),
        B=SectionDNA(
            drums=DrumPattern(
                kick=(1, 1, 0, 0, 1, 1, 0, 0),
                snare=(0, 0, 1, 1, 0, 0, 1, 1),
                hihat=(1, 0, 1, 0, 1, 0, 1, 0),
                glitch=(1, 1, 1, 1, 0, 0, 0, 0),
            ),
            bass_line=(34,) * 8,
            lead_melody=(58, 60, None, 58, 60, None, 62, 63),
            chord_progression=((46, 50, 53, 57),),
            arp_pattern=(1, 1, 1, 1, 0, 0, 0, 0),
            prob_map=(0.7,) * 8,
        ),
    ),
    genre="DREAM_ELECTRONICA",
    palette="ETHEREAL",
    energy=0.5,
    color="#a855f7",
    mood="MYSTICAL",
    scale="C Minor",
    ai_thought="System initialized. Optimizing for high-speed neural synthesis...",
)


# -----------------------------------------------------------------------------
# Merging provider payloads
# -----------------------------------------------------------------------------


def _merge_model(base: M, payload: object, *, path: str) -> M:
    if not isinstance(payload, Mapping):
        _LOGGER.warning(
            "Ignoring non-object DNA value at %s (%s).", path, type(payload).__name__
        )
        return base
    data = cast(Mapping[str, Any], payload)
    model_type = type(base)
    current = base
    for name, field in model_type.model_fields.items():
        key = field.alias or name
        if key in data:
            raw = data[key]
        elif name in data:
            raw = data[name]
        else:
            continue
        existing = getattr(current, name)
        if isinstance(existing, BaseModel):
            merged = _merge_model(existing, raw, path=f"{path}.{key}")
            current = current.model_copy(update={name: merged})
            continue
        candidate = current.model_dump()
        candidate[name] = raw
        try:
            current = model_type.model_validate(candidate)
        except ValidationError as exc:
            first = exc.errors()[0]
            _LOGGER.warning("Keeping baseline %s.%s: %s", path, key, first.get("msg"))
    return current


def merge_over_baseline(baseline: MasterDNA, payload: object) -> MasterDNA:
    """Overlay a possibly partial provider payload on a complete DNA.

    Fields missing from the payload, or failing validation on their own,
    keep the baseline value. Array lengths are not checked here; readers
    on SectionDNA treat out-of-range indices as "no event".
    """
    return _merge_model(baseline, payload, path="dna")


def load_dna_payload(text: str) -> Mapping[str, Any]:
    """Decode a JSON object payload, raising InvalidDnaError otherwise."""
    try:
        decoded: object = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidDnaError(f"DNA payload is not JSON: {exc}") from exc
    if not isinstance(decoded, Mapping):
        raise InvalidDnaError(f"DNA payload must be an object, got {type(decoded).__name__}")
    return cast(Mapping[str, Any], decoded)


def parse_dna(payload: Mapping[str, Any]) -> MasterDNA:
    """Strict parse of a complete DNA payload."""
    try:
        return MasterDNA.model_validate(payload)
    except ValidationError as exc:
        _LOGGER.warning("Failed to parse DNA payload: %s", exc, exc_info=True)
        raise InvalidDnaError(str(exc)) from exc


def dna_json_schema() -> dict[str, Any]:
    return MasterDNA.model_json_schema(by_alias=True)
