from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Protocol

import numpy as np

from .dna import MasterDNA, SectionDNA, SectionName, is_phrase_start, pattern_index, section_for_step
from .logging_utils import debug_enabled
from .settings import EngineSettings
from .synth import EnvelopeShape, PercussionKind, WaveformName, midi_to_freq

_LOGGER = logging.getLogger("groovedna.scheduler")

KICK_GAIN = 1.0
SNARE_GAIN = 0.7
HAT_GAIN = 0.4
GLITCH_GAIN = 0.3
BASS_GAIN = 0.4
BASS_LENGTH = 0.8
LEAD_GAIN = 0.2
LEAD_LENGTH = 1.5
ARP_GAIN = 0.1
ARP_DURATION = 0.15
ARP_TRANSPOSE = 12
PAD_GAIN = 0.08
PAD_LENGTH = 8.2


def step_duration_for(bpm: float) -> float:
    """One sixteenth note at `bpm`."""
    return 60.0 / bpm / 4.0


class SynthTarget(Protocol):
    def tone(
        self,
        freq: float,
        onset: float,
        duration: float,
        peak_gain: float,
        waveform: WaveformName,
        shape: EnvelopeShape,
    ) -> None: ...

    def percussion(self, kind: PercussionKind, onset: float, peak_gain: float) -> None: ...


@dataclass(frozen=True, slots=True)
class StepEvent:
    global_step: int
    step_index: int
    section: SectionName
    onset: float
    duration: float
    gated: bool
    pad: bool


StepObserver = Callable[[StepEvent], None]
Dispatcher = Callable[[StepEvent, StepObserver], None]


def _deliver_now(event: StepEvent, deliver: StepObserver) -> None:
    deliver(event)


class StepScheduler:
    """Look-ahead step scheduler.

    `advance(now)` schedules every step whose onset falls before
    `now + look_ahead`, so a late call catches up by scheduling several steps.
    Tempo and DNA are read fresh for each step; the step counter and the time
    cursor belong to the scheduler alone.
    """

    def __init__(
        self,
        *,
        dna_source: Callable[[], MasterDNA],
        tempo_source: Callable[[], float],
        synth: SynthTarget,
        settings: EngineSettings | None = None,
        rng: np.random.Generator | None = None,
        dispatcher: Dispatcher | None = None,
    ) -> None:
        self._dna_source = dna_source
        self._tempo_source = tempo_source
        self._synth = synth
        self._settings = settings or EngineSettings()
        self._rng = rng or np.random.default_rng()
        self._dispatcher = dispatcher or _deliver_now
        self._observers: list[StepObserver] = []
        self._step = 0
        self._next_time = 0.0

    @property
    def step(self) -> int:
        return self._step

    @property
    def next_step_time(self) -> float:
        return self._next_time

    def add_observer(self, observer: StepObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: StepObserver) -> None:
        try:
            self._observers.remove(observer)
        except ValueError:
            _LOGGER.debug("Observer %r was not registered.", observer)

    def reset(self, now: float) -> None:
        """Fresh baseline: step 0, first onset slightly after `now`."""
        self._step = 0
        self._next_time = now + self._settings.start_offset

    def advance(self, now: float) -> list[StepEvent]:
        horizon = now + self._settings.look_ahead
        events: list[StepEvent] = []
        while self._next_time < horizon:
            events.append(self._schedule_step(self._next_time))
        return events

    def _schedule_step(self, onset: float) -> StepEvent:
        step = self._step
        duration = step_duration_for(self._tempo_source())
        section_name = section_for_step(step, section_steps=self._settings.section_steps)
        section = self._dna_source().section(section_name)
        index = pattern_index(step, self._settings.pattern_length)

        gated = bool(self._rng.random() < section.probability(index))
        if gated:
            self._play_foreground(section, index, onset, duration)

        pad = is_phrase_start(step, phrase_steps=self._settings.phrase_steps)
        if pad:
            self._play_pad(section, onset, duration)

        event = StepEvent(
            global_step=step,
            step_index=index,
            section=section_name,
            onset=onset,
            duration=duration,
            gated=gated,
            pad=pad,
        )
        self._next_time += duration
        self._step += 1
        self._dispatcher(event, self._notify)
        return event

    def _play_foreground(
        self,
        section: SectionDNA,
        index: int,
        onset: float,
        duration: float,
    ) -> None:
        synth = self._synth
        if section.drum_hit("kick", index):
            synth.percussion("kick", onset, KICK_GAIN)
        if section.drum_hit("snare", index):
            synth.percussion("snare", onset, SNARE_GAIN)
        if section.drum_hit("hihat", index):
            synth.percussion("hat", onset, HAT_GAIN)
        if section.drum_hit("glitch", index):
            synth.percussion("glitch", onset, GLITCH_GAIN)

        bass = section.bass_note(index)
        if bass is not None:
            synth.tone(
                midi_to_freq(bass), onset, duration * BASS_LENGTH, BASS_GAIN, "triangle", "pluck"
            )

        lead = section.lead_note(index)
        if lead is not None:
            synth.tone(
                midi_to_freq(lead), onset, duration * LEAD_LENGTH, LEAD_GAIN, "sawtooth", "lead"
            )

        if section.arp_gate(index):
            chord = section.pad_chord()
            note = chord[int(self._rng.integers(len(chord)))] + ARP_TRANSPOSE
            synth.tone(midi_to_freq(note), onset, ARP_DURATION, ARP_GAIN, "sine", "pluck")

    def _play_pad(self, section: SectionDNA, onset: float, duration: float) -> None:
        for note in section.pad_chord():
            self._synth.tone(
                midi_to_freq(note), onset, duration * PAD_LENGTH, PAD_GAIN, "sine", "pad"
            )

    def _notify(self, event: StepEvent) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception as exc:
                _LOGGER.warning("Step observer failed: %s", exc, exc_info=debug_enabled())
