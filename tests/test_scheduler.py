from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import pytest

from groovedna.dna import BASELINE_DNA, MasterDNA, merge_over_baseline
from groovedna.scheduler import StepEvent, StepScheduler, step_duration_for
from groovedna.settings import EngineSettings
from groovedna.synth import midi_to_freq


@dataclass
class RecordingSynth:
    tones: list[tuple[float, float, float, float, str, str]] = field(default_factory=list)
    hits: list[tuple[str, float, float]] = field(default_factory=list)

    def tone(
        self,
        freq: float,
        onset: float,
        duration: float,
        peak_gain: float,
        waveform: str,
        shape: str,
    ) -> None:
        self.tones.append((freq, onset, duration, peak_gain, waveform, shape))

    def percussion(self, kind: str, onset: float, peak_gain: float) -> None:
        self.hits.append((kind, onset, peak_gain))


def _dna_with_probability(prob: float) -> MasterDNA:
    return merge_over_baseline(
        BASELINE_DNA,
        {"sections": {"A": {"probMap": [prob] * 8}, "B": {"probMap": [prob] * 8}}},
    )


def _scheduler(
    dna: MasterDNA,
    synth: RecordingSynth,
    *,
    bpm: list[float] | None = None,
) -> StepScheduler:
    tempo = bpm if bpm is not None else [120.0]
    return StepScheduler(
        dna_source=lambda: dna,
        tempo_source=lambda: tempo[0],
        synth=synth,
        settings=EngineSettings(),
        rng=np.random.default_rng(0),
    )


def test_step_duration_is_a_sixteenth() -> None:
    assert step_duration_for(120.0) == pytest.approx(0.125)
    assert step_duration_for(60.0) == pytest.approx(0.25)


def test_first_kick_lands_at_start_offset_in_section_a() -> None:
    synth = RecordingSynth()
    scheduler = _scheduler(_dna_with_probability(1.0), synth, bpm=[105.0])
    scheduler.reset(0.0)

    events = scheduler.advance(0.0)

    assert len(events) == 1
    assert events[0].section == "A"
    assert events[0].onset == pytest.approx(0.1)
    assert ("kick", pytest.approx(0.1), 1.0) in synth.hits


def test_section_flips_at_thirty_two_steps() -> None:
    synth = RecordingSynth()
    scheduler = _scheduler(_dna_with_probability(1.0), synth)
    scheduler.reset(0.0)

    events = scheduler.advance(10.0)

    assert len(events) > 64
    assert [event.section for event in events[:32]] == ["A"] * 32
    assert events[32].section == "B"
    assert events[63].section == "B"
    assert events[64].section == "A"
    b_kicks = [onset for kind, onset, _ in synth.hits if kind == "kick"]
    assert events[32].onset in b_kicks
    # Baseline B kicks on the second step too; A does not.
    assert events[33].onset in b_kicks
    assert events[1].onset not in b_kicks


def test_gate_always_open_plays_foreground() -> None:
    synth = RecordingSynth()
    scheduler = _scheduler(_dna_with_probability(1.0), synth)
    scheduler.reset(0.0)

    events = scheduler.advance(1.9)

    assert all(event.gated for event in events)
    hats = [hit for hit in synth.hits if hit[0] == "hat"]
    assert len(hats) == len(events)
    bass = [tone for tone in synth.tones if tone[4] == "triangle"]
    assert len(bass) == len(events)
    assert bass[0][0] == pytest.approx(midi_to_freq(36))
    assert bass[0][2] == pytest.approx(0.125 * 0.8)


def test_gate_closed_still_plays_pads_on_phrase_starts() -> None:
    synth = RecordingSynth()
    scheduler = _scheduler(_dna_with_probability(0.0), synth)
    scheduler.reset(0.0)

    events = scheduler.advance(3.0)

    assert not any(event.gated for event in events)
    assert synth.hits == []
    pad_steps = [event.global_step for event in events if event.pad]
    assert pad_steps == [step for step in range(len(events)) if step % 8 == 0]
    assert {tone[5] for tone in synth.tones} == {"pad"}
    assert len(synth.tones) == 4 * len(pad_steps)
    first_pad = synth.tones[:4]
    assert [tone[0] for tone in first_pad] == pytest.approx([midi_to_freq(n) for n in (48, 52, 55, 58)])
    assert first_pad[0][2] == pytest.approx(0.125 * 8.2)


def test_late_tick_catches_up() -> None:
    scheduler = _scheduler(_dna_with_probability(1.0), RecordingSynth())
    scheduler.reset(0.0)

    events = scheduler.advance(1.0)

    assert len(events) == 9
    onsets = [event.onset for event in events]
    assert np.allclose(np.diff(onsets), 0.125)
    assert scheduler.step == 9


def test_advance_twice_does_not_reschedule() -> None:
    scheduler = _scheduler(_dna_with_probability(1.0), RecordingSynth())
    scheduler.reset(0.0)
    first = scheduler.advance(0.5)
    second = scheduler.advance(0.5)
    assert first
    assert second == []


def test_tempo_change_applies_to_next_step() -> None:
    tempo = [120.0]
    scheduler = _scheduler(_dna_with_probability(1.0), RecordingSynth(), bpm=tempo)
    scheduler.reset(0.0)
    scheduler.advance(0.0)
    assert scheduler.next_step_time == pytest.approx(0.225)

    tempo[0] = 60.0
    events = scheduler.advance(0.1)

    assert events[0].onset == pytest.approx(0.225)
    assert events[0].duration == pytest.approx(0.25)
    assert scheduler.next_step_time == pytest.approx(0.475)


def test_dna_swap_is_seen_on_next_step() -> None:
    synth = RecordingSynth()
    current = [_dna_with_probability(1.0)]
    scheduler = StepScheduler(
        dna_source=lambda: current[0],
        tempo_source=lambda: 120.0,
        synth=synth,
        rng=np.random.default_rng(0),
    )
    scheduler.reset(0.0)
    scheduler.advance(0.0)

    current[0] = merge_over_baseline(current[0], {"sections": {"A": {"bassLine": [40] * 8}}})
    scheduler.advance(0.1)

    bass = [tone[0] for tone in synth.tones if tone[4] == "triangle"]
    assert bass == pytest.approx([midi_to_freq(36), midi_to_freq(40)])


def test_observers_receive_events_and_failures_are_contained() -> None:
    seen: list[StepEvent] = []

    def broken(event: StepEvent) -> None:
        raise RuntimeError("observer boom")

    scheduler = _scheduler(_dna_with_probability(1.0), RecordingSynth())
    scheduler.add_observer(broken)
    scheduler.add_observer(seen.append)
    scheduler.reset(0.0)

    events = scheduler.advance(0.5)

    assert seen == events
    scheduler.remove_observer(broken)
    scheduler.remove_observer(broken)


def test_reset_restarts_from_step_zero() -> None:
    scheduler = _scheduler(_dna_with_probability(1.0), RecordingSynth())
    scheduler.reset(0.0)
    scheduler.advance(2.0)

    scheduler.reset(5.0)

    assert scheduler.step == 0
    assert scheduler.next_step_time == pytest.approx(5.1)
