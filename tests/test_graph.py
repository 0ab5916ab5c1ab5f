from __future__ import annotations

import numpy as np
import pytest

from groovedna.graph import AudioGraph, build_impulse
from groovedna.settings import EngineSettings

SR = 8_000


def _graph(*, reverb: bool = False, delay_time: float = 0.375) -> AudioGraph:
    settings = EngineSettings(
        sample_rate=SR,
        reverb_enabled=reverb,
        reverb_seconds=0.2,
        delay_time=delay_time,
    )
    return AudioGraph(settings, rng=np.random.default_rng(0))


def test_clock_is_frames_over_sample_rate() -> None:
    graph = _graph()
    assert graph.current_time == 0.0
    graph.render(4_000)
    assert graph.frames_rendered == 4_000
    assert graph.current_time == pytest.approx(0.5)


def test_voices_are_reclaimed_after_playing() -> None:
    graph = _graph()
    graph.add_voice(np.ones(100), onset=0.0)
    graph.add_voice(np.ones(100), onset=0.5)
    assert graph.active_voices == 2

    graph.render(200)
    assert graph.active_voices == 1
    graph.render(4_000)
    assert graph.active_voices == 0


def test_voice_lands_at_onset_frame() -> None:
    graph = _graph()
    graph.add_voice(np.ones(10), onset=0.01)  # frame 80

    block = graph.render(160)

    assert np.all(block[:80] == 0.0)
    assert block[80] == pytest.approx(0.4)
    assert np.all(block[90:160] == 0.0)


def test_late_voice_starts_on_next_frame() -> None:
    graph = _graph()
    graph.render(800)
    graph.add_voice(np.ones(10), onset=0.0)

    block = graph.render(20)

    assert block[0] == pytest.approx(0.4)


def test_delay_feeds_back() -> None:
    settings = EngineSettings(sample_rate=SR, reverb_enabled=False, delay_time=0.01)
    graph = AudioGraph(settings)
    graph.add_voice(np.ones(1), onset=0.0)

    block = graph.render(400)

    assert block[0] == pytest.approx(0.4)
    assert block[80] == pytest.approx(0.4)
    assert block[160] == pytest.approx(0.4 * 0.4)


def test_reverb_tail_outlives_dry_signal() -> None:
    # The reverb is fed from the delay line.
    graph = _graph(reverb=True, delay_time=0.01)
    graph.add_voice(np.ones(50), onset=0.0)
    graph.render(400)

    tail = graph.render(400)

    assert np.any(np.abs(tail) > 0.0)


def test_closed_graph_refuses_voices() -> None:
    graph = _graph()
    graph.add_voice(np.ones(10), onset=1.0)
    graph.close()
    assert graph.closed
    assert graph.active_voices == 0
    assert graph.add_voice(np.ones(10), onset=1.0) is False


def test_audio_level_tracks_signal() -> None:
    graph = _graph()
    graph.render(256)
    assert graph.audio_level == 0.0

    graph.add_voice(np.sin(np.arange(512) * 0.3), onset=graph.current_time)
    graph.render(256)
    assert graph.audio_level > 0.0


def test_impulse_is_unit_energy() -> None:
    impulse = build_impulse(0.1, SR, np.random.default_rng(2))
    assert impulse.shape == (800,)
    assert float(np.sum(impulse**2)) == pytest.approx(1.0)
