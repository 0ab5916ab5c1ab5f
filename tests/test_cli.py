from __future__ import annotations

import json

import numpy as np
import pytest
import soundfile as sf

from groovedna import cli
from groovedna.dna import BASELINE_DNA
from groovedna.settings import LOG_DIR_ENV


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(LOG_DIR_ENV, str(tmp_path / "logs"))
    monkeypatch.setenv("GROOVEDNA_SAMPLE_RATE", "8000")
    monkeypatch.setenv("GROOVEDNA_REVERB", "off")
    monkeypatch.delenv("GROOVEDNA_MODEL", raising=False)


def test_render_writes_wav(tmp_path) -> None:
    output = tmp_path / "clip.wav"

    code = cli.main(["render", str(output), "--seconds", "1.5", "--seed", "4", "--bpm", "140"])

    assert code == 0
    info = sf.info(str(output))
    assert info.samplerate == 8000
    assert info.frames == 12_000


def test_render_from_dna_file(tmp_path) -> None:
    dna_path = tmp_path / "dna.json"
    dna_path.write_text(json.dumps(BASELINE_DNA.to_payload()), encoding="utf-8")
    output = tmp_path / "baseline.wav"

    code = cli.main(["render", str(output), "--seconds", "0.5", "--dna", str(dna_path)])

    assert code == 0
    assert sf.info(str(output)).frames == 4_000


def test_render_bad_dna_file_reports_error(tmp_path, capsys: pytest.CaptureFixture[str]) -> None:
    dna_path = tmp_path / "dna.json"
    dna_path.write_text("not json", encoding="utf-8")

    code = cli.main(["render", str(tmp_path / "x.wav"), "--dna", str(dna_path)])

    assert code == 1
    assert "InvalidDnaError" in capsys.readouterr().err
    assert (tmp_path / "logs" / "groovedna.log").exists()


def test_render_falls_back_to_baseline_when_provider_fails(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    class _Failing:
        async def generate(self, bpm: float) -> dict[str, object]:
            raise RuntimeError("offline")

    def _fake_render(duration: float, **kwargs: object):
        captured.update(kwargs)
        return np.zeros(int(duration * 8000), dtype=np.float32)

    monkeypatch.setattr(cli, "resolve_provider", lambda *args, **kwargs: _Failing())
    monkeypatch.setattr(cli, "render_offline", _fake_render)

    code = cli.main(["render", str(tmp_path / "x.wav"), "--seconds", "0.25", "--model", "some/model"])

    assert code == 0
    assert captured["dna"] is BASELINE_DNA


def test_doctor_reports(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(cli, "load_backend", lambda: None)

    code = cli.main(["doctor"])

    assert code == 0
    out = capsys.readouterr().out
    assert "Audio output backend: unavailable" in out
    assert "Log file:" in out


def test_play_without_output_device_fails_cleanly(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr("groovedna.output.load_backend", lambda: None)

    code = cli.main(["play", "--seconds", "0.1"])

    assert code == 1
    assert "PlaybackError" in capsys.readouterr().err
