from pathlib import Path

import numpy as np
import pytest
import soundfile as sf

from groovedna.audio import ensure_audio_contract, write_wav
from groovedna.errors import GrooveDnaError


def test_write_wav_accepts_array(tmp_path: Path) -> None:
    target = tmp_path / "clip.wav"

    write_wav(target, np.linspace(-0.5, 0.5, 800), sample_rate=8_000)

    data, sr = sf.read(str(target))
    assert sr == 8_000
    assert data.shape == (800,)


def test_write_wav_accepts_chunks(tmp_path: Path) -> None:
    target = tmp_path / "chunks.wav"
    chunks = (np.full(100, 0.25, dtype=np.float32) for _ in range(3))

    write_wav(target, chunks, sample_rate=8_000)

    assert sf.info(str(target)).frames == 300


def test_write_wav_rejects_text(tmp_path: Path) -> None:
    with pytest.raises(GrooveDnaError):
        write_wav(tmp_path / "bad.wav", "not audio")


def test_ensure_audio_contract_scales_peaks() -> None:
    out = ensure_audio_contract(np.array([[2.0, -1.0]]))
    assert out.dtype == np.float32
    assert out.shape == (2,)
    assert np.allclose(out, [1.0, -0.5])


def test_ensure_audio_contract_skip_peak() -> None:
    audio = np.array([2.0, -2.0], dtype=np.float32)
    out = ensure_audio_contract(audio, check_peak=False)
    assert np.allclose(out, audio)
