from __future__ import annotations

from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any, Callable, cast

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray

from .errors import GrooveDnaError

FloatArray = NDArray[np.float32]
AudioNumbers = NDArray[np.floating[Any]] | Sequence[float] | FloatArray

SAMPLE_RATE = 44_100


def ensure_audio_contract(audio: AudioNumbers, *, check_peak: bool = True) -> FloatArray:
    """Normalize dtype/shape to mono float32, scaling down anything above full scale."""

    mono: FloatArray = np.asarray(audio, dtype=np.float32).reshape(-1)
    if mono.size == 0 or not check_peak:
        return mono
    peak = float(np.max(np.abs(mono)))
    if peak > 1.0:
        mono = mono / peak
    return mono


def write_wav(
    path: str | Path,
    audio_or_chunks: AudioNumbers | Iterable[AudioNumbers],
    *,
    sample_rate: int = SAMPLE_RATE,
) -> Path:
    """Write a full array or a chunk iterator to a mono wav file."""

    target = Path(path)
    audio_obj: object = audio_or_chunks
    match audio_obj:
        case np.ndarray():
            write_fn = getattr(sf, "write", None)
            assert callable(write_fn)
            write_audio = cast(Callable[[Path | str, AudioNumbers, int], None], write_fn)
            write_audio(target, ensure_audio_contract(audio_obj), sample_rate)
            return target
        case str() | bytes():
            raise GrooveDnaError("audio_or_chunks must be audio samples or chunk iterables")
        case Iterable():
            chunks = cast(Iterable[AudioNumbers], audio_obj)
        case _:
            raise GrooveDnaError("audio_or_chunks must be audio samples or chunk iterables")

    with sf.SoundFile(
        target,
        mode="w",
        samplerate=sample_rate,
        channels=1,
        subtype="FLOAT",
    ) as handle:
        for chunk in chunks:
            handle.write(ensure_audio_contract(chunk))  # type: ignore[reportUnknownMemberType]

    return target
