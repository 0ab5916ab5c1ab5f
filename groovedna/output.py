from __future__ import annotations

import logging
from typing import Any, Callable, Protocol

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict

from .errors import PlaybackError
from .logging_utils import debug_enabled

_LOGGER = logging.getLogger("groovedna.output")

RenderFn = Callable[[int], NDArray[np.float32]]


class OutputStreamHandle(Protocol):
    @property
    def active(self) -> bool: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def close(self) -> None: ...


class OutputBackend(BaseModel):
    """Real-time sink that pulls blocks from a render function on its own thread."""

    name: str
    open_stream: Callable[[RenderFn, int, int], OutputStreamHandle]

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


def load_backend() -> OutputBackend | None:
    return _load_sounddevice()


def resolve_backend() -> OutputBackend:
    backend = load_backend()
    if backend is None:
        raise PlaybackError(
            "Real-time playback requires sounddevice with a working PortAudio install "
            "(or use `groovedna render` to write a wav file)."
        )
    return backend


def _load_sounddevice() -> OutputBackend | None:
    try:
        import sounddevice as sd_module  # type: ignore[import]
    except (ImportError, OSError) as exc:
        _LOGGER.info("sounddevice not available: %s", exc, exc_info=True)
        return None
    sd: Any = sd_module

    def _open_stream(render: RenderFn, sample_rate: int, block_size: int) -> OutputStreamHandle:
        def _callback(outdata: Any, frames: int, time_info: Any, status: Any) -> None:
            _ = time_info
            if status:
                _LOGGER.debug("Output stream status: %s", status)
            try:
                outdata[:, 0] = render(frames)
            except Exception as exc:
                _LOGGER.warning("Audio render failed: %s", exc, exc_info=debug_enabled())
                outdata.fill(0)

        stream: OutputStreamHandle = sd.OutputStream(
            samplerate=sample_rate,
            blocksize=block_size,
            channels=1,
            dtype="float32",
            callback=_callback,
        )
        return stream

    return OutputBackend(name="sounddevice", open_stream=_open_stream)
