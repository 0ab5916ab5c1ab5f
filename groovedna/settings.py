from __future__ import annotations

import logging
import math
import os
from collections.abc import Callable, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

_LOGGER = logging.getLogger("groovedna.settings")
_ENV_PREFIX = "GROOVEDNA_"
_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off"})

PatternLength = Literal[8, 16]

MIN_BPM = 40.0
MAX_BPM = 240.0
INITIAL_BPM = 105.0
DEFAULT_MODEL = "procedural"
DEBUG_ENV = f"{_ENV_PREFIX}DEBUG"
LOG_DIR_ENV = f"{_ENV_PREFIX}LOG_DIR"
LOG_FILE_NAME = "groovedna.log"


def _env_raw(name: str) -> str | None:
    value = os.environ.get(f"{_ENV_PREFIX}{name}")
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _malformed(name: str, value: str) -> None:
    _LOGGER.warning("Ignoring malformed %s%s=%r", _ENV_PREFIX, name, value)


def _env_int(name: str) -> int | None:
    value = _env_raw(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        _malformed(name, value)
        return None


def _env_float(name: str) -> float | None:
    value = _env_raw(name)
    if value is None:
        return None
    try:
        number = float(value)
    except ValueError:
        _malformed(name, value)
        return None
    if not math.isfinite(number):
        _malformed(name, value)
        return None
    return number


def _env_bool(name: str) -> bool | None:
    value = _env_raw(name)
    if value is None:
        return None
    lowered = value.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    _malformed(name, value)
    return None


def _env_path(name: str) -> Path | None:
    value = _env_raw(name)
    return None if value is None else Path(value).expanduser()


EnvReader = Callable[[str], object]

# field name -> (variable suffix, reader)
_ENV_FIELDS: Mapping[str, tuple[str, EnvReader]] = MappingProxyType(
    {
        "look_ahead": ("LOOK_AHEAD", _env_float),
        "tick_interval": ("TICK_INTERVAL", _env_float),
        "start_offset": ("START_OFFSET", _env_float),
        "pattern_length": ("PATTERN_LENGTH", _env_int),
        "initial_bpm": ("BPM", _env_float),
        "recompose_interval": ("RECOMPOSE_INTERVAL", _env_float),
        "cache_size": ("CACHE_SIZE", _env_int),
        "transition_delay": ("TRANSITION_DELAY", _env_float),
        "model": ("MODEL", _env_raw),
        "sample_rate": ("SAMPLE_RATE", _env_int),
        "block_size": ("BLOCK_SIZE", _env_int),
        "master_gain": ("MASTER_GAIN", _env_float),
        "reverb_enabled": ("REVERB", _env_bool),
        "log_dir": ("LOG_DIR", _env_path),
        "debug": ("DEBUG", _env_bool),
    }
)


def debug_from_env() -> bool:
    return bool(_env_bool("DEBUG"))


def default_log_dir() -> Path:
    return Path.home() / ".cache" / "groovedna" / "logs"


def clamp_bpm(bpm: float, *, low: float = MIN_BPM, high: float = MAX_BPM) -> float:
    return max(low, min(high, float(bpm)))


class EngineSettings(BaseModel):
    """Timing, cache, mixing and logging settings for one engine instance."""

    # scheduler
    look_ahead: float = Field(default=0.2, gt=0.0)
    tick_interval: float = Field(default=0.04, gt=0.0)
    start_offset: float = Field(default=0.1, ge=0.0)
    pattern_length: PatternLength = 8
    phrase_steps: int = Field(default=8, gt=0)
    section_steps: int = Field(default=32, gt=0)

    # tempo
    initial_bpm: float = INITIAL_BPM
    min_bpm: float = MIN_BPM
    max_bpm: float = MAX_BPM

    # generation
    recompose_interval: float = Field(default=18.0, gt=0.0)
    cache_size: int = Field(default=3, ge=1)
    transition_delay: float = Field(default=0.5, ge=0.0)
    model: str = DEFAULT_MODEL

    # audio graph
    sample_rate: int = Field(default=44_100, gt=0)
    block_size: int = Field(default=1024, gt=0)
    master_gain: float = Field(default=0.4, ge=0.0)
    delay_time: float = Field(default=0.375, gt=0.0, le=1.0)
    delay_feedback: float = Field(default=0.4, ge=0.0, lt=1.0)
    reverb_enabled: bool = True
    reverb_seconds: float = Field(default=2.5, gt=0.0)

    # logging
    log_dir: Path | None = None
    debug: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid", allow_inf_nan=False)

    @model_validator(mode="after")
    def _check_tempo_range(self) -> "EngineSettings":
        if self.min_bpm > self.max_bpm:
            raise ValueError("min_bpm must not exceed max_bpm")
        return self

    def clamp_bpm(self, bpm: float) -> float:
        return clamp_bpm(bpm, low=self.min_bpm, high=self.max_bpm)

    @property
    def log_path(self) -> Path:
        return (self.log_dir or default_log_dir()) / LOG_FILE_NAME

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from GROOVEDNA_* variables.

        Each variable is checked on its own; a malformed or out-of-range
        value is logged and that field keeps its default.
        """
        overrides: dict[str, object] = {}
        for field_name, (suffix, reader) in _ENV_FIELDS.items():
            value = reader(suffix)
            if value is None:
                continue
            try:
                cls.model_validate({field_name: value})
            except ValidationError as exc:
                reason = exc.errors()[0].get("msg")
                _LOGGER.warning("Ignoring %s%s=%r: %s", _ENV_PREFIX, suffix, value, reason)
                continue
            overrides[field_name] = value
        settings = cls.model_validate(overrides)
        return settings.model_copy(update={"initial_bpm": settings.clamp_bpm(settings.initial_bpm)})
