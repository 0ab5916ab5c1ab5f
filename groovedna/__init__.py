from __future__ import annotations

from .audio import SAMPLE_RATE, write_wav
from .dna import (
    BASELINE_DNA,
    DrumPattern,
    MasterDNA,
    SectionDNA,
    SectionName,
    Sections,
    load_dna_payload,
    merge_over_baseline,
    parse_dna,
    section_for_step,
)
from .engine import AudioRuntime, PlaybackController, render_offline
from .errors import (
    DnaGenerateError,
    GrooveDnaError,
    InvalidDnaError,
    LLMInferenceError,
    PlaybackError,
    ProviderNotAvailableError,
)
from .generation import DnaCell, GenerationCache, GenerationController
from .graph import AudioGraph
from .logging_utils import configure_logging as _configure_logging
from .providers import DnaProvider, ProviderSpec, resolve_provider
from .scheduler import StepEvent, StepScheduler, step_duration_for
from .settings import EngineSettings
from .synth import midi_to_freq, play_percussion, play_tone

__all__ = [
    "SAMPLE_RATE",
    "BASELINE_DNA",
    "AudioGraph",
    "AudioRuntime",
    "DnaCell",
    "DnaGenerateError",
    "DnaProvider",
    "DrumPattern",
    "EngineSettings",
    "GenerationCache",
    "GenerationController",
    "GrooveDnaError",
    "InvalidDnaError",
    "LLMInferenceError",
    "MasterDNA",
    "PlaybackController",
    "PlaybackError",
    "ProviderNotAvailableError",
    "ProviderSpec",
    "SectionDNA",
    "SectionName",
    "Sections",
    "StepEvent",
    "StepScheduler",
    "load_dna_payload",
    "merge_over_baseline",
    "midi_to_freq",
    "parse_dna",
    "play_percussion",
    "play_tone",
    "render_offline",
    "resolve_provider",
    "section_for_step",
    "step_duration_for",
    "write_wav",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
