from __future__ import annotations


class GrooveDnaError(Exception):
    """Base error for the groovedna engine."""


class InvalidDnaError(GrooveDnaError):
    """Raised when a DNA payload cannot be parsed at all."""


class LLMInferenceError(GrooveDnaError):
    """Raised when a model provider fails to produce a response."""


class DnaGenerateError(GrooveDnaError):
    """Raised when a provider responds but the DNA cannot be extracted."""


class ProviderNotAvailableError(GrooveDnaError):
    """Raised when a provider's dependencies or credentials are missing."""


class PlaybackError(GrooveDnaError):
    """Raised when no real-time audio output backend can be opened."""
