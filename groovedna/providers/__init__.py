from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from typing import Any, Protocol, TypeGuard

from ..errors import ProviderNotAvailableError

_LOGGER = logging.getLogger("groovedna.providers")

PROCEDURAL = "procedural"
EXTERNAL_PREFIX = "external:"


class DnaProvider(Protocol):
    """Produces a (possibly partial) MasterDNA-shaped payload for a tempo. May fail, may be slow."""

    async def generate(self, bpm: float) -> Mapping[str, Any]: ...


ProviderSpec = str | DnaProvider


def _is_provider(obj: object) -> TypeGuard[DnaProvider]:
    return callable(getattr(obj, "generate", None))


def resolve_provider(
    spec: ProviderSpec,
    *,
    pattern_length: int = 8,
    seed: int | None = None,
) -> DnaProvider:
    """Map a provider spec to an instance.

    "procedural" -> local generator, "external:<model>" or any other string ->
    LiteLLM model name, objects with `generate` are returned as-is.
    """
    match spec:
        case str() if spec.strip().lower() == PROCEDURAL:
            from .procedural import ProceduralDnaProvider

            return ProceduralDnaProvider(seed=seed, pattern_length=pattern_length)
        case str() if spec.strip():
            from .litellm import LiteLLMDnaProvider

            return LiteLLMDnaProvider(spec.strip(), pattern_length=pattern_length)
        case _ if _is_provider(spec):
            return spec
        case _:
            raise ProviderNotAvailableError(f"Unsupported provider spec: {spec!r}")


async def close_provider(provider: DnaProvider | None) -> None:
    if provider is None:
        return
    aclose = getattr(provider, "aclose", None)
    if callable(aclose):
        try:
            result = aclose()
            if inspect.isawaitable(result):
                await result
            return
        except Exception as exc:
            _LOGGER.warning("Provider async close failed: %s", exc, exc_info=True)
            return
    close = getattr(provider, "close", None)
    if callable(close):
        try:
            close()
        except Exception as exc:
            _LOGGER.warning("Provider close failed: %s", exc, exc_info=True)


__all__ = [
    "EXTERNAL_PREFIX",
    "PROCEDURAL",
    "DnaProvider",
    "ProviderSpec",
    "close_provider",
    "resolve_provider",
]
