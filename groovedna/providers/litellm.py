from __future__ import annotations

import json
import logging
import warnings
from collections.abc import Mapping
from typing import Any, cast

from json_repair import repair_json  # type: ignore[import]
from pydantic import BaseModel

from ..dna import dna_json_schema
from ..errors import DnaGenerateError, LLMInferenceError, ProviderNotAvailableError
from . import EXTERNAL_PREFIX

_DEFAULT_TEMPERATURE = 0.9
_LOGGER = logging.getLogger("groovedna.providers.litellm")
_RESERVED_LITELLM_KWARGS = frozenset({"model", "messages", "response_format", "api_key"})
_litellm_logging_configured = False

SYSTEM_PROMPT = (
    "You are a fast MIDI orchestrator. Output strict JSON matching the schema. "
    "aiThought must be ultra-short (under 15 words)."
)


def build_generation_prompt(bpm: float, *, pattern_length: int = 8) -> str:
    schema = json.dumps(dna_json_schema(), separators=(",", ":"))
    return (
        f"BPM: {bpm:.0f}. Compose Music DNA with two sections, A and B.\n"
        "RULES:\n"
        f"1. Every per-step array has exactly {pattern_length} entries.\n"
        "2. drums.kick, drums.snare, drums.hihat, drums.glitch and arpPattern: 0 or 1 per step.\n"
        "3. bassLine: MIDI notes (28-52); null marks a rest.\n"
        "4. leadMelody: at least 5 MIDI notes (60-84); null marks a rest.\n"
        "5. chordProgression: lush 4-note chords as MIDI note lists.\n"
        "6. probMap: chance (0-1) that a step plays.\n"
        "7. aiThought: MAX 15 WORDS summarize.\n"
        "Also set genre, mood, scale, palette, color (hex) and energy (0-1).\n"
        f"<schema>{schema}</schema>\n"
        "FASTEST RESPONSE REQUIRED."
    )


def _configure_litellm_logging(litellm_module: Any) -> None:
    global _litellm_logging_configured
    if _litellm_logging_configured:
        return
    _litellm_logging_configured = True
    try:
        litellm_module.turn_off_message_logging = True
        litellm_module.disable_streaming_logging = True
    except Exception as exc:
        _LOGGER.info("LiteLLM logging config failed: %s", exc, exc_info=True)
    warnings.filterwarnings("ignore", message="Pydantic serializer warnings")


def _extract_json_payload(content: str) -> str | None:
    start = content.find("{")
    end = content.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return content[start : end + 1]


def _content_snippet(content: str, limit: int = 200) -> str:
    cleaned = content.strip()
    if len(cleaned) <= limit:
        return cleaned
    return f"{cleaned[:limit]}..."


def _decode_object(text: str) -> Mapping[str, Any] | None:
    try:
        decoded: object = json.loads(text)
    except json.JSONDecodeError:
        return None
    if isinstance(decoded, Mapping):
        return cast(Mapping[str, Any], decoded)
    return None


def parse_dna_content(content: str) -> Mapping[str, Any]:
    """Pull a JSON object out of model output: as-is, then the outermost braces, then repaired."""
    payload = _decode_object(content)
    if payload is not None:
        return payload
    extracted = _extract_json_payload(content)
    if extracted:
        payload = _decode_object(extracted)
        if payload is not None:
            return payload
        _LOGGER.warning("LiteLLM returned invalid JSON after extraction.")
    repaired = repair_json(content)
    if isinstance(repaired, str):
        payload = _decode_object(repaired)
        if payload is not None:
            _LOGGER.info("LiteLLM JSON needed repair.")
            return payload
    snippet = _content_snippet(content) or "<empty>"
    _LOGGER.warning("LiteLLM returned invalid JSON: %s", snippet)
    raise DnaGenerateError(f"LiteLLM returned non-JSON content: {snippet}")


class _LiteLLMRequest(BaseModel):
    model: str
    messages: list[dict[str, str]]
    temperature: float | None = None
    response_format: dict[str, str] | None = None
    api_key: str | None = None


class LiteLLMDnaProvider:
    """DNA provider backed by any LiteLLM-supported chat model."""

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        litellm_kwargs: Mapping[str, Any] | None = None,
        temperature: float | None = _DEFAULT_TEMPERATURE,
        system_prompt: str | None = None,
        pattern_length: int = 8,
    ) -> None:
        if model.startswith(EXTERNAL_PREFIX):
            model = model.removeprefix(EXTERNAL_PREFIX)
        self._model = model
        self._api_key = api_key
        self._litellm_kwargs = dict(litellm_kwargs or {})
        self._temperature = temperature
        self._system_prompt = system_prompt or SYSTEM_PROMPT
        self._pattern_length = pattern_length
        if self._api_key is None:
            _LOGGER.debug("No API key provided; letting LiteLLM read from env vars.")
        invalid_keys = _RESERVED_LITELLM_KWARGS.intersection(self._litellm_kwargs)
        if invalid_keys:
            keys = ", ".join(sorted(invalid_keys))
            raise DnaGenerateError(f"litellm_kwargs cannot override: {keys}")

    @property
    def model(self) -> str:
        return self._model

    async def aclose(self) -> None:
        try:
            import litellm  # type: ignore[import]
        except ImportError as exc:
            _LOGGER.info("LiteLLM not installed; skipping async close: %s", exc)
            return
        close_fn: Any = getattr(litellm, "close_litellm_async_clients", None)
        if close_fn is None:
            return
        try:
            await close_fn()
        except Exception as exc:
            _LOGGER.warning("LiteLLM close failed: %s", exc, exc_info=True)

    def build_messages(self, bpm: float) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": self._system_prompt},
            {
                "role": "user",
                "content": build_generation_prompt(bpm, pattern_length=self._pattern_length),
            },
        ]

    async def generate(self, bpm: float) -> Mapping[str, Any]:
        try:
            import litellm  # type: ignore[import]
            from litellm import acompletion  # type: ignore[import]
        except ImportError as exc:
            _LOGGER.warning("LiteLLM not installed: %s", exc)
            raise ProviderNotAvailableError("litellm is not installed") from exc

        _configure_litellm_logging(litellm)
        request = _LiteLLMRequest(
            model=self._model,
            messages=self.build_messages(bpm),
            temperature=self._temperature,
            response_format={"type": "json_object"},
            api_key=self._api_key or None,
        ).model_dump(exclude_none=True)
        request.update(self._litellm_kwargs)

        try:
            response: Any = await acompletion(**request)
        except Exception as exc:  # pragma: no cover - provider errors
            _LOGGER.warning("LiteLLM request failed: %s", exc, exc_info=True)
            raise LLMInferenceError(str(exc)) from exc

        if response is None or not getattr(response, "choices", None):
            raise DnaGenerateError("LiteLLM response missing choices")
        raw_content = response.choices[0].message.content
        if not isinstance(raw_content, str) or not raw_content.strip():
            raise DnaGenerateError("LiteLLM returned empty content")
        return parse_dna_content(raw_content.strip())
