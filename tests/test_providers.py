from __future__ import annotations

import json
from types import SimpleNamespace

import litellm
import pytest

from groovedna.dna import BASELINE_DNA, merge_over_baseline, parse_dna
from groovedna.errors import DnaGenerateError, LLMInferenceError, ProviderNotAvailableError
from groovedna.providers import close_provider, resolve_provider
from groovedna.providers.litellm import (
    SYSTEM_PROMPT,
    LiteLLMDnaProvider,
    build_generation_prompt,
    parse_dna_content,
)
from groovedna.providers.procedural import ProceduralDnaProvider


def _response(content: object) -> object:
    message = SimpleNamespace(content=content)
    choice = SimpleNamespace(message=message)
    return SimpleNamespace(choices=[choice])


@pytest.mark.asyncio
async def test_litellm_provider_requests_json(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    async def fake_acompletion(**kwargs: object) -> object:
        captured.update(kwargs)
        return _response('{"genre": "neon_dub"}')

    monkeypatch.setattr(litellm, "acompletion", fake_acompletion)

    provider = LiteLLMDnaProvider("external:gemini/gemini-2.5-flash")
    payload = await provider.generate(128.0)

    assert payload == {"genre": "neon_dub"}
    assert captured["model"] == "gemini/gemini-2.5-flash"
    assert captured["response_format"] == {"type": "json_object"}
    messages = captured["messages"]
    assert isinstance(messages, list)
    assert messages[0] == {"role": "system", "content": SYSTEM_PROMPT}
    assert "BPM: 128" in messages[1]["content"]
    assert "api_key" not in captured


@pytest.mark.asyncio
async def test_litellm_kwargs_forwarded(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    async def fake_acompletion(**kwargs: object) -> object:
        captured.update(kwargs)
        return _response("{}")

    monkeypatch.setattr(litellm, "acompletion", fake_acompletion)

    provider = LiteLLMDnaProvider(
        "gemini/gemini-2.5-flash",
        api_key="secret",
        litellm_kwargs={"timeout": 42, "temperature": 0.2},
    )
    await provider.generate(105.0)

    assert captured["timeout"] == 42
    assert captured["temperature"] == 0.2
    assert captured["api_key"] == "secret"


def test_litellm_reserved_kwargs_rejected() -> None:
    with pytest.raises(DnaGenerateError, match="response_format"):
        LiteLLMDnaProvider("gemini/gemini-2.5-flash", litellm_kwargs={"response_format": {}})


@pytest.mark.asyncio
async def test_litellm_request_failure_is_inference_error(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_acompletion(**kwargs: object) -> object:
        raise TimeoutError("upstream timeout")

    monkeypatch.setattr(litellm, "acompletion", fake_acompletion)

    with pytest.raises(LLMInferenceError, match="upstream timeout"):
        await LiteLLMDnaProvider("gemini/gemini-2.5-flash").generate(105.0)


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [SimpleNamespace(choices=[]), _response("   "), _response(None)])
async def test_litellm_empty_responses(monkeypatch: pytest.MonkeyPatch, response: object) -> None:
    async def fake_acompletion(**kwargs: object) -> object:
        return response

    monkeypatch.setattr(litellm, "acompletion", fake_acompletion)

    with pytest.raises(DnaGenerateError):
        await LiteLLMDnaProvider("gemini/gemini-2.5-flash").generate(105.0)


def test_parse_dna_content_extracts_wrapped_json() -> None:
    content = 'Sure! Here is the DNA:\n```json\n{"genre": "glitch_hop", "energy": 0.8}\n```'
    assert parse_dna_content(content) == {"genre": "glitch_hop", "energy": 0.8}


def test_parse_dna_content_repairs_broken_json() -> None:
    payload = parse_dna_content('{"genre": "dusk", "mood": "calm",')
    assert payload["genre"] == "dusk"
    assert payload["mood"] == "calm"


def test_parse_dna_content_rejects_prose() -> None:
    with pytest.raises(DnaGenerateError, match="non-JSON"):
        parse_dna_content("I cannot compose right now.")


def test_prompt_mentions_pattern_rules() -> None:
    prompt = build_generation_prompt(140.0, pattern_length=16)
    assert "BPM: 140" in prompt
    assert "exactly 16 entries" in prompt
    assert "at least 5 MIDI notes (60-84)" in prompt
    assert "<schema>" in prompt


@pytest.mark.asyncio
async def test_procedural_payload_is_complete_and_valid() -> None:
    provider = ProceduralDnaProvider(seed=7)

    payload = await provider.generate(120.0)
    dna = parse_dna(payload)

    for name in ("A", "B"):
        section = dna.section(name)  # type: ignore[arg-type]
        assert len(section.drums.kick) == 8
        assert len(section.bass_line) == 8
        assert len(section.prob_map) == 8
        assert all(0.0 <= p <= 1.0 for p in section.prob_map)
        lead = [note for note in section.lead_melody if note is not None]
        assert len(lead) >= 5
        assert all(60 <= note <= 84 for note in lead)
        assert len(section.pad_chord()) == 4
    assert dna.ai_thought is not None
    assert len(dna.ai_thought.split()) <= 15


@pytest.mark.asyncio
async def test_procedural_is_seeded_and_honours_length() -> None:
    first = await ProceduralDnaProvider(seed=3).generate(100.0)
    second = await ProceduralDnaProvider(seed=3).generate(100.0)
    long = await ProceduralDnaProvider(seed=3, pattern_length=16).generate(100.0)

    assert first == second
    assert len(long["sections"]["A"]["arpPattern"]) == 16
    assert merge_over_baseline(BASELINE_DNA, first).genre == first["genre"]


def test_resolve_provider_specs() -> None:
    assert isinstance(resolve_provider("procedural"), ProceduralDnaProvider)
    external = resolve_provider("external:openai/gpt-4o-mini")
    assert isinstance(external, LiteLLMDnaProvider)
    assert external.model == "openai/gpt-4o-mini"
    custom = ProceduralDnaProvider(seed=1)
    assert resolve_provider(custom) is custom
    with pytest.raises(ProviderNotAvailableError):
        resolve_provider("   ")
    with pytest.raises(ProviderNotAvailableError):
        resolve_provider(42)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_close_provider_swallows_close_errors() -> None:
    class _Broken:
        async def generate(self, bpm: float) -> dict[str, object]:
            return {}

        async def aclose(self) -> None:
            raise RuntimeError("close boom")

    await close_provider(_Broken())
    await close_provider(None)


def test_schema_payload_is_json_serialisable() -> None:
    assert json.loads(json.dumps(BASELINE_DNA.to_payload()))["genre"] == "DREAM_ELECTRONICA"
