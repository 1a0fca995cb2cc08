from dataclasses import replace

import pytest
from langchain_core.messages import HumanMessage

from ideator.model_ladder import ModelLadder, generate_with_fallback
from ideator.model_props import ModelCandidate

from conftest import FakeProvider, collect


def _candidates(*names):
    return [ModelCandidate(n) for n in names]


def _by_model(**behaviour):
    def reply(candidate, messages):
        return behaviour[candidate.name]

    return reply


MESSAGES = [HumanMessage(content="hello")]


@pytest.mark.asyncio
async def test_transient_failure_advances_to_next_candidate(sleep_recorder):
    provider = FakeProvider(reply=_by_model(A=RuntimeError("503 overloaded"), B="from B", C="from C"))

    result = await generate_with_fallback(
        provider.invoke, _candidates("A", "B", "C"), MESSAGES, max_attempts=3, sleep=sleep_recorder
    )

    assert result == "from B"
    assert provider.invocations == ["A", "A", "A", "B"]
    assert "C" not in provider.invocations


@pytest.mark.asyncio
async def test_fatal_failure_propagates_without_trying_others(sleep_recorder):
    provider = FakeProvider(reply=_by_model(A=PermissionError("401 unauthorized"), B="from B", C="from C"))

    with pytest.raises(PermissionError):
        await generate_with_fallback(provider.invoke, _candidates("A", "B", "C"), MESSAGES, sleep=sleep_recorder)

    assert provider.invocations == ["A"]
    assert sleep_recorder.delays == []


@pytest.mark.asyncio
async def test_all_candidates_exhausted_raises_last_error(sleep_recorder):
    provider = FakeProvider(reply=_by_model(A=RuntimeError("quota A"), B=RuntimeError("quota B")))

    with pytest.raises(RuntimeError, match="quota B"):
        await generate_with_fallback(
            provider.invoke, _candidates("A", "B"), MESSAGES, max_attempts=2, sleep=sleep_recorder
        )

    assert provider.invocations == ["A", "A", "B", "B"]


@pytest.mark.asyncio
async def test_empty_candidate_list_is_rejected():
    provider = FakeProvider()
    with pytest.raises(ValueError):
        await generate_with_fallback(provider.invoke, [], MESSAGES)


def test_ladder_candidates_are_deduplicated_with_preferred_first(config):
    ladder = ModelLadder(FakeProvider(), replace(config, fallback_models=("model-b", "model-a", "model-c")))

    names = [c.name for c in ladder.candidates()]
    assert names == ["model-a", "model-b", "model-c"]

    names = [c.name for c in ladder.candidates(preferred="model-c")]
    assert names == ["model-c", "model-b", "model-a"]


def test_strict_mode_keeps_only_the_preferred_model(config):
    ladder = ModelLadder(FakeProvider(), replace(config, strict=True))

    assert [c.name for c in ladder.candidates()] == ["model-a"]
    assert [c.name for c in ladder.candidates(secondary=("x", "y"))] == ["model-a"]


@pytest.mark.asyncio
async def test_ladder_generate_uses_config_budget(config, sleep_recorder):
    provider = FakeProvider(
        reply=_by_model(**{"model-a": RuntimeError("rate limited"), "model-b": "b wins", "model-c": "c"})
    )
    ladder = ModelLadder(provider, replace(config, max_attempts_per_candidate=2), sleep=sleep_recorder)

    assert await ladder.generate(MESSAGES) == "b wins"
    assert provider.invocations == ["model-a", "model-a", "model-b"]
    assert sleep_recorder.delays == [0.4]


@pytest.mark.asyncio
async def test_ladder_stream_uses_the_primary_candidate(config):
    provider = FakeProvider(stream_tokens=["a ", "b"])
    ladder = ModelLadder(provider, config)

    tokens = await collect(ladder.stream(MESSAGES))

    assert tokens == ["a ", "b"]
    assert provider.stream_calls == 1
