from dataclasses import replace

import pytest

from ideator.conversation_store import ConversationStore
from ideator.ideator_prompts import WELCOME_MESSAGE
from ideator.orchestrator import (
    ConversationSession,
    Orchestrator,
    SessionFinalizedError,
    SessionState,
    SpecStoreError,
)
from ideator.schemas import ChatRequest, ConversationTurn, Role

from conftest import FakeProvider, collect, scripted


def _text(events):
    return "".join(e.get("content", "") for e in events)


@pytest.mark.asyncio
async def test_end_to_end_welcome_gather_finalize(config, sleep_recorder, spec_store):
    provider = FakeProvider(reply=scripted(gathering="Who will use the agent day to day?"))
    orchestrator = Orchestrator(provider, config, spec_store=spec_store, sleep=sleep_recorder)

    # 1. empty history: welcome stream
    first = ChatRequest(message="", conversation_history=[])
    session = orchestrator.open_session(first)
    assert session.state == SessionState.AWAITING_FIRST_TURN

    outcome = await orchestrator.handle_turn(first, session)
    events = await collect(outcome.events)

    assert events[-1] == {"done": True}
    assert sum(1 for e in events if e.get("done")) == 1
    assert _text(events) == WELCOME_MESSAGE
    assert session.state == SessionState.GATHERING
    assert provider.invocations == []

    # 2. one user turn, gate not ready: exactly one assistant turn
    second = ChatRequest(
        message="I need an agent that triages support tickets",
        conversation_history=[{"role": "assistant", "content": WELCOME_MESSAGE}],
    )
    session = orchestrator.open_session(second)
    outcome = await orchestrator.handle_turn(second, session)
    events = await collect(outcome.events)

    assert events[-1] == {"done": True}
    assert _text(events) == "Who will use the agent day to day?"
    assert [t.role for t in session.turns] == [Role.ASSISTANT, Role.USER, Role.ASSISTANT]
    assert session.turns[-1].text == "Who will use the agent day to day?"
    assert len(provider.invocations) == 1

    # 3. explicit finalize token: one complete response with a title
    third = ChatRequest(
        message="/done",
        conversation_history=[
            {"role": "assistant", "content": WELCOME_MESSAGE},
            {"role": "user", "content": "I need an agent that triages support tickets"},
            {"role": "assistant", "content": "Who will use the agent day to day?"},
        ],
        owner_id=7,
        project_id="p-1",
    )
    session = orchestrator.open_session(third)
    outcome = await orchestrator.handle_turn(third, session)

    assert outcome.is_stream is False
    final = outcome.final
    assert final.complete is True
    assert final.specification.title == "Support Ticket Triage Agent"
    assert final.specification.security_considerations == ["access_control / authentication: SSO"]
    assert final.response == "Your triage agent spec is ready."
    assert session.state == SessionState.FINALIZED

    stored = spec_store.load(final.id)
    assert stored["title"] == "Support Ticket Triage Agent"
    assert stored["owner_id"] == "7"
    assert stored["project_id"] == "p-1"


@pytest.mark.asyncio
async def test_forced_finalize_note_and_detail_tokens(config, sleep_recorder):
    provider = FakeProvider(reply=scripted())
    orchestrator = Orchestrator(provider, config, sleep=sleep_recorder)

    request = ChatRequest(message="build it /finalize", conversation_history=[])
    outcome = await orchestrator.handle_turn(request, max_detail=True)

    assert outcome.final.id is None
    spec_candidate = provider.candidates[-1]
    assert spec_candidate.options.max_output_tokens == 8192
    assert spec_candidate.options.temperature == 0.3
    assert "make intelligent assumptions" in provider.messages[-1][-1].content


@pytest.mark.asyncio
async def test_finalize_survives_ladder_failure_with_fallback(config, sleep_recorder):
    def reply(candidate, messages):
        return PermissionError("403 permission denied")

    orchestrator = Orchestrator(FakeProvider(reply=reply), config, sleep=sleep_recorder)
    request = ChatRequest(message="An agent that books meeting rooms /done")

    outcome = await orchestrator.handle_turn(request)

    spec = outcome.final.specification
    assert spec.title == "An agent that books meeting rooms"
    assert spec.model_extra["fallback"] is True
    assert outcome.final.response == spec.summary_message


@pytest.mark.asyncio
async def test_finalize_with_unparsable_output_uses_fallback(config, sleep_recorder):
    provider = FakeProvider(reply=scripted(spec="Sorry, I cannot produce JSON today."))
    orchestrator = Orchestrator(provider, config, sleep=sleep_recorder)

    outcome = await orchestrator.handle_turn(ChatRequest(message="Expense report checker", finalize=True))

    assert outcome.final.specification.title == "Expense report checker"


@pytest.mark.asyncio
async def test_store_failure_is_surfaced_and_session_stays_open(config, sleep_recorder):
    class BrokenStore:
        def save(self, artifact, owner_id, parent_refs):
            raise RuntimeError("db down")

    orchestrator = Orchestrator(FakeProvider(reply=scripted()), config, spec_store=BrokenStore(), sleep=sleep_recorder)
    session = ConversationSession(turns=[ConversationTurn.user("a bot")], state=SessionState.GATHERING)

    with pytest.raises(SpecStoreError) as excinfo:
        await orchestrator.handle_turn(ChatRequest(message="/done"), session)

    assert excinfo.value.artifact.title == "Support Ticket Triage Agent"
    assert session.state != SessionState.FINALIZED


@pytest.mark.asyncio
async def test_finalized_session_is_one_shot(config, sleep_recorder):
    store = ConversationStore(ttl_seconds=3600, max_tokens=8000)
    orchestrator = Orchestrator(
        FakeProvider(reply=scripted()), config, conversation_store=store, sleep=sleep_recorder
    )

    await orchestrator.handle_turn(ChatRequest(message="a bot for invoices /done", session_id="s1"))
    assert store.is_finalized("s1") is True

    with pytest.raises(SessionFinalizedError):
        await orchestrator.handle_turn(ChatRequest(message="one more thing", session_id="s1"))


@pytest.mark.asyncio
async def test_stored_session_turns_are_used_and_appended(config, sleep_recorder):
    store = ConversationStore(ttl_seconds=3600, max_tokens=8000)
    provider = FakeProvider(reply=scripted(gathering="Which CRM do you use?"))
    orchestrator = Orchestrator(provider, config, conversation_store=store, sleep=sleep_recorder)

    await collect((await orchestrator.handle_turn(ChatRequest(session_id="s2"))).events)
    await collect((await orchestrator.handle_turn(ChatRequest(message="Lead scoring", session_id="s2"))).events)

    turns = store.snapshot("s2")
    assert [t.role for t in turns] == [Role.ASSISTANT, Role.USER, Role.ASSISTANT]
    assert turns[-1].text == "Which CRM do you use?"


@pytest.mark.asyncio
async def test_native_stream_is_forwarded(config, sleep_recorder):
    provider = FakeProvider(stream_tokens=["Great ", "idea!"])
    orchestrator = Orchestrator(provider, replace(config, streaming_mode="native"), sleep=sleep_recorder)
    session = ConversationSession(turns=[ConversationTurn.assistant("hi")], state=SessionState.GATHERING)

    outcome = await orchestrator.handle_turn(ChatRequest(message="A recipe bot"), session)
    events = await collect(outcome.events)

    assert events == [{"content": "Great "}, {"content": "idea!"}, {"done": True}]
    assert provider.invocations == []
    assert session.turns[-1].text == "Great idea!"


@pytest.mark.asyncio
async def test_native_failure_before_first_token_degrades_to_simulated(config, sleep_recorder):
    provider = FakeProvider(
        reply=scripted(gathering="Plain answer here"),
        stream_error=RuntimeError("streaming not supported"),
    )
    orchestrator = Orchestrator(provider, replace(config, streaming_mode="native"), sleep=sleep_recorder)

    outcome = await orchestrator.handle_turn(ChatRequest(message="A recipe bot"))
    events = await collect(outcome.events)

    assert _text(events) == "Plain answer here"
    assert events[-1] == {"done": True}
    assert provider.stream_closed is True
    assert len(provider.invocations) == 1


@pytest.mark.asyncio
async def test_native_failure_mid_stream_ends_with_error(config, sleep_recorder):
    provider = FakeProvider(
        stream_tokens=["Partial ", "answer"],
        stream_error=RuntimeError("connection reset"),
        stream_error_at=1,
    )
    orchestrator = Orchestrator(provider, replace(config, streaming_mode="native"), sleep=sleep_recorder)
    session = ConversationSession(turns=[], state=SessionState.GATHERING)

    outcome = await orchestrator.handle_turn(ChatRequest(message="A recipe bot"), session)
    events = await collect(outcome.events)

    assert events == [{"content": "Partial "}, {"error": "connection reset"}]
    assert [t.role for t in session.turns] == [Role.USER]


@pytest.mark.asyncio
async def test_gathering_failure_surfaces_single_error_event(config, sleep_recorder):
    provider = FakeProvider(reply=lambda c, m: PermissionError("401 unauthorized"))
    orchestrator = Orchestrator(provider, config, sleep=sleep_recorder)

    outcome = await orchestrator.handle_turn(ChatRequest(message="A recipe bot"))
    events = await collect(outcome.events)

    assert events == [{"error": "401 unauthorized"}]


@pytest.mark.asyncio
async def test_probe_streaming_modes(config):
    auto = Orchestrator(FakeProvider(probe=True), replace(config, streaming_mode="auto"))
    assert await auto.probe_streaming() is True

    refused = Orchestrator(FakeProvider(probe=False), replace(config, streaming_mode="auto"))
    assert await refused.probe_streaming() is False

    forced = Orchestrator(FakeProvider(probe=True), replace(config, streaming_mode="simulated"))
    assert await forced.probe_streaming() is False


@pytest.mark.asyncio
async def test_closing_a_native_stream_releases_the_provider(config, sleep_recorder):
    provider = FakeProvider(stream_tokens=["a", "b", "c"])
    orchestrator = Orchestrator(provider, replace(config, streaming_mode="native"), sleep=sleep_recorder)
    session = ConversationSession(turns=[ConversationTurn.assistant("hi")], state=SessionState.GATHERING)

    outcome = await orchestrator.handle_turn(ChatRequest(message="A recipe bot"), session)
    first = await outcome.events.__anext__()
    await outcome.events.aclose()

    assert first == {"content": "a"}
    assert provider.stream_closed is True
    assert [t.role for t in session.turns] == [Role.ASSISTANT, Role.USER]


@pytest.mark.asyncio
async def test_empty_message_after_welcome_repeats_the_welcome(config, sleep_recorder):
    provider = FakeProvider(reply=scripted())
    orchestrator = Orchestrator(provider, config, sleep=sleep_recorder)
    request = ChatRequest(message="", conversation_history=[{"role": "assistant", "content": WELCOME_MESSAGE}])

    session = orchestrator.open_session(request)
    assert session.state == SessionState.AWAITING_FIRST_TURN

    events = await collect((await orchestrator.handle_turn(request, session)).events)

    assert _text(events) == WELCOME_MESSAGE
    assert provider.invocations == []
    assert provider.stream_calls == 0
    assert len(session.turns) == 1
