"""
Shared fixtures and fakes for the ideator tests.

- FakeProvider stands in for ChatLlmClient: scripted replies, scripted token streams.
- Async tests are marked with pytest.mark.asyncio.
- Backoff sleeps are replaced by a recorder so nothing waits on the clock.
"""
import json

import pytest

from ideator.db_connection import DbConnection
from ideator.model_props import PipelineConfig
from ideator.spec_store import SpecStore

READINESS_MARKER = "Respond with only 'YES' or 'NO'"
SPEC_MARKER = "comprehensive agent specification"

SPEC_JSON = json.dumps(
    {
        "title": "Support Ticket Triage Agent",
        "agent_type": "customer_service",
        "summary": "Routes incoming tickets to the right queue.",
        "steps": ["Ingest tickets", "Classify", "Route"],
        "agent_stack": {"llm_model": {"primary_model": {"recommendation": "gemini-2.5-pro"}}},
        "security_considerations": {"access_control": {"authentication": "SSO"}},
        "client_requirements": "Helpdesk API key",
        "summary_message": "Your triage agent spec is ready.",
    }
)


class FakeProvider:
    """
    reply(candidate, messages) -> str, or an exception instance to raise.
    Stream: yields stream_tokens, raising stream_error when index stream_error_at is reached.
    """

    def __init__(self, reply=None, stream_tokens=None, stream_error=None, stream_error_at=0, probe=True):
        self.reply = reply or (lambda candidate, messages: "ok")
        self.stream_tokens = list(stream_tokens or [])
        self.stream_error = stream_error
        self.stream_error_at = stream_error_at
        self.probe_result = probe
        self.invocations: list[str] = []
        self.candidates = []
        self.messages = []
        self.stream_calls = 0
        self.stream_closed = False

    async def invoke(self, candidate, messages):
        self.invocations.append(candidate.name)
        self.candidates.append(candidate)
        self.messages.append(list(messages))
        result = self.reply(candidate, messages)
        if isinstance(result, BaseException):
            raise result
        return result

    async def stream(self, candidate, messages):
        self.stream_calls += 1
        try:
            for i, token in enumerate(self.stream_tokens):
                if self.stream_error is not None and i == self.stream_error_at:
                    raise self.stream_error
                yield token
            if self.stream_error is not None and self.stream_error_at >= len(self.stream_tokens):
                raise self.stream_error
        finally:
            self.stream_closed = True

    async def probe_streaming(self, candidate):
        return self.probe_result


def scripted(gathering="Tell me more about your users.", readiness="NO", spec=SPEC_JSON):
    """Reply by prompt kind: readiness classification, spec generation, or a gathering turn."""

    def reply(candidate, messages):
        last = str(messages[-1].content) if messages else ""
        if READINESS_MARKER in last:
            return readiness
        if SPEC_MARKER in last:
            return spec
        return gathering

    return reply


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay):
        self.delays.append(delay)


async def collect(events):
    return [e async for e in events]


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig(
        primary_model="model-a",
        fallback_models=("model-b", "model-c"),
        attempt_timeout=None,
        streaming_mode="simulated",
        stream_chunk_delay=0,
    )


@pytest.fixture
def spec_store() -> SpecStore:
    db = DbConnection("sqlite:///:memory:")
    db.create_schema()
    return SpecStore(db.build_db_session_factory())
