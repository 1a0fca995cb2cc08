# ideator/orchestrator.py
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from langchain_core.messages import BaseMessage, HumanMessage

from ideator.artifact_parser import FallbackInputs, build_fallback_artifact, parse_artifact
from ideator.base_utils import BaseUtils
from ideator.conversation_store import ConversationStore
from ideator.ideator_prompts import (
    IDEATOR_SYSTEM_PROMPT,
    SPEC_DETAIL_DEFAULT,
    SPEC_DETAIL_MAX,
    SPEC_FORCED_NOTE,
    SPEC_PROMPT,
    WELCOME_MESSAGE,
)
from ideator.llm_client import ModelProvider
from ideator.model_ladder import ModelLadder
from ideator.model_props import CandidateOptions, PipelineConfig
from ideator.readiness import ReadinessGate
from ideator.schemas import (
    ChatRequest,
    ConversationTurn,
    FinalizeResponse,
    ParentRefs,
    Role,
    SpecificationArtifact,
    has_finalize_token,
    turns_from_history,
)
from ideator.spec_store import SpecStore
from ideator.streaming import (
    StreamEvent,
    aclose_quietly,
    native_stream,
    sealed,
    simulated_stream,
)

logger = logging.getLogger("ideator_backend")

SPEC_MAX_TOKENS = 4096
SPEC_MAX_TOKENS_DETAILED = 8192
SPEC_TEMPERATURE = 0.3


class SessionFinalizedError(Exception):
    """The session already produced its specification."""
    pass


class SpecStoreError(Exception):
    """The artifact was generated but could not be persisted."""

    def __init__(self, message: str, artifact: SpecificationArtifact):
        super().__init__(message)
        self.artifact = artifact


class SessionState(str, Enum):
    AWAITING_FIRST_TURN = "awaiting_first_turn"
    GATHERING = "gathering"
    READY = "ready"
    FINALIZED = "finalized"


@dataclass
class ConversationSession:
    session_id: Optional[str] = None
    turns: list[ConversationTurn] = field(default_factory=list)
    state: SessionState = SessionState.AWAITING_FIRST_TURN


@dataclass
class TurnOutcome:
    """Either a StreamEvent stream (welcome / gathering) or the finalize response."""
    events: Optional[AsyncIterator[StreamEvent]] = None
    final: Optional[FinalizeResponse] = None

    @property
    def is_stream(self) -> bool:
        return self.events is not None


class Orchestrator(BaseUtils):
    """
    Per-turn state machine:

        AWAITING_FIRST_TURN -> GATHERING -> READY -> FINALIZED

    Everything it needs comes in through the constructor; it holds no
    per-session state of its own.
    """

    def __init__(
        self,
        provider: ModelProvider,
        config: PipelineConfig,
        spec_store: SpecStore | None = None,
        conversation_store: ConversationStore | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        gate: ReadinessGate | None = None,
    ):
        self.config = config
        self.provider = provider
        self.ladder = ModelLadder(provider, config, sleep=sleep)
        self.gate = gate or ReadinessGate(
            self.ladder,
            min_exchanges=config.readiness_min_exchanges,
            model=config.readiness_model,
        )
        self.spec_store = spec_store
        self.conversation_store = conversation_store
        self._sleep = sleep
        self.native_streaming = config.streaming_mode == "native"

    async def probe_streaming(self) -> bool:
        """
        Settle the streaming mode once, at startup. "auto" asks the provider for one token.
        """
        if self.config.streaming_mode == "auto":
            probe = getattr(self.provider, "probe_streaming", None)
            if probe is None:
                self.native_streaming = False
            else:
                primary = self.ladder.candidates()[0]
                self.native_streaming = bool(await probe(primary))
        else:
            self.native_streaming = self.config.streaming_mode == "native"
        logger.info(f"Streaming mode: {'native' if self.native_streaming else 'simulated'}")
        return self.native_streaming

    # -----------------------
    # Sessions
    # -----------------------

    def open_session(self, request: ChatRequest) -> ConversationSession:
        """
        Stored turns are authoritative when the request names a known session;
        otherwise the caller-supplied history is used.
        """
        sid = request.session_id
        turns: list[ConversationTurn] = []
        state = SessionState.GATHERING

        if sid and self.conversation_store is not None:
            if self.conversation_store.is_finalized(sid):
                state = SessionState.FINALIZED
            turns = self.conversation_store.snapshot(sid)
        if not turns:
            turns = turns_from_history(request.conversation_history)

        if state != SessionState.FINALIZED and not any(t.role == Role.USER for t in turns):
            state = SessionState.AWAITING_FIRST_TURN
        return ConversationSession(session_id=sid, turns=turns, state=state)

    def _record(self, session: ConversationSession, turn: ConversationTurn) -> None:
        session.turns.append(turn)
        if session.session_id and self.conversation_store is not None:
            self.conversation_store.append(session.session_id, turn)

    def _mark_finalized(self, session: ConversationSession) -> None:
        session.state = SessionState.FINALIZED
        if session.session_id and self.conversation_store is not None:
            self.conversation_store.mark_finalized(session.session_id)

    # -----------------------
    # Entry point
    # -----------------------

    async def handle_turn(
        self,
        request: ChatRequest,
        session: ConversationSession | None = None,
        *,
        max_detail: bool = False,
    ) -> TurnOutcome:
        session = session or self.open_session(request)
        if session.state == SessionState.FINALIZED:
            raise SessionFinalizedError(f"Session {session.session_id or '<anonymous>'} is already finalized")

        message = request.message.strip()

        # no user content yet
        if not message and not request.finalize and not any(t.role == Role.USER for t in session.turns):
            return TurnOutcome(events=self._welcome(session))

        session.state = SessionState.GATHERING
        prior = list(session.turns)
        latest = ConversationTurn.user(message) if message else None
        if latest is not None:
            self._record(session, latest)

        forced = request.finalize or has_finalize_token(message)
        ready = await self.gate.is_ready(prior, latest, finalize=request.finalize)
        if not ready:
            return TurnOutcome(events=self._gathering(session))

        session.state = SessionState.READY
        final = await self._finalize(
            session,
            forced=forced,
            max_detail=max_detail,
            owner_id=request.owner_id,
            parent_refs=ParentRefs(project_id=request.project_id, node_id=request.node_id),
        )
        return TurnOutcome(final=final)

    # -----------------------
    # AWAITING_FIRST_TURN
    # -----------------------

    async def _welcome(self, session: ConversationSession) -> AsyncIterator[StreamEvent]:
        events = sealed(simulated_stream(WELCOME_MESSAGE, self.config.stream_chunk_delay, self._sleep))
        try:
            async for event in events:
                if event.get("done"):
                    if not session.turns:
                        self._record(session, ConversationTurn.assistant(WELCOME_MESSAGE))
                    session.state = SessionState.GATHERING
                yield event
        finally:
            await aclose_quietly(events)

    # -----------------------
    # GATHERING
    # -----------------------

    def _gathering_messages(self, session: ConversationSession) -> tuple[list[BaseMessage], CandidateOptions]:
        return (
            self._turns_to_messages(session.turns),
            CandidateOptions(system_instruction=IDEATOR_SYSTEM_PROMPT),
        )

    async def _assistant_events(self, session: ConversationSession) -> AsyncIterator[StreamEvent]:
        messages, options = self._gathering_messages(session)

        if self.native_streaming:
            events = native_stream(self.ladder.stream(messages, options))
            started = False
            try:
                async for event in events:
                    if "content" in event:
                        started = True
                    yield event
                return
            except Exception as e:
                if started:
                    raise
                logger.warning(f"Native stream failed before the first token; degrading to a plain call: {e}")
            finally:
                await aclose_quietly(events)

        text = await self.ladder.generate(messages, options)
        async for event in simulated_stream(text, self.config.stream_chunk_delay, self._sleep):
            yield event

    async def _gathering(self, session: ConversationSession) -> AsyncIterator[StreamEvent]:
        parts: list[str] = []
        events = sealed(self._assistant_events(session))
        try:
            async for event in events:
                if "content" in event:
                    parts.append(event["content"])
                elif event.get("done"):
                    text = "".join(parts).strip()
                    if text:
                        self._record(session, ConversationTurn.assistant(text))
                yield event
        finally:
            await aclose_quietly(events)

    # -----------------------
    # READY -> FINALIZED
    # -----------------------

    def _spec_prompt(self, forced: bool, max_detail: bool) -> str:
        return self.unsafe_string_format(
            SPEC_PROMPT,
            forced_note=SPEC_FORCED_NOTE if forced else "",
            detail_note=SPEC_DETAIL_MAX if max_detail else SPEC_DETAIL_DEFAULT,
        )

    async def generate_specification(
        self,
        turns: list[ConversationTurn],
        *,
        forced: bool = False,
        max_detail: bool = False,
    ) -> SpecificationArtifact:
        """
        Never fails: a ladder error or unusable output yields the deterministic fallback.
        """
        inputs = FallbackInputs.from_conversation(turns)
        messages = self._turns_to_messages(turns)
        messages.append(HumanMessage(content=self._spec_prompt(forced, max_detail)))
        options = CandidateOptions(
            temperature=SPEC_TEMPERATURE,
            max_output_tokens=SPEC_MAX_TOKENS_DETAILED if max_detail else SPEC_MAX_TOKENS,
        )
        try:
            raw = await self.ladder.generate(messages, options)
        except Exception:
            logger.exception("Specification generation failed; using the fallback artifact")
            return build_fallback_artifact(inputs)
        return parse_artifact(raw, inputs)

    async def _finalize(
        self,
        session: ConversationSession,
        *,
        forced: bool,
        max_detail: bool,
        owner_id: str | None,
        parent_refs: ParentRefs,
    ) -> FinalizeResponse:
        artifact = await self.generate_specification(session.turns, forced=forced, max_detail=max_detail)

        idea_id = None
        if self.spec_store is not None:
            try:
                idea_id = self.spec_store.save(artifact, owner_id, parent_refs)
            except Exception as e:
                logger.exception("Specification store rejected the artifact")
                raise SpecStoreError(f"Could not save the specification: {e}", artifact) from e

        self._mark_finalized(session)
        return FinalizeResponse(response=artifact.summary_message, specification=artifact, id=idea_id)
