# ideator/llm_client.py
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, TypeVar

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_google_vertexai import ChatVertexAI
from openai import AsyncOpenAI

from ideator.model_props import ModelCandidate, is_openai_model, parse_model_name

logger = logging.getLogger("ideator_backend")

T = TypeVar("T")

TRANSIENT_MARKERS = ("503", "service unavailable", "overloaded", "rate", "quota")
DEFAULT_BACKOFF_SCHEDULE = (0.4, 0.9, 1.8)
DEFAULT_BACKOFF_CEILING = 1.5


class ProviderTimeoutError(Exception):
    """A single model invocation ran past its per-attempt deadline."""
    pass


@dataclass(frozen=True)
class GenerationAttempt:
    candidate: str
    attempt_number: int
    error: Optional[BaseException] = None

    def __str__(self) -> str:
        err = f": {type(self.error).__name__}: {self.error}" if self.error is not None else ""
        return f"{self.candidate or '<model>'} attempt {self.attempt_number}{err}"


def is_transient_error(error) -> bool:
    """
    Overload, rate limiting and quota exhaustion are worth retrying (and worth
    trying on another model). Anything else, auth and malformed requests included, is fatal.
    """
    if isinstance(error, (ProviderTimeoutError, asyncio.TimeoutError)):
        return True
    message = error if isinstance(error, str) else str(error or "")
    message = message.lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


def backoff_delay(
    attempt_index: int,
    schedule: Sequence[float] = DEFAULT_BACKOFF_SCHEDULE,
    ceiling: float = DEFAULT_BACKOFF_CEILING,
) -> float:
    if 0 <= attempt_index < len(schedule):
        return float(schedule[attempt_index])
    return float(ceiling)


async def call_with_retries(
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    backoff_schedule: Sequence[float] = DEFAULT_BACKOFF_SCHEDULE,
    backoff_ceiling: float = DEFAULT_BACKOFF_CEILING,
    attempt_timeout: float | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    label: str = "",
    log: Callable[[str], None] | None = None,
) -> T:
    """
    Run one model call with a fixed backoff schedule.

    Transient failures sleep the scheduled delay and retry while attempts remain.
    Fatal failures, and the last transient one, are re-raised unchanged so the
    caller can classify them again.
    """
    if max_attempts < 1:
        raise ValueError("call_with_retries: max_attempts must be >= 1")
    log = log or (lambda msg: logger.warning(f"[LLM-RETRY] {msg}"))

    for attempt in range(max_attempts):
        try:
            if attempt_timeout:
                try:
                    return await asyncio.wait_for(fn(), timeout=attempt_timeout)
                except asyncio.TimeoutError as e:
                    raise ProviderTimeoutError(
                        f"{label or 'model call'} exceeded the {attempt_timeout:.0f}s attempt deadline"
                    ) from e
            return await fn()
        except Exception as e:
            info = GenerationAttempt(candidate=label, attempt_number=attempt + 1, error=e)
            if attempt < max_attempts - 1 and is_transient_error(e):
                delay = backoff_delay(attempt, backoff_schedule, backoff_ceiling)
                log(f"{info} (transient, backing off {delay:.1f}s)")
                await sleep(delay)
                continue
            log(f"{info} (giving up)")
            raise

    # unreachable: the last attempt either returns or raises
    raise RuntimeError("call_with_retries: no attempt was made")


class ModelProvider(Protocol):
    """The two calls the pipeline needs from a model backend."""

    async def invoke(self, candidate: ModelCandidate, messages: List[BaseMessage]) -> str:
        ...

    def stream(self, candidate: ModelCandidate, messages: List[BaseMessage]) -> AsyncIterator[str]:
        ...


def _content_to_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for p in content:
            if isinstance(p, str):
                parts.append(p)
            elif isinstance(p, dict) and isinstance(p.get("text"), str):
                parts.append(p["text"])
        return "".join(parts)
    return str(content)


class ChatLlmClient:
    """
    Chat-style model access for ladder candidates:

        text = await client.invoke(candidate, [HumanMessage(...), AIMessage(...), ...])
        async for token in client.stream(candidate, messages): ...

    Under the hood:
    - Vertex (Gemini): ChatVertexAI.ainvoke / astream
    - OpenAI ("gpt-*" names): Responses API with input=[{role, content}, ...]

    SDK-level retries are disabled; retry and fallback policy belongs to the pipeline.
    """

    def __init__(
        self,
        *,
        vertex_project: str,
        vertex_region: str,
        timeout: float | None = None,
    ):
        self._vertex_project = vertex_project
        self._vertex_region = vertex_region
        self._timeout = timeout
        self._openai: AsyncOpenAI | None = None

    # -----------------------
    # Provider plumbing
    # -----------------------

    def _vertex_for(self, candidate: ModelCandidate) -> ChatVertexAI:
        kwargs: Dict[str, Any] = {
            "model_name": candidate.name,
            "project": self._vertex_project,
            "location": self._vertex_region,
            "max_retries": 0,
        }
        if self._timeout is not None:
            kwargs["timeout"] = self._timeout
        if candidate.options.temperature is not None:
            kwargs["temperature"] = candidate.options.temperature
        if candidate.options.max_output_tokens is not None:
            kwargs["max_output_tokens"] = candidate.options.max_output_tokens
        return ChatVertexAI(**kwargs)

    def _openai_client(self) -> AsyncOpenAI:
        if self._openai is None:
            client_kwargs: Dict[str, Any] = {"max_retries": 0}
            if self._timeout is not None:
                client_kwargs["timeout"] = self._timeout
            self._openai = AsyncOpenAI(**client_kwargs)
        return self._openai

    def _with_system(self, candidate: ModelCandidate, messages: List[BaseMessage]) -> List[BaseMessage]:
        system = candidate.options.system_instruction
        if not system:
            return list(messages)
        return [SystemMessage(content=system), *messages]

    def _to_openai_messages(self, messages: List[BaseMessage]) -> List[Dict[str, str]]:
        out: List[Dict[str, str]] = []
        for m in messages:
            if isinstance(m, SystemMessage):
                role = "developer"
            elif isinstance(m, HumanMessage):
                role = "user"
            elif isinstance(m, AIMessage):
                role = "assistant"
            else:
                role = "user"
            out.append({"role": role, "content": _content_to_text(m.content)})
        return out

    def _openai_request(self, candidate: ModelCandidate, messages: List[BaseMessage]) -> Dict[str, Any]:
        base_model, params = parse_model_name(candidate.name)
        request: Dict[str, Any] = {
            "model": base_model,
            "input": self._to_openai_messages(self._with_system(candidate, messages)),
            **params,
        }
        if candidate.options.max_output_tokens is not None:
            request["max_output_tokens"] = candidate.options.max_output_tokens
        # reasoning models reject sampling parameters
        if candidate.options.temperature is not None and "reasoning" not in params and not base_model.startswith("gpt-5"):
            request["temperature"] = candidate.options.temperature
        return request

    # -----------------------
    # Public calls
    # -----------------------

    async def invoke(self, candidate: ModelCandidate, messages: List[BaseMessage]) -> str:
        """
        Single call without retries/backoff.
        """
        if is_openai_model(candidate.name):
            resp = await self._openai_client().responses.create(**self._openai_request(candidate, messages))
            usage = getattr(resp, "usage", None)
            if usage is not None:
                logger.debug("%s usage: in=%s out=%s", candidate.name, getattr(usage, "input_tokens", None), getattr(usage, "output_tokens", None))
            return (getattr(resp, "output_text", "") or "").strip()

        resp = await self._vertex_for(candidate).ainvoke(self._with_system(candidate, messages))
        usage_md = getattr(resp, "usage_metadata", None)
        if usage_md:
            logger.debug("%s usage: %s", candidate.name, usage_md)
        if isinstance(resp, str):
            return resp
        return _content_to_text(getattr(resp, "content", resp))

    async def stream(self, candidate: ModelCandidate, messages: List[BaseMessage]) -> AsyncIterator[str]:
        """
        Native token stream. Closing this generator closes the provider stream.
        """
        if is_openai_model(candidate.name):
            events = await self._openai_client().responses.create(
                **self._openai_request(candidate, messages), stream=True
            )
            try:
                async for event in events:
                    if getattr(event, "type", "") == "response.output_text.delta":
                        delta = getattr(event, "delta", "")
                        if delta:
                            yield delta
            finally:
                await events.close()
            return

        chunks = self._vertex_for(candidate).astream(self._with_system(candidate, messages))
        try:
            async for chunk in chunks:
                text = _content_to_text(getattr(chunk, "content", chunk))
                if text:
                    yield text
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

    async def probe_streaming(self, candidate: ModelCandidate) -> bool:
        """
        Ask for one streamed token. Any failure means "use simulated streaming".
        """
        tokens = self.stream(candidate, [HumanMessage(content="ping")])
        try:
            async for _ in tokens:
                break
            logger.info("[ai] streaming probe: supported (%s)", candidate.name)
            return True
        except Exception as e:
            logger.info("[ai] streaming probe: not supported (%s): %s", candidate.name, e)
            return False
        finally:
            await tokens.aclose()
