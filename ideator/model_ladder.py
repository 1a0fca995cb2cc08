# ideator/model_ladder.py
import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, List, Sequence

from langchain_core.messages import BaseMessage

from ideator.llm_client import (
    DEFAULT_BACKOFF_CEILING,
    DEFAULT_BACKOFF_SCHEDULE,
    ModelProvider,
    call_with_retries,
    is_transient_error,
)
from ideator.model_props import CandidateOptions, ModelCandidate, PipelineConfig, build_candidates

logger = logging.getLogger("ideator_backend")


async def generate_with_fallback(
    invoke: Callable[[ModelCandidate, List[BaseMessage]], Awaitable[str]],
    candidates: Sequence[ModelCandidate],
    messages: List[BaseMessage],
    *,
    max_attempts: int = 3,
    backoff_schedule: Sequence[float] = DEFAULT_BACKOFF_SCHEDULE,
    backoff_ceiling: float = DEFAULT_BACKOFF_CEILING,
    attempt_timeout: float | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> str:
    """
    Walk the candidates in order, each one through the retrier.
    - transient failure after the retry budget: advance to the next candidate
    - fatal failure: propagate immediately, later candidates are never invoked
    - every candidate exhausted: raise the last error
    """
    if not candidates:
        raise ValueError("generate_with_fallback: empty candidate list")

    last_error: Exception | None = None
    for candidate in candidates:
        try:
            return await call_with_retries(
                lambda c=candidate: invoke(c, messages),
                max_attempts=max_attempts,
                backoff_schedule=backoff_schedule,
                backoff_ceiling=backoff_ceiling,
                attempt_timeout=attempt_timeout,
                sleep=sleep,
                label=candidate.name,
            )
        except Exception as e:
            if not is_transient_error(e):
                raise
            last_error = e
            logger.warning(f"[LLM-RETRY] {candidate.name} exhausted on transient errors; trying next candidate")

    raise last_error


class ModelLadder:
    """
    Provider + read-only pipeline config. Everything that calls a model goes through here.
    """

    def __init__(
        self,
        provider: ModelProvider,
        config: PipelineConfig,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.provider = provider
        self.config = config
        self._sleep = sleep

    def candidates(
        self,
        options: CandidateOptions | None = None,
        *,
        preferred: str | None = None,
        secondary: Sequence[str] | None = None,
    ) -> list[ModelCandidate]:
        preferred = preferred or self.config.primary_model
        if self.config.strict:
            secondary = ()
        elif secondary is None:
            secondary = self.config.fallback_models
        return build_candidates(preferred, tuple(secondary), options)

    async def generate(
        self,
        messages: List[BaseMessage],
        options: CandidateOptions | None = None,
        *,
        preferred: str | None = None,
        secondary: Sequence[str] | None = None,
    ) -> str:
        return await generate_with_fallback(
            self.provider.invoke,
            self.candidates(options, preferred=preferred, secondary=secondary),
            messages,
            max_attempts=self.config.max_attempts_per_candidate,
            backoff_schedule=self.config.backoff_schedule,
            backoff_ceiling=self.config.backoff_ceiling,
            attempt_timeout=self.config.attempt_timeout,
            sleep=self._sleep,
        )

    def stream(
        self,
        messages: List[BaseMessage],
        options: CandidateOptions | None = None,
    ) -> AsyncIterator[str]:
        """Native token stream from the preferred candidate only; no retry, no fallback."""
        primary = self.candidates(options)[0]
        return self.provider.stream(primary, messages)
