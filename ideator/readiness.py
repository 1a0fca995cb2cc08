# ideator/readiness.py
import logging
from typing import Sequence

from langchain_core.messages import HumanMessage

from ideator.base_utils import BaseUtils
from ideator.ideator_prompts import READINESS_PROMPT
from ideator.model_ladder import ModelLadder
from ideator.model_props import CandidateOptions
from ideator.schemas import ConversationTurn, Role, has_finalize_token

logger = logging.getLogger("ideator_backend")


class ReadinessGate(BaseUtils):
    """
    Decides whether a conversation can be turned into a specification.

    Order of checks:
    1. explicit finalize (request flag or a /done-style token): ready
    2. fewer than `min_exchanges` user turns: not ready, the model is not asked
    3. YES/NO classification through the ladder; anything but YES, errors included, is not ready
    """

    def __init__(
        self,
        ladder: ModelLadder,
        min_exchanges: int = 3,
        temperature: float = 0.3,
        model: str | None = None,
    ):
        self.ladder = ladder
        self.min_exchanges = min_exchanges
        self.temperature = temperature
        self.model = model

    def count_user_turns(self, turns: Sequence[ConversationTurn]) -> int:
        return sum(1 for t in turns if t.role == Role.USER and (t.text or "").strip())

    async def is_ready(
        self,
        conversation: Sequence[ConversationTurn],
        latest_user_turn: ConversationTurn | str | None,
        finalize: bool = False,
    ) -> bool:
        if isinstance(latest_user_turn, str):
            latest_user_turn = ConversationTurn.user(latest_user_turn) if latest_user_turn.strip() else None

        if finalize or (latest_user_turn is not None and has_finalize_token(latest_user_turn.text)):
            return True

        turns = list(conversation)
        if latest_user_turn is not None:
            turns.append(latest_user_turn)

        user_turns = self.count_user_turns(turns)
        if user_turns < self.min_exchanges:
            logger.debug(f"Readiness: {user_turns}/{self.min_exchanges} user turns, classifier skipped")
            return False

        messages = self._turns_to_messages(turns)
        messages.append(
            HumanMessage(content=self.unsafe_string_format(READINESS_PROMPT, min_exchanges=self.min_exchanges))
        )
        try:
            answer = await self.ladder.generate(
                messages,
                CandidateOptions(temperature=self.temperature),
                preferred=self.model,
            )
        except Exception as e:
            logger.warning(f"Readiness check failed, treating as not ready: {e}")
            return False

        verdict = (answer or "").strip().upper()
        logger.debug(f"Readiness verdict: {verdict!r}")
        return verdict == "YES"
