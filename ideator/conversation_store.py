# ideator/conversation_store.py
import threading
import time
from typing import Callable

from langchain_community.chat_message_histories.in_memory import ChatMessageHistory
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from ideator.schemas import ConversationTurn, Role


class ConversationStore:
    """
    In-memory, per-session chat history with:
    - sliding TTL (expires ttl_seconds after last touch)
    - approximate token cap (chars/4 heuristic), oldest turns dropped first
    - a one-way finalized flag per session
    - thread-safe operations
    """

    def __init__(self, ttl_seconds: int, max_tokens: int, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self.max_tokens = max_tokens
        self._clock = clock
        self._lock = threading.Lock()
        # session_id -> {"history": ChatMessageHistory, "expires_at": float, "finalized": bool}
        self._items: dict[str, dict[str, object]] = {}

    def _approx_tokens(self, text: str) -> int:
        return max(1, len(text) // 4)

    def _get_or_create_unlocked(self, session_id: str) -> dict[str, object]:
        now = self._clock()
        item = self._items.get(session_id)

        if item is not None:
            if float(item["expires_at"]) > now:
                item["expires_at"] = now + self.ttl_seconds
                return item
            # expired -> replace
            del self._items[session_id]

        item = {"history": ChatMessageHistory(), "expires_at": now + self.ttl_seconds, "finalized": False}
        self._items[session_id] = item
        return item

    def _prune_to_token_cap_unlocked(self, history: ChatMessageHistory) -> None:
        msgs = list(history.messages)

        tokens = []
        total = 0
        for m in msgs:
            t = self._approx_tokens(str(getattr(m, "content", "") or ""))
            tokens.append(t)
            total += t

        if total <= self.max_tokens:
            return

        # drop from front until under cap
        i = 0
        while i < len(msgs) and total > self.max_tokens:
            total -= tokens[i]
            i += 1

        history.messages = msgs[i:]

    @staticmethod
    def _to_message(turn: ConversationTurn) -> BaseMessage:
        if turn.role == Role.ASSISTANT:
            return AIMessage(content=turn.text)
        return HumanMessage(content=turn.text)

    @staticmethod
    def _to_turn(message: BaseMessage) -> ConversationTurn:
        role = Role.ASSISTANT if isinstance(message, AIMessage) else Role.USER
        return ConversationTurn(role=role, text=str(message.content))

    def snapshot(self, session_id: str) -> list[ConversationTurn]:
        """
        Returns a COPY of the session's turns, pruned to the cap. Touches the TTL.
        """
        with self._lock:
            item = self._get_or_create_unlocked(str(session_id))
            history: ChatMessageHistory = item["history"]  # type: ignore[assignment]
            self._prune_to_token_cap_unlocked(history)
            return [self._to_turn(m) for m in history.messages]

    def append(self, session_id: str, turn: ConversationTurn) -> None:
        with self._lock:
            item = self._get_or_create_unlocked(str(session_id))
            if item["finalized"]:
                raise ValueError(f"Session {session_id} is finalized; turns can no longer be appended")
            history: ChatMessageHistory = item["history"]  # type: ignore[assignment]
            history.add_message(self._to_message(turn))
            self._prune_to_token_cap_unlocked(history)

    def mark_finalized(self, session_id: str) -> None:
        with self._lock:
            self._get_or_create_unlocked(str(session_id))["finalized"] = True

    def is_finalized(self, session_id: str) -> bool:
        with self._lock:
            item = self._items.get(str(session_id))
            if item is None or float(item["expires_at"]) <= self._clock():
                return False
            return bool(item["finalized"])

    def sweep_expired(self) -> int:
        """
        Delete expired sessions. Returns how many entries were removed.
        """
        now = self._clock()
        removed = 0
        with self._lock:
            expired = [k for k, v in self._items.items() if float(v["expires_at"]) <= now]
            for k in expired:
                del self._items[k]
                removed += 1
        return removed
