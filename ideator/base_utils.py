# ideator/base_utils.py
import json
import logging
import re
from typing import Iterable

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from ideator.schemas import ConversationTurn, Role

logger = logging.getLogger("ideator_backend")


class BaseUtils():

    # -----------------------
    # General Utils
    # -----------------------

    def _coerce_field_to_str(self, value) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        try:
            return json.dumps(value, indent=2)
        except TypeError:
            return str(value).strip()

    def unsafe_string_format(self, dest_string, print_unused_keys_report=True, **kwargs):
        """
        Formats a destination string by replacing placeholders with corresponding values from kwargs.

        it works differently from the standard "format" method as instead of looking for all the potential keys,
        looks only for the keys as passed in kwargs, so JSON braces inside prompts survive untouched.
        """
        missing_keys = []

        def replacer(match):
            key = match.group(1)
            if key in kwargs:
                return str(kwargs[key])
            missing_keys.append(key)
            return match.group(0)

        pattern = re.compile(r'\{(\w+)\}')
        result = pattern.sub(replacer, dest_string)
        if missing_keys and print_unused_keys_report:
            logger.debug(f"Missing keys within string-to-format in unsafe_string_format: {', '.join(missing_keys)}")
        return result

    # -----------------------
    # Conversation plumbing
    # -----------------------

    def _turns_to_messages(self, turns: Iterable[ConversationTurn]) -> list[BaseMessage]:
        """
        Map turns to chat messages for the provider.
        Blank turns are skipped and leading assistant turns are dropped:
        Gemini rejects contents that do not open with a user turn.
        """
        out: list[BaseMessage] = []
        for t in turns:
            text = (t.text or "").strip()
            if not text:
                continue
            if t.role == Role.ASSISTANT:
                if not out:
                    continue
                out.append(AIMessage(content=text))
            else:
                out.append(HumanMessage(content=text))
        return out

