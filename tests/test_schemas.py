import pytest
from pydantic import ValidationError

from ideator.schemas import ChatRequest, ConversationTurn, Role, turns_from_history


def test_turn_helpers_build_valid_turns():
    user = ConversationTurn.user("I need a support bot")
    assistant = ConversationTurn.assistant("Who are the users?")

    assert user.role == Role.USER
    assert user.text == "I need a support bot"
    assert assistant.role == Role.ASSISTANT


@pytest.mark.parametrize("raw,expected", [("user", Role.USER), (" Assistant ", Role.ASSISTANT), ("model", Role.ASSISTANT)])
def test_wire_roles_are_normalized(raw, expected):
    assert ConversationTurn(role=raw, content="hi").role == expected


def test_unknown_role_is_rejected():
    with pytest.raises(ValidationError):
        ConversationTurn(role="system", content="hi")


def test_history_skips_unusable_entries():
    turns = turns_from_history(
        [
            {"role": "assistant", "content": "Welcome"},
            {"role": "user", "content": ""},
            {"role": "system", "content": "ignored"},
            {"content": "no role"},
            "not a dict",
            {"role": "user", "text": "A recipe bot"},
        ]
    )

    assert [(t.role, t.text) for t in turns] == [(Role.ASSISTANT, "Welcome"), (Role.USER, "A recipe bot")]


def test_chat_request_ids_become_strings():
    request = ChatRequest(message=None, owner_id=7, project_id="", session_id=12)

    assert request.message == ""
    assert request.owner_id == "7"
    assert request.project_id is None
    assert request.session_id == "12"
