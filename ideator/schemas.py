# ideator/schemas.py
import re
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# "/done", "/complete/", "/FINALIZE" ...
FINALIZE_TOKEN_RE = re.compile(r"/(done|complete|finalize)/?", re.IGNORECASE)


def has_finalize_token(text) -> bool:
    return bool(FINALIZE_TOKEN_RE.search(str(text or "")))


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ConversationTurn(BaseModel):
    """
    One immutable turn of a conversation. Corrections are new turns, never edits.
    The wire form uses "content" (what the web client posts); "text" is accepted too.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    role: Role
    text: str = Field(alias="content")

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value):
        if isinstance(value, Role):
            return value
        role = str(value or "").strip().lower()
        # Gemini calls the assistant "model"
        if role == "model":
            return Role.ASSISTANT
        return role

    @classmethod
    def user(cls, text: str) -> "ConversationTurn":
        return cls(role=Role.USER, text=text)

    @classmethod
    def assistant(cls, text: str) -> "ConversationTurn":
        return cls(role=Role.ASSISTANT, text=text)


def turns_from_history(history) -> list[ConversationTurn]:
    """
    Convert a raw conversation_history payload into turns.
    Entries without a usable role or content are skipped, like the web API always did.
    """
    out: list[ConversationTurn] = []
    for item in history or []:
        if isinstance(item, ConversationTurn):
            out.append(item)
            continue
        if not isinstance(item, dict):
            continue
        role = item.get("role")
        text = item.get("content", item.get("text"))
        if not role or text is None or str(text) == "":
            continue
        try:
            out.append(ConversationTurn(role=role, text=str(text)))
        except ValueError:
            continue
    return out


class SpecificationArtifact(BaseModel):
    """
    Structured output of a finalize event. Unknown keys returned by the model are
    kept as-is so newer prompt shapes survive a round trip through storage.
    """
    model_config = ConfigDict(extra="allow", frozen=True)

    title: str
    summary: str = ""
    steps: list[Any] = Field(default_factory=list)
    agent_stack: dict[str, Any] = Field(default_factory=dict)
    client_requirements: list[Any] = Field(default_factory=list)
    build_phases: list[Any] = Field(default_factory=list)
    security_considerations: list[str] = Field(default_factory=list)
    future_enhancements: list[Any] = Field(default_factory=list)
    implementation_estimate: Any = None
    summary_message: str = ""


class ParentRefs(BaseModel):
    project_id: Optional[str] = None
    node_id: Optional[str] = None


class ChatRequest(BaseModel):
    message: str = ""
    conversation_history: list[dict[str, Any]] = Field(default_factory=list)
    finalize: bool = False
    session_id: Optional[str] = None
    owner_id: Optional[str] = None
    project_id: Optional[str] = None
    node_id: Optional[str] = None

    @field_validator("owner_id", "project_id", "node_id", "session_id", mode="before")
    @classmethod
    def _ids_as_strings(cls, value):
        if value is None or value == "":
            return None
        return str(value)

    @field_validator("message", mode="before")
    @classmethod
    def _message_as_string(cls, value):
        return "" if value is None else str(value)


class FinalizeResponse(BaseModel):
    response: str
    complete: Literal[True] = True
    specification: SpecificationArtifact
    id: Optional[str] = None


class PackageDocument(BaseModel):
    filename: str
    sample: str = ""
    note: str = ""


class DevPackageRequest(BaseModel):
    documents: list[PackageDocument] = Field(default_factory=list)


class PackageFile(BaseModel):
    path: str
    content: str
