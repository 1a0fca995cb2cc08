# ideator/artifact_parser.py
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

import json_repair
from pydantic import ValidationError

from ideator.fallback_templates import (
    DEFAULT_BUILD_PHASES,
    DEFAULT_SECURITY_CONSIDERATIONS,
    DEFAULT_STEPS,
    default_summary_message,
    render_spec_documents,
)
from ideator.schemas import FINALIZE_TOKEN_RE, ConversationTurn, Role, SpecificationArtifact

logger = logging.getLogger("ideator_backend")

DEFAULT_TITLE = "New Agent"
TITLE_MAX_CHARS = 60

LIST_FIELDS = ("steps", "client_requirements", "build_phases", "future_enhancements")

_JSON_FENCE_RE = re.compile(r"```json[ \t]*", re.IGNORECASE)
_ANY_FENCE_RE = re.compile(r"```[A-Za-z0-9_+-]*[ \t]*")


@dataclass(frozen=True)
class FallbackInputs:
    """What the conversation says about the agent before (or without) the model's answer."""
    title: str = DEFAULT_TITLE
    summary: str = ""
    steps: tuple = ()
    stack: dict = field(default_factory=dict)
    requirements: tuple = ()

    @classmethod
    def from_conversation(cls, turns: Iterable[ConversationTurn]) -> "FallbackInputs":
        user_texts = []
        for t in turns:
            if t.role != Role.USER:
                continue
            text = FINALIZE_TOKEN_RE.sub(" ", t.text or "").strip()
            if text:
                user_texts.append(" ".join(text.split()))

        if not user_texts:
            return cls()

        first = user_texts[0]
        return cls(
            title=_derive_title(first),
            summary=first[:600],
            requirements=tuple(t[:300] for t in user_texts[1:]),
        )


def _derive_title(text: str) -> str:
    first_sentence = re.split(r"(?<=[.!?])\s", text, maxsplit=1)[0].strip()
    if len(first_sentence) <= TITLE_MAX_CHARS:
        return first_sentence or DEFAULT_TITLE
    cut = first_sentence[:TITLE_MAX_CHARS].rsplit(" ", 1)[0].rstrip(",;:-")
    return (cut or first_sentence[:TITLE_MAX_CHARS]) + "..."


# -----------------------
# Extraction
# -----------------------

def extract_fenced_block(text: str | None) -> Optional[str]:
    """
    Body of the first ```json fence (or bare ``` fence when there is no json one),
    up to its closer or to the end of text if the closer never came.
    None when the text has no fence at all.
    """
    if not text:
        return None
    m = _JSON_FENCE_RE.search(text) or _ANY_FENCE_RE.search(text)
    if not m:
        return None
    start = m.end()
    close = text.find("```", start)
    body = text[start:] if close == -1 else text[start:close]
    return body.strip()


def parse_json_object(text: str | None) -> Optional[dict]:
    """Strict parse; anything that is not a JSON object is a failure."""
    if not text or not text.strip():
        return None
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def repair_json_object(text: str | None, accept: Callable[[dict], bool]) -> Optional[dict]:
    if not text or not text.strip():
        return None
    try:
        data = json_repair.loads(text)
    except Exception as e:
        logger.debug(f"json_repair could not handle payload: {e}")
        return None
    if isinstance(data, dict) and accept(data):
        return data
    return None


def _has_title(data: dict) -> bool:
    title = data.get("title")
    return isinstance(title, str) and bool(title.strip())


def _candidate_payloads(text: str) -> list[str]:
    out: list[str] = []

    def add(s):
        if s and s.strip() and s not in out:
            out.append(s)

    fenced = extract_fenced_block(text)
    add(fenced)
    if fenced is not None:
        # JSON string values may carry their own fences; try up to the last closer too
        m = _JSON_FENCE_RE.search(text) or _ANY_FENCE_RE.search(text)
        last_close = text.rfind("```")
        if m and last_close > m.end():
            add(text[m.end():last_close].strip())
    add(text.strip())
    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        add(text[first:last + 1])
    return out


def parse_payload(text: str | None, accept: Callable[[dict], bool] = _has_title) -> Optional[dict]:
    """
    Two stages: fence detection, then a strict parse of each candidate payload.
    When nothing parses strictly, json_repair gets one chance per candidate and its
    result only counts if `accept` recognizes it.
    """
    if not text or not text.strip():
        return None
    candidates = _candidate_payloads(text)
    for c in candidates:
        data = parse_json_object(c)
        if data is not None:
            return data
    for c in candidates:
        data = repair_json_object(c, accept)
        if data is not None:
            logger.info("Model output needed JSON repair")
            return data
    return None


# -----------------------
# Normalization
# -----------------------

def _scalar_to_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def flatten_security_considerations(value: Any) -> list[str]:
    """
    Nested maps become "path / key: value" bullets; list items are walked in place;
    bare scalars are kept as their own bullet.
    """
    bullets: list[str] = []

    def walk(v, path):
        if v is None:
            return
        if isinstance(v, list):
            for item in v:
                walk(item, path)
        elif isinstance(v, dict):
            for k, child in v.items():
                if child is not None and not isinstance(child, (dict, list)):
                    bullets.append(f"{' / '.join([*path, str(k)])}: {_scalar_to_str(child)}")
                else:
                    walk(child, [*path, str(k)])
        else:
            s = _scalar_to_str(v).strip()
            if s:
                bullets.append(s)

    walk(value, [])
    return bullets


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, tuple):
        return list(value)
    return [value]


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return json.dumps(value, ensure_ascii=False, default=str)


def normalize_artifact(data: dict, fallback_title: str = DEFAULT_TITLE) -> SpecificationArtifact:
    out = dict(data)

    title = out.get("title")
    out["title"] = title.strip() if isinstance(title, str) and title.strip() else (fallback_title or DEFAULT_TITLE)
    out["summary"] = _as_text(out.get("summary"))

    for name in LIST_FIELDS:
        out[name] = _as_list(out.get(name))

    stack = out.get("agent_stack")
    if stack is None:
        out["agent_stack"] = {}
    elif not isinstance(stack, dict):
        out["agent_stack"] = {"notes": stack}

    security = flatten_security_considerations(out.get("security_considerations"))
    out["security_considerations"] = security or list(DEFAULT_SECURITY_CONSIDERATIONS)

    message = out.get("summary_message")
    if not isinstance(message, str) or not message.strip():
        out["summary_message"] = default_summary_message(out["title"])

    return SpecificationArtifact.model_validate(out)


# -----------------------
# Entry points
# -----------------------

def build_fallback_artifact(inputs: FallbackInputs) -> SpecificationArtifact:
    title = (inputs.title or "").strip() or DEFAULT_TITLE
    summary = inputs.summary or f"Initial specification for {title}, assembled from the conversation so far."
    steps = list(inputs.steps) or list(DEFAULT_STEPS)
    requirements = list(inputs.requirements)
    security = list(DEFAULT_SECURITY_CONSIDERATIONS)

    return SpecificationArtifact(
        title=title,
        summary=summary,
        steps=steps,
        agent_stack=dict(inputs.stack or {}),
        client_requirements=requirements,
        build_phases=[dict(p) for p in DEFAULT_BUILD_PHASES],
        security_considerations=security,
        future_enhancements=[],
        implementation_estimate=None,
        summary_message=default_summary_message(title),
        documents=render_spec_documents(title, summary, dict(inputs.stack or {}), requirements, security),
        fallback=True,
    )


def parse_artifact(raw_text: str | None, fallback_inputs: FallbackInputs) -> SpecificationArtifact:
    """
    Model text -> normalized artifact. Never raises: unusable text yields the
    deterministic fallback built from `fallback_inputs`.
    """
    data = parse_payload(raw_text)
    if data is None:
        logger.warning("Specification output was not usable JSON; building the fallback artifact")
        return build_fallback_artifact(fallback_inputs)
    try:
        return normalize_artifact(data, fallback_inputs.title)
    except ValidationError as e:
        logger.warning(f"Specification JSON failed validation; building the fallback artifact: {e}")
        return build_fallback_artifact(fallback_inputs)
