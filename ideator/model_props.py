# ideator/model_props.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import commentjson

from ideator import settings


@dataclass(frozen=True)
class CandidateOptions:
    temperature: Optional[float] = None
    max_output_tokens: Optional[int] = None
    system_instruction: Optional[str] = None


@dataclass(frozen=True)
class ModelCandidate:
    """
    One named model configuration in the fallback ladder.
    Position in a candidate list encodes preference, not capability.
    """
    name: str
    options: CandidateOptions = field(default_factory=CandidateOptions)


@dataclass(frozen=True)
class PipelineConfig:
    """
    Process-wide, read-only pipeline configuration.
    Built once at startup and handed to the Orchestrator explicitly.
    """
    primary_model: str = "gemini-2.5-pro"
    fallback_models: Tuple[str, ...] = ("gemini-2.0-flash-exp", "gemini-1.5-flash", "gemini-1.5-pro")
    max_attempts_per_candidate: int = 3
    backoff_schedule: Tuple[float, ...] = (0.4, 0.9, 1.8)
    backoff_ceiling: float = 1.5
    attempt_timeout: Optional[float] = 120.0
    readiness_min_exchanges: int = 3
    readiness_model: Optional[str] = None
    streaming_mode: str = "auto"
    stream_chunk_delay: float = 0.02
    strict: bool = False
    dev_package_fallback_models: Tuple[str, ...] = ("gemini-1.5-flash", "gemini-1.0-pro", "gemini-2.0-flash-exp")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true")
    return bool(value)


_STREAMING_MODES = {"auto", "native", "simulated"}

# config-file key -> (PipelineConfig field, coercion)
_CONFIG_KEYS = {
    "PRIMARY_MODEL": ("primary_model", str),
    "FALLBACK_MODELS": ("fallback_models", lambda v: tuple(str(x) for x in v)),
    "MAX_ATTEMPTS_PER_CANDIDATE": ("max_attempts_per_candidate", int),
    "BACKOFF_SCHEDULE": ("backoff_schedule", lambda v: tuple(float(x) for x in v)),
    "BACKOFF_CEILING": ("backoff_ceiling", float),
    "ATTEMPT_TIMEOUT": ("attempt_timeout", lambda v: float(v) if v else None),
    "READINESS_MIN_EXCHANGES": ("readiness_min_exchanges", int),
    "READINESS_MODEL": ("readiness_model", lambda v: str(v) if v else None),
    "STREAMING_MODE": ("streaming_mode", str),
    "STREAM_CHUNK_DELAY": ("stream_chunk_delay", float),
    "STRICT": ("strict", _as_bool),
    "DEV_PACKAGE_FALLBACK_MODELS": ("dev_package_fallback_models", lambda v: tuple(str(x) for x in v)),
}


def _split_csv(raw: str) -> Tuple[str, ...]:
    return tuple(p.strip() for p in (raw or "").split(",") if p.strip())


def _load_model_config_file(path: str | Path) -> Dict[str, Any]:
    """
    Load pipeline overrides from a JSON-with-comments file.
    Fails fast if the file is missing, is not an object, or carries unknown keys.
    """
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Model config file not found at '{cfg_path}'.")

    with cfg_path.open("r", encoding="utf-8") as f:
        data = commentjson.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Model config at '{cfg_path}' must be a JSON object")

    unknown = [k for k in data if k not in _CONFIG_KEYS]
    if unknown:
        raise ValueError(f"Model config has unknown key(s) {unknown}")

    out: Dict[str, Any] = {}
    for key, value in data.items():
        field_name, coerce = _CONFIG_KEYS[key]
        try:
            out[field_name] = coerce(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Model config key {key} has an invalid value: {value!r}") from e
    return out


def validate_pipeline_config(cfg: PipelineConfig) -> PipelineConfig:
    if not cfg.primary_model.strip():
        raise ValueError("validate_pipeline_config: primary model name is empty")
    if cfg.max_attempts_per_candidate < 1:
        raise ValueError("validate_pipeline_config: max_attempts_per_candidate must be >= 1")
    if any(d < 0 for d in cfg.backoff_schedule) or cfg.backoff_ceiling < 0:
        raise ValueError("validate_pipeline_config: backoff delays must be non-negative")
    if cfg.readiness_min_exchanges < 1:
        raise ValueError("validate_pipeline_config: readiness_min_exchanges must be >= 1")
    if cfg.streaming_mode not in _STREAMING_MODES:
        raise ValueError(
            f"validate_pipeline_config: streaming_mode must be one of {sorted(_STREAMING_MODES)}, got {cfg.streaming_mode!r}"
        )
    return cfg


def load_pipeline_config(config_path: str | Path | None = None) -> PipelineConfig:
    """
    Build the PipelineConfig from environment settings, then apply the optional
    JSON-with-comments override file (IDEATOR_MODEL_CONFIG_PATH).
    """
    timeout = settings.ATTEMPT_TIMEOUT
    cfg = PipelineConfig(
        primary_model=settings.GEMINI_MODEL,
        fallback_models=_split_csv(settings.GEMINI_FALLBACK_MODELS),
        max_attempts_per_candidate=settings.MAX_ATTEMPTS_PER_MODEL,
        backoff_schedule=tuple(float(x) for x in _split_csv(settings.BACKOFF_SCHEDULE)),
        backoff_ceiling=settings.BACKOFF_CEILING,
        attempt_timeout=timeout if timeout > 0 else None,
        readiness_min_exchanges=settings.READINESS_MIN_EXCHANGES,
        streaming_mode=settings.STREAMING_MODE.strip().lower(),
        stream_chunk_delay=settings.STREAM_CHUNK_DELAY,
        strict=settings.GEMINI_STRICT,
    )

    path = config_path or settings.IDEATOR_MODEL_CONFIG_PATH
    if path:
        cfg = replace(cfg, **_load_model_config_file(path))

    return validate_pipeline_config(cfg)


def build_candidates(
    preferred: str,
    secondary: Tuple[str, ...] | list[str] = (),
    options: CandidateOptions | None = None,
) -> list[ModelCandidate]:
    """
    De-duplicated ordered candidate list: the caller-preferred model first,
    followed by the secondary models. Every candidate shares the same options.
    """
    options = options or CandidateOptions()
    seen: set[str] = set()
    out: list[ModelCandidate] = []
    for name in [preferred, *secondary]:
        name = (name or "").strip()
        if not name or name in seen:
            continue
        seen.add(name)
        out.append(ModelCandidate(name=name, options=options))
    return out


# !######################################################################################################
#! UTILS
# !######################################################################################################

def is_openai_model(model_name) -> bool:
    prefixes = ("gpt-", "gpt4", "gpt-4", "gpt-5")
    return any(model_name.startswith(p) for p in prefixes)


def parse_model_name(raw: str) -> Tuple[str, Dict[str, Any]]:
    """Parse OpenAI candidate names like:
        - 'gpt-5.1_low_low'
        - 'gpt-5.1_standard'
        - 'gpt-5.1_fast'
    into (base_model, openai_params).
    """
    raw = (raw or "").strip()
    if not raw:
        raise ValueError("parse_model_name: No Model Name passed. ")

    parts = raw.split("_")
    base = parts[0]
    if len(parts) <= 1:
        return base, {}

    verbosity: Optional[str] = None
    reasoning_effort: Optional[str] = None

    verbosity_tokens = {"low", "medium", "high"}
    reasoning_tokens = {"none", "minimal", "low", "medium", "high"}

    wildcards: Dict[str, Tuple[str, str]] = {
        "standard": ("low", "low"),
        "std": ("low", "low"),
        "fast": ("low", "none"),
        "deep": ("medium", "high"),
    }

    unknown = []
    for tok in parts[1:]:
        t = tok.strip().lower()
        if not t:
            continue
        if t in wildcards:
            w_verb, w_reason = wildcards[t]
            verbosity = verbosity or w_verb
            reasoning_effort = reasoning_effort or w_reason
            continue
        if verbosity is None and t in verbosity_tokens:
            verbosity = t
            continue
        if reasoning_effort is None and t in reasoning_tokens:
            reasoning_effort = t
            continue
        unknown.append(t)

    if unknown:
        raise ValueError(f"parse_model_name: Unknown model suffix token(s) {unknown} in '{raw}'. ")

    params: Dict[str, Any] = {}
    if verbosity is not None:
        params.setdefault("text", {})["verbosity"] = verbosity
    if reasoning_effort is not None:
        params.setdefault("reasoning", {})["effort"] = reasoning_effort
    return base, params
