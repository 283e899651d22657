"""Reading capabilities, models and config options out of backend payloads.

Backends disagree on field spellings, so each lookup walks a list of
aliases and takes the first one present.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from acpsessions.session.state import PromptCapabilities

_MODEL_LIST_KEYS = (
    "models",
    "availableModels",
    "available_models",
    "modelList",
    "model_list",
    "modelOptions",
    "model_options",
)
_NESTED_MODEL_LISTS = (
    ("models", "available"),
    ("models", "availableModels"),
    ("models", "models"),
    ("modelOptions", "options"),
    ("model_options", "options"),
)
_NESTED_MODEL_CONTAINERS = ("models", "modelOptions", "model_options")
_NESTED_CURRENT_KEYS = (
    "currentModelId",
    "current_model_id",
    "modelId",
    "model_id",
    "currentModel",
    "current_model",
)
_CURRENT_MODEL_KEYS = (
    "currentModelId",
    "modelId",
    "model",
    "current_model_id",
    "current_model",
    "activeModelId",
    "active_model_id",
)
_MODEL_OBJECT_ID_KEYS = ("id", "modelId", "model_id", "name")
_CONFIG_ID_KEYS = ("id", "key", "configId", "name", "optionId", "title")


def _first(payload: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def _dicts(value: list[Any]) -> tuple[dict[str, Any], ...]:
    return tuple(dict(item) for item in value if isinstance(item, Mapping))


def normalize_prompt_caps(caps: Any) -> PromptCapabilities:
    if not isinstance(caps, Mapping):
        return PromptCapabilities()
    return PromptCapabilities(
        image=bool(_first(caps, ("image", "images", "supportsImage", "supportsImages"))),
        audio=bool(_first(caps, ("audio", "supportsAudio", "supportsAudioInput"))),
        embedded_context=bool(
            _first(caps, ("embeddedContext", "embedded_context", "supportsEmbeddedContext"))
        ),
    )


def prompt_caps_from_capabilities(agent_capabilities: Any) -> PromptCapabilities | None:
    """Prompt capabilities advertised at session start, if any."""
    if not isinstance(agent_capabilities, Mapping):
        return None
    caps = _first(agent_capabilities, ("promptCapabilities", "prompt", "prompt_caps"))
    return normalize_prompt_caps(caps) if caps is not None else None


def extract_models_from_payload(payload: Any) -> tuple[dict[str, Any], ...]:
    if not isinstance(payload, Mapping):
        return ()
    direct = _first(payload, _MODEL_LIST_KEYS)
    if isinstance(direct, list):
        return _dicts(direct)
    for container, key in _NESTED_MODEL_LISTS:
        nested = payload.get(container)
        if isinstance(nested, Mapping) and isinstance(nested.get(key), list):
            return _dicts(nested[key])
    return ()


def extract_current_model_id(payload: Any) -> str | None:
    if not isinstance(payload, Mapping):
        return None
    nested_models = _first(payload, _NESTED_MODEL_CONTAINERS)
    if isinstance(nested_models, Mapping):
        nested_current = _first(nested_models, _NESTED_CURRENT_KEYS)
        if nested_current:
            return str(nested_current)

    direct = _first(payload, _CURRENT_MODEL_KEYS)
    if isinstance(direct, (str, int)) and not isinstance(direct, bool):
        return str(direct)
    if isinstance(direct, Mapping):
        nested = _first(direct, _MODEL_OBJECT_ID_KEYS)
        if nested:
            return str(nested)
    return None


def extract_config_options(payload: Any) -> tuple[dict[str, Any], ...] | None:
    if not isinstance(payload, Mapping):
        return None
    for key in ("configOptions", "config_options"):
        if isinstance(payload.get(key), list):
            return _dicts(payload[key])
    return None


def extract_current_mode_id(payload: Any) -> str | None:
    if not isinstance(payload, Mapping):
        return None
    mode = _first(payload, ("currentModeId", "current_mode_id", "modeId", "mode_id"))
    return str(mode) if mode else None


def option_matches_config_id(option: Mapping[str, Any], config_id: str) -> bool:
    candidate = _first(option, _CONFIG_ID_KEYS)
    if candidate is None:
        return False
    return str(candidate) == config_id
