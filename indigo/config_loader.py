"""
Configuration loader for INDIGO.
Merges packaged defaults with user overrides and INDIGO_* env vars.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from indigo.parser import DEFAULT_ACTION_MARKER, DEFAULT_COMPLETION_PHRASES


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class RoutingConfig(BaseModel):
    assistant: str = "gemini/gemini-2.5-pro"
    field_mapper: str = "gemini/gemini-2.5-flash"


class LimitsConfig(BaseModel):
    max_iterations: int = 6
    history_window: int = 10
    max_visible_issues: int = 20
    max_tokens_per_run: int = 200_000
    max_dollars_per_run: float = 5.0
    model_retries: int = 3


class ParserConfig(BaseModel):
    action_marker: str = DEFAULT_ACTION_MARKER
    completion_phrases: list[str] = Field(default_factory=lambda: list(DEFAULT_COMPLETION_PHRASES))


class TrackerConfig(BaseModel):
    epic_field: str = "customfield_10014"
    sprint_field: str = "customfield_10020"
    default_issue_type: str = "Story"


class AuditConfig(BaseModel):
    log_path: str = "~/.indigo/logs/events.jsonl"


class IndigoConfig(BaseModel):
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    parser: ParserConfig = Field(default_factory=ParserConfig)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"
_USER_CONFIG_PATH = Path.home() / ".indigo" / "config.yaml"

_ENV_OVERRIDES = {
    "INDIGO_ASSISTANT_MODEL": ("routing", "assistant"),
    "INDIGO_FIELD_MAPPER_MODEL": ("routing", "field_mapper"),
    "INDIGO_MAX_ITERATIONS": ("limits", "max_iterations"),
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def load_config(config_path: Path | None = None) -> IndigoConfig:
    """
    Load config by merging:
      1. Built-in defaults (indigo/config.yaml)
      2. User overrides (config_path, else ~/.indigo/config.yaml if present)
      3. INDIGO_* environment variables
    """
    base = _read_yaml(_DEFAULT_CONFIG_PATH)

    override_path = config_path or _USER_CONFIG_PATH
    if override_path.exists():
        base = _deep_merge(base, _read_yaml(override_path))

    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            base.setdefault(section, {})[key] = value

    return IndigoConfig(**base)


def validate_api_keys() -> dict[str, bool]:
    """Check which API keys are available. LiteLLM reads these directly."""
    return {
        "ANTHROPIC_API_KEY": bool(os.environ.get("ANTHROPIC_API_KEY")),
        "OPENAI_API_KEY":    bool(os.environ.get("OPENAI_API_KEY")),
        "GEMINI_API_KEY":    bool(os.environ.get("GEMINI_API_KEY")),
        "VERTEXAI_PROJECT":  bool(os.environ.get("VERTEXAI_PROJECT")),
    }
