"""Configuration settings for dialogforge."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dialogforge import prompts
from dialogforge.types import ProjectType


class SystemPrompts(BaseModel):
    """Prompt templates consumed by the context assembler.

    ``node_types`` holds the top-level per-node-type templates (plus
    ``general``); ``project_types`` overrides them per project type.
    """

    node_types: Dict[str, str] = Field(default_factory=lambda: dict(prompts.GENERAL_PROMPTS))
    project_types: Dict[str, Dict[str, str]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in prompts.PROJECT_TYPE_PROMPTS.items()}
    )

    isolated_node: str = prompts.ISOLATED_NODE_PROMPT
    dialog_start: str = prompts.DIALOG_START_PROMPT
    continuation: str = prompts.CONTINUATION_PROMPT
    improvement: str = prompts.IMPROVEMENT_PROMPT
    # Required whenever related responses exist; None is a configuration error
    diversity: Optional[str] = prompts.DIVERSITY_PROMPT
    forced_differentiation: str = prompts.FORCED_DIFFERENTIATION_PROMPT
    sibling_awareness: str = prompts.SIBLING_AWARENESS_PROMPT
    custom_prompt_wrapper: str = prompts.CUSTOM_PROMPT_WRAPPER

    deadend_fix: str = prompts.DEADEND_FIX_PROMPT
    inconsistency_fix: str = prompts.INCONSISTENCY_FIX_PROMPT
    context_gap_fix: str = prompts.CONTEXT_GAP_FIX_PROMPT
    question_answer_fix: str = prompts.QUESTION_ANSWER_FIX_PROMPT
    tone_shift_fix: str = prompts.TONE_SHIFT_FIX_PROMPT
    general_fix: str = prompts.GENERAL_FIX_PROMPT


class SimilarityThresholds(BaseModel):
    """Tuned near-duplicate heuristics used by the diversity enforcer."""

    word_overlap_ratio: float = 0.3
    min_word_length: int = 4  # only words longer than 3 characters count
    min_prefix_length: int = 8
    min_phrase_length: int = 6


class Settings(BaseSettings):
    """Runtime settings loaded from environment (``DIALOGFORGE_*``) or a JSON file."""

    model_config = SettingsConfigDict(
        env_prefix="DIALOGFORGE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Backend
    base_url: str = "http://localhost:11434"
    model: str = "llama3.2:latest"
    request_timeout_ms: int = 30000

    # Sampling
    temperature: float = 0.7
    max_tokens: int = 256
    diversity_boost: float = 0.5

    # Pipeline
    project_type: ProjectType = ProjectType.GAME
    max_concurrent: int = 3
    max_validation_retries: int = 2
    circuit_breaker_window_s: float = 5.0
    circuit_breaker_prune_s: float = 30.0
    validation_cache_ttl_s: float = 3600.0
    history_limit: int = 1000

    similarity: SimilarityThresholds = Field(default_factory=SimilarityThresholds)
    system_prompts: SystemPrompts = Field(default_factory=SystemPrompts)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("max_concurrent", "history_limit")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    def merged(self, **changes) -> "Settings":
        """Return a validated copy with ``changes`` applied.

        ``similarity`` and ``system_prompts`` changes merge per key into the
        current values. Invalid values raise ``pydantic.ValidationError``.
        """
        data = self.model_dump()
        for name in ("similarity", "system_prompts"):
            nested = changes.pop(name, None)
            if nested is None:
                continue
            if isinstance(nested, BaseModel):
                nested = nested.model_dump(exclude_unset=True)
            data[name] = {**data[name], **nested}
        data.update(changes)
        # model_validate skips the env and .env sources, only the given values count
        return type(self).model_validate(data)


def load_settings(path: Optional[Path] = None) -> Settings:
    """Build settings from the environment, overlaid with a JSON settings file if given."""
    if path is None:
        return Settings()
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return Settings(**data)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
