"""dialogforge inference backends."""

from __future__ import annotations

from dialogforge.models.ollama import GenerationOptions, OllamaClient

__all__ = ["GenerationOptions", "OllamaClient"]
