"""
dialogforge - generation-and-validation pipeline for branching dialog graphs.

Turns a node's neighbors, tags and character metadata into a prompt, runs it
against a local Ollama model under concurrency and timeout limits, scores the
response for character voice and context coherence, regenerates within a
bounded loop, and records the outcome.
"""

from dialogforge.config import Settings, get_settings, load_settings
from dialogforge.protocols import (
    ConfigurationError,
    ContextValidationError,
    DialogForgeError,
    ErrorKind,
    GenerationError,
    GenerationResult,
    RequestError,
    UnsupportedNodeTypeError,
)
from dialogforge.service import DialogService
from dialogforge.types import (
    DialogChain,
    DialogContext,
    GenerateContext,
    NodeValidationResult,
    ProjectType,
    Tag,
)

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "ContextValidationError",
    "DialogChain",
    "DialogContext",
    "DialogForgeError",
    "DialogService",
    "ErrorKind",
    "GenerateContext",
    "GenerationError",
    "GenerationResult",
    "NodeValidationResult",
    "ProjectType",
    "RequestError",
    "Settings",
    "Tag",
    "UnsupportedNodeTypeError",
    "get_settings",
    "load_settings",
]
