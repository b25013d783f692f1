"""Response quality checks and the bounded regeneration loop."""

from dialogforge.validation.character_voice import CharacterVoiceValidator, TopicContext
from dialogforge.validation.coherence import CoherenceChecker, ContextAlignment
from dialogforge.validation.validator import Assessment, ResponseValidator

__all__ = [
    "Assessment",
    "CharacterVoiceValidator",
    "CoherenceChecker",
    "ContextAlignment",
    "ResponseValidator",
    "TopicContext",
]
