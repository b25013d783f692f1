"""
Shared dialog types for dialogforge.

These dataclasses are the vocabulary between the context assembler, the
validators and the service: graph nodes arrive as DialogContext snapshots,
tags carry world/character metadata, and validation produces
NodeValidationResult records.

The ``from_dict`` constructors accept the camelCase JSON the editor stores,
so a saved graph excerpt can be fed straight into the pipeline.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

# === Enums ===


class ProjectType(str, Enum):
    """Kind of project a dialog graph belongs to; selects prompt templates."""

    GAME = "game"
    INTERACTIVE_STORY = "interactive_story"
    NOVEL = "novel"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class IssueType(str, Enum):
    """Closed set of validation issue kinds."""

    SPEECH_PATTERN = "speech_pattern"
    VOCABULARY_LEVEL = "vocabulary_level"
    EMOTIONAL_RANGE = "emotional_range"
    TOPIC_RELEVANCE = "topic_relevance"
    CHARACTER_MOTIVATION = "character_motivation"
    CONTEXT_DISCONNECT = "context_disconnect"
    CHARACTER_INCONSISTENCY = "character_inconsistency"
    FLOW_DISRUPTION = "flow_disruption"
    SEMANTIC_MISMATCH = "semantic_mismatch"
    BANNED_OPENER = "banned_opener"
    BANNED_CLICHE = "banned_cliche"


class HistoryType(str, Enum):
    IMPROVE = "improve"
    RECREATE = "recreate"
    CUSTOM = "custom"


# Node types with special handling in the pipeline
GENERIC_NODE_TYPES = frozenset({"customNode"})
UNSUPPORTED_NODE_TYPES = frozenset({"subgraphNode"})

# Tag type families
QUEST_TAG_TYPES = ("quest", "objective", "mission", "task")
CHARACTER_TAG_TYPES = ("npc", "player", "character", "enemy")
LOCATION_TAG_TYPES = ("location", "env_village", "env_dungeon", "env_forest", "environment")
EMOTIONAL_TAG_TYPES = ("emotional", "relationship", "mood")
THEMATIC_TAG_TYPES = ("theme", "motif", "symbol", "conflict", "arc")

MIN_IMPORTANCE = 1
MAX_IMPORTANCE = 5


# === Tags ===


@dataclass
class CharacterVoice:
    """How a character speaks; drives voice validation and prompt guidance."""

    speech_patterns: List[str] = field(default_factory=list)
    emotional_range: Dict[str, float] = field(default_factory=dict)
    vocabulary_level: Optional[str] = None  # simple | moderate | complex | archaic
    dialect_markers: List[str] = field(default_factory=list)
    conversation_style: Optional[str] = None
    trust_level: Optional[float] = None  # 0..10
    secrets_known: List[str] = field(default_factory=list)
    personal_motivations: List[str] = field(default_factory=list)
    relationship_dynamics: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CharacterVoice":
        return cls(
            speech_patterns=list(data.get("speechPatterns") or []),
            emotional_range=dict(data.get("emotionalRange") or {}),
            vocabulary_level=data.get("vocabularyLevel"),
            dialect_markers=list(data.get("dialectMarkers") or []),
            conversation_style=data.get("conversationStyle"),
            trust_level=data.get("trustLevel"),
            secrets_known=list(data.get("secretsKnown") or []),
            personal_motivations=list(data.get("personalMotivations") or []),
            relationship_dynamics=dict(data.get("relationshipDynamics") or {}),
        )


@dataclass
class NarrativePacing:
    tension_level: Optional[float] = None
    emotional_beat: Optional[str] = None
    story_arc: Optional[str] = None
    thematic_weight: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NarrativePacing":
        return cls(
            tension_level=data.get("tensionLevel"),
            emotional_beat=data.get("emotionalBeat"),
            story_arc=data.get("storyArc"),
            thematic_weight=data.get("thematicWeight"),
        )


@dataclass
class TagRelation:
    type: str  # requires | enhances | conflicts | ...
    target_tag_id: str
    description: Optional[str] = None
    strength: Optional[float] = None


@dataclass
class TagMetadata:
    description: Optional[str] = None
    character_voice: Optional[CharacterVoice] = None
    narrative_pacing: Optional[NarrativePacing] = None


@dataclass
class Tag:
    """A reusable piece of world, character or quest metadata.

    Tags form a forest through ``parent_id``. ``importance`` must lie within
    1-5; out-of-range values raise ValueError instead of being clamped.
    """

    id: str
    label: str
    type: str
    content: str = ""
    parent_id: Optional[str] = None
    importance: int = 3
    relations: List[TagRelation] = field(default_factory=list)
    metadata: Optional[TagMetadata] = None

    def __post_init__(self):
        if not MIN_IMPORTANCE <= self.importance <= MAX_IMPORTANCE:
            raise ValueError(
                f"Tag {self.id!r} importance must be between "
                f"{MIN_IMPORTANCE} and {MAX_IMPORTANCE}, got {self.importance}"
            )

    @property
    def character_voice(self) -> Optional[CharacterVoice]:
        return self.metadata.character_voice if self.metadata else None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Tag":
        raw_meta = data.get("metadata") or {}
        metadata = None
        if raw_meta:
            voice = raw_meta.get("characterVoice")
            pacing = raw_meta.get("narrativePacing")
            metadata = TagMetadata(
                description=raw_meta.get("description"),
                character_voice=CharacterVoice.from_dict(voice) if voice else None,
                narrative_pacing=NarrativePacing.from_dict(pacing) if pacing else None,
            )
        importance = data.get("importance", raw_meta.get("importance", 3))
        return cls(
            id=str(data["id"]),
            label=data.get("label", ""),
            type=data.get("type", ""),
            content=data.get("content") or "",
            parent_id=data.get("parentId"),
            importance=int(importance),
            relations=[
                TagRelation(
                    type=r["type"],
                    target_tag_id=r["targetTagId"],
                    description=r.get("description"),
                    strength=r.get("strength"),
                )
                for r in data.get("relations") or []
            ],
            metadata=metadata,
        )


TagRef = Union[str, Tag]


# === Graph snapshots ===


@dataclass(frozen=True)
class DialogContext:
    """Immutable snapshot of one graph node."""

    node_id: str
    type: str
    text: str = ""
    tags: Tuple[TagRef, ...] = ()

    def __post_init__(self):
        # Accept lists for convenience; store a tuple to keep the snapshot immutable
        if not isinstance(self.tags, tuple):
            object.__setattr__(self, "tags", tuple(self.tags))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DialogContext":
        tags = [t if isinstance(t, str) else Tag.from_dict(t) for t in data.get("tags") or []]
        return cls(
            node_id=str(data.get("nodeId") or data.get("id") or ""),
            type=data.get("type", ""),
            text=data.get("text") or "",
            tags=tuple(tags),
        )


@dataclass(frozen=True)
class DialogChain:
    """Pre-computed path through the graph around the current node."""

    current: DialogContext
    previous: Tuple[DialogContext, ...] = ()
    next: Tuple[DialogContext, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DialogChain":
        return cls(
            current=DialogContext.from_dict(data["current"]),
            previous=tuple(DialogContext.from_dict(d) for d in data.get("previous") or []),
            next=tuple(DialogContext.from_dict(d) for d in data.get("next") or []),
        )


@dataclass
class GenerateContext:
    """Everything the pipeline knows about the node being generated."""

    current: Optional[DialogContext] = None
    previous: List[DialogContext] = field(default_factory=list)
    next: List[DialogContext] = field(default_factory=list)
    sibling_nodes: List[DialogContext] = field(default_factory=list)
    character_info: str = ""
    dialog_chain: Optional[DialogChain] = None
    project_type: Optional[ProjectType] = None
    conversation_history: str = ""
    ignore_connections: bool = False

    @property
    def node_id(self) -> str:
        return self.current.node_id if self.current else ""

    @property
    def is_isolated(self) -> bool:
        return self.ignore_connections or (not self.previous and not self.next)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerateContext":
        project = data.get("projectType")
        chain = data.get("dialogChain")
        current = data.get("current")
        return cls(
            current=DialogContext.from_dict(current) if current else None,
            previous=[DialogContext.from_dict(d) for d in data.get("previous") or []],
            next=[DialogContext.from_dict(d) for d in data.get("next") or []],
            sibling_nodes=[DialogContext.from_dict(d) for d in data.get("siblingNodes") or []],
            character_info=data.get("characterInfo") or "",
            dialog_chain=DialogChain.from_dict(chain) if chain else None,
            project_type=ProjectType(project) if project else None,
            conversation_history=data.get("conversationHistory") or "",
            ignore_connections=bool(data.get("ignoreConnections", False)),
        )


# === Validation ===


CHARACTER_VOICE_WEIGHT = 0.6
CONTEXT_COHERENCE_WEIGHT = 0.4


def combine_scores(character_voice: float, context_coherence: float) -> float:
    return character_voice * CHARACTER_VOICE_WEIGHT + context_coherence * CONTEXT_COHERENCE_WEIGHT


@dataclass(frozen=True)
class ValidationScores:
    character_voice: float
    context_coherence: float
    combined: float

    @classmethod
    def from_components(cls, character_voice: float, context_coherence: float) -> "ValidationScores":
        return cls(
            character_voice=character_voice,
            context_coherence=context_coherence,
            combined=combine_scores(character_voice, context_coherence),
        )


@dataclass(frozen=True)
class ValidationIssue:
    type: IssueType
    severity: Severity
    description: str
    suggestion: str


@dataclass
class NodeValidationResult:
    scores: ValidationScores
    issues: List[ValidationIssue] = field(default_factory=list)
    strengths: List[str] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)
    is_validating: bool = False


# === History ===


@dataclass
class HistoryMetadata:
    execution_time_ms: float = 0.0
    tokens_used: int = 0


@dataclass
class AIHistoryItem:
    id: str
    node_id: str
    prompt: str
    result: str
    success: bool
    type: HistoryType
    timestamp: float = field(default_factory=time.time)
    metadata: HistoryMetadata = field(default_factory=HistoryMetadata)


def texts_of(nodes: Sequence[DialogContext]) -> List[str]:
    return [n.text for n in nodes if n.text]
