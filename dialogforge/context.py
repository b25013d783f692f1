"""
Context assembler: turns a node and its neighbors into a prompt.

The assembler is a pure function of a GenerateContext plus static settings.
It classifies the node (isolated, dialog start, continuation), trims tag
content by conversation depth, orders tag-derived guidance by priority and
adds narrative enhancement blocks when their thresholds are met.

It also renders every secondary prompt the pipeline sends: improvement,
custom-instruction, validation feedback, diversity and issue-fix prompts.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from statistics import pvariance
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from dialogforge import prompts
from dialogforge.config import Settings, SystemPrompts
from dialogforge.protocols import ConfigurationError
from dialogforge.tags import TagResolver
from dialogforge.types import (
    CHARACTER_TAG_TYPES,
    GENERIC_NODE_TYPES,
    LOCATION_TAG_TYPES,
    QUEST_TAG_TYPES,
    THEMATIC_TAG_TYPES,
    EMOTIONAL_TAG_TYPES,
    DialogContext,
    GenerateContext,
    ProjectType,
    Tag,
    ValidationIssue,
)

if TYPE_CHECKING:
    from dialogforge.validation.validator import Assessment

logger = logging.getLogger(__name__)

# Tag trimming speed per node type; tags vanish once depth * multiplier > 5
DEPTH_MULTIPLIERS: Dict[str, float] = {
    "playerResponse": 2.0,
    "npcDialog": 1.0,
    "narratorNode": 0.8,
    "choiceNode": 1.5,
    "characterDialogNode": 1.0,
    "enemyDialog": 1.0,
}
TAG_OMIT_DEPTH = 5
TAG_FULL_CONTENT_DEPTH = 3

IMPORTANT_KEYWORDS = (
    "trouble",
    "problem",
    "danger",
    "secret",
    "mission",
    "quest",
    "key",
    "important",
    "critical",
    "urgent",
    "help",
    "fear",
)

BANNED_OPENERS = (
    "According to the records",
    "According to the archives",
    "From the records",
    "Based on the records",
)
_BANNED_OPENERS_TEXT = ", ".join(f'"{o}"' for o in BANNED_OPENERS)
_CLICHE_TEXT = "\"isn't just a [thing] — it's [other]\""

EMOTIONAL_MARKERS = {
    "positive": ("happy", "joy", "excited", "pleased", "glad", "satisfied", "hopeful"),
    "negative": ("sad", "angry", "frustrated", "disappointed", "worried", "fearful", "upset"),
    "intense": ("!", "very", "extremely", "absolutely", "completely", "totally"),
}

GROWTH_INDICATORS = {
    "realization": ("realize", "understand", "see now", "get it", "makes sense"),
    "confidence": ("sure", "certain", "confident", "believe", "know"),
    "vulnerability": ("admit", "confess", "share", "open up", "trust"),
    "change": ("different", "changed", "new", "transform", "become"),
}

THEME_KEYWORDS = {
    "redemption": ("redeem", "second chance", "forgive", "make up", "atone"),
    "betrayal": ("betray", "deceive", "lie", "backstab", "trust broken"),
    "sacrifice": ("sacrifice", "give up", "lose", "for others", "greater good"),
    "discovery": ("discover", "find out", "reveal", "uncover", "learn"),
}

PATTERN_SUGGESTIONS = {
    "question-question-question": "Provide a definitive answer to break the questioning cycle",
    "short_response-short_response-short_response": "Add more detail and depth to move conversation forward",
    "exposition-exposition-exposition": "Use a shorter, more direct response to vary pacing",
    "statement-statement-statement": "Ask a question to re-engage and create interaction",
    "exclamation-exclamation-exclamation": "Lower the intensity with a calmer response",
}

_CAPITALIZED = re.compile(r"\b[A-Z][a-zA-Z]*\b")


@dataclass
class EmotionalArc:
    trend: str  # building | declining | stable | volatile | neutral
    intensity: int
    markers: List[str] = field(default_factory=list)


@dataclass
class CharacterEvolution:
    has_growth: bool
    growth_type: str
    summary: str


@dataclass
class ConversationPattern:
    type: str
    suggestion: str


# =============================================================================
# Narrative analysis
# =============================================================================


def analyze_emotional_arc(messages: Sequence[DialogContext]) -> EmotionalArc:
    """Score each message by emotion markers and classify the recent trend."""
    scores: List[float] = []
    markers: List[str] = []
    for msg in messages:
        text = msg.text.lower()
        score = 0.0
        for marker in EMOTIONAL_MARKERS["positive"]:
            if marker in text:
                score += 1
                markers.append(marker)
        for marker in EMOTIONAL_MARKERS["negative"]:
            if marker in text:
                score -= 1
                markers.append(marker)
        for marker in EMOTIONAL_MARKERS["intense"]:
            if marker in text:
                score *= 1.5
        scores.append(score)

    if not scores:
        return EmotionalArc(trend="neutral", intensity=0)

    avg = sum(scores) / len(scores)
    intensity = round(min(10.0, abs(avg) * 3))

    trend = "neutral"
    if len(scores) >= 3:
        a, b, c = scores[-3:]
        if pvariance(scores) > 2:
            trend = "volatile"
        elif c > b > a:
            trend = "building"
        elif c < b < a:
            trend = "declining"
        elif abs(avg) < 0.5:
            trend = "neutral"
        else:
            trend = "stable"

    return EmotionalArc(trend=trend, intensity=intensity, markers=list(dict.fromkeys(markers)))


def analyze_character_evolution(messages: Sequence[DialogContext]) -> CharacterEvolution:
    half = len(messages) // 2
    first, second = messages[:half], messages[half:]

    def count(group: Sequence[DialogContext], indicators: Sequence[str]) -> int:
        return sum(1 for msg in group for ind in indicators if ind in msg.text.lower())

    growth = [
        kind
        for kind, indicators in GROWTH_INDICATORS.items()
        if count(second, indicators) > count(first, indicators) + 1
    ]
    if not growth:
        return CharacterEvolution(False, "general development", "No significant character evolution detected")
    joined = " and ".join(growth)
    return CharacterEvolution(True, joined, f"Character shows {joined} development through the conversation")


def extract_thematic_elements(tags: Sequence[Tag], messages: Sequence[DialogContext]) -> List[str]:
    themes = [tag.label for tag in tags if tag.type in THEMATIC_TAG_TYPES]
    if messages:
        conversation = " ".join(m.text for m in messages).lower()
        for theme, keywords in THEME_KEYWORDS.items():
            if theme not in themes and any(k in conversation for k in keywords):
                themes.append(theme)
    return themes


def _message_kind(text: str) -> str:
    if "?" in text:
        return "question"
    if "!" in text:
        return "exclamation"
    if len(text) > 100:
        return "exposition"
    if len(text.split(" ")) <= 5:
        return "short_response"
    return "statement"


def analyze_conversation_pattern(messages: Sequence[DialogContext]) -> ConversationPattern:
    kinds = [_message_kind(m.text) for m in messages]
    recent = "-".join(kinds[-3:])
    counts: Dict[str, int] = {}
    for kind in kinds:
        counts[kind] = counts.get(kind, 0) + 1
    dominant = max(counts, key=counts.get) if counts else "statement"
    return ConversationPattern(
        type=f"{dominant}-heavy conversation with recent pattern: {recent}",
        suggestion=PATTERN_SUGGESTIONS.get(recent, "Respond naturally based on content"),
    )


def extract_important_words(messages: Sequence[DialogContext]) -> List[str]:
    """Capitalized words and story keywords from previous messages, in first-seen order."""
    text = " ".join(m.text for m in messages)
    words = dict.fromkeys(_CAPITALIZED.findall(text))
    lowered = text.lower()
    for keyword in IMPORTANT_KEYWORDS:
        if keyword in lowered:
            words.setdefault(keyword)
    return list(words)


def _arrows(nodes: Sequence[DialogContext]) -> str:
    return "\n".join(f"→ {n.text}" for n in nodes)


def _transcript(nodes: Sequence[DialogContext]) -> str:
    return "\n".join(f"[{n.type.upper()}]: {n.text}" for n in nodes)


def _filter(tags: Sequence[Tag], types: Sequence[str]) -> List[Tag]:
    return [t for t in tags if t.type in types]


# =============================================================================
# Assembler
# =============================================================================


class ContextAssembler:
    def __init__(self, settings: Settings, resolver: Optional[TagResolver] = None) -> None:
        self.settings = settings
        self.resolver = resolver or TagResolver()

    @property
    def templates(self) -> SystemPrompts:
        return self.settings.system_prompts

    def project_type_for(self, ctx: GenerateContext) -> ProjectType:
        return ctx.project_type or self.settings.project_type

    def current_tags(self, ctx: GenerateContext) -> List[Tag]:
        if ctx.current is None or not ctx.current.tags:
            return []
        return self.resolver.resolve(ctx.current.tags)

    # ---- System prompt ----

    def system_prompt_for(
        self,
        node_type: str,
        project_type: Optional[ProjectType] = None,
        override: Optional[str] = None,
    ) -> str:
        """Resolve the system template: override, project node, project general, node, general."""
        if override:
            return override

        templates = self.settings.system_prompts
        project = (project_type or self.settings.project_type).value
        project_prompts = templates.project_types.get(project) or {}
        for candidate in (
            project_prompts.get(node_type),
            project_prompts.get("general"),
            templates.node_types.get(node_type),
            templates.node_types.get("general"),
        ):
            if candidate:
                return candidate

        if node_type in GENERIC_NODE_TYPES:
            return ""
        raise ConfigurationError(f"No system prompt configured for node type: {node_type}")

    # ---- Main prompt ----

    def build_prompt(
        self,
        node_type: str,
        ctx: GenerateContext,
        system_prompt: Optional[str] = None,
    ) -> str:
        system = self.system_prompt_for(node_type, self.project_type_for(ctx), system_prompt)
        tags = self.current_tags(ctx)

        sibling = ""
        if ctx.sibling_nodes and ctx.dialog_chain is None:
            sibling = self.build_sibling_awareness(ctx.sibling_nodes)

        return (
            f"\n{system}\n\n"
            f"{self.build_context_analysis(ctx)}\n\n"
            f"{self.build_enhanced_guidance(tags)}\n\n"
            f"{sibling}\n"
            f"{self.build_tag_requirements(tags)}\n"
            f"{self.build_node_type_rules(node_type, ctx)}\n"
            "RESPONSE:"
        )

    def build_context_analysis(self, ctx: GenerateContext) -> str:
        if ctx.current is None:
            return ""

        ignore = ctx.ignore_connections
        depth = 0 if ignore else len(ctx.previous)
        tag_content = self.adjust_tags_by_depth(self.current_tags(ctx), depth, ctx.current.type)
        character_info = ctx.character_info or ""
        important = [] if ignore or not ctx.previous else extract_important_words(ctx.previous)

        if ctx.is_isolated:
            base = self.build_isolated_context(tag_content, character_info)
        elif not ctx.previous:
            base = self.build_dialog_start_context(tag_content, character_info, ctx.next, important)
        else:
            base = self.build_continuation_context(
                tag_content, character_info, ctx.previous, ctx.next, important
            )
        return base + self.build_enhanced_context(ctx)

    def adjust_tags_by_depth(self, tags: Sequence[Tag], depth: int, node_type: str) -> str:
        if not tags:
            return ""
        effective = depth * DEPTH_MULTIPLIERS.get(node_type, 1.0)
        if effective > TAG_OMIT_DEPTH:
            return ""
        lines = ["", "=== BACKGROUND CONTEXT ==="]
        for tag in tags:
            if effective < TAG_FULL_CONTENT_DEPTH:
                lines.append(f"• {tag.label}: {tag.content}")
            else:
                lines.append(f"• {tag.label}")
        return "\n".join(lines) + "\n"

    def build_isolated_context(self, tag_content: str, character_info: str) -> str:
        return (
            f"\n{tag_content}\n\n{character_info}\n\n"
            f"DIALOG START - {self.templates.isolated_node}\n\n"
            "THIS IS A STANDALONE NODE WITH NO CONNECTIONS.\n"
        )

    def build_dialog_start_context(
        self,
        tag_content: str,
        character_info: str,
        next_nodes: Sequence[DialogContext],
        important: Sequence[str],
    ) -> str:
        return (
            f"\n{tag_content}\n\n{character_info}\n\n"
            f"DIALOG START - {self.templates.dialog_start}\n\n"
            "NEXT POSSIBLE RESPONSES:\n"
            f"{_arrows(next_nodes) or '[Open ended response]'}\n\n"
            "IMPORTANT WORDS TO NATURALLY INCLUDE (if appropriate):\n"
            f"{', '.join(important)}\n"
        )

    def build_continuation_context(
        self,
        tag_content: str,
        character_info: str,
        previous: Sequence[DialogContext],
        next_nodes: Sequence[DialogContext],
        important: Sequence[str],
    ) -> str:
        window = 7 if len(previous) >= 7 else 5
        return (
            f"\n{tag_content}\n\n{character_info}\n\n"
            "CONVERSATION CONTEXT:\n\n"
            "PREVIOUS MESSAGES:\n"
            f"{_transcript(previous[-window:])}\n\n"
            f"LAST MESSAGE: {previous[-1].text}\n"
            "↓\nYOU ARE CREATING A RESPONSE\n↓\n"
            "NEXT POSSIBLE RESPONSES:\n"
            f"{_arrows(next_nodes) or '[Open ended response]'}\n\n"
            "IMPORTANT WORDS TO NATURALLY INCLUDE (if appropriate):\n"
            f"{', '.join(important)}\n\n"
            f"{self.templates.continuation}\n"
        )

    # ---- Enhancements ----

    def build_enhanced_context(self, ctx: GenerateContext) -> str:
        if ctx.current is None or ctx.ignore_connections:
            return ""

        tags = self.current_tags(ctx)
        parts = [self.build_prioritized_context(tags, has_previous=bool(ctx.previous))]

        if ctx.previous:
            arc = analyze_emotional_arc(ctx.previous)
            if arc.trend != "neutral":
                parts.append(
                    "\n=== EMOTIONAL CONTINUITY ===\n"
                    f"Emotional trend: {arc.trend} (intensity: {arc.intensity}/10)\n"
                    f"Key emotional markers: {', '.join(arc.markers)}\n"
                    f"Suggested emotional response: Continue this {arc.trend} trend with appropriate intensity.\n"
                )

        if len(ctx.previous) >= 3:
            evolution = analyze_character_evolution(ctx.previous)
            if evolution.has_growth:
                parts.append(
                    "\n=== CHARACTER DEVELOPMENT ===\n"
                    f"Character growth detected: {evolution.growth_type}\n"
                    f"Evolution summary: {evolution.summary}\n"
                    "Continue this character development naturally in your response.\n"
                )

        if ctx.current.tags:
            themes = extract_thematic_elements(tags, ctx.previous)
            if themes:
                parts.append(
                    "\n=== THEMATIC ELEMENTS ===\n"
                    f"Active themes: {', '.join(themes)}\n"
                    "Weave these themes subtly into your response without being heavy-handed.\n"
                )

        if len(ctx.previous) >= 5:
            pattern = analyze_conversation_pattern(ctx.previous)
            parts.append(
                "\n=== CONVERSATION DYNAMICS ===\n"
                f"Pattern: {pattern.type}\n"
                f"Recommended next move: {pattern.suggestion}\n"
            )

        return "".join(parts)

    def build_prioritized_context(self, tags: Sequence[Tag], has_previous: bool) -> str:
        if not tags:
            return ""
        out: List[str] = []

        quests = _filter(tags, QUEST_TAG_TYPES)
        if quests:
            out.append("\n=== [CRITICAL PRIORITY] CURRENT QUEST/OBJECTIVE ===\n")
            for tag in quests:
                out.append(f"ACTIVE QUEST: {tag.label}\n   Details: {tag.content}\n")
                if tag.importance >= 5:
                    out.append("   HIGH IMPORTANCE - This MUST be directly addressed in your response\n")
            out.append("\n*** Your response MUST relate to and advance these objectives ***\n")

        characters = [t for t in _filter(tags, CHARACTER_TAG_TYPES) if t.character_voice]
        if characters:
            out.append("\n=== [HIGH PRIORITY] CHARACTER VOICE REQUIREMENTS ===\n")
            for tag in characters:
                voice = tag.character_voice
                out.append(f"CHARACTER: {tag.label}\n")
                if voice.conversation_style:
                    out.append(f"   Communication Style: {voice.conversation_style}\n")
                if voice.trust_level is not None:
                    out.append(f"   Trust Level: {voice.trust_level}/10\n")
                if voice.personal_motivations:
                    out.append(f"   Core Motivations: {', '.join(voice.personal_motivations[:2])}\n")
                if voice.speech_patterns:
                    out.append(f'   Speech Patterns: Use phrases like "{voice.speech_patterns[0]}"\n')
            out.append("\n*** Maintain strict character consistency throughout response ***\n")

        locations = _filter(tags, LOCATION_TAG_TYPES)
        if locations:
            out.append("\n=== [MEDIUM PRIORITY] LOCATION CONTEXT ===\n")
            out.extend(f"LOCATION: {t.label} - {t.content}\n" for t in locations)

        emotional = _filter(tags, EMOTIONAL_TAG_TYPES)
        if emotional and has_previous:
            out.append("\n=== [MEDIUM PRIORITY] EMOTIONAL CONTEXT ===\n")
            out.extend(f"{t.label}: {t.content}\n" for t in emotional)

        return "".join(out)

    def build_enhanced_guidance(self, tags: Sequence[Tag]) -> str:
        guidance = ""
        voice_tags = [t for t in tags if t.type == "characterVoice"]
        voice = voice_tags[0].character_voice if voice_tags else None
        if voice:
            guidance += prompts.build_character_voice_prompt(voice)
            guidance += prompts.build_relationship_dynamics_prompt(voice.relationship_dynamics)
        pacing_tags = [t for t in tags if t.type == "narrativePacing"]
        if pacing_tags and pacing_tags[0].metadata:
            guidance += prompts.build_narrative_pacing_prompt(pacing_tags[0].metadata.narrative_pacing)
        return guidance

    def build_sibling_awareness(self, siblings: Sequence[DialogContext]) -> str:
        if not siblings:
            return ""
        texts = "\n- ".join(f'"{s.text}"' for s in siblings)
        return (
            "\nSIMILAR NODE AWARENESS:\n"
            "The following nodes are connected to the same parent/target nodes as the current one:\n"
            f"- {texts}\n\n"
            f"{self.templates.sibling_awareness}"
        )

    def build_tag_requirements(self, tags: Sequence[Tag]) -> str:
        if not tags:
            return ""
        required = max(1, min(2, len(tags)))
        summaries = " | ".join(f"[{t.type}] {t.label}: {t.content}" for t in tags[:6])

        checklist = [
            f"Use at least {required} distinct tag detail(s) in this line; skipping tags will trigger regeneration.",
            f"Weave the tags naturally (no list dumps). Current tag set: {summaries}.",
            "Avoid generic helper/service language; speak diegetically.",
            f"Vary your opening phrasing; do NOT start with {_BANNED_OPENERS_TEXT}.",
            f"Avoid the cliché pattern {_CLICHE_TEXT} or similar contrast clichés; describe with a new angle.",
        ]
        character = next(iter(_filter(tags, CHARACTER_TAG_TYPES)), None)
        location = next(iter(_filter(tags, LOCATION_TAG_TYPES)), None)
        quest = next(iter(_filter(tags, QUEST_TAG_TYPES)), None)
        if character:
            checklist.insert(0, f"Stay in {character.label}'s voice (use their speech patterns and motives).")
        if location:
            checklist.insert(
                0, f"Ground the line in the current location/environment {location.label}: {location.content}"
            )
        if quest:
            checklist.insert(0, f"Directly address the current quest/objective {quest.label}: {quest.content}")

        return (
            "\n\nTAG CONTEXT (OPTIONAL):\n"
            "- Consider these tags as background context, not requirements\n"
            "- Use tag details only if they naturally fit the conversation\n- "
            + "\n- ".join(checklist)
        )

    def build_node_type_rules(self, node_type: str, ctx: GenerateContext) -> str:
        if self.project_type_for(ctx) is not ProjectType.GAME:
            return ""
        if node_type == "playerResponse":
            return (
                "\nPLAYER VARIETY REQUIREMENTS:\n"
                "- Responses MUST represent different attitudes (accept, reject/skeptical, "
                "inquire/neutral, aggressive/direct). Do not collapse into the same tone.\n"
                f"- DO NOT start with: {_BANNED_OPENERS_TEXT}. Rephrase with a fresh lead-in.\n"
                "- Avoid repeating the NPC's wording; use a new angle or question.\n"
                f"- Avoid the cliché pattern {_CLICHE_TEXT}; pick distinct phrasing."
            )
        if node_type in ("npcDialog", "enemyDialog"):
            return (
                "\nNPC/ENEMY VOICE SAFEGUARDS:\n"
                f"- Avoid starting with: {_BANNED_OPENERS_TEXT}. Use a varied opening in the character's own voice.\n"
                f"- Avoid the cliché pattern {_CLICHE_TEXT}; use fresh, specific wording.\n"
                "- Enemy lines must carry tension/hostility; avoid helpful or neutral service language."
            )
        return ""

    # ---- Diversity ----

    def build_diversity_block(self, related: Sequence[str]) -> str:
        template = self.templates.diversity
        if not template:
            raise ConfigurationError("Diversity prompt missing from configuration")

        numbered = "\n".join(f'{i}. "{text}"' for i, text in enumerate(related, 1))
        block = (
            "\n\nEXISTING RESPONSES (FOR CONTEXT):\n"
            f"{numbered}\n\n"
            "DIVERSITY GUIDANCE (these are guidelines, natural in-character dialog is still the priority):\n"
            f"{template}\n\n"
            "Your response should feel clearly distinct in wording, tone, and approach when placed "
            "next to these, while remaining consistent with the story and character.\n"
        )
        openers = list(dict.fromkeys(t.split()[0].lower() for t in related if t.strip()))
        if openers:
            block += f"\nTry not to start your response with these exact opening words: {', '.join(openers)}"
        return block

    def build_forced_differentiation_prompt(self, base_prompt: str, related: Sequence[str]) -> str:
        return (
            f"\n{base_prompt}\n\n"
            "CRITICAL: Your previous response was too similar to existing ones!\n"
            f"{self.templates.forced_differentiation}\n"
            + "\n".join(related)
            + "\n\nGENERATE A FRESH, UNIQUE RESPONSE WITH DIFFERENT TONE AND STRUCTURE:"
        )

    # ---- Validation feedback ----

    def build_refinement_prompt(
        self,
        node_type: str,
        ctx: GenerateContext,
        assessment: "Assessment",
        rejected: str,
    ) -> str:
        """Re-request prompt listing every issue with its fix and the strengths to keep."""
        lines = [
            self.build_prompt(node_type, ctx),
            "",
            "=== COMPREHENSIVE RESPONSE REFINEMENT REQUIRED ===",
            "The previous response failed quality validation and must be improved.",
            "",
            "PREVIOUS RESPONSE (REJECTED):",
            f'"{rejected}"',
            "",
        ]

        def issue_section(title: str, issues: Sequence[ValidationIssue]) -> None:
            if not issues:
                return
            lines.append(title)
            for i, issue in enumerate(issues, 1):
                lines.append(f"{i}. {issue.description}")
                lines.append(f"   Fix: {issue.suggestion}")
            lines.append("")

        issue_section("CHARACTER VOICE ISSUES TO FIX:", assessment.character_issues)
        issue_section("CONTEXT COHERENCE ISSUES TO FIX:", assessment.coherence_issues)
        issue_section("STYLE ISSUES TO FIX:", assessment.style_issues)

        if assessment.strengths:
            lines.append("KEEP THESE ASPECTS (they worked well):")
            lines.extend(f"{i}. {s}" for i, s in enumerate(assessment.strengths, 1))
            lines.append("")

        lines.extend(
            [
                "CRITICAL REQUIREMENTS FOR NEW RESPONSE:",
                "1. Address ALL character voice issues listed above",
                "2. Fix ALL context coherence problems",
                "3. Maintain the same core intent as the original response",
                "4. Ensure response directly relates to current quest/context",
                "5. Stay consistent with character personality and motivations",
                "",
                "Generate a NEW, IMPROVED response that passes both character voice and coherence validation:",
                "",
                "RESPONSE:",
            ]
        )
        return "\n".join(lines)

    # ---- Improve / custom ----

    def _conversation_block(self, ctx: GenerateContext) -> tuple:
        previous = _transcript(ctx.previous[-3:]) if ctx.previous else "No previous messages"
        next_msgs = _arrows(ctx.next) if ctx.next else "No next messages"
        tag_content = (
            self.resolver.format_tag_content(ctx.current.tags) if ctx.current and ctx.current.tags else ""
        )
        return previous, next_msgs, tag_content

    def build_improve_prompt(self, node_type: str, ctx: GenerateContext, current_text: str) -> str:
        system = self.system_prompt_for(node_type, self.project_type_for(ctx))
        info = ""
        if ctx.current is not None:
            previous, next_msgs, tag_content = self._conversation_block(ctx)
            info = (
                "\nCONVERSATION CONTEXT:\n\n"
                f"PREVIOUS MESSAGES:\n{previous}\n\n"
                f'CURRENT NODE ({node_type.upper()}): "{current_text}"\n\n'
                f"NEXT POSSIBLE RESPONSES:\n{next_msgs}\n\n"
                f"{tag_content}\n\n"
                f"CHARACTER INFO:\n{ctx.character_info or 'No character info available'}\n"
            )
        return f"\n{system}\n\n{info}\n\nINSTRUCTIONS:\n{self.templates.improvement}"

    def build_context_info(self, ctx: GenerateContext) -> str:
        if ctx.current is None:
            return ""
        previous, next_msgs, tag_content = self._conversation_block(ctx)
        history = f"\n{ctx.conversation_history}\n" if ctx.conversation_history else ""
        return (
            "\nCURRENT CONVERSATION STATE:\n"
            "--------------------------\n"
            f"PREVIOUS MESSAGES:\n{previous}\n\n"
            f"CURRENT CHARACTER: {ctx.current.type.upper()}\n"
            f'CURRENT TEXT: "{ctx.current.text}"\n\n'
            f"POSSIBLE NEXT RESPONSES:\n{next_msgs}\n"
            f"{history}\n"
            f"{tag_content}\n\n"
            f"CHARACTER INFO:\n{ctx.character_info or 'No character info available'}\n"
        )

    def build_custom_prompt(
        self,
        node_type: str,
        ctx: GenerateContext,
        custom_prompt: str,
        system_prompt: Optional[str] = None,
    ) -> str:
        system = system_prompt
        if not system:
            try:
                system = self.system_prompt_for(node_type, self.project_type_for(ctx))
            except ConfigurationError:
                system = ""
        if not system and node_type not in GENERIC_NODE_TYPES:
            system = self.settings.system_prompts.node_types.get("general") or prompts.FALLBACK_SYSTEM_PROMPT
            logger.debug("Using fallback system prompt for node type %s", node_type)

        if node_type in GENERIC_NODE_TYPES:
            info = "\nCONTEXT INFORMATION:\n--------------------------"
            if ctx.previous:
                info += "\nPREVIOUS CONTEXT:\n" + "\n".join(m.text for m in ctx.previous[-2:])
            if ctx.next:
                info += "\nPOTENTIAL RELATED CONTENT:\n" + "\n".join(m.text for m in ctx.next[:2])
            info += "\n"
            wrapper = prompts.CUSTOM_NODE_WRAPPER
        else:
            info = self.build_context_info(ctx)
            wrapper = self.templates.custom_prompt_wrapper

        section = prompts.fill_template(wrapper, customPrompt=custom_prompt)
        return f"\n{system}\n\n{info}\n\n{section}"

    # ---- Issue fixes ----

    def build_fix_prompt(
        self,
        issue_type: str,
        *,
        message: str = "",
        current_text: str = "",
        previous_text: str = "",
    ) -> str:
        t = self.templates
        values = dict(message=message, currentText=current_text, previousText=previous_text)
        if issue_type == "deadend":
            return prompts.fill_template(t.deadend_fix, playerText=current_text)
        if issue_type == "inconsistency":
            if prompts.NON_FLUENT_MARKER in message:
                previous_line = f'Previous context: "{previous_text}"' if previous_text else ""
                return prompts.fill_template(
                    prompts.NON_FLUENT_FIX_PROMPT, currentText=current_text, previousLine=previous_line
                )
            return prompts.fill_template(t.inconsistency_fix, **values)
        if issue_type == "questionAnswer":
            return prompts.fill_template(t.question_answer_fix, **values)
        if issue_type == "contextGap":
            return prompts.fill_template(t.context_gap_fix, **values)
        if issue_type == "toneShift":
            return prompts.fill_template(t.tone_shift_fix, **values)
        return prompts.fill_template(t.general_fix, **values)
