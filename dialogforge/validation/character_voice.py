"""Character voice validation.

Scores how well a response fits the speaking character and the current
topic. Every check is a keyword/shape heuristic; nothing calls the model.
The overall score is the product of the topic relevance score and any
penalties from voice and motivation checks.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from dialogforge.types import IssueType, Severity, Tag, ValidationIssue

MINIMUM_COHERENCE_THRESHOLD = 0.4
TOPIC_RELEVANCE_THRESHOLD = 0.3

# Props the model likes to invent when it loses the thread
UNRELATED_TOPICS = ("glass orb", "crystal ball", "magic mirror", "ancient artifact")

STOP_WORDS = frozenset(
    """the and for are but not you all can her was one our had word use your way about many
    then them these this that have from they know want been good much some time very when
    come here just like long make over such take than only well year""".split()
)

_TERM = re.compile(r"\b[a-z]{3,}\b")
_PUNCT = re.compile(r"[.!?]")
_CASUAL = re.compile(r"\b(yeah|okay|sure|nah|gonna|wanna)\b", re.IGNORECASE)
_AGGRESSIVE = re.compile(r"\b(damn|hell|angry|furious|rage)\b", re.IGNORECASE)
# "hmm" is deliberately absent: it is natural speech and caused validation loops
_EVASIVE = re.compile(r"\b(maybe|perhaps|could be|not sure|difficult to say)\b", re.IGNORECASE)
_SUPPORTIVE = re.compile(r"\b(help|support|together|understand|care|worry)\b", re.IGNORECASE)
_TRUSTING = re.compile(r"\b(trust|believe|friend|ally|help|share|tell)\b", re.IGNORECASE)
_DISTRUSTING = re.compile(r"\b(doubt|suspicious|careful|wary|distrust|lie|deceive)\b", re.IGNORECASE)

ARCHAIC_WORDS = ("thee", "thou", "hath", "doth", "whilst", "verily", "forsooth")
FORMAL_INDICATORS = ("furthermore", "moreover", "consequently", "therefore")


@dataclass
class TopicContext:
    quest_tags: List[Tag] = field(default_factory=list)
    location_tags: List[Tag] = field(default_factory=list)
    important_context: List[str] = field(default_factory=list)
    current_objective: Optional[str] = None


@dataclass
class VoiceValidationResult:
    valid: bool
    score: float
    issues: List[ValidationIssue] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def extract_key_terms_from_text(text: str) -> List[str]:
    words = _TERM.findall(text.lower())
    return [w for w in words if w not in STOP_WORDS and len(w) > 3][:10]


def extract_key_terms(tags: Sequence[Tag]) -> List[str]:
    terms: List[str] = []
    for tag in tags:
        terms.append(tag.label)
        terms.extend(extract_key_terms_from_text(tag.content or ""))
    return terms


class CharacterVoiceValidator:
    def validate_response(
        self,
        character: Optional[Tag],
        topic: TopicContext,
        response: str,
    ) -> VoiceValidationResult:
        issues: List[ValidationIssue] = []
        total = 1.0

        topic_score = self.topic_relevance(topic, response)
        if topic_score < TOPIC_RELEVANCE_THRESHOLD:
            issues.append(
                ValidationIssue(
                    IssueType.TOPIC_RELEVANCE,
                    Severity.HIGH,
                    "Response does not address the current topic or quest context",
                    "Focus the response on the current quest, location, or conversation topic",
                )
            )
            total *= 0.3
        else:
            total *= topic_score

        if character is not None and character.character_voice:
            voice_score, voice_issues = self.validate_voice(character, response)
            issues.extend(voice_issues)
            total *= voice_score

        if character is not None:
            motivation = self.motivation_score(character, response)
            if motivation < 0.5:
                issues.append(
                    ValidationIssue(
                        IssueType.CHARACTER_MOTIVATION,
                        Severity.MEDIUM,
                        "Response conflicts with character motivations or personality",
                        "Align response with character goals and personality traits",
                    )
                )
                total *= motivation

        return VoiceValidationResult(
            valid=total >= MINIMUM_COHERENCE_THRESHOLD,
            score=_clamp(total),
            issues=[i for i in issues if i.severity is not Severity.LOW],
            suggestions=self.improvement_suggestions(issues, character, topic) if issues else [],
        )

    def topic_relevance(self, topic: TopicContext, response: str) -> float:
        lowered = response.lower()
        terms = extract_key_terms(topic.quest_tags) + extract_key_terms(topic.location_tags)
        for ctx in topic.important_context:
            terms.extend(extract_key_terms_from_text(ctx))

        score = 0.5
        if terms:
            matches = sum(1 for term in terms if term.lower() in lowered)
            score = 0.3 + (matches / len(terms)) * 0.7

        if topic.current_objective and topic.current_objective.lower() in lowered:
            score = min(1.0, score + 0.2)

        for unrelated in UNRELATED_TOPICS:
            head = unrelated.split(" ")[0]
            if unrelated in lowered and not any(head in t.lower() for t in terms):
                score *= 0.2
                break

        return _clamp(score)

    def validate_voice(self, character: Tag, response: str) -> tuple:
        """Return ``(score, issues)`` for speech patterns, vocabulary and style."""
        voice = character.character_voice
        issues: List[ValidationIssue] = []
        score = 1.0
        if voice is None:
            return score, issues

        if voice.speech_patterns and self.speech_pattern_score(voice.speech_patterns, response) < 0.3:
            issues.append(
                ValidationIssue(
                    IssueType.SPEECH_PATTERN,
                    Severity.MEDIUM,
                    f"Response doesn't match {character.label}'s typical speech patterns",
                    f"Use patterns like: {', '.join(voice.speech_patterns[:2])}",
                )
            )
            score *= 0.7

        if voice.vocabulary_level and self.vocabulary_score(voice.vocabulary_level, response) < 0.5:
            issues.append(
                ValidationIssue(
                    IssueType.VOCABULARY_LEVEL,
                    Severity.LOW,
                    f"Vocabulary level doesn't match character (expected: {voice.vocabulary_level})",
                    f"Adjust language complexity to match {voice.vocabulary_level} level",
                )
            )
            score *= 0.9

        style = voice.conversation_style
        if style and self.conversation_style_score(style, response) < 0.5:
            issues.append(
                ValidationIssue(
                    IssueType.SPEECH_PATTERN,
                    Severity.MEDIUM,
                    f"Response doesn't match {style} conversation style",
                    f"Adopt a more {style} tone and approach",
                )
            )
            score *= 0.8

        return score, [i for i in issues if i.severity is not Severity.LOW]

    def motivation_score(self, character: Tag, response: str) -> float:
        voice = character.character_voice
        if voice is None or not voice.personal_motivations:
            return 0.8

        lowered = response.lower()
        score = 0.7
        for motivation in voice.personal_motivations:
            if any(term in lowered for term in extract_key_terms_from_text(motivation)):
                score += 0.1

        if voice.trust_level is not None:
            if voice.trust_level <= 3 and _TRUSTING.search(response):
                score *= 0.7
            elif voice.trust_level >= 7 and _DISTRUSTING.search(response):
                score *= 0.8
        return _clamp(score)

    @staticmethod
    def speech_pattern_score(patterns: Sequence[str], response: str) -> float:
        if not patterns:
            return 1.0
        lowered = response.lower()
        response_punct = len(_PUNCT.findall(lowered))
        total = 0.0
        for pattern in patterns:
            p = pattern.lower()
            if p in lowered:
                total += 1
            elif abs(len(_PUNCT.findall(p)) - response_punct) <= 1:
                total += 0.5
        return min(1.0, total / len(patterns) * 2)

    @staticmethod
    def vocabulary_score(level: str, response: str) -> float:
        words = response.split()
        if not words:
            return 0.8
        avg_len = sum(len(w) for w in words) / len(words)
        complex_ratio = sum(1 for w in words if len(w) > 6) / len(words)
        if level == "simple":
            return 1.0 if avg_len <= 5 else 0.6
        if level == "moderate":
            return 1.0 if 4 <= avg_len <= 6 else 0.7
        if level == "complex":
            return 1.0 if complex_ratio > 0.2 else 0.6
        if level == "archaic":
            lowered = response.lower()
            return 1.0 if any(w in lowered for w in ARCHAIC_WORDS) else 0.5
        return 0.8

    @staticmethod
    def conversation_style_score(style: str, response: str) -> float:
        lowered = response.lower()
        if style == "formal":
            formal = any(w in lowered for w in FORMAL_INDICATORS) or "'" not in response
            return 1.0 if formal else 0.4
        if style == "casual":
            return 1.0 if "'" in response or _CASUAL.search(response) else 0.6
        if style == "aggressive":
            aggressive = bool(_AGGRESSIVE.search(response)) or response.count("!") > 1
            return 1.0 if aggressive else 0.5
        if style == "evasive":
            return 1.0 if _EVASIVE.search(response) or "..." in response else 0.6
        if style == "supportive":
            return 1.0 if _SUPPORTIVE.search(response) else 0.7
        return 0.8

    @staticmethod
    def improvement_suggestions(
        issues: Sequence[ValidationIssue],
        character: Optional[Tag],
        topic: TopicContext,
    ) -> List[str]:
        kinds = {i.type for i in issues}
        suggestions: List[str] = []
        if IssueType.TOPIC_RELEVANCE in kinds:
            if topic.quest_tags:
                suggestions.append(f"Focus on the current quest: {topic.quest_tags[0].label}")
            if topic.current_objective:
                suggestions.append(f"Address the current objective: {topic.current_objective}")
        if character is not None and IssueType.SPEECH_PATTERN in kinds:
            voice = character.character_voice
            if voice and voice.speech_patterns:
                suggestions.append(f"Use {character.label}'s typical phrases: {voice.speech_patterns[0]}")
        if IssueType.CHARACTER_MOTIVATION in kinds:
            suggestions.append("Remember this character's goals and personality when responding")
        return suggestions
