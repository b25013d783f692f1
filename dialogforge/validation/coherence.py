"""Context coherence checking.

Measures whether a response follows from the conversation so far: keyword
overlap with previous messages, quest alignment, consistency with the
speaking character's motivations and trust, dialog flow after the last
message, and internal consistency between the response's own sentences.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from dialogforge.types import CharacterVoice, IssueType, Severity, Tag, ValidationIssue

COHERENCE_THRESHOLD = 0.4

STOP_WORDS = frozenset(
    """the and for are but not you all can her was one our had words use your way about many
    then them these this that have from they know want been good much some time very when
    come here just like long make over such take than only well year would could should will""".split()
)

QUEST_WORDS = frozenset(
    """find search seek locate discover retrieve collect defeat kill destroy eliminate stop
    prevent deliver bring take carry transport escort talk speak ask tell inform report protect
    defend guard save rescue investigate explore examine inspect""".split()
)

EMOTION_WORDS: Dict[str, Tuple[str, ...]] = {
    "angry": ("furious", "rage", "mad", "angry", "irritated"),
    "happy": ("joyful", "excited", "pleased", "delighted", "cheerful"),
    "sad": ("sorrow", "grief", "melancholy", "dejected", "downhearted"),
    "fear": ("terrified", "frightened", "scared", "anxious", "worried"),
    "suspicious": ("doubt", "distrust", "wary", "skeptical", "cautious"),
}

NEGATIONS = ("not", "never", "no", "don't", "won't", "can't", "isn't", "aren't")

_WORD = re.compile(r"\b[a-z]{3,}\b")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")


@dataclass
class ContextAlignment:
    previous_context: List[str] = field(default_factory=list)
    quest_context: List[str] = field(default_factory=list)
    character_context: List[str] = field(default_factory=list)
    location_context: List[str] = field(default_factory=list)


@dataclass
class CoherenceResult:
    score: float
    is_coherent: bool
    issues: List[ValidationIssue] = field(default_factory=list)
    strengths: List[str] = field(default_factory=list)


def extract_keywords(text: str) -> List[str]:
    return [w for w in _WORD.findall(text.lower()) if w not in STOP_WORDS]


def has_direct_reference(response: str, context_text: str) -> bool:
    response_words = set(extract_keywords(response))
    overlap = [w for w in extract_keywords(context_text) if len(w) >= 4 and w in response_words]
    return len(overlap) >= 2


class CoherenceChecker:
    def check_context_alignment(
        self,
        context: ContextAlignment,
        response: str,
        character: Optional[Tag] = None,
    ) -> CoherenceResult:
        issues: List[ValidationIssue] = []
        strengths: List[str] = []
        total = 1.0

        context_score = self.context_alignment_score(context.previous_context, response)
        if context_score < 0.3:
            issues.append(
                ValidationIssue(
                    IssueType.CONTEXT_DISCONNECT,
                    Severity.HIGH,
                    "Response does not align with previous conversation context",
                    "Reference or build upon previous statements in the conversation",
                )
            )
            total *= 0.7
        elif context_score > 0.7:
            strengths.append("Good contextual continuity")

        if context.quest_context:
            quest_score = self.quest_alignment_score(context.quest_context, response)
            if quest_score < 0.2:
                issues.append(
                    ValidationIssue(
                        IssueType.CONTEXT_DISCONNECT,
                        Severity.MEDIUM,
                        "Response ignores current quest or objective context",
                        "Address the current quest, mission, or objective directly",
                    )
                )
                total *= 0.6
            elif quest_score > 0.6:
                strengths.append("Addresses quest objectives appropriately")

        voice = character.character_voice if character is not None else None
        if voice is not None:
            motivation, reason = self.motivation_consistency(voice, response)
            if motivation < 0.5:
                issues.append(
                    ValidationIssue(
                        IssueType.CHARACTER_INCONSISTENCY,
                        Severity.MEDIUM,
                        reason,
                        "Align response with character motivations and personality",
                    )
                )
                total *= 0.8
            elif motivation > 0.7:
                strengths.append("Maintains character motivation consistency")

        flow = self.dialog_flow_score(context.previous_context, response)
        if flow < 0.4:
            issues.append(
                ValidationIssue(
                    IssueType.FLOW_DISRUPTION,
                    Severity.MEDIUM,
                    "Response disrupts natural dialog flow",
                    "Ensure response naturally follows from previous statements",
                )
            )
            total *= 0.8
        elif flow > 0.6:
            strengths.append("Natural dialog flow progression")

        if self.semantic_coherence_score(response) < 0.5:
            issues.append(
                ValidationIssue(
                    IssueType.SEMANTIC_MISMATCH,
                    Severity.LOW,
                    "Response has internal semantic inconsistencies",
                    "Ensure all parts of the response relate to each other logically",
                )
            )
            total *= 0.9

        final = max(0.0, min(1.0, total))
        return CoherenceResult(
            score=final,
            is_coherent=final >= COHERENCE_THRESHOLD,
            issues=[i for i in issues if i.severity is not Severity.LOW],
            strengths=strengths if final > 0.6 else [],
        )

    # ---- Component scores ----

    def context_alignment_score(self, previous: Sequence[str], response: str) -> float:
        if not previous:
            return 0.8

        response_words = extract_keywords(response)
        context_words = {w for msg in previous for w in extract_keywords(msg)}
        overlap = sum(1 for w in response_words if w in context_words)
        overlap_ratio = overlap / max(len(response_words), 1)

        reference = sum(0.3 for msg in previous[-2:] if has_direct_reference(response, msg))
        topic = self.topic_consistency(previous, response)
        return min(1.0, overlap_ratio * 0.4 + reference * 0.4 + topic * 0.2)

    @staticmethod
    def topic_consistency(previous: Sequence[str], response: str) -> float:
        if not previous:
            return 0.8
        response_topics = extract_keywords(response)
        response_set = set(response_topics)
        shared = sum(1 for msg in previous for w in extract_keywords(msg) if w in response_set)
        return shared / max(len(response_topics), 1)

    def quest_alignment_score(self, quests: Sequence[str], response: str) -> float:
        if not quests:
            return 0.8
        quest_keywords = [w for q in quests for w in extract_keywords(q) if w in QUEST_WORDS]
        response_keywords = extract_keywords(response)
        relevance = sum(
            1 for kw in quest_keywords if any(kw in rw or rw in kw for rw in response_keywords)
        )
        direct = any(has_direct_reference(response, q) for q in quests)
        return min(1.0, relevance / max(len(quest_keywords), 1) + (0.3 if direct else 0.0))

    def motivation_consistency(self, voice: CharacterVoice, response: str) -> Tuple[float, str]:
        """Return ``(score, reason)``; the reason explains the lowest-scoring check."""
        score = 0.8
        reason = ""

        if voice.personal_motivations:
            alignment = self.motivation_alignment(voice.personal_motivations, response)
            if alignment < 0.3:
                score = 0.4
                reason = "Response conflicts with character's core motivations"
            elif alignment > 0.6:
                score = 0.9

        if voice.trust_level is not None:
            consistent, trust_reason = self.trust_consistency(voice.trust_level, response)
            if not consistent:
                score = min(score, 0.5)
                reason = trust_reason

        if voice.emotional_range and not self.emotional_consistency(voice.emotional_range, response):
            score = min(score, 0.6)
            reason = reason or "Response emotion doesn't match character's emotional range"

        return score, reason

    @staticmethod
    def motivation_alignment(motivations: Sequence[str], response: str) -> float:
        response_words = set(extract_keywords(response))
        total = 0.0
        for motivation in motivations:
            words = extract_keywords(motivation)
            total += sum(1 for w in words if w in response_words) / max(len(words), 1)
        return total / len(motivations)

    @staticmethod
    def trust_consistency(trust_level: float, response: str) -> Tuple[bool, str]:
        lowered = response.lower()
        if trust_level >= 7 and any(w in lowered for w in ("suspicious", "distrust", "careful", "wary")):
            return False, "High-trust character displaying excessive suspicion"
        if trust_level <= 3 and any(w in lowered for w in ("trust", "believe", "friend", "help")):
            return False, "Low-trust character being overly trusting or helpful"
        return True, ""

    @staticmethod
    def emotional_consistency(emotional_range: Dict[str, float], response: str) -> bool:
        """False when the response shows an emotion the character barely feels (< 3)."""
        lowered = response.lower()
        for emotion, intensity in emotional_range.items():
            if intensity < 3 and any(w in lowered for w in EMOTION_WORDS.get(emotion, ())):
                return False
        return True

    def dialog_flow_score(self, previous: Sequence[str], response: str) -> float:
        if not previous:
            return 0.8
        last = previous[-1]
        lowered = response.lower()

        appropriate = not ("?" in last and lowered.startswith(("what", "who", "when")))
        flow = 0.7 if appropriate else 0.3

        last_topics = extract_keywords(last)
        response_topics = extract_keywords(response)
        shared = [t for t in last_topics if t in response_topics]
        if not shared and len(last_topics) > 2 and len(response_topics) > 2:
            flow *= 0.6

        if "?" in last:
            question_only = "?" in response and "." not in response and "!" not in response
            type_score = 0.4 if question_only else 0.8
        else:
            type_score = 0.7
        return min(1.0, (flow + type_score) / 2)

    def semantic_coherence_score(self, response: str) -> float:
        sentences = [s for s in _SENTENCE_SPLIT.split(response) if s.strip()]
        if len(sentences) <= 1:
            return 0.8

        score = 0.8
        for i in range(len(sentences) - 1):
            for j in range(i + 1, len(sentences)):
                if self.contradictory(sentences[i], sentences[j]):
                    score -= 0.2

        topics = [extract_keywords(s) for s in sentences]
        consistency = 0.0
        for i in range(len(topics) - 1):
            later = topics[i + 1 :]
            overlap = [t for t in topics[i] if any(t in other for other in later)]
            consistency += len(overlap) / max(len(topics[i]), 1)
        consistency /= max(len(sentences) - 1, 1)

        return max(0.0, (score + consistency) / 2)

    @staticmethod
    def contradictory(first: str, second: str) -> bool:
        a, b = first.lower(), second.lower()
        if any(n in a for n in NEGATIONS) == any(n in b for n in NEGATIONS):
            return False
        return bool(set(extract_keywords(first)) & set(extract_keywords(second)))
