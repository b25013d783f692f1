"""
Response validator: scores a candidate and drives bounded regeneration.

States per candidate: Pending -> Scoring -> Accepted, or Regenerating and
back to Scoring, or retries exhausted and accepted with a warning.

Error handling philosophy:
    The validator never fails a generation. A circuit breaker keyed by
    (node id, first 50 characters of the response) accepts the current text
    whenever the same key was seen within the breaker window, so the loop
    always terminates. A backend error during regeneration is logged and the
    current response is kept.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from dialogforge.cache import ValidationCache
from dialogforge.config import Settings
from dialogforge.context import ContextAssembler
from dialogforge.models.ollama import GenerationOptions, OllamaClient
from dialogforge.protocols import RequestError
from dialogforge.types import (
    CHARACTER_TAG_TYPES,
    LOCATION_TAG_TYPES,
    QUEST_TAG_TYPES,
    GenerateContext,
    IssueType,
    NodeValidationResult,
    ProjectType,
    Severity,
    Tag,
    ValidationIssue,
    ValidationScores,
    texts_of,
)
from dialogforge.validation.character_voice import (
    CharacterVoiceValidator,
    TopicContext,
    VoiceValidationResult,
)
from dialogforge.validation.coherence import CoherenceChecker, CoherenceResult, ContextAlignment

logger = logging.getLogger(__name__)

MIN_COMBINED_SCORE = 0.4
BREAKER_PREFIX_CHARS = 50
TOPIC_WINDOW = 7

REFINE_OPTIONS = GenerationOptions(temperature=0.8, top_p=0.9, top_k=50)

BANNED_OPENER_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^according to the records",
        r"^according to the archives",
        r"^from the records",
        r"^based on the records",
    )
)
BANNED_CLICHE_PATTERNS = (
    re.compile(r"isn[’']t just a .*?—\s*it[’']?s", re.IGNORECASE),
    re.compile(r"isn[’']t just .*?\sit[’']?s", re.IGNORECASE),
)

BANNED_OPENER_ISSUE = ValidationIssue(
    IssueType.BANNED_OPENER,
    Severity.HIGH,
    "Response starts with a banned opener (e.g., 'According to the records').",
    "Use a fresh opening that fits the character voice without that phrase.",
)
BANNED_CLICHE_ISSUE = ValidationIssue(
    IssueType.BANNED_CLICHE,
    Severity.MEDIUM,
    "Response uses the cliché pattern \"isn't just a [thing] — it's [other]\".",
    "Rephrase with a fresh, specific description that fits the tags.",
)


@dataclass
class Assessment:
    """Scores and issues for one candidate response."""

    character: VoiceValidationResult
    coherence: CoherenceResult
    style_issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def scores(self) -> ValidationScores:
        return ValidationScores.from_components(self.character.score, self.coherence.score)

    @property
    def character_issues(self) -> List[ValidationIssue]:
        return self.character.issues

    @property
    def coherence_issues(self) -> List[ValidationIssue]:
        return self.coherence.issues

    @property
    def strengths(self) -> List[str]:
        return self.coherence.strengths

    @property
    def issues(self) -> List[ValidationIssue]:
        return self.character.issues + self.coherence.issues + self.style_issues

    @property
    def should_regenerate(self) -> bool:
        return (
            not self.character.valid
            or not self.coherence.is_coherent
            or self.scores.combined < MIN_COMBINED_SCORE
            or bool(self.style_issues)
        )

    def to_result(self) -> NodeValidationResult:
        return NodeValidationResult(scores=self.scores, issues=self.issues, strengths=list(self.strengths))


def first_character_tag(tags: List[Tag]) -> Optional[Tag]:
    return next((t for t in tags if t.type in CHARACTER_TAG_TYPES and t.character_voice), None)


def style_issues(response: str) -> List[ValidationIssue]:
    issues = []
    if any(p.search(response.strip()) for p in BANNED_OPENER_PATTERNS):
        issues.append(BANNED_OPENER_ISSUE)
    if any(p.search(response) for p in BANNED_CLICHE_PATTERNS):
        issues.append(BANNED_CLICHE_ISSUE)
    return issues


class ResponseValidator:
    def __init__(
        self,
        settings: Settings,
        assembler: ContextAssembler,
        client: OllamaClient,
        cache: ValidationCache,
        *,
        clock: Callable[[], float] = time.monotonic,
        voice_validator: Optional[CharacterVoiceValidator] = None,
        coherence_checker: Optional[CoherenceChecker] = None,
    ) -> None:
        self.settings = settings
        self.assembler = assembler
        self.client = client
        self.cache = cache
        self._clock = clock
        self.voice_validator = voice_validator or CharacterVoiceValidator()
        self.coherence_checker = coherence_checker or CoherenceChecker()
        self._attempts: Dict[Tuple[str, str], float] = {}

    # ---- Scoring ----

    def score(self, response: str, ctx: GenerateContext, node_type: str) -> Assessment:
        """Run both quality checks and the style guards; no side effects."""
        tags = self.assembler.current_tags(ctx)
        quests = [t for t in tags if t.type in QUEST_TAG_TYPES]
        locations = [t for t in tags if t.type in LOCATION_TAG_TYPES]
        previous = texts_of(ctx.previous)

        important = previous[-TOPIC_WINDOW:]
        if ctx.character_info:
            important.append(ctx.character_info)
        objective = next((t.content for t in tags if t.type == "quest"), None)
        topic = TopicContext(
            quest_tags=quests,
            location_tags=locations,
            important_context=important,
            current_objective=objective,
        )
        character = first_character_tag(tags)

        voice = self.voice_validator.validate_response(character, topic, response)
        coherence = self.coherence_checker.check_context_alignment(
            ContextAlignment(
                previous_context=previous,
                quest_context=[t.content for t in quests],
                character_context=[character.content] if character else [],
                location_context=[t.content for t in locations],
            ),
            response,
            character,
        )

        guards = []
        if self.assembler.project_type_for(ctx) is ProjectType.GAME:
            guards = style_issues(response)

        assessment = Assessment(character=voice, coherence=coherence, style_issues=guards)
        scores = assessment.scores
        logger.info(
            "[QUALITY] node=%s type=%s score=%.2f (char=%.2f, coh=%.2f) issues=%d",
            ctx.node_id or "-",
            node_type,
            scores.combined,
            scores.character_voice,
            scores.context_coherence,
            len(assessment.issues),
        )
        return assessment

    def evaluate(self, response: str, ctx: GenerateContext, node_type: str) -> Optional[NodeValidationResult]:
        """Score ``response`` and cache the result; None when the node has no id."""
        assessment = self.score(response, ctx, node_type)
        return self._record(ctx.node_id, response, assessment)

    # ---- Refinement loop ----

    async def refine(
        self,
        response: str,
        ctx: GenerateContext,
        node_type: str,
        max_retries: Optional[int] = None,
    ) -> str:
        """Return an accepted response, regenerating at most ``max_retries`` times."""
        if max_retries is None:
            max_retries = self.settings.max_validation_retries
        node_id = ctx.node_id
        current = response

        for attempt in range(max_retries + 1):
            if self._breaker_tripped(node_id, current):
                logger.warning("Validation loop detected for node %s, accepting response", node_id or "-")
                return current

            assessment = self.score(current, ctx, node_type)
            remaining = max_retries - attempt
            if not assessment.should_regenerate or remaining <= 0:
                if assessment.should_regenerate:
                    logger.info(
                        "Using response (max retries reached, score: %.2f)", assessment.scores.combined
                    )
                self._record(node_id, current, assessment)
                return current

            logger.info("Regenerating (score: %.2f)", assessment.scores.combined)
            prompt = self.assembler.build_refinement_prompt(node_type, ctx, assessment, current)
            options = REFINE_OPTIONS.replace(max_tokens=self.settings.max_tokens)
            try:
                current = await self.client.generate(prompt, options, key=node_id or None)
            except RequestError as e:
                logger.warning("Validation retry failed, keeping current response: %s", e)
                self._record(node_id, current, assessment)
                return current

        return current

    def _breaker_tripped(self, node_id: str, response: str) -> bool:
        # Id-less contexts share no key, so they never trip each other
        if not node_id:
            return False
        now = self._clock()
        key = (node_id, response[:BREAKER_PREFIX_CHARS])
        last = self._attempts.get(key)
        if last is not None and now - last < self.settings.circuit_breaker_window_s:
            return True
        self._attempts[key] = now

        prune_after = self.settings.circuit_breaker_prune_s
        for stale in [k for k, ts in self._attempts.items() if now - ts > prune_after]:
            del self._attempts[stale]
        return False

    def _record(self, node_id: str, response: str, assessment: Assessment) -> Optional[NodeValidationResult]:
        if not node_id:
            return None
        result = assessment.to_result()
        self.cache.put(node_id, response, result)
        return result

    def reset(self) -> None:
        self._attempts.clear()
