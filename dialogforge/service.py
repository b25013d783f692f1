"""
DialogForge service - generation, validation and refinement of dialog nodes.

This module provides the DialogService class, the single entry point an
editor talks to. It owns one instance of every pipeline component and wires
them together::

    ContextAssembler -> OllamaClient (through ConcurrencyLimiter)
        -> ResponseValidator -> DiversityEnforcer -> ValidationCache + HistoryLedger

Every public generation method returns a GenerationResult instead of
raising; only UnsupportedNodeTypeError escapes.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, List, Optional

from dialogforge import prompts
from dialogforge.cache import TagFormattingCache, ValidationCache
from dialogforge.config import Settings, get_settings
from dialogforge.context import ContextAssembler
from dialogforge.diversity import DiversityEnforcer
from dialogforge.history import HistoryLedger
from dialogforge.limiter import ConcurrencyLimiter
from dialogforge.models.ollama import GenerationOptions, OllamaClient
from dialogforge.protocols import (
    ContextValidationError,
    DialogForgeError,
    ErrorKind,
    GenerationResult,
    RequestError,
    UnsupportedNodeTypeError,
)
from dialogforge.tags import TagRegistry, TagResolver
from dialogforge.text import clean_custom_prompt_text, strip_quotes
from dialogforge.types import (
    UNSUPPORTED_NODE_TYPES,
    GenerateContext,
    HistoryType,
    NodeValidationResult,
)
from dialogforge.validation import ResponseValidator

logger = logging.getLogger(__name__)

# Node types that cannot be generated without a current node
CURRENT_NODE_REQUIRED = frozenset({"npcDialog", "playerResponse", "narratorNode", "characterDialogNode"})

MIN_TEXT_LENGTH = 3
IMPROVE_OPTIONS = GenerationOptions(temperature=0.75, timeout_ms=20000)
CUSTOM_OPTIONS = GenerationOptions(temperature=0.8, top_p=0.95, top_k=50, timeout_ms=20000)
CUSTOM_NODE_TIMEOUT_MS = 25000

GENERATION_FAILED_MESSAGE = "Failed to generate dialog content. Please try again."


class DialogService:
    """Generate, improve and evaluate text for one dialog node at a time.

    Examples:
        async with DialogService() as service:
            result = await service.generate("npcDialog", context)
            if result.ok:
                print(result.text)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        client: Optional[OllamaClient] = None,
        tags: Optional[TagRegistry] = None,
        validation_cache: Optional[ValidationCache] = None,
        history: Optional[HistoryLedger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the service.

        Args:
            settings: Runtime settings. If None, uses the cached environment settings.
            client: Optional pre-built backend client (tests inject one with a mock transport).
            tags: Registry used to resolve tag ids attached to nodes.
            validation_cache: Store for NodeValidationResult records.
            history: Ledger that receives one item per generation call.
            clock: Monotonic clock for the circuit breaker and cache ages.
        """
        self._settings = settings or get_settings()
        s = self._settings

        self.limiter = client.limiter if client is not None else ConcurrencyLimiter(s.max_concurrent)
        self.client = client or OllamaClient(
            s.base_url,
            s.model,
            limiter=self.limiter,
            request_timeout_ms=s.request_timeout_ms,
        )
        self.validation_cache = validation_cache or ValidationCache(s.validation_cache_ttl_s, clock=clock)
        self.history = history or HistoryLedger(s.history_limit)

        self.resolver = TagResolver(tags, TagFormattingCache())
        self.assembler = ContextAssembler(s, self.resolver)
        self.validator = ResponseValidator(s, self.assembler, self.client, self.validation_cache, clock=clock)
        self.diversity = DiversityEnforcer(s, self.assembler, self.client)

        logger.debug("DialogService initialized: model=%s base_url=%s", s.model, s.base_url)

    # =========================================================================
    # Configuration
    # =========================================================================

    @property
    def settings(self) -> Settings:
        return self._settings

    def update_config(self, **changes: Any) -> Settings:
        """Apply validated settings changes; nested ``similarity`` and ``system_prompts`` merge per key."""
        self._settings = self._settings.merged(**changes)
        s = self._settings
        self.client.configure(base_url=s.base_url, model=s.model, request_timeout_ms=s.request_timeout_ms)
        self.limiter.set_max_concurrent(s.max_concurrent)
        for component in (self.assembler, self.validator, self.diversity):
            component.settings = s
        logger.info("Configuration updated: model=%s base_url=%s", s.model, s.base_url)
        return s

    # =========================================================================
    # Context checks
    # =========================================================================

    @staticmethod
    def _check_node_type(node_type: str) -> None:
        if node_type in UNSUPPORTED_NODE_TYPES:
            raise UnsupportedNodeTypeError(f"Node type {node_type} cannot be generated")

    @staticmethod
    def validate_context(node_type: str, ctx: GenerateContext) -> None:
        """Raise ContextValidationError when ``ctx`` lacks what ``node_type`` needs."""
        if node_type in CURRENT_NODE_REQUIRED and ctx.current is None:
            raise ContextValidationError(
                f"Insufficient context: Missing required context information for node type {node_type}"
            )
        if not ctx.previous and ctx.conversation_history:
            logger.warning("%s without previous context (not a starting node)", node_type)

    # =========================================================================
    # Generation
    # =========================================================================

    def _generation_options(self, node_type: str, ctx: GenerateContext, related: List[str]) -> GenerationOptions:
        base = self._settings.temperature
        options = GenerationOptions(max_tokens=self._settings.max_tokens)
        if ctx.is_isolated:
            return options.replace(temperature=max(base, 0.8), top_k=70)
        if node_type == "playerResponse":
            boost = 0.1 if related else 0.0
            return options.replace(
                temperature=min(base + 0.1, base - 0.05 + boost),
                top_k=min(160, 80 + len(related) * 20),
            )
        if node_type == "enemyDialog":
            return options.replace(temperature=base * 0.85, top_k=30)
        return options.replace(temperature=base)

    async def _request(self, prompt: str, options: GenerationOptions, key: Optional[str]) -> str:
        """One backend request; a GENERATION failure gets one retry at a higher temperature."""
        try:
            return await self.client.generate(prompt, options, key=key)
        except RequestError as e:
            if e.kind is not ErrorKind.GENERATION:
                raise
            logger.warning("Degenerate output (%s), retrying at higher temperature", e)
            return await self.client.generate(prompt, _warmer(options), key=key)

    async def generate(
        self,
        node_type: str,
        ctx: GenerateContext,
        *,
        force_validation: bool = False,
        system_prompt: Optional[str] = None,
    ) -> GenerationResult:
        """Generate fresh text for the node described by ``ctx``.

        Args:
            node_type: Type of the node being generated (``npcDialog``, ``playerResponse``, ...).
            ctx: Neighbors, tags and character info for the node.
            force_validation: Skip the structural context check.
            system_prompt: Replace the configured system template for this call.

        Raises:
            UnsupportedNodeTypeError: For subgraph container nodes.
        """
        self._check_node_type(node_type)
        key = ctx.node_id or None
        started = time.perf_counter()
        prompt = ""
        try:
            if not force_validation:
                self.validate_context(node_type, ctx)

            prompt = self.assembler.build_prompt(node_type, ctx, system_prompt)
            related = self.diversity.related_responses(node_type, ctx)
            if related:
                logger.debug("Found %d related responses to avoid duplication", len(related))
                prompt += self.assembler.build_diversity_block(related)

            options = self._generation_options(node_type, ctx, related)
            logger.debug(
                "Generating %s: temp=%.2f top_p=%s top_k=%s",
                node_type,
                options.temperature,
                options.top_p,
                options.top_k,
            )

            raw = await self._request(prompt, options, key)
            text = strip_quotes(await self.validator.refine(raw, ctx, node_type))

            outcome = await self.diversity.enforce(
                text,
                node_type=node_type,
                base_prompt=prompt,
                related=related,
                options=options,
                key=key,
            )
            if outcome.regenerated:
                text = strip_quotes(outcome.text)
                self._record(ctx, outcome.prompt, text, True, HistoryType.RECREATE, started)
                return GenerationResult.success(text)

            if len(text.strip()) < MIN_TEXT_LENGTH:
                logger.warning("Empty or too short response (length %d), retrying", len(text))
                retry = await self.client.generate(prompt, _warmer(options), key=key)
                text = strip_quotes(await self.validator.refine(retry, ctx, node_type))
                if len(text.strip()) < MIN_TEXT_LENGTH:
                    raise RequestError(ErrorKind.GENERATION, GENERATION_FAILED_MESSAGE)

            self._record(ctx, prompt, text, True, HistoryType.RECREATE, started)
            return GenerationResult.success(text)
        except DialogForgeError as e:
            logger.error("Error generating dialog for %s: %s", node_type, e)
            if prompt:
                self._record(ctx, prompt, str(e), False, HistoryType.RECREATE, started)
            return GenerationResult.from_exception(e)

    async def improve(self, node_type: str, ctx: GenerateContext, current_text: str) -> GenerationResult:
        """Rewrite ``current_text`` keeping its meaning."""
        self._check_node_type(node_type)
        started = time.perf_counter()
        prompt = ""
        try:
            self.validate_context(node_type, ctx)
            prompt = self.assembler.build_improve_prompt(node_type, ctx, current_text)
            options = IMPROVE_OPTIONS.replace(max_tokens=self._settings.max_tokens)
            text = await self.client.generate(prompt, options, key=ctx.node_id or None)
            self._record(ctx, prompt, text, True, HistoryType.IMPROVE, started)
            return GenerationResult.success(text)
        except DialogForgeError as e:
            logger.error("Error improving dialog for %s: %s", node_type, e)
            if prompt:
                self._record(ctx, prompt, str(e), False, HistoryType.IMPROVE, started)
            return GenerationResult.from_exception(e)

    async def generate_with_custom_prompt(
        self,
        node_type: str,
        ctx: GenerateContext,
        custom_prompt: str,
        system_prompt: Optional[str] = None,
        *,
        skip_context_validation: bool = False,
    ) -> GenerationResult:
        """Generate text following the author's own instructions."""
        self._check_node_type(node_type)
        started = time.perf_counter()
        prompt = ""
        try:
            if not skip_context_validation:
                self.validate_context(node_type, ctx)
            prompt = self.assembler.build_custom_prompt(node_type, ctx, custom_prompt, system_prompt)
            options = CUSTOM_OPTIONS.replace(max_tokens=self._settings.max_tokens)
            if node_type == "customNode":
                options = options.replace(timeout_ms=CUSTOM_NODE_TIMEOUT_MS)

            raw = await self.client.generate(prompt, options, key=ctx.node_id or None)
            text = clean_custom_prompt_text(raw)
            self._record(ctx, prompt, text, True, HistoryType.CUSTOM, started)
            return GenerationResult.success(text)
        except DialogForgeError as e:
            logger.error("Custom prompt generation failed for %s: %s", node_type, e)
            if prompt:
                self._record(ctx, prompt, str(e), False, HistoryType.CUSTOM, started)
            return GenerationResult.from_exception(e)

    async def fix_issue(self, issue_type: str, ctx: GenerateContext, message: str = "") -> GenerationResult:
        """Rewrite the current node to resolve a reported graph issue.

        ``issue_type`` is one of ``deadend``, ``inconsistency``, ``contextGap``,
        ``questionAnswer``, ``toneShift``; anything else uses the general fix.
        """
        if ctx.current is None:
            return GenerationResult.failure(ErrorKind.VALIDATION, "Issue fix requires a current node")
        current = ctx.current
        previous_text = ctx.previous[-1].text if ctx.previous else ""

        # A question left unanswered by an empty reply
        if issue_type == "contextGap" and "?" in previous_text and not current.text.strip():
            issue_type = "questionAnswer"

        prompt = self.assembler.build_fix_prompt(
            issue_type, message=message, current_text=current.text, previous_text=previous_text
        )
        logger.info("Fixing %s issue for node %s", issue_type, current.node_id)

        if issue_type == "deadend":
            follow_up = GenerateContext(
                previous=[current],
                dialog_chain=ctx.dialog_chain,
                project_type=ctx.project_type,
            )
            return await self.generate_with_custom_prompt(
                "npcDialog", follow_up, prompt, skip_context_validation=True
            )

        system = prompts.QUESTION_ANSWER_SYSTEM_PROMPT if issue_type == "questionAnswer" else None
        return await self.generate_with_custom_prompt(
            current.type, ctx, prompt, system, skip_context_validation=True
        )

    # =========================================================================
    # Quality
    # =========================================================================

    async def evaluate_quality(
        self, text: str, ctx: GenerateContext, node_type: str
    ) -> Optional[NodeValidationResult]:
        """Score existing text without regenerating it; None when the node has no id."""
        try:
            return self.validator.evaluate(text, ctx, node_type)
        except DialogForgeError as e:
            logger.error("Failed to evaluate node quality: %s", e)
            return None

    def get_validation_result(self, node_id: str, text: str) -> Optional[NodeValidationResult]:
        return self.validation_cache.get(node_id, text)

    # =========================================================================
    # Backend
    # =========================================================================

    async def list_models(self) -> List[str]:
        return await self.client.list_models()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "DialogService":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # =========================================================================
    # History
    # =========================================================================

    def _record(
        self,
        ctx: GenerateContext,
        prompt: str,
        result: str,
        success: bool,
        type: HistoryType,
        started: float,
    ) -> None:
        self.history.record(
            node_id=ctx.node_id,
            prompt=prompt,
            result=result,
            success=success,
            type=type,
            execution_time_ms=(time.perf_counter() - started) * 1000,
        )


def _warmer(options: GenerationOptions) -> GenerationOptions:
    return options.replace(temperature=min(0.9, options.temperature + 0.1))

