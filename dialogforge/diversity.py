"""Diversity enforcement against sibling and earlier responses.

After validation accepts a response, it is compared with the texts of
related nodes (siblings, plus same-type nodes along the dialog chain). A
near-duplicate gets exactly one regeneration at a boosted temperature with
an explicit list of responses to avoid. There is no further recursion.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from dialogforge.config import Settings, SimilarityThresholds
from dialogforge.context import ContextAssembler
from dialogforge.models.ollama import GenerationOptions, OllamaClient
from dialogforge.types import GenerateContext

logger = logging.getLogger(__name__)

DIVERSITY_NODE_TYPES = frozenset({"playerResponse", "npcDialog", "characterDialogNode"})
MAX_TEMPERATURE = 2.0


@dataclass
class DiversityOutcome:
    text: str
    prompt: str
    regenerated: bool = False


def extract_phrases(text: str) -> List[str]:
    """All 2- and 3-word phrases of ``text``."""
    words = text.split()
    pairs = [f"{a} {b}" for a, b in zip(words, words[1:])]
    triples = [f"{a} {b} {c}" for a, b, c in zip(words, words[1:], words[2:])]
    return pairs + triples


def is_similar(
    generated: str,
    existing: Sequence[str],
    thresholds: Optional[SimilarityThresholds] = None,
) -> bool:
    """True when ``generated`` shares a prefix, word set or phrase with any existing text."""
    if not generated:
        return False
    t = thresholds or SimilarityThresholds()

    candidate = generated.lower().strip()
    others = [e.lower().strip() for e in existing if e]

    prefix = " ".join(candidate.split(" ")[:3])
    if len(prefix) >= t.min_prefix_length and any(o.startswith(prefix) for o in others):
        return True

    candidate_words = set(candidate.split())
    candidate_phrases = [p for p in extract_phrases(candidate) if len(p) >= t.min_phrase_length]
    for other in others:
        other_words = set(other.split())
        smaller = min(len(candidate_words), len(other_words))
        if smaller:
            common = sum(1 for w in candidate_words if len(w) >= t.min_word_length and w in other_words)
            if common / smaller > t.word_overlap_ratio:
                return True

        other_phrases = set(extract_phrases(other))
        if any(p in other_phrases for p in candidate_phrases):
            return True

    return False


class DiversityEnforcer:
    def __init__(self, settings: Settings, assembler: ContextAssembler, client: OllamaClient) -> None:
        self.settings = settings
        self.assembler = assembler
        self.client = client

    def related_responses(self, node_type: str, ctx: GenerateContext) -> List[str]:
        """Texts the new response should not duplicate, in first-seen order."""
        if ctx.ignore_connections:
            return []
        related = [n.text for n in ctx.sibling_nodes if n.text]
        chain = ctx.dialog_chain
        if chain is not None:
            related.extend(
                n.text for n in chain.next if n.type == node_type and n.node_id != ctx.node_id and n.text
            )
            related.extend(n.text for n in chain.previous if n.type == node_type and n.text)
        return list(dict.fromkeys(related))

    def applies_to(self, node_type: str) -> bool:
        return node_type in DIVERSITY_NODE_TYPES

    async def enforce(
        self,
        text: str,
        *,
        node_type: str,
        base_prompt: str,
        related: Sequence[str],
        options: GenerationOptions,
        key: Optional[str] = None,
    ) -> DiversityOutcome:
        """Regenerate once when ``text`` is too close to a related response."""
        if not related or not self.applies_to(node_type):
            return DiversityOutcome(text=text, prompt=base_prompt)
        if not is_similar(text, related, self.settings.similarity):
            return DiversityOutcome(text=text, prompt=base_prompt)

        logger.info("Similar to existing %s - forcing differentiation", node_type)
        prompt = self.assembler.build_forced_differentiation_prompt(base_prompt, related)
        boosted = options.replace(
            temperature=min(MAX_TEMPERATURE, self.settings.temperature + self.settings.diversity_boost),
            top_p=0.95,
            top_k=100,
        )
        regenerated = await self.client.generate(prompt, boosted, key=key)
        return DiversityOutcome(text=regenerated, prompt=prompt, regenerated=True)
