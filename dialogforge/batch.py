"""Batch generation over an explicit list of node-pair tasks.

Each task fills a response node (e.g. a player choice) and the follow-up
node that answers it. Tasks run either one at a time in index order or all
together; the service's limiter bounds concurrency either way. Texts
generated for one source node are offered as siblings to later tasks of
the same source so consecutive choices do not repeat each other.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from dialogforge.protocols import DialogForgeError, GenerationResult
from dialogforge.service import DialogService
from dialogforge.types import DialogContext, GenerateContext

logger = logging.getLogger(__name__)


@dataclass
class GenerationTask:
    source: DialogContext
    response: DialogContext
    follow_up: DialogContext
    topic: str = ""
    response_siblings: List[DialogContext] = field(default_factory=list)
    follow_up_siblings: List[DialogContext] = field(default_factory=list)


@dataclass
class TaskOutcome:
    task: GenerationTask
    response: Optional[GenerationResult] = None
    follow_up: Optional[GenerationResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return (
            self.error is None
            and self.response is not None
            and self.response.ok
            and self.follow_up is not None
            and self.follow_up.ok
        )


class _SiblingTexts:
    """Texts generated so far in this run, per source node."""

    def __init__(self) -> None:
        self.responses: Dict[str, List[str]] = {}
        self.follow_ups: Dict[str, List[str]] = {}

    @staticmethod
    def as_nodes(source_id: str, suffix: str, template: DialogContext, texts: Sequence[str]) -> List[DialogContext]:
        return [
            DialogContext(node_id=f"{source_id}-{suffix}-{i}", type=template.type, text=text, tags=template.tags)
            for i, text in enumerate(texts)
        ]


async def _run_task(service: DialogService, task: GenerationTask, seen: _SiblingTexts) -> TaskOutcome:
    outcome = TaskOutcome(task=task)
    source_id = task.source.node_id
    character_info = f"TOPIC: {task.topic}" if task.topic else ""

    try:
        siblings = seen.as_nodes(source_id, "resp-sib", task.response, seen.responses.get(source_id, []))
        siblings += task.response_siblings
        outcome.response = await service.generate(
            task.response.type,
            GenerateContext(
                current=task.response,
                previous=[task.source],
                next=list(siblings),
                sibling_nodes=list(siblings),
                character_info=character_info,
            ),
        )
        if not outcome.response.ok:
            logger.warning("Response generation failed for %s: %s", task.response.node_id, outcome.response)
            return outcome
        response_text = outcome.response.text or ""
        seen.responses.setdefault(source_id, []).append(response_text)

        siblings = seen.as_nodes(source_id, "next-sib", task.follow_up, seen.follow_ups.get(source_id, []))
        siblings += task.follow_up_siblings
        answered = DialogContext(
            node_id=task.response.node_id, type=task.response.type, text=response_text, tags=task.response.tags
        )
        outcome.follow_up = await service.generate(
            task.follow_up.type,
            GenerateContext(
                current=task.follow_up,
                previous=[answered],
                next=list(siblings),
                sibling_nodes=list(siblings),
                character_info=character_info,
            ),
        )
        if outcome.follow_up.ok:
            seen.follow_ups.setdefault(source_id, []).append(outcome.follow_up.text or "")
    except DialogForgeError as e:
        logger.error("Error generating dialog for task %s -> %s: %s", source_id, task.response.node_id, e)
        outcome.error = str(e)
    return outcome


async def run_generation_tasks(
    service: DialogService,
    tasks: Sequence[GenerationTask],
    sequential: bool = False,
) -> List[TaskOutcome]:
    """Run ``tasks`` and return one outcome per task, in task order."""
    seen = _SiblingTexts()
    mode = "sequential" if sequential else "parallel"
    logger.info("Running %d generation tasks (%s)", len(tasks), mode)

    if sequential:
        outcomes = []
        for i, task in enumerate(tasks):
            logger.debug("Processing task %d/%d sequentially", i + 1, len(tasks))
            outcomes.append(await _run_task(service, task, seen))
    else:
        outcomes = list(await asyncio.gather(*(_run_task(service, t, seen) for t in tasks)))

    logger.info(
        "Completed %d %s generation tasks (%d ok)", len(tasks), mode, sum(1 for o in outcomes if o.ok)
    )
    return outcomes
