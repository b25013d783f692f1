"""Tests for batch generation over node-pair tasks."""

from unittest.mock import AsyncMock

import httpx
import pytest

from dialogforge.batch import GenerationTask, run_generation_tasks

from tests.fakes import FakeOllama, node


@pytest.fixture
def make_batch_service(make_service):
    def _make(fake):
        service = make_service(fake)
        service.validator.refine = AsyncMock(side_effect=lambda text, *args, **kwargs: text)
        return service

    return _make


def task(source_id, index, response_type="playerResponse", topic="The old mill"):
    return GenerationTask(
        source=node(source_id, "npcDialog", "Will you come with me to the mill?"),
        response=node(f"{source_id}-r{index}", response_type),
        follow_up=node(f"{source_id}-f{index}", "npcDialog"),
        topic=topic,
    )


class TestSequential:
    """Tasks run in index order and see earlier siblings."""

    @pytest.mark.asyncio
    async def test_later_tasks_see_earlier_texts(self, make_batch_service):
        fake = FakeOllama(
            "Sure, lead the way.",
            "Follow me to the old mill.",
            "No, I will stay here.",
            "Then stay and rot.",
        )
        service = make_batch_service(fake)

        outcomes = await run_generation_tasks(service, [task("s1", 0), task("s1", 1)], sequential=True)

        assert [o.ok for o in outcomes] == [True, True]
        assert outcomes[0].response.text == "Sure, lead the way."
        assert outcomes[0].follow_up.text == "Follow me to the old mill."
        assert outcomes[1].response.text == "No, I will stay here."
        assert outcomes[1].follow_up.text == "Then stay and rot."

        prompts = fake.prompts
        assert "TOPIC: The old mill" in prompts[0]
        assert '"Sure, lead the way."' not in prompts[0]
        assert '"Sure, lead the way."' in prompts[2]
        assert '"Follow me to the old mill."' in prompts[3]
        # The follow-up is generated against the new response
        assert "LAST MESSAGE: Sure, lead the way." in prompts[1]

    @pytest.mark.asyncio
    async def test_failed_response_skips_follow_up(self, make_batch_service):
        fake = FakeOllama(
            httpx.Response(500, text="boom"),
            "Maybe another time.",
            "Suit yourself.",
        )
        service = make_batch_service(fake)

        outcomes = await run_generation_tasks(service, [task("s1", 0), task("s1", 1)], sequential=True)

        assert not outcomes[0].ok
        assert outcomes[0].follow_up is None
        assert outcomes[1].ok
        assert len(fake.requests) == 3


class TestParallel:
    @pytest.mark.asyncio
    async def test_one_failing_task_does_not_abort_others(self, make_batch_service):
        fake = FakeOllama(default="A fine answer for you.")
        service = make_batch_service(fake)

        outcomes = await run_generation_tasks(
            service,
            [task("s1", 0), task("s2", 0, response_type="subgraphNode")],
        )

        assert outcomes[0].ok
        assert outcomes[1].error is not None
        assert "subgraphNode" in outcomes[1].error
        assert outcomes[1].response is None

    @pytest.mark.asyncio
    async def test_empty_task_list(self, make_batch_service):
        assert await run_generation_tasks(make_batch_service(FakeOllama()), []) == []
