"""Tests for DialogService, the generation pipeline entry point."""

from unittest.mock import AsyncMock

import httpx
import pytest
from pydantic import ValidationError

from dialogforge import prompts
from dialogforge.config import SimilarityThresholds
from dialogforge.protocols import ErrorKind, UnsupportedNodeTypeError
from dialogforge.service import GENERATION_FAILED_MESSAGE
from dialogforge.types import GenerateContext, HistoryType, ProjectType

from tests.fakes import FakeOllama, node


def passthrough_refine(service):
    """Accept every candidate so tests control the exact backend traffic."""
    service.validator.refine = AsyncMock(side_effect=lambda text, *args, **kwargs: text)


def conversation(current_type="npcDialog", current_text="", previous_text="Will you help me find my brother?"):
    return GenerateContext(
        current=node("n2", current_type, current_text),
        previous=[node("n1", "playerResponse" if current_type == "npcDialog" else "npcDialog", previous_text)],
    )


# =============================================================================
# generate
# =============================================================================


class TestGenerate:
    """Standard generation pipeline."""

    @pytest.mark.asyncio
    async def test_isolated_node(self, make_service):
        fake = FakeOllama(default="The old mill burned down last winter.")
        service = make_service(fake)
        ctx = GenerateContext(current=node("n1"), character_info="TOPIC: A lost artifact")

        result = await service.generate("npcDialog", ctx)

        assert result.ok
        assert result.text == "The old mill burned down last winter."
        first = fake.generate_requests[0]
        assert service.settings.system_prompts.isolated_node in first["prompt"]
        assert "NEXT POSSIBLE RESPONSES" not in first["prompt"]
        assert first["options"]["temperature"] == 0.8
        assert first["options"]["top_k"] == 70

        items = service.history.items()
        assert len(items) == 1
        assert items[0].success
        assert items[0].type is HistoryType.RECREATE
        assert items[0].node_id == "n1"

    @pytest.mark.asyncio
    async def test_missing_template_fails_without_request(self, make_service, settings):
        fake = FakeOllama()
        empty = settings.merged(system_prompts={"node_types": {}, "project_types": {}})
        service = make_service(fake, empty)

        result = await service.generate("npcDialog", conversation())

        assert not result.ok
        assert result.error.kind is ErrorKind.CONFIGURATION
        assert fake.requests == []
        assert len(service.history) == 0

    @pytest.mark.asyncio
    async def test_subgraph_nodes_are_rejected(self, make_service):
        service = make_service(FakeOllama())

        with pytest.raises(UnsupportedNodeTypeError):
            await service.generate("subgraphNode", conversation())

    @pytest.mark.asyncio
    async def test_missing_current_node_is_validation_error(self, make_service):
        fake = FakeOllama()
        service = make_service(fake)

        result = await service.generate("npcDialog", GenerateContext())

        assert result.error.kind is ErrorKind.VALIDATION
        assert fake.requests == []

    @pytest.mark.asyncio
    async def test_force_validation_skips_context_check(self, make_service):
        fake = FakeOllama(default="Welcome to the harbor.")
        service = make_service(fake)
        passthrough_refine(service)

        result = await service.generate("npcDialog", GenerateContext(), force_validation=True)

        assert result.text == "Welcome to the harbor."

    @pytest.mark.asyncio
    async def test_degenerate_output_retried_warmer(self, make_service):
        fake = FakeOllama("I need more context to answer.", "The bridge is out, take the ford.")
        service = make_service(fake)
        passthrough_refine(service)

        result = await service.generate("npcDialog", conversation())

        assert result.text == "The bridge is out, take the ford."
        temps = [body["options"]["temperature"] for body in fake.generate_requests]
        assert temps == [pytest.approx(0.7), pytest.approx(0.8)]

    @pytest.mark.asyncio
    async def test_api_error_becomes_result_and_history(self, make_service):
        fake = FakeOllama(httpx.Response(500, text="boom"))
        service = make_service(fake)

        result = await service.generate("npcDialog", conversation())

        assert str(result) == "[ERROR] api: 500 - boom"
        item = service.history.items()[0]
        assert not item.success
        assert item.result == "500 - boom"

    @pytest.mark.asyncio
    async def test_undecodable_response_becomes_api_error_result(self, make_service):
        fake = FakeOllama(httpx.DecodingError("bad gzip"))
        service = make_service(fake)

        result = await service.generate("npcDialog", conversation())

        assert not result.ok
        assert result.error.kind is ErrorKind.API

    @pytest.mark.asyncio
    async def test_too_short_text_is_retried_once(self, make_service):
        fake = FakeOllama("Ok", "Ok")
        service = make_service(fake)
        passthrough_refine(service)

        result = await service.generate("npcDialog", conversation())

        assert result.error.kind is ErrorKind.GENERATION
        assert result.error.message == GENERATION_FAILED_MESSAGE
        assert len(fake.requests) == 2

    @pytest.mark.asyncio
    async def test_similar_player_response_is_regenerated_once(self, make_service):
        fake = FakeOllama("Yes, I will help you right now.", "Not a chance, find him yourself.")
        service = make_service(fake)
        passthrough_refine(service)
        ctx = conversation("playerResponse", previous_text="Will you help me find my brother?")
        ctx.sibling_nodes = [node("s1", "playerResponse", "Yes, I will help you.")]

        result = await service.generate("playerResponse", ctx)

        assert result.text == "Not a chance, find him yourself."
        first, second = fake.generate_requests
        assert "EXISTING RESPONSES (FOR CONTEXT):" in first["prompt"]
        assert first["options"]["temperature"] == pytest.approx(0.75)
        assert first["options"]["top_k"] == 100
        assert "CRITICAL: Your previous response was too similar" in second["prompt"]
        assert second["options"]["temperature"] == pytest.approx(1.2)

    @pytest.mark.asyncio
    async def test_accepted_text_is_validated_and_cached(self, make_service):
        fake = FakeOllama("The gate opens at dawn.")
        service = make_service(fake)
        ctx = GenerateContext(current=node("n1"))

        result = await service.generate("npcDialog", ctx)

        assert result.text == "The gate opens at dawn."
        assert service.get_validation_result("n1", "The gate opens at dawn.") is not None


# =============================================================================
# improve / custom / fix
# =============================================================================


class TestSecondaryOperations:
    @pytest.mark.asyncio
    async def test_improve(self, make_service):
        fake = FakeOllama("Welcome, traveler, rest by the fire.")
        service = make_service(fake)
        ctx = conversation(current_text="Hi.")

        result = await service.improve("npcDialog", ctx, "Hi.")

        assert result.text == "Welcome, traveler, rest by the fire."
        body = fake.generate_requests[0]
        assert body["options"]["temperature"] == 0.75
        assert 'CURRENT NODE (NPCDIALOG): "Hi."' in body["prompt"]
        assert service.history.items()[0].type is HistoryType.IMPROVE

    @pytest.mark.asyncio
    async def test_custom_prompt_keeps_two_sentences(self, make_service):
        fake = FakeOllama("CHARACTER: The storm breaks. Rain floods the road. Thunder rolls.")
        service = make_service(fake)
        ctx = GenerateContext(current=node("c1", "customNode"))

        result = await service.generate_with_custom_prompt("customNode", ctx, "Describe the storm.")

        assert result.text == "The storm breaks. Rain floods the road."
        assert "Describe the storm." in fake.prompts[0]
        assert service.history.items()[0].type is HistoryType.CUSTOM

    @pytest.mark.asyncio
    async def test_custom_prompt_validates_context(self, make_service):
        fake = FakeOllama()
        service = make_service(fake)

        result = await service.generate_with_custom_prompt("npcDialog", GenerateContext(), "Be rude.")

        assert result.error.kind is ErrorKind.VALIDATION
        assert fake.requests == []

    @pytest.mark.asyncio
    async def test_unanswered_question_fix(self, make_service):
        fake = FakeOllama("It lies under the altar stone.")
        service = make_service(fake)
        ctx = conversation(previous_text="Where is the key?")

        result = await service.fix_issue("contextGap", ctx, "Reply ignores the question")

        assert result.text == "It lies under the altar stone."
        prompt = fake.prompts[0]
        assert prompts.QUESTION_ANSWER_SYSTEM_PROMPT in prompt
        assert 'Fix this context gap: "Question unanswered"' in prompt

    @pytest.mark.asyncio
    async def test_deadend_fix_writes_npc_follow_up(self, make_service):
        fake = FakeOllama("Wait, before you go, take this map.")
        service = make_service(fake)
        ctx = GenerateContext(current=node("p9", "playerResponse", "Goodbye."))

        result = await service.fix_issue("deadend", ctx)

        assert result.text == "Wait, before you go, take this map."
        assert 'The player has said: "Goodbye."' in fake.prompts[0]

    @pytest.mark.asyncio
    async def test_fix_requires_current_node(self, make_service):
        service = make_service(FakeOllama())

        result = await service.fix_issue("toneShift", GenerateContext())

        assert result.error.kind is ErrorKind.VALIDATION


# =============================================================================
# Quality, config and lifecycle
# =============================================================================


class TestQuality:
    @pytest.mark.asyncio
    async def test_evaluate_quality_uses_cache(self, make_service):
        fake = FakeOllama()
        service = make_service(fake)
        ctx = GenerateContext(current=node("n1"))

        result = await service.evaluate_quality("The gate opens at dawn.", ctx, "npcDialog")

        assert result.scores.combined == pytest.approx(0.7)
        assert service.get_validation_result("n1", "The gate opens at dawn.") is result
        assert service.get_validation_result("n1", "Changed text.") is None
        assert fake.requests == []


class TestConfiguration:
    def test_update_config_reaches_every_component(self, make_service):
        service = make_service(FakeOllama())

        service.update_config(model="mistral", max_concurrent=5, system_prompts={"diversity": "Be different."})

        assert service.client.model == "mistral"
        assert service.limiter.max_concurrent == 5
        assert service.validator.settings.model == "mistral"
        assert service.assembler.templates.diversity == "Be different."
        assert service.assembler.templates.isolated_node == prompts.ISOLATED_NODE_PROMPT

    @pytest.mark.asyncio
    async def test_partial_similarity_update_keeps_pipeline_working(self, make_service):
        fake = FakeOllama("Yes, I will help you right now.", "Not a chance, find him yourself.")
        service = make_service(fake)
        passthrough_refine(service)

        service.update_config(similarity={"word_overlap_ratio": 0.5})

        assert isinstance(service.settings.similarity, SimilarityThresholds)
        assert service.diversity.settings.similarity.word_overlap_ratio == 0.5
        assert service.diversity.settings.similarity.min_prefix_length == 8

        ctx = conversation("playerResponse")
        ctx.sibling_nodes = [node("s1", "playerResponse", "Yes, I will help you.")]
        result = await service.generate("playerResponse", ctx)

        assert result.ok
        assert result.text == "Not a chance, find him yourself."

    @pytest.mark.asyncio
    async def test_project_type_given_as_string(self, make_service):
        fake = FakeOllama(default="The rain had not stopped for three days.")
        service = make_service(fake)
        passthrough_refine(service)

        service.update_config(project_type="novel", temperature="0.9")

        assert service.settings.project_type is ProjectType.NOVEL
        assert service.settings.temperature == 0.9
        result = await service.generate("npcDialog", conversation())

        assert result.ok
        assert "NOVEL or SCRIPT" in fake.generate_requests[0]["prompt"]

    def test_invalid_update_is_rejected_and_settings_kept(self, make_service):
        service = make_service(FakeOllama())

        with pytest.raises(ValidationError):
            service.update_config(project_type="opera")

        assert service.settings.project_type is ProjectType.GAME

    @pytest.mark.asyncio
    async def test_list_models_and_context_manager(self, make_service):
        fake = FakeOllama(models=["llama3.2:latest"])

        async with make_service(fake) as service:
            assert await service.list_models() == ["llama3.2:latest"]
