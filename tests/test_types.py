"""Tests for dialogforge shared types and result contracts."""

import pytest

from dialogforge.protocols import (
    ConfigurationError,
    ErrorKind,
    GenerationResult,
    RequestError,
)
from dialogforge.types import (
    DialogContext,
    GenerateContext,
    ProjectType,
    Tag,
    ValidationScores,
    combine_scores,
)


class TestTag:
    @pytest.mark.parametrize("importance", [0, 6])
    def test_importance_out_of_range_raises(self, importance):
        with pytest.raises(ValueError):
            Tag(id="t", label="T", type="quest", importance=importance)

    def test_importance_bounds_accepted(self):
        assert Tag(id="t", label="T", type="quest", importance=1).importance == 1
        assert Tag(id="t", label="T", type="quest", importance=5).importance == 5


class TestScores:
    def test_combined_score_weights(self):
        assert combine_scores(0.8, 0.5) == pytest.approx(0.68)
        assert ValidationScores.from_components(0.8, 0.5).combined == pytest.approx(0.68)


class TestGenerateContext:
    def test_from_dict_accepts_editor_json(self):
        ctx = GenerateContext.from_dict(
            {
                "current": {"nodeId": "n2", "type": "npcDialog", "text": ""},
                "previous": [{"nodeId": "n1", "type": "playerResponse", "text": "Hello?"}],
                "projectType": "novel",
                "characterInfo": "TOPIC: Greetings",
            }
        )

        assert ctx.node_id == "n2"
        assert ctx.previous[0].text == "Hello?"
        assert ctx.project_type is ProjectType.NOVEL
        assert not ctx.is_isolated

    def test_isolation(self):
        current = DialogContext(node_id="n1", type="npcDialog")
        assert GenerateContext(current=current).is_isolated
        assert GenerateContext(
            current=current, previous=[current], ignore_connections=True
        ).is_isolated

    def test_dialog_context_is_immutable(self):
        node = DialogContext(node_id="n1", type="npcDialog", tags=["a"])
        assert node.tags == ("a",)
        with pytest.raises(AttributeError):
            node.text = "changed"


class TestGenerationResult:
    def test_success(self):
        result = GenerationResult.success("Hello.")
        assert result.ok
        assert str(result) == "Hello."
        assert result.unwrap() == "Hello."

    def test_failure_renders_error_string(self):
        result = GenerationResult.failure(ErrorKind.API, "500 - boom")
        assert not result.ok
        assert str(result) == "[ERROR] api: 500 - boom"
        with pytest.raises(RequestError):
            result.unwrap()

    def test_from_exception_keeps_kind(self):
        result = GenerationResult.from_exception(ConfigurationError("no template"))
        assert result.error.kind is ErrorKind.CONFIGURATION
        assert result.error.message == "no template"

    def test_retryable_kinds(self):
        assert ErrorKind.TIMEOUT.retryable
        assert ErrorKind.SERVICE_UNAVAILABLE.retryable
        assert not ErrorKind.API.retryable
