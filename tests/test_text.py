"""Tests for cleaning raw model output."""

import pytest

from dialogforge.protocols import ErrorKind, RequestError
from dialogforge.text import (
    clean_custom_prompt_text,
    clean_generated_text,
    is_refusal,
    strip_format_markers,
    strip_quotes,
)


class TestStripQuotes:
    def test_removes_straight_quotes(self):
        assert strip_quotes('"Stay close."') == "Stay close."

    def test_removes_curly_quotes(self):
        assert strip_quotes("“Stay close.”") == "Stay close."

    def test_removes_only_one_layer(self):
        assert strip_quotes("\"'Stay close.'\"") == "'Stay close.'"

    def test_empty(self):
        assert strip_quotes("") == ""


def test_strip_format_markers():
    assert strip_format_markers("[NPCDIALOG]: Hello") == ": Hello"
    assert strip_format_markers("[npcDialog] Hello") == "Hello"


class TestRefusalDetection:
    """Refusals are rejected; short legitimate lines are kept."""

    @pytest.mark.parametrize(
        "text",
        [
            "I need more context to write this line.",
            "As an AI language model, I cannot do that.",
            "I apologize, but I need the previous dialog.",
            "x",
        ],
    )
    def test_refusals(self, text):
        assert is_refusal(text)

    @pytest.mark.parametrize("text", ["Yes.", "No", "Why?", "The bridge is out."])
    def test_short_valid_lines(self, text):
        assert not is_refusal(text)


class TestCleanGeneratedText:
    def test_strips_quotes_and_markers(self):
        assert clean_generated_text('"[NPCDIALOG] The gate is sealed."') == "The gate is sealed."

    def test_empty_output_is_generation_error(self):
        with pytest.raises(RequestError) as exc_info:
            clean_generated_text('""')
        assert exc_info.value.kind is ErrorKind.GENERATION

    def test_refusal_is_generation_error(self):
        with pytest.raises(RequestError) as exc_info:
            clean_generated_text("I don't have enough context to answer.")
        assert exc_info.value.kind is ErrorKind.GENERATION


class TestCleanCustomPromptText:
    def test_keeps_first_two_sentences(self):
        raw = "CHARACTER: First line. Second line! Third line? Fourth."
        assert clean_custom_prompt_text(raw) == "First line. Second line!"

    def test_strips_speaker_prefix(self):
        assert clean_custom_prompt_text("[Guard]: Halt.") == "Halt."

    def test_empty_raises(self):
        with pytest.raises(RequestError):
            clean_custom_prompt_text("   ")
