"""Cleaning of raw model output."""

from __future__ import annotations

import re

from dialogforge.protocols import ErrorKind, RequestError

_QUOTE_CHARS = "\"'“”‘’"
_LEADING_QUOTE = re.compile(f"^[{_QUOTE_CHARS}]")
_TRAILING_QUOTE = re.compile(f"[{_QUOTE_CHARS}]$")

# Node-type markers the model sometimes echoes back from the prompt
_FORMAT_MARKERS = re.compile(
    r"\[(?:NPCDIALOG|PLAYERDIALOG|CHARACTERDIALOG|NARRATORDIALOG|SCENEDESCRIPTION|"
    r"PLAYERCHOICE|ENEMYDIALOG)\]\s*",
    re.IGNORECASE,
)

REFUSAL_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"I need (more|additional) context",
        r"I don't have (enough|sufficient) (context|information)",
        r"Please provide (me with )?(the|more) context",
        r"I can't (generate|create|provide) (a|an) (response|answer)",
        r"I apologize, but I (need|require)",
        r"As an AI language model",
        r"I am an AI",
    )
)

_SINGLE_SENTENCE = re.compile(r"^[A-Z][^.!?]*[.!]$")
_YES_NO = re.compile(r"^(Yes|No)\.?$")
_SENTENCES = re.compile(r"[^.!?]+[.!?]+")


def strip_quotes(text: str) -> str:
    """Remove one layer of wrapping quotes (straight or curly)."""
    if not text:
        return ""
    text = text.strip()
    text = _LEADING_QUOTE.sub("", text, count=1)
    text = _TRAILING_QUOTE.sub("", text, count=1)
    return text.strip()


def strip_format_markers(text: str) -> str:
    return _FORMAT_MARKERS.sub("", text).strip()


def is_refusal(text: str) -> bool:
    """True when ``text`` looks like the model declining instead of writing dialog.

    Questions and short well-formed answers ("Yes.", a single sentence) are
    legitimate output even when brief.
    """
    if any(p.search(text) for p in REFUSAL_PATTERNS):
        return True
    if "?" in text:
        return False
    if _SINGLE_SENTENCE.match(text):
        return False
    if _YES_NO.match(text.strip()):
        return False
    return len(text) < 2


def clean_generated_text(raw: str) -> str:
    """Strip quotes and echoed markers; raise GENERATION errors for unusable output."""
    cleaned = strip_quotes(raw or "")
    cleaned = strip_format_markers(cleaned)
    cleaned = strip_quotes(cleaned)

    if not cleaned:
        raise RequestError(ErrorKind.GENERATION, "Generated text is empty after cleaning")
    if is_refusal(cleaned):
        raise RequestError(ErrorKind.GENERATION, cleaned)
    return cleaned


def clean_custom_prompt_text(raw: str, max_sentences: int = 2) -> str:
    """Clean free-form custom-prompt output and keep the first sentences."""
    cleaned = strip_quotes(raw or "")
    cleaned = re.sub(r"^```\s*|```\s*$", "", cleaned)
    cleaned = re.sub(r"^CHARACTER:?\s*", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"^\[.*?\]:\s*", "", cleaned)
    cleaned = cleaned.strip()

    sentences = _SENTENCES.findall(cleaned)
    if len(sentences) > max_sentences:
        cleaned = " ".join(s.strip() for s in sentences[:max_sentences])

    if not cleaned:
        raise RequestError(ErrorKind.GENERATION, "Generated text is empty")
    return cleaned
