"""
Pytest fixtures and test configuration for dialogforge tests.
"""

from typing import Optional
from unittest.mock import AsyncMock

import httpx
import pytest

from dialogforge.config import Settings
from dialogforge.limiter import ConcurrencyLimiter
from dialogforge.models.ollama import OllamaClient
from dialogforge.service import DialogService
from dialogforge.types import CharacterVoice, Tag, TagMetadata

from tests.fakes import FakeClock, FakeOllama


@pytest.fixture
def settings():
    """Settings isolated from the developer's environment file."""
    return Settings(_env_file=None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_client():
    """Build an OllamaClient wired to a FakeOllama backend with a recorded sleep."""

    def _make(fake: FakeOllama, **kwargs) -> OllamaClient:
        kwargs.setdefault("sleep", AsyncMock())
        kwargs.setdefault("limiter", ConcurrencyLimiter(3))
        return OllamaClient(
            kwargs.pop("base_url", "http://ollama.test"),
            kwargs.pop("model", "llama3.2:latest"),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_service(settings, make_client, clock):
    """Build a DialogService over a FakeOllama backend."""

    def _make(fake: FakeOllama, service_settings: Optional[Settings] = None, **kwargs) -> DialogService:
        return DialogService(
            service_settings or settings,
            client=make_client(fake),
            clock=clock,
            **kwargs,
        )

    return _make


@pytest.fixture
def quest_tag():
    return Tag(
        id="quest-1",
        label="Recover the Moonstone",
        type="quest",
        content="Find the stolen moonstone hidden in the abandoned mill",
        importance=5,
    )


@pytest.fixture
def location_tag():
    return Tag(id="loc-1", label="Old Mill", type="location", content="A crumbling mill by the river")


@pytest.fixture
def character_tag():
    return Tag(
        id="char-1",
        label="Mira",
        type="npc",
        content="A wary smuggler who owes the player a favor",
        metadata=TagMetadata(
            character_voice=CharacterVoice(
                speech_patterns=["Listen here", "mark my words"],
                conversation_style="casual",
                trust_level=2,
                personal_motivations=["Protect her smuggling routes", "Repay her debts"],
            )
        ),
    )
