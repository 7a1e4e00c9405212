"""Shared fixtures for the chat test suite."""

import asyncio

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from farmstand_chat.api.app import create_app
from farmstand_chat.config import Settings
from farmstand_chat.domain.models import PartyProfile, TopicInfo
from farmstand_chat.repositories.memory import InMemoryRepository
from farmstand_chat.services.chat import ChatService
from farmstand_chat.services.identity import StaticIdentityProvider


@pytest.fixture
def settings() -> Settings:
    return Settings(rate_limit=10_000, send_timeout=1.0, store_timeout=1.0)


@pytest.fixture
def repository() -> InMemoryRepository:
    repository = InMemoryRepository()
    repository.put_profile(PartyProfile(id="u1", username="buyer1", full_name="Ada Buyer"))
    repository.put_profile(PartyProfile(id="u2", username="farmer2", full_name="Ben Farmer"))
    repository.put_topic(TopicInfo(id="p42", title="Heirloom tomatoes", image_urls=["t.jpg"]))
    return repository


@pytest.fixture
def chat_for(repository, settings):
    """Build a ChatService acting as the given party."""

    def build(party, repo=None):
        return ChatService(repo or repository, StaticIdentityProvider(party), settings)

    return build


@pytest.fixture
def eventually():
    """Wait until a condition holds, letting background tasks run."""

    async def wait(condition, timeout=1.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return wait


@pytest_asyncio.fixture
async def client(settings, repository):
    app = create_app(settings, repository)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
