"""Shared test fixtures and configuration for backend tests.

The app under test runs against fakeredis and an in-memory project
repository. TestClient is always entered as a context manager so the
lifespan, every WebSocket session and any seeding calls share one event loop.
"""
import threading
from typing import List, Optional

import fakeredis
import pytest
from fastapi.testclient import TestClient

from codecollab.ai_provider.base import AIProvider
from codecollab.auth.tokens import Identity, create_token
from codecollab.chat.registry import ConnectionHandle
from codecollab.chat.schemas import ChatMessage, Sender
from codecollab.config import AppSettings, ChatSettings, JWTSecrets, Secrets
from codecollab.main import create_app
from codecollab.projects import InMemoryProjectRepository, Project

TEST_SECRET = "test-secret"

ROOM_ID = "64b7f0c2e4b0a1a2b3c4d5e6"
UNKNOWN_ROOM_ID = "64b7f0c2e4b0a1a2b3c4ffff"
OWNER_ID = "owner-1"
MEMBER_ID = "member-1"
OUTSIDER_ID = "outsider-1"


# =============================================================================
# Test doubles
# =============================================================================


class FakeWebSocket:
    """Records frames sent through ConnectionHandle.send()."""

    def __init__(self, fail: bool = False):
        self.sent: List[dict] = []
        self.fail = fail

    async def send_json(self, data: dict) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)


class FakeProvider(AIProvider):
    """Scripted AI provider.

    ``response`` is returned from generate(); if ``error`` is set it is raised
    instead. When ``release`` is given, generate() blocks until it is set,
    which lets tests hold a request past its deadline.
    """

    name = "fake"
    model = "fake-model"

    def __init__(
        self,
        response: str = '{"text": "Here you go"}',
        error: Optional[Exception] = None,
        release: Optional[threading.Event] = None,
    ):
        self.response = response
        self.error = error
        self.release = release
        self.prompts: List[str] = []

    def health_check(self) -> bool:
        return True

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.release is not None:
            self.release.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.response


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        chat=ChatSettings(ai_timeout_seconds=2.0),
        secrets=Secrets(jwt=JWTSecrets(secret_key=TEST_SECRET)),
    )


@pytest.fixture
def fake_redis():
    """Async Redis double with its own server, so no state leaks between tests."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def project() -> Project:
    return Project(
        id=ROOM_ID,
        name="demo",
        users=[OWNER_ID, MEMBER_ID],
        createdBy=OWNER_ID,
    )


@pytest.fixture
def projects(project) -> InMemoryProjectRepository:
    repo = InMemoryProjectRepository()
    repo.add_project(project)
    return repo


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def make_token():
    """Factory for signed session tokens."""

    def _make(user_id: str, secret: str = TEST_SECRET, **claims) -> str:
        payload = {"_id": user_id, "email": f"{user_id}@example.com"}
        payload.update(claims)
        return create_token(payload, secret)

    return _make


@pytest.fixture
def make_handle():
    """Factory for ConnectionHandles backed by a FakeWebSocket."""

    def _make(
        user_id: str = MEMBER_ID,
        room_id: str = ROOM_ID,
        project: Optional[Project] = None,
        fail: bool = False,
    ) -> ConnectionHandle:
        identity = Identity(id=user_id, displayName=f"{user_id}@example.com")
        return ConnectionHandle(FakeWebSocket(fail=fail), room_id, identity, project)

    return _make


@pytest.fixture
def app(settings, fake_redis, projects, provider):
    return create_app(
        settings,
        redis_client=fake_redis,
        project_repository=projects,
        ai_provider=provider,
    )


@pytest.fixture
def client(app):
    """TestClient with the lifespan running for the whole test."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def seed_messages(app, client):
    """Append plain messages to a room's history inside the app's event loop."""

    def _seed(texts: List[str], room_id: str = ROOM_ID, sender_id: str = OWNER_ID) -> None:
        store = app.state.store
        sender = Sender(id=sender_id, displayName=f"{sender_id}@example.com")
        for text in texts:
            client.portal.call(store.append, room_id, ChatMessage.text(room_id, sender, text))

    return _seed

