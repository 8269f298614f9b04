"""Tests for AIRequestCoordinator and AI response parsing.

Requests run against a real MessageStore on fakeredis, a real RoomRegistry
and a scripted provider, so each test can check both what the room saw and
what ended up in the history.
"""
import asyncio
import json
import threading
from unittest.mock import AsyncMock

import pytest

from codecollab.ai_provider.coordinator import (
    PROCESSING_TEXT,
    AIRequestCoordinator,
    AIResponseParseFailure,
    parse_ai_response,
)
from codecollab.chat.registry import RoomRegistry
from codecollab.chat.store import MessageStore, StorageUnavailable
from codecollab.projects import ProjectStoreError

from conftest import OWNER_ID, ROOM_ID, FakeProvider


def _texts(frames) -> list:
    return [json.loads(f["message"])["text"] for f in frames if f["type"] == "project-message"]


@pytest.fixture
def store(fake_redis) -> MessageStore:
    return MessageStore(fake_redis)


@pytest.fixture
def registry() -> RoomRegistry:
    return RoomRegistry()


@pytest.fixture
def room(registry, make_handle, project):
    """Requester and one other member, both joined to the room."""
    requester = make_handle(OWNER_ID, project=project)
    other = make_handle("member-1", project=project)
    registry.join(ROOM_ID, requester)
    registry.join(ROOM_ID, other)
    return requester, other


def _coordinator(store, registry, provider, projects, timeout=2.0) -> AIRequestCoordinator:
    return AIRequestCoordinator(store, registry, provider, projects, timeout_seconds=timeout)


# =============================================================================
# Response parsing
# =============================================================================


class TestParseAIResponse:
    """Tests for parse_ai_response."""

    def test_plain_json_object(self):
        payload = parse_ai_response('{"text": "hi", "fileTree": {"a.js": {}}}', "p")
        assert payload.text == "hi"
        assert payload.fileTree == {"a.js": {}}

    def test_markdown_fence_is_stripped(self):
        payload = parse_ai_response('```json\n{"text": "fenced"}\n```', "p")
        assert payload.text == "fenced"

    def test_missing_text_gets_fallback(self):
        payload = parse_ai_response('{"fileTree": {"a.js": {}}}', "make a server")
        assert payload.text == (
            "I've processed your request for \"make a server\" but couldn't generate detailed text."
        )

    def test_non_object_file_tree_dropped(self):
        payload = parse_ai_response('{"text": "x", "fileTree": ["a.js"]}', "p")
        assert payload.fileTree is None

    def test_extra_fields_kept(self):
        payload = parse_ai_response('{"text": "x", "startCommand": {"mainItem": "node"}}', "p")
        assert json.loads(payload.to_json())["startCommand"] == {"mainItem": "node"}

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", "", '"just a string"'])
    def test_unreadable_response(self, raw):
        with pytest.raises(AIResponseParseFailure):
            parse_ai_response(raw, "p")


# =============================================================================
# Request lifecycle
# =============================================================================


class TestHandleRequest:
    """Tests for the processing -> terminal message sequence."""

    @pytest.mark.asyncio
    async def test_success_sequence(self, store, registry, projects, room):
        """Processing then exactly one result, to every member, in history."""
        requester, other = room
        provider = FakeProvider(response='{"text": "Here is your server"}')
        coordinator = _coordinator(store, registry, provider, projects)

        await coordinator.handle_request(requester, "  build a server ")

        assert provider.prompts == ["build a server"]
        for handle in room:
            assert _texts(handle.websocket.sent) == [PROCESSING_TEXT, "Here is your server"]
            assert all(f["sender"]["id"] == "ai" for f in handle.websocket.sent)
        stored = await store.get_range(ROOM_ID, 10)
        assert [m.display_text for m in stored] == [PROCESSING_TEXT, "Here is your server"]

    @pytest.mark.asyncio
    async def test_empty_prompt(self, store, registry, projects, room):
        """A blank prompt gets one error message and no provider call."""
        requester, _ = room
        provider = FakeProvider()
        coordinator = _coordinator(store, registry, provider, projects)

        await coordinator.handle_request(requester, "   ")

        assert provider.prompts == []
        texts = _texts(requester.websocket.sent)
        assert len(texts) == 1
        assert texts[0].startswith("Error: Empty prompt")

    @pytest.mark.asyncio
    async def test_timeout_is_terminal(self, store, registry, projects, room):
        """The deadline produces one error and a late answer is never published."""
        requester, _ = room
        release = threading.Event()
        provider = FakeProvider(response='{"text": "too late"}', release=release)
        coordinator = _coordinator(store, registry, provider, projects, timeout=0.05)

        await coordinator.handle_request(requester, "slow please")
        texts = _texts(requester.websocket.sent)
        assert texts[0] == PROCESSING_TEXT
        assert texts[1] == (
            "Error: AI request timed out after 0.05 seconds. "
            "Please try again with a more specific prompt."
        )

        # Let the worker thread finish; its answer must go nowhere
        release.set()
        await asyncio.sleep(0.1)
        assert len(_texts(requester.websocket.sent)) == 2
        assert await store.count(ROOM_ID) == 2

    @pytest.mark.asyncio
    async def test_provider_failure(self, store, registry, projects, room):
        requester, _ = room
        provider = FakeProvider(error=RuntimeError("rate limited"))
        coordinator = _coordinator(store, registry, provider, projects)

        await coordinator.handle_request(requester, "hello")

        texts = _texts(requester.websocket.sent)
        assert texts == [
            PROCESSING_TEXT,
            "Error: The AI service could not complete the request. "
            "Please try again with a more specific prompt.",
        ]

    @pytest.mark.asyncio
    async def test_unreadable_response(self, store, registry, projects, room):
        requester, _ = room
        coordinator = _coordinator(store, registry, FakeProvider(response="Sure! Here's code"), projects)

        await coordinator.handle_request(requester, "hello")

        texts = _texts(requester.websocket.sent)
        assert len(texts) == 2
        assert texts[1] == (
            "Error: The AI response could not be understood. "
            "Please try again with a more specific prompt."
        )

    @pytest.mark.asyncio
    async def test_no_provider_configured(self, store, registry, projects, room):
        requester, _ = room
        coordinator = _coordinator(store, registry, None, projects)

        await coordinator.handle_request(requester, "hello")

        texts = _texts(requester.websocket.sent)
        assert texts[1].startswith("Error: AI service is not configured")

    @pytest.mark.asyncio
    async def test_storage_outage_still_delivers(self, registry, projects, room):
        """Members see the outcome even when it cannot be saved."""
        requester, _ = room
        store = AsyncMock()
        store.append.side_effect = StorageUnavailable("append", ConnectionError("down"))
        coordinator = _coordinator(store, registry, FakeProvider(), projects)

        await coordinator.handle_request(requester, "hello")

        assert _texts(requester.websocket.sent) == [PROCESSING_TEXT, "Here you go"]


# =============================================================================
# File tree write-back
# =============================================================================


class TestFileTree:
    """Tests for writing AI file trees back to the project."""

    TREE_RESPONSE = json.dumps({
        "text": "Created app.js",
        "fileTree": {"app.js": {"file": {"contents": "console.log('hi')"}}},
    })

    @pytest.mark.asyncio
    async def test_file_tree_saved(self, store, registry, projects, room):
        requester, _ = room
        coordinator = _coordinator(store, registry, FakeProvider(self.TREE_RESPONSE), projects)

        await coordinator.handle_request(requester, "make app.js")

        project = await projects.get_project(ROOM_ID)
        assert "app.js" in project.fileTree
        assert not any(f["type"] == "error" for f in requester.websocket.sent)

    @pytest.mark.asyncio
    async def test_empty_file_tree_not_saved(self, store, registry, room):
        requester, _ = room
        projects = AsyncMock()
        response = '{"text": "nothing to write", "fileTree": {}}'
        coordinator = _coordinator(store, registry, FakeProvider(response), projects)

        await coordinator.handle_request(requester, "explain")

        projects.update_file_tree.assert_not_called()

    @pytest.mark.asyncio
    async def test_file_tree_failure_reported_to_requester(self, store, registry, room):
        """The result stands; only the requester hears about the failed write."""
        requester, other = room
        projects = AsyncMock()
        projects.update_file_tree.side_effect = ProjectStoreError("write failed")
        coordinator = _coordinator(store, registry, FakeProvider(self.TREE_RESPONSE), projects)

        await coordinator.handle_request(requester, "make app.js")

        assert requester.websocket.sent[-1] == {
            "type": "error",
            "errorType": "UPDATE_FILE_TREE_ERROR",
            "message": "Failed to update project file tree",
        }
        assert not any(f["type"] == "error" for f in other.websocket.sent)
        assert _texts(other.websocket.sent)[-1] == "Created app.js"
        assert await store.count(ROOM_ID) == 2

    @pytest.mark.asyncio
    async def test_no_project_record_skips_write(self, store, registry, make_handle):
        requester = make_handle(OWNER_ID, project=None)
        registry.join(ROOM_ID, requester)
        projects = AsyncMock()
        coordinator = _coordinator(store, registry, FakeProvider(self.TREE_RESPONSE), projects)

        await coordinator.handle_request(requester, "make app.js")

        projects.update_file_tree.assert_not_called()


# =============================================================================
# Scheduling
# =============================================================================


class TestSubmit:
    """Tests for submit() and shutdown()."""

    @pytest.mark.asyncio
    async def test_submit_runs_in_background(self, store, registry, projects, room):
        requester, _ = room
        coordinator = _coordinator(store, registry, FakeProvider(), projects)

        task = coordinator.submit(requester, "hello")
        assert coordinator.pending == 1
        await task

        assert coordinator.pending == 0
        assert _texts(requester.websocket.sent) == [PROCESSING_TEXT, "Here you go"]

    @pytest.mark.asyncio
    async def test_requester_leaving_does_not_cancel(self, store, registry, projects, room):
        """The rest of the room still gets the outcome."""
        requester, other = room
        coordinator = _coordinator(store, registry, FakeProvider(), projects)

        task = coordinator.submit(requester, "hello")
        requester.closed = True
        registry.leave(ROOM_ID, requester)
        await task

        assert _texts(other.websocket.sent) == [PROCESSING_TEXT, "Here you go"]
        assert await store.count(ROOM_ID) == 2

    @pytest.mark.asyncio
    async def test_shutdown_cancels_stragglers(self, store, registry, projects, room):
        """A cancelled request still leaves a terminal error message for the room."""
        requester, other = room
        release = threading.Event()
        coordinator = _coordinator(
            store, registry, FakeProvider(release=release), projects, timeout=10
        )

        task = coordinator.submit(requester, "hello")
        await asyncio.sleep(0.05)
        await coordinator.shutdown(timeout=0.05)
        release.set()

        assert task.cancelled()
        texts = _texts(other.websocket.sent)
        assert texts[0] == PROCESSING_TEXT
        assert texts[-1].startswith("Error: The AI request was cancelled")
        assert len(texts) == 2
        assert await store.count(ROOM_ID) == 2
