"""Shared pytest fixtures for producer chat tests."""

import json
from collections import defaultdict
from typing import Callable, Optional, Union

import httpx
import pytest

from producer_chat.config import ProducerChatConfig
from producer_chat.conversation import ConversationSession
from producer_chat.thread_store import ThreadStore
from producer_chat.workflow_client import WorkflowClient

STREAM_PATH = "/producer/chat/stream"
RESUME_PATH = "/producer/chat/resume"
CONFIRM_PATH = "/producer/chat/confirm"


def sse(*events) -> bytes:
    """Encode events the way the engine does: ``data: {...}`` plus a blank line."""
    lines = []
    for event in events:
        payload = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {payload}\n\n")
    return "".join(lines).encode("utf-8")


def stream_response(*events, run_id: Optional[str] = None, headers: Optional[dict] = None) -> httpx.Response:
    response_headers = {"content-type": "text/event-stream"}
    if run_id is not None:
        response_headers["x-run-id"] = run_id
    response_headers.update(headers or {})
    return httpx.Response(200, content=sse(*events), headers=response_headers)


def step(event_type: str = "step-output", **payload) -> dict:
    """A workflow event as the engine emits it: fields live under ``payload``."""
    return {"type": event_type, "payload": payload}


def ready_outcome(title: str = "AI news in 10", assistant_message: Optional[str] = "") -> dict:
    """READY outcome with a full plan. assistant_message=None omits the text."""
    outcome = {
        "status": "READY",
        "assistantMessage": assistant_message or f"Here is the plan: {title}",
        "episodeSpec": {
            "episodeTitle": title,
            "listenerIntent": "catch up on AI news",
            "timeframe": "this_week",
            "style": "HEADLINES_DIGEST",
            "durationMinutes": 10,
            "segments": [
                {"id": "s1", "goal": "Model releases", "minutes": 5},
                {"id": "s2", "goal": "Policy", "minutes": 5},
            ],
            "research": {"needed": True, "queries": ["AI news this week"]},
            "personalization": {"moreOf": [], "lessOf": [], "callbacksToLastEpisode": []},
        },
    }
    if assistant_message is None:
        del outcome["assistantMessage"]
    return outcome


class FakeEngine:
    """
    Scripted stand-in for the workflow engine behind httpx.MockTransport.

    Responses are queued per path and served in order; unqueued paths 404.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self._routes: dict[str, list] = defaultdict(list)

    def queue(self, path: str, response: Union[httpx.Response, Callable]):
        self._routes[path].append(response)

    def handler(self, request: httpx.Request):
        self.requests.append(request)
        routes = self._routes.get(request.url.path)
        if not routes:
            return httpx.Response(404, text=f"no route for {request.url.path}")
        item = routes.pop(0)
        return item(request) if callable(item) else item

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def bodies(self, path: str) -> list[dict]:
        return [json.loads(r.content) for r in self.calls(path)]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def config(tmp_path) -> ProducerChatConfig:
    return ProducerChatConfig(
        api_base_url="http://engine.test",
        db_path=str(tmp_path / "threads.db"),
    )


@pytest.fixture
def token_holder() -> dict:
    """Mutable credential so tests can sign out mid-test."""
    return {"token": "tok-123"}


@pytest.fixture
def client(config, engine, token_holder) -> WorkflowClient:
    return WorkflowClient(config, token_provider=lambda: token_holder["token"], transport=engine.transport)


@pytest.fixture
def thread_store(config, client) -> ThreadStore:
    store = ThreadStore(config.db_path, identity="user-1", client=client)
    yield store
    store.close()


@pytest.fixture
def session(client, thread_store) -> ConversationSession:
    return ConversationSession(client, thread_store=thread_store)
