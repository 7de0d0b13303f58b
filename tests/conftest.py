"""Shared fixtures: a fake WiseOwl backend and a recording sleep."""

from collections import deque

import httpx
import pytest

from owlbridge.config import OwlBridgeConfig

DONE_BODY = [
    [
        "done",
        [
            {"role": "user", "content": "question"},
            {
                "role": "ASSISTANT",
                "parts": [
                    {"type": "TEXT", "content": "plain"},
                    {"type": "MARKDOWN", "content": "<p>answer</p>"},
                ],
            },
        ],
    ]
]


class FakeWiseOwl:
    """Scriptable stand-in for the WiseOwl API.

    Each queue holds ``(status, body)`` tuples or exception classes; when a
    queue is empty the default success response is returned.
    """

    def __init__(self, conversation_id="conv-1", run_id="run-1"):
        self.conversation_id = conversation_id
        self.run_id = run_id
        self.create_responses = deque()
        self.submit_responses = deque()
        self.poll_responses = deque()
        self.requests = []

    def _reply(self, request, queue, default):
        reply = queue.popleft() if queue else default
        if isinstance(reply, type) and issubclass(reply, Exception):
            raise reply("simulated failure", request=request)
        status, body = reply
        return httpx.Response(status, json=body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "POST" and path.endswith("/conversations"):
            return self._reply(
                request,
                self.create_responses,
                (200, {"conversation": {"id": self.conversation_id}}),
            )
        if request.method == "PUT":
            return self._reply(request, self.submit_responses, (200, {"runId": self.run_id}))
        if request.method == "GET" and "/runs/" in path:
            return self._reply(request, self.poll_responses, (200, DONE_BODY))
        return httpx.Response(404, json={"error": "not found"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def calls(self, method, fragment=""):
        return [r for r in self.requests if r.method == method and fragment in r.url.path]


@pytest.fixture
def fake_wiseowl():
    return FakeWiseOwl()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay):
        sleeps.append(delay)

    return _sleep


@pytest.fixture
def config():
    return OwlBridgeConfig()
