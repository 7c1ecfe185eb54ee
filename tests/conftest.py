"""Shared fixtures: a fake Gemini upstream and an ASGI client for the relay."""

import json
from typing import AsyncIterator, Callable, List

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from realtime_chat.api.app import app, get_conversation_cache, get_upstream_service
from realtime_chat.repositories.memory import InMemoryConversationCache
from realtime_chat.services.gemini import GeminiStreamService


def sse_event(text: str) -> bytes:
    """One upstream event carrying ``text`` in Gemini's nesting."""
    payload = {"candidates": [{"content": {"parts": [{"text": text}], "role": "model"}}]}
    return f"data: {json.dumps(payload)}\r\n\r\n".encode("utf-8")


def byte_stream(*chunks: bytes) -> AsyncIterator[bytes]:
    async def gen():
        for chunk in chunks:
            yield chunk

    return gen()


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeUpstream:
    """Records upstream requests and answers with a canned response."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.respond: Callable[[httpx.Request], httpx.Response] = lambda request: httpx.Response(
            200,
            headers={"Content-Type": "text/event-stream"},
            content=byte_stream(sse_event("Hel"), sse_event("lo")),
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> InMemoryConversationCache:
    return InMemoryConversationCache(ttl_seconds=3600, clock=clock)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    return "test-key"


@pytest_asyncio.fixture
async def upstream_service(upstream: FakeUpstream) -> AsyncIterator[GeminiStreamService]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as http_client:
        yield GeminiStreamService(http_client, base_url="https://upstream.test")


@pytest.fixture
def relay_app(cache, upstream_service):
    """The full relay app, middleware included, with fake upstream and cache."""
    app.dependency_overrides[get_conversation_cache] = lambda: cache
    app.dependency_overrides[get_upstream_service] = lambda: upstream_service
    try:
        yield app
    finally:
        app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(relay_app) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=relay_app), base_url="http://test") as client:
        yield client
