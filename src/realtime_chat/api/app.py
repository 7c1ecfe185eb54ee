"""
FastAPI Application Module

Relay between chat clients and the Gemini streaming API. A client posts its
whole conversation; the relay forwards it upstream and re-emits the reply as a
plain UTF-8 text stream, one write per upstream text fragment.

Key Features:
- Async streaming relay with cancellation tied to the client connection
- Best-effort, session-keyed conversation cache with lazy expiry
- Structured logging and Prometheus metrics
- CORS and OpenTelemetry support
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Optional
from uuid import uuid4

import httpx
from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, StreamingResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import CollectorRegistry, Counter, generate_latest
from structlog import get_logger

from ..config import RelaySettings, get_relay_settings
from ..domain.models import ChatRequest
from ..repositories.memory import InMemoryConversationCache
from ..services.gemini import GeminiStreamService, UpstreamError

# Registry for isolated metric collection
CUSTOM_REGISTRY = CollectorRegistry()

REQUESTS = Counter("requests_total", "Total chat relay requests", registry=CUSTOM_REGISTRY)
ERRORS = Counter("errors_total", "Total chat relay errors", registry=CUSTOM_REGISTRY)
UPSTREAM_ERRORS = Counter("upstream_errors_total", "Upstream failures", registry=CUSTOM_REGISTRY)
STREAMED_CHUNKS = Counter("streamed_chunks_total", "Text fragments forwarded", registry=CUSTOM_REGISTRY)

logger = get_logger()

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


class ClientDisconnected(Exception):
    """The inbound request went away before the upstream answered."""


class RelayStreamingResponse(StreamingResponse):
    """Streaming response that owns the upstream response.

    The upstream is closed once sending ends, even when the client left
    before the body generator was ever started.
    """

    def __init__(self, upstream_response: httpx.Response, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.upstream_response = upstream_response

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.upstream_response.aclose()


# Core service instances
conversation_cache = InMemoryConversationCache(
    ttl_seconds=get_relay_settings().conversation_ttl_seconds
)
_http_client: Optional[httpx.AsyncClient] = None


def _shared_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(timeout=httpx.Timeout(30.0))
    return _http_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles app startup/shutdown and resource management"""
    _shared_http_client()
    logger.info("application_startup_complete")

    yield

    if _http_client is not None:
        await _http_client.aclose()
    logger.info("application_shutdown_complete")


def get_conversation_cache() -> InMemoryConversationCache:
    """Returns the conversation cache instance"""
    return conversation_cache


def get_upstream_service(
    settings: RelaySettings = Depends(get_relay_settings),
) -> GeminiStreamService:
    """Returns the upstream streaming service"""
    return GeminiStreamService(
        _shared_http_client(),
        base_url=settings.gemini_base_url,
        model=settings.gemini_model,
    )


app = FastAPI(
    title="Realtime Chat Relay",
    description="Streams Gemini replies to chat clients as plain text",
    version="0.1.0",
    lifespan=lifespan,
)

# Enable cross-origin requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Session-Id"],
)

# Set up request tracing
FastAPIInstrumentor.instrument_app(app)


@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    """Tracks requests"""
    logger.info("request_started", path=request.url.path)
    try:
        return await call_next(request)
    except Exception as e:
        logger.error("request_failed", path=request.url.path, error=str(e))
        raise


async def _wait_for_disconnect(request: Request) -> None:
    # blocks on the receive channel; the body has already been read
    while (await request.receive())["type"] != "http.disconnect":
        pass


async def _open_unless_disconnected(
    request: Request, opening: Awaitable[httpx.Response], timeout: float
) -> httpx.Response:
    """Await the upstream response, abandoning it if the client leaves first."""
    upstream = asyncio.ensure_future(opening)
    watcher = asyncio.ensure_future(_wait_for_disconnect(request))
    try:
        done, _ = await asyncio.wait(
            {upstream, watcher},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        watcher.cancel()
        if not upstream.done():
            upstream.cancel()
            await asyncio.gather(upstream, return_exceptions=True)

    if upstream in done:
        return upstream.result()
    if watcher in done:
        raise ClientDisconnected()
    raise httpx.TimeoutException("Upstream did not respond in time")


async def _relay_stream(
    upstream: GeminiStreamService,
    response: httpx.Response,
    session_id: str,
    deadline: float,
) -> AsyncIterator[bytes]:
    """Forward each upstream text fragment as raw UTF-8 bytes."""
    loop = asyncio.get_running_loop()
    fragments = upstream.iter_text(response)
    forwarded = 0
    try:
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError()
            try:
                text = await asyncio.wait_for(fragments.__anext__(), timeout=remaining)
            except StopAsyncIteration:
                break
            forwarded += 1
            STREAMED_CHUNKS.inc()
            yield text.encode("utf-8")
    except asyncio.TimeoutError:
        logger.warning("relay_deadline_exceeded", session_id=session_id, chunks=forwarded)
    except httpx.HTTPError as e:
        ERRORS.inc()
        logger.error("upstream_stream_failed", session_id=session_id, error=str(e))
    finally:
        await fragments.aclose()
        await response.aclose()
        logger.info("relay_stream_closed", session_id=session_id, chunks=forwarded)


@app.post("/api/chat")
async def chat(
    request: Request,
    cache: InMemoryConversationCache = Depends(get_conversation_cache),
    settings: RelaySettings = Depends(get_relay_settings),
    upstream: GeminiStreamService = Depends(get_upstream_service),
) -> Response:
    """
    Relays the conversation to Gemini and streams the reply back.
    Errors are reported as plain text: 500 for missing configuration,
    502 for upstream failures and 400 for anything else.
    """
    REQUESTS.inc()
    deadline = asyncio.get_running_loop().time() + settings.max_duration_seconds
    try:
        payload = ChatRequest.model_validate(await request.json())

        await cache.sweep()
        session_id = payload.session_id or str(uuid4())

        if not settings.gemini_api_key:
            ERRORS.inc()
            logger.error("missing_api_key", session_id=session_id)
            return PlainTextResponse("Missing GEMINI_API_KEY", status_code=500)

        await cache.set(
            session_id,
            [m for m in payload.messages if not (m.role == "assistant" and not m.content)],
        )
        logger.info(
            "relay_request_started",
            session_id=session_id,
            message_count=len(payload.messages),
            model=upstream.model,
        )

        try:
            response = await _open_unless_disconnected(
                request,
                upstream.open_stream(payload.messages, settings.gemini_api_key),
                timeout=max(0.0, deadline - asyncio.get_running_loop().time()),
            )
        except UpstreamError as e:
            UPSTREAM_ERRORS.inc()
            return PlainTextResponse(str(e), status_code=502)
        except httpx.HTTPError as e:
            UPSTREAM_ERRORS.inc()
            logger.error("upstream_unreachable", session_id=session_id, error=str(e))
            return PlainTextResponse(f"Upstream error: {e}", status_code=502)
        except ClientDisconnected:
            logger.info("client_disconnected", session_id=session_id)
            return Response(status_code=499)

        return RelayStreamingResponse(
            response,
            _relay_stream(upstream, response, session_id, deadline),
            status_code=200,
            media_type="text/plain; charset=utf-8",
            headers={**STREAM_HEADERS, "X-Session-Id": session_id},
        )
    except Exception as e:
        ERRORS.inc()
        logger.error("chat_request_failed", error=str(e))
        return PlainTextResponse("Bad Request", status_code=400)


@app.get("/health")
async def health() -> dict:
    """Reports that the relay is up"""
    return {"status": "healthy"}


@app.get("/metrics")
async def metrics():
    """Provides Prometheus metrics for system monitoring"""
    return Response(generate_latest(CUSTOM_REGISTRY), media_type="text/plain")
