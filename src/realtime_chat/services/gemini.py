"""Streaming client for Google's Gemini generateContent endpoint."""

from typing import AsyncIterator, Sequence
from urllib.parse import quote

import httpx
import structlog

from ..domain.models import ClientMessage, Content, GenerateContentRequest, Part
from .event_stream import EventStreamParser, extract_text

logger = structlog.get_logger()

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_MODEL = "gemini-2.5-flash"


class UpstreamError(Exception):
    """Raised when the upstream answers with a non-success status."""

    def __init__(self, status_code: int, reason: str = "", body: str = ""):
        self.status_code = status_code
        self.reason = reason
        self.body = body
        super().__init__(f"Upstream error: {status_code} {reason}\n{body}")


def build_request(messages: Sequence[ClientMessage]) -> GenerateContentRequest:
    """Map client messages onto Gemini's ``contents`` shape."""
    return GenerateContentRequest(
        contents=[
            Content(
                role="model" if m.role == "assistant" else "user",
                parts=[Part(text=m.content)],
            )
            for m in messages
        ]
    )


class GeminiStreamService:
    """Opens a single-model SSE stream and yields its text fragments."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
    ) -> None:
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.model = model

    @property
    def stream_url(self) -> str:
        return f"{self.base_url}/v1/models/{quote(self.model, safe='')}:streamGenerateContent"

    async def open_stream(
        self, messages: Sequence[ClientMessage], api_key: str
    ) -> httpx.Response:
        """Send the request and return the response once headers arrive.

        The caller owns the returned response and must consume or close it.
        Raises UpstreamError for a non-2xx status.
        """
        request = self.http_client.build_request(
            "POST",
            self.stream_url,
            params={"alt": "sse", "key": api_key},
            json=build_request(messages).model_dump(),
        )
        response = await self.http_client.send(request, stream=True)
        if response.is_success:
            logger.info("upstream_stream_opened", model=self.model, status=response.status_code)
            return response

        try:
            body = (await response.aread()).decode("utf-8", errors="replace")
        except httpx.HTTPError:
            body = ""
        finally:
            await response.aclose()
        logger.warning(
            "upstream_error",
            model=self.model,
            status=response.status_code,
            reason=response.reason_phrase,
        )
        raise UpstreamError(response.status_code, response.reason_phrase, body)

    async def iter_text(self, response: httpx.Response) -> AsyncIterator[str]:
        """Yield each text fragment as soon as its event is complete."""
        parser = EventStreamParser()
        try:
            async for chunk in response.aiter_bytes():
                for payload in parser.feed(chunk):
                    text = extract_text(payload)
                    if text:
                        yield text
            for payload in parser.close():
                text = extract_text(payload)
                if text:
                    yield text
        finally:
            await response.aclose()
