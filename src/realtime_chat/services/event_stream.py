"""Incremental parsing of the upstream server-sent-event stream."""

import codecs
import json
import re
from typing import List, Optional

import structlog

logger = structlog.get_logger()

DATA_PREFIX = "data:"
LINE_BREAK = re.compile(r"\r\n|\r|\n")


class EventStreamParser:
    """Turns raw upstream bytes into ``data:`` payload strings.

    Bytes are decoded with an incremental UTF-8 decoder and text is held back
    until its line terminator arrives, so neither a multi-byte character nor
    an event split across network chunks is lost.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> List[str]:
        """Consume a chunk and return the payloads of every completed line."""
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = LINE_BREAK.split(self._buffer)
        return [p for p in map(self._payload, lines) if p is not None]

    def close(self) -> List[str]:
        """Flush the decoder and parse a trailing unterminated line."""
        lines = LINE_BREAK.split(self._buffer + self._decoder.decode(b"", final=True))
        self._buffer = ""
        return [p for p in map(self._payload, lines) if p is not None]

    @staticmethod
    def _payload(line: str) -> Optional[str]:
        if not line.startswith(DATA_PREFIX):
            return None
        return line[len(DATA_PREFIX):].strip()


def extract_text(payload: str) -> Optional[str]:
    """Pull ``candidates[0].content.parts[0].text`` out of an event payload.

    Returns None for malformed JSON or events that carry no text.
    """
    try:
        event = json.loads(payload)
    except ValueError:
        logger.debug("malformed_event_skipped", payload_length=len(payload))
        return None

    try:
        text = event["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    if not isinstance(text, str) or not text:
        return None
    return text
