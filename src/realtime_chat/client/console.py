"""Terminal front end: type a line, watch the reply stream in."""

import asyncio
import logging
import sys
from typing import Dict, List, TextIO
from uuid import UUID

import httpx
import structlog

from ..config import ClientSettings, get_client_settings
from ..domain.models import Message
from .orchestrator import ChatOrchestrator
from .session import LocalStorage, SessionIdentifierManager
from .transcript import PENDING_CONTENT, TranscriptStore

NEW_CHAT_COMMAND = "/new"
QUIT_COMMANDS = {"/quit", "/exit"}


class ConsoleRenderer:
    """Transcript listener that prints only what the terminal has not shown yet."""

    def __init__(self, out: TextIO = sys.stdout) -> None:
        self.out = out
        self._shown: Dict[UUID, str] = {}

    def __call__(self, messages: List[Message]) -> None:
        for message in messages:
            if message.role == "user":
                # typed by the user, already on screen
                self._shown.setdefault(message.id, message.content)
                continue

            content = "" if message.content == PENDING_CONTENT else message.content
            shown = self._shown.get(message.id)
            if shown is None:
                self.out.write("Assistant: ")
                shown = ""
            if content.startswith(shown):
                self.out.write(content[len(shown):])
            else:
                self.out.write("\n" + content)
            self._shown[message.id] = content
        self.out.flush()

    def end_turn(self) -> None:
        self.out.write("\n")
        self.out.flush()

    def reset(self) -> None:
        self._shown.clear()


async def run(settings: ClientSettings) -> None:
    sessions = SessionIdentifierManager(LocalStorage(settings.storage_path))
    transcript = TranscriptStore()
    renderer = ConsoleRenderer()
    transcript.subscribe(renderer)

    async with httpx.AsyncClient(base_url=settings.api_url, timeout=httpx.Timeout(60.0)) as client:
        orchestrator = ChatOrchestrator(transcript, client, sessions.get_or_create())
        while True:
            try:
                line = await asyncio.to_thread(input, "You: ")
            except EOFError:
                break

            command = line.strip()
            if command in QUIT_COMMANDS:
                break
            if command == NEW_CHAT_COMMAND:
                transcript.clear()
                renderer.reset()
                continue

            if await orchestrator.submit(line) is None:
                continue
            renderer.end_turn()
            if orchestrator.error:
                print(orchestrator.error, file=sys.stderr)


def main() -> None:
    # keep info-level events off the chat output
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(logging.WARNING))
    try:
        asyncio.run(run(get_client_settings()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
