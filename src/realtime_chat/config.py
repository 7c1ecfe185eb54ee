"""Environment-driven settings for the relay and the client."""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class RelaySettings(BaseModel):
    """Relay configuration.

    Built fresh for every request so a credential exported after startup is
    picked up without a restart.
    """

    gemini_api_key: Optional[str] = Field(
        default_factory=lambda: os.getenv("GEMINI_API_KEY") or None
    )
    gemini_model: str = Field(
        default_factory=lambda: os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
    )
    gemini_base_url: str = Field(
        default_factory=lambda: os.getenv(
            "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"
        )
    )
    conversation_ttl_seconds: float = Field(
        default_factory=lambda: float(os.getenv("CHAT_CONVERSATION_TTL_SECONDS", "3600")),
        gt=0,
    )
    max_duration_seconds: float = Field(
        default_factory=lambda: float(os.getenv("CHAT_MAX_DURATION_SECONDS", "30")),
        gt=0,
    )


class ClientSettings(BaseModel):
    """Client configuration."""

    api_url: str = Field(
        default_factory=lambda: os.getenv("CHAT_API_URL", "http://127.0.0.1:8000")
    )
    storage_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("CHAT_STORAGE_PATH", "~/.realtime_chat/storage.json")
        ).expanduser()
    )


def get_relay_settings() -> RelaySettings:
    """Returns relay settings read from the environment"""
    return RelaySettings()


def get_client_settings() -> ClientSettings:
    """Returns client settings read from the environment"""
    return ClientSettings()
