"""Handheld client configuration."""

import secrets
import string
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from receiving_sync.core.clock import now_ms

_BASE36 = string.digits + string.ascii_lowercase


def generate_device_id() -> str:
    """``device_<epoch ms>_<7 base36 chars>``, generated once per install."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(7))
    return f"device_{now_ms()}_{suffix}"


class ClientSettings(BaseSettings):
    """Client settings, read from ``RECEIVING_CLIENT_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RECEIVING_CLIENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    api_base_url: str = "http://localhost:8000/api"
    timeout_seconds: float = 10.0

    # Identity attached to every scan
    device_id: Optional[str] = None
    username: Optional[str] = None
    name: Optional[str] = None

    def resolved_device_id(self) -> str:
        return self.device_id or generate_device_id()
