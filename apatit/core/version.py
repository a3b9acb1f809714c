"""Application metadata exposed via ``apatit_service_info`` and the User-Agent."""

from __future__ import annotations

from typing import Final

__all__ = ["NAME", "VERSION", "OWNER", "LANGUAGE", "user_agent"]

NAME: Final[str] = "apatit"
VERSION: Final[str] = "1.0.0"
OWNER: Final[str] = "ostrovok.tech"
LANGUAGE: Final[str] = "python"


def user_agent() -> str:
    """Return the ``User-Agent`` header value sent to the upstream API."""
    return f"{NAME}/{VERSION}"
