"""
Request validation helpers.

WHAT: Credential format checks and message normalization
WHY: Reject malformed input before any network call
HOW: Regex/length checks from config, pure message transforms
"""

import re
from functools import lru_cache
from typing import Any, Iterable, Optional

from .types import ChatMessage
from ..core.config import Settings
from ..utils.exceptions import ClientError

VALID_ROLES = ("system", "user", "assistant")


@lru_cache(maxsize=8)
def _compile(pattern: str) -> re.Pattern:
    return re.compile(pattern)


def validate_api_key(key: Optional[str], settings: Settings) -> bool:
    """Check key length bounds and pattern (e.g. ^sk-[a-zA-Z0-9]+$)."""
    if not key or not isinstance(key, str):
        return False
    if not settings.API_KEY_MIN_LENGTH <= len(key) <= settings.API_KEY_MAX_LENGTH:
        return False
    return _compile(settings.API_KEY_PATTERN).match(key) is not None


def prepare_messages(messages: Iterable[Any]) -> list[ChatMessage]:
    """
    Normalize messages for the API.

    Unknown roles become "user", content is coerced to str (None -> ""),
    and empty-content messages are dropped. Input dicts are not modified.

    Raises:
        ClientError: (validation) if no non-empty message remains
    """
    prepared: list[ChatMessage] = []
    for msg in messages or []:
        if not isinstance(msg, dict):
            continue
        role = msg.get("role")
        if role not in VALID_ROLES:
            role = "user"
        content = msg.get("content")
        content = "" if content is None else str(content)
        if content:
            prepared.append({"role": role, "content": content})

    if not prepared:
        raise ClientError.validation("At least one non-empty message is required", field="messages")
    return prepared


def mask_secret(value: Optional[str]) -> str:
    """Mask a secret for logs: first and last 4 characters only."""
    if not value or len(value) < 8:
        return "***"
    return f"{value[:4]}...{value[-4:]}"


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds."""
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None
