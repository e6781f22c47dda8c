"""Secret-handling helpers for intake links.

Only ``hash_token(raw)`` is ever persisted. The hash is unsalted so the same
raw token maps to the same row across process restarts.
"""
from __future__ import annotations

import hashlib
import secrets
from datetime import datetime
from typing import Callable

TOKEN_BYTES = 32

Clock = Callable[[], datetime]
RandomSource = Callable[[int], bytes]


def generate_token(random_bytes: RandomSource = secrets.token_bytes) -> str:
    return random_bytes(TOKEN_BYTES).hex()


def hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def issue(random_bytes: RandomSource = secrets.token_bytes) -> tuple[str, str]:
    """Return ``(raw, handle)``; store the handle, hand out the raw token once."""
    raw = generate_token(random_bytes)
    return raw, hash_token(raw)
