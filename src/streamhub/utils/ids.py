"""Identifier generation."""

import secrets
import string
import time

_ALPHABET = string.digits + string.ascii_lowercase


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_id(prefix: str = "") -> str:
    """Build ``{prefix}-{base36 millis}-{7 random chars}``."""
    timestamp = _base36(int(time.time() * 1000))
    random_part = "".join(secrets.choice(_ALPHABET) for _ in range(7))
    return f"{prefix}-{timestamp}-{random_part}" if prefix else f"{timestamp}-{random_part}"


def generate_stream_id() -> str:
    return generate_id("stream")


def generate_room_id() -> str:
    return generate_id("room")
