"""Hex identifiers for cameras and rigs, with an injectable generation policy."""

from __future__ import annotations

import re
import uuid
from collections.abc import Callable

ID_HEX_LENGTH = 32
INVALID_ID = "0" * ID_HEX_LENGTH

_HEX_RE = re.compile(rf"^[0-9a-f]{{{ID_HEX_LENGTH}}}$")

IdGenerator = Callable[[], str]
"""Zero-argument callable returning a fresh valid identifier."""


def generate_id() -> str:
    """Return a random 128-bit identifier as a lowercase hex string."""
    return uuid.uuid4().hex


def is_valid_id(value: object) -> bool:
    """True if *value* is a well-formed, non-default identifier."""
    return (
        isinstance(value, str)
        and _HEX_RE.match(value) is not None
        and value != INVALID_ID
    )


def parse_id(value: object) -> str | None:
    """Normalize *value* to a valid identifier.

    Args:
        value: Candidate identifier, usually read from a rig file.

    Returns:
        The lowercase identifier, or None if *value* is malformed or the
        default (all-zero) id.
    """
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized if is_valid_id(normalized) else None


class SequentialIdGenerator:
    """Deterministic :data:`IdGenerator` producing 1, 2, 3, ... as hex ids.

    Args:
        start: First integer value handed out. Must be >= 1 so that the
            all-zero default id is never produced.
    """

    def __init__(self, start: int = 1) -> None:
        if start < 1:
            raise ValueError(f"start must be >= 1, got {start}")
        self._next = start

    def __call__(self) -> str:
        value = f"{self._next:0{ID_HEX_LENGTH}x}"
        self._next += 1
        return value


__all__ = [
    "ID_HEX_LENGTH",
    "INVALID_ID",
    "IdGenerator",
    "SequentialIdGenerator",
    "generate_id",
    "is_valid_id",
    "parse_id",
]
