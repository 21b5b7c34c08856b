"""Identifier helpers."""

from __future__ import annotations

import uuid


def generate_uuid(prefix: str | None = None) -> str:
    """Return a random identifier, optionally namespaced with ``prefix``."""
    value = uuid.uuid4().hex
    if prefix:
        return f"{prefix}-{value}"
    return value
