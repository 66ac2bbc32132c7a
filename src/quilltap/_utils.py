"""Tiny helpers shared by the provider and tool layers."""

from __future__ import annotations

from typing import Any


def get_field(obj: Any, name: str, default: Any = None) -> Any:
    """Read *name* from a mapping key or an attribute.

    Raw vendor responses arrive either as plain dicts (reconstructed from a
    stream) or as SDK model objects (non-streaming calls).
    """
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)
