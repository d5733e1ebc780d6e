"""Dot-path resolution into loosely-typed entry data."""

from __future__ import annotations

from typing import Any, List


_MISSING = object()


def split_path(path: Any) -> List[str]:
    """Split ``a.b.0.c`` into segments, dropping blanks and surrounding spaces."""
    if path is None:
        return []
    return [part.strip() for part in str(path).split(".") if part.strip()]


def _step(current: Any, segment: str) -> Any:
    if isinstance(current, dict):
        if segment in current:
            return current[segment]
        return _MISSING
    if isinstance(current, (list, tuple)):
        if not segment.lstrip("-").isdigit():
            return _MISSING
        idx = int(segment)
        if idx < 0 or idx >= len(current):
            return _MISSING
        return current[idx]
    return _MISSING


def get_by_path(doc: Any, path: Any, default: Any = None) -> Any:
    """Walk mappings by key and sequences by index; any miss returns ``default``."""
    segments = split_path(path)
    if not segments:
        return default
    current = doc
    for segment in segments:
        if current is None:
            return default
        current = _step(current, segment)
        if current is _MISSING:
            return default
    return current
