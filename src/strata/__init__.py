"""Strata kernel utilities."""

from .canonical_json import CanonicalJsonTypeError, canonical_dumps
from .data_path import get_by_path
from .errors import ConflictError, NotFoundError, StrataError, TransientStoreError, ValidationError

__all__ = [
    "CanonicalJsonTypeError",
    "ConflictError",
    "NotFoundError",
    "StrataError",
    "TransientStoreError",
    "ValidationError",
    "canonical_dumps",
    "get_by_path",
]
