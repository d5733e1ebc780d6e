"""Error taxonomy shared by the registry, entry service and stores."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class StrataError(Exception):
    code: str
    message: str
    path: str | None = None
    detail: dict | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base

    def as_issue(self) -> dict:
        return {"code": self.code, "message": self.message, "path": self.path, "detail": self.detail}


class ValidationError(StrataError):
    def __init__(self, message: str, path: str | None = None, detail: dict | None = None) -> None:
        super().__init__("VALIDATION_ERROR", message, path, detail)


class ConflictError(StrataError):
    def __init__(self, message: str, path: str | None = None, detail: dict | None = None) -> None:
        super().__init__("CONFLICT", message, path, detail)


class NotFoundError(StrataError):
    def __init__(self, message: str, path: str | None = None, detail: dict | None = None) -> None:
        super().__init__("NOT_FOUND", message, path, detail)


class TransientStoreError(StrataError):
    """Lookup failure that callers recover from locally."""

    def __init__(self, message: str, path: str | None = None, detail: dict | None = None) -> None:
        super().__init__("TRANSIENT_STORE_ERROR", message, path, detail)


HTTP_STATUS = {
    "VALIDATION_ERROR": 400,
    "CONFLICT": 409,
    "NOT_FOUND": 404,
    "TRANSIENT_STORE_ERROR": 503,
}
