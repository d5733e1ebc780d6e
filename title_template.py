"""Title derivation from ``{dot.path}`` templates, plus slug and view selection helpers."""

from __future__ import annotations

import re
from typing import Any, Iterable, Tuple

from strata.canonical_json import CanonicalJsonTypeError, canonical_dumps
from strata.data_path import get_by_path
from strata.errors import ValidationError


_TOKEN = re.compile(r"\{([^}]+)\}")
_WS = re.compile(r"\s+")
_SLUG_STRIP = re.compile(r"[^a-z0-9]+")
_NAME_PARTS = ("first", "middle", "last", "title", "suffix")


def _collapse(text: str) -> str:
    return _WS.sub(" ", text).strip()


def pretty_inline(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (str, int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        parts = [pretty_inline(item) for item in value]
        return ", ".join(p for p in parts if p)
    if isinstance(value, dict):
        if any(part in value for part in _NAME_PARTS):
            bits = [
                str(value.get(part))
                for part in ("title", "first", "middle", "last")
                if value.get(part) not in (None, "")
            ]
            out = " ".join(bits).strip()
            suffix = value.get("suffix")
            if suffix not in (None, ""):
                out = f"{out} {suffix}".strip()
            return _collapse(out)
        try:
            return canonical_dumps(value)
        except (CanonicalJsonTypeError, ValueError):
            return str(value)
    return str(value)


def derive_title(template: Any, data: Any) -> str:
    text = str(template or "")
    if not text.strip():
        return ""

    def _sub(match: re.Match) -> str:
        token = match.group(1).strip()
        if not token:
            return ""
        return pretty_inline(get_by_path(data, token))

    return _collapse(_TOKEN.sub(_sub, text))


def slugify(text: Any) -> str:
    return _SLUG_STRIP.sub("-", str(text or "").strip().lower()).strip("-")


def _upper_roles(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(r or "").strip().upper() for r in value if str(r or "").strip()]


def _view_sort_key(view: dict, role: str) -> tuple:
    # Python sorts ascending; negate the "higher wins" criteria.
    config = view.get("config") if isinstance(view.get("config"), dict) else {}
    default_roles = _upper_roles(view.get("default_roles") or config.get("default_roles"))
    priority = view.get("priority") if isinstance(view.get("priority"), int) else 0
    return (
        0 if role and role in default_roles else 1,
        -priority if role and role in default_roles else 0,
        0 if view.get("is_default") else 1,
        _desc(view.get("updated_at")),
        _desc(view.get("created_at")),
        str(view.get("id") or ""),
    )


def _desc(value: Any) -> tuple:
    # Missing timestamps sort last (NULLS LAST).
    if value in (None, ""):
        return (1, "")
    text = value.isoformat() if hasattr(value, "isoformat") else str(value)
    return (0, "".join(chr(0x10FFFF - ord(ch)) for ch in text))


def select_editor_view(views: Iterable[dict] | None, role: Any) -> dict | None:
    """First match wins: default role, default flag, newest update, newest create, lowest id."""
    candidates = [v for v in views or [] if isinstance(v, dict)]
    if not candidates:
        return None
    role_upper = str(role or "").strip().upper()
    return sorted(candidates, key=lambda v: _view_sort_key(v, role_upper))[0]


def apply_title_policy(core: dict | None, title: Any, slug: Any, data: Any) -> Tuple[str, str]:
    """Resolve the stored (title, slug) pair for a write under an editor view's core config."""
    core = core if isinstance(core, dict) else {}
    if str(core.get("titleMode") or "").strip().lower() == "template":
        derived = derive_title(core.get("titleTemplate") or "", data if isinstance(data, dict) else {})
        if derived:
            title = derived
    safe_title = title.strip() if isinstance(title, str) else ""
    if not safe_title:
        raise ValidationError("Title is required", "title")
    safe_slug = slug.strip() if isinstance(slug, str) else ""
    # storage needs a slug, so a blank one is always derived
    if not safe_slug:
        safe_slug = slugify(safe_title)
    if not safe_slug:
        raise ValidationError("Slug could not be derived from title", "slug")
    return safe_title, safe_slug
