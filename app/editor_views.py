"""Editor view normalization and selection.

Stored views carry their sections in several historical places and their
config sometimes as a JSON string. ``normalize_view`` is the one place that
reads those shapes; everything downstream sees ``config = {core, sections?}``
where ``sections`` is absent when the view never configured any.
"""

from __future__ import annotations

import copy
from typing import Any, Iterable, List

from layout_compile import compile_layout
from strata.canonical_json import ensure_json
from strata.errors import ValidationError
from strata.field_types import as_int
from title_template import select_editor_view, slugify


EMPTY_CORE = {
    "titleLabel": "Title",
    "slugLabel": "Slug",
    "statusLabel": "Status",
    "titleMode": "manual",
    "titleTemplate": "",
    "hideTitle": False,
    "hideSlug": False,
    "hideStatus": False,
    "hidePreview": False,
    "autoSlugFromTitleIfEmpty": True,
}
TITLE_MODES = {"manual", "template"}


def parse_config(raw: Any) -> dict:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (str, bytes)):
        parsed = ensure_json(raw)
        return parsed if isinstance(parsed, dict) else {}
    return {}


def normalize_core(raw: Any) -> dict:
    core = dict(EMPTY_CORE)
    if isinstance(raw, dict):
        core.update({k: v for k, v in raw.items() if v is not None})
    mode = str(core.get("titleMode") or "manual").strip().lower()
    core["titleMode"] = mode if mode in TITLE_MODES else "manual"
    core["titleTemplate"] = str(core.get("titleTemplate") or "")
    for flag in ("hideTitle", "hideSlug", "hideStatus", "hidePreview"):
        core[flag] = bool(core.get(flag))
    core["autoSlugFromTitleIfEmpty"] = core.get("autoSlugFromTitleIfEmpty") is not False
    return core


def raw_sections(view: Any) -> list | None:
    """First sections list found across legacy locations; None when there is none."""
    if not isinstance(view, dict):
        return None
    cfg = parse_config(view.get("config"))
    layout = cfg.get("layout") if isinstance(cfg.get("layout"), dict) else {}
    for candidate in (
        cfg.get("sections"),
        cfg.get("widgets"),
        view.get("sections"),
        view.get("widgets"),
        layout.get("sections"),
    ):
        if isinstance(candidate, list):
            return candidate
    return None


def _normalize_ref(ref: Any) -> dict | None:
    if isinstance(ref, str):
        key = ref.strip()
        return {"key": key, "width": 1} if key else None
    if not isinstance(ref, dict):
        return None
    key = ""
    for name in ("key", "field_key", "fieldKey", "field", "id"):
        value = ref.get(name)
        if isinstance(value, str) and value.strip():
            key = value.strip()
            break
    if not key:
        return None
    width = as_int(ref.get("width"))
    if width is None:
        width = as_int(ref.get("colSpan"))
    out = {"key": key, "width": width if width and width > 0 else 1}
    if ref.get("visible") is False:
        out["visible"] = False
    return out


def normalize_sections(raw: Iterable[Any]) -> List[dict]:
    sections = []
    for idx, section in enumerate(raw or []):
        if not isinstance(section, dict):
            continue
        refs = section.get("fields") if isinstance(section.get("fields"), list) else []
        item = {
            "id": str(section.get("id") or f"widget-{idx + 1}"),
            "title": str(section.get("title") or f"Widget {idx + 1}"),
            "description": str(section.get("description") or ""),
            "layout": str(section.get("layout") or "one-column"),
            "fields": [r for r in (_normalize_ref(ref) for ref in refs) if r is not None],
        }
        columns = as_int(section.get("columns"))
        if columns is not None and columns > 0:
            item["columns"] = columns
        sections.append(item)
    return sections


def _roles(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    out: List[str] = []
    for role in value:
        text = str(role or "").strip().upper()
        if text and text not in out:
            out.append(text)
    return out


def normalize_view(record: dict) -> dict:
    cfg = parse_config(record.get("config"))
    sections = raw_sections(record)
    config = {"core": normalize_core(cfg.get("core"))}
    if sections is not None:
        config["sections"] = normalize_sections(sections)
    priority = as_int(record.get("priority", cfg.get("priority")))
    return {
        "id": record.get("id"),
        "content_type_id": record.get("content_type_id"),
        "slug": str(record.get("slug") or ""),
        "label": str(record.get("label") or record.get("slug") or ""),
        "roles": _roles(record.get("roles") if record.get("roles") is not None else cfg.get("roles")),
        "default_roles": _roles(
            record.get("default_roles") if record.get("default_roles") is not None else cfg.get("default_roles")
        ),
        "is_default": bool(record.get("is_default")),
        "priority": priority or 0,
        "config": config,
        "created_at": record.get("created_at"),
        "updated_at": record.get("updated_at"),
    }


def prepare_view(payload: Any, existing: dict | None = None) -> dict:
    """Validate a create/update payload into the stored view shape."""
    if not isinstance(payload, dict):
        raise ValidationError("Editor view payload must be an object")
    base = normalize_view(existing) if existing else {}
    label = str(payload.get("label") or base.get("label") or "").strip()
    slug = str(payload.get("slug") or base.get("slug") or "").strip()
    slug = slugify(slug or label)
    if not label:
        raise ValidationError("Editor view label is required", "label")
    if not slug:
        raise ValidationError("Editor view slug is required", "slug")
    merged = dict(base)
    merged.update({k: v for k, v in payload.items() if k in ("roles", "default_roles", "is_default", "priority", "config")})
    if "sections" in payload or "widgets" in payload:
        merged["sections"] = payload.get("sections", payload.get("widgets"))
    view = normalize_view({**merged, "label": label, "slug": slug})
    if "ADMIN" not in view["roles"]:
        view["roles"].append("ADMIN")
    return {
        "slug": view["slug"],
        "label": view["label"],
        "roles": view["roles"],
        "default_roles": view["default_roles"],
        "is_default": view["is_default"],
        "priority": view["priority"],
        "config": view["config"],
    }


def view_allows_role(view: dict, role: str) -> bool:
    roles = view.get("roles") or []
    return not roles or role in roles


def pick_view_by_slug(views: Iterable[dict], slug: str) -> dict | None:
    """Slug match, preferring a view that actually has sections."""
    target = str(slug or "").strip().lower()
    matches = [v for v in views if str(v.get("slug") or "").lower() == target]
    if not matches:
        return None
    for view in matches:
        if view.get("config", {}).get("sections"):
            return view
    return matches[0]


def effective_view(views: Iterable[dict], role: Any, view_slug: str | None = None) -> dict | None:
    role_upper = str(role or "").strip().upper()
    normalized = [normalize_view(v) for v in views or [] if isinstance(v, dict)]
    if view_slug:
        picked = pick_view_by_slug(normalized, view_slug)
        if picked is not None and view_allows_role(picked, role_upper):
            return picked
    allowed = [v for v in normalized if view_allows_role(v, role_upper)] or normalized
    return select_editor_view(allowed, role_upper)


def effective_core(views: Iterable[dict], role: Any) -> dict:
    view = effective_view(views, role)
    return copy.deepcopy(view["config"]["core"]) if view else dict(EMPTY_CORE)


def compile_view_layout(fields: List[dict], view: dict | None) -> tuple[list[dict], list[dict]]:
    """(sections, warnings) for a view; an empty configured layout yields a warning."""
    config = view.get("config") if isinstance(view, dict) else None
    sections = compile_layout(fields, config or {})
    warnings: list[dict] = []
    if not sections and isinstance(config, dict) and "sections" in config:
        warnings.append(
            {
                "code": "VIEW_SECTIONS_EMPTY",
                "message": "Editor view has sections configured but none resolve to fields",
                "path": "config.sections",
                "detail": {"view_id": view.get("id"), "slug": view.get("slug")},
            }
        )
    return sections, warnings
