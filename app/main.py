"""FastAPI app for the Strata content engine."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

import logging
import time

from app.auth import JwtAuthMiddleware, auth_disabled, request_role
from app.db import get_db_query_log, get_db_stats, reset_db_stats
from app.editor_views import compile_view_layout, effective_view, normalize_view, prepare_view
from app.entries import EntryService
from app.stores import MemoryEditorViewStore, MemoryEntryStore, MemoryUserStore
from repeater_runtime import apply_row_op, evaluate_repeater, prune_rows, repeater_config
from schema_registry import FieldSchemaRegistry
from strata.errors import HTTP_STATUS, NotFoundError, StrataError, ValidationError


app = FastAPI(title="Strata")
logger = logging.getLogger("strata")
logging.basicConfig(level=logging.INFO)

USE_DB = os.getenv("USE_DB", "").strip() == "1"
REQ_SLOW_MS = float(os.getenv("STRATA_REQ_SLOW_MS", "250"))
JWT_SECRET = os.getenv("STRATA_JWT_SECRET", "").strip() or None
JWKS_URL = os.getenv("STRATA_JWKS_URL", "").strip() or None
JWT_AUD = os.getenv("STRATA_JWT_AUD", "").strip() or None
DISABLE_AUTH = auth_disabled()
logger.info("auth_disabled=%s jwks=%s use_db=%s", DISABLE_AUTH, bool(JWKS_URL), USE_DB)

_LOCAL_CORS_REGEX = r"http://localhost:\d+|http://127\.0\.0\.1:\d+"
_CORS_ORIGINS = {
    origin.strip().rstrip("/")
    for origin in os.getenv("STRATA_CORS_ORIGINS", "").split(",")
    if origin.strip()
}

if USE_DB:
    from app.stores_db import DbEditorViewStore, DbEntryStore, DbSchemaRegistry, DbUserStore, ensure_schema

    ensure_schema()
    registry = DbSchemaRegistry()
    entry_store = DbEntryStore()
    view_store = DbEditorViewStore()
    user_store = DbUserStore()
else:
    entry_store = MemoryEntryStore()
    registry = FieldSchemaRegistry(entry_count=entry_store.count)
    view_store = MemoryEditorViewStore()
    user_store = MemoryUserStore()

entries = EntryService(registry, entry_store, view_store, user_store)


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


@app.exception_handler(StrataError)
async def strata_error_handler(request: Request, exc: StrataError):
    status = HTTP_STATUS.get(exc.code, 400)
    if status >= 500:
        logger.warning("request_failed path=%s code=%s message=%s", request.url.path, exc.code, exc.message)
    return _error_response(exc.code, exc.message, exc.path, exc.detail, status=status)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error path=%s", request.url.path)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    reset_db_stats()
    start = time.perf_counter()
    response = await call_next(request)
    total_ms = (time.perf_counter() - start) * 1000
    db_stats = get_db_stats()
    logger.info(
        "%s %s %s total_ms=%.1f db_ms=%.1f db_q=%s",
        request.method,
        request.url.path,
        response.status_code,
        total_ms,
        db_stats.get("total_ms", 0.0),
        db_stats.get("queries", 0),
    )
    if total_ms >= REQ_SLOW_MS:
        logger.warning(
            "slow_request method=%s path=%s total_ms=%.1f queries=%s",
            request.method,
            request.url.path,
            total_ms,
            get_db_query_log(),
        )
    return response


if not DISABLE_AUTH and not (JWT_SECRET or JWKS_URL):
    raise RuntimeError("STRATA_JWT_SECRET or STRATA_JWKS_URL is required unless STRATA_DISABLE_AUTH=1")
app.add_middleware(JwtAuthMiddleware, secret=JWT_SECRET, jwks_url=JWKS_URL, audience=JWT_AUD)
app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(_CORS_ORIGINS),
    allow_origin_regex=_LOCAL_CORS_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        raise ValidationError("Request body must be valid JSON", "body") from exc


def _flag(value: str | None) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes")


def _require_type(content_type_id: str) -> dict:
    content_type = registry.get_content_type(content_type_id, include_fields=False)
    if content_type is None:
        raise NotFoundError("Content type not found", "content_type_id", {"id": content_type_id})
    return content_type


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


# ---------------------------------------------------------------- content types


@app.get("/api/content-types")
async def list_content_types(kind: str | None = None) -> JSONResponse:
    return _ok_response({"content_types": registry.list_content_types(kind)})


@app.post("/api/content-types")
async def create_content_type(request: Request) -> JSONResponse:
    body = await _json_body(request)
    content_type = registry.create_content_type(body if isinstance(body, dict) else {})
    logger.info("content_type_created id=%s slug=%s", content_type["id"], content_type["slug"])
    return _ok_response({"content_type": content_type}, status=201)


@app.get("/api/content-types/{content_type_id}")
async def get_content_type(content_type_id: str) -> JSONResponse:
    content_type = registry.get_content_type(content_type_id)
    if content_type is None:
        raise NotFoundError("Content type not found", "content_type_id", {"id": content_type_id})
    return _ok_response({"content_type": content_type})


@app.put("/api/content-types/{content_type_id}")
async def update_content_type(content_type_id: str, request: Request) -> JSONResponse:
    body = await _json_body(request)
    content_type = registry.update_content_type(content_type_id, body if isinstance(body, dict) else {})
    return _ok_response({"content_type": content_type})


@app.delete("/api/content-types/{content_type_id}")
async def delete_content_type(content_type_id: str) -> JSONResponse:
    content_type = _require_type(content_type_id)
    removed = entry_store.delete_for_type(content_type["id"])
    view_store.delete_for_type(content_type["id"])
    registry.delete_content_type(content_type["id"])
    logger.info("content_type_deleted id=%s entries=%s", content_type["id"], removed)
    return _ok_response({"id": content_type["id"]})


@app.get("/api/content-types/{content_type_id}/fields")
async def get_fields(content_type_id: str) -> JSONResponse:
    return _ok_response({"fields": registry.get_fields(content_type_id)})


@app.put("/api/content-types/{content_type_id}/fields")
async def replace_fields(content_type_id: str, request: Request) -> JSONResponse:
    body = await _json_body(request)
    fields = body.get("fields") if isinstance(body, dict) else body
    return _ok_response({"fields": registry.replace_fields(content_type_id, fields)})


# ---------------------------------------------------------------- editor views


@app.get("/api/content-types/{content_type_id}/editor-views/effective")
async def get_effective_view(
    content_type_id: str,
    request: Request,
    role: str | None = None,
    view: str | None = None,
) -> JSONResponse:
    content_type = _require_type(content_type_id)
    acting_role = (role or "").strip().upper() or request_role(request)
    picked = effective_view(view_store.list(content_type["id"]), acting_role, view)
    fields = registry.get_fields(content_type["id"])
    sections, warnings = compile_view_layout(fields, picked)
    return _ok_response({"view": picked, "role": acting_role, "sections": sections}, warnings=warnings)


@app.get("/api/content-types/{content_type_id}/editor-views")
async def list_editor_views(content_type_id: str) -> JSONResponse:
    content_type = _require_type(content_type_id)
    return _ok_response({"views": [normalize_view(v) for v in view_store.list(content_type["id"])]})


@app.post("/api/content-types/{content_type_id}/editor-views")
async def create_editor_view(content_type_id: str, request: Request) -> JSONResponse:
    content_type = _require_type(content_type_id)
    values = prepare_view(await _json_body(request))
    view = view_store.create(content_type["id"], values)
    return _ok_response({"view": normalize_view(view)}, status=201)


@app.put("/api/content-types/{content_type_id}/editor-views/{view_id}")
async def update_editor_view(content_type_id: str, view_id: str, request: Request) -> JSONResponse:
    content_type = _require_type(content_type_id)
    current = view_store.get(content_type["id"], view_id)
    if current is None:
        raise NotFoundError("Editor view not found", "view_id", {"id": view_id})
    values = prepare_view(await _json_body(request), current)
    view = view_store.update(content_type["id"], view_id, values)
    return _ok_response({"view": normalize_view(view)})


@app.delete("/api/content-types/{content_type_id}/editor-views/{view_id}")
async def delete_editor_view(content_type_id: str, view_id: str) -> JSONResponse:
    content_type = _require_type(content_type_id)
    if not view_store.delete(content_type["id"], view_id):
        raise NotFoundError("Editor view not found", "view_id", {"id": view_id})
    return _ok_response({"id": view_id})


# ---------------------------------------------------------------- entries


@app.get("/api/content/{type_slug}")
async def list_entries(type_slug: str, display: str | None = None) -> JSONResponse:
    return _ok_response({"entries": entries.list_entries(type_slug, display=_flag(display))})


@app.get("/api/content/{type_slug}/options")
async def list_options(type_slug: str, field: str | None = None) -> JSONResponse:
    return _ok_response(entries.options(type_slug, field))


@app.get("/api/content/{type_slug}/{id_or_slug}")
async def get_entry(type_slug: str, id_or_slug: str) -> JSONResponse:
    return _ok_response({"entry": entries.get_entry(type_slug, id_or_slug)})


@app.get("/api/content/{type_slug}/{id_or_slug}/versions")
async def list_entry_versions(type_slug: str, id_or_slug: str) -> JSONResponse:
    return _ok_response({"versions": entries.list_versions(type_slug, id_or_slug)})


@app.post("/api/content/{type_slug}")
async def create_entry(type_slug: str, request: Request) -> JSONResponse:
    body = await _json_body(request)
    entry = entries.create_entry(type_slug, body, request_role(request))
    return _ok_response({"entry": entry}, status=201)


@app.put("/api/content/{type_slug}/{id_or_slug}")
async def update_entry(type_slug: str, id_or_slug: str, request: Request) -> JSONResponse:
    body = await _json_body(request)
    entry = entries.update_entry(type_slug, id_or_slug, body, request_role(request))
    return _ok_response({"entry": entry})


@app.delete("/api/content/{type_slug}/{id_or_slug}")
async def delete_entry(type_slug: str, id_or_slug: str) -> JSONResponse:
    entries.delete_entry(type_slug, id_or_slug)
    return _ok_response({"id_or_slug": id_or_slug})


# ---------------------------------------------------------------- repeater


@app.post("/api/repeater/evaluate")
async def evaluate_repeater_rows(request: Request) -> JSONResponse:
    """Re-evaluate a repeater after an edit; ``op`` optionally applies a row operation first."""
    body = await _json_body(request)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be an object", "body")
    source = body.get("field") if isinstance(body.get("field"), dict) else body.get("config")
    if not isinstance(source, dict):
        raise ValidationError("field or config is required", "field")
    config = repeater_config(source)
    rows = body.get("rows", body.get("value"))
    if body.get("op") is not None:
        rows = apply_row_op(config, rows, body.get("op"))
    depth = body.get("depth") if isinstance(body.get("depth"), int) and body.get("depth") > 0 else 1
    return _ok_response(
        {
            "rows": prune_rows(config, rows if isinstance(rows, list) else [], depth),
            "repeater": evaluate_repeater(config, rows, depth),
        }
    )
