"""Bearer JWT auth middleware.

Tokens are verified with a shared HS256 secret (``STRATA_JWT_SECRET``) or,
when ``STRATA_JWKS_URL`` is set, against the JWKS document fetched with httpx
and cached for ten minutes. The verified claims land on
``request.state.user`` with an uppercase ``role``.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional

import httpx
from jose import jwt
from jose.exceptions import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse


logger = logging.getLogger("strata.auth")

_JWKS_CACHE: Dict[str, Any] = {"keys": None, "url": None, "fetched_at": 0.0, "ttl": 600.0}
PUBLIC_PATHS = {"/health"}


def auth_disabled() -> bool:
    return os.getenv("STRATA_DISABLE_AUTH", "").strip().lower() in ("1", "true", "yes")


def default_role() -> str:
    return (os.getenv("STRATA_DEFAULT_ROLE", "ADMIN").strip() or "ADMIN").upper()


def normalize_role(value: Any) -> str:
    text = str(value or "").strip().upper()
    return text or default_role()


def _fetch_jwks(jwks_url: str, force: bool = False) -> dict:
    now = time.time()
    fresh = now - _JWKS_CACHE["fetched_at"] < _JWKS_CACHE["ttl"]
    if not force and _JWKS_CACHE["keys"] and _JWKS_CACHE["url"] == jwks_url and fresh:
        return _JWKS_CACHE["keys"]
    resp = httpx.get(jwks_url, timeout=10.0)
    resp.raise_for_status()
    data = resp.json()
    _JWKS_CACHE.update({"keys": data, "url": jwks_url, "fetched_at": now})
    return data


def _find_jwk(jwks: dict, kid: str | None) -> dict | None:
    for jwk in jwks.get("keys", []):
        if jwk.get("kid") == kid:
            return jwk
    return None


def _get_bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.split(" ", 1)[1].strip() or None


def verify_token(token: str, secret: str | None, jwks_url: str | None, audience: str | None = None) -> dict:
    options = {"verify_aud": audience is not None}
    if jwks_url:
        headers = jwt.get_unverified_header(token)
        kid = headers.get("kid")
        key = _find_jwk(_fetch_jwks(jwks_url), kid) or _find_jwk(_fetch_jwks(jwks_url, force=True), kid)
        if key is None:
            raise JWTError("Unknown kid")
        return jwt.decode(token, key, algorithms=[headers.get("alg", "RS256")], audience=audience, options=options)
    if not secret:
        raise JWTError("No verification key configured")
    return jwt.decode(token, secret, algorithms=["HS256"], audience=audience, options=options)


def _auth_error(code: str, message: str, detail: dict | None = None) -> JSONResponse:
    return JSONResponse(
        {
            "ok": False,
            "errors": [{"code": code, "message": message, "path": "Authorization", "detail": detail}],
            "warnings": [],
        },
        status_code=401,
    )


class JwtAuthMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        secret: str | None = None,
        jwks_url: str | None = None,
        audience: Optional[str] = None,
    ) -> None:
        super().__init__(app)
        self._secret = secret
        self._jwks_url = jwks_url
        self._audience = audience

    async def dispatch(self, request: Request, call_next):
        if auth_disabled():
            request.state.user = {"id": None, "email": None, "role": default_role(), "claims": {}}
            return await call_next(request)
        if request.method == "OPTIONS" or request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        token = _get_bearer_token(request)
        if not token:
            logger.warning("auth_missing_token path=%s", request.url.path)
            return _auth_error("AUTH_MISSING_TOKEN", "Missing bearer token")

        try:
            claims = verify_token(token, self._secret, self._jwks_url, self._audience)
        except (JWTError, httpx.HTTPError) as exc:
            logger.warning("auth_invalid_token path=%s error=%s", request.url.path, exc)
            return _auth_error("AUTH_INVALID_TOKEN", "Invalid bearer token", {"error": str(exc)})

        request.state.user = {
            "id": claims.get("sub") or claims.get("id"),
            "email": claims.get("email"),
            "role": normalize_role(claims.get("role")),
            "claims": claims,
        }
        return await call_next(request)


def request_role(request: Request) -> str:
    user = getattr(request.state, "user", None)
    if isinstance(user, dict):
        return normalize_role(user.get("role"))
    return default_role()
