"""Value canonicalizers for email, phone, url and address fields.

Each canonicalizer returns the canonical form or raises ``ValueError`` for a
malformed value. Empty values (None or blank strings) come back unchanged.
"""

from __future__ import annotations

import os
import re
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from email_validator import EmailNotValidError, validate_email


ADDRESS_KEYS = ("line1", "line2", "city", "state", "postal", "country")
_NON_DIGIT = re.compile(r"\D+")
_WS = re.compile(r"\s+")
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_DEFAULT_PORTS = {"http": 80, "https": 443}

# Country calling codes for the regions we format national numbers for.
_REGION_CODES = {"US": "1", "CA": "1"}


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def canonical_email(value: Any) -> Any:
    if _is_empty(value):
        return value
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    try:
        result = validate_email(value.strip(), check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValueError(f"invalid email: {value!r}") from exc
    return result.normalized.lower()


def canonical_phone(value: Any, region: str | None = None) -> Any:
    if _is_empty(value):
        return value
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValueError("phone must be a string")
    text = str(value).strip()
    digits = _NON_DIGIT.sub("", text)
    if text.startswith("+"):
        if 8 <= len(digits) <= 15:
            return f"+{digits}"
        raise ValueError(f"invalid international phone: {value!r}")
    region = (region or os.getenv("STRATA_PHONE_REGION", "US")).strip().upper()
    country = _REGION_CODES.get(region)
    if country is None:
        raise ValueError(f"unsupported phone region: {region}")
    if len(digits) == 10:
        return f"+{country}{digits}"
    if len(digits) == 11 and digits.startswith(country):
        return f"+{digits}"
    raise ValueError(f"invalid phone: {value!r}")


def canonical_url(value: Any) -> Any:
    if _is_empty(value):
        return value
    if not isinstance(value, str):
        raise ValueError("url must be a string")
    text = value.strip()
    if " " in text:
        raise ValueError(f"invalid url: {value!r}")
    if text.startswith("//"):
        text = f"https:{text}"
    elif not _SCHEME_RE.match(text):
        text = f"https://{text}"
    parts = urlsplit(text)
    if not parts.hostname:
        raise ValueError(f"invalid url: {value!r}")
    scheme = parts.scheme.lower()
    host = parts.hostname.lower()
    port = parts.port
    netloc = f"[{host}]" if ":" in host else host
    if parts.username:
        auth = parts.username + (f":{parts.password}" if parts.password else "")
        netloc = f"{auth}@{netloc}"
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"
    return urlunsplit((scheme, netloc, parts.path, parts.query, parts.fragment))


def canonical_address(value: Any) -> Any:
    if value is None:
        return value
    if not isinstance(value, dict):
        raise ValueError("address must be an object")
    out = {}
    for key in ADDRESS_KEYS:
        part = value.get(key)
        if part is None:
            continue
        text = _WS.sub(" ", str(part)).strip()
        if key in ("state", "country") and len(text) == 2:
            text = text.upper()
        out[key] = text
    return out


CANONICALIZERS = {
    "email": canonical_email,
    "phone": canonical_phone,
    "url": canonical_url,
    "address": canonical_address,
}
