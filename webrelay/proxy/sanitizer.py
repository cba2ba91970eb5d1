"""
Response header and cookie sanitization.

Upstream headers that would stop the page from being framed, or that would
describe the origin server, are removed; permissive framing headers are
forced so the embedding page can display the proxied response.
"""

import logging
from http.cookies import CookieError, SimpleCookie
from typing import Iterable, List, Tuple, Union

import httpx

logger = logging.getLogger("uvicorn.error")

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

BLOCKED_HEADERS = {
    "x-frame-options",
    "content-security-policy",
    "content-security-policy-report-only",
    "x-xss-protection",
    "x-content-type-options",
    "strict-transport-security",
    "access-control-allow-origin",
    # httpx already decoded the body, the original encoding no longer applies
    "content-encoding",
    # Recomputed for the rewritten body
    "content-length",
    "content-type",
}

IDENTITY_HEADERS = {
    "server",
    "x-powered-by",
}

FORCED_HEADERS = (
    ("Access-Control-Allow-Origin", "*"),
    ("X-Frame-Options", "SAMEORIGIN"),
    ("Content-Security-Policy", "frame-ancestors 'self'"),
)

HeaderSource = Union[httpx.Headers, Iterable[Tuple[str, str]], dict]


def _iter_headers(headers: HeaderSource) -> List[Tuple[str, str]]:
    if isinstance(headers, httpx.Headers):
        return headers.multi_items()
    if isinstance(headers, dict):
        return list(headers.items())
    return list(headers)


def _rewrite_cookie_attributes(set_cookie: str) -> str:
    """Attribute-by-attribute rewrite for cookies SimpleCookie cannot represent."""
    parts = [part.strip() for part in set_cookie.split(";")]
    kept = [parts[0]]
    for attribute in parts[1:]:
        if not attribute:
            continue
        name, _, value = attribute.partition("=")
        key = name.strip().lower()
        if key in ("domain", "secure"):
            continue
        if key == "samesite" and value.strip().lower() == "none":
            attribute = "SameSite=Lax"
        kept.append(attribute)
    return "; ".join(kept)


def rewrite_set_cookie(set_cookie: str) -> str:
    """
    Make an upstream cookie usable on the proxy's own host.

    Drops Domain (scoping the cookie to the proxy host) and Secure (so it
    survives a plain-HTTP deployment), and downgrades SameSite=None to Lax.
    """
    cookie = SimpleCookie()
    try:
        cookie.load(set_cookie)
    except CookieError as e:
        logger.warning(f"[Cookie] Failed to parse cookie, rewriting attributes: {e}")
        return _rewrite_cookie_attributes(set_cookie)

    # Unknown attributes are read as extra cookies, fall back for those too
    if len(cookie) != 1:
        return _rewrite_cookie_attributes(set_cookie)

    for morsel in cookie.values():
        morsel["domain"] = ""
        morsel["secure"] = False
        if str(morsel.get("samesite", "")).lower() == "none":
            morsel["samesite"] = "Lax"

    return "; ".join(morsel.OutputString() for morsel in cookie.values())


def sanitize_headers(headers: HeaderSource, anonymous: bool) -> List[Tuple[str, str]]:
    """
    Build the outbound header list from the upstream response headers.

    Set-Cookie is rewritten in identity-preserving mode and dropped entirely
    in anonymous mode, so no upstream state crosses the proxy.
    """
    sanitized: List[Tuple[str, str]] = []
    for name, value in _iter_headers(headers):
        name_lower = name.lower()
        if name_lower in HOP_BY_HOP_HEADERS or name_lower in BLOCKED_HEADERS:
            continue
        if anonymous and name_lower in IDENTITY_HEADERS:
            continue
        if name_lower == "set-cookie":
            if anonymous:
                continue
            value = rewrite_set_cookie(value)
        sanitized.append((name, value))

    sanitized.extend(FORCED_HEADERS)
    return sanitized
