import hashlib
from typing import Optional
from urllib.parse import urlsplit


def url_fingerprint(url: Optional[str]) -> str:
    """Provide a stable, low-leak URL identifier for logs."""
    if not url:
        return "<empty>"
    digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:12]
    return f"len={len(url)} sha256={digest}"


def loggable_url(url: Optional[str], anonymous: bool) -> str:
    """Full URL in identity-preserving mode, a fingerprint in anonymous mode."""
    if anonymous:
        return url_fingerprint(url)
    return url or "<empty>"


def target_host(url: Optional[str]) -> str:
    if not url:
        return ""
    try:
        return urlsplit(url).hostname or ""
    except ValueError:
        return ""
