from urllib.parse import urljoin, urlsplit

from webrelay.proxy.errors import InvalidUrl, RewriteSkipped

ALLOWED_SCHEMES = ("http", "https")

# References that must never be routed through the proxy
UNTOUCHED_PREFIXES = (
    "data:",
    "javascript:",
    "mailto:",
    "tel:",
    "blob:",
    "about:",
    "#",
)


def validate_target_url(raw_url: str) -> str:
    """
    Validate that ``raw_url`` is an absolute http/https URL.

    Returns the URL unchanged (minus surrounding whitespace) or raises
    InvalidUrl. Has no side effects.
    """
    if not raw_url or not raw_url.strip():
        raise InvalidUrl("Invalid URL")

    url = raw_url.strip()
    try:
        parsed = urlsplit(url)
        # Accessing port validates it
        parsed.port
    except ValueError:
        raise InvalidUrl("Invalid URL")

    if not parsed.scheme:
        raise InvalidUrl("Invalid URL")
    # Any parsed scheme other than http/https, with or without an authority
    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise InvalidUrl("Only HTTP and HTTPS protocols are supported")
    if not parsed.netloc or not parsed.hostname:
        raise InvalidUrl("Invalid URL")
    return url


def is_untouched_reference(reference: str) -> bool:
    return reference.strip().lower().startswith(UNTOUCHED_PREFIXES)


def resolve_reference(reference: str, base_url: str) -> str:
    """
    Resolve a reference found inside a document against ``base_url``.

    Protocol-relative references (``//host/path``) inherit the base scheme.
    Raises RewriteSkipped when the reference must be left as it is.
    """
    candidate = reference.strip()
    if not candidate or is_untouched_reference(candidate):
        raise RewriteSkipped(reference)
    try:
        absolute = urljoin(base_url, candidate)
        return validate_target_url(absolute)
    except (InvalidUrl, ValueError):
        raise RewriteSkipped(reference)
