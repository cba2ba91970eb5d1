"""
Static ad/tracking rule set and the block decision.

The rule set is built once at startup and never mutated. Matching is a
heuristic: false positives and false negatives are acceptable.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Pattern, Tuple
from urllib.parse import urlsplit

DEFAULT_AD_DOMAINS = (
    "doubleclick.net",
    "googlesyndication.com",
    "googleadservices.com",
    "google-analytics.com",
    "googletagmanager.com",
    "facebook.com/tr",
    "connect.facebook.net",
    "ads.twitter.com",
    "static.ads-twitter.com",
    "analytics.twitter.com",
    "adnxs.com",
    "advertising.com",
    "adsystem.com",
    "adtechus.com",
    "criteo.com",
    "outbrain.com",
    "taboola.com",
    "scorecardresearch.com",
    "quantserve.com",
)

DEFAULT_AD_PATTERNS = (
    r"/ads?/",
    r"/advert",
    r"/banner",
    r"/tracking",
    r"/analytics",
    r"/pixel",
    r"/beacon",
)

BLOCKED_MARKER = " Ad blocked "


@dataclass(frozen=True)
class AdBlockRules:
    domains: Tuple[str, ...]
    patterns: Tuple[Pattern[str], ...]

    @classmethod
    def build(
        cls,
        domains: Iterable[str] = DEFAULT_AD_DOMAINS,
        patterns: Iterable[str] = DEFAULT_AD_PATTERNS,
    ) -> "AdBlockRules":
        return cls(
            domains=tuple(d.lower() for d in domains if d),
            patterns=tuple(re.compile(p, re.IGNORECASE) for p in patterns),
        )


def should_block(url: str, rules: AdBlockRules) -> bool:
    """
    Decide whether ``url`` points at an ad or tracking resource.

    Unparseable input is never blocked so top-level navigation can still be
    attempted.
    """
    try:
        parsed = urlsplit(url)
    except ValueError:
        return False
    hostname = (parsed.hostname or "").lower()
    if not hostname:
        return False

    host_and_path = f"{hostname}{parsed.path.lower()}"
    for domain in rules.domains:
        # Entries like "facebook.com/tr" describe a host plus a path prefix
        haystack = host_and_path if "/" in domain else hostname
        if domain in haystack:
            return True

    return any(pattern.search(url) for pattern in rules.patterns)
