from .rules import (
    AdBlockRules,
    BLOCKED_MARKER,
    DEFAULT_AD_DOMAINS,
    DEFAULT_AD_PATTERNS,
    should_block,
)

__all__ = [
    "AdBlockRules",
    "BLOCKED_MARKER",
    "DEFAULT_AD_DOMAINS",
    "DEFAULT_AD_PATTERNS",
    "should_block",
]
