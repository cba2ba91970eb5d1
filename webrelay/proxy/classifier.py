from enum import Enum


class ContentKind(str, Enum):
    HTML = "html"
    CSS = "css"
    PASSTHROUGH = "passthrough"


def classify(content_type: str) -> ContentKind:
    """Pick the body transformer for an upstream Content-Type."""
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    if media_type == "text/html":
        return ContentKind.HTML
    if media_type == "text/css":
        return ContentKind.CSS
    return ContentKind.PASSTHROUGH
