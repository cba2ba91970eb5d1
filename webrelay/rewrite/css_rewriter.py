import logging
import re

from webrelay.proxy.errors import RewriteSkipped
from webrelay.proxy.validation import resolve_reference
from webrelay.rewrite.context import RewriteContext

logger = logging.getLogger("uvicorn.error")

# url(foo.png), url('foo.png'), url("foo.png")
CSS_URL_RE = re.compile(
    r"""url\(\s*(?P<quote>['"]?)(?P<url>.*?)(?P=quote)\s*\)""",
    re.IGNORECASE | re.DOTALL,
)
# @import "foo.css"; @import 'foo.css'; (the url() form is covered above)
CSS_IMPORT_RE = re.compile(
    r"""@import\s+(?P<quote>['"])(?P<url>[^'"]+)(?P=quote)""",
    re.IGNORECASE,
)


def rewrite_css_reference(reference: str, ctx: RewriteContext) -> str:
    """Return the proxy link for one CSS reference, or raise RewriteSkipped."""
    if ctx.is_proxy_url(reference.strip()):
        raise RewriteSkipped(reference)
    return ctx.proxy_url(resolve_reference(reference, ctx.base_url))


def rewrite_css(css: str, ctx: RewriteContext) -> str:
    """Route every url(...) and @import reference in ``css`` through the proxy."""
    if not css:
        return css

    def _replace_url(match: re.Match) -> str:
        quote = match.group("quote")
        try:
            rewritten = rewrite_css_reference(match.group("url"), ctx)
        except RewriteSkipped:
            return match.group(0)
        return f"url({quote}{rewritten}{quote})"

    def _replace_import(match: re.Match) -> str:
        quote = match.group("quote")
        try:
            rewritten = rewrite_css_reference(match.group("url"), ctx)
        except RewriteSkipped:
            return match.group(0)
        return f"@import {quote}{rewritten}{quote}"

    css = CSS_URL_RE.sub(_replace_url, css)
    return CSS_IMPORT_RE.sub(_replace_import, css)
