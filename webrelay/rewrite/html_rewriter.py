"""
DOM-level rewriting of HTML documents.

The document is parsed into a tree (BeautifulSoup over lxml) and URL-bearing
attributes are mutated in place. A reference that cannot be resolved is left
exactly as it was; one bad link never aborts the rest of the page.
"""

import logging
import re
from typing import List, Optional, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Comment

from webrelay.adblock import AdBlockRules, BLOCKED_MARKER, should_block
from webrelay.proxy.errors import InvalidUrl, RewriteSkipped
from webrelay.proxy.validation import resolve_reference, validate_target_url
from webrelay.rewrite.client_script import SCRIPT_MARKER, render_client_script
from webrelay.rewrite.context import RewriteContext
from webrelay.rewrite.css_rewriter import rewrite_css

logger = logging.getLogger("uvicorn.error")

URL_ATTRIBUTES = ("href", "src", "action", "poster", "formaction")
SRCSET_ATTRIBUTES = ("srcset",)
BLOCKABLE_TAGS = ["script", "iframe"]
SRCSET_URL_RE = re.compile(r"[\s,]*(\S+)")
SRCSET_DESCRIPTOR_RE = re.compile(r"(?:[^,(]|\([^)]*\)?)*")
META_REFRESH_RE = re.compile(r"(?P<head>.*?\burl\s*=\s*)(?P<quote>['\"]?)(?P<url>[^'\"]*)(?P=quote)", re.I | re.S)


def rewrite_reference(reference: str, ctx: RewriteContext) -> str:
    """Return the proxy link for one attribute value, or raise RewriteSkipped."""
    if ctx.is_proxy_url(reference.strip()):
        raise RewriteSkipped(reference)
    return ctx.proxy_url(resolve_reference(reference, ctx.base_url))


def split_srcset(srcset: str) -> List[Tuple[str, str]]:
    """
    Split a srcset value into ``(url, descriptor)`` candidates.

    Follows the HTML parsing rules: the URL runs up to the next whitespace,
    so commas inside it (``data:image/gif;base64,...``) belong to the URL.
    A URL ending in commas has no descriptor; otherwise the descriptor runs
    up to the next comma outside parentheses.
    """
    candidates = []
    pos = 0
    while True:
        match = SRCSET_URL_RE.match(srcset, pos)
        if not match:
            break
        url, pos = match.group(1), match.end()
        descriptor = ""
        if url.endswith(","):
            url = url.rstrip(",")
        else:
            tail = SRCSET_DESCRIPTOR_RE.match(srcset, pos)
            descriptor = tail.group(0).strip()
            pos = tail.end() + 1
        candidates.append((url, descriptor))
    return candidates


def rewrite_srcset(srcset: str, ctx: RewriteContext) -> str:
    """Rewrite only the URL of every ``url descriptor`` candidate."""
    candidates = []
    for url, descriptor in split_srcset(srcset):
        try:
            url = rewrite_reference(url, ctx)
        except RewriteSkipped:
            logger.debug(f"[Rewrite] Skipped srcset candidate: {url[:200]}")
        candidates.append(f"{url} {descriptor}" if descriptor else url)
    return ", ".join(candidates)


def _existing_base(soup: BeautifulSoup, response_url: str) -> Optional[str]:
    base = soup.find("base", href=True)
    if base is None:
        return None
    try:
        return validate_target_url(urljoin(response_url, base["href"]))
    except (InvalidUrl, ValueError):
        return None


def _remove_blocked_resources(soup: BeautifulSoup, ctx: RewriteContext, rules: AdBlockRules) -> int:
    blocked = 0
    for element in soup.find_all(BLOCKABLE_TAGS, src=True):
        try:
            absolute = resolve_reference(element["src"], ctx.base_url)
        except RewriteSkipped:
            continue
        if should_block(absolute, rules):
            element.replace_with(Comment(BLOCKED_MARKER))
            blocked += 1
    return blocked


def _rewrite_attributes(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    for attr in URL_ATTRIBUTES:
        for element in soup.find_all(attrs={attr: True}):
            if element.name == "base":
                continue
            value = element.get(attr)
            if not isinstance(value, str):
                continue
            try:
                element[attr] = rewrite_reference(value, ctx)
            except RewriteSkipped:
                logger.debug(f"[Rewrite] Left {attr} untouched: {value[:200]}")

    for attr in SRCSET_ATTRIBUTES:
        for element in soup.find_all(attrs={attr: True}):
            element[attr] = rewrite_srcset(element[attr], ctx)


def _rewrite_get_forms(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    """
    Point GET forms at the entry point itself.

    A GET submission replaces the query string of its action, so the target
    travels in hidden inputs and the entry point merges the submitted fields
    into the target URL.
    """
    for form in soup.find_all("form"):
        method = (form.get("method") or "get").strip().lower()
        if method != "get":
            continue
        action = form.get("action") or ""
        try:
            if ctx.is_proxy_url(action):
                continue
            target = resolve_reference(action, ctx.base_url) if action.strip() else ctx.base_url
        except RewriteSkipped:
            continue
        form["action"] = ctx.proxy_entry
        for name, value in reversed(list(ctx.target_params(target).items())):
            hidden = soup.new_tag("input", attrs={"type": "hidden", "name": name, "value": value})
            form.insert(0, hidden)


def _rewrite_meta_refresh(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    for meta in soup.find_all("meta", attrs={"http-equiv": re.compile(r"^refresh$", re.I)}):
        content = meta.get("content") or ""
        match = META_REFRESH_RE.match(content)
        if not match:
            continue
        try:
            rewritten = rewrite_reference(match.group("url"), ctx)
        except RewriteSkipped:
            continue
        meta["content"] = f"{match.group('head')}{rewritten}"


def _rewrite_styles(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    for element in soup.find_all(style=True):
        element["style"] = rewrite_css(element["style"], ctx)
    for style in soup.find_all("style"):
        if style.string:
            style.string = rewrite_css(style.string, ctx)


def _ensure_head(soup: BeautifulSoup):
    if soup.head is not None:
        return soup.head
    head = soup.new_tag("head")
    if soup.html is not None:
        soup.html.insert(0, head)
    else:
        soup.insert(0, head)
    return head


def rewrite_html(
    html: str,
    ctx: RewriteContext,
    ad_block_rules: Optional[AdBlockRules] = None,
    inject_script: bool = True,
) -> str:
    """
    Rewrite an HTML document so every reference flows back through the proxy.

    ctx.base_url is the URL the document was served from. Sub-resource ad
    blocking runs when ctx.ad_block is set and rules are given.
    """
    soup = BeautifulSoup(html, "lxml")

    existing_base = _existing_base(soup, ctx.base_url)
    if existing_base:
        ctx = ctx.with_base(existing_base)

    if ctx.ad_block and ad_block_rules is not None:
        blocked = _remove_blocked_resources(soup, ctx, ad_block_rules)
        if blocked:
            logger.debug(f"[Rewrite] Blocked {blocked} ad resources")

    # Forms first: their action becomes the bare entry point, which the
    # attribute pass recognises as already routed
    _rewrite_get_forms(soup, ctx)
    _rewrite_attributes(soup, ctx)
    _rewrite_meta_refresh(soup, ctx)
    _rewrite_styles(soup, ctx)

    head = _ensure_head(soup)
    if existing_base is None:
        head.insert(0, soup.new_tag("base", href=ctx.base_url))
    if inject_script:
        script = soup.new_tag("script", attrs={SCRIPT_MARKER: "client"})
        script.string = render_client_script(ctx)
        head.insert(0, script)

    return str(soup)
