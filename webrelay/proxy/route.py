import logging
from typing import Optional, Tuple
from urllib.parse import urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from opentelemetry import trace
from starlette.background import BackgroundTask
from starlette.datastructures import QueryParams

from webrelay.adblock import should_block
from webrelay.codec import decode, encode
from webrelay.proxy.classifier import ContentKind, classify
from webrelay.proxy.errors import InvalidUrl, ProxyError
from webrelay.proxy.fetcher import TargetRequest, UpstreamResponse, fetch_upstream
from webrelay.proxy.sanitizer import sanitize_headers
from webrelay.proxy.validation import validate_target_url
from webrelay.rewrite import RewriteContext, rewrite_css, rewrite_html
from webrelay.settings import ProxySettings
from webrelay.utils import loggable_url
from webrelay.utils.exception_logging import log_exception_with_details
from webrelay.utils.traced_requests import traced_request
from webrelay.vars import PROXY_ENTRY_PATH

router = APIRouter(prefix=PROXY_ENTRY_PATH)
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# Query parameters that belong to the entry point; everything else is the target's
ENTRY_PARAMETERS = {"url", "p", "adBlock"}


def get_settings(request: Request) -> ProxySettings:
    return request.app.state.settings


def error_response(error: ProxyError) -> JSONResponse:
    return JSONResponse({"error": error.message}, status_code=error.status_code)


def ad_block_enabled(params: QueryParams) -> bool:
    """Ad-blocking is on unless the literal string "false" is given."""
    return params.get("adBlock") != "false"


def merge_extra_params(url: str, params: QueryParams) -> str:
    """Append query parameters not meant for the entry point to the target URL."""
    extra = [(k, v) for k, v in params.multi_items() if k not in ENTRY_PARAMETERS]
    if not extra:
        return url
    parsed = urlsplit(url)
    query = "&".join(q for q in (parsed.query, urlencode(extra)) if q)
    return urlunsplit((parsed.scheme, parsed.netloc, parsed.path, query, parsed.fragment))


def resolve_target(params: QueryParams) -> Tuple[str, bool]:
    """
    Work out the target URL and mode from the entry point's query.

    ``p`` (anonymous mode) takes precedence over ``url``. A token that fails
    to decode ends the request; nothing recovered from it is ever fetched.
    """
    token = params.get("p")
    raw_url = params.get("url")
    if token:
        url, anonymous = decode(token), True
    elif raw_url:
        url, anonymous = raw_url, False
    else:
        raise InvalidUrl("URL parameter is required")

    url = validate_target_url(url)
    return merge_extra_params(url, params), anonymous


def proxy_entry_url(request: Request, settings: ProxySettings) -> str:
    """Absolute URL of the entry point, so links survive the injected <base>."""
    origin = settings.public_url or str(request.base_url).rstrip("/")
    return f"{origin}{settings.entry_path}"


def apply_headers(response: Response, headers, content_type: Optional[str] = None) -> Response:
    # Set verbatim; media_type would append a charset to text/* types
    if content_type:
        response.headers["content-type"] = content_type
    for name, value in headers:
        response.headers.append(name, value)
    return response


async def stream_upstream_body(upstream: UpstreamResponse):
    """Relay the upstream body, closing the connection even if reading fails."""
    try:
        async for chunk in upstream.iter_bytes():
            yield chunk
    finally:
        await upstream.aclose()


async def render_response(
    upstream: UpstreamResponse,
    target: TargetRequest,
    proxy_entry: str,
    settings: ProxySettings,
    span,
) -> Response:
    """
    Dispatch the upstream body to its transformer and build the outbound response.

    HTML and CSS are buffered and rewritten; everything else is streamed
    unchanged and the upstream connection is closed after the last chunk.
    """
    kind = classify(upstream.content_type)
    span.set_attribute("proxy.content_kind", kind.value)
    headers = sanitize_headers(upstream.headers, target.anonymous)

    if kind is ContentKind.PASSTHROUGH:
        response = StreamingResponse(
            stream_upstream_body(upstream),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        return apply_headers(response, headers, upstream.content_type)

    try:
        text = await upstream.read_text()
    finally:
        await upstream.aclose()

    ctx = RewriteContext(
        base_url=upstream.final_url,
        proxy_entry=proxy_entry,
        anonymous=target.anonymous,
        ad_block=target.ad_block,
    )
    if kind is ContentKind.HTML:
        content = rewrite_html(
            text,
            ctx,
            ad_block_rules=settings.ad_block_rules,
            inject_script=settings.inject_client_script,
        ).encode("utf-8")
        content_type = "text/html; charset=utf-8"
    else:
        content = rewrite_css(text, ctx).encode(upstream.encoding, errors="replace")
        content_type = upstream.content_type

    response = Response(content=content, status_code=upstream.status_code)
    return apply_headers(response, headers, content_type)


async def forward_to_target(request: Request, settings: ProxySettings) -> Response:
    """
    Run one request through the proxy pipeline.

    validate -> ad-block gate -> fetch -> classify -> rewrite -> sanitize
    """
    try:
        target_url, anonymous = resolve_target(request.query_params)
    except ProxyError as e:
        logger.warning(f"[Proxy] Rejected request: {e.message}")
        return error_response(e)

    ad_block = ad_block_enabled(request.query_params)
    with traced_request(
        tracer,
        operation="proxy_request",
        target_url=target_url,
        anonymous=anonymous,
        start_message=f"[Proxy] {request.method}",
        extra_attrs={"proxy.method": request.method, "proxy.ad_block": ad_block},
    ) as span:
        if ad_block and should_block(target_url, settings.ad_block_rules):
            span.set_attribute("proxy.blocked", True)
            logger.info(
                f"[Proxy] Blocked by ad blocker: {loggable_url(target_url, anonymous)}"
            )
            return PlainTextResponse("Blocked by ad blocker", status_code=403)

        target = TargetRequest(
            url=target_url,
            method=request.method,
            body=await request.body() if request.method == "POST" else None,
            inbound_headers=request.headers,
            anonymous=anonymous,
            ad_block=ad_block,
        )

        try:
            upstream = await fetch_upstream(target, settings)
        except ProxyError as e:
            span.set_attribute("proxy.error", type(e).__name__)
            return error_response(e)

        span.set_attribute("proxy.status_code", upstream.status_code)
        try:
            return await render_response(
                upstream, target, proxy_entry_url(request, settings), settings, span
            )
        except ProxyError as e:
            span.set_attribute("proxy.error", type(e).__name__)
            return error_response(e)
        except Exception as e:
            span.set_attribute("proxy.error", type(e).__name__)
            await upstream.aclose()
            log_exception_with_details(logger, "[Proxy]", e)
            return JSONResponse({"error": "Internal server error"}, status_code=500)


@router.get("")
async def proxy_get(request: Request, settings: ProxySettings = Depends(get_settings)):
    return await forward_to_target(request, settings)


@router.post("")
async def proxy_post(request: Request, settings: ProxySettings = Depends(get_settings)):
    return await forward_to_target(request, settings)


@router.get("/link")
async def proxy_link(
    request: Request,
    url: Optional[str] = Query(None, description="Absolute http/https URL to share"),
    anonymous: bool = Query(False, description="Build an obfuscated ?p= link"),
    ad_block: Optional[str] = Query(None, alias="adBlock"),
    settings: ProxySettings = Depends(get_settings),
):
    """Build the proxy link for a target URL without fetching it."""
    try:
        target_url = validate_target_url(url or "")
    except InvalidUrl as e:
        return error_response(e)

    ctx = RewriteContext(
        base_url=target_url,
        proxy_entry=proxy_entry_url(request, settings),
        anonymous=anonymous,
        ad_block=ad_block != "false",
    )
    return {
        "url": target_url,
        "proxyUrl": ctx.proxy_url(target_url),
        "token": encode(target_url) if anonymous else None,
    }
