import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Mapping, Optional
from urllib.parse import urlsplit

import httpx

from webrelay.proxy.errors import InvalidUrl, UpstreamUnreachable
from webrelay.settings import ProxySettings

logger = logging.getLogger("uvicorn.error")

DEFAULT_ACCEPT = (
    "text/html,application/xhtml+xml,application/xml;q=0.9,"
    "image/avif,image/webp,image/apng,*/*;q=0.8"
)
DEFAULT_ACCEPT_LANGUAGE = "en-US,en;q=0.9"

# Navigation headers a real browser sends, to reduce bot-detection false positives
NAVIGATION_HEADERS = {
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "cross-site",
    "Sec-Fetch-User": "?1",
}

# Never copied from the caller, even when allow-listed
NEVER_FORWARDED = {"accept-encoding", "cookie", "host", "content-length"}


@dataclass
class TargetRequest:
    url: str
    method: str = "GET"
    body: Optional[bytes] = None
    inbound_headers: Mapping[str, str] = field(default_factory=dict)
    anonymous: bool = False
    ad_block: bool = True


@dataclass
class UpstreamResponse:
    """One upstream response, owned by the request that fetched it."""

    status_code: int
    headers: httpx.Headers
    content_type: str
    final_url: str
    _response: httpx.Response
    _client: httpx.AsyncClient

    async def read_text(self) -> str:
        """Buffer the whole body; rewriting needs the complete document."""
        try:
            await self._response.aread()
        except httpx.HTTPError as e:
            logger.error(f"[Proxy] Failed to read upstream body: {e}")
            raise UpstreamUnreachable(f"Failed to read upstream response: {e}")
        return self._response.text

    @property
    def encoding(self) -> str:
        return self._response.encoding or "utf-8"

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        async for chunk in self._response.aiter_bytes():
            yield chunk

    async def aclose(self) -> None:
        await self._response.aclose()
        await self._client.aclose()


def target_origin(url: str) -> str:
    parsed = urlsplit(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def build_upstream_headers(
    target: TargetRequest, settings: ProxySettings
) -> dict[str, str]:
    """
    Prepare the outbound header set.

    Only allow-listed inbound headers are copied; the caller's identity
    never reaches the origin except for the Cookie header in
    identity-preserving mode.
    """
    inbound = {name.lower(): value for name, value in target.inbound_headers.items()}
    headers = {
        "User-Agent": settings.user_agent,
        "Accept": DEFAULT_ACCEPT,
        "Accept-Language": DEFAULT_ACCEPT_LANGUAGE,
    }
    headers.update(NAVIGATION_HEADERS)

    for name in settings.forward_headers:
        if name in NEVER_FORWARDED:
            continue
        if name in inbound:
            # Replace defaults case-insensitively
            for existing in [h for h in headers if h.lower() == name]:
                del headers[existing]
            headers[name] = inbound[name]

    origin = target_origin(target.url)
    headers["Referer"] = origin
    headers["Origin"] = origin

    if target.method == "POST" and "content-type" in inbound:
        headers["Content-Type"] = inbound["content-type"]

    if not target.anonymous and inbound.get("cookie"):
        headers["Cookie"] = inbound["cookie"]

    return headers


def create_client(settings: ProxySettings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.timeout),
        follow_redirects=True,
    )


async def fetch_upstream(
    target: TargetRequest, settings: ProxySettings
) -> UpstreamResponse:
    """
    Send the request upstream and return the final response after redirects.

    The body is not read yet; the caller buffers or streams it and must call
    aclose() once done. Network-level failures raise UpstreamUnreachable,
    non-2xx statuses are returned like any other response.
    """
    headers = build_upstream_headers(target, settings)
    client = create_client(settings)
    try:
        request = client.build_request(
            target.method,
            target.url,
            headers=headers,
            content=target.body if target.method == "POST" else None,
        )
        response = await client.send(request, stream=True)
    except httpx.InvalidURL as e:
        await client.aclose()
        raise InvalidUrl(f"Invalid URL: {e}")
    except httpx.TimeoutException as e:
        await client.aclose()
        logger.error(f"[Proxy] Upstream timeout: {e}")
        raise UpstreamUnreachable("Upstream request timed out")
    except httpx.HTTPError as e:
        await client.aclose()
        logger.error(f"[Proxy] Failed to reach upstream: {e}")
        raise UpstreamUnreachable(f"Failed to reach upstream: {e}")

    if response.status_code >= 400:
        logger.info(f"[Proxy] Upstream returned {response.status_code}")

    return UpstreamResponse(
        status_code=response.status_code,
        headers=response.headers,
        content_type=response.headers.get("content-type", ""),
        final_url=str(response.url),
        _response=response,
        _client=client,
    )
