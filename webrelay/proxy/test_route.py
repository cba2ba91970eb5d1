"""
End-to-end tests for the proxy entry point.

The upstream network is replaced by an in-process httpx.MockTransport (see
the ``upstream`` fixture in conftest.py), so every test runs the complete
validate -> ad-block -> fetch -> classify -> rewrite -> sanitize pipeline.
"""

from unittest.mock import AsyncMock, Mock
from urllib.parse import quote

import httpx
import pytest

from webrelay.codec import decode, encode
from webrelay.proxy.route import stream_upstream_body

ENTRY = "/api/proxy"
PUBLIC_ENTRY = "http://relay.test/api/proxy"


def html_page(body: str, status: int = 200, headers=None) -> httpx.Response:
    merged = {"content-type": "text/html; charset=utf-8"}
    merged.update(headers or {})
    return httpx.Response(status, text=body, headers=merged)


class TestRequestValidation:
    def test_missing_url_is_400(self, test_client, upstream):
        response = test_client.get(ENTRY)

        assert response.status_code == 400
        assert response.json() == {"error": "URL parameter is required"}
        assert upstream.requests == []

    def test_non_http_scheme_is_400(self, test_client, upstream):
        response = test_client.get(ENTRY, params={"url": "ftp://example.com/file"})

        assert response.status_code == 400
        assert response.json() == {"error": "Only HTTP and HTTPS protocols are supported"}
        assert upstream.requests == []

    def test_garbage_url_is_400(self, test_client, upstream):
        response = test_client.get(ENTRY, params={"url": "not a url"})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid URL"}

    def test_tampered_token_is_400_and_not_fetched(self, test_client, upstream):
        token = encode("https://example.com/")
        payload, checksum = token.rsplit(".", 1)
        flipped = ("0" if checksum[0] != "0" else "1") + checksum[1:]

        response = test_client.get(ENTRY, params={"p": f"{payload}.{flipped}"})

        assert response.status_code == 400
        assert "error" in response.json()
        assert upstream.requests == []

    def test_malformed_token_is_400(self, test_client, upstream):
        response = test_client.get(ENTRY, params={"p": "no-checksum-here"})

        assert response.status_code == 400
        assert upstream.requests == []


class TestAdBlockGate:
    def test_blocked_target_is_403_without_fetch(self, test_client, upstream):
        response = test_client.get(
            ENTRY, params={"url": "https://ad.doubleclick.net/ddm/trackclk"}
        )

        assert response.status_code == 403
        assert response.text == "Blocked by ad blocker"
        assert upstream.requests == []

    def test_path_pattern_is_blocked(self, test_client, upstream):
        response = test_client.get(ENTRY, params={"url": "https://example.com/ads/x.js"})

        assert response.status_code == 403

    def test_ad_block_can_be_disabled(self, test_client, upstream):
        upstream.respond_with(
            lambda request: httpx.Response(
                200, text="ok", headers={"content-type": "text/plain"}
            )
        )

        response = test_client.get(
            ENTRY, params={"url": "https://ad.doubleclick.net/x", "adBlock": "false"}
        )

        assert response.status_code == 200
        assert len(upstream.requests) == 1

    @pytest.mark.parametrize("value", ["true", "False", "0", ""])
    def test_only_literal_false_disables(self, test_client, upstream, value):
        response = test_client.get(
            ENTRY, params={"url": "https://ad.doubleclick.net/x", "adBlock": value}
        )

        assert response.status_code == 403


class TestTargetSelection:
    def test_token_selects_target(self, test_client, upstream):
        upstream.respond_with(lambda request: html_page("<p>hi</p>"))

        response = test_client.get(ENTRY, params={"p": encode("https://example.com/x")})

        assert response.status_code == 200
        assert str(upstream.requests[0].url) == "https://example.com/x"

    def test_token_wins_over_url(self, test_client, upstream):
        upstream.respond_with(lambda request: html_page("<p>hi</p>"))

        test_client.get(
            ENTRY,
            params={"p": encode("https://tokened.example/"), "url": "https://plain.example/"},
        )

        assert upstream.requests[0].url.host == "tokened.example"

    def test_extra_query_params_merged_into_target(self, test_client, upstream):
        upstream.respond_with(lambda request: html_page("<p>results</p>"))

        test_client.get(
            ENTRY, params={"url": "https://example.com/search?lang=en", "q": "cats"}
        )

        sent = upstream.requests[0].url
        assert sent.path == "/search"
        assert sent.params["lang"] == "en"
        assert sent.params["q"] == "cats"


class TestHtmlPipeline:
    def test_page_rewritten_with_blocked_ads_and_forced_headers(self, test_client, upstream):
        page = (
            "<html><head>"
            '<script src="https://securepubads.doubleclick.net/tag/js/gpt.js"></script>'
            "</head><body>"
            '<a href="/about">About</a>'
            '<img src="//cdn.example.com/logo.png">'
            "</body></html>"
        )
        upstream.respond_with(
            lambda request: html_page(
                page,
                headers={
                    "x-frame-options": "DENY",
                    "content-security-policy": "default-src 'self'",
                    "strict-transport-security": "max-age=100",
                },
            )
        )

        response = test_client.get(ENTRY, params={"url": "https://example.com/"})

        assert response.status_code == 200
        assert response.headers["content-type"] == "text/html; charset=utf-8"
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["x-frame-options"] == "SAMEORIGIN"
        assert response.headers["content-security-policy"] == "frame-ancestors 'self'"
        assert "strict-transport-security" not in response.headers

        body = response.text
        assert "<!-- Ad blocked -->" in body
        assert "gpt.js" not in body
        assert f"{PUBLIC_ENTRY}?url={quote('https://example.com/about', safe='')}" in body
        assert quote("https://cdn.example.com/logo.png", safe="") in body
        assert '<base href="https://example.com/"' in body
        assert "data-webrelay" in body

    def test_upstream_error_status_passed_through(self, test_client, upstream):
        upstream.respond_with(
            lambda request: html_page('<h1>Gone</h1><a href="/home">home</a>', status=404)
        )

        response = test_client.get(ENTRY, params={"url": "https://example.com/missing"})

        assert response.status_code == 404
        assert quote("https://example.com/home", safe="") in response.text

    def test_redirect_target_is_rewrite_base(self, test_client, upstream):
        def handler(request):
            if request.url.path == "/old":
                return httpx.Response(301, headers={"location": "https://example.com/new/"})
            return html_page('<img src="pic.png">')

        upstream.respond_with(handler)

        response = test_client.get(ENTRY, params={"url": "https://example.com/old"})

        assert response.status_code == 200
        assert quote("https://example.com/new/pic.png", safe="") in response.text

    def test_anonymous_mode_emits_tokens_only(self, test_client, upstream):
        upstream.respond_with(lambda request: html_page('<a href="/private">p</a>'))

        response = test_client.get(ENTRY, params={"p": encode("https://example.com/")})

        body = response.text
        assert f"{PUBLIC_ENTRY}?p=" in body
        assert quote("https://example.com/private", safe="") not in body
        assert encode("https://example.com/private") in body


class TestCookies:
    def test_identity_mode_forwards_and_rewrites_cookies(self, test_client, upstream):
        upstream.respond_with(
            lambda request: html_page(
                "<p>hi</p>",
                headers={"set-cookie": "sid=xyz; Domain=example.com; Secure; SameSite=None"},
            )
        )

        response = test_client.get(
            ENTRY, params={"url": "https://example.com/"}, headers={"Cookie": "sid=abc"}
        )

        assert upstream.requests[0].headers["cookie"] == "sid=abc"
        assert response.headers.get_list("set-cookie") == ["sid=xyz; SameSite=Lax"]

    def test_anonymous_mode_isolates_cookies(self, test_client, upstream):
        upstream.respond_with(
            lambda request: html_page(
                "<p>hi</p>",
                headers={"set-cookie": "sid=xyz; Path=/", "server": "nginx"},
            )
        )

        response = test_client.get(
            ENTRY,
            params={"p": encode("https://example.com/")},
            headers={"Cookie": "sid=abc"},
        )

        assert "cookie" not in upstream.requests[0].headers
        assert "set-cookie" not in response.headers
        assert "server" not in response.headers


class TestOtherContent:
    def test_css_rewritten_and_content_type_kept(self, test_client, upstream):
        upstream.respond_with(
            lambda request: httpx.Response(
                200,
                text="body { background: url(/bg.png); }",
                headers={"content-type": "text/css; charset=utf-8"},
            )
        )

        response = test_client.get(ENTRY, params={"url": "https://example.com/s.css"})

        assert response.headers["content-type"] == "text/css; charset=utf-8"
        assert quote("https://example.com/bg.png", safe="") in response.text

    def test_binary_passed_through_unchanged(self, test_client, upstream):
        payload = b"\x89PNG\r\n\x1a\n" + bytes(range(256))
        upstream.respond_with(
            lambda request: httpx.Response(
                200,
                content=payload,
                headers={"content-type": "image/png", "cache-control": "max-age=60"},
            )
        )

        response = test_client.get(ENTRY, params={"url": "https://example.com/a.png"})

        assert response.status_code == 200
        assert response.content == payload
        assert response.headers["content-type"] == "image/png"
        assert response.headers["cache-control"] == "max-age=60"
        assert response.headers["access-control-allow-origin"] == "*"

    def test_javascript_not_rewritten(self, test_client, upstream):
        script = 'fetch("/api/data")'
        upstream.respond_with(
            lambda request: httpx.Response(
                200, text=script, headers={"content-type": "application/javascript"}
            )
        )

        response = test_client.get(ENTRY, params={"url": "https://example.com/app.js"})

        assert response.text == script

    @pytest.mark.parametrize("content_type", ["text/plain", "text/javascript", "text/csv"])
    def test_text_content_type_relayed_verbatim(self, test_client, upstream, content_type):
        upstream.respond_with(
            lambda request: httpx.Response(
                200, content=b"a,b\n1,2\n", headers={"content-type": content_type}
            )
        )

        response = test_client.get(ENTRY, params={"url": "https://example.com/data"})

        assert response.headers["content-type"] == content_type
        assert response.content == b"a,b\n1,2\n"

    def test_css_without_charset_keeps_content_type(self, test_client, upstream):
        upstream.respond_with(
            lambda request: httpx.Response(
                200, text="a { color: red; }", headers={"content-type": "text/css"}
            )
        )

        response = test_client.get(ENTRY, params={"url": "https://example.com/s.css"})

        assert response.headers["content-type"] == "text/css"
        assert response.headers.get_list("content-type") == ["text/css"]

    def test_missing_content_type_not_invented(self, test_client, upstream):
        upstream.respond_with(lambda request: httpx.Response(200, content=b"\x00\x01"))

        response = test_client.get(ENTRY, params={"url": "https://example.com/blob"})

        assert "content-type" not in response.headers
        assert response.content == b"\x00\x01"


class TestStreamUpstreamBody:
    @staticmethod
    def fake_upstream(chunks, error=None):
        async def iter_bytes():
            for chunk in chunks:
                yield chunk
            if error is not None:
                raise error

        upstream = Mock()
        upstream.iter_bytes = iter_bytes
        upstream.aclose = AsyncMock()
        return upstream

    @pytest.mark.asyncio
    async def test_closes_after_last_chunk(self):
        upstream = self.fake_upstream([b"a", b"b"])

        received = [chunk async for chunk in stream_upstream_body(upstream)]

        assert received == [b"a", b"b"]
        upstream.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_closes_when_read_fails_midway(self):
        upstream = self.fake_upstream([b"first"], error=httpx.ReadError("connection reset"))
        received = []

        with pytest.raises(httpx.ReadError):
            async for chunk in stream_upstream_body(upstream):
                received.append(chunk)

        assert received == [b"first"]
        upstream.aclose.assert_awaited_once()


class TestPost:
    def test_post_forwards_body_and_content_type(self, test_client, upstream):
        upstream.respond_with(
            lambda request: html_page(
                '<a href="/done">ok</a>',
                headers={"set-cookie": "flash=1; Secure"},
            )
        )

        response = test_client.post(
            f"{ENTRY}?url={quote('https://example.com/login', safe='')}",
            content=b"user=a&pass=b",
            headers={"content-type": "application/x-www-form-urlencoded"},
        )

        sent = upstream.requests[0]
        assert sent.method == "POST"
        assert sent.content == b"user=a&pass=b"
        assert sent.headers["content-type"] == "application/x-www-form-urlencoded"
        assert response.headers.get_list("set-cookie") == ["flash=1"]
        assert quote("https://example.com/done", safe="") in response.text

    def test_post_to_blocked_target(self, test_client, upstream):
        response = test_client.post(
            f"{ENTRY}?url={quote('https://doubleclick.net/collect', safe='')}",
            content=b"x=1",
        )

        assert response.status_code == 403
        assert upstream.requests == []


class TestUpstreamFailures:
    def test_connection_failure_is_500(self, test_client, upstream):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        upstream.respond_with(handler)

        response = test_client.get(ENTRY, params={"url": "https://example.com/"})

        assert response.status_code == 500
        assert "error" in response.json()

    def test_timeout_is_500(self, test_client, upstream):
        def handler(request):
            raise httpx.ConnectTimeout("timed out")

        upstream.respond_with(handler)

        response = test_client.get(ENTRY, params={"url": "https://example.com/"})

        assert response.status_code == 500
        assert response.json() == {"error": "Upstream request timed out"}

    def test_unexpected_rewrite_failure_is_500(self, test_client, upstream, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("parser exploded")

        monkeypatch.setattr("webrelay.proxy.route.rewrite_html", broken)
        upstream.respond_with(lambda request: html_page("<p>x</p>"))

        response = test_client.get(ENTRY, params={"url": "https://example.com/"})

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}


class TestLinkEndpoint:
    def test_plain_link(self, test_client, upstream):
        response = test_client.get(f"{ENTRY}/link", params={"url": "https://example.com/a"})

        assert response.status_code == 200
        assert response.json() == {
            "url": "https://example.com/a",
            "proxyUrl": f"{PUBLIC_ENTRY}?url={quote('https://example.com/a', safe='')}",
            "token": None,
        }
        assert upstream.requests == []

    def test_anonymous_link(self, test_client, upstream):
        response = test_client.get(
            f"{ENTRY}/link",
            params={"url": "https://example.com/a", "anonymous": "true", "adBlock": "false"},
        )

        data = response.json()
        assert decode(data["token"]) == "https://example.com/a"
        assert data["proxyUrl"] == f"{PUBLIC_ENTRY}?p={data['token']}&adBlock=false"

    def test_invalid_link_target(self, test_client, upstream):
        response = test_client.get(f"{ENTRY}/link", params={"url": "javascript:alert(1)"})

        assert response.status_code == 400
        assert response.json() == {"error": "Only HTTP and HTTPS protocols are supported"}
