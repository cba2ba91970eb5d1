# Ensure tests import modules from this service directory first,
# so `import webrelay.*` resolves to the working tree.
import os
import sys
from typing import Callable, List

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

SERVICE_ROOT = os.path.dirname(__file__)

if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

from webrelay.proxy.route import router as proxy_router  # noqa: E402
from webrelay.settings import ProxySettings  # noqa: E402


@pytest.fixture
def proxy_settings() -> ProxySettings:
    """Settings independent of the process environment."""
    return ProxySettings(entry_path="/api/proxy", public_url="http://relay.test")


class UpstreamStub:
    """Records outbound requests and answers them with a configurable handler."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.handler: Callable[[httpx.Request], httpx.Response] = lambda request: (
            httpx.Response(200, text="ok", headers={"content-type": "text/plain"})
        )

    def respond_with(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler

    def _dispatch(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def client(self, settings: ProxySettings) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self._dispatch),
            follow_redirects=True,
        )


@pytest.fixture
def upstream(monkeypatch) -> UpstreamStub:
    """Replace the real network with an in-process upstream."""
    stub = UpstreamStub()
    monkeypatch.setattr("webrelay.proxy.fetcher.create_client", stub.client)
    return stub


@pytest.fixture
def test_client(proxy_settings, upstream):
    app = FastAPI()
    app.state.settings = proxy_settings
    app.include_router(proxy_router)
    with TestClient(app) as client:
        yield client
