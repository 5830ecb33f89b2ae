import os
import sys

import httpx
import pytest
from fastapi.testclient import TestClient

# Make `import app.*` and `import config.*` work from the repository root
ROOT = os.path.dirname(__file__)
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from config.settings import Settings  # noqa: E402
from app.core.app import create_app  # noqa: E402


class FakeUpstream:
    """Routes outbound requests to canned responses and records them"""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, url, status_code=200, body=b"", headers=None):
        self.routes[url] = (status_code, body, headers or {})

    def add_handler(self, url, handler):
        self.routes[url] = handler

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return upstream_response(404, b"not found", {"content-type": "text/plain"})
        if callable(route):
            return route(request)
        status_code, body, headers = route
        return upstream_response(status_code, body, headers)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def upstream_response(status_code=200, body=b"", headers=None) -> httpx.Response:
    # A streamed body keeps the raw bytes unread, like a real socket
    return httpx.Response(status_code, headers=headers or {}, stream=httpx.ByteStream(body))


@pytest.fixture
def settings():
    return Settings(keepalive_enabled=False, cookie_jar_ttl=0, cookie_jar_max_entries=0)


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def make_response():
    return upstream_response


@pytest.fixture
def client(settings, upstream):
    app = create_app(settings, transport=upstream.transport)
    with TestClient(app) as test_client:
        yield test_client
