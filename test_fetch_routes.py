import gzip

import httpx
import pytest

from app.core.app import create_app
from app.core.keepalive import KeepAlivePinger


def test_scenario_a_html_is_rewritten_and_instrumented(client, upstream):
    upstream.add(
        "https://example.com/",
        body=b'<html><head></head><body><a href="/about">About</a></body></html>',
        headers={"content-type": "text/html; charset=utf-8"},
    )
    response = client.get("/fetch", params={"url": "https://example.com/"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "text/html; charset=utf-8"
    body = response.text
    assert '<a href="/fetch?url=https%3A%2F%2Fexample.com%2Fabout">' in body
    assert body.index("<script data-bb-interceptor") < body.index("</head>")


def test_scenario_b_css_is_rewritten(client, upstream):
    upstream.add(
        "https://x.test/css/s.css",
        body=b"body{background:url(img/bg.png)}",
        headers={"content-type": "text/css"},
    )
    response = client.get("/fetch?url=https%3A%2F%2Fx.test%2Fcss%2Fs.css")
    assert response.text == "body{background:url('/fetch?url=https%3A%2F%2Fx.test%2Fcss%2Fimg%2Fbg.png')}"


def test_scenario_c_cookies_replayed_to_same_host(client, upstream):
    upstream.add(
        "https://shop.test/",
        body=b"hi",
        headers={"content-type": "text/plain", "set-cookie": "sid=abc123; Path=/"},
    )
    first = client.get("/fetch", params={"url": "https://shop.test/"})
    second = client.get("/fetch", params={"url": "https://shop.test/"})

    assert "set-cookie" not in first.headers
    assert second.status_code == 200
    assert "cookie" not in upstream.requests[0].headers
    assert upstream.requests[1].headers["cookie"] == "sid=abc123"


def test_blocking_headers_never_reach_the_client(client, upstream):
    body = b"<html><head></head><body>secure</body></html>"
    upstream.add(
        "https://secure.test/",
        body=gzip.compress(body),
        headers=[
            ("content-type", "text/html"),
            ("content-encoding", "gzip"),
            ("content-length", "9999"),
            ("transfer-encoding", "chunked"),
            ("content-security-policy", "frame-ancestors 'none'"),
            ("x-frame-options", "DENY"),
            ("set-cookie", "a=1"),
            ("strict-transport-security", "max-age=31536000"),
            ("x-content-type-options", "nosniff"),
            ("x-upstream", "kept"),
        ],
    )
    response = client.get("/fetch", params={"url": "https://secure.test/"})

    for name in ("set-cookie", "content-security-policy", "content-encoding",
                 "transfer-encoding", "strict-transport-security", "x-content-type-options"):
        assert name not in response.headers
    assert response.headers["x-frame-options"] == "ALLOWALL"
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["x-upstream"] == "kept"
    # the upstream length is dropped; the relayed one describes the rewritten body
    assert int(response.headers["content-length"]) == len(response.content)
    assert "secure" in response.text


def test_binary_relayed_unmodified(client, upstream):
    png = b"\x89PNG\r\n\x1a\n" + bytes(range(256))
    upstream.add("https://x.test/a.png", body=png, headers={"content-type": "image/png"})
    response = client.get("/fetch", params={"url": "https://x.test/a.png"})
    assert response.content == png
    assert response.headers["content-type"] == "image/png"


def test_upstream_status_preserved(client, upstream):
    upstream.add("https://x.test/gone", status_code=410, body=b"gone", headers={"content-type": "text/plain"})
    response = client.get("/fetch", params={"url": "https://x.test/gone"})
    assert response.status_code == 410
    assert response.text == "gone"


def test_post_body_forwarded(client, upstream):
    upstream.add("https://x.test/form", body=b"thanks", headers={"content-type": "text/plain"})
    response = client.post(
        "/fetch?url=https%3A%2F%2Fx.test%2Fform",
        content=b"q=butter&n=1",
        headers={"content-type": "application/x-www-form-urlencoded"},
    )
    assert response.text == "thanks"
    assert upstream.requests[0].method == "POST"
    assert upstream.requests[0].content == b"q=butter&n=1"


def test_missing_url_is_rejected(client, upstream):
    response = client.get("/fetch")
    assert response.status_code == 400
    assert response.text == "Missing url"
    assert upstream.requests == []


def test_invalid_url_is_rejected(client, upstream):
    response = client.get("/fetch", params={"url": "definitely not a url"})
    assert response.status_code == 400
    assert response.text == "Invalid URL"
    assert upstream.requests == []


def test_upstream_failure_renders_themed_page(client, upstream):
    def unreachable(request):
        raise httpx.ConnectError("DNS lookup failed for <nowhere>", request=request)

    upstream.add_handler("https://nowhere.invalid/", unreachable)
    response = client.get("/fetch", params={"url": "https://nowhere.invalid/"})

    assert response.status_code == 500
    assert "text/html" in response.headers["content-type"]
    assert "Couldn't load this page" in response.text
    assert "DNS lookup failed for &lt;nowhere&gt;" in response.text
    assert "Traceback" not in response.text


def test_unexpected_errors_render_themed_page(settings, upstream, monkeypatch):
    from fastapi.testclient import TestClient

    app = create_app(settings, transport=upstream.transport)
    with TestClient(app) as test_client:
        async def broken(*args, **kwargs):
            raise RuntimeError("rewriter exploded")

        monkeypatch.setattr(app.state.relay, "relay", broken)
        response = test_client.get("/fetch", params={"url": "https://x.test/"})

    assert response.status_code == 500
    assert "rewriter exploded" in response.text


def test_custom_proxy_path(upstream):
    from fastapi.testclient import TestClient
    from config.settings import Settings

    app = create_app(Settings(keepalive_enabled=False, proxy_path="/relay"), transport=upstream.transport)
    upstream.add("https://x.test/", body=b'<head></head><img src="a.png">', headers={"content-type": "text/html"})
    with TestClient(app) as test_client:
        response = test_client.get("/relay", params={"url": "https://x.test/"})
        assert test_client.get("/fetch", params={"url": "https://x.test/"}).status_code == 404

    assert '<img src="/relay?url=https%3A%2F%2Fx.test%2Fa.png">' in response.text


def test_ping(client):
    response = client.get("/ping")
    assert response.status_code == 200
    assert response.text == "🧈"


def test_landing_page(client):
    response = client.get("/")
    assert response.status_code == 200
    assert "Butter Proxy" in response.text
    assert "/fetch?url=" in response.text


def test_keepalive_disabled_by_fixture(client):
    assert client.app.state.pinger._task is None


@pytest.mark.asyncio
async def test_keepalive_ping_swallows_failures():
    def down(request):
        raise httpx.ConnectError("connection refused", request=request)

    pinger = KeepAlivePinger("http://localhost:1/ping", transport=httpx.MockTransport(down))
    assert await pinger.ping_once() is False


@pytest.mark.asyncio
async def test_keepalive_ping_reports_success():
    pinger = KeepAlivePinger(
        "http://localhost:3000/ping",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="🧈")),
    )
    assert await pinger.ping_once() is True


@pytest.mark.asyncio
async def test_keepalive_start_and_stop():
    pinger = KeepAlivePinger("http://localhost:3000/ping", interval=3600)
    pinger.start()
    assert pinger._task is not None
    await pinger.stop()
    assert pinger._task is None


@pytest.fixture
async def asgi_client(settings, upstream):
    # Drives the app over raw ASGI so header bytes reach the test unchanged
    app = create_app(settings, transport=upstream.transport)
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client


@pytest.mark.asyncio
async def test_non_ascii_response_headers_are_relayed_byte_for_byte(asgi_client, upstream):
    disposition = "inline; filename=日本.pdf".encode("utf-8")
    upstream.add(
        "https://dl.test/f",
        body=b"%PDF-1.7",
        headers=[("content-type", "application/pdf"), ("content-disposition", disposition)],
    )
    response = await asgi_client.get("/fetch", params={"url": "https://dl.test/f"})

    assert response.status_code == 200
    assert response.content == b"%PDF-1.7"
    assert [v for k, v in response.headers.raw if k.lower() == b"content-disposition"] == [disposition]
    assert response.headers["content-type"] == "application/pdf"


def test_non_ascii_cookie_does_not_break_later_requests(client, upstream):
    upstream.add(
        "https://cafe.test/",
        body=b"menu",
        headers=[("content-type", "text/plain"), ("set-cookie", "name=café; Path=/".encode("utf-8"))],
    )
    first = client.get("/fetch", params={"url": "https://cafe.test/"})
    second = client.get("/fetch", params={"url": "https://cafe.test/"})

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.text == "menu"
    sent = [v for k, v in upstream.requests[1].headers.raw if k.lower() == b"cookie"]
    assert sent == ["name=café".encode("utf-8")]


def test_cookie_survives_same_host_redirect(client, upstream):
    upstream.add("https://shop.test/", headers={"content-type": "text/plain", "set-cookie": "sid=abc"})
    upstream.add("https://shop.test/account", status_code=302, headers={"location": "/account/"})
    upstream.add("https://shop.test/account/", body=b"your orders", headers={"content-type": "text/plain"})

    client.get("/fetch", params={"url": "https://shop.test/"})
    response = client.get("/fetch", params={"url": "https://shop.test/account"})

    assert response.text == "your orders"
    hops = [(str(r.url), r.headers.get("cookie")) for r in upstream.requests[1:]]
    assert hops == [
        ("https://shop.test/account", "sid=abc"),
        ("https://shop.test/account/", "sid=abc"),
    ]
