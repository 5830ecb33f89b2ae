"""
Relay Engine
Fetches the target on behalf of the client, decodes, filters and rewrites the response
"""

import codecs
import html
import re
import zlib
from dataclasses import dataclass, field
from enum import Enum
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import List, Optional, Tuple
from urllib.parse import urlsplit

import brotli
import httpx
from loguru import logger

from config.settings import Settings
from app.core.exceptions import InputError, DecodeFailure, UpstreamFailure
from app.services.content_rewriter import ContentRewriter
from app.services.cookie_jar import CookieJarStore, JarKey, jar_key_for


# Response headers never forwarded to the client
STRIPPED_HEADERS = frozenset([
    "x-frame-options",
    "content-security-policy",
    "content-security-policy-report-only",
    "x-content-type-options",
    "strict-transport-security",
    "set-cookie",
    "transfer-encoding",
    "content-encoding",
    "content-length",
    "content-type",  # set explicitly on delivery
])

CHARSET_RE = re.compile(r"charset=[\"']?([\w.:-]+)", re.IGNORECASE)


class RelayState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    FETCHED = "fetched"
    DECODED = "decoded"
    HEADERS_FILTERED = "headers_filtered"
    DISPATCHED = "dispatched"
    DELIVERED = "delivered"
    ERRORED = "errored"


@dataclass
class ResponseEnvelope:
    """Raw upstream response, before any decoding"""

    status_code: int
    headers: httpx.Headers
    body: bytes
    url: str


@dataclass
class RelayResult:
    status_code: int
    body: bytes
    content_type: str
    headers: List[Tuple[bytes, bytes]] = field(default_factory=list)
    state: RelayState = RelayState.DISPATCHED


def validate_target(url: Optional[str]) -> str:
    """Check the inbound url parameter is an absolute http(s) URL"""
    if not url:
        raise InputError("Missing url")

    try:
        parsed = urlsplit(url)
        parsed.port
    except ValueError:
        raise InputError("Invalid URL")

    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise InputError("Invalid URL")
    return url


def decode_body(body: bytes, content_encoding: str) -> bytes:
    """Undo the declared content-encoding, raising DecodeFailure"""
    encoding = content_encoding.lower()

    try:
        if "gzip" in encoding:
            return zlib.decompress(body, 16 + zlib.MAX_WBITS)
        if "deflate" in encoding:
            try:
                return zlib.decompress(body)
            except zlib.error:
                # Some servers send raw deflate without the zlib wrapper
                return zlib.decompress(body, -zlib.MAX_WBITS)
        if "br" in encoding:
            return brotli.decompress(body)
    except (zlib.error, brotli.error) as e:
        raise DecodeFailure(f"Cannot decode {content_encoding} body: {e}")

    return body


def raw_header_values(headers: httpx.Headers, name: str) -> List[str]:
    """Header values exactly as received, one character per byte"""
    wanted = name.lower().encode("latin-1")
    return [value.decode("latin-1") for key, value in headers.raw if key.lower() == wanted]


def filter_headers(headers: httpx.Headers) -> List[Tuple[bytes, bytes]]:
    """Drop framing, cookie and encoding headers; add permissive ones.

    Works on the raw header bytes so non-ASCII values are relayed unchanged.
    """
    kept = [
        (name, value)
        for name, value in headers.raw
        if name.decode("latin-1").lower() not in STRIPPED_HEADERS
        and name.lower() != b"access-control-allow-origin"
    ]
    kept.append((b"Access-Control-Allow-Origin", b"*"))
    kept.append((b"X-Frame-Options", b"ALLOWALL"))
    return kept


def text_codec(content_type: str) -> str:
    """Charset declared in a content type, falling back to utf-8"""
    match = CHARSET_RE.search(content_type)
    if match:
        try:
            return codecs.lookup(match.group(1)).name
        except LookupError:
            pass
    return "utf-8"


def create_http_client(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Create the shared outbound HTTP client.

    The client never stores cookies itself: every cookie lives in the
    CookieJarStore, scoped to the requesting client. Redirects are followed
    by RelayEngine.fetch so each hop gets its own jar cookies.
    """
    no_cookies = CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))

    return httpx.AsyncClient(
        transport=transport,
        timeout=httpx.Timeout(settings.request_timeout),
        follow_redirects=False,
        cookies=no_cookies,
    )


class RelayEngine:
    """Relay state machine: validate, fetch, decode, filter, dispatch"""

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        cookie_jars: CookieJarStore,
        rewriter: Optional[ContentRewriter] = None,
    ):
        self.settings = settings
        self.client = client
        self.cookie_jars = cookie_jars
        self.rewriter = rewriter or ContentRewriter(settings.proxy_path)

    def _transition(self, target: str, state: RelayState):
        logger.debug(f"Relay {target} -> {state.value}")

    def build_headers(self, target: str, cookie: str, content_type: Optional[str] = None) -> dict:
        """Masquerade as an ordinary mobile browser visiting the target"""
        parsed = urlsplit(target)
        origin = f"{parsed.scheme}://{parsed.netloc}"

        headers = {
            "User-Agent": self.settings.mobile_user_agent,
            "Accept": self.settings.accept,
            "Accept-Language": self.settings.accept_language,
            "Accept-Encoding": "gzip, deflate, br",
            "Referer": origin + "/",
            "Origin": origin,
            "Upgrade-Insecure-Requests": "1",
        }
        if cookie:
            # Jar values hold the upstream bytes one character per byte
            headers["Cookie"] = cookie.encode("latin-1")
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _with_jar_cookie(self, request: httpx.Request, jar_key: JarKey) -> httpx.Request:
        """Replace the Cookie header of a redirect hop with the hop's jar"""
        headers = [(name, value) for name, value in request.headers.raw if name.lower() != b"cookie"]
        cookie = self.cookie_jars.cookie_header(jar_key)
        if cookie:
            headers.append((b"Cookie", cookie.encode("latin-1")))
        request.headers = httpx.Headers(headers)
        return request

    async def fetch(
        self,
        method: str,
        target: str,
        headers: dict,
        body: Optional[bytes] = None,
        client_id: Optional[str] = None,
    ) -> ResponseEnvelope:
        """Issue the outbound request and read the undecoded body.

        Redirects are followed here, up to ``max_redirects`` hops. Every
        hop's Set-Cookie values are merged into the jar of that hop's host,
        and every follow-up hop sends the cookies of its own host.
        """
        hop_url = target
        try:
            request = self.client.build_request(method, target, headers=headers, content=body)
            for _ in range(self.settings.max_redirects + 1):
                response = await self.client.send(request, stream=True)
                try:
                    set_cookies = raw_header_values(response.headers, "set-cookie")
                    if set_cookies and client_id is not None:
                        self.cookie_jars.merge(jar_key_for(client_id, hop_url), set_cookies)

                    if response.next_request is None:
                        raw = b"".join([chunk async for chunk in response.aiter_raw()])
                        return ResponseEnvelope(response.status_code, response.headers, raw, str(response.url))
                    request = response.next_request
                finally:
                    await response.aclose()

                hop_url = str(request.url)
                logger.debug(f"Following redirect to {hop_url}")
                if client_id is not None:
                    request = self._with_jar_cookie(request, jar_key_for(client_id, hop_url))
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise UpstreamFailure(str(e) or e.__class__.__name__)

        raise UpstreamFailure(f"Exceeded maximum allowed redirects ({self.settings.max_redirects})")

    async def relay(
        self,
        target_url: Optional[str],
        client_id: str,
        method: str = "GET",
        body: Optional[bytes] = None,
        content_type: Optional[str] = None,
    ) -> RelayResult:
        """Run one inbound request through the whole pipeline.

        Raises InputError before any outbound call and UpstreamFailure when
        the fetch itself fails. Decode problems never fail the request.
        """
        self._transition(str(target_url), RelayState.RECEIVED)
        try:
            target = validate_target(target_url)
        except InputError:
            self._transition(str(target_url), RelayState.ERRORED)
            raise
        self._transition(target, RelayState.VALIDATED)

        jar_key = jar_key_for(client_id, target)
        is_post = method.upper() == "POST"
        headers = self.build_headers(
            target,
            self.cookie_jars.cookie_header(jar_key),
            content_type if is_post else None,
        )

        logger.info(f"Fetching {target} with method {'POST' if is_post else 'GET'} for {client_id}")
        try:
            envelope = await self.fetch(
                "POST" if is_post else "GET",
                target,
                headers,
                body if is_post else None,
                client_id=client_id,
            )
        except UpstreamFailure:
            self._transition(target, RelayState.ERRORED)
            raise
        self._transition(target, RelayState.FETCHED)

        payload = envelope.body
        try:
            payload = decode_body(envelope.body, envelope.headers.get("content-encoding", ""))
        except DecodeFailure as e:
            logger.warning(f"{e}, relaying raw body for {target}")
        self._transition(target, RelayState.DECODED)

        declared_types = raw_header_values(envelope.headers, "content-type")
        declared = declared_types[0] if declared_types else ""
        content_type = declared or "application/octet-stream"
        forwarded = filter_headers(envelope.headers)
        forwarded.append((b"Content-Type", content_type.encode("latin-1")))
        self._transition(target, RelayState.HEADERS_FILTERED)

        # Relative references resolve against the page after redirects
        base = envelope.url or target
        ct = declared.lower()
        if "text/html" in ct:
            codec = text_codec(ct)
            text = payload.decode(codec, errors="replace")
            payload = self.rewriter.rewrite_html(text, base).encode(codec, errors="xmlcharrefreplace")
        elif "text/css" in ct:
            codec = text_codec(ct)
            text = payload.decode(codec, errors="replace")
            payload = self.rewriter.rewrite_css(text, base).encode(codec, errors="replace")
        self._transition(target, RelayState.DISPATCHED)

        return RelayResult(
            status_code=envelope.status_code,
            body=payload,
            content_type=content_type,
            headers=forwarded,
            state=RelayState.DISPATCHED,
        )

    def mark_delivered(self, target: str, result: RelayResult) -> RelayResult:
        """Final transition, once the route has handed the response over"""
        result.state = RelayState.DELIVERED
        self._transition(target, result.state)
        return result

    def mark_errored(self, target: Optional[str]):
        self._transition(str(target), RelayState.ERRORED)

    async def close(self):
        await self.client.aclose()


def error_page(message: str) -> str:
    """Generate the themed error page HTML"""
    return f"""
      <html><body style="background:#1a1200;color:#f5c842;font-family:sans-serif;
        display:flex;flex-direction:column;align-items:center;justify-content:center;
        height:100vh;gap:16px;text-align:center;padding:20px;">
        <div style="font-size:60px">🧈</div>
        <h2>Couldn't load this page</h2>
        <p style="color:#c8a040;max-width:300px;line-height:1.6">
          This site may block proxies or use advanced protection. Try something else!
        </p>
        <p style="color:#555;font-size:12px">{html.escape(message)}</p>
      </body></html>
    """
