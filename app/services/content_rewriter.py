"""
Content Rewriter Service
Lexical HTML and CSS rewriting so every reference re-enters the proxy
"""

import re
from urllib.parse import urlsplit

from loguru import logger

from app.services.interceptor import build_interceptor_script
from app.services.url_resolver import synthesize, is_proxied, DEFAULT_PROXY_PATH


CSS_URL_RE = re.compile(r"""url\(\s*['"]?([^'")]+)['"]?\s*\)""", re.IGNORECASE)

BLOCKING_META_RES = [
    re.compile(r"<meta[^>]*content-security-policy[^>]*>", re.IGNORECASE),
    re.compile(r"<meta[^>]*x-frame-options[^>]*>", re.IGNORECASE),
]

URL_ATTR_RE = re.compile(
    r"""\b(src|href|action|poster|data-src|data-href)(\s*=\s*)(?:"([^"]*)"|'([^']*)')""",
    re.IGNORECASE,
)
SRCSET_RE = re.compile(r"""\b(srcset)(\s*=\s*)(?:"([^"]*)"|'([^']*)')""", re.IGNORECASE)
STYLE_ATTR_RE = re.compile(r"""\b(style)(\s*=\s*)(?:"([^"]*)"|'([^']*)')""", re.IGNORECASE)
STYLE_BLOCK_RE = re.compile(r"(<style[^>]*>)([\s\S]*?)(</style>)", re.IGNORECASE)

HEAD_CLOSE_RE = re.compile(r"</head>", re.IGNORECASE)
BODY_OPEN_RE = re.compile(r"<body\b[^>]*>", re.IGNORECASE)


def _attr_parts(match: re.Match):
    """Split an attribute match into (name, separator, quote, value)"""
    name, sep, double, single = match.groups()
    if double is not None:
        return name, sep, '"', double
    return name, sep, "'", single


class ContentRewriter:
    """Rewrites web content to work through the proxy"""

    def __init__(self, proxy_path: str = DEFAULT_PROXY_PATH):
        self.proxy_path = proxy_path

    def _create_proxy_url(self, url: str, base_url: str) -> str:
        return synthesize(url, base_url, self.proxy_path)

    def rewrite_css(self, css: str, base_url: str, quote: str = "'") -> str:
        """Rewrite url() references in CSS"""

        def replace_url(match):
            url = match.group(1).strip()
            if url.lower().startswith("data:") or is_proxied(url, self.proxy_path):
                return match.group(0)
            proxy_url = self._create_proxy_url(url, base_url)
            if proxy_url == url:
                return match.group(0)
            return f"url({quote}{proxy_url}{quote})"

        return CSS_URL_RE.sub(replace_url, css)

    def _rewrite_srcset(self, srcset: str, base_url: str) -> str:
        """Rewrite srcset attribute"""

        parts = []
        for part in srcset.split(","):
            tokens = part.split()
            if not tokens:
                parts.append(part.strip())
                continue
            url, descriptors = tokens[0], tokens[1:]
            proxy_url = self._create_proxy_url(url, base_url)
            if proxy_url == url:
                parts.append(part.strip())
            else:
                parts.append(" ".join([proxy_url] + descriptors))

        return ", ".join(parts)

    def rewrite_html(self, html: str, base_url: str) -> str:
        """Rewrite HTML references and inject the interception script.

        The passes run in a fixed order: later passes never see a value an
        earlier pass could rewrite twice, and the script goes in last.
        """

        for pattern in BLOCKING_META_RES:
            html = pattern.sub("", html)

        def replace_attr(match):
            name, sep, quote, value = _attr_parts(match)
            proxy_url = self._create_proxy_url(value, base_url)
            if proxy_url == value:
                return match.group(0)
            return f"{name}{sep}{quote}{proxy_url}{quote}"

        html = URL_ATTR_RE.sub(replace_attr, html)

        def replace_srcset(match):
            name, sep, quote, value = _attr_parts(match)
            return f"{name}{sep}{quote}{self._rewrite_srcset(value, base_url)}{quote}"

        html = SRCSET_RE.sub(replace_srcset, html)

        def replace_style_attr(match):
            name, sep, quote, value = _attr_parts(match)
            # url() quotes must not close the attribute
            inner = '"' if quote == "'" else "'"
            return f"{name}{sep}{quote}{self.rewrite_css(value, base_url, inner)}{quote}"

        html = STYLE_ATTR_RE.sub(replace_style_attr, html)

        html = STYLE_BLOCK_RE.sub(
            lambda m: m.group(1) + self.rewrite_css(m.group(2), base_url) + m.group(3),
            html,
        )

        return self.inject_script(html, base_url)

    def inject_script(self, html: str, base_url: str) -> str:
        """Place the interception script before </head>, after <body>, or first"""

        parsed = urlsplit(base_url)
        origin = f"{parsed.scheme}://{parsed.netloc}"
        script = build_interceptor_script(base_url, self.proxy_path)

        if HEAD_CLOSE_RE.search(html):
            return HEAD_CLOSE_RE.sub(lambda m: script + m.group(0), html, count=1)
        if BODY_OPEN_RE.search(html):
            return BODY_OPEN_RE.sub(lambda m: m.group(0) + script, html, count=1)

        logger.debug(f"No <head> or <body> in document from {origin}, prepending script")
        return script + html
