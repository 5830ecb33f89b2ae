"""
Cookie Jar Store
Server-side cookies per (client identity, target hostname)
"""

import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Optional, Tuple
from urllib.parse import urlsplit

from loguru import logger

JarKey = Tuple[str, str]

# Optional whitespace around cookie names and values (RFC 6265 OWS)
OWS = " \t"


def jar_key_for(client_id: str, url: str) -> JarKey:
    return client_id, urlsplit(url).hostname or ""


@dataclass
class CookieJar:
    """Latest value of every cookie name seen from one host"""

    cookies: Dict[str, str] = field(default_factory=dict)
    last_activity: float = 0.0

    def to_header(self) -> str:
        return "; ".join(f"{name}={value}" for name, value in self.cookies.items())


def parse_set_cookie(header: str) -> Optional[Tuple[str, str]]:
    """Extract the leading name=value pair of a Set-Cookie value.

    Values may carry raw non-ASCII bytes (one character per byte), so only
    spaces and tabs are trimmed.
    """
    pair = header.split(";", 1)[0]
    name, _, value = pair.partition("=")
    name = name.strip(OWS)
    if not name:
        return None
    return name, value.strip(OWS)


class CookieJarStore:
    """Manages all cookie jars.

    Jars are created lazily and dropped after ``ttl`` idle seconds or when
    more than ``max_entries`` jars exist (least recently used first).
    A value of 0 disables either policy.
    """

    def __init__(
        self,
        ttl: int = 0,
        max_entries: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_entries = max_entries
        self.clock = clock
        self._jars: "OrderedDict[JarKey, CookieJar]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._jars)

    def __contains__(self, key: JarKey) -> bool:
        return key in self._jars

    def get(self, key: JarKey) -> CookieJar:
        """Get or create the jar for a key, marking it most recently used"""
        self.evict_expired()

        jar = self._jars.get(key)
        if jar is None:
            jar = CookieJar()
            self._jars[key] = jar
            self._enforce_capacity()
        else:
            self._jars.move_to_end(key)
        jar.last_activity = self.clock()
        return jar

    def cookie_header(self, key: JarKey) -> str:
        return self.get(key).to_header()

    def merge(self, key: JarKey, set_cookie_headers: Iterable[str]) -> int:
        """Merge Set-Cookie values into the jar, last write wins per name"""
        jar = self.get(key)
        merged = 0
        for header in set_cookie_headers:
            parsed = parse_set_cookie(header)
            if parsed is None:
                continue
            name, value = parsed
            jar.cookies[name] = value
            merged += 1
        return merged

    def evict_expired(self) -> int:
        if not self.ttl:
            return 0

        # Jars are kept in last-activity order, oldest first
        cutoff = self.clock() - self.ttl
        evicted = 0
        while self._jars:
            key, jar = next(iter(self._jars.items()))
            if jar.last_activity >= cutoff:
                break
            del self._jars[key]
            evicted += 1

        if evicted:
            logger.debug(f"Evicted {evicted} idle cookie jars")
        return evicted

    def _enforce_capacity(self):
        if not self.max_entries:
            return
        while len(self._jars) > self.max_entries:
            key, _ = self._jars.popitem(last=False)
            logger.debug(f"Cookie jar capacity reached, dropped jar for {key[1]}")

    def clear(self):
        self._jars.clear()
