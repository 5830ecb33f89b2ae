"""
Services module for Butter Proxy
"""

from .relay import RelayEngine
from .cookie_jar import CookieJarStore
from .content_rewriter import ContentRewriter

__all__ = [
    'RelayEngine',
    'CookieJarStore',
    'ContentRewriter'
]
