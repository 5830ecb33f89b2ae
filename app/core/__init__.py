"""
Core module for Butter Proxy
"""

from .app import create_app, app
from .keepalive import KeepAlivePinger

__all__ = [
    'create_app',
    'app',
    'KeepAlivePinger'
]
