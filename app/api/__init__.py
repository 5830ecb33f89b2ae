"""
API Routes Module
"""

from . import fetch_routes

__all__ = [
    'fetch_routes'
]
