"""
Butter Proxy - Main Application Package
A rewrite-and-relay web proxy for embedding remote pages in a frame
"""

__version__ = "1.0.0"

from .core.app import create_app

__all__ = ["create_app"]
