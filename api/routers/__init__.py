"""
API routers
"""
from . import health, stylize, videos

__all__ = [
    "health",
    "stylize",
    "videos",
]
