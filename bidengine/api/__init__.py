"""
API Module - HTTP and WebSocket surface (FastAPI).
"""

from bidengine.api.app import create_app
from bidengine.api.deps import Principal, StaticTokenResolver, TokenResolver
from bidengine.api.rate_limit import RateLimiter

__all__ = [
    "create_app",
    "Principal",
    "StaticTokenResolver",
    "TokenResolver",
    "RateLimiter",
]
