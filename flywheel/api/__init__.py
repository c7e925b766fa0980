from .auth import BearerTokenAuth, SlidingWindowRateLimiter, admin_guard, client_key
from .server import JoinRequest, create_app

__all__ = [
    "BearerTokenAuth",
    "JoinRequest",
    "SlidingWindowRateLimiter",
    "admin_guard",
    "client_key",
    "create_app",
]
