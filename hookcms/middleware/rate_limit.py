"""
Rate limiting for the authentication endpoints.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from hookcms.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=settings.rate_limit_enabled,
)


def configure_rate_limiting(app):
    """Attach the limiter to the application state (the 429 handler lives in exception_handlers)."""
    app.state.limiter = limiter
