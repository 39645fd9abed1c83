"""Shared slowapi limiter."""
from slowapi import Limiter
from slowapi.util import get_remote_address
from app.config import settings
from app.constants import DEFAULT_RATE_LIMIT

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[DEFAULT_RATE_LIMIT],
    enabled=settings.RATE_LIMIT_ENABLED,
)
