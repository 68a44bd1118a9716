"""Rate limiting configuration using slowapi.

Provides a module-level Limiter instance that can be imported by routers
for per-endpoint rate limiting, and wired into the FastAPI app in main.py.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from workforce.config import settings

# Default: RATE_LIMIT_MAX_REQUESTS per RATE_LIMIT_WINDOW_MINUTES per client IP.
# Individual routes can override with @limiter.limit("N/period")
# or opt out with @limiter.exempt.
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit],
)
