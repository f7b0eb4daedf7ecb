"""
Edge Rate Limiting Configuration

Coarse per-IP limits on the public read endpoints (redirect, stats).
These protect the service itself and are independent of the per-operation
RateLimiter in services/rate_limiter.py, which enforces business policy on
sensitive writes with shared, database-backed counters.

Design Decisions:
- Uses slowapi for rate limiting (lightweight, FastAPI-compatible)
- Different limits for different endpoints
- Keyed on the same client IP the rest of the service sees
- The limiter object is module-level (slowapi decorators bind to it), so
  on/off is decided per request from the owning app's settings rather than
  by flipping the shared limiter
- In-process memory storage: limits are per instance, which is acceptable
  for abuse protection at the edge
"""

from slowapi import Limiter
from starlette.requests import Request

from shortlink.middleware.logging import get_client_ip


def client_ip_key(request: Request) -> str:
    return get_client_ip(request)


def edge_limits_disabled(request: Request) -> bool:
    """slowapi exemption hook: True when the app serving ``request`` turned edge limits off."""
    return not request.app.state.context.settings.EDGE_RATE_LIMITS_ENABLED


limiter = Limiter(key_func=client_ip_key)

# Format: "count/period" (e.g., "10/minute" means 10 requests per minute)
RATE_LIMITS = {
    "redirect": "100/minute",  # Redirects: 100 per minute per IP
    "stats": "30/minute",  # Stats queries: 30 per minute per IP
}
