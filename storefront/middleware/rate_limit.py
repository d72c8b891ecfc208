"""Rate limiting using slowapi"""

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from storefront.core.config import settings

# Custom key function that considers user authentication
def get_rate_limit_key(request: Request) -> str:
    """Get rate limit key based on user or IP"""
    # Set by get_current_user_optional once the bearer token is decoded
    user_id = getattr(request.state, "user_id", None)

    if user_id:
        return f"user:{user_id}"

    # Fall back to IP address
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = get_remote_address(request)

    return f"ip:{ip}"

# Create limiter instance
limiter = Limiter(
    key_func=get_rate_limit_key,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    strategy="fixed-window",
    enabled=settings.RATE_LIMIT_ENABLED,
)

# Custom rate limit exceeded handler
async def custom_rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMIT_EXCEEDED",
                "message": f"Too many requests. {exc.detail}"
            }
        }
    )

# Code guessing protection on the checkout validate endpoint
discount_validate_limit = limiter.limit(settings.RATE_LIMIT_DISCOUNT_VALIDATE)
