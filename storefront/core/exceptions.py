"""
Custom exception classes and error handlers
Provides consistent error responses across the application
"""

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from typing import Any, Dict, Optional

class StorefrontException(HTTPException):
    """Base exception class for the storefront application"""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code

class BadRequestException(StorefrontException):
    """400 Bad Request"""

    def __init__(self, detail: str, error_code: str = "BAD_REQUEST"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code
        )

class UnauthorizedException(StorefrontException):
    """401 Unauthorized"""

    def __init__(self, detail: str = "Unauthorized", error_code: str = "UNAUTHORIZED"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code=error_code,
            headers={"WWW-Authenticate": "Bearer"}
        )

class ForbiddenException(StorefrontException):
    """403 Forbidden"""

    def __init__(self, detail: str = "Forbidden", error_code: str = "FORBIDDEN"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code=error_code
        )

class NotFoundException(StorefrontException):
    """404 Not Found"""

    def __init__(self, detail: str = "Not found", error_code: str = "NOT_FOUND"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code=error_code
        )

class ConflictException(StorefrontException):
    """409 Conflict"""

    def __init__(self, detail: str, error_code: str = "CONFLICT"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code=error_code
        )

class InternalServerException(StorefrontException):
    """500 Internal Server Error"""

    def __init__(
        self,
        detail: str = "Internal server error",
        error_code: str = "INTERNAL_ERROR"
    ):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code=error_code
        )

# Business logic exceptions
class DuplicateResourceException(ConflictException):
    """Resource already exists"""

    def __init__(self, resource: str, field: str, value: str):
        super().__init__(
            detail=f"{resource} with {field} '{value}' already exists",
            error_code="DUPLICATE_RESOURCE"
        )

class DiscountLimitExceeded(ConflictException):
    """
    A redemption would push a discount past its global or per-user cap.

    Recoverable: the order proceeds and its total is recomputed without
    the discount.
    """

    def __init__(self, reason: str, detail: str = "Discount code is no longer available"):
        super().__init__(detail=detail, error_code="DISCOUNT_LIMIT_EXCEEDED")
        self.reason = reason

class DiscountBookkeepingError(InternalServerException):
    """Usage could not be recorded; the order needs manual reconciliation"""

    def __init__(self, detail: str = "Failed to record discount usage"):
        super().__init__(detail=detail, error_code="DISCOUNT_BOOKKEEPING_FAILED")

async def storefront_exception_handler(request: Request, exc: StorefrontException) -> JSONResponse:
    """Render application exceptions with a stable error envelope"""
    content = {
        "error": {
            "code": exc.error_code or "ERROR",
            "message": exc.detail,
        }
    }
    reason = getattr(exc, "reason", None)
    if reason:
        content["error"]["reason"] = reason

    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=exc.headers
    )
