"""
Security utilities for authentication and authorization
Decodes bearer tokens issued by the storefront's auth service
"""

from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .config import settings
from .exceptions import UnauthorizedException, ForbiddenException

# Security scheme; missing credentials are allowed so guests can check out
security = HTTPBearer(auto_error=False)

class SecurityUtils:
    """Security utility functions"""

    @staticmethod
    def create_access_token(data: Dict[str, Any]) -> str:
        """Create JWT access token"""
        to_encode = data.copy()
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        to_encode.update({"exp": expire, "type": "access"})
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    @staticmethod
    def decode_token(token: str) -> Dict[str, Any]:
        """Decode and validate JWT token"""
        try:
            return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        except JWTError:
            raise UnauthorizedException("Invalid authentication credentials")

def _user_from_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    if payload.get("type") != "access" or not payload.get("sub"):
        raise UnauthorizedException("Invalid token type")

    return {
        "id": str(payload["sub"]),
        "role": payload.get("role"),
        "email": payload.get("email"),
    }

async def get_current_user_optional(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[Dict[str, Any]]:
    """
    Get current user if authenticated, otherwise None
    Guest checkouts reach the discount endpoints without a token
    """
    if not credentials:
        return None

    user = _user_from_payload(SecurityUtils.decode_token(credentials.credentials))
    request.state.user_id = user["id"]
    return user

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Dict[str, Any]:
    """Get current authenticated user (required)"""
    if not credentials:
        raise UnauthorizedException()

    return _user_from_payload(SecurityUtils.decode_token(credentials.credentials))

async def require_admin(
    current_user: Dict[str, Any] = Depends(get_current_user)
) -> Dict[str, Any]:
    """Only administrators may manage discount definitions"""
    if current_user.get("role") not in settings.ADMIN_ROLES:
        raise ForbiddenException("Insufficient permissions")
    return current_user
