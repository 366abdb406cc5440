from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import ValidationError as PydanticValidationError
from typing import List

from ..core.config import settings
from ..core.database import get_redis
from ..core.exceptions import AuthorizationError
from ..core.security import (
    security, verify_token, AuthenticationError,
    UserRole, TokenPayload, CallerIdentity
)

async def get_current_user_token(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> TokenPayload:
    """Extract and verify JWT token from Authorization header."""
    token = credentials.credentials

    # Verify token
    token_payload = verify_token(token)
    if not token_payload:
        raise AuthenticationError("Invalid or expired token")

    # Check if token is access token
    if token_payload.token_type != "access":
        raise AuthenticationError("Invalid token type")

    return token_payload

async def get_current_caller(
    token_payload: TokenPayload = Depends(get_current_user_token)
) -> CallerIdentity:
    """Caller identity and role as asserted by the auth service."""
    if not token_payload.sub:
        raise AuthenticationError("Invalid token payload")

    try:
        return CallerIdentity(id=token_payload.sub, role=token_payload.role)
    except PydanticValidationError:
        raise AuthenticationError("Unknown role")

# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific caller roles."""
    async def role_checker(
        caller: CallerIdentity = Depends(get_current_caller)
    ) -> CallerIdentity:
        if caller.role not in allowed_roles:
            raise AuthorizationError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return caller

    return role_checker

# Rate limiting dependency
async def booking_rate_limit(
    caller: CallerIdentity = Depends(get_current_caller),
    redis_client = Depends(get_redis)
) -> None:
    """Limit how many booking attempts a caller can make per window."""
    key = f"rate_limit:booking:{caller.id}"

    current_requests = redis_client.get(key)
    if current_requests is None:
        redis_client.setex(key, settings.BOOKING_RATE_WINDOW_SECONDS, 1)
    else:
        if int(current_requests) >= settings.BOOKING_RATE_LIMIT:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many booking requests. Please try again later."
            )
        redis_client.incr(key)
