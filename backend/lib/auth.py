"""
Dashboard authentication dependency
"""
from typing import Optional

from fastapi import Header

from socratic_math_tutor.dashboard import verify_dashboard_token
from socratic_math_tutor.errors import AuthError


async def require_dashboard_auth(authorization: Optional[str] = Header(None)) -> dict:
    """
    Validate the dashboard bearer token.

    Args:
        authorization: Bearer token from Authorization header

    Returns:
        dict: Token claims

    Raises:
        AuthError: If the header is missing or the token is invalid/expired
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("Authentication required", "AUTH_REQUIRED")

    token = authorization[len("Bearer "):]
    return verify_dashboard_token(token)
