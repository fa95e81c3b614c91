"""
Authentication dependencies for FastAPI.

This module provides dependencies for protecting routes with JWT authentication
and for wiring the posting engine into request handlers.
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from p2p_backend.app.core.jwt import decode_access_token
from p2p_backend.app.core.exceptions import AuthenticationError
from p2p_backend.app.db.session import AsyncSessionLocal
from p2p_backend.app.domain.posting.engine import PostingEngine

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    The tenant is always taken from the token, never from the request body,
    so a caller can only touch its own tenant's events and ledger.

    Args:
        credentials: HTTP Bearer token from request header

    Returns:
        Decoded token payload containing user and tenant information

    Raises:
        AuthenticationError: 401 if the token is invalid or lacks user and tenant claims
    """
    token = credentials.credentials

    payload = decode_access_token(token)
    if payload is None:
        raise AuthenticationError("Could not validate credentials")

    if not payload.get("user_id") or not payload.get("tenant_id"):
        raise AuthenticationError("Invalid token payload")

    return payload


async def get_posting_engine() -> PostingEngine:
    """
    FastAPI dependency providing a posting engine bound to the app session factory.

    Overridden in tests to bind the engine to the in-memory database.
    """
    return PostingEngine(AsyncSessionLocal)
