"""Bearer token authentication."""

import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from cortex.db.client import DatabaseClient

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "

# Reuse the database client from routes
_db_client: DatabaseClient | None = None


def get_db_client() -> DatabaseClient:
    """Get or create database client instance."""
    global _db_client
    if _db_client is None:
        _db_client = DatabaseClient()
    return _db_client


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    return authorization[len(BEARER_PREFIX):].strip() or None


async def get_user_id(
    db: Annotated[DatabaseClient, Depends(get_db_client)],
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """Resolve the caller's user id from the Authorization header.

    Args:
        db: The database client
        authorization: ``Bearer <jwt>`` header value

    Returns:
        The authenticated user's id

    Raises:
        HTTPException: If the token is missing or rejected
    """
    token = _bearer_token(authorization)
    user_id = await db.get_user_id_from_token(token) if token else None

    if not user_id:
        logger.warning("Rejected request with missing or invalid token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

    return user_id


async def get_optional_user_id(
    db: Annotated[DatabaseClient, Depends(get_db_client)],
    authorization: Annotated[str | None, Header()] = None,
) -> str | None:
    """Resolve the caller if a valid token is present, otherwise None.

    This is for endpoints that support both authenticated and anonymous access.
    """
    token = _bearer_token(authorization)
    if not token:
        return None
    return await db.get_user_id_from_token(token)


# Type aliases for dependency injection
Auth = Annotated[str, Depends(get_user_id)]
OptionalAuth = Annotated[str | None, Depends(get_optional_user_id)]
