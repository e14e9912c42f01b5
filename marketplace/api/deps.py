"""FastAPI dependency injection functions."""

import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from marketplace.api.middleware.auth import AuthError, AuthErrorCode, decode_jwt
from marketplace.api.middleware.error_handler import AuthorizationError
from marketplace.core.config import get_settings
from marketplace.schemas.auth import UserContext

logger = logging.getLogger(__name__)


async def get_current_user(
    authorization: Annotated[str, Header(description="Bearer token")] = "",
) -> UserContext:
    """Extract and validate the acting user from the Authorization header.

    Args:
        authorization: The Authorization header value (Bearer token).

    Returns:
        UserContext: The authenticated user's context.

    Raises:
        HTTPException: 401 if token is missing, invalid, or expired.
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format. Expected: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_jwt(parts[1])
    except AuthError as e:
        detail = "Token has expired" if e.code == AuthErrorCode.TOKEN_EXPIRED else e.message
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    return payload.to_user_context()


CurrentUser = Annotated[UserContext, Depends(get_current_user)]


def is_admin(user: UserContext) -> bool:
    return user.role is not None and user.role in get_settings().admin_roles_list


async def get_admin_user(user: CurrentUser) -> UserContext:
    """Require a caller allowed to run settlement and reconciliation jobs.

    Raises:
        AuthorizationError: If the token's role is not an admin role.
    """
    if not is_admin(user):
        logger.warning("User %s with role %s denied admin access", user.user_id, user.role)
        raise AuthorizationError("Administrator access required")
    return user


AdminUser = Annotated[UserContext, Depends(get_admin_user)]
