"""
Authentication and role dependencies for the FastAPI API.
"""

from typing import Callable, Optional

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from catalog.auth import AuthGate
from catalog.errors import Forbidden
from catalog.models import Identity, Role

logger = structlog.get_logger(__name__)

# Missing credentials are reported by the gate as 401, not by HTTPBearer
security = HTTPBearer(auto_error=False)

# Set during application startup
auth_gate: Optional[AuthGate] = None


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Identity:
    """
    Resolve the bearer credential of the request to an identity.

    Raises:
        Unauthenticated: if the credential is missing or invalid
    """
    if auth_gate is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication service not available"
        )

    credential = credentials.credentials if credentials else None
    return await auth_gate.resolve(credential)


def require_roles(*roles: Role) -> Callable:
    """Dependency factory admitting only identities holding one of roles."""

    async def check_role(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role not in roles:
            logger.warning(
                "Role check failed",
                user_id=identity.id,
                role=identity.role.value,
                required=[role.value for role in roles]
            )
            raise Forbidden()
        return identity

    return check_role
