"""Role-Based Access Control (RBAC) utilities.

The order engine itself never checks roles; routes gate access here
before any service call.
"""

from enum import Enum
from typing import Annotated, Any, Optional

from fastapi import Depends, HTTPException, Request, status

from app.core.security import decode_access_token


class UserRole(str, Enum):
    """User roles for RBAC."""

    ADMIN = "admin"
    WAITER = "waiter"


# Role hierarchy: admin > waiter
ROLE_HIERARCHY = {
    UserRole.ADMIN: 2,
    UserRole.WAITER: 1,
}


class TokenData:
    """Decoded token data.

    Attributes:
        user_id: The user's database ID.
        email: The user's email address.
        role: The user's role (admin/waiter).
        id: Alias for user_id.
    """

    def __init__(self, user_id: int, email: str, role: UserRole):
        self.user_id = user_id
        self.id = user_id
        self.email = email
        self.role = role


def token_from_request(request: Request) -> Optional[str]:
    """Bearer header first, then the access_token cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
        if token:
            return token
    return request.cookies.get("access_token")


def token_data_from_payload(payload: Optional[dict[str, Any]]) -> Optional[TokenData]:
    """Build TokenData from a decoded JWT payload, or None if it is incomplete."""
    if payload is None:
        return None

    user_id = payload.get("sub")
    email = payload.get("email")
    role = payload.get("role")
    if user_id is None or email is None or role is None:
        return None

    try:
        return TokenData(user_id=int(user_id), email=email, role=UserRole(role))
    except ValueError:
        return None


async def get_current_user(request: Request) -> TokenData:
    """Get the current authenticated user from the JWT token."""
    token = token_from_request(request)
    payload = decode_access_token(token) if token else None
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = token_data_from_payload(payload)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )
    return user


def require_role(minimum_role: UserRole):
    """Dependency to require a minimum role level."""

    async def role_checker(
        current_user: Annotated[TokenData, Depends(get_current_user)]
    ) -> TokenData:
        user_level = ROLE_HIERARCHY.get(current_user.role, 0)
        required_level = ROLE_HIERARCHY.get(minimum_role, 0)

        if user_level < required_level:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role {minimum_role.value} or higher",
            )
        return current_user

    return role_checker


# Common role dependencies
RequireAdmin = Annotated[TokenData, Depends(require_role(UserRole.ADMIN))]
RequireStaff = Annotated[TokenData, Depends(require_role(UserRole.WAITER))]
