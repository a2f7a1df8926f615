"""Role-Based Access Control (RBAC) utilities."""

from enum import Enum
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status

from pos_promotions.core.security import decode_access_token
from pos_promotions.db.session import DbSession


class UserRole(str, Enum):
    """User roles for RBAC."""

    OWNER = "owner"
    MANAGER = "manager"
    STAFF = "staff"


# Role hierarchy: owner > manager > staff
ROLE_HIERARCHY = {
    UserRole.OWNER: 3,
    UserRole.MANAGER: 2,
    UserRole.STAFF: 1,
}


class TokenData:
    """Decoded token data.

    Attributes:
        user_id: The user's database ID.
        email: The user's email address.
        role: The user's role (owner/manager/staff).
        full_name: The user's display name (defaults to email prefix).
    """

    def __init__(self, user_id: int, email: str, role: UserRole, full_name: str = ""):
        self.user_id = user_id
        self.email = email
        self.role = role
        self.full_name = full_name or email.split("@")[0]


def _token_payload(request: Request) -> Optional[dict]:
    """Decode the bearer token, falling back to the access_token cookie."""
    payload = None

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
        if token:
            payload = decode_access_token(token)

    if payload is None:
        cookie_token = request.cookies.get("access_token")
        if cookie_token:
            payload = decode_access_token(cookie_token)

    return payload


def get_current_user(request: Request, db: DbSession) -> TokenData:
    """Get the current authenticated user from JWT token.

    Checks in order:
    1. Authorization: Bearer <token> header
    2. access_token cookie (HttpOnly)
    """
    payload = _token_payload(request)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    email = payload.get("email")
    role = payload.get("role")

    if user_id is None or email is None or role is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    try:
        user_role = UserRole(role)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid role in token",
        )

    # Verify user is still active in the database
    from pos_promotions.models.user import User

    user = db.get(User, int(user_id))
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is disabled",
        )

    return TokenData(
        user_id=int(user_id),
        email=email,
        role=user_role,
        full_name=user.name or "",
    )


def require_role(minimum_role: UserRole):
    """Dependency to require a minimum role level."""

    def role_checker(
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
RequireManager = Annotated[TokenData, Depends(require_role(UserRole.MANAGER))]
RequireStaff = Annotated[TokenData, Depends(require_role(UserRole.STAFF))]
CurrentUser = Annotated[TokenData, Depends(get_current_user)]
