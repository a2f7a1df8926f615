"""Authentication schemas."""

from pydantic import BaseModel, EmailStr, Field

from pos_promotions.core.rbac import UserRole


class LoginRequest(BaseModel):
    """Login request body."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class Token(BaseModel):
    """JWT token response."""

    access_token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    """The authenticated user."""

    id: int
    email: str
    name: str
    role: UserRole
