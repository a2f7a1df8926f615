"""Authentication routes."""

import logging

from fastapi import APIRouter, HTTPException, Request, status
from sqlalchemy import select

from pos_promotions.core.rate_limit import limiter
from pos_promotions.core.rbac import CurrentUser
from pos_promotions.core.responses import success_response
from pos_promotions.core.security import create_access_token, verify_password
from pos_promotions.db.session import DbSession
from pos_promotions.models.user import User
from pos_promotions.schemas.auth import LoginRequest, Token, UserResponse
from pos_promotions.schemas.envelope import ApiResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/login", response_model=ApiResponse[Token])
@limiter.limit("5/minute")
def login(request: Request, login_request: LoginRequest, db: DbSession):
    """Authenticate user and return JWT token."""
    client_ip = request.client.host if request.client else "unknown"
    user = db.execute(select(User).where(User.email == login_request.email)).scalar_one_or_none()

    if not user or not verify_password(login_request.password, user.password_hash):
        logger.warning(f"Failed login attempt for email: {login_request.email} from IP: {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if not user.is_active:
        logger.warning(f"Login attempt for inactive user: {login_request.email} (ID: {user.id}) from IP: {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is inactive",
        )

    logger.info(f"Successful login: {user.email} (ID: {user.id}, role: {user.role.value}) from IP: {client_ip}")
    token = create_access_token(
        data={"sub": str(user.id), "email": user.email, "role": user.role.value}
    )
    return success_response(Token(access_token=token), "Login successful")


@router.get("/me", response_model=ApiResponse[UserResponse])
def get_me(current_user: CurrentUser):
    """Return the authenticated user."""
    return success_response(UserResponse(
        id=current_user.user_id,
        email=current_user.email,
        name=current_user.full_name,
        role=current_user.role,
    ))
