"""Promotion routes.

Static paths (/active, /validate, /by-code, /customer-usage) are declared
before /{promotion_id} so they are not captured by it.
"""

from typing import List, Optional

from fastapi import APIRouter, Query, Request, status

from pos_promotions.core.rate_limit import limiter
from pos_promotions.core.rbac import CurrentUser, RequireManager, RequireStaff, TokenData
from pos_promotions.core.responses import success_response
from pos_promotions.core.validators import PositiveIntId
from pos_promotions.db.session import DbSession
from pos_promotions.schemas.envelope import ApiResponse
from pos_promotions.schemas.promotion import (
    PHONE_PATTERN,
    PromotionCreate,
    PromotionResponse,
    PromotionUpdate,
    PromotionUsageResponse,
    PromotionValidationResponse,
    ValidatePromotionRequest,
)
from pos_promotions.services.audit_service import AuditContext
from pos_promotions.services.promotion_service import PromotionService

router = APIRouter()


def audit_context(request: Request, user: TokenData) -> AuditContext:
    """Who is calling, for the audit log."""
    return AuditContext(
        user_id=user.user_id,
        user_name=user.email,
        ip_address=request.client.host if request.client else "",
    )


def _serialize_list(service: PromotionService, promotions) -> List[PromotionResponse]:
    now = service.clock()
    return [PromotionResponse.from_model(p, now) for p in promotions]


# ---- Public endpoints (POS order panel) ----

@router.get("/active", response_model=ApiResponse[List[PromotionResponse]])
@limiter.limit("60/minute")
def list_active_promotions(request: Request, db: DbSession):
    """Promotions usable right now: active, inside their window, under their limit."""
    service = PromotionService(db)
    return success_response(_serialize_list(service, service.list_active()))


@router.post("/validate", response_model=ApiResponse[PromotionValidationResponse])
@limiter.limit("60/minute")
def validate_promotion(request: Request, body: ValidatePromotionRequest, db: DbSession):
    """Check a code against an order without redeeming it.

    Always 200: whether the code is usable is in ``data.valid`` and
    ``data.reason``.
    """
    service = PromotionService(db)
    result = service.validate(
        body.code,
        body.order_amount,
        customer_id=body.customer_id,
        customer_phone=body.customer_phone,
    )
    return success_response(
        PromotionValidationResponse.from_result(result, service.clock()),
        result.message,
    )


@router.get("/by-code/{code}", response_model=ApiResponse[PromotionResponse])
@limiter.limit("60/minute")
def get_promotion_by_code(request: Request, code: str, db: DbSession):
    """Look a promotion up by code (case-insensitive)."""
    service = PromotionService(db)
    promotion = service.get_by_code(code)
    return success_response(PromotionResponse.from_model(promotion, service.clock()))


# ---- Authenticated endpoints ----

@router.get("/customer-usage", response_model=ApiResponse[List[PromotionUsageResponse]])
@limiter.limit("60/minute")
def get_customer_usage(
    request: Request,
    db: DbSession,
    current_user: CurrentUser,
    customer_id: Optional[int] = Query(None, gt=0),
    customer_phone: Optional[str] = Query(None, pattern=PHONE_PATTERN),
):
    """Promotions redeemed by a customer (by id, else by phone)."""
    rows = PromotionService(db).customer_usage(customer_id, customer_phone)
    return success_response([PromotionUsageResponse.from_model(u, name) for u, name in rows])


@router.get("/", response_model=ApiResponse[List[PromotionResponse]])
@limiter.limit("60/minute")
def list_promotions(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    active_only: bool = False,
    currently_usable: bool = False,
):
    """List promotions, newest first."""
    service = PromotionService(db)
    promotions = service.list_promotions(active_only=active_only, currently_usable=currently_usable)
    return success_response(_serialize_list(service, promotions))


@router.post("/", response_model=ApiResponse[PromotionResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_promotion(request: Request, body: PromotionCreate, db: DbSession, current_user: RequireManager):
    """Create a promotion."""
    service = PromotionService(db)
    promotion = service.create(body, audit_context(request, current_user))
    return success_response(
        PromotionResponse.from_model(promotion, service.clock()),
        "Promotion created successfully",
    )


@router.get("/{promotion_id}", response_model=ApiResponse[PromotionResponse])
@limiter.limit("60/minute")
def get_promotion(request: Request, promotion_id: PositiveIntId, db: DbSession, current_user: RequireStaff):
    """Get a specific promotion."""
    service = PromotionService(db)
    return success_response(PromotionResponse.from_model(service.get(promotion_id), service.clock()))


@router.put("/{promotion_id}", response_model=ApiResponse[PromotionResponse])
@limiter.limit("30/minute")
def update_promotion(
    request: Request,
    promotion_id: PositiveIntId,
    body: PromotionUpdate,
    db: DbSession,
    current_user: RequireManager,
):
    """Partially update a promotion; omitted fields are left unchanged."""
    service = PromotionService(db)
    promotion = service.update(promotion_id, body, audit_context(request, current_user))
    return success_response(
        PromotionResponse.from_model(promotion, service.clock()),
        "Promotion updated successfully",
    )


@router.patch("/{promotion_id}/toggle-active", response_model=ApiResponse[PromotionResponse])
@limiter.limit("30/minute")
def toggle_promotion_active(
    request: Request,
    promotion_id: PositiveIntId,
    db: DbSession,
    current_user: RequireManager,
):
    """Toggle a promotion's active status."""
    service = PromotionService(db)
    promotion = service.set_active(promotion_id, context=audit_context(request, current_user))
    state = "activated" if promotion.active else "deactivated"
    return success_response(PromotionResponse.from_model(promotion, service.clock()), f"Promotion {state}")


@router.delete("/{promotion_id}", response_model=ApiResponse[bool])
@limiter.limit("30/minute")
def delete_promotion(
    request: Request,
    promotion_id: PositiveIntId,
    db: DbSession,
    current_user: RequireManager,
):
    """Delete a promotion, or deactivate it when it has usage history."""
    soft = PromotionService(db).delete(promotion_id, audit_context(request, current_user))
    message = (
        "Promotion has usage history and was deactivated"
        if soft else "Promotion deleted successfully"
    )
    return success_response(True, message)


@router.get("/{promotion_id}/usage-history", response_model=ApiResponse[List[PromotionUsageResponse]])
@limiter.limit("60/minute")
def get_usage_history(
    request: Request,
    promotion_id: PositiveIntId,
    db: DbSession,
    current_user: RequireManager,
):
    """Redemptions of a promotion, newest first."""
    rows = PromotionService(db).usage_history(promotion_id)
    return success_response([PromotionUsageResponse.from_model(u, name) for u, name in rows])
