"""Invoice routes: promotion redemption at checkout."""

from fastapi import APIRouter, HTTPException, Request, status

from pos_promotions.api.routes.promotions import audit_context
from pos_promotions.core.rate_limit import limiter
from pos_promotions.core.rbac import RequireStaff
from pos_promotions.core.responses import error_response, success_response
from pos_promotions.core.validators import PositiveIntId
from pos_promotions.db.session import DbSession
from pos_promotions.models.invoice import Invoice
from pos_promotions.schemas.envelope import ApiResponse
from pos_promotions.schemas.invoice import InvoiceResponse
from pos_promotions.schemas.promotion import ApplyPromotionRequest, PromotionValidationResponse
from pos_promotions.services.promotion_service import PromotionService

router = APIRouter()


@router.get("/{invoice_id}", response_model=ApiResponse[InvoiceResponse])
@limiter.limit("60/minute")
def get_invoice(request: Request, invoice_id: PositiveIntId, db: DbSession, current_user: RequireStaff):
    """Get an invoice with its promotion stamp."""
    invoice = db.get(Invoice, invoice_id)
    if invoice is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return success_response(InvoiceResponse.from_model(invoice))


@router.post(
    "/{invoice_id}/apply-promotion",
    response_model=ApiResponse[PromotionValidationResponse],
    responses={400: {"model": ApiResponse[PromotionValidationResponse]}},
)
@limiter.limit("30/minute")
def apply_promotion(
    request: Request,
    invoice_id: PositiveIntId,
    body: ApplyPromotionRequest,
    db: DbSession,
    current_user: RequireStaff,
):
    """Redeem a promotion code on a pending invoice.

    A rejected code returns 400 with the validation result in ``data`` and
    the reason in ``errors``; nothing is recorded in that case.
    """
    service = PromotionService(db)
    result = service.apply_to_invoice(
        invoice_id,
        body.code,
        order_amount=body.order_amount,
        customer_id=body.customer_id,
        customer_phone=body.customer_phone,
        context=audit_context(request, current_user),
    )
    payload = PromotionValidationResponse.from_result(result, service.clock())
    if not result.valid:
        return error_response(
            result.message,
            errors=[result.reason.value],
            status_code=status.HTTP_400_BAD_REQUEST,
            data=payload.model_dump(mode="json"),
        )
    return success_response(payload, result.message)
