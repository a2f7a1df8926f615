"""API routes."""

from fastapi import APIRouter

from pos_promotions.api.routes import auth, invoices, promotions

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(promotions.router, prefix="/promotions", tags=["promotions"])
api_router.include_router(invoices.router, prefix="/invoices", tags=["invoices"])
