"""
Main API Router
Aggregates all API endpoints for v1
"""

from fastapi import APIRouter
from app.api.v1.endpoints import admin_payments, payment
from app.schemas.response import ErrorResponse

api_router = APIRouter(
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    }
)

# Include all routers
api_router.include_router(payment.router, prefix="/payments", tags=["payments"])
api_router.include_router(admin_payments.router, prefix="/admin/payments", tags=["admin"])
