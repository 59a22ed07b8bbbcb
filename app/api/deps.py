"""
Shared API dependencies
"""

from app.services.payment_service import PaymentService, payment_service


def get_payment_service() -> PaymentService:
    return payment_service
