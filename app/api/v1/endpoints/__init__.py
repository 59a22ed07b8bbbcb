"""
API endpoints module
"""

from . import admin_payments, health, payment

__all__ = [
    "admin_payments",
    "health",
    "payment"
]
