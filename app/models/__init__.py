"""
Database models
"""

from app.models.user import User
from app.models.venue import Venue
from app.models.booking import Booking
from app.models.payment import Payment, PaymentGatewayEvent

__all__ = [
    "User",
    "Venue",
    "Booking",
    "Payment",
    "PaymentGatewayEvent"
]
