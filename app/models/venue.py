"""
Venue model
"""

from sqlalchemy import Column, String, Text
from sqlalchemy.orm import relationship

from app.models.base import BaseModel


class Venue(BaseModel):
    """
    Bookable venue; only the fields payments need to describe a booking
    """
    __tablename__ = "venues"

    name = Column(String(255), nullable=False)
    address = Column(Text)
    city = Column(String(100), index=True)

    # Relationships
    bookings = relationship("Booking", back_populates="venue")

    def __repr__(self):
        return f"<Venue(id={self.id}, name={self.name}, city={self.city})>"
