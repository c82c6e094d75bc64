from sqlalchemy import Column, Integer, String, DateTime, Float, Text, func
from sqlalchemy.orm import relationship
from repair_booking.database import Base

REQUEST_STATUSES = ("sent", "selected", "booked", "failed")
_STATUS_RANK = {"sent": 0, "selected": 1, "booked": 2}


class BookingRequest(Base):
    """A customer's request for appointment times"""
    __tablename__ = "booking_requests"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    email = Column(String(255), nullable=True)
    contact_method = Column(String(16), default="text")  # text | email | both
    address = Column(Text)
    formatted_address = Column(Text, nullable=True)
    lat = Column(Float, nullable=True)
    lon = Column(Float, nullable=True)
    zone_code = Column(String(1), index=True, nullable=True)
    zone_name = Column(String(100), nullable=True)
    appointment_type = Column(String(32), default="standard")
    notes = Column(Text, nullable=True)
    status = Column(String(16), default="sent", index=True)
    # Paid checkout that could not be turned into a booking (needs a refund)
    failed_payment_session_id = Column(String(255), nullable=True)
    failed_payment_intent = Column(String(255), nullable=True)
    failure_reason = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    offers = relationship("Offer", back_populates="request")
    bookings = relationship("Booking", back_populates="request")

    def advance_status(self, new_status: str) -> bool:
        """
        Move the request forward along sent -> selected -> booked.

        Backward moves are ignored so the status never regresses; "failed"
        is terminal and only reachable from a non-booked state.

        Returns:
            True if the status changed
        """
        if new_status not in REQUEST_STATUSES:
            raise ValueError(f"Unknown request status: {new_status}")

        current = self.status or "sent"
        if current == new_status or current == "failed":
            return False
        if new_status == "failed":
            if current == "booked":
                return False
            self.status = new_status
            return True
        if _STATUS_RANK[new_status] < _STATUS_RANK[current]:
            return False

        self.status = new_status
        return True
