from sqlalchemy import Column, Integer, String, Date, DateTime, Boolean, ForeignKey, Text, func
from sqlalchemy.orm import relationship
from repair_booking.database import Base

OFFER_GROUPS = ("primary", "more", "seed")


class Offer(Base):
    """Signed proposal binding one slot to one booking request"""
    __tablename__ = "booking_request_offers"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("booking_requests.id"), index=True)
    offer_group = Column(String(16), default="primary")
    appointment_type = Column(String(32), default="standard")
    service_date = Column(Date, index=True)
    slot_index = Column(Integer)
    zone_code = Column(String(1), index=True)
    window_label = Column(String(8), nullable=True)
    start_time = Column(String(8))  # HH:MM:SS local wall clock
    end_time = Column(String(8))
    offer_token = Column(Text, unique=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=func.now())

    # Relationships
    request = relationship("BookingRequest", back_populates="offers")

    @property
    def slot_code(self) -> str:
        return f"{self.service_date.isoformat()}#{self.slot_index}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "offer_group": self.offer_group,
            "appointment_type": self.appointment_type,
            "service_date": self.service_date.isoformat(),
            "slot_index": self.slot_index,
            "slot_code": self.slot_code,
            "zone_code": self.zone_code,
            "window_label": self.window_label,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "offer_token": self.offer_token,
            "is_active": self.is_active,
        }
