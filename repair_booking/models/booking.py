from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import relationship
from repair_booking.database import Base

JOB_STATUSES = ("scheduled", "en_route", "on_site", "completed")


class Booking(Base):
    """A committed appointment. At most one per zone, appointment type and slot."""
    __tablename__ = "bookings"
    __table_args__ = (
        UniqueConstraint("zone_code", "appointment_type", "slot_code", name="uq_bookings_zone_type_slot"),
    )

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("booking_requests.id"), index=True, nullable=True)
    selected_option_id = Column(Integer, ForeignKey("booking_request_offers.id"), nullable=True)
    slot_code = Column(String(32), nullable=False)  # service_date#slot_index
    zone_code = Column(String(1), index=True, nullable=False)
    appointment_type = Column(String(32), nullable=False, default="standard")
    status = Column(String(16), default="scheduled", index=True)
    payment_session_id = Column(String(255), unique=True, nullable=True)
    payment_intent = Column(String(255), nullable=True)
    window_start = Column(DateTime, index=True)  # local wall clock
    window_end = Column(DateTime)
    job_ref = Column(String(32), unique=True, index=True)
    assigned_tech_id = Column(Integer, ForeignKey("technicians.id"), nullable=True)
    tech_notes = Column(Text, nullable=True)
    base_fee_cents = Column(Integer, default=0)
    collected_cents = Column(Integer, default=0)
    google_event_id = Column(String(255), nullable=True)  # Track Google Calendar event ID
    created_at = Column(DateTime, default=func.now())

    # Relationships
    request = relationship("BookingRequest", back_populates="bookings")
    technician = relationship("Technician", back_populates="bookings")

    def to_dict(self) -> dict:
        request = self.request
        return {
            "id": self.id,
            "request_id": self.request_id,
            "selected_option_id": self.selected_option_id,
            "slot_code": self.slot_code,
            "zone_code": self.zone_code,
            "appointment_type": self.appointment_type,
            "status": self.status,
            "job_ref": self.job_ref,
            "window_start": self.window_start.isoformat() if self.window_start else None,
            "window_end": self.window_end.isoformat() if self.window_end else None,
            "assigned_tech_id": self.assigned_tech_id,
            "tech_notes": self.tech_notes,
            "collected_cents": self.collected_cents,
            "customer": {
                "name": request.name,
                "phone": request.phone,
                "email": request.email,
                "address": request.address,
            } if request else None,
        }
