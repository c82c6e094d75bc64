from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Text, func
from sqlalchemy.orm import relationship
from repair_booking.database import Base


class Technician(Base):
    """Field technician, mapped to the zone they cover"""
    __tablename__ = "technicians"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255))
    phone = Column(String(32), nullable=True)
    zone_code = Column(String(1), index=True, nullable=True)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())

    # Relationships
    time_off = relationship("TechTimeOff", back_populates="technician", cascade="all, delete-orphan")
    bookings = relationship("Booking", back_populates="technician")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "zone_code": self.zone_code,
            "active": self.active,
        }


class TechTimeOff(Base):
    """Blocked-out time for a technician"""
    __tablename__ = "tech_time_off"

    id = Column(Integer, primary_key=True, index=True)
    tech_id = Column(Integer, ForeignKey("technicians.id"), index=True)
    start_ts = Column(DateTime, index=True)
    end_ts = Column(DateTime, index=True)
    reason = Column(Text, nullable=True)
    type = Column(String(16), default="range")  # range | slot
    created_at = Column(DateTime, default=func.now())

    # Relationships
    technician = relationship("Technician", back_populates="time_off")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tech_id": self.tech_id,
            "start_ts": self.start_ts.isoformat(),
            "end_ts": self.end_ts.isoformat(),
            "reason": self.reason,
            "type": self.type,
        }
