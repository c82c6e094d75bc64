from sqlalchemy import Column, Integer, String, Date, DateTime, UniqueConstraint, func
from repair_booking.database import Base


class ReminderLog(Base):
    """One row per reminder sent; inserted before sending"""
    __tablename__ = "sms_reminder_log"
    __table_args__ = (
        UniqueConstraint("job_ref", "reminder_type", name="uq_reminder_job_type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    job_ref = Column(String(32), nullable=False)
    reminder_type = Column(String(32), nullable=False)  # night_before | morning_of
    service_date = Column(Date)
    created_at = Column(DateTime, default=func.now())
