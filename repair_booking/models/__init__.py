from repair_booking.models.booking_request import BookingRequest
from repair_booking.models.offer import Offer
from repair_booking.models.booking import Booking
from repair_booking.models.technician import Technician, TechTimeOff
from repair_booking.models.reminder_log import ReminderLog

__all__ = ["BookingRequest", "Offer", "Booking", "Technician", "TechTimeOff", "ReminderLog"]
