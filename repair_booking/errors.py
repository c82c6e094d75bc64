"""
Error taxonomy shared by the booking core and the HTTP layer.

Every error carries an HTTP status, a short machine-readable code and a
human-readable message. The API layer renders them as
``{"ok": false, "error": code, "message": message}``.
"""


class BookingError(Exception):
    """Base class for all expected booking failures"""

    status_code = 500
    error = "server_error"
    default_message = "Something went wrong."

    def __init__(self, message: str | None = None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"ok": False, "error": self.error, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(BookingError):
    status_code = 400
    error = "validation_error"
    default_message = "Invalid request."


class AuthError(BookingError):
    status_code = 401
    error = "unauthorized"
    default_message = "Not authorized."


class NotFoundError(BookingError):
    status_code = 404
    error = "not_found"
    default_message = "Not found."


class ConflictError(BookingError):
    status_code = 409
    error = "conflict"
    default_message = "Conflict."


class ExpiredError(BookingError):
    status_code = 410
    error = "expired"
    default_message = "This link has expired."


class NotConfiguredError(BookingError):
    status_code = 501
    error = "not_configured"
    default_message = "This feature is not configured."


class UpstreamError(BookingError):
    status_code = 502
    error = "upstream_error"
    default_message = "An external service failed."


# Token failures

class BadFormat(ValidationError):
    error = "bad_token_format"
    default_message = "Invalid link."


class BadPayload(ValidationError):
    error = "bad_payload"
    default_message = "Invalid link."


class BadSignature(AuthError):
    error = "bad_signature"
    default_message = "Invalid link."


class Expired(ExpiredError):
    pass


# Lookups

class GeocodeNotFound(NotFoundError):
    error = "geocode_not_found"
    default_message = "We could not find that address."


class ZoneNotFound(NotFoundError):
    error = "zone_not_found"
    default_message = "Sorry, that address is outside our service area."


class OfferNotFound(NotFoundError):
    error = "offer_not_found"
    default_message = "Offer not found."


class RequestNotFound(NotFoundError):
    error = "request_not_found"
    default_message = "Booking request not found."


class BookingNotFound(NotFoundError):
    error = "booking_not_found"
    default_message = "Booking not found."


# Slot contention

class OfferInactive(ConflictError):
    error = "slot_taken"
    default_message = "That appointment window is no longer available. Please choose another option."


class SlotAlreadyBooked(ConflictError):
    error = "slot_already_booked"
    default_message = (
        "That appointment window was just booked by someone else. "
        "Please choose another option."
    )


class RequestAlreadyBooked(ConflictError):
    error = "already_booked"
    default_message = "This request has already been booked."


class TechnicianUnavailable(ConflictError):
    error = "technician_unavailable"
    default_message = "No technician is available for that window. Please choose another option."
