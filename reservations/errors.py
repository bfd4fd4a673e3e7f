"""Error taxonomy for the reservation core.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer answers with. ``NotFound`` and ``Conflict`` are expected client-facing
outcomes; ``StorageFailure`` is the one kind the payment webhook must let
propagate so the gateway retries.
"""


class ReservationError(Exception):
    status_code = 500
    code = "RESERVATION_ERROR"
    retryable = False

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self):
        body = {"error": self.message, "code": self.code}
        if self.retryable:
            body["retryable"] = True
        return body


class NotFound(ReservationError):
    status_code = 404
    code = "NOT_FOUND"


class Conflict(ReservationError):
    status_code = 409
    code = "CONFLICT"


class ValidationError(ReservationError):
    status_code = 400
    code = "VALIDATION_ERROR"


class UpstreamFailure(ReservationError):
    status_code = 502
    code = "UPSTREAM_FAILURE"
    retryable = True


class StorageFailure(ReservationError):
    status_code = 500
    code = "STORAGE_FAILURE"


class SlotNotFound(NotFound):
    code = "SLOT_NOT_FOUND"

    def __init__(self, slot_id):
        super().__init__(f"Slot {slot_id} not found")
        self.slot_id = slot_id


class BookingNotFound(NotFound):
    code = "BOOKING_NOT_FOUND"

    def __init__(self, booking_id):
        super().__init__(f"Booking {booking_id} not found")
        self.booking_id = booking_id


class SlotAlreadyConfirmed(Conflict):
    code = "SLOT_BOOKED"

    def __init__(self, slot_id):
        super().__init__("Slot is already booked and paid")
        self.slot_id = slot_id


class SlotHeldByOther(Conflict):
    code = "SLOT_HELD"

    def __init__(self, slot_id, expires_at=None):
        super().__init__("Slot is currently being booked by someone else")
        self.slot_id = slot_id
        self.expires_at = expires_at


class AlreadyConfirmed(Conflict):
    """Raised on a repeated confirm; callers treat it as a no-op success."""

    code = "ALREADY_CONFIRMED"

    def __init__(self, booking):
        super().__init__(f"Booking {booking.id} is already confirmed")
        self.booking = booking


class BookingNotPending(Conflict):
    code = "BOOKING_NOT_PENDING"

    def __init__(self, booking):
        super().__init__(f"Booking {booking.id} is {booking.status}, not PENDING")
        self.booking = booking


class BookingNotCancellable(Conflict):
    code = "BOOKING_NOT_CANCELLABLE"

    def __init__(self, booking):
        super().__init__("Booking already paid. Cancellation not allowed here")
        self.booking = booking


class SlotHasBooking(Conflict):
    code = "SLOT_IN_USE"

    def __init__(self, slot_id):
        super().__init__("Slot has a booking or an active hold and cannot be deleted")
        self.slot_id = slot_id


class SlotTooSoon(ValidationError):
    code = "SLOT_TOO_SOON"

    def __init__(self, slot_id, cutoff):
        super().__init__(f"Slot starts before the minimum booking time ({cutoff.isoformat()})")
        self.slot_id = slot_id
        self.cutoff = cutoff


class CorrelationError(ValidationError):
    code = "CORRELATION_ERROR"
