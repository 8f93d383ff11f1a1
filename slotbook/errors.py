# slotbook/errors.py
"""
Error taxonomy of the reservation protocol.

Conflict-class errors (SlotUnavailable, HoldExpired) are routine outcomes of
concurrent booking: the client refreshes the slot list and picks again.
Forbidden / InvalidTransition mean the client view is out of sync with the
server and should trigger a full refresh. Overlap / NotEditable / InvalidInput
are calendar-management input errors.
"""


class BookingError(Exception):
    status_code = 400
    code = "booking_error"

    def __init__(self, message: str | None = None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class NotFound(BookingError):
    """Resource not found."""
    status_code = 404
    code = "not_found"


class SlotUnavailable(BookingError):
    """Slot is not available."""
    status_code = 409
    code = "slot_unavailable"


class HoldExpired(BookingError):
    """Your hold on this slot has expired. Please pick a slot again."""
    status_code = 409
    code = "hold_expired"


class InvalidTransition(BookingError):
    """Operation not allowed in the current state."""
    status_code = 409
    code = "invalid_transition"


class DeadlineExceeded(InvalidTransition):
    """The deadline for this action has passed."""
    code = "deadline_exceeded"


class Forbidden(BookingError):
    """You are not allowed to act on this resource."""
    status_code = 403
    code = "forbidden"


class Overlap(BookingError):
    """Slots overlap existing slots on that date."""
    status_code = 409
    code = "overlap"


class NotEditable(BookingError):
    """Editing is disabled for dates earlier than tomorrow."""
    status_code = 422
    code = "not_editable"


class InvalidInput(BookingError):
    """Invalid input."""
    status_code = 422
    code = "invalid_input"
