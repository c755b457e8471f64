class PhysioPlanError(Exception):
    """Base class for errors reported back to the caller."""

    kind = "error"
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationError(PhysioPlanError):
    """User-correctable: missing selection, bad date, unknown slot."""

    kind = "validation"
    status_code = 400


class SlotConflictError(ValidationError):
    kind = "slot_conflict"
    status_code = 409

    def __init__(self, time_slot, scheduled_date):
        super().__init__(f"Time slot {time_slot} is already booked on {scheduled_date}")
        self.time_slot = time_slot
        self.scheduled_date = scheduled_date


class NotFoundError(PhysioPlanError):
    kind = "not_found"
    status_code = 404


class AuthorizationError(PhysioPlanError):
    kind = "forbidden"
    status_code = 403


class AuthenticationError(AuthorizationError):
    kind = "unauthenticated"
    status_code = 401


class TransientStoreError(PhysioPlanError):
    """The record store could not be reached. Safe for the caller to retry."""

    kind = "store_unavailable"
    status_code = 503
