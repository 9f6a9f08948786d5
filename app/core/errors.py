from decimal import Decimal


class BookingError(ValueError):
    """Base for business errors raised by the booking engine.

    Routes translate these into HTTP responses using ``status_code``.
    """

    status_code = 400
    code = "booking_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_detail(self) -> dict:
        out = {"code": self.code, "message": self.message}
        for k, v in self.details.items():
            out[k] = str(v) if isinstance(v, Decimal) else v
        return out


class ValidationError(BookingError):
    code = "validation_error"


class InvalidParticipantCount(ValidationError):
    code = "invalid_participant_count"


class PartialPaymentNotEnabled(ValidationError):
    code = "partial_payment_not_enabled"


class CapacityExceeded(BookingError):
    code = "capacity_exceeded"

    def __init__(self, message: str, remaining: int = 0, **details):
        super().__init__(message, remaining=remaining, **details)
        self.remaining = remaining


class BatchFull(CapacityExceeded):
    code = "batch_full"


class ConflictingState(BookingError):
    code = "conflicting_state"


class PaymentVerificationFailed(BookingError):
    code = "payment_verification_failed"


class GatewayUnavailable(BookingError):
    status_code = 502
    code = "gateway_unavailable"


class NotFound(BookingError):
    status_code = 404
    code = "not_found"


class Forbidden(BookingError):
    status_code = 403
    code = "forbidden"
