class BookingError(Exception):
    """Base class for every failure the booking core reports to callers.

    ``kind`` is the stable identifier callers branch on; the message is for humans.
    """

    kind = "InternalError"

    def __init__(self, message: str = None, **details):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.details = details


class NotFound(BookingError):
    kind = "NotFound"


class NotBookable(BookingError):
    kind = "NotBookable"


class InvalidRange(BookingError):
    kind = "InvalidRange"


class UnknownAddOn(BookingError):
    kind = "UnknownAddOn"


class Conflict(BookingError):
    kind = "Conflict"


class Forbidden(BookingError):
    kind = "Forbidden"


class InvalidTransition(BookingError):
    kind = "InvalidTransition"

    def __init__(self, current: str, target: str, message: str = None):
        super().__init__(
            message or f"Invalid booking status transition: {current} -> {target}",
            current=current,
            target=target,
        )
        self.current = current
        self.target = target


class InvalidStatus(BookingError):
    kind = "InvalidStatus"


class ValidationFailed(BookingError):
    kind = "ValidationFailed"


class AlreadyPaid(BookingError):
    kind = "AlreadyPaid"


class NotPaid(BookingError):
    kind = "NotPaid"


class RefundFailed(BookingError):
    kind = "RefundFailed"


class ProcessorUnavailable(BookingError):
    # the only kind the core retries locally before surfacing
    kind = "ProcessorUnavailable"


class InternalError(BookingError):
    kind = "InternalError"
