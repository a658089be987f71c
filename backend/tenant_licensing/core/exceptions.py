class LicensingError(Exception):
    """Base exception for licensing business-rule violations.

    Every subclass carries the HTTP status and a stable machine-readable code
    so a single top-level handler can render it.
    """

    status_code: int = 400
    code: str = "LICENSING_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(LicensingError):
    """Raised for malformed input (bad tier bounds, missing fields)."""

    status_code = 400
    code = "VALIDATION_ERROR"


class InvalidSeatCountError(ValidationError):
    """Raised when a seat license is requested with a non-positive seat count."""

    code = "INVALID_SEAT_COUNT"

    def __init__(self, seats: int | None):
        self.seats = seats
        super().__init__(f"Number of seats must be at least 1 for a seats license (got {seats})")


class BadRequestError(LicensingError):
    status_code = 400
    code = "BAD_REQUEST"


class NoPaymentError(BadRequestError):
    """Raised when refunding a license that has no recorded payment."""

    code = "NO_PAYMENT"


class InvalidStateError(LicensingError):
    """Raised when an operation is not valid for the license's current status."""

    status_code = 400
    code = "INVALID_STATE"


class NoSeatsAvailableError(LicensingError):
    status_code = 400
    code = "NO_SEATS_AVAILABLE"


class NotFoundError(LicensingError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(LicensingError):
    status_code = 409
    code = "CONFLICT"


class LicenseExistsError(ConflictError):
    code = "LICENSE_EXISTS"


class AlreadyAssignedError(ConflictError):
    code = "ALREADY_ASSIGNED"

    def __init__(self, license_id: str, user_id: str):
        self.license_id = license_id
        self.user_id = user_id
        super().__init__("User is already assigned to this license")


class ForbiddenError(LicensingError):
    status_code = 403
    code = "FORBIDDEN"


class PaymentGatewayError(LicensingError):
    """Raised when the payment gateway call fails or times out."""

    status_code = 502
    code = "PAYMENT_GATEWAY_ERROR"
