"""Domain exceptions for the payment links service.

Exception hierarchy:
    PaymentLinksError (base, HTTP 500)
    ├── NotFoundError (404)
    │   ├── MerchantNotFoundError
    │   └── PaymentLinkNotFoundError
    ├── ConflictError (409)
    │   ├── InvalidStateError
    │   ├── PaymentLinkExpiredError
    │   ├── DuplicateAttemptError
    │   └── EmailAlreadyExistsError
    ├── AuthError (401)
    └── ValidationError (422)

Every class carries the HTTP status and the stable error code the API layer
renders, so the boundary maps errors without inspecting messages.
"""


class PaymentLinksError(Exception):
    """Base exception for all domain-level errors."""

    status_code = 500
    code = "INTERNAL_ERROR"
    title = "Internal Server Error"

    def __init__(self, message: str = None):
        super().__init__(message or self.title)
        self.message = message or self.title

    @property
    def details(self) -> dict | None:
        return None


class NotFoundError(PaymentLinksError):
    """The resource is absent, or absent for the calling merchant.

    Messages are generic so a link owned by another merchant cannot be told
    apart from one that does not exist.
    """

    status_code = 404
    code = "NOT_FOUND"
    title = "Not Found"


class MerchantNotFoundError(NotFoundError):
    code = "MERCHANT_NOT_FOUND"

    def __init__(self):
        super().__init__("Merchant not found")


class PaymentLinkNotFoundError(NotFoundError):
    code = "PAYMENT_LINK_NOT_FOUND"

    def __init__(self):
        super().__init__("Payment link not found")


class ConflictError(PaymentLinksError):
    status_code = 409
    code = "CONFLICT"
    title = "Conflict"


class InvalidStateError(ConflictError):
    """A transition was requested from a terminal state or broke a precondition."""

    code = "INVALID_STATE"


class PaymentLinkExpiredError(ConflictError):
    """Pay attempted on a CREATED link whose deadline has passed.

    The link itself stays CREATED until the expiration sweep picks it up.
    """

    code = "LINK_EXPIRED"
    title = "Payment Link Expired"

    def __init__(self, expires_at):
        super().__init__(f"Payment link expired at {expires_at.isoformat()}")
        self.expires_at = expires_at

    @property
    def details(self) -> dict:
        return {"expires_at": self.expires_at.isoformat()}


class DuplicateAttemptError(ConflictError):
    """Invariant violation: the (link, idempotency key) constraint fired but
    no recorded attempt could be found to return.
    """

    code = "DUPLICATE_OPERATION"
    title = "Duplicate Payment Attempt"

    def __init__(self, idempotency_key: str):
        super().__init__(f"Idempotency key already used: {idempotency_key}")
        self.idempotency_key = idempotency_key


class EmailAlreadyExistsError(ConflictError):
    code = "EMAIL_ALREADY_EXISTS"

    def __init__(self, email: str):
        super().__init__(f"Email already registered: {email}")


class AuthError(PaymentLinksError):
    status_code = 401
    code = "UNAUTHORIZED"
    title = "Unauthorized"


class ValidationError(PaymentLinksError):
    """Malformed input; ``errors`` maps each field to its messages."""

    status_code = 422
    code = "VALIDATION_ERROR"
    title = "Validation Error"

    def __init__(self, errors: dict):
        super().__init__("Invalid fields in request")
        self.errors = errors

    @property
    def details(self) -> dict:
        return self.errors
