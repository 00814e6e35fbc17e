"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    code = "domain_error"


class NotFound(DomainException):
    """Requested change request or order does not exist"""

    code = "not_found"


class OrderNotFound(NotFound):
    """Order store has no order with the given reference"""

    code = "order_not_found"

    def __init__(self, order_ref: str):
        super().__init__(f"Order {order_ref} not found")
        self.order_ref = order_ref


class ActiveRequestExists(DomainException):
    """The order already has a non-terminal change request"""

    code = "active_request_exists"

    def __init__(self, order_ref: str):
        super().__init__(f"Order {order_ref} already has an active change request")
        self.order_ref = order_ref


class InvalidStateTransition(DomainException):
    """Requested transition is not legal from the current status"""

    code = "invalid_state_transition"

    def __init__(self, current: str, target: str, message: str | None = None):
        super().__init__(message or f"Cannot move change request from {current} to {target}")
        self.current = current
        self.target = target


class ExpiredRequest(InvalidStateTransition):
    """Change request already expired; no further operations are possible"""

    code = "expired_request"

    def __init__(self, target: str):
        super().__init__("expired", target, "Change request has expired")


class ManualReviewRequired(InvalidStateTransition):
    """Additional cost is not positive, so there is nothing to invoice"""

    code = "manual_review_required"

    def __init__(self, additional_cost_cents: int):
        super().__init__(
            "pending",
            "invoice_sent",
            f"Additional cost is {additional_cost_cents} cents; review manually instead of invoicing",
        )
        self.additional_cost_cents = additional_cost_cents


class InvalidChangeRequest(DomainException):
    """Proposed change is empty or malformed"""

    code = "invalid_change_request"


class AmountOutOfRange(DomainException):
    """Money amount cannot be represented as a 64-bit count of cents"""

    code = "amount_out_of_range"


class RateError(DomainException):
    """Carrier quote payload could not be turned into a rate"""

    code = "rate_error"

    def __init__(self, message: str, raw=None):
        super().__init__(message)
        self.raw = raw


class RateUnavailable(RateError):
    """No usable quote in the carrier response"""

    code = "rate_unavailable"


class MalformedRate(RateError):
    """Selected quote has no parseable amount"""

    code = "malformed_rate"


class GatewayError(DomainException):
    """External collaborator failed or is unavailable"""

    code = "gateway_error"


class CheckoutGatewayError(GatewayError):
    """Checkout gateway returned an error or timed out"""

    code = "checkout_gateway_error"


class NotificationGatewayError(GatewayError):
    """Notification gateway returned an error or timed out"""

    code = "notification_gateway_error"


class OrderStoreError(GatewayError):
    """Order store returned an error or timed out"""

    code = "order_store_error"


class RatingGatewayError(GatewayError):
    """Carrier rating service returned an error or timed out"""

    code = "rating_gateway_error"
