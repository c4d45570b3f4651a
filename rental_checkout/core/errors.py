"""Error taxonomy for the booking-to-payment orchestration.

Every error carries an HTTP status, a stable code and a ``retryable`` flag so
callers can decide whether re-invoking the same operation makes sense. Nothing
in the orchestration retries on its own.
"""
from typing import Any, Dict, Optional


class CheckoutError(Exception):
    status_code: int = 500
    code: str = "CHECKOUT_ERROR"
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "retryable": self.retryable,
            }
        }


class ValidationError(CheckoutError):
    status_code = 422
    code = "VALIDATION_ERROR"


class QuoteMismatchError(CheckoutError):
    """The store priced the booking differently from the displayed quote.

    The booking has been created regardless; it is available as ``booking``.
    """
    status_code = 200
    code = "QUOTE_MISMATCH"

    def __init__(self, booking, expected, actual):
        super().__init__(
            f"Booking {booking.booking_number} final price {actual} differs from quoted {expected}",
            {"booking_id": booking.id, "expected": str(expected), "actual": str(actual)},
        )
        self.booking = booking
        self.expected = expected
        self.actual = actual


class PriceQuoteError(CheckoutError):
    status_code = 502
    code = "PRICE_QUOTE_UNAVAILABLE"
    retryable = True


class BookingStoreError(CheckoutError):
    status_code = 502
    code = "BOOKING_STORE_ERROR"
    retryable = True


class GatewayError(CheckoutError):
    status_code = 502
    code = "PAYMENT_GATEWAY_ERROR"
    retryable = True


class TransactionCreateError(CheckoutError):
    status_code = 503
    code = "TRANSACTION_CREATE_FAILED"
    retryable = True


class VerificationQueryError(CheckoutError):
    status_code = 503
    code = "VERIFICATION_QUERY_FAILED"
    retryable = True

    def __init__(self, message: str, booking_id=None, transaction_id: Optional[str] = None):
        super().__init__(message, {"booking_id": booking_id, "transaction_id": transaction_id})
        self.booking_id = booking_id
        self.transaction_id = transaction_id


class AmbiguousStatusError(CheckoutError):
    status_code = 502
    code = "AMBIGUOUS_PAYMENT_STATUS"

    def __init__(self, raw_status, transaction_id: Optional[str] = None):
        super().__init__(
            f"Unrecognized payment status {raw_status!r}",
            {"raw_status": raw_status, "transaction_id": transaction_id},
        )
        self.raw_status = raw_status
        self.transaction_id = transaction_id


class PaymentFailedError(CheckoutError):
    status_code = 402
    code = "PAYMENT_FAILED"

    def __init__(self, message: str, transaction_id: Optional[str] = None, reason: Optional[str] = None):
        super().__init__(message, {"transaction_id": transaction_id, "reason": reason})
        self.transaction_id = transaction_id
        self.reason = reason


class PaymentCanceledError(PaymentFailedError):
    code = "PAYMENT_CANCELED"


class OperationInProgressError(CheckoutError):
    status_code = 409
    code = "OPERATION_IN_PROGRESS"
    retryable = True
