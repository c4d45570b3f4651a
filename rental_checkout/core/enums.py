from enum import Enum


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    ONGOING = "ONGOING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"

    def __str__(self):
        return self.value


PAID_BOOKING_STATUSES = {BookingStatus.CONFIRMED, BookingStatus.ONGOING, BookingStatus.COMPLETED}


class TransactionStatus(str, Enum):
    CREATED = "CREATED"
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    def __str__(self):
        return self.value


class VerificationStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PENDING = "PENDING"

    def __str__(self):
        return self.value


class OutcomeSource(str, Enum):
    GATEWAY = "gateway"
    BOOKING_STORE = "booking_store"

    def __str__(self):
        return self.value


class OrchestrationState(str, Enum):
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    VERIFYING = "VERIFYING"
    CONFIRMED = "CONFIRMED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    VERIFY_ERROR = "VERIFY_ERROR"

    def __str__(self):
        return self.value


# Gateway status tokens, upper-cased, mapped onto transaction statuses.
GATEWAY_STATUS_SYNONYMS = {
    "SUCCESS": TransactionStatus.SUCCESS,
    "COMPLETED": TransactionStatus.SUCCESS,
    "FAILED": TransactionStatus.FAILED,
    "CANCELED": TransactionStatus.CANCELED,
    "CANCELLED": TransactionStatus.CANCELED,
    "PENDING": TransactionStatus.PENDING,
    "CREATED": TransactionStatus.CREATED,
}
