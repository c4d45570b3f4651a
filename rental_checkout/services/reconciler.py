"""Resolve a booking's payment outcome and bring the booking store in line.

Order of resolution:

1. Find the transaction id: explicit argument, then the pending hint, then
   the booking's own ``payment_transaction_id``.
2. Ask the gateway for the transaction status and normalise it. A transaction
   recorded for another booking, or paid for a different amount, is FAILED
   with reason TRANSACTION_MISMATCH and never confirms anything.
3. If the gateway cannot be queried, read the booking. A booking that is
   already settled and paid counts as SUCCESS; anything else is a
   ``VerificationQueryError``.

A SUCCESS from the gateway is only reported after the store has confirmed the
booking. Gateway-paid but store-unconfirmed is a retryable error, and retrying
verifies the same transaction again rather than asking the user to pay twice.
"""
import logging
from decimal import Decimal
from typing import Optional, Tuple

from rental_checkout.core.enums import (
    GATEWAY_STATUS_SYNONYMS,
    OutcomeSource,
    TransactionStatus,
    VerificationStatus,
)
from rental_checkout.core.errors import (
    AmbiguousStatusError,
    BookingStoreError,
    GatewayError,
    VerificationQueryError,
)
from rental_checkout.core.metrics import verification_outcomes
from rental_checkout.schemas.payment import VerificationOutcome
from rental_checkout.services.booking_store import BookingStore
from rental_checkout.services.payment_gateway import PaymentGateway
from rental_checkout.services.transactions import TransactionLifecycleController, to_minor_units

logger = logging.getLogger(__name__)


def normalize_status(raw_status) -> Tuple[VerificationStatus, str]:
    """Map a gateway status token onto (outcome, reason).

    Raises AmbiguousStatusError for anything unrecognised, including a missing status.
    """
    token = str(raw_status).strip().upper() if raw_status is not None else ""
    status = GATEWAY_STATUS_SYNONYMS.get(token)
    if status is None:
        raise AmbiguousStatusError(raw_status)
    if status == TransactionStatus.SUCCESS:
        return VerificationStatus.SUCCESS, status.value
    if status in (TransactionStatus.FAILED, TransactionStatus.CANCELED):
        return VerificationStatus.FAILED, status.value
    return VerificationStatus.PENDING, status.value


class VerificationReconciler:
    def __init__(
        self,
        store: BookingStore,
        gateway: PaymentGateway,
        transactions: TransactionLifecycleController,
    ):
        self.store = store
        self.gateway = gateway
        self.transactions = transactions

    async def resolve_transaction_id(
        self, booking_id: int, transaction_id: Optional[str] = None
    ) -> str:
        if transaction_id:
            return transaction_id
        hinted = await self.transactions.pending_transaction_id(booking_id)
        if hinted:
            return hinted
        try:
            booking = await self.store.get_booking(booking_id)
        except BookingStoreError as e:
            raise VerificationQueryError(
                f"No transaction hint for booking {booking_id} and the booking store is unavailable",
                booking_id=booking_id,
            ) from e
        if not booking.payment_transaction_id:
            raise VerificationQueryError(
                f"No payment transaction recorded for booking {booking_id}",
                booking_id=booking_id,
            )
        return booking.payment_transaction_id

    async def verify(self, booking_id: int, transaction_id: Optional[str] = None) -> VerificationOutcome:
        transaction_id = await self.resolve_transaction_id(booking_id, transaction_id)
        logger.info(f"Verifying transaction {transaction_id} for booking {booking_id}")

        try:
            txn = await self.gateway.get_transaction(transaction_id)
        except GatewayError as e:
            return await self._fallback(booking_id, transaction_id, e)

        if txn.booking_id is not None and txn.booking_id != booking_id:
            return self._mismatch(
                booking_id, transaction_id, txn,
                f"gateway records it for booking {txn.booking_id}",
            )

        try:
            status, reason = normalize_status(txn.status)
        except AmbiguousStatusError as e:
            e.transaction_id = transaction_id
            logger.warning(
                f"Ambiguous payment status {e.raw_status!r} for transaction {transaction_id} "
                f"(booking {booking_id}); treating as FAILED"
            )
            return self._record(VerificationOutcome(
                status=VerificationStatus.FAILED,
                booking_id=booking_id,
                transaction_id=transaction_id,
                reason=f"AMBIGUOUS_STATUS: {e.raw_status}",
                raw_status=None if e.raw_status is None else str(e.raw_status),
            ))

        outcome = VerificationOutcome(
            status=status,
            booking_id=booking_id,
            transaction_id=transaction_id,
            reason=reason,
            raw_status=str(txn.status),
        )
        if status == VerificationStatus.SUCCESS:
            if txn.amount is not None:
                expected = await self._expected_amount(booking_id, transaction_id)
                if Decimal(txn.amount) != expected:
                    return self._mismatch(
                        booking_id, transaction_id, txn,
                        f"paid {txn.amount} minor units, booking expects {expected}",
                    )
            await self._confirm(booking_id, transaction_id)
            await self.transactions.clear(booking_id)
        elif status == VerificationStatus.FAILED:
            logger.warning(f"Payment {transaction_id} for booking {booking_id} ended as {reason}")
        return self._record(outcome)

    async def _expected_amount(self, booking_id: int, transaction_id: str) -> Decimal:
        try:
            booking = await self.store.get_booking(booking_id)
        except BookingStoreError as e:
            raise VerificationQueryError(
                f"Could not load booking {booking_id} to check payment {transaction_id}: {e.message}",
                booking_id=booking_id,
                transaction_id=transaction_id,
            ) from e
        return Decimal(to_minor_units(booking.final_price))

    def _mismatch(self, booking_id: int, transaction_id: str, txn, detail: str) -> VerificationOutcome:
        # Never confirm a booking with a payment made for something else
        logger.warning(f"Transaction {transaction_id} does not pay for booking {booking_id}: {detail}")
        return self._record(VerificationOutcome(
            status=VerificationStatus.FAILED,
            booking_id=booking_id,
            transaction_id=transaction_id,
            reason="TRANSACTION_MISMATCH",
            raw_status=None if txn.status is None else str(txn.status),
        ))

    async def _confirm(self, booking_id: int, transaction_id: str) -> None:
        try:
            booking = await self.store.confirm_booking(booking_id)
        except BookingStoreError as e:
            logger.error(
                f"Transaction {transaction_id} is paid but booking {booking_id} could not be confirmed: {e.message}"
            )
            raise VerificationQueryError(
                f"Payment {transaction_id} succeeded but booking {booking_id} is not confirmed yet",
                booking_id=booking_id,
                transaction_id=transaction_id,
            ) from e
        logger.info(f"Booking {booking_id} confirmed ({booking.status}) after payment {transaction_id}")

    async def _fallback(self, booking_id: int, transaction_id: str, cause: GatewayError) -> VerificationOutcome:
        logger.warning(
            f"Gateway query for transaction {transaction_id} failed ({cause.message}); "
            f"checking booking {booking_id} directly"
        )
        try:
            booking = await self.store.get_booking(booking_id)
        except BookingStoreError as e:
            logger.error(f"Fallback read of booking {booking_id} failed: {e.message}")
            raise VerificationQueryError(
                f"Could not verify transaction {transaction_id}: gateway and booking store unavailable",
                booking_id=booking_id,
                transaction_id=transaction_id,
            ) from cause
        if booking.is_paid:
            await self.transactions.clear(booking_id)
            return self._record(VerificationOutcome(
                status=VerificationStatus.SUCCESS,
                booking_id=booking_id,
                transaction_id=transaction_id,
                reason="BOOKING_ALREADY_CONFIRMED",
                source=OutcomeSource.BOOKING_STORE,
            ))
        raise VerificationQueryError(
            f"Could not verify transaction {transaction_id}: {cause.message}",
            booking_id=booking_id,
            transaction_id=transaction_id,
        ) from cause

    @staticmethod
    def _record(outcome: VerificationOutcome) -> VerificationOutcome:
        verification_outcomes.labels(outcome=outcome.status.value, source=outcome.source.value).inc()
        return outcome
