import asyncio
import logging
from decimal import Decimal
from typing import Dict, Optional, Set

from rental_checkout.core.config import settings
from rental_checkout.core.enums import OrchestrationState, VerificationStatus
from rental_checkout.core.errors import OperationInProgressError, ValidationError, VerificationQueryError
from rental_checkout.schemas.booking import Booking, BookingSelection
from rental_checkout.schemas.payment import PendingTransaction, VerificationOutcome
from rental_checkout.schemas.quote import PriceQuote, QuoteRequest
from rental_checkout.services.draft import BookingDraftAssembler
from rental_checkout.services.reconciler import VerificationReconciler
from rental_checkout.services.transactions import TransactionLifecycleController
from rental_checkout.utils.idempotency import IdempotencyGuard

logger = logging.getLogger(__name__)

OUTCOME_STATES = {
    VerificationStatus.SUCCESS: OrchestrationState.CONFIRMED,
    VerificationStatus.FAILED: OrchestrationState.PAYMENT_FAILED,
    VerificationStatus.PENDING: OrchestrationState.AWAITING_PAYMENT,
}


class PaymentOrchestrator:
    """Drives one booking from draft to a verified, confirmed payment.

    Per booking id: AWAITING_PAYMENT -> VERIFYING -> CONFIRMED | PAYMENT_FAILED | VERIFY_ERROR.
    Verification always goes through the idempotency guard keyed by booking id,
    so repeated triggers share a single gateway-query-then-confirm run.
    """

    def __init__(
        self,
        assembler: BookingDraftAssembler,
        transactions: TransactionLifecycleController,
        reconciler: VerificationReconciler,
        guard: Optional[IdempotencyGuard] = None,
        settle_delay: Optional[float] = None,
    ):
        self.assembler = assembler
        self.transactions = transactions
        self.reconciler = reconciler
        self.guard = guard or IdempotencyGuard(max_entries=settings.MAX_TRACKED_BOOKINGS)
        self.settle_delay = settings.SETTLE_DELAY_SECONDS if settle_delay is None else settle_delay
        self.max_tracked = settings.MAX_TRACKED_BOOKINGS
        self._states: Dict[int, OrchestrationState] = {}
        self._opening: Set[int] = set()

    def state(self, booking_id: int) -> Optional[OrchestrationState]:
        return self._states.get(booking_id)

    async def quote(self, req: QuoteRequest) -> PriceQuote:
        return await self.assembler.quote(req)

    async def start_booking(self, selection: BookingSelection) -> Booking:
        return await self.assembler.create(selection)

    async def open_transaction(
        self,
        booking_id: int,
        amount: Decimal,
        currency: Optional[str],
        return_endpoint: str,
    ) -> PendingTransaction:
        self._check_idle(booking_id)
        if self._states.get(booking_id) == OrchestrationState.CONFIRMED:
            raise ValidationError(f"Booking {booking_id} is already paid and confirmed")

        # No verification can start until the new transaction is in place
        self._opening.add(booking_id)
        try:
            pending = await self.transactions.open(booking_id, amount, currency, return_endpoint)
            # A new transaction restarts the machine; the previous verification no longer applies.
            self.guard.forget(booking_id)
            self._set_state(booking_id, OrchestrationState.AWAITING_PAYMENT)
        finally:
            self._opening.discard(booking_id)

        if not pending.interactive:
            # Gateway settles without an interactive step
            await asyncio.sleep(self.settle_delay)
            try:
                pending.outcome = await self.verify(booking_id, pending.transaction_id)
            except VerificationQueryError as e:
                logger.warning(f"Immediate verification of booking {booking_id} failed: {e.message}")
        return pending

    async def verify(
        self,
        booking_id: int,
        transaction_id: Optional[str] = None,
        *,
        retry: bool = False,
    ) -> VerificationOutcome:
        if booking_id in self._opening:
            raise OperationInProgressError(f"A new payment for booking {booking_id} is being opened")
        return await self.guard.run_once(
            booking_id,
            lambda: self._verify(booking_id, transaction_id),
            retry=retry,
        )

    async def _verify(self, booking_id: int, transaction_id: Optional[str]) -> VerificationOutcome:
        self._set_state(booking_id, OrchestrationState.VERIFYING)
        try:
            outcome = await self.reconciler.verify(booking_id, transaction_id)
        except Exception:
            self._set_state(booking_id, OrchestrationState.VERIFY_ERROR)
            raise
        self._set_state(booking_id, OUTCOME_STATES[outcome.status])
        logger.info(f"Booking {booking_id} is now {OUTCOME_STATES[outcome.status]}")
        return outcome

    async def cancel(self, booking_id: int, reason: Optional[str] = None) -> Booking:
        self._check_idle(booking_id)
        booking = await self.assembler.store.cancel_booking(booking_id, reason)
        await self.transactions.clear(booking_id)
        self.guard.forget(booking_id)
        self._states.pop(booking_id, None)
        logger.info(f"Booking {booking_id} cancelled: {reason or 'no reason given'}")
        return booking

    def _check_idle(self, booking_id: int) -> None:
        if self.guard.in_flight(booking_id):
            raise OperationInProgressError(f"Payment for booking {booking_id} is being verified")
        if booking_id in self._opening:
            raise OperationInProgressError(f"A new payment for booking {booking_id} is being opened")

    def _set_state(self, booking_id: int, state: OrchestrationState) -> None:
        self._states.pop(booking_id, None)
        self._states[booking_id] = state
        excess = len(self._states) - self.max_tracked
        if excess <= 0:
            return
        # Forget the least recently touched bookings that are not mid-verification
        stale = [k for k, s in self._states.items() if s != OrchestrationState.VERIFYING][:excess]
        for key in stale:
            del self._states[key]
