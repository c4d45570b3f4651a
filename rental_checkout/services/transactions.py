import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from rental_checkout.core.config import settings
from rental_checkout.core.enums import BookingStatus
from rental_checkout.core.errors import BookingStoreError, GatewayError, TransactionCreateError, ValidationError
from rental_checkout.core.metrics import transactions_opened
from rental_checkout.schemas.payment import PendingTransaction
from rental_checkout.services.booking_store import BookingStore
from rental_checkout.services.payment_gateway import PaymentGateway
from rental_checkout.utils.pending_store import PendingTransactionStore

logger = logging.getLogger(__name__)


def to_minor_units(amount: Decimal) -> int:
    return int((amount * settings.AMOUNT_MINOR_UNIT_FACTOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class TransactionLifecycleController:
    def __init__(self, store: BookingStore, gateway: PaymentGateway, pending: PendingTransactionStore):
        self.store = store
        self.gateway = gateway
        self.pending = pending

    async def open(
        self,
        booking_id: int,
        amount: Decimal,
        currency: Optional[str],
        return_endpoint: str,
    ) -> PendingTransaction:
        """Open a gateway transaction for a PENDING booking and record its id.

        The amount is checked against the booking's current ``final_price``;
        a caller-supplied figure is never trusted on its own.
        """
        currency = currency or settings.DEFAULT_CURRENCY
        try:
            booking = await self.store.get_booking(booking_id)
        except BookingStoreError as e:
            raise TransactionCreateError(f"Could not load booking {booking_id}: {e.message}") from e

        if booking.payment_completed or booking.status != BookingStatus.PENDING:
            raise ValidationError(
                f"Booking {booking_id} is {booking.status} and cannot take a new payment",
                {"status": str(booking.status), "payment_completed": booking.payment_completed},
            )
        if Decimal(amount) != booking.final_price:
            raise ValidationError(
                f"Amount {amount} does not match booking price {booking.final_price}",
                {"amount": str(amount), "final_price": str(booking.final_price)},
            )
        amount_minor = to_minor_units(booking.final_price)
        if amount_minor < settings.MIN_TRANSACTION_AMOUNT:
            raise ValidationError(
                f"Payment amount must be at least {settings.MIN_TRANSACTION_AMOUNT} minor units",
                {"amount_minor": amount_minor},
            )

        superseded = await self.pending_transaction_id(booking_id)
        invoice_id = f"{settings.INVOICE_PREFIX}{booking.booking_number or booking_id}"

        try:
            txn = await self.gateway.create_transaction(
                booking_id=booking_id,
                invoice_id=invoice_id,
                amount=amount_minor,
                currency=currency,
                return_endpoint=return_endpoint,
                description=f"Payment for booking #{booking.booking_number or booking_id}",
            )
        except GatewayError as e:
            raise TransactionCreateError(f"Payment gateway unavailable: {e.message}", e.details) from e
        if not txn.transaction_id:
            raise TransactionCreateError("Payment gateway did not return a transaction id")

        if superseded and superseded != txn.transaction_id:
            logger.warning(f"Transaction {txn.transaction_id} supersedes {superseded} for booking {booking_id}")
        else:
            superseded = None

        try:
            await self.pending.remember(booking_id, txn.transaction_id)
        except Exception as e:
            logger.error(f"Could not persist pending transaction hint for booking {booking_id}: {e}")

        redirect = None
        if not txn.payment_url:
            try:
                redirect = await self.gateway.get_payment_details(txn.transaction_id)
            except GatewayError as e:
                logger.warning(f"No payment details for transaction {txn.transaction_id}: {e.message}")

        transactions_opened.labels(currency=currency).inc()
        logger.info(f"Opened transaction {txn.transaction_id} for booking {booking_id} ({amount_minor} {currency})")
        return PendingTransaction(
            booking_id=booking_id,
            transaction_id=txn.transaction_id,
            invoice_id=txn.invoice_id or invoice_id,
            amount=booking.final_price,
            amount_minor=amount_minor,
            currency=currency,
            payment_url=txn.payment_url,
            redirect=redirect,
            superseded_transaction_id=superseded,
        )

    async def pending_transaction_id(self, booking_id: int) -> Optional[str]:
        try:
            return await self.pending.lookup(booking_id)
        except Exception as e:
            logger.warning(f"Pending transaction hint unavailable for booking {booking_id}: {e}")
            return None

    async def clear(self, booking_id: int) -> None:
        try:
            await self.pending.forget(booking_id)
        except Exception as e:
            logger.warning(f"Could not clear pending transaction hint for booking {booking_id}: {e}")
