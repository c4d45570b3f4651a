import asyncio
import pytest
from decimal import Decimal

from rental_checkout.core.enums import BookingStatus, OrchestrationState, VerificationStatus
from rental_checkout.core.errors import (
    OperationInProgressError,
    TransactionCreateError,
    ValidationError,
    VerificationQueryError,
)
from conftest import make_booking

RETURN_URL = "https://app.example.test/payment/42/callback"


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.idempotency
class TestConcurrentVerification:

    @pytest.mark.asyncio
    async def test_two_triggers_share_one_gateway_query(self, orchestrator, pending_booking, gateway, booking_store):
        gateway.statuses["txn-1"] = "SUCCESS"
        gateway.release = asyncio.Event()

        first = asyncio.create_task(orchestrator.verify(42, "txn-1"))
        second = asyncio.create_task(orchestrator.verify(42, "txn-1"))
        await _settle()
        assert orchestrator.guard.in_flight(42)
        assert orchestrator.state(42) == OrchestrationState.VERIFYING

        gateway.release.set()
        a, b = await asyncio.gather(first, second)

        assert a == b
        assert a.status == VerificationStatus.SUCCESS
        assert gateway.queries == ["txn-1"]
        assert booking_store.confirm_calls == [42]

    @pytest.mark.asyncio
    async def test_later_trigger_replays_outcome(self, orchestrator, pending_booking, gateway):
        gateway.statuses["txn-1"] = "FAILED"
        first = await orchestrator.verify(42, "txn-1")
        second = await orchestrator.verify(42, "txn-1")
        assert first == second
        assert gateway.queries == ["txn-1"]

    @pytest.mark.asyncio
    async def test_retry_ignored_after_terminal_outcome(self, orchestrator, pending_booking, gateway):
        gateway.statuses["txn-1"] = "FAILED"
        await orchestrator.verify(42, "txn-1")
        await orchestrator.verify(42, "txn-1", retry=True)
        assert gateway.queries == ["txn-1"]

    @pytest.mark.asyncio
    async def test_retry_reruns_after_pending(self, orchestrator, pending_booking, gateway):
        gateway.statuses["txn-1"] = "PENDING"
        outcome = await orchestrator.verify(42, "txn-1")
        assert outcome.status == VerificationStatus.PENDING
        assert orchestrator.state(42) == OrchestrationState.AWAITING_PAYMENT

        gateway.statuses["txn-1"] = "SUCCESS"
        outcome = await orchestrator.verify(42, "txn-1", retry=True)
        assert outcome.status == VerificationStatus.SUCCESS
        assert gateway.queries == ["txn-1", "txn-1"]

    @pytest.mark.asyncio
    async def test_retry_reruns_after_query_error(self, orchestrator, pending_booking, gateway, booking_store):
        gateway.fail_query = True
        with pytest.raises(VerificationQueryError):
            await orchestrator.verify(42, "txn-1")
        assert orchestrator.state(42) == OrchestrationState.VERIFY_ERROR

        # Without retry the same error is replayed
        with pytest.raises(VerificationQueryError):
            await orchestrator.verify(42, "txn-1")
        assert gateway.queries == ["txn-1"]

        gateway.fail_query = False
        gateway.statuses["txn-1"] = "SUCCESS"
        outcome = await orchestrator.verify(42, "txn-1", retry=True)
        assert outcome.status == VerificationStatus.SUCCESS
        assert booking_store.confirm_calls == [42]
        assert orchestrator.state(42) == OrchestrationState.CONFIRMED

    @pytest.mark.asyncio
    async def test_caller_cancellation_does_not_abort_verification(self, orchestrator, pending_booking, gateway, booking_store):
        gateway.statuses["txn-1"] = "SUCCESS"
        gateway.release = asyncio.Event()

        waiter = asyncio.create_task(orchestrator.verify(42, "txn-1"))
        await _settle()
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        gateway.release.set()
        outcome = await orchestrator.verify(42, "txn-1")
        assert outcome.status == VerificationStatus.SUCCESS
        assert gateway.queries == ["txn-1"]
        assert booking_store.confirm_calls == [42]


class TestStateMachine:

    @pytest.mark.asyncio
    async def test_interactive_open_awaits_payment(self, orchestrator, pending_booking, gateway):
        pending = await orchestrator.open_transaction(42, Decimal("110"), "IRR", RETURN_URL)
        assert pending.interactive
        assert pending.outcome is None
        assert orchestrator.state(42) == OrchestrationState.AWAITING_PAYMENT
        assert gateway.queries == []

    @pytest.mark.asyncio
    async def test_non_interactive_open_verifies_immediately(self, orchestrator, pending_booking, gateway, booking_store):
        gateway.payment_url = None
        gateway.statuses["txn-1"] = "SUCCESS"
        pending = await orchestrator.open_transaction(42, Decimal("110"), "IRR", RETURN_URL)
        assert not pending.interactive
        assert pending.outcome.status == VerificationStatus.SUCCESS
        assert orchestrator.state(42) == OrchestrationState.CONFIRMED
        assert booking_store.bookings[42].status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_non_interactive_open_survives_query_error(self, orchestrator, pending_booking, gateway):
        gateway.payment_url = None
        gateway.fail_query = True
        pending = await orchestrator.open_transaction(42, Decimal("110"), "IRR", RETURN_URL)
        assert pending.outcome is None
        assert orchestrator.state(42) == OrchestrationState.VERIFY_ERROR

    @pytest.mark.asyncio
    async def test_new_transaction_after_failure_restarts_verification(self, orchestrator, pending_booking, gateway):
        await orchestrator.open_transaction(42, Decimal("110"), "IRR", RETURN_URL)
        gateway.statuses["txn-1"] = "CANCELED"
        failed = await orchestrator.verify(42)
        assert orchestrator.state(42) == OrchestrationState.PAYMENT_FAILED

        pending = await orchestrator.open_transaction(42, Decimal("110"), "IRR", RETURN_URL)
        assert pending.transaction_id == "txn-2"
        assert orchestrator.state(42) == OrchestrationState.AWAITING_PAYMENT

        gateway.statuses["txn-2"] = "SUCCESS"
        outcome = await orchestrator.verify(42)
        assert failed.transaction_id == "txn-1"
        assert outcome.transaction_id == "txn-2"
        assert outcome.status == VerificationStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_open_refused_while_verifying(self, orchestrator, pending_booking, gateway):
        gateway.statuses["txn-1"] = "SUCCESS"
        gateway.release = asyncio.Event()
        task = asyncio.create_task(orchestrator.verify(42, "txn-1"))
        await _settle()
        with pytest.raises(OperationInProgressError):
            await orchestrator.open_transaction(42, Decimal("110"), "IRR", RETURN_URL)
        gateway.release.set()
        await task

    @pytest.mark.asyncio
    async def test_open_refused_after_confirmation(self, orchestrator, pending_booking, gateway):
        gateway.statuses["txn-1"] = "SUCCESS"
        await orchestrator.verify(42, "txn-1")
        with pytest.raises(ValidationError):
            await orchestrator.open_transaction(42, Decimal("110"), "IRR", RETURN_URL)
        assert gateway.created == []


class TestCancel:

    @pytest.mark.asyncio
    async def test_cancel_clears_hint_and_state(self, orchestrator, pending_booking, booking_store, kv):
        await orchestrator.open_transaction(42, Decimal("110"), "IRR", RETURN_URL)
        booking = await orchestrator.cancel(42, "changed plans")
        assert booking.status == BookingStatus.CANCELLED
        assert booking_store.cancel_calls == [(42, "changed plans")]
        assert kv.data == {}
        assert orchestrator.state(42) is None

    @pytest.mark.asyncio
    async def test_cancel_refused_while_verifying(self, orchestrator, pending_booking, gateway, booking_store):
        gateway.statuses["txn-1"] = "PENDING"
        gateway.release = asyncio.Event()
        task = asyncio.create_task(orchestrator.verify(42, "txn-1"))
        await _settle()
        with pytest.raises(OperationInProgressError):
            await orchestrator.cancel(42)
        gateway.release.set()
        await task
        assert booking_store.cancel_calls == []


class TestOpenExclusion:

    @pytest.mark.asyncio
    async def test_verify_refused_while_opening(self, orchestrator, pending_booking, booking_store, gateway):
        gateway.statuses["txn-0"] = "FAILED"
        booking_store.release = asyncio.Event()
        opening = asyncio.create_task(orchestrator.open_transaction(42, Decimal("110"), "IRR", RETURN_URL))
        await _settle()

        with pytest.raises(OperationInProgressError):
            await orchestrator.verify(42, "txn-0")
        assert gateway.queries == []

        booking_store.release.set()
        pending = await opening
        gateway.statuses[pending.transaction_id] = "SUCCESS"

        outcome = await orchestrator.verify(42)
        assert outcome.status == VerificationStatus.SUCCESS
        assert outcome.transaction_id == "txn-1"
        assert gateway.queries == ["txn-1"]

    @pytest.mark.asyncio
    async def test_second_open_and_cancel_refused_while_opening(self, orchestrator, pending_booking, booking_store, gateway):
        booking_store.release = asyncio.Event()
        opening = asyncio.create_task(orchestrator.open_transaction(42, Decimal("110"), "IRR", RETURN_URL))
        await _settle()

        with pytest.raises(OperationInProgressError):
            await orchestrator.open_transaction(42, Decimal("110"), "IRR", RETURN_URL)
        with pytest.raises(OperationInProgressError):
            await orchestrator.cancel(42)

        booking_store.release.set()
        await opening
        assert len(gateway.created) == 1
        assert booking_store.cancel_calls == []

    @pytest.mark.asyncio
    async def test_failed_open_releases_booking(self, orchestrator, pending_booking, gateway):
        gateway.fail_create = True
        with pytest.raises(TransactionCreateError):
            await orchestrator.open_transaction(42, Decimal("110"), "IRR", RETURN_URL)
        gateway.statuses["txn-9"] = "PENDING"
        outcome = await orchestrator.verify(42, "txn-9")
        assert outcome.status == VerificationStatus.PENDING


class TestTrackedBookings:

    @pytest.mark.asyncio
    async def test_oldest_states_forgotten_past_cap(self, orchestrator, booking_store, gateway):
        orchestrator.max_tracked = 2
        for booking_id in (42, 43, 44):
            booking_store.add(make_booking(booking_id))
            gateway.statuses[f"txn-{booking_id}"] = "FAILED"
            await orchestrator.verify(booking_id, f"txn-{booking_id}")

        assert orchestrator.state(42) is None
        assert orchestrator.state(43) == OrchestrationState.PAYMENT_FAILED
        assert orchestrator.state(44) == OrchestrationState.PAYMENT_FAILED
