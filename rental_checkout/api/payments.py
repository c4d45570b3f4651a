from typing import Optional

from fastapi import APIRouter, Body, Depends

from rental_checkout.api.deps import get_orchestrator
from rental_checkout.core.rate_limit import check_rate_limit
from rental_checkout.schemas.booking import Booking, CancelRequest
from rental_checkout.schemas.payment import (
    OpenTransactionRequest,
    PendingTransaction,
    VerificationOutcome,
    VerifyRequest,
)
from rental_checkout.services.orchestrator import PaymentOrchestrator

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/{booking_id}/transactions", response_model=PendingTransaction)
async def open_transaction(
    booking_id: int,
    payload: OpenTransactionRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    await check_rate_limit("open_transaction", booking_id)
    return await orchestrator.open_transaction(
        booking_id, payload.amount, payload.currency, payload.return_endpoint
    )


@router.post("/{booking_id}/verify", response_model=VerificationOutcome)
async def verify(
    booking_id: int,
    payload: Optional[VerifyRequest] = Body(None),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    payload = payload or VerifyRequest()
    outcome = await orchestrator.verify(booking_id, payload.transaction_id, retry=payload.retry)
    if payload.strict:
        outcome.raise_for_status()
    return outcome


@router.get("/{booking_id}/state")
async def get_state(booking_id: int, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    state = orchestrator.state(booking_id)
    return {"booking_id": booking_id, "state": state.value if state else None}


@router.post("/{booking_id}/cancel", response_model=Booking)
async def cancel(
    booking_id: int,
    payload: Optional[CancelRequest] = Body(None),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.cancel(booking_id, payload.reason if payload else None)
