import logging
from fastapi import APIRouter, Depends

from rental_checkout.api.deps import get_orchestrator
from rental_checkout.core.errors import QuoteMismatchError
from rental_checkout.schemas.booking import BookingCreated, BookingSelection
from rental_checkout.schemas.quote import PriceQuote, QuoteRequest
from rental_checkout.services.orchestrator import PaymentOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("/quote", response_model=PriceQuote)
async def quote(req: QuoteRequest, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    return await orchestrator.quote(req)


@router.post("", response_model=BookingCreated, status_code=201)
async def create_booking(
    selection: BookingSelection,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    try:
        booking = await orchestrator.start_booking(selection)
    except QuoteMismatchError as e:
        # Store pricing wins; the client is told its displayed quote was stale.
        return BookingCreated(booking=e.booking, warnings=[e.to_dict()["error"]])
    return BookingCreated(booking=booking)
