import logging
from typing import Optional

from rental_checkout.core.errors import QuoteMismatchError, ValidationError
from rental_checkout.schemas.booking import Booking, BookingCreateRequest, BookingSelection
from rental_checkout.schemas.quote import PriceQuote, QuoteRequest
from rental_checkout.services.booking_store import BookingStore
from rental_checkout.services.pricing import PriceQuoteService

logger = logging.getLogger(__name__)


def _default_pickup(selection: BookingSelection) -> Optional[str]:
    for candidate in (selection.pickup_location, selection.vehicle.current_address, selection.vehicle.current_city):
        if candidate and candidate.strip():
            return candidate.strip()
    return None


def assemble(selection: BookingSelection) -> BookingCreateRequest:
    """Turn a priced selection into a booking-creation request. Pure."""
    if selection.start_date_time >= selection.end_date_time:
        raise ValidationError(
            "Rental window must end after it starts",
            {"start_date_time": str(selection.start_date_time), "end_date_time": str(selection.end_date_time)},
        )

    pickup = _default_pickup(selection)
    if not pickup:
        raise ValidationError("Pickup location is required")

    driver_id = selection.driver_id if selection.with_driver else None
    if selection.with_driver and selection.vehicle.requires_driver and driver_id is None:
        raise ValidationError(
            f"Vehicle {selection.vehicle.id} requires a driver to be selected",
            {"vehicle_id": selection.vehicle.id},
        )

    # Coordinates follow the vehicle only when the pickup itself was defaulted
    explicit_pickup = bool(selection.pickup_location and selection.pickup_location.strip())
    latitude = selection.pickup_latitude
    longitude = selection.pickup_longitude
    if not explicit_pickup and latitude is None and longitude is None:
        latitude, longitude = selection.vehicle.latitude, selection.vehicle.longitude

    quote = selection.quote
    return BookingCreateRequest(
        user_id=selection.user_id,
        vehicle_id=selection.vehicle.id,
        driver_id=driver_id,
        start_date_time=selection.start_date_time,
        end_date_time=selection.end_date_time,
        pickup_location=pickup,
        pickup_latitude=latitude,
        pickup_longitude=longitude,
        dropoff_location=(selection.dropoff_location or "").strip() or None,
        dropoff_latitude=selection.dropoff_latitude,
        dropoff_longitude=selection.dropoff_longitude,
        with_driver=selection.with_driver,
        special_requests=selection.special_requests or None,
        discount_code=selection.discount_code or quote.discount_code,
        vehicle_price=quote.base_price,
        driver_price=quote.driver_price,
        total_price=quote.total_price,
    )


class BookingDraftAssembler:
    def __init__(self, store: BookingStore, pricing: PriceQuoteService):
        self.store = store
        self.pricing = pricing

    async def quote(self, req: QuoteRequest) -> PriceQuote:
        if req.start_date_time >= req.end_date_time:
            raise ValidationError("Rental window must end after it starts")
        return await self.pricing.quote(req)

    async def submit(self, request: BookingCreateRequest, quote: PriceQuote) -> Booking:
        """Create the booking at the store.

        The store is authoritative for the price snapshot. When it disagrees
        with the quote the caller displayed, the booking still stands and
        ``QuoteMismatchError`` is raised carrying it.
        """
        booking = await self.store.create_booking(request)
        logger.info(f"Booking {booking.booking_number} (id={booking.id}) created with status {booking.status}")
        if booking.final_price != quote.total_price:
            logger.warning(
                f"Quote mismatch for booking {booking.id}: quoted {quote.total_price}, "
                f"store priced {booking.final_price}"
            )
            raise QuoteMismatchError(booking, expected=quote.total_price, actual=booking.final_price)
        return booking

    async def create(self, selection: BookingSelection) -> Booking:
        return await self.submit(assemble(selection), selection.quote)
