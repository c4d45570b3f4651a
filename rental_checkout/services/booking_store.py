import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import ValidationError as SchemaError

from rental_checkout.core.errors import BookingStoreError
from rental_checkout.core.metrics import track_collaborator_call
from rental_checkout.schemas.booking import Booking, BookingCreateRequest
from rental_checkout.services.http import request_json, schema_errors

logger = logging.getLogger(__name__)

# Status codes the store uses to reject a transition from the wrong state.
TRANSITION_REJECTED = {400, 409, 422}


class BookingStore(ABC):
    @abstractmethod
    async def create_booking(self, request: BookingCreateRequest) -> Booking:
        ...

    @abstractmethod
    async def get_booking(self, booking_id: int) -> Booking:
        ...

    @abstractmethod
    async def confirm_booking(self, booking_id: int) -> Booking:
        """PENDING -> CONFIRMED. Confirming a booking that is already paid is a no-op success."""

    @abstractmethod
    async def cancel_booking(self, booking_id: int, reason: Optional[str] = None) -> Booking:
        ...


def _parse_booking(data) -> Booking:
    try:
        return Booking.model_validate(data)
    except SchemaError as e:
        raise BookingStoreError("Booking store returned a malformed booking", {"errors": schema_errors(e)}) from e


class HttpBookingStore(BookingStore):
    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    @track_collaborator_call("booking_store", "create")
    async def create_booking(self, request: BookingCreateRequest) -> Booking:
        data = await request_json(self.client, "POST", "/api/bookings/", BookingStoreError, json=request.to_wire())
        return _parse_booking(data)

    @track_collaborator_call("booking_store", "get")
    async def get_booking(self, booking_id: int) -> Booking:
        data = await request_json(self.client, "GET", f"/api/bookings/{booking_id}", BookingStoreError)
        return _parse_booking(data)

    @track_collaborator_call("booking_store", "confirm")
    async def confirm_booking(self, booking_id: int) -> Booking:
        try:
            data = await request_json(
                self.client, "PATCH", f"/api/bookings/{booking_id}/confirm", BookingStoreError
            )
        except BookingStoreError as e:
            if e.details.get("status_code") not in TRANSITION_REJECTED:
                raise
            # The store only confirms PENDING bookings; a paid one is already past that point.
            booking = await self.get_booking(booking_id)
            if booking.is_paid:
                logger.info(f"Booking {booking_id} already paid ({booking.status}), treating confirm as a no-op")
                return booking
            raise
        return _parse_booking(data)

    @track_collaborator_call("booking_store", "cancel")
    async def cancel_booking(self, booking_id: int, reason: Optional[str] = None) -> Booking:
        params = {"reason": reason} if reason else None
        data = await request_json(
            self.client, "PATCH", f"/api/bookings/{booking_id}/cancel", BookingStoreError, params=params
        )
        return _parse_booking(data)
