from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from rental_checkout.core.enums import PAID_BOOKING_STATUSES, BookingStatus
from rental_checkout.schemas.base import WireModel
from rental_checkout.schemas.quote import PriceQuote


class VehicleRef(WireModel):
    id: int
    vehicle_type: Optional[str] = None
    requires_driver: bool = False
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    current_address: Optional[str] = None
    current_city: Optional[str] = None


class BookingSelection(WireModel):
    user_id: int
    vehicle: VehicleRef
    start_date_time: datetime
    end_date_time: datetime
    with_driver: bool = False
    driver_id: Optional[int] = None
    pickup_location: Optional[str] = None
    pickup_latitude: Optional[float] = None
    pickup_longitude: Optional[float] = None
    dropoff_location: Optional[str] = None
    dropoff_latitude: Optional[float] = None
    dropoff_longitude: Optional[float] = None
    special_requests: Optional[str] = None
    discount_code: Optional[str] = None
    quote: PriceQuote


class BookingCreateRequest(WireModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    vehicle_id: int
    driver_id: Optional[int] = None
    start_date_time: datetime
    end_date_time: datetime
    pickup_location: str
    pickup_latitude: Optional[float] = None
    pickup_longitude: Optional[float] = None
    dropoff_location: Optional[str] = None
    dropoff_latitude: Optional[float] = None
    dropoff_longitude: Optional[float] = None
    with_driver: bool = False
    special_requests: Optional[str] = None
    discount_code: Optional[str] = None
    vehicle_price: Decimal
    driver_price: Decimal = Decimal("0")
    total_price: Decimal


class Booking(WireModel):
    id: int
    booking_number: str
    user_id: int
    vehicle_id: int
    driver_id: Optional[int] = None
    start_date_time: datetime
    end_date_time: datetime
    pickup_location: Optional[str] = None
    pickup_latitude: Optional[float] = None
    pickup_longitude: Optional[float] = None
    dropoff_location: Optional[str] = None
    with_driver: bool = False
    special_requests: Optional[str] = None
    base_price: Decimal = Field(
        default=Decimal("0"),
        validation_alias=AliasChoices("basePrice", "vehiclePrice", "base_price"),
    )
    discount_amount: Decimal = Decimal("0")
    final_price: Decimal
    status: BookingStatus
    payment_completed: bool = False
    payment_transaction_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_paid(self) -> bool:
        return self.status in PAID_BOOKING_STATUSES and self.payment_completed


class BookingCreated(BaseModel):
    booking: Booking
    warnings: List[dict] = []


class CancelRequest(BaseModel):
    reason: Optional[str] = None
