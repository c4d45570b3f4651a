from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import ConfigDict, Field, computed_field, model_validator

from rental_checkout.schemas.base import WireModel


class QuoteRequest(WireModel):
    vehicle_id: int
    vehicle_type: Optional[str] = None
    start_date_time: datetime
    end_date_time: datetime
    with_driver: bool = False
    discount_code: Optional[str] = None
    user_id: Optional[int] = None
    location: Optional[str] = None


class PriceQuote(WireModel):
    """Price breakdown produced by the pricing service.

    Attached once to a booking at creation and never recomputed.
    """
    model_config = ConfigDict(frozen=True)

    base_price: Decimal = Field(ge=0)
    driver_price: Decimal = Field(default=Decimal("0"), ge=0)
    surge_charge: Decimal = Field(default=Decimal("0"), ge=0)
    weekend_charge: Decimal = Field(default=Decimal("0"), ge=0)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    discount_code: Optional[str] = None
    rental_hours: int = Field(default=0, ge=0)
    rental_days: int = Field(default=0, ge=0)
    total_price: Decimal

    @model_validator(mode="after")
    def check_total(self):
        expected = (
            self.base_price
            + self.driver_price
            + self.surge_charge
            + self.weekend_charge
            - self.discount_amount
        )
        if self.total_price != expected:
            raise ValueError(f"total_price {self.total_price} does not match breakdown {expected}")
        if self.total_price < 0:
            raise ValueError("total_price must not be negative")
        return self

    @computed_field
    @property
    def discount_applied(self) -> bool:
        return self.discount_amount > 0
