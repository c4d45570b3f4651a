import logging
from abc import ABC, abstractmethod

import httpx
from pydantic import ValidationError as SchemaError

from rental_checkout.core.errors import PriceQuoteError
from rental_checkout.core.metrics import track_collaborator_call
from rental_checkout.schemas.quote import PriceQuote, QuoteRequest
from rental_checkout.services.http import request_json, schema_errors

logger = logging.getLogger(__name__)


class PriceQuoteService(ABC):
    @abstractmethod
    async def quote(self, req: QuoteRequest) -> PriceQuote:
        """Price a prospective booking. The core never recomputes the result."""


class HttpPriceQuoteService(PriceQuoteService):
    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    @track_collaborator_call("pricing", "quote")
    async def quote(self, req: QuoteRequest) -> PriceQuote:
        data = await request_json(
            self.client, "POST", "/api/pricing/calculate", PriceQuoteError, json=req.to_wire()
        )
        try:
            return PriceQuote.model_validate(data)
        except SchemaError as e:
            logger.error(f"Pricing service returned an inconsistent quote for vehicle {req.vehicle_id}: {e}")
            raise PriceQuoteError("Pricing service returned an inconsistent quote", {"errors": schema_errors(e)}) from e
