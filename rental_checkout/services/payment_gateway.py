import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import ValidationError as SchemaError

from rental_checkout.core.config import settings
from rental_checkout.core.errors import GatewayError
from rental_checkout.core.metrics import track_collaborator_call
from rental_checkout.schemas.payment import PaymentRedirect, PaymentTransaction
from rental_checkout.services.http import request_json, schema_errors

logger = logging.getLogger(__name__)


class PaymentGateway(ABC):
    @abstractmethod
    async def create_transaction(
        self,
        booking_id: int,
        invoice_id: str,
        amount: int,
        currency: str,
        return_endpoint: str,
        description: Optional[str] = None,
    ) -> PaymentTransaction:
        """Open a transaction. ``amount`` is in the currency's smallest unit."""

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> PaymentTransaction:
        ...

    async def get_payment_details(self, transaction_id: str) -> Optional[PaymentRedirect]:
        """Interactive payment target, or None for gateways that settle synchronously."""
        return None


def _parse_transaction(data, fallback_id: Optional[str] = None) -> PaymentTransaction:
    if isinstance(data, dict):
        data = dict(data)
        # Older gateway builds report the status under transactionStatus
        if data.get("status") is None and data.get("transactionStatus") is not None:
            data["status"] = data["transactionStatus"]
        if fallback_id and not data.get("transactionId"):
            data["transactionId"] = fallback_id
    try:
        return PaymentTransaction.model_validate(data)
    except SchemaError as e:
        raise GatewayError("Payment gateway returned a malformed transaction", {"errors": schema_errors(e)}) from e


class HttpPaymentGateway(PaymentGateway):
    def __init__(self, client: httpx.AsyncClient, direct_client: Optional[httpx.AsyncClient] = None):
        self.client = client
        self.direct_client = direct_client

    @track_collaborator_call("payment_gateway", "create")
    async def create_transaction(
        self,
        booking_id: int,
        invoice_id: str,
        amount: int,
        currency: str,
        return_endpoint: str,
        description: Optional[str] = None,
    ) -> PaymentTransaction:
        payload = {
            "bookingId": booking_id,
            "invoiceId": invoice_id,
            "amount": amount,
            "currency": currency,
            "callbackUrl": return_endpoint,
            "description": description,
        }
        data = await request_json(
            self.client, "POST", "/api/payments/transaction/create", GatewayError, json=payload
        )
        return _parse_transaction(data)

    @track_collaborator_call("payment_gateway", "status")
    async def get_transaction(self, transaction_id: str) -> PaymentTransaction:
        data = await request_json(
            self.client, "GET", f"/api/payments/transaction/{transaction_id}/status", GatewayError
        )
        return _parse_transaction(data, fallback_id=transaction_id)

    @track_collaborator_call("payment_gateway", "details")
    async def get_payment_details(self, transaction_id: str) -> Optional[PaymentRedirect]:
        if self.direct_client is None:
            return None
        data = await request_json(
            self.direct_client,
            "POST",
            f"/pay/v2/{transaction_id}",
            GatewayError,
            params={"gateway": settings.PAYMENT_GATEWAY_SLUG},
        )
        if not isinstance(data, dict) or not data.get("payUrl"):
            return None
        details = dict(data)
        if not details.get("params") and details.get("body"):
            # Form-encoded body is submitted as hidden inputs, same as params
            from urllib.parse import parse_qsl
            details["params"] = dict(parse_qsl(details["body"]))
        try:
            return PaymentRedirect.model_validate(details)
        except SchemaError as e:
            raise GatewayError("Payment gateway returned malformed payment details", {"errors": schema_errors(e)}) from e
