from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, Field

from rental_checkout.core.enums import OutcomeSource, VerificationStatus
from rental_checkout.core.errors import PaymentCanceledError, PaymentFailedError
from rental_checkout.schemas.base import WireModel


class PaymentTransaction(WireModel):
    """Gateway record of one payment attempt. ``status`` is kept raw; see the reconciler."""
    transaction_id: str
    booking_id: Optional[int] = None
    invoice_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    payment_url: Optional[str] = None
    created_at: Optional[datetime] = None


class PaymentRedirect(WireModel):
    url: str = Field(alias="payUrl")
    method: str = "GET"
    params: Dict[str, Any] = {}

    @property
    def target_url(self) -> str:
        if self.method.upper() != "GET" or not self.params:
            return self.url
        parts = urlsplit(self.url)
        query = "&".join(q for q in (parts.query, urlencode(self.params)) if q)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


class PendingTransaction(BaseModel):
    booking_id: int
    transaction_id: str
    invoice_id: str
    amount: Decimal
    amount_minor: int
    currency: str
    payment_url: Optional[str] = None
    redirect: Optional[PaymentRedirect] = None
    superseded_transaction_id: Optional[str] = None
    outcome: Optional["VerificationOutcome"] = None

    @property
    def interactive(self) -> bool:
        return bool(self.payment_url or self.redirect)


class OpenTransactionRequest(BaseModel):
    amount: Decimal
    currency: Optional[str] = None
    return_endpoint: str


class VerifyRequest(BaseModel):
    transaction_id: Optional[str] = None
    retry: bool = False
    # Report FAILED outcomes as 402 errors instead of a 200 outcome body
    strict: bool = False


class VerificationOutcome(BaseModel):
    status: VerificationStatus
    booking_id: int
    transaction_id: Optional[str] = None
    reason: Optional[str] = None
    raw_status: Optional[str] = None
    source: OutcomeSource = OutcomeSource.GATEWAY

    @property
    def retryable(self) -> bool:
        return self.status == VerificationStatus.PENDING

    def raise_for_status(self) -> None:
        if self.status != VerificationStatus.FAILED:
            return
        if self.reason == "CANCELED":
            raise PaymentCanceledError(
                f"Payment {self.transaction_id} was canceled",
                transaction_id=self.transaction_id,
                reason=self.reason,
            )
        raise PaymentFailedError(
            f"Payment {self.transaction_id} failed: {self.reason}",
            transaction_id=self.transaction_id,
            reason=self.reason,
        )


PendingTransaction.model_rebuild()
