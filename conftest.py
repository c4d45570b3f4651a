import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from rental_checkout.core import redis as redis_module
from rental_checkout.core.enums import BookingStatus
from rental_checkout.core.errors import BookingStoreError, GatewayError, PriceQuoteError
from rental_checkout.main import app, build_orchestrator
from rental_checkout.schemas.booking import Booking, BookingCreateRequest, BookingSelection, VehicleRef
from rental_checkout.schemas.payment import PaymentRedirect, PaymentTransaction
from rental_checkout.schemas.quote import PriceQuote, QuoteRequest
from rental_checkout.services.booking_store import BookingStore
from rental_checkout.services.payment_gateway import PaymentGateway
from rental_checkout.services.pricing import PriceQuoteService
from rental_checkout.utils.pending_store import KeyValueStore

START = datetime(2026, 11, 2, 9, 0)
END = START + timedelta(hours=26)


class FakeBookingStore(BookingStore):
    def __init__(self):
        self.bookings: Dict[int, Booking] = {}
        self.created: List[BookingCreateRequest] = []
        self.confirm_calls: List[int] = []
        self.get_calls: List[int] = []
        self.cancel_calls: List[tuple] = []
        self.price_override: Optional[Decimal] = None
        self.fail_get = False
        self.fail_confirm = False
        self.release: Optional[asyncio.Event] = None
        self.next_id = 100

    def add(self, booking: Booking) -> Booking:
        self.bookings[booking.id] = booking
        return booking

    async def create_booking(self, request: BookingCreateRequest) -> Booking:
        self.created.append(request)
        booking_id = self.next_id
        self.next_id += 1
        return self.add(Booking(
            id=booking_id,
            booking_number=f"BK-{booking_id}",
            user_id=request.user_id,
            vehicle_id=request.vehicle_id,
            driver_id=request.driver_id,
            start_date_time=request.start_date_time,
            end_date_time=request.end_date_time,
            pickup_location=request.pickup_location,
            with_driver=request.with_driver,
            base_price=request.vehicle_price,
            final_price=self.price_override if self.price_override is not None else request.total_price,
            status=BookingStatus.PENDING,
        ))

    async def get_booking(self, booking_id: int) -> Booking:
        self.get_calls.append(booking_id)
        if self.release is not None:
            await self.release.wait()
        if self.fail_get:
            raise BookingStoreError("booking store unreachable")
        if booking_id not in self.bookings:
            raise BookingStoreError(f"Booking {booking_id} not found", {"status_code": 404})
        return self.bookings[booking_id]

    async def confirm_booking(self, booking_id: int) -> Booking:
        self.confirm_calls.append(booking_id)
        if self.fail_confirm:
            raise BookingStoreError("confirm failed")
        booking = self.bookings[booking_id]
        if booking.is_paid:
            return booking
        if booking.status != BookingStatus.PENDING:
            raise BookingStoreError("Only pending bookings can be confirmed", {"status_code": 400})
        booking = booking.model_copy(update={"status": BookingStatus.CONFIRMED, "payment_completed": True})
        return self.add(booking)

    async def cancel_booking(self, booking_id: int, reason: Optional[str] = None) -> Booking:
        self.cancel_calls.append((booking_id, reason))
        booking = self.bookings[booking_id].model_copy(
            update={"status": BookingStatus.CANCELLED, "cancellation_reason": reason}
        )
        return self.add(booking)


class FakePaymentGateway(PaymentGateway):
    def __init__(self):
        self.statuses: Dict[str, object] = {}
        self.records: Dict[str, dict] = {}
        self.created: List[dict] = []
        self.queries: List[str] = []
        self.fail_create = False
        self.fail_query = False
        self.payment_url: Optional[str] = "https://pay.example.test/checkout"
        self.details: Optional[PaymentRedirect] = None
        self.release: Optional[asyncio.Event] = None
        self.next_id = 1

    async def create_transaction(self, booking_id, invoice_id, amount, currency, return_endpoint, description=None):
        if self.fail_create:
            raise GatewayError("gateway unreachable")
        transaction_id = f"txn-{self.next_id}"
        self.next_id += 1
        self.created.append({
            "booking_id": booking_id,
            "invoice_id": invoice_id,
            "amount": amount,
            "currency": currency,
            "return_endpoint": return_endpoint,
        })
        self.statuses.setdefault(transaction_id, "CREATED")
        self.records[transaction_id] = {"booking_id": booking_id, "amount": amount}
        return PaymentTransaction(
            transaction_id=transaction_id,
            booking_id=booking_id,
            invoice_id=invoice_id,
            amount=amount,
            currency=currency,
            status="CREATED",
            payment_url=self.payment_url,
        )

    async def get_transaction(self, transaction_id: str) -> PaymentTransaction:
        self.queries.append(transaction_id)
        if self.release is not None:
            await self.release.wait()
        if self.fail_query:
            raise GatewayError("gateway timeout")
        return PaymentTransaction(
            transaction_id=transaction_id,
            status=self.statuses.get(transaction_id),
            **self.records.get(transaction_id, {}),
        )

    async def get_payment_details(self, transaction_id: str) -> Optional[PaymentRedirect]:
        return self.details


class FakePriceQuoteService(PriceQuoteService):
    def __init__(self):
        self.requests: List[QuoteRequest] = []
        self.fail = False
        self.result = make_quote()

    async def quote(self, req: QuoteRequest) -> PriceQuote:
        self.requests.append(req)
        if self.fail:
            raise PriceQuoteError("pricing unavailable")
        return self.result


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self):
        self.data: Dict[str, str] = {}
        self.fail = False

    async def set(self, key: str, value: str) -> None:
        if self.fail:
            raise ConnectionError("kv down")
        self.data[key] = value

    async def get(self, key: str) -> Optional[str]:
        if self.fail:
            raise ConnectionError("kv down")
        return self.data.get(key)

    async def delete(self, key: str) -> None:
        if self.fail:
            raise ConnectionError("kv down")
        self.data.pop(key, None)


class FakeRedis:
    """Just enough of redis.asyncio.Redis for rate limiting and the KV store."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.expiry: Dict[str, int] = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = str(value)
        if ex is not None:
            self.expiry[key] = ex
        return True

    async def incr(self, key):
        self.data[key] = str(int(self.data.get(key, "0")) + 1)
        return int(self.data[key])

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0


def make_quote(base="100", driver="20", surge="0", weekend="0", discount="10", code="WELCOME10") -> PriceQuote:
    total = Decimal(base) + Decimal(driver) + Decimal(surge) + Decimal(weekend) - Decimal(discount)
    return PriceQuote(
        base_price=Decimal(base),
        driver_price=Decimal(driver),
        surge_charge=Decimal(surge),
        weekend_charge=Decimal(weekend),
        discount_amount=Decimal(discount),
        discount_code=code,
        rental_hours=26,
        rental_days=1,
        total_price=total,
    )


def make_booking(booking_id=42, final_price="110", status=BookingStatus.PENDING, **kwargs) -> Booking:
    data = dict(
        id=booking_id,
        booking_number=f"BK-{booking_id}",
        user_id=7,
        vehicle_id=3,
        start_date_time=START,
        end_date_time=END,
        pickup_location="Tehran, Valiasr St",
        with_driver=True,
        base_price=Decimal("100"),
        discount_amount=Decimal("10"),
        final_price=Decimal(final_price),
        status=status,
    )
    data.update(kwargs)
    return Booking(**data)


@pytest.fixture
def booking_store():
    return FakeBookingStore()


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def pricing():
    return FakePriceQuoteService()


@pytest.fixture
def kv():
    return InMemoryKeyValueStore()


@pytest.fixture
def orchestrator(booking_store, pricing, gateway, kv):
    orch = build_orchestrator(store=booking_store, pricing=pricing, gateway=gateway, kv=kv)
    orch.settle_delay = 0
    return orch


@pytest.fixture
def pending_booking(booking_store):
    return booking_store.add(make_booking())


@pytest.fixture
def valid_selection():
    return BookingSelection(
        user_id=7,
        vehicle=VehicleRef(id=3, vehicle_type="SEDAN", requires_driver=True, latitude=35.7, longitude=51.4),
        start_date_time=START,
        end_date_time=END,
        with_driver=True,
        driver_id=11,
        pickup_location="Tehran, Valiasr St",
        discount_code="WELCOME10",
        quote=make_quote(),
    )


@pytest.fixture
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(redis_module, "redis", fake)
    return fake


@pytest_asyncio.fixture
async def api_client(orchestrator, fake_redis):
    app.state.orchestrator = orchestrator
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "pricing: marks tests related to pricing"
    )
    config.addinivalue_line(
        "markers", "idempotency: marks tests related to idempotency"
    )
    config.addinivalue_line(
        "markers", "reconciliation: marks tests related to payment verification"
    )
    config.addinivalue_line(
        "markers", "api: marks tests that go through the HTTP API"
    )
