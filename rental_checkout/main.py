from fastapi import FastAPI, Request
from contextlib import asynccontextmanager
from starlette.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware
from rental_checkout.api import bookings, payments
from rental_checkout.core.config import settings
from rental_checkout.core.exception_handlers import register_exception_handlers
from rental_checkout.core.redis import init_redis, close_redis, get_redis
from rental_checkout.core.metrics import request_count, request_duration, redis_connected, get_metrics_text
from rental_checkout.services.booking_store import BookingStore, HttpBookingStore
from rental_checkout.services.draft import BookingDraftAssembler
from rental_checkout.services.http import create_client
from rental_checkout.services.orchestrator import PaymentOrchestrator
from rental_checkout.services.payment_gateway import HttpPaymentGateway, PaymentGateway
from rental_checkout.services.pricing import HttpPriceQuoteService, PriceQuoteService
from rental_checkout.services.reconciler import VerificationReconciler
from rental_checkout.services.transactions import TransactionLifecycleController
from rental_checkout.utils.pending_store import KeyValueStore, PendingTransactionStore, RedisKeyValueStore
import time
import logging

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        except Exception:
            status = 500
            raise
        finally:
            request_count.labels(
                method=request.method,
                endpoint=request.url.path,
                status=status
            ).inc()
            request_duration.labels(
                method=request.method,
                endpoint=request.url.path
            ).observe(time.time() - start_time)


def build_orchestrator(
    store: BookingStore,
    pricing: PriceQuoteService,
    gateway: PaymentGateway,
    kv: KeyValueStore,
) -> PaymentOrchestrator:
    transactions = TransactionLifecycleController(store, gateway, PendingTransactionStore(kv))
    return PaymentOrchestrator(
        assembler=BookingDraftAssembler(store, pricing),
        transactions=transactions,
        reconciler=VerificationReconciler(store, gateway, transactions),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting...")
    
    logger.info("Initializing Redis connection...")
    redis = await init_redis()
    redis_connected.set(1)
    
    clients = [
        create_client(settings.BOOKING_SERVICE_URL),
        create_client(settings.PRICING_SERVICE_URL),
        create_client(settings.PAYMENT_GATEWAY_URL),
        create_client(settings.PAYMENT_GATEWAY_DIRECT_URL),
    ]
    booking_client, pricing_client, gateway_client, direct_client = clients
    app.state.orchestrator = build_orchestrator(
        store=HttpBookingStore(booking_client),
        pricing=HttpPriceQuoteService(pricing_client),
        gateway=HttpPaymentGateway(gateway_client, direct_client),
        kv=RedisKeyValueStore(redis),
    )
    logger.info("Collaborator clients ready")
    
    yield
    
    logger.info("Application shutting down...")
    for client in clients:
        await client.aclose()
    await close_redis()
    redis_connected.set(0)
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.API_TITLE,
    description=settings.API_DESCRIPTION,
    version=settings.API_VERSION,
    lifespan=lifespan
)

app.add_middleware(MetricsMiddleware)
register_exception_handlers(app)

app.include_router(bookings.router)
app.include_router(payments.router)


@app.get("/metrics", tags=["monitoring"])
async def metrics():
    return Response(
        content=get_metrics_text(),
        media_type="text/plain; version=0.0.4; charset=utf-8"
    )


def _redis_available() -> bool:
    try:
        get_redis()
    except RuntimeError:
        return False
    return True


@app.get("/health", tags=["monitoring"])
async def health_check():
    return {
        "status": "healthy",
        "service": settings.API_TITLE,
        "version": settings.API_VERSION,
        "dependencies": {
            "redis": "connected" if _redis_available() else "disconnected",
        }
    }


@app.get("/readiness", tags=["monitoring"])
async def readiness_check():
    if not _redis_available():
        return JSONResponse(status_code=503, content={"ready": False, "reason": "Redis not available"})
    
    return {
        "ready": True,
        "service": settings.API_TITLE
    }


@app.get("/", tags=["root"])
async def root():
    return {
        "message": settings.API_TITLE,
        "version": settings.API_VERSION,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics"
    }
