"""Prometheus metrics for monitoring"""
from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry
import time
from functools import wraps
from typing import Callable

registry = CollectorRegistry()

request_count = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status'],
    registry=registry
)

request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=registry
)

collaborator_calls = Counter(
    'collaborator_calls_total',
    'Total calls to remote collaborators',
    ['collaborator', 'operation', 'status'],
    registry=registry
)

collaborator_duration = Histogram(
    'collaborator_call_duration_seconds',
    'Remote collaborator call duration in seconds',
    ['collaborator', 'operation'],
    registry=registry
)

transactions_opened = Counter(
    'transactions_opened_total',
    'Payment transactions opened',
    ['currency'],
    registry=registry
)

verification_outcomes = Counter(
    'verification_outcomes_total',
    'Payment verification outcomes',
    ['outcome', 'source'],
    registry=registry
)

guard_suppressed = Counter(
    'guard_suppressed_total',
    'Duplicate operation triggers absorbed by the idempotency guard',
    registry=registry
)

rate_limit_exceeded = Counter(
    'rate_limit_exceeded_total',
    'Total rate limit exceeded events',
    ['scope'],
    registry=registry
)

redis_connected = Gauge(
    'redis_connected',
    'Redis connection status (1=connected, 0=disconnected)',
    registry=registry
)


def track_collaborator_call(collaborator: str, operation: str):
    """Decorator to track remote collaborator call metrics"""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                result = await func(*args, **kwargs)
                collaborator_calls.labels(
                    collaborator=collaborator,
                    operation=operation,
                    status='success'
                ).inc()
                return result
            except Exception:
                collaborator_calls.labels(
                    collaborator=collaborator,
                    operation=operation,
                    status='error'
                ).inc()
                raise
            finally:
                collaborator_duration.labels(
                    collaborator=collaborator,
                    operation=operation
                ).observe(time.time() - start_time)
        return wrapper
    return decorator


def get_metrics_text() -> str:
    """Generate Prometheus metrics in text format"""
    from prometheus_client import generate_latest
    return generate_latest(registry).decode('utf-8')
