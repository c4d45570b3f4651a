from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    BOOKING_SERVICE_URL: str = "http://localhost:8080"
    PRICING_SERVICE_URL: str = "http://localhost:8080"
    PAYMENT_GATEWAY_URL: str = "http://localhost:8080"
    PAYMENT_GATEWAY_DIRECT_URL: str = "http://localhost:8089/api"
    PAYMENT_GATEWAY_SLUG: str = "sandbox"
    HTTP_TIMEOUT: float = 10.0

    REDIS_URL: str = "redis://localhost:6379/0"

    PENDING_TRANSACTION_PREFIX: str = "payment_transaction_"
    PENDING_TRANSACTION_TTL: int = 86400  # 24 hours

    SETTLE_DELAY_SECONDS: float = 2.0
    DEFAULT_CURRENCY: str = "IRR"
    AMOUNT_MINOR_UNIT_FACTOR: int = 10  # toman -> rial
    MIN_TRANSACTION_AMOUNT: int = 1000
    INVOICE_PREFIX: str = "BOOKING-"

    RATE_LIMIT: int = 10
    RATE_LIMIT_WINDOW: int = 60

    MAX_TRACKED_BOOKINGS: int = 10000

    API_TITLE: str = "Rental Checkout Service"
    API_DESCRIPTION: str = "Booking-to-payment orchestration for vehicle rentals"
    API_VERSION: str = "1.0.0"

    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
