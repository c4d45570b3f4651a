from fastapi import HTTPException
from rental_checkout.core.redis import get_redis
from rental_checkout.core.config import settings
from rental_checkout.core.metrics import rate_limit_exceeded

async def check_rate_limit(scope: str, subject) -> None:
    redis = get_redis()
    key = f"rl:{scope}:{subject}"
    current = await redis.get(key)
    if current is None:
        await redis.set(key, "1", ex=settings.RATE_LIMIT_WINDOW)
        return
    count = int(current)
    if count >= settings.RATE_LIMIT:
        rate_limit_exceeded.labels(scope=scope).inc()
        raise HTTPException(status_code=429, detail="Rate limit exceeded")
    await redis.incr(key)
