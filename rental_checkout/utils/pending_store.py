"""Cross-navigation hint: which transaction a booking is waiting on.

Not a source of truth. It only lets a process that starts after the payer
comes back from the gateway recover the transaction id.
"""
from abc import ABC, abstractmethod
from typing import Optional

from redis.asyncio import Redis

from rental_checkout.core.config import settings


class KeyValueStore(ABC):
    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...


class RedisKeyValueStore(KeyValueStore):
    def __init__(self, redis: Redis, ttl: Optional[int] = None):
        self.redis = redis
        self.ttl = ttl if ttl is not None else settings.PENDING_TRANSACTION_TTL

    async def set(self, key: str, value: str) -> None:
        await self.redis.set(key, value, ex=self.ttl)

    async def get(self, key: str) -> Optional[str]:
        v = await self.redis.get(key)
        if isinstance(v, bytes):
            v = v.decode()
        return v

    async def delete(self, key: str) -> None:
        await self.redis.delete(key)


class PendingTransactionStore:
    def __init__(self, kv: KeyValueStore, prefix: Optional[str] = None):
        self.kv = kv
        self.prefix = prefix if prefix is not None else settings.PENDING_TRANSACTION_PREFIX

    def key(self, booking_id: int) -> str:
        return f"{self.prefix}{booking_id}"

    async def remember(self, booking_id: int, transaction_id: str) -> None:
        await self.kv.set(self.key(booking_id), transaction_id)

    async def lookup(self, booking_id: int) -> Optional[str]:
        return await self.kv.get(self.key(booking_id)) or None

    async def forget(self, booking_id: int) -> None:
        await self.kv.delete(self.key(booking_id))
