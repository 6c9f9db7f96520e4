"""
Storage for one-time codes, keyed by normalized email.

Stores hold at most one record per email. ``update`` is the only
read-modify-write path and is atomic per email: an ``asyncio.Lock`` per key
in memory, a WATCH/MULTI transaction on Redis.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Protocol, Tuple, TypeVar

import redis.asyncio as redis

from aeo_api.core.exceptions import ServiceUnavailableError
from aeo_api.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

T = TypeVar("T")

# Expired records are kept this long so verification can report them as expired.
EXPIRED_RECORD_GRACE = timedelta(hours=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class OTPRecord:
    email: str
    code: str
    created_at: datetime
    expires_at: datetime
    attempts_remaining: int
    consumed: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_json(self) -> str:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["expires_at"] = self.expires_at.isoformat()
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "OTPRecord":
        data = json.loads(raw)
        return cls(
            email=data["email"],
            code=data["code"],
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            attempts_remaining=int(data["attempts_remaining"]),
            consumed=bool(data.get("consumed", False)),
        )


# A mutator receives the current record (or None) and returns the record to
# store (None deletes it, the same object leaves it untouched) plus a result.
Mutator = Callable[[Optional[OTPRecord]], Tuple[Optional[OTPRecord], T]]


class OTPStore(Protocol):
    async def save(self, record: OTPRecord) -> None: ...

    async def get(self, email: str) -> Optional[OTPRecord]: ...

    async def delete(self, email: str) -> None: ...

    async def update(self, email: str, mutator: Mutator[T]) -> T: ...


class InMemoryOTPStore:
    """Process-local store for development and tests."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._records: Dict[str, OTPRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, email: str) -> asyncio.Lock:
        lock = self._locks.get(email)
        if lock is None:
            lock = self._locks[email] = asyncio.Lock()
        return lock

    def _purge(self) -> None:
        cutoff = self._clock() - EXPIRED_RECORD_GRACE
        stale = [email for email, record in self._records.items() if record.expires_at < cutoff]
        for email in stale:
            del self._records[email]
        for email in [e for e, lock in self._locks.items() if e not in self._records and not lock.locked()]:
            del self._locks[email]

    async def save(self, record: OTPRecord) -> None:
        async with self._lock(record.email):
            self._records[record.email] = record
        self._purge()

    async def get(self, email: str) -> Optional[OTPRecord]:
        return self._records.get(email)

    async def delete(self, email: str) -> None:
        async with self._lock(email):
            self._records.pop(email, None)

    async def update(self, email: str, mutator: Mutator[T]) -> T:
        async with self._lock(email):
            current = self._records.get(email)
            new, result = mutator(current)
            if new is None:
                self._records.pop(email, None)
            elif new is not current:
                self._records[email] = new
            return result

    def __len__(self) -> int:
        return len(self._records)


class RedisOTPStore:
    """Records as JSON strings under ``<prefix>:<email>``.

    Redis failures raise ``ServiceUnavailableError``.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        prefix: str = "otp",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.redis = redis_client
        self.prefix = prefix
        self._clock = clock

    def _make_key(self, email: str) -> str:
        return f"{self.prefix}:{email}"

    def _expiry_seconds(self, record: OTPRecord) -> int:
        remaining = record.expires_at + EXPIRED_RECORD_GRACE - self._clock()
        return max(1, int(remaining.total_seconds()))

    def _unavailable(self, operation: str, email: str, error: Exception) -> ServiceUnavailableError:
        logger.error("otp_store.redis_error", operation=operation, email=email, error=str(error)[:200])
        return ServiceUnavailableError("Verification code storage unavailable", details={"store": "otp"})

    async def save(self, record: OTPRecord) -> None:
        try:
            await self.redis.set(
                self._make_key(record.email),
                record.to_json(),
                ex=self._expiry_seconds(record),
            )
        except redis.RedisError as e:
            raise self._unavailable("save", record.email, e)

    async def get(self, email: str) -> Optional[OTPRecord]:
        try:
            raw = await self.redis.get(self._make_key(email))
        except redis.RedisError as e:
            raise self._unavailable("get", email, e)
        if raw is None:
            return None
        return OTPRecord.from_json(raw)

    async def delete(self, email: str) -> None:
        try:
            await self.redis.delete(self._make_key(email))
        except redis.RedisError as e:
            raise self._unavailable("delete", email, e)

    async def update(self, email: str, mutator: Mutator[T]) -> T:
        key = self._make_key(email)

        async def apply(pipe) -> T:
            raw = await pipe.get(key)
            current = OTPRecord.from_json(raw) if raw is not None else None
            new, result = mutator(current)
            pipe.multi()
            if new is None:
                if current is not None:
                    pipe.delete(key)
            elif new is not current:
                pipe.set(key, new.to_json(), ex=self._expiry_seconds(new))
            return result

        # Retried by redis-py when the key changes between WATCH and EXEC.
        try:
            return await self.redis.transaction(apply, key, value_from_callable=True)
        except redis.RedisError as e:
            raise self._unavailable("update", email, e)
