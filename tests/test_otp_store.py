import asyncio
import os
import uuid
from dataclasses import replace
from datetime import timedelta

import pytest
import redis.exceptions as redis_exceptions

from aeo_api.core.exceptions import ServiceUnavailableError
from aeo_api.services.otp import OTPIssuer, VerifyStatus
from aeo_api.services.otp_store import EXPIRED_RECORD_GRACE, InMemoryOTPStore, OTPRecord, RedisOTPStore


def _record(clock, email="a@b.com", code="123456", attempts=5) -> OTPRecord:
    return OTPRecord(
        email=email,
        code=code,
        created_at=clock.now,
        expires_at=clock.now + timedelta(minutes=10),
        attempts_remaining=attempts,
    )


def test_record_json_round_trip(clock):
    record = _record(clock)
    assert OTPRecord.from_json(record.to_json()) == record


@pytest.mark.asyncio
async def test_update_keeps_record_when_mutator_returns_it(otp_store, clock):
    record = _record(clock)
    await otp_store.save(record)

    result = await otp_store.update("a@b.com", lambda current: (current, "kept"))

    assert result == "kept"
    assert await otp_store.get("a@b.com") == record


@pytest.mark.asyncio
async def test_update_deletes_on_none(otp_store, clock):
    await otp_store.save(_record(clock))

    await otp_store.update("a@b.com", lambda current: (None, None))

    assert await otp_store.get("a@b.com") is None


@pytest.mark.asyncio
async def test_update_replaces_record(otp_store, clock):
    await otp_store.save(_record(clock))

    await otp_store.update("a@b.com", lambda current: (replace(current, attempts_remaining=2), None))

    assert (await otp_store.get("a@b.com")).attempts_remaining == 2


@pytest.mark.asyncio
async def test_long_expired_records_are_purged(otp_store, clock):
    await otp_store.save(_record(clock, email="old@b.com"))
    clock.advance((timedelta(minutes=10) + EXPIRED_RECORD_GRACE).total_seconds() + 1)

    await otp_store.save(_record(clock, email="new@b.com"))

    assert await otp_store.get("old@b.com") is None
    assert len(otp_store) == 1


@pytest.mark.asyncio
async def test_concurrent_wrong_guesses_never_exceed_budget(issuer):
    await issuer.issue("a@b.com")

    results = await asyncio.gather(*[issuer.verify("a@b.com", "x") for _ in range(12)])
    statuses = [r.status for r in results]

    assert statuses.count(VerifyStatus.MISMATCH) == 5
    assert statuses.count(VerifyStatus.ATTEMPTS_EXHAUSTED) == 7


@pytest.mark.asyncio
async def test_concurrent_correct_guesses_succeed_once(issuer):
    record = await issuer.issue("a@b.com")

    results = await asyncio.gather(*[issuer.verify("a@b.com", record.code) for _ in range(10)])

    assert sum(1 for r in results if r.ok) == 1
    assert all(r.status is VerifyStatus.NOT_FOUND for r in results if not r.ok)


@pytest.mark.asyncio
async def test_lock_held_across_async_mutation(clock):
    store = InMemoryOTPStore(clock=clock)
    await store.save(_record(clock))
    seen = []

    async def slow_decrement():
        async with store._lock("a@b.com"):
            current = await store.get("a@b.com")
            await asyncio.sleep(0)
            seen.append(current.attempts_remaining)
            store._records["a@b.com"] = replace(current, attempts_remaining=current.attempts_remaining - 1)

    await asyncio.gather(
        slow_decrement(),
        store.update("a@b.com", lambda c: (replace(c, attempts_remaining=c.attempts_remaining - 1), None)),
    )

    assert (await store.get("a@b.com")).attempts_remaining == 3


@pytest.mark.skipif(not os.getenv("REDIS_URL"), reason="REDIS_URL not set")
@pytest.mark.asyncio
async def test_redis_store_verify_flow(clock):
    import redis.asyncio as redis

    client = redis.from_url(os.environ["REDIS_URL"], decode_responses=True)
    store = RedisOTPStore(client, prefix=f"test-otp-{uuid.uuid4().hex}", clock=clock)
    issuer = OTPIssuer(store, ttl_seconds=600, max_attempts=2, clock=clock)
    try:
        record = await issuer.issue("a@b.com")
        assert (await store.get("a@b.com")) == record

        results = await asyncio.gather(*[issuer.verify("a@b.com", "x") for _ in range(4)])
        statuses = [r.status for r in results]
        assert statuses.count(VerifyStatus.MISMATCH) == 2
        assert statuses.count(VerifyStatus.ATTEMPTS_EXHAUSTED) == 2

        await issuer.issue("a@b.com")
        fresh = await store.get("a@b.com")
        assert (await issuer.verify("a@b.com", fresh.code)).ok
        assert await store.get("a@b.com") is None
    finally:
        await store.delete("a@b.com")
        await client.aclose()


class DownRedis:
    async def set(self, key, value, ex=None):
        raise redis_exceptions.ConnectionError("Connection refused")

    async def get(self, key):
        raise redis_exceptions.ConnectionError("Connection refused")

    async def delete(self, key):
        raise redis_exceptions.ConnectionError("Connection refused")

    async def transaction(self, func, *watches, **kwargs):
        raise redis_exceptions.TimeoutError("Timeout reading from socket")


@pytest.mark.asyncio
async def test_redis_store_errors_raise_service_unavailable(clock):
    store = RedisOTPStore(DownRedis(), clock=clock)

    with pytest.raises(ServiceUnavailableError):
        await store.save(_record(clock))
    with pytest.raises(ServiceUnavailableError):
        await store.get("a@b.com")
    with pytest.raises(ServiceUnavailableError):
        await store.update("a@b.com", lambda current: (current, None))
