import pytest
import redis.asyncio as redis

from aeo_api.core.exceptions import LeadNotFoundError, ServiceUnavailableError
from aeo_api.schemas.lead import LeadSubmission, LeadSubmitRequest
from aeo_api.services.lead_capture import LeadCaptureFlow
from aeo_api.services.session_store import InMemorySessionStore, LeadSession, LeadState, RedisSessionStore


def test_session_dict_round_trip(clock):
    session = LeadSession(
        email="a@b.com",
        state=LeadState.CODE_SENT,
        lead=LeadSubmission(email="a@b.com", country="Oman", first_name="Jane"),
        last_issued_at=clock.now,
        updated_at=clock.now,
    )
    assert LeadSession.from_dict(session.to_dict()) == session


def test_new_session_starts_idle():
    session = LeadSession(email="a@b.com")
    assert session.state is LeadState.IDLE
    assert session.lead is None


@pytest.mark.asyncio
async def test_in_memory_sessions_expire(clock):
    store = InMemorySessionStore(ttl_seconds=60, clock=clock)
    await store.save(LeadSession(email="a@b.com"))

    clock.advance(60)
    assert await store.get("a@b.com") is not None

    clock.advance(1)
    assert await store.get("a@b.com") is None


@pytest.mark.asyncio
async def test_save_refreshes_expiry(clock):
    store = InMemorySessionStore(ttl_seconds=60, clock=clock)
    session = LeadSession(email="a@b.com")
    await store.save(session)

    clock.advance(50)
    await store.save(session)
    clock.advance(50)

    assert await store.get("a@b.com") is session
    await store.delete("a@b.com")
    assert await store.get("a@b.com") is None


class DictRedis:
    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def get(self, key):
        return self.data.get(key)

    async def setex(self, key, seconds, value):
        self.data[key] = value
        self.ttls[key] = seconds

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0


class WriteFailingRedis(DictRedis):
    async def setex(self, key, seconds, value):
        raise redis.ConnectionError("Connection reset by peer")


class DownRedis:
    async def get(self, key):
        raise redis.ConnectionError("Connection refused")

    async def setex(self, key, seconds, value):
        raise redis.ConnectionError("Connection refused")

    async def delete(self, key):
        raise redis.ConnectionError("Connection refused")


@pytest.mark.asyncio
async def test_redis_sessions_round_trip(clock):
    client = DictRedis()
    store = RedisSessionStore(client, ttl_seconds=3600)
    session = LeadSession(
        email="a@b.com",
        state=LeadState.CODE_SENT,
        lead=LeadSubmission(email="a@b.com", country="Oman"),
        last_issued_at=clock.now,
    )

    await store.save(session)

    assert client.ttls == {"lead_session:a@b.com": 3600}
    loaded = await store.get("a@b.com")
    assert loaded.state is LeadState.CODE_SENT
    assert loaded.lead.country == "Oman"

    await store.delete("a@b.com")
    assert await store.get("a@b.com") is None


@pytest.mark.asyncio
async def test_redis_session_errors_raise_service_unavailable():
    store = RedisSessionStore(DownRedis())

    with pytest.raises(ServiceUnavailableError):
        await store.save(LeadSession(email="a@b.com"))
    with pytest.raises(ServiceUnavailableError):
        await store.get("a@b.com")
    with pytest.raises(ServiceUnavailableError):
        await store.delete("a@b.com")


@pytest.mark.asyncio
async def test_submit_fails_when_session_cannot_be_saved(issuer, email_sender, crm, clock):
    flow = LeadCaptureFlow(
        issuer=issuer,
        email_sender=email_sender,
        crm=crm,
        sessions=RedisSessionStore(WriteFailingRedis()),
        clock=clock,
    )

    with pytest.raises(ServiceUnavailableError) as exc_info:
        await flow.submit_lead(LeadSubmitRequest(email="a@b.com", country="UAE"))
    assert exc_info.value.status_code == 503

    # The emailed code cannot produce a verified lead without its session
    with pytest.raises(ServiceUnavailableError):
        await flow.verify_code("a@b.com", email_sender.last_code("a@b.com"))
    with pytest.raises(LeadNotFoundError):
        await flow.resend_code("a@b.com")

    await flow.wait_for_background()
    assert crm.calls == []
