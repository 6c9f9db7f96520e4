from fastapi import FastAPI
from fastapi.testclient import TestClient

from aeo_api.middleware.rate_limiter import RateLimitingMiddleware


class FakePipeline:
    def __init__(self, counts):
        self.counts = counts
        self.ops = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def incr(self, key):
        self.ops.append(("incr", key))

    def expire(self, key, seconds):
        self.ops.append(("expire", key, seconds))

    async def execute(self):
        key = self.ops[0][1]
        self.counts[key] = self.counts.get(key, 0) + 1
        return [self.counts[key], True]


class FakeRedis:
    def __init__(self):
        self.counts = {}

    def pipeline(self, transaction=True):
        return FakePipeline(self.counts)


class BrokenRedis:
    def pipeline(self, transaction=True):
        raise ConnectionError("redis down")


def _app(redis_client, limit=2):
    app = FastAPI()
    app.add_middleware(
        RateLimitingMiddleware,
        redis_client=redis_client,
        limit=limit,
        period=60,
        path_prefix="/api/auth",
    )

    @app.post("/api/auth/submit-lead")
    async def submit():
        return {"ok": True}

    @app.get("/api/health/live")
    async def live():
        return {"status": "alive"}

    return app


def test_requests_over_limit_are_rejected():
    client = TestClient(_app(FakeRedis()))

    first = client.post("/api/auth/submit-lead")
    assert first.status_code == 200
    assert first.headers["X-RateLimit-Remaining"] == "1"

    assert client.post("/api/auth/submit-lead").status_code == 200

    blocked = client.post("/api/auth/submit-lead")
    assert blocked.status_code == 429
    assert int(blocked.headers["Retry-After"]) >= 1
    body = blocked.json()
    assert body["success"] is False
    assert body["error"]["code"] == "rate_limited"
    assert body["error"]["details"]["limit"] == 2


def test_clients_are_counted_separately():
    client = TestClient(_app(FakeRedis(), limit=1))

    assert client.post("/api/auth/submit-lead", headers={"X-Forwarded-For": "1.1.1.1"}).status_code == 200
    assert client.post("/api/auth/submit-lead", headers={"X-Forwarded-For": "1.1.1.1"}).status_code == 429
    assert client.post("/api/auth/submit-lead", headers={"X-Forwarded-For": "2.2.2.2, 10.0.0.1"}).status_code == 200


def test_other_paths_are_not_limited():
    client = TestClient(_app(FakeRedis(), limit=1))

    for _ in range(3):
        assert client.get("/api/health/live").status_code == 200


def test_redis_failure_fails_open():
    client = TestClient(_app(BrokenRedis(), limit=1))

    for _ in range(3):
        assert client.post("/api/auth/submit-lead").status_code == 200
