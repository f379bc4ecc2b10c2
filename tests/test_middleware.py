"""Middleware tests: request ID, rate limiting, CORS, error handling."""

import pytest
from httpx import AsyncClient

from coursehub.middleware.logging import redact_secrets
from coursehub.redis_client import publish_json


class FakePipeline:
    def __init__(self, store: dict[str, int]) -> None:
        self.store = store
        self.ops: list[tuple[str, str]] = []

    def incr(self, key: str) -> None:
        self.ops.append(("incr", key))

    def expire(self, key: str, _seconds: int) -> None:
        self.ops.append(("expire", key))

    async def execute(self) -> list[int | bool]:
        results: list[int | bool] = []
        for op, key in self.ops:
            if op == "incr":
                self.store[key] = self.store.get(key, 0) + 1
                results.append(self.store[key])
            else:
                results.append(True)
        return results


class FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, int] = {}

    def pipeline(self) -> FakePipeline:
        return FakePipeline(self.store)


@pytest.fixture
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> FakeRedis:
    fake = FakeRedis()
    monkeypatch.setattr("coursehub.middleware.rate_limit.get_redis", lambda: fake)
    return fake


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    """Request ID is auto-generated when not provided."""
    response = await client.get("/health")
    assert len(response.headers["x-request-id"]) == 36


@pytest.mark.asyncio
async def test_request_id_preserved(client: AsyncClient) -> None:
    """Custom request ID is echoed back in response."""
    response = await client.get("/health", headers={"X-Request-Id": "test-abc-123"})
    assert response.headers["x-request-id"] == "test-abc-123"


@pytest.mark.asyncio
async def test_no_rate_limit_without_redis(client: AsyncClient) -> None:
    response = await client.get("/version")
    assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers


@pytest.mark.asyncio
async def test_rate_limit_headers(client: AsyncClient, fake_redis: FakeRedis) -> None:
    """Rate limit headers are present on non-exempt endpoints."""
    response = await client.get("/version")
    assert response.headers["x-ratelimit-limit"] == "100"
    assert response.headers["x-ratelimit-remaining"] == "99"


@pytest.mark.asyncio
async def test_rate_limit_blocks_excess(client: AsyncClient, fake_redis: FakeRedis) -> None:
    """101st request in a window returns 429 with Retry-After."""
    for _ in range(100):
        await client.get("/version")
    response = await client.get("/version")
    assert response.status_code == 429
    assert "retry-after" in response.headers
    assert "detail" in response.json()


@pytest.mark.asyncio
async def test_exempt_paths(client: AsyncClient, fake_redis: FakeRedis) -> None:
    """Health checks never touch the rate limiter."""
    for _ in range(5):
        response = await client.get("/health")
        assert response.status_code == 200
    assert fake_redis.store == {}


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient) -> None:
    """CORS preflight returns access-control-allow-origin for configured origin."""
    response = await client.options(
        "/health",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "GET",
        },
    )
    assert response.headers["access-control-allow-origin"] == "http://localhost:5173"


@pytest.mark.asyncio
async def test_404_returns_json(client: AsyncClient) -> None:
    """Unknown paths return 404 with JSON body."""
    response = await client.get("/nonexistent-path")
    assert response.status_code == 404
    assert response.headers["content-type"] == "application/json"
    assert response.json()["detail"] == "Not Found"


@pytest.mark.asyncio
async def test_validation_error_format(client: AsyncClient) -> None:
    response = await client.post("/api/v1/auth/login", json={})
    assert response.status_code == 422
    data = response.json()
    assert data["detail"] == "Validation error"
    assert data["errors"]


@pytest.mark.asyncio
async def test_malformed_request_id_replaced(client: AsyncClient) -> None:
    """Ids with unsafe characters are not echoed back."""
    response = await client.get("/health", headers={"X-Request-Id": "bad id\twith spaces"})
    assert response.headers["x-request-id"] != "bad id\twith spaces"
    assert len(response.headers["x-request-id"]) == 36


def test_redact_secrets() -> None:
    event = {"event": "token_fetched", "access_token": "A21AA...", "client_secret": "s3cr3t", "status": 200}
    assert redact_secrets(None, "info", event) == {
        "event": "token_fetched",
        "access_token": "***",
        "client_secret": "***",
        "status": 200,
    }


class RecordingPublisher:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel: str, message: str) -> int:
        if self.fail:
            raise ConnectionError("redis down")
        self.published.append((channel, message))
        return 1


@pytest.mark.asyncio
async def test_publish_json() -> None:
    publisher = RecordingPublisher()
    assert await publish_json(publisher, "notifications:account:1", {"event": "notification"}) is True
    assert publisher.published == [("notifications:account:1", '{"event": "notification"}')]


@pytest.mark.asyncio
async def test_publish_json_degrades() -> None:
    assert await publish_json(None, "channel", {}) is False
    assert await publish_json(RecordingPublisher(fail=True), "channel", {}) is False
