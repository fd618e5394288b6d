import pytest
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient

from monke.core.rate_limit import RateLimiter


class Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_sliding_window() -> None:
    clock = Clock()
    limiter = RateLimiter(limit=2, window=10, clock=clock)
    assert limiter.hit("a") and limiter.hit("a")
    assert not limiter.hit("a")
    assert limiter.hit("b")
    assert limiter.retry_after("a") == 11
    clock.now = 10.0
    assert limiter.hit("a")


def test_idle_clients_are_forgotten() -> None:
    clock = Clock()
    limiter = RateLimiter(limit=2, window=10, clock=clock)
    for client in ("a", "b", "c"):
        assert limiter.hit(client)
    clock.now = 5.0
    assert limiter.hit("d")
    assert set(limiter.calls) == {"a", "b", "c", "d"}
    clock.now = 12.0
    assert limiter.hit("e")
    assert set(limiter.calls) == {"d", "e"}


@pytest.mark.asyncio
async def test_rate_limit_returns_429_when_exceeded() -> None:
    limiter = RateLimiter(limit=3, window=60)
    app = FastAPI()

    @app.get("/", dependencies=[Depends(limiter)])
    async def _() -> dict[str, bool]:
        return {"ok": True}

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        for _ in range(3):
            resp = await client.get("/")
            assert resp.status_code == 200
        resp = await client.get("/")
    assert resp.status_code == 429
    assert resp.headers["Retry-After"]
    assert resp.json()["detail"]["error"]["code"] == "rate_limited"
