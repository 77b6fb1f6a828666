import base64
import json
import random
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest

from src.app.services.pow_fetch import AdaptiveFetcher, FetcherConfig, FetchMetrics, TTLCache


# ============== Challenge builders ==============
def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def make_payload(exponent_byte: int = 34, multiplier_byte: int = 16, seed: int = 0, length: int = 32) -> bytes:
    """Puzzle payload with the difficulty bytes at offsets 13 and 14.

    Defaults give target = 16 * 2**248, i.e. roughly one nonce in 16 passes.
    """
    rnd = random.Random(seed)
    payload = bytearray(rnd.getrandbits(8) for _ in range(length))
    payload[13] = exponent_byte
    payload[14] = multiplier_byte
    return bytes(payload)


def make_token(payload: bytes, subject: str = "puzzle") -> str:
    header = _b64url(json.dumps({"alg": "HS256", "typ": "JWT"}).encode())
    claims = _b64url(json.dumps({"sub": subject, "puzzle": base64.b64encode(payload).decode()}).encode())
    signature = _b64url(f"sig-{subject}".encode())
    return f"{header}.{claims}.{signature}"


def make_challenge(*payloads: bytes) -> str:
    tokens = [make_token(p, subject=f"p{i}") for i, p in enumerate(payloads)]
    return base64.b64encode(",".join(tokens).encode()).decode("ascii")


@pytest.fixture
def payload_factory() -> Callable[..., bytes]:
    return make_payload


@pytest.fixture
def token_factory() -> Callable[..., str]:
    return make_token


@pytest.fixture
def challenge_factory() -> Callable[..., str]:
    return make_challenge


# ============== Fake curl_cffi transport ==============
class FakeResponse:
    """Stands in for curl_cffi.requests.Response."""

    def __init__(self, status_code: int, headers: dict[str, str] | None = None, text: str = "") -> None:
        self.status_code = status_code
        self.headers = headers or {}
        self.text = text


class FakeSession:
    """Async context manager with the slice of AsyncSession the fetcher uses."""

    def __init__(self, transport: "ScriptedTransport") -> None:
        self._transport = transport

    async def __aenter__(self) -> "FakeSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self._transport.closed += 1

    async def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return await self._transport.handle(url, kwargs)


class ScriptedTransport:
    """Session factory replaying scripted responses (or raising scripted exceptions).

    `script` is either a list shared by all URLs or a dict of per-URL lists.
    """

    def __init__(self, script: list | dict[str, list]) -> None:
        self.script = script
        self.calls: list[tuple[str, dict[str, str]]] = []
        self.opened = 0
        self.closed = 0

    def __call__(self) -> FakeSession:
        self.opened += 1
        return FakeSession(self)

    @property
    def sends(self) -> int:
        return len(self.calls)

    def sends_to(self, url: str) -> int:
        return sum(1 for called, _ in self.calls if called == url)

    async def handle(self, url: str, kwargs: dict[str, Any]) -> FakeResponse:
        self.calls.append((url, dict(kwargs.get("headers") or {})))
        queue = self.script[url] if isinstance(self.script, dict) else self.script
        if not queue:
            raise AssertionError(f"Unexpected send to {url}")
        item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def json_response(body: Any, status_code: int = 200) -> FakeResponse:
    return FakeResponse(status_code, {"Content-Type": "application/json"}, json.dumps(body))


def challenge_response(credential: str) -> FakeResponse:
    return FakeResponse(429, {"Captcha-Puzzle": credential}, "")


@pytest.fixture
def json_response_factory() -> Callable[..., FakeResponse]:
    return json_response


@pytest.fixture
def challenge_response_factory() -> Callable[[str], FakeResponse]:
    return challenge_response


@pytest.fixture
def response_factory() -> type[FakeResponse]:
    return FakeResponse


# ============== Fetcher wiring ==============
class FakeClock:
    """Monotonic clock moved by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> AsyncMock:
    """Recorded, non-blocking replacement for asyncio.sleep."""
    return AsyncMock(return_value=None)


@pytest.fixture
def fetcher_factory(clock: FakeClock, sleep: AsyncMock) -> Callable[..., tuple[AdaptiveFetcher, ScriptedTransport]]:
    """Build an AdaptiveFetcher over a scripted transport with a fake clock."""

    def _build(
        script: list | dict[str, list],
        config: FetcherConfig | None = None,
    ) -> tuple[AdaptiveFetcher, ScriptedTransport]:
        config = config or FetcherConfig()
        transport = ScriptedTransport(script)
        fetcher = AdaptiveFetcher(
            config,
            response_cache=TTLCache(config.cache.response_ttl, clock=clock, name="response cache"),
            blocked_cache=TTLCache(config.cache.blocked_ttl, clock=clock, name="blocked cache"),
            metrics=FetchMetrics(),
            session_factory=transport,
            sleep=sleep,
            rng=random.Random(1234),
        )
        return fetcher, transport

    return _build
