"""
Proof-of-Work Fetch - Adaptive Fetcher

Fetches JSON from an origin that layers a proof-of-work challenge on top
of ordinary rate limiting:

    Idle -> Sent -> SUCCESS                     -> parse, cache, return
                 -> CHALLENGE_REQUIRED          -> decode, solve, resend once
                        Resent -> SUCCESS            -> parse, cache, return
                               -> SOLUTION_REJECTED  -> SolutionRejectedError
                               -> CHALLENGE_REQUIRED -> BlockedError (+ blocked record)
                               -> 404 (optional)     -> ABSENT
                               -> anything else      -> ClientError
                 -> RATE_LIMITED / SERVER_TRANSIENT / no response
                                                -> backoff, resend (shared budget)
                 -> SOLUTION_REJECTED           -> SolutionRejectedError
                 -> CLIENT_ERROR                -> ClientError (404 optional -> ABSENT)

Every send opens its own curl_cffi AsyncSession, so nothing stays open
across a backoff sleep and cancellation can land in any await.
"""

import asyncio
import json
import logging
import random
import time
from collections.abc import Awaitable, Callable
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Any

from curl_cffi import CurlError
from curl_cffi.requests import AsyncSession

from ...schemas.tracking import BlockedPayload, UpstreamInfo
from .cache import TTLCache
from .classifier import Outcome, classify_response, extract_challenge
from .config import FetcherConfig
from .exceptions import (
    BlockedError,
    ClientError,
    NetworkError,
    ParseError,
    PowFetchException,
    PuzzleError,
    RateLimitExceededError,
    ServerError,
    SolutionRejectedError,
)
from .metrics import FetchMetrics, log_fetch_operation
from .puzzle import decode_challenge, encode_solution
from .solver import solve_challenge

logger = logging.getLogger(__name__)

BODY_SNIPPET_LENGTH = 200


class _Absent:
    """Falsy marker for 'no data' on an optional secondary request."""

    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


@dataclass
class RawResponse:
    """The parts of an HTTP response the fetcher acts on."""

    status_code: int
    headers: dict[str, str]
    text: str

    @property
    def content_type(self) -> str | None:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return None

    @property
    def snippet(self) -> str:
        return self.text[:BODY_SNIPPET_LENGTH] if self.text else ""


@dataclass
class _CallTrace:
    """Bookkeeping for one logical fetch (for the operation log)."""

    sends: int = 0
    status: str = "success"
    challenge_solved: bool = False
    last_status_code: int | None = None


def _categorize_error(error: Exception) -> str:
    """Short error code for a transport failure."""
    if isinstance(error, TimeoutError):
        return "timeout"

    error_str = str(error).lower()
    if any(ind in error_str for ind in ("could not resolve host", "no such host", "curl: (6)")):
        return "dns_error"
    if any(ind in error_str for ind in ("connection refused", "curl: (7)")):
        return "connection_refused"
    if any(ind in error_str for ind in ("timed out", "timeout", "curl: (28)")):
        return "timeout"
    if "ssl" in error_str or "certificate" in error_str:
        return "ssl_error"
    return "unknown"


class AdaptiveFetcher:
    """
    JSON client that solves proof-of-work challenges and retries transient failures.

    Caches, clock, sleep and RNG are injectable; by default each fetcher owns
    fresh in-memory caches and uses a new curl_cffi session per send.
    """

    def __init__(
        self,
        config: FetcherConfig | None = None,
        response_cache: TTLCache[Any] | None = None,
        blocked_cache: TTLCache[BlockedPayload] | None = None,
        metrics: FetchMetrics | None = None,
        session_factory: Callable[[], AsyncSession] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
        solver_executor: Executor | None = None,
    ) -> None:
        self.config = config or FetcherConfig()
        self.response_cache = response_cache or TTLCache(self.config.cache.response_ttl, name="response cache")
        self.blocked_cache = blocked_cache or TTLCache(self.config.cache.blocked_ttl, name="blocked cache")
        self.metrics = metrics or FetchMetrics()
        self._session_factory = session_factory or self._create_session
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._solver_executor = solver_executor

    def _create_session(self) -> AsyncSession:
        """Create a curl_cffi AsyncSession for a single send."""
        return AsyncSession(
            impersonate=self.config.network.impersonate,
            timeout=self.config.network.timeout,
            verify=True,
        )

    async def fetch_json(
        self,
        url: str,
        identity: str | None = None,
        optional: bool = False,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """
        Fetch and parse a JSON resource.

        Args:
            url: Target URL (also the response cache key)
            identity: Caller key for blocked-record caching (e.g. tracking reference)
            optional: Secondary request; a 404 yields ABSENT instead of ClientError
            headers: Extra request headers

        Returns:
            Parsed JSON, ABSENT for a tolerated 404, or the cached BlockedPayload
            when `identity` was blocked less than the blocked TTL ago

        Raises:
            PuzzleError: Challenge could not be decoded or solved
            BlockedError: Challenge persisted after one solved resend
            SolutionRejectedError: Origin answered 422
            RateLimitExceededError: 429 budget exhausted
            ServerError: 5xx budget exhausted
            ClientError: Other non-success status
            ParseError: Success body is not JSON
            NetworkError: No response received
        """
        start_time = time.time()
        trace = _CallTrace()

        try:
            result = await self._fetch(url, identity, optional, headers, trace)
        except PowFetchException as e:
            log_fetch_operation(
                self.metrics,
                url=url,
                status=type(e).__name__,
                sends=trace.sends,
                execution_time_ms=(time.time() - start_time) * 1000,
                challenge_solved=trace.challenge_solved,
                last_status_code=trace.last_status_code,
                identity=identity,
                error_message=e.message,
            )
            raise

        log_fetch_operation(
            self.metrics,
            url=url,
            status=trace.status,
            sends=trace.sends,
            execution_time_ms=(time.time() - start_time) * 1000,
            challenge_solved=trace.challenge_solved,
            last_status_code=trace.last_status_code,
            identity=identity,
        )
        return result

    async def _fetch(
        self,
        url: str,
        identity: str | None,
        optional: bool,
        headers: dict[str, str] | None,
        trace: _CallTrace,
    ) -> Any:
        cached = self.response_cache.lookup(url)
        if cached is not None:
            self.metrics.record_cache_hit()
            trace.status = "cached"
            return cached.value

        if identity is not None:
            blocked = self.blocked_cache.lookup(identity)
            if blocked is not None:
                self.metrics.record_cache_hit(blocked=True)
                logger.info(f"Identity {identity} is blocked (cached), skipping upstream call")
                trace.status = "blocked_cached"
                return blocked.value

        request_headers = dict(self.config.headers.static)
        if headers:
            request_headers.update(headers)

        max_retries = self.config.retry.max_retries

        for attempt in range(max_retries + 1):
            is_last = attempt >= max_retries

            try:
                response = await self._send(url, request_headers, trace)
            except (CurlError, TimeoutError) as e:
                self.metrics.record_send("network_error")
                if is_last:
                    raise NetworkError(
                        f"Request failed after {attempt + 1} attempt(s): {e}",
                        url=url,
                        attempts=attempt + 1,
                        error_code=_categorize_error(e),
                    ) from e
                await self._backoff(url, attempt, f"Network error ({_categorize_error(e)})")
                continue

            outcome = self._classify(url, response)

            if outcome is Outcome.SUCCESS:
                return self._accept(url, response, trace)

            if outcome is Outcome.CHALLENGE_REQUIRED:
                return await self._solve_and_resend(url, request_headers, response, identity, optional, trace)

            if outcome is Outcome.SOLUTION_REJECTED:
                raise SolutionRejectedError(
                    f"HTTP 422 Unprocessable Entity :: {response.snippet or 'Invalid solution'}",
                    url=url,
                    body=response.snippet,
                )

            if not outcome.is_retryable:
                return self._tolerate_not_found(url, response, optional, trace)

            if is_last:
                raise self._budget_exhausted(url, outcome, response, attempt + 1)
            if outcome is Outcome.RATE_LIMITED:
                reason = "HTTP 429 Too Many Requests (Rate Limited)"
            else:
                reason = f"HTTP {response.status_code} (server transient)"
            await self._backoff(url, attempt, reason)

        # Should not reach here, every last attempt returns or raises
        raise NetworkError(f"Failed to fetch after {max_retries} retries", url=url, attempts=max_retries + 1)

    async def _send(self, url: str, headers: dict[str, str], trace: _CallTrace) -> RawResponse:
        """Perform one GET in its own session."""
        kwargs: dict[str, Any] = {"headers": headers, "allow_redirects": True}
        if self.config.network.proxy_url:
            kwargs["proxy"] = self.config.network.proxy_url

        trace.sends += 1
        async with self._session_factory() as session:
            response = await session.get(url, **kwargs)
            raw = RawResponse(
                status_code=response.status_code,
                headers=dict(response.headers),
                text=response.text,
            )

        trace.last_status_code = raw.status_code
        return raw

    def _classify(self, url: str, response: RawResponse) -> Outcome:
        outcome = classify_response(
            response.status_code,
            response.headers,
            self.config.headers.challenge_headers,
        )
        self.metrics.record_send(outcome.value)
        logger.debug(f"{url} -> HTTP {response.status_code} ({outcome.value})")
        return outcome

    async def _backoff(self, url: str, attempt: int, reason: str) -> None:
        retry = self.config.retry
        delay = retry.calculate_backoff(attempt, self._rng)
        self.metrics.record_retry()
        logger.warning(
            f"{reason} | URL: {url} | Attempt: {attempt + 1}/{retry.max_retries + 1} | "
            f"Backoff delay: {delay * 1000:.0f}ms"
        )
        await self._sleep(delay)

    def _accept(self, url: str, response: RawResponse, trace: _CallTrace) -> Any:
        """Parse a success body and store it in the response cache."""
        try:
            data = json.loads(response.text)
        except ValueError as e:
            raise ParseError(
                f"Failed to parse JSON response: {e}",
                url=url,
                content_type=response.content_type,
            ) from e

        self.response_cache.store(url, data)
        trace.status = "success"
        return data

    def _tolerate_not_found(
        self,
        url: str,
        response: RawResponse,
        optional: bool,
        trace: _CallTrace,
        after_solution: bool = False,
    ) -> Any:
        if response.status_code == 404 and optional:
            logger.debug(f"No data available for optional request {url} (HTTP 404)")
            trace.status = "absent"
            return ABSENT

        suffix = " after proof-of-work solution" if after_solution else ""
        raise ClientError(
            f"HTTP {response.status_code}{suffix}" + (f" :: {response.snippet}" if response.snippet else ""),
            url=url,
            status_code=response.status_code,
            body=response.snippet,
        )

    def _budget_exhausted(
        self,
        url: str,
        outcome: Outcome,
        response: RawResponse,
        attempts: int,
    ) -> PowFetchException:
        if outcome is Outcome.RATE_LIMITED:
            return RateLimitExceededError(
                f"HTTP 429 Too Many Requests (Rate Limited) after {attempts} attempt(s)",
                url=url,
                status_code=response.status_code,
                attempts=attempts,
            )
        return ServerError(
            f"HTTP {response.status_code} after {attempts} attempt(s)",
            url=url,
            status_code=response.status_code,
            attempts=attempts,
        )

    async def _solve_and_resend(
        self,
        url: str,
        headers: dict[str, str],
        response: RawResponse,
        identity: str | None,
        optional: bool,
        trace: _CallTrace,
    ) -> Any:
        """Solve the challenge and resend exactly once; the resend is terminal."""
        challenge = extract_challenge(response.headers, self.config.headers.challenge_headers)
        solve_start = time.time()

        try:
            descriptors = decode_challenge(challenge or "")
            solutions = await solve_challenge(
                descriptors,
                max_iterations=self.config.solver.max_iterations,
                executor=self._solver_executor,
            )
        except PuzzleError as e:
            self.metrics.record_challenge()
            logger.warning(f"Could not solve challenge for {url}: {e}")
            e.url = e.url or url
            raise

        self.metrics.record_challenge((time.time() - solve_start) * 1000)
        trace.challenge_solved = True

        resend_headers = dict(headers)
        resend_headers[self.config.headers.solution_header] = encode_solution(solutions)

        try:
            retry_response = await self._send(url, resend_headers, trace)
        except (CurlError, TimeoutError) as e:
            self.metrics.record_send("network_error")
            raise NetworkError(
                f"Resend with solution failed: {e}",
                url=url,
                attempts=1,
                error_code=_categorize_error(e),
            ) from e

        outcome = self._classify(url, retry_response)

        if outcome is Outcome.SUCCESS:
            return self._accept(url, retry_response, trace)

        if outcome is Outcome.SOLUTION_REJECTED:
            logger.warning(f"Solution rejected (HTTP 422) for {url}")
            raise SolutionRejectedError(
                "HTTP 422 Unprocessable Entity :: Invalid solution"
                + (f" :: {retry_response.snippet}" if retry_response.snippet else ""),
                url=url,
                body=retry_response.snippet,
            )

        if outcome is Outcome.CHALLENGE_REQUIRED:
            payload = BlockedPayload(
                reason=(
                    "Proof-of-work solution was generated but the request still returned HTTP 429 "
                    f"with a new challenge. URL: {url}"
                ),
                upstream=UpstreamInfo(url=url, status=retry_response.status_code, has_challenge_header=True),
            )
            if identity is not None:
                self.blocked_cache.store(identity, payload)
            logger.warning(f"Blocked by persistent challenge: {url} (identity={identity})")
            raise BlockedError(payload.reason, url=url, payload=payload)

        return self._tolerate_not_found(url, retry_response, optional, trace, after_solution=True)
