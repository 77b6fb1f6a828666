"""
Proof-of-Work Fetch - Adaptive JSON Client

Fetches JSON from an origin that answers with HTTP 429 plus a
Captcha-Puzzle header when it wants proof of work, and with plain 429 or
5xx when it is rate limiting or failing.

Quick Start:
    from src.app.services.pow_fetch import AdaptiveFetcher, FetcherConfig

    fetcher = AdaptiveFetcher(FetcherConfig.from_settings(settings))
    data = await fetcher.fetch_json("https://example.com/api/resource")

Secondary requests that may legitimately 404:
    trip = await fetcher.fetch_json(url, identity=reference, optional=True)
    if trip is ABSENT:
        ...
"""

from .cache import CacheEntry, TTLCache
from .classifier import Outcome, classify_response, extract_challenge
from .client import ABSENT, AdaptiveFetcher, RawResponse
from .config import (
    CacheConfig,
    ConfigLoader,
    FetcherConfig,
    HeadersConfig,
    NetworkConfig,
    RetryConfig,
    SolverConfig,
)
from .exceptions import (
    BlockedError,
    ClientError,
    FormatError,
    HashInputError,
    NetworkError,
    ParseError,
    PowFetchException,
    PuzzleError,
    RateLimitExceededError,
    ServerError,
    SolutionRejectedError,
    SolveTimeoutError,
    TargetError,
)
from .metrics import FetchMetrics, FetchOperationLog, log_fetch_operation
from .puzzle import PuzzleDescriptor, Solution, decode_challenge, encode_solution, parse_solution
from .solver import calculate_target, solve_challenge, solve_puzzle, verify_nonce

__all__ = [
    # Fetcher
    "AdaptiveFetcher",
    "ABSENT",
    "RawResponse",
    # Configuration
    "FetcherConfig",
    "ConfigLoader",
    "RetryConfig",
    "CacheConfig",
    "SolverConfig",
    "HeadersConfig",
    "NetworkConfig",
    # Caches
    "TTLCache",
    "CacheEntry",
    # Classification
    "Outcome",
    "classify_response",
    "extract_challenge",
    # Puzzle codec and solver
    "PuzzleDescriptor",
    "Solution",
    "decode_challenge",
    "encode_solution",
    "parse_solution",
    "calculate_target",
    "solve_puzzle",
    "solve_challenge",
    "verify_nonce",
    # Exceptions
    "PowFetchException",
    "PuzzleError",
    "FormatError",
    "TargetError",
    "HashInputError",
    "SolveTimeoutError",
    "BlockedError",
    "SolutionRejectedError",
    "RateLimitExceededError",
    "ServerError",
    "ClientError",
    "ParseError",
    "NetworkError",
    # Metrics
    "FetchMetrics",
    "FetchOperationLog",
    "log_fetch_operation",
]
