"""
Proof-of-Work Fetch - Response Classifier

Maps (status, headers) to one closed outcome kind. The fetcher branches
on the outcome, never on error messages.

Priority:
    1. 200-299                       -> SUCCESS
    2. 429 + challenge header        -> CHALLENGE_REQUIRED
    3. 422                           -> SOLUTION_REJECTED
    4. 429                           -> RATE_LIMITED
    5. 500-599                       -> SERVER_TRANSIENT
    6. anything else (404 included)  -> CLIENT_ERROR
"""

from collections.abc import Iterable, Mapping
from enum import Enum

DEFAULT_CHALLENGE_HEADERS = ("Captcha-Puzzle", "X-Captcha-Puzzle")


class Outcome(str, Enum):
    """Classified outcome of one HTTP exchange."""

    SUCCESS = "success"
    CHALLENGE_REQUIRED = "challenge_required"
    SOLUTION_REJECTED = "solution_rejected"
    RATE_LIMITED = "rate_limited"
    SERVER_TRANSIENT = "server_transient"
    CLIENT_ERROR = "client_error"

    @property
    def is_retryable(self) -> bool:
        """Outcomes handled by backoff-and-retry."""
        return self in (Outcome.RATE_LIMITED, Outcome.SERVER_TRANSIENT)


def extract_challenge(
    headers: Mapping[str, str],
    names: Iterable[str] = DEFAULT_CHALLENGE_HEADERS,
) -> str | None:
    """Return the first non-empty challenge header value (case-insensitive)."""
    lowered = {key.lower(): value for key, value in headers.items()}
    for name in names:
        value = lowered.get(name.lower())
        if value and value.strip():
            return value.strip()
    return None


def classify_response(
    status_code: int,
    headers: Mapping[str, str],
    challenge_headers: Iterable[str] = DEFAULT_CHALLENGE_HEADERS,
) -> Outcome:
    """Classify a response by status code and challenge header presence."""
    if 200 <= status_code <= 299:
        return Outcome.SUCCESS
    if status_code == 429 and extract_challenge(headers, challenge_headers) is not None:
        return Outcome.CHALLENGE_REQUIRED
    if status_code == 422:
        return Outcome.SOLUTION_REJECTED
    if status_code == 429:
        return Outcome.RATE_LIMITED
    if 500 <= status_code <= 599:
        return Outcome.SERVER_TRANSIENT
    return Outcome.CLIENT_ERROR
