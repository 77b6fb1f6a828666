"""
Proof-of-Work Fetch - Custom Exception Classes

Exception Hierarchy:
    PowFetchException (base)
    |-- PuzzleError              - Challenge could not be decoded or solved
    |   |-- FormatError          - Malformed challenge/solution credential
    |   |-- TargetError          - Payload too short for the difficulty bytes
    |   |-- HashInputError       - Payload too short for the hash input
    |   |-- SolveTimeoutError    - Iteration ceiling exceeded while solving
    |-- BlockedError             - Challenge persisted after one solve attempt
    |-- SolutionRejectedError    - Origin answered 422 to a solution
    |-- RateLimitExceededError   - 429 retry budget exhausted
    |-- ServerError              - 5xx retry budget exhausted
    |-- ClientError              - Non-retryable 4xx
    |-- ParseError               - 2xx body is not JSON
    |-- NetworkError             - No response received
"""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ...schemas.tracking import BlockedPayload


class PowFetchException(Exception):
    """Base exception for all proof-of-work fetch errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        url: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.url = url
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.url:
            parts.append(f"url={self.url}")
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"[{details_str}]")
        return " | ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Serialize exception for logging/API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "url": self.url,
            "retryable": self.retryable,
            "details": self.details,
        }


class PuzzleError(PowFetchException):
    """The challenge could not be decoded or solved.

    Always indicates a protocol mismatch with the origin, never retried.
    """


class FormatError(PuzzleError):
    """Malformed challenge or solution credential."""


class TargetError(PuzzleError):
    """Difficulty target cannot be derived from the payload."""

    def __init__(self, message: str, payload_length: int | None = None) -> None:
        super().__init__(message, details={"payload_length": payload_length})
        self.payload_length = payload_length


class HashInputError(PuzzleError):
    """Payload is shorter than the 32 bytes fed to the hash."""

    def __init__(self, message: str, payload_length: int | None = None) -> None:
        super().__init__(message, details={"payload_length": payload_length})
        self.payload_length = payload_length


class SolveTimeoutError(PuzzleError):
    """No nonce found below the iteration ceiling."""

    def __init__(self, message: str, iterations: int, target: int | None = None) -> None:
        super().__init__(message, details={"iterations": iterations})
        self.iterations = iterations
        self.target = target


class BlockedError(PowFetchException):
    """The origin re-issued a challenge after a solved resend.

    Terminal for the call and cached against the caller identity.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        payload: "BlockedPayload | None" = None,
    ) -> None:
        super().__init__(message, url, {"status_code": 429})
        self.status_code = 429
        self.payload = payload


class SolutionRejectedError(PowFetchException):
    """HTTP 422: the solution was expired, invalid or malformed.

    Solutions are single-use, so only a fresh call can succeed.
    """

    retryable = True

    def __init__(self, message: str, url: str | None = None, body: str | None = None) -> None:
        super().__init__(message, url, {"status_code": 422})
        self.status_code = 422
        self.body = body


class RateLimitExceededError(PowFetchException):
    """HTTP 429 without a challenge, retry budget exhausted."""

    retryable = True

    def __init__(self, message: str, url: str | None = None, status_code: int = 429, attempts: int = 0) -> None:
        super().__init__(message, url, {"status_code": status_code, "attempts": attempts})
        self.status_code = status_code
        self.attempts = attempts


class ServerError(PowFetchException):
    """HTTP 5xx, retry budget exhausted."""

    retryable = True

    def __init__(self, message: str, url: str | None = None, status_code: int = 500, attempts: int = 0) -> None:
        super().__init__(message, url, {"status_code": status_code, "attempts": attempts})
        self.status_code = status_code
        self.attempts = attempts


class ClientError(PowFetchException):
    """Non-retryable client-side HTTP status."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message, url, {"status_code": status_code})
        self.status_code = status_code
        self.body = body


class ParseError(PowFetchException):
    """A success response did not carry valid JSON."""

    def __init__(self, message: str, url: str | None = None, content_type: str | None = None) -> None:
        super().__init__(message, url, {"content_type": content_type})
        self.content_type = content_type


class NetworkError(PowFetchException):
    """No response was received (DNS, connection, TLS, timeout)."""

    retryable = True

    def __init__(self, message: str, url: str | None = None, attempts: int = 0, error_code: str | None = None) -> None:
        super().__init__(message, url, {"attempts": attempts, "error_code": error_code})
        self.attempts = attempts
        self.error_code = error_code
