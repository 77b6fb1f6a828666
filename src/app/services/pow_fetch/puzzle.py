"""
Proof-of-Work Fetch - Puzzle Codec

Decodes the inbound challenge credential into puzzle descriptors and
encodes solved nonces into the outbound solution credential.

Wire formats:
    Challenge: base64("<jwt>,<jwt>,...")
               each jwt = header.claims.signature, claims = {"puzzle": base64(bytes), ...}
    Solution:  base64('[{"jwt": "<jwt>", "solution": base64(nonce)}, ...]')
"""

import base64
import binascii
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from .exceptions import FormatError

logger = logging.getLogger(__name__)

NONCE_SIZE = 8


@dataclass(frozen=True)
class PuzzleDescriptor:
    """One puzzle from a challenge: the bearer token and its binary payload."""

    token: str
    payload: bytes

    def __repr__(self) -> str:
        return f"PuzzleDescriptor(token={self.token[:12]}..., payload={len(self.payload)} bytes)"


@dataclass(frozen=True)
class Solution:
    """Solved nonce bound to the token of the puzzle it answers."""

    token: str
    nonce: bytes

    @property
    def nonce_value(self) -> int:
        return int.from_bytes(self.nonce, "little")

    @property
    def encoded_nonce(self) -> str:
        return base64.b64encode(self.nonce).decode("ascii")


def _b64decode(value: str) -> bytes:
    """Decode standard or url-safe base64, with or without padding or line breaks."""
    value = "".join(value.split()).replace("-", "+").replace("_", "/")
    value += "=" * (-len(value) % 4)
    return base64.b64decode(value, validate=True)


def _decode_token(token: str) -> PuzzleDescriptor:
    parts = token.split(".")
    if len(parts) != 3:
        raise FormatError(f"Puzzle token must have 3 segments, got {len(parts)}")

    try:
        claims = json.loads(_b64decode(parts[1]))
    except (binascii.Error, ValueError) as e:
        raise FormatError(f"Puzzle token claims are not decodable: {e}") from e

    if not isinstance(claims, dict):
        raise FormatError("Puzzle token claims are not a JSON object")

    puzzle = claims.get("puzzle")
    if not puzzle or not isinstance(puzzle, str):
        raise FormatError("Missing or invalid puzzle field in token claims")

    try:
        payload = _b64decode(puzzle)
    except (binascii.Error, ValueError) as e:
        raise FormatError(f"Puzzle field is not valid base64: {e}") from e

    return PuzzleDescriptor(token=token, payload=payload)


def decode_challenge(credential: str) -> list[PuzzleDescriptor]:
    """Parse a challenge header value into puzzle descriptors.

    Args:
        credential: Challenge header value exactly as received

    Returns:
        One descriptor per token, in header order

    Raises:
        FormatError: If any layer is malformed or the challenge holds no puzzles
    """
    try:
        text = _b64decode(credential).decode("utf-8")
    except (binascii.Error, ValueError) as e:
        raise FormatError(f"Challenge credential is not decodable: {e}") from e

    tokens = [fragment.strip() for fragment in text.split(",") if fragment.strip()]
    if not tokens:
        raise FormatError("Challenge credential contains no puzzles")

    descriptors = [_decode_token(token) for token in tokens]
    logger.debug(f"Decoded challenge with {len(descriptors)} puzzle(s)")
    return descriptors


def encode_solution(solutions: Sequence[Solution]) -> str:
    """Package solved nonces into the solution header value.

    Entry order mirrors the input order.
    """
    entries = [{"jwt": s.token, "solution": s.encoded_nonce} for s in solutions]
    body = json.dumps(entries, separators=(",", ":"))
    return base64.b64encode(body.encode("utf-8")).decode("ascii")


def parse_solution(credential: str) -> list[Solution]:
    """Inverse of encode_solution, for diagnostics.

    Raises:
        FormatError: If the credential is not a base64 JSON array of {jwt, solution}
    """
    try:
        entries = json.loads(_b64decode(credential))
    except (binascii.Error, ValueError) as e:
        raise FormatError(f"Solution credential is not decodable: {e}") from e

    if not isinstance(entries, list):
        raise FormatError("Solution credential is not a JSON array")

    solutions = []
    for entry in entries:
        if not (
            isinstance(entry, dict)
            and isinstance(entry.get("jwt"), str)
            and isinstance(entry.get("solution"), str)
        ):
            raise FormatError("Solution entry must be an object with string jwt and solution")
        try:
            nonce = _b64decode(entry["solution"])
        except (binascii.Error, ValueError) as e:
            raise FormatError(f"Solution nonce is not valid base64: {e}") from e
        if len(nonce) != NONCE_SIZE:
            raise FormatError(f"Solution nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")
        solutions.append(Solution(token=entry["jwt"], nonce=nonce))
    return solutions
