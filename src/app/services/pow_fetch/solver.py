"""
Proof-of-Work Fetch - Solver

Brute-force search for the smallest nonce whose double SHA-256 falls
below the puzzle's difficulty target.

    target = payload[14] * 2 ** (8 * (payload[13] - 3))
    hash   = int.from_bytes(sha256(sha256(payload[:32] + nonce_le8)), "little")
    accept the first nonce = 0, 1, 2, ... with hash < target

All arithmetic uses Python ints. Puzzles are independent, so a challenge
is solved by fanning its descriptors out to an executor.
"""

import asyncio
import hashlib
import logging
import time
from collections.abc import Sequence
from concurrent.futures import Executor
from functools import partial

from .exceptions import HashInputError, SolveTimeoutError, TargetError
from .puzzle import NONCE_SIZE, PuzzleDescriptor, Solution

logger = logging.getLogger(__name__)

TARGET_MIN_LENGTH = 15
HASH_INPUT_LENGTH = 32
EXPONENT_OFFSET = 13
MULTIPLIER_OFFSET = 14

# Origin difficulty keeps solves in the tens of milliseconds
DEFAULT_MAX_ITERATIONS = 50_000_000


def calculate_target(payload: bytes) -> int:
    """Derive the difficulty target from payload bytes 13 and 14.

    Raises:
        TargetError: If the payload is shorter than 15 bytes or the target is zero
    """
    if len(payload) < TARGET_MIN_LENGTH:
        raise TargetError(
            f"Puzzle payload too short - need at least {TARGET_MIN_LENGTH} bytes",
            payload_length=len(payload),
        )

    exponent = 8 * (payload[EXPONENT_OFFSET] - 3)
    multiplier = payload[MULTIPLIER_OFFSET]
    if exponent >= 0:
        target = multiplier << exponent
    else:
        target = multiplier >> -exponent

    if target == 0:
        raise TargetError("Puzzle difficulty target is zero (unsolvable)", payload_length=len(payload))
    return target


def _hash_prefix(payload: bytes) -> "hashlib._Hash":
    if len(payload) < HASH_INPUT_LENGTH:
        raise HashInputError(
            f"Puzzle payload too short - need at least {HASH_INPUT_LENGTH} bytes",
            payload_length=len(payload),
        )
    return hashlib.sha256(bytes(payload[:HASH_INPUT_LENGTH]))


def _double_hash(prefix: "hashlib._Hash", nonce: bytes) -> int:
    inner = prefix.copy()
    inner.update(nonce)
    return int.from_bytes(hashlib.sha256(inner.digest()).digest(), "little")


def verify_nonce(payload: bytes, nonce: bytes) -> bool:
    """Check a single nonce against the payload's target."""
    prefix = _hash_prefix(payload)
    return _double_hash(prefix, nonce) < calculate_target(payload)


def solve_puzzle(payload: bytes, max_iterations: int = DEFAULT_MAX_ITERATIONS) -> bytes:
    """Find the smallest nonce satisfying the proof-of-work inequality.

    Args:
        payload: Puzzle payload (at least 32 bytes)
        max_iterations: Safety ceiling on nonces tried

    Returns:
        The nonce as 8 little-endian bytes

    Raises:
        HashInputError: If the payload is shorter than 32 bytes
        TargetError: If the target cannot be derived
        SolveTimeoutError: If no nonce is found below the ceiling
    """
    prefix = _hash_prefix(payload)
    target = calculate_target(payload)

    for nonce in range(max_iterations):
        nonce_bytes = nonce.to_bytes(NONCE_SIZE, "little")
        if _double_hash(prefix, nonce_bytes) < target:
            return nonce_bytes

    raise SolveTimeoutError(
        f"No solution found within {max_iterations} iterations",
        iterations=max_iterations,
        target=target,
    )


async def solve_challenge(
    descriptors: Sequence[PuzzleDescriptor],
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    executor: Executor | None = None,
) -> list[Solution]:
    """Solve every puzzle of a challenge concurrently.

    Args:
        descriptors: Decoded puzzles
        max_iterations: Per-puzzle iteration ceiling
        executor: Executor for the CPU-bound search (default loop executor)

    Returns:
        Solutions in the same order as the descriptors
    """
    loop = asyncio.get_running_loop()
    start_time = time.time()

    nonces = await asyncio.gather(
        *(
            loop.run_in_executor(executor, partial(solve_puzzle, d.payload, max_iterations))
            for d in descriptors
        )
    )

    solve_ms = (time.time() - start_time) * 1000
    logger.info(f"Solved {len(descriptors)} puzzle(s) in {solve_ms:.1f}ms")

    return [Solution(token=d.token, nonce=nonce) for d, nonce in zip(descriptors, nonces)]
