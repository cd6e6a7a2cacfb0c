"""
PIN gate for human-verified pairing.

The host shows a short numeric code; the peer's user types it back. A code
lives for PIN_TIMEOUT seconds and tolerates PIN_MAX_ATTEMPTS wrong guesses.
Timers run on the event loop and are canceled without blocking.
"""

import asyncio
import logging
import math
import random
import time
from collections.abc import Callable
from enum import Enum
from typing import NamedTuple

from cryptography.hazmat.primitives import constant_time

from config import PIN_LENGTH, PIN_MAX_ATTEMPTS, PIN_TIMEOUT

logger = logging.getLogger(__name__)


class PinOutcome(str, Enum):
    SUCCESS = "success"
    WRONG_CODE = "wrong_code"
    EXPIRED = "expired"
    LOCKED_OUT = "locked_out"


class PinResult(NamedTuple):
    outcome: PinOutcome
    attempts_remaining: int = 0


class PinGate:
    """Owns at most one active PIN and the policy for checking it."""

    def __init__(
        self,
        timeout: float = PIN_TIMEOUT,
        max_attempts: int = PIN_MAX_ATTEMPTS,
        length: int = PIN_LENGTH,
        on_expired: Callable[[], None] | None = None,
        on_tick: Callable[[int], None] | None = None,
        rng: random.Random | None = None,
        time_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._length = length
        self._rng = rng or random.SystemRandom()
        self._time_fn = time_fn

        self.on_expired = on_expired
        self.on_tick = on_tick

        self._code: str | None = None
        self._deadline = 0.0
        self._failed_attempts = 0
        self._stale_codes: set[str] = set()
        self._expiry_handle: asyncio.TimerHandle | None = None
        self._tick_handle: asyncio.TimerHandle | None = None

    @property
    def is_active(self) -> bool:
        return self._code is not None and self._time_fn() < self._deadline

    @property
    def code(self) -> str | None:
        return self._code if self.is_active else None

    @property
    def failed_attempts(self) -> int:
        return self._failed_attempts

    @property
    def seconds_remaining(self) -> int:
        """Whole seconds left on the countdown, for display."""
        if not self.is_active:
            return 0
        return max(0, math.ceil(self._deadline - self._time_fn()))

    def generate(self) -> str:
        """Issue a fresh code, replacing any active one. Needs a running loop."""
        loop = asyncio.get_running_loop()
        if self._code is not None:
            self._stale_codes.add(self._code)
        self._cancel_timers()

        code = "".join(str(self._rng.randrange(10)) for _ in range(self._length))
        self._stale_codes.discard(code)
        self._code = code
        self._failed_attempts = 0
        self._deadline = self._time_fn() + self._timeout

        self._expiry_handle = loop.call_later(self._timeout, self._expire)
        self._tick_handle = loop.call_later(1.0, self._tick)
        logger.info(f"Generated PIN, valid for {self._timeout}s")
        self._notify_tick()
        return code

    def verify(self, candidate: str) -> PinResult:
        if not self.is_active:
            self._clear()
            return PinResult(PinOutcome.EXPIRED)

        matches = constant_time.bytes_eq(
            candidate.encode("utf-8"), self._code.encode("utf-8")
        )
        if matches:
            logger.info("PIN verified")
            self.cancel()
            return PinResult(PinOutcome.SUCCESS)

        if candidate in self._stale_codes:
            logger.info("Peer answered with a superseded PIN")
            return PinResult(PinOutcome.EXPIRED)

        self._failed_attempts += 1
        remaining = self._max_attempts - self._failed_attempts
        if remaining <= 0:
            logger.warning(f"PIN locked out after {self._failed_attempts} failed attempts")
            self.cancel()
            return PinResult(PinOutcome.LOCKED_OUT)

        logger.info(f"Wrong PIN, {remaining} attempts remaining")
        return PinResult(PinOutcome.WRONG_CODE, remaining)

    def cancel(self) -> None:
        """Destroy the active PIN, if any. Safe after the timer has fired."""
        self._clear()
        self._stale_codes.clear()

    def _clear(self) -> None:
        self._cancel_timers()
        self._code = None
        self._failed_attempts = 0

    def _cancel_timers(self) -> None:
        for handle in (self._expiry_handle, self._tick_handle):
            if handle is not None:
                handle.cancel()
        self._expiry_handle = None
        self._tick_handle = None

    def _expire(self) -> None:
        self._expiry_handle = None
        if self._code is None:
            return
        logger.info("PIN expired without verification")
        self._stale_codes.add(self._code)
        self._clear()
        self._notify_tick()
        if self.on_expired:
            self.on_expired()

    def _tick(self) -> None:
        self._tick_handle = None
        if not self.is_active:
            return
        self._notify_tick()
        self._tick_handle = asyncio.get_running_loop().call_later(1.0, self._tick)

    def _notify_tick(self) -> None:
        if self.on_tick:
            self.on_tick(self.seconds_remaining)
