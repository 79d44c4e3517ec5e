"""
Unlock Throttle
Brute-force protection for the unlock flow: after a run of wrong
passphrases, every further attempt waits an increasing delay.
"""

import math
import time
from typing import Any, Callable, Dict, Optional, Tuple

from able_account import config


class UnlockThrottle:

    DEFAULT_THRESHOLD = config.LOCKOUT_THRESHOLD
    DEFAULT_MAX_DELAY = config.LOCKOUT_MAX_DELAY

    def __init__(
        self,
        settings: Optional[Dict[str, Any]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            settings: optional {"lockout_threshold": int, "max_lockout_delay": int}
            clock: monotonic time source (injectable for tests)
        """
        self.settings = dict(settings) if settings is not None else {}

        for key in ("lockout_threshold", "max_lockout_delay"):
            if key in self.settings and not isinstance(self.settings[key], int):
                raise ValueError("UnlockThrottle settings must be integers")

        self.threshold = self.settings.get("lockout_threshold", self.DEFAULT_THRESHOLD)
        self.max_delay = self.settings.get("max_lockout_delay", self.DEFAULT_MAX_DELAY)

        if self.threshold <= 0 or self.max_delay < 0:
            raise ValueError("UnlockThrottle settings must be positive")

        self._clock = clock
        self.failed_attempts = 0
        self.last_failure_at: Optional[float] = None

    def record_failure(self) -> None:
        self.failed_attempts += 1
        self.last_failure_at = self._clock()

    def reset(self) -> None:
        self.failed_attempts = 0
        self.last_failure_at = None

    def required_delay(self) -> int:
        """
        Delay owed after the current run of failures.

        With the defaults: 0 for the first three attempts, then
        1, 2, 3 ... seconds, capped at 10.
        """
        if self.failed_attempts < self.threshold:
            return 0
        return min(self.failed_attempts - (self.threshold - 1), self.max_delay)

    def remaining_delay(self) -> float:
        """Part of the required delay not yet elapsed since the last failure."""
        delay = self.required_delay()
        if delay <= 0 or self.last_failure_at is None:
            return 0.0
        elapsed = max(0.0, self._clock() - self.last_failure_at)
        return max(0.0, delay - elapsed)

    def check_and_delay(self) -> Tuple[bool, int]:
        """
        Determine whether a new unlock attempt is allowed right now.

        Returns:
            (allowed, seconds_to_wait)
        """
        remaining = self.remaining_delay()
        if remaining <= 0:
            return True, 0
        return False, int(math.ceil(remaining))

    def wait(self, sleep: Callable[[float], None] = time.sleep) -> float:
        """Block until the next attempt is allowed. Returns the seconds slept."""
        remaining = self.remaining_delay()
        if remaining > 0:
            sleep(remaining)
        return remaining

    def get_status(self) -> dict:
        allowed, delay = self.check_and_delay()
        return {
            "allowed": allowed,
            "delay": delay,
            "failures": self.failed_attempts,
        }
