"""Bounded exponential backoff for connection retries.

Used by ConnectionManager to space out reconnect attempts after an
unexpected close, and to give up after a fixed number of consecutive
failures instead of retrying forever in the background.
"""

import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class ReconnectBackoff:
    """delay(n) = min(base_interval * 2**(n-1), max_delay) for attempt n >= 1."""

    base_interval: float = 3.0
    max_delay: float = 30.0
    max_attempts: int = 10
    label: str = "connection"

    _attempt: int = field(default=0, init=False, repr=False)

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def exhausted(self) -> bool:
        return self._attempt >= self.max_attempts

    def delay_for(self, attempt: int) -> float:
        if attempt < 1:
            return 0.0
        return min(self.base_interval * (2 ** (attempt - 1)), self.max_delay)

    def next_delay(self) -> float | None:
        """Consume one attempt and return its delay, or None once exhausted."""
        if self.exhausted:
            logger.warning(
                "Giving up on %s after %d reconnect attempts",
                self.label,
                self._attempt,
            )
            return None
        self._attempt += 1
        return self.delay_for(self._attempt)

    def reset(self) -> None:
        self._attempt = 0
