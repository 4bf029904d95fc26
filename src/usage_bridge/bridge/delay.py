"""Exponential backoff delays between polling passes."""

import math


class DelayGenerator:
    """Deterministic exponential backoff.

    The n-th call to ``next()`` after a reset returns
    ``min(max_interval, min_interval + floor(expm1(n)))``.
    """

    def __init__(self, min_interval: int, max_interval: int) -> None:
        """Initialize the generator.

        Args:
            min_interval: First value returned, in milliseconds.
            max_interval: Upper bound for any returned value, in milliseconds.
        """
        if max_interval < min_interval:
            raise ValueError("max_interval must not be lower than min_interval")
        self._min_interval = min_interval
        self._max_interval = max_interval
        self._attempts = 0

    @property
    def min_interval(self) -> int:
        return self._min_interval

    @property
    def max_interval(self) -> int:
        return self._max_interval

    @property
    def attempts(self) -> int:
        """Number of consecutive ``next()`` calls since the last reset."""
        return self._attempts

    def next(self) -> int:
        """Get the next delay and advance the attempt counter."""
        value = self._min_interval + math.floor(math.expm1(self._attempts))
        if value >= self._max_interval:
            # Capped: keep the counter where it is so expm1 never overflows
            return self._max_interval
        self._attempts += 1
        return value

    def reset(self) -> None:
        """Start over from ``min_interval``."""
        self._attempts = 0
