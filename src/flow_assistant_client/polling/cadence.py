from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CadencePolicy:
    min_interval_ms: int = 500
    max_interval_ms: int = 5000
    growth_factor: float = 1.5
    empty_poll_threshold: int = 10

    def __post_init__(self) -> None:
        if self.min_interval_ms <= 0:
            raise ValueError("min_interval_ms must be positive")
        if self.max_interval_ms < self.min_interval_ms:
            raise ValueError("max_interval_ms must be >= min_interval_ms")
        if self.growth_factor < 1.0:
            raise ValueError("growth_factor must be >= 1.0")
        if self.empty_poll_threshold < 1:
            raise ValueError("empty_poll_threshold must be >= 1")

    def clamp(self, interval_ms: float) -> int:
        return int(min(self.max_interval_ms, max(self.min_interval_ms, interval_ms)))


class AdaptiveCadence:
    """Staircase backoff for quiet sessions.

    The interval grows by ``growth_factor`` only after ``empty_poll_threshold``
    consecutive empty polls, and drops back to the floor on any non-empty poll.
    """

    def __init__(self, policy: CadencePolicy | None = None):
        self._policy = policy or CadencePolicy()
        self._current_interval_ms = self._policy.min_interval_ms
        self._empty_poll_streak = 0

    @property
    def policy(self) -> CadencePolicy:
        return self._policy

    @property
    def current_interval_ms(self) -> int:
        return self._current_interval_ms

    @property
    def empty_poll_streak(self) -> int:
        return self._empty_poll_streak

    def record(self, event_count: int) -> int:
        if event_count > 0:
            self._current_interval_ms = self._policy.min_interval_ms
            self._empty_poll_streak = 0
            return self._current_interval_ms

        self._empty_poll_streak += 1
        if self._empty_poll_streak >= self._policy.empty_poll_threshold:
            self._current_interval_ms = self._policy.clamp(
                self._current_interval_ms * self._policy.growth_factor
            )
            self._empty_poll_streak = 0
        return self._current_interval_ms

    def reset(self, initial_interval_ms: int | None = None) -> None:
        if initial_interval_ms is None:
            self._current_interval_ms = self._policy.min_interval_ms
        else:
            self._current_interval_ms = self._policy.clamp(initial_interval_ms)
        self._empty_poll_streak = 0
