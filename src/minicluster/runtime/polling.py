from __future__ import annotations

import time
from typing import Callable, Optional, Protocol, TypeVar

T = TypeVar("T")


class Clock(Protocol):
    """Time source used by every bounded wait in the harness."""

    def monotonic(self) -> float:
        ...

    def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Wall-clock implementation backed by the `time` module."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


def poll_until(
    attempt: Callable[[float], Optional[T]],
    *,
    timeout_seconds: float,
    interval_seconds: float,
    on_timeout: Callable[[], Exception],
    clock: Optional[Clock] = None,
) -> T:
    """Run `attempt` every `interval_seconds` until it returns a value or the deadline passes.

    The deadline is computed once at entry. `attempt` receives the remaining
    time and returns None to keep polling; exceptions it raises propagate
    unchanged. When no time remains, the exception built by `on_timeout` is
    raised.
    """
    clock = clock or SystemClock()
    deadline = clock.monotonic() + timeout_seconds

    while True:
        remaining = deadline - clock.monotonic()
        if remaining <= 0:
            raise on_timeout()

        result = attempt(remaining)
        if result is not None:
            return result

        clock.sleep(interval_seconds)
