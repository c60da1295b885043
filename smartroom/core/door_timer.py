from __future__ import annotations

from dataclasses import dataclass


@dataclass
class DoorTimer:
    """
    Door auto-close countdown.

    States
    ------
    - INACTIVE: ``remaining == 0``
    - COUNTING(n): ``remaining == n > 0``

    :meth:`arm` always resets to the full interval, it never adds to the
    remaining time. The caller owns the 1-second tick source and calls
    :meth:`tick` once per period.

    Parameters
    ----------
    interval_s
        Countdown length in ticks (seconds).
    """

    interval_s: int = 2
    remaining: int = 0

    def __post_init__(self) -> None:
        if self.interval_s < 1:
            raise ValueError("interval_s must be >= 1")

    @property
    def active(self) -> bool:
        return self.remaining > 0

    def arm(self) -> None:
        self.remaining = self.interval_s

    def cancel(self) -> None:
        self.remaining = 0

    def tick(self) -> bool:
        """
        Advance the countdown by one tick.

        Returns
        -------
        bool
            True exactly once, on the tick that reaches zero.
        """
        if self.remaining <= 0:
            return False
        self.remaining -= 1
        return self.remaining == 0
