"""
Cancellable one-shot and periodic timers.

The session core never sleeps on its own thread; it asks a `Scheduler` to call
it back later. Two schedulers are provided:

- `ThreadingScheduler`: real wall-clock timers backed by `threading`.
- `ManualScheduler`: a virtual clock that only moves when `advance()` is
  called. Used by the unit tests and for deterministic replays.

Every handle supports `cancel()`, and both schedulers can cancel everything
they still own (`cancel_all()`), which is what teardown relies on.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Set, Tuple

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class TimerHandle(Protocol):
    """Handle returned by a scheduler; cancelling is idempotent."""

    name: str

    def cancel(self) -> None:
        ...

    @property
    def active(self) -> bool:
        ...


class Scheduler(Protocol):
    """
    Protocol interface for timer scheduling.

    Methods
    -------
    call_later(delay_s, fn, name)
        Run ``fn`` once after ``delay_s`` seconds.
    call_every(period_s, fn, name)
        Run ``fn`` every ``period_s`` seconds until cancelled.
    cancel_all()
        Cancel every handle still pending.
    """

    def call_later(self, delay_s: float, fn: Callback, name: str = "") -> TimerHandle:
        ...

    def call_every(self, period_s: float, fn: Callback, name: str = "") -> TimerHandle:
        ...

    def cancel_all(self) -> None:
        ...


def _run_safely(name: str, fn: Callback) -> None:
    try:
        fn()
    except Exception:
        logger.exception("[TIMER] callback %r failed", name)


# ---------------------------------------------------------------------------
# Wall-clock scheduler
# ---------------------------------------------------------------------------


class _ThreadTimer:
    """One-shot or periodic timer running on its own daemon thread."""

    def __init__(self, owner: "ThreadingScheduler", interval_s: float, fn: Callback, name: str, periodic: bool):
        self.name = name
        self._owner = owner
        self._interval = interval_s
        self._fn = fn
        self._periodic = periodic
        self._cancelled = threading.Event()
        self._done = False
        self._thread = threading.Thread(target=self._run, name=f"timer-{name or 'anon'}", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._cancelled.set()
        self._owner._forget(self)

    @property
    def active(self) -> bool:
        return not self._cancelled.is_set() and not self._done

    def _run(self) -> None:
        while not self._cancelled.wait(self._interval):
            _run_safely(self.name, self._fn)
            if not self._periodic:
                break
        self._done = True
        self._owner._forget(self)


class ThreadingScheduler:
    """
    Scheduler backed by daemon threads.

    Notes
    -----
    Callbacks run on the timer thread. Session code only posts events from
    them, so all state mutation still happens on the session loop.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._live: Set[_ThreadTimer] = set()

    def call_later(self, delay_s: float, fn: Callback, name: str = "") -> _ThreadTimer:
        return self._start(_ThreadTimer(self, delay_s, fn, name, periodic=False))

    def call_every(self, period_s: float, fn: Callback, name: str = "") -> _ThreadTimer:
        return self._start(_ThreadTimer(self, period_s, fn, name, periodic=True))

    def cancel_all(self) -> None:
        with self._lock:
            live = list(self._live)
        for t in live:
            t.cancel()

    def pending(self) -> int:
        with self._lock:
            return len(self._live)

    def _start(self, t: _ThreadTimer) -> _ThreadTimer:
        with self._lock:
            self._live.add(t)
        t.start()
        return t

    def _forget(self, t: _ThreadTimer) -> None:
        with self._lock:
            self._live.discard(t)


# ---------------------------------------------------------------------------
# Virtual clock scheduler
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class _ManualTimer:
    name: str
    due: float
    fn: Callback
    period: Optional[float] = None
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def active(self) -> bool:
        return not self.cancelled


@dataclass
class ManualScheduler:
    """
    Deterministic scheduler driven by an explicit virtual clock.

    Timers fire in due-time order (ties in scheduling order) while
    :meth:`advance` moves the clock forward. Callbacks may schedule or cancel
    other timers; new timers due within the advanced window also fire.

    Attributes
    ----------
    now
        Current virtual time in seconds.
    """

    now: float = 0.0
    _heap: List[Tuple[float, int, _ManualTimer]] = field(default_factory=list, repr=False)
    _seq: "itertools.count[int]" = field(default_factory=itertools.count, repr=False)

    def call_later(self, delay_s: float, fn: Callback, name: str = "") -> _ManualTimer:
        return self._push(_ManualTimer(name=name, due=self.now + delay_s, fn=fn))

    def call_every(self, period_s: float, fn: Callback, name: str = "") -> _ManualTimer:
        return self._push(_ManualTimer(name=name, due=self.now + period_s, fn=fn, period=period_s))

    def cancel_all(self) -> None:
        for _, _, t in self._heap:
            t.cancel()
        self._heap.clear()

    def pending(self) -> int:
        return sum(1 for _, _, t in self._heap if not t.cancelled)

    def pending_names(self) -> List[str]:
        return sorted(t.name for _, _, t in self._heap if not t.cancelled)

    def advance(self, seconds: float) -> None:
        """
        Move the virtual clock forward, firing every timer that becomes due.

        Parameters
        ----------
        seconds
            Amount of virtual time to advance.
        """
        target = self.now + seconds
        while self._heap and self._heap[0][0] <= target + 1e-9:
            due, _, t = heapq.heappop(self._heap)
            if t.cancelled:
                continue
            self.now = due
            if t.period is not None:
                t.due = due + t.period
                heapq.heappush(self._heap, (t.due, next(self._seq), t))
            _run_safely(t.name, t.fn)
        self.now = target

    def _push(self, t: _ManualTimer) -> _ManualTimer:
        heapq.heappush(self._heap, (t.due, next(self._seq), t))
        return t
