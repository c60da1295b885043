"""
Stress tests for StateStore concurrency.

Several writer threads push readings, thresholds and actuator changes while
reader threads take snapshots. The alarm invariant must hold in every
snapshot any thread observes, and alarm transitions must strictly alternate.

Notes
-----
Threading tests are probabilistic: they increase confidence but do not prove
the absence of races. Run multiple times for higher confidence.
"""

from __future__ import annotations

import random
import threading
from typing import List

import pytest

from smartroom.core.state_store import StateStore
from smartroom.domain.events import AlarmTransition
from smartroom.domain.models import SensorState


def _invariant(s: SensorState) -> bool:
    return s.alarm_active == (s.temperature >= s.temp_threshold or s.gas_level >= s.gas_threshold)


@pytest.mark.stress
def test_state_store_invariant_under_concurrent_writers() -> None:
    store = StateStore(max_history=100_000)
    start = threading.Barrier(8)
    errors: List[BaseException] = []
    stop = threading.Event()

    def writer(tid: int) -> None:
        rng = random.Random(tid)
        try:
            start.wait()
            for _ in range(2000):
                kind = rng.randrange(4)
                if kind == 0:
                    store.update(temperature=rng.uniform(10, 90))
                elif kind == 1:
                    store.update(gas_level=rng.uniform(50, 4000))
                elif kind == 2:
                    store.update(temp_threshold=rng.uniform(20, 80), gas_threshold=rng.uniform(100, 4000))
                else:
                    store.update(fan1_on=rng.random() < 0.5, buzzer_on=rng.random() < 0.5)
        except BaseException as e:
            errors.append(e)

    def reader() -> None:
        try:
            start.wait()
            while not stop.is_set():
                s = store.snapshot()
                if not _invariant(s):
                    raise AssertionError(f"invariant broken: {s!r}")
        except BaseException as e:
            errors.append(e)

    writers = [threading.Thread(target=writer, args=(i,)) for i in range(4)]
    readers = [threading.Thread(target=reader) for _ in range(4)]
    for t in writers + readers:
        t.start()
    for t in writers:
        t.join(timeout=30)
    stop.set()
    for t in readers:
        t.join(timeout=5)

    assert all(not t.is_alive() for t in writers + readers), "A thread did not finish (possible deadlock)"
    if errors:
        raise AssertionError(f"Concurrency test caught exceptions: {errors!r}")

    assert _invariant(store.snapshot())
    transitions = [e.transition for e in store.alarm_events]
    for a, b in zip(transitions, transitions[1:]):
        assert a is not b
    if transitions:
        assert transitions[0] is AlarmTransition.RAISED
