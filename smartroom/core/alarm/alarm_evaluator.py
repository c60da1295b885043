"""
Alarm latch evaluator.

This module is pure: it never touches the store, the clock or the broker. It
decides, for one candidate snapshot, whether the alarm is active and which
actuator fields the latch forces.

Latch Model
-----------
- ``alarm_active = temperature >= temp_threshold or gas_level >= gas_threshold``
- Rising edge (inactive -> active): buzzer, fan 1 and fan 2 are forced on.
- Falling edge (active -> inactive): buzzer is forced off. Fans keep whatever
  state they have; the operator switches them off by hand.
- Steady active: buzzer stays forced on. Fans remain operator-controlled.
- Steady inactive: when a reading or threshold changed, the buzzer follows the
  alarm (off), which ends a manual buzzer test. Otherwise the operator's
  buzzer value stands.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import FrozenSet, Optional, Tuple

from smartroom.domain.events import AlarmTransition
from smartroom.domain.models import SensorState

ALARM_INPUT_FIELDS: FrozenSet[str] = frozenset({"temperature", "gas_level", "temp_threshold", "gas_threshold"})


@dataclass(frozen=True)
class AlarmDecision:
    """
    Result of one alarm evaluation.

    Parameters
    ----------
    active
        Whether the alarm is active for the evaluated snapshot.
    transition
        RAISED on a rising edge, CLEARED on a falling edge, otherwise None.
    forced
        Names of actuator fields whose value the latch changed.
    """

    active: bool
    transition: Optional[AlarmTransition] = None
    forced: FrozenSet[str] = frozenset()


def is_alarm(state: SensorState) -> bool:
    return state.temperature >= state.temp_threshold or state.gas_level >= state.gas_threshold


def inputs_changed(before: SensorState, after: SensorState) -> bool:
    return any(getattr(before, f) != getattr(after, f) for f in ALARM_INPUT_FIELDS)


def evaluate(before: SensorState, candidate: SensorState, changed: Optional[bool] = None) -> AlarmDecision:
    """
    Decide the alarm state and latch effects for a candidate snapshot.

    Parameters
    ----------
    before
        Snapshot prior to the mutation (provides the previous alarm state).
    candidate
        Snapshot after the mutation, before the latch is applied.
    changed
        Whether any alarm input changed. Computed from the two snapshots
        when None.

    Returns
    -------
    AlarmDecision
        Active flag, edge (if any) and the actuator fields the latch flips.
    """
    active = is_alarm(candidate)
    was_active = before.alarm_active
    if changed is None:
        changed = inputs_changed(before, candidate)

    if active and not was_active:
        transition: Optional[AlarmTransition] = AlarmTransition.RAISED
        target = {"buzzer_on": True, "fan1_on": True, "fan2_on": True}
    elif was_active and not active:
        transition = AlarmTransition.CLEARED
        target = {"buzzer_on": False}
    elif active:
        transition = None
        target = {"buzzer_on": True}
    elif changed:
        transition = None
        target = {"buzzer_on": False}
    else:
        transition = None
        target = {}

    forced = frozenset(k for k, v in target.items() if getattr(candidate, k) != v)
    return AlarmDecision(active=active, transition=transition, forced=forced)


def settle(before: SensorState, candidate: SensorState) -> Tuple[SensorState, AlarmDecision]:
    """
    Recompute ``alarm_active`` and apply the latch to a candidate snapshot.

    Returns
    -------
    (SensorState, AlarmDecision)
        The settled snapshot (invariant holds) and the decision that produced it.
    """
    decision = evaluate(before, candidate)
    # Forced fields are booleans that differ from the candidate.
    flips = {k: not getattr(candidate, k) for k in decision.forced}
    settled = replace(candidate, alarm_active=decision.active, **flips)
    return settled, decision