from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Optional, Tuple

from smartroom.domain.models import SensorState


@dataclass
class SimulatedReadings:
    """
    Random-walk temperature and gas readings used while no broker is reachable.

    Each :meth:`step` nudges the current snapshot values by a uniform random
    amount and clamps them to a plausible band, so the alarm latch and the UI
    have live data before the first successful connect.

    Parameters
    ----------
    temp_step
        Maximum absolute temperature change per step (°C).
    gas_step
        Maximum absolute gas change per step (ppm).
    temp_range, gas_range
        Clamp bands for the walk.
    seed
        RNG seed for deterministic runs; None for a random seed.
    """

    temp_step: float = 0.4
    gas_step: float = 15.0
    temp_range: Tuple[float, float] = (18.0, 60.0)
    gas_range: Tuple[float, float] = (50.0, 4000.0)
    seed: Optional[int] = None

    _rng: random.Random = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._rng = random.Random(self.seed)

    def step(self, state: SensorState) -> Tuple[float, float]:
        """
        Compute the next (temperature, gas_level) pair from ``state``.
        """
        t = state.temperature + self._rng.uniform(-self.temp_step, self.temp_step)
        g = state.gas_level + self._rng.uniform(-self.gas_step, self.gas_step)
        t = max(self.temp_range[0], min(self.temp_range[1], t))
        g = max(self.gas_range[0], min(self.gas_range[1], g))
        return round(t, 2), round(g, 1)
