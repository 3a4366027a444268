"""
Trivial avatar animations: a head sway while the AI talks and a breathing bob
while idle.
"""

import math
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import numpy as np

TALK_DURATION_MS = 2000.0
TALK_FREQUENCY = 0.005  # radians per millisecond
TALK_AMPLITUDE = 0.05   # radians

class TalkAnimation:
    """Sways the model around its vertical axis, then restores the original yaw."""

    def __init__(self, base_yaw: float = 0.0, duration_ms: float = TALK_DURATION_MS,
                 clock: Callable[[], float] = time.monotonic):
        self.base_yaw = base_yaw
        self.duration_ms = duration_ms
        self._clock = clock
        self._started_at: Optional[float] = None

    def start(self):
        self._started_at = self._clock()

    @property
    def active(self) -> bool:
        return self._started_at is not None and self.elapsed_ms() < self.duration_ms

    def elapsed_ms(self) -> float:
        if self._started_at is None:
            return 0.0
        return (self._clock() - self._started_at) * 1000.0

    @property
    def finished(self) -> bool:
        return self._started_at is not None and not self.active

    def yaw(self) -> float:
        """Current yaw; exactly ``base_yaw`` before start and after the sway ends."""
        if not self.active:
            return self.base_yaw
        return self.base_yaw + math.sin(self.elapsed_ms() * TALK_FREQUENCY) * TALK_AMPLITUDE

@dataclass
class IdleBreathing:
    """Looping keyframe track for the chest height offset."""
    times: List[float] = field(default_factory=lambda: [0.0, 1.0, 2.0])
    values: List[float] = field(default_factory=lambda: [0.0, 0.02, 0.0])

    @property
    def duration(self) -> float:
        return self.times[-1]

    def sample(self, t: float) -> float:
        """Linear interpolation at ``t`` seconds, wrapping around the clip length."""
        if self.duration <= 0:
            return self.values[0]
        return float(np.interp(t % self.duration, self.times, self.values))
