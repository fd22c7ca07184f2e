"""
core/autonomy.py

Growth by ratio, not by accumulation.

Each beat the scalar is multiplied by PHI, nudged by a slow sinusoidal
drift. When the product leaves the representable range it returns to
unity and the cycle begins again.

The scalar is read by the ledger as a damping divisor for tension.
"""

from __future__ import annotations

import logging
import os
import sys
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np

from solar_ledger.services.pulse import PeriodicTask

logger = logging.getLogger(__name__)


PHI = (1 + np.sqrt(5)) / 2
UNITY = 1.0
BEAT = 1.0                    # Seconds between ticks
DRIFT_AMPLITUDE = 0.001

OVERFLOW_CYCLE = "cycle"          # Return to UNITY past the float range
OVERFLOW_UNBOUNDED = "unbounded"  # Let the scalar reach inf
OVERFLOW_MODES = (OVERFLOW_CYCLE, OVERFLOW_UNBOUNDED)


@dataclass
class AutonomyConfig:
    """Configuration for the growth process."""
    beat: float = BEAT
    ratio: float = PHI
    drift_amplitude: float = DRIFT_AMPLITUDE   # 0 disables the drift
    overflow_mode: str = OVERFLOW_CYCLE

    def __post_init__(self):
        if self.overflow_mode not in OVERFLOW_MODES:
            raise ValueError(f"Unknown overflow mode: {self.overflow_mode}")

    @classmethod
    def from_env(cls) -> AutonomyConfig:
        """Create config from environment variables."""
        return cls(
            beat=float(os.environ.get("SOLAR_LEDGER_BEAT", str(BEAT))),
            drift_amplitude=float(
                os.environ.get("SOLAR_LEDGER_DRIFT", str(DRIFT_AMPLITUDE))
            ),
            overflow_mode=os.environ.get("SOLAR_LEDGER_OVERFLOW", OVERFLOW_CYCLE),
        )


TickListener = Callable[[float], object]


class Autonomy:
    """
    A scalar that grows on its own schedule.

    Takes no input from anything it influences. Callers observe it
    through get_power() or by registering tick listeners.
    """

    def __init__(self, config: Optional[AutonomyConfig] = None):
        self.config = config or AutonomyConfig()

        self.origin = UNITY
        self.phase = 0

        self._listeners: List[TickListener] = []
        self._lock = threading.Lock()
        self._pulse = PeriodicTask(
            interval=self.config.beat,
            callback=self.rebalance,
            name="autonomy",
        )

    # ==================== Lifecycle ====================

    @property
    def is_active(self) -> bool:
        return self._pulse.is_active

    def start(self) -> None:
        """Begin ticking. No-op if already running."""
        if self.is_active:
            return
        self._pulse.start()
        logger.info(f"Autonomy started (beat={self.config.beat}s)")

    def stop(self) -> None:
        """Halt the timer. No-op if not running."""
        if not self.is_active:
            return
        self._pulse.stop()
        logger.info(f"Autonomy stopped at phase {self.phase}")

    def reset(self) -> None:
        """Return to the origin without touching the timer."""
        with self._lock:
            self.origin = UNITY
            self.phase = 0

    # ==================== Growth ====================

    def rebalance(self) -> float:
        """
        Advance one tick and return the new scalar.

        origin *= ratio + drift_amplitude * sin(phase / PHI)
        """
        with self._lock:
            self.phase += 1

            drift = float(np.sin(self.phase / PHI))
            factor = float(self.config.ratio) + self.config.drift_amplitude * drift

            # Python floats overflow to inf rather than raising
            self.origin = self.origin * factor

            if (
                self.config.overflow_mode == OVERFLOW_CYCLE
                and self.origin > sys.float_info.max
            ):
                logger.debug(f"Scalar overflowed at phase {self.phase}, cycling to unity")
                self.origin = UNITY

            power = self.origin

        self._notify(power)
        return power

    def get_power(self) -> float:
        """Current scalar. No side effects."""
        return self.origin

    get_current_value = get_power

    # ==================== Listeners ====================

    def add_listener(self, callback: TickListener) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: TickListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self, power: float) -> None:
        for callback in list(self._listeners):
            try:
                callback(power)
            except Exception as e:
                logger.error(f"Tick listener {callback!r} failed: {e}")

    def __repr__(self) -> str:
        return (
            f"Autonomy(power={self.origin:.4g}, "
            f"phase={self.phase}, "
            f"active={self.is_active})"
        )
