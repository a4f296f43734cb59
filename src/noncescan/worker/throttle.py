from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Awaitable, Callable


logger = logging.getLogger("worker")

MEASURE_INTERVAL = 2000  # milliseconds
COOLDOWN_TIME = 1000  # milliseconds
HASH_THRESHOLD = 0.7


def monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclasses.dataclass
class ThrottleState:
    samples_since_measurement: int = 0
    window_start: float | None = None
    baseline_rate: float | None = None
    cooldown_pending: bool = False
    turbo_enabled: bool = False


class ThrottleGovernor:
    """Insert cooldowns when the scoring rate drops below a fraction of its baseline.

    The baseline is the rate of the first complete measurement window and is
    never recalibrated. Turbo mode bypasses measurement and cooldown entirely.
    """

    def __init__(
        self,
        measure_interval: float = MEASURE_INTERVAL,
        cooldown_time: float = COOLDOWN_TIME,
        hash_threshold: float = HASH_THRESHOLD,
        turbo: bool = False,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[object]] | None = None,
    ):
        self.measure_interval = measure_interval
        self.cooldown_time = cooldown_time
        self.hash_threshold = hash_threshold
        self.clock = clock if clock is not None else monotonic_ms
        self.sleep = sleep if sleep is not None else asyncio.sleep
        self.state = ThrottleState(turbo_enabled=turbo)

    @property
    def turbo(self) -> bool:
        return self.state.turbo_enabled

    def set_turbo(self, enabled: bool):
        if enabled != self.state.turbo_enabled:
            logger.info("Turbo mode %s", "enabled" if enabled else "disabled")
        self.state.turbo_enabled = enabled

    def resume(self):
        """Discard the open window; the next step starts a fresh one."""
        self.state.samples_since_measurement = 0
        self.state.window_start = None

    def measure(self):
        """Count one scoring operation and evaluate the window if it elapsed."""
        state = self.state
        state.samples_since_measurement += 1
        now = self.clock()
        if state.window_start is None:
            state.window_start = now
            return
        elapsed = now - state.window_start
        if elapsed < self.measure_interval:
            return

        current_rate = state.samples_since_measurement * 1000 / elapsed
        if state.baseline_rate is None:
            state.baseline_rate = current_rate
            logger.info("Baseline rate established: %.2f/s", current_rate)
        else:
            ratio = current_rate / state.baseline_rate
            if ratio < self.hash_threshold:
                logger.info(
                    "Rate dropped to %.0f%% of baseline (%.2f/s), cooling down",
                    ratio * 100,
                    current_rate,
                )
                state.cooldown_pending = True

        state.samples_since_measurement = 0
        state.window_start = now

    async def step(self) -> bool:
        """Run once per scoring operation. Returns True if a cooldown was applied."""
        if self.state.turbo_enabled:
            return False

        self.measure()

        if not self.state.cooldown_pending:
            return False
        try:
            await self.sleep(self.cooldown_time / 1000)
        finally:
            self.state.cooldown_pending = False
        return True
