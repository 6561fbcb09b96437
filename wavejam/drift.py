"""
Parameter drift engine.

While autoDrift.active is set, a fixed-period timer perturbs the shared
params and now and then corrupts the waveform buffer. Every tick ends with a
global sync_params broadcast; a corrupted buffer also goes out in full as
sync_waveform.

STRATEGIES:
    random_walk  1-2 eligible params per tick, each either warped to a fresh
                 random value (warp_probability) or nudged by a small signed
                 step
    oscillator   one designated param follows a slow sine (plus a little
                 noise) while one other eligible param random-walks

Params flagged expensive are never touched. Every write goes through
SharedState.set_param, which clamps into the param's range.
"""

import math
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from wavejam.log import get_logger
from wavejam.state import PARAM_SPECS
from wavejam.timers import OneShotTimer

logger = get_logger(__name__)

RANDOM_WALK = "random_walk"
OSCILLATOR = "oscillator"
STRATEGIES = (RANDOM_WALK, OSCILLATOR)


@dataclass
class DriftSettings:
    interval: float = 0.5
    strategy: str = RANDOM_WALK
    drift_step: float = 0.05            # fraction of the param's span
    warp_probability: float = 0.2
    oscillator_param: str = 'FILTER_CUTOFF'
    phase_step: float = 0.05            # radians per tick
    oscillator_noise: float = 0.02
    corrupt_every: int = 4              # ticks
    corrupt_probability: float = 0.6
    corrupt_small: float = 0.025
    corrupt_large: float = 0.25
    corrupt_large_probability: float = 0.1

    def validate(self) -> None:
        """Raises ValueError on bad settings."""
        if self.interval <= 0:
            raise ValueError(f"drift interval must be > 0, got {self.interval}")
        if self.strategy not in STRATEGIES:
            raise ValueError(
                f"Unknown drift strategy: {self.strategy}\n"
                f"Available strategies: {', '.join(STRATEGIES)}"
            )
        if self.oscillator_param not in PARAM_SPECS:
            raise ValueError(f"Unknown oscillator param: {self.oscillator_param}")
        if PARAM_SPECS[self.oscillator_param].expensive:
            raise ValueError(f"Oscillator param {self.oscillator_param} is flagged expensive")
        if self.corrupt_every < 1:
            raise ValueError(f"corrupt_every must be >= 1, got {self.corrupt_every}")
        for name in ('warp_probability', 'corrupt_probability', 'corrupt_large_probability'):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be 0-1, got {value}")


def eligible_params() -> List[str]:
    return [key for key, spec in PARAM_SPECS.items() if not spec.expensive]


class ParamDriftEngine:
    """Periodic param drift and waveform corruption.

    Args:
        state: SharedState
        relay: BroadcastRelay (global fan-out)
        clock: Object with call_later(delay, callback)
        settings: DriftSettings
        rng: numpy Generator (np.random.default_rng() if omitted)
    """

    def __init__(self, state, relay, clock, settings: Optional[DriftSettings] = None,
                 rng: Optional[np.random.Generator] = None):
        self.state = state
        self.relay = relay
        self.settings = settings or DriftSettings()
        self.settings.validate()
        self.rng = rng if rng is not None else np.random.default_rng()
        self.timer = OneShotTimer(clock)
        self.eligible = eligible_params()
        self.phase = 0.0
        self.tick_count = 0

    @property
    def running(self) -> bool:
        return self.timer.pending

    def configure(self) -> None:
        """Start or stop according to state.autoDrift.active.

        Turning on always restarts from phase 0 and tick 0.
        """
        if self.state.auto_drift['active']:
            self.phase = 0.0
            self.tick_count = 0
            self.timer.arm(self.settings.interval, self._on_timer)
            logger.info(f"Drift started ({self.settings.strategy}, every {self.settings.interval}s)")
        else:
            if self.timer.pending:
                logger.info("Drift stopped")
            self.timer.cancel()

    def stop(self) -> None:
        self.timer.cancel()

    def _on_timer(self) -> None:
        self.tick()
        if self.state.auto_drift['active']:
            self.timer.arm(self.settings.interval, self._on_timer)

    # ------------------------------------------------------------------------
    # TICK
    # ------------------------------------------------------------------------

    def tick(self) -> dict:
        """Run one drift step and broadcast the results.

        Returns:
            The params mapping after the step
        """
        self.tick_count += 1

        if self.settings.strategy == OSCILLATOR:
            self._oscillate()
        else:
            count = int(self.rng.integers(1, 3))
            for key in self.rng.choice(self.eligible, size=count, replace=False):
                self._walk(str(key))

        params = self.state.params
        self.relay.stats.increment('drift_ticks')
        self.relay.everyone('sync_params', params)

        if self.tick_count % self.settings.corrupt_every == 0:
            if self.rng.random() < self.settings.corrupt_probability:
                waveform = self.corrupt_waveform()
                self.relay.everyone('sync_waveform', waveform)
        return params

    def _walk(self, key: str) -> None:
        spec = PARAM_SPECS[key]
        if self.rng.random() < self.settings.warp_probability:
            value = spec.low + self.rng.random() * spec.span
        else:
            step = self.settings.drift_step * spec.span
            value = self.state.params[key] + self.rng.uniform(-step, step)
        self.state.set_param(key, value)

    def _oscillate(self) -> None:
        target = self.settings.oscillator_param
        spec = PARAM_SPECS[target]

        self.phase += self.settings.phase_step
        noise = self.rng.uniform(-self.settings.oscillator_noise, self.settings.oscillator_noise)
        level = 0.5 + 0.5 * math.sin(self.phase) + noise
        self.state.set_param(target, spec.low + level * spec.span)

        others = [key for key in self.eligible if key != target]
        if others:
            self._walk(str(self.rng.choice(others)))

    def corrupt_waveform(self) -> list:
        """Add noise to every sample, clip to [-1, 1] and store the result."""
        s = self.settings
        wave = np.asarray(self.state.value('waveform'), dtype=float)
        small = self.rng.uniform(-s.corrupt_small, s.corrupt_small, wave.size)
        large = self.rng.uniform(-s.corrupt_large, s.corrupt_large, wave.size)
        mask = self.rng.random(wave.size) < s.corrupt_large_probability
        wave = np.clip(wave + np.where(mask, large, small), -1.0, 1.0)

        is_valid, stored, error_msg = self.state.replace_field('waveform', wave.tolist())
        if not is_valid:
            # stored buffer length differs from WAVE_SIZE
            logger.error(f"Corrupted waveform rejected: {error_msg}")
            return self.state.value('waveform')
        logger.debug(f"Waveform corrupted ({int(mask.sum())} large hits)")
        return stored
