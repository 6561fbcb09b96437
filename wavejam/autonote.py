"""
Autonomous note scheduler.

Fires server-generated note triggers at randomized intervals while
autoNote.active is set.

STATES:
    Idle   no timer pending
    Armed  one fire pending

TRANSITIONS (driven by configure(), which reads state.autoNote):
    Idle  -> Armed   active false->true: fire one note now, then arm
    Armed -> Armed   every fire: pick next delay from the current speed, re-arm
    Armed -> Armed   speed change while active: pending fire is kept, new
                     speed applies from the next delay computation
    *     -> Idle    active false: cancel the pending fire

DELAY:
    base  = slow - (slow - fast) * speed / 100
    delay = max(floor, base * uniform(jitter_min, jitter_max))
"""

import math
import random
from dataclasses import dataclass
from typing import Optional, Sequence

from wavejam.log import get_logger
from wavejam.relay import AUTO_ORIGINATOR, NOTE_EVENT
from wavejam.scales import SCALE_TABLE
from wavejam.timers import OneShotTimer

logger = get_logger(__name__)

IDLE = "idle"
ARMED = "armed"


@dataclass
class AutoNoteTiming:
    """Timing constants for the scheduler (all seconds)."""
    slow_interval: float = 3.0
    fast_interval: float = 0.12
    jitter_min: float = 0.5
    jitter_max: float = 1.5
    min_delay: float = 0.08
    duration_base: float = 0.2
    duration_span: float = 0.8

    def validate(self) -> None:
        """Raises ValueError on inconsistent constants."""
        if not 0 < self.fast_interval <= self.slow_interval:
            raise ValueError(
                f"auto_note intervals need 0 < fast <= slow, got "
                f"fast={self.fast_interval} slow={self.slow_interval}"
            )
        if not 0 < self.jitter_min <= self.jitter_max:
            raise ValueError(
                f"auto_note jitter needs 0 < min <= max, got "
                f"{self.jitter_min}-{self.jitter_max}"
            )
        if self.min_delay <= 0:
            raise ValueError(f"auto_note min_delay must be > 0, got {self.min_delay}")
        if self.duration_base <= 0 or self.duration_span < 0:
            raise ValueError("auto_note note durations must be positive")


def compute_delay(speed: int, jitter: float, timing: AutoNoteTiming) -> float:
    """Delay until the next fire for a speed in 0-100 and a jitter factor."""
    speed = min(max(speed, 0), 100)
    base = timing.slow_interval - (timing.slow_interval - timing.fast_interval) * speed / 100.0
    return max(timing.min_delay, base * jitter)


def select_note(pitches: Sequence[str], random_x: float, random_y: float,
                timing: AutoNoteTiming) -> Optional[dict]:
    """Map two uniform randoms onto a note from pitches.

    random_x picks the duration, random_y picks the pitch with high values
    landing low in the scale. Returns None when pitches is empty.

    Examples:
        >>> select_note(['C2', 'D2'], 0.0, 0.99, AutoNoteTiming())['pitch']
        'C2'
    """
    if not pitches:
        return None
    index = min(int(math.floor((1.0 - random_y) * len(pitches))), len(pitches) - 1)
    return {
        'pitch': pitches[index],
        'duration': timing.duration_base + random_x * timing.duration_span,
        'normX': random_x,
        'normY': random_y,
        'originator': AUTO_ORIGINATOR,
    }


class AutoNoteScheduler:
    """Re-arming one-shot note generator.

    Args:
        state: SharedState (reads autoNote and scale)
        relay: BroadcastRelay, notes go out with global fan-out
        clock: Object with call_later(delay, callback)
        timing: AutoNoteTiming constants
        rng: random.Random for jitter and note selection
    """

    def __init__(self, state, relay, clock, timing: Optional[AutoNoteTiming] = None,
                 rng: Optional[random.Random] = None):
        self.state = state
        self.relay = relay
        self.timing = timing or AutoNoteTiming()
        self.rng = rng or random.Random()
        self.timer = OneShotTimer(clock)
        self.active = False
        self.fire_count = 0
        self.last_delay: Optional[float] = None

    @property
    def status(self) -> str:
        return ARMED if self.timer.pending else IDLE

    def configure(self) -> None:
        """Apply the current state.autoNote setting."""
        setting = self.state.auto_note
        if not setting['active']:
            if self.active or self.timer.pending:
                logger.info("Auto notes stopped")
            self.active = False
            self.timer.cancel()
            return

        if self.active:
            # Keep the pending fire; the new speed is read at the next re-arm
            logger.debug(f"Auto note speed now {setting['speed']}")
            return

        self.active = True
        logger.info(f"Auto notes started (speed {setting['speed']})")
        self._fire()

    def stop(self) -> None:
        self.active = False
        self.timer.cancel()

    def next_delay(self) -> float:
        jitter = self.rng.uniform(self.timing.jitter_min, self.timing.jitter_max)
        return compute_delay(self.state.auto_note['speed'], jitter, self.timing)

    def _fire(self) -> None:
        if not self.active:
            return

        pitches = SCALE_TABLE.get(self.state.scale, ())
        random_x = self.rng.random()
        random_y = self.rng.random()
        note = select_note(pitches, random_x, random_y, self.timing)
        if note is None:
            logger.warning(f"Scale {self.state.scale!r} has no pitches, skipping auto note")
        else:
            self.fire_count += 1
            self.relay.stats.increment('auto_notes')
            self.relay.everyone(NOTE_EVENT, note, originator=AUTO_ORIGINATOR)
            logger.debug(f"Auto note {note['pitch']} ({note['duration']:.2f}s)")

        self.last_delay = self.next_delay()
        self.timer.arm(self.last_delay, self._fire)
