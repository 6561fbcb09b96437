"""
Shared instrument state - the single source of truth replicated to sessions.

STATE (wire names, camelCase as sent to clients):
- waveform:  128 floats in [-1, 1]
- adsr:      {attack, decay, sustain, release}
- mixer:     {synth, drone} in dB
- eq:        {low, mid, high} each {freq, gain}
- scale:     key into SCALE_TABLE
- autoNote:  {active, speed}
- autoDrift: {active}
- params:    PARAM_SPECS key -> number

MUTATION:
Every write goes through a validator first. Validators return
(is_valid, normalized_value, error_message) and never touch state, so a
malformed update can't leave a field half-written. Accepted values replace
the whole field; params are the exception and are upserted one key at a time
with clamping.
"""

import copy
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from wavejam.scales import DEFAULT_SCALE, is_valid_scale

WAVE_SIZE = 128

ADSR_KEYS = ('attack', 'decay', 'sustain', 'release')
MIXER_KEYS = ('synth', 'drone')
EQ_BANDS = ('low', 'mid', 'high')

MIXER_MIN_DB = -60.0
MIXER_MAX_DB = 12.0
EQ_MAX_FREQ = 20000.0
EQ_MAX_GAIN_DB = 24.0

AUTO_NOTE_SPEED_MIN = 0
AUTO_NOTE_SPEED_MAX = 100

ValidationResult = Tuple[bool, Any, Optional[str]]


@dataclass(frozen=True)
class ParamSpec:
    """Range and type of one control parameter.

    expensive params are skipped by the drift engine (changing them
    reallocates voices on every client).
    """
    low: float
    high: float
    default: float
    integer: bool = False
    expensive: bool = False

    @property
    def span(self) -> float:
        return self.high - self.low

    def clamp(self, value: float):
        value = min(max(value, self.low), self.high)
        if self.integer:
            return int(round(value))
        return float(value)


PARAM_SPECS: Dict[str, ParamSpec] = {
    'FILTER_CUTOFF': ParamSpec(0.0, 1.0, 0.7),
    'FILTER_RESONANCE': ParamSpec(0.0, 1.0, 0.2),
    'LFO_RATE': ParamSpec(0.0, 1.0, 0.25),
    'LFO_DEPTH': ParamSpec(0.0, 1.0, 0.1),
    'DELAY_MIX': ParamSpec(0.0, 1.0, 0.2),
    'DELAY_FEEDBACK': ParamSpec(0.0, 1.0, 0.35),
    'REVERB_MIX': ParamSpec(0.0, 1.0, 0.3),
    'DISTORTION': ParamSpec(0.0, 1.0, 0.0),
    'DRONE_DETUNE': ParamSpec(0.0, 1.0, 0.15),
    'UNISON_VOICES': ParamSpec(1, 5, 1, integer=True, expensive=True),
    'UNISON_SPREAD': ParamSpec(0.0, 100.0, 20.0),
}


# ============================================================================
# VALIDATION FUNCTIONS
# ============================================================================

def as_number(value) -> Optional[float]:
    """Return value as a finite float, or None if it isn't a real number.

    bool is rejected even though it subclasses int.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        value = float(value)
    except OverflowError:
        # JSON ints have no size limit
        return None
    if not math.isfinite(value):
        return None
    return value


def _require_mapping(value, keys, label) -> Tuple[Optional[dict], Optional[str]]:
    if not isinstance(value, dict):
        return None, f"{label} must be an object, got {type(value).__name__}"
    missing = [k for k in keys if k not in value]
    if missing:
        return None, f"{label} missing {', '.join(missing)}"
    return value, None


def validate_waveform(value) -> ValidationResult:
    """Validate a waveform buffer: exactly WAVE_SIZE real numbers.

    Samples are clamped into [-1, 1].

    Examples:
        >>> validate_waveform([0.0] * 128)[0]
        True
        >>> validate_waveform([0.0] * 64)
        (False, None, 'Waveform must have 128 samples, got 64')
    """
    if not isinstance(value, (list, tuple)):
        return False, None, f"Waveform must be a list, got {type(value).__name__}"
    if len(value) != WAVE_SIZE:
        return False, None, f"Waveform must have {WAVE_SIZE} samples, got {len(value)}"

    samples = []
    for i, raw in enumerate(value):
        sample = as_number(raw)
        if sample is None:
            return False, None, f"Waveform sample {i} is not a number: {raw!r}"
        samples.append(min(max(sample, -1.0), 1.0))
    return True, samples, None


def validate_adsr(value) -> ValidationResult:
    """Validate an envelope: attack/decay/release > 0 s, sustain level in (0, 1]."""
    value, error = _require_mapping(value, ADSR_KEYS, "ADSR")
    if error:
        return False, None, error

    adsr = {}
    for key in ADSR_KEYS:
        number = as_number(value[key])
        if number is None:
            return False, None, f"ADSR {key} is not a number: {value[key]!r}"
        if key == 'sustain':
            if not 0.0 < number <= 1.0:
                return False, None, f"ADSR sustain must be > 0 and <= 1, got {number}"
        elif number <= 0.0:
            return False, None, f"ADSR {key} must be > 0, got {number}"
        adsr[key] = number
    return True, adsr, None


def validate_mixer(value) -> ValidationResult:
    value, error = _require_mapping(value, MIXER_KEYS, "Mixer")
    if error:
        return False, None, error

    mixer = {}
    for key in MIXER_KEYS:
        number = as_number(value[key])
        if number is None:
            return False, None, f"Mixer {key} is not a number: {value[key]!r}"
        if not MIXER_MIN_DB <= number <= MIXER_MAX_DB:
            return False, None, (
                f"Mixer {key} must be {MIXER_MIN_DB}-{MIXER_MAX_DB} dB, got {number}"
            )
        mixer[key] = number
    return True, mixer, None


def validate_eq(value) -> ValidationResult:
    """Validate a three-band EQ: freq in (0, 20000] Hz, gain in [-24, 24] dB."""
    value, error = _require_mapping(value, EQ_BANDS, "EQ")
    if error:
        return False, None, error

    eq = {}
    for band in EQ_BANDS:
        settings, error = _require_mapping(value[band], ('freq', 'gain'), f"EQ {band}")
        if error:
            return False, None, error
        freq = as_number(settings['freq'])
        gain = as_number(settings['gain'])
        if freq is None or not 0.0 < freq <= EQ_MAX_FREQ:
            return False, None, f"EQ {band} freq must be 0-{EQ_MAX_FREQ} Hz, got {settings['freq']!r}"
        if gain is None or abs(gain) > EQ_MAX_GAIN_DB:
            return False, None, f"EQ {band} gain must be ±{EQ_MAX_GAIN_DB} dB, got {settings['gain']!r}"
        eq[band] = {'freq': freq, 'gain': gain}
    return True, eq, None


def validate_scale(value) -> ValidationResult:
    if not is_valid_scale(value):
        return False, None, f"Unknown scale: {value!r}"
    return True, value, None


def validate_auto_note(value) -> ValidationResult:
    """Validate {active, speed}; speed is rounded and clamped to 0-100."""
    value, error = _require_mapping(value, ('active', 'speed'), "autoNote")
    if error:
        return False, None, error
    if not isinstance(value['active'], bool):
        return False, None, f"autoNote active must be boolean, got {value['active']!r}"
    speed = as_number(value['speed'])
    if speed is None:
        return False, None, f"autoNote speed is not a number: {value['speed']!r}"
    speed = int(round(min(max(speed, AUTO_NOTE_SPEED_MIN), AUTO_NOTE_SPEED_MAX)))
    return True, {'active': value['active'], 'speed': speed}, None


def validate_auto_drift(value) -> ValidationResult:
    value, error = _require_mapping(value, ('active',), "autoDrift")
    if error:
        return False, None, error
    if not isinstance(value['active'], bool):
        return False, None, f"autoDrift active must be boolean, got {value['active']!r}"
    return True, {'active': value['active']}, None


def validate_param(key, value) -> ValidationResult:
    """Validate a single param write, clamping into the param's range.

    Examples:
        >>> validate_param('UNISON_VOICES', 9)
        (True, 5, None)
        >>> validate_param('NOPE', 0.5)
        (False, None, "Unknown param: 'NOPE'")
    """
    spec = PARAM_SPECS.get(key) if isinstance(key, str) else None
    if spec is None:
        return False, None, f"Unknown param: {key!r}"
    number = as_number(value)
    if number is None:
        return False, None, f"Param {key} value is not a number: {value!r}"
    return True, spec.clamp(number), None


FIELD_VALIDATORS = {
    'waveform': validate_waveform,
    'adsr': validate_adsr,
    'mixer': validate_mixer,
    'eq': validate_eq,
    'scale': validate_scale,
    'autoNote': validate_auto_note,
    'autoDrift': validate_auto_drift,
}


# ============================================================================
# DEFAULTS
# ============================================================================

def default_waveform():
    """One sine cycle across the buffer."""
    return [math.sin((i / WAVE_SIZE) * math.pi * 2) for i in range(WAVE_SIZE)]


def default_params():
    return {key: spec.default for key, spec in PARAM_SPECS.items()}


def default_fields() -> dict:
    return {
        'waveform': default_waveform(),
        'adsr': {'attack': 0.1, 'decay': 0.2, 'sustain': 0.5, 'release': 1.5},
        # Synth sits slightly above the drone
        'mixer': {'synth': -4.0, 'drone': -6.0},
        # Low boost, tame highs
        'eq': {
            'low': {'freq': 100.0, 'gain': 4.0},
            'mid': {'freq': 1000.0, 'gain': -2.0},
            'high': {'freq': 5000.0, 'gain': -6.0},
        },
        'scale': DEFAULT_SCALE,
        'autoNote': {'active': False, 'speed': 50},
        'autoDrift': {'active': False},
        'params': default_params(),
    }


# ============================================================================
# SHARED STATE
# ============================================================================

class SharedState:
    """Authoritative instrument state owned by the server process.

    Constructed once at startup and handed to the relay, the scheduler and
    the drift engine. All mutation goes through replace_field, replace_scale
    and set_param; readers get deep copies.

    Not thread-safe on its own: every caller runs on the one asyncio loop.
    """

    def __init__(self):
        self._fields = default_fields()

    def get(self) -> dict:
        """Full snapshot, safe to serialize or hand to a session."""
        return copy.deepcopy(self._fields)

    def value(self, name: str):
        """Copy of a single field. Raises KeyError for unknown names."""
        return copy.deepcopy(self._fields[name])

    @property
    def scale(self) -> str:
        return self._fields['scale']

    @property
    def auto_note(self) -> dict:
        return dict(self._fields['autoNote'])

    @property
    def auto_drift(self) -> dict:
        return dict(self._fields['autoDrift'])

    @property
    def params(self) -> dict:
        return dict(self._fields['params'])

    def replace_field(self, name: str, value) -> ValidationResult:
        """Validate and replace a whole field.

        Returns:
            Tuple of (is_valid, new_value, error_message). new_value is a
            copy of what was stored; state is untouched when is_valid is False.
        """
        validator = FIELD_VALIDATORS.get(name)
        if validator is None:
            return False, None, f"Unknown field: {name!r}"

        is_valid, normalized, error_msg = validator(value)
        if not is_valid:
            return False, None, error_msg

        self._fields[name] = normalized
        return True, copy.deepcopy(normalized), None

    def replace_scale(self, name) -> ValidationResult:
        return self.replace_field('scale', name)

    def set_param(self, key, value) -> ValidationResult:
        """Validate, clamp and upsert one param without touching the others."""
        is_valid, normalized, error_msg = validate_param(key, value)
        if not is_valid:
            return False, None, error_msg

        self._fields['params'][key] = normalized
        return True, normalized, None
