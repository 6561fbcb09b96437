"""
Scale table - scale name to ordered pitch names.

Each scale is a set of semitone offsets from C, expanded across octaves
2-7. The top octave contributes only its root, so every scale starts on C2
and ends on C7.

    >>> SCALE_TABLE["MAJOR"][:3]
    ('C2', 'D2', 'E2')
    >>> SCALE_TABLE["MAJOR"][-1]
    'C7'
"""

from types import MappingProxyType
from typing import Mapping, Sequence, Tuple

NOTE_NAMES = ('C', 'C#', 'D', 'D#', 'E', 'F', 'F#', 'G', 'G#', 'A', 'A#', 'B')

LOW_OCTAVE = 2
HIGH_OCTAVE = 7

DEFAULT_SCALE = "MYSTERIOUS"

SCALE_OFFSETS = {
    "MAJOR": (0, 2, 4, 5, 7, 9, 11),
    "MINOR": (0, 2, 3, 5, 7, 8, 10),
    "DORIAN": (0, 2, 3, 5, 7, 9, 10),
    "PENTATONIC": (0, 2, 4, 7, 9),
    "BLUES": (0, 3, 5, 6, 7, 10),
    "JAPANESE": (0, 1, 5, 7, 8),
    "MYSTERIOUS": (0, 1, 4, 5, 7, 8, 11),
}


def build_scale(offsets: Sequence[int], low_octave: int = LOW_OCTAVE,
                high_octave: int = HIGH_OCTAVE) -> Tuple[str, ...]:
    """Expand semitone offsets into pitch names from low_octave to high_octave.

    Octaves below high_octave get every offset; high_octave gets only the
    root (offset 0).

    Args:
        offsets: Semitone offsets 0-11, ascending
        low_octave: First octave number
        high_octave: Last octave number (root only)

    Returns:
        Tuple of pitch names, e.g. ('C2', 'D2', ..., 'C7')

    Raises:
        ValueError: If an offset is outside 0-11 or octaves are reversed
    """
    if high_octave < low_octave:
        raise ValueError(f"high_octave {high_octave} < low_octave {low_octave}")
    for offset in offsets:
        if not 0 <= offset <= 11:
            raise ValueError(f"Semitone offset must be 0-11, got {offset}")

    pitches = []
    for octave in range(low_octave, high_octave):
        for offset in offsets:
            pitches.append(f"{NOTE_NAMES[offset]}{octave}")
    pitches.append(f"{NOTE_NAMES[0]}{high_octave}")
    return tuple(pitches)


SCALE_TABLE: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    name: build_scale(offsets) for name, offsets in SCALE_OFFSETS.items()
})


def is_valid_scale(name) -> bool:
    return isinstance(name, str) and name in SCALE_TABLE


def get_pitches(name: str) -> Tuple[str, ...]:
    """Return the pitch sequence for a scale. Raises KeyError if unknown."""
    return SCALE_TABLE[name]
