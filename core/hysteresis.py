"""Two-level hysteresis decisions.

Two forms exist and are used on different call paths:

``next_state``
    Stateful form driven by the monitor loop.  The rising edge uses the
    bare threshold; only the falling edge is offset by the hysteresis.

``compare``
    Stateless scalar form for the external compare hook.  Both edges are
    offset, symmetrically, by the hysteresis.
"""

from __future__ import annotations


def next_state(prev_out: bool, sample: float, threshold: float, hysteresis: float) -> bool:
    """Return the next digital output for the monitor loop."""
    if not prev_out:
        return sample > threshold
    return not sample < threshold - hysteresis


def compare(sample: float, threshold: float, hysteresis: float, prev_out: float) -> int:
    """Return 1 at or above ``threshold + hysteresis``, 0 at or below
    ``threshold - hysteresis``, else the previous output."""
    if sample >= threshold + hysteresis:
        return 1
    if sample <= threshold - hysteresis:
        return 0
    return int(round(prev_out))
