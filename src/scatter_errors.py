"""Error kinds raised by the detector-response and Mie-transform modules.

All derive from ValueError so callers that already catch ValueError for
bad numerical inputs keep working.
"""
from __future__ import annotations


class ScatterError(ValueError):
    """Base class for every error raised by the scatter core."""


class InvalidInput(ScatterError):
    """Malformed particle, detector, amplitude grid, or integration step."""


class InvalidParameter(InvalidInput):
    """A model parameter outside its admissible range (e.g. eta_fac)."""


class DimensionMismatch(ScatterError):
    """Parallel arrays (S1/S2, theta/amplitudes, diameters/signals) differ in length."""


class AmbiguousInversion(ScatterError):
    """More than one diameter maps to the observed signal (resonance folding)."""


class OutOfRange(ScatterError):
    """Observed signal lies outside the calibration table's signal range."""


__all__ = [
    "ScatterError",
    "InvalidInput",
    "InvalidParameter",
    "DimensionMismatch",
    "AmbiguousInversion",
    "OutOfRange",
]
