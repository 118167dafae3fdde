from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from scatter_errors import DimensionMismatch, InvalidInput

# -------------------------------
# Calibration table
# -------------------------------

@dataclass(frozen=True, eq=False)
class CalibrationTable:
    """
    (diameter, signal) pairs sorted by strictly increasing diameter.
    Signal need not be monotone; `invert` refuses ambiguous lookups.
    """
    diameters: np.ndarray
    signals:   np.ndarray

    def __post_init__(self):
        d = np.array(self.diameters, dtype=float)
        s = np.array(self.signals, dtype=float)
        if d.ndim != 1 or s.ndim != 1:
            raise InvalidInput("diameters and signals must be 1-D.")
        if d.size != s.size:
            raise DimensionMismatch(f"{d.size} diameters but {s.size} signals.")
        if d.size < 2:
            raise InvalidInput("A calibration table needs at least 2 rows.")
        if not (np.all(np.isfinite(d)) and np.all(np.isfinite(s))):
            raise InvalidInput("Calibration table contains non-finite values.")
        if np.any(np.diff(d) <= 0):
            raise InvalidInput("Table diameters must increase strictly; use CalibrationTable.from_pairs to sort.")
        d.flags.writeable = False
        s.flags.writeable = False
        object.__setattr__(self, "diameters", d)
        object.__setattr__(self, "signals", s)

    @classmethod
    def from_pairs(cls, diameters, signals) -> "CalibrationTable":
        d = np.asarray(diameters, float)
        s = np.asarray(signals, float)
        if d.shape != s.shape:
            raise DimensionMismatch(f"{d.size} diameters but {s.size} signals.")
        order = np.argsort(d, kind="stable")
        return cls(d[order], s[order])

    def __len__(self) -> int:
        return self.diameters.size

    @property
    def direction(self) -> int:
        """+1 strictly increasing, -1 strictly decreasing, 0 otherwise."""
        ds = np.diff(self.signals)
        if np.all(ds > 0):
            return 1
        if np.all(ds < 0):
            return -1
        return 0

    def is_monotone(self) -> bool:
        return self.direction != 0

    @property
    def signal_range(self):
        return float(self.signals.min()), float(self.signals.max())

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"diameter": self.diameters, "signal": self.signals})


__all__ = ["CalibrationTable"]
