from __future__ import annotations

import time
import warnings
from typing import Callable, Optional, Sequence, Union

import numpy as np
import pandas as pd
import zarr
from joblib import Parallel, delayed
from sklearn.isotonic import IsotonicRegression

from amplitude_core import (
    DEFAULT_N_ANGLE, DEFAULT_THETA_SPAN_DEG,
    AmplitudeProvider, default_amplitudes,
)
from calibration_table_core import CalibrationTable
from detector_core import Detector, efficiency_profile
from detector_response_core import DEFAULT_DPHI_DEG, DEFAULT_DR, detector_response
from particle_core import Particle
from scatter_errors import (
    AmbiguousInversion, InvalidInput, OutOfRange,
)

# -------------------------------
# Constants and centralized defaults
# -------------------------------

# EV radii 10..500 nm in 5 nm steps
DEFAULT_DIAMETER_SERIES_NM = np.arange(20.0, 1000.0 + 1e-9, 10.0)

DEFAULT_SIZE_PARAM  = "SSC-H"
DEFAULT_SIZE_COLUMN = "Size (nm)"

ParticleFactory = Callable[[float], Particle]

# -------------------------------
# Table build + calibration
# -------------------------------

def _signal_for_diameter(
    d: float,
    particle_factory: ParticleFactory,
    detector: Detector,
    amplitude_provider: AmplitudeProvider,
    dr: float,
    dphi: float,
    n_angle: int,
    theta_span_deg: float,
) -> float:
    return detector_response(
        particle_factory(d), detector, dr=dr, dphi=dphi,
        amplitude_provider=amplitude_provider,
        n_angle=n_angle, theta_span_deg=theta_span_deg,
    )


def build_table(
    detector: Detector,
    particle_factory: ParticleFactory,
    diameter_series: Sequence[float] = DEFAULT_DIAMETER_SERIES_NM,
    *,
    amplitude_provider: AmplitudeProvider = default_amplitudes,
    dr: float = DEFAULT_DR,
    dphi: float = DEFAULT_DPHI_DEG,
    n_angle: int = DEFAULT_N_ANGLE,
    theta_span_deg: float = DEFAULT_THETA_SPAN_DEG,
    n_jobs: int = 1,
    backend: str = "threads",
    verbose: bool = False,
) -> CalibrationTable:
    """
    Sweep `particle_factory(d)` over diameter_series and record the predicted
    detector response for each diameter.

    Each diameter is independent, so the sweep runs through joblib
    (`n_jobs`, `backend`); the result is re-sorted by diameter. A table that
    is not monotone in signal (Mie resonances) is returned with a
    RuntimeWarning; `invert` rejects lookups that land in a folded region.
    """
    if not isinstance(detector, Detector):
        raise InvalidInput("Please create a valid detector using Detector(...).")
    D = np.atleast_1d(np.asarray(diameter_series, float))
    if D.ndim != 1 or D.size < 2:
        raise InvalidInput("diameter_series needs at least 2 diameters.")
    if np.any(~np.isfinite(D)) or np.any(D <= 0):
        raise InvalidInput("diameter_series must contain positive, finite diameters.")
    if np.unique(D).size != D.size:
        raise InvalidInput("diameter_series contains repeated diameters.")

    t0 = time.perf_counter()
    if verbose:
        print(f"[mie-transform] {D.size} diameters {D.min():g}..{D.max():g}, n_jobs={n_jobs}", flush=True)

    vals = Parallel(n_jobs=n_jobs, prefer=backend)(
        delayed(_signal_for_diameter)(
            float(d), particle_factory, detector, amplitude_provider,
            dr, dphi, n_angle, theta_span_deg,
        )
        for d in D
    )
    table = CalibrationTable.from_pairs(D, np.asarray(vals, dtype=float))

    if verbose:
        print(f"done (elapsed {time.perf_counter()-t0:.2f}s)", flush=True)
    if not table.is_monotone():
        warnings.warn(
            "Calibration table is not monotone in signal (Mie resonance folding); "
            "inversion will fail for signals in the folded region.",
            RuntimeWarning,
        )
    return table


def calibrate(
    detector: Detector,
    reference_particle: Union[Particle, Callable[[], Particle]],
    reference_signal: float,
    *,
    particle_factory: Optional[ParticleFactory] = None,
    diameter_series: Optional[Sequence[float]] = None,
    amplitude_provider: AmplitudeProvider = default_amplitudes,
    dr: float = DEFAULT_DR,
    dphi: float = DEFAULT_DPHI_DEG,
    n_angle: int = DEFAULT_N_ANGLE,
    theta_span_deg: float = DEFAULT_THETA_SPAN_DEG,
    n_jobs: int = 1,
    backend: str = "threads",
    verbose: bool = False,
) -> Detector:
    """
    Solve the detector gain from one measured reference population.

        gain = reference_signal / response(reference_particle, detector with gain 1)

    `reference_particle` is a Particle (e.g. create_ps(200)) or a zero-argument
    callable returning one. With `particle_factory`, the calibrated detector
    also carries the table built over `diameter_series` (20..1000 nm by default).
    Returns a new Detector; the input is left untouched.
    """
    if not isinstance(detector, Detector):
        raise InvalidInput("Please create a valid detector using Detector(...).")
    ref = float(reference_signal)
    if not np.isfinite(ref) or ref <= 0:
        raise InvalidInput(f"reference_signal must be positive and finite, got {reference_signal!r}.")
    particle = reference_particle if isinstance(reference_particle, Particle) else reference_particle()

    unit = detector.with_gain(1.0)
    raw = detector_response(particle, unit, dr=dr, dphi=dphi,
                            amplitude_provider=amplitude_provider,
                            n_angle=n_angle, theta_span_deg=theta_span_deg)
    if not np.isfinite(raw) or raw <= 0:
        raise InvalidInput(f"Reference particle gives a non-positive response ({raw!r}); cannot solve gain.")

    calibrated = detector.with_gain(ref / raw)
    if verbose:
        print(f"[mie-transform] gain = {calibrated.gain:.6g} (raw reference response {raw:.6g})", flush=True)

    if particle_factory is not None:
        series = DEFAULT_DIAMETER_SERIES_NM if diameter_series is None else diameter_series
        table = build_table(calibrated, particle_factory, series,
                            amplitude_provider=amplitude_provider, dr=dr, dphi=dphi,
                            n_angle=n_angle, theta_span_deg=theta_span_deg,
                            n_jobs=n_jobs, backend=backend, verbose=verbose)
        calibrated = calibrated.with_table(table)
    return calibrated

# -------------------------------
# Inversion
# -------------------------------

def _as_table(table) -> CalibrationTable:
    if isinstance(table, Detector):
        if table.table is None:
            raise InvalidInput("Detector carries no calibration table; run calibrate(..., particle_factory=...) first.")
        return table.table
    if not isinstance(table, CalibrationTable):
        raise InvalidInput("Expected a CalibrationTable or a calibrated Detector.")
    return table


def invert(table: Union[CalibrationTable, Detector], observed_signal: float) -> float:
    """
    Diameter whose predicted signal equals `observed_signal`, by linear
    interpolation between the bracketing table rows.

    Negative signals are clamped to 0 first. Signals outside the table's
    range raise OutOfRange (no extrapolation); signals reached by more than
    one diameter raise AmbiguousInversion.
    """
    tab = _as_table(table)
    obs = float(observed_signal)
    if np.isnan(obs):
        raise InvalidInput("observed_signal is NaN.")
    obs = max(obs, 0.0)

    d, s = tab.diameters, tab.signals
    smin, smax = tab.signal_range
    if obs < smin or obs > smax:
        raise OutOfRange(f"Signal {obs:g} is outside the calibrated range [{smin:g}, {smax:g}].")

    nodes = np.flatnonzero(s == obs)
    above = np.sign(s - obs)
    cross = np.flatnonzero(above[:-1] * above[1:] < 0)

    roots = [float(d[i]) for i in nodes]
    for i in cross:
        roots.append(float(d[i] + (obs - s[i]) * (d[i+1] - d[i]) / (s[i+1] - s[i])))

    if len(roots) > 1:
        shown = ", ".join(f"{r:g}" for r in sorted(roots))
        raise AmbiguousInversion(f"Signal {obs:g} maps to {len(roots)} diameters ({shown}).")
    return roots[0]


def invert_signals(
    table: Union[CalibrationTable, Detector],
    signals,
    errors: str = "raise",
) -> np.ndarray:
    """
    `invert` over an array of signals. errors='coerce' turns OutOfRange and
    AmbiguousInversion (and NaN input) into NaN instead of raising.
    """
    if errors not in ("raise", "coerce"):
        raise InvalidInput(f"errors must be 'raise' or 'coerce', got {errors!r}.")
    tab = _as_table(table)
    sig = np.asarray(signals, float)
    out = np.empty(sig.shape, float)
    for idx, v in np.ndenumerate(sig):
        try:
            out[idx] = invert(tab, v)
        except (OutOfRange, AmbiguousInversion, InvalidInput):
            if errors == "raise":
                raise
            out[idx] = np.nan
    return out


def flatten_resonances(table: CalibrationTable) -> CalibrationTable:
    """
    Replace a resonance-folded curve by its isotonic fit: every fold becomes
    a horizontal segment, and each plateau collapses to one row at the mean
    of its diameters. The result is strictly monotone. Opt-in only; `invert`
    never does this on its own.
    """
    tab = _as_table(table)
    x, y = tab.diameters, tab.signals
    iso = IsotonicRegression(increasing=bool(y[-1] >= y[0]))
    yhat = iso.fit_transform(x, y)

    vals, inv, counts = np.unique(yhat, return_inverse=True, return_counts=True)
    if vals.size < 2:
        raise InvalidInput("Isotonic fit collapsed to a constant.")
    x_avg = np.bincount(inv, weights=x) / counts
    return CalibrationTable.from_pairs(x_avg, vals)


def append_size_column(
    frame: pd.DataFrame,
    table: Union[CalibrationTable, Detector],
    param: str = DEFAULT_SIZE_PARAM,
    column: str = DEFAULT_SIZE_COLUMN,
    errors: str = "coerce",
) -> pd.DataFrame:
    """
    Copy of `frame` with a per-event size column computed from `param`
    (linear-scale scatter signal). Events that cannot be sized get NaN
    under errors='coerce'.
    """
    if param not in frame.columns:
        raise InvalidInput(f"Column {param!r} not found; available: {list(frame.columns)}.")
    sig = pd.to_numeric(frame[param], errors="coerce").to_numpy(dtype=float)
    out = frame.copy()
    out[column] = invert_signals(table, sig, errors=errors)
    return out

# -------------------------------
# Persistence (zarr)
# -------------------------------

def save_table_zarr(zpath: str, table: CalibrationTable, detector: Optional[Detector] = None) -> str:
    """Write table coords (and detector description, if given) to a zarr store."""
    tab = _as_table(table)
    root = zarr.open(zpath, mode="w")
    coords = root.create_group("coords")
    coords.create_array("diameter", data=np.asarray(tab.diameters, float))
    coords.create_array("signal",   data=np.asarray(tab.signals, float))

    attrs = {
        "description": "Detector response calibration table (diameter -> signal)",
        "n_rows": int(len(tab)),
        "monotone_direction": int(tab.direction),
    }
    if detector is not None:
        attrs["detector"] = {
            "theta_0": float(detector.theta_0),
            "alpha": float(detector.alpha),
            "psi_0": float(detector.psi_0),
            "pol": float(detector.pol),
            "gain": float(detector.gain),
            "efficiency": detector.efficiency.name,
            "eta_fac": None if detector.eta_fac is None else float(detector.eta_fac),
        }
    root.attrs.update(attrs)
    return zpath


def load_table_zarr(zpath: str) -> CalibrationTable:
    z = zarr.open(zpath, mode="r")
    return CalibrationTable(
        z["coords/diameter"][:].astype(float),
        z["coords/signal"][:].astype(float),
    )


def load_detector_zarr(zpath: str) -> Detector:
    """Rebuild the calibrated Detector (with its table) saved by save_table_zarr."""
    z = zarr.open(zpath, mode="r")
    meta = z.attrs.get("detector")
    if meta is None:
        raise InvalidInput(f"{zpath} holds a table but no detector description.")
    return Detector(
        theta_0=meta["theta_0"], alpha=meta["alpha"], psi_0=meta["psi_0"],
        pol=meta["pol"], gain=meta["gain"],
        efficiency=efficiency_profile(meta["efficiency"], meta.get("eta_fac")),
        table=load_table_zarr(zpath),
    )


__all__ = [
    "CalibrationTable",
    "build_table", "calibrate",
    "invert", "invert_signals",
    "flatten_resonances", "append_size_column",
    "save_table_zarr", "load_table_zarr", "load_detector_zarr",
    "DEFAULT_DIAMETER_SERIES_NM",
]
