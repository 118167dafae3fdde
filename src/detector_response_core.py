from __future__ import annotations

from typing import Union

import numpy as np

from amplitude_core import (
    DEFAULT_N_ANGLE, DEFAULT_THETA_SPAN_DEG,
    AmplitudeProvider, ScatteringAmplitudes, StokesElements,
    default_amplitudes, stokes_elements,
)
from detector_core import Detector, DetectorGeometry
from particle_core import Particle
from scatter_errors import InvalidInput

# -------------------------------
# Constants and centralized defaults
# -------------------------------

DEFAULT_DR       = 0.02    # radial step on the unit aperture disk, ~2% accuracy
DEFAULT_DPHI_DEG = 10.0    # azimuthal step [deg]

# Integration runs over the unit disk, so responses are normalized by its area.
APERTURE_AREA = np.pi

# -------------------------------
# Integration grids
# -------------------------------

def _seq(start: float, stop: float, step: float) -> np.ndarray:
    """
    start, start+step, ... up to stop; the end point is kept when it falls on
    the step lattice within a 1e-10 fuzz, and no sample exceeds stop.
    """
    n = int(np.floor((stop - start) / step + 1e-10))
    if n < 0:
        return np.empty(0, float)
    return np.minimum(start + np.arange(n + 1) * step, stop)


def integration_grid(dr: float = DEFAULT_DR, dphi_deg: float = DEFAULT_DPHI_DEG):
    """
    Radial samples r ∈ [0, 1] and azimuthal samples φ ∈ [0, 2π − dφ] [rad].
    """
    if not (np.isfinite(dr) and 0.0 < dr <= 1.0):
        raise InvalidInput(f"dr must be in (0, 1], got {dr!r}.")
    if not (np.isfinite(dphi_deg) and 0.0 < dphi_deg <= 360.0):
        raise InvalidInput(f"dphi must be in (0, 360] degrees, got {dphi_deg!r}.")
    dphi = dphi_deg * np.pi / 180
    return _seq(0.0, 1.0, dr), _seq(0.0, 2 * np.pi - dphi, dphi)


def nearest_index(grid: np.ndarray, values) -> np.ndarray:
    """
    Index of the grid sample nearest to each value; ties go to the first
    occurrence. `grid` must be sorted ascending.
    """
    grid = np.asarray(grid, float)
    v = np.asarray(values, float)
    hi = np.clip(np.searchsorted(grid, v, side="left"), 0, grid.size - 1)
    lo = np.clip(hi - 1, 0, grid.size - 1)
    lo = np.searchsorted(grid, grid[lo], side="left")   # first of any repeated samples
    take_lo = np.abs(grid[lo] - v) <= np.abs(grid[hi] - v)
    return np.where(take_lo, lo, hi)

# -------------------------------
# Detector response
# -------------------------------

def response(
    stokes: Union[StokesElements, ScatteringAmplitudes],
    detector: Detector,
    dr: float = DEFAULT_DR,
    dphi: float = DEFAULT_DPHI_DEG,
) -> float:
    """
    Predicted detector signal for one particle.

        signal = gain/A · Σ_r Σ_φ η(α′)·[S11(θ) + S12(θ)·pol·cos 2ψ]·r·dr·dφ

    with θ, ψ, α′ from the aperture geometry, S11/S12 read at the nearest
    sample of the θ grid (no interpolation) and A = π. Terms are summed in
    order of ascending r, then ascending φ.

    Parameters
    ----------
    stokes : StokesElements or ScatteringAmplitudes
        S11/S12 (or S1/S2, reduced here) on an ascending θ grid [rad].
    detector : Detector
    dr : float
        Radial step on the unit disk.
    dphi : float
        Azimuthal step [deg].
    """
    if isinstance(stokes, ScatteringAmplitudes):
        stokes = stokes_elements(stokes)
    if not isinstance(stokes, StokesElements):
        raise InvalidInput("Pass StokesElements or ScatteringAmplitudes as the particle's scattering data.")
    if not isinstance(detector, Detector):
        raise InvalidInput("Please create a valid detector using Detector(...).")

    r, phi = integration_grid(dr, dphi)
    dphi_rad = dphi * np.pi / 180
    geom = DetectorGeometry.from_detector(detector)

    # C order of (r, φ) meshes == ascending r, then ascending φ
    R, PHI = np.meshgrid(r, phi, indexing="ij")
    theta, psi, alpha_prime = geom.angles(R, PHI)

    idx = nearest_index(stokes.theta, theta)
    s11 = stokes.s11[idx]
    s12 = stokes.s12[idx]

    eff = np.broadcast_to(detector.efficiency(alpha_prime, geom.alpha), R.shape)
    incr = eff * (s11 + s12 * detector.pol * np.cos(2 * psi)) * R * dr * dphi_rad

    flat = incr.ravel()
    ssc = float(np.add.accumulate(flat)[-1]) if flat.size else 0.0

    ssc = ssc / APERTURE_AREA
    return ssc * detector.gain


def detector_response(
    particle: Particle,
    detector: Detector,
    dr: float = DEFAULT_DR,
    dphi: float = DEFAULT_DPHI_DEG,
    *,
    amplitude_provider: AmplitudeProvider = default_amplitudes,
    n_angle: int = DEFAULT_N_ANGLE,
    theta_span_deg: float = DEFAULT_THETA_SPAN_DEG,
) -> float:
    """Amplitudes for `particle` from the provider, then `response`."""
    if not isinstance(particle, Particle):
        raise InvalidInput("Please create a valid particle description using create_particle().")
    if not isinstance(detector, Detector):
        raise InvalidInput("Please create a valid detector using Detector(...).")
    amps = amplitude_provider(particle, n_angle=n_angle, theta_span_deg=theta_span_deg)
    return response(stokes_elements(amps), detector, dr=dr, dphi=dphi)


__all__ = [
    "response", "detector_response",
    "integration_grid", "nearest_index",
    "DEFAULT_DR", "DEFAULT_DPHI_DEG", "APERTURE_AREA",
]
