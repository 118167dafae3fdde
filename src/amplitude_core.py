from __future__ import annotations
import os
os.environ.setdefault("MIEPYTHON_USE_JIT", "1")

from dataclasses import dataclass
from typing import Callable

import numpy as np
import miepython as mie

from particle_core import Particle
from scatter_errors import DimensionMismatch, InvalidInput

# -------------------------------
# Constants and centralized defaults
# -------------------------------

DEFAULT_N_ANGLE        = 361      # 1° steps over the default span
DEFAULT_THETA_SPAN_DEG = 360.0

# -------------------------------
# Amplitude / Stokes containers
# -------------------------------

@dataclass(frozen=True, eq=False)
class ScatteringAmplitudes:
    """
    Far-field amplitudes S1(θ), S2(θ) sampled on an ascending θ grid [rad].
    """
    theta: np.ndarray
    s1:    np.ndarray
    s2:    np.ndarray

    def __post_init__(self):
        theta = np.asarray(self.theta, float)
        s1 = np.asarray(self.s1, complex)
        s2 = np.asarray(self.s2, complex)
        if theta.ndim != 1 or s1.ndim != 1 or s2.ndim != 1:
            raise InvalidInput("theta, S1 and S2 must be 1-D arrays.")
        if s1.size != s2.size:
            raise DimensionMismatch(f"S1 has {s1.size} samples but S2 has {s2.size}.")
        if theta.size != s1.size:
            raise DimensionMismatch(f"theta grid has {theta.size} samples but amplitudes have {s1.size}.")
        if theta.size == 0:
            raise InvalidInput("Empty amplitude grid.")
        if not np.all(np.isfinite(theta)) or np.any(np.diff(theta) < 0):
            raise InvalidInput("theta grid must be finite and sorted ascending.")
        object.__setattr__(self, "theta", theta)
        object.__setattr__(self, "s1", s1)
        object.__setattr__(self, "s2", s2)

    def __len__(self) -> int:
        return self.theta.size


@dataclass(frozen=True, eq=False)
class StokesElements:
    theta: np.ndarray     # [rad], same grid as the amplitudes
    s11:   np.ndarray     # total intensity
    s12:   np.ndarray     # polarization asymmetry

    def __post_init__(self):
        theta = np.asarray(self.theta, float)
        s11 = np.asarray(self.s11, float)
        s12 = np.asarray(self.s12, float)
        if not (theta.ndim == s11.ndim == s12.ndim == 1):
            raise InvalidInput("theta, S11 and S12 must be 1-D arrays.")
        if not (theta.size == s11.size == s12.size):
            raise DimensionMismatch(
                f"theta/S11/S12 lengths differ: {theta.size}/{s11.size}/{s12.size}."
            )
        if theta.size == 0:
            raise InvalidInput("Empty Stokes grid.")
        if not np.all(np.isfinite(theta)) or np.any(np.diff(theta) < 0):
            raise InvalidInput("theta grid must be finite and sorted ascending.")
        object.__setattr__(self, "theta", theta)
        object.__setattr__(self, "s11", s11)
        object.__setattr__(self, "s12", s12)

# -------------------------------
# Stokes reducer
# -------------------------------

def stokes_s11_s12(s1, s2):
    """
    S11 = ½(|S2|² + |S1|²),  S12 = ½(|S2|² − |S1|²)
    """
    s1 = np.asarray(s1, complex)
    s2 = np.asarray(s2, complex)
    if s1.shape != s2.shape:
        raise DimensionMismatch(f"S1 shape {s1.shape} != S2 shape {s2.shape}.")
    i1 = np.abs(s1)**2
    i2 = np.abs(s2)**2
    return 0.5 * (i2 + i1), 0.5 * (i2 - i1)


def stokes_elements(amps: ScatteringAmplitudes) -> StokesElements:
    s11, s12 = stokes_s11_s12(amps.s1, amps.s2)
    return StokesElements(amps.theta, s11, s12)

# -------------------------------
# Amplitude providers
# -------------------------------

AmplitudeProvider = Callable[..., ScatteringAmplitudes]


def theta_grid(n_angle: int = DEFAULT_N_ANGLE, theta_span_deg: float = DEFAULT_THETA_SPAN_DEG) -> np.ndarray:
    """Evenly spaced θ samples [rad] from 0 to theta_span_deg inclusive."""
    n_angle = int(n_angle)
    if n_angle < 2:
        raise InvalidInput(f"n_angle must be >= 2, got {n_angle}.")
    if not (0 < theta_span_deg <= 360.0):
        raise InvalidInput(f"theta_span_deg must be in (0, 360], got {theta_span_deg!r}.")
    return np.linspace(0.0, np.deg2rad(theta_span_deg), n_angle)


def miepython_amplitudes(
    particle: Particle,
    n_angle: int = DEFAULT_N_ANGLE,
    theta_span_deg: float = DEFAULT_THETA_SPAN_DEG,
) -> ScatteringAmplitudes:
    """
    Homogeneous-sphere amplitudes from miepython (unnormalized, Wiscombe convention).
    miepython takes m = n − ik, so absorption is passed with a negative imaginary part.
    """
    if particle.n_layers != 1:
        raise InvalidInput(
            f"miepython handles homogeneous spheres only; particle has {particle.n_layers} layers."
        )
    theta = theta_grid(n_angle, theta_span_deg)
    m_rel = complex(particle.relative_indices()[0])
    m = complex(m_rel.real, -abs(m_rel.imag))
    xsize = float(particle.size_parameters()[0])
    s1, s2 = mie.S1_S2(m, xsize, np.cos(theta), norm="wiscombe")
    return ScatteringAmplitudes(theta, s1, s2)


def scattnlay_amplitudes(
    particle: Particle,
    n_angle: int = DEFAULT_N_ANGLE,
    theta_span_deg: float = DEFAULT_THETA_SPAN_DEG,
) -> ScatteringAmplitudes:
    """
    Multi-layer amplitudes from scattnlay (python-scattnlay, `layered` extra).
    """
    from scattnlay import scattnlay  # local import: optional dependency

    theta = theta_grid(n_angle, theta_span_deg)
    m_rel = particle.relative_indices()
    m = m_rel.real + 1j * np.abs(m_rel.imag)
    x = particle.size_parameters()
    _terms, _qext, _qsca, _qabs, _qbk, _qpr, _g, _albedo, s1, s2 = scattnlay(x, m, theta=theta)
    return ScatteringAmplitudes(theta, np.ravel(s1), np.ravel(s2))


def default_amplitudes(
    particle: Particle,
    n_angle: int = DEFAULT_N_ANGLE,
    theta_span_deg: float = DEFAULT_THETA_SPAN_DEG,
) -> ScatteringAmplitudes:
    """miepython for single-layer particles, scattnlay for layered ones."""
    if particle.n_layers == 1:
        return miepython_amplitudes(particle, n_angle, theta_span_deg)
    return scattnlay_amplitudes(particle, n_angle, theta_span_deg)


__all__ = [
    "ScatteringAmplitudes", "StokesElements",
    "stokes_s11_s12", "stokes_elements",
    "AmplitudeProvider", "theta_grid",
    "miepython_amplitudes", "scattnlay_amplitudes", "default_amplitudes",
    "DEFAULT_N_ANGLE", "DEFAULT_THETA_SPAN_DEG",
]
