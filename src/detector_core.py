from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

import numpy as np

from calibration_table_core import CalibrationTable
from scatter_errors import InvalidInput, InvalidParameter

# -------------------------------
# Constants and centralized defaults
# -------------------------------
# Default instrument: side-scatter detector, 60° acceptance half-angle,
# fully polarized light perpendicular to the plane of incidence.

DEFAULT_THETA_0_DEG = 90.0
DEFAULT_ALPHA_DEG   = 60.0
DEFAULT_PSI_0_DEG   = 90.0
DEFAULT_POL         = 1.0
DEFAULT_GAIN        = 1.0

# -------------------------------
# Radial efficiency functions
# -------------------------------
# α′ runs from 0 on the detector axis to α at the aperture edge (both radians).

def _scalar_or_array(v):
    v = np.asarray(v, float)
    return float(v) if v.ndim == 0 else v


def _check_eta_fac(eta_fac) -> float:
    if eta_fac is None or not np.isfinite(eta_fac) or eta_fac < 0.0 or eta_fac > 1.0:
        raise InvalidParameter(f"eta_fac must be between 0.0 and 1.0, got {eta_fac!r}.")
    return float(eta_fac)


def eta_uniform(alpha_prime, alpha, eta_fac=None):
    """Uniform detector: 1.0 everywhere."""
    return _scalar_or_array(np.ones_like(np.asarray(alpha_prime, float)))


def eta_van_der_pol(alpha_prime, alpha, eta_fac=None):
    """Sinusoidal drop from 1.0 on axis to 0.0 at the aperture edge."""
    ap = np.asarray(alpha_prime, float)
    return _scalar_or_array(np.sin(0.5 * np.pi * (ap / alpha + 1.0)))


def eta_mvdp(alpha_prime, alpha, eta_fac):
    """
    Modified van der Pol: sinusoidal drop from 1.0 on axis to eta_fac at the edge.
    The phase is compressed by fac2 = 2·acos(eta_fac)/π.
    """
    eta_fac = _check_eta_fac(eta_fac)
    fac2 = 2.0 * np.arccos(eta_fac) / np.pi
    ap = np.asarray(alpha_prime, float)
    return _scalar_or_array(np.sin(0.5 * np.pi * (fac2 * ap / alpha + 1.0)))

# -------------------------------
# Efficiency profile variants
# -------------------------------

class EfficiencyProfile(ABC):
    """Closed base: Uniform, VanDerPol, ModifiedVanDerPol."""
    name: str = ""
    eta_fac: Optional[float] = None

    @abstractmethod
    def __call__(self, alpha_prime, alpha):
        """Efficiency at off-axis angle alpha_prime for half-angle alpha [rad]."""


@dataclass(frozen=True)
class Uniform(EfficiencyProfile):
    name = "uniform"

    def __call__(self, alpha_prime, alpha):
        return eta_uniform(alpha_prime, alpha)


@dataclass(frozen=True)
class VanDerPol(EfficiencyProfile):
    name = "van_der_pol"

    def __call__(self, alpha_prime, alpha):
        return eta_van_der_pol(alpha_prime, alpha)


@dataclass(frozen=True)
class ModifiedVanDerPol(EfficiencyProfile):
    eta_fac: float = 0.5
    name = "mvdp"

    def __post_init__(self):
        object.__setattr__(self, "eta_fac", _check_eta_fac(self.eta_fac))

    def __call__(self, alpha_prime, alpha):
        return eta_mvdp(alpha_prime, alpha, self.eta_fac)


_PROFILE_NAMES = {
    "uniform": Uniform,
    "van_der_pol": VanDerPol,
    "vdp": VanDerPol,
    "mvdp": ModifiedVanDerPol,
    "modified_van_der_pol": ModifiedVanDerPol,
}


def efficiency_profile(name: str, eta_fac: Optional[float] = None) -> EfficiencyProfile:
    """Look up a profile by name; eta_fac is used by 'mvdp' only."""
    key = name.lower().replace("-", "_").replace(" ", "_")
    if key not in _PROFILE_NAMES:
        raise InvalidInput(f"Unknown efficiency profile {name!r}; choose from {sorted(_PROFILE_NAMES)}.")
    cls = _PROFILE_NAMES[key]
    if cls is ModifiedVanDerPol:
        return ModifiedVanDerPol(eta_fac)
    return cls()

# -------------------------------
# Detector
# -------------------------------

@dataclass(frozen=True)
class Detector:
    """
    Flow-cytometer scatter detector with a circular aperture.

    theta_0 : direction of the detector centroid w.r.t. the incident beam [deg]
    alpha   : acceptance half-angle [deg], 0 < alpha < 90
    psi_0   : incident polarization angle [deg]; 0 in the plane of incidence,
              90 perpendicular to it
    pol     : degree of linear polarization, 0 (unpolarized) .. 1 (fully polarized)
    gain    : relative gain, set by calibration
    efficiency : radial efficiency profile across the aperture
    table   : calibration lookup table, set by calibration
    """
    theta_0:    float = DEFAULT_THETA_0_DEG
    alpha:      float = DEFAULT_ALPHA_DEG
    psi_0:      float = DEFAULT_PSI_0_DEG
    pol:        float = DEFAULT_POL
    gain:       float = DEFAULT_GAIN
    efficiency: EfficiencyProfile = field(default_factory=Uniform)
    table:      Optional[CalibrationTable] = None

    def __post_init__(self):
        for name in ("theta_0", "alpha", "psi_0", "pol", "gain"):
            v = float(getattr(self, name))
            if not np.isfinite(v):
                raise InvalidInput(f"{name} must be finite, got {getattr(self, name)!r}.")
            object.__setattr__(self, name, v)
        if not (0.0 < self.alpha < 90.0):
            raise InvalidInput(f"alpha must be in (0, 90) degrees, got {self.alpha!r}.")
        if not (0.0 <= self.pol <= 1.0):
            raise InvalidInput(f"pol must be in [0, 1], got {self.pol!r}.")
        if not (self.gain > 0.0):
            raise InvalidInput(f"gain must be positive, got {self.gain!r}.")
        if not isinstance(self.efficiency, EfficiencyProfile):
            raise InvalidInput("efficiency must be an EfficiencyProfile (Uniform, VanDerPol, ModifiedVanDerPol).")
        if self.table is not None and not isinstance(self.table, CalibrationTable):
            raise InvalidInput("table must be a CalibrationTable or None.")

    @property
    def eta_fac(self) -> Optional[float]:
        return self.efficiency.eta_fac

    def with_gain(self, gain: float) -> "Detector":
        return replace(self, gain=gain)

    def with_table(self, table) -> "Detector":
        return replace(self, table=table)

    def geometry(self) -> "DetectorGeometry":
        return DetectorGeometry.from_detector(self)

# -------------------------------
# Aperture geometry
# -------------------------------

@dataclass(frozen=True)
class DetectorGeometry:
    """
    Maps polar points (r ∈ [0,1], φ) on the unit aperture disk to the
    scattering angle θ, polarization angle ψ and off-axis angle α′ [rad].
    The particle sits at distance l = 1/tan(α) from the disk.
    """
    theta_0: float   # [rad]
    psi_0:   float   # [rad]
    alpha:   float   # [rad]
    l:       float   # standoff, disk radius = 1

    @classmethod
    def from_detector(cls, detector: Detector) -> "DetectorGeometry":
        alpha = detector.alpha * np.pi / 180
        return cls(
            theta_0=detector.theta_0 * np.pi / 180,
            psi_0=detector.psi_0 * np.pi / 180,
            alpha=alpha,
            l=1.0 / np.tan(alpha),
        )

    def scattering_angle(self, r, phi):
        return self.theta_0 + np.arctan(np.asarray(r, float) * np.cos(phi) / self.l)

    def polarization_angle(self, r, phi):
        return self.psi_0 - np.arctan(np.asarray(r, float) * np.sin(phi) / self.l)

    def off_axis_angle(self, r):
        return np.arctan2(np.asarray(r, float), self.l)

    def angles(self, r, phi) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        return (self.scattering_angle(r, phi),
                self.polarization_angle(r, phi),
                self.off_axis_angle(r))


def aperture_angles(detector: Detector, r, phi):
    """(θ, ψ, α′) in radians for aperture points (r, φ[rad]) of `detector`."""
    return DetectorGeometry.from_detector(detector).angles(r, phi)


__all__ = [
    "eta_uniform", "eta_van_der_pol", "eta_mvdp",
    "EfficiencyProfile", "Uniform", "VanDerPol", "ModifiedVanDerPol",
    "efficiency_profile",
    "Detector", "DetectorGeometry", "aperture_angles",
    "DEFAULT_THETA_0_DEG", "DEFAULT_ALPHA_DEG", "DEFAULT_PSI_0_DEG",
    "DEFAULT_POL", "DEFAULT_GAIN",
]
