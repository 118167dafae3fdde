from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional, Sequence, Tuple, Union

import numpy as np

from scatter_errors import InvalidInput

# -------------------------------
# Constants and centralized defaults
# -------------------------------

DEFAULT_MEDIUM_RI     = 1.34      # normal saline / PBS
DEFAULT_WAVELENGTH_NM = 488.0

RI_POLYSTYRENE = 1.605
RI_SILICA      = 1.463

EV_CORE_RI           = 1.38
EV_MEMBRANE_RI       = 1.46
EV_MEMBRANE_THICK_NM = 5.0

RefractiveIndex = Union[float, complex]

# -------------------------------
# Value objects
# -------------------------------

@dataclass(frozen=True)
class Layer:
    radius: float       # outer radius of this shell [same units as wavelength]
    n:      complex     # refractive index of the shell material

    def __post_init__(self):
        r = float(self.radius)
        if not np.isfinite(r) or r <= 0:
            raise InvalidInput(f"Layer radius must be positive, got {self.radius!r}.")
        object.__setattr__(self, "radius", r)
        object.__setattr__(self, "n", complex(self.n))


@dataclass(frozen=True)
class Particle:
    """
    Concentric multi-layer sphere, layers listed innermost first.

    Radii must increase strictly from the core outwards. `medium` is the real
    refractive index of the surrounding fluid and `wavelength` the vacuum
    wavelength of the incident light, in the same length unit as the radii.
    """
    layers:     Tuple[Layer, ...]
    medium:     float = DEFAULT_MEDIUM_RI
    wavelength: float = DEFAULT_WAVELENGTH_NM

    def __post_init__(self):
        layers = tuple(self.layers)
        if len(layers) < 1:
            raise InvalidInput("A particle needs at least one layer.")
        if not all(isinstance(l, Layer) for l in layers):
            raise InvalidInput("layers must be Layer instances.")
        radii = np.array([l.radius for l in layers], float)
        if np.any(np.diff(radii) <= 0):
            raise InvalidInput(f"Layer radii must increase strictly outwards, got {radii.tolist()}.")
        if not (float(self.medium) > 0):
            raise InvalidInput(f"medium refractive index must be > 0, got {self.medium!r}.")
        if not (float(self.wavelength) > 0):
            raise InvalidInput(f"wavelength must be > 0, got {self.wavelength!r}.")
        object.__setattr__(self, "layers", layers)
        object.__setattr__(self, "medium", float(self.medium))
        object.__setattr__(self, "wavelength", float(self.wavelength))

    @property
    def n_layers(self) -> int:
        return len(self.layers)

    @property
    def radii(self) -> np.ndarray:
        return np.array([l.radius for l in self.layers], float)

    @property
    def indices(self) -> np.ndarray:
        return np.array([l.n for l in self.layers], complex)

    @property
    def diameter(self) -> float:
        return 2.0 * self.layers[-1].radius

    def size_parameters(self) -> np.ndarray:
        """x_i = 2π·n_medium·r_i/λ for each layer."""
        return 2.0 * np.pi * self.medium * self.radii / self.wavelength

    def relative_indices(self) -> np.ndarray:
        """m_i = n_i / n_medium for each layer."""
        return self.indices / self.medium

# -------------------------------
# Factories
# -------------------------------

def create_particle(
    r: Union[float, Sequence[float]],
    n: Union[RefractiveIndex, Sequence[RefractiveIndex]],
    *,
    n_layers: Optional[int] = None,
    medium: float = DEFAULT_MEDIUM_RI,
    wavelength: float = DEFAULT_WAVELENGTH_NM,
) -> Particle:
    """
    Build a Particle from parallel radius and refractive-index sequences,
    innermost layer first (lumen, then membrane for an EV).
    """
    radii = np.atleast_1d(np.asarray(r, float))
    idx   = np.atleast_1d(np.asarray(n, complex))
    if n_layers is not None:
        if radii.size != n_layers:
            raise InvalidInput("Radius vector doesn't match n_layers.")
        if idx.size != n_layers:
            raise InvalidInput("Index vector doesn't match n_layers.")
    if radii.size != idx.size:
        raise InvalidInput(f"Got {radii.size} radii but {idx.size} refractive indices.")
    layers = tuple(Layer(float(ri), complex(ni)) for ri, ni in zip(radii, idx))
    return Particle(layers, medium=medium, wavelength=wavelength)


def create_ev(
    d: float,
    *,
    medium: float = DEFAULT_MEDIUM_RI,
    wavelength: float = DEFAULT_WAVELENGTH_NM,
    n_core: RefractiveIndex = EV_CORE_RI,
    n_membrane: RefractiveIndex = EV_MEMBRANE_RI,
    thickness_membrane: float = EV_MEMBRANE_THICK_NM,
) -> Particle:
    """Two-layer extracellular vesicle of total DIAMETER d (lumen + membrane)."""
    r_outer = 0.5 * float(d)
    r_core = r_outer - float(thickness_membrane)
    if r_core <= 0:
        raise InvalidInput(
            f"EV diameter {d!r} is too small for a {thickness_membrane!r} membrane."
        )
    return create_particle([r_core, r_outer], [n_core, n_membrane], n_layers=2,
                           medium=medium, wavelength=wavelength)


def create_ps(
    d: float,
    *,
    medium: float = DEFAULT_MEDIUM_RI,
    wavelength: float = DEFAULT_WAVELENGTH_NM,
    n: RefractiveIndex = RI_POLYSTYRENE,
) -> Particle:
    """Polystyrene bead of DIAMETER d."""
    return create_particle(0.5 * float(d), n, n_layers=1, medium=medium, wavelength=wavelength)


def create_si(
    d: float,
    *,
    medium: float = DEFAULT_MEDIUM_RI,
    wavelength: float = DEFAULT_WAVELENGTH_NM,
    n: RefractiveIndex = RI_SILICA,
) -> Particle:
    """Silica bead of DIAMETER d."""
    return create_particle(0.5 * float(d), n, n_layers=1, medium=medium, wavelength=wavelength)


_FACTORIES = {
    "ev": create_ev,
    "ps": create_ps,
    "si": create_si,
}


def particle_factory(kind: str, **kwargs) -> Callable[[float], Particle]:
    """
    diameter -> Particle callable for a named particle family, with the
    remaining factory keywords (medium, wavelength, indices) frozen in.
    """
    key = kind.lower()
    if key not in _FACTORIES:
        raise InvalidInput(f"kind must be one of {sorted(_FACTORIES)}, got {kind!r}.")
    return partial(_FACTORIES[key], **kwargs)


__all__ = [
    "Layer", "Particle",
    "create_particle", "create_ev", "create_ps", "create_si",
    "particle_factory",
    "DEFAULT_MEDIUM_RI", "DEFAULT_WAVELENGTH_NM",
    "RI_POLYSTYRENE", "RI_SILICA",
    "EV_CORE_RI", "EV_MEMBRANE_RI", "EV_MEMBRANE_THICK_NM",
]
