# tests/stub_providers.py
# Amplitude providers with known, closed-form output, used instead of a Mie solver.

import numpy as np

from amplitude_core import ScatteringAmplitudes, theta_grid


def constant_provider(particle, n_angle=361, theta_span_deg=360.0, s1=1.0 + 0j, s2=1.0 + 0j):
    """S1, S2 constant at every θ, independent of the particle."""
    theta = theta_grid(n_angle, theta_span_deg)
    ones = np.ones_like(theta, dtype=complex)
    return ScatteringAmplitudes(theta, s1 * ones, s2 * ones)


def diameter_provider(particle, n_angle=361, theta_span_deg=360.0):
    """S1 = S2 = d/100 at every θ, so S11 = (d/100)² grows monotonically with d."""
    return constant_provider(particle, n_angle, theta_span_deg,
                             s1=particle.diameter / 100.0, s2=particle.diameter / 100.0)


def folded_provider(particle, n_angle=361, theta_span_deg=360.0):
    """Non-monotone in diameter: 50 -> 1, 100 -> 3, 150 -> 2, 200 -> 3 (times the stub S11)."""
    amp = {50.0: 1.0, 100.0: 3.0, 150.0: 2.0, 200.0: 3.0}[round(particle.diameter, 6)]
    return constant_provider(particle, n_angle, theta_span_deg, s1=np.sqrt(amp), s2=np.sqrt(amp))
