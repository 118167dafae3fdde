# tests/test_particle.py

import numpy as np
import pytest

from amplitude_core import default_amplitudes, miepython_amplitudes, scattnlay_amplitudes
from detector_core import Detector
from detector_response_core import detector_response
from particle_core import (
    Layer, Particle, create_ev, create_particle, create_ps, create_si, particle_factory,
)
from scatter_errors import InvalidInput


def test_create_particle_layers():
    p = create_particle([60.0, 65.0], [1.38, 1.46 + 0.01j], n_layers=2, medium=1.33, wavelength=405.0)
    assert p.n_layers == 2
    assert np.allclose(p.radii, [60.0, 65.0])
    assert p.indices[1] == 1.46 + 0.01j
    assert p.diameter == 130.0
    assert np.allclose(p.size_parameters(), 2 * np.pi * 1.33 * np.array([60.0, 65.0]) / 405.0)
    assert np.allclose(p.relative_indices(), np.array([1.38, 1.46 + 0.01j]) / 1.33)


def test_create_particle_length_mismatch():
    with pytest.raises(InvalidInput):
        create_particle([60.0, 65.0], [1.38], n_layers=2)
    with pytest.raises(InvalidInput):
        create_particle([60.0, 65.0], [1.38, 1.46], n_layers=3)
    with pytest.raises(InvalidInput):
        create_particle([60.0, 65.0], [1.38, 1.46, 1.5])


def test_particle_invariants():
    with pytest.raises(InvalidInput):
        Particle(())
    with pytest.raises(InvalidInput):
        Particle((Layer(70.0, 1.4), Layer(60.0, 1.5)))
    with pytest.raises(InvalidInput):
        Layer(0.0, 1.4)
    with pytest.raises(InvalidInput):
        Particle((Layer(70.0, 1.4),), medium=0.0)
    with pytest.raises(InvalidInput):
        Particle((Layer(70.0, 1.4),), wavelength=-488.0)


def test_named_particles():
    ev = create_ev(180.0)
    assert ev.n_layers == 2
    assert np.allclose(ev.radii, [85.0, 90.0])
    assert np.allclose(ev.indices.real, [1.38, 1.46])

    ps = create_ps(200.0)
    assert ps.n_layers == 1 and ps.diameter == 200.0
    assert ps.indices[0] == 1.605

    si = create_si(100.0, medium=1.33)
    assert si.indices[0] == 1.463 and si.medium == 1.33

    with pytest.raises(InvalidInput):
        create_ev(8.0)


def test_particle_factory():
    make = particle_factory("EV", thickness_membrane=4.0, wavelength=405.0)
    p = make(100.0)
    assert np.allclose(p.radii, [46.0, 50.0])
    assert p.wavelength == 405.0
    with pytest.raises(InvalidInput):
        particle_factory("gold")


def test_miepython_rejects_layered_particles():
    with pytest.raises(InvalidInput):
        miepython_amplitudes(create_ev(180.0))


def test_miepython_bead_response_smoke():
    amps = default_amplitudes(create_ps(200.0))
    assert len(amps) == 361
    assert np.all(np.isfinite(amps.s1)) and np.all(np.isfinite(amps.s2))

    det = Detector()
    small = detector_response(create_ps(100.0), det)
    big = detector_response(create_ps(200.0), det)
    assert 0.0 < small < big


def test_layered_ev_response():
    pytest.importorskip("scattnlay")
    ev = create_ev(180.0)
    amps = default_amplitudes(ev)
    assert len(amps) == 361
    assert np.all(np.isfinite(amps.s1)) and np.all(np.isfinite(amps.s2))

    det = Detector()
    val = detector_response(ev, det)
    assert np.isfinite(val) and val > 0.0
    assert detector_response(create_ev(100.0), det) < val


@pytest.mark.parametrize("n", [1.605, 1.6 + 0.05j])
def test_single_layer_providers_agree(n):
    pytest.importorskip("scattnlay")
    bead = create_ps(200.0, n=n)
    a = miepython_amplitudes(bead)
    b = scattnlay_amplitudes(bead)
    s11_a = 0.5 * (np.abs(a.s1)**2 + np.abs(a.s2)**2)
    s11_b = 0.5 * (np.abs(b.s1)**2 + np.abs(b.s2)**2)
    assert np.allclose(s11_a, s11_b, rtol=1e-8)

    det = Detector()
    r_mie = detector_response(bead, det, amplitude_provider=miepython_amplitudes)
    r_nlay = detector_response(bead, det, amplitude_provider=scattnlay_amplitudes)
    assert r_mie == pytest.approx(r_nlay, rel=1e-8)
