# tests/test_detector_geometry.py

import os
import subprocess
import sys
from pathlib import Path

import numpy as np
import pytest

from calibration_table_core import CalibrationTable
from detector_core import (
    Detector, DetectorGeometry, ModifiedVanDerPol, Uniform, aperture_angles,
)
from scatter_errors import InvalidInput


def test_defaults_are_side_scatter_detector():
    det = Detector()
    assert det.theta_0 == 90.0
    assert det.alpha == 60.0
    assert det.psi_0 == 90.0
    assert det.pol == 1.0
    assert det.gain == 1.0
    assert det.efficiency == Uniform()
    assert det.table is None
    assert det.eta_fac is None


@pytest.mark.parametrize("kwargs", [
    dict(alpha=0.0), dict(alpha=90.0), dict(alpha=-5.0), dict(alpha=120.0),
    dict(pol=-0.1), dict(pol=1.01),
    dict(gain=0.0), dict(gain=-2.0),
    dict(theta_0=np.nan),
    dict(efficiency="uniform"),
    dict(table=[(100.0, 1.0), (200.0, 2.0)]),
])
def test_invalid_detector_rejected(kwargs):
    with pytest.raises(InvalidInput):
        Detector(**kwargs)


def test_detector_is_immutable_and_recalibrates_by_copy():
    det = Detector(efficiency=ModifiedVanDerPol(0.4))
    det2 = det.with_gain(3.5)
    assert det.gain == 1.0
    assert det2.gain == 3.5
    assert det2.eta_fac == 0.4
    with pytest.raises(Exception):
        det.gain = 2.0


def test_detector_accepts_calibration_table():
    import mie_transform_core

    tab = CalibrationTable([100.0, 200.0], [1.0, 2.0])
    det = Detector().with_table(tab)
    assert det.table is tab
    assert mie_transform_core.CalibrationTable is CalibrationTable


def test_detector_import_does_not_load_transform_stack():
    src = Path(__file__).resolve().parents[1] / "src"
    code = (
        "import sys, detector_core; detector_core.Detector(); "
        "print(sorted(m for m in ('mie_transform_core', 'zarr', 'sklearn') if m in sys.modules))"
    )
    out = subprocess.run(
        [sys.executable, "-c", code],
        env={**os.environ, "PYTHONPATH": str(src)},
        capture_output=True, text=True, check=True,
    )
    assert out.stdout.strip() == "[]"


def test_geometry_on_axis():
    det = Detector(theta_0=90.0, alpha=60.0, psi_0=30.0)
    theta, psi, ap = aperture_angles(det, 0.0, 1.234)
    assert theta == pytest.approx(np.pi / 2)
    assert psi == pytest.approx(np.deg2rad(30.0))
    assert ap == 0.0


def test_geometry_at_aperture_edge():
    # the aperture edge subtends α from the particle
    det = Detector(theta_0=90.0, alpha=40.0, psi_0=90.0)
    g = DetectorGeometry.from_detector(det)
    a = np.deg2rad(40.0)
    assert g.l == pytest.approx(1.0 / np.tan(a))
    assert g.scattering_angle(1.0, 0.0) == pytest.approx(np.pi / 2 + a)
    assert g.scattering_angle(1.0, np.pi) == pytest.approx(np.pi / 2 - a)
    assert g.polarization_angle(1.0, np.pi / 2) == pytest.approx(np.pi / 2 - a)
    assert g.polarization_angle(1.0, 3 * np.pi / 2) == pytest.approx(np.pi / 2 + a)
    assert g.off_axis_angle(1.0) == pytest.approx(a)


def test_geometry_vectorized():
    g = Detector().geometry()
    r = np.array([[0.0, 0.5], [1.0, 1.0]])
    phi = np.array([[0.0, 0.0], [np.pi / 2, np.pi]])
    theta, psi, ap = g.angles(r, phi)
    assert theta.shape == psi.shape == ap.shape == (2, 2)
    assert np.allclose(ap[1], np.deg2rad(60.0))
