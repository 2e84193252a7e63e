"""Global configuration for pytest in chunkvis tests."""

import numpy as np
import psutil
import pytest

from chunkvis.core.sky import SkyCatalogue
from chunkvis.core.telescope import TelescopeModel

# Number of logical CPUs the device pool sees during tests.
FAKE_CPU_COUNT = 8


@pytest.fixture(autouse=True)
def fake_cpu_count(monkeypatch):
    """Make the CPU device count independent of the test machine."""
    monkeypatch.setattr(psutil, "cpu_count", lambda logical=True: FAKE_CPU_COUNT)
    return FAKE_CPU_COUNT


@pytest.fixture
def telescope():
    """Four stations (six baselines) with a phase centre transiting near zenith."""
    station_xyz = np.array(
        [
            [0.0, 0.0, 0.0],
            [0.0, 25.0, 3.0],
            [5.0, -10.0, 40.0],
            [-2.0, 60.0, -15.0],
        ]
    )
    return TelescopeModel(
        station_xyz=station_xyz,
        longitude=0.3,
        latitude=-0.5,
        ra0=1.0,
        dec0=-0.5,
    )


@pytest.fixture
def sky4():
    """Four point sources close to the phase centre."""
    return SkyCatalogue(
        ra=1.0 + np.array([0.0, 0.01, -0.02, 0.015]),
        dec=-0.5 + np.array([0.0, -0.01, 0.005, 0.02]),
        stokes_i=np.array([1.0, 2.5, 0.7, 4.0]),
        reference_freq=100e6,
        spectral_index=np.array([0.0, -0.7, 0.3, -1.2]),
    )


@pytest.fixture
def random_sky():
    """Thirty sources with a mix of shapes and spectra."""
    rng = np.random.default_rng(1234)
    nsrcs = 30
    return SkyCatalogue(
        ra=1.0 + rng.uniform(-0.05, 0.05, nsrcs),
        dec=-0.5 + rng.uniform(-0.05, 0.05, nsrcs),
        stokes_i=rng.uniform(0.1, 5.0, nsrcs),
        stokes_q=rng.uniform(-0.1, 0.1, nsrcs),
        reference_freq=150e6,
        spectral_index=rng.uniform(-1.0, 0.5, nsrcs),
        fwhm_major=np.where(np.arange(nsrcs) % 3 == 0, 1e-3, 0.0),
        fwhm_minor=np.where(np.arange(nsrcs) % 3 == 0, 5e-4, 0.0),
        position_angle=rng.uniform(0, np.pi, nsrcs),
    )
