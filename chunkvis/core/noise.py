"""Uncorrelated system noise."""

import logging

import numpy as np

from .telescope import TelescopeModel
from .visibilities import GlobalVisibilityDataset

logger = logging.getLogger(__name__)


def add_system_noise(
    dataset: GlobalVisibilityDataset, telescope: TelescopeModel, seed: int
) -> None:
    """
    Add Gaussian noise to every visibility in place.

    The noise on baseline (i, j) has RMS ``sqrt(rms_i * rms_j)`` in both the
    real and the imaginary part, where ``rms_i`` is the noise RMS of station
    ``i``. The same seed always produces the same noise.

    Parameters
    ----------
    dataset : GlobalVisibilityDataset
        Visibilities to modify.
    telescope : TelescopeModel
        Provides the per-station noise RMS.
    seed : int
        Seed of the random number generator.
    """
    rng = np.random.default_rng(seed)
    rms = telescope.baseline_noise_rms()
    if not np.any(rms):
        logger.warning("System noise is enabled but every station has zero noise RMS")

    amps = dataset.amplitude
    # Broadcast the per-baseline RMS over channels, times and polarisations.
    sigma = rms.reshape((1, -1) + (1,) * (amps.ndim - 2))
    real_dtype = amps.real.dtype
    noise_re = rng.standard_normal(amps.shape, dtype=np.float64) * sigma
    noise_im = rng.standard_normal(amps.shape, dtype=np.float64) * sigma
    amps += noise_re.astype(real_dtype) + 1j * noise_im.astype(real_dtype)
    logger.info(f"Added system noise with seed {seed}")
