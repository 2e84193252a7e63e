"""
Core correlation interface for chunkvis.

This module defines the base class for the correlation primitive: the
computation of one sky chunk's visibilities at one frequency, for every
baseline and time sample. Backend implementations live in :mod:`chunkvis.cpu`
and :mod:`chunkvis.gpu`.
"""

import threading
from abc import ABC, abstractmethod
from typing import NamedTuple

import numpy as np

from .sky import SkyChunk
from .telescope import TelescopeModel
from .utils import FWHM_TO_SIGMA, speed_of_light
from .uvw import baseline_uvw
from .visibilities import VisibilityBuffer


class CorrelationInputs(NamedTuple):
    """Host arrays consumed by a correlation kernel."""

    uu: np.ndarray  # (nbls, ntimes), wavelengths
    vv: np.ndarray
    ww: np.ndarray
    l: np.ndarray  # (nsrcs,)
    m: np.ndarray
    n_minus_one: np.ndarray
    sigma_major: np.ndarray
    sigma_minor: np.ndarray
    sin_pa: np.ndarray
    cos_pa: np.ndarray
    brightness: np.ndarray  # (npol, nsrcs), complex
    gains: np.ndarray  # (nbls,), complex
    frac_bandwidth: float


def brightness_terms(chunk: SkyChunk, frequency_hz: float, polarized: bool) -> np.ndarray:
    """
    Source brightness at ``frequency_hz``.

    Returns an array of shape (1, nsrcs) holding Stokes I, or, when polarised,
    shape (4, nsrcs) holding the flattened 2x2 brightness matrix
    ``[[I + Q, U + iV], [U - iV, I - Q]]``.
    """
    i, q, u, v = chunk.flux_at(frequency_hz)
    if not polarized:
        return i[None, :].astype(np.complex128)
    return np.stack([i + q, u + 1j * v, u - 1j * v, i - q]).astype(np.complex128)


class CorrelationPrimitive(ABC):
    """Base class for correlation kernels.

    Implementations must not modify the chunk or the telescope model, and must
    be safe to call concurrently from several lanes as long as every call gets
    its own output buffer.
    """

    #: Memory space of the buffers the primitive writes into.
    location = "cpu"

    _uvw_lock = threading.Lock()

    def baseline_coordinates(
        self, telescope: TelescopeModel, times_mjd: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Baseline (u, v, w) in metres, shape (nbls, ntimes), read-only.

        The coordinates do not depend on frequency or on the chunk, so they
        are computed once and reused for as long as the telescope and times
        stay the same.
        """
        times_mjd = np.asarray(times_mjd, dtype=np.float64)
        key = times_mjd.tobytes()
        with self._uvw_lock:
            cached = self.__dict__.get("_uvw_cache")
            if cached is None or cached[0] is not telescope or cached[1] != key:
                uvw = baseline_uvw(telescope, times_mjd)
                for c in uvw:
                    c.flags.writeable = False
                cached = (telescope, key, uvw)
                self._uvw_cache = cached
        return cached[2]

    def prepare(
        self,
        chunk: SkyChunk,
        telescope: TelescopeModel,
        frequency_hz: float,
        times_mjd: np.ndarray,
        bandwidth_hz: float,
        polarized: bool,
    ) -> CorrelationInputs:
        """Compute the geometry and brightness terms shared by all backends."""
        wavelength = speed_of_light / frequency_hz
        uu, vv, ww = (c / wavelength for c in self.baseline_coordinates(telescope, times_mjd))
        l, m, n = chunk.direction_cosines(telescope.ra0, telescope.dec0)
        return CorrelationInputs(
            uu=np.ascontiguousarray(uu),
            vv=np.ascontiguousarray(vv),
            ww=np.ascontiguousarray(ww),
            l=l,
            m=m,
            n_minus_one=n - 1.0,
            sigma_major=chunk.fwhm_major * FWHM_TO_SIGMA,
            sigma_minor=chunk.fwhm_minor * FWHM_TO_SIGMA,
            sin_pa=np.sin(chunk.position_angle),
            cos_pa=np.cos(chunk.position_angle),
            brightness=brightness_terms(chunk, frequency_hz, polarized),
            gains=telescope.baseline_gains(),
            frac_bandwidth=bandwidth_hz / frequency_hz,
        )

    @abstractmethod
    def correlate(
        self,
        chunk: SkyChunk,
        telescope: TelescopeModel,
        frequency_hz: float,
        times_mjd: np.ndarray,
        bandwidth_hz: float,
        out: VisibilityBuffer,
    ) -> None:
        """
        Overwrite ``out`` with the visibilities of ``chunk``.

        For each baseline (i, j) and time sample the visibility is

            g_i conj(g_j) sum_s B_s exp(-2 pi i (u l + v m + w (n - 1)))
                              * sinc(frac_bw (u l + v m)) * E_s(u, v)

        where (u, v, w) are in wavelengths, B_s is the source brightness at
        ``frequency_hz`` and E_s is the Gaussian source envelope.

        Parameters
        ----------
        chunk : SkyChunk
            Sources to correlate.
        telescope : TelescopeModel
            Array geometry, shared and read-only.
        frequency_hz : float
            Channel centre frequency.
        times_mjd : np.ndarray
            Time sample centres.
        bandwidth_hz : float
            Channel bandwidth, used for bandwidth smearing. Zero disables it.
        out : VisibilityBuffer
            Buffer of shape (nbls, ntimes) or (nbls, ntimes, 2, 2).
        """
        pass
