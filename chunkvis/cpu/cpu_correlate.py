"""
CPU-specific correlation implementation for chunkvis.

The kernel is compiled with Numba and releases the GIL, so worker lanes
running in separate host threads correlate their chunks in parallel.
"""

import logging

import numba as nb
import numpy as np

from ..core.correlate import CorrelationPrimitive
from ..errors import BadLocation

logger = logging.getLogger(__name__)


@nb.njit(nogil=True)
def correlate_kernel(
    uu, vv, ww, l, m, n_minus_one, sigma_major, sigma_minor, sin_pa, cos_pa,
    brightness, frac_bandwidth, out,
):  # pragma: no cover
    """
    Sum the fringe term of every source onto every baseline and time sample.

    Parameters:
    ----------
    uu, vv, ww : np.ndarray
        Baseline coordinates in wavelengths, shape (nbls, ntimes).
    l, m, n_minus_one : np.ndarray
        Source direction cosines, shape (nsrcs,).
    sigma_major, sigma_minor, sin_pa, cos_pa : np.ndarray
        Gaussian source shape terms, shape (nsrcs,).
    brightness : np.ndarray
        Complex source brightness, shape (npol, nsrcs).
    frac_bandwidth : float
        Channel bandwidth divided by frequency.
    out : np.ndarray
        Complex output of shape (nbls, ntimes, npol). Added to, not cleared.
    """
    nbls, ntimes = uu.shape
    nsrcs = l.shape[0]
    npol = brightness.shape[0]
    two_pi = 2.0 * np.pi
    two_pi_sq = 2.0 * np.pi * np.pi

    for b in range(nbls):
        for t in range(ntimes):
            u = uu[b, t]
            v = vv[b, t]
            w = ww[b, t]
            for s in range(nsrcs):
                ul_vm = u * l[s] + v * m[s]
                phase = -two_pi * (ul_vm + w * n_minus_one[s])
                weight = 1.0

                if frac_bandwidth > 0.0:
                    x = np.pi * frac_bandwidth * ul_vm
                    if x != 0.0:
                        weight = np.sin(x) / x

                if sigma_major[s] > 0.0 or sigma_minor[s] > 0.0:
                    u_maj = u * sin_pa[s] + v * cos_pa[s]
                    u_min = u * cos_pa[s] - v * sin_pa[s]
                    weight *= np.exp(
                        -two_pi_sq
                        * (
                            sigma_major[s] ** 2 * u_maj * u_maj
                            + sigma_minor[s] ** 2 * u_min * u_min
                        )
                    )

                fringe = weight * (np.cos(phase) + 1j * np.sin(phase))
                for p in range(npol):
                    out[b, t, p] += fringe * brightness[p, s]


class CPUCorrelator(CorrelationPrimitive):
    """CPU implementation of the correlation primitive."""

    location = "cpu"

    def correlate(
        self,
        chunk,
        telescope,
        frequency_hz,
        times_mjd,
        bandwidth_hz,
        out,
    ) -> None:
        """
        Correlate one chunk on the host.

        See base class for parameter descriptions.
        """
        if out.location != self.location:
            raise BadLocation(f"CPU correlator cannot write a '{out.location}' buffer")

        polarized = out.data.ndim == 4
        inputs = self.prepare(
            chunk, telescope, frequency_hz, times_mjd, bandwidth_hz, polarized
        )
        nbls, ntimes = inputs.uu.shape
        npol = inputs.brightness.shape[0]

        vis = np.zeros((nbls, ntimes, npol), dtype=np.complex128)
        if chunk.num_sources > 0:
            correlate_kernel(
                inputs.uu,
                inputs.vv,
                inputs.ww,
                inputs.l,
                inputs.m,
                inputs.n_minus_one,
                inputs.sigma_major,
                inputs.sigma_minor,
                inputs.sin_pa,
                inputs.cos_pa,
                inputs.brightness,
                inputs.frac_bandwidth,
                vis,
            )

        vis *= inputs.gains[:, None, None]
        out.data[...] = vis.reshape(out.shape)
