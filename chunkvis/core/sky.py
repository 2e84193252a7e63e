"""
Sky catalogue and its partitioning into chunks.

A :class:`ChunkBuffer` is built once per run from the full catalogue. Each
:class:`SkyChunk` holds a contiguous range of sources and is read-only for the
lifetime of the run, so it can be shared between worker lanes without locking.
"""

import logging
from dataclasses import dataclass
from collections.abc import Sequence

import numpy as np

from ..errors import SettingsInvalid

logger = logging.getLogger(__name__)

# Columns shared by the catalogue and its chunks, in storage order.
SOURCE_COLUMNS = (
    "ra",
    "dec",
    "stokes_i",
    "stokes_q",
    "stokes_u",
    "stokes_v",
    "reference_freq",
    "spectral_index",
    "fwhm_major",
    "fwhm_minor",
    "position_angle",
)


def _column(value, nsrcs: int, default: float) -> np.ndarray:
    if value is None:
        return np.full(nsrcs, default, dtype=np.float64)
    value = np.asarray(value, dtype=np.float64)
    if value.ndim == 0:
        return np.full(nsrcs, float(value))
    return value


class SkyCatalogue:
    """In-memory catalogue of sky sources.

    Parameters
    ----------
    ra, dec : array_like
        Source positions in radians.
    stokes_i : array_like
        Stokes I flux density in Jy at ``reference_freq``.
    stokes_q, stokes_u, stokes_v : array_like, optional
        Remaining Stokes parameters in Jy. Default is zero.
    reference_freq : float or array_like, optional
        Frequency at which the fluxes are given, in Hz. Default is 100 MHz.
    spectral_index : float or array_like, optional
        Power-law index of the flux with frequency. Default is zero.
    fwhm_major, fwhm_minor, position_angle : array_like, optional
        Gaussian source shape in radians. A zero FWHM gives a point source.
    """

    def __init__(
        self,
        ra,
        dec,
        stokes_i,
        stokes_q=None,
        stokes_u=None,
        stokes_v=None,
        reference_freq=100e6,
        spectral_index=0.0,
        fwhm_major=None,
        fwhm_minor=None,
        position_angle=None,
    ):
        ra = np.atleast_1d(np.asarray(ra, dtype=np.float64))
        nsrcs = ra.size
        columns = {
            "ra": ra,
            "dec": _column(dec, nsrcs, 0.0),
            "stokes_i": _column(stokes_i, nsrcs, 0.0),
            "stokes_q": _column(stokes_q, nsrcs, 0.0),
            "stokes_u": _column(stokes_u, nsrcs, 0.0),
            "stokes_v": _column(stokes_v, nsrcs, 0.0),
            "reference_freq": _column(reference_freq, nsrcs, 100e6),
            "spectral_index": _column(spectral_index, nsrcs, 0.0),
            "fwhm_major": _column(fwhm_major, nsrcs, 0.0),
            "fwhm_minor": _column(fwhm_minor, nsrcs, 0.0),
            "position_angle": _column(position_angle, nsrcs, 0.0),
        }
        for name, col in columns.items():
            if col.shape != (nsrcs,):
                raise ValueError(
                    f"Column '{name}' has shape {col.shape}, expected ({nsrcs},)"
                )
        if np.any(columns["reference_freq"] <= 0):
            raise ValueError("reference_freq must be positive")
        for name, col in columns.items():
            setattr(self, name, col)

    @classmethod
    def empty(cls) -> "SkyCatalogue":
        return cls(ra=np.zeros(0), dec=np.zeros(0), stokes_i=np.zeros(0))

    def __len__(self) -> int:
        return self.ra.size

    @property
    def num_sources(self) -> int:
        return len(self)

    def select(self, index) -> "SkyCatalogue":
        """Return a new catalogue holding the sources picked by ``index``."""
        return SkyCatalogue(**{name: getattr(self, name)[index] for name in SOURCE_COLUMNS})

    def filter_by_flux(self, flux_min: float = None, flux_max: float = None) -> "SkyCatalogue":
        """Keep only sources whose Stokes I lies within ``[flux_min, flux_max]``."""
        keep = np.ones(len(self), dtype=bool)
        if flux_min is not None:
            keep &= self.stokes_i >= flux_min
        if flux_max is not None:
            keep &= self.stokes_i <= flux_max
        if not np.all(keep):
            logger.info(
                f"Flux filter removed {len(self) - np.count_nonzero(keep)} of "
                f"{len(self)} sources"
            )
        return self.select(keep)


@dataclass(frozen=True, eq=False)
class SkyChunk:
    """Contiguous, read-only slice ``[start, stop)`` of a sky catalogue."""

    index: int
    start: int
    stop: int
    ra: np.ndarray
    dec: np.ndarray
    stokes_i: np.ndarray
    stokes_q: np.ndarray
    stokes_u: np.ndarray
    stokes_v: np.ndarray
    reference_freq: np.ndarray
    spectral_index: np.ndarray
    fwhm_major: np.ndarray
    fwhm_minor: np.ndarray
    position_angle: np.ndarray

    @property
    def num_sources(self) -> int:
        return self.stop - self.start

    def flux_at(self, frequency_hz: float) -> np.ndarray:
        """Stokes (I, Q, U, V) of every source at ``frequency_hz``, shape (4, nsrcs)."""
        scale = (frequency_hz / self.reference_freq) ** self.spectral_index
        return np.stack([self.stokes_i, self.stokes_q, self.stokes_u, self.stokes_v]) * scale

    def direction_cosines(self, ra0: float, dec0: float):
        """Direction cosines (l, m, n) of each source relative to a phase centre."""
        dra = self.ra - ra0
        cos_dec = np.cos(self.dec)
        l = cos_dec * np.sin(dra)
        m = np.cos(dec0) * np.sin(self.dec) - np.sin(dec0) * cos_dec * np.cos(dra)
        n = np.sin(dec0) * np.sin(self.dec) + np.cos(dec0) * cos_dec * np.cos(dra)
        return l, m, n


class ChunkBuffer(Sequence):
    """Fixed sequence of :class:`SkyChunk` built from one catalogue."""

    def __init__(self, chunks):
        self._chunks = tuple(chunks)

    @classmethod
    def build(cls, sky: SkyCatalogue, max_chunk_size: int) -> "ChunkBuffer":
        """Partition ``sky`` into contiguous chunks of at most ``max_chunk_size``.

        Chunk ``i`` always holds sources ``i * max_chunk_size`` up to (but not
        including) ``(i + 1) * max_chunk_size``, so the partition is the same
        on every run. An empty catalogue yields no chunks.
        """
        if max_chunk_size < 1:
            raise SettingsInvalid("max_chunk_size must be at least 1")

        nsrcs = len(sky)
        nchunks = -(-nsrcs // max_chunk_size)
        chunks = []
        for i in range(nchunks):
            start = i * max_chunk_size
            stop = min(nsrcs, start + max_chunk_size)
            columns = {}
            for name in SOURCE_COLUMNS:
                col = np.array(getattr(sky, name)[start:stop], copy=True)
                col.flags.writeable = False
                columns[name] = col
            chunks.append(SkyChunk(index=i, start=start, stop=stop, **columns))

        logger.info(
            f"Split {nsrcs} sources into {nchunks} chunks of at most "
            f"{max_chunk_size} sources"
        )
        return cls(chunks)

    def __getitem__(self, item):
        return self._chunks[item]

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def num_sources(self) -> int:
        return sum(chunk.num_sources for chunk in self._chunks)
