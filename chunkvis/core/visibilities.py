"""
Visibility buffers and the global visibility dataset.

A :class:`VisibilityBuffer` holds one amplitude slab of shape
``(nbaselines, ntimes)`` (scalar) or ``(nbaselines, ntimes, 2, 2)``
(polarised), together with the precision and memory space it lives in.
"""

import logging

import numpy as np

from ..errors import AllocationFailure, BadLocation, TypeMismatch

logger = logging.getLogger(__name__)

LOCATIONS = ("cpu", "gpu")


def slab_shape(nbls: int, ntimes: int, polarized: bool = False) -> tuple:
    """Shape of one channel's amplitude slab."""
    return (nbls, ntimes, 2, 2) if polarized else (nbls, ntimes)


def _zeros(shape, dtype, location: str):
    if location == "cpu":
        try:
            return np.zeros(shape, dtype=dtype)
        except MemoryError as err:
            raise AllocationFailure(
                f"Could not allocate {shape} {np.dtype(dtype).name} buffer on host"
            ) from err

    import cupy as cp

    try:
        return cp.zeros(shape, dtype=dtype)
    except cp.cuda.memory.OutOfMemoryError as err:
        raise AllocationFailure(
            f"Could not allocate {shape} {np.dtype(dtype).name} buffer on device"
        ) from err


class VisibilityBuffer:
    """Flat complex amplitude buffer with a fixed precision and location."""

    def __init__(self, data, location: str = "cpu"):
        if location not in LOCATIONS:
            raise BadLocation(f"Unknown memory location: {location}")
        self.data = data
        self.location = location

    @classmethod
    def zeros(cls, shape, dtype=np.complex128, location: str = "cpu") -> "VisibilityBuffer":
        if location not in LOCATIONS:
            raise BadLocation(f"Unknown memory location: {location}")
        if not np.issubdtype(np.dtype(dtype), np.complexfloating):
            raise TypeMismatch(f"Visibility buffers must be complex, not {np.dtype(dtype)}")
        return cls(_zeros(shape, dtype, location), location=location)

    @property
    def dtype(self):
        return self.data.dtype

    @property
    def shape(self) -> tuple:
        return self.data.shape

    @property
    def nbytes(self) -> int:
        return self.data.nbytes

    def check_compatible(self, other: "VisibilityBuffer"):
        """Raise unless ``other`` can be combined element-wise with this buffer."""
        if other.location != self.location:
            raise BadLocation(
                f"Cannot combine a '{other.location}' buffer with a "
                f"'{self.location}' buffer"
            )
        if other.dtype != self.dtype:
            raise TypeMismatch(f"Cannot combine {other.dtype} with {self.dtype}")
        if other.shape != self.shape:
            raise TypeMismatch(f"Cannot combine shape {other.shape} with {self.shape}")

    def add(self, other: "VisibilityBuffer"):
        """Add ``other`` into this buffer in place."""
        self.check_compatible(other)
        self.data += other.data

    def clear(self):
        self.data[...] = 0

    def is_zero(self) -> bool:
        return not bool(self.data.any())


class GlobalVisibilityDataset:
    """Simulated visibilities of every channel, plus baseline coordinates.

    Parameters
    ----------
    frequencies : np.ndarray
        Centre frequency of each channel in Hz.
    times_mjd : np.ndarray
        Centre of each time sample, MJD (UTC).
    station1, station2 : np.ndarray
        Station indices of every baseline.
    dtype : np.dtype
        Complex dtype of the amplitudes.
    polarized : bool
        Whether each visibility is a 2x2 matrix.
    """

    def __init__(
        self,
        frequencies: np.ndarray,
        times_mjd: np.ndarray,
        station1: np.ndarray,
        station2: np.ndarray,
        dtype=np.complex128,
        polarized: bool = False,
        phase_centre: tuple = (0.0, 0.0),
    ):
        self.frequencies = np.asarray(frequencies, dtype=np.float64)
        self.times_mjd = np.asarray(times_mjd, dtype=np.float64)
        self.station1 = np.asarray(station1)
        self.station2 = np.asarray(station2)
        self.polarized = polarized
        self.phase_centre = phase_centre

        shape = (self.num_channels,) + slab_shape(
            self.num_baselines, self.num_times, polarized
        )
        try:
            self.amplitude = np.zeros(shape, dtype=dtype)
            self.uu = np.zeros((self.num_baselines, self.num_times))
            self.vv = np.zeros_like(self.uu)
            self.ww = np.zeros_like(self.uu)
        except MemoryError as err:
            raise AllocationFailure(
                f"Could not allocate global visibilities of shape {shape}"
            ) from err

        self.folded_channels = set()
        self.is_final = False

    @property
    def num_channels(self) -> int:
        return self.frequencies.size

    @property
    def num_times(self) -> int:
        return self.times_mjd.size

    @property
    def num_baselines(self) -> int:
        return self.station1.size

    def channel_amps(self, channel_index: int) -> VisibilityBuffer:
        """View of one channel's amplitude slab as a host buffer."""
        return VisibilityBuffer(self.amplitude[channel_index], location="cpu")

    def mark_folded(self, channel_index: int):
        if channel_index in self.folded_channels:
            raise ValueError(f"Channel {channel_index} has already been folded")
        self.folded_channels.add(channel_index)
