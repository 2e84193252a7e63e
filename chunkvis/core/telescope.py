"""Telescope geometry and per-station error terms."""

import numpy as np
from astropy.coordinates import EarthLocation

from .utils import enu_to_equatorial, get_baseline_indices, get_num_baselines


class TelescopeModel:
    """Read-only description of an interferometer array.

    The model is shared by every worker lane; nothing in the simulation
    writes to it once constructed.

    Parameters
    ----------
    station_xyz : array_like
        Station offsets from the array centre, shape (nstations, 3), in metres,
        in the equatorial frame (x to the local meridian on the equator, y
        east, z to the celestial pole).
    longitude, latitude : float
        Geodetic position of the array centre in radians.
    ra0, dec0 : float
        Phase centre in radians.
    station_gains : array_like, optional
        Complex gain error term of every station. Defaults to unity.
    station_noise_rms : array_like, optional
        Thermal noise RMS of every station in Jy. Defaults to zero.
    """

    def __init__(
        self,
        station_xyz,
        longitude: float,
        latitude: float,
        ra0: float,
        dec0: float,
        station_gains=None,
        station_noise_rms=None,
    ):
        station_xyz = np.atleast_2d(np.array(station_xyz, dtype=np.float64))
        if station_xyz.ndim != 2 or station_xyz.shape[1] != 3:
            raise ValueError(
                f"station_xyz must have shape (nstations, 3), got {station_xyz.shape}"
            )
        nstations = station_xyz.shape[0]
        if nstations < 2:
            raise ValueError("At least two stations are needed to form a baseline")

        if station_gains is None:
            station_gains = np.ones(nstations, dtype=np.complex128)
        station_gains = np.array(station_gains, dtype=np.complex128)
        if station_noise_rms is None:
            station_noise_rms = np.zeros(nstations)
        station_noise_rms = np.broadcast_to(
            np.asarray(station_noise_rms, dtype=np.float64), (nstations,)
        ).copy()

        if station_gains.shape != (nstations,):
            raise ValueError("station_gains must have one entry per station")
        if np.any(station_noise_rms < 0):
            raise ValueError("station_noise_rms cannot be negative")

        self.station_xyz = station_xyz
        self.longitude = float(longitude)
        self.latitude = float(latitude)
        self.ra0 = float(ra0)
        self.dec0 = float(dec0)
        self.station_gains = station_gains
        self.station_noise_rms = station_noise_rms
        self.station1, self.station2 = get_baseline_indices(nstations)

        for arr in (
            self.station_xyz,
            self.station_gains,
            self.station_noise_rms,
            self.station1,
            self.station2,
        ):
            arr.flags.writeable = False

    @classmethod
    def from_enu(
        cls,
        enu,
        location: EarthLocation,
        ra0: float,
        dec0: float,
        **kwargs,
    ) -> "TelescopeModel":
        """Build a model from local (east, north, up) station offsets."""
        latitude = location.lat.rad
        return cls(
            station_xyz=enu_to_equatorial(enu, latitude),
            longitude=location.lon.rad,
            latitude=latitude,
            ra0=ra0,
            dec0=dec0,
            **kwargs,
        )

    @property
    def num_stations(self) -> int:
        return self.station_xyz.shape[0]

    @property
    def num_baselines(self) -> int:
        return get_num_baselines(self.num_stations)

    def baseline_gains(self) -> np.ndarray:
        """Gain product ``g_i * conj(g_j)`` for every baseline."""
        return self.station_gains[self.station1] * np.conj(
            self.station_gains[self.station2]
        )

    def baseline_noise_rms(self) -> np.ndarray:
        """Noise RMS on every baseline, the geometric mean of its two stations."""
        return np.sqrt(
            self.station_noise_rms[self.station1] * self.station_noise_rms[self.station2]
        )
