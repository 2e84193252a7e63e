"""
Baseline (u, v, w) coordinates.

Sidereal time is evaluated with ERFA, treating UT1 as UTC; the difference is
below a second and has no effect on simulated fringes at the accuracy this
package targets.
"""

import erfa
import numpy as np
from astropy.time import Time

from .telescope import TelescopeModel


def local_sidereal_time(times_mjd: np.ndarray, longitude: float) -> np.ndarray:
    """Local mean sidereal time in radians at each MJD (UTC)."""
    times = Time(np.atleast_1d(times_mjd), format="mjd", scale="utc")
    gmst = erfa.gmst82(times.jd1, times.jd2)
    return np.mod(gmst + longitude, 2 * np.pi)


def station_uvw(
    telescope: TelescopeModel, times_mjd: np.ndarray
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Station (u, v, w) coordinates in metres.

    Parameters
    ----------
    telescope : TelescopeModel
        Array geometry and phase centre.
    times_mjd : np.ndarray
        Times at which to evaluate the coordinates.

    Returns
    -------
    u, v, w : np.ndarray
        Arrays of shape (nstations, ntimes).
    """
    ha = local_sidereal_time(times_mjd, telescope.longitude) - telescope.ra0
    sin_ha, cos_ha = np.sin(ha), np.cos(ha)
    sin_dec, cos_dec = np.sin(telescope.dec0), np.cos(telescope.dec0)

    x, y, z = (c[:, None] for c in telescope.station_xyz.T)
    u = x * sin_ha + y * cos_ha
    v = sin_dec * (-x * cos_ha + y * sin_ha) + z * cos_dec
    w = cos_dec * (x * cos_ha - y * sin_ha) + z * sin_dec
    return u, v, w


def baseline_uvw(
    telescope: TelescopeModel, times_mjd: np.ndarray
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Baseline (u, v, w) coordinates in metres.

    The baseline between stations ``i < j`` points from ``i`` to ``j``.

    Returns
    -------
    uu, vv, ww : np.ndarray
        Arrays of shape (nbaselines, ntimes).
    """
    s1, s2 = telescope.station1, telescope.station2
    return tuple(c[s2] - c[s1] for c in station_uvw(telescope, times_mjd))
