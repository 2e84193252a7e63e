import numpy as np

speed_of_light = 299792458.0  # m/s

# Converts a Gaussian full width at half maximum to a standard deviation.
FWHM_TO_SIGMA = 1.0 / (2.0 * np.sqrt(2.0 * np.log(2.0)))


def get_baseline_indices(nstations: int) -> tuple[np.ndarray, np.ndarray]:
    """
    Station index pairs forming every cross-correlation baseline.

    Baselines are ordered by the first station and then by the second, with
    the first index always smaller than the second.

    Parameters:
    ----------
        nstations: int
            Number of stations in the array.

    Returns:
    -------
        station1, station2: np.ndarray
            Integer arrays of length ``nstations * (nstations - 1) // 2``.
    """
    station1, station2 = np.triu_indices(nstations, k=1)
    return station1.astype(np.int64), station2.astype(np.int64)


def get_num_baselines(nstations: int) -> int:
    """Number of cross-correlation baselines for ``nstations`` stations."""
    return nstations * (nstations - 1) // 2


def get_static_assignments(nlanes: int, nchunks: int) -> list[list[int]]:
    """Assign chunk indices to lanes in fixed round-robin order.

    Lane ``k`` is given chunks ``k, k + nlanes, k + 2 * nlanes, ...``.

    Parameters
    ----------
    nlanes : int
        The number of worker lanes.
    nchunks : int
        The number of sky chunks.

    Returns
    -------
    assignments : list of lists of int
        A length-nlanes list; each sublist holds the chunk indices, in
        increasing order, processed by that lane.
    """
    return [list(range(lane, nchunks, nlanes)) for lane in range(nlanes)]


def enu_to_equatorial(enu: np.ndarray, latitude: float) -> np.ndarray:
    """
    Convert local horizon (east, north, up) offsets to the equatorial frame.

    The equatorial frame has x towards the local meridian on the equator,
    y towards the east and z towards the celestial pole.

    Parameters:
    ----------
        enu: np.ndarray
            Array of shape (N, 3) holding east, north and up offsets in metres.
        latitude: float
            Geodetic latitude of the array centre in radians.

    Returns:
    -------
        xyz: np.ndarray
            Array of shape (N, 3) of offsets in the equatorial frame.
    """
    enu = np.atleast_2d(np.asarray(enu, dtype=np.float64))
    east, north, up = enu.T
    sin_lat, cos_lat = np.sin(latitude), np.cos(latitude)
    x = -sin_lat * north + cos_lat * up
    y = east
    z = cos_lat * north + sin_lat * up
    return np.stack([x, y, z], axis=-1)
