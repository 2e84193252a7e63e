from typing import Iterable, Literal, Optional

import numpy as np

from .config import NoiseSettings, ObservationSettings, SimulationSettings
from .core.correlate import CorrelationPrimitive
from .core.sky import SkyCatalogue
from .core.telescope import TelescopeModel
from .core.visibilities import GlobalVisibilityDataset
from .cpu.cpu_correlate import CPUCorrelator
from .simulate import SimulationOrchestrator, Writer


def create_correlator(
    backend: Literal["cpu", "gpu"] = "cpu", **kwargs
) -> CorrelationPrimitive:
    """Create a correlation primitive for the specified backend.

    Parameters
    ----------
    backend
        The backend to correlate on.
        Currently supported: "cpu", "gpu".
    **kwargs
        Additional keyword arguments to pass to the correlator constructor.

    Returns
    -------
    CorrelationPrimitive
        A correlator instance for the specified backend.

    Raises
    ------
    ValueError
        If the specified backend is not supported.
    """
    if backend == "cpu":
        return CPUCorrelator(**kwargs)
    elif backend == "gpu":
        from .gpu.gpu_correlate import GPUCorrelator

        return GPUCorrelator(**kwargs)
    else:
        raise ValueError(f"Unsupported backend: {backend}")


def simulate_vis(
    sky: SkyCatalogue,
    telescope: TelescopeModel,
    freqs: np.ndarray,
    ntimes: int = 1,
    start_mjd: float = 59000.0,
    dt_days: float = 10.0 / 86400.0,
    channel_bandwidth: float = 0.0,
    num_devices: int = 1,
    device_ids: Optional[list] = None,
    max_sources_per_chunk: int = 10000,
    precision: int = 2,
    polarized: bool = False,
    noise_seed: Optional[int] = None,
    dynamic_scheduling: bool = True,
    writers: Iterable[Writer] = (),
    backend: Literal["cpu", "gpu"] = "cpu",
) -> GlobalVisibilityDataset:
    """
    Parameters:
    ----------
    sky : SkyCatalogue
        Sources to simulate.
    telescope : TelescopeModel
        Station positions, phase centre and station error terms.
    freqs : np.ndarray
        Channel frequencies in Hz. Must be evenly spaced.
    ntimes : int, default = 1
        Number of time samples.
    start_mjd : float
        Start of the observation, MJD (UTC).
    dt_days : float
        Length of each time sample in days.
    channel_bandwidth : float, default = 0.0
        Channel bandwidth in Hz used for bandwidth smearing. Zero disables
        smearing.
    num_devices : int, default = 1
        Number of worker lanes, one device each.
    device_ids : list of int, optional
        Device bound to each lane.
    max_sources_per_chunk : int
        Largest number of sources correlated as one unit of work.
    precision : int, optional
       Which precision level to use for floats and complex numbers
       Allowed values:
       - 1: float32, complex64
       - 2: float64, complex128
    polarized : bool, optional
        Whether to simulate 2x2 visibility matrices. If True the amplitudes have
        shape (nfreqs, nbls, ntimes, 2, 2), otherwise (nfreqs, nbls, ntimes).
    noise_seed : int, optional
        If given, system noise is added using this seed.
    dynamic_scheduling : bool, default = True
        Whether lanes claim chunks as they become free, or in fixed order.
    writers : iterable of callables
        Called with the final dataset.
    backend : str
        Backend to use for simulation ("cpu" or "gpu").

    Returns:
    -------
    dataset : GlobalVisibilityDataset
        The simulated visibilities and baseline coordinates.
    """
    freqs = np.atleast_1d(np.asarray(freqs, dtype=np.float64))
    if freqs.size > 1:
        inc = freqs[1] - freqs[0]
        if not np.allclose(np.diff(freqs), inc):
            raise ValueError("freqs must be evenly spaced")
    else:
        inc = 0.0

    settings = SimulationSettings(
        num_devices=num_devices,
        device_ids=device_ids,
        backend=backend,
        max_sources_per_chunk=max_sources_per_chunk,
        precision=precision,
        polarized=polarized,
        dynamic_scheduling=dynamic_scheduling,
        require_output=False,
        observation=ObservationSettings(
            start_frequency_hz=float(freqs[0]),
            frequency_inc_hz=float(inc),
            num_channels=freqs.size,
            channel_bandwidth_hz=channel_bandwidth,
            start_mjd_utc=start_mjd,
            num_time_steps=ntimes,
            dt_dump_days=dt_days,
        ),
        noise=NoiseSettings(
            enabled=noise_seed is not None,
            seed=noise_seed if noise_seed is not None else 1,
        ),
    )
    orchestrator = SimulationOrchestrator(
        settings=settings,
        sky=sky,
        telescope=telescope,
        writers=writers,
        correlator=create_correlator(backend),
    )
    return orchestrator.run()
