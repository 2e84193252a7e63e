"""
Top-level driver of an interferometer simulation.

The orchestrator acquires devices, partitions the sky, allocates per-lane
buffers, runs the channel scheduler, post-processes the global dataset (system
noise, baseline coordinates) and hands it to the output writers. Any failure
aborts the remaining stages; devices are always released once in-flight work
has settled.
"""

import logging
import time
from typing import Callable, Iterable, Optional

from .config import SimulationSettings
from .core.accumulate import AccumulationEngine, LaneBuffers
from .core.correlate import CorrelationPrimitive
from .core.noise import add_system_noise
from .core.scheduler import ChannelScheduler
from .core.sky import ChunkBuffer, SkyCatalogue
from .core.telescope import TelescopeModel
from .core.visibilities import GlobalVisibilityDataset, slab_shape
from .devices import DevicePool
from .errors import ChunkvisError, RunStatus, SettingsInvalid, StageFailure
from .logutils import ChannelProgress, human_readable_size

logger = logging.getLogger(__name__)

Writer = Callable[[GlobalVisibilityDataset], None]


class SimulationOrchestrator:
    """Runs a complete simulation for one sky and telescope model.

    Parameters
    ----------
    settings : SimulationSettings
        Run configuration.
    sky : SkyCatalogue
        Sources to simulate.
    telescope : TelescopeModel
        Array geometry, phase centre and station error terms.
    writers : iterable of callables
        Each is called with the final dataset once the run has succeeded.
    correlator : CorrelationPrimitive, optional
        Correlation kernel. Defaults to the one matching ``settings.backend``.
    device_pool : DevicePool, optional
        Pool to acquire lanes from. Defaults to a pool for ``settings.backend``
        and ``settings.device_ids``.
    """

    def __init__(
        self,
        settings: SimulationSettings,
        sky: SkyCatalogue,
        telescope: TelescopeModel,
        writers: Iterable[Writer] = (),
        correlator: Optional[CorrelationPrimitive] = None,
        device_pool: Optional[DevicePool] = None,
    ):
        self.settings = settings
        self.sky = sky
        self.telescope = telescope
        self.writers = list(writers)
        self.correlator = correlator
        self.device_pool = device_pool or DevicePool(
            settings.backend, device_ids=settings.device_ids
        )

        self.status = RunStatus()
        self.chunks = None
        self.dataset = None
        self.engine = None
        self.scheduler = None

    @property
    def code(self) -> int:
        """Integer status of the last run, 0 on success."""
        return self.status.code

    def _check_settings(self):
        self.settings.validate()
        if self.settings.require_output and not self.writers:
            raise SettingsInvalid("No output writer specified.")

    def _log_settings(self):
        obs = self.settings.observation
        logger.info(
            f"Simulating {len(self.sky)} sources on {self.telescope.num_stations} "
            f"stations ({self.telescope.num_baselines} baselines): "
            f"{obs.num_channels} channels from {obs.start_frequency_hz / 1e6:.4f} MHz, "
            f"{obs.num_time_steps} time samples, {self.settings.num_devices} "
            f"{self.settings.backend} device(s)"
        )

    def _allocate(self, nlanes: int) -> list[LaneBuffers]:
        obs = self.settings.observation
        self.dataset = GlobalVisibilityDataset(
            frequencies=obs.frequencies(),
            times_mjd=obs.times_mjd(),
            station1=self.telescope.station1,
            station2=self.telescope.station2,
            dtype=self.settings.complex_dtype,
            polarized=self.settings.polarized,
            phase_centre=(self.telescope.ra0, self.telescope.dec0),
        )
        shape = slab_shape(
            self.telescope.num_baselines, obs.num_time_steps, self.settings.polarized
        )
        lane_buffers = LaneBuffers.allocate(
            nlanes, shape, dtype=self.settings.complex_dtype, location="cpu"
        )
        logger.info(
            f"Allocated {human_readable_size(self.dataset.amplitude.nbytes)} of "
            f"global visibilities and "
            f"{human_readable_size(2 * nlanes * lane_buffers[0].amplitude.nbytes)} "
            f"of lane buffers"
        )
        return lane_buffers

    def _run_stages(self):
        self._check_settings()
        self._log_settings()

        if self.correlator is None:
            from .wrapper import create_correlator

            self.correlator = create_correlator(self.settings.backend)

        lanes = self.device_pool.acquire(self.settings.num_devices)

        sky = self.sky
        sky_filter = self.settings.sky_filter
        if sky_filter.flux_min is not None or sky_filter.flux_max is not None:
            sky = sky.filter_by_flux(sky_filter.flux_min, sky_filter.flux_max)
        self.chunks = ChunkBuffer.build(sky, self.settings.max_sources_per_chunk)

        lane_buffers = self._allocate(len(lanes))
        self.engine = AccumulationEngine(lane_buffers, self.dataset, self.status)

        obs = self.settings.observation
        self.scheduler = ChannelScheduler(
            lanes=lanes,
            chunks=self.chunks,
            correlator=self.correlator,
            engine=self.engine,
            status=self.status,
            telescope=self.telescope,
            times_mjd=self.dataset.times_mjd,
            bandwidth_hz=obs.channel_bandwidth_hz,
            dynamic=self.settings.dynamic_scheduling,
            progress=ChannelProgress(),
        )
        self.scheduler.run(self.dataset.frequencies)

        if self.settings.noise.enabled:
            add_system_noise(self.dataset, self.telescope, self.settings.noise.seed)

        uu, vv, ww = self.correlator.baseline_coordinates(
            self.telescope, self.dataset.times_mjd
        )
        self.dataset.uu[...] = uu
        self.dataset.vv[...] = vv
        self.dataset.ww[...] = ww

    def _abort(self, error: ChunkvisError):
        self.status.record(error)
        logger.error(
            f"Simulation aborted with status {self.status.code}: {self.status.error}"
        )
        self.status.raise_if_failed()

    def run(self) -> GlobalVisibilityDataset:
        """Run every stage of the simulation.

        The dataset is marked final only once every writer has returned.

        Returns
        -------
        GlobalVisibilityDataset
            The final dataset, also passed to every writer.

        Raises
        ------
        ChunkvisError
            The first error recorded during the run. ``self.code`` holds its
            integer status code. Errors from outside chunkvis, including those
            raised by writers, are reported as :class:`StageFailure` with the
            original exception as its cause.
        """
        if self.status.failed or (self.dataset is not None and self.dataset.is_final):
            raise RuntimeError("A simulation orchestrator can only be run once")

        start_time = time.time()
        try:
            try:
                self._run_stages()
            finally:
                self.device_pool.release()
            logger.info(f"Simulation completed in {time.time() - start_time:.3f} sec.")

            for writer in self.writers:
                writer(self.dataset)
        except ChunkvisError as err:
            self._abort(err)
        except Exception as err:
            failure = StageFailure(f"{type(err).__name__}: {err}")
            failure.__cause__ = err
            self._abort(failure)

        self.dataset.is_final = True
        logger.info("Run complete.")
        return self.dataset
