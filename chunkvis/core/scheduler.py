"""
Channel-by-channel dispatch of sky chunks to worker lanes.

For each channel every chunk index is put on a work queue, which is drained by
one task per lane. Lanes claim chunks first-come-first-served, so faster
devices process more chunks. A barrier waits for all lane tasks before the
lane accumulators are folded into the global dataset. Channels are processed
strictly one after another because the lane accumulators are reused.
"""

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from enum import Enum
from typing import Callable, Optional

import numpy as np

from ..devices import Lane
from ..errors import ChunkvisError, CorrelationFailure, RunStatus
from .accumulate import AccumulationEngine
from .correlate import CorrelationPrimitive
from .sky import ChunkBuffer
from .telescope import TelescopeModel
from .utils import get_static_assignments

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    IDLE = "idle"
    DISPATCHING = "dispatching"
    FOLDING = "folding"
    NEXT_CHANNEL = "next_channel"
    DONE = "done"
    ABORTED = "aborted"


class ChannelScheduler:
    """Runs every channel of a simulation across a fixed set of lanes.

    Parameters
    ----------
    lanes : list of Lane
        Worker lanes, indexed by lane id.
    chunks : ChunkBuffer
        Sky chunks to correlate for every channel.
    correlator : CorrelationPrimitive
        Kernel evaluating one chunk at one frequency.
    engine : AccumulationEngine
        Lane buffers and the global dataset.
    status : RunStatus
        Shared first-error latch.
    telescope : TelescopeModel
        Shared array geometry.
    times_mjd : np.ndarray
        Time sample centres.
    bandwidth_hz : float
        Channel bandwidth used for smearing.
    dynamic : bool
        If True, lanes claim the next unclaimed chunk as they become free.
        If False, lane k processes chunks k, k + n, ... in order.
    progress : callable, optional
        Called as ``progress(channel_index, num_channels)`` after each fold.
    """

    def __init__(
        self,
        lanes: list[Lane],
        chunks: ChunkBuffer,
        correlator: CorrelationPrimitive,
        engine: AccumulationEngine,
        status: RunStatus,
        telescope: TelescopeModel,
        times_mjd: np.ndarray,
        bandwidth_hz: float = 0.0,
        dynamic: bool = True,
        progress: Optional[Callable[[int, int], None]] = None,
    ):
        if len(lanes) != engine.num_lanes:
            raise ValueError(
                f"{len(lanes)} lanes given but buffers exist for {engine.num_lanes}"
            )
        self.lanes = list(lanes)
        self.chunks = chunks
        self.correlator = correlator
        self.engine = engine
        self.status = status
        self.telescope = telescope
        self.times_mjd = np.asarray(times_mjd)
        self.bandwidth_hz = bandwidth_hz
        self.dynamic = dynamic
        self.progress = progress

        self.state = SchedulerState.IDLE
        self.history = [SchedulerState.IDLE]
        self.channel_index = None
        self.completed_chunks = 0
        # Chunk indices not yet claimed by any lane in the current channel.
        self.pending = None
        self._counter_lock = threading.Lock()

    def _set_state(self, state: SchedulerState):
        logger.debug(f"Scheduler {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def _process_chunk(self, lane: Lane, chunk_index: int, channel_index: int, frequency: float):
        """Correlate one chunk on ``lane`` and add it to the lane's accumulator."""
        chunk = self.chunks[chunk_index]
        try:
            with lane.bind():
                self.correlator.correlate(
                    chunk,
                    self.telescope,
                    frequency,
                    self.times_mjd,
                    self.bandwidth_hz,
                    self.engine.amplitude(lane.lane_id),
                )
                self.engine.accumulate(lane.lane_id)
        except ChunkvisError as err:
            if err.chunk_index is None:
                err.chunk_index = chunk_index
                err.channel_index = channel_index
            if self.status.record(err):
                logger.error(
                    f"Chunk {chunk_index} failed on {lane} for channel {channel_index}: {err}"
                )
        except Exception as err:
            failure = CorrelationFailure(
                f"Chunk {chunk_index} failed on {lane} for channel {channel_index}: {err}",
                chunk_index=chunk_index,
                channel_index=channel_index,
            )
            failure.__cause__ = err
            if self.status.record(failure):
                logger.error(str(failure))
        finally:
            with self._counter_lock:
                self.completed_chunks += 1

    def _drain_queue(self, lane: Lane, work: queue.Queue, channel_index: int, frequency: float):
        while not self.status.failed:
            try:
                chunk_index = work.get_nowait()
            except queue.Empty:
                return
            self._process_chunk(lane, chunk_index, channel_index, frequency)

    def _run_assigned(self, lane: Lane, chunk_indices: list, channel_index: int, frequency: float):
        for chunk_index in chunk_indices:
            if self.status.failed:
                return
            self._process_chunk(lane, chunk_index, channel_index, frequency)

    def _dispatch(self, executor: ThreadPoolExecutor, channel_index: int, frequency: float):
        self.completed_chunks = 0
        nchunks = len(self.chunks)
        if nchunks == 0:
            return

        if self.dynamic:
            work = queue.Queue()
            for chunk_index in range(nchunks):
                work.put(chunk_index)
            self.pending = work
            futures = [
                executor.submit(self._drain_queue, lane, work, channel_index, frequency)
                for lane in self.lanes
            ]
        else:
            assignments = get_static_assignments(len(self.lanes), nchunks)
            futures = [
                executor.submit(self._run_assigned, lane, indices, channel_index, frequency)
                for lane, indices in zip(self.lanes, assignments)
            ]

        # Barrier: every lane task finishes, including in-flight chunks after a failure.
        wait(futures)
        for future in futures:
            future.result()

    def run(self, frequencies: np.ndarray):
        """Simulate every channel in ``frequencies`` in order.

        Raises
        ------
        ChunkvisError
            The first error recorded by any lane; the failing channel is never
            folded.
        """
        frequencies = np.atleast_1d(frequencies)
        nchannels = frequencies.size
        if self.state is not SchedulerState.IDLE:
            raise RuntimeError(f"Scheduler cannot run from state '{self.state.value}'")

        with ThreadPoolExecutor(
            max_workers=len(self.lanes), thread_name_prefix="chunkvis-lane"
        ) as executor:
            for channel_index, frequency in enumerate(frequencies):
                self.channel_index = channel_index
                logger.info(
                    f"Channel {channel_index + 1:3d}/{nchannels} "
                    f"[{frequency / 1e6:.4f} MHz]"
                )

                self._set_state(SchedulerState.DISPATCHING)
                self._dispatch(executor, channel_index, float(frequency))

                if self.status.failed:
                    self._set_state(SchedulerState.ABORTED)
                    self.status.raise_if_failed()

                self._set_state(SchedulerState.FOLDING)
                try:
                    self.engine.fold_into_global(channel_index)
                except ChunkvisError as err:
                    self.status.record(err)
                    self._set_state(SchedulerState.ABORTED)
                    raise

                if self.progress is not None:
                    self.progress(channel_index, nchannels)

                if channel_index + 1 < nchannels:
                    self._set_state(SchedulerState.NEXT_CHANNEL)

        self._set_state(SchedulerState.DONE)
