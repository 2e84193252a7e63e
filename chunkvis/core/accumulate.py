"""
Per-lane accumulation of chunk visibilities and the per-channel fold.

Every lane owns an amplitude buffer (the most recent chunk's result) and an
accumulator buffer (the running sum of that lane's chunks for the current
channel). Once every lane has finished a channel the accumulators are folded
into the global dataset, always in lane index order so that the floating-point
summation order does not depend on which lane finished first.
"""

import logging
from dataclasses import dataclass

import numpy as np

from ..errors import RunStatus
from .visibilities import GlobalVisibilityDataset, VisibilityBuffer

logger = logging.getLogger(__name__)


@dataclass
class LaneBuffers:
    """The two visibility buffers owned by one lane."""

    amplitude: VisibilityBuffer
    accumulator: VisibilityBuffer

    @classmethod
    def allocate(
        cls, nlanes: int, shape: tuple, dtype=np.complex128, location: str = "cpu"
    ) -> list["LaneBuffers"]:
        """Allocate buffers for ``nlanes`` lanes, indexed by lane id."""
        return [
            cls(
                amplitude=VisibilityBuffer.zeros(shape, dtype, location),
                accumulator=VisibilityBuffer.zeros(shape, dtype, location),
            )
            for _ in range(nlanes)
        ]


class AccumulationEngine:
    """Sums chunk results per lane and folds lanes into the global dataset.

    Parameters
    ----------
    lane_buffers : list of LaneBuffers
        Buffers of every lane, indexed by lane id. The list is never resized.
    dataset : GlobalVisibilityDataset
        Destination of the per-channel fold.
    status : RunStatus
        Shared status of the run; a failed run is never folded.
    """

    def __init__(
        self,
        lane_buffers: list[LaneBuffers],
        dataset: GlobalVisibilityDataset,
        status: RunStatus,
    ):
        self.lane_buffers = tuple(lane_buffers)
        self.dataset = dataset
        self.status = status

    @property
    def num_lanes(self) -> int:
        return len(self.lane_buffers)

    def amplitude(self, lane_id: int) -> VisibilityBuffer:
        return self.lane_buffers[lane_id].amplitude

    def accumulator(self, lane_id: int) -> VisibilityBuffer:
        return self.lane_buffers[lane_id].accumulator

    def accumulate(self, lane_id: int, chunk_amplitude: VisibilityBuffer = None):
        """Add a chunk's amplitudes into the lane's accumulator.

        Only the lane owning ``lane_id`` may call this while a channel is being
        dispatched.

        Parameters
        ----------
        lane_id : int
            The lane whose accumulator is updated.
        chunk_amplitude : VisibilityBuffer, optional
            The amplitudes to add. Defaults to the lane's own amplitude buffer.
        """
        if chunk_amplitude is None:
            chunk_amplitude = self.amplitude(lane_id)
        self.accumulator(lane_id).add(chunk_amplitude)

    def fold_into_global(self, channel_index: int):
        """Add every lane accumulator into one channel of the global dataset.

        Must be called once per channel, after all lanes have finished. The
        accumulators are cleared afterwards, ready for the next channel. If
        the run has failed the dataset is left untouched and the run's error
        is raised.
        """
        self.status.raise_if_failed()

        slab = self.dataset.channel_amps(channel_index)
        for buffers in self.lane_buffers:
            slab.check_compatible(buffers.accumulator)

        self.dataset.mark_folded(channel_index)
        for buffers in self.lane_buffers:
            slab.add(buffers.accumulator)
            buffers.accumulator.clear()
        logger.debug(f"Folded {self.num_lanes} lanes into channel {channel_index}")

    def clear_accumulators(self):
        for buffers in self.lane_buffers:
            buffers.accumulator.clear()

    def accumulators_clear(self) -> bool:
        """Whether every lane accumulator is exactly zero."""
        return all(buffers.accumulator.is_zero() for buffers in self.lane_buffers)
