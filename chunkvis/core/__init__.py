"""Core functionality for chunkvis."""

from .accumulate import AccumulationEngine, LaneBuffers
from .correlate import CorrelationPrimitive
from .scheduler import ChannelScheduler, SchedulerState
from .sky import ChunkBuffer, SkyCatalogue, SkyChunk
