"""Chunked multi-device interferometer visibility simulator."""

from .config import NoiseSettings, ObservationSettings, SimulationSettings, SkyFilterSettings
from .core.correlate import CorrelationPrimitive
from .core.sky import ChunkBuffer, SkyCatalogue, SkyChunk
from .core.telescope import TelescopeModel
from .core.visibilities import GlobalVisibilityDataset, VisibilityBuffer
from .cpu.cpu_correlate import CPUCorrelator
from .devices import DevicePool, Lane
from .errors import (
    AllocationFailure,
    BadLocation,
    ChunkvisError,
    CorrelationFailure,
    DeviceUnavailable,
    ErrorCode,
    RunStatus,
    SettingsInvalid,
    StageFailure,
    TypeMismatch,
)
from .simulate import SimulationOrchestrator
from .wrapper import create_correlator, simulate_vis

# Import utility modules
from . import logutils

# Try to import the GPU implementation if available
try:
    from .gpu.gpu_correlate import GPUCorrelator
    _gpu_available = True
except ImportError:
    _gpu_available = False
    GPUCorrelator = None

__all__ = [
    "AllocationFailure",
    "BadLocation",
    "CPUCorrelator",
    "ChunkBuffer",
    "ChunkvisError",
    "CorrelationFailure",
    "CorrelationPrimitive",
    "DeviceUnavailable",
    "DevicePool",
    "ErrorCode",
    "GlobalVisibilityDataset",
    "Lane",
    "NoiseSettings",
    "ObservationSettings",
    "RunStatus",
    "SettingsInvalid",
    "SimulationOrchestrator",
    "SimulationSettings",
    "SkyCatalogue",
    "SkyChunk",
    "SkyFilterSettings",
    "StageFailure",
    "TelescopeModel",
    "TypeMismatch",
    "VisibilityBuffer",
    "create_correlator",
    "simulate_vis",
]

# Add GPU exports if available
if _gpu_available:
    __all__.append("GPUCorrelator")
