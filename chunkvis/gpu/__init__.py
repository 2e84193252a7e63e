"""GPU-specific implementations for chunkvis."""

from .gpu_correlate import GPUCorrelator
