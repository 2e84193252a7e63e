"""CPU-specific implementations for chunkvis."""

from .cpu_correlate import CPUCorrelator
