"""Tests comparing the GPU correlation primitive against the CPU one."""

import numpy as np
import pytest

from chunkvis.core.sky import ChunkBuffer
from chunkvis.core.visibilities import VisibilityBuffer, slab_shape
from chunkvis.cpu.cpu_correlate import CPUCorrelator
from chunkvis.devices import DevicePool

try:
    import cupy as cp

    GPU_AVAILABLE = cp.cuda.is_available()
except ImportError:
    GPU_AVAILABLE = False

gpu_test = pytest.mark.skipif(not GPU_AVAILABLE, reason="GPU not available")

TIMES = np.array([59000.1, 59000.2])


def _run(correlator, chunk, telescope, bandwidth_hz=0.0, polarized=False, location="cpu"):
    out = VisibilityBuffer.zeros(slab_shape(6, TIMES.size, polarized), location=location)
    correlator.correlate(chunk, telescope, 150e6, TIMES, bandwidth_hz, out)
    if location == "gpu":
        return cp.asnumpy(out.data)
    return out.data


@gpu_test
@pytest.mark.parametrize("bandwidth_hz", [0.0, 5e6])
@pytest.mark.parametrize("polarized", [False, True])
def test_gpu_matches_cpu(random_sky, telescope, bandwidth_hz, polarized):
    from chunkvis.gpu.gpu_correlate import GPUCorrelator

    chunk = ChunkBuffer.build(random_sky, 30)[0]
    cpu = _run(CPUCorrelator(), chunk, telescope, bandwidth_hz, polarized)
    gpu = _run(GPUCorrelator(max_elements=64), chunk, telescope, bandwidth_hz, polarized)
    np.testing.assert_allclose(gpu, cpu, rtol=1e-9, atol=1e-10)


@gpu_test
def test_gpu_device_buffer(sky4, telescope):
    from chunkvis.gpu.gpu_correlate import GPUCorrelator

    chunk = ChunkBuffer.build(sky4, 4)[0]
    cpu = _run(CPUCorrelator(), chunk, telescope)
    gpu = _run(GPUCorrelator(), chunk, telescope, location="gpu")
    np.testing.assert_allclose(gpu, cpu, rtol=1e-9, atol=1e-10)


@gpu_test
def test_gpu_pool_release():
    pool = DevicePool("gpu")
    lanes = pool.acquire(1)
    with lanes[0].bind():
        pass
    pool.release()
    pool.release()
    assert pool.lanes == []
