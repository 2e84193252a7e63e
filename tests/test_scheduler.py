"""Tests for the channel scheduler."""

import threading
import time

import numpy as np
import pytest

from chunkvis.core.accumulate import AccumulationEngine, LaneBuffers
from chunkvis.core.correlate import CorrelationPrimitive
from chunkvis.core.scheduler import ChannelScheduler, SchedulerState
from chunkvis.core.sky import ChunkBuffer
from chunkvis.core.visibilities import GlobalVisibilityDataset, slab_shape
from chunkvis.cpu.cpu_correlate import CPUCorrelator
from chunkvis.devices import DevicePool, current_device
from chunkvis.errors import (
    BadLocation,
    CorrelationFailure,
    ErrorCode,
    RunStatus,
    TypeMismatch,
)

TIMES = np.array([59000.1, 59000.2, 59000.3])
FREQS = np.array([100e6, 120e6, 140e6])


class CountingCorrelator(CorrelationPrimitive):
    """Writes ``(chunk.index + 1) * MHz`` into every element and records calls."""

    def __init__(self, fail_on=None):
        self.fail_on = fail_on
        self.lock = threading.Lock()
        self.calls = []

    def correlate(self, chunk, telescope, frequency_hz, times_mjd, bandwidth_hz, out):
        with self.lock:
            self.calls.append((chunk.index, frequency_hz, current_device()))
        if self.fail_on is not None and (chunk.index, frequency_hz) == self.fail_on:
            raise RuntimeError("kernel launch failed")
        out.data[...] = (chunk.index + 1) * frequency_hz / 1e6


def _setup(telescope, chunks, nlanes=2, correlator=None, device_ids=None, **kwargs):
    pool = DevicePool("cpu", device_ids=device_ids)
    lanes = pool.acquire(nlanes)
    status = RunStatus()
    dataset = GlobalVisibilityDataset(
        FREQS, TIMES, telescope.station1, telescope.station2
    )
    buffers = LaneBuffers.allocate(nlanes, slab_shape(telescope.num_baselines, TIMES.size))
    engine = AccumulationEngine(buffers, dataset, status)
    scheduler = ChannelScheduler(
        lanes,
        chunks,
        correlator or CountingCorrelator(),
        engine,
        status,
        telescope,
        TIMES,
        **kwargs,
    )
    return scheduler, dataset, status


def _expected_counting(nchunks):
    total = sum(range(1, nchunks + 1))
    return np.array([total * f / 1e6 for f in FREQS])


@pytest.mark.parametrize("dynamic", [True, False])
@pytest.mark.parametrize("nlanes", [1, 2, 3])
def test_every_chunk_counted_once(random_sky, telescope, dynamic, nlanes):
    chunks = ChunkBuffer.build(random_sky, 4)
    correlator = CountingCorrelator()
    scheduler, dataset, status = _setup(
        telescope, chunks, nlanes=nlanes, correlator=correlator, dynamic=dynamic
    )
    scheduler.run(FREQS)

    assert status.code == 0
    expected = _expected_counting(len(chunks))
    for c in range(FREQS.size):
        np.testing.assert_array_equal(dataset.amplitude[c], expected[c])
    assert len(correlator.calls) == len(chunks) * FREQS.size
    assert scheduler.completed_chunks == len(chunks)
    assert dataset.folded_channels == {0, 1, 2}


def test_state_history(sky4, telescope):
    scheduler, _, _ = _setup(telescope, ChunkBuffer.build(sky4, 2))
    assert scheduler.state is SchedulerState.IDLE
    scheduler.run(FREQS)
    per_channel = [SchedulerState.DISPATCHING, SchedulerState.FOLDING]
    assert scheduler.history == (
        [SchedulerState.IDLE]
        + per_channel
        + [SchedulerState.NEXT_CHANNEL]
        + per_channel
        + [SchedulerState.NEXT_CHANNEL]
        + per_channel
        + [SchedulerState.DONE]
    )
    with pytest.raises(RuntimeError, match="cannot run"):
        scheduler.run(FREQS)


def test_channels_in_order_and_accumulators_cleared(sky4, telescope):
    seen = []
    holder = {}

    def progress(channel_index, nchannels):
        engine = holder["scheduler"].engine
        seen.append((channel_index, nchannels, engine.accumulators_clear()))
        # Nothing for later channels has been correlated yet.
        assert {f for _, f, _ in holder["correlator"].calls} == set(FREQS[: channel_index + 1])

    correlator = CountingCorrelator()
    scheduler, _, _ = _setup(
        telescope, ChunkBuffer.build(sky4, 1), correlator=correlator, progress=progress
    )
    holder["scheduler"] = scheduler
    holder["correlator"] = correlator
    scheduler.run(FREQS)
    assert seen == [(0, 3, True), (1, 3, True), (2, 3, True)]


def test_lane_device_bound_during_correlation(sky4, telescope):
    correlator = CountingCorrelator()
    scheduler, _, _ = _setup(
        telescope,
        ChunkBuffer.build(sky4, 1),
        correlator=correlator,
        device_ids=[3, 5],
    )
    scheduler.run(FREQS)
    devices = {device for _, _, device in correlator.calls}
    assert devices <= {("cpu", 3), ("cpu", 5)}
    assert current_device() is None


def test_static_assignment(sky4, telescope):
    correlator = CountingCorrelator()
    scheduler, _, _ = _setup(
        telescope,
        ChunkBuffer.build(sky4, 1),
        correlator=correlator,
        device_ids=[3, 5],
        dynamic=False,
    )
    scheduler.run(FREQS[:1])
    by_device = {}
    for chunk_index, _, device in correlator.calls:
        by_device.setdefault(device, []).append(chunk_index)
    assert by_device == {("cpu", 3): [0, 2], ("cpu", 5): [1, 3]}


def test_chunk_order_does_not_matter(random_sky, telescope):
    """Processing chunks in any order gives the same visibilities."""
    chunks = ChunkBuffer.build(random_sky, 4)
    reversed_chunks = ChunkBuffer(list(chunks)[::-1])

    forward, dataset_a, _ = _setup(telescope, chunks, correlator=CPUCorrelator())
    backward, dataset_b, _ = _setup(telescope, reversed_chunks, correlator=CPUCorrelator())
    forward.run(FREQS)
    backward.run(FREQS)
    np.testing.assert_allclose(
        dataset_a.amplitude, dataset_b.amplitude, rtol=1e-12, atol=1e-10
    )


def test_static_scheduling_is_bit_exact(random_sky, telescope):
    chunks = ChunkBuffer.build(random_sky, 3)
    first, dataset_a, _ = _setup(
        telescope, chunks, nlanes=3, correlator=CPUCorrelator(), dynamic=False
    )
    second, dataset_b, _ = _setup(
        telescope, chunks, nlanes=3, correlator=CPUCorrelator(), dynamic=False
    )
    first.run(FREQS)
    second.run(FREQS)
    np.testing.assert_array_equal(dataset_a.amplitude, dataset_b.amplitude)


def test_correlation_failure_aborts(sky4, telescope):
    correlator = CountingCorrelator(fail_on=(2, FREQS[1]))
    scheduler, dataset, status = _setup(
        telescope, ChunkBuffer.build(sky4, 1), correlator=correlator
    )
    with pytest.raises(CorrelationFailure, match="kernel launch failed") as excinfo:
        scheduler.run(FREQS)

    assert excinfo.value.chunk_index == 2
    assert excinfo.value.channel_index == 1
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert status.error is excinfo.value
    assert scheduler.state is SchedulerState.ABORTED
    assert SchedulerState.DONE not in scheduler.history
    # The first channel was folded; the failing one and later ones never were.
    assert dataset.folded_channels == {0}
    np.testing.assert_array_equal(dataset.amplitude[1:], 0.0)
    assert not any(f == FREQS[2] for _, f, _ in correlator.calls)


def test_fold_failure_aborts(sky4, telescope):
    status = RunStatus()
    lanes = DevicePool("cpu").acquire(2)
    dataset = GlobalVisibilityDataset(FREQS, TIMES, telescope.station1, telescope.station2)
    buffers = LaneBuffers.allocate(2, slab_shape(6, 3), dtype=np.complex64)
    engine = AccumulationEngine(buffers, dataset, status)
    scheduler = ChannelScheduler(
        lanes, ChunkBuffer.build(sky4, 2), CountingCorrelator(), engine, status, telescope, TIMES
    )
    with pytest.raises(TypeMismatch):
        scheduler.run(FREQS)
    assert scheduler.state is SchedulerState.ABORTED
    assert isinstance(status.error, TypeMismatch)


def test_no_chunks_gives_zero_visibilities(telescope):
    scheduler, dataset, status = _setup(telescope, ChunkBuffer([]))
    scheduler.run(FREQS)
    assert scheduler.state is SchedulerState.DONE
    assert status.code == 0
    np.testing.assert_array_equal(dataset.amplitude, 0.0)
    assert dataset.folded_channels == {0, 1, 2}


def test_lane_count_mismatch(sky4, telescope):
    status = RunStatus()
    dataset = GlobalVisibilityDataset(FREQS, TIMES, telescope.station1, telescope.station2)
    engine = AccumulationEngine(LaneBuffers.allocate(2, slab_shape(6, 3)), dataset, status)
    with pytest.raises(ValueError, match="lanes given"):
        ChannelScheduler(
            DevicePool("cpu").acquire(3),
            ChunkBuffer.build(sky4, 1),
            CountingCorrelator(),
            engine,
            status,
            telescope,
            TIMES,
        )


class SlowDeviceCorrelator(CountingCorrelator):
    """Sleeps on every call made from CPU device 0."""

    def __init__(self, delay=0.1):
        super().__init__()
        self.delay = delay

    def correlate(self, chunk, telescope, frequency_hz, times_mjd, bandwidth_hz, out):
        if current_device() == ("cpu", 0):
            time.sleep(self.delay)
        super().correlate(chunk, telescope, frequency_hz, times_mjd, bandwidth_hz, out)


def test_dynamic_claiming_favours_fast_lane(random_sky, telescope):
    chunks = ChunkBuffer.build(random_sky, 4)
    assert len(chunks) == 8
    correlator = SlowDeviceCorrelator()
    scheduler, dataset, status = _setup(
        telescope, chunks, correlator=correlator, device_ids=[0, 1]
    )
    scheduler.run(FREQS[:1])

    assert status.code == 0
    by_device = {}
    for chunk_index, _, device in correlator.calls:
        by_device.setdefault(device, []).append(chunk_index)
    # The slow lane holds its first chunk while the fast one drains the rest.
    assert len(by_device.get(("cpu", 1), [])) >= 6
    assert sorted(index for index, _, _ in correlator.calls) == list(range(8))
    assert scheduler.completed_chunks == 8
    np.testing.assert_array_equal(dataset.amplitude[0], _expected_counting(8)[0])


class BlockingCorrelator(CountingCorrelator):
    """Chunk 0 blocks until the run has failed; chunk 1 fails once chunk 0 is in flight."""

    def __init__(self, timeout=5.0):
        super().__init__()
        self.timeout = timeout
        self.started = threading.Event()
        self.status = None

    def correlate(self, chunk, telescope, frequency_hz, times_mjd, bandwidth_hz, out):
        if chunk.index == 0:
            self.started.set()
            deadline = time.monotonic() + self.timeout
            while not self.status.failed and time.monotonic() < deadline:
                time.sleep(0.005)
        elif chunk.index == 1:
            self.started.wait(self.timeout)
            with self.lock:
                self.calls.append((chunk.index, frequency_hz, current_device()))
            raise RuntimeError("device lost")
        super().correlate(chunk, telescope, frequency_hz, times_mjd, bandwidth_hz, out)


def test_failure_stops_claiming_but_finishes_in_flight_chunk(random_sky, telescope):
    chunks = ChunkBuffer.build(random_sky, 5)
    assert len(chunks) == 6
    correlator = BlockingCorrelator()
    scheduler, dataset, status = _setup(telescope, chunks, correlator=correlator)
    correlator.status = status

    with pytest.raises(CorrelationFailure, match="device lost"):
        scheduler.run(FREQS[:1])

    assert {index for index, _, _ in correlator.calls} == {0, 1}
    # The blocked chunk ran to completion and is counted.
    assert scheduler.completed_chunks == 2
    assert scheduler.pending.qsize() == 4
    accumulated = sum(
        scheduler.engine.accumulator(lane_id).data for lane_id in range(2)
    )
    np.testing.assert_array_equal(accumulated, FREQS[0] / 1e6)
    assert scheduler.state is SchedulerState.ABORTED
    assert dataset.folded_channels == set()


class WrongLocationCorrelator(CountingCorrelator):
    def correlate(self, chunk, telescope, frequency_hz, times_mjd, bandwidth_hz, out):
        if chunk.index == 1:
            raise BadLocation("output buffer is on the wrong device")
        super().correlate(chunk, telescope, frequency_hz, times_mjd, bandwidth_hz, out)


def test_library_error_keeps_its_kind(sky4, telescope):
    scheduler, _, status = _setup(
        telescope, ChunkBuffer.build(sky4, 1), correlator=WrongLocationCorrelator()
    )
    with pytest.raises(BadLocation) as excinfo:
        scheduler.run(FREQS)

    assert status.code == ErrorCode.BAD_LOCATION
    assert status.error is excinfo.value
    assert excinfo.value.chunk_index == 1
    assert excinfo.value.channel_index == 0
    assert scheduler.state is SchedulerState.ABORTED


def test_uvw_computed_once_across_channels(random_sky, telescope, monkeypatch):
    import chunkvis.core.correlate as correlate_module

    calls = []
    original = correlate_module.baseline_uvw

    def counting_uvw(*args):
        calls.append(args)
        return original(*args)

    monkeypatch.setattr(correlate_module, "baseline_uvw", counting_uvw)
    correlator = CPUCorrelator()
    scheduler, _, status = _setup(
        telescope, ChunkBuffer.build(random_sky, 4), correlator=correlator
    )
    scheduler.run(FREQS)
    assert status.code == 0
    assert len(calls) == 1

    uu, vv, ww = correlator.baseline_coordinates(telescope, TIMES)
    assert not uu.flags.writeable
    with pytest.raises(ValueError):
        ww[0, 0] = 1.0
    assert len(calls) == 1

    correlator.baseline_coordinates(telescope, TIMES[:2])
    assert len(calls) == 2
