"""
Compute devices and the worker lanes bound to them.

Each :class:`Lane` owns one device for the duration of a run. Worker threads
may be reused across lanes, so the device a task runs on is asserted on entry
of every task with :meth:`Lane.bind` rather than assumed to persist.
"""

import contextlib
import gc
import logging
import threading
from typing import Literal, Optional

import psutil

from .errors import DeviceUnavailable

logger = logging.getLogger(__name__)

_local = threading.local()


def current_device() -> Optional[tuple]:
    """The ``(backend, device_id)`` bound to the calling thread, if any."""
    return getattr(_local, "device", None)


def get_device_count(backend: Literal["cpu", "gpu"] = "cpu") -> int:
    """Number of physical devices available to the given backend."""
    if backend == "cpu":
        return psutil.cpu_count(logical=True) or 1
    elif backend == "gpu":
        try:
            import cupy as cp
        except ImportError:
            return 0
        try:
            return cp.cuda.runtime.getDeviceCount()
        except cp.cuda.runtime.CUDARuntimeError:
            return 0
    else:
        raise ValueError(f"Unsupported backend: {backend}")


class Lane:
    """A worker lane with exclusive use of one device."""

    def __init__(self, lane_id: int, device_id: int, backend: str = "cpu"):
        self.lane_id = lane_id
        self.device_id = device_id
        self.backend = backend

    def __repr__(self):
        return f"Lane({self.lane_id}, {self.backend}:{self.device_id})"

    @contextlib.contextmanager
    def bind(self):
        """Make this lane's device current for the calling thread."""
        previous = current_device()
        _local.device = (self.backend, self.device_id)
        try:
            if self.backend == "gpu":
                import cupy as cp

                with cp.cuda.Device(self.device_id):
                    yield self
            else:
                yield self
        finally:
            _local.device = previous

    def synchronize(self):
        """Wait for all work queued on this lane's device."""
        if self.backend == "gpu":
            import cupy as cp

            with cp.cuda.Device(self.device_id):
                cp.cuda.runtime.deviceSynchronize()


class DevicePool:
    """Pool of devices bound to worker lanes.

    Parameters
    ----------
    backend : str
        Either "cpu" or "gpu".
    device_ids : list of int, optional
        Physical device bound to each lane, in lane order. Defaults to
        ``0 .. n - 1``.
    """

    def __init__(self, backend: Literal["cpu", "gpu"] = "cpu", device_ids=None):
        if backend not in ("cpu", "gpu"):
            raise ValueError(f"Unsupported backend: {backend}")
        self.backend = backend
        self.device_ids = None if device_ids is None else list(device_ids)
        self.lanes = []

    def available_count(self) -> int:
        return get_device_count(self.backend)

    def acquire(self, requested_count: int) -> list[Lane]:
        """Bind ``requested_count`` devices to lanes.

        Raises
        ------
        DeviceUnavailable
            If fewer devices exist than requested, or a requested device id
            does not exist.
        """
        if self.lanes:
            raise RuntimeError("Devices have already been acquired from this pool")
        if requested_count < 1:
            raise DeviceUnavailable("At least one device must be requested")

        available = self.available_count()
        if available < requested_count:
            raise DeviceUnavailable(
                f"{requested_count} {self.backend} devices requested but only "
                f"{available} available"
            )

        device_ids = self.device_ids
        if device_ids is None:
            device_ids = list(range(requested_count))
        if len(device_ids) < requested_count:
            raise DeviceUnavailable(
                f"{requested_count} devices requested but only {len(device_ids)} "
                "device ids given"
            )
        device_ids = device_ids[:requested_count]
        for device_id in device_ids:
            if not 0 <= device_id < available:
                raise DeviceUnavailable(
                    f"{self.backend} device {device_id} does not exist "
                    f"({available} available)"
                )

        self.lanes = [
            Lane(lane_id, device_id, self.backend)
            for lane_id, device_id in enumerate(device_ids)
        ]
        for lane in self.lanes:
            lane.synchronize()
            logger.info(f"Bound {lane}")
        return list(self.lanes)

    def release(self):
        """Synchronise and free every acquired device. Safe to call twice."""
        if not self.lanes:
            return
        if self.backend == "gpu":
            import cupy as cp

            for lane in self.lanes:
                with cp.cuda.Device(lane.device_id):
                    cp.cuda.runtime.deviceSynchronize()
                    cp.get_default_memory_pool().free_all_blocks()
            cp.get_default_pinned_memory_pool().free_all_blocks()
            gc.collect()
        logger.debug(f"Released {len(self.lanes)} {self.backend} devices")
        self.lanes = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.release()
