"""
Error kinds and the shared run status for chunkvis simulations.

Every error raised by the simulation engine derives from :class:`ChunkvisError`
and carries an integer :class:`ErrorCode`, so that callers can surface a single
status code for a run.
"""

import threading
from enum import IntEnum


class ErrorCode(IntEnum):
    """Integer status codes reported by a simulation run."""

    SUCCESS = 0
    DEVICE_UNAVAILABLE = 1
    ALLOCATION_FAILURE = 2
    CORRELATION_FAILURE = 3
    SETTINGS_INVALID = 4
    TYPE_MISMATCH = 5
    BAD_LOCATION = 6
    STAGE_FAILURE = 7


class ChunkvisError(Exception):
    """Base exception raised by chunkvis.

    Errors raised while a lane works on a chunk carry the chunk and channel
    they were raised for.
    """

    code = ErrorCode.SUCCESS
    chunk_index = None
    channel_index = None


class DeviceUnavailable(ChunkvisError):
    """Fewer physical devices exist than were requested."""

    code = ErrorCode.DEVICE_UNAVAILABLE


class AllocationFailure(ChunkvisError):
    """A host or device buffer could not be allocated."""

    code = ErrorCode.ALLOCATION_FAILURE


class CorrelationFailure(ChunkvisError):
    """The correlation primitive failed for one chunk of one channel."""

    code = ErrorCode.CORRELATION_FAILURE

    def __init__(self, message: str, chunk_index: int = None, channel_index: int = None):
        super().__init__(message)
        self.chunk_index = chunk_index
        self.channel_index = channel_index


class SettingsInvalid(ChunkvisError):
    """The simulation settings are inconsistent or incomplete."""

    code = ErrorCode.SETTINGS_INVALID


class TypeMismatch(ChunkvisError):
    """Two collaborating buffers do not share a precision or shape."""

    code = ErrorCode.TYPE_MISMATCH


class BadLocation(ChunkvisError):
    """Two collaborating buffers live in different memory spaces."""

    code = ErrorCode.BAD_LOCATION


class StageFailure(ChunkvisError):
    """A simulation stage failed with an error from outside chunkvis."""

    code = ErrorCode.STAGE_FAILURE


class RunStatus:
    """First-error latch shared by all worker lanes of a run.

    Only the first recorded error is kept. Once an error is recorded no new
    numeric work should start, but work already in flight is left to finish.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._error = None

    def record(self, error: ChunkvisError) -> bool:
        """Record ``error`` if no error was recorded yet.

        Returns
        -------
        bool
            True if ``error`` became the run's error.
        """
        with self._lock:
            if self._error is not None:
                return False
            self._error = error
            return True

    @property
    def failed(self) -> bool:
        return self._error is not None

    @property
    def error(self):
        return self._error

    @property
    def code(self) -> int:
        """Integer status of the run, 0 on success."""
        if self._error is None:
            return int(ErrorCode.SUCCESS)
        return int(getattr(self._error, "code", ErrorCode.CORRELATION_FAILURE))

    def raise_if_failed(self):
        """Re-raise the first recorded error, if any."""
        if self._error is not None:
            raise self._error
