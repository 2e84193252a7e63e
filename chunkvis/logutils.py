"""Utilities for logging / output during the simulation."""

import datetime
import logging
import time

import psutil

logger = logging.getLogger(__name__)


def human_readable_size(size, decimal_places=2, indicate_sign=False):
    """Get a human-readable data size.

    From: https://stackoverflow.com/a/43690506/1467820
    """
    for unit in ["B", "KiB", "MiB", "GiB", "TiB", "PiB"]:
        if abs(size) < 1024.0:
            break
        if unit != "PiB":
            size /= 1024.0

    if indicate_sign:
        return f"{size:+.{decimal_places}f} {unit}"
    else:
        return f"{size:.{decimal_places}f} {unit}"


def memory_used(pr: psutil.Process) -> int:
    """Resident memory of the process that is not shared, in bytes."""
    info = pr.memory_info()
    return info.rss - getattr(info, "shared", 0)


class ChannelProgress:
    """Logs timing and memory after every folded channel.

    Instances are passed as the ``progress`` callback of the channel scheduler.
    """

    def __init__(self, pr: psutil.Process = None):
        self.pr = pr or psutil.Process()
        self.start_time = time.time()
        self.prev_time = self.start_time
        self.last_mem = memory_used(self.pr)

    def __call__(self, channel_index: int, nchannels: int):
        self.prev_time, self.last_mem = log_progress(
            self.start_time,
            self.prev_time,
            channel_index + 1,
            nchannels,
            self.pr,
            self.last_mem,
        )


def log_progress(start_time, prev_time, iters, niters, pr, last_mem):
    """Logging of progress."""
    if not logger.isEnabledFor(logging.INFO):
        return prev_time, last_mem

    t = time.time()
    lapsed = datetime.timedelta(seconds=(t - prev_time))
    total = datetime.timedelta(seconds=(t - start_time))
    per_iter = total / iters
    expected = per_iter * niters

    used = memory_used(pr)
    mem = human_readable_size(used)
    memdiff = human_readable_size(used - last_mem, indicate_sign=True)

    logger.info(
        f"""
        Progress Info   [{iters}/{niters} channels ({100 * iters / niters:.1f}%)]
            -> Update Time:   {lapsed}
            -> Total Time:    {total} [{per_iter} per channel]
            -> Expected Time: {expected} [{expected - total} remaining]
            -> Memory Usage:  {mem}  [{memdiff}]
        """
    )

    return t, used
