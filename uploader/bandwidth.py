"""Sliding-window throughput estimator."""

import time
from collections import deque
from typing import Callable, Deque, List, NamedTuple

from common.constants import BANDWIDTH_RATE_SAMPLES, BANDWIDTH_WINDOW_SIZE


class BandwidthSample(NamedTuple):
    time: float
    bytes: float


class BandwidthMonitor:
    """
    Estimates bytes per second from progress samples.

    Keeps the last ``window_size`` samples and computes the rate over the
    most recent ``rate_samples`` of them.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        window_size: int = BANDWIDTH_WINDOW_SIZE,
        rate_samples: int = BANDWIDTH_RATE_SAMPLES
    ):
        self._clock = clock
        self._rate_samples = rate_samples
        self._samples: Deque[BandwidthSample] = deque(maxlen=window_size)

    @property
    def samples(self) -> List[BandwidthSample]:
        return list(self._samples)

    def record_progress(self, percent: float, total_bytes: int) -> None:
        """
        Record a progress observation.

        Args:
            percent: Progress of the upload, 0-100
            total_bytes: Size of the file being uploaded
        """
        self._samples.append(BandwidthSample(self._clock(), percent / 100 * total_bytes))

    def current_bandwidth(self) -> float:
        """
        Bytes per second over the most recent samples.

        Returns:
            Rate, or 0 with fewer than two samples or no elapsed time
        """
        recent = list(self._samples)[-self._rate_samples:]
        if len(recent) < 2:
            return 0.0

        first, last = recent[0], recent[-1]
        elapsed = last.time - first.time
        if elapsed <= 0:
            return 0.0
        return (last.bytes - first.bytes) / elapsed

    def average_bandwidth(self) -> float:
        return self.current_bandwidth()

    def reset(self) -> None:
        self._samples.clear()
