"""Delivery rate estimation from ACKs received while the sender is CWND-limited."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator, Optional

SAMPLE_PERIOD = 50
"""Length of one delivery rate sample, in milliseconds."""

SAMPLE_COUNT = 10
"""Number of past samples retained."""

_U32_MASK = 0xFFFFFFFF


@dataclass(frozen=True)
class RateSample:
    """Bytes acknowledged over ``elapsed`` milliseconds; empty when ``elapsed`` is zero."""

    elapsed: int = 0
    bytes_acked: int = 0

    @property
    def speed(self) -> int:
        """Bytes per second."""
        return _to_speed(self.bytes_acked, self.elapsed)


@dataclass(frozen=True)
class Rate:
    """Delivery rate in bytes per second."""

    latest: int = 0
    smoothed: int = 0
    stdev: int = 0


def _to_speed(bytes_acked: int, elapsed: int) -> int:
    return bytes_acked * 1000 // elapsed


class RateMeter:
    """Measures delivery rate, sampling only during CWND-limited phases."""

    def __init__(self) -> None:
        self._past: list[RateSample] = [RateSample()] * SAMPLE_COUNT
        self._latest = SAMPLE_COUNT - 1
        # packet-number span of the CWND-limited phase; end is None while the phase is open
        self._limited_start: Optional[int] = None
        self._limited_end: Optional[int] = None
        # start of the sample being collected, or None when not sampling
        self._start_at: Optional[int] = None
        self._start_bytes_acked = 0
        self._current = RateSample()

    def _in_limited_phase(self) -> bool:
        return self._limited_start is not None and self._limited_end is None

    def _start_sampling(self, now: int, bytes_acked: int) -> None:
        self._start_at = now
        self._start_bytes_acked = bytes_acked

    def _commit_sample(self) -> None:
        self._latest = (self._latest + 1) % SAMPLE_COUNT
        self._past[self._latest] = self._current
        self._start_at = None
        self._current = RateSample()

    def in_cwnd_limited(self, pn: int) -> None:
        """Note that the sender became CWND-limited when sending packet ``pn``."""
        if self._in_limited_phase():
            return
        if self._limited_end is not None and self._current.elapsed != 0:
            self._commit_sample()
        self._limited_start = pn
        self._limited_end = None

    def not_cwnd_limited(self, pn: int) -> None:
        """Note that the sender stopped being CWND-limited at packet ``pn``."""
        if self._in_limited_phase():
            self._limited_end = pn

    def on_ack(self, now: int, bytes_acked: int, pn: int) -> None:
        """Feed an ACK of packet ``pn``; ``bytes_acked`` is the connection's running total."""
        start, end = self._limited_start, self._limited_end
        if start is not None and start <= pn and (end is None or pn < end):
            if self._start_at is None:
                self._start_sampling(now, bytes_acked)
                return
            self._current = RateSample(
                elapsed=(now - self._start_at) & _U32_MASK,
                bytes_acked=(bytes_acked - self._start_bytes_acked) & _U32_MASK,
            )
            if self._current.elapsed >= SAMPLE_PERIOD:
                self._commit_sample()
                self._start_sampling(now, bytes_acked)
        elif end is not None and end <= pn:
            if self._start_at is not None:
                if self._current.elapsed != 0:
                    self._commit_sample()
                self._limited_start = None
                self._limited_end = None
                self._start_at = None

    def _samples(self) -> Iterator[RateSample]:
        yield from (s for s in self._past if s.elapsed != 0)
        if self._current.elapsed != 0:
            yield self._current

    def report(self) -> Rate:
        """Latest, average and standard deviation of the measured rates."""
        latest = self._past[self._latest]
        if latest.elapsed == 0:
            latest = self._current
            if latest.elapsed == 0:
                return Rate()

        samples = list(self._samples())
        total_acked = sum(s.bytes_acked for s in samples)
        total_elapsed = sum(s.elapsed for s in samples)
        smoothed = _to_speed(total_acked, total_elapsed)
        variance = sum((s.speed - smoothed) ** 2 for s in samples) // len(samples)
        return Rate(latest=latest.speed, smoothed=smoothed, stdev=math.isqrt(variance))