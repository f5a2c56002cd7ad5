"""Congestion controllers: Reno, CUBIC and Pico.

All three share one state record so that a connection can switch between
them while in flight, keeping as much of the state as makes sense.
"""

from __future__ import annotations

import enum
import math
from typing import Union

UINT32_MAX = 0xFFFFFFFF
MIN_CWND = 2
RENO_BETA = 0.7
CUBIC_C = 0.4
CUBIC_BETA = 0.7
_MTU_MAX = 1472


class CCType(enum.Enum):
    """The available congestion control algorithms."""

    RENO = "reno"
    CUBIC = "cubic"
    PICO = "pico"


def calc_initial_cwnd(max_packets: int, max_udp_payload_size: int) -> int:
    """Initial congestion window in bytes for ``max_packets`` packets of the given payload size."""
    return max(max_packets, MIN_CWND) * min(max_udp_payload_size, _MTU_MAX)


def _u32(value: float) -> int:
    """Truncate toward zero and keep within the range of an unsigned 32-bit integer."""
    return min(max(int(value), 0), UINT32_MAX)


def _cbrt(value: float) -> float:
    if value < 0:
        return -((-value) ** (1.0 / 3.0))
    return value ** (1.0 / 3.0)


def _pico_bytes_per_mtu_increase(cwnd: int, rtt: int, mtu: int) -> int:
    """Bytes to be acknowledged per MTU of growth in congestion avoidance.

    Takes the smaller of what Reno would use and an estimate of the CUBIC
    congestion period amortised over fast-convergence events.
    """
    reno = _u32(cwnd * RENO_BETA)
    cubic = _u32(1.447 / 0.3 * 1000 * _cbrt(0.3 / 0.4 * cwnd / mtu) / rtt * mtu)
    return min(reno, cubic)


class CongestionControl:
    """Congestion window state driven by ACK, loss and send events."""

    def __init__(self, cc_type: Union[CCType, str], initcwnd: int) -> None:
        self.reset(cc_type, initcwnd)

    def reset(self, cc_type: Union[CCType, str], initcwnd: int) -> None:
        """Start afresh with algorithm ``cc_type`` and initial window ``initcwnd``."""
        self.type = CCType(cc_type)
        self.cwnd = initcwnd
        self.cwnd_initial = initcwnd
        self.cwnd_maximum = initcwnd
        self.cwnd_minimum = UINT32_MAX
        self.ssthresh = UINT32_MAX
        self.recovery_end = 0
        self.cwnd_exiting_slow_start = 0
        self.num_loss_episodes = 0
        self._clear_state()
        if self.type is CCType.PICO:
            self._init_pico_state(0)

    def _clear_state(self) -> None:
        # Reno and Pico
        self.stash = 0
        self.bytes_per_mtu_increase = 0
        # CUBIC
        self.k = 0.0
        self.w_max = 0
        self.w_last_max = 0
        self.avoidance_start = 0
        self.last_sent_time = 0

    def _init_pico_state(self, stash: int) -> None:
        self.stash = stash
        self.bytes_per_mtu_increase = _u32(self.cwnd * RENO_BETA)

    @property
    def in_slow_start(self) -> bool:
        return self.cwnd < self.ssthresh

    def _raise_maximum(self) -> None:
        if self.cwnd_maximum < self.cwnd:
            self.cwnd_maximum = self.cwnd

    # ---- ACK handling -------------------------------------------------

    def on_acked(
        self,
        bytes_acked: int,
        largest_acked: int,
        inflight: int,
        next_pn: int,
        now: int,
        max_udp_payload_size: int,
        smoothed_rtt: int,
    ) -> None:
        """Account for ``bytes_acked`` newly acknowledged bytes."""
        if inflight < bytes_acked:
            raise ValueError("bytes acknowledged exceed bytes in flight")
        if largest_acked < self.recovery_end:
            return
        if self.type is CCType.RENO:
            self._reno_on_acked(bytes_acked, max_udp_payload_size)
        elif self.type is CCType.CUBIC:
            self._cubic_on_acked(bytes_acked, now, max_udp_payload_size, smoothed_rtt)
        else:
            self._pico_on_acked(bytes_acked, max_udp_payload_size)

    def _reno_on_acked(self, bytes_acked: int, mss: int) -> None:
        if self.in_slow_start:
            self.cwnd += bytes_acked
            self._raise_maximum()
            return
        self.stash += bytes_acked
        if self.stash < self.cwnd:
            return
        count = self.stash // self.cwnd
        self.stash -= count * self.cwnd
        self.cwnd += count * mss
        self._raise_maximum()

    def _w_cubic(self, t_sec: float, mss: int) -> int:
        tk = t_sec - self.k
        return _u32(CUBIC_C * (tk * tk * tk) * mss + self.w_max)

    def _w_est(self, t_sec: float, rtt_sec: float, mss: int) -> int:
        return _u32(
            self.w_max * CUBIC_BETA + (3 * (1 - CUBIC_BETA) / (1 + CUBIC_BETA)) * (t_sec / rtt_sec) * mss
        )

    def _cubic_on_acked(self, bytes_acked: int, now: int, mss: int, smoothed_rtt: int) -> None:
        if self.in_slow_start:
            self.cwnd += bytes_acked
            self._raise_maximum()
            return

        t_sec = (now - self.avoidance_start) / 1000
        rtt_sec = smoothed_rtt / 1000
        w_cubic = self._w_cubic(t_sec, mss)
        w_est = self._w_est(t_sec, rtt_sec, mss)

        if w_cubic < w_est:
            # TCP-friendly region: never let a growing RTT shrink the window
            if w_est > self.cwnd:
                self.cwnd = w_est
        else:
            target = float(self._w_cubic(t_sec + rtt_sec, mss))
            if target > self.cwnd:
                self.cwnd = _u32(self.cwnd + (target / self.cwnd - 1) * mss)

        self._raise_maximum()

    def _pico_on_acked(self, bytes_acked: int, mss: int) -> None:
        self.stash += bytes_acked
        per_mtu = mss if self.in_slow_start else self.bytes_per_mtu_increase
        if self.stash < per_mtu:
            return
        count = self.stash // per_mtu
        self.cwnd += count * mss
        self.stash -= count * per_mtu
        self._raise_maximum()

    # ---- loss handling ------------------------------------------------

    def on_lost(
        self,
        bytes_lost: int,
        lost_pn: int,
        next_pn: int,
        now: int,
        max_udp_payload_size: int,
        smoothed_rtt: int,
    ) -> None:
        """React to the loss of packet ``lost_pn``; losses inside the recovery window are ignored."""
        if lost_pn < self.recovery_end:
            return
        self.recovery_end = next_pn

        self.num_loss_episodes += 1
        if self.cwnd_exiting_slow_start == 0:
            self.cwnd_exiting_slow_start = self.cwnd

        if self.type is CCType.CUBIC:
            self._cubic_on_lost(now, max_udp_payload_size)
            beta = CUBIC_BETA
        else:
            if self.type is CCType.PICO:
                self.bytes_per_mtu_increase = _pico_bytes_per_mtu_increase(
                    self.cwnd, smoothed_rtt, max_udp_payload_size
                )
            beta = RENO_BETA

        self.cwnd = _u32(self.cwnd * beta)
        self.cwnd = max(self.cwnd, MIN_CWND * max_udp_payload_size)
        self.ssthresh = self.cwnd
        if self.cwnd_minimum > self.cwnd:
            self.cwnd_minimum = self.cwnd

    def _cubic_on_lost(self, now: int, mss: int) -> None:
        self.avoidance_start = now
        self.w_max = self.cwnd
        # fast convergence; w_last_max starts at zero so this is skipped on leaving slow start
        if self.w_max < self.w_last_max:
            self.w_last_max = self.w_max
            self.w_max = _u32(self.w_max * ((1.0 + CUBIC_BETA) / 2.0))
        else:
            self.w_last_max = self.w_max
        self.k = _cbrt(self.w_max / mss * ((1 - CUBIC_BETA) / CUBIC_C))

    def on_persistent_congestion(self, now: int) -> None:
        """Persistent congestion leaves the window unchanged in every algorithm."""

    # ---- send handling ------------------------------------------------

    def on_sent(self, bytes_sent: int, now: int, bytes_in_flight: int) -> None:
        """Record a packet sent at ``now``; ``bytes_in_flight`` includes that packet."""
        if self.type is not CCType.CUBIC:
            return
        # Coming out of an application-limited idle period: shift the epoch so
        # that the idle time does not count towards window growth.
        if bytes_in_flight <= bytes_sent and self.avoidance_start != 0 and self.last_sent_time != 0:
            delta = now - self.last_sent_time
            if delta > 0:
                self.avoidance_start += delta
        self.last_sent_time = now

    # ---- switching ----------------------------------------------------

    def switch(self, cc_type: Union[CCType, str]) -> None:
        """Change to algorithm ``cc_type``, keeping state where it can be reused."""
        target = CCType(cc_type)
        if target is self.type:
            return

        if target is CCType.RENO and self.type is CCType.PICO:
            self.type = CCType.RENO
            return
        if target is CCType.PICO and self.type is CCType.RENO:
            self.type = CCType.PICO
            self._init_pico_state(self.stash)
            return

        # Between CUBIC and the others the state is reusable only in slow start.
        if self.cwnd_exiting_slow_start != 0:
            self.reset(target, self.cwnd_initial)
            return
        self.type = target
        self._clear_state()
        if target is CCType.PICO:
            self._init_pico_state(0)