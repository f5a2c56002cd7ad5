"""RTT estimation and the loss detection / probe timeout alarm."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

UINT32_MAX = 0xFFFFFFFF
NUM_EPOCHS = 4
DEFAULT_TIME_REORDERING_PERCENTILE = 1024 // 8
MAX_SPECULATIVE_PTOS = 3
_MAX_PTO_COUNT = 63
_MAX_TIME_BASED_PERCENTILE = 1024


@dataclass(frozen=True)
class LossConf:
    """Loss recovery configuration.

    ``time_reordering_percentile`` is in units of 1/1024 of an RTT;
    ``min_pto`` is the smallest PTO alarm duration (the timer granularity);
    ``default_initial_rtt`` is the RTT assumed before the first sample;
    ``num_speculative_ptos`` is the number of speculative probes sent at a tail.
    """

    min_pto: int
    default_initial_rtt: int
    time_reordering_percentile: int = DEFAULT_TIME_REORDERING_PERCENTILE
    num_speculative_ptos: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.num_speculative_ptos <= MAX_SPECULATIVE_PTOS:
            raise ValueError(f"num_speculative_ptos must be between 0 and {MAX_SPECULATIVE_PTOS}")
        if self.min_pto < 0 or self.default_initial_rtt < 0:
            raise ValueError("durations must not be negative")


class Rtt:
    """RTT estimator, in milliseconds.

    A sample has been taken once ``latest`` is non-zero; ``smoothed`` and
    ``variance`` carry usable values even before that.
    """

    def __init__(self, initial_rtt: int) -> None:
        self.minimum = UINT32_MAX
        self.latest = 0
        self.smoothed = initial_rtt
        self.variance = initial_rtt // 2

    @property
    def has_sample(self) -> bool:
        return self.latest != 0

    def update(self, latest_rtt: int, ack_delay: int) -> None:
        """Feed an RTT sample together with the peer-reported ACK delay."""
        if latest_rtt == UINT32_MAX:
            raise ValueError("RTT sample out of range")
        is_first_sample = self.latest == 0
        # samples are never below 1ms
        self.latest = latest_rtt if latest_rtt != 0 else 1

        if self.latest < self.minimum:
            self.minimum = self.latest

        # use the ACK delay only when it is plausible
        if self.latest > self.minimum + ack_delay:
            self.latest -= ack_delay

        if is_first_sample:
            self.smoothed = self.latest
            self.variance = self.latest // 2
        else:
            absdiff = abs(self.smoothed - self.latest)
            self.variance = (self.variance * 3 + absdiff) // 4
            self.smoothed = (self.smoothed * 7 + self.latest) // 8

    def get_pto(self, max_ack_delay: int, min_pto: int) -> int:
        """Probe timeout duration."""
        return self.smoothed + (self.variance * 4 if self.variance != 0 else min_pto) + max_ack_delay


class AckReceivedKind(enum.Enum):
    NON_ACK_ELICITING = 0
    ACK_ELICITING = 1
    ACK_ELICITING_LATE_ACK = 2


@dataclass(frozen=True)
class AlarmAction:
    """What the sender has to do after the alarm fired.

    Send at least ``min_packets_to_send`` packets now, and no more than that
    when ``restrict_sending`` is set. When ``detect_loss`` is set, the alarm
    was the time-threshold loss timer and loss detection has to run.
    """

    min_packets_to_send: int
    restrict_sending: bool
    detect_loss: bool


class LossState:
    """Loss recovery state of a connection.

    ``loss_time`` and ``alarm_at`` are None while unset. ``max_ack_delay`` and
    ``ack_delay_exponent`` are the peer's transport parameters and may be
    updated once they are known.
    """

    def __init__(
        self,
        conf: LossConf,
        initial_rtt: Optional[int] = None,
        max_ack_delay: int = 25,
        ack_delay_exponent: int = 3,
    ) -> None:
        self.conf = conf
        self.max_ack_delay = max_ack_delay
        self.ack_delay_exponent = ack_delay_exponent
        self.use_packet_based = True
        self.time_based_percentile = DEFAULT_TIME_REORDERING_PERCENTILE
        self.pto_count = 0
        self.time_of_last_packet_sent = 0
        self.largest_acked_packet_plus1 = [0] * NUM_EPOCHS
        self.total_bytes_sent = 0
        self.loss_time: Optional[int] = None
        self.alarm_at: Optional[int] = None
        self.rtt = Rtt(conf.default_initial_rtt if initial_rtt is None else initial_rtt)

    def _set_alarm(self, at: int, now: int, is_after_send: bool) -> None:
        if is_after_send:
            if not now < at:
                raise RuntimeError("alarm set right after sending must lie in the future")
        elif at < now:
            at = now
        self.alarm_at = at

    def update_alarm(
        self,
        now: int,
        last_retransmittable_sent_at: Optional[int],
        has_outstanding: bool,
        can_send_stream_data: bool,
        handshake_is_in_progress: bool,
        total_bytes_sent: int,
        is_after_send: bool,
    ) -> None:
        """Recompute ``alarm_at`` from the loss timer or the probe timeout."""
        if not has_outstanding:
            self.alarm_at = None
            self.loss_time = None
            return
        if last_retransmittable_sent_at is None:
            raise ValueError("outstanding data requires the time of the last retransmittable packet")

        if self.loss_time is not None:
            self._set_alarm(self.loss_time, now, is_after_send)
            return

        if self.pto_count >= _MAX_PTO_COUNT:
            raise RuntimeError("too many consecutive probe timeouts")

        conf = self.conf
        # A new tail: not in PTO recovery, nothing left to send, and new data
        # went out since the last tail. Start speculative probing.
        if (
            conf.num_speculative_ptos > 0
            and self.pto_count <= 0
            and not handshake_is_in_progress
            and not can_send_stream_data
            and self.total_bytes_sent < total_bytes_sent
        ):
            if self.pto_count == 0:
                self.pto_count = -conf.num_speculative_ptos
            self.total_bytes_sent = total_bytes_sent

        if self.pto_count < 0:
            # no ACK is expected before a speculative probe, so ignore the ACK delay
            duration = self.rtt.get_pto(0, conf.min_pto) >> -self.pto_count
            duration = max(duration, conf.min_pto)
        else:
            ack_delay = 0 if handshake_is_in_progress else self.max_ack_delay
            duration = self.rtt.get_pto(ack_delay, conf.min_pto) << self.pto_count
        self._set_alarm(last_retransmittable_sent_at + duration, now, is_after_send)

    def on_ack_received(
        self,
        largest_newly_acked: Optional[int],
        epoch: int,
        now: int,
        sent_at: int,
        ack_delay_encoded: int,
        kind: AckReceivedKind,
    ) -> None:
        """Account for an ACK frame; ``largest_newly_acked`` is None when nothing new was acked."""
        if largest_newly_acked is not None and self.pto_count > 0:
            self.pto_count = 0

        if largest_newly_acked is None or self.largest_acked_packet_plus1[epoch] > largest_newly_acked:
            return
        self.largest_acked_packet_plus1[epoch] = largest_newly_acked + 1

        if kind is AckReceivedKind.NON_ACK_ELICITING:
            return

        ack_delay_us = ack_delay_encoded << self.ack_delay_exponent
        ack_delay_ms = ((ack_delay_us * 2 + 1000) // 2000) & UINT32_MAX
        ack_delay_ms = min(ack_delay_ms, self.max_ack_delay)
        self.rtt.update((now - sent_at) & UINT32_MAX, ack_delay_ms)

        # On a late ACK, first give up packet-based detection, then widen the
        # time threshold by doubling until it reaches one RTT.
        if kind is AckReceivedKind.ACK_ELICITING_LATE_ACK:
            if self.use_packet_based:
                self.use_packet_based = False
            else:
                self.time_based_percentile = min(self.time_based_percentile * 2, _MAX_TIME_BASED_PERCENTILE)

    def on_alarm(self) -> AlarmAction:
        """Handle expiry of the alarm and tell the sender what to do."""
        self.alarm_at = None
        if self.loss_time is not None:
            return AlarmAction(min_packets_to_send=1, restrict_sending=False, detect_loss=True)
        self.pto_count += 1
        return AlarmAction(
            min_packets_to_send=2 if self.pto_count > 0 else 1,
            restrict_sending=True,
            detect_loss=False,
        )

    def sentmap_expiration_time(self, max_ack_delay: int) -> int:
        """How long sent packets are remembered; also the length of the closing period (four PTOs)."""
        return self.rtt.get_pto(max_ack_delay, self.conf.min_pto) * 4