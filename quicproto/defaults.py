"""Default connection settings and the default clock."""

from __future__ import annotations

import dataclasses
import threading
import time
from dataclasses import dataclass, field

from .cc import CCType, calc_initial_cwnd
from .loss import DEFAULT_TIME_REORDERING_PERCENTILE, LossConf

DEFAULT_INITIAL_EGRESS_MAX_UDP_PAYLOAD_SIZE = 1280
DEFAULT_MAX_UDP_PAYLOAD_SIZE = 1472
DEFAULT_MAX_PACKETS_PER_KEY = 16777216
DEFAULT_MAX_CRYPTO_BYTES = 65536
DEFAULT_INITCWND_PACKETS = 10
DEFAULT_PRE_VALIDATION_AMPLIFICATION_LIMIT = 3
DEFAULT_HANDSHAKE_TIMEOUT_RTT_MULTIPLIER = 400
DEFAULT_MAX_INITIAL_HANDSHAKE_PACKETS = 1000

DEFAULT_MIN_PTO = 1
"""Smallest PTO alarm duration, in milliseconds."""

DEFAULT_INITIAL_RTT = 66
"""RTT assumed before the first sample, in milliseconds."""

PROTOCOL_VERSION_1 = 0x00000001

_MIB = 1024 * 1024


class MonotonicClock:
    """Wall-clock time in milliseconds that never goes backwards."""

    def __init__(self) -> None:
        self._last = 0
        self._lock = threading.Lock()

    def now(self) -> int:
        current = time.time_ns() // 1_000_000
        with self._lock:
            if self._last < current:
                self._last = current
            return self._last


@dataclass
class MaxStreamData:
    """Per-stream flow control limits, in bytes."""

    bidi_local: int = _MIB
    bidi_remote: int = _MIB
    uni: int = _MIB


@dataclass
class TransportParameters:
    """Transport parameters advertised to the peer."""

    max_stream_data: MaxStreamData = field(default_factory=MaxStreamData)
    max_data: int = 16 * _MIB
    max_idle_timeout: int = 30 * 1000
    max_streams_bidi: int = 100
    max_streams_uni: int = 0
    max_udp_payload_size: int = DEFAULT_MAX_UDP_PAYLOAD_SIZE


def _spec_loss_conf() -> LossConf:
    return LossConf(
        min_pto=DEFAULT_MIN_PTO,
        default_initial_rtt=DEFAULT_INITIAL_RTT,
        time_reordering_percentile=DEFAULT_TIME_REORDERING_PERCENTILE,
        num_speculative_ptos=0,
    )


@dataclass
class Context:
    """Settings shared by the connections of an endpoint."""

    client_initial_size: int = DEFAULT_INITIAL_EGRESS_MAX_UDP_PAYLOAD_SIZE
    loss: LossConf = field(default_factory=_spec_loss_conf)
    transport_params: TransportParameters = field(default_factory=TransportParameters)
    max_packets_per_key: int = DEFAULT_MAX_PACKETS_PER_KEY
    max_crypto_bytes: int = DEFAULT_MAX_CRYPTO_BYTES
    initcwnd_packets: int = DEFAULT_INITCWND_PACKETS
    protocol_version: int = PROTOCOL_VERSION_1
    pre_validation_amplification_limit: int = DEFAULT_PRE_VALIDATION_AMPLIFICATION_LIMIT
    ack_frequency: int = 0
    handshake_timeout_rtt_multiplier: int = DEFAULT_HANDSHAKE_TIMEOUT_RTT_MULTIPLIER
    max_initial_handshake_packets: int = DEFAULT_MAX_INITIAL_HANDSHAKE_PACKETS
    enlarge_client_hello: bool = False
    cc_type: CCType = CCType.RENO
    clock: MonotonicClock = field(default_factory=MonotonicClock)

    @property
    def initial_cwnd(self) -> int:
        """Initial congestion window, in bytes."""
        return calc_initial_cwnd(self.initcwnd_packets, self.transport_params.max_udp_payload_size)


def spec_context() -> Context:
    """A new context using the values the protocol specification recommends."""
    return Context()


def performant_context() -> Context:
    """A new context tuned for latency: speculative probes are sent at a tail."""
    ctx = Context()
    ctx.loss = dataclasses.replace(ctx.loss, num_speculative_ptos=2)
    return ctx