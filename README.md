# quicproto

Protocol-level building blocks for a QUIC transport. They are pure Python,
need nothing beyond the standard library, and work without sockets or TLS.

## Modules

- `quicproto.ranges`: `Range` and `RangeSet`. A `RangeSet` is an ordered set of
  disjoint half-open integer ranges. It supports `add`, which merges ranges that
  touch or overlap, as well as `subtract`, `drop`, `clear`, indexing and iteration.
- `quicproto.cc`: `CongestionControl`, which runs the Reno, CUBIC or Pico
  algorithm (`CCType`).
  - Its state is driven by `on_acked`, `on_lost`, `on_sent` and
    `on_persistent_congestion`.
  - `switch` changes algorithm mid-connection and keeps the state where it can
    be reused.
  - `calc_initial_cwnd` computes an initial window from a packet count and a
    payload size. The payload size is capped at 1472 bytes and the packet count
    is at least 2.
- `quicproto.rate`: `RateMeter`, a delivery-rate estimator.
  - It samples only while the sender is limited by its congestion window. You
    mark those phases with `in_cwnd_limited` and `not_cwnd_limited`.
  - `report` returns a `Rate` with the latest, smoothed and standard-deviation
    values, in bytes per second.
- `quicproto.loss`: `Rtt` estimation and `LossState`, which drives the
  loss-timer and probe-timeout (PTO) alarm.
  - `update_alarm` sets the alarm time.
  - `on_ack_received` feeds in a received ACK.
  - `on_alarm` returns an `AlarmAction` that says how many packets to send and
    whether loss detection has to run.
  - `sentmap_expiration_time` gives four PTOs.
  - `LossConf` holds the configuration.
- `quicproto.defaults`: `spec_context()` and `performant_context()` return a
  `Context` with the recommended settings.
  - The two profiles differ only in that the performant one sends two
    speculative probes at a tail.
  - `Context` holds `TransportParameters` and `MaxStreamData`.
  - `MonotonicClock.now()` returns wall-clock milliseconds that never go
    backwards.

## Installation

```
pip install quicproto
```

## Examples

Merging ranges of received packet numbers:

```python
from quicproto.ranges import RangeSet

acked = RangeSet(0, 5)
acked.add(8, 12)
assert len(acked) == 2
acked.add(5, 8)
assert [(r.start, r.end) for r in acked] == [(0, 12)]
```

Running a congestion controller:

```python
from quicproto.cc import CCType, CongestionControl, calc_initial_cwnd

cc = CongestionControl(CCType.CUBIC, calc_initial_cwnd(10, 1472))
# bytes_lost, lost_pn, next_pn, now (ms), max_udp_payload_size, smoothed_rtt (ms)
cc.on_lost(1200, 5, 20, 1000, 1472, 100)
assert cc.cwnd < cc.cwnd_initial
cc.switch(CCType.RENO)
```

Measuring delivery rate:

```python
from quicproto.rate import RateMeter

meter = RateMeter()
meter.in_cwnd_limited(0)
meter.on_ack(1000, 0, 1)       # starts a sample
meter.on_ack(1060, 60000, 2)   # 60000 bytes over 60 ms
assert meter.report().latest == 1_000_000
```

Probe timeouts:

```python
from quicproto.defaults import spec_context
from quicproto.loss import LossState

loss = LossState(spec_context().loss)
loss.rtt.update(100, 0)
assert loss.rtt.get_pto(25, 1) == 325
action = loss.on_alarm()
assert action.min_packets_to_send == 2 and action.restrict_sending
```

## What the package does not do

quicproto is not a QUIC stack. It has none of the following:

- connections, streams or packet encryption
- frame or packet encoding
- stream receive-state tracking
- connection ID management
- a network endpoint or command-line program

Callers supply timestamps, packet numbers and byte counts, and act on the
results themselves.

## Running the tests

```
pip install quicproto[test]
pytest
```