import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from quicproto.cc import (
    MIN_CWND,
    UINT32_MAX,
    CCType,
    CongestionControl,
    calc_initial_cwnd,
)

MSS = 1200
INIT = calc_initial_cwnd(10, MSS)
RTT = 100


def lose(cc, lost_pn=5, next_pn=10, now=1000):
    cc.on_lost(MSS, lost_pn, next_pn, now, MSS, RTT)


def ack(cc, nbytes, largest=20, now=2000):
    cc.on_acked(nbytes, largest, nbytes, largest + 1, now, MSS, RTT)


def test_initial_cwnd_uses_packets_and_payload():
    assert calc_initial_cwnd(10, 1200) == 10 * 1200


def test_initial_cwnd_minimum_packets():
    assert calc_initial_cwnd(1, 1200) == MIN_CWND * 1200


def test_initial_cwnd_caps_payload_size():
    assert calc_initial_cwnd(10, 9000) == 10 * 1472


@pytest.mark.parametrize("cc_type", list(CCType))
def test_fresh_state(cc_type):
    cc = CongestionControl(cc_type, INIT)
    assert cc.type is cc_type
    assert cc.cwnd == INIT
    assert cc.cwnd_initial == INIT
    assert cc.cwnd_maximum == INIT
    assert cc.ssthresh == UINT32_MAX
    assert cc.cwnd_minimum == UINT32_MAX
    assert cc.num_loss_episodes == 0


def test_type_accepts_name():
    cc = CongestionControl("cubic", INIT)
    assert cc.type is CCType.CUBIC


def test_unknown_type_rejected():
    with pytest.raises(ValueError):
        CongestionControl("vegas", INIT)


@pytest.mark.parametrize("cc_type", [CCType.RENO, CCType.CUBIC])
def test_slow_start_grows_by_acked_bytes(cc_type):
    cc = CongestionControl(cc_type, INIT)
    ack(cc, 1000)
    assert cc.cwnd == INIT + 1000
    assert cc.cwnd_maximum == cc.cwnd


def test_pico_slow_start_grows_per_mtu():
    cc = CongestionControl(CCType.PICO, INIT)
    ack(cc, MSS - 200)
    assert cc.cwnd == INIT
    assert cc.stash == MSS - 200
    ack(cc, 200)
    assert cc.cwnd == INIT + MSS
    assert cc.stash == 0


@pytest.mark.parametrize("cc_type", list(CCType))
def test_acked_above_inflight_rejected(cc_type):
    cc = CongestionControl(cc_type, INIT)
    with pytest.raises(ValueError):
        cc.on_acked(2000, 5, 1000, 6, 0, MSS, RTT)


def test_reno_loss_reduces_window():
    cc = CongestionControl(CCType.RENO, INIT)
    lose(cc)
    assert cc.cwnd == 8400
    assert cc.ssthresh == cc.cwnd
    assert cc.cwnd_minimum == cc.cwnd
    assert cc.cwnd_exiting_slow_start == INIT
    assert cc.recovery_end == 10
    assert cc.num_loss_episodes == 1


@pytest.mark.parametrize("cc_type", list(CCType))
def test_loss_bookkeeping(cc_type):
    cc = CongestionControl(cc_type, INIT)
    lose(cc, lost_pn=3, next_pn=42)
    assert cc.cwnd < INIT
    assert cc.ssthresh == cc.cwnd
    assert cc.recovery_end == 42
    assert cc.num_loss_episodes == 1
    assert cc.cwnd_maximum == INIT


@pytest.mark.parametrize("cc_type", list(CCType))
def test_loss_in_recovery_window_ignored(cc_type):
    cc = CongestionControl(cc_type, INIT)
    lose(cc, lost_pn=5, next_pn=10)
    cwnd = cc.cwnd
    lose(cc, lost_pn=9, next_pn=20)
    assert cc.cwnd == cwnd
    assert cc.num_loss_episodes == 1
    assert cc.recovery_end == 10


@pytest.mark.parametrize("cc_type", list(CCType))
def test_ack_in_recovery_ignored(cc_type):
    cc = CongestionControl(cc_type, INIT)
    lose(cc, next_pn=10)
    cwnd = cc.cwnd
    ack(cc, 5000, largest=9)
    assert cc.cwnd == cwnd
    assert cc.stash == (0 if cc_type is not CCType.PICO else cc.stash)


@pytest.mark.parametrize("cc_type", list(CCType))
def test_window_floor(cc_type):
    cc = CongestionControl(cc_type, MIN_CWND * MSS)
    lose(cc)
    assert cc.cwnd == MIN_CWND * MSS
    assert cc.ssthresh == MIN_CWND * MSS


def test_reno_congestion_avoidance_one_mss_per_window():
    cc = CongestionControl(CCType.RENO, INIT)
    lose(cc)
    cwnd = cc.cwnd
    ack(cc, cwnd - 1)
    assert cc.cwnd == cwnd
    assert cc.stash == cwnd - 1
    ack(cc, 1)
    assert cc.cwnd == cwnd + MSS
    assert cc.stash == 0
    assert cc.cwnd_maximum == INIT


def test_pico_congestion_avoidance_rate():
    cc = CongestionControl(CCType.PICO, INIT)
    lose(cc)
    per_mtu = cc.bytes_per_mtu_increase
    assert 0 < per_mtu <= INIT
    cwnd = cc.cwnd
    ack(cc, per_mtu - 1)
    assert cc.cwnd == cwnd
    ack(cc, 1)
    assert cc.cwnd == cwnd + MSS
    assert cc.stash == 0


def test_cubic_first_loss_records_w_max():
    cc = CongestionControl(CCType.CUBIC, INIT)
    lose(cc, now=1234)
    assert cc.w_max == INIT
    assert cc.w_last_max == INIT
    assert cc.avoidance_start == 1234
    assert cc.k > 0


def test_cubic_fast_convergence():
    cc = CongestionControl(CCType.CUBIC, INIT)
    lose(cc, lost_pn=5, next_pn=10)
    reduced = cc.cwnd
    lose(cc, lost_pn=15, next_pn=20, now=3000)
    assert cc.w_last_max == reduced
    assert cc.w_max < cc.w_last_max
    assert cc.num_loss_episodes == 2


def test_cubic_congestion_avoidance_does_not_shrink():
    cc = CongestionControl(CCType.CUBIC, INIT)
    lose(cc, now=1000)
    previous = cc.cwnd
    for step in range(1, 40):
        ack(cc, MSS, largest=20 + step, now=1000 + step * 100)
        assert cc.cwnd >= previous
        assert cc.cwnd_maximum >= cc.cwnd
        previous = cc.cwnd
    assert cc.cwnd > cc.ssthresh


def test_cubic_on_sent_shifts_epoch_after_idle():
    cc = CongestionControl(CCType.CUBIC, INIT)
    lose(cc, now=1000)
    cc.on_sent(MSS, 2000, MSS)
    assert cc.avoidance_start == 1000
    assert cc.last_sent_time == 2000
    cc.on_sent(MSS, 5000, MSS)
    assert cc.avoidance_start == 1000 + (5000 - 2000)
    assert cc.last_sent_time == 5000


def test_cubic_on_sent_no_shift_while_busy():
    cc = CongestionControl(CCType.CUBIC, INIT)
    lose(cc, now=1000)
    cc.on_sent(MSS, 2000, MSS)
    cc.on_sent(MSS, 5000, 3 * MSS)
    assert cc.avoidance_start == 1000
    assert cc.last_sent_time == 5000


def test_reno_on_sent_leaves_state():
    cc = CongestionControl(CCType.RENO, INIT)
    cc.on_sent(MSS, 2000, MSS)
    assert cc.last_sent_time == 0
    assert cc.cwnd == INIT


@pytest.mark.parametrize("cc_type", list(CCType))
def test_persistent_congestion_keeps_window(cc_type):
    cc = CongestionControl(cc_type, INIT)
    lose(cc)
    cwnd = cc.cwnd
    cc.on_persistent_congestion(5000)
    assert cc.cwnd == cwnd
    assert cc.ssthresh == cwnd


def test_switch_reno_to_pico_keeps_stash():
    cc = CongestionControl(CCType.RENO, INIT)
    lose(cc)
    ack(cc, 1000)
    cwnd = cc.cwnd
    cc.switch(CCType.PICO)
    assert cc.type is CCType.PICO
    assert cc.stash == 1000
    assert cc.cwnd == cwnd
    assert cc.bytes_per_mtu_increase > 0


def test_switch_pico_to_reno_keeps_stash():
    cc = CongestionControl(CCType.PICO, INIT)
    ack(cc, 700)
    cc.switch("reno")
    assert cc.type is CCType.RENO
    assert cc.stash == 700
    assert cc.cwnd == INIT


@pytest.mark.parametrize("target", [CCType.RENO, CCType.PICO])
def test_switch_from_cubic_after_loss_resets(target):
    cc = CongestionControl(CCType.CUBIC, INIT)
    lose(cc)
    cc.switch(target)
    assert cc.type is target
    assert cc.cwnd == INIT
    assert cc.num_loss_episodes == 0
    assert cc.ssthresh == UINT32_MAX


@pytest.mark.parametrize("source", [CCType.RENO, CCType.PICO])
def test_switch_to_cubic_after_loss_resets(source):
    cc = CongestionControl(source, INIT)
    lose(cc)
    cc.switch(CCType.CUBIC)
    assert cc.type is CCType.CUBIC
    assert cc.cwnd == INIT
    assert cc.cwnd_exiting_slow_start == 0


def test_switch_in_slow_start_keeps_window():
    cc = CongestionControl(CCType.CUBIC, INIT)
    ack(cc, 3000)
    cc.switch(CCType.PICO)
    assert cc.type is CCType.PICO
    assert cc.cwnd == INIT + 3000
    assert cc.stash == 0
    cc.switch(CCType.CUBIC)
    assert cc.type is CCType.CUBIC
    assert cc.cwnd == INIT + 3000


def test_switch_to_same_type_is_noop():
    cc = CongestionControl(CCType.RENO, INIT)
    lose(cc)
    cwnd = cc.cwnd
    cc.switch(CCType.RENO)
    assert cc.cwnd == cwnd
    assert cc.num_loss_episodes == 1


def test_switch_unknown_type_rejected():
    cc = CongestionControl(CCType.RENO, INIT)
    with pytest.raises(ValueError):
        cc.switch("bbr")


def test_reset_restores_initial_state():
    cc = CongestionControl(CCType.RENO, INIT)
    lose(cc)
    cc.reset(CCType.CUBIC, 2 * INIT)
    assert cc.type is CCType.CUBIC
    assert cc.cwnd == 2 * INIT
    assert cc.recovery_end == 0
    assert cc.cwnd_minimum == UINT32_MAX


events = st.lists(
    st.tuples(st.booleans(), st.integers(min_value=1, max_value=5000), st.integers(min_value=1, max_value=500)),
    max_size=60,
)


@settings(max_examples=60, deadline=None)
@given(cc_type=st.sampled_from(list(CCType)), seq=events)
def test_window_invariants(cc_type, seq):
    cc = CongestionControl(cc_type, INIT)
    now = 1000
    pn = 0
    for is_loss, nbytes, dt in seq:
        now += dt
        pn += 1
        if is_loss:
            cc.on_lost(nbytes, pn, pn + 1, now, MSS, RTT)
        else:
            cc.on_acked(nbytes, pn, nbytes, pn + 1, now, MSS, RTT)
        assert cc.cwnd >= MIN_CWND * MSS
        assert cc.cwnd_maximum >= cc.cwnd
        assert cc.cwnd_minimum == UINT32_MAX or cc.cwnd_minimum <= cc.cwnd
        if cc.num_loss_episodes:
            assert cc.cwnd_exiting_slow_start >= MIN_CWND * MSS