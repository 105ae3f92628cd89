import pytest

from analytics_relay.services.retry import CycleBackoff, compute_backoff_seconds


def test_fixed_backoff_never_grows():
    b = CycleBackoff(base=2.0, cap=30.0, strategy="fixed")
    assert [b.next_delay() for _ in range(5)] == [2.0] * 5


def test_exponential_backoff_doubles_up_to_cap():
    b = CycleBackoff(base=2.0, cap=10.0, strategy="exponential")
    delays = [b.next_delay() for _ in range(5)]

    assert 2.0 <= delays[0] <= 2.2
    assert 4.0 <= delays[1] <= 4.4
    assert 8.0 <= delays[2] <= 8.8
    assert delays[3] == pytest.approx(10.0)
    assert delays[4] == pytest.approx(10.0)


def test_reset_starts_over():
    b = CycleBackoff(base=1.0, cap=60.0, strategy="exponential")
    for _ in range(4):
        b.next_delay()
    b.reset()
    assert b.failures == 0
    assert 1.0 <= b.next_delay() <= 1.1


def test_compute_backoff_seconds_is_capped():
    assert compute_backoff_seconds(50, base=1.0, cap=5.0) <= 5.0
