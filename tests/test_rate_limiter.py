"""Tests for the emission rate limiter."""

from n2k_bridge.conversion import MessageKind, RateLimiter


def test_first_call_for_key_is_allowed(clock):
    limiter = RateLimiter(monotonic=clock)

    assert limiter.allow(0, MessageKind.BATTERY_STATUS, 1000) is True


def test_burst_within_interval_is_suppressed(clock):
    limiter = RateLimiter(monotonic=clock)
    assert limiter.allow(0, MessageKind.BATTERY_STATUS, 1000)

    for _ in range(5):
        clock.advance(0.1)
        assert limiter.allow(0, MessageKind.BATTERY_STATUS, 1000) is False

    clock.advance(0.5)
    assert limiter.allow(0, MessageKind.BATTERY_STATUS, 1000) is True


def test_rejected_call_does_not_restart_timer(clock):
    limiter = RateLimiter(monotonic=clock)
    limiter.allow(0, MessageKind.ENGINE_RAPID, 250)

    clock.advance(0.2)
    assert limiter.allow(0, MessageKind.ENGINE_RAPID, 250) is False
    assert limiter.last_emitted(0, MessageKind.ENGINE_RAPID) == 1000.0

    clock.advance(0.05)
    assert limiter.allow(0, MessageKind.ENGINE_RAPID, 250) is True


def test_keys_are_independent(clock):
    limiter = RateLimiter(monotonic=clock)
    limiter.allow(0, MessageKind.BATTERY_STATUS, 1000)

    assert limiter.allow(1, MessageKind.BATTERY_STATUS, 1000) is True
    assert limiter.allow(0, MessageKind.DC_DETAILED_STATUS, 1000) is True


def test_would_allow_does_not_record(clock):
    limiter = RateLimiter(monotonic=clock)

    assert limiter.would_allow(0, MessageKind.TEMPERATURE, 2000) is True
    assert limiter.last_emitted(0, MessageKind.TEMPERATURE) is None
    assert limiter.allow(0, MessageKind.TEMPERATURE, 2000) is True
    assert limiter.would_allow(0, MessageKind.TEMPERATURE, 2000) is False


def test_reset_forgets_timers(clock):
    limiter = RateLimiter(monotonic=clock)
    limiter.allow(0, MessageKind.BATTERY_STATUS, 1000)

    limiter.reset()

    assert limiter.allow(0, MessageKind.BATTERY_STATUS, 1000) is True


def test_tolerance_absorbs_early_wakeup(clock):
    limiter = RateLimiter(monotonic=clock)
    limiter.allow(0, MessageKind.ENGINE_RAPID, 250, tolerance_ms=25)

    clock.advance(0.249)
    assert limiter.would_allow(0, MessageKind.ENGINE_RAPID, 250) is False
    assert limiter.allow(0, MessageKind.ENGINE_RAPID, 250, tolerance_ms=25) is True

    clock.advance(0.2)
    assert limiter.allow(0, MessageKind.ENGINE_RAPID, 250, tolerance_ms=25) is False
