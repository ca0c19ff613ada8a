"""
Circuit breaker state machine, driven by a fake clock.
"""
from app.services.breaker import BreakerState, CircuitBreaker
from tests.conftest import FakeClock


def make_breaker(clock=None):
    return CircuitBreaker(failure_threshold=5, cooldown_seconds=30, clock=clock or FakeClock())


class TestThreshold:
    def test_starts_closed(self):
        breaker = make_breaker()
        assert breaker.state is BreakerState.CLOSED
        assert breaker.allows_sweep()

    def test_opens_after_exactly_five_consecutive_failures(self):
        breaker = make_breaker()
        for _ in range(4):
            breaker.record_failure()
        assert breaker.state is BreakerState.CLOSED

        breaker.record_failure()
        assert breaker.state is BreakerState.OPEN
        assert breaker.consecutive_failures == 0
        assert not breaker.allows_sweep()

    def test_success_after_four_failures_resets_counter(self):
        breaker = make_breaker()
        for _ in range(4):
            breaker.record_failure()
        breaker.record_success()

        assert breaker.state is BreakerState.CLOSED
        assert breaker.consecutive_failures == 0

        for _ in range(4):
            breaker.record_failure()
        assert breaker.state is BreakerState.CLOSED

    def test_failures_while_open_are_ignored(self):
        clock = FakeClock()
        breaker = make_breaker(clock)
        for _ in range(5):
            breaker.record_failure()
        clock.advance(10)
        breaker.record_failure()
        clock.advance(20)

        assert breaker.state is BreakerState.HALF_OPEN


class TestCooldown:
    def _open(self, clock):
        breaker = make_breaker(clock)
        for _ in range(5):
            breaker.record_failure()
        return breaker

    def test_half_open_after_cooldown(self):
        clock = FakeClock()
        breaker = self._open(clock)

        clock.advance(29.9)
        assert breaker.state is BreakerState.OPEN
        assert breaker.seconds_until_trial() > 0

        clock.advance(0.1)
        assert breaker.state is BreakerState.HALF_OPEN
        assert breaker.allows_sweep()

    def test_half_open_success_closes(self):
        clock = FakeClock()
        breaker = self._open(clock)
        clock.advance(30)

        breaker.record_success()
        assert breaker.state is BreakerState.CLOSED

    def test_half_open_failure_reopens_and_restarts_cooldown(self):
        clock = FakeClock()
        breaker = self._open(clock)
        clock.advance(30)
        assert breaker.state is BreakerState.HALF_OPEN

        breaker.record_failure()
        assert breaker.state is BreakerState.OPEN

        clock.advance(29)
        assert breaker.state is BreakerState.OPEN
        clock.advance(1)
        assert breaker.state is BreakerState.HALF_OPEN

    def test_reset_closes_immediately(self):
        clock = FakeClock()
        breaker = self._open(clock)
        breaker.reset()
        assert breaker.state is BreakerState.CLOSED
        assert breaker.seconds_until_trial() == 0.0
