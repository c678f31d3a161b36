from callbridge.circuit_breaker import CircuitBreaker


def _breaker(clock, threshold=3, cooldown=60.0):
    return CircuitBreaker(failure_threshold=threshold, cooldown_seconds=cooldown, label="test", clock=clock)


class TestCircuitBreaker:
    def test_starts_closed(self, clock):
        cb = _breaker(clock)
        assert cb.should_try()
        assert not cb.is_open

    def test_stays_closed_below_threshold(self, clock):
        cb = _breaker(clock)
        cb.record_failure()
        cb.record_failure()
        assert cb.should_try()

    def test_opens_at_threshold(self, clock):
        cb = _breaker(clock)
        for _ in range(3):
            cb.record_failure()
        assert cb.is_open

    def test_half_open_after_cooldown(self, clock):
        cb = _breaker(clock)
        for _ in range(3):
            cb.record_failure()
        clock.advance(59)
        assert not cb.should_try()
        clock.advance(1)
        assert cb.should_try()

    def test_success_closes(self, clock):
        cb = _breaker(clock)
        for _ in range(3):
            cb.record_failure()
        clock.advance(60)
        cb.record_success()
        assert cb.should_try()
        cb.record_failure()
        assert cb.should_try()

    def test_failed_probe_restarts_cooldown(self, clock):
        cb = _breaker(clock)
        for _ in range(3):
            cb.record_failure()
        clock.advance(60)
        assert cb.should_try()
        cb.record_failure()
        assert not cb.should_try()
        clock.advance(60)
        assert cb.should_try()

    def test_logs_open_once(self, clock, caplog):
        cb = _breaker(clock, threshold=1)
        with caplog.at_level("WARNING"):
            cb.record_failure()
            cb.record_failure()
        assert caplog.text.count("OPENED") == 1
