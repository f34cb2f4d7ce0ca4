from botocore.exceptions import ClientError

from drift_reconciler.utils.retry import CircuitBreaker, RetryStrategy


def client_error(code):
    return ClientError({"Error": {"Code": code, "Message": code}}, "PutItem")


def test_should_retry():
    strategy = RetryStrategy(max_retries=2)
    assert strategy.should_retry(client_error("ThrottlingException"), 0)
    assert strategy.should_retry(ConnectionError(), 1)
    assert not strategy.should_retry(ConnectionError(), 2)
    assert not strategy.should_retry(client_error("ConditionalCheckFailedException"), 0)
    assert not strategy.should_retry(ValueError(), 0)


def test_delay_is_capped():
    strategy = RetryStrategy(base_delay=1, max_delay=5, jitter=False)
    assert [strategy.get_delay(n) for n in range(4)] == [1, 2, 4, 5]


def test_execute_with_retry():
    strategy = RetryStrategy(max_retries=3, base_delay=0, jitter=False)
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise client_error("ProvisionedThroughputExceededException")
        return "ok"

    assert strategy.execute_with_retry(flaky) == "ok"
    assert len(attempts) == 3


def test_circuit_breaker_recovers():
    now = [0.0]
    breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60, clock=lambda: now[0])

    breaker.record_failure()
    assert breaker.allow_request()
    breaker.record_failure()
    assert breaker.state == "OPEN"
    assert not breaker.allow_request()

    now[0] = 61.0
    assert breaker.allow_request()
    assert breaker.state == "HALF_OPEN"
    breaker.record_success()
    assert breaker.state == "CLOSED"


def test_half_open_failure_reopens():
    now = [0.0]
    breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=60, clock=lambda: now[0])
    breaker.record_failure()

    now[0] = 61.0
    assert breaker.allow_request()
    breaker.record_failure()

    assert breaker.state == "OPEN"
    assert not breaker.allow_request()
