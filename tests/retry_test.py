import random

import pytest
import requests

from sbomguard.core.context import CancelContext
from sbomguard.core.errors import Cancelled
from sbomguard.core.retry import RetryPolicy


def test_delay_grows_exponentially_without_jitter():
    """Test backoff doubles each attempt."""
    policy = RetryPolicy(base_delay=0.2, factor=2.0, jitter=0.0)
    assert [policy.delay_for(n) for n in (1, 2, 3)] == pytest.approx([0.2, 0.4, 0.8])


def test_delay_jitter_stays_within_bounds():
    """Test jitter stays within its band."""
    policy = RetryPolicy(base_delay=1.0, factor=2.0, jitter=0.2, rng=random.Random(42))
    for _ in range(100):
        assert 0.8 <= policy.delay_for(1) <= 1.2
        assert 1.6 <= policy.delay_for(2) <= 2.4


def test_should_retry_counts_attempts():
    """Test the attempt limit."""
    policy = RetryPolicy(max_attempts=3)
    assert policy.should_retry(1)
    assert policy.should_retry(2)
    assert not policy.should_retry(3)


@pytest.mark.parametrize(
    'status,retryable', [
        (429, True), (500, True), (502, True), (503, True), (504, True), (599, True),
        (400, False), (401, False), (404, False),
    ],
)
def test_retryable_status(status, retryable):
    """Test which status codes are retried."""
    assert RetryPolicy.is_retryable_status(status) is retryable


def test_retryable_exceptions():
    """Test which request errors are retried."""
    assert RetryPolicy.is_retryable_exception(requests.Timeout())
    assert RetryPolicy.is_retryable_exception(requests.ConnectionError())
    assert not RetryPolicy.is_retryable_exception(requests.TooManyRedirects())


def test_context_deadline_cancels():
    """Test the deadline cancels the context."""
    now = [0.0]
    ctx = CancelContext(timeout=5.0, clock=lambda: now[0])
    assert not ctx.cancelled
    assert ctx.timeout_for(10.0) == 5.0

    now[0] = 5.0
    assert ctx.cancelled
    assert ctx.reason == 'deadline exceeded'
    with pytest.raises(Cancelled):
        ctx.check()


def test_context_sleep_interrupted_by_cancel():
    """Test cancel wakes a sleeping context."""
    ctx = CancelContext()
    ctx.cancel('stop')
    with pytest.raises(Cancelled):
        ctx.sleep(10.0)
    assert ctx.reason == 'stop'
