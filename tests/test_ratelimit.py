from __future__ import annotations

import pytest

from labres.modules import errors
from labres.modules.ratelimit import TokenBucket


class Ticker:

    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


def test_consume_until_empty() -> None:
    ticker = Ticker()
    bucket = TokenBucket(capacity=3, window=60, clock=ticker)

    bucket.consume('127.0.0.1')
    bucket.consume('127.0.0.1')
    bucket.consume('127.0.0.1')

    assert bucket.remaining('127.0.0.1') == 0

    with pytest.raises(errors.RateLimitedError) as e:
        bucket.consume('127.0.0.1')

    assert e.value.key == '127.0.0.1'
    assert e.value.retry_after == pytest.approx(20)


def test_keys_are_independent() -> None:
    bucket = TokenBucket(capacity=1, window=60, clock=Ticker())

    bucket.consume('one')
    bucket.consume('two')

    with pytest.raises(errors.RateLimitedError):
        bucket.consume('one')


def test_refill() -> None:
    ticker = Ticker()
    bucket = TokenBucket(capacity=2, window=60, clock=ticker)

    bucket.consume('key', tokens=2)
    assert bucket.remaining('key') == 0

    ticker.value = 30
    assert bucket.remaining('key') == 1

    # never above the capacity
    ticker.value = 3600
    assert bucket.remaining('key') == 2


def test_reset() -> None:
    bucket = TokenBucket(capacity=1, window=60, clock=Ticker())

    bucket.consume('one')
    bucket.consume('two')

    bucket.reset('one')
    assert bucket.remaining('one') == 1
    assert bucket.remaining('two') == 0

    bucket.stop_service()
    assert bucket.remaining('two') == 1


def test_full_buckets_are_dropped() -> None:
    ticker = Ticker()
    bucket = TokenBucket(capacity=2, window=60, clock=ticker)

    bucket.consume('one')
    bucket.consume('two', tokens=2)
    assert set(bucket.buckets) == {'one', 'two'}

    ticker.value = 59
    bucket.consume('three')
    assert set(bucket.buckets) == {'one', 'two', 'three'}

    ticker.value = 60
    bucket.consume('four')
    assert set(bucket.buckets) == {'three', 'four'}

    assert bucket.remaining('one') == 2
    assert bucket.remaining('two') == 2
    assert bucket.remaining('three') == 1
