from __future__ import annotations

import pytest
import random
import threading

from labres.context.core import StoppableService
from labres.context.registry import Registry, create_default_registry
from labres.modules import errors
from labres.modules.ratelimit import TokenBucket


def test_registry_contexts() -> None:
    r = Registry()

    assert r.master_context is not None
    assert r.master_context.name == 'master'
    assert r.master_context is r.current_context
    assert r.is_existing_context('master')
    assert not r.is_existing_context('foo')

    r.register_context('foo')

    assert r.is_existing_context('foo')
    assert r.current_context.name == 'master'

    r.switch_context('foo')
    assert r.local.current_context.name == 'foo'

    bar_context = r.register_context('bar')
    with bar_context.as_current_context():
        assert r.local.current_context is bar_context

    with r.context('master'):
        assert r.local.current_context.name == 'master'

    assert r.current_context.name == 'foo'
    assert r.get_context('foo') == r.get_current_context()

    bar_context.switch_to()
    assert r.current_context.name == 'bar'


def test_autocreate() -> None:
    r = Registry()

    ctx = r.get_context('yo', autocreate=True)

    assert r.get_context('yo', autocreate=True) is ctx
    assert r.get_context('yo') is ctx


def test_assert_existence() -> None:
    r = Registry()

    with pytest.raises(errors.UnknownContext):
        r.assert_exists('foo')

    r.register_context('foo')

    with pytest.raises(errors.ContextAlreadyExists):
        r.assert_does_not_exist('foo')


def test_replace() -> None:
    r = Registry()

    ctx = r.register_context('gabba gabba')
    ctx.set_setting('test', 'one')

    assert ctx.get_setting('test') == 'one'

    ctx = r.register_context('gabba gabba', replace=True)
    assert ctx.get_setting('test') != 'one'

    ctx.lock()

    with pytest.raises(errors.ContextIsLocked):
        ctx = r.register_context('gabba gabba', replace=True)


def test_locked_contexts() -> None:
    r = Registry()

    context = r.register_context('test')
    context.set('foo', 'bar')
    context.lock()

    with pytest.raises(errors.ContextIsLocked):
        context.set('foo', 'bar')

    context.unlock()
    context.set('foo', 'baz')
    assert context.get('foo') == 'baz'


def test_master_fallback() -> None:
    r = Registry()

    assert r.master_context is not None
    r.master_context.set_setting('host', 'localhost')
    assert r.master_context.get_setting('host') == 'localhost'

    my_app = r.register_context('my_app')
    assert my_app.get_setting('host') == 'localhost'

    my_app.set_setting('host', 'remotehost')
    assert my_app.get_setting('host') == 'remotehost'

    another_app = r.register_context('another_app')
    assert another_app.get_setting('host') == 'localhost'


def test_services() -> None:
    r = Registry()
    assert r.master_context is not None

    r.master_context.set_service('service', factory=lambda ctx: object())
    first_call = r.master_context.get_service('service')
    second_call = r.master_context.get_service('service')

    assert first_call is not second_call

    with pytest.raises(errors.UnknownService):
        r.master_context.get_service('unknown')


def test_services_cache() -> None:
    r = Registry()
    assert r.master_context is not None

    r.master_context.set_service(
        'service', factory=lambda ctx: object(), cache=True
    )

    first_call = r.master_context.get_service('service')
    second_call = r.master_context.get_service('service')

    assert first_call is second_call


def test_stoppable_services() -> None:
    stopped = []

    class Service(StoppableService):
        def stop_service(self) -> None:
            stopped.append(self)

    r = Registry()
    context = r.register_context('test')

    context.set('service/test', Service())
    context.set('service/test', Service())

    assert len(stopped) == 1


def test_default_registry() -> None:
    r = create_default_registry()
    assert r.master_context is not None
    assert r.master_context.locked

    with pytest.raises(errors.ContextIsLocked):
        r.master_context.set_setting('timezone', 'UTC')

    context = r.register_context('app')

    assert context.get_setting('timezone') == 'Asia/Manila'
    assert context.get_setting('opening_time') == '08:00'
    assert context.get_setting('closing_time') == '17:00'
    assert context.get_setting('min_duration') == 1
    assert context.get_setting('max_duration') == 480
    assert context.get_setting('enforce_quota') is False

    number = context.get_service('reservation_number')()
    assert number.startswith('RSV-') and len(number) == 12

    context.set_setting('reservation_number_prefix', 'LAB-')
    context.set_setting('reservation_number_length', 4)
    number = context.get_service('reservation_number')()
    assert number.startswith('LAB-') and len(number) == 8

    now = context.get_service('clock')()
    assert now.tzinfo is not None


def test_rate_limiter_service() -> None:
    r = create_default_registry()
    context = r.register_context('kiosk')
    context.set_setting('rate_limit_capacity', 2)

    limiter = context.get_service('rate_limiter')
    assert isinstance(limiter, TokenBucket)
    assert context.get_service('rate_limiter') is limiter

    limiter.consume('10.0.0.1')
    limiter.consume('10.0.0.1')

    with pytest.raises(errors.RateLimitedError):
        limiter.consume('10.0.0.1')

    # other contexts have their own limiter
    other = r.register_context('other')
    other.get_service('rate_limiter').consume('10.0.0.1')


def test_settings_are_documented() -> None:
    from labres.context import settings

    assert settings.__doc__
    assert 'settings.timezone' in settings.__doc__
    assert "default: **'Asia/Manila'**" in settings.__doc__


def test_threading_contexts() -> None:
    r = Registry()

    class Application(threading.Thread):

        def __init__(self, name: str, registry: Registry) -> None:
            threading.Thread.__init__(self)
            self.registry = registry
            self.name = name

        def run(self) -> None:
            if self.registry.is_existing_context(self.name):
                self.registry.get_context(self.name).switch_to()
            else:
                self.registry.register_context(self.name).switch_to()

            self.result = self.registry.get_current_context().name

        def join(self, timeout: float | None = None) -> str:  # type: ignore[override]
            threading.Thread.join(self, timeout)
            return self.result

    for i in range(0, 100):

        threads = [
            Application('one', r),
            Application('two', r),
            Application('three', r),
            Application('four', r)
        ]

        random.shuffle(threads)

        for t in threads:
            t.start()

        results = [t.join() for t in threads]
        assert sorted(results) == sorted(['one', 'two', 'three', 'four'])
