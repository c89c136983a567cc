from __future__ import annotations

import pytest
import sedate

from _pytest.fixtures import FixtureLookupError
from datetime import datetime

from labres import new_scheduler, registry
from labres.db.models import ORMBase
# FIXME: Switch to pytest-postgresql, testing.postgresql is unmaintained
from testing.postgresql import Postgresql  # type: ignore[import-untyped]
from uuid import uuid4 as new_uuid


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Generator
    from labres.db.scheduler import Scheduler


#: the point in time the tests run at, the day before the worked examples
NOW = sedate.replace_timezone(datetime(2025, 5, 31, 10, 0), 'Asia/Manila')


class FixedClock:
    """ A clock standing still until it is moved. """

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        '--postgresql',
        action='store_true',
        default=False,
        help='Run the tests against a throwaway PostgreSQL server'
    )


def new_test_scheduler(
    dsn: str,
    context_name: str | None = None,
    clock: FixedClock | None = None
) -> Scheduler:

    context_name = context_name or new_uuid().hex

    context = registry.register_context(context_name, replace=True)
    context.set_setting('dsn', dsn)

    if clock is not None:
        context.set_service('clock', lambda ctx: clock)

    return new_scheduler(context)


def clear_database(scheduler: Scheduler) -> None:
    for table in reversed(ORMBase.metadata.sorted_tables):
        scheduler.session.execute(table.delete())


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def scheduler(
    request: pytest.FixtureRequest,
    dsn: str,
    clock: FixedClock
) -> Generator[Scheduler, None, None]:

    # clear the events before each test
    from labres.modules import events
    for event in (e for e in dir(events) if e.startswith('on_')):
        del getattr(events, event)[:]

    try:
        context = request.getfixturevalue('scheduler_context')
    except FixtureLookupError:
        context = None

    scheduler = new_test_scheduler(dsn, context, clock)

    yield scheduler

    scheduler.rollback()
    clear_database(scheduler)
    scheduler.commit()
    scheduler.close()
    scheduler.session_provider.stop_service()


@pytest.fixture(scope="session")
def dsn(
    request: pytest.FixtureRequest,
    tmp_path_factory: pytest.TempPathFactory
) -> Generator[str, None, None]:

    if request.config.getoption('--postgresql'):
        postgres = Postgresql()
        url = postgres.url()
    else:
        postgres = None
        path = tmp_path_factory.mktemp('labres') / 'labres.db'
        url = f'sqlite:///{path}'

    scheduler = new_test_scheduler(url)
    scheduler.setup_database()
    scheduler.commit()

    yield url

    scheduler.close()
    scheduler.session_provider.stop_service()

    if postgres is not None:
        postgres.stop()


@pytest.fixture
def postgresql_dsn(dsn: str) -> str:
    if not dsn.startswith('postgresql'):
        pytest.skip('Requires --postgresql')

    return dsn
