from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy import event
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import scoped_session, sessionmaker

from labres.context.core import StoppableService


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from sqlalchemy.engine import Connection
    from sqlalchemy.engine import Engine


SERIALIZABLE = 'SERIALIZABLE'


class SessionProvider(StoppableService):
    """Global session utility. It provides a SERIALIZABLE session to labres.
    If you want to override this provider, be sure to set the isolation_level
    to SERIALIZABLE as well.

    If you don't do that, labres might run into errors as it assumes and tests
    against SERIALIZABLE connections!

    PostgreSQL is what labres is run on in production. Other databases
    supported by SQLAlchemy work as well (the tests use SQLite), though
    without row level locking concurrent writers are only serialized by
    the database as a whole.

    """

    def __init__(
        self,
        dsn: str,
        engine_config: dict[str, Any] | None = None,
        session_config: dict[str, Any] | None = None
    ):
        assert dsn, 'No dsn configured, set the dsn setting first'

        self.dsn = dsn
        self.backend = make_url(dsn).get_backend_name()

        engine_config = dict(engine_config or {})

        if self.backend == 'postgresql':
            self.assert_valid_postgres_version(dsn)
            engine_config.setdefault('pool_size', 5)
            engine_config.setdefault('max_overflow', 5)

        elif self.backend == 'sqlite':
            connect_args = engine_config.setdefault('connect_args', {})
            connect_args.setdefault('check_same_thread', False)

        self.engine = create_engine(
            dsn,
            isolation_level=SERIALIZABLE,
            **engine_config
        )

        if self.backend == 'sqlite':
            self.enable_sqlite_savepoints(self.engine)

        self.session = scoped_session(sessionmaker(
            bind=self.engine, **(session_config or {})
        ))

    @staticmethod
    def enable_sqlite_savepoints(engine: Engine) -> None:
        """ The sqlite3 module only begins transactions before DML, which
        breaks savepoints. SQLAlchemy takes over the transaction handling
        instead.

        """

        @event.listens_for(engine, 'connect')
        def on_connect(dbapi_connection: Any, connection_record: Any) -> None:
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, 'begin')
        def on_begin(connection: Connection) -> None:
            connection.exec_driver_sql('BEGIN')

    def stop_service(self) -> None:
        """ Called by the labres context when the session provider is being
        discarded (only in testing).

        This makes sure that replacing the session provider on the context
        doesn't leave behind any idle connections.

        """

        self.session().close()
        self.session.remove()
        self.engine.dispose()

    def get_postgres_version(self, dsn: str) -> tuple[str, int]:
        """ Returns the postgres version as a tuple (string, integer).

        Uses it's own connection to be independent from any session.

        """
        assert 'postgres' in dsn, 'Not a postgres database'

        query = text("""
            SELECT current_setting('server_version'),
                   current_setting('server_version_num')
        """)

        engine = create_engine(dsn)

        try:
            with engine.connect() as connection:
                result = connection.execute(query).first()
            assert result is not None
            version, number = result
            return version, int(number)
        finally:
            engine.dispose()

    def assert_valid_postgres_version(self, dsn: str) -> str:
        v, n = self.get_postgres_version(dsn)

        if n < 120000:
            raise RuntimeError(f'PostgreSQL 12+ is required, got {v}')

        return dsn
