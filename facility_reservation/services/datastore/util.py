"""Helpers for the datastore: engines, ids and clocks."""

from typing import Any, Optional
from datetime import datetime
import logging

import ulid
from pytz import UTC
from sqlalchemy import DateTime, create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.expression import FunctionElement

logger = logging.getLogger(__name__)


def now() -> datetime:
    """Get the current time in UTC."""
    return datetime.now(tz=UTC)


class utcnow(FunctionElement):
    """
    Current time as a server-side column default.

    SQLite's ``CURRENT_TIMESTAMP`` has one-second resolution, which is too
    coarse to order rows created in quick succession. There the time is
    taken with millisecond resolution instead.
    """

    type = DateTime(timezone=True)
    inherit_cache = True


@compiles(utcnow)
def _utcnow(element: utcnow, compiler: Any, **kw: Any) -> str:
    return 'CURRENT_TIMESTAMP'


@compiles(utcnow, 'sqlite')
def _sqlite_utcnow(element: utcnow, compiler: Any, **kw: Any) -> str:
    # Same layout SQLAlchemy writes: six fractional digits.
    return ("strftime('%Y-%m-%d %H:%M:%S', 'now') || '.' || "
            "substr(strftime('%f', 'now'), 4) || '000'")


def new_id() -> str:
    """
    Generate a time-sortable unique identifier.

    This is a ULID rendered as a UUID string, so that it fits a ``uuid``
    column while still sorting in insertion order.
    """
    return str(ulid.new().uuid)


def is_sqlite(engine: Engine) -> bool:
    """Determine whether ``engine`` talks to SQLite."""
    return engine.dialect.name == 'sqlite'


def _enable_foreign_keys(dbapi_connection: Any, connection_record: Any) \
        -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA foreign_keys=ON')
    cursor.close()


def configure_engine(engine: Engine) -> Engine:
    """
    Prepare an engine for use by the datastore.

    SQLite does not enforce foreign keys (and so ``ON DELETE CASCADE``)
    unless asked to on each connection.
    """
    if is_sqlite(engine) \
            and not event.contains(engine, 'connect', _enable_foreign_keys):
        event.listen(engine, 'connect', _enable_foreign_keys)
    return engine


def get_engine(uri: str, pool_size: Optional[int] = None,
               pool_timeout: Optional[float] = None,
               statement_timeout: Optional[float] = None) -> Engine:
    """
    Create an :class:`Engine` with a connection pool for ``uri``.

    ``statement_timeout`` (seconds) bounds how long a single statement may
    run. PostgreSQL cancels the statement server-side; SQLite gives up
    waiting for a locked database. Either way the statement fails with an
    :class:`OperationalError`.
    """
    params: dict = {'pool_pre_ping': True}
    connect_args: dict = {}
    url = make_url(uri)
    backend = url.get_backend_name()
    if backend == 'sqlite':
        # SQLite pools do not all accept sizing parameters.
        connect_args['check_same_thread'] = False
        if statement_timeout is not None:
            connect_args['timeout'] = float(statement_timeout)
    else:
        if pool_size is not None:
            params['pool_size'] = int(pool_size)
        if pool_timeout is not None:
            params['pool_timeout'] = float(pool_timeout)
        if backend == 'postgresql' and statement_timeout is not None:
            milliseconds = int(float(statement_timeout) * 1000)
            connect_args['options'] = f'-c statement_timeout={milliseconds}'
    if connect_args:
        params['connect_args'] = connect_args
    logger.debug('Creating engine for %s',
                 url.render_as_string(hide_password=True))
    return configure_engine(create_engine(uri, **params))
