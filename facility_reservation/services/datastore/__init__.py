"""
Database integration for persisting users and their bearer tokens.

The :class:`DataStore` owns the connection pool and is constructed
explicitly, then handed to whatever needs it (the Flask application, the
command line, tests). There is no module-level connection state.

Writes happen inside :meth:`DataStore.transaction`, which yields a
:class:`Transaction` exposing the insert operations. Either every write in
the block is committed, or none of them is.

.. code-block:: python

   store = DataStore('sqlite:///dev.db')
   with store.transaction() as tx:
       user = tx.insert_user(user_id, 'alice', False)
       token = tx.insert_token(token_id, user.user_id, secret, 'Default Token')

"""

from typing import Generator, List, Optional, Union
from contextlib import contextmanager
from datetime import datetime
import logging

from flask import Flask, current_app
from sqlalchemy import or_, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.session import Session

from . import models, util
from .models import DBUser, DBUserToken
from ... import domain
from ...exceptions import DuplicateUsername, NoSuchToken, NoSuchUser, \
    StoreUnavailable

logger = logging.getLogger(__name__)

USERNAME_INDEX = 'ix_users_username'


class Transaction(object):
    """Write operations bound to a single database transaction."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def insert_user(self, user_id: str, username: str,
                    is_staff: bool = False) -> domain.User:
        """
        Insert a new user row.

        Raises
        ------
        :class:`.DuplicateUsername`
            If the username is already taken.
        :class:`.StoreUnavailable`
            For any other database failure.

        """
        db_user = DBUser(id=user_id, username=username, is_staff=is_staff)
        try:
            self.session.add(db_user)
            self.session.flush()
            self.session.refresh(db_user)
        except IntegrityError as e:
            if _is_username_violation(e):
                raise DuplicateUsername(f'Username {username} is taken') from e
            raise StoreUnavailable('Could not insert user', 'transaction',
                                   'insert_user') from e
        except SQLAlchemyError as e:
            raise StoreUnavailable('Could not insert user', 'transaction',
                                   'insert_user') from e
        return db_user.to_domain()

    def insert_token(self, token_id: str, user_id: str, token: str,
                     name: str, expires_at: Optional[datetime] = None) \
            -> domain.Token:
        """Insert a new token row owned by ``user_id``."""
        if expires_at is not None:
            expires_at = domain.as_utc(expires_at)
        db_token = DBUserToken(id=token_id, user_id=user_id, token=token,
                               name=name, expires_at=expires_at)
        try:
            self.session.add(db_token)
            self.session.flush()
            self.session.refresh(db_token)
        except SQLAlchemyError as e:
            raise StoreUnavailable('Could not insert token', 'transaction',
                                   'insert_token') from e
        return db_token.to_domain()


class DataStore(object):
    """Persistence for :class:`domain.User` and :class:`domain.Token`."""

    def __init__(self, engine: Union[str, Engine],
                 pool_size: Optional[int] = None,
                 pool_timeout: Optional[float] = None,
                 statement_timeout: Optional[float] = None) -> None:
        """
        Set up the connection pool.

        Parameters
        ----------
        engine : str or :class:`Engine`
            Either a database URI or an engine created elsewhere.
        pool_size : int
            Maximum number of pooled connections (ignored for SQLite).
        pool_timeout : float
            Seconds to wait for a pooled connection before giving up.
        statement_timeout : float
            Seconds a single statement may run before it fails with
            :class:`.StoreUnavailable`.

        """
        if isinstance(engine, str):
            engine = util.get_engine(engine, pool_size, pool_timeout,
                                     statement_timeout)
        self.engine = util.configure_engine(engine)
        self._sessions = sessionmaker(bind=self.engine,
                                      expire_on_commit=False)

    @contextmanager
    def transaction(self) -> Generator[Transaction, None, None]:
        """
        Context manager for an all-or-nothing unit of writes.

        Commits when the block exits normally. If anything is raised in the
        block (or by the commit itself), the transaction is rolled back and
        the original exception propagates. A failed rollback is logged and
        attached to that exception as ``rollback_error``.
        """
        session = self._sessions()
        try:
            yield Transaction(session)
            try:
                session.commit()
            except SQLAlchemyError as e:
                raise StoreUnavailable('Could not commit', 'transaction',
                                       'commit') from e
        except BaseException as e:
            try:
                session.rollback()
            except Exception as rollback_error:
                logger.error('Rollback failed: %s', rollback_error)
                e.rollback_error = rollback_error  # type: ignore
            raise
        finally:
            session.close()

    @contextmanager
    def _session(self, operation: str) -> Generator[Session, None, None]:
        """Session for a single operation, with store errors wrapped."""
        session = self._sessions()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreUnavailable('Database error', operation) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_user_by_token(self, token: str, now: Optional[datetime] = None) \
            -> Optional[domain.AuthenticatedUser]:
        """
        Find the owner of a live token.

        Expired tokens are excluded in the query itself, so a token that is
        unknown and one that has expired both yield ``None``.
        """
        now = util.now() if now is None else domain.as_utc(now)
        with self._session('get_user_by_token') as session:
            row = session.query(DBUser.id, DBUser.username, DBUser.is_staff) \
                .join(DBUserToken, DBUserToken.user_id == DBUser.id) \
                .filter(DBUserToken.token == token) \
                .filter(or_(DBUserToken.expires_at.is_(None),
                            DBUserToken.expires_at > now)) \
                .first()
        if row is None:
            return None
        return domain.AuthenticatedUser(
            user_id=row.id,
            username=row.username,
            is_staff=bool(row.is_staff)
        )

    def get_user_by_id(self, user_id: str) -> domain.User:
        """Load a :class:`domain.User` by its identifier."""
        with self._session('get_user_by_id') as session:
            return _load_dbuser(session, DBUser.id == user_id).to_domain()

    def get_user_by_username(self, username: str) -> domain.User:
        """Load a :class:`domain.User` by its username."""
        with self._session('get_user_by_username') as session:
            return _load_dbuser(session, DBUser.username == username) \
                .to_domain()

    def list_users(self) -> List[domain.User]:
        """All users, oldest first."""
        with self._session('list_users') as session:
            db_users = session.query(DBUser) \
                .order_by(DBUser.created_at, DBUser.id) \
                .all()
            return [db_user.to_domain() for db_user in db_users]

    def list_user_tokens(self, user_id: str) -> List[domain.Token]:
        """Tokens owned by ``user_id``, newest first."""
        with self._session('list_user_tokens') as session:
            db_tokens = session.query(DBUserToken) \
                .filter(DBUserToken.user_id == user_id) \
                .order_by(DBUserToken.created_at.desc(),
                          DBUserToken.id.desc()) \
                .all()
            return [db_token.to_domain() for db_token in db_tokens]

    def delete_user(self, user_id: str) -> None:
        """Delete a user. All of its tokens are deleted with it."""
        with self._session('delete_user') as session:
            session.delete(_load_dbuser(session, DBUser.id == user_id))

    def delete_token(self, token_id: str) -> None:
        """Delete a single token."""
        with self._session('delete_token') as session:
            db_token = session.query(DBUserToken) \
                .filter(DBUserToken.id == token_id) \
                .first()
            if db_token is None:
                raise NoSuchToken(f'Token {token_id} does not exist')
            session.delete(db_token)

    def is_available(self) -> bool:
        """Check our connection to the database."""
        try:
            with self.engine.connect() as connection:
                connection.execute(text('SELECT 1'))
        except SQLAlchemyError as e:
            logger.error('Encountered an error talking to database: %s', e)
            return False
        return True

    def create_all(self) -> None:
        """Create all tables in the database."""
        models.Base.metadata.create_all(self.engine)

    def drop_all(self) -> None:
        """Drop all tables in the database."""
        models.Base.metadata.drop_all(self.engine)

    def dispose(self) -> None:
        """Close all pooled connections."""
        self.engine.dispose()


def init_app(app: Flask, store: Optional[DataStore] = None) -> DataStore:
    """
    Attach a :class:`DataStore` to a Flask application.

    If ``store`` is not provided, one is created from the application
    config.
    """
    if store is None:
        store = DataStore(
            app.config['SQLALCHEMY_DATABASE_URI'],
            pool_size=app.config.get('SQLALCHEMY_POOL_SIZE'),
            pool_timeout=app.config.get('SQLALCHEMY_POOL_TIMEOUT'),
            statement_timeout=app.config.get('SQLALCHEMY_STATEMENT_TIMEOUT')
        )
    app.extensions['datastore'] = store
    return store


def get_datastore() -> DataStore:
    """Get the :class:`DataStore` attached to the current application."""
    store: DataStore = current_app.extensions['datastore']
    return store


def _load_dbuser(session: Session, criterion: object) -> DBUser:
    db_user: Optional[DBUser] = session.query(DBUser) \
        .filter(criterion) \
        .first()
    if db_user is None:
        raise NoSuchUser('User does not exist')
    return db_user


def _is_username_violation(error: IntegrityError) -> bool:
    """Whether ``error`` is a violation of the unique username index."""
    diag = getattr(error.orig, 'diag', None)
    constraint = getattr(diag, 'constraint_name', None)
    if constraint is not None:   # psycopg2 names the violated index.
        return constraint == USERNAME_INDEX
    # SQLite: "UNIQUE constraint failed: users.username"
    return 'users.username' in str(error.orig)
