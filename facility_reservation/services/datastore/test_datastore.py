"""Tests for :mod:`facility_reservation.services.datastore`."""

from unittest import TestCase, mock
from datetime import datetime, timedelta
import os
import shutil
import sqlite3
import tempfile
import time

from pytz import UTC, timezone
from sqlalchemy.exc import SQLAlchemyError

from ... import domain
from ...exceptions import DuplicateUsername, NoSuchToken, NoSuchUser, \
    StoreUnavailable
from .. import datastore
from ..datastore import util


class DataStoreTestCase(TestCase):
    """Sets up a temporary SQLite database."""

    def setUp(self):
        """Set up a temporary DB."""
        self.workdir = tempfile.mkdtemp()
        self.store = datastore.DataStore(
            f'sqlite:///{os.path.join(self.workdir, "test.db")}'
        )
        self.store.create_all()

    def tearDown(self):
        """Tear down temporary DB."""
        self.store.drop_all()
        self.store.dispose()
        shutil.rmtree(self.workdir)

    def _create_user(self, username='alice', is_staff=False):
        with self.store.transaction() as tx:
            return tx.insert_user(util.new_id(), username, is_staff)

    def _create_token(self, user_id, secret, expires_at=None,
                      name='Default Token'):
        with self.store.transaction() as tx:
            return tx.insert_token(util.new_id(), user_id, secret, name,
                                   expires_at)


class TestInsert(DataStoreTestCase):
    """Writes within a transaction."""

    def test_insert_user(self):
        """A user row is created with a server timestamp."""
        user = self._create_user('alice')
        self.assertEqual(user.username, 'alice')
        self.assertFalse(user.is_staff)
        self.assertIsNotNone(user.created_at)

        loaded = self.store.get_user_by_id(user.user_id)
        self.assertEqual(loaded.username, 'alice')
        self.assertEqual(self.store.get_user_by_username('alice').user_id,
                         user.user_id)

    def test_insert_duplicate_username(self):
        """The unique constraint on usernames is reported as such."""
        self._create_user('alice')
        with self.assertRaises(DuplicateUsername):
            self._create_user('alice')
        self.assertEqual(len(self.store.list_users()), 1)

    def test_insert_duplicate_id(self):
        """Other integrity violations are not reported as taken usernames."""
        user = self._create_user('alice')
        with self.assertRaises(StoreUnavailable) as ctx:
            with self.store.transaction() as tx:
                tx.insert_user(user.user_id, 'bob', False)
        self.assertEqual(ctx.exception.step, 'insert_user')
        self.assertNotIsInstance(ctx.exception, DuplicateUsername)

    def test_insert_token(self):
        """A token row is created for its owner."""
        user = self._create_user()
        token = self._create_token(user.user_id, 'abc123')
        self.assertEqual(token.user_id, user.user_id)
        self.assertEqual(token.token, 'abc123')
        self.assertEqual(token.name, 'Default Token')
        self.assertIsNone(token.expires_at)
        self.assertIsNotNone(token.created_at)
        self.assertNotEqual(token.token_id, token.token)

    def test_insert_token_for_missing_user(self):
        """Tokens must belong to an existing user."""
        with self.assertRaises(StoreUnavailable) as ctx:
            self._create_token(util.new_id(), 'abc123')
        self.assertEqual(ctx.exception.step, 'insert_token')


class TestTransaction(DataStoreTestCase):
    """All-or-nothing behavior of :meth:`.DataStore.transaction`."""

    def test_error_in_block_rolls_back(self):
        """Nothing written in a failed block survives."""
        with self.assertRaises(RuntimeError):
            with self.store.transaction() as tx:
                tx.insert_user(util.new_id(), 'alice', False)
                raise RuntimeError('something went wrong')

        with self.assertRaises(NoSuchUser):
            self.store.get_user_by_username('alice')

    def test_failed_write_rolls_back_earlier_writes(self):
        """A rejected token insert takes the user insert with it."""
        self._create_token(self._create_user('bob').user_id, 'taken')

        with self.assertRaises(StoreUnavailable):
            with self.store.transaction() as tx:
                user = tx.insert_user(util.new_id(), 'alice', False)
                tx.insert_token(util.new_id(), user.user_id, 'taken',
                                'Default Token')

        with self.assertRaises(NoSuchUser):
            self.store.get_user_by_username('alice')

    def test_rollback_failure_does_not_mask_error(self):
        """The original error propagates, with the rollback error on it."""
        mock_session = mock.MagicMock()
        mock_session.rollback.side_effect = SQLAlchemyError('rollback')
        self.store._sessions = mock.MagicMock(return_value=mock_session)

        with self.assertRaises(RuntimeError) as ctx:
            with self.store.transaction():
                raise RuntimeError('original')

        self.assertEqual(str(ctx.exception), 'original')
        self.assertIsInstance(ctx.exception.rollback_error, SQLAlchemyError)
        mock_session.commit.assert_not_called()
        mock_session.close.assert_called_once()

    def test_commit_failure(self):
        """A failed commit is rolled back and reported."""
        mock_session = mock.MagicMock()
        mock_session.commit.side_effect = SQLAlchemyError('connection lost')
        self.store._sessions = mock.MagicMock(return_value=mock_session)

        with self.assertRaises(StoreUnavailable) as ctx:
            with self.store.transaction():
                pass

        self.assertEqual(ctx.exception.step, 'commit')
        mock_session.rollback.assert_called_once()
        mock_session.close.assert_called_once()

    def test_interrupt_rolls_back(self):
        """Non-``Exception`` interruptions still resolve the transaction."""
        with self.assertRaises(KeyboardInterrupt):
            with self.store.transaction() as tx:
                tx.insert_user(util.new_id(), 'alice', False)
                raise KeyboardInterrupt()

        with self.assertRaises(NoSuchUser):
            self.store.get_user_by_username('alice')


class TestStatementTimeout(TestCase):
    """Statements that cannot complete in time fail the transaction."""

    def setUp(self):
        self.workdir = tempfile.mkdtemp()
        self.path = os.path.join(self.workdir, 'test.db')
        self.store = datastore.DataStore(f'sqlite:///{self.path}',
                                         statement_timeout=0.1)
        self.store.create_all()

    def tearDown(self):
        self.store.dispose()
        shutil.rmtree(self.workdir)

    def test_timeout_in_transaction(self):
        """A timed out write is reported, and the session is released."""
        sessions = []
        make_session = self.store._sessions

        def track():
            session = make_session()
            sessions.append(session)
            return session

        self.store._sessions = track

        # Another client holds the write lock for longer than the timeout.
        blocker = sqlite3.connect(self.path, isolation_level=None)
        blocker.execute('BEGIN IMMEDIATE')
        try:
            with self.assertRaises(StoreUnavailable) as ctx:
                with self.store.transaction() as tx:
                    tx.insert_user(util.new_id(), 'alice', False)
        finally:
            blocker.execute('ROLLBACK')
            blocker.close()

        self.assertEqual(ctx.exception.step, 'insert_user')
        self.assertEqual(len(sessions), 1)
        self.assertFalse(sessions[0].in_transaction())

        # Nothing was left holding the database.
        with self.store.transaction() as tx:
            tx.insert_user(util.new_id(), 'alice', False)
        self.assertEqual(len(self.store.list_users()), 1)


class TestEngine(TestCase):
    """Connection settings passed to the database driver."""

    @mock.patch(f'{util.__name__}.create_engine')
    def test_postgresql_statement_timeout(self, mock_create_engine):
        """PostgreSQL cancels statements server-side."""
        util.get_engine('postgresql://u:p@localhost/db', pool_size=5,
                        pool_timeout=2, statement_timeout=1.5)
        kwargs = mock_create_engine.call_args[1]
        self.assertEqual(kwargs['connect_args'],
                         {'options': '-c statement_timeout=1500'})
        self.assertEqual(kwargs['pool_size'], 5)
        self.assertEqual(kwargs['pool_timeout'], 2.0)

    @mock.patch(f'{util.__name__}.create_engine')
    def test_sqlite_statement_timeout(self, mock_create_engine):
        """SQLite waits at most the timeout for a locked database."""
        util.get_engine('sqlite://', pool_size=5, statement_timeout=1.5)
        kwargs = mock_create_engine.call_args[1]
        self.assertEqual(kwargs['connect_args'],
                         {'check_same_thread': False, 'timeout': 1.5})
        self.assertNotIn('pool_size', kwargs)


class TestGetUserByToken(DataStoreTestCase):
    """Token lookups with expiry applied in the query."""

    def setUp(self):
        super().setUp()
        self.now = datetime.now(tz=UTC)
        self.user = self._create_user('alice', is_staff=True)

    def test_never_expires(self):
        """A token without expiry is always live."""
        self._create_token(self.user.user_id, 'forever')
        user = self.store.get_user_by_token('forever')
        self.assertEqual(user, domain.AuthenticatedUser(
            user_id=self.user.user_id, username='alice', is_staff=True
        ))
        later = self.now + timedelta(days=3650)
        self.assertIsNotNone(self.store.get_user_by_token('forever', later))

    def test_expired(self):
        """Expired tokens do not match."""
        self._create_token(self.user.user_id, 'stale',
                           expires_at=self.now - timedelta(seconds=1))
        self.assertIsNone(self.store.get_user_by_token('stale', self.now))

    def test_not_yet_expired(self):
        """Tokens expiring in the future match."""
        self._create_token(self.user.user_id, 'fresh',
                           expires_at=self.now + timedelta(seconds=1))
        self.assertIsNotNone(self.store.get_user_by_token('fresh', self.now))

    def test_expiry_with_offset(self):
        """Expiry is compared in UTC regardless of the offset provided."""
        eastern = self.now.astimezone(timezone('US/Eastern'))
        self._create_token(self.user.user_id, 'offset',
                           expires_at=eastern + timedelta(seconds=1))
        self.assertIsNotNone(self.store.get_user_by_token('offset', self.now))
        self.assertIsNone(self.store.get_user_by_token(
            'offset', self.now + timedelta(seconds=2)
        ))

    def test_unknown(self):
        """Unknown tokens do not match."""
        self.assertIsNone(self.store.get_user_by_token('nope'))

    def test_store_error(self):
        """Database errors are wrapped with the operation name."""
        self.store.drop_all()
        with self.assertRaises(StoreUnavailable) as ctx:
            self.store.get_user_by_token('forever')
        self.assertEqual(ctx.exception.operation, 'get_user_by_token')
        self.assertIn('get_user_by_token', str(ctx.exception))
        self.store.create_all()


class TestQueries(DataStoreTestCase):
    """Supporting queries and deletes."""

    def test_list_users(self):
        """Users are listed in creation order."""
        for name in ['carol', 'alice', 'bob']:
            self._create_user(name)
            time.sleep(0.002)
        names = [user.username for user in self.store.list_users()]
        self.assertEqual(names, ['carol', 'alice', 'bob'])

    def test_created_at_resolution(self):
        """Rows created within the same second get distinct timestamps."""
        first = self._create_user('alice')
        time.sleep(0.002)
        second = self._create_user('bob')
        first_at = domain.as_utc(first.created_at)
        second_at = domain.as_utc(second.created_at)
        self.assertLess(first_at, second_at)
        self.assertLess(second_at - first_at, timedelta(seconds=1))

    def test_list_user_tokens(self):
        """Tokens are listed newest first."""
        user = self._create_user()
        first = self._create_token(user.user_id, 'one')
        time.sleep(0.002)
        second = self._create_token(user.user_id, 'two', name='Second')
        tokens = self.store.list_user_tokens(user.user_id)
        self.assertEqual([t.token_id for t in tokens],
                         [second.token_id, first.token_id])

    def test_delete_user_cascades(self):
        """Deleting a user deletes its tokens."""
        user = self._create_user()
        self._create_token(user.user_id, 'one')
        self._create_token(user.user_id, 'two')
        self.store.delete_user(user.user_id)

        self.assertEqual(self.store.list_user_tokens(user.user_id), [])
        self.assertIsNone(self.store.get_user_by_token('one'))
        self.assertIsNone(self.store.get_user_by_token('two'))
        with self.assertRaises(NoSuchUser):
            self.store.get_user_by_id(user.user_id)

    def test_delete_missing_user(self):
        """Deleting a user that does not exist is an error."""
        with self.assertRaises(NoSuchUser):
            self.store.delete_user(util.new_id())

    def test_delete_token(self):
        """A single token can be removed."""
        user = self._create_user()
        token = self._create_token(user.user_id, 'one')
        self.store.delete_token(token.token_id)
        self.assertIsNone(self.store.get_user_by_token('one'))
        with self.assertRaises(NoSuchToken):
            self.store.delete_token(token.token_id)


class TestAvailability(TestCase):
    """Health check."""

    def test_unavailable(self):
        """An unreachable database is reported as unavailable."""
        store = datastore.DataStore('sqlite:////no/such/directory/test.db')
        self.assertFalse(store.is_available())

    def test_available(self):
        """A reachable database is reported as available."""
        store = datastore.DataStore('sqlite://')
        self.assertTrue(store.is_available())


class TestIds(TestCase):
    """Identifiers generated for new rows."""

    def test_ids_sort_in_creation_order(self):
        """Ids from different milliseconds sort in the order generated."""
        first = util.new_id()
        time.sleep(0.002)
        second = util.new_id()
        self.assertLess(first, second)
        self.assertEqual(len(first), 36)
