"""
Command line tools for operating the service.

The first staff user cannot be created through the API, since creating users
requires a staff user. Use ``create-staff-user`` to bootstrap it:

.. code-block:: bash

   $ DATABASE_URL=postgresql://... facility-reservation create-staff-user \
        --username admin
   Created staff user admin (0190c2a0-...)
   Token: 5f0c...

"""

import logging

import click
from retry import retry

from . import config, issuance
from .exceptions import DuplicateUsername, EntropyUnavailable, \
    StoreUnavailable
from .services.datastore import DataStore

logger = logging.getLogger(__name__)


@retry(StoreUnavailable, tries=3, delay=0.5, backoff=2, logger=logger)
def wait_for_database(store: DataStore) -> None:
    """Block until the database answers, or give up after a few tries."""
    if not store.is_available():
        raise StoreUnavailable('Database is not available', 'is_available')


@click.group()
@click.option('--log-level', default=config.LOGLEVEL, show_default=True,
              help='Log level for the facility_reservation logger.')
def cli(log_level: str) -> None:
    """Facility reservation administration."""
    logging.basicConfig(
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )
    logging.getLogger('facility_reservation').setLevel(log_level.upper())


@cli.command('create-staff-user')
@click.option('--username', required=True,
              help='Username for the staff user.')
@click.option('--database-url', envvar='DATABASE_URL',
              default=config.SQLALCHEMY_DATABASE_URI,
              help='Database connection URL.')
@click.option('--create-db', is_flag=True, default=False,
              help='Create the tables first, if they do not exist.')
def create_staff_user(username: str, database_url: str,
                      create_db: bool) -> None:
    """Create a staff user and print its token."""
    store = DataStore(database_url,
                      statement_timeout=config.SQLALCHEMY_STATEMENT_TIMEOUT)
    try:
        wait_for_database(store)
        if create_db:
            store.create_all()
        result = issuance.bootstrap_staff_user(store, username)
    except (DuplicateUsername, EntropyUnavailable, StoreUnavailable,
            ValueError) as e:
        raise click.ClickException(str(e)) from e
    finally:
        store.dispose()

    click.echo(f'Created staff user {result.user.username}'
               f' ({result.user.user_id})')
    click.echo(f'Token: {result.token.token}')


if __name__ == '__main__':
    cli()
