import pytest

from facility_reservation import factory, issuance
from facility_reservation.services.datastore import DataStore


@pytest.fixture()
def store(tmp_path):
    store = DataStore(f'sqlite:///{tmp_path / "test.db"}')
    store.create_all()
    yield store
    store.drop_all()
    store.dispose()


@pytest.fixture()
def staff(store):
    """The bootstrapped staff user and its token."""
    return issuance.bootstrap_staff_user(store, 'root')


@pytest.fixture()
def app(store):
    return factory.create_web_app({'TESTING': True}, store=store)


@pytest.fixture()
def client(app):
    return app.test_client()
