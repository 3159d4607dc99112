import os

# Must be set before anything reads the settings
os.environ["TESTING"] = "1"

import pytest
from sqlalchemy.pool import StaticPool

from habitsync.database import initialize_database
from habitsync.database import make_engine
from habitsync.database import make_sessionmaker
from habitsync.gateway.sql import SqlGateway
from habitsync.services.connectivity import ConnectivityMonitor
from habitsync.services.mutation_coordinator import OptimisticMutationCoordinator
from habitsync.services.pending_queue import PendingOperationQueue
from habitsync.services.session_service import SessionService
from habitsync.services.state_store import AppStateStore
from habitsync.services.sync_engine import SyncEngine
from habitsync.storage.local_store import LocalDurableStore
from helpers.fake_gateway import TEST_SESSION_KEY
from helpers.fake_gateway import FakeGateway


# ---------------------------------------------------------------------------
# Core components – one isolated set per test
# ---------------------------------------------------------------------------


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def local_store():
    return LocalDurableStore()


@pytest.fixture
def store():
    return AppStateStore()


@pytest.fixture
def online():
    """Initial connectivity; override in a module to start offline."""
    return True


@pytest.fixture
def monitor(store, online):
    return ConnectivityMonitor(store, initial=online)


@pytest.fixture
def queue(store, local_store):
    return PendingOperationQueue(store, local_store)


@pytest.fixture
def coordinator(store, gateway, monitor, queue):
    return OptimisticMutationCoordinator(store, gateway, monitor, queue)


@pytest.fixture
def engine(store, gateway, monitor, queue, local_store):
    engine = SyncEngine(store, gateway, monitor, queue, local_store, interval_seconds=30, max_retries=5)
    yield engine
    if engine.scheduler.running:
        engine.scheduler.shutdown(wait=False)


@pytest.fixture
def sessions(store, gateway, monitor, queue, local_store, engine):
    return SessionService(store, gateway, monitor, queue, local_store, engine)


@pytest.fixture
def active_session(store, gateway):
    """A session known to the gateway and loaded into the store."""
    session = gateway.add_session(TEST_SESSION_KEY)
    store.set_session(session, TEST_SESSION_KEY)
    return session


# ---------------------------------------------------------------------------
# Relational backend
# ---------------------------------------------------------------------------


@pytest.fixture
def sql_engine():
    engine = make_engine("sqlite:///:memory:", poolclass=StaticPool)
    initialize_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sql_gateway(sql_engine):
    return SqlGateway(make_sessionmaker(sql_engine))
