"""
Shared pytest configuration for tests.

We reset the in-memory unlock rate-limiting state between tests so that:
- rate limiting remains active and testable, but
- tests do not interfere with each other via global `_unlock_attempts`.

Core-layer tests get isolated SessionManager instances over a MemoryStore
and a controllable clock; HTTP tests get a fresh app on in-memory SQLite.
"""

import pytest

from config import TestingConfig
from notevault import auth, create_app
from notevault.models import db
from notevault.session import SessionManager
from notevault.storage import MemoryStore
from notevault.store import NoteRecordStore

MASTER_PASSWORD = 'correct horse battery'
TEST_ITERATIONS = 1000


@pytest.fixture(autouse=True)
def clear_rate_limit_state():
    """
    Automatically clear auth._unlock_attempts around each test.

    This keeps rate limiting behavior intact within a single test while
    preventing cross-test coupling via shared global state.
    """
    # Pre-test cleanup
    auth._unlock_attempts['total'].clear()
    auth._unlock_attempts['by_ip'].clear()

    yield

    # Post-test cleanup
    auth._unlock_attempts['total'].clear()
    auth._unlock_attempts['by_ip'].clear()


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def master_password():
    return MASTER_PASSWORD


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def session_manager(memory_store, clock):
    """A locked session over an empty store."""
    return SessionManager(
        memory_store,
        iterations=TEST_ITERATIONS,
        auto_lock_seconds=60,
        clock=clock,
    )


@pytest.fixture
def unlocked_session(session_manager):
    session_manager.first_time_setup(MASTER_PASSWORD)
    return session_manager


@pytest.fixture
def note_store(memory_store, unlocked_session):
    return NoteRecordStore(memory_store, unlocked_session)


@pytest.fixture
def app():
    """Create and configure test application instance."""
    application = create_app(TestingConfig)

    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def unlocked_client(client):
    """Test client for a freshly created (and therefore unlocked) vault."""
    response = client.post('/setup', json={
        'password': MASTER_PASSWORD,
        'confirm_password': MASTER_PASSWORD,
    })
    assert response.status_code == 201
    return client
