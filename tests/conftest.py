"""
Pytest configuration and fixtures for courtside tests.
"""
import os
import sys
from datetime import timedelta

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'

from courtside.app import create_app
from courtside.domain import User, UserRole, utc_now
from courtside.event_publisher import EventPublisher
from courtside.models import db
from courtside.services import build_services
from courtside.stores import MemoryBackend, memory_stores
from courtside.validation import new_id


class KeepOrder:
    """Shuffler that leaves the participant order untouched."""

    def shuffle(self, items):
        pass


@pytest.fixture
def keep_order():
    return KeepOrder()


@pytest.fixture(scope='session')
def app():
    """Create SQL-backed application for testing."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create database session for testing."""
    with app.app_context():
        # Clear all tables before each test
        db.session.remove()

        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def stores(backend):
    """In-memory reference stores shared by every service in a test."""
    return memory_stores(backend)


@pytest.fixture
def events():
    """Publisher without a Redis client; events are only logged."""
    return EventPublisher()


@pytest.fixture
def services(stores, events, keep_order):
    return build_services(stores, events=events, rng=keep_order)


@pytest.fixture
def api_app(stores, keep_order):
    """Application backed by the in-memory stores."""
    return create_app('testing', stores=stores, rng=keep_order)


@pytest.fixture
def client(api_app):
    """Create test client."""
    return api_app.test_client()


@pytest.fixture
def make_user(stores):
    """Factory that saves a user and returns it."""
    def _make(role=UserRole.PLAYER, name=None):
        user_id = new_id()
        return stores.users.save(User(id=user_id, display_name=name or f"user-{user_id[:8]}", role=role))
    return _make


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN, 'Admin')


@pytest.fixture
def creator(make_user):
    return make_user(UserRole.PLAYER, 'Creator')


@pytest.fixture
def players(make_user):
    return [make_user(UserRole.PLAYER, f'Player {i + 1}') for i in range(8)]


@pytest.fixture
def draft_tournament(services, creator):
    """A DRAFT single-elimination tournament owned by ``creator``."""
    return services.orchestrator.create_tournament(
        created_by=creator.id,
        name='Club Championship',
        max_participants=8,
        registration_deadline=utc_now() + timedelta(days=7),
    )


@pytest.fixture
def open_tournament(services, creator, draft_tournament):
    return services.orchestrator.open_tournament(draft_tournament.id, creator.id)


@pytest.fixture
def register_players(services):
    """Register the given players and return their ids in registration order."""
    def _register(tournament, users):
        for user in users:
            services.registry.register(tournament.id, user.id)
        return [u.id for u in users]
    return _register


@pytest.fixture
def active_tournament(services, creator, open_tournament, players, register_players):
    """An ACTIVE tournament with 4 players and a generated first round."""
    register_players(open_tournament, players[:4])
    result = services.orchestrator.start_tournament(open_tournament.id, creator.id)
    return result.tournament


@pytest.fixture
def mock_redis(mocker):
    """Mock Redis client."""
    return mocker.MagicMock()
