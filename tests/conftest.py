"""
Pytest fixtures for Charging Insights tests.
"""

import os
import sys
from datetime import datetime, timezone

import pytest

# Add insights to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'insights'))

# Set DATABASE_URL BEFORE importing app to use SQLite for tests
os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
os.environ['FLASK_TESTING'] = 'true'
os.environ['LOCAL_TIMEZONE'] = 'UTC'

from app import app as flask_app  # noqa: E402
from database import SessionLocal, engine  # noqa: E402
from extensions import init_cache  # noqa: E402
from models import Base  # noqa: E402


@pytest.fixture
def app():
    """Create application for testing."""
    flask_app.config['TESTING'] = True

    # Reinitialize cache to ensure it uses NullCache
    init_cache(flask_app)

    # Create all tables in the test database
    Base.metadata.create_all(engine)

    yield flask_app

    # Clean up tables after test
    SessionLocal.remove()
    Base.metadata.drop_all(engine)


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def db_session(app):
    """Provide a database session for tests."""
    session = SessionLocal()
    yield session
    session.rollback()
    SessionLocal.remove()


@pytest.fixture
def base_time():
    """Monday 2024-01-08 10:00 UTC."""
    return datetime(2024, 1, 8, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def sample_csv():
    """Export content for one user: a complete session, an orphan and a pending connect."""
    return (
        "original_id,event_type,percentage,date,time,timezone\n"
        "1,power_connected,20,2024-01-08,10:00:00,+00:00\n"
        "2,power_disconnected,80,2024-01-08,11:30:00,+00:00\n"
        "3,power_disconnected,75,08-01-2024,13:00:00,+00:00\n"
        "4.0,power_connected,40.0,1/8/2024,22:15,UTC\n"
    )


@pytest.fixture
def data_dir(tmp_path, sample_csv):
    """Directory with two user exports, one of them holding only a bad row."""
    (tmp_path / "battery_charging_data_1.csv").write_text(sample_csv)
    (tmp_path / "battery_charging_data_2.csv").write_text(
        "original_id,event_type,percentage,date,time,timezone\n"
        "1,power_connected,150,2024-01-08,10:00:00,+00:00\n"
    )
    return tmp_path
