# conftest.py

import os
import tempfile

import pytest
from werkzeug.security import generate_password_hash

# Set testing environment BEFORE importing app to prevent database corruption
# This ensures app.py uses TestingConfig when imported
os.environ["FLASK_ENV"] = "testing"

# Now import app and other modules after environment is set
from app import app as flask_app  # noqa: E402
from flask_app.models import MembershipRole, Organization, OrganizationMembership, User, db  # noqa: E402


@pytest.fixture(scope="function")
def app():
    """Create and configure a test Flask application"""
    import uuid

    # Create a unique temporary database file for each test
    db_fd, temp_db = tempfile.mkstemp(suffix=f"_{uuid.uuid4().hex[:8]}.db")

    try:
        flask_app.config.update(
            {
                "TESTING": True,
                "SQLALCHEMY_DATABASE_URI": f"sqlite:///{temp_db}",
                "SQLALCHEMY_ECHO": False,
                "SECRET_KEY": "test-secret-key-for-testing-only",
                "MONITORING_ENABLED": False,
                "ENABLE_FILE_LOGGING": False,
                "ENABLE_CONSOLE_LOGGING": True,
                "LOG_LEVEL": "DEBUG",
                "LOG_FORMAT": "text",
                "SMART_GROUPS_ENABLED": True,
            }
        )

        # Re-initialize logging with updated config to pick up LOG_LEVEL=DEBUG
        from flask_app.utils.logging_config import setup_logging

        setup_logging(flask_app)

        with flask_app.app_context():
            # Drop any existing tables to ensure clean state
            db.drop_all()
            db.create_all()
            yield flask_app
            # Clean up: remove all data and drop tables
            db.session.remove()
            db.drop_all()
    finally:
        # Always close and remove the temporary database file, even on error
        try:
            os.close(db_fd)
        except OSError:
            pass
        try:
            if os.path.exists(temp_db):
                os.unlink(temp_db)
        except OSError:
            pass


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    """Create a test client for the Flask application"""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


@pytest.fixture
def test_user(app):
    """Create a persisted regular user"""
    user = User(
        username="testuser",
        email="test@example.com",
        password_hash=generate_password_hash("testpass123"),
        first_name="Test",
        last_name="User",
        is_active=True,
        is_super_admin=False,
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def admin_user(app):
    """Create a persisted user that will hold the ADMIN role"""
    user = User(
        username="admin",
        email="admin@example.com",
        password_hash=generate_password_hash("adminpass123"),
        first_name="Admin",
        last_name="User",
        is_super_admin=False,
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def super_admin_user(app):
    """Create a persisted super admin"""
    user = User(
        username="superadmin",
        email="superadmin@example.com",
        password_hash=generate_password_hash("superpass123"),
        first_name="Super",
        last_name="Admin",
        is_super_admin=True,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def test_organization(app):
    """Create a test organization fixture
    Note: app_context fixture is autouse, so app context is already available
    """
    org = Organization(name="Test Organization", slug="test-organization", is_active=True)
    db.session.add(org)
    db.session.commit()
    return org


@pytest.fixture
def other_organization(app):
    """A second tenant used to check organization scoping"""
    org = Organization(name="Other Organization", slug="other-organization", is_active=True)
    db.session.add(org)
    db.session.commit()
    return org


@pytest.fixture
def member_membership(test_user, test_organization):
    """test_user is a plain MEMBER of test_organization"""
    membership = OrganizationMembership(
        user_id=test_user.id,
        organization_id=test_organization.id,
        role=MembershipRole.MEMBER,
        is_active=True,
    )
    db.session.add(membership)
    db.session.commit()
    return membership


@pytest.fixture
def admin_membership(admin_user, test_organization):
    """admin_user is an ADMIN of test_organization"""
    membership = OrganizationMembership(
        user_id=admin_user.id,
        organization_id=test_organization.id,
        role=MembershipRole.ADMIN,
        is_active=True,
    )
    db.session.add(membership)
    db.session.commit()
    return membership


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers and ensure testing environment"""
    # Ensure FLASK_ENV is set to testing before any tests run
    os.environ["FLASK_ENV"] = "testing"

    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers"""
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.slow)
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
