"""
Pytest fixtures for prodflow backend tests.

Provides an in-memory database, the seeded permission catalog and default
roles, users per role, and auth helpers for the Flask test client.
"""

import pytest

from prodflow import create_app
from prodflow.extensions import db
from prodflow.models import Role, User
from prodflow.services import permission_service, role_service, user_service, inventory_service, guide_service


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        role_service.invalidate_catalog_cache()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def setup_roles(db_session):
    """Seed the permission catalog and the default roles."""
    permission_service.initialize_permissions()
    role_service.create_default_roles()


def _role_id(name: str) -> int:
    return db.session.query(Role).filter_by(name=name).one().id


@pytest.fixture(scope='function')
def make_user(db_session, setup_roles):
    """Factory: make_user("jan", "Worker") -> User holding the named roles."""
    def _make(login: str, *role_names: str, is_superuser: bool = False) -> User:
        return user_service.create_user(
            login=login,
            email=f"{login}@prodflow.test",
            password=PASSWORD,
            first_name=login.capitalize(),
            role_ids=[_role_id(name) for name in role_names],
            is_superuser=is_superuser,
        )
    return _make


@pytest.fixture(scope='function')
def admin_user(make_user):
    return make_user("admin", "Admin")


@pytest.fixture(scope='function')
def manager_user(make_user):
    return make_user("manager", "Manager")


@pytest.fixture(scope='function')
def warehouse_user(make_user):
    return make_user("warehouse", "Warehouse")


@pytest.fixture(scope='function')
def worker_user(make_user):
    return make_user("worker", "Worker")


@pytest.fixture(scope='function')
def admin_perms(admin_user):
    return permission_service.snapshot_for_user(admin_user)


@pytest.fixture(scope='function')
def item(db_session, manager_user):
    """Item with 10 units on hand, nothing reserved."""
    return inventory_service.create_item(
        patch={"name": "Steel bolt M8", "unit": "pcs", "quantity": 10.0, "min_quantity": 2.0},
        user_id=manager_user.id,
    )


@pytest.fixture(scope='function')
def guide(db_session, manager_user):
    return guide_service.create_guide(patch={"title": "Assemble frame"}, user_id=manager_user.id)


def get_auth_token(client, login: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'login': login,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('accessToken')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, admin_user.login))


@pytest.fixture(scope='function')
def manager_headers(client, manager_user):
    return auth_headers(get_auth_token(client, manager_user.login))


@pytest.fixture(scope='function')
def warehouse_headers(client, warehouse_user):
    return auth_headers(get_auth_token(client, warehouse_user.login))


@pytest.fixture(scope='function')
def worker_headers(client, worker_user):
    return auth_headers(get_auth_token(client, worker_user.login))
