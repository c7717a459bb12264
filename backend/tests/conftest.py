"""
Pytest fixtures for StockFlow backend tests.

Provides the app on in-memory SQLite, a per-test table wipe, catalog and
user fixtures, and helpers to drive an order through the workflow.
"""

from decimal import Decimal

import pytest

from stockflow import create_app
from stockflow.extensions import db
from stockflow.models import Branch, Product, User
from stockflow.permissions import Role
from stockflow.services import purchase_service
from stockflow.services.auth_service import hash_password


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'DEFAULT_MARKUP_PERCENT': Decimal("30"),
        'RETRY_ATTEMPTS': 3,
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

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def branch(db_session):
    branch = Branch(name="Main Branch", code="MAIN")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def other_branch(db_session):
    branch = Branch(name="Harbour Branch", code="HARB")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def product(db_session):
    product = Product(item_code="P-0001", name="Interior Paint 4L")
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product2(db_session):
    product = Product(item_code="P-0002", name="Roller Set")
    db_session.add(product)
    db_session.commit()
    return product


def _make_user(db_session, username: str, role: str, branch_id=None) -> User:
    user = User(
        username=username,
        email=f"{username}@stockflow.test",
        password_hash=hash_password(PASSWORD),
        role=role,
        branch_id=branch_id,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def manager(db_session):
    return _make_user(db_session, "manager", Role.MANAGER)


@pytest.fixture(scope='function')
def sales(db_session, branch):
    return _make_user(db_session, "sales", Role.SALES, branch.id)


@pytest.fixture(scope='function')
def other_sales(db_session, branch):
    return _make_user(db_session, "sales2", Role.SALES, branch.id)


@pytest.fixture(scope='function')
def finance(db_session):
    return _make_user(db_session, "finance", Role.FINANCE)


@pytest.fixture(scope='function')
def two_line_order(branch, product, product2, sales):
    """Pending order: product x5, product2 x3, created by the sales user."""
    return purchase_service.create_order(
        branch_id=branch.id,
        items=[
            {"product_id": product.id, "quantity": 5},
            {"product_id": product2.id, "quantity": 3},
        ],
        actor_id=sales.id,
    )


@pytest.fixture(scope='function')
def accepted_order(two_line_order, manager):
    return purchase_service.accept_all(two_line_order.id, actor_id=manager.id)


def item_ids(order):
    """(first item id, second item id) of a two-line order."""
    first, second = order.items
    return first.id, second.id


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
