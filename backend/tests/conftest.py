"""
Pytest fixtures for retailpos backend tests.

Provides test database setup, user/product factories, and test client.
"""

import pytest
from retailpos import create_app
from retailpos.extensions import db
from retailpos.models import Product, User
from retailpos.services import session_service
from retailpos.services.auth_service import hash_password


TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'CHECKOUT_RETRY_BACKOFF': 0,
        'NOTIFICATIONS_ENABLED': False,
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
        db.session.rollback()
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory: make_user("alice", is_admin=False) -> User."""
    def _make(username: str, *, is_admin: bool = False) -> User:
        user = User(
            username=username,
            email=f"{username}@example.com",
            password_hash=hash_password(TEST_PASSWORD),
            is_admin=is_admin,
            is_active=True,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture(scope='function')
def user(make_user):
    return make_user("cashier")


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user("admin", is_admin=True)


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product("A", selling=1000, buying=600, quantity=5) -> Product."""
    counter = {"n": 0}

    def _make(
        name: str,
        *,
        selling: int = 1000,
        buying: int = 600,
        quantity: int = 5,
        category: str = "General",
        reorder_level: int = 5,
    ) -> Product:
        counter["n"] += 1
        product = Product(
            name=name,
            product_code=f"P-{counter['n']:04d}",
            category=category,
            unit="pcs",
            buying_price_cents=buying,
            selling_price_cents=selling,
            quantity=quantity,
            reorder_level=reorder_level,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """Product A: price 10.00, buying 6.00, stock 5."""
    return make_product("Product A", selling=1000, buying=600, quantity=5)


def _bearer(user: User) -> dict:
    _, token = session_service.create_session(user)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope='function')
def user_headers(user):
    return _bearer(user)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return _bearer(admin)
