"""
Pytest fixtures for Duka backend tests.

Provides test database setup, shop/account/product fixtures, and test client.
"""

import pytest
from duka import create_app
from duka.extensions import db
from duka.models import Shop, Admin, Cashier, Product
from duka.services.auth_service import hash_password
from duka.services.sales_service import SaleContext

# Low bcrypt cost keeps the suite fast
TEST_BCRYPT_ROUNDS = 4
TEST_PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
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

        db.session.rollback()


@pytest.fixture(scope='function')
def shop(db_session):
    shop = Shop(name="Main Shop", location="Nairobi CBD")
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def other_shop(db_session):
    shop = Shop(name="Branch Shop", location="Westlands")
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def admin(db_session):
    admin = Admin(
        name="Owner",
        email="owner@duka.local",
        password_hash=hash_password(TEST_PASSWORD, rounds=TEST_BCRYPT_ROUNDS),
    )
    db_session.add(admin)
    db_session.commit()
    return admin


@pytest.fixture(scope='function')
def cashier(db_session, shop):
    cashier = Cashier(
        name="Jane Till",
        email="jane@duka.local",
        password_hash=hash_password(TEST_PASSWORD, rounds=TEST_BCRYPT_ROUNDS),
        shop_id=shop.id,
        status="active",
    )
    db_session.add(cashier)
    db_session.commit()
    return cashier


def make_product(db_session, shop, *, name="Sugar 1kg", stock=10, buying=500, selling=800, **extra):
    product = Product(
        shop_id=shop.id,
        name=name,
        category=extra.pop("category", "Groceries"),
        barcode=extra.pop("barcode", None),
        buying_price_cents=buying,
        min_selling_price_cents=selling,
        current_stock=stock,
        **extra,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product(db_session, shop):
    """Stock 10, buying 5.00, minimum selling 8.00."""
    return make_product(db_session, shop)


@pytest.fixture(scope='function')
def second_product(db_session, shop):
    return make_product(db_session, shop, name="Milk 500ml", stock=20, buying=50, selling=65)


@pytest.fixture(scope='function')
def sale_context(shop, cashier):
    return SaleContext(
        cashier_id=cashier.id,
        cashier_name=cashier.name,
        shop_id=shop.id,
        shop_name=shop.name,
        created_by="cashier",
    )


def get_auth_token(client, role: str, email: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for an account."""
    response = client.post('/api/auth/login', json={
        'role': role,
        'email': email,
        'password': password,
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def cashier_headers(client, cashier):
    return auth_headers(get_auth_token(client, 'cashier', cashier.email))


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, 'admin', admin.email))
