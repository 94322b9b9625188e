"""
Pytest fixtures for retail POS backend tests.

Provides the app over in-memory SQLite, per-test table clearing, factories
for stores, users, products, stock and assembly offers, and auth helpers.
"""

from decimal import Decimal

import pytest

from retail_pos import create_app
from retail_pos.extensions import db
from retail_pos.models import AssemblyOffer, BillOfMaterial, InventoryRecord, Product, Store
from retail_pos.services.auth_service import create_default_roles, create_user
from retail_pos.services.sales_service import OperatorContext

TEST_PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'REVENUE_LEDGER_ASYNC': False,
        'LOG_LEVEL': 'DEBUG',
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
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        create_default_roles()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def store(db_session):
    store = Store(name="Downtown", code="DT", is_active=True)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    store = Store(name="Uptown", code="UT", is_active=True)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def make_user(db_session):
    def _make(username, role, store_id=None, full_name=None):
        return create_user(
            username,
            f"{username}@pos.test",
            TEST_PASSWORD,
            store_id=store_id,
            full_name=full_name,
            roles=(role,),
            bcrypt_rounds=4,
        )
    return _make


@pytest.fixture(scope='function')
def cashier(make_user, store):
    return make_user("cashier", "Cashier", store_id=store.id, full_name="Casey Cashier")


@pytest.fixture(scope='function')
def operator(cashier):
    return OperatorContext.from_user(cashier)


@pytest.fixture(scope='function')
def make_product(db_session):
    def _make(name, price="10.00", product_id=None, sku=None, is_active=True):
        product = Product(
            id=product_id,
            sku=sku,
            name=name,
            unit_price=Decimal(price),
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def stock(db_session):
    def _stock(store, product, storeroom="0", pos="0", minimum=None):
        record = InventoryRecord(
            store_id=store.id,
            product_id=product.id,
            storeroom_quantity=Decimal(storeroom),
            pos_quantity=Decimal(pos),
            minimum_stock_level=Decimal(minimum) if minimum is not None else None,
        )
        db_session.add(record)
        db_session.commit()
        return record
    return _stock


@pytest.fixture(scope='function')
def make_offer(db_session):
    def _make(name, materials, batch_quantity="1", sale_price="5.00", store=None, offer_id=None, is_active=True):
        offer = AssemblyOffer(
            id=offer_id,
            name=name,
            batch_quantity=Decimal(batch_quantity),
            sale_price=Decimal(sale_price),
            store_id=store.id if store else None,
            is_active=is_active,
        )
        for product, required in materials:
            offer.materials.append(
                BillOfMaterial(raw_product_id=product.id, required_quantity=Decimal(required))
            )
        db_session.add(offer)
        db_session.commit()
        return offer
    return _make


def inventory_of(store, product) -> InventoryRecord:
    db.session.expire_all()
    return db.session.query(InventoryRecord).filter_by(store_id=store.id, product_id=product.id).one()


def get_auth_token(client, username: str, password: str = TEST_PASSWORD) -> str:
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
