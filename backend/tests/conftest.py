"""
Pytest fixtures for stockflow backend tests.

Provides test database setup, tenant-scoped reference data, and test client.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from stockflow import create_app
from stockflow.config import TestConfig
from stockflow.context import ActorContext
from stockflow.extensions import db
from stockflow.models import Batch, Location, Product, ProductPresentation, Warehouse
from stockflow.services import balance_service
from stockflow.time_utils import utc_today


TENANT_ID = 1
OTHER_TENANT_ID = 2


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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
def tenant_id():
    return TENANT_ID


@pytest.fixture(scope='function')
def actor():
    return ActorContext(tenant_id=TENANT_ID, actor_id="u-100", actor_name="Ana Picker")


@pytest.fixture(scope='function')
def headers():
    """Headers forwarded by the authenticating gateway."""
    return {"X-Tenant-Id": str(TENANT_ID), "X-Actor-Id": "u-100", "X-Actor-Name": "Ana Picker"}


@pytest.fixture(scope='function')
def central(db_session):
    """Central warehouse that ships stock."""
    warehouse = Warehouse(tenant_id=TENANT_ID, code="CENTRAL", name="Central Warehouse", city="Bogota")
    db_session.add(warehouse)
    db_session.commit()
    return warehouse


@pytest.fixture(scope='function')
def branch(db_session):
    """Branch warehouse that requests stock."""
    warehouse = Warehouse(tenant_id=TENANT_ID, code="BRANCH", name="Branch Pharmacy", city="Medellin")
    db_session.add(warehouse)
    db_session.commit()
    return warehouse


def _location(db_session, warehouse, code, tenant_id=TENANT_ID):
    location = Location(tenant_id=tenant_id, warehouse_id=warehouse.id, code=code)
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def shelf(db_session, central):
    return _location(db_session, central, "CENTRAL-A1")


@pytest.fixture(scope='function')
def shelf_b(db_session, central):
    return _location(db_session, central, "CENTRAL-B1")


@pytest.fixture(scope='function')
def dock(db_session, branch):
    """Receiving location of the branch."""
    return _location(db_session, branch, "BRANCH-RECV")


@pytest.fixture(scope='function')
def product(db_session):
    product = Product(tenant_id=TENANT_ID, sku="AMX-500", name="Amoxicillin 500mg", generic_name="Amoxicillin")
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def other_product(db_session):
    product = Product(tenant_id=TENANT_ID, sku="IBU-400", name="Ibuprofen 400mg", generic_name="Ibuprofen")
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def batch(db_session, product):
    batch = Batch(
        tenant_id=TENANT_ID,
        product_id=product.id,
        batch_number="L-2030-01",
        expires_at=utc_today() + timedelta(days=365),
    )
    db_session.add(batch)
    db_session.commit()
    return batch


@pytest.fixture(scope='function')
def expired_batch(db_session, product):
    batch = Batch(
        tenant_id=TENANT_ID,
        product_id=product.id,
        batch_number="L-OLD-01",
        expires_at=utc_today() - timedelta(days=1),
    )
    db_session.add(batch)
    db_session.commit()
    return batch


@pytest.fixture(scope='function')
def box12(db_session, product):
    """Box of 12 units."""
    presentation = ProductPresentation(
        tenant_id=TENANT_ID,
        product_id=product.id,
        name="BOX12",
        units_per_presentation=Decimal("12"),
        is_default=True,
    )
    db_session.add(presentation)
    db_session.commit()
    return presentation


@pytest.fixture(scope='function')
def stock_in(db_session, actor):
    """Receive stock into a location through the ledger."""
    def _stock_in(location, product, quantity, batch=None):
        return balance_service.apply_movement(
            tenant_id=location.tenant_id,
            product_id=product.id,
            quantity=quantity,
            batch_id=batch.id if batch is not None else None,
            to_location_id=location.id,
            reference_type="RECEIPT",
            actor=actor,
        )

    return _stock_in


@pytest.fixture(scope='function')
def balance_of():
    """Current balance snapshot for (location, product, batch)."""
    def _balance_of(location, product, batch=None):
        return balance_service.get_balance(
            tenant_id=location.tenant_id,
            product_id=product.id,
            batch_id=batch.id if batch is not None else None,
            location_id=location.id,
        )

    return _balance_of
