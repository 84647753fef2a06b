"""
Pytest fixtures for fuelops backend tests.

Provides test database setup, reference data, one user per role, and
helpers that drive orders through the lifecycle.
"""

import pytest
from fuelops import create_app
from fuelops.extensions import db
from fuelops.models import Location, Product, User
from fuelops.services import order_service


_RELEASE_DETAILS = {
    "truck_number": "KJA-123XY",
    "driver_name": "Musa Bello",
    "driver_phone": "08030000000",
    "compartments": [{"qty": 11000, "ullage": 120}],
}


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

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def depot(db_session):
    """Main loading depot."""
    location = Location(name="Apapa Depot", code="APP", state_name="Lagos", is_active=True)
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def other_depot(db_session):
    """Second depot, for cross-location checks."""
    location = Location(name="Calabar Depot", code="CAL", state_name="Cross River", is_active=True)
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def pms(db_session):
    """Petrol at 617 naira per litre."""
    product = Product(name="Premium Motor Spirit", abbreviation="PMS", unit_price_kobo=61700)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def ago(db_session):
    """Diesel at 1,100 naira per litre."""
    product = Product(name="Automotive Gas Oil", abbreviation="AGO", unit_price_kobo=110000)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def users(db_session, depot):
    """One active user per role, keyed by role name."""
    created = {}
    for role in ("admin", "finance", "release_officer", "security", "sales", "auditor"):
        user = User(
            username=role,
            email=f"{role}@depot.example",
            full_name=role.replace("_", " ").title(),
            role=role,
            location_id=depot.id,
        )
        db_session.add(user)
        created[role] = user
    db_session.commit()
    return created


@pytest.fixture(scope='function')
def admin(users):
    return users["admin"]


@pytest.fixture(scope='function')
def make_order(db_session, depot, pms, admin):
    """Factory: place a pending order (defaults: depot, PMS, 33,000 litres)."""
    def _make(quantity=33000, *, location=None, product=None, release_type="pickup"):
        return order_service.create_order(
            location_id=(location or depot).id,
            lines=[{"product_id": (product or pms).id, "quantity": quantity}],
            actor_user_id=admin.id,
            customer_name="Dangote Haulage",
            release_type=release_type,
        )
    return _make


@pytest.fixture(scope='function')
def make_paid_order(make_order, admin):
    """Factory: place an order and confirm its payment."""
    def _make(quantity=33000, **kwargs):
        order = make_order(quantity, **kwargs)
        return order_service.confirm_payment(order.id, actor_user_id=admin.id)
    return _make


@pytest.fixture(scope='function')
def make_released_order(make_paid_order, admin):
    """Factory: place, pay and release an order (optionally against a PFI)."""
    def _make(quantity=33000, *, pfi_id=None, **kwargs):
        order = make_paid_order(quantity, **kwargs)
        return order_service.release_order(
            order.id,
            actor_user_id=admin.id,
            details=dict(_RELEASE_DETAILS),
            pfi_id=pfi_id,
        )
    return _make


@pytest.fixture(scope='function')
def release_details():
    """Valid loading details for a pickup release."""
    return dict(_RELEASE_DETAILS)


@pytest.fixture(scope='function')
def headers_for(users):
    """Helper to create actor headers for a role's user."""
    def _headers(role):
        return {'X-User-Id': str(users[role].id)}
    return _headers
