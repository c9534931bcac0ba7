from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from qrdine import events, models
from qrdine.db import Database, get_session
from qrdine.main import create_app
from qrdine.models import OrderStatus, PaymentProvider, SourceType
from qrdine.security import create_staff_token

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeGateway:
    """Stands in for a real gateway; records calls, never touches the network."""

    def __init__(self, order_id="order_fake_1", valid=True):
        self.order_id = order_id
        self.valid = valid
        self.created = []

    def create_order(self, amount_minor, currency, receipt):
        self.created.append((amount_minor, currency, receipt))
        return self.order_id

    def verify_payment(self, gateway_order_id, gateway_payment_id, signature):
        return self.valid


@pytest.fixture(autouse=True)
def no_redis(monkeypatch):
    monkeypatch.setattr(events, "get_redis", lambda: None)


@pytest.fixture
def database():
    db = Database("sqlite://", poolclass=StaticPool)
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def session(database):
    with database.session() as session:
        yield session


@pytest.fixture
def client(database, session):
    app = create_app(database)
    app.dependency_overrides[get_session] = lambda: session
    with TestClient(app) as client:
        yield client


def _add(session, obj):
    session.add(obj)
    session.commit()
    session.refresh(obj)
    return obj


@pytest.fixture
def tenant(session):
    return _add(session, models.Tenant(name="Spice Route", slug="spice-route"))


@pytest.fixture
def other_tenant(session):
    return _add(session, models.Tenant(name="Curry House", slug="curry-house"))


@pytest.fixture
def table(session, tenant):
    return _add(session, models.RestaurantTable(tenant_id=tenant.id, name="Table 1", identifier="T1"))


@pytest.fixture
def menu(session, tenant):
    category = _add(session, models.MenuCategory(tenant_id=tenant.id, name="Mains"))
    paneer = _add(session, models.MenuItem(
        tenant_id=tenant.id, category_id=category.id, name="Paneer Tikka", price=Decimal("350.00"),
    ))
    chai = _add(session, models.MenuItem(
        tenant_id=tenant.id, category_id=category.id, name="Masala Chai", price=Decimal("80.00"),
    ))
    return {"paneer": paneer, "chai": chai}


@pytest.fixture
def razorpay_config(session, tenant):
    return _add(session, models.PaymentProviderConfig(
        tenant_id=tenant.id,
        provider=PaymentProvider.razorpay,
        key_id="rzp_test_key",
        key_secret="s3cr3t",
    ))


@pytest.fixture
def make_order(session, tenant, table):
    """Insert an order directly, `minutes_ago` before NOW."""
    default_table = table

    def _make(status=OrderStatus.pending, table=default_table, minutes_ago=0, **fields):
        changed = NOW - timedelta(minutes=minutes_ago)
        fields.setdefault("created_at", changed)
        fields.setdefault("total_amount", Decimal("100.00"))
        if table is not None:
            fields.setdefault("source_type", SourceType.table)
            fields.setdefault("source_reference", table.identifier)
        else:
            fields.setdefault("source_type", SourceType.zomato)
            fields.setdefault("source_reference", "ZOM-1001")
        return _add(session, models.Order(
            tenant_id=fields.pop("tenant_id", tenant.id),
            table_id=table.id if table is not None else None,
            status=status,
            status_changed_at=changed,
            **fields,
        ))

    return _make


@pytest.fixture
def auth_headers(tenant):
    token = create_staff_token(tenant.id, "owner@spice-route.test")
    return {"Authorization": f"Bearer {token}"}
