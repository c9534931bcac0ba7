import json
from datetime import timedelta
from decimal import Decimal

from fastapi.testclient import TestClient

from qrdine import gateways, models, payments, tenants
from qrdine.main import create_app
from qrdine.models import OrderStatus, PaymentProvider, PaymentStatus
from qrdine.security import create_staff_token

from conftest import FakeGateway


def _place_order(client, menu, **body):
    payload = {
        "items": [
            {"menu_item_id": menu["paneer"].id, "quantity": 1},
            {"menu_item_id": menu["chai"].id, "quantity": 1},
        ],
    }
    payload.update(body)
    return client.post("/public/order/spice-route/T1", json=payload)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/health/db").json() == {"status": "ok", "database": "connected"}


def test_public_menu(client, table, menu):
    response = client.get("/public/menu/spice-route/T1")
    assert response.status_code == 200
    data = response.json()
    assert data["table"]["identifier"] == "T1"
    [category] = data["categories"]
    assert sorted(item["name"] for item in category["items"]) == ["Masala Chai", "Paneer Tikka"]


def test_public_menu_unknown_restaurant(client):
    response = client.get("/public/menu/nowhere/T1")
    assert response.status_code == 404
    assert response.json() == {"detail": "Restaurant not found", "error": "not_found"}


def test_place_order_and_see_table_status(client, table, menu, auth_headers):
    response = _place_order(client, menu)
    assert response.status_code == 201
    order = response.json()
    assert order["total_amount"] == 430.0
    assert order["payment_status"] == "pending"
    assert len(order["items"]) == 2

    tables = client.get("/tables/with-status", headers=auth_headers).json()
    assert [(t["identifier"], t["status"], t["pending_orders"]) for t in tables] == [("T1", "pending_orders", 1)]

    status = client.get(f"/public/order/spice-route/{order['id']}")
    assert status.json()["status"] == "pending"


def test_public_order_lookup_is_scoped_to_restaurant(client, session, other_tenant, make_order):
    order = make_order()
    response = client.get(f"/public/order/curry-house/{order.id}")
    assert response.status_code == 404


def test_staff_routes_need_a_token(client, tenant):
    assert client.get("/orders").status_code == 401
    assert client.get("/orders", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_token_of_deactivated_restaurant(client, session, tenant, auth_headers):
    tenants.deactivate_tenant(session, tenant.id)
    assert client.get("/orders", headers=auth_headers).status_code == 401


def test_expired_token(client, tenant):
    token = create_staff_token(tenant.id, "owner@spice-route.test", expires_delta=timedelta(minutes=-1))
    assert client.get("/orders", headers={"Authorization": f"Bearer {token}"}).status_code == 401


def test_status_update_flow(client, make_order, auth_headers):
    order = make_order()

    response = client.patch(f"/orders/{order.id}/status", json={"status": "confirmed"}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"

    response = client.patch(f"/orders/{order.id}/status", json={"status": "served"}, headers=auth_headers)
    assert response.status_code == 409
    assert response.json() == {
        "detail": "Cannot change status from confirmed to served",
        "error": "invalid_transition",
    }


def test_status_update_of_other_tenants_order(client, session, other_tenant, make_order):
    order = make_order()
    headers = {"Authorization": f"Bearer {create_staff_token(other_tenant.id, 'owner@curry-house.test')}"}
    response = client.patch(f"/orders/{order.id}/status", json={"status": "confirmed"}, headers=headers)
    assert response.status_code == 404


def test_notes_and_item_status(client, session, make_order, menu, auth_headers):
    order = make_order()
    item = models.OrderItem(order_id=order.id, name_snapshot="Masala Chai", price_snapshot=menu["chai"].price, quantity=1)
    session.add(item)
    session.commit()

    response = client.patch(f"/orders/{order.id}/notes", json={"notes": "Extra spicy"}, headers=auth_headers)
    assert response.json()["notes"] == "Extra spicy"

    response = client.put(f"/orders/{order.id}/items/{item.id}/status", json={"status": "ready"}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "ready"


def test_integration_order(client, menu, auth_headers):
    response = client.post("/orders", headers=auth_headers, json={
        "source_type": "swiggy",
        "source_reference": "SWG-42",
        "items": [{"menu_item_id": menu["chai"].id, "quantity": 3}],
        "tax_amount": "12.00",
    })
    assert response.status_code == 201
    assert response.json()["total_amount"] == 252.0

    listed = client.get("/orders", params={"source_type": "swiggy"}, headers=auth_headers).json()
    assert [o["source_reference"] for o in listed] == ["SWG-42"]


def test_aging_endpoints(client, make_order, auth_headers):
    make_order(status=OrderStatus.cooking, minutes_ago=60)

    assert client.get("/aging/thresholds", headers=auth_headers).json() == {
        "warning_minutes": 5,
        "critical_minutes": 20,
    }
    response = client.put(
        "/aging/thresholds", json={"warning_minutes": 30, "critical_minutes": 90}, headers=auth_headers,
    )
    assert response.json() == {"warning_minutes": 30, "critical_minutes": 90}

    response = client.put(
        "/aging/thresholds", json={"warning_minutes": 90, "critical_minutes": 30}, headers=auth_headers,
    )
    assert response.status_code == 422

    [aged] = client.get("/aging/orders", headers=auth_headers).json()
    assert aged["status"] == "cooking"
    assert aged["critical_minutes"] == 90

    assert client.post("/aging/refresh", headers=auth_headers).status_code == 200


def test_refresh_counts_endpoint(client, session, table, make_order, auth_headers):
    make_order()
    assert client.post("/tables/refresh-counts", headers=auth_headers).json() == {"tables": 1}
    session.refresh(table)
    assert table.active_orders_count == 1


def test_create_payment_order(client, session, make_order, razorpay_config, monkeypatch):
    order = make_order(payment_provider=PaymentProvider.razorpay)
    monkeypatch.setattr(payments, "build_gateway", lambda config: FakeGateway(order_id="order_xyz"))

    response = client.post(
        "/public/payment/create-order", json={"order_id": order.id, "restaurant_slug": "spice-route"},
    )
    assert response.status_code == 201
    assert response.json() == {
        "gateway_order_id": "order_xyz",
        "provider": "razorpay",
        "amount": 100.0,
        "amount_minor": 10000,
        "currency": "INR",
        "key_id": "rzp_test_key",
    }


def test_create_payment_order_for_cash(client, make_order, razorpay_config):
    order = make_order(payment_provider=PaymentProvider.cash)
    response = client.post(
        "/public/payment/create-order", json={"order_id": order.id, "restaurant_slug": "spice-route"},
    )
    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"


def test_verify_payment(client, make_order, razorpay_config):
    order = make_order(payment_provider=PaymentProvider.razorpay, payment_order_id="order_1")
    body = {
        "order_id": order.id,
        "restaurant_slug": "spice-route",
        "razorpay_payment_id": "pay_1",
        "razorpay_order_id": "order_1",
        "razorpay_signature": gateways.razorpay_signature("s3cr3t", "order_1", "pay_1"),
    }
    response = client.post("/public/payment/verify", json=body)
    assert response.json() == {"success": True, "order_id": order.id, "payment_id": "pay_1"}

    body["razorpay_signature"] = "tampered"
    response = client.post("/public/payment/verify", json=body)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_signature"


def test_webhook_marks_order_paid(client, session, make_order, razorpay_config):
    order = make_order(payment_provider=PaymentProvider.razorpay, payment_order_id="order_1")
    body = {
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": "pay_1", "order_id": "order_1"}}},
    }
    response = client.post("/public/payment/webhook", content=json.dumps(body))
    assert response.json() == {"status": "acknowledged", "outcome": "applied"}

    response = client.post("/public/payment/webhook", content=json.dumps(body))
    assert response.json() == {"status": "acknowledged", "outcome": "duplicate"}

    session.refresh(order)
    assert order.payment_status == models.PaymentStatus.paid


def test_webhook_acknowledges_internal_errors(client, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(payments, "handle_webhook", explode)
    body = {"event": "payment.captured", "payload": {}}
    response = client.post("/public/payment/webhook", content=json.dumps(body))

    assert response.status_code == 200
    assert response.json() == {"status": "acknowledged", "error": "database went away"}


def test_webhook_without_event(client):
    response = client.post("/public/payment/webhook", content=json.dumps({"payload": {}}))
    assert response.status_code == 400


def test_app_leaves_a_given_database_open(database, session, tenant):
    app = create_app(database)
    with TestClient(app) as client:
        assert client.get("/health/db").status_code == 200

    # Shutdown must not dispose an engine the caller still owns
    with database.session() as fresh:
        assert fresh.get(models.Tenant, tenant.id).slug == "spice-route"


def test_create_payment_order_for_refunded_order(client, make_order, razorpay_config, monkeypatch):
    gateway = FakeGateway()
    monkeypatch.setattr(payments, "build_gateway", lambda config: gateway)
    order = make_order(payment_provider=PaymentProvider.razorpay, payment_status=PaymentStatus.refunded)

    response = client.post(
        "/public/payment/create-order", json={"order_id": order.id, "restaurant_slug": "spice-route"},
    )
    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"
    assert gateway.created == []


def test_verify_payment_after_refund(client, session, make_order, razorpay_config):
    order = make_order(
        payment_provider=PaymentProvider.razorpay,
        payment_order_id="order_1",
        payment_status=PaymentStatus.refunded,
    )
    body = {
        "order_id": order.id,
        "restaurant_slug": "spice-route",
        "razorpay_payment_id": "pay_1",
        "razorpay_order_id": "order_1",
        "razorpay_signature": gateways.razorpay_signature("s3cr3t", "order_1", "pay_1"),
    }
    response = client.post("/public/payment/verify", json=body)

    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"
    session.refresh(order)
    assert order.payment_status == PaymentStatus.refunded


def test_webhook_refund(client, session, make_order, razorpay_config):
    order = make_order(
        payment_provider=PaymentProvider.razorpay,
        payment_order_id="order_1",
        payment_status=PaymentStatus.paid,
    )
    body = {
        "event": "payment.refunded",
        "payload": {"payment": {"entity": {"razorpay_payment_id": "pay_1", "razorpay_order_id": "order_1"}}},
    }
    response = client.post("/public/payment/webhook", content=json.dumps(body))
    assert response.json() == {"status": "acknowledged", "outcome": "applied"}

    body["event"] = "payment.captured"
    response = client.post("/public/payment/webhook", content=json.dumps(body))
    assert response.json() == {"status": "acknowledged", "outcome": "ignored"}

    session.refresh(order)
    assert order.payment_status == PaymentStatus.refunded


def test_dashboard_metrics(client, session, tenant, table, menu, make_order, auth_headers):
    make_order(status=OrderStatus.completed, payment_status=PaymentStatus.paid, total_amount=Decimal("430.00"))
    make_order(status=OrderStatus.cooking, payment_status=PaymentStatus.pending)

    response = client.get("/dashboard/metrics", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["restaurant"] == {"id": tenant.id, "name": "Spice Route", "slug": "spice-route"}
    stats = data["stats"]
    assert stats["total_tables"] == 1
    assert stats["total_categories"] == 1
    assert stats["total_orders"] == 2
    assert stats["orders_by_status"]["completed"] == 1
    assert stats["orders_by_status"]["cooking"] == 1
    assert stats["total_revenue"] == 430.0


def test_dashboard_metrics_need_a_token(client, tenant):
    assert client.get("/dashboard/metrics").status_code == 401
