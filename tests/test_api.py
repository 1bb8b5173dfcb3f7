"""HTTP-level tests: routing, auth and error mapping."""

import json

import pytest

from conftest import HOME_ADDRESS, bearer, make_config, signed_webhook, stock_of


ORDER_BODY = {
    "items": [{"product_id": "p-a", "quantity": 3}],
    "delivery_option": "home_delivery",
    "shipping_address": HOME_ADDRESS,
    "payment_method": "cash_on_delivery",
}


@pytest.fixture
def customer(users):
    return bearer(users["customer"], "customer")


@pytest.fixture
def admin(users):
    return bearer(users["admin"], "admin")


class TestCatalog:
    def test_list_and_get(self, client, products):
        listing = client.get("/api/products?brand=Zitouna").get_json()
        assert [p["id"] for p in listing["items"]] == ["p-a"]
        product = client.get("/api/products/p-c").get_json()
        assert product["promo_price"] == "30.00"

    def test_missing_product(self, client, products):
        resp = client.get("/api/products/nope")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "not_found"

    def test_unknown_route_is_json(self, client):
        resp = client.get("/api/does-not-exist")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "not_found"


class TestOrders:
    def test_create_ignores_client_totals(self, client, customer, products):
        resp = client.post("/api/orders", json={**ORDER_BODY, "total_price": "1.00"}, headers=customer)
        assert resp.status_code == 201
        order = resp.get_json()["order"]
        assert order["total_price"] == "35.00"
        assert order["status"] == "confirmed"

    def test_idempotency_key_header(self, client, customer, products, session_factory):
        headers = {**customer, "Idempotency-Key": "abc"}
        first = client.post("/api/orders", json=ORDER_BODY, headers=headers)
        second = client.post("/api/orders", json=ORDER_BODY, headers=headers)
        assert first.status_code == 201
        assert second.status_code == 200
        assert second.get_json()["order"]["id"] == first.get_json()["order"]["id"]
        assert stock_of(session_factory, "p-a") == 7

    def test_insufficient_stock_maps_to_409(self, client, customer, products):
        body = {**ORDER_BODY, "items": [{"product_id": "p-b", "quantity": 9}]}
        resp = client.post("/api/orders", json=body, headers=customer)
        assert resp.status_code == 409
        data = resp.get_json()
        assert data["error"] == "insufficient_stock"
        assert data["context"] == {"product_id": "p-b", "available": 5, "requested": 9}

    def test_validation_maps_to_400(self, client, customer, products):
        resp = client.post("/api/orders", json={**ORDER_BODY, "shipping_address": None}, headers=customer)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "validation_error"

    def test_non_object_body(self, client, customer):
        resp = client.post("/api/orders", data=json.dumps([1, 2]), content_type="application/json", headers=customer)
        assert resp.status_code == 400

    def test_order_read_requires_owner(self, client, customer, users, products):
        order_id = client.post("/api/orders", json=ORDER_BODY, headers=customer).get_json()["order"]["id"]
        assert client.get(f"/api/orders/{order_id}").status_code == 401
        assert client.get(f"/api/orders/{order_id}", headers=bearer(users["other"], "customer")).status_code == 403
        assert client.get(f"/api/orders/{order_id}", headers=customer).get_json()["delivery"]["status"] == "pending_pickup"

    def test_my_orders_and_cancel(self, client, customer, products, session_factory):
        order_id = client.post("/api/orders", json=ORDER_BODY, headers=customer).get_json()["order"]["id"]
        assert client.get("/api/me/orders", headers=customer).get_json()["total"] == 1
        resp = client.post(f"/api/me/orders/{order_id}/cancel", json={"reason": "changed my mind"}, headers=customer)
        assert resp.get_json()["status"] == "cancelled"
        assert stock_of(session_factory, "p-a") == 10
        again = client.post(f"/api/me/orders/{order_id}/cancel", headers=customer)
        assert again.status_code == 409
        assert again.get_json()["error"] == "invalid_status_transition"


class TestAuth:
    def test_account_routes_need_token(self, client):
        resp = client.get("/api/me/orders")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "unauthorized"

    def test_bad_token(self, client):
        assert client.get("/api/me/orders", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401
        assert client.get("/api/me/orders", headers={"Authorization": "Basic abc"}).status_code == 401

    def test_admin_routes_need_staff(self, client, customer, admin, users):
        assert client.get("/api/admin/orders", headers=customer).status_code == 403
        assert client.get("/api/admin/orders", headers=admin).status_code == 200
        assert client.get("/api/admin/orders", headers=bearer(users["admin"], "moderator")).status_code == 200

    def test_seller_routes(self, client, customer, users, products):
        assert client.get("/api/me/seller/orders", headers=customer).status_code == 403
        seller = bearer(users["seller"], "seller")
        low = client.get("/api/me/seller/low-stock", headers=seller).get_json()["items"]
        assert [p["id"] for p in low] == ["p-c"]


class TestFulfillment:
    def test_admin_and_courier_flow(self, client, customer, admin, users, products):
        order_id = client.post("/api/orders", json=ORDER_BODY, headers=customer).get_json()["order"]["id"]
        delivery = client.get(f"/api/orders/{order_id}", headers=customer).get_json()["delivery"]
        resp = client.post(f"/api/admin/deliveries/{delivery['id']}/assign", json={"person_id": users["courier"]}, headers=admin)
        assert resp.get_json()["assigned_to"] == users["courier"]

        courier = bearer(users["courier"], "delivery")
        assert [d["id"] for d in client.get("/api/deliveries/assigned", headers=courier).get_json()["items"]] == [delivery["id"]]
        for status in ("processing", "shipped", "out_for_delivery"):
            resp = client.patch(f"/api/admin/orders/{order_id}/status", json={"status": status}, headers=admin)
            assert resp.status_code == 200
        resp = client.post(
            f"/api/deliveries/{delivery['id']}/events",
            json={"status": "out_for_delivery", "location": {"city": "Tunis"}},
            headers=courier,
        )
        assert resp.status_code == 201

        early = client.post(f"/api/payments/cod/{order_id}/confirm", json={}, headers=courier)
        assert early.status_code == 409
        assert early.get_json()["error"] == "delivery_not_completed"

        client.patch(f"/api/admin/orders/{order_id}/status", json={"status": "delivered"}, headers=admin)
        assert client.post(f"/api/payments/cod/{order_id}/confirm", json={}, headers=customer).status_code == 403
        paid = client.post(f"/api/payments/cod/{order_id}/confirm", json={"amount_paid": "35.00"}, headers=courier)
        assert paid.get_json()["is_paid"] is True

        tracking = client.get(f"/api/tracking/{delivery['tracking_number']}").get_json()
        assert tracking["status"] == "delivered"

        ret = client.post(f"/api/me/orders/{order_id}/return", json={"items": [{"product_id": "p-a", "quantity": 1}]}, headers=customer)
        assert ret.get_json()["refund"]["status"] == "owed"
        refund_id = ret.get_json()["refund"]["id"]
        assert client.post(f"/api/admin/refunds/{refund_id}/paid", headers=admin).get_json()["status"] == "paid"

    def test_ledger_status_not_settable(self, client, customer, admin, products):
        order_id = client.post("/api/orders", json=ORDER_BODY, headers=customer).get_json()["order"]["id"]
        resp = client.patch(f"/api/admin/orders/{order_id}/status", json={"status": "refunded"}, headers=admin)
        assert resp.status_code == 400


class TestPaymentsEndpoints:
    def test_webhook(self, client, customer, products, components):
        body = {**ORDER_BODY, "payment_method": "online_payment"}
        created = client.post("/api/orders", json=body, headers=customer).get_json()
        event = json.dumps(
            {"id": "evt_1", "type": "payment.succeeded", "data": {"payment_intent": created["payment"]["provider_reference"]}}
        ).encode("utf-8")
        resp = client.post("/api/payments/webhook", data=event, headers=signed_webhook(event))
        assert resp.get_json() == {"status": "paid", "event_id": "evt_1"}
        replay = client.post("/api/payments/webhook", data=event, headers=signed_webhook(event))
        assert replay.get_json()["status"] == "duplicate"
        order = client.get(f"/api/orders/{created['order']['id']}", headers=customer).get_json()
        assert order["is_paid"] is True

    def test_webhook_bad_signature(self, client):
        resp = client.post("/api/payments/webhook", data=b"{}", headers={"X-Signature": "sha256=00"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "invalid_signature"

    def test_initiate_requires_owner(self, client, customer, users, products):
        body = {**ORDER_BODY, "payment_method": "online_payment"}
        order_id = client.post("/api/orders", json=body, headers=customer).get_json()["order"]["id"]
        assert client.post("/api/payments/initiate", json={"order_id": order_id}).status_code == 401
        other = bearer(users["other"], "customer")
        assert client.post("/api/payments/initiate", json={"order_id": order_id}, headers=other).status_code == 403
        assert client.post("/api/payments/initiate", json={"order_id": order_id}, headers=customer).status_code == 201


class TestCartEndpoints:
    def test_guest_checkout(self, client, products, email_sender):
        guest = {"X-Session-Id": "sess-1"}
        assert client.post("/api/cart/items", json={"product_id": "p-a", "quantity": 2}, headers=guest).status_code == 201
        assert client.get("/api/cart", headers=guest).get_json()["subtotal"] == "20.00"
        resp = client.post(
            "/api/checkout",
            json={
                "delivery_option": "home_delivery",
                "shipping_address": HOME_ADDRESS,
                "payment_method": "cash_on_delivery",
                "guest_info": {"email": "guest@example.com", "name": "Guest"},
            },
            headers=guest,
        )
        assert resp.status_code == 201
        assert resp.get_json()["order"]["user_id"] is None
        assert client.get("/api/cart", headers=guest).get_json()["items"] == []
        assert email_sender.sent[0]["to"] == "guest@example.com"

    def test_cart_needs_identity(self, client):
        assert client.get("/api/cart").status_code == 400


class TestDiscovery:
    def test_relay_points_and_slots(self, client, relay_point):
        items = client.get("/api/relay-points?lat=36.8&lon=10.2").get_json()["items"]
        assert items[0]["id"] == relay_point
        assert "distance_km" in items[0]
        assert client.get(f"/api/relay-points/{relay_point}").get_json()["name"] == "Lac 2 Kiosk"
        assert client.get("/api/slots").get_json() == {"items": []}
        assert client.get("/api/relay-points?lat=abc&lon=1").status_code == 400

    def test_promotion_preview(self, client, make_promotion):
        make_promotion("SUMMER20", "percentage", "20")
        resp = client.post("/api/promotions/preview", json={"total": "100", "code": "summer20"})
        assert resp.get_json() == {"code": "SUMMER20", "total": "80.00", "discount": "20.00", "free_shipping": False}
        assert client.post("/api/promotions/preview", json={"total": "100", "code": "nope"}).status_code == 400
        assert [p["code"] for p in client.get("/api/promotions/active").get_json()["items"]] == ["SUMMER20"]


class TestUnexpectedErrors:
    def _app(self, session_factory, tmp_path, environment):
        from app import create_app
        from config import MarketplaceConfig

        app = create_app(MarketplaceConfig(app=make_config(environment=environment), project_root=tmp_path), session_factory=session_factory)

        @app.get("/boom")
        def boom():
            raise RuntimeError("database password is hunter2")

        return app.test_client()

    def test_production_hides_details(self, session_factory, tmp_path):
        resp = self._app(session_factory, tmp_path, "production").get("/boom")
        assert resp.status_code == 500
        assert resp.get_json() == {"error": "internal_error", "message": "Internal server error"}

    def test_development_shows_details(self, session_factory, tmp_path):
        resp = self._app(session_factory, tmp_path, "development").get("/boom")
        assert resp.status_code == 500
        assert "RuntimeError" in resp.get_json()["message"]
