"""
API route tests.

Verifies:
- Typed service errors map to {"error": {code, message, details}} with the right HTTP status
- Checkout, cancellation and payment confirmation over HTTP
- Health reporting
"""

import pytest


def error_code(resp):
    return resp.get_json()["error"]["code"]


# =============================================================================
# HEALTH
# =============================================================================


class TestHealth:

    def test_degraded_without_slip_api_key(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200

        body = resp.get_json()
        assert body["status"] == "degraded"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["receipt_queue"]["status"] == "healthy"
        assert body["checks"]["slip_verification"]["status"] == "degraded"


# =============================================================================
# ORDERS
# =============================================================================


class TestOrderRoutes:

    def test_checkout(self, client, make_cart, product):
        cart = make_cart([(product, 2)])
        resp = client.post("/api/orders/checkout", json={
            "cart_id": cart.id,
            "shipping_cost": "50",
            "guest_name": "Somchai",
            "guest_phone": "0812345678",
        })

        assert resp.status_code == 201
        order = resp.get_json()["order"]
        assert order["subtotal_excl_vat"] == "200.00"
        assert order["total_vat"] == "14.00"
        assert order["total_amount"] == "264.00"
        assert order["status"] == "pending"
        assert len(order["items"]) == 1

    def test_checkout_requires_cart_id(self, client, db_session):
        resp = client.post("/api/orders/checkout", json={})
        assert resp.status_code == 400
        assert error_code(resp) == "VALIDATION_ERROR"

    def test_insufficient_stock_names_product(self, client, product):
        resp = client.post("/api/orders/", json={"items": [{"product_id": product.id, "quantity": 11}]})

        assert resp.status_code == 409
        error = resp.get_json()["error"]
        assert error["code"] == "INSUFFICIENT_STOCK"
        assert error["details"]["product_name"] == "Widget"
        assert error["details"]["available_quantity"] == 10

    def test_voucher_not_applicable(self, client, make_voucher, product):
        make_voucher(code="BIG", minimum="5000")
        resp = client.post("/api/orders/", json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "voucher_code": "BIG",
        })
        assert resp.status_code == 422
        assert resp.get_json()["error"]["details"]["reason"] == "minimum_not_met"

    def test_cancel_then_cancel_again(self, client, product):
        order = client.post("/api/orders/", json={"items": [{"product_id": product.id, "quantity": 2}]}).get_json()["order"]

        resp = client.post(f"/api/orders/{order['id']}/cancel", json={"cancelled_by": 1})
        assert resp.status_code == 200
        assert resp.get_json()["order"]["status"] == "cancelled"
        assert resp.get_json()["order"]["payment_status"] == "refunded"

        resp = client.post(f"/api/orders/{order['id']}/cancel")
        assert resp.status_code == 409
        assert error_code(resp) == "CANNOT_CANCEL"

    def test_invalid_transition(self, client, product):
        order = client.post("/api/orders/", json={"items": [{"product_id": product.id, "quantity": 1}]}).get_json()["order"]

        resp = client.patch(f"/api/orders/{order['id']}/status", json={"status": "shipped"})
        assert resp.status_code == 409
        details = resp.get_json()["error"]["details"]
        assert error_code(resp) == "INVALID_STATUS_TRANSITION"
        assert details["current_status"] == "pending"
        assert details["attempted_status"] == "shipped"

    def test_guest_tracking(self, client, product):
        order = client.post("/api/orders/", json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "guest_email": "guest@example.com",
        }).get_json()["order"]

        resp = client.get("/api/orders/track", query_string={
            "order_number": order["order_number"], "contact": "guest@example.com",
        })
        assert resp.status_code == 200
        assert resp.get_json()["order"]["id"] == order["id"]

        resp = client.get("/api/orders/track", query_string={
            "order_number": order["order_number"], "contact": "someone@else.com",
        })
        assert resp.status_code == 404
        assert error_code(resp) == "NOT_FOUND"

    def test_list_omits_items(self, client, product):
        client.post("/api/orders/", json={"items": [{"product_id": product.id, "quantity": 1}]})

        resp = client.get("/api/orders/", query_string={"status": "pending"})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["pagination"]["total"] == 1
        assert "items" not in body["orders"][0]

    def test_bad_page_param(self, client, db_session):
        resp = client.get("/api/orders/", query_string={"page": "two"})
        assert resp.status_code == 400


# =============================================================================
# PAYMENTS
# =============================================================================


class TestPaymentRoutes:

    @pytest.fixture
    def order_id(self, client, product):
        resp = client.post("/api/orders/", json={"items": [{"product_id": product.id, "quantity": 2}], "shipping_cost": "50"})
        return resp.get_json()["order"]["id"]

    def test_confirm_is_idempotent(self, client, order_id):
        payment = client.post(f"/api/payments/orders/{order_id}", json={"payment_method": "cash"}).get_json()["payment"]
        assert payment["amount"] == "264.00"

        first = client.post(f"/api/payments/{payment['id']}/confirm").get_json()["payment"]
        second = client.post(f"/api/payments/{payment['id']}/confirm").get_json()["payment"]
        assert first["status"] == "verified"
        assert first["receipt_number"] == second["receipt_number"]

        order = client.get(f"/api/orders/{order_id}").get_json()["order"]
        assert order["status"] == "paid"
        assert order["payment_status"] == "paid"

    def test_verify_without_api_key_records_failure(self, client, order_id):
        payment = client.post(
            f"/api/payments/orders/{order_id}/slip", json={"slip_image_path": "slips/abc.jpg"}
        ).get_json()["payment"]

        resp = client.post(f"/api/payments/{payment['id']}/verify")
        assert resp.status_code == 200
        body = resp.get_json()["payment"]
        assert body["status"] == "failed"
        assert body["verification_response"]["error"]["code"] == "SERVICE_UNAVAILABLE"

    def test_latest_payment_missing(self, client, order_id):
        resp = client.get(f"/api/payments/orders/{order_id}")
        assert resp.status_code == 404


# =============================================================================
# STOCK
# =============================================================================


class TestStockRoutes:

    def test_restock_and_history(self, client, product):
        resp = client.post(f"/api/stock/products/{product.id}/adjust", json={
            "quantity_change": 5, "change_type": "restock", "notes": "Supplier delivery",
        })
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["entry"]["quantity_after"] == 15
        assert body["product"]["stock_quantity"] == 15

        history = client.get(f"/api/stock/products/{product.id}/history").get_json()
        assert history["total"] == 1
        assert history["history"][0]["notes"] == "Supplier delivery"

    def test_sale_type_not_allowed_manually(self, client, product):
        resp = client.post(f"/api/stock/products/{product.id}/adjust", json={
            "quantity_change": -1, "change_type": "sale",
        })
        assert resp.status_code == 400

    def test_adjust_below_zero(self, client, product):
        resp = client.post(f"/api/stock/products/{product.id}/adjust", json={"quantity_change": -50})
        assert resp.status_code == 409
        assert error_code(resp) == "INSUFFICIENT_STOCK"
