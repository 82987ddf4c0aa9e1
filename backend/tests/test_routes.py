"""
HTTP API tests.

Verifies:
- Unauthenticated requests return 401, customers get 403 on admin routes
- Checkout end to end over each rail, including replayed confirmations
- Stock conflicts answer 409 with the corrected cart
- Refund, wallet, transaction log and notification endpoints
"""

import json

import pytest

from storefront.extensions import db
from storefront.models import Order, Product
from storefront.services import notification_service, wallet_service

from conftest import PASSWORD, auth_headers, get_auth_token, reload


SHIPPING = {"name": "Alice Tan", "address": "1 Orchard Road", "phone": "91234567"}


def _stage(client, headers, product, quantity):
    resp = client.post("/api/cart/items", json={"product_id": product.id, "quantity": quantity}, headers=headers)
    assert resp.status_code == 200
    resp = client.post("/api/checkout", json={"shipping": SHIPPING}, headers=headers)
    assert resp.status_code == 201
    return resp.json["checkout"]


def _stub_card(stripe_api, session_id="cs_route", amount=600):
    stripe_api.paid_session(session_id, amount, email="alice@example.com")
    stripe_api.sessions[session_id]["url"] = f"https://pay.test/{session_id}"


# =============================================================================
# AUTHENTICATION & ROLES
# =============================================================================


class TestAccessControl:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/cart"),
            ("POST", "/api/checkout"),
            ("POST", "/api/checkout/store-credit"),
            ("GET", "/api/orders"),
            ("GET", "/api/wallet"),
            ("GET", "/api/notifications"),
            ("GET", "/api/admin/orders"),
            ("GET", "/api/admin/transactions"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/admin/orders"),
            ("GET", "/api/admin/refunds"),
            ("GET", "/api/admin/wallets"),
            ("GET", "/api/admin/transactions"),
            ("GET", "/api/admin/fraud"),
            ("POST", "/api/admin/refunds/1/status"),
        ],
    )
    def test_customer_denied_admin_routes(self, client, customer_headers, method, path):
        resp = getattr(client, method.lower())(path, headers=customer_headers)
        assert resp.status_code == 403

    def test_bad_credentials(self, client, customer):
        resp = client.post("/api/auth/login", json={"username": "alice", "password": "nope"})
        assert resp.status_code == 401

    def test_login_by_email_merges_cart(self, client, customer, make_product):
        milk = make_product(quantity=5)
        resp = client.post("/api/auth/login", json={
            "email": "alice@example.com",
            "password": PASSWORD,
            "cart": [{"product_id": milk.id, "quantity": 2}],
        })
        assert resp.status_code == 200
        assert resp.json["merged_cart"][0]["quantity"] == 2

    def test_logout_revokes_token_and_checkout(self, client, customer_headers, make_product):
        _stage(client, customer_headers, make_product(), 1)

        assert client.post("/api/auth/logout", headers=customer_headers).status_code == 200
        assert client.get("/api/checkout", headers=customer_headers).status_code == 401

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["checks"]["database"]["status"] == "healthy"


# =============================================================================
# CHECKOUT
# =============================================================================


class TestCheckoutRoutes:

    def test_card_checkout_end_to_end(self, client, stripe_api, customer, customer_headers, make_product):
        milk = make_product(price_cents=200, quantity=5)
        _stub_card(stripe_api)
        checkout = _stage(client, customer_headers, milk, 3)
        assert checkout["total_cents"] == 600

        session = client.post("/api/checkout/card/session", json={"method": "card"}, headers=customer_headers)
        assert session.status_code == 200
        assert session.json["url"] == "https://pay.test/cs_route"

        confirmed = client.get("/api/checkout/card/return?session_id=cs_route", headers=customer_headers)
        assert confirmed.status_code == 201
        order_id = confirmed.json["order_id"]

        replay = client.get("/api/checkout/card/return?session_id=cs_route", headers=customer_headers)
        assert replay.status_code == 200
        assert replay.json["order_id"] == order_id
        assert replay.json["duplicate"]

        orders = client.get("/api/orders", headers=customer_headers).json["orders"]
        assert [o["id"] for o in orders] == [order_id]
        assert reload(Product, milk.id).quantity == 2
        assert client.get("/api/cart", headers=customer_headers).json["items"] == []

    def test_posted_cart_cannot_set_prices(self, client, customer_headers, make_product):
        tv = make_product(name="Television", price_cents=99900, quantity=5)
        forged = [{"product_id": tv.id, "quantity": 2, "price_cents": 0}]

        empty = client.post("/api/checkout", json={"shipping": SHIPPING, "cart": forged}, headers=customer_headers)
        assert empty.status_code == 400
        assert empty.json["code"] == "EmptyCart"

        client.post("/api/cart/items", json={"product_id": tv.id, "quantity": 2}, headers=customer_headers)
        staged = client.post("/api/checkout", json={"shipping": SHIPPING, "cart": forged}, headers=customer_headers)
        assert staged.json["checkout"]["total_cents"] == 199800

        finalize = client.post("/api/checkout/finalize", headers=customer_headers)
        assert finalize.status_code == 402
        assert db.session.query(Order).count() == 0
        assert reload(Product, tv.id).quantity == 5

    def test_replayed_return_from_another_account(self, client, stripe_api, customer_headers, other_customer, make_product):
        milk = make_product(price_cents=200, quantity=5)
        _stub_card(stripe_api, amount=200)
        _stage(client, customer_headers, milk, 1)
        client.post("/api/checkout/card/session", json={}, headers=customer_headers)
        order_id = client.get("/api/checkout/card/return?session_id=cs_route", headers=customer_headers).json["order_id"]

        bob = auth_headers(get_auth_token(client, "bob"))
        resp = client.get("/api/checkout/card/return?session_id=cs_route", headers=bob)

        assert resp.status_code == 403
        assert "order_id" not in resp.json
        assert reload(Order, order_id).user_id != other_customer.id

    def test_begin_twice_returns_existing(self, client, customer_headers, make_product):
        _stage(client, customer_headers, make_product(), 1)
        again = client.post("/api/checkout", json={"shipping": SHIPPING}, headers=customer_headers)
        assert again.status_code == 200
        assert not again.json["created"]

    def test_missing_shipping(self, client, customer_headers, make_product):
        client.post("/api/cart/items", json={"product_id": make_product().id, "quantity": 1}, headers=customer_headers)
        resp = client.post("/api/checkout", json={"shipping": {"name": "Alice"}}, headers=customer_headers)
        assert resp.status_code == 400
        assert resp.json["code"] == "MissingShippingDetails"

    def test_stock_conflict_returns_corrected_cart(self, client, stripe_api, customer_headers, make_product):
        milk = make_product(price_cents=200, quantity=5)
        _stub_card(stripe_api, amount=1000)
        _stage(client, customer_headers, milk, 5)
        client.post("/api/checkout/card/session", json={}, headers=customer_headers)
        product = reload(Product, milk.id)
        product.quantity = 2
        db.session.commit()

        resp = client.get("/api/checkout/card/return?session_id=cs_route", headers=customer_headers)

        assert resp.status_code == 409
        assert resp.json["code"] == "InsufficientStock"
        assert resp.json["details"]["cart"][0]["quantity"] == 2
        assert db.session.query(Order).count() == 0

    def test_split_store_credit_and_paypal(self, client, provider, customer, customer_headers, make_product):
        wallet_service.add_funds(customer.id, 250, wallet_service.METHOD_ADMIN_CREDIT)
        milk = make_product(price_cents=500, quantity=5)
        _stage(client, customer_headers, milk, 2)

        partial = client.post("/api/checkout/store-credit", json={"password": PASSWORD}, headers=customer_headers)
        assert partial.status_code == 200
        assert partial.json["checkout"]["remaining_cents"] == 750
        assert partial.json["checkout"]["partial"]

        provider.on("POST", "/v1/oauth2/token", json={"access_token": "tok"})
        provider.on("POST", "/v2/checkout/orders", json={"id": "PP-SPLIT", "links": []})
        provider.on("POST", "/v2/checkout/orders/PP-SPLIT/capture", json={
            "id": "PP-SPLIT",
            "status": "COMPLETED",
            "purchase_units": [{"payments": {"captures": [{"id": "CAP-S", "amount": {"value": "7.50"}}]}}],
        })
        created = client.post("/api/checkout/paypal/order", headers=customer_headers)
        assert created.json["id"] == "PP-SPLIT"

        captured = client.post("/api/checkout/paypal/capture", json={"order_id": "PP-SPLIT"}, headers=customer_headers)

        assert captured.status_code == 201
        order = reload(Order, captured.json["order_id"])
        assert order.payment_method == "paypal"
        assert [p["method"] for p in order.summary["partial_payments"]] == ["store_credit", "paypal"]

    def test_store_credit_wrong_password(self, client, customer, customer_headers, make_product):
        _stage(client, customer_headers, make_product(), 1)
        resp = client.post("/api/checkout/store-credit", json={"password": "wrong"}, headers=customer_headers)
        assert resp.status_code == 403

    def test_nets_qr_stream_and_confirm(self, client, provider, customer_headers, make_product):
        provider.on("POST", "/request", json={"result": {"data": {
            "response_code": "00", "txn_status": 1, "qr_code": "QRDATA", "txn_retrieval_ref": "NETS-R",
        }}})
        provider.on("POST", "/query", json={"result": {"data": {"response_code": "00", "txn_status": 1}}})
        _stage(client, customer_headers, make_product(price_cents=200), 1)

        qr = client.post("/api/checkout/nets/qr", headers=customer_headers)
        assert qr.json["qr_code_url"] == "data:image/png;base64,QRDATA"

        stream = client.get("/api/checkout/nets/status/NETS-R", headers=customer_headers)
        assert stream.mimetype == "text/event-stream"
        events = [json.loads(chunk[len("data: "):]) for chunk in stream.get_data(as_text=True).split("\n\n") if chunk]
        assert events[-1]["state"] == "confirmed"

        confirmed = client.post("/api/checkout/nets/confirm", json={"txn_retrieval_ref": "NETS-R"}, headers=customer_headers)
        assert confirmed.status_code == 201

    def test_nets_stream_unknown_reference(self, client, customer_headers, make_product):
        _stage(client, customer_headers, make_product(), 1)
        resp = client.get("/api/checkout/nets/status/NOT-OURS", headers=customer_headers)
        assert resp.status_code == 404


# =============================================================================
# REFUNDS
# =============================================================================


class TestRefundRoutes:

    def _order(self, client, stripe_api, headers, product, quantity=3):
        _stub_card(stripe_api, amount=product.price_cents * quantity)
        _stage(client, headers, product, quantity)
        client.post("/api/checkout/card/session", json={}, headers=headers)
        return client.get("/api/checkout/card/return?session_id=cs_route", headers=headers).json["order_id"]

    def test_request_and_admin_approve(self, client, stripe_api, customer_headers, admin_headers, make_product):
        milk = make_product(price_cents=500, quantity=5)
        order_id = self._order(client, stripe_api, customer_headers, milk)

        created = client.post(f"/api/orders/{order_id}/refunds", json={"reason": "Damaged"}, headers=customer_headers)
        assert created.status_code == 201
        refund_id = created.json["refund"]["id"]

        approved = client.post(
            f"/api/admin/refunds/{refund_id}/status",
            json={"status": "approved", "amount": "10.00"},
            headers=admin_headers,
        )
        assert approved.status_code == 200
        assert approved.json["settled"]

        wallet = client.get("/api/wallet", headers=customer_headers).json
        assert wallet["balance_cents"] == 1000
        assert reload(Product, milk.id).quantity == 5

        again = client.post(f"/api/admin/refunds/{refund_id}/status", json={"status": "approved"}, headers=admin_headers)
        assert again.status_code == 200
        assert not again.json["settled"]
        assert client.get("/api/wallet", headers=customer_headers).json["balance_cents"] == 1000

    def test_reject_then_approve_conflicts(self, client, stripe_api, customer_headers, admin_headers, make_product):
        order_id = self._order(client, stripe_api, customer_headers, make_product(), 1)
        refund_id = client.post(
            f"/api/orders/{order_id}/refunds", json={"reason": "Late"}, headers=customer_headers
        ).json["refund"]["id"]

        client.post(f"/api/admin/refunds/{refund_id}/status", json={"status": "rejected"}, headers=admin_headers)
        resp = client.post(f"/api/admin/refunds/{refund_id}/status", json={"status": "approved"}, headers=admin_headers)

        assert resp.status_code == 409
        assert resp.json["code"] == "InvalidTransition"

    def test_cannot_refund_someone_elses_order(self, client, stripe_api, customer_headers, other_customer, make_product):
        order_id = self._order(client, stripe_api, customer_headers, make_product(), 1)
        bob = auth_headers(get_auth_token(client, "bob"))
        resp = client.post(f"/api/orders/{order_id}/refunds", json={"reason": "Mine now"}, headers=bob)
        assert resp.status_code == 403


# =============================================================================
# WALLET, LEDGER, NOTIFICATIONS
# =============================================================================


class TestWalletRoutes:

    def test_topup_over_paypal(self, client, provider, customer_headers):
        provider.on("POST", "/v1/oauth2/token", json={"access_token": "tok"})
        provider.on("POST", "/v2/checkout/orders", json={"id": "PP-W", "links": []})
        provider.on("POST", "/v2/checkout/orders/PP-W/capture", json={
            "id": "PP-W",
            "status": "COMPLETED",
            "purchase_units": [{"payments": {"captures": [{"id": "CAP-W", "amount": {"value": "20.00"}}]}}],
        })

        assert client.post("/api/wallet/topup", json={"amount": "20.00"}, headers=customer_headers).status_code == 201
        client.post("/api/wallet/topup/paypal/order", headers=customer_headers)
        captured = client.post("/api/wallet/topup/paypal/capture", json={"order_id": "PP-W"}, headers=customer_headers)

        assert captured.status_code == 200
        assert captured.json["balance_cents"] == 2000
        history = client.get("/api/wallet/transactions", headers=customer_headers).json["transactions"]
        assert history[0]["amount_cents"] == 2000

    @pytest.mark.parametrize("amount", ["0", "-5", "1e3", "abc", "1.234"])
    def test_topup_rejects_bad_amounts(self, client, customer_headers, amount):
        resp = client.post("/api/wallet/topup", json={"amount": amount}, headers=customer_headers)
        assert resp.status_code == 400


class TestAdminLedgerRoutes:

    def test_transactions_filter(self, client, stripe_api, customer_headers, admin_headers, make_product):
        _stub_card(stripe_api, amount=200)
        _stage(client, customer_headers, make_product(price_cents=200), 1)
        client.post("/api/checkout/card/session", json={}, headers=customer_headers)
        client.get("/api/checkout/card/return?session_id=cs_route", headers=customer_headers)

        card = client.get("/api/admin/transactions?method=card&payer=alice", headers=admin_headers).json
        paypal = client.get("/api/admin/transactions?method=paypal", headers=admin_headers).json

        assert card["count"] == 1
        assert card["transactions"][0]["amount_cents"] == 200
        assert paypal["count"] == 0

    def test_transactions_bad_date(self, client, admin_headers):
        resp = client.get("/api/admin/transactions?from=yesterday", headers=admin_headers)
        assert resp.status_code == 400

    def test_fraud_analysis(self, client, admin_headers):
        resp = client.get("/api/admin/fraud", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["stats"]["total"] == 0


class TestNotificationRoutes:

    def test_list_and_mark_read(self, client, customer, customer_headers):

        notification_service.notify(customer.id, "Hello", "Welcome to the store")
        db.session.commit()

        listed = client.get("/api/notifications", headers=customer_headers).json
        assert listed["unread"] == 1

        client.post("/api/notifications/read", headers=customer_headers)
        assert client.get("/api/notifications", headers=customer_headers).json["unread"] == 0
