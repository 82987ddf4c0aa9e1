"""
Wallet top-up tests.

Verifies:
- A confirmed provider payment credits the wallet once
- Replays (same session or later) do not credit again
- Unconfirmed or unknown references credit nothing
"""

import pytest

from storefront.errors import InvalidMethod, NoPendingCheckout, PaymentNotCompleted, ValidationError
from storefront.models import Transaction, WalletTransaction
from storefront.services import topup_service, wallet_service

from conftest import SESSION_KEY


def _stub_paypal(provider, order_id="PP-TOP", value="20.00", status="COMPLETED"):
    provider.on("POST", "/v1/oauth2/token", json={"access_token": "tok"})
    provider.on("POST", "/v2/checkout/orders", json={"id": order_id, "links": []})
    provider.on("POST", f"/v2/checkout/orders/{order_id}/capture", json={
        "id": order_id,
        "status": status,
        "payer": {"payer_id": "PAYER1", "email_address": "buyer@example.com"},
        "purchase_units": [{"payments": {"captures": [{"id": "CAP-T", "amount": {"value": value}}]}}],
    })


class TestTopup:

    def test_paypal_topup_credits_wallet(self, db_session, store, provider, customer):
        _stub_paypal(provider)
        topup_service.begin_topup(store, SESSION_KEY, customer, 2000)
        intent = topup_service.start_topup_payment(store, SESSION_KEY, "paypal")

        result = topup_service.confirm_topup_payment(store, SESSION_KEY, customer, intent.provider_ref)

        assert result.credited_cents == 2000
        assert result.balance_cents == 2000
        txn = db_session.query(Transaction).filter_by(provider_ref="PP-TOP").one()
        assert txn.order_id is None
        assert txn.payer_email == "buyer@example.com"
        with pytest.raises(NoPendingCheckout):
            topup_service.get_pending_topup(store, SESSION_KEY)

    def test_replayed_confirmation_credits_once(self, db_session, store, provider, customer):
        _stub_paypal(provider)
        topup_service.begin_topup(store, SESSION_KEY, customer, 2000)
        intent = topup_service.start_topup_payment(store, SESSION_KEY, "paypal")
        topup_service.confirm_topup_payment(store, SESSION_KEY, customer, intent.provider_ref)

        replay = topup_service.confirm_topup_payment(store, SESSION_KEY, customer, intent.provider_ref)

        assert replay.duplicate
        assert replay.credited_cents == 0
        assert wallet_service.get_balance(customer.id) == 2000
        assert db_session.query(WalletTransaction).filter_by(provider_ref="PP-TOP").count() == 1

    def test_credit_topup_is_idempotent_by_reference(self, db_session, customer):
        topup_service.credit_topup(customer, 500, "nets", "NETS-T1")
        again = topup_service.credit_topup(customer, 500, "nets", "NETS-T1")

        assert again.duplicate
        assert wallet_service.get_balance(customer.id) == 500

    def test_card_topup_not_paid(self, db_session, store, stripe_api, customer):
        stripe_api.add_session("cs_top", payment_status="unpaid", status="open")
        topup_service.begin_topup(store, SESSION_KEY, customer, 1000)
        topup_service.start_topup_payment(store, SESSION_KEY, "card")

        with pytest.raises(PaymentNotCompleted):
            topup_service.confirm_topup_payment(store, SESSION_KEY, customer, "cs_top")

        assert wallet_service.get_balance(customer.id) == 0

    def test_unknown_reference(self, db_session, store, customer):
        topup_service.begin_topup(store, SESSION_KEY, customer, 1000)
        with pytest.raises(ValidationError):
            topup_service.confirm_topup_payment(store, SESSION_KEY, customer, "made-up")

    def test_store_credit_cannot_top_up_store_credit(self, db_session, store, customer):
        topup_service.begin_topup(store, SESSION_KEY, customer, 1000)
        with pytest.raises(InvalidMethod):
            topup_service.select_topup_method(store, SESSION_KEY, "store_credit")
